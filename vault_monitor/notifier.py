"""
Notification System using Apprise.
Renders lifecycle transitions and delivers them without blocking the tracker loop.
"""

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Protocol, Union

import apprise

from .api.models import DepositInfo, Transition, TransitionKind, VaultRecord
from .config import Config
from .utils.formatters import (
    explorer_url,
    format_decimal,
    format_timestamp,
    format_token_amount,
)

logger = logging.getLogger(__name__)

STARTUP_MESSAGE = "🤖 Vault Monitor Bot is running!"
NOTIFICATION_TITLE = "Vault Monitor"


class NotificationSink(Protocol):
    """Anything that can deliver transitions. Failures are reported, never raised."""

    async def deliver(self, transition: Transition) -> bool:
        ...

    async def send_startup_message(self) -> bool:
        ...


def token_symbol(vault: VaultRecord) -> str:
    return vault.depositTokenSymbol or vault.symbol or "N/A"


def format_deposit_info(vault: VaultRecord, deposit_info: Optional[DepositInfo]) -> List[str]:
    if deposit_info is None:
        return []
    return [
        "",
        "*--- Deposit Calculation ---*",
        f"*LP Price:* {format_decimal(deposit_info.lpPrice, 6)}",
        f"*Available LP Capacity:* {format_decimal(deposit_info.availableLpCapacity, 6)}",
        f"*💰 Available Deposit:* {format_decimal(deposit_info.availableDeposit, 2)} {token_symbol(vault)}",
    ]


def format_transition_message(transition: Transition, explorer_base_url: str = Config.EXPLORER_BASE_URL) -> str:
    """
    Format a transition into a Markdown notification message.

    Args:
        transition: Detected transition
        explorer_base_url: Block explorer base URL for the vault link

    Returns:
        Formatted message
    """
    vault = transition.vault
    maturity = format_timestamp(vault.maturity)
    lines: List[str]

    if transition.kind == TransitionKind.VAULT_CREATED:
        status = "🔴 FULLY FILLED" if transition.filled else "🟢 AVAILABLE"
        lines = [
            "🚀 *New Vault Created!*",
            "",
            f"*Name:* {vault.name}",
            f"*Symbol:* {vault.symbol}",
            f"*🪙 Token:* {token_symbol(vault)}",
            f"*Address:* `{vault.address}`",
            f"*Status:* {status}",
            "",
            f"*Cap:* {format_token_amount(vault.totalSupplyCap)}",
            f"*Current Supply:* {format_token_amount(vault.lastKnownTotalSupply)}",
            f"*Maturity:* {maturity}",
        ]
    elif transition.kind == TransitionKind.CAP_RAISED:
        status = "🔴 STILL FULL" if vault.isFilled else "🟢 NOW AVAILABLE"
        available = max(transition.newCap - transition.currentSupply, 0)
        lines = [
            "📈 *Vault Cap Raised!*",
            "",
            f"*Vault:* {vault.name} ({vault.symbol})",
            f"*🪙 Token:* {token_symbol(vault)}",
            f"*Address:* `{vault.address}`",
            f"*Status:* {status}",
            "",
            f"*Old Cap:* {format_token_amount(transition.oldCap)}",
            f"*New Cap:* {format_token_amount(transition.newCap)}",
            f"*Current Supply:* {format_token_amount(transition.currentSupply)}",
            f"*Maturity:* {maturity}",
            "",
            f"*Available Space:* {format_token_amount(available)}",
        ]
    elif transition.kind == TransitionKind.VAULT_FILLED:
        lines = [
            "🔴 *Vault Filled!*",
            "",
            f"*Vault:* {vault.name} ({vault.symbol})",
            f"*🪙 Token:* {token_symbol(vault)}",
            f"*Address:* `{vault.address}`",
            "",
            f"*Cap:* {format_token_amount(vault.totalSupplyCap)}",
            f"*Current Supply:* {format_token_amount(vault.lastKnownTotalSupply)}",
        ]
    else:
        supply = transition.currentSupply if transition.currentSupply is not None else vault.lastKnownTotalSupply
        lines = [
            "🟢 *Vault Available Again!*",
            "",
            f"*Vault:* {vault.name} ({vault.symbol})",
            f"*🪙 Token:* {token_symbol(vault)}",
            f"*Address:* `{vault.address}`",
            "",
            f"*Cap:* {format_token_amount(vault.totalSupplyCap)}",
            f"*Current Supply:* {format_token_amount(supply)}",
            f"*Available Space:* {format_token_amount(max(vault.totalSupplyCap - supply, 0))}",
            f"*Maturity:* {maturity}",
        ]

    lines.extend(format_deposit_info(vault, transition.depositInfo))
    lines.extend(["", f"[View on Explorer]({explorer_url(vault.address, explorer_base_url)})"])
    return "\n".join(lines)


class AppriseNotifier:
    """Delivers messages to one or more Apprise URLs (Telegram: tgram://token/chat_id)."""

    def __init__(
        self,
        urls: List[str],
        title: str = NOTIFICATION_TITLE,
        explorer_base_url: str = Config.EXPLORER_BASE_URL,
    ):
        self.urls = urls
        self.title = title
        self.explorer_base_url = explorer_base_url

    async def deliver(self, transition: Transition) -> bool:
        message = format_transition_message(transition, self.explorer_base_url)
        return await self.send_message(message)

    async def send_startup_message(self) -> bool:
        return await self.send_message(STARTUP_MESSAGE)

    async def send_message(self, message: str) -> bool:
        """
        Send notification via Apprise.

        Args:
            message: Formatted message to send

        Returns:
            True if successful, False otherwise
        """
        try:
            # Check if any channel is configured
            if not self.urls:
                logger.warning("No notification channel configured, skipping notification")
                logger.info(f"Message that would be sent:\n{message}")
                return True

            # Create Apprise instance
            apobj = apprise.Apprise()

            # Add notification services
            for url in self.urls:
                if not apobj.add(url):
                    logger.error(f"Failed to add notification service {url.split('://')[0]}://...")

            if len(apobj) == 0:
                return False

            result = await apobj.async_notify(
                body=message,
                title=self.title,
                body_format=apprise.NotifyFormat.MARKDOWN
            )

            if result:
                logger.info("Successfully sent notification")
            else:
                logger.error("Failed to send notification")

            return bool(result)

        except Exception as e:
            logger.error(f"Error sending notification: {e}", exc_info=True)
            return False


class FileNotifier:
    """Appends timestamped messages to a local file."""

    SEPARATOR = "=" * 60

    def __init__(self, path: Union[str, Path], explorer_base_url: str = Config.EXPLORER_BASE_URL):
        self.path = Path(path)
        self.explorer_base_url = explorer_base_url

    def _append(self, message: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now(timezone.utc).isoformat()
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(f"\n{self.SEPARATOR}\n[{timestamp}]\n{message}\n")

    async def send_message(self, message: str) -> bool:
        try:
            await asyncio.to_thread(self._append, message)
            logger.info(f"Notification written to {self.path}")
            return True
        except OSError as e:
            logger.error(f"Failed to write notification to {self.path}: {e}")
            return False

    async def deliver(self, transition: Transition) -> bool:
        return await self.send_message(format_transition_message(transition, self.explorer_base_url))

    async def send_startup_message(self) -> bool:
        return await self.send_message(STARTUP_MESSAGE)


class NotificationDispatcher:
    """
    Queues transitions and delivers them from a single background task.

    Deliveries happen in submission order. `submit` never waits on the sink.
    """

    def __init__(self, sink: NotificationSink):
        self.sink = sink
        self._queue: "asyncio.Queue[Transition]" = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self.sent = 0
        self.failed = 0

    def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(), name="notification-dispatcher")

    def submit(self, transition: Transition) -> None:
        logger.info(f"Queueing {transition.kind.value} notification for {transition.vault.address}")
        self._queue.put_nowait(transition)
        self.start()

    async def join(self) -> None:
        """Wait until every queued transition has been handled."""
        if self._worker is not None:
            await self._queue.join()

    async def stop(self) -> None:
        """Drain the queue, then stop the worker."""
        await self.join()
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        logger.info(f"Notification summary: {self.sent} sent, {self.failed} failed")

    async def _run(self) -> None:
        while True:
            transition = await self._queue.get()
            try:
                if await self.sink.deliver(transition):
                    self.sent += 1
                else:
                    self.failed += 1
                    logger.warning(
                        f"Failed to deliver {transition.kind.value} notification for {transition.vault.address}"
                    )
            except Exception as e:
                self.failed += 1
                logger.error(f"Error delivering notification: {e}", exc_info=True)
            finally:
                self._queue.task_done()
