"""
Live-Vault Query Service.
Answers "which vaults can be deposited into right now" from fresh contract reads,
with a short-lived cache of the rendered answer.
"""

import logging
import re
import time
from datetime import timedelta
from typing import Callable, List, Optional

from .api.models import LiveVault
from .config import Config
from .exceptions import PersistenceError, VaultMonitorError
from .state_manager import SnapshotStore
from .status import is_expired, is_filled, utilization
from .utils.formatters import explorer_url, format_percentage, format_timestamp, format_token_amount
from .vault_reader import read_capacity, read_latest_time, read_missing_enrichment

logger = logging.getLogger(__name__)

NO_LIVE_VAULTS_MESSAGE = "❌ No live vaults found."
NAME_PREFIX = re.compile(r"^Boros AMM - ")


def format_live_vaults(vaults: List[LiveVault], explorer_base_url: str = Config.EXPLORER_BASE_URL) -> str:
    """
    Render the live-vault list as a Markdown message.

    Args:
        vaults: Live vaults, already sorted
        explorer_base_url: Block explorer base URL

    Returns:
        Formatted message, or the empty-result message
    """
    if not vaults:
        return NO_LIVE_VAULTS_MESSAGE

    lines = [f"📊 *Live Vaults* ({len(vaults)})", ""]
    for i, live in enumerate(vaults, start=1):
        vault = live.vault
        status = "🟢" if live.utilization < 100 else "🔴"
        display_name = NAME_PREFIX.sub("", vault.name)
        available = max(vault.totalSupplyCap - vault.lastKnownTotalSupply, 0)

        lines.extend([
            f"{i}. {status} *{display_name}*",
            f"   🪙 Token: {live.depositCurrency or 'N/A'}",
            f"   📅 Expires: {format_timestamp(vault.maturity, '%Y-%m-%d')}",
            f"   📊 Utilization: {format_percentage(live.utilization)}",
            f"   💵 Cap: {format_token_amount(vault.totalSupplyCap)}",
            f"   📈 Current: {format_token_amount(vault.lastKnownTotalSupply)}",
            f"   ✅ Available: {format_token_amount(available)}",
            f"   🔗 [View]({explorer_url(vault.address, explorer_base_url)})",
            "",
        ])

    return "\n".join(lines).strip()


class LiveVaultService:
    """
    Read-only view over the snapshot store and the chain.

    The only write it performs is filling in missing deposit-token metadata,
    which never overwrites anything already stored.
    """

    def __init__(
        self,
        chain,
        store: SnapshotStore,
        hub_address: str = Config.MARKET_HUB_ADDRESS,
        threshold_percent: float = Config.FILLED_THRESHOLD_PERCENT,
        cache_ttl: int = Config.LIVE_VAULTS_CACHE_TTL,
        explorer_base_url: str = Config.EXPLORER_BASE_URL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.chain = chain
        self.store = store
        self.hub_address = hub_address
        self.threshold_percent = threshold_percent
        self.explorer_base_url = explorer_base_url
        self.clock = clock
        self._cache_duration = timedelta(seconds=cache_ttl)
        self._cached_message: Optional[str] = None
        self._cache_timestamp: Optional[float] = None
        self._generation = 0

    def _is_cache_valid(self) -> bool:
        """Check if the cached message is still valid."""
        if self._cache_timestamp is None or self._cached_message is None:
            return False
        return self.clock() - self._cache_timestamp < self._cache_duration.total_seconds()

    def invalidate(self) -> None:
        """Drop the cached message so the next request reads fresh state."""
        self._generation += 1
        self._cached_message = None
        self._cache_timestamp = None
        logger.debug("Live vaults cache invalidated")

    async def list_live_vaults(self) -> List[LiveVault]:
        """
        Non-expired, non-filled vaults with current cap and supply, least utilized first.
        """
        live: List[LiveVault] = []

        for record in self.store.all_vaults():
            try:
                latest_time = await read_latest_time(self.chain, record.marketAddress)
                if is_expired(latest_time, record.maturity):
                    continue

                cap, supply = await read_capacity(self.chain, record.address)
                if is_filled(supply, cap, self.threshold_percent):
                    continue

                if record.depositTokenSymbol is None:
                    enrichment = await read_missing_enrichment(self.chain, self.hub_address, record)
                    if enrichment:
                        try:
                            patched = self.store.patch_vault(record.address, only_missing=True, **enrichment)
                        except PersistenceError as e:
                            logger.warning(f"Could not store metadata for {record.address}: {e}")
                            patched = None
                        record = patched or record.model_copy(update=enrichment)

                live.append(LiveVault(
                    vault=record.with_capacity(cap, supply, self.threshold_percent),
                    utilization=utilization(supply, cap),
                    depositCurrency=record.depositTokenSymbol or record.symbol,
                ))
            except VaultMonitorError as e:
                logger.error(f"Error processing vault {record.address}: {e}")

        live.sort(key=lambda v: v.utilization)
        return live

    async def render(self) -> str:
        """
        Rendered live-vault list, served from cache when fresh.

        Returns:
            Markdown message
        """
        if self._is_cache_valid():
            logger.debug("Using cached live vaults message")
            return self._cached_message

        generation = self._generation
        vaults = await self.list_live_vaults()
        message = format_live_vaults(vaults, self.explorer_base_url)

        # Do not cache a result computed across an invalidation
        if generation == self._generation:
            self._cached_message = message
            self._cache_timestamp = self.clock()

        logger.info(f"Live vaults: {len(vaults)} vaults")
        return message
