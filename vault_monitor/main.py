"""
Main entry point for the Vault Monitor.

This script:
1. Loads the snapshot state (backfilling it on first run)
2. Polls the chain for new vaults and cap updates
3. Sends notifications for detected transitions
4. Answers /liveVaults commands on Telegram
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from telegram.error import TelegramError

from .api.client import ChainClient
from .commands import CommandListener
from .config import Config
from .exceptions import PersistenceError
from .live_vaults import LiveVaultService
from .logging_config import setup_logging
from .notifier import AppriseNotifier, FileNotifier, NotificationSink
from .state_manager import SnapshotStore
from .tracker import VaultTracker

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="vault-monitor",
        description="Monitor AMM vault creation and capacity changes",
    )
    parser.add_argument(
        "--file-output",
        nargs="?",
        const=Config.NOTIFICATION_FILE,
        default=None,
        metavar="PATH",
        help=f"Write notifications to a file instead of sending them (default path: {Config.NOTIFICATION_FILE})",
    )
    parser.add_argument(
        "--no-commands",
        action="store_true",
        help="Do not listen for Telegram bot commands",
    )
    parser.add_argument(
        "--state-file",
        default=Config.STATE_FILE,
        help=f"Path of the state snapshot (default: {Config.STATE_FILE})",
    )
    return parser.parse_args(argv)


def build_sink(args: argparse.Namespace) -> NotificationSink:
    if args.file_output:
        logger.info(f"Notifications will be written to {args.file_output}")
        return FileNotifier(args.file_output, explorer_base_url=Config.EXPLORER_BASE_URL)

    urls = Config.get_notification_urls()
    logger.info(f"Notifications will be sent to {len(urls)} channel(s)")
    return AppriseNotifier(urls, explorer_base_url=Config.EXPLORER_BASE_URL)


async def run(args: argparse.Namespace) -> None:
    """Wire up the monitor and run it until a stop signal arrives."""
    store = SnapshotStore(args.state_file)
    store.ensure_writable()

    chain = ChainClient.from_url(Config.RPC_URL, Config.RPC_TIMEOUT, log_chunk_size=Config.LOG_CHUNK_SIZE)

    live_vaults = LiveVaultService(
        chain,
        store,
        hub_address=Config.MARKET_HUB_ADDRESS,
        threshold_percent=Config.FILLED_THRESHOLD_PERCENT,
        cache_ttl=Config.LIVE_VAULTS_CACHE_TTL,
        explorer_base_url=Config.EXPLORER_BASE_URL,
    )

    tracker = VaultTracker(
        chain,
        store,
        build_sink(args),
        factory_address=Config.AMM_FACTORY_ADDRESS,
        hub_address=Config.MARKET_HUB_ADDRESS,
        threshold_percent=Config.FILLED_THRESHOLD_PERCENT,
        poll_interval=Config.POLL_INTERVAL_SECONDS,
        start_block=Config.START_BLOCK,
        backfill_blocks=Config.BACKFILL_BLOCKS,
        status_check_interval=Config.STATUS_CHECK_INTERVAL_BLOCKS,
        batch_size=Config.STATUS_CHECK_BATCH_SIZE,
        max_stalled_iterations=Config.MAX_STALLED_ITERATIONS,
        on_state_change=live_vaults.invalidate,
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, tracker.stop)
        except NotImplementedError:
            logger.warning(f"Cannot install handler for {sig.name} on this platform")

    listener = None
    if args.no_commands:
        logger.info("Telegram commands disabled")
    elif not Config.TELEGRAM_BOT_TOKEN:
        logger.info("TELEGRAM_BOT_TOKEN not set, Telegram commands disabled")
    else:
        listener = CommandListener(Config.TELEGRAM_BOT_TOKEN, live_vaults)
        try:
            await listener.start()
        except TelegramError as e:
            logger.error(f"Failed to start Telegram command listener: {e}")
            listener = None

    try:
        await tracker.run()
    finally:
        if listener is not None:
            await listener.stop()


def main(argv: Optional[List[str]] = None) -> None:
    """
    Run the vault monitor.

    Exit codes: 0 on a clean shutdown, 1 on a fatal startup error, 2 on invalid configuration.
    """
    args = parse_args(argv)

    # Setup logging first
    setup_logging()

    problems = Config.validate()
    if problems:
        for problem in problems:
            logger.error(f"Configuration error: {problem}")
        sys.exit(2)

    try:
        logger.info("Starting Vault Monitor...")
        logger.info(f"RPC: {Config.RPC_URL}")
        logger.info(f"Factory: {Config.AMM_FACTORY_ADDRESS}")
        logger.info(f"Market hub: {Config.MARKET_HUB_ADDRESS}")
        logger.info(f"State file: {args.state_file}")
        asyncio.run(run(args))
        logger.info("Vault Monitor stopped")

    except KeyboardInterrupt:
        logger.info("Interrupted by user. Exiting gracefully...")
        sys.exit(0)
    except PersistenceError as e:
        logger.error("=" * 80)
        logger.error(f"FATAL: state storage unavailable: {e}")
        logger.error("=" * 80)
        sys.exit(1)
    except Exception as e:
        logger.error("=" * 80)
        logger.error("FATAL ERROR in Vault Monitor")
        logger.error("=" * 80)
        logger.error(f"Error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
