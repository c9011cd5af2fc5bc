"""
Configuration module for the Vault Monitor.
Centralizes contract addresses, RPC settings, polling policy and notification channels.
"""

import os
from typing import List, Optional
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _optional_int(name: str) -> Optional[int]:
    value = os.getenv(name, "").strip()
    return int(value) if value else None


class Config:
    """Main configuration class for the monitor."""

    # Chain Settings
    RPC_URL: str = os.getenv("RPC_URL", "https://arb1.arbitrum.io/rpc")
    RPC_TIMEOUT: int = int(os.getenv("RPC_TIMEOUT", "30"))
    LOG_CHUNK_SIZE: int = int(os.getenv("LOG_CHUNK_SIZE", "50000"))
    EXPLORER_BASE_URL: str = os.getenv("EXPLORER_BASE_URL", "https://arbiscan.io")

    # Contract addresses
    AMM_FACTORY_ADDRESS: str = os.getenv("AMM_FACTORY_ADDRESS", "0x3205e972714B52512c837AE6f5FCFDeB07f0f23C")
    MARKET_HUB_ADDRESS: str = os.getenv("MARKET_HUB_ADDRESS", "0x1080808080f145b14228443212e62447C112ADaD")

    # Monitoring policy
    POLL_INTERVAL_SECONDS: float = float(os.getenv("POLL_INTERVAL_SECONDS", "12"))
    START_BLOCK: Optional[int] = _optional_int("START_BLOCK")
    FILLED_THRESHOLD_PERCENT: float = float(os.getenv("FILLED_THRESHOLD_PERCENT", "98"))
    STATUS_CHECK_INTERVAL_BLOCKS: int = int(os.getenv("STATUS_CHECK_INTERVAL_BLOCKS", "120"))
    BACKFILL_BLOCKS: int = int(os.getenv("BACKFILL_BLOCKS", "100800"))  # about two weeks on Arbitrum
    STATUS_CHECK_BATCH_SIZE: int = int(os.getenv("STATUS_CHECK_BATCH_SIZE", "5"))
    MAX_STALLED_ITERATIONS: int = int(os.getenv("MAX_STALLED_ITERATIONS", "5"))
    LIVE_VAULTS_CACHE_TTL: int = int(os.getenv("LIVE_VAULTS_CACHE_TTL", "30"))  # seconds

    # State file path
    STATE_FILE: str = os.getenv("STATE_FILE", "data/vault-state.json")

    # Notification channels (Apprise URL format)
    # See https://github.com/caronc/apprise for the URL formats
    TELEGRAM_BOT_TOKEN: str = os.getenv("TELEGRAM_BOT_TOKEN", "")
    TELEGRAM_CHAT_ID: str = os.getenv("TELEGRAM_CHAT_ID", "")
    NOTIFY_URLS: str = os.getenv("NOTIFY_URLS", "")
    NOTIFICATION_FILE: str = os.getenv("NOTIFICATION_FILE", "notifications.log")

    # Logging settings
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT: str = os.getenv("LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    LOG_FILE: str = os.getenv("LOG_FILE", "logs/vault_monitor.log")
    LOG_MAX_BYTES: int = int(os.getenv("LOG_MAX_BYTES", "10485760"))  # 10MB
    LOG_BACKUP_COUNT: int = int(os.getenv("LOG_BACKUP_COUNT", "5"))

    @classmethod
    def get_notification_urls(cls) -> List[str]:
        """
        Build the list of Apprise URLs to deliver notifications to.

        NOTIFY_URLS wins when set. Otherwise a Telegram URL is derived from
        the bot token and chat id, if both are present.

        Returns:
            List of Apprise URLs (possibly empty)
        """
        urls = [url.strip() for url in cls.NOTIFY_URLS.split(",") if url.strip()]
        if urls:
            return urls
        if cls.TELEGRAM_BOT_TOKEN and cls.TELEGRAM_CHAT_ID:
            return [f"tgram://{cls.TELEGRAM_BOT_TOKEN}/{cls.TELEGRAM_CHAT_ID}/?format=markdown"]
        return []

    @classmethod
    def validate(cls) -> List[str]:
        """
        Check the settings for values the monitor cannot run with.

        Returns:
            List of problems, empty when the configuration is usable
        """
        problems = []
        for name in ("AMM_FACTORY_ADDRESS", "MARKET_HUB_ADDRESS"):
            value = getattr(cls, name)
            if not (value.startswith("0x") and len(value) == 42):
                problems.append(f"{name} is not a valid address: {value!r}")
        if not cls.RPC_URL:
            problems.append("RPC_URL is empty")
        if cls.POLL_INTERVAL_SECONDS <= 0:
            problems.append("POLL_INTERVAL_SECONDS must be positive")
        if not 0 < cls.FILLED_THRESHOLD_PERCENT <= 100:
            problems.append("FILLED_THRESHOLD_PERCENT must be in (0, 100]")
        if cls.STATUS_CHECK_INTERVAL_BLOCKS <= 0:
            problems.append("STATUS_CHECK_INTERVAL_BLOCKS must be positive")
        if cls.STATUS_CHECK_BATCH_SIZE <= 0:
            problems.append("STATUS_CHECK_BATCH_SIZE must be positive")
        if cls.LOG_CHUNK_SIZE <= 0:
            problems.append("LOG_CHUNK_SIZE must be positive")
        if cls.START_BLOCK is not None and cls.START_BLOCK < 0:
            problems.append("START_BLOCK must not be negative")
        return problems


# Create singleton instance
config = Config()
