"""
Telegram command surface.
Serves the /liveVaults query from the live-vault service.
"""

import logging

from telegram import LinkPreviewOptions, Update
from telegram.constants import ParseMode
from telegram.ext import Application, CommandHandler, ContextTypes

from .live_vaults import LiveVaultService

logger = logging.getLogger(__name__)

ERROR_MESSAGE = "❌ Error fetching vaults. Please try again later."


class CommandListener:
    """Polls Telegram for bot commands while the monitor runs."""

    # Bot commands are matched case-insensitively, so /liveVaults works too
    LIVE_VAULTS_COMMAND = "livevaults"

    def __init__(self, token: str, live_vaults: LiveVaultService):
        self.live_vaults = live_vaults
        self.application = Application.builder().token(token).build()
        self.application.add_handler(CommandHandler(self.LIVE_VAULTS_COMMAND, self.live_vaults_command))

    async def live_vaults_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Reply with the current live vaults."""
        chat_id = update.effective_chat.id if update.effective_chat else None
        logger.info(f"/liveVaults requested from chat {chat_id}")
        try:
            message = await self.live_vaults.render()
            await update.message.reply_text(
                message,
                parse_mode=ParseMode.MARKDOWN,
                link_preview_options=LinkPreviewOptions(is_disabled=True)
            )
        except Exception as e:
            logger.error(f"Error handling /liveVaults command: {e}", exc_info=True)
            await update.message.reply_text(ERROR_MESSAGE)

    async def start(self) -> None:
        await self.application.initialize()
        await self.application.start()
        await self.application.updater.start_polling(drop_pending_updates=True)
        logger.info("Telegram command listener started")

    async def stop(self) -> None:
        if self.application.updater and self.application.updater.running:
            await self.application.updater.stop()
        if self.application.running:
            await self.application.stop()
        await self.application.shutdown()
        logger.info("Telegram command listener stopped")
