"""Telegram transport for ytdigest.

Inbound: every private text message is handed to the orchestrator and the
outcome is replied to the sender. Outbound: ``deliver`` fans a payload out to
a list of chat ids, one send per recipient.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, Optional

from structlog import get_logger
from telegram import Bot, Update
from telegram.error import TelegramError
from telegram.ext import Application, ContextTypes, MessageHandler, filters

from ytdigest.constants import TELEGRAM_MESSAGE_MAX_CHARS
from ytdigest.utils import split_message

if TYPE_CHECKING:
    from ytdigest.core.orchestrator import Orchestrator

logger = get_logger(__name__)


class AdapterError(Exception):
    """Raised when the transport is used before it was started."""


class TelegramAdapter:
    """Chat transport over the Telegram Bot API (long polling)."""

    ADAPTER_KEY = "telegram"
    max_message_size = TELEGRAM_MESSAGE_MAX_CHARS

    def __init__(
        self,
        bot_token: str,
        orchestrator: "Orchestrator",
        allowed_chat_ids: Optional[Iterable[int]] = None,
    ) -> None:
        self.bot_token = bot_token
        self._orchestrator = orchestrator
        self._allowed_chat_ids = set(allowed_chat_ids or ())
        self.app: Optional[Application] = None  # type: ignore[type-arg]

    @property
    def bot(self) -> Bot:
        if self.app is None:
            raise AdapterError("Telegram adapter not started")
        return self.app.bot

    async def start(self) -> None:
        """Initialize and start Telegram bot."""
        builder = Application.builder()
        builder.token(self.bot_token)
        builder.concurrent_updates(True)
        self.app = builder.build()
        assert self.app.updater is not None  # Updater is created by builder

        text_handler: object = MessageHandler(filters.TEXT & ~filters.COMMAND, self._handle_text_message)
        self.app.add_handler(text_handler)  # type: ignore[arg-type]
        self.app.add_error_handler(self._handle_error)

        await self.app.initialize()
        await self.app.start()
        await self.app.updater.start_polling()

        bot_info = await self.bot.get_me()
        logger.info("Telegram adapter started. Bot: @%s (ID: %s)", bot_info.username, bot_info.id)

    async def stop(self) -> None:
        """Stop Telegram bot."""
        if self.app and self.app.updater:
            await self.app.updater.stop()
            await self.app.stop()
            await self.app.shutdown()
        logger.info("Telegram adapter stopped")

    async def _handle_text_message(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        _ = context
        message = update.effective_message
        chat = update.effective_chat
        if message is None or chat is None or not message.text:
            return
        if self._allowed_chat_ids and chat.id not in self._allowed_chat_ids:
            logger.warning("Ignoring message from chat %s (not whitelisted)", chat.id)
            return

        outcome = await self._orchestrator.handle_message(str(chat.id), message.text)
        try:
            await self._send(str(chat.id), outcome.message)
        except TelegramError:
            logger.exception("Failed to reply", chat_id=chat.id, outcome=outcome.kind.value)

    async def deliver(self, party_ids: list[str], payload: str) -> None:
        """Send ``payload`` to each chat; a failed recipient does not stop the others."""
        for party_id in party_ids:
            try:
                await self._send(party_id, payload)
            except TelegramError:
                logger.exception("Delivery failed", chat_id=party_id)

    async def _send(self, chat_id: str, text: str) -> None:
        for chunk in split_message(text, self.max_message_size):
            await self.bot.send_message(chat_id=chat_id, text=chunk)

    async def _handle_error(self, update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Handle errors that occur in handlers."""
        logger.error("Exception while handling update %s", update, exc_info=context.error)
