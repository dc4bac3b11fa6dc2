"""
Messaging Transport

DESIGN DECISION: The registry never talks to Telegram directly.
A MessagingTransport owns one bot connection: it delivers inbound events
to a sink, reports connection errors to another sink, and sends replies.
Tests swap in a fake; production uses python-telegram-bot long polling.

CRITICAL: A transport handle belongs to exactly one BotSession. It is
never shared between users and never reused after stop().
"""

from abc import ABC, abstractmethod
from typing import Callable, Optional

import structlog
from pydantic import BaseModel, Field, SecretStr
from telegram import Update
from telegram.constants import ParseMode
from telegram.error import BadRequest, TelegramError
from telegram.ext import Application, ContextTypes, MessageHandler, filters

from expense_bot.config import TelegramSettings
from expense_bot.models.conversation import InboundEvent, PhotoMessage, TextMessage
from expense_bot.services.errors import ErrorKind, ExtractionError


logger = structlog.get_logger(__name__)

EventSink = Callable[[InboundEvent], None]
ErrorSink = Callable[[Exception], None]


class TransportError(Exception):
    """The messaging connection failed or could not be established."""
    pass


class TransportConfig(BaseModel):
    """Everything needed to open one user's bot connection."""

    user_id: str = Field(
        ...,
        min_length=1,
        description="Tenant that owns this bot"
    )
    bot_token: SecretStr = Field(
        ...,
        description="Bot API token issued by BotFather"
    )
    bot_username: Optional[str] = Field(
        default=None,
        description="Bot username, for logging only"
    )


class MessagingTransport(ABC):
    """One live bot connection."""

    @abstractmethod
    async def start(self, on_event: EventSink, on_error: ErrorSink) -> None:
        """
        Open the connection and begin delivering events.

        Args:
            on_event: Called once per inbound text or photo message
            on_error: Called when the connection fails after start

        Raises:
            TransportError: If the connection cannot be opened
        """
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Stop receiving and release the connection. Idempotent."""
        pass

    @abstractmethod
    async def send_text(self, chat_id: Optional[int], text: str) -> None:
        """
        Send a reply.

        Raises:
            TransportError: If the message could not be delivered
        """
        pass


TransportFactory = Callable[[TransportConfig], MessagingTransport]


class TelegramTransport(MessagingTransport):
    """
    python-telegram-bot Application driven manually.

    The Application is built per transport, so restarting a session means
    building a new TelegramTransport, not reusing this one.
    """

    def __init__(
        self,
        config: TransportConfig,
        settings: Optional[TelegramSettings] = None,
    ):
        self._config = config
        self._settings = settings or TelegramSettings()
        self._application: Optional[Application] = None
        self._on_event: Optional[EventSink] = None
        self._on_error: Optional[ErrorSink] = None
        self._running = False

    async def start(self, on_event: EventSink, on_error: ErrorSink) -> None:
        if self._running:
            return
        self._on_event = on_event
        self._on_error = on_error

        application = (
            Application.builder()
            .token(self._config.bot_token.get_secret_value())
            .read_timeout(self._settings.read_timeout)
            .connect_timeout(self._settings.connect_timeout)
            .build()
        )
        application.add_handler(MessageHandler(filters.PHOTO, self._handle_photo))
        application.add_handler(MessageHandler(filters.TEXT, self._handle_text))
        self._application = application

        try:
            await application.initialize()
            await application.updater.start_polling(
                poll_interval=self._settings.poll_interval,
                timeout=self._settings.poll_timeout,
                error_callback=self._polling_error,
            )
            await application.start()
        except TelegramError as e:
            await self._release()
            raise TransportError(f"Could not start bot for user {self._config.user_id}: {e}") from e

        self._running = True
        logger.info(
            "transport_started",
            user_id=self._config.user_id,
            bot_username=self._config.bot_username,
        )

    async def stop(self) -> None:
        if self._application is None:
            return
        await self._release()
        logger.info("transport_stopped", user_id=self._config.user_id)

    async def send_text(self, chat_id: Optional[int], text: str) -> None:
        if self._application is None or chat_id is None:
            raise TransportError(f"Transport for user {self._config.user_id} is not running")
        bot = self._application.bot
        try:
            try:
                await bot.send_message(chat_id=chat_id, text=text, parse_mode=ParseMode.MARKDOWN)
            except BadRequest:
                # Unbalanced Markdown in user-supplied text; resend verbatim
                await bot.send_message(chat_id=chat_id, text=text)
        except TelegramError as e:
            raise TransportError(f"Failed to send message: {e}") from e

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _release(self) -> None:
        application, self._application = self._application, None
        self._running = False
        if application is None:
            return
        try:
            if application.updater and application.updater.running:
                await application.updater.stop()
            if application.running:
                await application.stop()
            await application.shutdown()
        except TelegramError as e:
            logger.warning("transport_release_failed", user_id=self._config.user_id, error=str(e))

    def _polling_error(self, error: TelegramError) -> None:
        logger.warning("polling_error", user_id=self._config.user_id, error=str(error))
        if self._on_error:
            self._on_error(TransportError(str(error)))

    async def _handle_text(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.effective_message
        if message is None or message.text is None or self._on_event is None:
            return
        self._on_event(TextMessage(
            user_id=self._config.user_id,
            text=message.text,
            chat_id=message.chat_id,
        ))

    async def _handle_photo(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.effective_message
        if message is None or not message.photo or self._on_event is None:
            return

        # Largest size is last
        file_id = message.photo[-1].file_id
        bot = context.bot

        async def fetch_image() -> bytes:
            try:
                file = await bot.get_file(file_id)
                return bytes(await file.download_as_bytearray())
            except TelegramError as e:
                raise ExtractionError(ErrorKind.UNAVAILABLE, f"Photo download failed: {e}") from e

        self._on_event(PhotoMessage(
            user_id=self._config.user_id,
            file_id=file_id,
            fetch_image=fetch_image,
            media_group_id=message.media_group_id,
            caption=message.caption,
            chat_id=message.chat_id,
        ))


def telegram_transport_factory(settings: Optional[TelegramSettings] = None) -> TransportFactory:
    """Factory the registry calls for every start or restart."""
    def create(config: TransportConfig) -> MessagingTransport:
        return TelegramTransport(config, settings)
    return create
