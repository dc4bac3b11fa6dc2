"""
Command Router

Classifies one inbound event and dispatches it:

    text, dialog active   -> ConversationEngine.handle_input
    text, no dialog       -> stateless command table
    photo                 -> receipt intake -> ConversationEngine.start_receipt_flow

CRITICAL RULES:
1. Every message passes a rate check before any collaborator is called.
2. Photos never enter a running dialog. A photo that arrives mid-dialog is
   refused before extraction, so no extraction is wasted and no dialog is
   overwritten.
3. Nothing raised while handling an event escapes `route`, except errors
   from `reply` itself (those belong to the transport and its recovery).
"""

from typing import Awaitable, Callable, Optional

import structlog

from expense_bot import messages
from expense_bot.audit import AuditLogger, ErrorDeduplicator, create_correlation_id
from expense_bot.bot.commands import CommandHandlers, parse_command
from expense_bot.bot.rate_limiter import RateLimiter
from expense_bot.bot.transport import TransportError
from expense_bot.config import RateLimitSettings
from expense_bot.conversation import (
    AlreadyInConversationError,
    ConversationEngine,
    NoActiveConversationError,
)
from expense_bot.models.conversation import InboundEvent, PhotoMessage, TextMessage
from expense_bot.services.errors import CollaboratorError, ExtractionError, with_timeout
from expense_bot.services.extraction import ReceiptExtractorInterface


logger = structlog.get_logger(__name__)

Reply = Callable[[str], Awaitable[None]]

MESSAGE = "message"
PHOTO = "photo"
PHOTO_INTERVAL = "photo_interval"


class CommandRouter:
    """Entry point for every event a user's bot receives."""

    def __init__(
        self,
        engine: ConversationEngine,
        commands: CommandHandlers,
        extractor: ReceiptExtractorInterface,
        rate_limiter: RateLimiter,
        rate_settings: Optional[RateLimitSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
        collaborator_timeout: float = 30.0,
        error_dedup: Optional[ErrorDeduplicator] = None,
    ):
        self._engine = engine
        self._commands = commands.table()
        self._extractor = extractor
        self._limiter = rate_limiter
        self._limits = rate_settings or RateLimitSettings()
        self._audit = audit_logger
        self._timeout = collaborator_timeout
        # Used only without an audit logger; AuditLogger.log_error dedups otherwise
        self._dedup = error_dedup or ErrorDeduplicator()
        # Last album refused per user; later photos of it are dropped silently
        self._rejected_groups: dict[str, str] = {}

    async def route(self, user_id: str, event: InboundEvent, reply: Reply) -> None:
        """
        Handle one event and send the resulting reply.

        Raises:
            Whatever `reply` raises. Processing errors are answered, not raised.
        """
        try:
            if isinstance(event, PhotoMessage):
                answer = await self._route_photo(user_id, event, reply)
            elif isinstance(event, TextMessage):
                answer = await self._route_text(user_id, event.text)
            else:
                logger.warning("unsupported_event", user_id=user_id, event_type=type(event).__name__)
                answer = None
        except TransportError:
            raise
        except AlreadyInConversationError:
            answer = messages.FINISH_CONVERSATION_FIRST
        except CollaboratorError as e:
            logger.warning("collaborator_failed", user_id=user_id, kind=e.kind.value, error=str(e))
            if self._audit:
                await self._audit.log_external_service_error(
                    service="receipt_extractor" if isinstance(e, ExtractionError) else "finance_store",
                    error_message=str(e),
                    user_id=user_id,
                )
            answer = messages.SERVICE_UNAVAILABLE
        except Exception as e:
            error_type = type(e).__name__
            if self._audit:
                first = await self._audit.log_error(
                    error_type=error_type,
                    error_message=str(e),
                    user_id=user_id,
                )
            else:
                first = self._dedup.should_record(user_id, error_type, str(e))
            # Full trace once per window; repeats get one line
            if first:
                logger.exception("event_failed", user_id=user_id, error_type=error_type)
            else:
                logger.warning("event_failed_repeated", user_id=user_id, error_type=error_type, error=str(e))
            answer = messages.GENERIC_ERROR

        if answer:
            await reply(answer)

    # -------------------------------------------------------------------------
    # Text
    # -------------------------------------------------------------------------

    async def _route_text(self, user_id: str, text: str) -> Optional[str]:
        if not self._limiter.allow(
            user_id, MESSAGE, self._limits.message_limit, self._limits.message_window_ms
        ):
            return await self._rate_limited(user_id, MESSAGE, messages.RATE_LIMITED)

        if await self._engine.current_flow(user_id) is not None:
            try:
                return await self._engine.handle_input(user_id, text)
            except NoActiveConversationError:
                # Expired between the lookup and the input; treat as a command
                pass

        parsed = parse_command(text)
        if parsed is None:
            return messages.UNKNOWN_COMMAND
        name, args = parsed
        handler = self._commands.get(name)
        if handler is None:
            return messages.UNKNOWN_COMMAND

        logger.info("command_received", user_id=user_id, command=name)
        return await handler(user_id, args)

    # -------------------------------------------------------------------------
    # Photos
    # -------------------------------------------------------------------------

    async def _route_photo(self, user_id: str, event: PhotoMessage, reply: Reply) -> Optional[str]:
        if event.media_group_id:
            if self._rejected_groups.get(user_id) == event.media_group_id:
                return None
            self._rejected_groups[user_id] = event.media_group_id
            return messages.MEDIA_GROUP_REJECTED

        if not self._limiter.allow(
            user_id, PHOTO, self._limits.photo_limit, self._limits.photo_window_ms
        ):
            return await self._rate_limited(user_id, PHOTO, messages.RATE_LIMITED)
        if not self._limiter.allow(user_id, PHOTO_INTERVAL, 1, self._limits.photo_min_interval_ms):
            return await self._rate_limited(user_id, PHOTO_INTERVAL, messages.PHOTO_TOO_SOON)

        if await self._engine.current_flow(user_id) is not None:
            return messages.FINISH_CONVERSATION_FIRST

        await reply(messages.PROCESSING_RECEIPT)

        correlation_id = create_correlation_id()
        try:
            image = await with_timeout(event.fetch_image(), self._timeout, ExtractionError)
            receipt = await with_timeout(
                self._extractor.extract_receipt(image), self._timeout, ExtractionError
            )
        except ExtractionError as e:
            logger.warning(
                "extraction_failed",
                user_id=user_id,
                kind=e.kind.value,
                error=str(e),
                correlation_id=str(correlation_id),
            )
            if self._audit:
                await self._audit.log_extraction_failed(
                    user_id=user_id,
                    error_kind=e.kind.value,
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            return messages.extraction_failed(e.kind)

        logger.info(
            "receipt_extracted",
            user_id=user_id,
            store_name=receipt.store_name,
            total=str(receipt.total),
            correlation_id=str(correlation_id),
        )
        if self._audit:
            await self._audit.log_receipt_extracted(
                user_id=user_id,
                store_name=receipt.store_name,
                total=str(receipt.total),
                items_count=len(receipt.items),
                correlation_id=correlation_id,
            )

        return await self._engine.start_receipt_flow(user_id, receipt)

    async def _rate_limited(self, user_id: str, action_class: str, answer: str) -> str:
        logger.info("rate_limited", user_id=user_id, action_class=action_class)
        if self._audit:
            await self._audit.log_rate_limited(user_id, action_class)
        return answer
