"""
Main Orchestrator for Expense Bot

This module ties together all the components:

    transport -> BotSessionRegistry -> CommandRouter
                                         |-> RateLimiter
                                         |-> ConversationEngine -> FinanceStore
                                         |-> CommandHandlers -> SummaryBuilder
                                         '-> ReceiptExtractor
    transport errors -> RecoveryManager -> BotSessionRegistry

DESIGN DECISION: Exactly one instance of every shared component.
The rate limiter, conversation store and finance store are shared by all
users; per-user state inside them is keyed by user_id. Only transports
are per user.
"""

import json
from datetime import timedelta
from pathlib import Path
from typing import NamedTuple, Optional

import structlog

from expense_bot.audit import AuditLogger
from expense_bot.bot import (
    BotSessionRegistry,
    CommandHandlers,
    CommandRouter,
    RateLimiter,
    RecoveryManager,
    TransportConfig,
    telegram_transport_factory,
)
from expense_bot.bot.transport import TransportFactory
from expense_bot.config import Settings, get_settings
from expense_bot.conversation import ConversationEngine, ConversationStore
from expense_bot.queries import SummaryBuilder
from expense_bot.services.extraction import GeminiReceiptExtractor, ReceiptExtractorInterface
from expense_bot.services.storage import (
    AuditStorageInterface,
    FinanceStoreInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsFinanceStore,
    InMemoryFinanceStore,
)


logger = structlog.get_logger(__name__)


class AppComponents(NamedTuple):
    """Everything the entry point needs to run and stop the service."""
    registry: BotSessionRegistry
    recovery: RecoveryManager
    router: CommandRouter
    engine: ConversationEngine
    finance_store: FinanceStoreInterface
    audit_logger: AuditLogger


def create_app_components(
    settings: Optional[Settings] = None,
    finance_store: Optional[FinanceStoreInterface] = None,
    extractor: Optional[ReceiptExtractorInterface] = None,
    transport_factory: Optional[TransportFactory] = None,
    audit_storage: Optional[AuditStorageInterface] = None,
) -> AppComponents:
    """
    Factory function to create all application components.

    Any collaborator passed in is used as is; the rest are built from
    settings. STORAGE_BACKEND=sheets stores data in Google Sheets,
    anything else keeps it in memory.
    """
    settings = settings or get_settings()
    app = settings.app

    if finance_store is None:
        if app.storage_backend == "sheets":
            sheets_client = GoogleSheetsClient(settings.google_sheets)
            finance_store = GoogleSheetsFinanceStore(sheets_client)
            if audit_storage is None:
                audit_storage = GoogleSheetsAuditStorage(sheets_client)
        else:
            finance_store = InMemoryFinanceStore()

    audit_logger = AuditLogger(audit_storage, dedup_window_seconds=app.error_log_dedup_seconds)

    engine = ConversationEngine(
        store=ConversationStore(idle_timeout=timedelta(seconds=app.conversation_timeout_seconds)),
        finance_store=finance_store,
        audit_logger=audit_logger,
        cancel_token=app.cancel_token,
        collaborator_timeout=app.collaborator_timeout_seconds,
        default_currency=app.default_currency,
    )
    commands = CommandHandlers(
        engine=engine,
        summaries=SummaryBuilder(
            finance_store,
            timeout=app.collaborator_timeout_seconds,
            default_currency=app.default_currency,
        ),
        default_currency=app.default_currency,
    )

    rate_settings = settings.rate_limit
    router = CommandRouter(
        engine=engine,
        commands=commands,
        extractor=extractor or GeminiReceiptExtractor(settings.gemini),
        rate_limiter=RateLimiter(prune_threshold=rate_settings.prune_threshold),
        rate_settings=rate_settings,
        audit_logger=audit_logger,
        collaborator_timeout=app.collaborator_timeout_seconds,
    )

    registry = BotSessionRegistry(
        router=router,
        transport_factory=transport_factory or telegram_transport_factory(settings.telegram),
        audit_logger=audit_logger,
        shutdown_grace_seconds=app.shutdown_grace_seconds,
    )
    recovery = RecoveryManager(registry, settings.recovery, audit_logger)

    logger.info(
        "components_created",
        finance_store=type(finance_store).__name__,
        environment=app.app_environment,
    )
    return AppComponents(
        registry=registry,
        recovery=recovery,
        router=router,
        engine=engine,
        finance_store=finance_store,
        audit_logger=audit_logger,
    )


def load_transport_configs(path: str) -> list[TransportConfig]:
    """
    Read the users file: a JSON list of
    {"user_id": ..., "bot_token": ..., "bot_username": ...} objects.

    Raises:
        FileNotFoundError: If the file does not exist
        pydantic.ValidationError: If an entry is malformed
    """
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return [TransportConfig.model_validate(entry) for entry in data]


async def start_all(registry: BotSessionRegistry, configs: list[TransportConfig]) -> int:
    """
    Bulk load: start a session for every configured user.

    One user's failure does not stop the others. Returns the number of
    sessions started.
    """
    started = 0
    for config in configs:
        try:
            await registry.start(config.user_id, config)
            started += 1
        except Exception as e:
            logger.error(
                "session_start_failed",
                user_id=config.user_id,
                error_type=type(e).__name__,
                error=str(e),
            )
    logger.info("bulk_load_complete", started=started, configured=len(configs))
    return started
