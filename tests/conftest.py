"""
Shared fixtures and fakes.

No test talks to Telegram, Gemini or Google Sheets: every collaborator
is replaced by an in-process fake defined here.
"""

import asyncio
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional
from uuid import UUID

import pytest

from expense_bot.bot import (
    CommandHandlers,
    CommandRouter,
    MessagingTransport,
    RateLimiter,
    TransportConfig,
    TransportError,
)
from expense_bot.config import RateLimitSettings
from expense_bot.conversation import ConversationEngine, ConversationStore
from expense_bot.models.conversation import PhotoMessage, TextMessage
from expense_bot.models.finance import StructuredReceipt, TransactionRecord
from expense_bot.queries import SummaryBuilder
from expense_bot.services.errors import ErrorKind, ExtractionError
from expense_bot.services.extraction import ReceiptExtractorInterface
from expense_bot.services.storage import (
    AuditStorageInterface,
    InMemoryFinanceStore,
    StorageError,
)


TODAY = date(2025, 8, 20)  # a Wednesday


# =============================================================================
# CLOCKS
# =============================================================================

class FakeMonotonic:
    """Monotonic clock in seconds that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeUtcNow:
    """datetime.utcnow replacement that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2025, 8, 20, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


# =============================================================================
# COLLABORATOR FAKES
# =============================================================================

class RecordingFinanceStore(InMemoryFinanceStore):
    """In-memory store that records commits and can be told to fail."""

    def __init__(self):
        super().__init__()
        self.persist_calls: list[tuple[str, Optional[UUID], TransactionRecord]] = []
        self.project_calls: list[tuple[str, str]] = []
        self.persist_error: Optional[ErrorKind] = None
        self.read_error: Optional[ErrorKind] = None
        self.persist_delay: float = 0.0

    async def persist_transaction(self, user_id, project_id, record):
        self.persist_calls.append((user_id, project_id, record))
        if self.persist_delay:
            await asyncio.sleep(self.persist_delay)
        if self.persist_error is not None:
            raise StorageError("persist failed", self.persist_error)
        return await super().persist_transaction(user_id, project_id, record)

    async def create_project(self, user_id, name, currency):
        self.project_calls.append(("create", name))
        return await super().create_project(user_id, name, currency)

    async def set_project_status(self, user_id, project_id, status):
        self.project_calls.append((status.value, str(project_id)))
        return await super().set_project_status(user_id, project_id, status)

    async def list_projects(self, user_id, status=None):
        if self.read_error is not None:
            raise StorageError("read failed", self.read_error)
        return await super().list_projects(user_id, status)

    async def list_categories(self, user_id, category_type):
        if self.read_error is not None:
            raise StorageError("read failed", self.read_error)
        return await super().list_categories(user_id, category_type)

    async def list_transactions(self, user_id, date_from=None, date_to=None, transaction_type=None):
        if self.read_error is not None:
            raise StorageError("read failed", self.read_error)
        return await super().list_transactions(user_id, date_from, date_to, transaction_type)


class RecordingAuditStorage(AuditStorageInterface):
    """Keeps appended audit events in memory."""

    def __init__(self, fail: bool = False):
        self.events = []
        self.fail = fail

    async def append_event(self, event) -> bool:
        if self.fail:
            raise RuntimeError("sheet unavailable")
        self.events.append(event)
        return True

    def of_type(self, event_type) -> list:
        return [e for e in self.events if e.event_type == event_type]


class FakeExtractor(ReceiptExtractorInterface):
    """Returns a fixed receipt, or raises a fixed error."""

    def __init__(self, receipt: Optional[StructuredReceipt] = None):
        self.receipt = receipt or make_receipt()
        self.error: Optional[ErrorKind] = None
        self.calls: list[bytes] = []

    async def extract_receipt(self, image_bytes: bytes) -> StructuredReceipt:
        self.calls.append(image_bytes)
        if self.error is not None:
            raise ExtractionError(self.error, "extraction failed")
        return self.receipt


class FakeTransport(MessagingTransport):
    """Records replies; tests push events and errors through it."""

    def __init__(self, config: TransportConfig, fail_start: bool = False, start_delay: float = 0.0):
        self.config = config
        self.fail_start = fail_start
        self.start_delay = start_delay
        self.fail_send = False
        self.sent: list[tuple[Optional[int], str]] = []
        self.started = False
        self.stopped = False
        self.running = False
        self.on_event = None
        self.on_error = None

    async def start(self, on_event, on_error) -> None:
        if self.start_delay:
            await asyncio.sleep(self.start_delay)
        if self.fail_start:
            raise TransportError("cannot connect")
        self.on_event = on_event
        self.on_error = on_error
        self.started = True
        # A stop that landed mid-start does not undo the start, as with a real bot
        self.running = True

    async def stop(self) -> None:
        self.stopped = True
        self.running = False

    async def send_text(self, chat_id, text) -> None:
        if self.fail_send:
            raise TransportError("send failed")
        self.sent.append((chat_id, text))

    def emit_text(self, text: str, chat_id: int = 1) -> None:
        self.on_event(TextMessage(user_id=self.config.user_id, text=text, chat_id=chat_id))

    def fail(self, message: str = "connection lost") -> None:
        self.on_error(TransportError(message))

    @property
    def texts(self) -> list[str]:
        return [text for _, text in self.sent]


class FakeTransportFactory:
    """Builds FakeTransports; the next `failures` starts will fail."""

    def __init__(self):
        self.created: list[FakeTransport] = []
        self.failures = 0
        self.start_delay = 0.0

    def __call__(self, config: TransportConfig) -> FakeTransport:
        fail = self.failures > 0
        if fail:
            self.failures -= 1
        transport = FakeTransport(config, fail_start=fail, start_delay=self.start_delay)
        self.created.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.created[-1]

    @property
    def running(self) -> list[FakeTransport]:
        return [t for t in self.created if t.running]


# =============================================================================
# BUILDERS
# =============================================================================

def make_receipt(**overrides) -> StructuredReceipt:
    data = {
        "store_name": "Walmart",
        "receipt_date": date(2025, 8, 18),
        "total": Decimal("25.99"),
        "category": "groceries",
    }
    data.update(overrides)
    return StructuredReceipt(**data)


def make_photo(user_id: str = "u1", media_group_id: Optional[str] = None, image: bytes = b"jpeg") -> PhotoMessage:
    async def fetch_image() -> bytes:
        return image

    return PhotoMessage(
        user_id=user_id,
        file_id="file-1",
        fetch_image=fetch_image,
        media_group_id=media_group_id,
        chat_id=1,
    )


def make_text(text: str, user_id: str = "u1") -> TextMessage:
    return TextMessage(user_id=user_id, text=text, chat_id=1)


def make_config(user_id: str = "u1") -> TransportConfig:
    return TransportConfig(user_id=user_id, bot_token="123:abc", bot_username=f"{user_id}_bot")


class ReplySink:
    """Async reply callable that keeps what it was sent."""

    def __init__(self):
        self.messages: list[str] = []

    async def __call__(self, text: str) -> None:
        self.messages.append(text)

    @property
    def last(self) -> str:
        return self.messages[-1]


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def utcnow() -> FakeUtcNow:
    return FakeUtcNow()


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def finance_store() -> RecordingFinanceStore:
    return RecordingFinanceStore()


@pytest.fixture
def conversation_store(utcnow) -> ConversationStore:
    return ConversationStore(idle_timeout=timedelta(hours=1), clock=utcnow)


@pytest.fixture
def engine(conversation_store, finance_store) -> ConversationEngine:
    return ConversationEngine(
        store=conversation_store,
        finance_store=finance_store,
        collaborator_timeout=1.0,
    )


@pytest.fixture
def extractor() -> FakeExtractor:
    return FakeExtractor()


@pytest.fixture
def rate_limiter(monotonic) -> RateLimiter:
    return RateLimiter(clock=monotonic)


@pytest.fixture
def router(engine, finance_store, extractor, rate_limiter) -> CommandRouter:
    commands = CommandHandlers(
        engine=engine,
        summaries=SummaryBuilder(finance_store, timeout=1.0),
        today=lambda: TODAY,
    )
    return CommandRouter(
        engine=engine,
        commands=commands,
        extractor=extractor,
        rate_limiter=rate_limiter,
        rate_settings=RateLimitSettings(),
        collaborator_timeout=1.0,
    )


@pytest.fixture
def reply() -> ReplySink:
    return ReplySink()
