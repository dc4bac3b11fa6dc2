"""
Tests for the command router: classification, rate limits, receipt intake
and error containment.
"""

from decimal import Decimal

import pytest

import expense_bot.bot.router as router_module
from expense_bot import messages
from expense_bot.audit import AuditLogger
from expense_bot.bot import CommandHandlers, CommandRouter, parse_command
from expense_bot.bot.transport import TransportError
from expense_bot.models.audit import AuditEventType
from expense_bot.models.conversation import FlowKind
from expense_bot.models.finance import TransactionRecord, TransactionType
from expense_bot.queries import SummaryBuilder
from expense_bot.services.errors import ErrorKind

from conftest import TODAY, RecordingAuditStorage, make_photo, make_text


class RecordingLogger:
    """Stands in for a structlog logger and keeps (level, event) pairs."""

    def __init__(self):
        self.calls: list[tuple[str, str]] = []

    def __getattr__(self, level):
        def log(event, *args, **kwargs):
            self.calls.append((level, event))
        return log

    def events(self, level: str) -> list[str]:
        return [event for lvl, event in self.calls if lvl == level]


async def broken_command(user_id, args):
    raise RuntimeError("boom")


class TestParseCommand:
    """Tests for command tokenising."""

    def test_plain_command(self):
        """Test a command without arguments."""
        assert parse_command("/help") == ("help", [])

    def test_arguments_and_bot_suffix(self):
        """Test that @botname is dropped and arguments are split."""
        assert parse_command("/summary@ExpenseBot jan-mar") == ("summary", ["jan-mar"])

    def test_case_insensitive(self):
        """Test that command names are lowercased."""
        assert parse_command("/TODAY") == ("today", [])

    @pytest.mark.parametrize("text", ["hello", "", "   ", "/", "/@bot"])
    def test_not_a_command(self, text):
        """Test that free text is not a command."""
        assert parse_command(text) is None


class TestTextRouting:
    """Tests for text message dispatch."""

    @pytest.mark.asyncio
    async def test_start_and_help(self, router, reply):
        """Test the static replies."""
        await router.route("u1", make_text("/start"), reply)
        await router.route("u1", make_text("/help"), reply)

        assert reply.messages == [messages.WELCOME, messages.HELP]

    @pytest.mark.asyncio
    async def test_unknown_text(self, router, reply):
        """Test that unmatched text gets the not-understood reply."""
        await router.route("u1", make_text("what did I spend?"), reply)
        await router.route("u1", make_text("/nope"), reply)

        assert reply.messages == [messages.UNKNOWN_COMMAND, messages.UNKNOWN_COMMAND]

    @pytest.mark.asyncio
    async def test_cancel_without_dialog(self, router, reply):
        """Test /cancel when nothing is in progress."""
        await router.route("u1", make_text("/cancel"), reply)

        assert reply.last == messages.NOTHING_TO_CANCEL

    @pytest.mark.asyncio
    async def test_text_goes_to_active_dialog(self, router, engine, finance_store, reply):
        """Test the Walmart example through the router."""
        for text in ["/create", "2025-01-15", "Walmart", "1", "25.99"]:
            await router.route("u1", make_text(text), reply)

        assert "Expense Saved Successfully" in reply.last
        record = finance_store.persist_calls[0][2]
        assert record.description == "Walmart"
        assert record.amount == Decimal("25.99")

    @pytest.mark.asyncio
    async def test_commands_are_dialog_input_mid_flow(self, router, engine, reply):
        """Test that a command typed mid-dialog is treated as step input."""
        await router.route("u1", make_text("/create"), reply)
        await router.route("u1", make_text("/help"), reply)

        assert "Invalid date format" in reply.last
        assert engine.active_flow("u1") == FlowKind.CREATE_EXPENSE

    @pytest.mark.asyncio
    async def test_message_rate_limit(self, router, reply):
        """Test that the 21st message in a minute is refused."""
        for _ in range(21):
            await router.route("u1", make_text("/help"), reply)

        assert reply.messages[:20] == [messages.HELP] * 20
        assert reply.last == messages.RATE_LIMITED

    @pytest.mark.asyncio
    async def test_summary_usage(self, router, reply):
        """Test that a bad or missing period shows usage."""
        await router.route("u1", make_text("/summary"), reply)
        await router.route("u1", make_text("/summary fortnight"), reply)
        await router.route("u1", make_text("/summary aug-jan"), reply)

        assert reply.messages == [messages.SUMMARY_USAGE] * 3

    @pytest.mark.asyncio
    async def test_summary_and_today(self, router, finance_store, reply):
        """Test summaries computed from stored transactions."""
        await finance_store.persist_transaction("u1", None, TransactionRecord(
            type=TransactionType.EXPENSE,
            transaction_date=TODAY,
            description="Walmart",
            category="groceries",
            amount=Decimal("40"),
        ))
        await finance_store.persist_transaction("u1", None, TransactionRecord(
            type=TransactionType.INCOME,
            transaction_date=TODAY,
            description="Salary",
            category="Salary",
            amount=Decimal("100"),
        ))

        await router.route("u1", make_text("/today"), reply)
        assert "Today's Expenses" in reply.last
        assert "$40.00" in reply.last

        await router.route("u1", make_text("/summary month"), reply)
        assert "Net Gain: +$60.00" in reply.last

    @pytest.mark.asyncio
    async def test_list_projects(self, router, finance_store, reply):
        """Test /list with and without projects."""
        await router.route("u1", make_text("/list"), reply)
        assert reply.last == messages.NO_PROJECTS

        await finance_store.create_project("u1", "Japan Trip", "JPY")
        await router.route("u1", make_text("/list"), reply)
        assert "Japan Trip" in reply.last
        assert "JPY" in reply.last

    @pytest.mark.asyncio
    async def test_store_failure_is_answered(self, router, finance_store, reply):
        """Test that a collaborator error becomes a retryable reply."""
        finance_store.read_error = ErrorKind.UNAVAILABLE

        await router.route("u1", make_text("/stats"), reply)

        assert reply.last == messages.SERVICE_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_unexpected_error_is_contained(self, router, reply):
        """Test that a bug in a handler yields a generic reply, not a crash."""
        router._commands["create"] = broken_command

        await router.route("u1", make_text("/create"), reply)

        assert reply.last == messages.GENERIC_ERROR

    @pytest.mark.asyncio
    async def test_repeated_error_traced_once(self, router, reply, monkeypatch):
        """Test that an identical failure gets one stack trace per window."""
        recorder = RecordingLogger()
        monkeypatch.setattr(router_module, "logger", recorder)
        router._commands["create"] = broken_command

        for _ in range(3):
            await router.route("u1", make_text("/create"), reply)

        assert recorder.events("exception") == ["event_failed"]
        assert recorder.events("warning") == ["event_failed_repeated"] * 2
        assert reply.messages == [messages.GENERIC_ERROR] * 3

    @pytest.mark.asyncio
    async def test_errors_reach_audit_log(self, engine, finance_store, extractor, rate_limiter, reply, monkeypatch):
        """Test that service outages and bugs are audited, bugs once per window."""
        storage = RecordingAuditStorage()
        audited = CommandRouter(
            engine=engine,
            commands=CommandHandlers(
                engine=engine,
                summaries=SummaryBuilder(finance_store, timeout=1.0),
                today=lambda: TODAY,
            ),
            extractor=extractor,
            rate_limiter=rate_limiter,
            audit_logger=AuditLogger(storage=storage),
            collaborator_timeout=1.0,
        )
        recorder = RecordingLogger()
        monkeypatch.setattr(router_module, "logger", recorder)
        audited._commands["create"] = broken_command
        finance_store.read_error = ErrorKind.UNAVAILABLE

        await audited.route("u1", make_text("/stats"), reply)
        await audited.route("u1", make_text("/create"), reply)
        await audited.route("u1", make_text("/create"), reply)

        assert reply.messages == [
            messages.SERVICE_UNAVAILABLE,
            messages.GENERIC_ERROR,
            messages.GENERIC_ERROR,
        ]
        services = storage.of_type(AuditEventType.EXTERNAL_SERVICE_ERROR)
        assert [e.details["service"] for e in services] == ["finance_store"]
        assert len(storage.of_type(AuditEventType.SYSTEM_ERROR)) == 1
        assert recorder.events("exception") == ["event_failed"]

    @pytest.mark.asyncio
    async def test_reply_failure_propagates(self, router):
        """Test that transport errors are left to the session worker."""
        async def failing_reply(text):
            raise TransportError("send failed")

        with pytest.raises(TransportError):
            await router.route("u1", make_text("/help"), failing_reply)


class TestReceiptIntake:
    """Tests for photo handling."""

    @pytest.mark.asyncio
    async def test_receipt_without_projects(self, router, extractor, finance_store, reply):
        """Test photo -> extraction -> immediate general expense."""
        await router.route("u1", make_photo(image=b"receipt"), reply)

        assert reply.messages[0] == messages.PROCESSING_RECEIPT
        assert "Expense Saved Successfully" in reply.last
        assert extractor.calls == [b"receipt"]
        assert finance_store.persist_calls[0][1] is None

    @pytest.mark.asyncio
    async def test_photo_interval(self, router, extractor, monotonic, reply):
        """Test that a second photo within 10s is refused without extraction."""
        await router.route("u1", make_photo(), reply)
        monotonic.advance(5)
        await router.route("u1", make_photo(), reply)

        assert reply.last == messages.PHOTO_TOO_SOON
        assert len(extractor.calls) == 1

        monotonic.advance(6)
        await router.route("u1", make_photo(), reply)
        assert len(extractor.calls) == 2

    @pytest.mark.asyncio
    async def test_photo_rate_limit(self, router, extractor, monotonic, reply):
        """Test that a sixth photo within a minute is refused."""
        for _ in range(6):
            await router.route("u1", make_photo(), reply)
            monotonic.advance(10)

        assert reply.last == messages.RATE_LIMITED
        assert len(extractor.calls) == 5

    @pytest.mark.asyncio
    async def test_media_group_rejected_once(self, router, extractor, reply):
        """Test that an album is refused with a single reply."""
        for _ in range(3):
            await router.route("u1", make_photo(media_group_id="album-1"), reply)

        assert reply.messages == [messages.MEDIA_GROUP_REJECTED]
        assert extractor.calls == []

    @pytest.mark.asyncio
    async def test_photo_during_dialog(self, router, engine, extractor, reply):
        """Test that a photo mid-dialog is refused and the dialog survives."""
        await router.route("u1", make_text("/new"), reply)

        await router.route("u1", make_photo(), reply)

        assert reply.last == messages.FINISH_CONVERSATION_FIRST
        assert extractor.calls == []
        assert engine.active_flow("u1") == FlowKind.CREATE_PROJECT

    @pytest.mark.asyncio
    async def test_extraction_failure(self, router, extractor, finance_store, reply):
        """Test that an extraction error is answered and nothing is saved."""
        extractor.error = ErrorKind.INVALID_RESPONSE

        await router.route("u1", make_photo(), reply)

        assert reply.last == messages.extraction_failed(ErrorKind.INVALID_RESPONSE)
        assert finance_store.persist_calls == []

    @pytest.mark.asyncio
    async def test_receipt_project_selection(self, router, engine, finance_store, reply):
        """Test that a receipt with projects opens the selection dialog."""
        await finance_store.create_project("u1", "Trip", "EUR")

        await router.route("u1", make_photo(), reply)
        assert engine.active_flow("u1") == FlowKind.PROJECT_SELECTION

        await router.route("u1", make_text("2"), reply)
        assert "Trip" in reply.last
        assert engine.active_flow("u1") is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
