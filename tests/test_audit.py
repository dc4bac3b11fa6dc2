"""
Tests for audit logging and error deduplication.
"""

import pytest

from expense_bot.audit import AuditLogger, ErrorDeduplicator
from expense_bot.models.audit import AuditEventBuilder, AuditEventType

from conftest import FakeMonotonic, RecordingAuditStorage


class TestErrorDeduplicator:
    """Tests for the repeated-error window."""

    def test_same_error_recorded_once_per_window(self):
        """Test that repeats inside the window are suppressed."""
        clock = FakeMonotonic()
        dedup = ErrorDeduplicator(window_seconds=60, clock=clock)

        assert dedup.should_record("u1", "ValueError", "bad input")
        assert not dedup.should_record("u1", "ValueError", "bad input")

        clock.advance(60)
        assert dedup.should_record("u1", "ValueError", "bad input")

    def test_signature_uses_message_prefix(self):
        """Test that messages differing only after 100 chars are the same error."""
        dedup = ErrorDeduplicator(clock=FakeMonotonic())
        prefix = "x" * 100

        assert dedup.should_record("u1", "E", prefix + "first")
        assert not dedup.should_record("u1", "E", prefix + "second")

    def test_users_and_types_are_distinct(self):
        """Test that different users or error types are not merged."""
        dedup = ErrorDeduplicator(clock=FakeMonotonic())

        assert dedup.should_record("u1", "E", "boom")
        assert dedup.should_record("u2", "E", "boom")
        assert dedup.should_record("u1", "F", "boom")

    def test_cache_is_pruned(self):
        """Test that old signatures are dropped once the cache is full."""
        clock = FakeMonotonic()
        dedup = ErrorDeduplicator(window_seconds=1, max_entries=3, clock=clock)
        for i in range(3):
            dedup.should_record(f"u{i}", "E", "boom")

        clock.advance(5)
        dedup.should_record("late", "E", "boom")

        assert len(dedup) == 1


class TestAuditLogger:
    """Tests for persistence and suppression."""

    @pytest.mark.asyncio
    async def test_events_are_persisted(self):
        """Test that lifecycle events reach the storage backend."""
        storage = RecordingAuditStorage()
        audit = AuditLogger(storage=storage)

        await audit.log_session_started("u1", 1)
        await audit.log_session_inactive("u1", 5)

        assert [e.event_type for e in storage.events] == [
            AuditEventType.SESSION_STARTED,
            AuditEventType.SESSION_INACTIVE,
        ]

    @pytest.mark.asyncio
    async def test_duplicate_errors_suppressed(self):
        """Test that log_error reports whether it recorded."""
        storage = RecordingAuditStorage()
        audit = AuditLogger(storage=storage, dedup_window_seconds=60)

        assert await audit.log_error("RuntimeError", "boom", user_id="u1") is True
        assert await audit.log_error("RuntimeError", "boom", user_id="u1") is False
        assert len(storage.events) == 1

    @pytest.mark.asyncio
    async def test_storage_failure_does_not_raise(self):
        """Test that a broken audit backend never breaks the caller."""
        audit = AuditLogger(storage=RecordingAuditStorage(fail=True))

        event_logged = await audit.log(AuditEventBuilder.session_stopped("u1", "stopped"))

        assert event_logged is False


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
