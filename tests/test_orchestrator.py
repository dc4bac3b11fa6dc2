"""
Tests for component wiring and bulk session loading.
"""

import json

import pytest
from pydantic import ValidationError

from expense_bot import messages
from expense_bot.config import Settings
from expense_bot.models.conversation import BotStatus
from expense_bot.orchestrator import create_app_components, load_transport_configs, start_all

from conftest import FakeExtractor, FakeTransportFactory, RecordingFinanceStore, make_config


@pytest.fixture
def components():
    factory = FakeTransportFactory()
    built = create_app_components(
        settings=Settings(),
        finance_store=RecordingFinanceStore(),
        extractor=FakeExtractor(),
        transport_factory=factory,
    )
    return built, factory


class TestCreateAppComponents:
    """Tests for the component factory."""

    @pytest.mark.asyncio
    async def test_wired_end_to_end(self, components):
        """Test an expense typed through a started session reaches the store."""
        built, factory = components
        await built.registry.start("u1", make_config("u1"))
        transport = factory.last

        for text in ["/create", "2025-01-15", "Walmart", "1", "25.99"]:
            transport.emit_text(text)
        await built.registry._lookup("u1").queue.join()

        assert "Expense Saved Successfully" in transport.texts[-1]
        assert len(built.finance_store.persist_calls) == 1
        await built.registry.shutdown()

    @pytest.mark.asyncio
    async def test_recovery_attached(self, components):
        """Test that transport errors reach the recovery manager."""
        built, factory = components
        await built.registry.start("u1", make_config("u1"))

        factory.last.fail("network down")

        assert built.recovery.is_recovering("u1")
        await built.registry.shutdown()


class TestBulkLoad:
    """Tests for the users file and startup."""

    def test_load_transport_configs(self, tmp_path):
        """Test reading the users file."""
        path = tmp_path / "users.json"
        path.write_text(json.dumps([
            {"user_id": "u1", "bot_token": "1:a", "bot_username": "one_bot"},
            {"user_id": "u2", "bot_token": "2:b"},
        ]))

        configs = load_transport_configs(str(path))

        assert [c.user_id for c in configs] == ["u1", "u2"]
        assert configs[0].bot_token.get_secret_value() == "1:a"

    def test_missing_users_file(self, tmp_path):
        """Test that a missing file is reported to the caller."""
        with pytest.raises(FileNotFoundError):
            load_transport_configs(str(tmp_path / "absent.json"))

    def test_malformed_entry(self, tmp_path):
        """Test that an entry without a token is rejected."""
        path = tmp_path / "users.json"
        path.write_text(json.dumps([{"user_id": "u1"}]))

        with pytest.raises(ValidationError):
            load_transport_configs(str(path))

    @pytest.mark.asyncio
    async def test_start_all_isolates_failures(self, components):
        """Test that one bot failing to start does not block the rest."""
        built, factory = components
        factory.failures = 1

        started = await start_all(built.registry, [make_config("u1"), make_config("u2")])

        assert started == 1
        assert built.registry.get("u1") is None
        assert built.registry.get("u2").status == BotStatus.ACTIVE
        factory.last.emit_text("/help")
        await built.registry._lookup("u2").queue.join()
        assert factory.last.texts == [messages.HELP]
        await built.registry.shutdown()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
