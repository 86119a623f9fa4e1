"""Tests for dependency injection container."""

import pytest
from unittest.mock import MagicMock

from attention_core.container import Container, Provider, get_container, reset_container
from attention_core.repositories.cache import TTLCache
from attention_core.repositories.database import Database
from attention_core.services.event_consumer import EventConsumer


class TestProvider:
    """Tests for Provider class."""

    def test_lazy_initialization(self):
        """Should not call factory until get() is called."""
        call_count = 0

        def factory():
            nonlocal call_count
            call_count += 1
            return TTLCache(10)

        provider = Provider(factory)
        assert call_count == 0

        provider.get()
        provider.get()
        assert call_count == 1

    def test_reset_clears_instance(self):
        provider = Provider(lambda: TTLCache(10))

        instance1 = provider.get()
        provider.reset()

        assert provider.get() is not instance1

    def test_override(self):
        provider = Provider(lambda: TTLCache(10))
        override_instance = TTLCache(5)

        provider.override(override_instance)

        assert provider.get() is override_instance


class TestContainer:
    """Tests for Container class."""

    @pytest.fixture
    def container(self, tmp_path):
        container = Container()
        container.configure_database(
            lambda: Database(f"sqlite+aiosqlite:///{tmp_path / 'c.db'}")
        )
        return container

    def test_services_are_singletons(self, container):
        """Should hand out one consumer so its health flag is shared."""
        consumer = container.event_consumer

        assert isinstance(consumer, EventConsumer)
        assert container.event_consumer is consumer
        assert container.due_date_scanner is container.due_date_scanner

    def test_shares_database_across_services(self, container):
        assert container.attention_store.database is container.database

    def test_configured_slack_sender_is_used(self, container):
        sender = MagicMock()
        container.configure_slack_sender(lambda: sender)

        assert container.slack_sender is sender

    def test_override_service(self, container):
        fake_inbox = MagicMock()
        container.override("inbox_service", fake_inbox)

        assert container.inbox_service is fake_inbox

    def test_reset_drops_services(self, container):
        consumer = container.event_consumer
        container.reset()
        container.configure_database(lambda: MagicMock(spec=Database))

        assert container.event_consumer is not consumer


class TestGlobalContainer:
    def test_reset_container_replaces_instance(self):
        before = get_container()
        reset_container()
        assert get_container() is not before
