"""
Integration tests for the Server lifecycle with the in-memory backend.
"""

import asyncio
import logging

import pytest

from dbaas.docmeta_server.config import ObservabilityConfig, ServerConfig, StoreBackend
from dbaas.docmeta_server.main import Server, setup_logging
from dbaas.docmeta_server.meta.outcomes import MetadataOutcome
from dbaas.docmeta_server.store import CollectionRef, InMemoryDocumentStore, StoreConnectionError


@pytest.fixture
def config():
    return ServerConfig(store_backend=StoreBackend.MEMORY)


class TestServerLifecycle:
    """Tests for Server.start and Server.stop."""

    @pytest.mark.asyncio
    async def test_start_stop(self, config):
        """Start wires components around one store; stop releases them."""
        server = Server(config)

        await server.start(wait=False)

        assert server.is_running
        assert isinstance(server.store, InMemoryDocumentStore)
        assert server.metadata.store is server.store
        assert server.lister.store is server.store

        await server.stop()

        assert not server.is_running
        assert server.store is None
        assert server.metadata is None

    @pytest.mark.asyncio
    async def test_operations_through_server(self, config):
        """Components built by the server serve requests."""
        server = Server(config)
        await server.start(wait=False)
        ref = CollectionRef("shop", "orders")

        try:
            result = await server.metadata.upsert_sentinel(ref, {"description": "Orders"})
            assert result.outcome == MetadataOutcome.CREATED
            assert await server.lister.collection_size(ref) == 0
        finally:
            await server.stop()

    @pytest.mark.asyncio
    async def test_start_twice_is_noop(self, config):
        """A second start keeps the existing store."""
        server = Server(config)
        await server.start(wait=False)
        store = server.store

        await server.start(wait=False)

        assert server.store is store
        await server.stop()

    @pytest.mark.asyncio
    async def test_wait_until_shutdown(self, config):
        """start() blocks until shutdown is requested."""
        server = Server(config)
        task = asyncio.create_task(server.start())

        while not server.is_running:
            await asyncio.sleep(0)
        assert not task.done()

        server.request_shutdown()
        await asyncio.wait_for(task, timeout=1)
        await server.stop()

    @pytest.mark.asyncio
    async def test_failed_connect_cleans_up(self, config, monkeypatch):
        """A store that cannot connect leaves the server stopped."""

        async def refuse(self):
            raise StoreConnectionError("refused")

        monkeypatch.setattr(InMemoryDocumentStore, "connect", refuse)
        server = Server(config)

        with pytest.raises(StoreConnectionError):
            await server.start(wait=False)

        assert not server.is_running
        assert server.store is None

    @pytest.mark.asyncio
    async def test_stop_without_start(self, config):
        """Stopping a server that never started is harmless."""
        await Server(config).stop()


class TestSetupLogging:
    """Tests for setup_logging."""

    @pytest.fixture(autouse=True)
    def restore_root_logger(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        root.handlers = handlers
        root.setLevel(level)

    def test_json_format(self):
        """JSON format installs the JSON formatter."""
        import json_log_formatter

        setup_logging(ServerConfig(observability=ObservabilityConfig(log_level="DEBUG")))

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert isinstance(root.handlers[0].formatter, json_log_formatter.JSONFormatter)
        assert logging.getLogger("pymongo").level == logging.WARNING

    def test_text_format(self):
        """Text format uses a plain formatter."""
        import json_log_formatter

        setup_logging(ServerConfig(observability=ObservabilityConfig(log_format="text")))

        formatter = logging.getLogger().handlers[0].formatter
        assert not isinstance(formatter, json_log_formatter.JSONFormatter)
