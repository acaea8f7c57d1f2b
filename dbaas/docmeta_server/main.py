"""
DocMeta Server - Main entry point.

This module starts the DocMeta service process:
- Connects the single document-store handle
- Builds the metadata manager and data lister around it
- Waits for a shutdown signal, then closes the store

The HTTP layer that exposes these operations is a separate concern and
receives the Server's manager and lister.

Usage:
    python -m dbaas.docmeta_server.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - Exactly one store client per process
    - Components receive the store handle explicitly, never via globals
    - Graceful shutdown waits for detached sentinel corrections

How to change safely:
    - Add new components with enable/disable flags
    - Test shutdown sequence thoroughly
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

import json_log_formatter

from .config import ServerConfig
from .meta import DataLister, MetadataManager
from .store import DocumentStore, create_document_store

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("pymongo").setLevel(logging.WARNING)


class Server:
    """DocMeta Server orchestrator.

    Owns the lifecycle of the document store and the components built on
    it.

    Attributes:
        config: Server configuration
        store: Document store handle
        metadata: Metadata manager
        lister: Data lister

    Example:
        >>> server = Server()
        >>> await server.start()
        >>> # Server is running
        >>> await server.stop()
    """

    def __init__(self, config: ServerConfig | None = None) -> None:
        """Initialize the server.

        Args:
            config: Optional server configuration (loaded from env if not provided)
        """
        self.config = config or ServerConfig.from_env()
        self._running = False
        self._shutdown_event = asyncio.Event()

        # Components (initialized in start())
        self.store: DocumentStore | None = None
        self.metadata: MetadataManager | None = None
        self.lister: DataLister | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self, wait: bool = True) -> None:
        """Start the server and all components.

        Args:
            wait: Block until request_shutdown() is called
        """
        if self._running:
            logger.warning("Server already running")
            return

        logger.info("Starting DocMeta server")
        self.config.log_config()

        try:
            self.store = create_document_store(self.config)
            await self.store.connect()
            logger.info("Document store connected")

            self.metadata = MetadataManager(self.store, self.config.metadata)
            self.lister = DataLister(self.store, self.config.listing)

            self._running = True
            logger.info("DocMeta server started successfully")

            if wait:
                await self._shutdown_event.wait()

        except Exception as e:
            logger.error(f"Server startup failed: {e}", exc_info=True)
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop the server gracefully."""
        if self.store is None:
            return

        logger.info("Stopping DocMeta server")

        if self.metadata:
            await self.metadata.wait_for_background()

        await self.store.close()
        self.store = None
        self.metadata = None
        self.lister = None

        self._running = False
        logger.info("DocMeta server stopped")

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def main() -> None:
    """Main entry point."""
    # Load configuration
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    # Setup logging
    setup_logging(config)

    # Create server
    server = Server(config)

    # Setup signal handlers
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        server.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    # Run server
    try:
        loop.run_until_complete(server.start())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(server.stop())
        loop.close()


if __name__ == "__main__":
    main()
