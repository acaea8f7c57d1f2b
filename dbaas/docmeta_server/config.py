"""
Configuration management for DocMeta Server.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Production deployments MUST set an explicit MONGO_URI
    - Credentials in the Mongo URI are never logged

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Deprecate settings by logging warnings but continuing to support them
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class StoreBackend(Enum):
    """Supported document-store backends."""

    MONGO = "mongo"
    MEMORY = "memory"


@dataclass(frozen=True)
class MongoConfig:
    """MongoDB connection configuration.

    Attributes:
        uri: Connection string (may embed credentials)
        app_name: Application name reported to the server
        server_selection_timeout_ms: How long to wait for a usable server
        connect_timeout_ms: Socket connect timeout
        max_pool_size: Maximum connections in the client pool
    """

    uri: str = "mongodb://localhost:27017"
    app_name: str = "docmeta"
    server_selection_timeout_ms: int = 5000
    connect_timeout_ms: int = 10000
    max_pool_size: int = 100

    @classmethod
    def from_env(cls) -> MongoConfig:
        """Load configuration from environment variables."""
        return cls(
            uri=os.getenv("MONGO_URI", "mongodb://localhost:27017"),
            app_name=os.getenv("MONGO_APP_NAME", "docmeta"),
            server_selection_timeout_ms=int(
                os.getenv("MONGO_SERVER_SELECTION_TIMEOUT_MS", "5000")
            ),
            connect_timeout_ms=int(os.getenv("MONGO_CONNECT_TIMEOUT_MS", "10000")),
            max_pool_size=int(os.getenv("MONGO_MAX_POOL_SIZE", "100")),
        )


@dataclass(frozen=True)
class MetadataConfig:
    """Metadata manager configuration.

    Attributes:
        restore_attempts: Attempts at writing back a sentinel removed by a
            delete whose ETag did not match
        restore_retry_delay_ms: Delay between restore attempts
        create_indexes: Whether to provision default indexes when a
            collection's sentinel is first created
    """

    restore_attempts: int = 3
    restore_retry_delay_ms: int = 100
    create_indexes: bool = True

    @classmethod
    def from_env(cls) -> MetadataConfig:
        """Load configuration from environment variables."""
        return cls(
            restore_attempts=int(os.getenv("METADATA_RESTORE_ATTEMPTS", "3")),
            restore_retry_delay_ms=int(os.getenv("METADATA_RESTORE_RETRY_DELAY_MS", "100")),
            create_indexes=_env_bool("METADATA_CREATE_INDEXES", "true"),
        )


@dataclass(frozen=True)
class ListingConfig:
    """Data listing configuration.

    Attributes:
        default_page_size: Page size used when the caller gives none
        max_page_size: Largest page size a caller may request
    """

    default_page_size: int = 100
    max_page_size: int = 1000

    @classmethod
    def from_env(cls) -> ListingConfig:
        """Load configuration from environment variables."""
        return cls(
            default_page_size=int(os.getenv("LISTING_DEFAULT_PAGE_SIZE", "100")),
            max_page_size=int(os.getenv("LISTING_MAX_PAGE_SIZE", "1000")),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Observability and logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServerConfig:
    """Complete server configuration.

    This aggregates all configuration sections and provides validation.

    Attributes:
        store_backend: Which document-store backend to use
        mongo: MongoDB configuration (if store_backend is MONGO)
        metadata: Metadata manager configuration
        listing: Data listing configuration
        observability: Observability configuration
    """

    store_backend: StoreBackend = StoreBackend.MONGO
    mongo: MongoConfig = field(default_factory=MongoConfig)
    metadata: MetadataConfig = field(default_factory=MetadataConfig)
    listing: ListingConfig = field(default_factory=ListingConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        backend_str = os.getenv("STORE_BACKEND", "mongo").lower()
        try:
            store_backend = StoreBackend(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid STORE_BACKEND '{backend_str}'. Must be one of: mongo, memory"
            )

        config = cls(
            store_backend=store_backend,
            mongo=MongoConfig.from_env(),
            metadata=MetadataConfig.from_env(),
            listing=ListingConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.store_backend == StoreBackend.MONGO and not self.mongo.uri:
            raise ValueError("MONGO_URI is required when STORE_BACKEND=mongo")

        if self.metadata.restore_attempts < 1:
            raise ValueError("METADATA_RESTORE_ATTEMPTS must be at least 1")
        if self.metadata.restore_retry_delay_ms < 0:
            raise ValueError("METADATA_RESTORE_RETRY_DELAY_MS must not be negative")

        if self.listing.max_page_size < 1:
            raise ValueError("LISTING_MAX_PAGE_SIZE must be at least 1")
        if not 1 <= self.listing.default_page_size <= self.listing.max_page_size:
            raise ValueError(
                "LISTING_DEFAULT_PAGE_SIZE must be between 1 and LISTING_MAX_PAGE_SIZE"
            )

        if self.observability.log_format not in ("json", "text"):
            raise ValueError("LOG_FORMAT must be one of: json, text")

        if self.store_backend == StoreBackend.MEMORY:
            logger.warning("Using in-memory store backend; data is lost on exit")

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        from .store.mongo import redact_uri

        logger.info(
            "Server configuration loaded",
            extra={
                "store_backend": self.store_backend.value,
                "mongo_uri": redact_uri(self.mongo.uri)
                if self.store_backend == StoreBackend.MONGO
                else None,
                "restore_attempts": self.metadata.restore_attempts,
                "create_indexes": self.metadata.create_indexes,
                "max_page_size": self.listing.max_page_size,
                "log_level": self.observability.log_level,
            },
        )
