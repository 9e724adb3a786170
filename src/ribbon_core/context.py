"""
Application context.

This module provides:
- AppContext: Owns every service instance and wires them together

Services are constructed explicitly and passed to each other; nothing is a
module-level singleton. Tests build an AppContext from in-memory parts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

import asyncpg
import httpx

from .api_client import ApiClient, ApiClientConfig
from .backends import InMemoryKeyValueStore, KeyValueBackend, PostgresKeyValueStore
from .config import Settings
from .envelope import EncryptedValueCodec
from .error_logger import ErrorLogger, ErrorReporter, PostgresErrorReporter
from .key_manager import KeyManager
from .keys import SensitivityClassifier
from .logging_setup import configure_logging
from .recipients import RecipientService
from .secure_store import SecureKeyStore, detect_secure_store
from .storage import StorageService

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Container for the core services."""

    settings: Settings
    error_logger: ErrorLogger
    key_manager: KeyManager
    codec: EncryptedValueCodec
    storage: StorageService
    api_client: ApiClient
    recipients: RecipientService
    pool: Optional[asyncpg.Pool] = field(default=None, repr=False)

    @classmethod
    async def create(
        cls,
        settings: Optional[Settings] = None,
        backend: Optional[KeyValueBackend] = None,
        secure_store: Optional[SecureKeyStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        reporter: Optional[ErrorReporter] = None,
        classifier: Optional[SensitivityClassifier] = None,
        detect_keychain: bool = True,
        user_id: Optional[str] = None,
        configure_logs: bool = True,
    ) -> AppContext:
        """
        Build and wire all services.

        Capability detection runs once here: without an explicit
        ``secure_store`` the platform keychain is checked, and without an
        explicit ``backend`` PostgreSQL is used when ``database_url`` is set,
        falling back to the in-memory store otherwise.

        Args:
            settings: Settings (defaults to Settings.from_env())
            backend: Key-value backend override
            secure_store: Secure key store override
            transport: httpx transport for the API client
            reporter: Error reporter override
            classifier: Sensitivity classifier override
            detect_keychain: Probe the platform keychain when no store is given
            user_id: Identity recorded in recipient audit logs
            configure_logs: Apply ``settings.log_level`` to the package logger

        Returns:
            AppContext ready for use; storage initializes on first access
        """
        settings = settings or Settings.from_env()
        if configure_logs:
            configure_logging(settings.log_level)

        pool: Optional[asyncpg.Pool] = None
        if backend is None and settings.database_url:
            pool = await asyncpg.create_pool(settings.database_url)
            backend = PostgresKeyValueStore(pool, settings.storage_namespace)
            if reporter is None:
                reporter = PostgresErrorReporter(pool)
            logger.info("Using PostgreSQL storage (namespace=%s)", settings.storage_namespace)
        elif backend is None:
            backend = InMemoryKeyValueStore()
            logger.warning("No database configured, using in-memory storage")

        if secure_store is None and detect_keychain:
            secure_store = detect_secure_store(settings.keyring_service)

        error_logger = ErrorLogger(
            capacity=settings.error_capacity,
            reporter=reporter,
            report_interval=settings.error_report_interval,
            platform=settings.platform,
            app_version=settings.app_version,
        )
        if reporter is not None:
            error_logger.start_periodic_reporting()

        classifier = classifier or SensitivityClassifier()
        key_manager = KeyManager(secure_store)
        codec = EncryptedValueCodec(
            classifier, key_manager, error_logger, strict=settings.strict_encryption
        )
        storage = StorageService(backend, codec, classifier, error_logger)
        api_client = ApiClient(
            ApiClientConfig(
                base_url=settings.api_base_url,
                timeout=settings.api_timeout,
                max_retries=settings.api_max_retries,
                retry_delay=settings.api_retry_delay,
            ),
            transport=transport,
            error_logger=error_logger,
        )
        recipients = RecipientService(storage, error_logger, user_id=user_id)

        return cls(
            settings=settings,
            error_logger=error_logger,
            key_manager=key_manager,
            codec=codec,
            storage=storage,
            api_client=api_client,
            recipients=recipients,
            pool=pool,
        )

    async def aclose(self) -> None:
        """Release network clients, flush error reports and close the pool."""
        await self.storage.aclose()
        await self.api_client.aclose()
        await self.error_logger.aclose()
        if self.pool is not None:
            await self.pool.close()

    async def __aenter__(self) -> AppContext:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
