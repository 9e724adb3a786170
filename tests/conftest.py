"""
Pytest configuration and fixtures for ribbon_core tests.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import AsyncGenerator

import asyncpg
import pytest
from dotenv import load_dotenv

from ribbon_core import (
    EncryptedValueCodec,
    ErrorLogger,
    InMemoryKeyValueStore,
    InMemorySecureStore,
    KeyManager,
    PostgresKeyValueStore,
    SensitivityClassifier,
    StorageService,
)

TEST_NAMESPACE = "pytest"


@pytest.fixture
def memory_backend() -> InMemoryKeyValueStore:
    """Create an in-memory key-value store for testing."""
    return InMemoryKeyValueStore()


@pytest.fixture
def secure_store() -> InMemorySecureStore:
    """Create an in-memory secure key store for testing."""
    return InMemorySecureStore()


@pytest.fixture
def classifier() -> SensitivityClassifier:
    return SensitivityClassifier()


@pytest.fixture
def error_logger() -> ErrorLogger:
    return ErrorLogger()


@pytest.fixture
def key_manager(secure_store: InMemorySecureStore) -> KeyManager:
    return KeyManager(secure_store)


@pytest.fixture
def codec(
    classifier: SensitivityClassifier,
    key_manager: KeyManager,
    error_logger: ErrorLogger,
) -> EncryptedValueCodec:
    return EncryptedValueCodec(classifier, key_manager, error_logger)


@pytest.fixture
def storage(
    memory_backend: InMemoryKeyValueStore,
    codec: EncryptedValueCodec,
    classifier: SensitivityClassifier,
    error_logger: ErrorLogger,
) -> StorageService:
    """Create a storage service over the in-memory backend."""
    return StorageService(memory_backend, codec, classifier, error_logger)


@pytest.fixture
async def pg_pool() -> AsyncGenerator[asyncpg.Pool, None]:
    """Create a PostgreSQL connection pool for testing."""
    # Load environment from project root
    env_path = Path(__file__).parent.parent / ".env"
    load_dotenv(env_path)

    database_url = os.environ.get("RIBBON_DATABASE_URL")
    if not database_url:
        pytest.skip("RIBBON_DATABASE_URL not set, skipping PostgreSQL tests")

    pool = await asyncpg.create_pool(database_url)
    if pool is None:
        pytest.skip("Failed to create PostgreSQL connection pool")

    schema = (Path(__file__).parent.parent / "sql" / "schema.sql").read_text()
    await pool.execute(schema)
    await pool.execute("DELETE FROM ribbon_kv WHERE namespace = $1", TEST_NAMESPACE)

    yield pool

    await pool.close()


@pytest.fixture
async def postgres_backend(pg_pool: asyncpg.Pool) -> PostgresKeyValueStore:
    """Create a PostgreSQL key-value store for testing."""
    return PostgresKeyValueStore(pg_pool, TEST_NAMESPACE)
