"""Tests for the raw key-value backends."""

from __future__ import annotations

import pytest

from ribbon_core import (
    EncryptedValueCodec,
    ErrorLogger,
    InMemoryKeyValueStore,
    KeyValueBackend,
    PostgresKeyValueStore,
    SensitivityClassifier,
    StorageKeys,
    StorageService,
)


class BackendContract:
    """Behaviour shared by every KeyValueBackend."""

    async def test_get_set_remove(self, backend: KeyValueBackend) -> None:
        assert await backend.get_item("a") is None

        await backend.set_item("a", "1")
        await backend.set_item("a", "2")
        assert await backend.get_item("a") == "2"

        await backend.remove_item("a")
        await backend.remove_item("a")
        assert await backend.get_item("a") is None

    async def test_multi_operations(self, backend: KeyValueBackend) -> None:
        await backend.multi_set({"a": "1", "b": "2"})

        assert await backend.multi_get(["a", "b", "c"]) == {"a": "1", "b": "2", "c": None}
        assert sorted(await backend.get_all_keys()) == ["a", "b"]

        await backend.multi_remove(["a", "c"])
        assert await backend.get_all_keys() == ["b"]

    async def test_clear(self, backend: KeyValueBackend) -> None:
        await backend.multi_set({"a": "1", "b": "2"})

        await backend.clear()

        assert await backend.get_all_keys() == []

    async def test_storage_round_trip(
        self,
        backend: KeyValueBackend,
        codec: EncryptedValueCodec,
        classifier: SensitivityClassifier,
        error_logger: ErrorLogger,
    ) -> None:
        storage = StorageService(backend, codec, classifier, error_logger)

        await storage.set(StorageKeys.GIFTS, [{"id": "1", "name": "Mug"}])

        assert await storage.get(StorageKeys.GIFTS) == [{"id": "1", "name": "Mug"}]
        assert "Mug" not in await backend.get_item(StorageKeys.GIFTS)


class TestInMemoryKeyValueStore(BackendContract):
    @pytest.fixture
    def backend(self, memory_backend: InMemoryKeyValueStore) -> KeyValueBackend:
        return memory_backend

    async def test_initial_items(self) -> None:
        backend = InMemoryKeyValueStore({"a": "1"})
        assert await backend.get_item("a") == "1"


class TestPostgresKeyValueStore(BackendContract):
    @pytest.fixture
    def backend(self, postgres_backend: PostgresKeyValueStore) -> KeyValueBackend:
        return postgres_backend

    async def test_namespaces_are_isolated(self, postgres_backend: PostgresKeyValueStore) -> None:
        other = PostgresKeyValueStore(postgres_backend.pool, "pytest-other")
        await other.clear()

        await postgres_backend.set_item("a", "mine")
        await other.set_item("a", "theirs")

        assert await postgres_backend.get_item("a") == "mine"
        await other.clear()
        assert await postgres_backend.get_item("a") == "mine"
