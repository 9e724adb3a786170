"""
Platform key-value stores.

This module provides:
- KeyValueBackend: Abstract protocol for string key-value backends
- InMemoryKeyValueStore: In-memory implementation (tests and fallback)
- PostgresKeyValueStore: PostgreSQL-backed implementation on ``ribbon_kv``
- BackendError: Low-level backend failure, wrapped by StorageService

Backends know nothing about JSON, encryption or declared keys; they move
opaque strings.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Mapping, Optional

import asyncpg


class BackendError(Exception):
    """Raised by a backend when the underlying store fails."""

    pass


class KeyValueBackend(ABC):
    """
    Abstract string key-value store.

    All methods are async to support both in-memory and database backends.
    """

    @abstractmethod
    async def get_item(self, key: str) -> Optional[str]:
        """Get a raw value, or None if absent."""
        ...

    @abstractmethod
    async def set_item(self, key: str, value: str) -> None:
        """Store a raw value."""
        ...

    @abstractmethod
    async def remove_item(self, key: str) -> None:
        """Remove a key. Missing keys are ignored."""
        ...

    @abstractmethod
    async def multi_get(self, keys: Iterable[str]) -> Dict[str, Optional[str]]:
        """Get several raw values; absent keys map to None."""
        ...

    @abstractmethod
    async def multi_set(self, items: Mapping[str, str]) -> None:
        """Store several raw values."""
        ...

    @abstractmethod
    async def multi_remove(self, keys: Iterable[str]) -> None:
        """Remove several keys."""
        ...

    @abstractmethod
    async def get_all_keys(self) -> List[str]:
        """List every key held by the backend."""
        ...

    @abstractmethod
    async def clear(self) -> None:
        """Remove every key held by the backend."""
        ...


class InMemoryKeyValueStore(KeyValueBackend):
    """
    In-memory key-value store.

    Uses asyncio.Lock for safe concurrent access.
    """

    def __init__(self, initial: Optional[Mapping[str, str]] = None) -> None:
        self._items: Dict[str, str] = dict(initial or {})
        self._lock = asyncio.Lock()

    async def get_item(self, key: str) -> Optional[str]:
        async with self._lock:
            return self._items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        async with self._lock:
            self._items[key] = value

    async def remove_item(self, key: str) -> None:
        async with self._lock:
            self._items.pop(key, None)

    async def multi_get(self, keys: Iterable[str]) -> Dict[str, Optional[str]]:
        async with self._lock:
            return {key: self._items.get(key) for key in keys}

    async def multi_set(self, items: Mapping[str, str]) -> None:
        async with self._lock:
            self._items.update(items)

    async def multi_remove(self, keys: Iterable[str]) -> None:
        async with self._lock:
            for key in keys:
                self._items.pop(key, None)

    async def get_all_keys(self) -> List[str]:
        async with self._lock:
            return list(self._items.keys())

    async def clear(self) -> None:
        async with self._lock:
            self._items.clear()


class PostgresKeyValueStore(KeyValueBackend):
    """
    PostgreSQL key-value store.

    Rows live in ``ribbon_kv`` (see ``sql/schema.sql``), partitioned by
    ``namespace`` so several installations can share one table.
    """

    def __init__(self, pool: asyncpg.Pool, namespace: str = "default") -> None:
        """
        Initialize PostgreSQL key-value store.

        Args:
            pool: asyncpg connection pool
            namespace: Partition of ``ribbon_kv`` owned by this store
        """
        self._pool = pool
        self._namespace = namespace

    @property
    def pool(self) -> asyncpg.Pool:
        """Get the connection pool."""
        return self._pool

    @property
    def namespace(self) -> str:
        return self._namespace

    async def get_item(self, key: str) -> Optional[str]:
        query = "SELECT value FROM ribbon_kv WHERE namespace = $1 AND key = $2"
        try:
            return await self._pool.fetchval(query, self._namespace, key)
        except Exception as e:
            raise BackendError(f"Failed to get {key}: {e}") from e

    async def set_item(self, key: str, value: str) -> None:
        query = """
            INSERT INTO ribbon_kv (namespace, key, value, updated_at)
            VALUES ($1, $2, $3, NOW())
            ON CONFLICT (namespace, key)
            DO UPDATE SET value = EXCLUDED.value, updated_at = NOW()
        """
        try:
            await self._pool.execute(query, self._namespace, key, value)
        except Exception as e:
            raise BackendError(f"Failed to set {key}: {e}") from e

    async def remove_item(self, key: str) -> None:
        query = "DELETE FROM ribbon_kv WHERE namespace = $1 AND key = $2"
        try:
            await self._pool.execute(query, self._namespace, key)
        except Exception as e:
            raise BackendError(f"Failed to remove {key}: {e}") from e

    async def multi_get(self, keys: Iterable[str]) -> Dict[str, Optional[str]]:
        wanted = list(keys)
        query = "SELECT key, value FROM ribbon_kv WHERE namespace = $1 AND key = ANY($2::text[])"
        try:
            rows = await self._pool.fetch(query, self._namespace, wanted)
        except Exception as e:
            raise BackendError(f"Failed to get keys: {e}") from e
        found = {row["key"]: row["value"] for row in rows}
        return {key: found.get(key) for key in wanted}

    async def multi_set(self, items: Mapping[str, str]) -> None:
        query = """
            INSERT INTO ribbon_kv (namespace, key, value, updated_at)
            VALUES ($1, $2, $3, NOW())
            ON CONFLICT (namespace, key)
            DO UPDATE SET value = EXCLUDED.value, updated_at = NOW()
        """
        try:
            async with self._pool.acquire() as conn:
                async with conn.transaction():
                    await conn.executemany(
                        query,
                        [(self._namespace, key, value) for key, value in items.items()],
                    )
        except Exception as e:
            raise BackendError(f"Failed to set keys: {e}") from e

    async def multi_remove(self, keys: Iterable[str]) -> None:
        query = "DELETE FROM ribbon_kv WHERE namespace = $1 AND key = ANY($2::text[])"
        try:
            await self._pool.execute(query, self._namespace, list(keys))
        except Exception as e:
            raise BackendError(f"Failed to remove keys: {e}") from e

    async def get_all_keys(self) -> List[str]:
        query = "SELECT key FROM ribbon_kv WHERE namespace = $1 ORDER BY key"
        try:
            rows = await self._pool.fetch(query, self._namespace)
        except Exception as e:
            raise BackendError(f"Failed to list keys: {e}") from e
        return [row["key"] for row in rows]

    async def clear(self) -> None:
        query = "DELETE FROM ribbon_kv WHERE namespace = $1"
        try:
            await self._pool.execute(query, self._namespace)
        except Exception as e:
            raise BackendError(f"Failed to clear namespace {self._namespace}: {e}") from e
