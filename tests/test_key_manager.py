"""Tests for the per-install key manager."""

from __future__ import annotations

import asyncio
from typing import Optional

import pytest

from ribbon_core import (
    CryptoError,
    InMemorySecureStore,
    KeyManager,
    KeyStoreUnavailableError,
    SecureKey,
    SecureKeyStore,
)
from ribbon_core.key_manager import ENCRYPTION_KEY_ID


class BrokenSecureStore(SecureKeyStore):
    async def get_item(self, key: str) -> Optional[str]:
        raise RuntimeError("keychain locked")

    async def set_item(self, key: str, value: str) -> None:
        raise RuntimeError("keychain locked")

    async def delete_item(self, key: str) -> None:
        raise RuntimeError("keychain locked")


async def test_creates_and_persists_key(secure_store: InMemorySecureStore) -> None:
    manager = KeyManager(secure_store)

    key = await manager.get_or_create_key()

    stored = await secure_store.get_item(ENCRYPTION_KEY_ID)
    assert stored == key.to_base64()
    assert await manager.get_or_create_key() == key


async def test_concurrent_first_use_creates_one_key(secure_store: InMemorySecureStore) -> None:
    manager = KeyManager(secure_store)

    keys = await asyncio.gather(*(manager.get_or_create_key() for _ in range(10)))

    assert all(k == keys[0] for k in keys)


async def test_existing_key_is_reused(secure_store: InMemorySecureStore) -> None:
    existing = SecureKey.generate()
    await secure_store.set_item(ENCRYPTION_KEY_ID, existing.to_base64())

    assert await KeyManager(secure_store).get_or_create_key() == existing


async def test_rotate_key(secure_store: InMemorySecureStore) -> None:
    manager = KeyManager(secure_store)
    old_key = await manager.get_or_create_key()

    result = await manager.rotate_key()
    new_key = await manager.get_or_create_key()

    assert new_key != old_key
    assert result.old_fingerprint == old_key.fingerprint()
    assert result.new_fingerprint == new_key.fingerprint()


async def test_rotate_without_existing_key(secure_store: InMemorySecureStore) -> None:
    result = await KeyManager(secure_store).rotate_key()
    assert result.old_fingerprint is None


async def test_delete_key(secure_store: InMemorySecureStore) -> None:
    manager = KeyManager(secure_store)
    old_key = await manager.get_or_create_key()

    await manager.delete_key()

    assert await secure_store.get_item(ENCRYPTION_KEY_ID) is None
    assert await manager.get_or_create_key() != old_key


async def test_missing_store_is_a_hard_error() -> None:
    manager = KeyManager(None)

    assert manager.is_available() is False
    with pytest.raises(KeyStoreUnavailableError):
        await manager.get_or_create_key()
    with pytest.raises(KeyStoreUnavailableError):
        await manager.rotate_key()


async def test_store_failure_is_wrapped() -> None:
    manager = KeyManager(BrokenSecureStore())

    with pytest.raises(KeyStoreUnavailableError, match="keychain locked"):
        await manager.get_or_create_key()


async def test_malformed_stored_key(secure_store: InMemorySecureStore) -> None:
    await secure_store.set_item(ENCRYPTION_KEY_ID, "dG9vIHNob3J0")  # "too short"

    with pytest.raises(CryptoError):
        await KeyManager(secure_store).get_or_create_key()


async def test_get_key_does_not_create(secure_store: InMemorySecureStore) -> None:
    manager = KeyManager(secure_store)

    assert await manager.get_key() is None
    key = await manager.get_or_create_key()
    assert await manager.get_key() == key


async def test_restore_key(secure_store: InMemorySecureStore) -> None:
    manager = KeyManager(secure_store)
    old_key = await manager.get_or_create_key()
    await manager.rotate_key()

    await manager.restore_key(old_key)
    assert await manager.get_or_create_key() == old_key

    await manager.restore_key(None)
    assert await secure_store.get_item(ENCRYPTION_KEY_ID) is None
