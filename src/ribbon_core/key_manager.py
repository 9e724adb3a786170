"""
Per-install encryption key management.

This module provides:
- KeyManager: Lazily creates, rotates and deletes the single symmetric key
- KeyRotationResult: Key rotation result

There is exactly one active key slot. Rotation overwrites it, so any data
still encrypted under the old key must be re-encrypted by the caller (see
StorageService.rotate_encryption_key).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from .crypto import SecureKey
from .errors import CryptoError, KeyStoreUnavailableError
from .secure_store import SecureKeyStore

logger = logging.getLogger(__name__)

ENCRYPTION_KEY_ID = "@ribbon/encryption_key"


@dataclass
class KeyRotationResult:
    """Key rotation result."""

    old_fingerprint: Optional[str]
    new_fingerprint: str

    def __str__(self) -> str:
        return f"{self.old_fingerprint or 'none'} -> {self.new_fingerprint}"


class KeyManager:
    """
    Manages the installation's symmetric encryption key.

    The key is held in a secure store only; the manager keeps no cached copy
    so the store stays the single source of truth. All operations are
    serialized by one lock, which makes first-use creation single-flight and
    keeps rotation from interleaving with a fetch.
    """

    def __init__(
        self,
        store: Optional[SecureKeyStore],
        key_id: str = ENCRYPTION_KEY_ID,
    ) -> None:
        """
        Initialize KeyManager.

        Args:
            store: Secure key store, or None when the platform has none
            key_id: Entry name of the key inside the store
        """
        self._store = store
        self._key_id = key_id
        self._lock = asyncio.Lock()

    @property
    def key_id(self) -> str:
        return self._key_id

    def is_available(self) -> bool:
        """Whether a secure store was provided."""
        return self._store is not None

    def _require_store(self) -> SecureKeyStore:
        if self._store is None:
            raise KeyStoreUnavailableError()
        return self._store

    async def get_or_create_key(self) -> SecureKey:
        """
        Get the key, generating and persisting it on first use.

        Returns:
            The active SecureKey

        Raises:
            KeyStoreUnavailableError: If no store exists or it cannot be reached
            CryptoError: If the stored key is malformed
        """
        store = self._require_store()
        async with self._lock:
            try:
                encoded = await store.get_item(self._key_id)
            except Exception as e:
                raise KeyStoreUnavailableError(f"Failed to read encryption key: {e}") from e

            if encoded:
                return SecureKey.from_base64(encoded)

            key = SecureKey.generate()
            try:
                await store.set_item(self._key_id, key.to_base64())
            except Exception as e:
                raise KeyStoreUnavailableError(f"Failed to persist encryption key: {e}") from e

            logger.info("New encryption key generated (%s)", key.fingerprint())
            return key

    async def rotate_key(self) -> KeyRotationResult:
        """
        Replace the active key with a newly generated one.

        The previous key is discarded unconditionally.

        Returns:
            KeyRotationResult with old and new fingerprints
        """
        store = self._require_store()
        async with self._lock:
            old_fingerprint: Optional[str] = None
            try:
                encoded = await store.get_item(self._key_id)
            except Exception as e:
                raise KeyStoreUnavailableError(f"Failed to read encryption key: {e}") from e
            if encoded:
                try:
                    old_fingerprint = SecureKey.from_base64(encoded).fingerprint()
                except CryptoError:
                    logger.warning("Discarding malformed encryption key during rotation")

            new_key = SecureKey.generate()
            try:
                await store.set_item(self._key_id, new_key.to_base64())
            except Exception as e:
                raise KeyStoreUnavailableError(f"Failed to persist rotated key: {e}") from e

            result = KeyRotationResult(
                old_fingerprint=old_fingerprint,
                new_fingerprint=new_key.fingerprint(),
            )
            logger.info("Encryption key rotated: %s", result)
            return result

    async def get_key(self) -> Optional[SecureKey]:
        """Get the active key without creating one."""
        store = self._require_store()
        async with self._lock:
            try:
                encoded = await store.get_item(self._key_id)
            except Exception as e:
                raise KeyStoreUnavailableError(f"Failed to read encryption key: {e}") from e
            return SecureKey.from_base64(encoded) if encoded else None

    async def restore_key(self, key: Optional[SecureKey]) -> None:
        """
        Put a previously active key back in the slot.

        Args:
            key: Key to restore, or None to leave the slot empty

        Raises:
            KeyStoreUnavailableError: If the store cannot be written
        """
        store = self._require_store()
        async with self._lock:
            try:
                if key is None:
                    await store.delete_item(self._key_id)
                else:
                    await store.set_item(self._key_id, key.to_base64())
            except Exception as e:
                raise KeyStoreUnavailableError(f"Failed to restore encryption key: {e}") from e
            logger.warning(
                "Encryption key restored (%s)", key.fingerprint() if key is not None else "none"
            )

    async def delete_key(self) -> None:
        """Delete the key (account or data wipe)."""
        store = self._require_store()
        async with self._lock:
            try:
                await store.delete_item(self._key_id)
            except Exception as e:
                raise KeyStoreUnavailableError(f"Failed to delete encryption key: {e}") from e
            logger.info("Encryption key deleted")
