"""
Key-value storage service.

This module provides:
- StorageService: JSON storage with transparent per-key encryption and
  versioned migrations
- StorageState: Initialization state machine
- StorageSize: Approximate storage footprint

Values are stored as JSON text. Values of SENSITIVE keys are stored as the
serialized envelope, so the raw string parses to a four-field object.

Lifecycle:
    UNINITIALIZED -> MIGRATING -> READY

The first operation triggers initialization. Concurrent first callers share
one run of the migrations.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from .backends import KeyValueBackend
from .envelope import EncryptedValueCodec, is_envelope
from .error_logger import ErrorLogger
from .errors import (
    AppError,
    CryptoError,
    KeyStoreUnavailableError,
    StorageError,
    StorageParseError,
    ValidationError,
)
from .key_manager import KeyRotationResult
from .keys import DEPRECATED_KEYS, STORAGE_VERSION, SensitivityClassifier, StorageKeys

logger = logging.getLogger(__name__)


class StorageState(str, Enum):
    """Storage initialization state."""

    UNINITIALIZED = "UNINITIALIZED"
    MIGRATING = "MIGRATING"
    READY = "READY"

    def __str__(self) -> str:
        return self.value


@dataclass
class StorageSize:
    """Approximate storage footprint of the declared keys."""

    keys: int
    total_chars: int

    @property
    def approx_size_mb(self) -> float:
        return self.total_chars / (1024 * 1024)


class StorageService:
    """
    Typed JSON storage over a KeyValueBackend.

    Example:
        >>> storage = StorageService(backend, codec, classifier, error_logger)
        >>> await storage.set(StorageKeys.GIFTS, [{"id": "1", "name": "Mug"}])
        >>> await storage.get(StorageKeys.GIFTS)
        [{'id': '1', 'name': 'Mug'}]
    """

    def __init__(
        self,
        backend: KeyValueBackend,
        codec: EncryptedValueCodec,
        classifier: SensitivityClassifier,
        error_logger: ErrorLogger,
        version: str = STORAGE_VERSION,
        deprecated_keys: Iterable[str] = DEPRECATED_KEYS,
        version_key: str = StorageKeys.STORAGE_VERSION,
    ) -> None:
        """
        Initialize StorageService.

        Args:
            backend: Raw string key-value store
            codec: Encrypted value codec for SENSITIVE keys
            classifier: Key sensitivity lookup (also defines declared keys)
            error_logger: Sink for every storage failure
            version: Current storage schema version
            deprecated_keys: Keys dropped by the first migration step
            version_key: Key holding the schema version marker
        """
        self._backend = backend
        self._codec = codec
        self._classifier = classifier
        self._error_logger = error_logger
        self._version = version
        self._deprecated_keys = tuple(deprecated_keys)
        self._version_key = version_key

        self._state = StorageState.UNINITIALIZED
        self._init_lock = asyncio.Lock()
        # Serializes sensitive reads/writes against key rotation
        self._cipher_lock = asyncio.Lock()
        self._upgrades: Set[asyncio.Task] = set()

    @property
    def state(self) -> StorageState:
        return self._state

    @property
    def version(self) -> str:
        return self._version

    @property
    def backend(self) -> KeyValueBackend:
        return self._backend

    # ------------------------------------------------------------------
    # Initialization and migrations
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """
        Bring storage to READY, running migrations when the marker differs.

        Raises:
            StorageError: If the version marker cannot be read
        """
        if self._state is StorageState.READY:
            return

        async with self._init_lock:
            if self._state is StorageState.READY:
                return

            self._state = StorageState.MIGRATING
            try:
                stored_version = await self._read_version_marker()
            except StorageError:
                self._state = StorageState.UNINITIALIZED
                raise

            if stored_version != self._version:
                await self._run_migrations(stored_version)

            self._state = StorageState.READY

    async def _read_version_marker(self) -> Optional[str]:
        raw = await self._read(self._version_key)
        if raw is None:
            return None
        try:
            marker = json.loads(raw)
        except ValueError:
            # Unquoted marker; compare as-is
            return raw
        return marker if isinstance(marker, str) else None

    async def _run_migrations(self, from_version: Optional[str]) -> None:
        logger.info("Running storage migrations from %s to %s", from_version, self._version)

        steps: List[Tuple[str, Callable[[], Awaitable[int]]]] = [
            ("dropDeprecatedKeys", self._drop_deprecated_keys),
            ("encryptPlaintextValues", self._encrypt_plaintext_values),
            ("upgradeLegacyEnvelopes", self._upgrade_legacy_envelopes),
        ]

        failed = False
        for name, step in steps:
            try:
                changed = await step()
                logger.debug("Migration step %s changed %d keys", name, changed)
            except Exception as e:
                failed = True
                self._error_logger.log(
                    e, {"component": "StorageService", "context": "runMigrations", "step": name}
                )
                logger.warning("Migration step %s failed: %s", name, e)

        if failed:
            logger.warning("Storage version marker left at %s; migrations retry next start", from_version)
            return

        try:
            await self._write(self._version_key, json.dumps(self._version))
        except StorageError as e:
            self._error_logger.log(
                e, {"component": "StorageService", "context": "runMigrations"}
            )
            logger.warning("Failed to update storage version marker: %s", e)
            return

        logger.info("Storage migrated to %s", self._version)

    async def _drop_deprecated_keys(self) -> int:
        if not self._deprecated_keys:
            return 0
        present = await self._backend_call(
            "dropDeprecatedKeys", None, self._backend.multi_get(self._deprecated_keys)
        )
        stale = [key for key, raw in present.items() if raw is not None]
        if stale:
            await self._backend_call("dropDeprecatedKeys", None, self._backend.multi_remove(stale))
        return len(stale)

    async def _encrypt_plaintext_values(self) -> int:
        changed = 0
        for key in sorted(self._classifier.sensitive_keys()):
            raw = await self._read(key)
            if raw is None:
                continue
            try:
                parsed = json.loads(raw)
            except ValueError:
                # Left for the read path to report
                continue
            if is_envelope(parsed):
                continue
            envelope = await self._codec.seal(key, parsed)
            if envelope is None:
                continue
            await self._write(key, envelope.to_json())
            changed += 1
        return changed

    async def _upgrade_legacy_envelopes(self) -> int:
        changed = 0
        for key in sorted(self._classifier.sensitive_keys()):
            raw = await self._read(key)
            if raw is None:
                continue
            try:
                parsed = json.loads(raw)
            except ValueError:
                continue
            if not is_envelope(parsed):
                continue
            opened = await self._codec.open(key, parsed)
            if not opened.needs_upgrade:
                continue
            envelope = await self._codec.seal(key, opened.value)
            if envelope is None:
                continue
            await self._write(key, envelope.to_json())
            changed += 1
        return changed

    # ------------------------------------------------------------------
    # Internal I/O (bypasses initialization)
    # ------------------------------------------------------------------

    async def _backend_call(self, operation: str, key: Optional[str], awaitable: Awaitable[Any]) -> Any:
        try:
            return await awaitable
        except AppError:
            raise
        except Exception as e:
            target = f" for key: {key}" if key else ""
            error = StorageError(f"Failed to {operation}{target}", cause=e)
            self._error_logger.log(
                error, {"component": "StorageService", "context": operation, "key": key}
            )
            raise error from e

    async def _read(self, key: str) -> Optional[str]:
        return await self._backend_call("getItem", key, self._backend.get_item(key))

    async def _write(self, key: str, raw: str) -> None:
        await self._backend_call("setItem", key, self._backend.set_item(key, raw))

    def _classify_sensitive(self, key: str) -> bool:
        try:
            return self._classifier.is_sensitive(key)
        except ValidationError as e:
            self._error_logger.log(e, {"component": "StorageService", "key": key})
            raise

    def _parse(self, key: str, raw: str) -> Any:
        try:
            return json.loads(raw)
        except ValueError as e:
            error = StorageParseError(f"Failed to parse stored value for key: {key}", cause=e)
            self._error_logger.log(
                error, {"component": "StorageService", "context": "getItem", "key": key}
            )
            raise error from e

    def _serialize(self, key: str, value: Any) -> str:
        try:
            return json.dumps(value)
        except (TypeError, ValueError) as e:
            error = ValidationError(f"Value for key {key} is not JSON serializable: {e}", field=key)
            self._error_logger.log(
                error, {"component": "StorageService", "context": "setItem", "key": key}
            )
            raise error from e

    async def _decode(self, key: str, raw: str) -> Any:
        parsed = self._parse(key, raw)
        if not self._classify_sensitive(key):
            return parsed

        opened = await self._codec.open(key, parsed)
        if opened.needs_upgrade:
            self._schedule_upgrade(key, raw, opened.value)
        return opened.value

    async def _encode(self, key: str, value: Any) -> str:
        plaintext = self._serialize(key, value)
        if not self._classify_sensitive(key):
            return plaintext
        envelope = await self._codec.seal(key, value)
        return plaintext if envelope is None else envelope.to_json()

    # ------------------------------------------------------------------
    # Background legacy upgrades
    # ------------------------------------------------------------------

    def _schedule_upgrade(self, key: str, raw: str, value: Any) -> None:
        task = asyncio.get_running_loop().create_task(self._upgrade(key, raw, value))
        self._upgrades.add(task)
        task.add_done_callback(self._upgrades.discard)

    async def _upgrade(self, key: str, expected_raw: str, value: Any) -> None:
        try:
            async with self._cipher_lock:
                current = await self._read(key)
                if current != expected_raw:
                    logger.debug("Skipping legacy upgrade of %s: value changed", key)
                    return
                envelope = await self._codec.seal(key, value)
                if envelope is None:
                    return
                await self._write(key, envelope.to_json())
                logger.info("Upgraded legacy envelope for %s", key)
        except Exception as e:
            self._error_logger.log(
                e, {"component": "StorageService", "context": "upgradeLegacyEnvelope", "key": key}
            )

    async def wait_for_upgrades(self) -> None:
        """Wait for scheduled legacy envelope upgrades to finish."""
        while self._upgrades:
            await asyncio.gather(*list(self._upgrades), return_exceptions=True)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Any:
        """
        Get a value.

        Args:
            key: Logical storage key

        Returns:
            The stored value, or None if absent

        Raises:
            StorageError: If the backend fails
            StorageParseError: If the stored text is not valid JSON
        """
        await self.initialize()
        if not self._classify_sensitive(key):
            raw = await self._read(key)
            return None if raw is None else self._parse(key, raw)

        async with self._cipher_lock:
            raw = await self._read(key)
            if raw is None:
                return None
            return await self._decode(key, raw)

    async def set(self, key: str, value: Any) -> None:
        """
        Store a value, encrypting it if the key is SENSITIVE.

        Raises:
            StorageError: If the backend fails
            ValidationError: If the value is not JSON serializable
        """
        await self.initialize()
        if not self._classify_sensitive(key):
            await self._write(key, self._serialize(key, value))
            return

        async with self._cipher_lock:
            await self._write(key, await self._encode(key, value))

    async def remove(self, key: str) -> None:
        await self.initialize()
        await self._backend_call("removeItem", key, self._backend.remove_item(key))

    async def get_many(self, keys: Iterable[str]) -> Dict[str, Any]:
        """
        Get several values.

        Returns:
            Mapping of the keys that are present to their values
        """
        await self.initialize()
        wanted = list(keys)
        async with self._cipher_lock:
            raws = await self._backend_call("multiGet", None, self._backend.multi_get(wanted))
            result: Dict[str, Any] = {}
            for key in wanted:
                raw = raws.get(key)
                if raw is not None:
                    result[key] = await self._decode(key, raw)
            return result

    async def set_many(self, items: Mapping[str, Any]) -> None:
        """Store several values in one backend call."""
        await self.initialize()
        async with self._cipher_lock:
            encoded = {key: await self._encode(key, value) for key, value in items.items()}
            await self._backend_call("multiSet", None, self._backend.multi_set(encoded))

    async def remove_many(self, keys: Iterable[str]) -> None:
        await self.initialize()
        await self._backend_call("multiRemove", None, self._backend.multi_remove(list(keys)))

    async def has_key(self, key: str) -> bool:
        await self.initialize()
        return await self._read(key) is not None

    async def get_all_keys(self) -> List[str]:
        """
        List stored keys.

        Only keys declared in the classifier are returned, since the backend
        may be shared with other data.
        """
        await self.initialize()
        keys = await self._backend_call("getAllKeys", None, self._backend.get_all_keys())
        return [key for key in keys if self._classifier.is_declared(key)]

    async def clear(self) -> None:
        """
        Remove every declared key, including the version marker.

        The next operation re-initializes storage.
        """
        keys = await self.get_all_keys()
        async with self._init_lock:
            if keys:
                await self._backend_call("clear", None, self._backend.multi_remove(keys))
            self._state = StorageState.UNINITIALIZED
        logger.info("Storage cleared (%d keys)", len(keys))

    async def get_storage_size(self) -> StorageSize:
        await self.initialize()
        keys = await self.get_all_keys()
        raws = await self._backend_call("getStorageSize", None, self._backend.multi_get(keys))
        total = sum(len(key) + len(raw) for key, raw in raws.items() if raw)
        return StorageSize(keys=len(keys), total_chars=total)

    async def rotate_encryption_key(self) -> KeyRotationResult:
        """
        Rotate the encryption key and re-encrypt every sensitive value.

        Values that cannot be decrypted under the old key are left as stored
        (and are unreadable after rotation). If the re-encrypted values cannot
        be written, the old key is restored and the error is raised.

        Returns:
            KeyRotationResult with old and new key fingerprints
        """
        await self.initialize()
        async with self._cipher_lock:
            keys = sorted(self._classifier.sensitive_keys())
            raws = await self._backend_call("rotateKey", None, self._backend.multi_get(keys))

            plain: Dict[str, Any] = {}
            for key, raw in raws.items():
                if raw is None:
                    continue
                opened = await self._codec.open(key, self._parse(key, raw))
                if is_envelope(opened.value):
                    logger.warning("Leaving undecryptable value for %s as stored", key)
                    continue
                plain[key] = opened.value

            try:
                old_key = await self._codec.current_key()
            except KeyStoreUnavailableError:
                raise
            except CryptoError:
                # Malformed key; nothing under it can be decrypted anyway
                old_key = None

            result = await self._codec.rotate_key()

            try:
                if plain:
                    encoded = {key: await self._encode(key, value) for key, value in plain.items()}
                    await self._backend_call("rotateKey", None, self._backend.multi_set(encoded))
            except Exception:
                # Stored values are still sealed under the old key
                await self._codec.restore_key(old_key)
                logger.warning("Key rotation rolled back: re-encrypted values could not be written")
                raise

        logger.info("Re-encrypted %d values after key rotation", len(plain))
        return result

    async def wipe(self) -> None:
        """Clear storage and delete the encryption key."""
        await self.wait_for_upgrades()
        await self.clear()
        async with self._cipher_lock:
            await self._codec.delete_key()

    async def aclose(self) -> None:
        await self.wait_for_upgrades()

