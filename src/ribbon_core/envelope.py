"""
Encrypted value codec.

This module provides:
- EncryptedEnvelope: Versioned wrapper (data, iv, version, timestamp)
- OpenedValue: Result of opening a stored value
- EncryptedValueCodec: Sensitivity-routed encryption of storage values

Envelopes are recognized by shape (all four fields present), not by a magic
byte. Two versions exist:

- 1.0.0 (legacy): ``data`` is base64 of the JSON text, no cipher applied
- 2.0.0 (current): ``data`` is keystream-cipher output under ``iv``
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from .crypto import KeystreamCipher, SecureKey
from .encoding import (
    base64_to_bytes,
    bytes_to_base64,
    latin1_decode,
    utf8_decode,
    utf8_encode,
)
from .error_logger import ErrorLogger
from .errors import CryptoError
from .key_manager import KeyManager, KeyRotationResult
from .keys import SensitivityClassifier

logger = logging.getLogger(__name__)

LEGACY_ENVELOPE_VERSION = "1.0.0"
ENVELOPE_VERSION = "2.0.0"

ENVELOPE_FIELDS = ("data", "iv", "version", "timestamp")


def is_envelope(value: Any) -> bool:
    """Structural check: a mapping holding all four envelope fields."""
    return isinstance(value, Mapping) and all(name in value for name in ENVELOPE_FIELDS)


@dataclass(frozen=True)
class EncryptedEnvelope:
    """Persisted representation of an encrypted value."""

    data: str  # base64 ciphertext
    iv: str  # base64 nonce
    version: str
    timestamp: str  # ISO-8601, informational only

    @property
    def is_legacy(self) -> bool:
        return self.version == LEGACY_ENVELOPE_VERSION

    def to_dict(self) -> Dict[str, str]:
        return {
            "data": self.data,
            "iv": self.iv,
            "version": self.version,
            "timestamp": self.timestamp,
        }

    def to_json(self) -> str:
        """Serialize envelope to JSON string."""
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, value: Mapping[str, Any]) -> EncryptedEnvelope:
        if not is_envelope(value):
            raise CryptoError("Value is not an encrypted envelope")
        return cls(
            data=str(value["data"]),
            iv=str(value["iv"]),
            version=str(value["version"]),
            timestamp=str(value["timestamp"]),
        )

    @classmethod
    def from_json(cls, json_str: str) -> EncryptedEnvelope:
        """Deserialize envelope from JSON string."""
        try:
            parsed = json.loads(json_str)
        except (TypeError, ValueError) as e:
            raise CryptoError(f"Failed to deserialize envelope: {e}") from e
        return cls.from_dict(parsed)


@dataclass(frozen=True)
class OpenedValue:
    """A decoded storage value and whether it should be re-encrypted."""

    value: Any
    needs_upgrade: bool = False


def _as_envelope(stored: Any) -> Optional[EncryptedEnvelope]:
    if is_envelope(stored):
        return EncryptedEnvelope.from_dict(stored)
    if isinstance(stored, str) and stored.startswith("{"):
        try:
            parsed = json.loads(stored)
        except ValueError:
            return None
        if is_envelope(parsed):
            return EncryptedEnvelope.from_dict(parsed)
    return None


class EncryptedValueCodec:
    """
    Encrypts values of SENSITIVE keys; passes SAFE values through.

    By default the codec fails open: a key or cipher failure is recorded
    and the original value is returned (stored or handed back unencrypted).
    With ``strict=True`` the same failures raise CryptoError.
    """

    def __init__(
        self,
        classifier: SensitivityClassifier,
        key_manager: KeyManager,
        error_logger: ErrorLogger,
        strict: bool = False,
    ) -> None:
        """
        Initialize the codec.

        Args:
            classifier: Key sensitivity lookup
            key_manager: Source of the encryption key
            error_logger: Sink for swallowed failures
            strict: Raise instead of degrading on crypto failures
        """
        self._classifier = classifier
        self._key_manager = key_manager
        self._error_logger = error_logger
        self._strict = strict

    @property
    def strict(self) -> bool:
        return self._strict

    @property
    def classifier(self) -> SensitivityClassifier:
        return self._classifier

    def _fail(self, error: Exception, operation: str, key: str) -> None:
        self._error_logger.log(
            error, {"component": "EncryptedValueCodec", "context": operation, "key": key}
        )
        if self._strict:
            if isinstance(error, CryptoError):
                raise error
            raise CryptoError(f"{operation} failed for {key}: {error}") from error

    async def seal(self, key: str, value: Any) -> Optional[EncryptedEnvelope]:
        """
        Encrypt a value for a SENSITIVE key.

        Args:
            key: Logical storage key
            value: JSON-serializable value

        Returns:
            Current-version envelope, or None when the key is SAFE or when
            encryption failed in fail-open mode
        """
        if not self._classifier.is_sensitive(key):
            return None

        try:
            plaintext = utf8_encode(json.dumps(value))
            encryption_key = await self._key_manager.get_or_create_key()
            sealed = KeystreamCipher.encrypt(encryption_key, plaintext)
        except Exception as e:
            self._fail(e, "encryptValue", key)
            logger.warning("Encryption failed for %s, storing original data", key)
            return None

        return EncryptedEnvelope(
            data=bytes_to_base64(sealed.ciphertext),
            iv=bytes_to_base64(sealed.iv),
            version=ENVELOPE_VERSION,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )

    async def encrypt_value(self, key: str, value: Any) -> Any:
        """
        Encrypt a value if its key is SENSITIVE.

        Returns:
            The serialized envelope for SENSITIVE keys, ``value`` unchanged
            otherwise
        """
        envelope = await self.seal(key, value)
        if envelope is None:
            return value
        return envelope.to_json()

    async def open(self, key: str, stored: Any) -> OpenedValue:
        """
        Decode a stored value.

        Args:
            key: Logical storage key
            stored: Parsed stored value or serialized envelope

        Returns:
            OpenedValue; ``needs_upgrade`` is set for legacy envelopes
        """
        if not self._classifier.is_sensitive(key):
            return OpenedValue(stored)

        try:
            envelope = _as_envelope(stored)
        except CryptoError as e:
            self._fail(e, "decryptValue", key)
            return OpenedValue(stored)

        if envelope is None:
            # Never encrypted; the migration encrypts these in place
            return OpenedValue(stored)

        try:
            if envelope.is_legacy:
                text = latin1_decode(base64_to_bytes(envelope.data))
                return OpenedValue(json.loads(text), needs_upgrade=True)

            encryption_key = await self._key_manager.get_or_create_key()
            plaintext = KeystreamCipher.decrypt(
                encryption_key,
                base64_to_bytes(envelope.data),
                base64_to_bytes(envelope.iv),
            )
            return OpenedValue(json.loads(utf8_decode(plaintext)))
        except Exception as e:
            self._fail(e, "decryptValue", key)
            logger.warning("Decryption failed for %s, returning stored data", key)
            return OpenedValue(stored)

    async def decrypt_value(self, key: str, stored: Any) -> Any:
        """Decode a stored value, returning the plain value."""
        return (await self.open(key, stored)).value

    async def is_encryption_available(self) -> bool:
        try:
            await self._key_manager.get_or_create_key()
        except CryptoError:
            return False
        return True

    async def rotate_key(self) -> KeyRotationResult:
        return await self._key_manager.rotate_key()

    async def current_key(self) -> Optional[SecureKey]:
        return await self._key_manager.get_key()

    async def restore_key(self, key: Optional[SecureKey]) -> None:
        await self._key_manager.restore_key(key)

    async def delete_key(self) -> None:
        await self._key_manager.delete_key()
