"""
Cryptographic primitives for the hash-based keystream cipher.

This module provides:
- SecureKey: Secure key wrapper with automatic zeroization
- CipherText: Ciphertext with the IV it was produced under
- derive_keystream: SHA-256 counter-mode keystream
- KeystreamCipher: XOR stream encryption/decryption operations

The construction only needs a hash primitive. It gives confidentiality,
not integrity: a corrupted ciphertext decrypts to garbage without error.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass

from cryptography.hazmat.primitives import hashes

from .encoding import base64_to_bytes, bytes_to_base64, bytes_to_hex
from .errors import CryptoError

# Cryptographic constants
KEY_SIZE: int = 32  # 256 bits
IV_SIZE: int = 16  # 128 bits, fresh per encryption
BLOCK_SIZE: int = 32  # SHA-256 digest size
COUNTER_SIZE: int = 4  # uint32 big-endian block counter


class SecureKey:
    """
    Secure key wrapper with automatic memory cleanup on deletion.

    Uses bytearray internally for mutable zeroing in __del__.
    Note: Python's garbage collector doesn't guarantee immediate cleanup,
    so this is best-effort zeroization.
    """

    __slots__ = ("_bytes",)

    def __init__(self, key_bytes: bytes | bytearray) -> None:
        if not isinstance(key_bytes, (bytes, bytearray)):
            raise CryptoError("Key must be bytes or bytearray")
        self._bytes = bytearray(key_bytes)

    @classmethod
    def generate(cls) -> SecureKey:
        """Generate a cryptographically secure random 32-byte key."""
        return cls(secrets.token_bytes(KEY_SIZE))

    @classmethod
    def from_base64(cls, encoded: str) -> SecureKey:
        """
        Decode a key persisted as base64.

        Raises:
            CryptoError: If the text is not base64 of exactly KEY_SIZE bytes
        """
        raw = base64_to_bytes(encoded)
        if len(raw) != KEY_SIZE:
            raise CryptoError(f"Invalid key size: expected {KEY_SIZE}, got {len(raw)}")
        return cls(raw)

    def as_bytes(self) -> bytes:
        """Return key as immutable bytes."""
        return bytes(self._bytes)

    def to_base64(self) -> str:
        return bytes_to_base64(self.as_bytes())

    def fingerprint(self) -> str:
        """Short, non-reversible identifier for log lines."""
        digest = hashes.Hash(hashes.SHA256())
        digest.update(self.as_bytes())
        return bytes_to_hex(digest.finalize()[:4])

    def __len__(self) -> int:
        return len(self._bytes)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SecureKey):
            return NotImplemented
        return secrets.compare_digest(self.as_bytes(), other.as_bytes())

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        """Redacted representation to prevent accidental key disclosure."""
        return "SecureKey([REDACTED])"

    def __del__(self) -> None:
        """Zero memory on deletion (best-effort)."""
        if hasattr(self, "_bytes"):
            for i in range(len(self._bytes)):
                self._bytes[i] = 0


@dataclass(frozen=True)
class CipherText:
    """Ciphertext plus the IV it was encrypted under."""

    ciphertext: bytes
    iv: bytes  # IV_SIZE bytes


def derive_keystream(key: bytes, iv: bytes, length: int) -> bytes:
    """
    Derive ``length`` pseudo-random bytes from a key and an IV.

    Block ``i`` is ``SHA-256(iv || uint32_be(i) || key)``; blocks are
    concatenated and the result truncated to ``length``.

    Args:
        key: Raw key bytes
        iv: Per-encryption nonce
        length: Number of keystream bytes required

    Returns:
        Keystream bytes
    """
    if length < 0:
        raise CryptoError("Keystream length must be non-negative")

    blocks = []
    produced = 0
    counter = 0
    while produced < length:
        digest = hashes.Hash(hashes.SHA256())
        digest.update(iv)
        digest.update(counter.to_bytes(COUNTER_SIZE, "big"))
        digest.update(key)
        block = digest.finalize()
        blocks.append(block)
        produced += len(block)
        counter += 1

    return b"".join(blocks)[:length]


def _xor(data: bytes, keystream: bytes) -> bytes:
    return bytes(a ^ b for a, b in zip(data, keystream))


class KeystreamCipher:
    """
    Hash-based stream cipher.

    Provides static methods for encryption and decryption. Every call to
    ``encrypt`` draws a fresh IV, so callers never choose one.
    """

    @staticmethod
    def encrypt(key: SecureKey, plaintext: bytes) -> CipherText:
        """
        Encrypt plaintext under a fresh random IV.

        Args:
            key: 32-byte encryption key
            plaintext: Data to encrypt

        Returns:
            CipherText with ciphertext and IV

        Raises:
            CryptoError: If key size is invalid
        """
        if len(key) != KEY_SIZE:
            raise CryptoError(f"Invalid key size: expected {KEY_SIZE}, got {len(key)}")

        iv = secrets.token_bytes(IV_SIZE)
        keystream = derive_keystream(key.as_bytes(), iv, len(plaintext))
        return CipherText(ciphertext=_xor(plaintext, keystream), iv=iv)

    @staticmethod
    def decrypt(key: SecureKey, ciphertext: bytes, iv: bytes) -> bytes:
        """
        Decrypt ciphertext produced by ``encrypt``.

        Args:
            key: 32-byte decryption key
            ciphertext: Encrypted bytes
            iv: IV returned alongside the ciphertext

        Returns:
            Decrypted plaintext bytes

        Raises:
            CryptoError: If key or IV size is invalid
        """
        if len(key) != KEY_SIZE:
            raise CryptoError(f"Invalid key size: expected {KEY_SIZE}, got {len(key)}")

        if len(iv) != IV_SIZE:
            raise CryptoError(f"Invalid IV size: expected {IV_SIZE}, got {len(iv)}")

        keystream = derive_keystream(key.as_bytes(), iv, len(ciphertext))
        return _xor(ciphertext, keystream)


def generate_random_bytes(length: int) -> bytes:
    """
    Generate cryptographically secure random bytes.

    Args:
        length: Number of bytes to generate

    Returns:
        Random bytes of specified length
    """
    return secrets.token_bytes(length)
