"""Tests for the keystream cipher and SecureKey."""

from __future__ import annotations

import hashlib

import pytest

from ribbon_core import (
    IV_SIZE,
    KEY_SIZE,
    CryptoError,
    KeystreamCipher,
    SecureKey,
    derive_keystream,
    generate_random_bytes,
)


class TestKeystreamCipher:
    @pytest.mark.parametrize("length", [0, 1, 31, 32, 33, 64, 1000])
    def test_round_trip(self, length: int) -> None:
        key = SecureKey.generate()
        plaintext = generate_random_bytes(length)

        sealed = KeystreamCipher.encrypt(key, plaintext)

        assert len(sealed.ciphertext) == length
        assert len(sealed.iv) == IV_SIZE
        assert KeystreamCipher.decrypt(key, sealed.ciphertext, sealed.iv) == plaintext

    def test_ivs_are_never_reused(self) -> None:
        key = SecureKey.generate()
        ivs = {KeystreamCipher.encrypt(key, b"same plaintext").iv for _ in range(1000)}
        assert len(ivs) == 1000

    def test_same_plaintext_encrypts_differently(self) -> None:
        key = SecureKey.generate()
        first = KeystreamCipher.encrypt(key, b"Sensitive data")
        second = KeystreamCipher.encrypt(key, b"Sensitive data")
        assert first.ciphertext != second.ciphertext

    def test_ciphertext_differs_from_plaintext(self) -> None:
        key = SecureKey.generate()
        plaintext = b'[{"id": "1", "name": "Mug"}]'
        assert KeystreamCipher.encrypt(key, plaintext).ciphertext != plaintext

    def test_wrong_key_does_not_recover_plaintext(self) -> None:
        plaintext = b"Sensitive data protected at rest"
        sealed = KeystreamCipher.encrypt(SecureKey.generate(), plaintext)
        recovered = KeystreamCipher.decrypt(SecureKey.generate(), sealed.ciphertext, sealed.iv)
        assert recovered != plaintext

    def test_invalid_key_size(self) -> None:
        with pytest.raises(CryptoError, match="Invalid key size"):
            KeystreamCipher.encrypt(SecureKey(b"short"), b"data")

    def test_invalid_iv_size(self) -> None:
        key = SecureKey.generate()
        with pytest.raises(CryptoError, match="Invalid IV size"):
            KeystreamCipher.decrypt(key, b"data", b"\x00" * 12)


class TestDeriveKeystream:
    def test_matches_block_construction(self) -> None:
        key = b"k" * KEY_SIZE
        iv = b"i" * IV_SIZE

        expected = b"".join(
            hashlib.sha256(iv + i.to_bytes(4, "big") + key).digest() for i in range(3)
        )[:70]

        assert derive_keystream(key, iv, 70) == expected

    def test_deterministic(self) -> None:
        key = generate_random_bytes(KEY_SIZE)
        iv = generate_random_bytes(IV_SIZE)
        assert derive_keystream(key, iv, 100) == derive_keystream(key, iv, 100)

    def test_depends_on_iv(self) -> None:
        key = generate_random_bytes(KEY_SIZE)
        assert derive_keystream(key, b"a" * IV_SIZE, 32) != derive_keystream(key, b"b" * IV_SIZE, 32)

    def test_empty(self) -> None:
        assert derive_keystream(b"k" * KEY_SIZE, b"i" * IV_SIZE, 0) == b""


class TestSecureKey:
    def test_generate(self) -> None:
        key = SecureKey.generate()
        assert len(key) == KEY_SIZE
        assert key != SecureKey.generate()

    def test_base64_round_trip(self) -> None:
        key = SecureKey.generate()
        assert SecureKey.from_base64(key.to_base64()) == key

    def test_from_base64_rejects_wrong_length(self) -> None:
        short = SecureKey(b"x" * 16).to_base64()
        with pytest.raises(CryptoError):
            SecureKey.from_base64(short)

    def test_from_base64_rejects_garbage(self) -> None:
        with pytest.raises(CryptoError):
            SecureKey.from_base64("not base64!!")

    def test_repr_is_redacted(self) -> None:
        key = SecureKey.generate()
        assert repr(key) == "SecureKey([REDACTED])"
        assert key.to_base64() not in repr(key)

    def test_fingerprint(self) -> None:
        key = SecureKey.generate()
        fingerprint = key.fingerprint()
        assert len(fingerprint) == 8
        assert fingerprint == SecureKey(key.as_bytes()).fingerprint()

    def test_rejects_non_bytes(self) -> None:
        with pytest.raises(CryptoError):
            SecureKey("not bytes")  # type: ignore[arg-type]
