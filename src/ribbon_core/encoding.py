"""Byte and text conversions shared by the cipher and the envelope codec."""

from __future__ import annotations

import base64
import binascii

from .errors import CryptoError


def bytes_to_base64(data: bytes) -> str:
    """Encode bytes as padded standard base64."""
    return base64.standard_b64encode(data).decode("ascii")


def base64_to_bytes(text: str) -> bytes:
    """Decode standard base64, raising CryptoError on malformed input."""
    try:
        return base64.b64decode(text.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError, AttributeError) as e:
        raise CryptoError(f"Base64 decode error: {e}") from e


def bytes_to_hex(data: bytes) -> str:
    return data.hex()


def hex_to_bytes(text: str) -> bytes:
    try:
        return bytes.fromhex(text)
    except (ValueError, TypeError) as e:
        raise CryptoError(f"Hex decode error: {e}") from e


def utf8_encode(text: str) -> bytes:
    return text.encode("utf-8")


def utf8_decode(data: bytes) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise CryptoError("Decrypted data is not valid UTF-8") from e


def latin1_decode(data: bytes) -> str:
    # Legacy envelopes were produced one byte per character.
    return data.decode("latin-1")
