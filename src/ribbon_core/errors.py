"""
Exception classes for the persistence and network core.

This module provides:
- ErrorCode: Machine-readable taxonomy tags carried by every error
- AppError: Base exception with code, status code and a details bag
- One subclass per failure kind (network, auth, storage, crypto, ...)
- normalize_error: Converts any raised value into an AppError
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Error taxonomy tags."""

    NETWORK_ERROR = "NETWORK_ERROR"  # No connectivity / no response
    TIMEOUT_ERROR = "TIMEOUT_ERROR"  # Client-side request timeout
    AUTH_ERROR = "AUTH_ERROR"  # 401
    PERMISSION_ERROR = "PERMISSION_ERROR"  # 403
    NOT_FOUND = "NOT_FOUND"  # 404
    RATE_LIMIT_ERROR = "RATE_LIMIT_ERROR"  # 429
    SERVER_ERROR = "SERVER_ERROR"  # 5xx
    VALIDATION_ERROR = "VALIDATION_ERROR"
    STORAGE_ERROR = "STORAGE_ERROR"
    STORAGE_PARSE_ERROR = "STORAGE_PARSE_ERROR"
    CRYPTO_ERROR = "CRYPTO_ERROR"
    CONFIG_ERROR = "CONFIG_ERROR"
    GENERIC_ERROR = "GENERIC_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"

    def __str__(self) -> str:
        return self.value


class AppError(Exception):
    """Base exception for all core operations."""

    default_message = "An error occurred"
    default_code: Optional[ErrorCode] = None
    default_status: Optional[int] = None

    def __init__(
        self,
        message: Optional[str] = None,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message or self.default_message
        if code is None and self.default_code is not None:
            code = self.default_code.value
        self.code = str(code) if code is not None else None
        self.status_code = status_code if status_code is not None else self.default_status
        self.details: Dict[str, Any] = dict(details) if details else {}
        super().__init__(self.message)

    @property
    def name(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        """Serializable view used by the error reporter and log records."""
        return {
            "name": self.name,
            "message": self.message,
            "code": self.code,
            "status_code": self.status_code,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.name}(message={self.message!r}, code={self.code!r}, status_code={self.status_code!r})"


class NetworkError(AppError):
    """No connectivity or no response from the remote end."""

    default_message = "Network error occurred"
    default_code = ErrorCode.NETWORK_ERROR


class RequestTimeoutError(NetworkError):
    """Request exceeded its per-attempt timeout and was cancelled."""

    default_message = "Request timeout"
    default_code = ErrorCode.TIMEOUT_ERROR


class AuthError(AppError):
    """Authentication failed (401)."""

    default_message = "Authentication error"
    default_code = ErrorCode.AUTH_ERROR
    default_status = 401


class PermissionDeniedError(AppError):
    """Authenticated but not allowed (403)."""

    default_message = "Permission denied"
    default_code = ErrorCode.PERMISSION_ERROR
    default_status = 403


class NotFoundError(AppError):
    """Resource not found (404)."""

    default_message = "Resource not found"
    default_code = ErrorCode.NOT_FOUND
    default_status = 404


class RateLimitError(AppError):
    """Rate limit exceeded (429)."""

    default_message = "Rate limit exceeded"
    default_code = ErrorCode.RATE_LIMIT_ERROR
    default_status = 429


class ServerError(AppError):
    """Remote server failure (5xx)."""

    default_message = "Server error occurred"
    default_code = ErrorCode.SERVER_ERROR
    default_status = 500


class ValidationError(AppError):
    """Malformed input, including failed schema checks."""

    default_message = "Validation failed"
    default_code = ErrorCode.VALIDATION_ERROR

    def __init__(
        self,
        message: Optional[str] = None,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details=details)
        self.field = field


class StorageError(AppError):
    """Persistence I/O failure; keeps the original exception as ``cause``."""

    default_message = "Storage error occurred"
    default_code = ErrorCode.STORAGE_ERROR

    def __init__(
        self,
        message: Optional[str] = None,
        cause: Optional[BaseException] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details=details)
        self.cause = cause
        if cause is not None:
            self.details.setdefault("cause", f"{type(cause).__name__}: {cause}")


class StorageParseError(StorageError):
    """Persisted value is not valid JSON."""

    default_message = "Stored data is corrupt"
    default_code = ErrorCode.STORAGE_PARSE_ERROR


class CryptoError(AppError):
    """Cryptographic operation failed (encryption, decryption, key handling)."""

    default_message = "Cryptographic operation failed"
    default_code = ErrorCode.CRYPTO_ERROR


class KeyStoreUnavailableError(CryptoError):
    """No durable secure key store is available."""

    default_message = "Secure key store not available"


class ConfigError(AppError):
    """Configuration error."""

    default_message = "Invalid configuration"
    default_code = ErrorCode.CONFIG_ERROR


def normalize_error(error: Any) -> AppError:
    """
    Normalize any raised value into the taxonomy.

    Args:
        error: Exception instance or arbitrary value

    Returns:
        The same AppError, a GENERIC_ERROR wrapping a foreign exception, or an
        UNKNOWN_ERROR for non-exception values
    """
    if isinstance(error, AppError):
        return error

    if isinstance(error, BaseException):
        return AppError(
            str(error) or type(error).__name__,
            ErrorCode.GENERIC_ERROR.value,
            details={"original_error": type(error).__name__},
        )

    text = str(error) if error is not None else ""
    return AppError(text or "Unknown error occurred", ErrorCode.UNKNOWN_ERROR.value)
