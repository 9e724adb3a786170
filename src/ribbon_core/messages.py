"""User-facing error messages keyed by taxonomy code."""

from __future__ import annotations

from typing import Any, Dict

from .errors import AppError, ErrorCode

GENERIC_MESSAGE = "An unexpected error occurred"

USER_MESSAGES: Dict[str, str] = {
    ErrorCode.NETWORK_ERROR.value: "Unable to connect. Please check your internet connection.",
    ErrorCode.TIMEOUT_ERROR.value: "The request took too long. Please try again.",
    ErrorCode.AUTH_ERROR.value: "Authentication failed. Please sign in again.",
    ErrorCode.PERMISSION_ERROR.value: "You do not have permission to perform this action.",
    ErrorCode.VALIDATION_ERROR.value: "Please check your input and try again.",
    ErrorCode.NOT_FOUND.value: "The requested resource was not found.",
    ErrorCode.RATE_LIMIT_ERROR.value: "Too many requests. Please wait a moment and try again.",
    ErrorCode.SERVER_ERROR.value: "A server error occurred. Please try again later.",
    ErrorCode.STORAGE_ERROR.value: "Unable to save data. Please try again.",
    ErrorCode.STORAGE_PARSE_ERROR.value: "Some saved data could not be read.",
}


def format_error_message(error: Any) -> str:
    """
    Translate an error into a message suitable for display.

    Args:
        error: AppError, other exception, plain string or anything else

    Returns:
        Table message for known codes, the error's own message otherwise,
        and a generic fallback when nothing usable is present
    """
    if not error:
        return GENERIC_MESSAGE

    if isinstance(error, AppError):
        return USER_MESSAGES.get(error.code or "") or error.message or GENERIC_MESSAGE

    if isinstance(error, BaseException):
        return str(error) or GENERIC_MESSAGE

    if isinstance(error, str):
        return error

    return GENERIC_MESSAGE
