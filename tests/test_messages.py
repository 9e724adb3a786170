"""Tests for user-facing error messages."""

from __future__ import annotations

import pytest

from ribbon_core import (
    AppError,
    AuthError,
    NetworkError,
    RequestTimeoutError,
    StorageParseError,
    format_error_message,
)
from ribbon_core.messages import GENERIC_MESSAGE


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (NetworkError(), "Unable to connect. Please check your internet connection."),
        (RequestTimeoutError(), "The request took too long. Please try again."),
        (AuthError(), "Authentication failed. Please sign in again."),
        (StorageParseError(), "Some saved data could not be read."),
    ],
)
def test_known_codes_use_table(error: AppError, expected: str) -> None:
    assert format_error_message(error) == expected


def test_unknown_code_uses_message() -> None:
    assert format_error_message(AppError("Name is taken", code="NAME_TAKEN")) == "Name is taken"


def test_foreign_exception_uses_text() -> None:
    assert format_error_message(ValueError("bad date")) == "bad date"
    assert format_error_message(ValueError()) == GENERIC_MESSAGE


def test_plain_string() -> None:
    assert format_error_message("Try again later") == "Try again later"


@pytest.mark.parametrize("value", [None, "", 0, {"message": "x"}])
def test_fallback(value: object) -> None:
    assert format_error_message(value) == GENERIC_MESSAGE
