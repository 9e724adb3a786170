"""
Runtime configuration.

Settings are read from environment variables, with a ``.env`` file loaded
first when present:

    RIBBON_API_BASE_URL           API base URL
    RIBBON_API_TIMEOUT            Per-attempt timeout in seconds (15)
    RIBBON_API_MAX_RETRIES        Retries after the first attempt (3)
    RIBBON_API_RETRY_DELAY        Base backoff in seconds (1)
    RIBBON_DATABASE_URL           PostgreSQL DSN; unset means in-memory storage
    RIBBON_STORAGE_NAMESPACE      Partition of the ribbon_kv table ("default")
    RIBBON_STRICT_ENCRYPTION      Fail closed on crypto errors (false)
    RIBBON_KEYRING_SERVICE        Keychain service name ("ribbon")
    RIBBON_ERROR_CAPACITY         Error history size (100)
    RIBBON_ERROR_REPORT_INTERVAL  Seconds between report flushes (300)
    RIBBON_LOG_LEVEL              Logging level ("INFO")
    RIBBON_APP_VERSION            Version tag attached to error reports
    RIBBON_PLATFORM               Platform tag attached to error reports
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Union

from dotenv import load_dotenv

from .errors import ConfigError

_TRUE = frozenset({"1", "true", "yes", "on"})
_FALSE = frozenset({"0", "false", "no", "off", ""})


@dataclass(frozen=True)
class Settings:
    """Application settings."""

    api_base_url: str = ""
    api_timeout: float = 15.0
    api_max_retries: int = 3
    api_retry_delay: float = 1.0
    database_url: Optional[str] = None
    storage_namespace: str = "default"
    strict_encryption: bool = False
    keyring_service: str = "ribbon"
    error_capacity: int = 100
    error_report_interval: float = 300.0
    log_level: str = "INFO"
    app_version: str = "unknown"
    platform: Optional[str] = None

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        env_file: Optional[Union[str, Path]] = None,
    ) -> Settings:
        """
        Build settings from the environment.

        Args:
            environ: Variables to read instead of ``os.environ`` (skips .env)
            env_file: Explicit .env path; default is discovery from the cwd

        Raises:
            ConfigError: If a variable holds an invalid value
        """
        if environ is None:
            load_dotenv(env_file)
            environ = os.environ

        def text(name: str, default: Optional[str]) -> Optional[str]:
            value = environ.get(name)
            return value.strip() if value is not None and value.strip() else default

        settings = cls(
            api_base_url=text("RIBBON_API_BASE_URL", "") or "",
            api_timeout=_parse_float(environ, "RIBBON_API_TIMEOUT", 15.0),
            api_max_retries=_parse_int(environ, "RIBBON_API_MAX_RETRIES", 3),
            api_retry_delay=_parse_float(environ, "RIBBON_API_RETRY_DELAY", 1.0),
            database_url=text("RIBBON_DATABASE_URL", None),
            storage_namespace=text("RIBBON_STORAGE_NAMESPACE", "default") or "default",
            strict_encryption=_parse_bool(environ, "RIBBON_STRICT_ENCRYPTION", False),
            keyring_service=text("RIBBON_KEYRING_SERVICE", "ribbon") or "ribbon",
            error_capacity=_parse_int(environ, "RIBBON_ERROR_CAPACITY", 100),
            error_report_interval=_parse_float(environ, "RIBBON_ERROR_REPORT_INTERVAL", 300.0),
            log_level=(text("RIBBON_LOG_LEVEL", "INFO") or "INFO").upper(),
            app_version=text("RIBBON_APP_VERSION", "unknown") or "unknown",
            platform=text("RIBBON_PLATFORM", None),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        if self.api_timeout <= 0:
            raise ConfigError("RIBBON_API_TIMEOUT must be positive")
        if self.api_max_retries < 0:
            raise ConfigError("RIBBON_API_MAX_RETRIES must not be negative")
        if self.api_retry_delay < 0:
            raise ConfigError("RIBBON_API_RETRY_DELAY must not be negative")
        if self.error_capacity < 1:
            raise ConfigError("RIBBON_ERROR_CAPACITY must be at least 1")
        if self.error_report_interval <= 0:
            raise ConfigError("RIBBON_ERROR_REPORT_INTERVAL must be positive")
        if not isinstance(logging.getLevelName(self.log_level), int):
            raise ConfigError(f"Unknown RIBBON_LOG_LEVEL: {self.log_level}")


def _parse_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def _parse_float(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")


def _parse_bool(environ: Mapping[str, str], name: str, default: bool) -> bool:
    raw = environ.get(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigError(f"{name} must be a boolean, got {raw!r}")
