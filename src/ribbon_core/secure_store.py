"""
Secure key store abstractions.

This module provides:
- SecureKeyStore: Abstract protocol for confidential key storage backends
- InMemorySecureStore: In-memory implementation for testing
- KeyringSecureStore: OS keychain / secret service backend via ``keyring``
- detect_secure_store: Capability detection run once at startup
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional

import keyring
from keyring.backends import fail, null
from keyring.errors import KeyringError, PasswordDeleteError

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_NAME = "ribbon"


class SecureKeyStore(ABC):
    """
    Abstract confidential key-value store.

    All methods are async so that blocking platform keychains can be
    driven from a worker thread.
    """

    @abstractmethod
    async def get_item(self, key: str) -> Optional[str]:
        """Get a stored secret, or None."""
        ...

    @abstractmethod
    async def set_item(self, key: str, value: str) -> None:
        """Store a secret, replacing any previous value."""
        ...

    @abstractmethod
    async def delete_item(self, key: str) -> None:
        """Delete a secret. Missing entries are ignored."""
        ...


class InMemorySecureStore(SecureKeyStore):
    """
    In-memory secure store for testing.

    Uses asyncio.Lock for safe concurrent access.
    """

    def __init__(self) -> None:
        self._items: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def get_item(self, key: str) -> Optional[str]:
        async with self._lock:
            return self._items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        async with self._lock:
            self._items[key] = value

    async def delete_item(self, key: str) -> None:
        async with self._lock:
            self._items.pop(key, None)


class KeyringSecureStore(SecureKeyStore):
    """
    Secure store backed by the platform keychain.

    Entries are stored as passwords under ``service_name`` with the logical
    key as the username.
    """

    def __init__(self, service_name: str = DEFAULT_SERVICE_NAME) -> None:
        self._service_name = service_name

    @property
    def service_name(self) -> str:
        return self._service_name

    async def get_item(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(keyring.get_password, self._service_name, key)

    async def set_item(self, key: str, value: str) -> None:
        await asyncio.to_thread(keyring.set_password, self._service_name, key, value)

    async def delete_item(self, key: str) -> None:
        try:
            await asyncio.to_thread(keyring.delete_password, self._service_name, key)
        except PasswordDeleteError:
            # Already absent
            return


def detect_secure_store(service_name: str = DEFAULT_SERVICE_NAME) -> Optional[SecureKeyStore]:
    """
    Detect whether a usable platform keychain exists.

    Args:
        service_name: Keychain service name for stored entries

    Returns:
        KeyringSecureStore when a real backend is active, None otherwise
    """
    try:
        backend = keyring.get_keyring()
    except KeyringError as e:
        logger.warning("Keyring backend could not be loaded: %s", e)
        return None

    if isinstance(backend, (fail.Keyring, null.Keyring)):
        logger.warning("No secure key store available (backend: %s)", type(backend).__name__)
        return None

    logger.debug("Using keyring backend %s", type(backend).__name__)
    return KeyringSecureStore(service_name)
