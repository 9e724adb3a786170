"""
Ribbon Core

Persistence and network core for the Ribbon gift-planning app: encrypted
key-value storage, a retrying HTTP client and an error logger.

Overview
--------
- **Storage** keeps JSON values under declared logical keys. Keys classified
  SENSITIVE are encrypted transparently with a per-install key.
- **Key Manager** holds that key in the platform keychain, generating it on
  first use.
- **API Client** retries network failures, timeouts, 429 and 5xx with
  exponential backoff and jitter.
- **Error Logger** keeps a bounded error history and batches reports to a
  backend.

Quick Start
-----------
```python
import asyncio
from ribbon_core import AppContext, StorageKeys

async def main():
    async with await AppContext.create() as ctx:
        await ctx.storage.set(StorageKeys.GIFTS, [{"id": "1", "name": "Mug"}])
        gifts = await ctx.storage.get(StorageKeys.GIFTS)

asyncio.run(main())
```

Modules
-------
- `crypto`: SHA-256 keystream cipher and SecureKey
- `envelope`: Encrypted value envelopes and codec
- `key_manager`: Per-install key lifecycle
- `keys`: Declared storage keys and sensitivity classification
- `storage`: Storage service with migrations
- `backends`: In-memory and PostgreSQL key-value stores
- `api_client`: HTTP client with retry
- `errors`, `messages`, `error_logger`: Error taxonomy, display text, logging
- `recipients`: Recipient persistence service
- `context`, `config`, `logging_setup`: Wiring and ambient configuration
"""

__version__ = "0.1.0"

# ============================================================================
# Crypto Exports
# ============================================================================

from .crypto import (
    IV_SIZE,
    KEY_SIZE,
    CipherText,
    KeystreamCipher,
    SecureKey,
    derive_keystream,
    generate_random_bytes,
)

# ============================================================================
# Error Exports
# ============================================================================

from .errors import (
    AppError,
    AuthError,
    ConfigError,
    CryptoError,
    ErrorCode,
    KeyStoreUnavailableError,
    NetworkError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
    RequestTimeoutError,
    ServerError,
    StorageError,
    StorageParseError,
    ValidationError,
    normalize_error,
)
from .messages import format_error_message
from .error_logger import (
    ErrorLogger,
    ErrorReport,
    ErrorReporter,
    ErrorStats,
    PostgresErrorReporter,
)

# ============================================================================
# Key and Envelope Exports
# ============================================================================

from .secure_store import (
    InMemorySecureStore,
    KeyringSecureStore,
    SecureKeyStore,
    detect_secure_store,
)
from .key_manager import KeyManager, KeyRotationResult
from .keys import (
    STORAGE_VERSION,
    Sensitivity,
    SensitivityClassifier,
    StorageKeys,
)
from .envelope import (
    ENVELOPE_VERSION,
    LEGACY_ENVELOPE_VERSION,
    EncryptedEnvelope,
    EncryptedValueCodec,
    OpenedValue,
    is_envelope,
)

# ============================================================================
# Storage Exports
# ============================================================================

from .backends import (
    BackendError,
    InMemoryKeyValueStore,
    KeyValueBackend,
    PostgresKeyValueStore,
)
from .storage import StorageService, StorageSize, StorageState

# ============================================================================
# Network Exports
# ============================================================================

from .api_client import ApiClient, ApiClientConfig, ApiResponse

# ============================================================================
# Domain and Wiring Exports
# ============================================================================

from .recipients import (
    AuditLogEntry,
    Budget,
    Occasion,
    Recipient,
    RecipientForm,
    RecipientService,
)
from .config import Settings
from .logging_setup import SecretRedactionFilter, configure_logging
from .context import AppContext

# ============================================================================
# Public API
# ============================================================================

__all__ = [
    # Version
    "__version__",
    # Crypto
    "KEY_SIZE",
    "IV_SIZE",
    "CipherText",
    "KeystreamCipher",
    "SecureKey",
    "derive_keystream",
    "generate_random_bytes",
    # Errors
    "AppError",
    "ErrorCode",
    "NetworkError",
    "RequestTimeoutError",
    "AuthError",
    "PermissionDeniedError",
    "NotFoundError",
    "RateLimitError",
    "ServerError",
    "ValidationError",
    "StorageError",
    "StorageParseError",
    "CryptoError",
    "KeyStoreUnavailableError",
    "ConfigError",
    "normalize_error",
    "format_error_message",
    "ErrorLogger",
    "ErrorReport",
    "ErrorReporter",
    "ErrorStats",
    "PostgresErrorReporter",
    # Keys and envelopes
    "SecureKeyStore",
    "InMemorySecureStore",
    "KeyringSecureStore",
    "detect_secure_store",
    "KeyManager",
    "KeyRotationResult",
    "StorageKeys",
    "Sensitivity",
    "SensitivityClassifier",
    "STORAGE_VERSION",
    "EncryptedEnvelope",
    "EncryptedValueCodec",
    "OpenedValue",
    "is_envelope",
    "ENVELOPE_VERSION",
    "LEGACY_ENVELOPE_VERSION",
    # Storage
    "KeyValueBackend",
    "InMemoryKeyValueStore",
    "PostgresKeyValueStore",
    "BackendError",
    "StorageService",
    "StorageSize",
    "StorageState",
    # Network
    "ApiClient",
    "ApiClientConfig",
    "ApiResponse",
    # Domain and wiring
    "Budget",
    "Occasion",
    "RecipientForm",
    "Recipient",
    "AuditLogEntry",
    "RecipientService",
    "Settings",
    "SecretRedactionFilter",
    "configure_logging",
    "AppContext",
]
