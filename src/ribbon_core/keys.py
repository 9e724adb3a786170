"""
Declared storage keys and their sensitivity classification.

This module provides:
- StorageKeys: Every logical key the storage service writes
- Sensitivity: SENSITIVE / SAFE tag deciding whether values are encrypted
- STORAGE_KEY_SENSITIVITY: Static key -> sensitivity table
- SensitivityClassifier: Lookup with an explicit unmapped-key policy
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet, Mapping, Optional, Tuple

from .errors import ValidationError


class StorageKeys:
    """Centralized storage key names."""

    # Auth
    AUTH_TOKEN = "@ribbon/auth_token"
    REFRESH_TOKEN = "@ribbon/refresh_token"
    USER_DATA = "@ribbon/user_data"

    # Recipients
    RECIPIENTS = "@ribbon/recipients"
    ACTIVE_RECIPIENT = "@ribbon/active_recipient"
    RECIPIENTS_BACKUP = "@ribbon/recipients_backup"
    RECIPIENT_AUDIT_LOGS = "@ribbon/recipient_audit_logs"

    # Gifts
    GIFTS = "@ribbon/gifts"
    SAVED_GIFTS = "@ribbon/saved_gifts"
    PURCHASED_GIFTS = "@ribbon/purchased_gifts"

    # UI state
    THEME = "@ribbon/theme"
    USER_PREFERENCES = "@ribbon/user_preferences"

    # Onboarding
    HAS_COMPLETED_ONBOARDING = "@ribbon/has_completed_onboarding"
    ONBOARDING_DRAFT = "@ribbon/onboarding_draft"

    # Analytics / config
    ANALYTICS_EVENTS = "@ribbon/analytics_events"
    FEATURE_FLAGS = "@ribbon/feature_flags"

    # Schema version marker
    STORAGE_VERSION = "@ribbon/storage_version"


class Sensitivity(str, Enum):
    """Storage key sensitivity level."""

    SENSITIVE = "SENSITIVE"
    SAFE = "SAFE"

    def __str__(self) -> str:
        return self.value


STORAGE_KEY_SENSITIVITY: Dict[str, Sensitivity] = {
    StorageKeys.AUTH_TOKEN: Sensitivity.SENSITIVE,
    StorageKeys.REFRESH_TOKEN: Sensitivity.SENSITIVE,
    StorageKeys.USER_DATA: Sensitivity.SENSITIVE,
    # Personal data
    StorageKeys.RECIPIENTS: Sensitivity.SENSITIVE,
    StorageKeys.ACTIVE_RECIPIENT: Sensitivity.SENSITIVE,
    StorageKeys.RECIPIENTS_BACKUP: Sensitivity.SENSITIVE,
    StorageKeys.RECIPIENT_AUDIT_LOGS: Sensitivity.SAFE,
    StorageKeys.GIFTS: Sensitivity.SENSITIVE,
    StorageKeys.SAVED_GIFTS: Sensitivity.SENSITIVE,
    StorageKeys.PURCHASED_GIFTS: Sensitivity.SENSITIVE,
    StorageKeys.THEME: Sensitivity.SAFE,
    StorageKeys.USER_PREFERENCES: Sensitivity.SAFE,
    StorageKeys.HAS_COMPLETED_ONBOARDING: Sensitivity.SAFE,
    StorageKeys.ONBOARDING_DRAFT: Sensitivity.SENSITIVE,  # draft recipient data
    StorageKeys.ANALYTICS_EVENTS: Sensitivity.SAFE,
    StorageKeys.FEATURE_FLAGS: Sensitivity.SAFE,
    StorageKeys.STORAGE_VERSION: Sensitivity.SAFE,
}

# Current storage schema version
STORAGE_VERSION = "1.2.0"

# Keys removed from the schema; dropped by the first migration step.
DEPRECATED_KEYS: Tuple[str, ...] = (
    "@ribbon/user_token",
    "@ribbon/gift_cache",
)


class SensitivityClassifier:
    """
    Maps logical storage keys to a sensitivity level.

    Unmapped keys fall back to ``default`` (SAFE, i.e. stored unencrypted).
    With ``strict=True`` an unmapped key is refused instead.
    """

    def __init__(
        self,
        mapping: Optional[Mapping[str, Sensitivity]] = None,
        default: Sensitivity = Sensitivity.SAFE,
        strict: bool = False,
    ) -> None:
        source = STORAGE_KEY_SENSITIVITY if mapping is None else mapping
        self._mapping: Dict[str, Sensitivity] = {k: Sensitivity(v) for k, v in source.items()}
        self._default = default
        self._strict = strict

    @property
    def strict(self) -> bool:
        return self._strict

    def classify(self, key: str) -> Sensitivity:
        """
        Return the sensitivity of a key.

        Raises:
            ValidationError: In strict mode, for keys missing from the table
        """
        sensitivity = self._mapping.get(key)
        if sensitivity is not None:
            return sensitivity
        if self._strict:
            raise ValidationError(f"Unknown storage key: {key}", field="key")
        return self._default

    def is_sensitive(self, key: str) -> bool:
        return self.classify(key) is Sensitivity.SENSITIVE

    def is_declared(self, key: str) -> bool:
        return key in self._mapping

    def declared_keys(self) -> FrozenSet[str]:
        return frozenset(self._mapping)

    def sensitive_keys(self) -> FrozenSet[str]:
        return frozenset(k for k, v in self._mapping.items() if v is Sensitivity.SENSITIVE)
