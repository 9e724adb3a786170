"""
Recipient persistence service.

This module provides:
- Budget, Occasion, RecipientForm, Recipient: Validated recipient models
- AuditLogEntry: Record of a destructive recipient operation
- RecipientService: CRUD, search and backup/restore over StorageService
- UpcomingOccasion, ClearResult: Service result types

Recipients are personal data and live under SENSITIVE keys, so they are
always encrypted at rest. Clearing follows a snapshot-then-clear-then-log
order: the backup key is written before the recipients key is removed.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Mapping, Optional
from uuid import uuid4

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .error_logger import ErrorLogger
from .errors import AppError, NotFoundError, ValidationError
from .keys import StorageKeys
from .storage import StorageService

logger = logging.getLogger(__name__)

MAX_AUDIT_LOGS = 50
MAX_BUDGET = 10000
CURRENCIES = ("USD", "EUR", "GBP", "CAD", "AUD")
OCCASION_TYPES = ("birthday", "holiday", "anniversary", "wedding", "other")


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class _Model(BaseModel):
    """Stored as camelCase JSON; constructed with either spelling."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class Budget(_Model):
    minimum: float = Field(..., ge=0, le=MAX_BUDGET)
    maximum: float = Field(..., ge=1, le=MAX_BUDGET)
    currency: Literal["USD", "EUR", "GBP", "CAD", "AUD"]

    @model_validator(mode="after")
    def check_range(self) -> Budget:
        if self.maximum < self.minimum:
            raise ValueError("Maximum budget must be greater than or equal to minimum")
        return self


class Occasion(_Model):
    type: Literal["birthday", "holiday", "anniversary", "wedding", "other"]
    date: Optional[str] = None  # ISO-8601
    custom_name: Optional[str] = None

    @field_validator("date")
    @classmethod
    def validate_date(cls, v: Optional[str]) -> Optional[str]:
        if v is not None:
            _parse_date(v)
        return v

    def parsed_date(self) -> Optional[datetime]:
        return _parse_date(self.date) if self.date else None


class RecipientForm(_Model):
    """User-editable recipient fields."""

    name: str = Field(..., min_length=2)
    relationship: str = Field(..., min_length=1)
    age_range: Optional[str] = None
    gender: Optional[str] = None
    interests: List[str] = Field(..., min_length=1)
    dislikes: str = ""
    budget: Budget
    occasion: Occasion
    past_gifts: List[str] = Field(default_factory=list)
    notes: Optional[str] = None


class Recipient(RecipientForm):
    id: str = Field(..., min_length=1)
    created_at: str
    updated_at: str
    last_gift_consultation: Optional[str] = None

    def form(self) -> RecipientForm:
        return RecipientForm.model_validate(
            self.model_dump(include=set(RecipientForm.model_fields))
        )


class AuditLogEntry(_Model):
    operation: Literal["CLEAR_ALL", "DELETE", "UPDATE"]
    timestamp: str = Field(default_factory=_timestamp)
    user_id: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


@dataclass
class UpcomingOccasion:
    recipient: Recipient
    days_until: int


@dataclass
class ClearResult:
    success: bool
    backup: Optional[List[Recipient]] = None


def _parse_date(value: str) -> datetime:
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _validation_error(error: pydantic.ValidationError) -> ValidationError:
    first = error.errors()[0] if error.errors() else {}
    field = ".".join(str(part) for part in first.get("loc", ())) or None
    return ValidationError(
        "Invalid recipient data",
        field=field,
        details={"errors": [e["msg"] for e in error.errors()]},
    )


def _by_field_name(model: type, data: Mapping[str, Any]) -> Dict[str, Any]:
    """Rename camelCase keys to field names so they merge over a model dump."""
    names = {to_camel(name): name for name in model.model_fields}
    return {names.get(key, key): value for key, value in data.items()}


class RecipientService:
    """
    Manages recipient CRUD with persistence.

    The recipient list is loaded once and cached; every mutation writes the
    whole list back.
    """

    def __init__(
        self,
        storage: StorageService,
        error_logger: ErrorLogger,
        user_id: Optional[str] = None,
    ) -> None:
        """
        Initialize RecipientService.

        Args:
            storage: Storage service holding recipients
            error_logger: Sink for failures
            user_id: Identity recorded in audit log entries
        """
        self._storage = storage
        self._error_logger = error_logger
        self._user_id = user_id
        self._recipients: List[Recipient] = []
        self._loaded = False

    def _fail(self, error: Exception, context: str, message: str, **extra: Any) -> AppError:
        self._error_logger.log(error, {"component": "RecipientService", "context": context, **extra})
        if isinstance(error, (ValidationError, NotFoundError)):
            return error
        wrapped = AppError(message)
        wrapped.__cause__ = error
        return wrapped

    async def load(self) -> List[Recipient]:
        """Load all recipients from storage, replacing the cache."""
        try:
            data = await self._storage.get(StorageKeys.RECIPIENTS) or []
            self._recipients = [Recipient.model_validate(item) for item in data]
            self._loaded = True
            return list(self._recipients)
        except Exception as e:
            raise self._fail(e, "loadRecipients", "Failed to load recipients")

    async def _ensure_loaded(self) -> None:
        if not self._loaded:
            await self.load()

    async def _save(self) -> None:
        await self._storage.set(
            StorageKeys.RECIPIENTS, [r.to_json_dict() for r in self._recipients]
        )

    def _index_of(self, recipient_id: str) -> int:
        for index, recipient in enumerate(self._recipients):
            if recipient.id == recipient_id:
                return index
        raise NotFoundError("Recipient not found", details={"id": recipient_id})

    async def create(self, form_data: Mapping[str, Any]) -> Recipient:
        """
        Create a recipient.

        Args:
            form_data: RecipientForm fields (camelCase or snake_case)

        Returns:
            The stored Recipient

        Raises:
            ValidationError: If the form data is invalid
        """
        try:
            form = RecipientForm.model_validate(dict(form_data))
        except pydantic.ValidationError as e:
            raise _validation_error(e) from e

        try:
            await self._ensure_loaded()
            now = _timestamp()
            recipient = Recipient(**form.model_dump(), id=str(uuid4()), created_at=now, updated_at=now)
            self._recipients.append(recipient)
            await self._save()
            return recipient
        except Exception as e:
            raise self._fail(e, "createRecipient", "Failed to create recipient")

    async def get(self, recipient_id: str) -> Optional[Recipient]:
        await self._ensure_loaded()
        for recipient in self._recipients:
            if recipient.id == recipient_id:
                return recipient
        return None

    async def list(self) -> List[Recipient]:
        await self._ensure_loaded()
        return list(self._recipients)

    async def update(self, recipient_id: str, updates: Mapping[str, Any]) -> Recipient:
        """
        Apply a partial update to a recipient's form fields.

        Raises:
            NotFoundError: If no recipient has ``recipient_id``
            ValidationError: If the merged data is invalid
        """
        try:
            await self._ensure_loaded()
            index = self._index_of(recipient_id)
            current = self._recipients[index]

            merged = {**current.form().model_dump(), **_by_field_name(RecipientForm, updates)}
            try:
                form = RecipientForm.model_validate(merged)
            except pydantic.ValidationError as e:
                raise _validation_error(e) from e

            updated = current.model_copy(update={**form.model_dump(), "updated_at": _timestamp()})
            self._recipients[index] = updated
            await self._save()
            return updated
        except Exception as e:
            raise self._fail(e, "updateRecipient", "Failed to update recipient", id=recipient_id)

    async def delete(self, recipient_id: str) -> None:
        try:
            await self._ensure_loaded()
            index = self._index_of(recipient_id)
            removed = self._recipients.pop(index)
            await self._save()
        except Exception as e:
            raise self._fail(e, "deleteRecipient", "Failed to delete recipient", id=recipient_id)

        await self._add_audit_log(
            AuditLogEntry(operation="DELETE", user_id=self._user_id, details={"id": removed.id})
        )

    async def search(self, query: str) -> List[Recipient]:
        """Case-insensitive match on name or relationship."""
        await self._ensure_loaded()
        needle = query.lower()
        return [
            r
            for r in self._recipients
            if needle in r.name.lower() or needle in r.relationship.lower()
        ]

    async def recent_consultations(self, limit: Optional[int] = None) -> List[Recipient]:
        """Recipients ordered by last gift consultation, most recent first."""
        await self._ensure_loaded()

        def sort_key(recipient: Recipient) -> float:
            if not recipient.last_gift_consultation:
                return 0.0
            return _parse_date(recipient.last_gift_consultation).timestamp()

        ordered = sorted(self._recipients, key=sort_key, reverse=True)
        return ordered[:limit] if limit else ordered

    async def upcoming_occasions(
        self, limit: int = 5, now: Optional[datetime] = None
    ) -> List[UpcomingOccasion]:
        """
        Recipients whose occasion date is in the future, soonest first.

        Args:
            limit: Maximum entries returned
            now: Reference time (defaults to the current UTC time)
        """
        await self._ensure_loaded()
        reference = now or datetime.now(timezone.utc)
        if reference.tzinfo is None:
            reference = reference.replace(tzinfo=timezone.utc)

        upcoming: List[UpcomingOccasion] = []
        for recipient in self._recipients:
            occasion_date = recipient.occasion.parsed_date()
            if occasion_date is None or occasion_date <= reference:
                continue
            days = math.ceil((occasion_date - reference).total_seconds() / 86400)
            upcoming.append(UpcomingOccasion(recipient, days))

        upcoming.sort(key=lambda item: item.days_until)
        return upcoming[:limit]

    # ------------------------------------------------------------------
    # Backup and audit
    # ------------------------------------------------------------------

    async def clear_all(self, backup: bool = False) -> ClearResult:
        """
        Remove every recipient.

        A recovery snapshot is always written to the backup key before the
        recipients key is removed.

        Args:
            backup: Also return the removed recipients

        Returns:
            ClearResult
        """
        try:
            await self._ensure_loaded()
            snapshot = list(self._recipients)

            await self._storage.set(
                StorageKeys.RECIPIENTS_BACKUP, [r.to_json_dict() for r in snapshot]
            )
            await self._storage.remove(StorageKeys.RECIPIENTS)
            self._recipients = []
        except Exception as e:
            raise self._fail(e, "clearAllRecipients", "Failed to clear recipients")

        await self._add_audit_log(
            AuditLogEntry(
                operation="CLEAR_ALL",
                user_id=self._user_id,
                details={"deletedCount": len(snapshot), "backupCreated": True},
            )
        )
        logger.info("Cleared %d recipients", len(snapshot))
        return ClearResult(success=True, backup=snapshot if backup else None)

    async def restore_from_backup(self) -> List[Recipient]:
        """
        Restore recipients from the backup key, then delete the backup.

        Raises:
            NotFoundError: If there is no backup or it is empty
        """
        try:
            data = await self._storage.get(StorageKeys.RECIPIENTS_BACKUP)
            if not data:
                raise NotFoundError("No backup found to restore")

            self._recipients = [Recipient.model_validate(item) for item in data]
            self._loaded = True
            await self._save()
        except Exception as e:
            raise self._fail(e, "restoreFromBackup", "Failed to restore recipients from backup")

        await self._add_audit_log(
            AuditLogEntry(
                operation="UPDATE",
                user_id=self._user_id,
                details={"restoredCount": len(self._recipients)},
            )
        )

        try:
            await self._storage.remove(StorageKeys.RECIPIENTS_BACKUP)
        except Exception as e:
            raise self._fail(e, "restoreFromBackup", "Failed to remove recipients backup")

        return list(self._recipients)

    async def _add_audit_log(self, entry: AuditLogEntry) -> None:
        try:
            logs = await self.get_audit_logs()
            logs.append(entry)
            logs = logs[-MAX_AUDIT_LOGS:]
            await self._storage.set(
                StorageKeys.RECIPIENT_AUDIT_LOGS, [log.to_json_dict() for log in logs]
            )
        except Exception as e:
            # Audit logging does not fail the operation
            self._error_logger.log(e, {"component": "RecipientService", "context": "addAuditLog"})

    async def get_audit_logs(self) -> List[AuditLogEntry]:
        try:
            data = await self._storage.get(StorageKeys.RECIPIENT_AUDIT_LOGS) or []
            return [AuditLogEntry.model_validate(item) for item in data]
        except Exception as e:
            self._error_logger.log(e, {"component": "RecipientService", "context": "getAuditLogs"})
            return []
