"""
Error logger with bounded history and batched backend reporting.

This module provides:
- ErrorLogger: Normalizes errors, keeps the most recent N, queues reports
- ErrorReport: Serializable subset of an error sent to the backend
- ErrorStats: Summary of the in-memory history
- ErrorReporter: Abstract delivery channel for queued reports
- PostgresErrorReporter: Delivers reports through the ``log_error`` SQL function

Logging is a best-effort side channel: ``ErrorLogger.log`` never raises.
"""

from __future__ import annotations

import asyncio
import json
import logging
import platform as _platform
import traceback
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional, Set
from uuid import UUID

import asyncpg

from .errors import AppError, ErrorCode, StorageError, normalize_error

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 100
DEFAULT_MAX_QUEUE_SIZE = 50
DEFAULT_REPORT_INTERVAL = 300.0  # seconds


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ErrorReport:
    """Error data queued for backend delivery."""

    message: str
    error_type: str
    code: Optional[str]
    stack: Optional[str]
    context: Optional[Dict[str, Any]]
    component: Optional[str]
    method: Optional[str]
    platform: str
    app_version: str
    timestamp: str = field(default_factory=_utcnow_iso)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ErrorStats:
    """Summary of logged errors."""

    total: int
    by_code: Dict[str, int]
    recent: List[AppError]
    queued: int
    dropped: int


class ErrorReporter(ABC):
    """Delivery channel for queued error reports."""

    @abstractmethod
    async def report(self, report: ErrorReport) -> None:
        """Deliver one report. Raise on failure so it can be re-queued."""
        ...


class ErrorLogger:
    """
    In-memory error history plus optional batched reporting.

    History is a ring buffer: once ``capacity`` entries are held, the oldest
    is evicted first. Reports are flushed when the queue reaches
    ``max_queue_size``, on the periodic timer, or on demand; only one flush
    runs at a time.
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        reporter: Optional[ErrorReporter] = None,
        max_queue_size: int = DEFAULT_MAX_QUEUE_SIZE,
        report_interval: float = DEFAULT_REPORT_INTERVAL,
        platform: Optional[str] = None,
        app_version: str = "unknown",
    ) -> None:
        """
        Initialize ErrorLogger.

        Args:
            capacity: Maximum number of errors kept in memory
            reporter: Backend delivery channel, or None for local-only logging
            max_queue_size: Queue length that triggers an immediate flush
            report_interval: Seconds between periodic flushes
            platform: Platform tag attached to reports
            app_version: Application version attached to reports
        """
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._errors: Deque[AppError] = deque(maxlen=capacity)
        self._reporter = reporter
        self._max_queue_size = max_queue_size
        self._queue_limit = max_queue_size * 2
        self._queue: Deque[ErrorReport] = deque()
        self._report_interval = report_interval
        self._platform = platform or _platform.system().lower() or "unknown"
        self._app_version = app_version
        self._is_reporting = False
        self._dropped = 0
        self._report_task: Optional[asyncio.Task] = None
        self._pending: Set[asyncio.Task] = set()

    @property
    def capacity(self) -> int:
        return self._errors.maxlen or 0

    @property
    def queued(self) -> int:
        return len(self._queue)

    @property
    def is_reporting(self) -> bool:
        return self._is_reporting

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------

    def log(self, error: Any, context: Optional[Dict[str, Any]] = None) -> AppError:
        """
        Record an error.

        An AppError already held in the history is not recorded again.

        Args:
            error: Any raised value
            context: Contextual metadata (component, operation, key, attempt)

        Returns:
            The normalized AppError
        """
        try:
            app_error = normalize_error(error)
        except Exception:
            app_error = AppError("Unknown error occurred", ErrorCode.UNKNOWN_ERROR.value)

        try:
            if any(recorded is app_error for recorded in self._errors):
                # Re-raised through another layer; keep the first context
                logger.debug("[ErrorLogger] %s already recorded", app_error.name)
                return app_error

            if context:
                app_error.details = {
                    **app_error.details,
                    "context": context,
                    "timestamp": _utcnow_iso(),
                }

            self._errors.append(app_error)

            if self._reporter is not None:
                self._queue_for_reporting(app_error, error, context)

            logger.error(
                "[ErrorLogger] %s: %s (code=%s, status=%s)",
                app_error.name,
                app_error.message,
                app_error.code,
                app_error.status_code,
            )
        except Exception:  # logging must never raise
            logger.debug("ErrorLogger.log failed", exc_info=True)
        return app_error

    def _queue_for_reporting(
        self,
        app_error: AppError,
        original: Any,
        context: Optional[Dict[str, Any]],
    ) -> None:
        if len(self._queue) >= self._queue_limit:
            self._dropped += 1
            logger.warning("Error report queue full, dropping report (%d dropped)", self._dropped)
            return

        stack = None
        if isinstance(original, BaseException) and original.__traceback__ is not None:
            stack = "".join(
                traceback.format_exception(type(original), original, original.__traceback__)
            )

        self._queue.append(
            ErrorReport(
                message=app_error.message,
                error_type=app_error.details.get("original_error", app_error.name),
                code=app_error.code,
                stack=stack,
                context=_json_safe(context) if context else None,
                component=(context or {}).get("component"),
                method=(context or {}).get("context") or (context or {}).get("operation"),
                platform=self._platform,
                app_version=self._app_version,
            )
        )

        if len(self._queue) >= self._max_queue_size:
            self._schedule_flush()

    def _schedule_flush(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: the periodic timer or an explicit flush will pick it up
            return
        task = loop.create_task(self.flush())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    async def flush(self) -> int:
        """
        Deliver queued reports.

        Failed deliveries go back on the queue while it is below
        ``max_queue_size``.

        Returns:
            Number of reports delivered
        """
        if self._is_reporting or not self._queue or self._reporter is None:
            return 0

        self._is_reporting = True
        delivered = 0
        try:
            batch = list(self._queue)
            self._queue.clear()
            logger.info("[ErrorLogger] Reporting %d errors to backend", len(batch))

            for report in batch:
                try:
                    await self._reporter.report(report)
                    delivered += 1
                except Exception as e:
                    logger.warning("[ErrorLogger] Failed to report error: %s", e)
                    if len(self._queue) < self._max_queue_size:
                        self._queue.append(report)
                    else:
                        self._dropped += 1
        finally:
            self._is_reporting = False
        return delivered

    async def force_report_errors(self) -> int:
        return await self.flush()

    def start_periodic_reporting(self) -> None:
        """
        Start the periodic flush task on the running event loop.

        Raises:
            RuntimeError: If called outside a running event loop
        """
        if self._report_task is not None and not self._report_task.done():
            return
        loop = asyncio.get_running_loop()
        self._report_task = loop.create_task(self._periodic_loop())
        logger.info("[ErrorLogger] Started periodic reporting (every %.0fs)", self._report_interval)

    async def _periodic_loop(self) -> None:
        while True:
            await asyncio.sleep(self._report_interval)
            try:
                await self.flush()
            except Exception:
                logger.exception("[ErrorLogger] Periodic flush failed")

    async def stop_periodic_reporting(self) -> None:
        task, self._report_task = self._report_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("[ErrorLogger] Stopped periodic reporting")

    async def aclose(self) -> None:
        """Stop the timer, wait for scheduled flushes and flush what is left."""
        await self.stop_periodic_reporting()
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        await self.flush()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_errors(self) -> List[AppError]:
        return list(self._errors)

    def clear_errors(self) -> None:
        self._errors.clear()

    def get_errors_by_code(self, code: str) -> List[AppError]:
        return [e for e in self._errors if e.code == str(code)]

    def get_recent_errors(self, count: int = 10) -> List[AppError]:
        if count <= 0:
            return []
        return list(self._errors)[-count:]

    def get_error_stats(self) -> ErrorStats:
        by_code: Dict[str, int] = {}
        for error in self._errors:
            code = error.code or "UNKNOWN"
            by_code[code] = by_code.get(code, 0) + 1

        return ErrorStats(
            total=len(self._errors),
            by_code=by_code,
            recent=self.get_recent_errors(5),
            queued=len(self._queue),
            dropped=self._dropped,
        )


def _json_safe(value: Any) -> Any:
    """Round-trip through JSON so reports hold only serializable data."""
    return json.loads(json.dumps(value, default=str))


class PostgresErrorReporter(ErrorReporter):
    """
    Delivers error reports to PostgreSQL.

    Calls the ``log_error`` SQL function defined in ``sql/schema.sql``.
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        """
        Initialize the reporter.

        Args:
            pool: asyncpg connection pool
        """
        self._pool = pool

    @property
    def pool(self) -> asyncpg.Pool:
        return self._pool

    async def report(self, report: ErrorReport) -> None:
        query = "SELECT log_error($1, $2, $3, $4, $5::jsonb, $6, $7, $8, $9, $10::jsonb) AS id"
        device_info = {
            "system": _platform.system(),
            "release": _platform.release(),
            "python": _platform.python_version(),
        }
        try:
            await self._pool.fetchrow(
                query,
                report.message,
                report.error_type,
                report.code,
                report.stack,
                json.dumps(report.context) if report.context is not None else None,
                report.component,
                report.method,
                report.platform,
                report.app_version,
                json.dumps(device_info),
            )
        except Exception as e:
            raise StorageError("Failed to report error", cause=e) from e

    async def get_error_logs(self, limit: int = 100, offset: int = 0) -> List[Dict[str, Any]]:
        """
        Fetch reported errors, newest first.

        Args:
            limit: Maximum rows
            offset: Rows to skip

        Returns:
            List of row dicts
        """
        query = """
            SELECT id, error_message, error_type, error_code, component, method,
                   is_resolved, created_at
            FROM get_error_logs($1, $2)
        """
        try:
            rows = await self._pool.fetch(query, limit, offset)
            return [dict(row) for row in rows]
        except Exception as e:
            raise StorageError("Failed to fetch error logs", cause=e) from e

    async def mark_error_resolved(self, error_id: UUID) -> bool:
        """
        Mark a reported error as resolved.

        Returns:
            True if a row was updated
        """
        query = "SELECT mark_error_resolved($1) AS result"
        try:
            row = await self._pool.fetchrow(query, error_id)
            return bool(row["result"]) if row else False
        except Exception as e:
            raise StorageError("Failed to mark error resolved", cause=e) from e

    async def cleanup_old_error_logs(self, days_old: int = 90) -> int:
        """
        Delete reported errors older than ``days_old`` days.

        Returns:
            Number of rows deleted
        """
        query = "SELECT cleanup_old_error_logs($1) AS deleted"
        try:
            row = await self._pool.fetchrow(query, days_old)
            return int(row["deleted"]) if row else 0
        except Exception as e:
            raise StorageError("Failed to clean up error logs", cause=e) from e
