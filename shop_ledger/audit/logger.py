"""
Audit Logger

DESIGN DECISION: Every ledger operation is logged.
This provides:
1. Complete traceability of balance changes
2. Debugging capability
3. A history of edits and deletions
4. Compliance readiness

The audit logger:
- Never blocks a ledger operation (logging is synchronous and local;
  persistence happens later in flush())
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

import logging
from collections import deque
from typing import Optional
from uuid import UUID, uuid4

import structlog

from shop_ledger.models.audit import AuditEvent, AuditSeverity
from shop_ledger.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(level: str = "INFO") -> None:
    """Route structured logs to stderr at the given stdlib level."""
    logging.basicConfig(format="%(message)s", level=level.upper())


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Google Sheets (for persistence), on flush
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
        history_size: int = 500,
        max_pending: int = 1000,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
            history_size: How many recent events to keep in memory.
            max_pending: How many events may wait for storage. The oldest
                    is dropped once the queue is full.
        """
        self._storage = storage
        self._logger = structlog.get_logger(__name__)
        self._recent: deque[AuditEvent] = deque(maxlen=history_size)
        self._pending: deque[AuditEvent] = deque(maxlen=max_pending)

    @property
    def recent_events(self) -> list[AuditEvent]:
        """Recent events, oldest first."""
        return list(self._recent)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def log(self, event: AuditEvent) -> None:
        """
        Log an audit event.

        Always logs locally. Queues the event for storage if configured.
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        self._recent.append(event)
        if self._storage:
            if len(self._pending) == self._pending.maxlen:
                self._logger.warning(
                    "audit_pending_overflow",
                    dropped_event_id=str(self._pending[0].event_id),
                )
            self._pending.append(event)

    async def flush(self) -> int:
        """
        Write queued events to storage.

        Returns the number of events written. Events that fail to write
        stay queued for the next flush.
        """
        if not self._storage or not self._pending:
            return 0

        pending = list(self._pending)
        self._pending.clear()
        written = 0
        for index, event in enumerate(pending):
            try:
                ok = await self._storage.append_event(event)
            except Exception as e:
                ok = False
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
            if not ok:
                # Keep order: the failed event and everything after it
                retry = pending[index:] + list(self._pending)
                self._pending.clear()
                self._pending.extend(retry)
                break
            written += 1
        return written


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a ledger operation and pass it to every
    event the operation produces.
    """
    return uuid4()
