"""
Audit Models for Shop Ledger

Every significant action in the system is logged for audit purposes.
This provides:
1. Complete traceability of all balance changes
2. Debugging information when things go wrong
3. Accountability for edits and deletions
4. Ability to reconstruct history

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every ledger operation has its own event type.
    """
    # Master data
    CUSTOMER_ADDED = "customer_added"
    CUSTOMER_UPDATED = "customer_updated"
    CUSTOMER_DELETED = "customer_deleted"
    PRODUCT_ADDED = "product_added"
    PRODUCT_UPDATED = "product_updated"
    PRODUCT_DELETED = "product_deleted"
    SAFE_ADDED = "safe_added"
    SAFE_UPDATED = "safe_updated"
    SAFE_DELETED = "safe_deleted"

    # Ledger
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_EDITED = "transaction_edited"
    TRANSACTION_DELETED = "transaction_deleted"

    # Rejections and skips
    VALIDATION_FAILED = "validation_failed"
    ENTITY_NOT_FOUND = "entity_not_found"
    ORPHANED_REFERENCE_SKIPPED = "orphaned_reference_skipped"

    # Sync and bootstrap
    DATA_LOADED = "data_loaded"
    DEFAULT_SAFES_SEEDED = "default_safes_seeded"
    SYNC_FAILED = "sync_failed"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Collection of the entity (e.g., 'customers', 'transactions')"
    )
    entity_id: Optional[int] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one edit and its balance updates)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, description, details_json, error_message]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            str(self.entity_id) if self.entity_id else "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.transaction_created(tx, correlation_id)
        event = AuditEventBuilder.entity_not_found("customers", 42, "create_invoice")
    """

    @staticmethod
    def entity_changed(
        event_type: AuditEventType,
        collection: str,
        entity_id: int,
        name: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        action = event_type.value.rsplit("_", 1)[-1]
        return AuditEvent(
            event_type=event_type,
            entity_type=collection,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"{collection[:-1].capitalize()} {action}: {name}",
            details={"name": name},
        )

    @staticmethod
    def transaction_created(
        transaction_id: int,
        kind: str,
        total: str,
        currency: str,
        customer_id: Optional[int],
        safe_id: Optional[int],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_CREATED,
            entity_type="transactions",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction created: {kind} {total} {currency}",
            details={
                "kind": kind,
                "total": total,
                "currency": currency,
                "customer_id": customer_id,
                "safe_id": safe_id,
            },
        )

    @staticmethod
    def transaction_edited(
        transaction_id: int,
        before: dict,
        after: dict,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_EDITED,
            entity_type="transactions",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction edited: {transaction_id}",
            details={
                "before": before,
                "after": after,
            },
        )

    @staticmethod
    def transaction_deleted(
        transaction_id: int,
        kind: str,
        total: str,
        currency: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_DELETED,
            entity_type="transactions",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction deleted: {kind} {total} {currency}",
            details={
                "kind": kind,
                "total": total,
                "currency": currency,
            },
        )

    @staticmethod
    def validation_failed(
        operation: str,
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            correlation_id=correlation_id,
            description=f"{operation} rejected with {len(issues)} issues",
            details={
                "operation": operation,
                "issues": issues,
            },
        )

    @staticmethod
    def entity_not_found(
        collection: str,
        entity_id: Optional[int],
        operation: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENTITY_NOT_FOUND,
            severity=AuditSeverity.WARNING,
            entity_type=collection,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"{operation}: {collection} {entity_id} not found",
            details={"operation": operation},
        )

    @staticmethod
    def orphaned_reference_skipped(
        collection: str,
        entity_id: int,
        transaction_id: int,
        step: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ORPHANED_REFERENCE_SKIPPED,
            severity=AuditSeverity.WARNING,
            entity_type=collection,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=(
                f"Skipped {step} on missing {collection} {entity_id} "
                f"for transaction {transaction_id}"
            ),
            details={
                "transaction_id": transaction_id,
                "step": step,
            },
        )

    @staticmethod
    def data_loaded(
        source: str,
        counts: dict[str, int],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DATA_LOADED,
            correlation_id=correlation_id,
            description=f"Ledger loaded from {source}",
            details={"source": source, **counts},
        )

    @staticmethod
    def default_safes_seeded(
        names: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DEFAULT_SAFES_SEEDED,
            entity_type="safes",
            correlation_id=correlation_id,
            description=f"Seeded {len(names)} default safes",
            details={"names": names},
        )

    @staticmethod
    def sync_failed(
        action: str,
        collection: str,
        entity_id: Optional[int],
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type=collection,
            entity_id=entity_id,
            description=f"Remote {action} failed for {collection}",
            error_message=error_message,
            details={"action": action},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
