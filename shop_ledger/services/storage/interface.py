"""
Abstract Storage Interfaces

DESIGN DECISION: We define abstract interfaces for everything the ledger
persists to. This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Keep the ledger engine decoupled from storage implementation

Three collaborators:
- RemoteSyncInterface: the eventually-consistent mirror, keyed by
  collection name and partitioned by mode
- LocalStoreInterface: a key-value store for the last known snapshot
- AuditStorageInterface: append-only audit log
"""

from abc import ABC, abstractmethod
from typing import Any

from shop_ledger.models.audit import AuditEvent
from shop_ledger.models.ledger import LedgerSnapshot, SyncMode


class RemoteSyncInterface(ABC):
    """
    Abstract interface for the remote mirror of the ledger.

    Any implementation (Google Sheets, a REST endpoint, etc.)
    must implement these methods. Records are plain dicts with wire
    field names, as produced by `LedgerRecord.to_record()`.
    """

    @abstractmethod
    async def fetch_all(self, mode: SyncMode) -> LedgerSnapshot:
        """
        Read every collection for a mode.

        Args:
            mode: Which data partition to read

        Returns:
            The four collections; invalid records are dropped

        Raises:
            StorageError: If the remote cannot be read
        """
        pass

    @abstractmethod
    async def create(self, collection: str, record: dict, mode: SyncMode) -> None:
        """
        Append a record to a collection.

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def update(self, collection: str, record: dict, mode: SyncMode) -> None:
        """
        Replace the record with the same id, or append it when the
        mirror has no such record yet.

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def delete(self, collection: str, record_id: int, mode: SyncMode) -> None:
        """
        Remove the record with this id. Missing ids are ignored.

        Raises:
            StorageError: If the write fails
        """
        pass


class LocalStoreInterface(ABC):
    """
    Key-value store with get/set semantics.

    Values are JSON-compatible structures.
    """

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        """Return the stored value, or `default` when absent."""
        pass

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        """
        Store a value under a key.

        Raises:
            StorageError: If the value cannot be written
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Args:
            event: The audit event to log

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Args:
            limit: Maximum number of events to return

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
