"""Services package."""

from shop_ledger.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsRemoteSync,
    InMemoryStore,
    JsonFileStore,
    LocalStoreInterface,
    RemoteSyncInterface,
    StorageError,
)
from shop_ledger.services.sync import SyncDispatcher

__all__ = [
    # Storage services
    "AuditStorageInterface",
    "ConnectionError",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsRemoteSync",
    "InMemoryStore",
    "JsonFileStore",
    "LocalStoreInterface",
    "RemoteSyncInterface",
    "StorageError",
    # Remote sync
    "SyncDispatcher",
]
