"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Google Sheets is the remote mirror; a JSON file holds the local snapshot.
"""

from shop_ledger.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    LocalStoreInterface,
    RemoteSyncInterface,
    StorageError,
)
from shop_ledger.services.storage.codec import (
    is_valid_record,
    parse_fetched_collections,
    prepare_record_for_sheet,
)
from shop_ledger.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsRemoteSync,
)
from shop_ledger.services.storage.local import InMemoryStore, JsonFileStore

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "LocalStoreInterface",
    "RemoteSyncInterface",
    # Exceptions
    "ConnectionError",
    "StorageError",
    # Record codec
    "is_valid_record",
    "parse_fetched_collections",
    "prepare_record_for_sheet",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsRemoteSync",
    # Local stores
    "InMemoryStore",
    "JsonFileStore",
]
