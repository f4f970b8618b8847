"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is the remote mirror because:
1. The shop owner can read the ledger directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

Each collection lives in its own worksheet with a header row; each panel
mode has its own spreadsheet. Nested fields are stored as JSON text.

TRADEOFFS:
- Rows are located by scanning the id column
- No transactions across worksheets (the local ledger is the source of truth)
"""

import json
from datetime import datetime
from typing import Optional
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from shop_ledger.config import get_settings
from shop_ledger.config.settings import GoogleSheetsSettings
from shop_ledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
from shop_ledger.models.ledger import COLLECTIONS, LedgerSnapshot, SyncMode
from shop_ledger.services.storage.codec import (
    parse_fetched_collections,
    prepare_record_for_sheet,
)
from shop_ledger.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    RemoteSyncInterface,
    StorageError,
)

logger = structlog.get_logger(__name__)


# Column order per collection worksheet (wire field names)
COLLECTION_COLUMNS: dict[str, list[str]] = {
    "customers": [
        "id", "name", "type", "phone", "address", "parentId", "section", "balances",
    ],
    "products": [
        "id", "name", "type", "unit", "cat", "price", "purchasePrice", "currency",
    ],
    "safes": ["id", "name", "balances"],
    "transactions": [
        "id", "date", "type", "accId", "accName", "safeId", "currency",
        "total", "items", "desc", "method", "linkedTransactionId",
    ],
}

# Column mappings for Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
]


def record_to_row(collection: str, record: dict) -> list:
    """Convert a wire record to a worksheet row in column order."""
    prepared = prepare_record_for_sheet(record)
    row = []
    for column in COLLECTION_COLUMNS[collection]:
        value = prepared.get(column)
        row.append("" if value is None else value)
    return row


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication, opens one spreadsheet per mode and
    provides retry logic for the connection.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheets: dict[str, gspread.Spreadsheet] = {}
        self._settings = settings or get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self, mode: SyncMode = SyncMode.ACCOUNTING) -> gspread.Spreadsheet:
        """Get the spreadsheet that holds a mode's data."""
        spreadsheet_id = self._settings.spreadsheet_id_for(SyncMode(mode).value)
        if spreadsheet_id not in self._spreadsheets:
            client = self.connect()
            try:
                self._spreadsheets[spreadsheet_id] = client.open_by_key(spreadsheet_id)
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(f"Spreadsheet not found: {spreadsheet_id}")
        return self._spreadsheets[spreadsheet_id]

    def _get_or_create(
        self,
        spreadsheet: gspread.Spreadsheet,
        title: str,
        columns: list[str],
        rows: int = 1000,
    ) -> gspread.Worksheet:
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(title=title, rows=rows, cols=len(columns))
            sheet.append_row(columns)
        return sheet

    def get_collection_sheet(self, collection: str, mode: SyncMode) -> gspread.Worksheet:
        """Get or create the worksheet for a collection."""
        if collection not in COLLECTION_COLUMNS:
            raise StorageError(f"Unknown collection: {collection}")
        return self._get_or_create(
            self.get_spreadsheet(mode), collection, COLLECTION_COLUMNS[collection]
        )

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the Audit worksheet (always in the accounting spreadsheet)."""
        return self._get_or_create(
            self.get_spreadsheet(SyncMode.ACCOUNTING),
            self._settings.audit_sheet_name,
            AUDIT_COLUMNS,
            rows=5000,  # More rows for audit log
        )


class GoogleSheetsRemoteSync(RemoteSyncInterface):
    """
    Google Sheets implementation of the remote mirror.

    One row per record. Rows are found by matching the first (id) column.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    @staticmethod
    def _find_row(sheet: gspread.Worksheet, record_id: int) -> Optional[int]:
        """1-based row index of a record, skipping the header."""
        ids = sheet.col_values(1)
        for index, value in enumerate(ids[1:], start=2):
            if str(value).strip() == str(record_id):
                return index
        return None

    async def fetch_all(self, mode: SyncMode) -> LedgerSnapshot:
        try:
            raw = {}
            for collection in COLLECTIONS:
                sheet = self._client.get_collection_sheet(collection, mode)
                # Keep cells as text; the codec decides what is numeric
                raw[collection] = sheet.get_all_records(numericise_ignore=["all"])
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to fetch ledger: {e}")

        snapshot = parse_fetched_collections(raw)
        logger.info(
            "remote_fetched",
            mode=SyncMode(mode).value,
            customers=len(snapshot.customers),
            products=len(snapshot.products),
            safes=len(snapshot.safes),
            transactions=len(snapshot.transactions),
        )
        return snapshot

    async def create(self, collection: str, record: dict, mode: SyncMode) -> None:
        try:
            sheet = self._client.get_collection_sheet(collection, mode)
            sheet.append_row(record_to_row(collection, record), value_input_option="RAW")
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to create {collection} record: {e}")

    async def update(self, collection: str, record: dict, mode: SyncMode) -> None:
        try:
            sheet = self._client.get_collection_sheet(collection, mode)
            row = record_to_row(collection, record)
            index = self._find_row(sheet, record.get("id"))
            if index is None:
                logger.warning(
                    "remote_update_appended",
                    collection=collection,
                    record_id=record.get("id"),
                )
                sheet.append_row(row, value_input_option="RAW")
                return
            sheet.update(range_name=f"A{index}", values=[row], value_input_option="RAW")
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update {collection} record: {e}")

    async def delete(self, collection: str, record_id: int, mode: SyncMode) -> None:
        try:
            sheet = self._client.get_collection_sheet(collection, mode)
            index = self._find_row(sheet, record_id)
            if index is not None:
                sheet.delete_rows(index)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to delete {collection} record: {e}")


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=int(safe_get(5)) if safe_get(5) else None,
            correlation_id=UUID(safe_get(6)) if safe_get(6) else None,
            description=safe_get(7),
            details=json.loads(safe_get(8)) if safe_get(8) else {},
            error_message=safe_get(9) or None,
        )

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event. Failures are reported, not raised."""
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            logger.warning(
                "audit_event_write_failed",
                event_id=str(event.event_id),
                error=str(e),
            )
            return False

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events."""
        try:
            sheet = self._client.get_audit_sheet()
            all_rows = sheet.get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

        events = []
        for row in all_rows:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except (ValueError, TypeError) as e:
                logger.warning("audit_row_skipped", row_id=row[0], error=str(e))

        # Sort newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
