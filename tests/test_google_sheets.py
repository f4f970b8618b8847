"""Tests for the Google Sheets mirror. gspread is mocked throughout."""

import json
from datetime import date, datetime, timedelta
from decimal import Decimal
from unittest.mock import MagicMock

import gspread
import pytest

from shop_ledger.config.settings import GoogleSheetsSettings
from shop_ledger.models.audit import AuditEvent, AuditEventType
from shop_ledger.models.ledger import (
    Safe,
    SyncMode,
    Transaction,
    TransactionItem,
    TransactionKind,
)
from shop_ledger.services.storage import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsRemoteSync,
    StorageError,
)
from shop_ledger.services.storage.google_sheets import COLLECTION_COLUMNS, record_to_row


@pytest.fixture
def sheets_settings(tmp_path):
    credentials = tmp_path / "credentials.json"
    credentials.write_text("{}", encoding="utf-8")
    return GoogleSheetsSettings(
        credentials_path=str(credentials),
        accounting_spreadsheet_id="accounting-sheet",
        store_spreadsheet_id="store-sheet",
    )


@pytest.fixture
def sheet():
    worksheet = MagicMock()
    worksheet.col_values.return_value = ["id", "5", "7"]
    return worksheet


@pytest.fixture
def remote(sheet):
    client = MagicMock()
    client.get_collection_sheet.return_value = sheet
    return GoogleSheetsRemoteSync(client)


def _invoice() -> Transaction:
    return Transaction(
        id=7,
        date=date(2024, 5, 1),
        kind=TransactionKind.SALES,
        acc_id=1,
        acc_name="Ayse",
        total=Decimal("0"),
        items=[TransactionItem(name="Rice", qty=Decimal("2"), price=Decimal("10"))],
    )


class TestRowLayout:

    def test_transaction_row_follows_columns(self):
        row = record_to_row("transactions", _invoice().to_record())
        assert len(row) == len(COLLECTION_COLUMNS["transactions"])
        assert row[0] == 7
        assert row[1] == "2024-05-01"
        assert row[2] == "sales"
        assert row[5] == ""
        assert row[7] == 20.0
        assert json.loads(row[8])[0]["total"] == 20.0

    def test_safe_row_flattens_balances(self):
        row = record_to_row("safes", Safe(id=2, name="Main Safe").to_record())
        assert row[:2] == [2, "Main Safe"]
        assert json.loads(row[2]) == {"TL": 0.0, "USD": 0.0, "EUR": 0.0}


class TestGoogleSheetsRemoteSync:

    @pytest.mark.asyncio
    async def test_fetch_all_reads_every_collection(self, remote, sheet):
        sheet.get_all_records.side_effect = [
            [{"id": "1", "name": "Ayse", "balances": '{"TL": 3}'}],
            [],
            [{"id": "2", "name": "Main Safe", "balances": ""}],
            [],
        ]

        snapshot = await remote.fetch_all(SyncMode.STORE)

        sheet.get_all_records.assert_called_with(numericise_ignore=["all"])
        requested = [call.args for call in remote._client.get_collection_sheet.call_args_list]
        assert requested == [
            ("customers", SyncMode.STORE),
            ("products", SyncMode.STORE),
            ("safes", SyncMode.STORE),
            ("transactions", SyncMode.STORE),
        ]
        assert snapshot.customers[0].balances.TL == Decimal("3")
        assert snapshot.safes[0].balances.is_zero()

    @pytest.mark.asyncio
    async def test_fetch_failure_is_storage_error(self, remote, sheet):
        sheet.get_all_records.side_effect = RuntimeError("network down")
        with pytest.raises(StorageError):
            await remote.fetch_all(SyncMode.ACCOUNTING)

    @pytest.mark.asyncio
    async def test_create_appends_row(self, remote, sheet):
        record = _invoice().to_record()
        await remote.create("transactions", record, SyncMode.ACCOUNTING)
        sheet.append_row.assert_called_once_with(
            record_to_row("transactions", record), value_input_option="RAW"
        )

    @pytest.mark.asyncio
    async def test_update_replaces_matching_row(self, remote, sheet):
        record = _invoice().to_record()
        await remote.update("transactions", record, SyncMode.ACCOUNTING)
        sheet.update.assert_called_once_with(
            range_name="A3",
            values=[record_to_row("transactions", record)],
            value_input_option="RAW",
        )
        sheet.append_row.assert_not_called()

    @pytest.mark.asyncio
    async def test_update_of_unknown_row_appends(self, remote, sheet):
        record = Safe(id=99, name="New").to_record()
        await remote.update("safes", record, SyncMode.ACCOUNTING)
        sheet.update.assert_not_called()
        sheet.append_row.assert_called_once()

    @pytest.mark.asyncio
    async def test_delete_removes_matching_row(self, remote, sheet):
        await remote.delete("transactions", 5, SyncMode.ACCOUNTING)
        sheet.delete_rows.assert_called_once_with(2)

    @pytest.mark.asyncio
    async def test_delete_of_unknown_id_is_ignored(self, remote, sheet):
        await remote.delete("transactions", 1234, SyncMode.ACCOUNTING)
        sheet.delete_rows.assert_not_called()

    @pytest.mark.asyncio
    async def test_write_failure_is_storage_error(self, remote, sheet):
        sheet.append_row.side_effect = RuntimeError("quota")
        with pytest.raises(StorageError):
            await remote.create("safes", Safe(id=1, name="S").to_record(), SyncMode.ACCOUNTING)


class TestGoogleSheetsClient:

    def test_store_mode_opens_store_spreadsheet(self, sheets_settings):
        client = GoogleSheetsClient(sheets_settings)
        client._client = MagicMock()

        client.get_spreadsheet(SyncMode.STORE)
        client.get_spreadsheet(SyncMode.STORE)

        client._client.open_by_key.assert_called_once_with("store-sheet")

    def test_missing_worksheet_is_created_with_header(self, sheets_settings):
        client = GoogleSheetsClient(sheets_settings)
        client._client = MagicMock()
        spreadsheet = client._client.open_by_key.return_value
        spreadsheet.worksheet.side_effect = gspread.WorksheetNotFound("safes")

        worksheet = client.get_collection_sheet("safes", SyncMode.ACCOUNTING)

        assert worksheet is spreadsheet.add_worksheet.return_value
        worksheet.append_row.assert_called_once_with(["id", "name", "balances"])

    def test_unknown_collection_rejected(self, sheets_settings):
        client = GoogleSheetsClient(sheets_settings)
        with pytest.raises(StorageError):
            client.get_collection_sheet("invoices", SyncMode.ACCOUNTING)


class TestGoogleSheetsAuditStorage:

    @pytest.mark.asyncio
    async def test_append_event(self):
        client = MagicMock()
        storage = GoogleSheetsAuditStorage(client)
        event = AuditEvent(event_type=AuditEventType.SAFE_ADDED, description="Safe added: S")

        assert await storage.append_event(event) is True
        client.get_audit_sheet.return_value.append_row.assert_called_once_with(
            event.to_sheets_row(), value_input_option="RAW"
        )

    @pytest.mark.asyncio
    async def test_append_failure_returns_false(self):
        client = MagicMock()
        client.get_audit_sheet.side_effect = RuntimeError("offline")
        storage = GoogleSheetsAuditStorage(client)
        event = AuditEvent(event_type=AuditEventType.SAFE_ADDED, description="Safe added: S")
        assert await storage.append_event(event) is False

    @pytest.mark.asyncio
    async def test_recent_events_newest_first(self):
        older = AuditEvent(
            event_type=AuditEventType.SAFE_ADDED,
            description="first",
            timestamp=datetime(2024, 5, 1, 10, 0),
        )
        newer = AuditEvent(
            event_type=AuditEventType.TRANSACTION_CREATED,
            entity_type="transactions",
            entity_id=7,
            description="second",
            timestamp=datetime(2024, 5, 1, 10, 0) + timedelta(minutes=5),
        )
        client = MagicMock()
        client.get_audit_sheet.return_value.get_all_values.return_value = [
            ["event_id", "timestamp"],
            older.to_sheets_row(),
            newer.to_sheets_row(),
            ["not-a-uuid", "garbage"],
        ]
        storage = GoogleSheetsAuditStorage(client)

        events = await storage.get_recent_events(limit=5)

        assert [e.description for e in events] == ["second", "first"]
        assert events[0].entity_id == 7
