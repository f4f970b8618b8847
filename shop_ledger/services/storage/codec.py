"""
Sheet Record Codec

Spreadsheet cells hold flat text. Nested fields (`items` on transactions,
`balances` on customers and safes) travel as JSON text and are parsed back
on read. Everything read from a sheet is distrusted:

- ids must be non-zero integers, and customers, safes and products
  need a non-blank name; anything else is dropped
- blank cells mean "missing", not "empty string"
- a row that still fails model validation is skipped with a warning
"""

import json
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import structlog
from pydantic import ValidationError

from shop_ledger.models.ledger import (
    Customer,
    LedgerSnapshot,
    Product,
    Safe,
    Transaction,
)

logger = structlog.get_logger(__name__)

NESTED_FIELDS = ("items", "balances")
TEXT_FIELDS = ("name", "phone", "address", "accName", "desc", "unit", "cat")
DEFAULT_BALANCES = {"TL": 0, "USD": 0, "EUR": 0}


def prepare_record_for_sheet(record: dict) -> dict:
    """Flatten nested fields to JSON text. The input is not modified."""
    clean = dict(record)
    for field in NESTED_FIELDS:
        value = clean.get(field)
        if value is not None and not isinstance(value, str):
            clean[field] = json.dumps(value)
    return clean


def to_number(value: Any) -> Optional[Decimal]:
    """Parse a cell into a Decimal; blanks and garbage become None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        number = Decimal(str(value))
    except InvalidOperation:
        return None
    if not number.is_finite():
        return None
    return number


def to_int(value: Any) -> Optional[int]:
    number = to_number(value)
    if number is None or number != number.to_integral_value():
        return None
    return int(number)


def is_valid_record(record: Optional[dict]) -> bool:
    """A record needs a non-zero numeric id and a non-blank name."""
    if not record:
        return False
    record_id = to_int(record.get("id"))
    name = record.get("name")
    has_name = name is not None and str(name).strip() != ""
    return record_id is not None and record_id != 0 and has_name


def _has_valid_id(record: Optional[dict]) -> bool:
    if not record:
        return False
    record_id = to_int(record.get("id"))
    return record_id is not None and record_id != 0


def _drop_blanks(record: dict) -> dict:
    cleaned = {}
    for key, value in record.items():
        if value is None or (isinstance(value, str) and not value.strip()):
            continue
        if key in TEXT_FIELDS and not isinstance(value, str):
            value = str(value)
        cleaned[key] = value
    return cleaned


def parse_balances(value: Any) -> dict:
    if isinstance(value, str) and value.strip().startswith("{"):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return dict(DEFAULT_BALANCES)
        return parsed if isinstance(parsed, dict) else dict(DEFAULT_BALANCES)
    if isinstance(value, dict):
        return value
    return dict(DEFAULT_BALANCES)


def parse_items(value: Any) -> Optional[list]:
    """
    JSON array text becomes a list; malformed arrays become an empty list;
    any other text (including blank) or non-list value means no items.
    """
    if isinstance(value, str):
        trimmed = value.strip()
        if trimmed.startswith("[") and trimmed.endswith("]"):
            try:
                parsed = json.loads(trimmed)
            except json.JSONDecodeError:
                return []
            return parsed if isinstance(parsed, list) else []
        return None
    if isinstance(value, list):
        return value
    return None


def _parse_date(value: Any) -> Any:
    # Sheets may hand back full timestamps for date cells
    if isinstance(value, str) and "T" in value:
        return value.split("T", 1)[0]
    return value


def _validate_all(model, records: list[dict], collection: str) -> list:
    parsed = []
    for record in records:
        try:
            parsed.append(model.model_validate(record))
        except ValidationError as e:
            logger.warning(
                "sheet_record_skipped",
                collection=collection,
                record_id=record.get("id"),
                error=str(e),
            )
    return parsed


def parse_customers(rows: list[dict]) -> list[Customer]:
    records = []
    for row in rows:
        if not is_valid_record(row):
            continue
        record = _drop_blanks(row)
        record["id"] = to_int(row["id"])
        record["balances"] = parse_balances(row.get("balances"))
        parent_id = to_int(row.get("parentId"))
        if parent_id:
            record["parentId"] = parent_id
        else:
            record.pop("parentId", None)
        records.append(record)
    return _validate_all(Customer, records, "customers")


def parse_safes(rows: list[dict]) -> list[Safe]:
    records = []
    for row in rows:
        if not is_valid_record(row):
            continue
        record = _drop_blanks(row)
        record["id"] = to_int(row["id"])
        record["balances"] = parse_balances(row.get("balances"))
        records.append(record)
    return _validate_all(Safe, records, "safes")


def parse_products(rows: list[dict]) -> list[Product]:
    records = []
    for row in rows:
        if not is_valid_record(row):
            continue
        record = _drop_blanks(row)
        record["id"] = to_int(row["id"])
        price = to_number(row.get("price"))
        record["price"] = price if price is not None else Decimal("0")
        purchase_price = to_number(row.get("purchasePrice"))
        if purchase_price is not None:
            record["purchasePrice"] = purchase_price
        else:
            record.pop("purchasePrice", None)
        records.append(record)
    return _validate_all(Product, records, "products")


def parse_transactions(rows: list[dict]) -> list[Transaction]:
    records = []
    for row in rows:
        if not _has_valid_id(row):
            continue
        record = _drop_blanks(row)
        record["id"] = to_int(row["id"])
        for field in ("accId", "safeId", "linkedTransactionId"):
            reference = to_int(row.get(field))
            if reference:
                record[field] = reference
            else:
                record.pop(field, None)
        total = to_number(row.get("total"))
        record["total"] = total if total is not None else Decimal("0")
        items = parse_items(row.get("items"))
        if items is None:
            record.pop("items", None)
        else:
            record["items"] = items
        if "date" in record:
            record["date"] = _parse_date(record["date"])
        records.append(record)
    return _validate_all(Transaction, records, "transactions")


def parse_fetched_collections(raw: Optional[dict]) -> LedgerSnapshot:
    """Turn raw sheet rows for all four collections into a snapshot."""
    raw = raw or {}
    return LedgerSnapshot(
        customers=parse_customers(raw.get("customers") or []),
        products=parse_products(raw.get("products") or []),
        safes=parse_safes(raw.get("safes") or []),
        transactions=parse_transactions(raw.get("transactions") or []),
    )
