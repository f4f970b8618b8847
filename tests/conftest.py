"""Shared fixtures. No test touches the network or the real environment."""

from datetime import date
from decimal import Decimal
from itertools import count

import pytest

from shop_ledger.audit import AuditLogger
from shop_ledger.engine import IdGenerator, LedgerEngine
from shop_ledger.models.ledger import CustomerType, TransactionItem
from shop_ledger.validation import LedgerValidator


class FakeClock:
    """Returns 1, 2, 3... seconds so ids are predictable."""

    def __init__(self):
        self._ticks = count(1)

    def __call__(self) -> float:
        return float(next(self._ticks))


@pytest.fixture
def validator():
    return LedgerValidator(max_amount=Decimal("1000000"), future_date_tolerance_days=7)


@pytest.fixture
def audit_logger():
    return AuditLogger()


@pytest.fixture
def engine(validator, audit_logger):
    return LedgerEngine(
        audit_logger=audit_logger,
        validator=validator,
        id_generator=IdGenerator(clock=FakeClock()),
    )


@pytest.fixture
def customer(engine):
    return engine.add_customer("Ayse Market", type=CustomerType.BOTH)


@pytest.fixture
def supplier(engine):
    return engine.add_customer("Toptan Gida", type=CustomerType.SUPPLIER)


@pytest.fixture
def safe(engine):
    return engine.add_safe("Main Safe")


@pytest.fixture
def invoice_day():
    return date(2024, 5, 1)


def items_totalling(amount: str) -> list[TransactionItem]:
    return [TransactionItem(name="Flour", qty=Decimal("1"), unit="kg", price=Decimal(amount))]
