"""
Ledger Reports

DESIGN DECISION: Reports are DETERMINISTIC reads over a snapshot.
They never change state and never estimate: every number is derived
from the stored transactions.

Rendering (tables, PDFs, spreadsheets) is left to the caller.
"""

import datetime as dt
import re
from collections import defaultdict
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from shop_ledger.balances import LedgerRole, apply_contribution, signed_delta
from shop_ledger.models.ledger import (
    ZERO,
    Balances,
    CashDirection,
    Currency,
    LedgerSnapshot,
    Money,
    Transaction,
    TransactionKind,
)

_MONTH = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


class ReportError(ValueError):
    """A report was asked for with impossible parameters."""
    pass


# =============================================================================
# RESULT MODELS
# =============================================================================

class StatementLine(BaseModel):
    """One transaction on a statement, with balances right after it."""

    transaction: Transaction
    running_balance: Money = Field(
        ...,
        description="Balance in the transaction's currency after this line"
    )
    balances: Balances


class CustomerStatement(BaseModel):
    """A customer's transactions, oldest first, with running balances."""

    customer_id: int
    customer_ids: list[int] = Field(
        ...,
        description="The customer plus any sub-accounts included"
    )
    lines: list[StatementLine] = Field(default_factory=list)
    closing_balances: Balances = Field(default_factory=Balances)


class PeriodSummary(BaseModel):
    """Everything that happened in a day or a month."""

    period: str
    transactions: list[Transaction] = Field(default_factory=list)
    cash_in: dict[str, dict[str, Money]] = Field(
        default_factory=dict,
        description="Payment method -> currency -> total received"
    )
    cash_out: dict[str, dict[str, Money]] = Field(
        default_factory=dict,
        description="Payment method -> currency -> total paid"
    )
    invoice_totals: dict[str, dict[str, Money]] = Field(
        default_factory=dict,
        description="Invoice kind -> currency -> total"
    )
    customer_ids: list[int] = Field(default_factory=list)


class ProductSalesLine(BaseModel):
    name: str
    quantity: Money


class BalanceDrift(BaseModel):
    """A stored balance that disagrees with the ledger."""

    collection: str
    entity_id: int
    name: str
    currency: Currency
    stored: Money
    expected: Money

    @property
    def difference(self) -> Decimal:
        return self.stored - self.expected


# =============================================================================
# HELPERS
# =============================================================================

def _nested_totals(pairs) -> dict[str, dict[str, Decimal]]:
    totals: dict[str, dict[str, Decimal]] = defaultdict(lambda: defaultdict(lambda: ZERO))
    for key, currency, amount in pairs:
        totals[key][currency] += amount
    return {key: dict(per_currency) for key, per_currency in totals.items()}


def _amount_text(amount: Decimal) -> str:
    return format(amount.normalize(), "f")


def _matches(transaction: Transaction, search: str) -> bool:
    needle = search.strip().lower()
    if not needle:
        return True
    if needle in (transaction.desc or "").lower():
        return True
    if needle in _amount_text(transaction.total):
        return True
    return any(needle in item.name.lower() for item in transaction.items or [])


def _in_period(
    transaction: Transaction,
    day: Optional[dt.date],
    month: Optional[str],
) -> bool:
    if day is not None:
        return transaction.date == day
    if month is not None:
        return transaction.date.strftime("%Y-%m") == month
    return True


def _check_month(month: Optional[str]) -> None:
    if month is not None and not _MONTH.match(month):
        raise ReportError(f"Month must look like YYYY-MM, got {month!r}")


# =============================================================================
# REPORTS
# =============================================================================

def customer_statement(
    snapshot: LedgerSnapshot,
    customer_id: int,
    search: Optional[str] = None,
    include_sub_accounts: bool = True,
) -> CustomerStatement:
    """
    Statement for one customer.

    A parent account's statement includes its sub-accounts' transactions
    unless `include_sub_accounts` is False. A sub-account's statement only
    shows its own. Running balances follow the customer sign table and
    restart from zero, so with a search filter they cover matching lines only.
    """
    customer = snapshot.customer(customer_id)
    customer_ids = [customer_id]
    if customer is not None and customer.parent_id is None and include_sub_accounts:
        customer_ids += [c.id for c in snapshot.customers if c.parent_id == customer_id]

    related = [t for t in snapshot.transactions if t.acc_id in customer_ids]
    if search:
        related = [t for t in related if _matches(t, search)]
    # sorted() is stable: same-day transactions keep ledger order
    related = sorted(related, key=lambda t: t.date)

    running = Balances()
    lines = []
    for transaction in related:
        running = apply_contribution(running, transaction, LedgerRole.CUSTOMER)
        lines.append(StatementLine(
            transaction=transaction,
            running_balance=running.get(transaction.currency),
            balances=running,
        ))

    return CustomerStatement(
        customer_id=customer_id,
        customer_ids=customer_ids,
        lines=lines,
        closing_balances=running,
    )


def period_summary(
    snapshot: LedgerSnapshot,
    day: Optional[dt.date] = None,
    month: Optional[str] = None,
    kind: Optional[TransactionKind] = None,
) -> PeriodSummary:
    """
    Summary of a day (takes precedence) or a `YYYY-MM` month.

    Cash totals are grouped by payment method and currency; invoice totals
    by kind and currency. Currencies are never added together.
    """
    _check_month(month)
    selected = [t for t in snapshot.transactions if _in_period(t, day, month)]
    if kind is not None:
        selected = [t for t in selected if t.kind == TransactionKind(kind)]

    def cash_pairs(direction: CashDirection):
        return (
            ((t.method.value if t.method else "unspecified"), t.currency.value, t.total)
            for t in selected
            if t.kind == direction.kind
        )

    invoice_pairs = (
        (t.kind.value, t.currency.value, t.total) for t in selected if t.kind.is_invoice
    )

    if day is not None:
        period = day.isoformat()
    else:
        period = month or "all"

    customer_ids = []
    for transaction in selected:
        if transaction.acc_id and transaction.acc_id not in customer_ids:
            customer_ids.append(transaction.acc_id)

    return PeriodSummary(
        period=period,
        transactions=selected,
        cash_in=_nested_totals(cash_pairs(CashDirection.IN)),
        cash_out=_nested_totals(cash_pairs(CashDirection.OUT)),
        invoice_totals=_nested_totals(invoice_pairs),
        customer_ids=customer_ids,
    )


def product_sales_summary(snapshot: LedgerSnapshot, month: str) -> list[ProductSalesLine]:
    """Quantity sold per item name in a month, best sellers first."""
    _check_month(month)
    quantities: dict[str, Decimal] = defaultdict(lambda: ZERO)
    for transaction in snapshot.transactions:
        if transaction.kind != TransactionKind.SALES or not _in_period(transaction, None, month):
            continue
        for item in transaction.items or []:
            quantities[item.name or "?"] += item.qty

    ranked = sorted(quantities.items(), key=lambda pair: pair[1], reverse=True)
    return [ProductSalesLine(name=name, quantity=qty) for name, qty in ranked]


def recent_invoices(
    snapshot: LedgerSnapshot,
    kind: TransactionKind,
    limit: int = 10,
) -> list[Transaction]:
    """Latest invoices of one kind, newest first."""
    kind = TransactionKind(kind)
    if not kind.is_invoice:
        raise ReportError(f"{kind.value} is not an invoice kind")
    invoices = [t for t in snapshot.transactions if t.kind == kind]
    # Ids come from the clock, so they break same-day ties by entry order
    invoices.sort(key=lambda t: (t.date, t.id), reverse=True)
    return invoices[:limit]


def cash_movements(
    snapshot: LedgerSnapshot,
    search: Optional[str] = None,
    direction: Optional[CashDirection] = None,
) -> list[Transaction]:
    """Cash-in and cash-out records, newest first."""
    movements = [t for t in snapshot.transactions if t.kind.is_cash]
    if direction is not None:
        wanted = CashDirection(direction).kind
        movements = [t for t in movements if t.kind == wanted]
    if search:
        needle = search.strip().lower()
        movements = [
            t for t in movements
            if _matches(t, needle) or needle in (t.acc_name or "").lower()
        ]
    movements.sort(key=lambda t: (t.date, t.id), reverse=True)
    return movements


def recompute_balances(snapshot: LedgerSnapshot) -> LedgerSnapshot:
    """
    Rebuild every customer and safe balance from the transactions alone.

    References to missing customers or safes are ignored.
    """
    customer_balances = {c.id: Balances() for c in snapshot.customers}
    safe_balances = {s.id: Balances() for s in snapshot.safes}

    for transaction in snapshot.transactions:
        if transaction.acc_id in customer_balances:
            customer_balances[transaction.acc_id] = customer_balances[transaction.acc_id].adjusted(
                transaction.currency,
                signed_delta(transaction.kind, transaction.total, LedgerRole.CUSTOMER),
            )
        if transaction.touches_safe and transaction.safe_id in safe_balances:
            safe_balances[transaction.safe_id] = safe_balances[transaction.safe_id].adjusted(
                transaction.currency,
                signed_delta(transaction.kind, transaction.total, LedgerRole.SAFE),
            )

    return snapshot.model_copy(update={
        "customers": [
            c.model_copy(update={"balances": customer_balances[c.id]})
            for c in snapshot.customers
        ],
        "safes": [
            s.model_copy(update={"balances": safe_balances[s.id]})
            for s in snapshot.safes
        ],
    })


def find_balance_drift(snapshot: LedgerSnapshot) -> list[BalanceDrift]:
    """Every stored balance that does not match the ledger. Empty means consistent."""
    expected = recompute_balances(snapshot)
    drift = []
    for collection in ("customers", "safes"):
        for stored, derived in zip(getattr(snapshot, collection), getattr(expected, collection)):
            for currency in Currency:
                if stored.balances.get(currency) != derived.balances.get(currency):
                    drift.append(BalanceDrift(
                        collection=collection,
                        entity_id=stored.id,
                        name=stored.name,
                        currency=currency,
                        stored=stored.balances.get(currency),
                        expected=derived.balances.get(currency),
                    ))
    return drift
