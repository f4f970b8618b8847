"""
Core Ledger Models for Shop Ledger

These models define the strict schemas for all data flowing through the system.
They are designed to:
1. Enforce type safety at runtime
2. Keep derived values (item totals, invoice totals) consistent
3. Be serializable for the spreadsheet mirror and the local store
4. Support the audit trail

DESIGN DECISION: Python attributes are snake_case, but records are read and
written with the camelCase names the spreadsheet already uses (accId, safeId,
purchasePrice...). The transaction kind travels as "type".

Money is Decimal in memory and a plain JSON number on the wire.
"""

import datetime as dt
from decimal import Decimal
from enum import Enum
from typing import Annotated, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


Money = Annotated[
    Decimal,
    PlainSerializer(float, return_type=float, when_used="json"),
]

ZERO = Decimal("0")

COLLECTIONS = ("customers", "products", "safes", "transactions")


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class Currency(str, Enum):
    """
    Currencies tracked independently. No conversion ever happens
    between them.
    """
    TL = "TL"
    USD = "USD"
    EUR = "EUR"


class CustomerType(str, Enum):
    """Which side of the trade an account is on."""
    BUYER = "buyer"
    SUPPLIER = "supplier"
    BOTH = "both"


class ProductType(str, Enum):
    """Whether a product is sold, purchased, or both."""
    SOLD = "sold"
    PURCHASED = "purchased"
    BOTH = "both"


class TransactionKind(str, Enum):
    """
    Directional kind of a ledger record.

    The kind alone decides the sign a transaction contributes to
    customer and safe balances.
    """
    SALES = "sales"
    PURCHASE = "purchase"
    CASH_IN = "cash_in"    # customer paid the business
    CASH_OUT = "cash_out"  # business paid the customer

    @property
    def is_invoice(self) -> bool:
        return self in (TransactionKind.SALES, TransactionKind.PURCHASE)

    @property
    def is_cash(self) -> bool:
        return self in (TransactionKind.CASH_IN, TransactionKind.CASH_OUT)


class CashDirection(str, Enum):
    """Direction of a cash movement as chosen by the user."""
    IN = "in"
    OUT = "out"

    @property
    def kind(self) -> TransactionKind:
        return TransactionKind.CASH_IN if self is CashDirection.IN else TransactionKind.CASH_OUT


class PaymentMethod(str, Enum):
    """How a cash movement was settled."""
    CASH = "cash"
    WIRE = "wire"
    CHECK = "check"
    CARD = "card"
    INTERNAL_TRANSFER = "internal_transfer"


class SyncMode(str, Enum):
    """
    Data partition. Each mode has its own spreadsheet and local
    snapshot file.
    """
    ACCOUNTING = "accounting"
    STORE = "store"


# =============================================================================
# BALANCES
# =============================================================================

class Balances(BaseModel):
    """
    Signed amount per currency.

    All three currencies are always present. For customers a positive
    amount means the customer owes the business; for safes it is the
    cash on hand.
    """
    model_config = ConfigDict(extra="ignore")

    TL: Money = ZERO
    USD: Money = ZERO
    EUR: Money = ZERO

    @field_validator("TL", "USD", "EUR", mode="before")
    @classmethod
    def blank_is_zero(cls, v):
        if v is None or v == "":
            return ZERO
        return v

    def get(self, currency: Union[Currency, str]) -> Decimal:
        return getattr(self, Currency(currency).value)

    def __getitem__(self, currency: Union[Currency, str]) -> Decimal:
        return self.get(currency)

    def adjusted(self, currency: Union[Currency, str], delta: Decimal) -> "Balances":
        """Return a copy with `delta` added to one currency."""
        code = Currency(currency)
        return self.model_copy(update={code.value: self.get(code) + delta})

    def is_zero(self) -> bool:
        return all(self.get(code) == ZERO for code in Currency)

    def as_dict(self) -> dict[Currency, Decimal]:
        return {code: self.get(code) for code in Currency}


# =============================================================================
# ENTITIES
# =============================================================================

class LedgerRecord(BaseModel):
    """Base for every record stored in a collection."""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_record(self) -> dict:
        """Plain structured record with wire field names."""
        return self.model_dump(mode="json", by_alias=True)


class Customer(LedgerRecord):
    """
    A customer, supplier, or both.

    Balances are owned by the ledger engine; they change only when
    transactions are created, edited, or deleted.
    """

    id: int = Field(..., gt=0)
    name: str = Field(..., min_length=1, max_length=200)
    type: CustomerType = CustomerType.BUYER
    phone: Optional[str] = None
    address: Optional[str] = None

    # Sub-account of another customer (store panel)
    parent_id: Optional[int] = None
    section: SyncMode = SyncMode.ACCOUNTING

    balances: Balances = Field(default_factory=Balances)


class Safe(LedgerRecord):
    """A cash register/till holding cash per currency."""

    id: int = Field(..., gt=0)
    name: str = Field(..., min_length=1, max_length=200)
    balances: Balances = Field(default_factory=Balances)


class Product(LedgerRecord):
    """Catalog entry used to fill invoice lines. Not part of balances."""

    id: int = Field(..., gt=0)
    name: str = Field(..., min_length=1, max_length=200)
    type: ProductType = ProductType.BOTH
    unit: str = "pcs"
    category: Optional[str] = Field(default=None, alias="cat")
    price: Money = Field(default=ZERO, ge=0)
    purchase_price: Optional[Money] = Field(default=None, ge=0)
    currency: Currency = Currency.TL


class TransactionItem(LedgerRecord):
    """
    One invoice line.

    `total` is always qty * price; any value passed in is replaced.
    """

    name: str = ""
    qty: Money = ZERO
    unit: str = ""
    price: Money = ZERO
    total: Money = ZERO

    @model_validator(mode="after")
    def derive_total(self) -> "TransactionItem":
        self.total = self.qty * self.price
        return self


class Transaction(LedgerRecord):
    """
    A ledger record.

    `total` is stored positive; the direction comes from `kind`.
    When items are present the total is their sum.
    """

    id: int = Field(..., gt=0)
    date: dt.date
    kind: TransactionKind = Field(..., alias="type")

    acc_id: Optional[int] = None
    # Customer name at creation time, kept for display even if the
    # customer is renamed or deleted later
    acc_name: Optional[str] = None
    safe_id: Optional[int] = None

    currency: Currency = Currency.TL
    total: Money = Field(..., ge=0)

    items: Optional[list[TransactionItem]] = None
    desc: Optional[str] = None
    method: Optional[PaymentMethod] = None

    # Payment settling a specific invoice
    linked_transaction_id: Optional[int] = None

    @model_validator(mode="after")
    def derive_total_from_items(self) -> "Transaction":
        if self.items:
            self.total = sum((item.total for item in self.items), ZERO)
        return self

    @property
    def touches_safe(self) -> bool:
        """Only cash kinds with a safe reference move safe balances."""
        return self.kind.is_cash and self.safe_id is not None


class LedgerSnapshot(BaseModel):
    """The four collections, as loaded or persisted together."""

    customers: list[Customer] = Field(default_factory=list)
    products: list[Product] = Field(default_factory=list)
    safes: list[Safe] = Field(default_factory=list)
    transactions: list[Transaction] = Field(default_factory=list)

    def to_records(self) -> dict[str, list[dict]]:
        return {
            name: [record.to_record() for record in getattr(self, name)]
            for name in COLLECTIONS
        }

    def customer(self, customer_id: int) -> Optional[Customer]:
        return next((c for c in self.customers if c.id == customer_id), None)

    def safe(self, safe_id: int) -> Optional[Safe]:
        return next((s for s in self.safes if s.id == safe_id), None)
