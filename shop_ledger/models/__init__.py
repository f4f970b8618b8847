"""
Data Models Package

This package contains all Pydantic models used in Shop Ledger.
All data flowing through the system must conform to these schemas.
"""

from shop_ledger.models.ledger import (
    COLLECTIONS,
    Balances,
    CashDirection,
    Currency,
    Customer,
    CustomerType,
    LedgerSnapshot,
    PaymentMethod,
    Product,
    ProductType,
    Safe,
    SyncMode,
    Transaction,
    TransactionItem,
    TransactionKind,
)
from shop_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from shop_ledger.models.validation import ValidationIssue, ValidationResult

__all__ = [
    # Ledger models
    "COLLECTIONS",
    "Balances",
    "CashDirection",
    "Currency",
    "Customer",
    "CustomerType",
    "LedgerSnapshot",
    "PaymentMethod",
    "Product",
    "ProductType",
    "Safe",
    "SyncMode",
    "Transaction",
    "TransactionItem",
    "TransactionKind",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
    # Validation models
    "ValidationIssue",
    "ValidationResult",
]
