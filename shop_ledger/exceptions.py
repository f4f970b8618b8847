"""Exceptions raised by the ledger engine."""

from typing import Optional

from shop_ledger.models.validation import ValidationResult


class LedgerError(Exception):
    """Base exception for ledger operations."""
    pass


class EntityNotFoundError(LedgerError):
    """A referenced customer, safe, product or transaction does not exist."""

    def __init__(self, entity_type: str, entity_id: Optional[int]):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


class LedgerValidationError(LedgerError):
    """A request was rejected before any state changed."""

    def __init__(self, result: ValidationResult, message: str):
        self.result = result
        self.user_message = message
        super().__init__(message)
