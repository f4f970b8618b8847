"""Ledger request validation package."""

from shop_ledger.validation.validator import LedgerValidator

__all__ = ["LedgerValidator"]
