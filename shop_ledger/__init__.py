"""
Shop Ledger - Source Package

Bookkeeping for a small shop: customers and suppliers, products,
multi-currency cash safes, and sales/purchase invoices.

DESIGN PRINCIPLES:
1. Balances are derived from the transaction ledger, never typed in
2. Every ledger operation fully succeeds or changes nothing
3. Local state is authoritative; the spreadsheet is a best-effort mirror
4. Every step must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Shop Ledger Team"
