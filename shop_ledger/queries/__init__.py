"""Ledger reports package."""

from shop_ledger.queries.reports import (
    BalanceDrift,
    CustomerStatement,
    PeriodSummary,
    ProductSalesLine,
    ReportError,
    StatementLine,
    cash_movements,
    customer_statement,
    find_balance_drift,
    period_summary,
    product_sales_summary,
    recent_invoices,
    recompute_balances,
)

__all__ = [
    "BalanceDrift",
    "CustomerStatement",
    "PeriodSummary",
    "ProductSalesLine",
    "ReportError",
    "StatementLine",
    "cash_movements",
    "customer_statement",
    "find_balance_drift",
    "period_summary",
    "product_sales_summary",
    "recent_invoices",
    "recompute_balances",
]
