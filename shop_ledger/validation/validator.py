"""
Ledger Request Validation

DESIGN DECISION: Every ledger request is checked before the engine
touches any collection.

ERRORS (block the operation):
- Missing customer/safe selection
- Empty item list, nameless items, non-positive quantities
- Non-positive or non-numeric amounts
- Unknown currency, cash direction or payment method
- Shape mismatches (cash movement without a safe, invoice without items)

WARNINGS (reported, never block):
- Unusually large amounts
- Dates far in the future
- Selling to a supplier-only account (or buying from a buyer-only one)

IMPORTANT: Validation NEVER silently fixes issues.
It reports them so the caller can show them to the user.
"""

from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional, Sequence

from shop_ledger.config import get_settings
from shop_ledger.models.ledger import (
    CashDirection,
    Currency,
    Customer,
    CustomerType,
    PaymentMethod,
    Transaction,
    TransactionItem,
    TransactionKind,
)
from shop_ledger.models.validation import ValidationIssue, ValidationResult


class LedgerValidator:
    """
    Validates ledger requests.

    Thresholds come from AppSettings unless passed explicitly, which keeps
    tests independent of the environment.
    """

    def __init__(
        self,
        max_amount: Optional[Decimal] = None,
        future_date_tolerance_days: Optional[int] = None,
    ):
        if max_amount is None or future_date_tolerance_days is None:
            app = get_settings().app
            if max_amount is None:
                max_amount = Decimal(str(app.max_transaction_amount))
            if future_date_tolerance_days is None:
                future_date_tolerance_days = app.future_date_tolerance_days
        self._max_amount = max_amount
        self._future_days = future_date_tolerance_days

    # ------------------------------------------------------------------
    # Shared checks
    # ------------------------------------------------------------------

    def _check_items(self, items: Optional[Sequence[TransactionItem]]) -> list[ValidationIssue]:
        issues = []
        if not items:
            issues.append(ValidationIssue(
                field="items",
                issue_type="missing",
                message="An invoice needs at least one item",
                severity="error",
                suggested_fix="Add a product line before saving",
            ))
            return issues

        for index, item in enumerate(items, start=1):
            if not item.name:
                issues.append(ValidationIssue(
                    field=f"items[{index}].name",
                    issue_type="missing",
                    message=f"Line {index} has no product name",
                    severity="error",
                ))
            if item.qty <= 0:
                issues.append(ValidationIssue(
                    field=f"items[{index}].qty",
                    issue_type="invalid_value",
                    message=f"Line {index} quantity must be greater than zero",
                    severity="error",
                ))
            if item.price < 0:
                issues.append(ValidationIssue(
                    field=f"items[{index}].price",
                    issue_type="invalid_value",
                    message=f"Line {index} price cannot be negative",
                    severity="error",
                ))
        return issues

    def _check_choice(self, field: str, value: Any, choices: type[Enum]) -> list[ValidationIssue]:
        try:
            choices(value)
        except ValueError:
            allowed = ", ".join(str(choice.value) for choice in choices)
            return [ValidationIssue(
                field=field,
                issue_type="invalid_value",
                message=f"'{value}' is not a valid {field}",
                severity="error",
                suggested_fix=f"Choose one of: {allowed}",
            )]
        return []

    def _check_amount(self, field: str, amount: Any) -> list[ValidationIssue]:
        try:
            amount = amount if isinstance(amount, Decimal) else Decimal(str(amount))
        except (InvalidOperation, ValueError, TypeError):
            amount = None
        if amount is None or not amount.is_finite():
            return [ValidationIssue(
                field=field,
                issue_type="invalid_value",
                message="Amount must be a number",
                severity="error",
                suggested_fix="Enter a positive amount",
            )]
        if amount <= 0:
            return [ValidationIssue(
                field=field,
                issue_type="invalid_value",
                message="Amount must be greater than zero",
                severity="error",
                suggested_fix="Enter a positive amount",
            )]
        if amount > self._max_amount:
            return [ValidationIssue(
                field=field,
                issue_type="suspicious_value",
                message=f"Amount ({amount:,.2f}) seems unusually high",
                severity="warning",
                suggested_fix="Please verify this amount is correct",
            )]
        return []

    def _check_date(self, on: Optional[date]) -> list[ValidationIssue]:
        if on is None:
            return []
        if on > date.today() + timedelta(days=self._future_days):
            return [ValidationIssue(
                field="date",
                issue_type="future_date",
                message=f"Date ({on.isoformat()}) is in the future",
                severity="warning",
                suggested_fix="Please verify the date is correct",
            )]
        return []

    def _check_counterparty(
        self,
        customer: Optional[Customer],
        kind: TransactionKind,
    ) -> list[ValidationIssue]:
        if customer is None or customer.type == CustomerType.BOTH:
            return []
        if kind == TransactionKind.SALES and customer.type == CustomerType.SUPPLIER:
            return [ValidationIssue(
                field="customer",
                issue_type="unusual_counterparty",
                message=f"{customer.name} is registered as a supplier only",
                severity="warning",
            )]
        if kind == TransactionKind.PURCHASE and customer.type == CustomerType.BUYER:
            return [ValidationIssue(
                field="customer",
                issue_type="unusual_counterparty",
                message=f"{customer.name} is registered as a buyer only",
                severity="warning",
            )]
        return []

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def validate_invoice(
        self,
        customer_id: Optional[int],
        items: Optional[Sequence[TransactionItem]],
        kind: TransactionKind,
        on: Optional[date] = None,
        customer: Optional[Customer] = None,
        currency: Any = Currency.TL,
    ) -> ValidationResult:
        """Check a sales or purchase invoice request."""
        issues = []

        if not customer_id:
            issues.append(ValidationIssue(
                field="customer",
                issue_type="missing",
                message="Please select a customer",
                severity="error",
            ))

        kind_issues = self._check_choice("kind", kind, TransactionKind)
        issues.extend(kind_issues)
        if not kind_issues and not TransactionKind(kind).is_invoice:
            issues.append(ValidationIssue(
                field="kind",
                issue_type="invalid_value",
                message=f"{TransactionKind(kind).value} is not an invoice kind",
                severity="error",
            ))
        issues.extend(self._check_choice("currency", currency, Currency))

        item_issues = self._check_items(items)
        issues.extend(item_issues)
        if not item_issues:
            total = sum((item.total for item in items), Decimal("0"))
            issues.extend(self._check_amount("total", total))

        issues.extend(self._check_date(on))
        if not kind_issues:
            issues.extend(self._check_counterparty(customer, TransactionKind(kind)))

        return ValidationResult(operation="create_invoice", issues=issues)

    def validate_cash_movement(
        self,
        customer_id: Optional[int],
        safe_id: Optional[int],
        amount: Any,
        on: Optional[date] = None,
        direction: Any = CashDirection.IN,
        currency: Any = Currency.TL,
        method: Any = PaymentMethod.CASH,
    ) -> ValidationResult:
        """Check a cash-in/cash-out request."""
        issues = []

        if not customer_id:
            issues.append(ValidationIssue(
                field="customer",
                issue_type="missing",
                message="Please select a customer",
                severity="error",
            ))
        if not safe_id:
            issues.append(ValidationIssue(
                field="safe",
                issue_type="missing",
                message="Please select a safe",
                severity="error",
            ))

        issues.extend(self._check_choice("direction", direction, CashDirection))
        issues.extend(self._check_choice("currency", currency, Currency))
        issues.extend(self._check_choice("method", method, PaymentMethod))
        issues.extend(self._check_amount("amount", amount))
        issues.extend(self._check_date(on))

        return ValidationResult(operation="record_cash_movement", issues=issues)

    def validate_transaction(self, transaction: Transaction) -> ValidationResult:
        """Check an edited transaction against the rules for its kind."""
        issues = []

        if not transaction.acc_id:
            issues.append(ValidationIssue(
                field="accId",
                issue_type="missing",
                message="A transaction must reference a customer",
                severity="error",
            ))

        if transaction.kind.is_invoice:
            issues.extend(self._check_items(transaction.items))
        elif not transaction.safe_id:
            issues.append(ValidationIssue(
                field="safeId",
                issue_type="missing",
                message="A cash movement must reference a safe",
                severity="error",
            ))

        issues.extend(self._check_amount("total", transaction.total))
        issues.extend(self._check_date(transaction.date))

        return ValidationResult(operation="edit_transaction", issues=issues)

    def validate_entity_name(self, operation: str, name: Optional[str]) -> ValidationResult:
        """Customers, products and safes all need a non-blank name."""
        issues = []
        if not name or not name.strip():
            issues.append(ValidationIssue(
                field="name",
                issue_type="missing",
                message="Name cannot be empty",
                severity="error",
            ))
        return ValidationResult(operation=operation, issues=issues)

    def get_user_friendly_summary(self, result: ValidationResult) -> str:
        """
        Generate a user-friendly summary of validation results.

        This is the message surfaced to the person at the counter.
        """
        if result.is_valid and not result.warnings:
            return "All checks passed."

        lines = []

        if result.has_errors:
            lines.append("Cannot save:")
            for issue in result.issues:
                if issue.severity == "error":
                    lines.append(f"   - {issue.message}")
                    if issue.suggested_fix:
                        lines.append(f"     ({issue.suggested_fix})")

        if result.warnings:
            if lines:
                lines.append("")
            lines.append("Please verify:")
            for warning in result.warnings:
                lines.append(f"   - {warning}")

        return "\n".join(lines)
