"""
Ledger Engine

Owns the four collections and is the only place balances change.

DESIGN DECISION: Every operation works on a copy of the collections and
commits them in one step, so callers never observe a half-applied
transaction (e.g. a cash movement that moved the customer but not the
safe). Edits revert the old contribution fully before reapplying the
new one; that stays correct whatever field changed.

After a commit the engine:
1. Pushes every touched record to the remote mirror (fire-and-forget)
2. Writes audit events
3. Notifies subscribers with the new snapshot

Requests are validated before anything is copied. A missing transaction
id on edit/delete is a no-op; a missing customer or safe on create
raises. A customer or safe that disappeared after a transaction was
recorded is skipped (and audited) when that transaction is reverted.
"""

import datetime as dt
import time
from decimal import Decimal
from typing import Callable, Iterable, Optional, Sequence, Union
from uuid import UUID

import structlog

from shop_ledger.audit import AuditLogger, create_correlation_id
from shop_ledger.balances import LedgerRole, apply_contribution
from shop_ledger.exceptions import EntityNotFoundError, LedgerValidationError
from shop_ledger.models.audit import AuditEventBuilder, AuditEventType
from shop_ledger.models.ledger import (
    ZERO,
    CashDirection,
    Currency,
    Customer,
    CustomerType,
    LedgerRecord,
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
from shop_ledger.models.validation import ValidationResult
from shop_ledger.services.sync import SyncDispatcher
from shop_ledger.validation import LedgerValidator

logger = structlog.get_logger(__name__)

Listener = Callable[[LedgerSnapshot], None]


class IdGenerator:
    """
    Millisecond-clock ids, strictly increasing within a process.

    Two requests in the same millisecond get consecutive ids.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._last = 0

    def observe(self, existing_ids: Iterable[int]) -> None:
        """Never hand out an id at or below one already in use."""
        self._last = max([self._last, *existing_ids])

    def next_id(self) -> int:
        candidate = int(self._clock() * 1000)
        if candidate <= self._last:
            candidate = self._last + 1
        self._last = candidate
        return candidate


class _WorkingBalances:
    """Copies of the balance-bearing collections for one operation."""

    def __init__(self, customers: Sequence[Customer], safes: Sequence[Safe]):
        self.customers = {c.id: c for c in customers}
        self.safes = {s.id: s for s in safes}
        self.touched_customers: list[int] = []
        self.touched_safes: list[int] = []

    def customer_records(self) -> list[Customer]:
        return [self.customers[i] for i in self.touched_customers if i in self.customers]

    def safe_records(self) -> list[Safe]:
        return [self.safes[i] for i in self.touched_safes if i in self.safes]


class LedgerEngine:
    """
    The ledger: customers, products, safes and transactions behind one API.

    Usage:
        engine = LedgerEngine(snapshot)
        tx = engine.create_invoice(customer.id, date.today(), items)
        engine.record_cash_movement(customer.id, safe.id, Decimal("400"), CashDirection.IN)
    """

    def __init__(
        self,
        snapshot: Optional[LedgerSnapshot] = None,
        dispatcher: Optional[SyncDispatcher] = None,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[LedgerValidator] = None,
        id_generator: Optional[IdGenerator] = None,
    ):
        snapshot = snapshot or LedgerSnapshot()
        self._customers: tuple[Customer, ...] = tuple(snapshot.customers)
        self._products: tuple[Product, ...] = tuple(snapshot.products)
        self._safes: tuple[Safe, ...] = tuple(snapshot.safes)
        self._transactions: tuple[Transaction, ...] = tuple(snapshot.transactions)

        self._dispatcher = dispatcher
        self._audit = audit_logger or AuditLogger()
        self._validator = validator or LedgerValidator()
        self._ids = id_generator or IdGenerator()
        self._ids.observe(
            record.id
            for collection in (self._customers, self._products, self._safes, self._transactions)
            for record in collection
        )
        self._listeners: list[Listener] = []

    # =========================================================================
    # READ ACCESS
    # =========================================================================

    @property
    def customers(self) -> tuple[Customer, ...]:
        return self._customers

    @property
    def products(self) -> tuple[Product, ...]:
        return self._products

    @property
    def safes(self) -> tuple[Safe, ...]:
        return self._safes

    @property
    def transactions(self) -> tuple[Transaction, ...]:
        return self._transactions

    @property
    def audit_logger(self) -> AuditLogger:
        return self._audit

    def get_customer(self, customer_id: Optional[int]) -> Optional[Customer]:
        return next((c for c in self._customers if c.id == customer_id), None)

    def get_product(self, product_id: Optional[int]) -> Optional[Product]:
        return next((p for p in self._products if p.id == product_id), None)

    def get_safe(self, safe_id: Optional[int]) -> Optional[Safe]:
        return next((s for s in self._safes if s.id == safe_id), None)

    def get_transaction(self, transaction_id: Optional[int]) -> Optional[Transaction]:
        return next((t for t in self._transactions if t.id == transaction_id), None)

    def transactions_for_customer(self, customer_id: int) -> list[Transaction]:
        return [t for t in self._transactions if t.acc_id == customer_id]

    def snapshot(self) -> LedgerSnapshot:
        return LedgerSnapshot(
            customers=list(self._customers),
            products=list(self._products),
            safes=list(self._safes),
            transactions=list(self._transactions),
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Call `listener(snapshot)` after every committed change.

        Returns a function that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _reject(self, result: ValidationResult, correlation_id: UUID) -> None:
        self._audit.log(AuditEventBuilder.validation_failed(
            result.operation,
            [issue.model_dump() for issue in result.issues],
            correlation_id,
        ))
        raise LedgerValidationError(
            result, self._validator.get_user_friendly_summary(result)
        )

    def _not_found(
        self,
        collection: str,
        entity_id: Optional[int],
        operation: str,
        correlation_id: UUID,
    ) -> None:
        self._audit.log(AuditEventBuilder.entity_not_found(
            collection, entity_id, operation, correlation_id
        ))
        raise EntityNotFoundError(collection, entity_id)

    def _apply(
        self,
        work: _WorkingBalances,
        transaction: Transaction,
        inverse: bool,
        correlation_id: UUID,
    ) -> None:
        """Add (or remove) one transaction's effect on its customer and safe."""
        step = "revert" if inverse else "apply"

        if transaction.acc_id is not None:
            customer = work.customers.get(transaction.acc_id)
            if customer is None:
                self._skip_orphan("customers", transaction.acc_id, transaction, step, correlation_id)
            else:
                work.customers[customer.id] = customer.model_copy(update={
                    "balances": apply_contribution(
                        customer.balances, transaction, LedgerRole.CUSTOMER, inverse
                    ),
                })
                if customer.id not in work.touched_customers:
                    work.touched_customers.append(customer.id)

        if transaction.touches_safe:
            safe = work.safes.get(transaction.safe_id)
            if safe is None:
                self._skip_orphan("safes", transaction.safe_id, transaction, step, correlation_id)
            else:
                work.safes[safe.id] = safe.model_copy(update={
                    "balances": apply_contribution(
                        safe.balances, transaction, LedgerRole.SAFE, inverse
                    ),
                })
                if safe.id not in work.touched_safes:
                    work.touched_safes.append(safe.id)

    def _skip_orphan(
        self,
        collection: str,
        entity_id: int,
        transaction: Transaction,
        step: str,
        correlation_id: UUID,
    ) -> None:
        logger.warning(
            "orphaned_reference_skipped",
            collection=collection,
            entity_id=entity_id,
            transaction_id=transaction.id,
            step=step,
        )
        self._audit.log(AuditEventBuilder.orphaned_reference_skipped(
            collection, entity_id, transaction.id, step, correlation_id
        ))

    def _commit_balances(self, work: _WorkingBalances) -> None:
        self._customers = tuple(work.customers.values())
        self._safes = tuple(work.safes.values())

    def _push(
        self,
        created: Sequence[tuple[str, LedgerRecord]] = (),
        updated: Sequence[tuple[str, LedgerRecord]] = (),
        deleted: Sequence[tuple[str, int]] = (),
    ) -> None:
        if self._dispatcher is None:
            return
        for collection, record in created:
            self._dispatcher.push_create(collection, record)
        for collection, record in updated:
            self._dispatcher.push_update(collection, record)
        for collection, record_id in deleted:
            self._dispatcher.push_delete(collection, record_id)

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error("ledger_listener_failed", error=str(e))

    @staticmethod
    def _balance_updates(work: _WorkingBalances) -> list[tuple[str, LedgerRecord]]:
        return (
            [("customers", c) for c in work.customer_records()]
            + [("safes", s) for s in work.safe_records()]
        )

    @staticmethod
    def _normalize_items(
        items: Optional[Sequence[Union[TransactionItem, dict]]],
    ) -> list[TransactionItem]:
        normalized = []
        for item in items or []:
            if isinstance(item, TransactionItem):
                item = item.model_dump()
            normalized.append(TransactionItem.model_validate(item))
        return normalized

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    def create_invoice(
        self,
        customer_id: int,
        date: dt.date,
        items: Sequence[Union[TransactionItem, dict]],
        currency: Currency = Currency.TL,
        kind: TransactionKind = TransactionKind.SALES,
        desc: Optional[str] = None,
    ) -> Transaction:
        """
        Record a sales or purchase invoice and move the customer balance.

        The total is the sum of the item totals.

        Raises:
            LedgerValidationError: empty items, bad quantities, wrong kind
                or unknown currency
            EntityNotFoundError: the customer does not exist
        """
        correlation_id = create_correlation_id()
        line_items = self._normalize_items(items)
        customer = self.get_customer(customer_id)

        result = self._validator.validate_invoice(
            customer_id, line_items, kind, on=date, customer=customer, currency=currency
        )
        if result.has_errors:
            self._reject(result, correlation_id)
        kind = TransactionKind(kind)
        if customer is None:
            self._not_found("customers", customer_id, "create_invoice", correlation_id)

        transaction = Transaction(
            id=self._ids.next_id(),
            date=date,
            kind=kind,
            acc_id=customer.id,
            acc_name=customer.name,
            currency=Currency(currency),
            total=ZERO,
            items=line_items,
            desc=desc,
        )

        work = _WorkingBalances(self._customers, self._safes)
        self._apply(work, transaction, False, correlation_id)
        self._commit_balances(work)
        self._transactions = self._transactions + (transaction,)

        self._push(
            created=[("transactions", transaction)],
            updated=self._balance_updates(work),
        )
        self._audit.log(AuditEventBuilder.transaction_created(
            transaction.id,
            kind.value,
            str(transaction.total),
            transaction.currency.value,
            transaction.acc_id,
            None,
            correlation_id,
        ))
        self._notify()
        return transaction

    def record_cash_movement(
        self,
        customer_id: int,
        safe_id: int,
        amount: Union[Decimal, int, float, str],
        direction: CashDirection,
        currency: Currency = Currency.TL,
        method: PaymentMethod = PaymentMethod.CASH,
        desc: Optional[str] = None,
        date: Optional[dt.date] = None,
        linked_transaction_id: Optional[int] = None,
    ) -> Transaction:
        """
        Record money moving between a customer and a safe.

        `in` means the customer paid the business; `out` means the business
        paid the customer. Customer and safe move together.

        Raises:
            LedgerValidationError: bad amount, unknown direction, currency
                or method, missing selection
            EntityNotFoundError: the customer or safe does not exist
        """
        correlation_id = create_correlation_id()
        date = date or dt.date.today()

        result = self._validator.validate_cash_movement(
            customer_id,
            safe_id,
            amount,
            on=date,
            direction=direction,
            currency=currency,
            method=method,
        )
        if result.has_errors:
            self._reject(result, correlation_id)
        amount = amount if isinstance(amount, Decimal) else Decimal(str(amount))

        customer = self.get_customer(customer_id)
        if customer is None:
            self._not_found("customers", customer_id, "record_cash_movement", correlation_id)
        if self.get_safe(safe_id) is None:
            self._not_found("safes", safe_id, "record_cash_movement", correlation_id)

        transaction = Transaction(
            id=self._ids.next_id(),
            date=date,
            kind=CashDirection(direction).kind,
            acc_id=customer.id,
            acc_name=customer.name,
            safe_id=safe_id,
            currency=Currency(currency),
            total=amount,
            desc=desc,
            method=PaymentMethod(method),
            linked_transaction_id=linked_transaction_id,
        )

        work = _WorkingBalances(self._customers, self._safes)
        self._apply(work, transaction, False, correlation_id)
        self._commit_balances(work)
        self._transactions = self._transactions + (transaction,)

        self._push(
            created=[("transactions", transaction)],
            updated=self._balance_updates(work),
        )
        self._audit.log(AuditEventBuilder.transaction_created(
            transaction.id,
            transaction.kind.value,
            str(transaction.total),
            transaction.currency.value,
            transaction.acc_id,
            transaction.safe_id,
            correlation_id,
        ))
        self._notify()
        return transaction

    def delete_transaction(self, transaction_id: int) -> Optional[Transaction]:
        """
        Remove a transaction and revert its effect.

        Returns the removed transaction, or None if it did not exist.
        """
        existing = self.get_transaction(transaction_id)
        if existing is None:
            logger.info("delete_transaction_noop", transaction_id=transaction_id)
            return None

        correlation_id = create_correlation_id()
        work = _WorkingBalances(self._customers, self._safes)
        self._apply(work, existing, True, correlation_id)
        self._commit_balances(work)
        self._transactions = tuple(t for t in self._transactions if t.id != transaction_id)

        self._push(
            updated=self._balance_updates(work),
            deleted=[("transactions", transaction_id)],
        )
        self._audit.log(AuditEventBuilder.transaction_deleted(
            existing.id,
            existing.kind.value,
            str(existing.total),
            existing.currency.value,
            correlation_id,
        ))
        self._notify()
        return existing

    def edit_transaction(self, updated: Transaction) -> Optional[Transaction]:
        """
        Replace a transaction: revert the stored version, apply the new one.

        Kind, amount, currency, customer and safe may all change. Item
        totals and the transaction total are recomputed from the items.

        Returns the stored new version, or None if the id does not exist.

        Raises:
            LedgerValidationError: the new version breaks the rules for its kind
            EntityNotFoundError: the new customer or safe does not exist
        """
        prior = self.get_transaction(updated.id)
        if prior is None:
            logger.info("edit_transaction_noop", transaction_id=updated.id)
            return None

        correlation_id = create_correlation_id()
        updated = Transaction.model_validate(updated.model_dump())

        result = self._validator.validate_transaction(updated)
        if result.has_errors:
            self._reject(result, correlation_id)

        customer = self.get_customer(updated.acc_id)
        if customer is None:
            self._not_found("customers", updated.acc_id, "edit_transaction", correlation_id)
        if updated.touches_safe and self.get_safe(updated.safe_id) is None:
            self._not_found("safes", updated.safe_id, "edit_transaction", correlation_id)

        if updated.acc_id != prior.acc_id or not updated.acc_name:
            updated = updated.model_copy(update={"acc_name": customer.name})

        work = _WorkingBalances(self._customers, self._safes)
        self._apply(work, prior, True, correlation_id)
        self._apply(work, updated, False, correlation_id)
        self._commit_balances(work)
        self._transactions = tuple(
            updated if t.id == updated.id else t for t in self._transactions
        )

        self._push(updated=[("transactions", updated)] + self._balance_updates(work))
        self._audit.log(AuditEventBuilder.transaction_edited(
            updated.id, prior.to_record(), updated.to_record(), correlation_id
        ))
        self._notify()
        return updated

    # =========================================================================
    # CUSTOMERS
    # =========================================================================

    def add_customer(
        self,
        name: str,
        type: CustomerType = CustomerType.BUYER,
        phone: Optional[str] = None,
        address: Optional[str] = None,
        parent_id: Optional[int] = None,
        section: SyncMode = SyncMode.ACCOUNTING,
    ) -> Customer:
        """Create a customer with zero balances."""
        correlation_id = create_correlation_id()
        result = self._validator.validate_entity_name("add_customer", name)
        if result.has_errors:
            self._reject(result, correlation_id)
        if parent_id is not None and self.get_customer(parent_id) is None:
            self._not_found("customers", parent_id, "add_customer", correlation_id)

        customer = Customer(
            id=self._ids.next_id(),
            name=name,
            type=type,
            phone=phone,
            address=address,
            parent_id=parent_id,
            section=section,
        )
        self._customers = self._customers + (customer,)

        self._push(created=[("customers", customer)])
        self._audit.log(AuditEventBuilder.entity_changed(
            AuditEventType.CUSTOMER_ADDED, "customers", customer.id, customer.name, correlation_id
        ))
        self._notify()
        return customer

    def edit_customer(self, customer: Customer) -> Customer:
        """
        Update a customer's details. Balances stay as the engine has them.

        Raises:
            EntityNotFoundError: no customer has this id
        """
        correlation_id = create_correlation_id()
        existing = self.get_customer(customer.id)
        if existing is None:
            self._not_found("customers", customer.id, "edit_customer", correlation_id)
        if customer.parent_id is not None and (
            customer.parent_id == customer.id or self.get_customer(customer.parent_id) is None
        ):
            self._not_found("customers", customer.parent_id, "edit_customer", correlation_id)

        stored = customer.model_copy(update={"balances": existing.balances})
        self._customers = tuple(stored if c.id == stored.id else c for c in self._customers)

        self._push(updated=[("customers", stored)])
        self._audit.log(AuditEventBuilder.entity_changed(
            AuditEventType.CUSTOMER_UPDATED, "customers", stored.id, stored.name, correlation_id
        ))
        self._notify()
        return stored

    def delete_customer(self, customer_id: int, cascade: bool = False) -> Optional[Customer]:
        """
        Remove a customer.

        By default the customer's transactions stay in the ledger as
        orphans and are skipped on the customer side when later reverted.
        With `cascade`, they are deleted too and their safe effects reverted.

        Returns the removed customer, or None if it did not exist.
        """
        existing = self.get_customer(customer_id)
        if existing is None:
            logger.info("delete_customer_noop", customer_id=customer_id)
            return None

        correlation_id = create_correlation_id()
        related = self.transactions_for_customer(customer_id)
        work = _WorkingBalances(self._customers, self._safes)
        removed: list[Transaction] = []
        if cascade:
            for transaction in related:
                self._apply(work, transaction, True, correlation_id)
                removed.append(transaction)
        del work.customers[customer_id]
        self._commit_balances(work)
        if removed:
            removed_ids = {t.id for t in removed}
            self._transactions = tuple(t for t in self._transactions if t.id not in removed_ids)

        self._push(
            updated=[("safes", s) for s in work.safe_records()],
            deleted=[("transactions", t.id) for t in removed] + [("customers", customer_id)],
        )
        for transaction in removed:
            self._audit.log(AuditEventBuilder.transaction_deleted(
                transaction.id,
                transaction.kind.value,
                str(transaction.total),
                transaction.currency.value,
                correlation_id,
            ))
        self._audit.log(AuditEventBuilder.entity_changed(
            AuditEventType.CUSTOMER_DELETED, "customers", existing.id, existing.name, correlation_id
        ))
        if related and not cascade:
            logger.info(
                "customer_transactions_orphaned",
                customer_id=customer_id,
                count=len(related),
            )
        self._notify()
        return existing

    # =========================================================================
    # PRODUCTS
    # =========================================================================

    def add_product(
        self,
        name: str,
        type: ProductType = ProductType.BOTH,
        unit: str = "pcs",
        category: Optional[str] = None,
        price: Union[Decimal, int, float, str] = ZERO,
        purchase_price: Optional[Union[Decimal, int, float, str]] = None,
        currency: Currency = Currency.TL,
    ) -> Product:
        """Add a catalog entry. Products never affect balances."""
        correlation_id = create_correlation_id()
        result = self._validator.validate_entity_name("add_product", name)
        if result.has_errors:
            self._reject(result, correlation_id)

        product = Product(
            id=self._ids.next_id(),
            name=name,
            type=type,
            unit=unit,
            category=category,
            price=Decimal(str(price)),
            purchase_price=None if purchase_price is None else Decimal(str(purchase_price)),
            currency=currency,
        )
        self._products = self._products + (product,)

        self._push(created=[("products", product)])
        self._audit.log(AuditEventBuilder.entity_changed(
            AuditEventType.PRODUCT_ADDED, "products", product.id, product.name, correlation_id
        ))
        self._notify()
        return product

    def edit_product(self, product: Product) -> Product:
        correlation_id = create_correlation_id()
        if self.get_product(product.id) is None:
            self._not_found("products", product.id, "edit_product", correlation_id)

        self._products = tuple(product if p.id == product.id else p for p in self._products)

        self._push(updated=[("products", product)])
        self._audit.log(AuditEventBuilder.entity_changed(
            AuditEventType.PRODUCT_UPDATED, "products", product.id, product.name, correlation_id
        ))
        self._notify()
        return product

    def delete_product(self, product_id: int) -> Optional[Product]:
        existing = self.get_product(product_id)
        if existing is None:
            return None

        self._products = tuple(p for p in self._products if p.id != product_id)

        self._push(deleted=[("products", product_id)])
        self._audit.log(AuditEventBuilder.entity_changed(
            AuditEventType.PRODUCT_DELETED, "products", existing.id, existing.name
        ))
        self._notify()
        return existing

    # =========================================================================
    # SAFES
    # =========================================================================

    def add_safe(self, name: str) -> Safe:
        """Open a new safe with zero balances."""
        correlation_id = create_correlation_id()
        result = self._validator.validate_entity_name("add_safe", name)
        if result.has_errors:
            self._reject(result, correlation_id)

        safe = Safe(id=self._ids.next_id(), name=name)
        self._safes = self._safes + (safe,)

        self._push(created=[("safes", safe)])
        self._audit.log(AuditEventBuilder.entity_changed(
            AuditEventType.SAFE_ADDED, "safes", safe.id, safe.name, correlation_id
        ))
        self._notify()
        return safe

    def edit_safe(self, safe_id: int, name: str) -> Safe:
        """Rename a safe. Cash on hand only changes through transactions."""
        correlation_id = create_correlation_id()
        existing = self.get_safe(safe_id)
        if existing is None:
            self._not_found("safes", safe_id, "edit_safe", correlation_id)
        result = self._validator.validate_entity_name("edit_safe", name)
        if result.has_errors:
            self._reject(result, correlation_id)

        stored = existing.model_copy(update={"name": name.strip()})
        self._safes = tuple(stored if s.id == safe_id else s for s in self._safes)

        self._push(updated=[("safes", stored)])
        self._audit.log(AuditEventBuilder.entity_changed(
            AuditEventType.SAFE_UPDATED, "safes", stored.id, stored.name, correlation_id
        ))
        self._notify()
        return stored

    def delete_safe(self, safe_id: int) -> Optional[Safe]:
        """
        Remove a safe. Cash transactions that used it stay in the ledger
        and skip the safe side when reverted.
        """
        existing = self.get_safe(safe_id)
        if existing is None:
            return None

        self._safes = tuple(s for s in self._safes if s.id != safe_id)

        self._push(deleted=[("safes", safe_id)])
        self._audit.log(AuditEventBuilder.entity_changed(
            AuditEventType.SAFE_DELETED, "safes", existing.id, existing.name
        ))
        self._notify()
        return existing
