"""
Tests for the ledger engine.

Balances must always equal what the ledger says they are, whatever
sequence of creates, edits and deletes produced them.
"""

import pytest
from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock

from shop_ledger.engine import IdGenerator, LedgerEngine
from shop_ledger.exceptions import EntityNotFoundError, LedgerValidationError
from shop_ledger.models.audit import AuditEventType
from shop_ledger.models.ledger import (
    CashDirection,
    Currency,
    CustomerType,
    PaymentMethod,
    TransactionItem,
    TransactionKind,
)
from shop_ledger.queries import find_balance_drift

from tests.conftest import items_totalling


def tl(engine, customer_id):
    return engine.get_customer(customer_id).balances.TL


def safe_tl(engine, safe_id):
    return engine.get_safe(safe_id).balances.TL


def event_types(audit_logger):
    return [event.event_type for event in audit_logger.recent_events]


class TestScenarios:
    """The reference walk-through: invoice, payment, delete, edit, purchase."""

    def test_a_sales_invoice_raises_customer_balance(self, engine, customer, invoice_day):
        engine.create_invoice(customer.id, invoice_day, items_totalling("1000"))
        assert tl(engine, customer.id) == Decimal("1000")

    def test_b_cash_in_moves_customer_and_safe(self, engine, customer, safe, invoice_day):
        engine.create_invoice(customer.id, invoice_day, items_totalling("1000"))
        engine.record_cash_movement(customer.id, safe.id, Decimal("400"), CashDirection.IN, date=invoice_day)
        assert tl(engine, customer.id) == Decimal("600")
        assert safe_tl(engine, safe.id) == Decimal("400")

    def test_c_deleting_cash_in_restores_both(self, engine, customer, safe, invoice_day):
        engine.create_invoice(customer.id, invoice_day, items_totalling("1000"))
        payment = engine.record_cash_movement(
            customer.id, safe.id, Decimal("400"), CashDirection.IN, date=invoice_day
        )
        engine.delete_transaction(payment.id)
        assert tl(engine, customer.id) == Decimal("1000")
        assert safe_tl(engine, safe.id) == Decimal("0")

    def test_d_editing_invoice_total(self, engine, customer, invoice_day):
        invoice = engine.create_invoice(customer.id, invoice_day, items_totalling("1000"))
        edited = invoice.model_copy(update={
            "items": [TransactionItem(name="Flour", qty=Decimal("1"), unit="kg", price=Decimal("1500"))],
        })
        stored = engine.edit_transaction(edited)
        assert stored.total == Decimal("1500")
        assert tl(engine, customer.id) == Decimal("1500")

    def test_e_purchase_from_supplier(self, engine, supplier, invoice_day):
        engine.create_invoice(
            supplier.id, invoice_day, items_totalling("200"),
            currency=Currency.USD, kind=TransactionKind.PURCHASE,
        )
        balances = engine.get_customer(supplier.id).balances
        assert balances.USD == Decimal("-200")
        assert balances.TL == Decimal("0")


class TestCreateInvoice:

    def test_total_is_sum_of_item_totals(self, engine, customer, invoice_day):
        tx = engine.create_invoice(customer.id, invoice_day, [
            {"name": "Rice", "qty": 2, "unit": "kg", "price": "12.5"},
            {"name": "Oil", "qty": 3, "unit": "lt", "price": 40},
        ])
        assert [item.total for item in tx.items] == [Decimal("25.0"), Decimal("120")]
        assert tx.total == Decimal("145.0")
        assert tx.acc_name == customer.name
        assert tx.safe_id is None

    def test_empty_items_rejected_without_changes(self, engine, customer, invoice_day, audit_logger):
        before = engine.snapshot()
        with pytest.raises(LedgerValidationError) as excinfo:
            engine.create_invoice(customer.id, invoice_day, [])
        assert "Cannot save" in excinfo.value.user_message
        assert engine.snapshot() == before
        assert AuditEventType.VALIDATION_FAILED in event_types(audit_logger)

    def test_cash_kind_is_not_an_invoice(self, engine, customer, invoice_day):
        with pytest.raises(LedgerValidationError):
            engine.create_invoice(
                customer.id, invoice_day, items_totalling("10"), kind=TransactionKind.CASH_IN
            )

    def test_unknown_currency_rejected(self, engine, customer, invoice_day):
        with pytest.raises(LedgerValidationError):
            engine.create_invoice(customer.id, invoice_day, items_totalling("10"), currency="GBP")
        assert engine.transactions == ()

    def test_unknown_customer_raises(self, engine, invoice_day, audit_logger):
        with pytest.raises(EntityNotFoundError) as excinfo:
            engine.create_invoice(424242, invoice_day, items_totalling("10"))
        assert excinfo.value.entity_id == 424242
        assert engine.transactions == ()
        assert AuditEventType.ENTITY_NOT_FOUND in event_types(audit_logger)

    def test_keeps_customer_name_after_rename(self, engine, customer, invoice_day):
        tx = engine.create_invoice(customer.id, invoice_day, items_totalling("10"))
        engine.edit_customer(engine.get_customer(customer.id).model_copy(update={"name": "Renamed"}))
        assert engine.get_transaction(tx.id).acc_name == "Ayse Market"


class TestCashMovement:

    def test_cash_out_raises_customer_and_drains_safe(self, engine, customer, safe):
        tx = engine.record_cash_movement(
            customer.id, safe.id, "250", CashDirection.OUT,
            currency=Currency.EUR, method=PaymentMethod.WIRE, desc="refund",
        )
        assert tx.kind == TransactionKind.CASH_OUT
        assert tx.method == PaymentMethod.WIRE
        assert engine.get_customer(customer.id).balances.EUR == Decimal("250")
        # Safes are allowed to go negative
        assert engine.get_safe(safe.id).balances.EUR == Decimal("-250")

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5")])
    def test_non_positive_amount_rejected(self, engine, customer, safe, amount):
        with pytest.raises(LedgerValidationError):
            engine.record_cash_movement(customer.id, safe.id, amount, CashDirection.IN)
        assert engine.transactions == ()

    @pytest.mark.parametrize("amount, direction, extra", [
        ("10", "sideways", {}),
        ("10", CashDirection.IN, {"currency": "GBP"}),
        ("10", CashDirection.IN, {"method": "barter"}),
        ("NaN", CashDirection.IN, {}),
        ("ten", CashDirection.IN, {}),
    ])
    def test_bad_request_rejected_as_validation_error(
        self, engine, customer, safe, audit_logger, amount, direction, extra
    ):
        with pytest.raises(LedgerValidationError) as excinfo:
            engine.record_cash_movement(customer.id, safe.id, amount, direction, **extra)
        assert excinfo.value.user_message.startswith("Cannot save:")
        assert engine.transactions == ()
        assert engine.get_safe(safe.id).balances.is_zero()
        assert AuditEventType.VALIDATION_FAILED in event_types(audit_logger)

    def test_missing_safe_aborts_before_customer_changes(self, engine, customer):
        with pytest.raises(EntityNotFoundError):
            engine.record_cash_movement(customer.id, 999999, Decimal("10"), CashDirection.IN)
        assert engine.get_customer(customer.id).balances.is_zero()

    def test_linked_payment_keeps_invoice_reference(self, engine, customer, safe, invoice_day):
        invoice = engine.create_invoice(customer.id, invoice_day, items_totalling("80"))
        payment = engine.record_cash_movement(
            customer.id, safe.id, Decimal("80"), CashDirection.IN,
            date=invoice_day, linked_transaction_id=invoice.id,
        )
        assert payment.linked_transaction_id == invoice.id
        assert tl(engine, customer.id) == Decimal("0")


class TestDelete:

    def test_delete_is_idempotent(self, engine, customer, safe, invoice_day):
        engine.create_invoice(customer.id, invoice_day, items_totalling("1000"))
        payment = engine.record_cash_movement(customer.id, safe.id, Decimal("400"), CashDirection.IN)
        assert engine.delete_transaction(payment.id) == payment
        after_first = engine.snapshot()
        assert engine.delete_transaction(payment.id) is None
        assert engine.snapshot() == after_first

    def test_delete_with_deleted_customer_still_reverts_safe(
        self, engine, customer, safe, audit_logger
    ):
        payment = engine.record_cash_movement(customer.id, safe.id, Decimal("400"), CashDirection.IN)
        engine.delete_customer(customer.id)
        engine.delete_transaction(payment.id)
        assert safe_tl(engine, safe.id) == Decimal("0")
        assert engine.transactions == ()
        assert AuditEventType.ORPHANED_REFERENCE_SKIPPED in event_types(audit_logger)

    def test_delete_with_deleted_safe_still_reverts_customer(self, engine, customer, safe):
        payment = engine.record_cash_movement(customer.id, safe.id, Decimal("400"), CashDirection.IN)
        engine.delete_safe(safe.id)
        engine.delete_transaction(payment.id)
        assert tl(engine, customer.id) == Decimal("0")


class TestEdit:

    def test_identity_edit_changes_nothing(self, engine, customer, safe, invoice_day):
        payment = engine.record_cash_movement(
            customer.id, safe.id, Decimal("400"), CashDirection.IN, date=invoice_day
        )
        before = engine.snapshot()
        engine.edit_transaction(payment)
        after = engine.snapshot()
        assert after.customers == before.customers
        assert after.safes == before.safes

    def test_edit_of_unknown_id_is_noop(self, engine, customer, invoice_day):
        tx = engine.create_invoice(customer.id, invoice_day, items_totalling("10"))
        ghost = tx.model_copy(update={"id": tx.id + 12345})
        assert engine.edit_transaction(ghost) is None
        assert tl(engine, customer.id) == Decimal("10")

    def test_moving_payment_to_another_customer_and_safe(self, engine, customer, supplier, safe):
        other_safe = engine.add_safe("Central Safe")
        payment = engine.record_cash_movement(customer.id, safe.id, Decimal("400"), CashDirection.IN)
        moved = payment.model_copy(update={"acc_id": supplier.id, "safe_id": other_safe.id})
        stored = engine.edit_transaction(moved)

        assert stored.acc_name == supplier.name
        assert tl(engine, customer.id) == Decimal("0")
        assert tl(engine, supplier.id) == Decimal("-400")
        assert safe_tl(engine, safe.id) == Decimal("0")
        assert safe_tl(engine, other_safe.id) == Decimal("400")

    def test_changing_kind_and_currency(self, engine, customer, safe):
        payment = engine.record_cash_movement(customer.id, safe.id, Decimal("400"), CashDirection.IN)
        flipped = payment.model_copy(update={
            "kind": TransactionKind.CASH_OUT,
            "currency": Currency.USD,
            "total": Decimal("50"),
        })
        engine.edit_transaction(flipped)
        customer_balances = engine.get_customer(customer.id).balances
        safe_balances = engine.get_safe(safe.id).balances
        assert customer_balances.TL == Decimal("0")
        assert customer_balances.USD == Decimal("50")
        assert safe_balances.TL == Decimal("0")
        assert safe_balances.USD == Decimal("-50")

    def test_edit_rejected_when_cash_movement_loses_its_safe(self, engine, customer, safe):
        payment = engine.record_cash_movement(customer.id, safe.id, Decimal("400"), CashDirection.IN)
        before = engine.snapshot()
        with pytest.raises(LedgerValidationError):
            engine.edit_transaction(payment.model_copy(update={"safe_id": None}))
        assert engine.snapshot() == before

    def test_edit_to_unknown_customer_raises(self, engine, customer, invoice_day):
        tx = engine.create_invoice(customer.id, invoice_day, items_totalling("10"))
        with pytest.raises(EntityNotFoundError):
            engine.edit_transaction(tx.model_copy(update={"acc_id": 31337}))
        assert tl(engine, customer.id) == Decimal("10")


class TestInvariant:

    def test_balances_match_ledger_after_mixed_operations(self, engine, customer, supplier, safe):
        day = date(2024, 6, 10)
        central = engine.add_safe("Central Safe")
        sale = engine.create_invoice(customer.id, day, items_totalling("1000"))
        engine.create_invoice(
            supplier.id, day, items_totalling("300"),
            currency=Currency.EUR, kind=TransactionKind.PURCHASE,
        )
        pay_in = engine.record_cash_movement(customer.id, safe.id, Decimal("250"), CashDirection.IN, date=day)
        engine.record_cash_movement(
            supplier.id, central.id, Decimal("120"), CashDirection.OUT, currency=Currency.EUR, date=day
        )
        engine.edit_transaction(pay_in.model_copy(update={"safe_id": central.id, "total": Decimal("260")}))
        engine.edit_transaction(sale.model_copy(update={"acc_id": supplier.id}))
        engine.delete_transaction(pay_in.id)
        engine.record_cash_movement(customer.id, safe.id, Decimal("5"), CashDirection.OUT, date=day)

        assert find_balance_drift(engine.snapshot()) == []
        assert tl(engine, supplier.id) == Decimal("1000")
        assert engine.get_customer(supplier.id).balances.EUR == Decimal("-180")
        assert tl(engine, customer.id) == Decimal("5")
        assert safe_tl(engine, safe.id) == Decimal("-5")
        assert engine.get_safe(central.id).balances.EUR == Decimal("-120")


class TestEntities:

    def test_edit_customer_preserves_balances(self, engine, customer, invoice_day):
        engine.create_invoice(customer.id, invoice_day, items_totalling("70"))
        tampered = engine.get_customer(customer.id).model_copy(update={
            "phone": "555 0101",
            "balances": engine.get_customer(customer.id).balances.adjusted(Currency.TL, Decimal("1")),
        })
        stored = engine.edit_customer(tampered)
        assert stored.phone == "555 0101"
        assert stored.balances.TL == Decimal("70")

    def test_add_customer_rejects_blank_name(self, engine):
        with pytest.raises(LedgerValidationError):
            engine.add_customer("   ")
        assert engine.customers == ()

    def test_sub_account_requires_existing_parent(self, engine, customer):
        branch = engine.add_customer("Branch", parent_id=customer.id)
        assert branch.parent_id == customer.id
        with pytest.raises(EntityNotFoundError):
            engine.add_customer("Orphan branch", parent_id=777)

    def test_delete_customer_without_cascade_keeps_transactions(self, engine, customer, safe):
        payment = engine.record_cash_movement(customer.id, safe.id, Decimal("40"), CashDirection.IN)
        removed = engine.delete_customer(customer.id)
        assert removed.id == customer.id
        assert engine.get_transaction(payment.id) is not None
        assert safe_tl(engine, safe.id) == Decimal("40")

    def test_delete_customer_with_cascade_reverts_safe(self, engine, customer, supplier, safe, invoice_day):
        engine.create_invoice(customer.id, invoice_day, items_totalling("100"))
        engine.record_cash_movement(customer.id, safe.id, Decimal("40"), CashDirection.IN)
        kept = engine.record_cash_movement(supplier.id, safe.id, Decimal("7"), CashDirection.IN)

        engine.delete_customer(customer.id, cascade=True)

        assert [t.id for t in engine.transactions] == [kept.id]
        assert safe_tl(engine, safe.id) == Decimal("7")
        assert find_balance_drift(engine.snapshot()) == []

    def test_delete_missing_customer_is_noop(self, engine):
        assert engine.delete_customer(123) is None

    def test_safe_rename_keeps_cash(self, engine, customer, safe):
        engine.record_cash_movement(customer.id, safe.id, Decimal("40"), CashDirection.IN)
        renamed = engine.edit_safe(safe.id, "Front Till")
        assert renamed.name == "Front Till"
        assert renamed.balances.TL == Decimal("40")

    def test_product_crud(self, engine, customer, safe):
        product = engine.add_product("Sugar", unit="kg", category="Dry", price="12.5", purchase_price=10)
        assert product.price == Decimal("12.5")
        updated = engine.edit_product(product.model_copy(update={"price": Decimal("13")}))
        assert engine.get_product(product.id).price == Decimal("13")
        assert engine.delete_product(updated.id) == updated
        assert engine.products == ()
        assert engine.get_customer(customer.id).balances.is_zero()

    def test_edit_unknown_product_raises(self, engine):
        product = engine.add_product("Salt")
        engine.delete_product(product.id)
        with pytest.raises(EntityNotFoundError):
            engine.edit_product(product)


class TestNotifications:

    def test_subscribers_see_each_commit(self, engine, customer, safe):
        seen = []
        unsubscribe = engine.subscribe(seen.append)
        engine.record_cash_movement(customer.id, safe.id, Decimal("40"), CashDirection.IN)
        assert len(seen) == 1
        assert seen[0].safe(safe.id).balances.TL == Decimal("40")
        unsubscribe()
        engine.add_safe("Extra")
        assert len(seen) == 1

    def test_failing_subscriber_does_not_undo_commit(self, engine, customer, safe):
        engine.subscribe(MagicMock(side_effect=RuntimeError("boom")))
        engine.record_cash_movement(customer.id, safe.id, Decimal("40"), CashDirection.IN)
        assert safe_tl(engine, safe.id) == Decimal("40")

    def test_rejected_request_does_not_notify(self, engine, customer):
        listener = MagicMock()
        engine.subscribe(listener)
        with pytest.raises(LedgerValidationError):
            engine.add_safe("")
        listener.assert_not_called()


class TestSyncPushes:

    def test_cash_movement_pushes_transaction_and_both_balances(self, validator):
        dispatcher = MagicMock()
        engine = LedgerEngine(dispatcher=dispatcher, validator=validator, id_generator=IdGenerator())
        customer = engine.add_customer("Ayse", type=CustomerType.BOTH)
        safe = engine.add_safe("Main Safe")
        dispatcher.reset_mock()

        tx = engine.record_cash_movement(customer.id, safe.id, Decimal("40"), CashDirection.IN)

        dispatcher.push_create.assert_called_once_with("transactions", tx)
        pushed = [(c, r.id) for c, r in (call.args for call in dispatcher.push_update.call_args_list)]
        assert pushed == [("customers", customer.id), ("safes", safe.id)]

    def test_delete_pushes_delete(self, validator):
        dispatcher = MagicMock()
        engine = LedgerEngine(dispatcher=dispatcher, validator=validator, id_generator=IdGenerator())
        customer = engine.add_customer("Ayse")
        tx = engine.create_invoice(customer.id, date(2024, 1, 2), items_totalling("5"))

        engine.delete_transaction(tx.id)

        dispatcher.push_delete.assert_called_with("transactions", tx.id)
