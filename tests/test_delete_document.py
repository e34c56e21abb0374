"""Document reversal tests"""

import dataclasses
from decimal import Decimal

import pytest

from retail_ledger.core.config import settings
from retail_ledger.models.documents import DocumentStatus
from retail_ledger.models.inventory import MovementKind
from retail_ledger.models.parties import PartyRole
from retail_ledger.services import general_ledger as gl
from retail_ledger.services import party_ledger
from retail_ledger.services.costing import cost_within_tolerance, replay_average_cost
from retail_ledger.services.documents import adjust_stock, delete_document, document_payments
from retail_ledger.services.errors import NotFoundError, PermissionDenied, StockError, ValidationError
from retail_ledger.services.party_ledger import list_entries
from retail_ledger.services.stock_ledger import current_stock, list_movements


class TestDeletePurchase:
    """Reversing supplier documents"""

    def test_round_trip_restores_everything(self, db, owner, balances, make_product, make_party, purchase) -> None:
        product = make_product(cost="100", opening=6)
        supplier = make_party(PartyRole.SUPPLIER, opening="200")
        before_balances = balances()

        bill = purchase(product.id, 10, "130", supplier_id=supplier.id, paid=Decimal("300"))
        db.refresh(product)
        assert product.cost_price == Decimal("118.75")

        reversed_bill = delete_document(db, "purchase", bill.id, owner)

        assert reversed_bill.status == DocumentStatus.REVERSED
        assert reversed_bill.reversed_by_user_id == owner.user_id
        assert reversed_bill.reversed_at is not None
        assert current_stock(db, product.id) == 6
        db.refresh(product)
        db.refresh(supplier)
        assert product.cost_price == Decimal("100.00")
        assert supplier.balance == Decimal("200.00")
        assert balances() == before_balances
        assert cost_within_tolerance(product.cost_price, replay_average_cost(db, product.id))
        assert sum(payment.amount for payment in document_payments(db, bill)) == 0

    def test_reversal_rows_are_history(self, db, owner, make_product, make_party, purchase) -> None:
        """Originals stay; compensating rows point back at them"""
        product = make_product()
        supplier = make_party(PartyRole.SUPPLIER)
        bill = purchase(product.id, 4, "25", supplier_id=supplier.id)

        delete_document(db, "purchase", bill.id, owner)

        movements = list_movements(db, product.id)
        assert [(m.kind, m.quantity) for m in movements] == [
            (MovementKind.PURCHASE, 4),
            (MovementKind.PURCHASE_RETURN, -4),
        ]
        assert movements[1].reverses_movement_id == movements[0].id
        entries = list_entries(db, supplier.id)
        assert entries[1].reverses_entry_id == entries[0].id
        assert (entries[1].debit, entries[1].credit) == (entries[0].credit, entries[0].debit)

    def test_consumed_stock_blocks_reversal(self, db, owner, balances, make_product, make_party, purchase, sell) -> None:
        """Bought 10, sold 7: removing the purchase would need 10 with only 3 on hand"""
        product = make_product()
        supplier = make_party(PartyRole.SUPPLIER)
        bill = purchase(product.id, 10, "100", supplier_id=supplier.id)
        sell(product.id, 7)
        before = balances()

        with pytest.raises(StockError) as excinfo:
            delete_document(db, "purchase", bill.id, owner)

        assert (excinfo.value.available, excinfo.value.requested) == (3, 10)
        assert current_stock(db, product.id) == 3
        db.refresh(bill)
        assert bill.status == DocumentStatus.POSTED
        assert balances() == before

    def test_purchase_return_puts_stock_back(self, db, owner, make_product, make_party, purchase) -> None:
        product = make_product(cost="40", opening=10)
        supplier = make_party(PartyRole.SUPPLIER, opening="500")
        bill = purchase(product.id, 8, "40", supplier_id=supplier.id, is_return=True)
        assert current_stock(db, product.id) == 2

        delete_document(db, "purchase", bill.id, owner)

        assert current_stock(db, product.id) == 10
        assert list_movements(db, product.id)[-1].kind == MovementKind.PURCHASE
        db.refresh(supplier)
        db.refresh(product)
        assert supplier.balance == Decimal("500.00")
        assert product.cost_price == Decimal("40.00")

    def test_clamped_return_reverses_write_off(
        self, db, owner, balances, make_product, make_party, purchase, monkeypatch
    ) -> None:
        monkeypatch.setattr(party_ledger, "settings", dataclasses.replace(settings, return_credit_policy="clamp"))
        product = make_product(cost="50", opening=10)
        supplier = make_party(PartyRole.SUPPLIER, opening="100")
        before = balances()
        bill = purchase(product.id, 3, "50", supplier_id=supplier.id, is_return=True)

        delete_document(db, "purchase", bill.id, owner)

        assert balances() == before
        db.refresh(supplier)
        assert supplier.balance == Decimal("100.00")


class TestDeleteSale:
    """Reversing customer documents"""

    def test_credit_sale_round_trip(self, db, owner, balances, make_product, make_party, sell) -> None:
        product = make_product(cost="60", opening=10, tax_rate="10")
        customer = make_party(PartyRole.CUSTOMER, opening="20")
        before = balances()

        sale = sell(product.id, 3, customer_id=customer.id, is_cash_sale=False, paid=Decimal("95"))
        delete_document(db, "sale", sale.id, owner)

        assert current_stock(db, product.id) == 10
        db.refresh(customer)
        assert customer.balance == Decimal("20.00")
        assert balances() == before

    def test_payments_are_cancelled(self, db, owner, make_product, make_party, sell) -> None:
        """The sale payment and the collection taken with it are both offset"""
        product = make_product(cost="10", opening=5)
        customer = make_party(PartyRole.CUSTOMER, opening="80")
        sale = sell(product.id, 2, customer_id=customer.id, collection=Decimal("50"))

        delete_document(db, "sale", sale.id, owner)

        payments = document_payments(db, sale)
        assert sum(payment.amount for payment in payments) == 0
        originals = [payment for payment in payments if payment.reverses_payment_id is None]
        reversals = {payment.reverses_payment_id: payment for payment in payments if payment.reverses_payment_id}
        assert [payment.amount for payment in originals] == [Decimal("300.00"), Decimal("50.00")]
        for original in originals:
            reversal = reversals[original.id]
            assert reversal.amount == -original.amount
            assert reversal.direction == original.direction
            assert reversal.reference == f"REV-{original.reference}"
        db.refresh(customer)
        assert customer.balance == Decimal("80.00")

    def test_sale_return_reversal_needs_stock(self, db, owner, make_product, sell) -> None:
        product = make_product(opening=1)
        sale_return = sell(product.id, 2, is_return=True)
        sell(product.id, 3)

        with pytest.raises(StockError):
            delete_document(db, "sale", sale_return.id, owner)

    def test_second_run_changes_nothing(self, db, owner, balances, make_product, sell) -> None:
        product = make_product(cost="10", opening=5)
        sale = sell(product.id, 2)
        delete_document(db, "sale", sale.id, owner)
        movements = len(list_movements(db, product.id))
        after_first = balances()

        again = delete_document(db, "sale", sale.id, owner)

        assert again.status == DocumentStatus.REVERSED
        assert len(document_payments(db, sale)) == 2
        assert len(list_movements(db, product.id)) == movements
        assert balances() == after_first

    def test_employee_cannot_delete(self, db, employee, make_product, sell) -> None:
        product = make_product(opening=5)
        sale = sell(product.id, 2)

        with pytest.raises(PermissionDenied):
            delete_document(db, "sale", sale.id, employee)
        assert current_stock(db, product.id) == 3

    def test_unknown_document(self, db, owner) -> None:
        with pytest.raises(NotFoundError):
            delete_document(db, "sale", 404, owner)
        with pytest.raises(ValidationError):
            delete_document(db, "invoice", 1, owner)


class TestAdjustStock:
    """Manual adjustments"""

    def test_uses_latest_purchase_price(self, db, owner, balances, make_product, make_party, purchase) -> None:
        product = make_product(cost="10", opening=4)
        supplier = make_party(PartyRole.SUPPLIER)
        purchase(product.id, 2, "16", supplier_id=supplier.id)

        movement = adjust_stock(db, product.id, -3, "Damaged", owner)

        assert (movement.kind, movement.quantity, movement.unit_cost) == (MovementKind.ADJUSTMENT, -3, Decimal("16.00"))
        assert movement.note == "Damaged"
        assert current_stock(db, product.id) == 3
        assert balances()[gl.INVENTORY_ADJUSTMENTS] == Decimal("48.00")

    def test_falls_back_to_cost_price(self, db, owner, make_product) -> None:
        product = make_product(cost="7.50")
        movement = adjust_stock(db, product.id, 4, None, owner)
        assert movement.unit_cost == Decimal("7.50")
        assert movement.note == "Manual adjustment"

    def test_cannot_go_negative(self, db, owner, make_product) -> None:
        product = make_product(opening=2)
        with pytest.raises(StockError):
            adjust_stock(db, product.id, -3, "Count", owner)

    def test_zero_delta(self, db, owner, make_product) -> None:
        product = make_product(opening=2)
        with pytest.raises(ValidationError):
            adjust_stock(db, product.id, 0, "Count", owner)
