"""Purchase posting tests"""

import dataclasses
from decimal import Decimal

import pytest

from retail_ledger.core.config import settings
from retail_ledger.models.parties import PartyRole
from retail_ledger.schemas.documents import PurchaseCreate, PurchaseItemIn
from retail_ledger.services import general_ledger as gl
from retail_ledger.services import party_ledger
from retail_ledger.services.documents import create_purchase
from retail_ledger.services.errors import AmountExceedsBalanceError, PermissionDenied, StockError, ValidationError
from retail_ledger.services.party_ledger import list_entries
from retail_ledger.services.stock_ledger import current_stock


@pytest.fixture
def return_policy(monkeypatch):
    def _use(policy: str) -> None:
        monkeypatch.setattr(party_ledger, "settings", dataclasses.replace(settings, return_credit_policy=policy))

    return _use


class TestPurchase:
    """Supplier bills"""

    def test_credit_purchase(self, db, balances, make_product, make_party, purchase) -> None:
        product = make_product()
        supplier = make_party(PartyRole.SUPPLIER)
        bill = purchase(product.id, 10, "100", supplier_id=supplier.id, paid=Decimal("400"), tax=Decimal("50"))

        assert bill.invoice_no == "000001"
        assert (bill.total, bill.due) == (Decimal("1050.00"), Decimal("650.00"))
        db.refresh(supplier)
        assert supplier.balance == Decimal("650.00")

        after = balances()
        assert after[gl.INVENTORY] == Decimal("1000.00")
        assert after[gl.TAX_PAYABLE] == Decimal("50.00")
        assert after[gl.PAYABLE] == Decimal("-650.00")
        assert after[gl.CASH] == Decimal("-400.00")

    def test_cash_purchase_without_supplier(self, db, balances, make_product, purchase) -> None:
        product = make_product()
        purchase(product.id, 2, "30", paid=Decimal("60"), payment_method="transfer")

        after = balances()
        assert after[gl.BANK] == Decimal("-60.00")
        assert after[gl.PAYABLE] == Decimal("0.00")

    def test_due_requires_supplier(self, db, make_product, purchase) -> None:
        product = make_product()
        with pytest.raises(ValidationError):
            purchase(product.id, 2, "30")
        assert current_stock(db, product.id) == 0

    def test_sequential_and_custom_invoice_numbers(self, db, make_product, make_party, purchase) -> None:
        product = make_product()
        supplier = make_party(PartyRole.SUPPLIER)
        purchase(product.id, 1, "10", supplier_id=supplier.id, invoice_no="SUP-77")
        second = purchase(product.id, 1, "10", supplier_id=supplier.id)
        third = purchase(product.id, 1, "10", supplier_id=supplier.id)

        assert (second.invoice_no, third.invoice_no) == ("000001", "000002")
        with pytest.raises(ValidationError):
            purchase(product.id, 1, "10", supplier_id=supplier.id, invoice_no="SUP-77")

    def test_numbering_follows_highest_stored_number(self, db, make_product, make_party, purchase) -> None:
        """Hand-typed numbers in the same six-digit shape advance the sequence"""
        product = make_product()
        supplier = make_party(PartyRole.SUPPLIER)
        purchase(product.id, 1, "10", supplier_id=supplier.id, invoice_no="000050")
        purchase(product.id, 1, "10", supplier_id=supplier.id, invoice_no="ZZZ999")

        following = purchase(product.id, 1, "10", supplier_id=supplier.id)

        assert following.invoice_no == "000051"

    def test_updates_sale_price(self, db, make_product, make_party, owner) -> None:
        product = make_product(sale_price="150")
        supplier = make_party(PartyRole.SUPPLIER)
        payload = PurchaseCreate(
            supplier_id=supplier.id,
            items=[
                PurchaseItemIn(product_id=product.id, quantity=5, unit_price=Decimal("90"), sale_price=Decimal("175"))
            ],
        )
        create_purchase(db, payload, owner)

        db.refresh(product)
        assert (product.cost_price, product.sale_price) == (Decimal("90.00"), Decimal("175.00"))

    def test_employee_cannot_purchase(self, db, employee, make_product) -> None:
        product = make_product()
        payload = PurchaseCreate(items=[PurchaseItemIn(product_id=product.id, quantity=1, unit_price=Decimal("5"))])
        with pytest.raises(PermissionDenied):
            create_purchase(db, payload, employee)


class TestPurchaseReturn:
    """Returns to a supplier under each credit policy"""

    def test_return_needs_stock(self, db, make_product, make_party, purchase) -> None:
        product = make_product(opening=2)
        supplier = make_party(PartyRole.SUPPLIER, opening="1000")
        with pytest.raises(StockError):
            purchase(product.id, 3, "50", supplier_id=supplier.id, is_return=True)

    def test_allow_negative(self, db, balances, make_product, make_party, purchase, return_policy) -> None:
        return_policy("allow_negative")
        product = make_product(cost="50", opening=10)
        supplier = make_party(PartyRole.SUPPLIER, opening="100")
        bill = purchase(product.id, 3, "50", supplier_id=supplier.id, is_return=True)

        assert bill.unapplied_credit == Decimal("0.00")
        db.refresh(supplier)
        assert supplier.balance == Decimal("-50.00")
        assert current_stock(db, product.id) == 7
        assert balances()[gl.PAYABLE] == Decimal("50.00")

    def test_clamp(self, db, balances, make_product, make_party, purchase, return_policy) -> None:
        return_policy("clamp")
        product = make_product(cost="50", opening=10)
        supplier = make_party(PartyRole.SUPPLIER, opening="100")
        bill = purchase(product.id, 3, "50", supplier_id=supplier.id, is_return=True)

        assert bill.unapplied_credit == Decimal("50.00")
        db.refresh(supplier)
        assert supplier.balance == Decimal("0.00")
        assert list_entries(db, supplier.id)[-1].credit == Decimal("100.00")

        after = balances()
        assert after[gl.PAYABLE] == Decimal("0.00")
        assert after[gl.RETURN_WRITE_OFF] == Decimal("50.00")
        assert sum(after.values()) == Decimal("0.00")

    def test_reject(self, db, balances, make_product, make_party, purchase, return_policy) -> None:
        return_policy("reject")
        product = make_product(cost="50", opening=10)
        supplier = make_party(PartyRole.SUPPLIER, opening="100")
        before = balances()

        with pytest.raises(AmountExceedsBalanceError):
            purchase(product.id, 3, "50", supplier_id=supplier.id, is_return=True)

        assert current_stock(db, product.id) == 10
        db.refresh(supplier)
        assert supplier.balance == Decimal("100.00")
        assert balances() == before

    def test_reject_within_balance(self, db, make_product, make_party, purchase, return_policy) -> None:
        return_policy("reject")
        product = make_product(cost="50", opening=10)
        supplier = make_party(PartyRole.SUPPLIER, opening="100")
        purchase(product.id, 2, "50", supplier_id=supplier.id, is_return=True)

        db.refresh(supplier)
        assert supplier.balance == Decimal("0.00")

    def test_refunded_return(self, db, balances, make_product, make_party, purchase) -> None:
        """A return refunded in full leaves the supplier balance alone"""
        product = make_product(cost="50", opening=10)
        supplier = make_party(PartyRole.SUPPLIER, opening="100")
        purchase(product.id, 2, "50", supplier_id=supplier.id, is_return=True, paid=Decimal("100"))

        db.refresh(supplier)
        assert supplier.balance == Decimal("100.00")
        assert balances()[gl.CASH] == Decimal("100.00")
