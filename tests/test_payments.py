"""Supplier payments and customer collections"""

from decimal import Decimal

import pytest
from sqlalchemy import delete, select

from retail_ledger.models.accounting import TransactionGroup
from retail_ledger.models.documents import Payment, PaymentDirection
from retail_ledger.models.parties import PartyRole
from retail_ledger.schemas.parties import PaymentCreate
from retail_ledger.services import general_ledger as gl
from retail_ledger.services.errors import (
    AmountExceedsBalanceError,
    OrphanedReferenceError,
    PermissionDenied,
    ValidationError,
)
from retail_ledger.services.party_ledger import list_entries
from retail_ledger.services.payments import delete_standalone_entry, record_collection, record_payment


class TestRecordPayment:
    """Paying suppliers"""

    def test_pays_down_supplier(self, db, owner, balances, make_party) -> None:
        """Owing 5000, a 2000 payment leaves 3000 and a 4000 payment is refused"""
        supplier = make_party(PartyRole.SUPPLIER, opening="5000")

        entry = record_payment(db, supplier.id, PaymentCreate(amount=Decimal("2000")), owner)

        assert entry.balance == Decimal("3000.00")
        assert entry.credit == Decimal("2000.00")
        payment = db.get(Payment, entry.payment_id)
        assert payment.direction == PaymentDirection.OUT
        assert payment.reference.startswith("PAY-")

        after = balances()
        assert after[gl.PAYABLE] == Decimal("-3000.00")
        assert after[gl.CASH] == Decimal("-2000.00")

        with pytest.raises(AmountExceedsBalanceError) as excinfo:
            record_payment(db, supplier.id, PaymentCreate(amount=Decimal("4000")), owner)
        assert excinfo.value.outstanding == Decimal("3000.00")

        db.refresh(supplier)
        assert supplier.balance == Decimal("3000.00")
        assert len(list_entries(db, supplier.id)) == 2

    def test_bank_method_and_custom_reference(self, db, owner, balances, make_party) -> None:
        supplier = make_party(PartyRole.SUPPLIER, opening="100")
        entry = record_payment(
            db,
            supplier.id,
            PaymentCreate(amount=Decimal("40"), method="transfer", reference="TRX-9", note="March bill"),
            owner,
        )

        assert db.get(Payment, entry.payment_id).reference == "TRX-9"
        assert entry.description == "Payment TRX-9: March bill"
        assert balances()[gl.BANK] == Decimal("-40.00")

    def test_role_must_match(self, db, owner, make_party) -> None:
        customer = make_party(PartyRole.CUSTOMER, opening="100")
        with pytest.raises(ValidationError):
            record_payment(db, customer.id, PaymentCreate(amount=Decimal("10")), owner)


class TestRecordCollection:
    """Collecting from customers"""

    def test_collects_outstanding(self, db, employee, balances, make_party) -> None:
        customer = make_party(PartyRole.CUSTOMER, opening="250")
        first = record_collection(db, customer.id, PaymentCreate(amount=Decimal("100")), employee)
        second = record_collection(db, customer.id, PaymentCreate(amount=Decimal("50")), employee)

        assert second.balance == Decimal("100.00")
        first_ref = db.get(Payment, first.payment_id).reference
        second_ref = db.get(Payment, second.payment_id).reference
        assert first_ref.startswith("COL-") and first_ref.endswith("-0001")
        assert second_ref.endswith("-0002")

        after = balances()
        assert after[gl.RECEIVABLE] == Decimal("100.00")
        assert after[gl.CASH] == Decimal("150.00")

    def test_deleted_collection_does_not_free_a_live_reference(self, db, owner, make_party) -> None:
        customer = make_party(PartyRole.CUSTOMER, opening="500")
        first = record_collection(db, customer.id, PaymentCreate(amount=Decimal("100")), owner)
        second = record_collection(db, customer.id, PaymentCreate(amount=Decimal("100")), owner)
        delete_standalone_entry(db, first.id, owner)

        third = record_collection(db, customer.id, PaymentCreate(amount=Decimal("100")), owner)

        references = [db.get(Payment, entry.payment_id).reference for entry in (second, third)]
        assert references[0].endswith("-0002")
        assert references[1].endswith("-0003")
        group_references = db.scalars(
            select(TransactionGroup.reference).where(TransactionGroup.payment_id.is_not(None))
        ).all()
        assert sorted(group_references) == sorted(references)

    def test_nothing_to_collect(self, db, owner, make_party) -> None:
        customer = make_party(PartyRole.CUSTOMER)
        with pytest.raises(AmountExceedsBalanceError):
            record_collection(db, customer.id, PaymentCreate(amount=Decimal("1")), owner)


class TestDeleteStandaloneEntry:
    """Hard deletion of manual payments"""

    def test_restores_balances(self, db, owner, balances, make_party) -> None:
        supplier = make_party(PartyRole.SUPPLIER, opening="900")
        before = balances()
        entry = record_payment(db, supplier.id, PaymentCreate(amount=Decimal("300")), owner)
        payment_id = entry.payment_id

        balance = delete_standalone_entry(db, entry.id, owner)

        assert balance == Decimal("900.00")
        db.refresh(supplier)
        assert supplier.balance == Decimal("900.00")
        assert db.get(Payment, payment_id) is None
        assert db.scalar(select(TransactionGroup).where(TransactionGroup.payment_id == payment_id)) is None
        assert balances() == before

    def test_opening_entry_is_not_deletable(self, db, owner, make_party) -> None:
        supplier = make_party(PartyRole.SUPPLIER, opening="900")
        entry = list_entries(db, supplier.id)[0]
        with pytest.raises(ValidationError):
            delete_standalone_entry(db, entry.id, owner)

    def test_document_entry_is_not_deletable(self, db, owner, make_product, make_party, sell) -> None:
        product = make_product(opening=5)
        customer = make_party(PartyRole.CUSTOMER, opening="500")
        sell(product.id, 1, customer_id=customer.id, collection=Decimal("100"))
        entry = list_entries(db, customer.id)[-1]
        assert entry.payment_id is not None

        with pytest.raises(ValidationError):
            delete_standalone_entry(db, entry.id, owner)

    def test_employee_cannot_delete(self, db, owner, employee, make_party) -> None:
        supplier = make_party(PartyRole.SUPPLIER, opening="900")
        entry = record_payment(db, supplier.id, PaymentCreate(amount=Decimal("300")), owner)
        with pytest.raises(PermissionDenied):
            delete_standalone_entry(db, entry.id, employee)

    def test_missing_payment_is_orphaned(self, db, owner, make_party) -> None:
        supplier = make_party(PartyRole.SUPPLIER, opening="900")
        entry = record_payment(db, supplier.id, PaymentCreate(amount=Decimal("300")), owner)
        db.execute(delete(Payment).where(Payment.id == entry.payment_id))
        db.commit()

        with pytest.raises(OrphanedReferenceError) as excinfo:
            delete_standalone_entry(db, entry.id, owner)

        assert excinfo.value.record_id == entry.id
        db.refresh(supplier)
        assert supplier.balance == Decimal("600.00")
