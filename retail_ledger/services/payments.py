"""Standalone supplier payments and customer collections."""

import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from retail_ledger.core.permissions import Actor, require
from retail_ledger.db.database import transaction
from retail_ledger.models.accounting import TransactionGroup
from retail_ledger.models.documents import Payment, PaymentDirection
from retail_ledger.models.parties import PartyLedgerEntry, PartyRole
from retail_ledger.schemas.parties import PaymentCreate
from retail_ledger.services import general_ledger as gl
from retail_ledger.services.errors import NotFoundError, OrphanedReferenceError, ValidationError
from retail_ledger.services.money import ZERO, to_money
from retail_ledger.services.numbering import next_number
from retail_ledger.services.party_ledger import ensure_within_balance, get_party, post_entry
from retail_ledger.services.party_ledger import delete_standalone_entry as remove_entry

logger = logging.getLogger(__name__)

REFERENCE_PREFIXES = {PaymentDirection.IN: "COL", PaymentDirection.OUT: "PAY"}


def _next_reference(db: Session, direction: PaymentDirection) -> str:
    prefix = f"{REFERENCE_PREFIXES[direction]}-{datetime.utcnow():%Y%m%d}-"
    return next_number(db, Payment.reference, prefix, 4)


def _settle(
    db: Session,
    party_id: int,
    role: PartyRole,
    payload: PaymentCreate,
    actor: Actor,
) -> PartyLedgerEntry:
    require(actor, "payments:record")
    amount = to_money(payload.amount)
    if amount <= 0:
        raise ValidationError("Amount must be positive")
    direction = PaymentDirection.IN if role == PartyRole.CUSTOMER else PaymentDirection.OUT
    label = "Collection" if role == PartyRole.CUSTOMER else "Payment"

    with transaction(db):
        party = get_party(db, party_id, role, lock=True)
        ensure_within_balance(party, amount)

        payment = Payment(
            direction=direction,
            party_id=party.id,
            amount=amount,
            method=payload.method,
            reference=payload.reference or _next_reference(db, direction),
            note=payload.note,
            created_by_user_id=actor.user_id,
        )
        db.add(payment)
        db.flush()

        description = f"{label} {payment.reference}"
        if payload.note:
            description = f"{description}: {payload.note}"
        entry = post_entry(
            db,
            party.id,
            debit=ZERO,
            credit=amount,
            description=description,
            payment_id=payment.id,
            user_id=actor.user_id,
        )

        group = gl.open_group(db, payment.reference, description, payment_id=payment.id)
        settlement = gl.settlement_account(payload.method)
        if role == PartyRole.CUSTOMER:
            gl.post(db, group, settlement, gl.RECEIVABLE, amount, description)
        else:
            gl.post(db, group, gl.PAYABLE, settlement, amount, description)

    db.refresh(entry)
    logger.info("%s of %s for %s %s, balance now %s", label, amount, role.value, party_id, entry.balance)
    return entry


def record_payment(db: Session, supplier_id: int, payload: PaymentCreate, actor: Actor) -> PartyLedgerEntry:
    """Pay a supplier: Dr Accounts Payable / Cr Cash (or Bank)."""
    return _settle(db, supplier_id, PartyRole.SUPPLIER, payload, actor)


def record_collection(db: Session, customer_id: int, payload: PaymentCreate, actor: Actor) -> PartyLedgerEntry:
    """Collect from a customer: Dr Cash (or Bank) / Cr Accounts Receivable."""
    return _settle(db, customer_id, PartyRole.CUSTOMER, payload, actor)


def delete_standalone_entry(db: Session, entry_id: int, actor: Actor) -> Decimal:
    """Hard-delete a manual payment or collection with its Payment row and GL group.

    Returns the party's balance afterwards.
    """
    require(actor, "entries:delete")
    with transaction(db):
        entry = db.get(PartyLedgerEntry, entry_id)
        if not entry:
            raise NotFoundError(f"Ledger entry {entry_id} not found")
        if entry.payment_id is None:
            raise ValidationError("Only payment and collection entries can be deleted")
        get_party(db, entry.party_id, lock=True)

        payment_id = entry.payment_id
        payment = db.get(Payment, payment_id)
        if payment is None:
            raise OrphanedReferenceError("party_entry", entry.id, f"payment {payment_id} no longer exists")
        balance = remove_entry(db, entry)
        groups = db.scalars(select(TransactionGroup).where(TransactionGroup.payment_id == payment_id)).all()
        for group in groups:
            gl.delete_group(db, group)
        db.delete(payment)
        db.flush()

    logger.info("Deleted ledger entry %s (payment %s), party balance now %s", entry_id, payment_id, balance)
    return balance
