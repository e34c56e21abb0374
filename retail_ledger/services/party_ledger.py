"""Customer and supplier ledgers.

Every posting is an entry plus a storage-level ``balance = balance + delta``
on the party row; the entry's snapshot is read back after the increment.
"""

import logging
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from retail_ledger.core.config import settings
from retail_ledger.models.parties import Party, PartyLedgerEntry, PartyRole
from retail_ledger.services.errors import AmountExceedsBalanceError, NotFoundError, ValidationError
from retail_ledger.services.money import ZERO, to_money

logger = logging.getLogger(__name__)


def get_party(db: Session, party_id: int, role: PartyRole | None = None, *, lock: bool = False) -> Party:
    query = select(Party).where(Party.id == party_id)
    if lock:
        query = query.with_for_update().execution_options(populate_existing=True)
    party = db.scalar(query)
    if not party:
        raise NotFoundError(f"Party {party_id} not found")
    if role is not None and party.role != role:
        raise ValidationError(f"Party {party_id} is not a {role.value}")
    return party


def _apply_delta(db: Session, party_id: int, delta: Decimal) -> Decimal:
    result = db.execute(update(Party).where(Party.id == party_id).values(balance=Party.balance + delta))
    if result.rowcount == 0:
        raise NotFoundError(f"Party {party_id} not found")
    return to_money(db.scalar(select(Party.balance).where(Party.id == party_id)))


def post_entry(
    db: Session,
    party_id: int,
    debit: Decimal,
    credit: Decimal,
    description: str,
    *,
    sale_id: int | None = None,
    purchase_id: int | None = None,
    payment_id: int | None = None,
    reverses_entry_id: int | None = None,
    user_id: int | None = None,
) -> PartyLedgerEntry:
    debit = to_money(debit)
    credit = to_money(credit)
    if debit < 0 or credit < 0:
        raise ValidationError("Ledger debit and credit must not be negative")
    if debit == 0 and credit == 0:
        raise ValidationError("Ledger entry must carry a debit or a credit")

    balance = _apply_delta(db, party_id, debit - credit)
    entry = PartyLedgerEntry(
        party_id=party_id,
        debit=debit,
        credit=credit,
        balance=balance,
        description=description[:255],
        sale_id=sale_id,
        purchase_id=purchase_id,
        payment_id=payment_id,
        reverses_entry_id=reverses_entry_id,
        created_by_user_id=user_id,
    )
    db.add(entry)
    db.flush()
    return entry


def reverse_document_entries(
    db: Session,
    *,
    sale_id: int | None = None,
    purchase_id: int | None = None,
    user_id: int | None = None,
) -> list[PartyLedgerEntry]:
    """Post a swapped entry for every original entry of a document not yet reversed."""
    if (sale_id is None) == (purchase_id is None):
        raise ValueError("exactly one of sale_id or purchase_id is required")

    query = select(PartyLedgerEntry).where(PartyLedgerEntry.reverses_entry_id.is_(None))
    if sale_id is not None:
        query = query.where(PartyLedgerEntry.sale_id == sale_id)
    else:
        query = query.where(PartyLedgerEntry.purchase_id == purchase_id)
    originals = list(db.scalars(query.order_by(PartyLedgerEntry.id)).all())
    if not originals:
        return []

    already_reversed = set(
        db.scalars(
            select(PartyLedgerEntry.reverses_entry_id).where(
                PartyLedgerEntry.reverses_entry_id.in_([entry.id for entry in originals])
            )
        ).all()
    )
    reversals = []
    for entry in originals:
        if entry.id in already_reversed:
            continue
        reversals.append(
            post_entry(
                db,
                entry.party_id,
                debit=entry.credit,
                credit=entry.debit,
                description=f"Reversal: {entry.description}",
                sale_id=entry.sale_id,
                purchase_id=entry.purchase_id,
                reverses_entry_id=entry.id,
                user_id=user_id,
            )
        )
    return reversals


def delete_standalone_entry(db: Session, entry: PartyLedgerEntry) -> Decimal:
    """Hard-delete an entry that no document depends on, compensating the cached balance."""
    if entry.sale_id is not None or entry.purchase_id is not None:
        raise ValidationError("Entry belongs to a document; reverse the document instead")
    has_reversal = db.scalar(
        select(PartyLedgerEntry.id).where(PartyLedgerEntry.reverses_entry_id == entry.id).limit(1)
    )
    if has_reversal is not None:
        raise ValidationError(f"Entry {entry.id} has already been reversed")

    balance = _apply_delta(db, entry.party_id, Decimal(entry.credit) - Decimal(entry.debit))
    db.delete(entry)
    db.flush()
    return balance


def ensure_within_balance(party: Party, amount: Decimal) -> None:
    outstanding = to_money(party.balance)
    if amount > outstanding:
        logger.warning(
            "Rejected amount %s for party %s: outstanding balance is %s",
            amount,
            party.id,
            outstanding,
        )
        raise AmountExceedsBalanceError(party.id, outstanding, amount)


def split_return_credit(party: Party, amount: Decimal, policy: str | None = None) -> tuple[Decimal, Decimal]:
    """Decide how much of a purchase-return credit the supplier ledger absorbs.

    Returns ``(applied, unapplied)``. ``allow_negative`` applies everything,
    ``clamp`` applies at most the outstanding balance and surfaces the rest,
    ``reject`` refuses credits larger than the outstanding balance.
    """
    policy = policy or settings.return_credit_policy
    amount = to_money(amount)
    if policy == "allow_negative":
        return amount, ZERO
    if policy == "reject":
        ensure_within_balance(party, amount)
        return amount, ZERO
    if policy == "clamp":
        applied = min(amount, max(to_money(party.balance), ZERO))
        unapplied = amount - applied
        if unapplied > 0:
            logger.warning(
                "Return credit clamped for party %s: applied %s, unapplied %s",
                party.id,
                applied,
                unapplied,
            )
        return applied, unapplied
    raise ValidationError(f"Unknown return credit policy: {policy}")


def list_entries(db: Session, party_id: int) -> list[PartyLedgerEntry]:
    return list(
        db.scalars(
            select(PartyLedgerEntry).where(PartyLedgerEntry.party_id == party_id).order_by(PartyLedgerEntry.id)
        ).all()
    )
