"""Double-entry general ledger.

A transaction debits one account and credits another for the same positive
amount; account balances are debits minus credits and are moved with
storage-level increments. A TransactionGroup collects the transactions of one
business event.
"""

import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, aliased

from retail_ledger.core.permissions import Actor, require
from retail_ledger.db.database import transaction
from retail_ledger.models.accounting import Account, AccountType, LedgerTransaction, TransactionGroup
from retail_ledger.services.errors import NotFoundError, ValidationError
from retail_ledger.services.money import ZERO, to_money
from retail_ledger.services.numbering import next_number

logger = logging.getLogger(__name__)

CASH = "1001"
BANK = "1002"
RECEIVABLE = "1003"
INVENTORY = "1004"
PAYABLE = "2001"
TAX_PAYABLE = "2002"
OPENING_EQUITY = "3001"
SALES_REVENUE = "4001"
COST_OF_GOODS_SOLD = "5001"
INVENTORY_ADJUSTMENTS = "5002"
RETURN_WRITE_OFF = "5003"

STANDARD_ACCOUNTS: list[tuple[str, str, AccountType]] = [
    (CASH, "Cash in Hand", AccountType.ASSET),
    (BANK, "Cash at Bank", AccountType.ASSET),
    (RECEIVABLE, "Accounts Receivable", AccountType.ASSET),
    (INVENTORY, "Inventory", AccountType.ASSET),
    (PAYABLE, "Accounts Payable", AccountType.LIABILITY),
    (TAX_PAYABLE, "Tax Payable", AccountType.LIABILITY),
    (OPENING_EQUITY, "Opening Balance Equity", AccountType.EQUITY),
    (SALES_REVENUE, "Sales Revenue", AccountType.INCOME),
    (COST_OF_GOODS_SOLD, "Cost of Goods Sold", AccountType.EXPENSE),
    (INVENTORY_ADJUSTMENTS, "Inventory Adjustments", AccountType.EXPENSE),
    (RETURN_WRITE_OFF, "Purchase Return Write-off", AccountType.EXPENSE),
]

# Non-cash payment methods settle through the bank account.
SETTLEMENT_ACCOUNTS = {"cash": CASH}


def settlement_account(method: str) -> str:
    return SETTLEMENT_ACCOUNTS.get(method, BANK)


def seed_chart_of_accounts(db: Session) -> int:
    existing = set(db.scalars(select(Account.code)).all())
    created = 0
    for code, name, account_type in STANDARD_ACCOUNTS:
        if code in existing:
            continue
        db.add(Account(code=code, name=name, type=account_type, balance=ZERO))
        created += 1
    if created:
        db.flush()
        logger.info("Seeded %s general ledger accounts", created)
    return created


def get_account(db: Session, code: str) -> Account:
    account = db.scalar(select(Account).where(Account.code == code))
    if not account:
        raise NotFoundError(f"Account {code} not found; seed the chart of accounts first")
    return account


def _increment(db: Session, account_id: int, delta: Decimal) -> None:
    result = db.execute(update(Account).where(Account.id == account_id).values(balance=Account.balance + delta))
    if result.rowcount == 0:
        raise NotFoundError(f"Account {account_id} not found")


def open_group(
    db: Session,
    reference: str,
    description: str,
    *,
    sale_id: int | None = None,
    purchase_id: int | None = None,
    payment_id: int | None = None,
    reverses_group_id: int | None = None,
) -> TransactionGroup:
    group = TransactionGroup(
        reference=reference[:64],
        description=description[:255],
        sale_id=sale_id,
        purchase_id=purchase_id,
        payment_id=payment_id,
        reverses_group_id=reverses_group_id,
    )
    db.add(group)
    db.flush()
    return group


def post_transaction(
    db: Session,
    debit_account_id: int,
    credit_account_id: int,
    amount: Decimal,
    description: str,
    group_id: int | None = None,
) -> LedgerTransaction:
    amount = to_money(amount)
    if amount <= 0:
        raise ValidationError("Transaction amount must be positive")
    if debit_account_id == credit_account_id:
        raise ValidationError("Debit and credit accounts must differ")

    _increment(db, debit_account_id, amount)
    _increment(db, credit_account_id, -amount)
    txn = LedgerTransaction(
        group_id=group_id,
        debit_account_id=debit_account_id,
        credit_account_id=credit_account_id,
        amount=amount,
        description=description[:255],
    )
    db.add(txn)
    db.flush()
    return txn


def post(
    db: Session,
    group: TransactionGroup,
    debit_code: str,
    credit_code: str,
    amount: Decimal,
    description: str,
) -> LedgerTransaction | None:
    """Post by account code inside a group; zero amounts post nothing."""
    amount = to_money(amount)
    if amount == 0:
        return None
    if amount < 0:
        debit_code, credit_code, amount = credit_code, debit_code, -amount
    return post_transaction(
        db,
        get_account(db, debit_code).id,
        get_account(db, credit_code).id,
        amount,
        description,
        group.id,
    )


def group_transactions(db: Session, group_id: int) -> list[LedgerTransaction]:
    return list(
        db.scalars(
            select(LedgerTransaction).where(LedgerTransaction.group_id == group_id).order_by(LedgerTransaction.id)
        ).all()
    )


def group_totals(db: Session, group_id: int) -> tuple[Decimal, Decimal]:
    """Sum of debits and sum of credits across the group's existing accounts."""
    debit_account = aliased(Account)
    credit_account = aliased(Account)
    debits = db.scalar(
        select(func.coalesce(func.sum(LedgerTransaction.amount), 0))
        .join(debit_account, debit_account.id == LedgerTransaction.debit_account_id)
        .where(LedgerTransaction.group_id == group_id)
    )
    credits = db.scalar(
        select(func.coalesce(func.sum(LedgerTransaction.amount), 0))
        .join(credit_account, credit_account.id == LedgerTransaction.credit_account_id)
        .where(LedgerTransaction.group_id == group_id)
    )
    return to_money(debits), to_money(credits)


def reverse_group(db: Session, group: TransactionGroup, description: str | None = None) -> TransactionGroup:
    """Mirror a group with debits and credits swapped; returns the existing mirror on re-runs."""
    existing = db.scalar(select(TransactionGroup).where(TransactionGroup.reverses_group_id == group.id))
    if existing:
        return existing

    mirror = open_group(
        db,
        reference=f"REV-{group.reference}",
        description=description or f"Reversal: {group.description}",
        sale_id=group.sale_id,
        purchase_id=group.purchase_id,
        payment_id=group.payment_id,
        reverses_group_id=group.id,
    )
    for txn in group_transactions(db, group.id):
        post_transaction(
            db,
            debit_account_id=txn.credit_account_id,
            credit_account_id=txn.debit_account_id,
            amount=txn.amount,
            description=f"Reversal: {txn.description}",
            group_id=mirror.id,
        )
    return mirror


def reverse_document_groups(
    db: Session,
    *,
    sale_id: int | None = None,
    purchase_id: int | None = None,
) -> list[TransactionGroup]:
    if (sale_id is None) == (purchase_id is None):
        raise ValueError("exactly one of sale_id or purchase_id is required")
    query = select(TransactionGroup).where(TransactionGroup.reverses_group_id.is_(None))
    if sale_id is not None:
        query = query.where(TransactionGroup.sale_id == sale_id)
    else:
        query = query.where(TransactionGroup.purchase_id == purchase_id)
    return [reverse_group(db, group) for group in db.scalars(query.order_by(TransactionGroup.id)).all()]


def delete_group(db: Session, group: TransactionGroup) -> None:
    """Remove a group's transactions, restore account balances, then drop the emptied group."""
    for txn in group_transactions(db, group.id):
        _increment(db, txn.debit_account_id, -Decimal(txn.amount))
        _increment(db, txn.credit_account_id, Decimal(txn.amount))
        db.delete(txn)
    db.flush()
    remaining = db.scalar(
        select(func.count(LedgerTransaction.id)).where(LedgerTransaction.group_id == group.id)
    )
    if not remaining:
        db.delete(group)
        db.flush()


def account_balance_from_ledger(db: Session, account_id: int) -> Decimal:
    debits = db.scalar(
        select(func.coalesce(func.sum(LedgerTransaction.amount), 0)).where(
            LedgerTransaction.debit_account_id == account_id
        )
    )
    credits = db.scalar(
        select(func.coalesce(func.sum(LedgerTransaction.amount), 0)).where(
            LedgerTransaction.credit_account_id == account_id
        )
    )
    return to_money(debits) - to_money(credits)


def list_accounts(db: Session) -> list[Account]:
    return list(db.scalars(select(Account).order_by(Account.code)).all())


def _transaction_view():
    debit_account = aliased(Account)
    credit_account = aliased(Account)
    return (
        select(
            LedgerTransaction.id,
            LedgerTransaction.group_id,
            debit_account.code.label("debit_code"),
            debit_account.name.label("debit_name"),
            credit_account.code.label("credit_code"),
            credit_account.name.label("credit_name"),
            LedgerTransaction.amount,
            LedgerTransaction.description,
            LedgerTransaction.created_at,
        )
        .select_from(LedgerTransaction)
        .join(debit_account, debit_account.id == LedgerTransaction.debit_account_id)
        .join(credit_account, credit_account.id == LedgerTransaction.credit_account_id)
    )


def list_transactions(db: Session, limit: int = 100) -> list[dict]:
    """Most recent transactions first, with both accounts' code and name."""
    query = _transaction_view().order_by(LedgerTransaction.created_at.desc(), LedgerTransaction.id.desc()).limit(limit)
    return [dict(row) for row in db.execute(query).mappings()]


def get_transaction(db: Session, transaction_id: int) -> dict:
    row = db.execute(_transaction_view().where(LedgerTransaction.id == transaction_id)).mappings().first()
    if row is None:
        raise NotFoundError(f"Transaction {transaction_id} not found")
    return dict(row)


def post_journal_entry(
    db: Session,
    debit_code: str,
    credit_code: str,
    amount: Decimal,
    description: str,
    actor: Actor,
    reference: str | None = None,
) -> LedgerTransaction:
    """Post a manual journal entry as a group holding a single transaction."""
    require(actor, "ledger:post")
    with transaction(db):
        debit = get_account(db, debit_code)
        credit = get_account(db, credit_code)
        reference = reference or next_number(db, TransactionGroup.reference, f"JRN-{datetime.utcnow():%Y%m%d}-", 4)
        group = open_group(db, reference, description)
        txn = post_transaction(db, debit.id, credit.id, amount, description, group.id)

    db.refresh(txn)
    logger.info("Journal entry %s: Dr %s / Cr %s %s", reference, debit_code, credit_code, txn.amount)
    return txn
