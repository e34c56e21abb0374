"""Realign cached fields with the ledgers they summarize.

Every product, party and account is checked in its own transaction: a unit
that fails is rolled back and reported while the rest of the batch carries on.
Caches are only rewritten when they are further than ``RECONCILE_EPSILON``
from the ledger, so a second run over a repaired database writes nothing.
Rows that point at missing parents are classified and reported, never fixed.
"""

import logging
import warnings
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from retail_ledger.core.config import settings
from retail_ledger.core.permissions import Actor, require
from retail_ledger.db.database import transaction
from retail_ledger.models.accounting import Account, LedgerTransaction, TransactionGroup
from retail_ledger.models.documents import DocumentStatus, Payment, Purchase, Sale
from retail_ledger.models.inventory import Product
from retail_ledger.models.parties import Party, PartyLedgerEntry
from retail_ledger.schemas.reconciliation import (
    CorrectedField,
    LedgerIssue,
    ReconcileReport,
    ReconcileScope,
    UnitFailure,
)
from retail_ledger.services import general_ledger as gl
from retail_ledger.services.costing import cost_within_tolerance, replay_average_cost
from retail_ledger.services.errors import ConsistencyDriftWarning, OrphanedReferenceError
from retail_ledger.services.money import to_money
from retail_ledger.services.party_ledger import get_party
from retail_ledger.services.stock_ledger import current_stock, lock_product

logger = logging.getLogger(__name__)


def _drifted(cached: Decimal, actual: Decimal) -> bool:
    return abs(Decimal(cached) - Decimal(actual)) > settings.reconcile_epsilon


def _report_drift(report: ReconcileReport, kind: str, record_id: int, field: str, cached, actual) -> None:
    correction = CorrectedField(kind=kind, record_id=record_id, field=field, cached=cached, actual=actual)
    report.corrected_fields.append(correction)
    verb = "found" if report.dry_run else "corrected"
    message = f"{kind} #{record_id} {field} drift {verb}: cached={cached} ledger={actual}"
    logger.warning(message)
    warnings.warn(message, ConsistencyDriftWarning, stacklevel=3)


def _run_unit(db: Session, report: ReconcileReport, kind: str, record_id: int, check) -> None:
    try:
        with transaction(db):
            check()
    except Exception as exc:
        logger.exception("Reconciliation failed for %s #%s", kind, record_id)
        report.failures.append(UnitFailure(kind=kind, record_id=record_id, error=str(exc)))


def _ids(db: Session, column, wanted: list | None) -> list:
    query = select(column).order_by(column)
    if wanted is not None:
        query = query.where(column.in_(wanted))
    return list(db.scalars(query).all())


def reconcile_product(db: Session, product_id: int, report: ReconcileReport, kinds: set[str]) -> None:
    product = lock_product(db, product_id)
    if "stock" in kinds:
        on_hand = current_stock(db, product.id)
        if on_hand < 0:
            report.violations.append(
                LedgerIssue(kind="stock", record_id=product.id, detail=f'"{product.name}" stock is {on_hand}')
            )
            logger.warning("Product %s (%s) has negative stock %s", product.id, product.name, on_hand)
    if "cost" in kinds:
        replayed = replay_average_cost(db, product.id)
        cached = to_money(product.cost_price)
        if replayed is not None and not cost_within_tolerance(cached, replayed, settings.reconcile_epsilon):
            _report_drift(report, "product", product.id, "cost_price", cached, replayed)
            if not report.dry_run:
                product.cost_price = replayed


def reconcile_party(db: Session, party_id: int, report: ReconcileReport) -> None:
    party = get_party(db, party_id, lock=True)
    actual = to_money(
        db.scalar(
            select(func.coalesce(func.sum(PartyLedgerEntry.debit - PartyLedgerEntry.credit), 0)).where(
                PartyLedgerEntry.party_id == party.id
            )
        )
    )
    cached = to_money(party.balance)
    if _drifted(cached, actual):
        _report_drift(report, "party", party.id, "balance", cached, actual)
        if not report.dry_run:
            party.balance = actual


def reconcile_account(db: Session, account_id: int, report: ReconcileReport) -> None:
    account = db.scalar(
        select(Account).where(Account.id == account_id).with_for_update().execution_options(populate_existing=True)
    )
    actual = gl.account_balance_from_ledger(db, account.id)
    cached = to_money(account.balance)
    if _drifted(cached, actual):
        _report_drift(report, "account", account.id, "balance", cached, actual)
        if not report.dry_run:
            account.balance = actual


def check_groups(db: Session, report: ReconcileReport) -> None:
    for group_id in db.scalars(select(TransactionGroup.id).order_by(TransactionGroup.id)).all():
        debits, credits = gl.group_totals(db, group_id)
        if debits != credits:
            report.violations.append(
                LedgerIssue(kind="transaction_group", record_id=group_id, detail=f"debits {debits} != credits {credits}")
            )
            logger.warning("Transaction group %s is unbalanced: %s vs %s", group_id, debits, credits)


def find_orphans(db: Session) -> list[OrphanedReferenceError]:
    orphans: list[OrphanedReferenceError] = []
    for purchase in db.scalars(
        select(Purchase).where(
            Purchase.status == DocumentStatus.POSTED,
            Purchase.due > 0,
            Purchase.supplier_id.is_(None),
        )
    ).all():
        orphans.append(
            OrphanedReferenceError("purchase", purchase.id, f"{purchase.invoice_no} has due {purchase.due} but no supplier")
        )
    for sale in db.scalars(
        select(Sale).where(Sale.status == DocumentStatus.POSTED, Sale.due > 0, Sale.customer_id.is_(None))
    ).all():
        orphans.append(OrphanedReferenceError("sale", sale.id, f"{sale.invoice_no} has due {sale.due} but no customer"))
    for payment in db.scalars(
        select(Payment).where(
            Payment.party_id.is_(None),
            Payment.sale_id.is_(None),
            Payment.purchase_id.is_(None),
        )
    ).all():
        orphans.append(OrphanedReferenceError("payment", payment.id, f"payment of {payment.amount} has no party or document"))
    empty_groups = (
        select(TransactionGroup)
        .outerjoin(LedgerTransaction, LedgerTransaction.group_id == TransactionGroup.id)
        .where(LedgerTransaction.id.is_(None))
    )
    for group in db.scalars(empty_groups).all():
        orphans.append(OrphanedReferenceError("transaction_group", group.id, f"{group.reference} has no transactions"))
    return orphans


def reconcile(db: Session, scope: ReconcileScope, actor: Actor) -> ReconcileReport:
    require(actor, "ledger:reconcile")
    kinds = set(scope.kinds)
    report = ReconcileReport(dry_run=scope.dry_run)

    if kinds & {"stock", "cost"}:
        for product_id in _ids(db, Product.id, scope.product_ids):
            _run_unit(db, report, "product", product_id, lambda pid=product_id: reconcile_product(db, pid, report, kinds))
    if "party" in kinds:
        for party_id in _ids(db, Party.id, scope.party_ids):
            _run_unit(db, report, "party", party_id, lambda pid=party_id: reconcile_party(db, pid, report))
    if "account" in kinds:
        query = select(Account.id).order_by(Account.id)
        if scope.account_codes is not None:
            query = query.where(Account.code.in_(scope.account_codes))
        for account_id in db.scalars(query).all():
            _run_unit(db, report, "account", account_id, lambda aid=account_id: reconcile_account(db, aid, report))
    if "groups" in kinds:
        check_groups(db, report)
    if "orphans" in kinds:
        for orphan in find_orphans(db):
            report.orphaned_entries.append(LedgerIssue(**orphan.to_dict()))
            logger.warning("Orphaned reference: %s", orphan.message)

    logger.info(
        "Reconciliation finished: corrected=%s orphaned=%s violations=%s failures=%s dry_run=%s",
        len(report.corrected_fields),
        len(report.orphaned_entries),
        len(report.violations),
        len(report.failures),
        scope.dry_run,
    )
    return report
