from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from retail_ledger.api.deps import get_actor, require_permission
from retail_ledger.core.permissions import Actor
from retail_ledger.db.database import get_db
from retail_ledger.schemas.parties import AccountOut, JournalEntryCreate, LedgerTransactionOut
from retail_ledger.schemas.reconciliation import ReconcileReport, ReconcileScope
from retail_ledger.services import general_ledger as gl
from retail_ledger.services.reconciliation import reconcile

router = APIRouter(tags=["Ledger"])


@router.get("/accounts", response_model=list[AccountOut])
def accounts(
    _: Actor = Depends(require_permission("inventory:view")),
    db: Session = Depends(get_db),
):
    return gl.list_accounts(db)


@router.get("/transactions", response_model=list[LedgerTransactionOut])
def transactions(
    limit: int = Query(default=100, ge=1, le=500),
    _: Actor = Depends(require_permission("inventory:view")),
    db: Session = Depends(get_db),
):
    return gl.list_transactions(db, limit)


@router.post("/transactions", response_model=LedgerTransactionOut, status_code=status.HTTP_201_CREATED)
def post_journal_entry(
    payload: JournalEntryCreate,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    txn = gl.post_journal_entry(
        db,
        payload.debit_code,
        payload.credit_code,
        payload.amount,
        payload.description,
        actor,
        reference=payload.reference,
    )
    return gl.get_transaction(db, txn.id)


@router.post("/reconcile", response_model=ReconcileReport)
def run_reconcile(
    scope: ReconcileScope | None = None,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    return reconcile(db, scope or ReconcileScope(), actor)
