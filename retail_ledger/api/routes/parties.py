from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from retail_ledger.api.deps import get_actor, require_permission
from retail_ledger.core.permissions import Actor
from retail_ledger.db.database import get_db
from retail_ledger.models.parties import PartyRole
from retail_ledger.schemas.parties import PartyCreate, PartyLedgerEntryOut, PartyOut, PaymentCreate
from retail_ledger.services import catalog, payments
from retail_ledger.services.party_ledger import get_party, list_entries

router = APIRouter(tags=["Parties"])


@router.post("/parties", response_model=PartyOut, status_code=status.HTTP_201_CREATED)
def create_party(
    payload: PartyCreate,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    return catalog.create_party(db, payload, actor)


@router.get("/parties", response_model=list[PartyOut])
def list_parties(
    role: PartyRole | None = None,
    _: Actor = Depends(require_permission("inventory:view")),
    db: Session = Depends(get_db),
):
    return catalog.list_parties(db, role)


@router.get("/parties/{party_id}/ledger", response_model=list[PartyLedgerEntryOut])
def party_ledger(
    party_id: int,
    _: Actor = Depends(require_permission("inventory:view")),
    db: Session = Depends(get_db),
):
    get_party(db, party_id)
    return list_entries(db, party_id)


@router.post(
    "/parties/{party_id}/payments",
    response_model=PartyLedgerEntryOut,
    status_code=status.HTTP_201_CREATED,
)
def record_payment(
    party_id: int,
    payload: PaymentCreate,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    return payments.record_payment(db, party_id, payload, actor)


@router.post(
    "/parties/{party_id}/collections",
    response_model=PartyLedgerEntryOut,
    status_code=status.HTTP_201_CREATED,
)
def record_collection(
    party_id: int,
    payload: PaymentCreate,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    return payments.record_collection(db, party_id, payload, actor)


@router.delete("/party-entries/{entry_id}")
def delete_party_entry(
    entry_id: int,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    balance = payments.delete_standalone_entry(db, entry_id, actor)
    return {"entry_id": entry_id, "balance": str(balance)}
