from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from retail_ledger.api.deps import get_actor, require_permission
from retail_ledger.core.permissions import Actor
from retail_ledger.db.database import get_db
from retail_ledger.models.documents import Purchase, Sale
from retail_ledger.schemas.documents import (
    PaymentOut,
    PurchaseCreate,
    PurchaseItemOut,
    PurchaseOut,
    SaleCreate,
    SaleItemOut,
    SaleOut,
)
from retail_ledger.services import documents

router = APIRouter(tags=["Documents"])


def _sale_out(db: Session, sale: Sale) -> SaleOut:
    out = SaleOut.model_validate(sale)
    out.items = [SaleItemOut.model_validate(item) for item in documents.document_items(db, sale)]
    return out


def _purchase_out(db: Session, purchase: Purchase) -> PurchaseOut:
    out = PurchaseOut.model_validate(purchase)
    out.items = [PurchaseItemOut.model_validate(item) for item in documents.document_items(db, purchase)]
    return out


@router.post("/sales", response_model=SaleOut, status_code=status.HTTP_201_CREATED)
def create_sale(
    payload: SaleCreate,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    return _sale_out(db, documents.create_sale(db, payload, actor))


@router.get("/sales/{sale_id}", response_model=SaleOut)
def get_sale(
    sale_id: int,
    _: Actor = Depends(require_permission("inventory:view")),
    db: Session = Depends(get_db),
):
    return _sale_out(db, documents.get_document(db, "sale", sale_id))


@router.delete("/sales/{sale_id}", response_model=SaleOut)
def delete_sale(
    sale_id: int,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    return _sale_out(db, documents.delete_document(db, "sale", sale_id, actor))


@router.post("/purchases", response_model=PurchaseOut, status_code=status.HTTP_201_CREATED)
def create_purchase(
    payload: PurchaseCreate,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    return _purchase_out(db, documents.create_purchase(db, payload, actor))


@router.get("/purchases/{purchase_id}", response_model=PurchaseOut)
def get_purchase(
    purchase_id: int,
    _: Actor = Depends(require_permission("inventory:view")),
    db: Session = Depends(get_db),
):
    return _purchase_out(db, documents.get_document(db, "purchase", purchase_id))


@router.delete("/purchases/{purchase_id}", response_model=PurchaseOut)
def delete_purchase(
    purchase_id: int,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    return _purchase_out(db, documents.delete_document(db, "purchase", purchase_id, actor))


@router.get("/sales/{sale_id}/payments", response_model=list[PaymentOut])
def sale_payments(
    sale_id: int,
    _: Actor = Depends(require_permission("inventory:view")),
    db: Session = Depends(get_db),
):
    return documents.document_payments(db, documents.get_document(db, "sale", sale_id))


@router.get("/purchases/{purchase_id}/payments", response_model=list[PaymentOut])
def purchase_payments(
    purchase_id: int,
    _: Actor = Depends(require_permission("inventory:view")),
    db: Session = Depends(get_db),
):
    return documents.document_payments(db, documents.get_document(db, "purchase", purchase_id))
