from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from retail_ledger.api.deps import get_actor, require_permission
from retail_ledger.core.permissions import Actor
from retail_ledger.db.database import get_db
from retail_ledger.schemas.inventory import (
    LowStockItemOut,
    ProductCreate,
    ProductOut,
    ProductUpdate,
    StockAdjustRequest,
    StockMovementOut,
    StockOut,
)
from retail_ledger.services import catalog, documents
from retail_ledger.services.stock_ledger import current_stock, list_movements, stock_levels

router = APIRouter(tags=["Inventory"])


@router.post("/products", response_model=ProductOut, status_code=status.HTTP_201_CREATED)
def create_product(
    payload: ProductCreate,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    return catalog.create_product(db, payload, actor)


@router.patch("/products/{product_id}", response_model=ProductOut)
def update_product(
    product_id: int,
    payload: ProductUpdate,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    return catalog.update_product(db, product_id, payload, actor)


@router.get("/products", response_model=list[ProductOut])
def list_products(
    active_only: bool = False,
    _: Actor = Depends(require_permission("inventory:view")),
    db: Session = Depends(get_db),
):
    return catalog.list_products(db, active_only=active_only)


@router.post("/inventory/adjust", response_model=StockMovementOut, status_code=status.HTTP_201_CREATED)
def adjust_stock(
    payload: StockAdjustRequest,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    return documents.adjust_stock(db, payload.product_id, payload.quantity_delta, payload.reason, actor)


@router.get("/inventory/alerts/low-stock", response_model=list[LowStockItemOut])
def low_stock_alerts(
    threshold: int | None = Query(default=None, ge=0),
    _: Actor = Depends(require_permission("inventory:view")),
    db: Session = Depends(get_db),
):
    alerts = []
    for product, on_hand in stock_levels(db):
        limit = product.min_stock if threshold is None else threshold
        if on_hand <= limit:
            alerts.append(
                LowStockItemOut(
                    product_id=product.id,
                    product_name=product.name,
                    current_stock=on_hand,
                    threshold=limit,
                )
            )
    return sorted(alerts, key=lambda item: item.current_stock)


@router.get("/inventory/{product_id}", response_model=StockOut)
def product_stock(
    product_id: int,
    _: Actor = Depends(require_permission("inventory:view")),
    db: Session = Depends(get_db),
):
    product = catalog.get_product(db, product_id)
    return StockOut(
        product=ProductOut.model_validate(product),
        current_stock=current_stock(db, product.id),
        movements=[StockMovementOut.model_validate(movement) for movement in list_movements(db, product.id)],
    )
