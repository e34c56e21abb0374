"""Append-only per-product stock movements.

Current stock is never cached: it is the sum of a product's movements. Any
movement that removes units is checked against that sum while the product row
is locked, so two writers touching the same product serialize on the check.
"""

import logging
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from retail_ledger.models.inventory import MovementKind, Product, StockMovement
from retail_ledger.services.errors import NotFoundError, StockError, ValidationError
from retail_ledger.services.money import to_money

logger = logging.getLogger(__name__)


def lock_product(db: Session, product_id: int) -> Product:
    product = db.scalar(select(Product).where(Product.id == product_id).with_for_update())
    if not product:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def lock_products(db: Session, product_ids) -> dict[int, Product]:
    # Ascending id order keeps concurrent multi-line documents from deadlocking.
    return {product_id: lock_product(db, product_id) for product_id in sorted(set(product_ids))}


def current_stock(db: Session, product_id: int) -> int:
    total = db.scalar(
        select(func.coalesce(func.sum(StockMovement.quantity), 0)).where(StockMovement.product_id == product_id)
    )
    return int(total or 0)


def ensure_available(db: Session, product: Product, requested: int) -> int:
    available = current_stock(db, product.id)
    if available < requested:
        logger.warning(
            "Stock check failed for product %s (%s): available=%s requested=%s",
            product.id,
            product.name,
            available,
            requested,
        )
        raise StockError(product.id, product.name, available, requested)
    return available


def record_movement(
    db: Session,
    product_id: int,
    quantity: int,
    unit_cost: Decimal,
    kind: MovementKind,
    note: str | None = None,
    *,
    sale_id: int | None = None,
    purchase_id: int | None = None,
    reverses_movement_id: int | None = None,
    user_id: int | None = None,
) -> StockMovement:
    if quantity == 0:
        raise ValidationError("Stock movement quantity must not be zero")

    product = lock_product(db, product_id)
    if quantity < 0:
        ensure_available(db, product, -quantity)

    movement = StockMovement(
        product_id=product_id,
        quantity=quantity,
        unit_cost=to_money(unit_cost),
        kind=kind,
        note=note,
        sale_id=sale_id,
        purchase_id=purchase_id,
        reverses_movement_id=reverses_movement_id,
        created_by_user_id=user_id,
    )
    db.add(movement)
    db.flush()
    return movement


def list_movements(db: Session, product_id: int) -> list[StockMovement]:
    return list(
        db.scalars(
            select(StockMovement).where(StockMovement.product_id == product_id).order_by(StockMovement.id)
        ).all()
    )


def stock_levels(db: Session, *, active_only: bool = True) -> list[tuple[Product, int]]:
    """Every product paired with its current stock, for dashboards and alerts."""
    totals = (
        select(StockMovement.product_id, func.sum(StockMovement.quantity).label("on_hand"))
        .group_by(StockMovement.product_id)
        .subquery()
    )
    query = (
        select(Product, func.coalesce(totals.c.on_hand, 0))
        .outerjoin(totals, totals.c.product_id == Product.id)
        .order_by(Product.name)
    )
    if active_only:
        query = query.where(Product.is_active.is_(True))
    return [(product, int(on_hand)) for product, on_hand in db.execute(query).all()]
