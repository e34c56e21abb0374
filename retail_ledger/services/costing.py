"""Weighted average cost (WAC).

Only non-return purchase lines move ``Product.cost_price``. The one exception
is reversing such a purchase, which applies the inverse formula so that
deleting and re-posting a purchase lands on the same cost. Sales and returns
consume stock at the cost copied onto their movement.
"""

import logging
from decimal import Decimal

from sqlalchemy.orm import Session

from retail_ledger.core.config import settings
from retail_ledger.models.inventory import MovementKind, Product
from retail_ledger.services.money import to_money
from retail_ledger.services.stock_ledger import current_stock, list_movements

logger = logging.getLogger(__name__)


def weighted_average(previous_stock: int, previous_cost: Decimal, quantity: int, unit_cost: Decimal) -> Decimal:
    total_qty = previous_stock + quantity
    if total_qty == 0:
        return to_money(unit_cost)
    value = Decimal(previous_cost) * Decimal(previous_stock) + Decimal(unit_cost) * Decimal(quantity)
    return to_money(value / Decimal(total_qty))


def remove_weighted_average(current_qty: int, current_cost: Decimal, quantity: int, unit_cost: Decimal) -> Decimal:
    remaining = current_qty - quantity
    if remaining <= 0:
        return to_money(current_cost)
    value = Decimal(current_cost) * Decimal(current_qty) - Decimal(unit_cost) * Decimal(quantity)
    if value <= 0:
        return to_money(current_cost)
    return to_money(value / Decimal(remaining))


def apply_purchase_cost(db: Session, product: Product, quantity: int, unit_cost: Decimal) -> Decimal:
    """Fold a purchase line into the product's WAC.

    Must run before the purchase movement is written, with the product row locked.
    """
    previous_stock = current_stock(db, product.id)
    previous_cost = Decimal(product.cost_price)
    new_cost = weighted_average(previous_stock, previous_cost, quantity, unit_cost)
    product.cost_price = new_cost
    logger.debug(
        "WAC product=%s stock=%s cost=%s + %s@%s -> %s",
        product.id,
        previous_stock,
        previous_cost,
        quantity,
        unit_cost,
        new_cost,
    )
    return new_cost


def remove_purchase_cost(db: Session, product: Product, quantity: int, unit_cost: Decimal) -> Decimal:
    """Take a purchase line back out of the WAC; runs before the compensating movement."""
    on_hand = current_stock(db, product.id)
    new_cost = remove_weighted_average(on_hand, Decimal(product.cost_price), quantity, unit_cost)
    product.cost_price = new_cost
    return new_cost


def replay_average_cost(db: Session, product_id: int) -> Decimal | None:
    """Recompute the WAC from the full movement log; ``None`` when there are no movements."""
    cost: Decimal | None = None
    on_hand = 0
    purchase_costs: dict[int, Decimal] = {}
    for movement in list_movements(db, product_id):
        if cost is None:
            cost = to_money(movement.unit_cost)
        if movement.reverses_movement_id is not None:
            if movement.reverses_movement_id in purchase_costs:
                cost = remove_weighted_average(
                    on_hand,
                    cost,
                    -movement.quantity,
                    purchase_costs[movement.reverses_movement_id],
                )
        elif movement.kind == MovementKind.PURCHASE:
            cost = weighted_average(on_hand, cost, movement.quantity, movement.unit_cost)
            purchase_costs[movement.id] = Decimal(movement.unit_cost)
        on_hand += movement.quantity
    return cost


def cost_within_tolerance(cached: Decimal, replayed: Decimal, tolerance: Decimal | None = None) -> bool:
    limit = settings.cost_tolerance if tolerance is None else tolerance
    return abs(Decimal(cached) - Decimal(replayed)) <= limit
