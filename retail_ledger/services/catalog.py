"""Products, parties and their opening balances."""

import logging
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from retail_ledger.core.permissions import Actor, require
from retail_ledger.db.database import transaction
from retail_ledger.models.inventory import MovementKind, Product
from retail_ledger.models.parties import Party, PartyRole
from retail_ledger.schemas.inventory import ProductCreate, ProductUpdate
from retail_ledger.schemas.parties import PartyCreate
from retail_ledger.services import general_ledger as gl
from retail_ledger.services.errors import NotFoundError, ValidationError
from retail_ledger.services.money import ZERO, to_money
from retail_ledger.services.party_ledger import post_entry
from retail_ledger.services.stock_ledger import record_movement

logger = logging.getLogger(__name__)


def get_product(db: Session, product_id: int) -> Product:
    product = db.get(Product, product_id)
    if not product:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def list_products(db: Session, *, active_only: bool = False) -> list[Product]:
    query = select(Product).order_by(Product.name.asc())
    if active_only:
        query = query.where(Product.is_active.is_(True))
    return list(db.scalars(query).all())


def create_product(db: Session, payload: ProductCreate, actor: Actor) -> Product:
    require(actor, "inventory:manage")
    sku = payload.sku.strip().upper()
    if db.scalar(select(Product.id).where(Product.sku == sku)) is not None:
        raise ValidationError(f"Product SKU {sku} already exists")

    with transaction(db):
        product = Product(
            sku=sku,
            name=payload.name.strip(),
            unit=payload.unit,
            description=payload.description,
            cost_price=to_money(payload.cost_price),
            sale_price=to_money(payload.sale_price),
            tax_rate=payload.tax_rate,
            min_stock=payload.min_stock,
            max_stock=payload.max_stock,
        )
        db.add(product)
        db.flush()

        if payload.opening_stock:
            record_movement(
                db,
                product.id,
                payload.opening_stock,
                product.cost_price,
                MovementKind.OPENING,
                "Opening stock",
                user_id=actor.user_id,
            )
            value = to_money(Decimal(product.cost_price) * payload.opening_stock)
            if value > 0:
                group = gl.open_group(db, f"OPEN-{sku}", f"Opening stock for {product.name}")
                gl.post(
                    db,
                    group,
                    gl.INVENTORY,
                    gl.OPENING_EQUITY,
                    value,
                    f"Opening stock {product.name} x{payload.opening_stock}",
                )
    db.refresh(product)
    logger.info("Created product %s (%s) with opening stock %s", product.id, sku, payload.opening_stock)
    return product


def update_product(db: Session, product_id: int, payload: ProductUpdate, actor: Actor) -> Product:
    """Edit catalog fields. ``cost_price`` is owned by the costing engine and cannot be set here."""
    require(actor, "inventory:manage")
    with transaction(db):
        product = get_product(db, product_id)
        if payload.name is not None:
            product.name = payload.name.strip()
        if payload.unit is not None:
            product.unit = payload.unit
        if payload.description is not None:
            product.description = payload.description.strip() or None
        if payload.sale_price is not None:
            product.sale_price = to_money(payload.sale_price)
        if payload.tax_rate is not None:
            product.tax_rate = payload.tax_rate
        if payload.min_stock is not None:
            product.min_stock = payload.min_stock
        if payload.max_stock is not None:
            product.max_stock = payload.max_stock
        if payload.is_active is not None:
            product.is_active = payload.is_active
        if product.max_stock is not None and product.max_stock < product.min_stock:
            raise ValidationError("max_stock must not be below min_stock")
    db.refresh(product)
    return product


def list_parties(db: Session, role: PartyRole | None = None) -> list[Party]:
    query = select(Party).order_by(Party.name.asc())
    if role is not None:
        query = query.where(Party.role == role)
    return list(db.scalars(query).all())


def create_party(db: Session, payload: PartyCreate, actor: Actor) -> Party:
    require(actor, "parties:manage")
    with transaction(db):
        party = Party(
            role=payload.role,
            name=payload.name.strip(),
            contact=payload.contact.strip() if payload.contact else None,
            balance=ZERO,
        )
        db.add(party)
        db.flush()

        amount = to_money(payload.opening_balance)
        if amount > 0:
            debit, credit = (amount, ZERO) if payload.opening_side == "debit" else (ZERO, amount)
            post_entry(db, party.id, debit, credit, "Opening balance", user_id=actor.user_id)

            signed = debit - credit
            group = gl.open_group(db, f"OPEN-P{party.id}", f"Opening balance for {party.name}")
            if party.role == PartyRole.CUSTOMER:
                gl.post(db, group, gl.RECEIVABLE, gl.OPENING_EQUITY, signed, f"Opening balance {party.name}")
            else:
                gl.post(db, group, gl.OPENING_EQUITY, gl.PAYABLE, signed, f"Opening balance {party.name}")
    db.refresh(party)
    logger.info("Created %s %s (%s) with balance %s", party.role.value, party.id, party.name, party.balance)
    return party
