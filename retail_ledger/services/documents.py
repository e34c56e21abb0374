"""Sales, purchases, their reversal, and manual stock adjustments.

Each operation is one business event: the stock ledger, the costing engine,
the party ledger and the general ledger are all written inside a single
``transaction(db)`` block, so a failure anywhere leaves no trace.
"""

import logging
from collections import defaultdict
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from retail_ledger.core.permissions import Actor, require
from retail_ledger.db.database import transaction
from retail_ledger.models.documents import (
    DocumentStatus,
    Payment,
    PaymentDirection,
    Purchase,
    PurchaseItem,
    Sale,
    SaleItem,
)
from retail_ledger.models.inventory import MovementKind, Product, StockMovement
from retail_ledger.models.parties import Party, PartyRole
from retail_ledger.schemas.documents import PurchaseCreate, SaleCreate
from retail_ledger.services import general_ledger as gl
from retail_ledger.services.costing import apply_purchase_cost, remove_purchase_cost
from retail_ledger.services.errors import DocumentNumberConflictError, NotFoundError, ValidationError
from retail_ledger.services.money import ZERO, to_money
from retail_ledger.services.numbering import next_number
from retail_ledger.services.party_ledger import (
    ensure_within_balance,
    get_party,
    post_entry,
    reverse_document_entries,
    split_return_credit,
)
from retail_ledger.services.stock_ledger import ensure_available, lock_product, lock_products, record_movement

logger = logging.getLogger(__name__)

DOCUMENT_MODELS = {"sale": Sale, "purchase": Purchase}

INVOICE_ATTEMPTS = 3

COMPENSATING_KINDS = {
    MovementKind.SALE: MovementKind.SALE_RETURN,
    MovementKind.SALE_RETURN: MovementKind.SALE,
    MovementKind.PURCHASE: MovementKind.PURCHASE_RETURN,
    MovementKind.PURCHASE_RETURN: MovementKind.PURCHASE,
    MovementKind.OPENING: MovementKind.ADJUSTMENT,
    MovementKind.ADJUSTMENT: MovementKind.ADJUSTMENT,
}


def next_sale_invoice_no(db: Session, now: datetime | None = None) -> str:
    now = now or datetime.utcnow()
    return next_number(db, Sale.invoice_no, f"INV{now.year}{now.month:02d}", 5)


def next_purchase_invoice_no(db: Session) -> str:
    return next_number(db, Purchase.invoice_no, "", 6)


def _flush_document(db: Session, kind: str, invoice_no: str) -> None:
    try:
        db.flush()
    except IntegrityError as exc:
        raise DocumentNumberConflictError(kind, invoice_no) from exc


def _retry_on_number_conflict(post, kind: str):
    for attempt in range(1, INVOICE_ATTEMPTS + 1):
        try:
            return post()
        except DocumentNumberConflictError as exc:
            if attempt == INVOICE_ATTEMPTS:
                raise
            logger.warning("%s; retrying %s (%s/%s)", exc.message, kind, attempt, INVOICE_ATTEMPTS)


def _require_active(products: dict[int, Product]) -> None:
    for product in products.values():
        if not product.is_active:
            raise ValidationError(f'Product "{product.name}" is inactive')


def _requested_quantities(items) -> dict[int, int]:
    requested: dict[int, int] = defaultdict(int)
    for item in items:
        requested[item.product_id] += item.quantity
    return requested


def _document_totals(subtotal: Decimal, discount: Decimal, tax: Decimal) -> Decimal:
    if discount > subtotal:
        raise ValidationError("Discount exceeds subtotal")
    total = subtotal - discount + tax
    if total <= 0:
        raise ValidationError("Document total must be positive")
    return total


def _record_payment_row(
    db: Session,
    direction: PaymentDirection,
    amount: Decimal,
    method: str,
    *,
    party_id: int | None = None,
    sale_id: int | None = None,
    purchase_id: int | None = None,
    reference: str | None = None,
    note: str | None = None,
    user_id: int | None = None,
    reverses_payment_id: int | None = None,
) -> Payment:
    payment = Payment(
        direction=direction,
        party_id=party_id,
        sale_id=sale_id,
        purchase_id=purchase_id,
        amount=amount,
        method=method,
        reference=reference,
        note=note,
        reverses_payment_id=reverses_payment_id,
        created_by_user_id=user_id,
    )
    db.add(payment)
    db.flush()
    return payment


def create_sale(db: Session, payload: SaleCreate, actor: Actor) -> Sale:
    require(actor, "inventory:sell")
    if not payload.items:
        raise ValidationError("A sale needs at least one item")
    return _retry_on_number_conflict(lambda: _post_sale(db, payload, actor), "sale")


def _post_sale(db: Session, payload: SaleCreate, actor: Actor) -> Sale:
    with transaction(db):
        products = lock_products(db, [item.product_id for item in payload.items])
        _require_active(products)
        if not payload.is_return:
            for product_id, quantity in _requested_quantities(payload.items).items():
                ensure_available(db, products[product_id], quantity)

        lines = []
        subtotal = ZERO
        line_tax = ZERO
        cost_total = ZERO
        for item in payload.items:
            product = products[item.product_id]
            unit_price = to_money(item.unit_price if item.unit_price is not None else product.sale_price)
            if unit_price <= 0:
                raise ValidationError(f'Product "{product.name}" has no sale price')
            gross = unit_price * item.quantity
            discount = to_money(item.discount)
            if discount > gross:
                raise ValidationError(f'Line discount exceeds line amount for "{product.name}"')
            net = gross - discount
            if item.tax is not None:
                tax = to_money(item.tax)
            else:
                tax = to_money(net * Decimal(product.tax_rate) / Decimal(100))
            unit_cost = to_money(product.cost_price)
            lines.append((item, unit_price, unit_cost, discount, tax, net + tax))
            subtotal += net
            line_tax += tax
            cost_total += unit_cost * item.quantity

        discount = to_money(payload.discount)
        tax = to_money(payload.tax) if payload.tax is not None else line_tax
        total = _document_totals(subtotal, discount, tax)
        paid = total if payload.is_cash_sale else to_money(payload.paid)
        if paid > total:
            raise ValidationError(f"Paid amount {paid} exceeds total {total}")
        due = total - paid

        customer: Party | None = None
        if payload.customer_id is not None:
            customer = get_party(db, payload.customer_id, PartyRole.CUSTOMER, lock=True)
        if due > 0 and customer is None:
            raise ValidationError("A customer is required for a sale or return with an amount due")

        collection = to_money(payload.collection)
        if collection > 0:
            if customer is None or payload.is_return:
                raise ValidationError("A collection needs a customer and a regular sale")
            ensure_within_balance(customer, collection)

        sale = Sale(
            invoice_no=next_sale_invoice_no(db),
            customer_id=customer.id if customer else None,
            is_return=payload.is_return,
            is_cash_sale=payload.is_cash_sale,
            status=DocumentStatus.POSTED,
            subtotal=subtotal,
            discount=discount,
            tax=tax,
            total=total,
            paid=paid,
            due=due,
            unapplied_credit=ZERO,
            payment_method=payload.payment_method,
            notes=payload.notes,
            created_by_user_id=actor.user_id,
        )
        db.add(sale)
        _flush_document(db, "sale", sale.invoice_no)

        kind = MovementKind.SALE_RETURN if payload.is_return else MovementKind.SALE
        for item, unit_price, unit_cost, line_discount, line_tax_amount, line_total in lines:
            db.add(
                SaleItem(
                    sale_id=sale.id,
                    product_id=item.product_id,
                    quantity=item.quantity,
                    unit_price=unit_price,
                    unit_cost=unit_cost,
                    discount=line_discount,
                    tax=line_tax_amount,
                    total=line_total,
                )
            )
            quantity = item.quantity if payload.is_return else -item.quantity
            record_movement(
                db,
                item.product_id,
                quantity,
                unit_cost,
                kind,
                f"{'Return' if payload.is_return else 'Sale'} {sale.invoice_no}",
                sale_id=sale.id,
                user_id=actor.user_id,
            )

        label = "Sale return" if payload.is_return else "Sale"
        if customer is not None:
            if not payload.is_return and not payload.is_cash_sale:
                post_entry(
                    db,
                    customer.id,
                    debit=total,
                    credit=paid,
                    description=f"{label} {sale.invoice_no}",
                    sale_id=sale.id,
                    user_id=actor.user_id,
                )
            elif payload.is_return and due > 0:
                post_entry(
                    db,
                    customer.id,
                    debit=ZERO,
                    credit=due,
                    description=f"{label} {sale.invoice_no}",
                    sale_id=sale.id,
                    user_id=actor.user_id,
                )

        if paid > 0:
            _record_payment_row(
                db,
                PaymentDirection.OUT if payload.is_return else PaymentDirection.IN,
                paid,
                payload.payment_method,
                party_id=sale.customer_id,
                sale_id=sale.id,
                reference=sale.invoice_no,
                user_id=actor.user_id,
            )

        group = gl.open_group(db, sale.invoice_no, f"{label} {sale.invoice_no}", sale_id=sale.id)
        sign = -1 if payload.is_return else 1
        settlement = gl.settlement_account(payload.payment_method)
        counter = settlement if due == 0 else gl.RECEIVABLE
        gl.post(db, group, counter, gl.SALES_REVENUE, sign * (subtotal - discount), f"{label} {sale.invoice_no} - revenue")
        gl.post(db, group, counter, gl.TAX_PAYABLE, sign * tax, f"{label} {sale.invoice_no} - tax")
        if counter == gl.RECEIVABLE and paid > 0:
            gl.post(db, group, settlement, gl.RECEIVABLE, sign * paid, f"{label} {sale.invoice_no} - payment")
        gl.post(db, group, gl.COST_OF_GOODS_SOLD, gl.INVENTORY, sign * cost_total, f"{label} {sale.invoice_no} - COGS")

        if collection > 0:
            payment = _record_payment_row(
                db,
                PaymentDirection.IN,
                collection,
                payload.payment_method,
                party_id=customer.id,
                sale_id=sale.id,
                reference=f"COL-{sale.invoice_no}",
                note="Collected with sale",
                user_id=actor.user_id,
            )
            post_entry(
                db,
                customer.id,
                debit=ZERO,
                credit=collection,
                description=f"Collection with {sale.invoice_no}",
                sale_id=sale.id,
                payment_id=payment.id,
                user_id=actor.user_id,
            )
            gl.post(db, group, settlement, gl.RECEIVABLE, collection, f"Collection with {sale.invoice_no}")

    db.refresh(sale)
    logger.info(
        "Posted %s %s: total=%s paid=%s due=%s lines=%s",
        label.lower(),
        sale.invoice_no,
        total,
        paid,
        due,
        len(lines),
    )
    return sale


def create_purchase(db: Session, payload: PurchaseCreate, actor: Actor) -> Purchase:
    require(actor, "inventory:manage")
    if not payload.items:
        raise ValidationError("A purchase needs at least one item")
    return _retry_on_number_conflict(lambda: _post_purchase(db, payload, actor), "purchase")


def _post_purchase(db: Session, payload: PurchaseCreate, actor: Actor) -> Purchase:
    with transaction(db):
        invoice_no = payload.invoice_no.strip() if payload.invoice_no else None
        if invoice_no:
            if db.scalar(select(Purchase.id).where(Purchase.invoice_no == invoice_no)) is not None:
                raise ValidationError(f"Invoice number {invoice_no} already exists")
        else:
            invoice_no = next_purchase_invoice_no(db)

        products = lock_products(db, [item.product_id for item in payload.items])
        _require_active(products)
        if payload.is_return:
            for product_id, quantity in _requested_quantities(payload.items).items():
                ensure_available(db, products[product_id], quantity)

        lines = []
        subtotal = ZERO
        line_tax = ZERO
        for item in payload.items:
            unit_price = to_money(item.unit_price)
            gross = unit_price * item.quantity
            line_discount = to_money(item.discount)
            if line_discount > gross:
                raise ValidationError(f'Line discount exceeds line amount for "{products[item.product_id].name}"')
            net = gross - line_discount
            tax_amount = to_money(item.tax)
            lines.append((item, unit_price, line_discount, tax_amount, net + tax_amount))
            subtotal += net
            line_tax += tax_amount

        discount = to_money(payload.discount)
        tax = to_money(payload.tax) if payload.tax is not None else line_tax
        total = _document_totals(subtotal, discount, tax)
        paid = to_money(payload.paid)
        if paid > total:
            raise ValidationError(f"Paid amount {paid} exceeds total {total}")
        due = total - paid

        supplier: Party | None = None
        if payload.supplier_id is not None:
            supplier = get_party(db, payload.supplier_id, PartyRole.SUPPLIER, lock=True)
        if due > 0 and supplier is None:
            raise ValidationError("A supplier is required for a purchase or return with an amount due")

        purchase = Purchase(
            invoice_no=invoice_no,
            supplier_id=supplier.id if supplier else None,
            is_return=payload.is_return,
            status=DocumentStatus.POSTED,
            subtotal=subtotal,
            discount=discount,
            tax=tax,
            total=total,
            paid=paid,
            due=due,
            unapplied_credit=ZERO,
            payment_method=payload.payment_method,
            notes=payload.notes,
            created_by_user_id=actor.user_id,
        )
        db.add(purchase)
        _flush_document(db, "purchase", invoice_no)

        for item, unit_price, line_discount, tax_amount, line_total in lines:
            product = products[item.product_id]
            db.add(
                PurchaseItem(
                    purchase_id=purchase.id,
                    product_id=item.product_id,
                    quantity=item.quantity,
                    unit_price=unit_price,
                    discount=line_discount,
                    tax=tax_amount,
                    total=line_total,
                )
            )
            if payload.is_return:
                record_movement(
                    db,
                    product.id,
                    -item.quantity,
                    unit_price,
                    MovementKind.PURCHASE_RETURN,
                    f"Purchase return {invoice_no}",
                    purchase_id=purchase.id,
                    user_id=actor.user_id,
                )
                continue

            apply_purchase_cost(db, product, item.quantity, unit_price)
            if item.sale_price is not None:
                product.sale_price = to_money(item.sale_price)
            record_movement(
                db,
                product.id,
                item.quantity,
                unit_price,
                MovementKind.PURCHASE,
                f"Purchase {invoice_no}",
                purchase_id=purchase.id,
                user_id=actor.user_id,
            )

        label = "Purchase return" if payload.is_return else "Purchase"
        unapplied = ZERO
        if supplier is not None:
            if not payload.is_return:
                post_entry(
                    db,
                    supplier.id,
                    debit=total,
                    credit=paid,
                    description=f"{label} {invoice_no}",
                    purchase_id=purchase.id,
                    user_id=actor.user_id,
                )
            elif due > 0:
                applied, unapplied = split_return_credit(supplier, due)
                if applied > 0:
                    post_entry(
                        db,
                        supplier.id,
                        debit=ZERO,
                        credit=applied,
                        description=f"{label} {invoice_no}",
                        purchase_id=purchase.id,
                        user_id=actor.user_id,
                    )
                purchase.unapplied_credit = unapplied

        if paid > 0:
            _record_payment_row(
                db,
                PaymentDirection.IN if payload.is_return else PaymentDirection.OUT,
                paid,
                payload.payment_method,
                party_id=purchase.supplier_id,
                purchase_id=purchase.id,
                reference=invoice_no,
                user_id=actor.user_id,
            )

        group = gl.open_group(db, f"PUR-{invoice_no}", f"{label} {invoice_no}", purchase_id=purchase.id)
        sign = -1 if payload.is_return else 1
        settlement = gl.settlement_account(payload.payment_method)
        counter = settlement if due == 0 else gl.PAYABLE
        gl.post(db, group, gl.INVENTORY, counter, sign * (subtotal - discount), f"{label} {invoice_no} - goods")
        gl.post(db, group, gl.TAX_PAYABLE, counter, sign * tax, f"{label} {invoice_no} - input tax")
        if counter == gl.PAYABLE and paid > 0:
            gl.post(db, group, gl.PAYABLE, settlement, sign * paid, f"{label} {invoice_no} - payment")
        if unapplied > 0:
            gl.post(db, group, gl.RETURN_WRITE_OFF, gl.PAYABLE, unapplied, f"{label} {invoice_no} - unapplied credit")

    db.refresh(purchase)
    logger.info(
        "Posted %s %s: total=%s paid=%s due=%s unapplied=%s",
        label.lower(),
        invoice_no,
        total,
        paid,
        due,
        unapplied,
    )
    return purchase


def get_document(db: Session, kind: str, document_id: int) -> Sale | Purchase:
    model = DOCUMENT_MODELS.get(kind)
    if model is None:
        raise ValidationError(f"Unknown document kind: {kind}")
    document = db.get(model, document_id)
    if not document:
        raise NotFoundError(f"{kind.capitalize()} {document_id} not found")
    return document


def document_items(db: Session, document: Sale | Purchase) -> list[SaleItem] | list[PurchaseItem]:
    if isinstance(document, Sale):
        query = select(SaleItem).where(SaleItem.sale_id == document.id).order_by(SaleItem.id)
    else:
        query = select(PurchaseItem).where(PurchaseItem.purchase_id == document.id).order_by(PurchaseItem.id)
    return list(db.scalars(query).all())


def _unreversed_movements(db: Session, link: dict[str, int]) -> list[StockMovement]:
    column = StockMovement.sale_id if "sale_id" in link else StockMovement.purchase_id
    originals = list(
        db.scalars(
            select(StockMovement)
            .where(column == next(iter(link.values())), StockMovement.reverses_movement_id.is_(None))
            .order_by(StockMovement.id)
        ).all()
    )
    if not originals:
        return []
    reversed_ids = set(
        db.scalars(
            select(StockMovement.reverses_movement_id).where(
                StockMovement.reverses_movement_id.in_([movement.id for movement in originals])
            )
        ).all()
    )
    return [movement for movement in originals if movement.id not in reversed_ids]


def document_payments(db: Session, document: Sale | Purchase) -> list[Payment]:
    column = Payment.sale_id if isinstance(document, Sale) else Payment.purchase_id
    return list(db.scalars(select(Payment).where(column == document.id).order_by(Payment.id)).all())


def _reverse_document_payments(db: Session, document: Sale | Purchase, user_id: int | None) -> list[Payment]:
    """Cancel every payment of a document with a negated row linked back to it."""
    payments = document_payments(db, document)
    reversed_ids = {payment.reverses_payment_id for payment in payments if payment.reverses_payment_id}
    reversals = []
    for payment in payments:
        if payment.reverses_payment_id is not None or payment.id in reversed_ids:
            continue
        reversals.append(
            _record_payment_row(
                db,
                payment.direction,
                -Decimal(payment.amount),
                payment.method,
                party_id=payment.party_id,
                sale_id=payment.sale_id,
                purchase_id=payment.purchase_id,
                reference=f"REV-{payment.reference}"[:64] if payment.reference else None,
                note=f"Reversal of {document.invoice_no}",
                user_id=user_id,
                reverses_payment_id=payment.id,
            )
        )
    return reversals


def delete_document(db: Session, kind: str, document_id: int, actor: Actor) -> Sale | Purchase:
    """Reverse a posted sale or purchase across every ledger.

    Items, payments and the original ledger rows stay as history. Compensating
    movements, entries, payments and groups cancel their effect, and the
    document moves to ``reversed``. Running it again on a reversed document
    changes nothing.
    """
    require(actor, "documents:delete")
    model = DOCUMENT_MODELS.get(kind)
    if model is None:
        raise ValidationError(f"Unknown document kind: {kind}")

    with transaction(db):
        document = db.scalar(select(model).where(model.id == document_id).with_for_update())
        if not document:
            raise NotFoundError(f"{kind.capitalize()} {document_id} not found")
        if document.status == DocumentStatus.REVERSED:
            logger.info("%s %s already reversed", kind.capitalize(), document.invoice_no)
            return document

        link = {"sale_id": document.id} if kind == "sale" else {"purchase_id": document.id}
        movements = _unreversed_movements(db, link)
        products = lock_products(db, [movement.product_id for movement in movements])

        removal: dict[int, int] = defaultdict(int)
        for movement in movements:
            removal[movement.product_id] += movement.quantity
        for product_id, quantity in removal.items():
            if quantity > 0:
                ensure_available(db, products[product_id], quantity)

        # Undo lines newest first so each WAC removal sees the stock that followed it.
        for movement in reversed(movements):
            if movement.kind == MovementKind.PURCHASE:
                remove_purchase_cost(db, products[movement.product_id], movement.quantity, movement.unit_cost)
            record_movement(
                db,
                movement.product_id,
                -movement.quantity,
                movement.unit_cost,
                COMPENSATING_KINDS[movement.kind],
                f"Reversal of {document.invoice_no}",
                reverses_movement_id=movement.id,
                user_id=actor.user_id,
                **link,
            )

        reverse_document_entries(db, user_id=actor.user_id, **link)
        _reverse_document_payments(db, document, actor.user_id)
        gl.reverse_document_groups(db, **link)

        document.status = DocumentStatus.REVERSED
        document.reversed_at = datetime.utcnow()
        document.reversed_by_user_id = actor.user_id

    db.refresh(document)
    logger.info("Reversed %s %s by user %s", kind, document.invoice_no, actor.user_id)
    return document


def latest_purchase_price(db: Session, product_id: int) -> Decimal | None:
    return db.scalar(
        select(PurchaseItem.unit_price)
        .join(Purchase, Purchase.id == PurchaseItem.purchase_id)
        .where(
            PurchaseItem.product_id == product_id,
            Purchase.is_return.is_(False),
            Purchase.status == DocumentStatus.POSTED,
        )
        .order_by(Purchase.created_at.desc(), PurchaseItem.id.desc())
        .limit(1)
    )


def adjust_stock(db: Session, product_id: int, quantity_delta: int, reason: str | None, actor: Actor) -> StockMovement:
    require(actor, "inventory:manage")
    if quantity_delta == 0:
        raise ValidationError("Adjustment quantity must not be zero")

    with transaction(db):
        product = lock_product(db, product_id)
        unit_cost = latest_purchase_price(db, product.id)
        if unit_cost is None:
            unit_cost = product.cost_price
        note = reason.strip() if reason and reason.strip() else "Manual adjustment"
        movement = record_movement(
            db,
            product.id,
            quantity_delta,
            unit_cost,
            MovementKind.ADJUSTMENT,
            note,
            user_id=actor.user_id,
        )
        value = to_money(Decimal(unit_cost) * quantity_delta)
        if value != 0:
            group = gl.open_group(db, f"ADJ-{movement.id}", f"Stock adjustment {product.name}: {note}")
            gl.post(db, group, gl.INVENTORY, gl.INVENTORY_ADJUSTMENTS, value, f"Adjustment {product.name} {quantity_delta:+d}")

    db.refresh(movement)
    logger.info("Adjusted product %s by %s (%s)", product_id, quantity_delta, note)
    return movement
