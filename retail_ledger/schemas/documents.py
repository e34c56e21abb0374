from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from retail_ledger.models.documents import DocumentStatus, PaymentDirection


class SaleItemIn(BaseModel):
    product_id: int
    quantity: int = Field(gt=0)
    unit_price: Decimal | None = Field(default=None, gt=0)
    discount: Decimal = Field(default=Decimal("0"), ge=0)
    tax: Decimal | None = Field(default=None, ge=0)


class SaleCreate(BaseModel):
    items: list[SaleItemIn]
    customer_id: int | None = None
    is_return: bool = False
    is_cash_sale: bool = True
    discount: Decimal = Field(default=Decimal("0"), ge=0)
    tax: Decimal | None = Field(default=None, ge=0)
    paid: Decimal = Field(default=Decimal("0"), ge=0)
    payment_method: str = Field(default="cash", max_length=24)
    collection: Decimal = Field(default=Decimal("0"), ge=0)
    notes: str | None = None


class PurchaseItemIn(BaseModel):
    product_id: int
    quantity: int = Field(gt=0)
    unit_price: Decimal = Field(gt=0)
    discount: Decimal = Field(default=Decimal("0"), ge=0)
    tax: Decimal = Field(default=Decimal("0"), ge=0)
    sale_price: Decimal | None = Field(default=None, gt=0)


class PurchaseCreate(BaseModel):
    items: list[PurchaseItemIn]
    supplier_id: int | None = None
    invoice_no: str | None = Field(default=None, max_length=32)
    is_return: bool = False
    discount: Decimal = Field(default=Decimal("0"), ge=0)
    tax: Decimal | None = Field(default=None, ge=0)
    paid: Decimal = Field(default=Decimal("0"), ge=0)
    payment_method: str = Field(default="cash", max_length=24)
    notes: str | None = None


class SaleItemOut(BaseModel):
    id: int
    product_id: int
    quantity: int
    unit_price: Decimal
    unit_cost: Decimal
    discount: Decimal
    tax: Decimal
    total: Decimal

    model_config = {"from_attributes": True}


class PurchaseItemOut(BaseModel):
    id: int
    product_id: int
    quantity: int
    unit_price: Decimal
    discount: Decimal
    tax: Decimal
    total: Decimal

    model_config = {"from_attributes": True}


class DocumentOut(BaseModel):
    id: int
    invoice_no: str
    is_return: bool
    status: DocumentStatus
    subtotal: Decimal
    discount: Decimal
    tax: Decimal
    total: Decimal
    paid: Decimal
    due: Decimal
    unapplied_credit: Decimal
    payment_method: str
    notes: str | None
    created_by_user_id: int | None
    created_at: datetime
    reversed_at: datetime | None

    model_config = {"from_attributes": True}


class SaleOut(DocumentOut):
    customer_id: int | None
    is_cash_sale: bool
    items: list[SaleItemOut] = []


class PurchaseOut(DocumentOut):
    supplier_id: int | None
    items: list[PurchaseItemOut] = []


class PaymentOut(BaseModel):
    id: int
    direction: PaymentDirection
    party_id: int | None
    sale_id: int | None
    purchase_id: int | None
    amount: Decimal
    method: str
    reference: str | None
    note: str | None
    reverses_payment_id: int | None
    paid_at: datetime

    model_config = {"from_attributes": True}
