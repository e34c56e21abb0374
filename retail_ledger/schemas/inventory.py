from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from retail_ledger.models.inventory import MovementKind

ProductUnit = Literal["piece", "kg", "litre", "carton"]


class ProductCreate(BaseModel):
    sku: str = Field(min_length=2, max_length=64)
    name: str = Field(min_length=2, max_length=160)
    unit: ProductUnit = "piece"
    description: str | None = None
    cost_price: Decimal = Field(default=Decimal("0"), ge=0)
    sale_price: Decimal = Field(default=Decimal("0"), ge=0)
    tax_rate: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    min_stock: int = Field(default=0, ge=0)
    max_stock: int | None = Field(default=None, ge=0)
    opening_stock: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _check_stock_bounds(self):
        if self.max_stock is not None and self.max_stock < self.min_stock:
            raise ValueError("max_stock must not be below min_stock")
        return self


class ProductUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=2, max_length=160)
    unit: ProductUnit | None = None
    description: str | None = None
    sale_price: Decimal | None = Field(default=None, ge=0)
    tax_rate: Decimal | None = Field(default=None, ge=0, le=100)
    min_stock: int | None = Field(default=None, ge=0)
    max_stock: int | None = Field(default=None, ge=0)
    is_active: bool | None = None


class ProductOut(BaseModel):
    id: int
    sku: str
    name: str
    unit: ProductUnit
    description: str | None
    cost_price: Decimal
    sale_price: Decimal
    tax_rate: Decimal
    min_stock: int
    max_stock: int | None
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class StockMovementOut(BaseModel):
    id: int
    product_id: int
    quantity: int
    unit_cost: Decimal
    kind: MovementKind
    note: str | None
    sale_id: int | None
    purchase_id: int | None
    reverses_movement_id: int | None
    created_at: datetime

    model_config = {"from_attributes": True}


class StockOut(BaseModel):
    product: ProductOut
    current_stock: int
    movements: list[StockMovementOut]


class StockAdjustRequest(BaseModel):
    product_id: int
    quantity_delta: int = Field(description="Signed delta to apply, may be negative")
    reason: str | None = Field(default=None, max_length=255)


class LowStockItemOut(BaseModel):
    product_id: int
    product_name: str
    current_stock: int
    threshold: int
