from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field

from retail_ledger.models.accounting import AccountType
from retail_ledger.models.parties import PartyRole


class PartyCreate(BaseModel):
    role: PartyRole
    name: str = Field(min_length=2, max_length=160)
    contact: str | None = Field(default=None, max_length=255)
    opening_balance: Decimal = Field(default=Decimal("0"), ge=0)
    # "debit" raises the balance, "credit" lowers it (an advance or a credit note)
    opening_side: Literal["debit", "credit"] = "debit"


class PartyOut(BaseModel):
    id: int
    role: PartyRole
    name: str
    contact: str | None
    balance: Decimal
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class PartyLedgerEntryOut(BaseModel):
    id: int
    party_id: int
    debit: Decimal
    credit: Decimal
    balance: Decimal
    description: str
    sale_id: int | None
    purchase_id: int | None
    payment_id: int | None
    reverses_entry_id: int | None
    created_at: datetime

    model_config = {"from_attributes": True}


class PaymentCreate(BaseModel):
    amount: Decimal = Field(gt=0)
    method: str = Field(default="cash", max_length=24)
    reference: str | None = Field(default=None, max_length=64)
    note: str | None = Field(default=None, max_length=255)


class AccountOut(BaseModel):
    id: int
    code: str
    name: str
    type: AccountType
    balance: Decimal

    model_config = {"from_attributes": True}


class JournalEntryCreate(BaseModel):
    debit_code: str = Field(min_length=1, max_length=16)
    credit_code: str = Field(min_length=1, max_length=16)
    amount: Decimal = Field(gt=0)
    description: str = Field(min_length=1, max_length=255)
    reference: str | None = Field(default=None, max_length=64)


class LedgerTransactionOut(BaseModel):
    id: int
    group_id: int | None
    debit_code: str
    debit_name: str
    credit_code: str
    credit_name: str
    amount: Decimal
    description: str
    created_at: datetime
