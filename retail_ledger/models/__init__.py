from retail_ledger.models.accounting import Account, AccountType, LedgerTransaction, TransactionGroup
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
from retail_ledger.models.parties import Party, PartyLedgerEntry, PartyRole

__all__ = [
    "Account",
    "AccountType",
    "DocumentStatus",
    "LedgerTransaction",
    "MovementKind",
    "Party",
    "PartyLedgerEntry",
    "PartyRole",
    "Payment",
    "PaymentDirection",
    "Product",
    "Purchase",
    "PurchaseItem",
    "Sale",
    "SaleItem",
    "StockMovement",
    "TransactionGroup",
]
