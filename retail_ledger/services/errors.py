from decimal import Decimal


class LedgerError(Exception):
    """Base class for errors raised by the bookkeeping engine."""

    code = "ledger_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.message}


class ValidationError(LedgerError):
    code = "validation_error"


class NotFoundError(LedgerError):
    code = "not_found"


class PermissionDenied(LedgerError):
    code = "permission_denied"

    def __init__(self, permission: str):
        super().__init__(f"Permission required: {permission}")
        self.permission = permission

    def to_dict(self) -> dict:
        return {**super().to_dict(), "permission": self.permission}


class StockError(LedgerError):
    code = "insufficient_stock"

    def __init__(self, product_id: int, product_name: str, available: int, requested: int):
        super().__init__(
            f'Insufficient stock for "{product_name}". Available: {available}, Requested: {requested}'
        )
        self.product_id = product_id
        self.product_name = product_name
        self.available = available
        self.requested = requested

    def to_dict(self) -> dict:
        return {
            **super().to_dict(),
            "product_id": self.product_id,
            "product": self.product_name,
            "available": self.available,
            "requested": self.requested,
        }


class AmountExceedsBalanceError(LedgerError):
    code = "amount_exceeds_balance"

    def __init__(self, party_id: int, outstanding: Decimal, requested: Decimal):
        super().__init__(f"Amount {requested} exceeds outstanding balance {outstanding} for party {party_id}")
        self.party_id = party_id
        self.outstanding = outstanding
        self.requested = requested

    def to_dict(self) -> dict:
        return {
            **super().to_dict(),
            "party_id": self.party_id,
            "outstanding": str(self.outstanding),
            "requested": str(self.requested),
        }


class OrphanedReferenceError(LedgerError):
    """A ledger row whose parent record no longer exists."""

    code = "orphaned_reference"

    def __init__(self, kind: str, record_id: int, detail: str):
        super().__init__(f"{kind} #{record_id}: {detail}")
        self.kind = kind
        self.record_id = record_id
        self.detail = detail

    def to_dict(self) -> dict:
        return {**super().to_dict(), "kind": self.kind, "record_id": self.record_id, "detail": self.detail}


class ConsistencyDriftWarning(UserWarning):
    """A cached field disagreed with its ledger and was corrected."""


class DocumentNumberConflictError(LedgerError):
    """Another writer committed the same invoice number first."""

    code = "document_number_conflict"

    def __init__(self, kind: str, invoice_no: str):
        super().__init__(f"{kind.capitalize()} invoice number {invoice_no} is already taken")
        self.kind = kind
        self.invoice_no = invoice_no

    def to_dict(self) -> dict:
        return {**super().to_dict(), "kind": self.kind, "invoice_no": self.invoice_no}
