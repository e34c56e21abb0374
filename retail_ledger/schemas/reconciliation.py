from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field

ReconcileKind = Literal["stock", "cost", "party", "account", "groups", "orphans"]

ALL_KINDS: tuple[str, ...] = ("stock", "cost", "party", "account", "groups", "orphans")


class ReconcileScope(BaseModel):
    kinds: list[ReconcileKind] = Field(default_factory=lambda: list(ALL_KINDS))
    product_ids: list[int] | None = None
    party_ids: list[int] | None = None
    account_codes: list[str] | None = None
    dry_run: bool = False


class CorrectedField(BaseModel):
    kind: str
    record_id: int
    field: str
    cached: Decimal
    actual: Decimal


class LedgerIssue(BaseModel):
    kind: str
    record_id: int
    detail: str


class UnitFailure(BaseModel):
    kind: str
    record_id: int
    error: str


class ReconcileReport(BaseModel):
    dry_run: bool = False
    corrected_fields: list[CorrectedField] = []
    orphaned_entries: list[LedgerIssue] = []
    violations: list[LedgerIssue] = []
    failures: list[UnitFailure] = []

    @property
    def clean(self) -> bool:
        return not (self.corrected_fields or self.orphaned_entries or self.violations or self.failures)
