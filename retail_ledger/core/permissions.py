from dataclasses import dataclass
from enum import Enum

from retail_ledger.services.errors import PermissionDenied


class UserRole(str, Enum):
    SYSTEM_OWNER = "system_owner"
    BUSINESS_OWNER = "business_owner"
    EMPLOYEE = "employee"


ROLE_PERMISSIONS: dict[UserRole, set[str]] = {
    UserRole.SYSTEM_OWNER: {
        "inventory:view",
        "inventory:manage",
        "inventory:sell",
        "parties:manage",
        "payments:record",
        "documents:delete",
        "entries:delete",
        "ledger:reconcile",
        "ledger:post",
    },
    UserRole.BUSINESS_OWNER: {
        "inventory:view",
        "inventory:manage",
        "inventory:sell",
        "parties:manage",
        "payments:record",
        "documents:delete",
        "entries:delete",
        "ledger:reconcile",
        "ledger:post",
    },
    UserRole.EMPLOYEE: {"inventory:view", "inventory:sell", "payments:record"},
}


@dataclass(frozen=True)
class Actor:
    """The user on whose behalf an operation runs, as supplied by the session layer."""

    user_id: int | None
    role: UserRole

    def can(self, permission: str) -> bool:
        return permission in ROLE_PERMISSIONS.get(self.role, set())


SYSTEM_ACTOR = Actor(user_id=None, role=UserRole.SYSTEM_OWNER)


def require(actor: Actor, permission: str) -> None:
    if not actor.can(permission):
        raise PermissionDenied(permission)
