from fastapi import Depends, Header, HTTPException, status

from retail_ledger.core.permissions import Actor, UserRole, require


def get_actor(
    x_actor_id: int | None = Header(default=None),
    x_actor_role: str | None = Header(default=None),
) -> Actor:
    """The acting user as passed down by the session layer."""
    if not x_actor_role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Actor-Role header is required",
        )
    try:
        role = UserRole(x_actor_role.strip().lower())
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Unknown role: {x_actor_role}",
        ) from exc
    return Actor(user_id=x_actor_id, role=role)


def require_permission(permission: str):
    def checker(actor: Actor = Depends(get_actor)) -> Actor:
        require(actor, permission)
        return actor

    return checker
