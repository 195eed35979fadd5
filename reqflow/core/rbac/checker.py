"""Permission checks against the acting identity.

The identity collaborator supplies ``(actor_id, role, department_id)`` for
every call; the engine trusts it and never re-authenticates.
"""

from dataclasses import dataclass
from typing import Iterable, Optional
from uuid import UUID

from reqflow.core.errors import NotAuthorizedError
from .roles import Permission, Role, ROLE_PERMISSIONS


@dataclass(frozen=True)
class Actor:
    """The identity performing an engine call."""

    id: UUID
    role: Role
    department_id: Optional[UUID] = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


class PermissionChecker:
    """Checks if a role grants specific permissions."""

    def __init__(self, role: Role):
        self.role = role
        self.permissions = ROLE_PERMISSIONS[role]

    def has_permission(self, permission: Permission) -> bool:
        return permission in self.permissions

    def has_any_permission(self, permissions: Iterable[Permission]) -> bool:
        return any(self.has_permission(p) for p in permissions)

    def has_all_permissions(self, permissions: Iterable[Permission]) -> bool:
        return all(self.has_permission(p) for p in permissions)


def has_permission(actor: Actor, permission: Permission) -> bool:
    """Check if an actor's role grants a permission."""
    if actor is None:
        return False
    return PermissionChecker(actor.role).has_permission(permission)


def require_permission(actor: Actor, *permissions: Permission, require_all: bool = False) -> None:
    """
    Raise NotAuthorizedError unless the actor holds the permission(s).

    Args:
        actor: Acting identity
        permissions: One or more permissions
        require_all: If True, actor must hold ALL permissions. Default: any one.
    """
    checker = PermissionChecker(actor.role)
    if require_all:
        allowed = checker.has_all_permissions(permissions)
    else:
        allowed = checker.has_any_permission(permissions)

    if not allowed:
        required = ", ".join(p.value for p in permissions)
        raise NotAuthorizedError(
            f"Role {actor.role.value} lacks permission. Required: {required}"
        )
