"""Role-based access control for the requisition workflow."""

from .roles import Role, Permission, ROLE_PERMISSIONS, get_role_permissions
from .checker import Actor, PermissionChecker, has_permission, require_permission

__all__ = [
    "Role",
    "Permission",
    "ROLE_PERMISSIONS",
    "get_role_permissions",
    "Actor",
    "PermissionChecker",
    "has_permission",
    "require_permission",
]
