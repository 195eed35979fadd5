"""Roles and permissions for the requisition workflow.

Roles are a closed set. Permission strings use the "resource:action"
format; every role maps to a fixed permission set:

1. Staff   - create and submit own requisitions
2. Manager - own requisitions, decide approval steps
3. Finance - own requisitions, decide approval steps, record payments, read the audit trail
4. Admin   - everything, including bulk override, cancellation and rules
"""

from enum import Enum
from typing import Dict, FrozenSet


class Role(str, Enum):
    """Approver and requester roles."""

    STAFF = "STAFF"
    MANAGER = "MANAGER"
    FINANCE = "FINANCE"
    ADMIN = "ADMIN"

    @classmethod
    def parse(cls, value: str) -> "Role":
        """Parse a role name case-insensitively; raises ValueError on unknown roles."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            allowed = ", ".join(r.value for r in cls)
            raise ValueError(f"Unknown role: {value!r}. Must be one of: {allowed}")


class Permission(str, Enum):
    """Actions guarded by role."""

    CREATE_REQUISITION = "requisitions:create"
    VIEW_ALL_REQUISITIONS = "requisitions:list"
    APPROVE_REQUISITION = "requisitions:approve"
    REJECT_REQUISITION = "requisitions:reject"
    OVERRIDE_APPROVALS = "requisitions:override"
    CANCEL_REQUISITION = "requisitions:cancel"
    RECORD_PAYMENT = "payments:create"
    VIEW_AUDIT_TRAIL = "audit_trail:list"
    MANAGE_APPROVAL_RULES = "approval_rules:manage"
    UPLOAD_ATTACHMENTS = "attachments:create"
    DOWNLOAD_ATTACHMENTS = "attachments:read"


STAFF_PERMISSIONS: FrozenSet[Permission] = frozenset({
    Permission.CREATE_REQUISITION,
    Permission.UPLOAD_ATTACHMENTS,
    Permission.DOWNLOAD_ATTACHMENTS,
})

MANAGER_PERMISSIONS: FrozenSet[Permission] = frozenset({
    Permission.CREATE_REQUISITION,
    Permission.VIEW_ALL_REQUISITIONS,
    Permission.APPROVE_REQUISITION,
    Permission.REJECT_REQUISITION,
    Permission.DOWNLOAD_ATTACHMENTS,
})

FINANCE_PERMISSIONS: FrozenSet[Permission] = frozenset({
    Permission.CREATE_REQUISITION,
    Permission.VIEW_ALL_REQUISITIONS,
    Permission.APPROVE_REQUISITION,
    Permission.REJECT_REQUISITION,
    Permission.RECORD_PAYMENT,
    Permission.VIEW_AUDIT_TRAIL,
    Permission.DOWNLOAD_ATTACHMENTS,
})

ADMIN_PERMISSIONS: FrozenSet[Permission] = frozenset(Permission)


ROLE_PERMISSIONS: Dict[Role, FrozenSet[Permission]] = {
    Role.STAFF: STAFF_PERMISSIONS,
    Role.MANAGER: MANAGER_PERMISSIONS,
    Role.FINANCE: FINANCE_PERMISSIONS,
    Role.ADMIN: ADMIN_PERMISSIONS,
}


def get_role_permissions(role: Role) -> FrozenSet[Permission]:
    """Get the permission set of a role."""
    return ROLE_PERMISSIONS[role]
