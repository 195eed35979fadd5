"""Approver directory.

Resolves a step's required role to a specific person in the requisition's
department when the step is created. The assignee is recorded on the step
and stays authoritative afterwards, even if the person's role changes.
"""

import logging
from typing import Dict, List, Mapping, Optional, Protocol, Tuple
from uuid import UUID

from reqflow.core.rbac.roles import Role
from .resolver import Resolution, ResolvedStep

logger = logging.getLogger(__name__)


class ApproverDirectory(Protocol):
    """Protocol for the user directory consulted at submission."""

    def find_approver(self, role: Role, department_id: Optional[UUID]) -> Optional[UUID]: ...


class StaticApproverDirectory:
    """
    In-memory directory keyed by ``(role, department_id)``.

    A ``None`` department entry is the organisation-wide approver for that
    role and is used when the department has none of its own.
    """

    def __init__(self, entries: Optional[Mapping[Tuple[Role, Optional[UUID]], UUID]] = None):
        self._entries: Dict[Tuple[Role, Optional[UUID]], UUID] = {}
        for (role, department_id), user_id in (entries or {}).items():
            self.add(role, department_id, user_id)

    def add(self, role: Role, department_id: Optional[UUID], user_id: UUID) -> None:
        self._entries[(Role.parse(role), department_id)] = user_id

    def find_approver(self, role: Role, department_id: Optional[UUID]) -> Optional[UUID]:
        return self._entries.get((role, department_id)) or self._entries.get((role, None))


def assign_approvers(
    resolution: Resolution,
    directory: Optional[ApproverDirectory],
    department_id: Optional[UUID],
) -> Resolution:
    """
    Fill in assignees for role-only steps.

    Steps that already name an assignee keep it. Without a directory, or
    when it knows nobody for a role, the step stays role-only.
    """
    if directory is None:
        return resolution

    steps: List[ResolvedStep] = []
    for step in resolution.steps:
        if step.assignee_id is None:
            assignee_id = directory.find_approver(step.role, department_id)
            if assignee_id is None:
                logger.debug("No %s approver in department %s; step stays role-only",
                             step.role.value, department_id)
            step = step._replace(assignee_id=assignee_id)
        steps.append(step)

    resolution.steps = steps
    return resolution
