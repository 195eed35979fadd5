"""Error taxonomy for the approval workflow engine.

Every error raised to callers derives from ``WorkflowError``. All of them
are raised before or instead of a state mutation; none are retried by the
engine. Failures of post-commit hooks (audit recording, notification
dispatch) never surface as these errors: they are logged and swallowed.
"""

from typing import Any, Iterable, Optional
from uuid import UUID


class WorkflowError(Exception):
    """Base class for engine errors."""

    code = "workflow_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(WorkflowError):
    """Malformed input, rejected before any state mutation."""

    code = "validation_error"

    def __init__(self, message: str, errors: Optional[list[dict[str, Any]]] = None):
        super().__init__(message)
        self.errors = errors or []

    @classmethod
    def from_pydantic(cls, exc, message: str = "Invalid input") -> "ValidationError":
        errors = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
            for err in exc.errors()
        ]
        return cls(message, errors)


class NotFoundError(WorkflowError):
    """Unknown requisition, step or rule id."""

    code = "not_found"

    def __init__(self, resource: str, resource_id: Any):
        super().__init__(f"{resource} {resource_id} not found")
        self.resource = resource
        self.resource_id = resource_id


class NotAuthorizedError(WorkflowError):
    """Actor lacks the role, permission or assignee match."""

    code = "not_authorized"


class InvalidTransitionError(WorkflowError):
    """Attempted transition is not legal from the current state."""

    code = "invalid_transition"

    def __init__(self, message: str, from_status: Optional[str] = None, transition: Optional[str] = None):
        super().__init__(message)
        self.from_status = from_status
        self.transition = transition


class StepOutOfOrderError(InvalidTransitionError):
    """A pending step was targeted while an earlier step is still pending."""

    code = "step_out_of_order"


class StepsAlreadyCreatedError(InvalidTransitionError):
    """Approval steps already exist for the requisition."""

    code = "steps_already_created"


class ConcurrentTransitionError(InvalidTransitionError):
    """The requisition changed underneath the transition (version check lost)."""

    code = "concurrent_transition"


class NotPendingError(WorkflowError):
    """The step was already decided. Also the signal for losing a race."""

    code = "not_pending"

    def __init__(self, step_id: UUID, status: str):
        super().__init__(f"Approval step {step_id} is not pending (status: {status})")
        self.step_id = step_id
        self.status = status


class ApprovalConfigurationError(WorkflowError):
    """Approval rules cannot produce a chain for the requisition."""

    code = "approval_configuration_error"


class NoMatchingRuleError(ApprovalConfigurationError):
    code = "no_matching_rule"


class ConflictingRuleError(ApprovalConfigurationError):
    code = "conflicting_rules"

    def __init__(self, message: str, rule_ids: Iterable[Any] = ()):
        super().__init__(message)
        self.rule_ids = list(rule_ids)


class EmptyApprovalChainError(ApprovalConfigurationError):
    code = "empty_approval_chain"


class AuditImmutableError(WorkflowError):
    """Audit entries cannot be updated or deleted."""

    code = "audit_immutable"
