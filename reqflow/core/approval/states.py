"""Requisition and approval step states and transitions.

State Machine Diagram:

    ┌──────────┐
    │  DRAFT   │ ← Initial state (owned by the submitter)
    └────┬─────┘
         │ submit (rules resolved, steps created, one commit)
    ┌────▼────────┐
    │ IN_APPROVAL │◄──┐ advance (a step approved, more remain)
    └────┬────────┘───┘
         │
         ├──────────────────────┐
         │ approve (last step)  │ reject / reject_all
    ┌────▼─────┐          ┌─────▼────┐
    │ APPROVED │          │ REJECTED │
    └────┬─────┘          └──────────┘
         │ record_payment
    ┌────▼─────┐
    │   PAID   │
    └──────────┘

Any non-terminal state → CANCELLED (administrative cancellation).

Step states: PENDING → APPROVED | REJECTED | SKIPPED. A step left PENDING after
the requisition was rejected stays PENDING; cancelling a requisition in
approval marks its PENDING steps SKIPPED.
"""

from enum import Enum
from typing import Dict, NamedTuple, Optional, Set

from reqflow.core.rbac.roles import Permission


class RequisitionStatus(str, Enum):
    """Top-level requisition status."""

    DRAFT = "DRAFT"
    IN_APPROVAL = "IN_APPROVAL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


class StepStatus(str, Enum):
    """Status of a single approval step."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    SKIPPED = "SKIPPED"


class RequisitionTransition(str, Enum):
    """Actions that trigger requisition state transitions."""

    SUBMIT = "submit"                  # DRAFT → IN_APPROVAL
    ADVANCE = "advance"                # IN_APPROVAL → IN_APPROVAL
    APPROVE = "approve"                # IN_APPROVAL → APPROVED
    REJECT = "reject"                  # IN_APPROVAL → REJECTED
    REJECT_ALL = "reject_all"          # IN_APPROVAL → REJECTED (admin override)
    RECORD_PAYMENT = "record_payment"  # APPROVED → PAID
    CANCEL = "cancel"                  # DRAFT/IN_APPROVAL → CANCELLED


class TransitionRule(NamedTuple):
    """Defines a valid state transition."""
    from_state: RequisitionStatus
    to_state: RequisitionStatus
    transition: RequisitionTransition
    requires_permission: Optional[Permission] = None
    requires_comment: bool = False


TRANSITION_RULES: list[TransitionRule] = [
    TransitionRule(RequisitionStatus.DRAFT, RequisitionStatus.IN_APPROVAL, RequisitionTransition.SUBMIT,
                   Permission.CREATE_REQUISITION),

    # Step decisions
    TransitionRule(RequisitionStatus.IN_APPROVAL, RequisitionStatus.IN_APPROVAL, RequisitionTransition.ADVANCE,
                   Permission.APPROVE_REQUISITION),
    TransitionRule(RequisitionStatus.IN_APPROVAL, RequisitionStatus.APPROVED, RequisitionTransition.APPROVE,
                   Permission.APPROVE_REQUISITION),
    TransitionRule(RequisitionStatus.IN_APPROVAL, RequisitionStatus.REJECTED, RequisitionTransition.REJECT,
                   Permission.REJECT_REQUISITION, requires_comment=True),
    TransitionRule(RequisitionStatus.IN_APPROVAL, RequisitionStatus.REJECTED, RequisitionTransition.REJECT_ALL,
                   Permission.OVERRIDE_APPROVALS, requires_comment=True),

    # Downstream payment recording
    TransitionRule(RequisitionStatus.APPROVED, RequisitionStatus.PAID, RequisitionTransition.RECORD_PAYMENT,
                   Permission.RECORD_PAYMENT),

    # Administrative cancellation
    TransitionRule(RequisitionStatus.DRAFT, RequisitionStatus.CANCELLED, RequisitionTransition.CANCEL,
                   Permission.CANCEL_REQUISITION, requires_comment=True),
    TransitionRule(RequisitionStatus.IN_APPROVAL, RequisitionStatus.CANCELLED, RequisitionTransition.CANCEL,
                   Permission.CANCEL_REQUISITION, requires_comment=True),
]

# Lookup tables
VALID_TRANSITIONS: Dict[RequisitionStatus, Set[RequisitionTransition]] = {}
TRANSITION_TARGETS: Dict[tuple[RequisitionStatus, RequisitionTransition], TransitionRule] = {}

for rule in TRANSITION_RULES:
    VALID_TRANSITIONS.setdefault(rule.from_state, set()).add(rule.transition)
    TRANSITION_TARGETS[(rule.from_state, rule.transition)] = rule


TERMINAL_STATES: Set[RequisitionStatus] = {
    RequisitionStatus.APPROVED,
    RequisitionStatus.REJECTED,
    RequisitionStatus.PAID,
    RequisitionStatus.CANCELLED,
}


def can_transition(from_state: RequisitionStatus, transition: RequisitionTransition) -> bool:
    """Check if a transition is valid from the given state."""
    return transition in VALID_TRANSITIONS.get(from_state, set())


def get_transition_rule(
    from_state: RequisitionStatus, transition: RequisitionTransition
) -> Optional[TransitionRule]:
    """Get the transition rule for a state/action combination."""
    return TRANSITION_TARGETS.get((from_state, transition))


def get_target_state(
    from_state: RequisitionStatus, transition: RequisitionTransition
) -> Optional[RequisitionStatus]:
    """Get the target state for a transition."""
    rule = get_transition_rule(from_state, transition)
    return rule.to_state if rule else None
