"""Requisition state machine implementation.

Validates transitions, checks role permissions and required comments.
Persistence is the caller's job (see ``RequisitionWorkflow``).
"""

from typing import Optional

from reqflow.core.errors import InvalidTransitionError, NotAuthorizedError, ValidationError
from reqflow.core.rbac import Actor, PermissionChecker
from .states import (
    RequisitionStatus,
    RequisitionTransition,
    TransitionRule,
    can_transition,
    get_transition_rule,
    TERMINAL_STATES,
)


class RequisitionStateMachine:
    """
    State machine for the requisition approval workflow.

    Manages transitions between requisition states with:
    - Validation of valid transitions
    - Permission checking for protected transitions
    - Required comment enforcement
    """

    def __init__(self, requisition_id, current_state: RequisitionStatus, actor: Actor):
        """
        Initialize the state machine.

        Args:
            requisition_id: ID of the requisition
            current_state: Current requisition status
            actor: Identity attempting transitions
        """
        self.requisition_id = requisition_id
        self._state = RequisitionStatus(current_state)
        self.actor = actor
        self._checker = PermissionChecker(actor.role)

    @property
    def state(self) -> RequisitionStatus:
        """Current state of the requisition."""
        return self._state

    @property
    def is_terminal(self) -> bool:
        """Check if current state is terminal (no further transitions)."""
        return self._state in TERMINAL_STATES

    def can_perform(self, transition: RequisitionTransition) -> bool:
        """Check if a transition can be performed from current state by this actor."""
        if not can_transition(self._state, transition):
            return False

        rule = get_transition_rule(self._state, transition)
        if rule and rule.requires_permission:
            if not self._checker.has_permission(rule.requires_permission):
                return False

        return True

    def get_available_transitions(self) -> list[RequisitionTransition]:
        """Get list of transitions available from current state."""
        return [t for t in RequisitionTransition if self.can_perform(t)]

    def check(
        self,
        transition: RequisitionTransition,
        *,
        comment: Optional[str] = None,
        enforce_permission: bool = True,
    ) -> TransitionRule:
        """
        Validate a transition without applying it.

        Step decisions pass ``enforce_permission=False``: eligibility for a
        step is decided by the ledger (assignee or required role).

        Raises:
            InvalidTransitionError: If the transition is invalid from the current state
            NotAuthorizedError: If the actor's role lacks the required permission
            ValidationError: If a required comment is missing
        """
        rule = get_transition_rule(self._state, transition)
        if rule is None:
            raise InvalidTransitionError(
                f"Cannot perform {transition.value} from state {self._state.value}",
                self._state.value,
                transition.value,
            )

        if enforce_permission and rule.requires_permission and not self._checker.has_permission(rule.requires_permission):
            raise NotAuthorizedError(
                f"Role {self.actor.role.value} cannot {transition.value}: "
                f"requires {rule.requires_permission.value}"
            )

        if rule.requires_comment and not (comment and comment.strip()):
            raise ValidationError(
                f"Transition {transition.value} requires a comment",
                [{"loc": ["comment"], "msg": "Comment is required", "type": "missing"}],
            )

        return rule

    def transition(
        self,
        transition: RequisitionTransition,
        *,
        comment: Optional[str] = None,
        enforce_permission: bool = True,
    ) -> RequisitionStatus:
        """
        Perform a state transition.

        Returns:
            The new state after transition
        """
        rule = self.check(transition, comment=comment, enforce_permission=enforce_permission)
        self._state = rule.to_state
        return self._state
