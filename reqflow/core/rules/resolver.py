"""Approval rule resolution.

Given a requisition's attributes, picks the single applicable approval
rule and returns its ordered step list. ``resolve_steps`` is pure: it only
reads the rule definitions it is handed. ``ApprovalRuleResolver`` loads
the active rules from the database and delegates to it.

Matching:
- amount bands are half-open, ``min_amount <= amount < max_amount``;
  a null upper bound is unbounded
- null category, department or currency on a rule match any value
- extra conditions must all hold

Tie-break (``most_specific``, the default): department-scoped beats
global, then category-scoped, then currency-scoped, then more extra
conditions, then the higher ``min_amount``. Two rules equal on all of
those raise ``ConflictingRuleError``. Under ``strict`` any second match
raises ``ConflictingRuleError``.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
import logging
from typing import Any, Dict, Iterable, List, Mapping, NamedTuple, Optional, Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from reqflow.core.errors import (
    ConflictingRuleError,
    EmptyApprovalChainError,
    NoMatchingRuleError,
)
from reqflow.core.rbac.roles import Role
from .conditions import Condition, ConditionOperator, evaluate_condition

logger = logging.getLogger(__name__)


class ConflictPolicy(str, Enum):
    """How to treat more than one matching rule."""

    MOST_SPECIFIC = "most_specific"
    STRICT = "strict"


class ResolvedStep(NamedTuple):
    """One approver slot produced by rule resolution."""
    role: Role
    assignee_id: Optional[UUID] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "role": self.role.value,
            "assignee_id": str(self.assignee_id) if self.assignee_id else None,
        }


def parse_steps(raw_steps: Iterable[Any]) -> List[ResolvedStep]:
    """
    Parse stored step definitions.

    Accepts ``{"role": ..., "assignee_id": ...}`` dicts or bare role names.
    Raises ValueError on unknown roles or malformed ids.
    """
    steps = []
    for raw in raw_steps or []:
        if isinstance(raw, Mapping):
            role = Role.parse(raw.get("role"))
            assignee = raw.get("assignee_id")
            assignee_id = assignee if isinstance(assignee, UUID) else (UUID(str(assignee)) if assignee else None)
        else:
            role = Role.parse(raw)
            assignee_id = None
        steps.append(ResolvedStep(role=role, assignee_id=assignee_id))
    return steps


@dataclass(frozen=True)
class RuleDefinition:
    """Read-only snapshot of an approval rule used for evaluation."""
    id: Any
    name: str
    steps: tuple
    min_amount: Decimal = Decimal("0")
    max_amount: Optional[Decimal] = None
    category: Optional[str] = None
    department_id: Optional[UUID] = None
    currency: Optional[str] = None
    conditions: tuple = ()

    @classmethod
    def from_model(cls, rule) -> "RuleDefinition":
        """Snapshot an ApprovalRule row. Malformed extra conditions raise ValueError."""
        return cls(
            id=rule.id,
            name=rule.name,
            steps=tuple(parse_steps(rule.steps)),
            min_amount=Decimal(str(rule.min_amount if rule.min_amount is not None else 0)),
            max_amount=Decimal(str(rule.max_amount)) if rule.max_amount is not None else None,
            category=rule.category,
            department_id=rule.department_id,
            currency=rule.currency,
            conditions=tuple(Condition.from_dict(c) for c in (rule.conditions or [])),
        )

    def predicate(self) -> List[Condition]:
        """Expand the rule's fixed columns plus extra conditions into one conjunction."""
        conditions = [Condition("amount", ConditionOperator.GREATER_THAN_OR_EQUAL, self.min_amount)]
        if self.max_amount is not None:
            conditions.append(Condition("amount", ConditionOperator.LESS_THAN, self.max_amount))
        if self.category:
            conditions.append(Condition("category", ConditionOperator.EQUALS, self.category))
        if self.department_id:
            conditions.append(Condition("department_id", ConditionOperator.EQUALS, str(self.department_id)))
        if self.currency:
            conditions.append(Condition("currency", ConditionOperator.EQUALS, self.currency))
        conditions.extend(self.conditions)
        return conditions

    def matches(self, context: Dict[str, Any]) -> bool:
        return all(evaluate_condition(c, context) for c in self.predicate())

    def specificity(self) -> tuple:
        return (
            self.department_id is not None,
            self.category is not None,
            self.currency is not None,
            len(self.conditions),
            self.min_amount,
        )


@dataclass
class Resolution:
    """Outcome of rule resolution for one requisition."""
    steps: List[ResolvedStep]
    rule_id: Any = None
    rule_name: Optional[str] = None
    candidates: List[Any] = field(default_factory=list)

    @property
    def is_fallback(self) -> bool:
        return self.rule_id is None

    def to_snapshot(self) -> Dict[str, Any]:
        """Serializable record of what was resolved, stored on the requisition."""
        return {
            "rule_id": str(self.rule_id) if self.rule_id else None,
            "rule_name": self.rule_name,
            "fallback": self.is_fallback,
            "steps": [s.to_dict() for s in self.steps],
        }


def build_context(attributes: Mapping[str, Any]) -> Dict[str, Any]:
    """Build the evaluation context from requisition attributes."""
    amount = attributes.get("amount")
    department_id = attributes.get("department_id")
    return {
        **attributes,
        "amount": Decimal(str(amount)) if amount is not None else None,
        "department_id": str(department_id) if department_id else None,
    }


def resolve_steps(
    attributes: Mapping[str, Any],
    rules: Sequence[RuleDefinition],
    *,
    policy: ConflictPolicy = ConflictPolicy.MOST_SPECIFIC,
    fallback_roles: Sequence[Role] = (),
) -> Resolution:
    """
    Resolve the ordered approval chain for a requisition.

    Args:
        attributes: Requisition attributes (amount, currency, category, department_id, ...)
        rules: Active rule definitions
        policy: Treatment of multiple matches
        fallback_roles: Chain used when nothing matches; empty means no fallback

    Returns:
        Resolution with at least one step

    Raises:
        NoMatchingRuleError: No rule matches and no fallback is configured
        ConflictingRuleError: The match is ambiguous under the policy
        EmptyApprovalChainError: The selected rule defines no steps
    """
    context = build_context(attributes)
    matched = [rule for rule in rules if rule.matches(context)]

    if not matched:
        if fallback_roles:
            logger.info("No approval rule matched; using fallback chain %s",
                        [r.value for r in fallback_roles])
            return Resolution(steps=[ResolvedStep(role=r) for r in fallback_roles])
        raise NoMatchingRuleError(
            f"No active approval rule matches amount={context.get('amount')} "
            f"category={context.get('category')} department={context.get('department_id')}"
        )

    if len(matched) > 1:
        if policy == ConflictPolicy.STRICT:
            raise ConflictingRuleError(
                f"{len(matched)} approval rules match: {', '.join(r.name for r in matched)}",
                [r.id for r in matched],
            )
        matched.sort(key=lambda r: r.specificity(), reverse=True)
        if matched[0].specificity() == matched[1].specificity():
            tied = [r for r in matched if r.specificity() == matched[0].specificity()]
            raise ConflictingRuleError(
                f"Approval rules are equally specific: {', '.join(r.name for r in tied)}",
                [r.id for r in tied],
            )

    selected = matched[0]
    if not selected.steps:
        raise EmptyApprovalChainError(f"Approval rule {selected.name} defines no approval steps")

    return Resolution(
        steps=list(selected.steps),
        rule_id=selected.id,
        rule_name=selected.name,
        candidates=[r.id for r in matched],
    )


class ApprovalRuleResolver:
    """Loads active approval rules and resolves requisition step lists."""

    def __init__(
        self,
        db: Session,
        *,
        policy: ConflictPolicy = ConflictPolicy.MOST_SPECIFIC,
        fallback_roles: Sequence[Role] = (),
    ):
        self.db = db
        self.policy = ConflictPolicy(policy)
        self.fallback_roles = tuple(fallback_roles)

    @classmethod
    def from_settings(cls, db: Session, settings) -> "ApprovalRuleResolver":
        return cls(
            db,
            policy=ConflictPolicy(settings.rule_conflict_policy),
            fallback_roles=[Role.parse(r) for r in settings.fallback_approver_roles_list],
        )

    def load_rules(self) -> List[RuleDefinition]:
        from reqflow.db.models import ApprovalRule

        rows = self.db.query(ApprovalRule).filter(
            ApprovalRule.is_active.is_(True)
        ).order_by(ApprovalRule.name.asc()).all()

        definitions = []
        for row in rows:
            try:
                definitions.append(RuleDefinition.from_model(row))
            except (ValueError, KeyError) as e:
                logger.warning("Skipping malformed approval rule %s: %s", row.name, e)
        return definitions

    def resolve(self, attributes: Mapping[str, Any]) -> Resolution:
        return resolve_steps(
            attributes,
            self.load_rules(),
            policy=self.policy,
            fallback_roles=self.fallback_roles,
        )
