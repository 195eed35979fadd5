"""Condition primitives for approval rule predicates.

A rule's predicate is a conjunction of conditions over requisition
attributes. The fixed columns of a rule (amount band, category,
department, currency) are expanded into conditions; rules may add extra
conditions over any other attribute, e.g. urgency level.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
import re
from typing import Any, Dict, Optional


class ConditionOperator(str, Enum):
    """Operators for condition comparisons."""

    EQUALS = "eq"
    NOT_EQUALS = "ne"
    GREATER_THAN = "gt"
    GREATER_THAN_OR_EQUAL = "gte"
    LESS_THAN = "lt"
    LESS_THAN_OR_EQUAL = "lte"
    IN = "in"
    NOT_IN = "not_in"
    CONTAINS = "contains"
    MATCHES = "matches"           # Regex match
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"


NUMERIC_OPERATORS = frozenset({
    ConditionOperator.GREATER_THAN,
    ConditionOperator.GREATER_THAN_OR_EQUAL,
    ConditionOperator.LESS_THAN,
    ConditionOperator.LESS_THAN_OR_EQUAL,
})


@dataclass(frozen=True)
class Condition:
    """A single comparison of one requisition attribute against a value."""
    field: str
    operator: ConditionOperator
    value: Any = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert condition to dictionary for serialization."""
        value = self.value
        if isinstance(value, Decimal):
            value = str(value)
        return {
            "field": self.field,
            "operator": self.operator.value,
            "value": value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Condition":
        """Create condition from dictionary; raises ValueError/KeyError on bad input."""
        field = data["field"]
        if not field or not isinstance(field, str):
            raise ValueError("Condition field must be a non-empty string")
        return cls(
            field=field,
            operator=ConditionOperator(data["operator"]),
            value=data.get("value"),
        )


def _normalize(value: Any) -> Any:
    """Case-fold strings so category/urgency comparisons are case-insensitive."""
    if isinstance(value, str):
        return value.strip().lower()
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_normalize(v) for v in value]
    return value


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def evaluate_condition(condition: Condition, context: Dict[str, Any]) -> bool:
    """
    Evaluate a condition against requisition attributes.

    Comparison errors (missing attribute, incomparable types, bad regex)
    make the condition fail: a rule never matches on input it cannot judge.
    """
    actual = context.get(condition.field)
    operator = condition.operator
    expected = condition.value

    if operator == ConditionOperator.EXISTS:
        return actual is not None
    if operator == ConditionOperator.NOT_EXISTS:
        return actual is None
    if actual is None:
        return False

    try:
        if operator in NUMERIC_OPERATORS:
            left, right = _to_decimal(actual), _to_decimal(expected)
            if left is None or right is None:
                return False
            if operator == ConditionOperator.GREATER_THAN:
                return left > right
            if operator == ConditionOperator.GREATER_THAN_OR_EQUAL:
                return left >= right
            if operator == ConditionOperator.LESS_THAN:
                return left < right
            return left <= right

        if operator == ConditionOperator.MATCHES:
            return re.search(str(expected), str(actual), re.IGNORECASE) is not None

        left, right = _normalize(actual), _normalize(expected)
        if operator == ConditionOperator.EQUALS:
            return left == right
        elif operator == ConditionOperator.NOT_EQUALS:
            return left != right
        elif operator == ConditionOperator.IN:
            return left in right
        elif operator == ConditionOperator.NOT_IN:
            return left not in right
        elif operator == ConditionOperator.CONTAINS:
            return right in left
    except (TypeError, re.error):
        return False

    return False
