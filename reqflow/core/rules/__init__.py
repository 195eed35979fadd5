"""Approval rule evaluation."""

from .conditions import Condition, ConditionOperator, evaluate_condition
from .resolver import (
    ApprovalRuleResolver,
    ConflictPolicy,
    Resolution,
    ResolvedStep,
    RuleDefinition,
    parse_steps,
    resolve_steps,
)
from .directory import ApproverDirectory, StaticApproverDirectory, assign_approvers

__all__ = [
    "Condition",
    "ConditionOperator",
    "evaluate_condition",
    "ApprovalRuleResolver",
    "ConflictPolicy",
    "Resolution",
    "ResolvedStep",
    "RuleDefinition",
    "parse_steps",
    "resolve_steps",
    "ApproverDirectory",
    "StaticApproverDirectory",
    "assign_approvers",
]
