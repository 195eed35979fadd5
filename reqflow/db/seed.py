"""Seed approval rules from a YAML file.

Seeding is idempotent by rule name: rules that already exist are left
alone, so re-running never overwrites administrator edits.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List

import yaml
from sqlalchemy.orm import Session

from reqflow.core.errors import ValidationError
from reqflow.core.rbac import Actor, Role
from reqflow.db.models import ApprovalRule
from reqflow.services.approval_rules import ApprovalRuleService

logger = logging.getLogger(__name__)


def load_rules_file(path: str) -> List[Dict[str, Any]]:
    """Load rule definitions from YAML.

    Args:
        path: Path to the rules file

    Returns:
        List of rule dictionaries

    Raises:
        FileNotFoundError: If the file doesn't exist
        yaml.YAMLError: If the file is invalid YAML
        TypeError: If the file is not a list of rules or a mapping with ``rules``
    """
    rules_file = Path(path)
    if not rules_file.exists():
        raise FileNotFoundError(f"Approval rules file not found: {path}")

    with rules_file.open("r") as f:
        data = yaml.safe_load(f)

    if data is None:
        return []
    if isinstance(data, dict):
        data = data.get("rules", [])
    if not isinstance(data, list):
        raise TypeError(f"Approval rules must be a list, got {type(data).__name__}")
    return [_expand_env_vars(rule) for rule in data]


def _expand_env_vars(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {key: _expand_env_vars(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(item) for item in obj]
    elif isinstance(obj, str):
        return os.path.expandvars(obj)
    return obj


def seed_approval_rules(db: Session, rules: List[Dict[str, Any]], actor: Actor) -> List[ApprovalRule]:
    """Create every rule whose name is not taken yet; returns the created rules."""
    service = ApprovalRuleService(db)
    created = []
    for definition in rules:
        name = definition.get("name")
        if name and db.query(ApprovalRule.id).filter(ApprovalRule.name == name).first():
            logger.debug("Approval rule %s already present, skipping", name)
            continue
        try:
            created.append(service.create_rule(actor, definition))
        except ValidationError as e:
            logger.error("Invalid approval rule %r in seed data: %s %s", name, e.message, e.errors)
            raise
    logger.info("Seeded %d approval rule(s)", len(created))
    return created


def seed_from_settings(db: Session, settings) -> List[ApprovalRule]:
    """Seed from ``settings.approval_rules_file`` if one is configured."""
    if not settings.approval_rules_file:
        return []
    system_actor = Actor(id=settings.system_actor_id, role=Role.ADMIN)
    return seed_approval_rules(db, load_rules_file(settings.approval_rules_file), system_actor)
