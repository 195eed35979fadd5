"""Database models for reqflow."""

from reqflow.db.models.requisition import Requisition, ApprovalStep
from reqflow.db.models.rule import ApprovalRule
from reqflow.db.models.audit import AuditEntry, AuditAction, ATTACHMENT_ACTIONS

__all__ = [
    "Requisition",
    "ApprovalStep",
    "ApprovalRule",
    "AuditEntry",
    "AuditAction",
    "ATTACHMENT_ACTIONS",
]
