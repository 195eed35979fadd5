"""Requisition approval workflow.

States and the state machine live here; the persistence-backed pieces
(``ledger``, ``service``, ``runtime``) import the ORM models and are
imported from their modules directly.
"""

from .states import RequisitionStatus, RequisitionTransition, StepStatus, VALID_TRANSITIONS
from .machine import RequisitionStateMachine

__all__ = [
    "RequisitionStatus",
    "RequisitionTransition",
    "StepStatus",
    "VALID_TRANSITIONS",
    "RequisitionStateMachine",
]
