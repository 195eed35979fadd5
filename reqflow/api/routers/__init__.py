"""API routers for reqflow."""

from . import approval_rules
from . import audit
from . import requisitions

__all__ = [
    "approval_rules",
    "audit",
    "requisitions",
]
