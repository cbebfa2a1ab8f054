"""Permit lifecycle: states, pure decision engine and typed errors.

The database-backed controller lives in ``ptw.core.lifecycle.controller``
and is imported from there, since the models depend on this package.
"""

from .states import (
    PermitStatus,
    PermitTransition,
    SlotStatus,
    ExtensionStatus,
    ApproverRole,
    UserRole,
    NotificationCategory,
    VALID_TRANSITIONS,
)
from .engine import ApprovalEngine, ApproverSlot, ClosureChecklist, Decision, NotificationEvent
from .errors import (
    LifecycleError,
    NotFoundError,
    UnauthorizedError,
    InvalidStateError,
    ValidationError,
    AlreadyDecidedError,
    StorageFailure,
)

__all__ = [
    "PermitStatus",
    "PermitTransition",
    "SlotStatus",
    "ExtensionStatus",
    "ApproverRole",
    "UserRole",
    "NotificationCategory",
    "VALID_TRANSITIONS",
    "ApprovalEngine",
    "ApproverSlot",
    "ClosureChecklist",
    "Decision",
    "NotificationEvent",
    "LifecycleError",
    "NotFoundError",
    "UnauthorizedError",
    "InvalidStateError",
    "ValidationError",
    "AlreadyDecidedError",
    "StorageFailure",
]
