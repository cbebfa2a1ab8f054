"""Typed failures raised by the permit lifecycle.

Each error carries a stable ``code`` and the HTTP status the API layer
answers with, so callers can tell "not your permit", "already decided"
and "wrong stage" apart.
"""

from typing import Iterable, Optional

from .states import PermitStatus, PermitTransition


class LifecycleError(Exception):
    """Base class for all lifecycle failures."""

    code = "lifecycle_error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(LifecycleError):
    """Referenced permit, extension or approver slot does not exist."""

    code = "not_found"
    status_code = 404


class UnauthorizedError(LifecycleError):
    """Caller is not the bound approver or owner for the action."""

    code = "not_authorized"
    status_code = 403


class InvalidStateError(LifecycleError):
    """Action attempted outside its required stage."""

    code = "wrong_stage"
    status_code = 400

    def __init__(
        self,
        message: str,
        *,
        current: Optional[PermitStatus] = None,
        transition: Optional[PermitTransition] = None,
        required: Iterable[PermitStatus] = (),
    ):
        super().__init__(message)
        self.current = current
        self.transition = transition
        self.required = list(required)


class ValidationError(LifecycleError):
    """Missing or malformed payload."""

    code = "validation_error"
    status_code = 400

    def __init__(self, message: str, *, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class AlreadyDecidedError(LifecycleError):
    """The approver slot already holds a decision."""

    code = "already_decided"
    status_code = 400


class StorageFailure(LifecycleError):
    """The entity store failed; the unit of work was rolled back."""

    code = "storage_failure"
    status_code = 503
