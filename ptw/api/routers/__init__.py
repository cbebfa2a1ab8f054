"""API routers for the permit-to-work service."""

from . import permits
from . import approvals
from . import extensions
from . import notifications
from . import health
from . import users

__all__ = [
    "permits",
    "approvals",
    "extensions",
    "notifications",
    "health",
    "users",
]
