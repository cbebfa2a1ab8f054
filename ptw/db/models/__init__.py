"""Database models for the permit-to-work service."""

from ptw.db.models.user import User
from ptw.db.models.permit import (
    Permit,
    PermitTeamMember,
    PermitHazard,
    PermitPPE,
    PermitChecklistResponse,
    PermitClosure,
    PermitHistory,
)
from ptw.db.models.extension import ExtensionRequest
from ptw.db.models.notification import Notification

__all__ = [
    "User",
    "Permit",
    "PermitTeamMember",
    "PermitHazard",
    "PermitPPE",
    "PermitChecklistResponse",
    "PermitClosure",
    "PermitHistory",
    "ExtensionRequest",
    "Notification",
]
