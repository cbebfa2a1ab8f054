"""Permit authoring: creation and deletion of permits.

A new permit is written with all of its child rows and its approver
slots in one transaction. Approvers are told about the permit only after
that transaction has committed.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from ptw.common.timeutil import to_utc_naive, utcnow
from ptw.core.config import Settings, get_settings
from ptw.core.lifecycle.controller import CurrentUser, NotificationSink
from ptw.core.lifecycle.engine import NotificationEvent, render_message, seed_slots
from ptw.core.lifecycle.errors import (
    InvalidStateError,
    NotFoundError,
    StorageFailure,
    UnauthorizedError,
    ValidationError,
)
from ptw.core.lifecycle.states import (
    DELETABLE_STATES,
    USER_ROLE_FOR_SLOT,
    ApproverRole,
    NotificationCategory,
    PermitStatus,
    PermitTransition,
    UserRole,
)
from ptw.db.models import (
    Permit,
    PermitChecklistResponse,
    PermitHazard,
    PermitHistory,
    PermitPPE,
    PermitTeamMember,
    User,
)
from ptw.db.session import unit_of_work

logger = logging.getLogger(__name__)

CHECKLIST_RESPONSES = ("Yes", "No", "NA")

# Roles allowed to raise a permit
AUTHOR_ROLES = {UserRole.REQUESTER, UserRole.ADMIN}


@dataclass(frozen=True)
class TeamMemberDraft:
    worker_name: str
    company_name: Optional[str] = None
    badge_id: Optional[str] = None
    worker_role: Optional[str] = None
    contact_number: Optional[str] = None


@dataclass(frozen=True)
class ChecklistAnswer:
    question_id: str
    response: str
    remarks: Optional[str] = None


@dataclass(frozen=True)
class PermitDraft:
    """Everything a requester supplies when raising a permit."""

    work_description: str
    work_location: str
    start_time: datetime
    end_time: datetime
    approvers: Dict[ApproverRole, Optional[UUID]]
    permit_types: List[str] = field(default_factory=list)
    site_name: Optional[str] = None
    receiver_name: Optional[str] = None
    receiver_contact: Optional[str] = None
    issue_department: Optional[str] = None
    issuer_signature: Optional[str] = None
    control_measures: Optional[str] = None
    other_hazards: Optional[str] = None
    team_members: List[TeamMemberDraft] = field(default_factory=list)
    hazard_codes: List[str] = field(default_factory=list)
    ppe_codes: List[str] = field(default_factory=list)
    checklist: List[ChecklistAnswer] = field(default_factory=list)


@dataclass(frozen=True)
class CreatedPermit:
    permit_id: UUID
    permit_serial: str
    status: PermitStatus


def format_serial(number: int, prefix: str = "PTW", width: int = 4) -> str:
    """Human-facing serial, e.g. PTW-0007. Numbers wider than ``width`` are not truncated."""
    return f"{prefix}-{number:0{width}d}"


class PermitAuthoringService:
    """
    Creates and deletes permits.

    Args:
        session_factory: SQLAlchemy ``sessionmaker``
        sink: Receives approval requests after a permit is created
        settings: Serial format and retry limit
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        sink: Optional[NotificationSink] = None,
        settings: Optional[Settings] = None,
        clock=utcnow,
    ):
        self.session_factory = session_factory
        self.sink = sink
        self.settings = settings or get_settings()
        self.clock = clock

    def create_permit(self, actor: CurrentUser, draft: PermitDraft) -> CreatedPermit:
        """
        Create a permit in status Initiated.

        Raises:
            UnauthorizedError: If the actor may not raise permits
            ValidationError: If the draft is incomplete or an approver is unusable
            StorageFailure: If the store fails; nothing is written
        """
        if actor.role not in AUTHOR_ROLES:
            raise UnauthorizedError(f"Role {actor.role.value} cannot create permits")
        self._validate(draft)
        slots = seed_slots(draft.approvers)
        now = self.clock()

        with unit_of_work(self.session_factory) as db:
            self._check_approvers(db, draft.approvers)

            permit = Permit(
                permit_types=list(draft.permit_types),
                work_description=draft.work_description.strip(),
                work_location=draft.work_location.strip(),
                site_name=draft.site_name,
                receiver_name=draft.receiver_name,
                receiver_contact=draft.receiver_contact,
                issue_department=draft.issue_department,
                issuer_signature=draft.issuer_signature,
                control_measures=draft.control_measures,
                other_hazards=draft.other_hazards,
                start_time=to_utc_naive(draft.start_time),
                end_time=to_utc_naive(draft.end_time),
                status=PermitStatus.INITIATED.value,
                created_by_user_id=actor.user_id,
                created_at=now,
                updated_at=now,
            )
            permit.set_slots(slots)

            for member in draft.team_members:
                permit.team_members.append(PermitTeamMember(
                    worker_name=member.worker_name,
                    company_name=member.company_name,
                    badge_id=member.badge_id,
                    worker_role=member.worker_role,
                    contact_number=member.contact_number,
                ))
            for code in dict.fromkeys(draft.hazard_codes):
                permit.hazards.append(PermitHazard(hazard_code=code))
            for code in dict.fromkeys(draft.ppe_codes):
                permit.ppe.append(PermitPPE(ppe_code=code))
            for answer in draft.checklist:
                permit.checklist_responses.append(PermitChecklistResponse(
                    question_id=answer.question_id,
                    response=answer.response,
                    remarks=answer.remarks,
                ))
            permit.history.append(PermitHistory(
                from_status=None,
                to_status=PermitStatus.INITIATED.value,
                transition=PermitTransition.CREATE.value,
                user_id=actor.user_id,
                user_role=actor.role.value,
                extra_data={},
                created_at=now,
            ))

            self._insert_with_serial(db, permit)
            created = CreatedPermit(
                permit_id=permit.id,
                permit_serial=permit.permit_serial,
                status=PermitStatus.INITIATED,
            )

        logger.info(f"Permit {created.permit_serial} created by user {actor.user_id}")

        events = [
            NotificationEvent(
                recipient_user_id=slot.user_id,
                permit_id=created.permit_id,
                category=NotificationCategory.APPROVAL_REQUEST,
                message=render_message(
                    NotificationCategory.APPROVAL_REQUEST, serial=created.permit_serial, role=role.label
                ),
            )
            for role, slot in slots.items()
            if slot.assigned
        ]
        self._dispatch(events)
        return created

    def delete_permit(self, actor: CurrentUser, permit_id: UUID) -> None:
        """
        Delete a permit and everything that hangs off it.

        Only the creator or an Admin may delete, and only while the permit
        is Initiated or Rejected.
        """
        with unit_of_work(self.session_factory) as db:
            permit = db.query(Permit).filter(Permit.id == permit_id).with_for_update().first()
            if permit is None:
                raise NotFoundError(f"Permit {permit_id} not found")
            if permit.created_by_user_id != actor.user_id and actor.role != UserRole.ADMIN:
                raise UnauthorizedError(f"Only the creator of permit {permit.permit_serial} can delete it")
            if permit.lifecycle_status not in DELETABLE_STATES:
                allowed = sorted(s.value for s in DELETABLE_STATES)
                raise InvalidStateError(
                    f"Cannot delete permit {permit.permit_serial}: current status is {permit.status}, "
                    f"must be {' or '.join(allowed)}",
                    current=permit.lifecycle_status,
                    required=DELETABLE_STATES,
                )
            serial = permit.permit_serial
            db.delete(permit)

        logger.info(f"Permit {serial} deleted by user {actor.user_id}")

    def _insert_with_serial(self, db: Session, permit: Permit) -> None:
        """Allocate the next serial number and insert the permit.

        The insert runs in a savepoint so a collision with a concurrent
        writer only discards this attempt.
        """
        limit = self.settings.serial_retry_limit
        for attempt in range(1, limit + 1):
            number = (db.query(func.max(Permit.serial_number)).scalar() or 0) + 1
            permit.serial_number = number
            permit.permit_serial = format_serial(number, self.settings.serial_prefix, self.settings.serial_width)
            try:
                with db.begin_nested():
                    db.add(permit)
                    db.flush()
                return
            except IntegrityError:
                logger.warning(f"Serial {permit.permit_serial} already taken (attempt {attempt}/{limit})")
        raise StorageFailure(f"Could not allocate a permit serial after {limit} attempts")

    @staticmethod
    def _validate(draft: PermitDraft) -> None:
        if not draft.work_description or not draft.work_description.strip():
            raise ValidationError("Work description is required", field="work_description")
        if not draft.work_location or not draft.work_location.strip():
            raise ValidationError("Work location is required", field="work_location")
        if not draft.permit_types:
            raise ValidationError("At least one permit type is required", field="permit_types")
        if draft.start_time is None or draft.end_time is None:
            raise ValidationError("Start and end time are required", field="start_time")
        if to_utc_naive(draft.end_time) <= to_utc_naive(draft.start_time):
            raise ValidationError("End time must be after start time", field="end_time")
        for member in draft.team_members:
            if not member.worker_name or not member.worker_name.strip():
                raise ValidationError("Every team member needs a name", field="team_members")
        for answer in draft.checklist:
            if answer.response not in CHECKLIST_RESPONSES:
                raise ValidationError(
                    f"Checklist response for {answer.question_id} must be one of {', '.join(CHECKLIST_RESPONSES)}",
                    field="checklist",
                )

    @staticmethod
    def _check_approvers(db: Session, approvers: Dict[ApproverRole, Optional[UUID]]) -> None:
        for role, user_id in approvers.items():
            if user_id is None:
                continue
            user = db.query(User).filter(User.id == user_id).first()
            if user is None or not user.is_active:
                raise ValidationError(
                    f"{role.label} approver {user_id} does not exist or is inactive",
                    field=f"{role.value}_id",
                )
            if user.role != USER_ROLE_FOR_SLOT[role].value:
                raise ValidationError(
                    f"User {user.email} cannot be assigned as {role.label}: role is {user.role}",
                    field=f"{role.value}_id",
                )

    def _dispatch(self, events: List[NotificationEvent]) -> None:
        if self.sink is None:
            return
        for event in events:
            try:
                self.sink.send(event)
            except Exception:
                logger.exception(
                    f"Failed to deliver {event.category.value} notification for permit {event.permit_id}"
                )
