"""Pure decision logic for the permit lifecycle.

The engine never touches storage. It takes an immutable snapshot of a
permit (and, for extension decisions, of the outstanding extension),
checks the action against the transition rules and the slot bindings,
and returns a ``Decision`` describing the new slots, the new aggregate
status and the notifications to emit once the change is durable.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, Mapping, Optional, Tuple
from uuid import UUID

from .errors import (
    AlreadyDecidedError,
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from .states import (
    ApproverRole,
    ExtensionStatus,
    NotificationCategory,
    PermitStatus,
    PermitTransition,
    SlotStatus,
    UserRole,
    can_transition,
    get_target_state,
    required_states,
)


@dataclass(frozen=True)
class ApproverSlot:
    """One approver binding and its decision."""

    user_id: Optional[UUID] = None
    status: Optional[SlotStatus] = None
    signature: Optional[str] = None
    decided_at: Optional[datetime] = None

    @property
    def assigned(self) -> bool:
        return self.user_id is not None

    @property
    def decided(self) -> bool:
        return self.status in (SlotStatus.APPROVED, SlotStatus.REJECTED)


Slots = Dict[ApproverRole, ApproverSlot]


@dataclass(frozen=True)
class PermitSnapshot:
    """State of a permit as read inside the current unit of work."""

    id: UUID
    serial: str
    status: PermitStatus
    created_by: UUID
    slots: Slots
    start_time: datetime
    end_time: datetime


@dataclass(frozen=True)
class ExtensionSnapshot:
    """An extension request and its own approver slots."""

    id: Optional[UUID]
    status: ExtensionStatus
    original_end_time: datetime
    new_end_time: datetime
    reason: str
    requested_by: UUID
    slots: Slots
    rejection_reason: Optional[str] = None
    decided_at: Optional[datetime] = None


@dataclass(frozen=True)
class ClosureChecklist:
    """Closure checklist; ``None`` means the item was not supplied."""

    housekeeping_done: Optional[bool] = None
    tools_removed: Optional[bool] = None
    locks_removed: Optional[bool] = None
    area_restored: Optional[bool] = None

    def items(self) -> Tuple[Tuple[str, Optional[bool]], ...]:
        return (
            ("housekeeping_done", self.housekeeping_done),
            ("tools_removed", self.tools_removed),
            ("locks_removed", self.locks_removed),
            ("area_restored", self.area_restored),
        )

    def missing(self) -> list[str]:
        return [name for name, value in self.items() if value is None]

    def incomplete(self) -> list[str]:
        return [name for name, value in self.items() if value is False]


@dataclass(frozen=True)
class NotificationEvent:
    """A request to tell one user about one permit."""

    recipient_user_id: UUID
    permit_id: UUID
    category: NotificationCategory
    message: str


@dataclass(frozen=True)
class Decision:
    """Result of applying one action to a permit snapshot."""

    transition: PermitTransition
    previous_status: PermitStatus
    status: PermitStatus
    decisive: bool
    slots: Optional[Slots] = None
    extension: Optional[ExtensionSnapshot] = None
    end_time: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    comment: Optional[str] = None
    notifications: Tuple[NotificationEvent, ...] = field(default_factory=tuple)


MESSAGE_TEMPLATES: Dict[NotificationCategory, str] = {
    NotificationCategory.APPROVAL_REQUEST: "PTW {serial} requires your approval as {role}",
    NotificationCategory.PTW_PARTIALLY_APPROVED: (
        "Your PTW {serial} has been approved by {role}. Pending other approvals."
    ),
    NotificationCategory.PTW_APPROVED: (
        "Your PTW {serial} has been FULLY APPROVED and is ready for final submission."
    ),
    NotificationCategory.PTW_REJECTED: "Your PTW {serial} has been REJECTED by {role}. Reason: {reason}",
    NotificationCategory.EXTENSION_REQUEST: (
        "Extension requested for PTW {serial} until {new_end_time}. Your approval as {role} is required."
    ),
    NotificationCategory.EXTENSION_PARTIAL: (
        "Extension request for PTW {serial} has been approved by {role}. Waiting for other approvers."
    ),
    NotificationCategory.EXTENSION_APPROVED: "Extension APPROVED for PTW {serial}. New end time: {new_end_time}",
    NotificationCategory.EXTENSION_REJECTED: (
        "Extension REJECTED for PTW {serial} by {role}. Reason: {reason}. Original end time stands."
    ),
    NotificationCategory.PTW_CLOSED: "PTW {serial} has been closed.",
    NotificationCategory.PTW_EXPIRING: "PTW {serial} at {location} expires at {end_time}. Close or extend it.",
}


def render_message(category: NotificationCategory, **context) -> str:
    return MESSAGE_TEMPLATES[category].format(**context)


def _timestamp(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M UTC")


def aggregate_status(slots: Mapping[ApproverRole, ApproverSlot]) -> PermitStatus:
    """Aggregate approval-phase status from the assigned slots.

    Any rejection wins; otherwise the permit is approved only when every
    assigned slot is approved. A permit with no assigned slot never counts
    as approved.
    """
    assigned = [slot for slot in slots.values() if slot.assigned]
    if any(slot.status == SlotStatus.REJECTED for slot in assigned):
        return PermitStatus.REJECTED
    if assigned and all(slot.status == SlotStatus.APPROVED for slot in assigned):
        return PermitStatus.APPROVED
    return PermitStatus.INITIATED


def all_approved(slots: Mapping[ApproverRole, ApproverSlot]) -> bool:
    return aggregate_status(slots) == PermitStatus.APPROVED


def seed_slots(assignments: Mapping[ApproverRole, Optional[UUID]]) -> Slots:
    """Initial slots for a new permit: every assigned slot starts Pending."""
    slots: Slots = {}
    for role in ApproverRole:
        user_id = assignments.get(role)
        if user_id is None:
            slots[role] = ApproverSlot()
        else:
            slots[role] = ApproverSlot(user_id=user_id, status=SlotStatus.PENDING)
    if not any(slot.assigned for slot in slots.values()):
        raise ValidationError(
            "At least one approver (Area Manager, Safety Officer or Site Leader) must be assigned",
            field="approvers",
        )
    return slots


def approver_role_for(user_role: UserRole) -> ApproverRole:
    """Slot a role claim acts on; non-approver claims are refused."""
    role = user_role.approver_role
    if role is None:
        raise UnauthorizedError(f"Role {user_role.value} is not an approver role")
    return role


class ApprovalEngine:
    """
    Applies lifecycle actions to permit snapshots.

    Every method is pure: it either raises a ``LifecycleError`` or returns
    a ``Decision``. Checks run in a fixed order so the caller always gets
    the most specific reason.

    Approver decisions check:

    1. the slot is assigned (``NotFoundError``)
    2. the slot is bound to the caller (``UnauthorizedError``)
    3. the slot is undecided (``AlreadyDecidedError``)
    4. the permit stage (``InvalidStateError``)
    5. the payload (``ValidationError``)

    The slot checks come before the stage, so an approver who already
    signed a permit that has since moved on (even to Closed) is told
    ``AlreadyDecidedError``; only an approver whose slot is still open
    sees ``InvalidStateError``.

    Owner actions check the owner, then the stage, then the payload.
    """

    # Approval phase

    def approve(
        self,
        permit: PermitSnapshot,
        role: ApproverRole,
        actor_id: UUID,
        signature: Optional[str],
        now: datetime,
    ) -> Decision:
        slot = self._bound_slot(permit.slots, role, actor_id, f"permit {permit.serial}")
        self._require_stage(permit, PermitTransition.APPROVE, "approve")
        signature = self._required_text(signature, "signature", "A signature is required to approve")

        slots = dict(permit.slots)
        slots[role] = replace(slot, status=SlotStatus.APPROVED, signature=signature, decided_at=now)
        status = aggregate_status(slots)
        decisive = status == PermitStatus.APPROVED

        if decisive:
            category = NotificationCategory.PTW_APPROVED
        else:
            category = NotificationCategory.PTW_PARTIALLY_APPROVED
        notice = NotificationEvent(
            recipient_user_id=permit.created_by,
            permit_id=permit.id,
            category=category,
            message=render_message(category, serial=permit.serial, role=role.label),
        )
        return Decision(
            transition=PermitTransition.APPROVE,
            previous_status=permit.status,
            status=status,
            decisive=decisive,
            slots=slots,
            comment=f"Approved by {role.label}",
            notifications=(notice,),
        )

    def reject(
        self,
        permit: PermitSnapshot,
        role: ApproverRole,
        actor_id: UUID,
        reason: Optional[str],
        now: datetime,
        signature: Optional[str] = None,
    ) -> Decision:
        slot = self._bound_slot(permit.slots, role, actor_id, f"permit {permit.serial}")
        self._require_stage(permit, PermitTransition.REJECT, "reject")
        reason = self._required_text(reason, "reason", "A rejection reason is required")

        slots = dict(permit.slots)
        slots[role] = replace(slot, status=SlotStatus.REJECTED, signature=signature or slot.signature, decided_at=now)
        notice = NotificationEvent(
            recipient_user_id=permit.created_by,
            permit_id=permit.id,
            category=NotificationCategory.PTW_REJECTED,
            message=render_message(
                NotificationCategory.PTW_REJECTED, serial=permit.serial, role=role.label, reason=reason
            ),
        )
        return Decision(
            transition=PermitTransition.REJECT,
            previous_status=permit.status,
            status=PermitStatus.REJECTED,
            decisive=True,
            slots=slots,
            rejection_reason=reason,
            comment=reason,
            notifications=(notice,),
        )

    # Owner actions

    def final_submit(self, permit: PermitSnapshot, actor_id: UUID) -> Decision:
        return self._owner_step(permit, actor_id, PermitTransition.FINAL_SUBMIT, "final submit")

    def start(self, permit: PermitSnapshot, actor_id: UUID) -> Decision:
        return self._owner_step(permit, actor_id, PermitTransition.START, "start")

    def request_extension(
        self,
        permit: PermitSnapshot,
        actor_id: UUID,
        new_end_time: Optional[datetime],
        reason: Optional[str],
    ) -> Decision:
        self._require_owner(permit, actor_id, "request an extension for")
        self._require_stage(permit, PermitTransition.REQUEST_EXTENSION, "extend")
        if new_end_time is None:
            raise ValidationError("A new end time is required", field="new_end_time")
        reason = self._required_text(reason, "reason", "A justification is required for an extension")
        if new_end_time <= permit.end_time:
            raise ValidationError(
                f"New end time {_timestamp(new_end_time)} must be later than the current "
                f"end time {_timestamp(permit.end_time)}",
                field="new_end_time",
            )

        slots: Slots = {}
        for role, slot in permit.slots.items():
            if slot.assigned:
                slots[role] = ApproverSlot(user_id=slot.user_id, status=SlotStatus.PENDING)
            else:
                slots[role] = ApproverSlot()
        extension = ExtensionSnapshot(
            id=None,
            status=ExtensionStatus.PENDING,
            original_end_time=permit.end_time,
            new_end_time=new_end_time,
            reason=reason,
            requested_by=actor_id,
            slots=slots,
        )
        notifications = tuple(
            NotificationEvent(
                recipient_user_id=slot.user_id,
                permit_id=permit.id,
                category=NotificationCategory.EXTENSION_REQUEST,
                message=render_message(
                    NotificationCategory.EXTENSION_REQUEST,
                    serial=permit.serial,
                    new_end_time=_timestamp(new_end_time),
                    role=role.label,
                ),
            )
            for role, slot in slots.items()
            if slot.assigned
        )
        return Decision(
            transition=PermitTransition.REQUEST_EXTENSION,
            previous_status=permit.status,
            status=PermitStatus.EXTENSION_REQUESTED,
            decisive=True,
            extension=extension,
            comment=reason,
            notifications=notifications,
        )

    def close(self, permit: PermitSnapshot, actor_id: UUID, checklist: ClosureChecklist) -> Decision:
        self._require_owner(permit, actor_id, "close")
        self._require_stage(permit, PermitTransition.CLOSE, "close")
        missing = checklist.missing()
        if missing:
            raise ValidationError(
                f"All checklist items are required: missing {', '.join(missing)}",
                field=missing[0],
            )
        incomplete = checklist.incomplete()
        if incomplete:
            raise ValidationError(
                f"All checklist items must be completed before closing: {', '.join(incomplete)}",
                field=incomplete[0],
            )

        notifications = tuple(
            NotificationEvent(
                recipient_user_id=slot.user_id,
                permit_id=permit.id,
                category=NotificationCategory.PTW_CLOSED,
                message=render_message(NotificationCategory.PTW_CLOSED, serial=permit.serial),
            )
            for slot in permit.slots.values()
            if slot.assigned
        )
        return Decision(
            transition=PermitTransition.CLOSE,
            previous_status=permit.status,
            status=PermitStatus.CLOSED,
            decisive=True,
            notifications=notifications,
        )

    # Extension decisions

    def approve_extension(
        self,
        permit: PermitSnapshot,
        extension: ExtensionSnapshot,
        role: ApproverRole,
        actor_id: UUID,
        signature: Optional[str],
        now: datetime,
    ) -> Decision:
        slot = self._bound_slot(extension.slots, role, actor_id, f"the extension of permit {permit.serial}")
        self._require_extension_pending(permit, extension, PermitTransition.APPROVE_EXTENSION)
        signature = self._required_text(signature, "signature", "A signature is required to approve")

        slots = dict(extension.slots)
        slots[role] = replace(slot, status=SlotStatus.APPROVED, signature=signature, decided_at=now)

        if not all_approved(slots):
            partial = replace(extension, slots=slots)
            notice = NotificationEvent(
                recipient_user_id=permit.created_by,
                permit_id=permit.id,
                category=NotificationCategory.EXTENSION_PARTIAL,
                message=render_message(NotificationCategory.EXTENSION_PARTIAL, serial=permit.serial, role=role.label),
            )
            return Decision(
                transition=PermitTransition.APPROVE_EXTENSION,
                previous_status=permit.status,
                status=permit.status,
                decisive=False,
                extension=partial,
                comment=f"Extension approved by {role.label}",
                notifications=(notice,),
            )

        granted = replace(extension, slots=slots, status=ExtensionStatus.APPROVED, decided_at=now)
        notice = NotificationEvent(
            recipient_user_id=permit.created_by,
            permit_id=permit.id,
            category=NotificationCategory.EXTENSION_APPROVED,
            message=render_message(
                NotificationCategory.EXTENSION_APPROVED,
                serial=permit.serial,
                new_end_time=_timestamp(extension.new_end_time),
            ),
        )
        return Decision(
            transition=PermitTransition.APPROVE_EXTENSION,
            previous_status=permit.status,
            status=get_target_state(permit.status, PermitTransition.APPROVE_EXTENSION),
            decisive=True,
            extension=granted,
            end_time=extension.new_end_time,
            comment=f"Extension granted until {_timestamp(extension.new_end_time)}",
            notifications=(notice,),
        )

    def reject_extension(
        self,
        permit: PermitSnapshot,
        extension: ExtensionSnapshot,
        role: ApproverRole,
        actor_id: UUID,
        reason: Optional[str],
        now: datetime,
    ) -> Decision:
        slot = self._bound_slot(extension.slots, role, actor_id, f"the extension of permit {permit.serial}")
        self._require_extension_pending(permit, extension, PermitTransition.REJECT_EXTENSION)
        reason = self._required_text(reason, "reason", "A rejection reason is required")

        slots = dict(extension.slots)
        slots[role] = replace(slot, status=SlotStatus.REJECTED, decided_at=now)
        denied = replace(
            extension,
            slots=slots,
            status=ExtensionStatus.REJECTED,
            rejection_reason=reason,
            decided_at=now,
        )
        notice = NotificationEvent(
            recipient_user_id=permit.created_by,
            permit_id=permit.id,
            category=NotificationCategory.EXTENSION_REJECTED,
            message=render_message(
                NotificationCategory.EXTENSION_REJECTED, serial=permit.serial, role=role.label, reason=reason
            ),
        )
        return Decision(
            transition=PermitTransition.REJECT_EXTENSION,
            previous_status=permit.status,
            status=get_target_state(permit.status, PermitTransition.REJECT_EXTENSION),
            decisive=True,
            extension=denied,
            rejection_reason=reason,
            comment=reason,
            notifications=(notice,),
        )

    # Checks

    def _bound_slot(self, slots: Slots, role: ApproverRole, actor_id: UUID, subject: str) -> ApproverSlot:
        slot = slots.get(role, ApproverSlot())
        if not slot.assigned:
            raise NotFoundError(f"No {role.label} approver is assigned to {subject}")
        if slot.user_id != actor_id:
            raise UnauthorizedError(f"You are not assigned as the {role.label} approver for {subject}")
        if slot.decided:
            raise AlreadyDecidedError(f"{role.label} has already {slot.status.value.lower()} {subject}")
        return slot

    def _require_stage(self, permit: PermitSnapshot, transition: PermitTransition, verb: str) -> None:
        if can_transition(permit.status, transition):
            return
        required = required_states(transition)
        raise InvalidStateError(
            f"Cannot {verb} permit {permit.serial}: current status is {permit.status.value}, "
            f"must be {' or '.join(s.value for s in required)}",
            current=permit.status,
            transition=transition,
            required=required,
        )

    def _require_extension_pending(
        self,
        permit: PermitSnapshot,
        extension: ExtensionSnapshot,
        transition: PermitTransition,
    ) -> None:
        self._require_stage(permit, transition, "decide the extension of")
        if extension.status != ExtensionStatus.PENDING:
            raise InvalidStateError(
                f"The extension of permit {permit.serial} is already {extension.status.value}",
                current=permit.status,
                transition=transition,
                required=required_states(transition),
            )

    def _require_owner(self, permit: PermitSnapshot, actor_id: UUID, verb: str) -> None:
        if permit.created_by != actor_id:
            raise UnauthorizedError(f"Only the creator of permit {permit.serial} can {verb} it")

    def _owner_step(self, permit: PermitSnapshot, actor_id: UUID, transition: PermitTransition, verb: str) -> Decision:
        self._require_owner(permit, actor_id, verb)
        self._require_stage(permit, transition, verb)
        return Decision(
            transition=transition,
            previous_status=permit.status,
            status=get_target_state(permit.status, transition),
            decisive=True,
        )

    @staticmethod
    def _required_text(value: Optional[str], field_name: str, message: str) -> str:
        if value is None or not value.strip():
            raise ValidationError(message, field=field_name)
        return value.strip()
