"""Tests for the pure approval engine."""

from datetime import datetime, timedelta
from itertools import permutations
from uuid import uuid4

import pytest

from ptw.core.lifecycle.engine import (
    ApprovalEngine,
    ApproverSlot,
    ClosureChecklist,
    ExtensionSnapshot,
    PermitSnapshot,
    aggregate_status,
    approver_role_for,
    seed_slots,
)
from ptw.core.lifecycle.errors import (
    AlreadyDecidedError,
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from ptw.core.lifecycle.states import (
    ApproverRole,
    ExtensionStatus,
    NotificationCategory,
    PermitStatus,
    SlotStatus,
    UserRole,
)

NOW = datetime(2026, 3, 2, 10, 0, 0)
END = datetime(2026, 3, 2, 17, 0, 0)

AM = ApproverRole.AREA_MANAGER
SO = ApproverRole.SAFETY_OFFICER
SL = ApproverRole.SITE_LEADER


@pytest.fixture
def engine():
    return ApprovalEngine()


@pytest.fixture
def owner():
    return uuid4()


@pytest.fixture
def approvers():
    return {AM: uuid4(), SO: uuid4(), SL: uuid4()}


def make_permit(owner, slots, status=PermitStatus.INITIATED, serial="PTW-0001"):
    return PermitSnapshot(
        id=uuid4(),
        serial=serial,
        status=status,
        created_by=owner,
        slots=slots,
        start_time=END - timedelta(hours=8),
        end_time=END,
    )


def advance(permit, decision):
    """Snapshot after applying a decision, as the controller would persist it."""
    return PermitSnapshot(
        id=permit.id,
        serial=permit.serial,
        status=decision.status,
        created_by=permit.created_by,
        slots=decision.slots if decision.slots is not None else permit.slots,
        start_time=permit.start_time,
        end_time=decision.end_time or permit.end_time,
    )


def make_extension(permit, new_end=None):
    slots = {
        role: ApproverSlot(user_id=slot.user_id, status=SlotStatus.PENDING) if slot.assigned else ApproverSlot()
        for role, slot in permit.slots.items()
    }
    return ExtensionSnapshot(
        id=uuid4(),
        status=ExtensionStatus.PENDING,
        original_end_time=permit.end_time,
        new_end_time=new_end or permit.end_time + timedelta(hours=2),
        reason="Late delivery of parts",
        requested_by=permit.created_by,
        slots=slots,
    )


class TestAggregateStatus:
    """Test the aggregate status rule."""

    def test_all_pending_is_initiated(self, approvers):
        slots = seed_slots(approvers)
        assert aggregate_status(slots) == PermitStatus.INITIATED

    def test_all_assigned_approved(self, approvers):
        slots = {role: ApproverSlot(user_id=uid, status=SlotStatus.APPROVED) for role, uid in approvers.items()}
        assert aggregate_status(slots) == PermitStatus.APPROVED

    def test_unassigned_slots_contribute_nothing(self, approvers):
        slots = {
            AM: ApproverSlot(user_id=approvers[AM], status=SlotStatus.APPROVED),
            SO: ApproverSlot(),
            SL: ApproverSlot(),
        }
        assert aggregate_status(slots) == PermitStatus.APPROVED

    def test_any_rejection_wins(self, approvers):
        slots = {
            AM: ApproverSlot(user_id=approvers[AM], status=SlotStatus.APPROVED),
            SO: ApproverSlot(user_id=approvers[SO], status=SlotStatus.REJECTED),
            SL: ApproverSlot(user_id=approvers[SL], status=SlotStatus.APPROVED),
        }
        assert aggregate_status(slots) == PermitStatus.REJECTED

    def test_no_assigned_slot_never_approved(self):
        slots = {role: ApproverSlot() for role in ApproverRole}
        assert aggregate_status(slots) == PermitStatus.INITIATED


class TestSeedSlots:
    """Test initial slot seeding."""

    def test_assigned_slots_start_pending(self, approvers):
        slots = seed_slots({AM: approvers[AM], SO: None})
        assert slots[AM].status == SlotStatus.PENDING
        assert slots[AM].user_id == approvers[AM]
        assert not slots[SO].assigned
        assert slots[SO].status is None
        assert not slots[SL].assigned

    def test_zero_approvers_fails(self):
        with pytest.raises(ValidationError) as exc_info:
            seed_slots({AM: None, SO: None, SL: None})
        assert exc_info.value.field == "approvers"

    def test_role_claim_without_slot(self):
        with pytest.raises(UnauthorizedError):
            approver_role_for(UserRole.REQUESTER)


class TestApprove:
    """Test single approvals."""

    def test_partial_approval_keeps_initiated(self, engine, owner, approvers):
        permit = make_permit(owner, seed_slots(approvers))
        decision = engine.approve(permit, AM, approvers[AM], "A. Manager", NOW)

        assert decision.status == PermitStatus.INITIATED
        assert not decision.decisive
        assert decision.slots[AM].status == SlotStatus.APPROVED
        assert decision.slots[AM].signature == "A. Manager"
        assert decision.slots[AM].decided_at == NOW
        assert decision.slots[SO].status == SlotStatus.PENDING
        [notice] = decision.notifications
        assert notice.category == NotificationCategory.PTW_PARTIALLY_APPROVED
        assert notice.recipient_user_id == owner

    def test_last_approval_is_decisive(self, engine, owner, approvers):
        permit = make_permit(owner, seed_slots({AM: approvers[AM]}))
        decision = engine.approve(permit, AM, approvers[AM], "sig", NOW)

        assert decision.status == PermitStatus.APPROVED
        assert decision.decisive
        assert decision.notifications[0].category == NotificationCategory.PTW_APPROVED

    def test_approval_order_does_not_matter(self, engine, owner, approvers):
        for order in permutations(ApproverRole):
            permit = make_permit(owner, seed_slots(approvers))
            statuses = []
            for role in order:
                decision = engine.approve(permit, role, approvers[role], "sig", NOW)
                statuses.append(decision.status)
                permit = advance(permit, decision)
            assert statuses == [PermitStatus.INITIATED, PermitStatus.INITIATED, PermitStatus.APPROVED]

    def test_signature_required(self, engine, owner, approvers):
        permit = make_permit(owner, seed_slots(approvers))
        with pytest.raises(ValidationError) as exc_info:
            engine.approve(permit, AM, approvers[AM], "   ", NOW)
        assert exc_info.value.field == "signature"

    def test_unassigned_slot_is_not_found(self, engine, owner, approvers):
        permit = make_permit(owner, seed_slots({AM: approvers[AM]}))
        with pytest.raises(NotFoundError):
            engine.approve(permit, SO, approvers[SO], "sig", NOW)

    def test_wrong_user_is_unauthorized(self, engine, owner, approvers):
        permit = make_permit(owner, seed_slots(approvers))
        with pytest.raises(UnauthorizedError) as exc_info:
            engine.approve(permit, AM, approvers[SO], "sig", NOW)
        assert "not assigned" in exc_info.value.message

    def test_reapproval_is_already_decided(self, engine, owner, approvers):
        permit = make_permit(owner, seed_slots(approvers))
        permit = advance(permit, engine.approve(permit, AM, approvers[AM], "sig", NOW))

        with pytest.raises(AlreadyDecidedError):
            engine.approve(permit, AM, approvers[AM], "sig", NOW)

    def test_wrong_stage_names_required_status(self, engine, owner, approvers):
        slots = seed_slots(approvers)
        permit = make_permit(owner, slots, status=PermitStatus.ACTIVE)
        with pytest.raises(InvalidStateError) as exc_info:
            engine.approve(permit, AM, approvers[AM], "sig", NOW)
        assert exc_info.value.required == [PermitStatus.INITIATED]
        assert "Initiated" in exc_info.value.message

    def test_check_order_binding_before_stage(self, engine, owner, approvers):
        """A stranger hears 'not yours' even when the stage is also wrong."""
        permit = make_permit(owner, seed_slots(approvers), status=PermitStatus.CLOSED)
        with pytest.raises(UnauthorizedError):
            engine.approve(permit, AM, uuid4(), None, NOW)

    def test_closed_permit_reports_decided_slot_first(self, engine, owner, approvers):
        """A signed slot on a closed permit is AlreadyDecided; an open one is wrong stage."""
        slots = seed_slots({AM: approvers[AM], SO: approvers[SO]})
        slots[AM] = ApproverSlot(user_id=approvers[AM], status=SlotStatus.APPROVED, signature="sig", decided_at=NOW)
        permit = make_permit(owner, slots, status=PermitStatus.CLOSED)

        with pytest.raises(AlreadyDecidedError):
            engine.approve(permit, AM, approvers[AM], "sig", NOW)
        with pytest.raises(AlreadyDecidedError):
            engine.reject(permit, AM, approvers[AM], "too late", NOW)
        with pytest.raises(InvalidStateError):
            engine.approve(permit, SO, approvers[SO], "sig", NOW)


class TestReject:
    """Test rejections."""

    def test_single_rejection_is_decisive(self, engine, owner, approvers):
        permit = make_permit(owner, seed_slots(approvers))
        permit = advance(permit, engine.approve(permit, AM, approvers[AM], "sig", NOW))
        decision = engine.reject(permit, SO, approvers[SO], "insufficient PPE plan", NOW)

        assert decision.status == PermitStatus.REJECTED
        assert decision.decisive
        assert decision.rejection_reason == "insufficient PPE plan"
        assert decision.slots[SO].status == SlotStatus.REJECTED
        assert decision.slots[AM].status == SlotStatus.APPROVED
        assert decision.notifications[0].category == NotificationCategory.PTW_REJECTED

    def test_reason_required(self, engine, owner, approvers):
        permit = make_permit(owner, seed_slots(approvers))
        with pytest.raises(ValidationError) as exc_info:
            engine.reject(permit, AM, approvers[AM], "", NOW)
        assert exc_info.value.field == "reason"

    def test_approval_after_rejection_is_wrong_stage(self, engine, owner, approvers):
        permit = make_permit(owner, seed_slots(approvers))
        permit = advance(permit, engine.reject(permit, SO, approvers[SO], "no", NOW))

        with pytest.raises(InvalidStateError):
            engine.approve(permit, SL, approvers[SL], "sig", NOW)

    def test_scenario_ptw_0007(self, engine, owner):
        u1, u2 = uuid4(), uuid4()
        permit = make_permit(owner, seed_slots({AM: u1, SO: u2}), serial="PTW-0007")
        assert permit.status == PermitStatus.INITIATED

        decision = engine.approve(permit, AM, u1, "U1", NOW)
        assert decision.status == PermitStatus.INITIATED
        assert decision.slots[AM].status == SlotStatus.APPROVED
        permit = advance(permit, decision)

        decision = engine.reject(permit, SO, u2, "insufficient PPE plan", NOW)
        assert decision.status == PermitStatus.REJECTED
        assert decision.rejection_reason == "insufficient PPE plan"
        permit = advance(permit, decision)

        with pytest.raises(AlreadyDecidedError):
            engine.reject(permit, AM, u1, "changed my mind", NOW)
        with pytest.raises(AlreadyDecidedError):
            engine.approve(permit, SO, u2, "U2", NOW)


class TestOwnerSteps:
    """Test final submit, start and close."""

    def test_final_submit_and_start(self, engine, owner, approvers):
        permit = make_permit(owner, seed_slots(approvers), status=PermitStatus.APPROVED)
        decision = engine.final_submit(permit, owner)
        assert decision.status == PermitStatus.READY_TO_START

        permit = advance(permit, decision)
        decision = engine.start(permit, owner)
        assert decision.status == PermitStatus.ACTIVE

    def test_only_creator_may_start(self, engine, owner, approvers):
        permit = make_permit(owner, seed_slots(approvers), status=PermitStatus.READY_TO_START)
        with pytest.raises(UnauthorizedError):
            engine.start(permit, approvers[AM])

    def test_final_submit_requires_approved(self, engine, owner, approvers):
        permit = make_permit(owner, seed_slots(approvers))
        with pytest.raises(InvalidStateError):
            engine.final_submit(permit, owner)

    def test_close_with_complete_checklist(self, engine, owner, approvers):
        permit = make_permit(owner, seed_slots(approvers), status=PermitStatus.ACTIVE)
        checklist = ClosureChecklist(True, True, True, True)
        decision = engine.close(permit, owner, checklist)

        assert decision.status == PermitStatus.CLOSED
        assert {n.recipient_user_id for n in decision.notifications} == set(approvers.values())
        assert all(n.category == NotificationCategory.PTW_CLOSED for n in decision.notifications)

    def test_close_with_missing_item(self, engine, owner, approvers):
        permit = make_permit(owner, seed_slots(approvers), status=PermitStatus.ACTIVE)
        with pytest.raises(ValidationError) as exc_info:
            engine.close(permit, owner, ClosureChecklist(True, True, None, True))
        assert exc_info.value.field == "locks_removed"

    def test_close_with_unfinished_item(self, engine, owner, approvers):
        permit = make_permit(owner, seed_slots(approvers), status=PermitStatus.ACTIVE)
        with pytest.raises(ValidationError) as exc_info:
            engine.close(permit, owner, ClosureChecklist(True, False, True, True))
        assert exc_info.value.field == "tools_removed"

    def test_close_during_extension_is_wrong_stage(self, engine, owner, approvers):
        permit = make_permit(owner, seed_slots(approvers), status=PermitStatus.EXTENSION_REQUESTED)
        with pytest.raises(InvalidStateError):
            engine.close(permit, owner, ClosureChecklist(True, True, True, True))


class TestExtensions:
    """Test extension requests and decisions."""

    def test_request_seeds_slots_from_permit(self, engine, owner, approvers):
        permit = make_permit(owner, seed_slots({AM: approvers[AM], SO: approvers[SO]}), status=PermitStatus.ACTIVE)
        decision = engine.request_extension(permit, owner, END + timedelta(hours=2), "Late delivery")

        assert decision.status == PermitStatus.EXTENSION_REQUESTED
        extension = decision.extension
        assert extension.id is None
        assert extension.status == ExtensionStatus.PENDING
        assert extension.original_end_time == END
        assert extension.slots[AM].status == SlotStatus.PENDING
        assert not extension.slots[SL].assigned
        assert {n.recipient_user_id for n in decision.notifications} == {approvers[AM], approvers[SO]}

    @pytest.mark.parametrize("delta", [timedelta(0), timedelta(hours=-1)])
    def test_new_end_time_must_be_later(self, engine, owner, approvers, delta):
        permit = make_permit(owner, seed_slots(approvers), status=PermitStatus.ACTIVE)
        with pytest.raises(ValidationError) as exc_info:
            engine.request_extension(permit, owner, END + delta, "reason")
        assert exc_info.value.field == "new_end_time"

    def test_reason_required(self, engine, owner, approvers):
        permit = make_permit(owner, seed_slots(approvers), status=PermitStatus.ACTIVE)
        with pytest.raises(ValidationError):
            engine.request_extension(permit, owner, END + timedelta(hours=1), None)

    def test_request_requires_active(self, engine, owner, approvers):
        permit = make_permit(owner, seed_slots(approvers), status=PermitStatus.EXTENSION_REQUESTED)
        with pytest.raises(InvalidStateError):
            engine.request_extension(permit, owner, END + timedelta(hours=1), "again")

    def test_grant_after_all_approve(self, engine, owner, approvers):
        permit = make_permit(owner, seed_slots({AM: approvers[AM], SO: approvers[SO]}),
                             status=PermitStatus.EXTENSION_REQUESTED)
        extension = make_extension(permit)

        first = engine.approve_extension(permit, extension, AM, approvers[AM], "sig", NOW)
        assert not first.decisive
        assert first.status == PermitStatus.EXTENSION_REQUESTED
        assert first.extension.status == ExtensionStatus.PENDING
        assert first.end_time is None

        second = engine.approve_extension(permit, first.extension, SO, approvers[SO], "sig", NOW)
        assert second.decisive
        assert second.status == PermitStatus.ACTIVE
        assert second.extension.status == ExtensionStatus.APPROVED
        assert second.end_time == extension.new_end_time
        assert second.notifications[0].category == NotificationCategory.EXTENSION_APPROVED

    def test_single_rejection_denies(self, engine, owner, approvers):
        permit = make_permit(owner, seed_slots(approvers), status=PermitStatus.EXTENSION_REQUESTED)
        extension = make_extension(permit)
        first = engine.approve_extension(permit, extension, AM, approvers[AM], "sig", NOW)

        decision = engine.reject_extension(permit, first.extension, SL, approvers[SL], "Crane booked", NOW)
        assert decision.status == PermitStatus.ACTIVE
        assert decision.end_time is None
        assert decision.extension.status == ExtensionStatus.REJECTED
        assert decision.extension.rejection_reason == "Crane booked"

    def test_decided_extension_cannot_be_approved(self, engine, owner, approvers):
        permit = make_permit(owner, seed_slots(approvers), status=PermitStatus.ACTIVE)
        extension = make_extension(permit)
        denied = engine.reject_extension(
            make_permit(owner, permit.slots, status=PermitStatus.EXTENSION_REQUESTED),
            extension, AM, approvers[AM], "no", NOW,
        ).extension

        with pytest.raises(InvalidStateError):
            engine.approve_extension(permit, denied, SO, approvers[SO], "sig", NOW)
