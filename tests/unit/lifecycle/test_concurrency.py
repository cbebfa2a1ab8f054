"""Concurrent decisions on the same permit."""

import threading

from ptw.core.lifecycle.errors import AlreadyDecidedError, InvalidStateError, LifecycleError
from ptw.core.lifecycle.states import ApproverRole, PermitStatus, SlotStatus
from ptw.db.models import Permit, PermitHistory

from tests.factories import as_actor, permit_draft


def run_together(*actions):
    """Start every action at the same moment and collect results or errors."""
    barrier = threading.Barrier(len(actions))
    results = [None] * len(actions)

    def worker(index, action):
        barrier.wait()
        try:
            results[index] = action()
        except LifecycleError as e:
            results[index] = e

    threads = [threading.Thread(target=worker, args=(i, a)) for i, a in enumerate(actions)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return results


class TestConcurrentApprovals:
    """Simultaneous approvers must both be recorded."""

    def test_two_approvers_at_once(self, authoring, controller, read_db, requester, area_manager, safety_officer):
        draft = permit_draft(area_manager=area_manager, safety_officer=safety_officer)
        permit_id = authoring.create_permit(as_actor(requester), draft).permit_id

        results = run_together(
            lambda: controller.approve(permit_id, as_actor(area_manager), signature="Amal"),
            lambda: controller.approve(permit_id, as_actor(safety_officer), signature="Sam"),
        )

        assert not any(isinstance(r, LifecycleError) for r in results)
        assert sorted(r.decisive for r in results) == [False, True]

        permit = read_db(lambda db: db.get(Permit, permit_id))
        assert permit.status == PermitStatus.APPROVED.value
        assert permit.get_slot(ApproverRole.AREA_MANAGER).status == SlotStatus.APPROVED
        assert permit.get_slot(ApproverRole.SAFETY_OFFICER).status == SlotStatus.APPROVED

        transitions = read_db(
            lambda db: db.query(PermitHistory).filter(PermitHistory.permit_id == permit_id).count()
        )
        assert transitions == 3

    def test_same_approver_twice(self, authoring, controller, read_db, requester, area_manager, safety_officer):
        draft = permit_draft(area_manager=area_manager, safety_officer=safety_officer)
        permit_id = authoring.create_permit(as_actor(requester), draft).permit_id

        results = run_together(
            lambda: controller.approve(permit_id, as_actor(area_manager), signature="first"),
            lambda: controller.reject(permit_id, as_actor(area_manager), reason="second"),
        )

        errors = [r for r in results if isinstance(r, LifecycleError)]
        assert len(errors) == 1
        assert isinstance(errors[0], AlreadyDecidedError)

        permit = read_db(lambda db: db.get(Permit, permit_id))
        assert permit.status in (PermitStatus.INITIATED.value, PermitStatus.REJECTED.value)

    def test_approve_races_reject(self, authoring, controller, read_db, requester, area_manager, safety_officer):
        draft = permit_draft(area_manager=area_manager, safety_officer=safety_officer)
        permit_id = authoring.create_permit(as_actor(requester), draft).permit_id

        approval, rejection = run_together(
            lambda: controller.approve(permit_id, as_actor(area_manager), signature="Amal"),
            lambda: controller.reject(permit_id, as_actor(safety_officer), reason="Gas test missing"),
        )

        assert not isinstance(rejection, LifecycleError)
        assert rejection.status == PermitStatus.REJECTED.value

        permit = read_db(lambda db: db.get(Permit, permit_id))
        assert permit.status == PermitStatus.REJECTED.value
        assert permit.get_slot(ApproverRole.SAFETY_OFFICER).status == SlotStatus.REJECTED

        if isinstance(approval, LifecycleError):
            # The rejection committed first; the approval saw a Rejected permit
            assert isinstance(approval, InvalidStateError)
            assert permit.get_slot(ApproverRole.AREA_MANAGER).status == SlotStatus.PENDING
        else:
            assert approval.status == PermitStatus.INITIATED.value
            assert permit.get_slot(ApproverRole.AREA_MANAGER).status == SlotStatus.APPROVED

        history = read_db(
            lambda db: [
                h.to_status for h in db.query(PermitHistory)
                .filter(PermitHistory.permit_id == permit_id)
                .order_by(PermitHistory.created_at.asc())
            ]
        )
        assert history[-1] == PermitStatus.REJECTED.value
        assert history.count(PermitStatus.REJECTED.value) == 1
