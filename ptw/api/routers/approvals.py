"""Approver work queues and permit approval decisions."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ptw.api.deps import get_actor, get_db, get_lifecycle_controller, http_error
from ptw.api.schemas.common import ERROR_RESPONSES, PaginatedResponse
from ptw.api.schemas.permits import ApproveAction, PermitSummary, RejectAction, TransitionResponse
from ptw.core.lifecycle import LifecycleError, PermitStatus, SlotStatus
from ptw.core.lifecycle.controller import CurrentUser, PermitLifecycleController
from ptw.core.lifecycle.engine import approver_role_for
from ptw.db.models import Permit

router = APIRouter(prefix="/approvals", tags=["approvals"], responses=ERROR_RESPONSES)


def _queue(
    db: Session,
    actor: CurrentUser,
    slot_status: SlotStatus,
    page: int,
    per_page: int,
    *,
    awaiting_only: bool = False,
) -> PaginatedResponse[PermitSummary]:
    try:
        role = approver_role_for(actor.role)
    except LifecycleError as e:
        raise http_error(e)

    query = db.query(Permit).filter(Permit.slot_filter(role, actor.user_id, slot_status))
    if awaiting_only:
        query = query.filter(Permit.status == PermitStatus.INITIATED.value)

    total = query.count()
    permits = query.order_by(Permit.created_at.asc()).offset((page - 1) * per_page).limit(per_page).all()

    return PaginatedResponse[PermitSummary].create(
        items=[PermitSummary.model_validate(p) for p in permits],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get("/pending", response_model=PaginatedResponse[PermitSummary])
def list_pending_approvals(
    db: Session = Depends(get_db),
    actor: CurrentUser = Depends(get_actor),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
):
    """Permits still waiting for the caller's decision."""
    return _queue(db, actor, SlotStatus.PENDING, page, per_page, awaiting_only=True)


@router.get("/approved", response_model=PaginatedResponse[PermitSummary])
def list_approved_by_me(
    db: Session = Depends(get_db),
    actor: CurrentUser = Depends(get_actor),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
):
    """Permits the caller has approved."""
    return _queue(db, actor, SlotStatus.APPROVED, page, per_page)


@router.get("/rejected", response_model=PaginatedResponse[PermitSummary])
def list_rejected_by_me(
    db: Session = Depends(get_db),
    actor: CurrentUser = Depends(get_actor),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
):
    """Permits the caller has rejected."""
    return _queue(db, actor, SlotStatus.REJECTED, page, per_page)


@router.post("/{permit_id}/approve", response_model=TransitionResponse)
def approve_permit(
    permit_id: UUID,
    action: ApproveAction,
    actor: CurrentUser = Depends(get_actor),
    controller: PermitLifecycleController = Depends(get_lifecycle_controller),
):
    """Approve a permit in the caller's approver slot."""
    try:
        outcome = controller.approve(permit_id, actor, action.signature)
    except LifecycleError as e:
        raise http_error(e)
    return TransitionResponse.from_outcome(outcome)


@router.post("/{permit_id}/reject", response_model=TransitionResponse)
def reject_permit(
    permit_id: UUID,
    action: RejectAction,
    actor: CurrentUser = Depends(get_actor),
    controller: PermitLifecycleController = Depends(get_lifecycle_controller),
):
    """Reject a permit; a single rejection is final."""
    try:
        outcome = controller.reject(permit_id, actor, action.reason, signature=action.signature)
    except LifecycleError as e:
        raise http_error(e)
    return TransitionResponse.from_outcome(outcome)
