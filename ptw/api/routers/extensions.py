"""Extension approval endpoints."""

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from ptw.api.deps import get_actor, get_db, get_lifecycle_controller, http_error, load_visible_permit
from ptw.api.schemas.common import ERROR_RESPONSES
from ptw.api.schemas.permits import ApproveAction, ExtensionResponse, RejectAction, TransitionResponse
from ptw.core.lifecycle import ExtensionStatus, LifecycleError, SlotStatus
from ptw.core.lifecycle.controller import CurrentUser, PermitLifecycleController
from ptw.core.lifecycle.engine import approver_role_for
from ptw.db.models import ExtensionRequest

router = APIRouter(prefix="/extension-approvals", tags=["extension-approvals"], responses=ERROR_RESPONSES)


@router.get("/pending", response_model=List[ExtensionResponse])
def list_pending_extensions(
    db: Session = Depends(get_db),
    actor: CurrentUser = Depends(get_actor),
):
    """Outstanding extension requests waiting for the caller's decision."""
    try:
        role = approver_role_for(actor.role)
    except LifecycleError as e:
        raise http_error(e)

    extensions = db.query(ExtensionRequest).filter(
        ExtensionRequest.status == ExtensionStatus.PENDING.value,
        ExtensionRequest.slot_filter(role, actor.user_id, SlotStatus.PENDING),
    ).order_by(ExtensionRequest.created_at.asc()).all()

    return [ExtensionResponse.from_row(e) for e in extensions]


@router.get("/{extension_id}", response_model=ExtensionResponse)
def get_extension(
    extension_id: UUID,
    db: Session = Depends(get_db),
    actor: CurrentUser = Depends(get_actor),
):
    """Get one extension request."""
    extension = db.query(ExtensionRequest).filter(ExtensionRequest.id == extension_id).first()
    if not extension:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "not_found", "message": f"Extension request {extension_id} not found"},
        )
    load_visible_permit(db, extension.permit_id, actor)
    return ExtensionResponse.from_row(extension)


@router.post("/{extension_id}/approve", response_model=TransitionResponse)
def approve_extension(
    extension_id: UUID,
    action: ApproveAction,
    actor: CurrentUser = Depends(get_actor),
    controller: PermitLifecycleController = Depends(get_lifecycle_controller),
):
    """Approve an extension; it is granted once every assigned approver agrees."""
    try:
        outcome = controller.approve_extension(extension_id, actor, action.signature)
    except LifecycleError as e:
        raise http_error(e)
    return TransitionResponse.from_outcome(outcome)


@router.post("/{extension_id}/reject", response_model=TransitionResponse)
def reject_extension(
    extension_id: UUID,
    action: RejectAction,
    actor: CurrentUser = Depends(get_actor),
    controller: PermitLifecycleController = Depends(get_lifecycle_controller),
):
    """Reject an extension; the original end time stands."""
    try:
        outcome = controller.reject_extension(extension_id, actor, action.reason)
    except LifecycleError as e:
        raise http_error(e)
    return TransitionResponse.from_outcome(outcome)
