"""Permit API endpoints: authoring, owner actions and history."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from ptw.api.deps import (
    get_actor,
    get_authoring_service,
    get_db,
    get_lifecycle_controller,
    http_error,
    load_visible_permit,
)
from ptw.api.schemas.common import ERROR_RESPONSES, PaginatedResponse
from ptw.api.schemas.permits import (
    CloseAction,
    ExtensionRequestIn,
    ExtensionResponse,
    HistoryResponse,
    PermitCreate,
    PermitDetail,
    PermitSummary,
    TransitionResponse,
)
from ptw.core.authoring import ChecklistAnswer, PermitAuthoringService, PermitDraft, TeamMemberDraft
from ptw.core.lifecycle import ApproverRole, ClosureChecklist, LifecycleError, PermitStatus, UserRole
from ptw.core.lifecycle.controller import CurrentUser, PermitLifecycleController
from ptw.db.models import ExtensionRequest, Permit, PermitHistory

router = APIRouter(prefix="/permits", tags=["permits"], responses=ERROR_RESPONSES)


@router.post("", response_model=PermitDetail, status_code=status.HTTP_201_CREATED)
def create_permit(
    payload: PermitCreate,
    db: Session = Depends(get_db),
    actor: CurrentUser = Depends(get_actor),
    authoring: PermitAuthoringService = Depends(get_authoring_service),
):
    """Raise a new permit; every assigned approver is asked to approve it."""
    draft = PermitDraft(
        permit_types=payload.permit_types,
        work_description=payload.work_description,
        work_location=payload.work_location,
        start_time=payload.start_time,
        end_time=payload.end_time,
        site_name=payload.site_name,
        receiver_name=payload.receiver_name,
        receiver_contact=payload.receiver_contact,
        issue_department=payload.issue_department,
        issuer_signature=payload.issuer_signature,
        control_measures=payload.control_measures,
        other_hazards=payload.other_hazards,
        approvers={
            ApproverRole.AREA_MANAGER: payload.area_manager_id,
            ApproverRole.SAFETY_OFFICER: payload.safety_officer_id,
            ApproverRole.SITE_LEADER: payload.site_leader_id,
        },
        team_members=[TeamMemberDraft(**m.model_dump()) for m in payload.team_members],
        hazard_codes=payload.hazard_codes,
        ppe_codes=payload.ppe_codes,
        checklist=[ChecklistAnswer(**c.model_dump()) for c in payload.checklist],
    )
    try:
        created = authoring.create_permit(actor, draft)
    except LifecycleError as e:
        raise http_error(e)

    permit = db.query(Permit).filter(Permit.id == created.permit_id).first()
    return PermitDetail.from_permit(permit)


@router.get("", response_model=PaginatedResponse[PermitSummary])
def list_permits(
    db: Session = Depends(get_db),
    actor: CurrentUser = Depends(get_actor),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    status_filter: Optional[PermitStatus] = Query(None, alias="status"),
    all_permits: bool = Query(False, alias="all"),
):
    """List the caller's own permits; admins may list every permit with ``all=true``."""
    query = db.query(Permit)
    if not (all_permits and actor.role == UserRole.ADMIN):
        query = query.filter(Permit.created_by_user_id == actor.user_id)
    if status_filter:
        query = query.filter(Permit.status == status_filter.value)

    total = query.count()
    permits = query.order_by(Permit.created_at.desc()).offset((page - 1) * per_page).limit(per_page).all()

    return PaginatedResponse[PermitSummary].create(
        items=[PermitSummary.model_validate(p) for p in permits],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get("/{permit_id}", response_model=PermitDetail)
def get_permit(
    permit_id: UUID,
    db: Session = Depends(get_db),
    actor: CurrentUser = Depends(get_actor),
):
    """Get a permit with its approvers, team, hazards, extensions and closure."""
    permit = load_visible_permit(db, permit_id, actor)
    return PermitDetail.from_permit(permit)


@router.delete("/{permit_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_permit(
    permit_id: UUID,
    actor: CurrentUser = Depends(get_actor),
    authoring: PermitAuthoringService = Depends(get_authoring_service),
):
    """Delete an Initiated or Rejected permit."""
    try:
        authoring.delete_permit(actor, permit_id)
    except LifecycleError as e:
        raise http_error(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{permit_id}/history", response_model=List[HistoryResponse])
def get_permit_history(
    permit_id: UUID,
    db: Session = Depends(get_db),
    actor: CurrentUser = Depends(get_actor),
):
    """Get the state transition history for a permit."""
    load_visible_permit(db, permit_id, actor)
    history = db.query(PermitHistory).filter(
        PermitHistory.permit_id == permit_id
    ).order_by(PermitHistory.created_at.asc()).all()

    return [HistoryResponse.model_validate(h) for h in history]


@router.post("/{permit_id}/final-submit", response_model=TransitionResponse)
def final_submit_permit(
    permit_id: UUID,
    actor: CurrentUser = Depends(get_actor),
    controller: PermitLifecycleController = Depends(get_lifecycle_controller),
):
    """Hand a fully approved permit over for work (Approved -> Ready_To_Start)."""
    try:
        outcome = controller.final_submit(permit_id, actor)
    except LifecycleError as e:
        raise http_error(e)
    return TransitionResponse.from_outcome(outcome)


@router.post("/{permit_id}/start", response_model=TransitionResponse)
def start_permit(
    permit_id: UUID,
    actor: CurrentUser = Depends(get_actor),
    controller: PermitLifecycleController = Depends(get_lifecycle_controller),
):
    """Start work (Ready_To_Start -> Active)."""
    try:
        outcome = controller.start(permit_id, actor)
    except LifecycleError as e:
        raise http_error(e)
    return TransitionResponse.from_outcome(outcome)


@router.post("/{permit_id}/request-extension", response_model=TransitionResponse)
def request_extension(
    permit_id: UUID,
    payload: ExtensionRequestIn,
    actor: CurrentUser = Depends(get_actor),
    controller: PermitLifecycleController = Depends(get_lifecycle_controller),
):
    """Ask the permit's approvers for a later end time."""
    try:
        outcome = controller.request_extension(permit_id, actor, payload.new_end_time, payload.reason)
    except LifecycleError as e:
        raise http_error(e)
    return TransitionResponse.from_outcome(outcome)


@router.get("/{permit_id}/extensions", response_model=List[ExtensionResponse])
def list_extensions(
    permit_id: UUID,
    db: Session = Depends(get_db),
    actor: CurrentUser = Depends(get_actor),
):
    """All extension requests of a permit, oldest first."""
    load_visible_permit(db, permit_id, actor)
    extensions = db.query(ExtensionRequest).filter(
        ExtensionRequest.permit_id == permit_id
    ).order_by(ExtensionRequest.created_at.asc()).all()

    return [ExtensionResponse.from_row(e) for e in extensions]


@router.post("/{permit_id}/close", response_model=TransitionResponse)
def close_permit(
    permit_id: UUID,
    payload: CloseAction,
    actor: CurrentUser = Depends(get_actor),
    controller: PermitLifecycleController = Depends(get_lifecycle_controller),
):
    """Close an active permit once the closure checklist is complete."""
    checklist = ClosureChecklist(
        housekeeping_done=payload.housekeeping_done,
        tools_removed=payload.tools_removed,
        locks_removed=payload.locks_removed,
        area_restored=payload.area_restored,
    )
    try:
        outcome = controller.close(permit_id, actor, checklist, remarks=payload.remarks)
    except LifecycleError as e:
        raise http_error(e)
    return TransitionResponse.from_outcome(outcome)
