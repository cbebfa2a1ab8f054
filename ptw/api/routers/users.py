"""User provisioning and approver lookup endpoints."""

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from ptw.api.deps import get_actor, get_db, http_error, require_admin
from ptw.api.schemas.common import ERROR_RESPONSES
from ptw.api.schemas.users import ApproverOption, UserCreate, UserResponse, UserUpdate
from ptw.core.lifecycle import ApproverRole, UserRole, ValidationError
from ptw.core.lifecycle.controller import CurrentUser
from ptw.core.lifecycle.states import USER_ROLE_FOR_SLOT
from ptw.db.models import User
from ptw.db.seed import seed_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"], responses=ERROR_RESPONSES)


@router.get("/approvers/{role}", response_model=List[ApproverOption])
def list_approvers(
    role: ApproverRole,
    db: Session = Depends(get_db),
    actor: CurrentUser = Depends(get_actor),
):
    """Active users who can fill the given approver slot on a new permit."""
    users = db.query(User).filter(
        User.role == USER_ROLE_FOR_SLOT[role].value,
        User.is_active.is_(True),
    ).order_by(User.full_name.asc(), User.email.asc()).all()

    return [ApproverOption.model_validate(u) for u in users]


@router.get("", response_model=List[UserResponse])
def list_users(
    db: Session = Depends(get_db),
    actor: CurrentUser = Depends(require_admin),
    role: Optional[UserRole] = None,
    include_inactive: bool = Query(False, description="Include deactivated accounts"),
):
    """List user accounts (Admin only)."""
    query = db.query(User)
    if role:
        query = query.filter(User.role == role.value)
    if not include_inactive:
        query = query.filter(User.is_active.is_(True))

    return [UserResponse.model_validate(u) for u in query.order_by(User.created_at.desc()).all()]


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def create_user(
    payload: UserCreate,
    db: Session = Depends(get_db),
    actor: CurrentUser = Depends(require_admin),
):
    """Provision a user account (Admin only)."""
    email = payload.email.lower()
    if db.query(User).filter(User.email == email).first():
        raise http_error(ValidationError(f"A user with email {email} already exists", field="email"))

    user = seed_user(db, email, payload.full_name, payload.role)
    db.commit()
    logger.info(f"User {user.email} created with role {user.role} by admin {actor.user_id}")
    return UserResponse.model_validate(user)


@router.patch("/{user_id}", response_model=UserResponse)
def update_user(
    user_id: UUID,
    payload: UserUpdate,
    db: Session = Depends(get_db),
    actor: CurrentUser = Depends(require_admin),
):
    """Rename, re-role or deactivate a user (Admin only).

    Approver slots already bound to the user are not touched; a
    deactivated approver can no longer sign in to decide them.
    """
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "not_found", "message": f"User {user_id} not found"},
        )

    if payload.full_name is not None:
        user.full_name = payload.full_name
    if payload.role is not None:
        user.role = payload.role.value
    if payload.is_active is not None:
        user.is_active = payload.is_active
    db.commit()

    logger.info(f"User {user.email} updated by admin {actor.user_id}")
    return UserResponse.model_validate(user)
