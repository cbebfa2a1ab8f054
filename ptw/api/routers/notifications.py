"""Notification inbox API endpoints."""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import sessionmaker

from ptw.api.deps import (
    get_actor,
    get_notification_service,
    get_session_factory,
    http_error,
    require_admin,
)
from ptw.core.config import Settings, get_settings
from ptw.core.lifecycle import LifecycleError
from ptw.core.lifecycle.controller import CurrentUser
from ptw.services.notifications import NotificationService
from ptw.services.reminders import send_expiry_reminders

router = APIRouter(prefix="/notifications", tags=["notifications"])


# Schemas
class NotificationResponse(BaseModel):
    id: UUID
    permit_id: Optional[UUID]
    category: str
    message: str
    is_read: bool
    read_at: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True


class UnreadCountResponse(BaseModel):
    unread: int


class MarkedReadResponse(BaseModel):
    updated: int


class RemindersResponse(BaseModel):
    sent: int


# Endpoints
@router.get("", response_model=List[NotificationResponse])
def list_notifications(
    actor: CurrentUser = Depends(get_actor),
    notifications: NotificationService = Depends(get_notification_service),
    unread_only: bool = False,
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=100),
):
    """The caller's notifications, newest first."""
    try:
        items = notifications.list_for_user(
            actor.user_id, unread_only=unread_only, limit=per_page, offset=(page - 1) * per_page
        )
    except LifecycleError as e:
        raise http_error(e)
    return [NotificationResponse.model_validate(n) for n in items]


@router.get("/unread-count", response_model=UnreadCountResponse)
def unread_count(
    actor: CurrentUser = Depends(get_actor),
    notifications: NotificationService = Depends(get_notification_service),
):
    try:
        return UnreadCountResponse(unread=notifications.unread_count(actor.user_id))
    except LifecycleError as e:
        raise http_error(e)


@router.post("/read-all", response_model=MarkedReadResponse)
def mark_all_read(
    actor: CurrentUser = Depends(get_actor),
    notifications: NotificationService = Depends(get_notification_service),
):
    try:
        return MarkedReadResponse(updated=notifications.mark_all_read(actor.user_id))
    except LifecycleError as e:
        raise http_error(e)


@router.post("/expiry-reminders", response_model=RemindersResponse)
def run_expiry_reminders(
    actor: CurrentUser = Depends(require_admin),
    session_factory: sessionmaker = Depends(get_session_factory),
    notifications: NotificationService = Depends(get_notification_service),
    settings: Settings = Depends(get_settings),
):
    """Send PTW_EXPIRING reminders for permits ending within the configured window."""
    sent = send_expiry_reminders(
        session_factory, notifications, window_minutes=settings.expiry_reminder_minutes
    )
    return RemindersResponse(sent=sent)


@router.post("/{notification_id}/read", response_model=NotificationResponse)
def mark_read(
    notification_id: UUID,
    actor: CurrentUser = Depends(get_actor),
    notifications: NotificationService = Depends(get_notification_service),
):
    try:
        notification = notifications.mark_read(actor.user_id, notification_id)
    except LifecycleError as e:
        raise http_error(e)
    return NotificationResponse.model_validate(notification)
