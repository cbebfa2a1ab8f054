"""Expiry reminders for permits whose work window is about to close."""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from ptw.common.timeutil import utcnow
from ptw.core.lifecycle.engine import NotificationEvent, render_message
from ptw.core.lifecycle.states import WORKING_STATES, NotificationCategory
from ptw.db.models import Notification, Permit

logger = logging.getLogger(__name__)


def send_expiry_reminders(
    session_factory: sessionmaker,
    sink,
    *,
    now: Optional[datetime] = None,
    window_minutes: int = 30,
) -> int:
    """
    Remind requesters that their permit is about to expire.

    Every permit in its work window whose end time falls within the next
    ``window_minutes`` gets one PTW_EXPIRING notification to its creator.
    A permit that already has one is skipped.

    Returns:
        Number of reminders handed to the sink
    """
    now = now or utcnow()
    horizon = now + timedelta(minutes=window_minutes)

    db = session_factory()
    try:
        already_reminded = (
            select(Notification.permit_id)
            .where(
                Notification.category == NotificationCategory.PTW_EXPIRING.value,
                Notification.permit_id.isnot(None),
            )
            .distinct()
        )
        permits = (
            db.query(Permit)
            .filter(
                Permit.status.in_([s.value for s in WORKING_STATES]),
                Permit.end_time > now,
                Permit.end_time <= horizon,
                Permit.id.notin_(already_reminded),
            )
            .order_by(Permit.end_time.asc())
            .all()
        )
        events = [
            NotificationEvent(
                recipient_user_id=permit.created_by_user_id,
                permit_id=permit.id,
                category=NotificationCategory.PTW_EXPIRING,
                message=render_message(
                    NotificationCategory.PTW_EXPIRING,
                    serial=permit.permit_serial,
                    location=permit.work_location,
                    end_time=permit.end_time.strftime("%Y-%m-%d %H:%M UTC"),
                ),
            )
            for permit in permits
        ]
    finally:
        db.close()

    sent = 0
    for event in events:
        try:
            sink.send(event)
            sent += 1
        except Exception:
            logger.exception(f"Failed to send expiry reminder for permit {event.permit_id}")

    if sent:
        logger.info(f"Sent {sent} expiry reminder(s)")
    return sent
