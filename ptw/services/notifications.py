"""Notification delivery and inbox.

Handles:
- Persisting in-app notifications handed over by the lifecycle controller
- Optional webhook delivery of every notification
- Inbox queries and read tracking
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional
from uuid import UUID

import httpx
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ptw.common.timeutil import utcnow
from ptw.core.config import Settings, get_settings
from ptw.core.lifecycle.engine import NotificationEvent
from ptw.core.lifecycle.errors import NotFoundError, StorageFailure
from ptw.db.models import Notification

logger = logging.getLogger(__name__)


class NotificationService:
    """
    Notification sink backed by the notifications table.

    Each event is written in its own short transaction, after the permit
    change that produced it has committed. When a webhook URL is
    configured the event is also posted there; webhook failures are
    logged and do not affect the stored notification.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        """
        Initialize notification service.

        Args:
            session_factory: SQLAlchemy session factory
            settings: Application settings (defaults to the cached settings)
            http_client: Client used for webhook delivery
        """
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.http_client = http_client

    def send(self, event: NotificationEvent) -> UUID:
        """Store one notification and forward it to the webhook, if any."""
        db = self.session_factory()
        try:
            notification = Notification(
                user_id=event.recipient_user_id,
                permit_id=event.permit_id,
                category=event.category.value,
                message=event.message,
                is_read=False,
                created_at=utcnow(),
            )
            db.add(notification)
            db.commit()
            notification_id = notification.id
        except SQLAlchemyError:
            db.rollback()
            logger.exception(f"Failed to store {event.category.value} notification for user {event.recipient_user_id}")
            raise
        finally:
            db.close()

        logger.debug(f"Stored {event.category.value} notification {notification_id}")

        if self.settings.notification_webhook_url:
            self._send_webhook(event, notification_id)
        return notification_id

    def _send_webhook(self, event: NotificationEvent, notification_id: UUID) -> None:
        payload = self._build_webhook_payload(event, notification_id)
        try:
            self._deliver_webhook(payload)
        except httpx.HTTPError:
            logger.exception(f"Failed to send webhook to {self.settings.notification_webhook_url}")

    def _deliver_webhook(self, payload: Dict[str, Any]) -> None:
        """Actually deliver the webhook."""
        headers = {"Content-Type": "application/json"}
        if self.http_client is not None:
            response = self.http_client.post(
                self.settings.notification_webhook_url, json=payload, headers=headers
            )
            response.raise_for_status()
            return

        with httpx.Client(timeout=self.settings.webhook_timeout) as client:
            response = client.post(self.settings.notification_webhook_url, json=payload, headers=headers)
            response.raise_for_status()

    def _build_webhook_payload(self, event: NotificationEvent, notification_id: UUID) -> Dict[str, Any]:
        return {
            "event": event.category.value,
            "timestamp": utcnow().isoformat(),
            "notification_id": str(notification_id),
            "data": {
                "recipient_user_id": str(event.recipient_user_id),
                "permit_id": str(event.permit_id),
                "message": event.message,
            },
        }

    # Inbox

    def list_for_user(
        self,
        user_id: UUID,
        *,
        unread_only: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Notification]:
        with self._session() as db:
            query = db.query(Notification).filter(Notification.user_id == user_id)
            if unread_only:
                query = query.filter(Notification.is_read.is_(False))
            query = query.order_by(Notification.created_at.desc())
            return query.offset(offset).limit(limit).all()

    def unread_count(self, user_id: UUID) -> int:
        with self._session() as db:
            return db.query(func.count(Notification.id)).filter(
                Notification.user_id == user_id,
                Notification.is_read.is_(False),
            ).scalar() or 0

    def mark_read(self, user_id: UUID, notification_id: UUID) -> Notification:
        with self._session() as db:
            notification = db.query(Notification).filter(
                Notification.id == notification_id,
                Notification.user_id == user_id,
            ).first()
            if notification is None:
                raise NotFoundError(f"Notification {notification_id} not found")
            if not notification.is_read:
                notification.is_read = True
                notification.read_at = utcnow()
                db.commit()
            return notification

    def mark_all_read(self, user_id: UUID) -> int:
        with self._session() as db:
            updated = db.query(Notification).filter(
                Notification.user_id == user_id,
                Notification.is_read.is_(False),
            ).update({"is_read": True, "read_at": utcnow()}, synchronize_session=False)
            db.commit()
            return updated

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self.session_factory()
        try:
            yield db
        except SQLAlchemyError as e:
            db.rollback()
            logger.exception("Notification store failure")
            raise StorageFailure(f"The notification store failed: {e}") from e
        finally:
            db.close()
