"""Tests for the notification service."""

import json
import logging
import uuid

import httpx
import pytest

from ptw.core.authoring import PermitAuthoringService
from ptw.core.lifecycle.engine import NotificationEvent
from ptw.core.lifecycle.errors import NotFoundError
from ptw.core.lifecycle.states import NotificationCategory
from ptw.db.models import Notification
from ptw.services.notifications import NotificationService

from tests.factories import as_actor, permit_draft


def make_event(user, permit_id=None, category=NotificationCategory.APPROVAL_REQUEST,
               message="PTW PTW-0001 requires your approval"):
    return NotificationEvent(
        recipient_user_id=user.id,
        permit_id=permit_id,
        category=category,
        message=message,
    )


@pytest.fixture
def service(session_factory, settings):
    return NotificationService(session_factory, settings=settings)


class TestSend:
    """Storing and forwarding notifications."""

    def test_stores_row(self, service, read_db, area_manager):
        notification_id = service.send(make_event(area_manager))

        row = read_db(lambda db: db.get(Notification, notification_id))
        assert row.user_id == area_manager.id
        assert row.category == "APPROVAL_REQUEST"
        assert row.is_read is False

    def test_webhook_receives_payload(self, session_factory, settings, area_manager):
        received = []

        def handler(request):
            received.append(json.loads(request.content))
            return httpx.Response(200)

        settings.notification_webhook_url = "https://hooks.example.com/ptw"
        client = httpx.Client(transport=httpx.MockTransport(handler))
        service = NotificationService(session_factory, settings=settings, http_client=client)

        notification_id = service.send(make_event(area_manager))

        assert len(received) == 1
        assert received[0]["event"] == "APPROVAL_REQUEST"
        assert received[0]["notification_id"] == str(notification_id)
        assert received[0]["data"]["recipient_user_id"] == str(area_manager.id)

    def test_webhook_failure_is_logged(self, session_factory, settings, read_db, area_manager, caplog):
        settings.notification_webhook_url = "https://hooks.example.com/ptw"
        client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
        service = NotificationService(session_factory, settings=settings, http_client=client)

        with caplog.at_level(logging.ERROR, logger="ptw.services.notifications"):
            notification_id = service.send(make_event(area_manager))

        assert "Failed to send webhook" in caplog.text
        assert read_db(lambda db: db.get(Notification, notification_id)) is not None

    def test_lifecycle_events_reach_inbox(self, session_factory, settings, requester, area_manager):
        service = NotificationService(session_factory, settings=settings)
        authoring = PermitAuthoringService(session_factory, sink=service, settings=settings)
        created = authoring.create_permit(as_actor(requester), permit_draft(area_manager=area_manager))

        inbox = service.list_for_user(area_manager.id)
        assert len(inbox) == 1
        assert inbox[0].permit_id == created.permit_id
        assert created.permit_serial in inbox[0].message

    def test_each_recipient_gets_own_row(self, service, area_manager, safety_officer):
        for user in (area_manager, safety_officer):
            service.send(make_event(user))
        assert service.unread_count(area_manager.id) == 1
        assert service.unread_count(safety_officer.id) == 1


class TestInbox:
    """Listing and read tracking."""

    def test_unread_count_and_mark_read(self, service, area_manager):
        first = service.send(make_event(area_manager))
        service.send(make_event(area_manager))
        assert service.unread_count(area_manager.id) == 2

        notification = service.mark_read(area_manager.id, first)
        assert notification.is_read is True
        assert notification.read_at is not None
        assert service.unread_count(area_manager.id) == 1
        assert len(service.list_for_user(area_manager.id, unread_only=True)) == 1

    def test_mark_all_read(self, service, area_manager, safety_officer):
        service.send(make_event(area_manager))
        service.send(make_event(area_manager))
        service.send(make_event(safety_officer))

        assert service.mark_all_read(area_manager.id) == 2
        assert service.unread_count(area_manager.id) == 0
        assert service.unread_count(safety_officer.id) == 1

    def test_cannot_read_someone_elses(self, service, area_manager, safety_officer):
        notification_id = service.send(make_event(area_manager))
        with pytest.raises(NotFoundError):
            service.mark_read(safety_officer.id, notification_id)

    def test_unknown_notification(self, service, area_manager):
        with pytest.raises(NotFoundError):
            service.mark_read(area_manager.id, uuid.uuid4())

    def test_pagination(self, service, area_manager):
        for _ in range(5):
            service.send(make_event(area_manager))
        assert len(service.list_for_user(area_manager.id, limit=2)) == 2
        assert len(service.list_for_user(area_manager.id, limit=10, offset=4)) == 1
