"""Tests for expiry reminders."""

from datetime import datetime, timedelta

import pytest

from ptw.core.lifecycle.states import NotificationCategory
from ptw.services.notifications import NotificationService
from ptw.services.reminders import send_expiry_reminders

from tests.conftest import FailingSink
from tests.factories import as_actor, permit_draft

END_TIME = datetime(2026, 3, 2, 17, 0, 0)


@pytest.fixture
def notifications(session_factory, settings):
    return NotificationService(session_factory, settings=settings)


@pytest.fixture
def active_permit(authoring, controller, requester, area_manager):
    draft = permit_draft(area_manager=area_manager, end_time=END_TIME)
    permit_id = authoring.create_permit(as_actor(requester), draft).permit_id
    controller.approve(permit_id, as_actor(area_manager), signature="Amal")
    controller.final_submit(permit_id, as_actor(requester))
    controller.start(permit_id, as_actor(requester))
    return permit_id


class TestExpiryReminders:
    """Reminders for permits about to run out."""

    def test_reminds_creator_inside_window(self, session_factory, notifications, active_permit, requester):
        sent = send_expiry_reminders(session_factory, notifications, now=END_TIME - timedelta(minutes=20))

        assert sent == 1
        inbox = notifications.list_for_user(requester.id)
        assert [n.category for n in inbox] == [NotificationCategory.PTW_EXPIRING.value]
        assert "2026-03-02 17:00 UTC" in inbox[0].message
        assert inbox[0].permit_id == active_permit

    def test_outside_window(self, session_factory, notifications, active_permit):
        assert send_expiry_reminders(session_factory, notifications, now=END_TIME - timedelta(hours=2)) == 0
        assert send_expiry_reminders(session_factory, notifications, now=END_TIME + timedelta(minutes=1)) == 0

    def test_only_once_per_permit(self, session_factory, notifications, active_permit):
        now = END_TIME - timedelta(minutes=20)
        assert send_expiry_reminders(session_factory, notifications, now=now) == 1
        assert send_expiry_reminders(session_factory, notifications, now=now + timedelta(minutes=5)) == 0

    def test_permits_not_started_are_skipped(self, session_factory, notifications, authoring, requester, area_manager):
        authoring.create_permit(as_actor(requester), permit_draft(area_manager=area_manager, end_time=END_TIME))
        assert send_expiry_reminders(session_factory, notifications, now=END_TIME - timedelta(minutes=10)) == 0

    def test_sink_failure_is_not_counted(self, session_factory, active_permit):
        sink = FailingSink()
        assert send_expiry_reminders(session_factory, sink, now=END_TIME - timedelta(minutes=10)) == 0
        assert sink.attempts == 1
