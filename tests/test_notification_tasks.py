"""
Delivery worker tests

Senders that reach external services are replaced through the
SENDERS table; in_app and sms need no transport.
"""

import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest
from arq.worker import Retry

from learnhub_notify.core.exceptions import PersistenceError
from learnhub_notify.models import ChannelStatus, ChannelType, NotificationStatus, NotificationType
from learnhub_notify.services import delivery_service
from learnhub_notify.services.delivery_service import ChannelOutcome, build_payload
from learnhub_notify.services.notification_service import NotificationService
from learnhub_notify.tasks import notification_tasks
from learnhub_notify.tasks.notification_tasks import (
    cleanup_expired_notifications,
    deliver_due_notifications,
    deliver_notification,
)
from learnhub_notify.utils.time import utcnow


def content(**overrides):
    data = {
        "type": NotificationType.ASSIGNMENT_GRADED,
        "title": "Essay graded",
        "message": "Your essay received 18/20.",
    }
    data.update(overrides)
    return data


@pytest.fixture
def fake_senders(monkeypatch):
    """Record every external send and report it as sent."""
    calls = []

    def fake(channel_type):
        async def send(notification, recipient):
            calls.append((channel_type, notification.id))
            return ChannelOutcome(ChannelStatus.SENT, external_id=f"{channel_type.value}-1")
        return send

    for channel_type in (ChannelType.EMAIL, ChannelType.PUSH, ChannelType.WEBHOOK):
        monkeypatch.setitem(delivery_service.SENDERS, channel_type, fake(channel_type))
    return calls


class TestDeliverDue:

    async def test_in_app_delivered(self, db_session, worker_sessions, student):
        service = NotificationService(db_session)
        notification = await service.create(student.id, **content())

        result = await deliver_due_notifications({})

        assert result == {"due": 1, "delivered": 1, "failed": 0}
        stored = await service.get(notification.id)
        assert stored.status == NotificationStatus.DELIVERED
        assert stored.channels[ChannelType.IN_APP].delivered_at is not None

    async def test_external_channels_sent(self, db_session, worker_sessions, fake_senders, student):
        service = NotificationService(db_session)
        notification = await service.create(
            student.id, **content(channels=["in_app", "email", "push"])
        )

        await deliver_due_notifications({})

        stored = await service.get(notification.id)
        assert stored.status == NotificationStatus.SENT
        assert stored.channels[ChannelType.PUSH].external_id == "push-1"
        assert {c for c, _ in fake_senders} == {ChannelType.EMAIL, ChannelType.PUSH}

    async def test_failed_channel_recorded_and_not_repolled(self, db_session, worker_sessions, student):
        service = NotificationService(db_session)
        notification = await service.create(student.id, **content(channels=["in_app", "sms"]))

        await deliver_due_notifications({})

        stored = await service.get(notification.id)
        assert stored.status == NotificationStatus.PENDING
        assert stored.channels[ChannelType.SMS].status == ChannelStatus.FAILED
        assert stored.channels[ChannelType.SMS].failure_reason == "No SMS provider configured"
        assert await service.find_due() == []

    async def test_email_without_smtp_fails(self, db_session, worker_sessions, student):
        service = NotificationService(db_session)
        notification = await service.create(student.id, **content(channels=["email"]))

        await deliver_due_notifications({})

        stored = await service.get(notification.id)
        assert stored.channels[ChannelType.EMAIL].status == ChannelStatus.FAILED
        assert stored.channels[ChannelType.EMAIL].failure_reason == "SMTP is not configured"

    async def test_push_without_device_fails(self, db_session, worker_sessions, student):
        service = NotificationService(db_session)
        notification = await service.create(student.id, **content(channels=["push"]))

        await deliver_due_notifications({})

        stored = await service.get(notification.id)
        assert stored.channels[ChannelType.PUSH].status == ChannelStatus.FAILED
        assert stored.channels[ChannelType.PUSH].failure_reason == "Recipient has no registered device"

    async def test_scheduled_and_cancelled_skipped(self, db_session, worker_sessions, student, admin):
        service = NotificationService(db_session)
        later = await service.schedule(utcnow() + timedelta(hours=1), student.id, **content())
        cancelled = await service.create(student.id, **content())
        await service.cancel(cancelled.id, admin)

        result = await deliver_due_notifications({})

        assert result["due"] == 0
        assert (await service.get(later.id)).status == NotificationStatus.PENDING

    async def test_nothing_due(self, db_session, worker_sessions):
        assert await deliver_due_notifications({}) == {"due": 0, "delivered": 0, "failed": 0}


class TestDeliverOne:

    async def test_deliver_notification(self, db_session, worker_sessions, student):
        service = NotificationService(db_session)
        notification = await service.create(student.id, **content())

        result = await deliver_notification({"job_id": "job-1"}, str(notification.id))

        assert result == {
            "success": True,
            "notification_id": str(notification.id),
            "status": "delivered",
        }

    async def test_not_yet_due_is_skipped(self, db_session, worker_sessions, student):
        service = NotificationService(db_session)
        notification = await service.schedule(utcnow() + timedelta(days=1), student.id, **content())

        result = await deliver_notification({}, str(notification.id))

        assert result["skipped"] is True
        assert (await service.get(notification.id)).status == NotificationStatus.PENDING

    async def test_invalid_id(self, worker_sessions):
        result = await deliver_notification({}, "not-a-uuid")
        assert result == {"success": False, "error": "Invalid notification ID"}

    async def test_missing_notification(self, db_session, worker_sessions):
        result = await deliver_notification({}, str(uuid4()))
        assert result["success"] is False

    async def test_overlapping_jobs_send_once(self, db_session, worker_sessions, monkeypatch, student):
        started = asyncio.Event()
        release = asyncio.Event()
        sends = []

        async def slow_email(notification, recipient):
            sends.append(notification.id)
            started.set()
            await release.wait()
            return ChannelOutcome(ChannelStatus.SENT)

        monkeypatch.setitem(delivery_service.SENDERS, ChannelType.EMAIL, slow_email)
        service = NotificationService(db_session)
        notification = await service.create(student.id, **content(channels=["email"]))

        first = asyncio.create_task(deliver_notification({}, str(notification.id)))
        await asyncio.wait_for(started.wait(), timeout=5)

        second = await deliver_notification({}, str(notification.id))
        release.set()
        first_result = await asyncio.wait_for(first, timeout=5)

        assert second["skipped"] is True
        assert first_result["status"] == "sent"
        assert sends == [notification.id]

    async def test_store_error_retried(self, worker_sessions, monkeypatch):
        async def unavailable(self, notification_id):
            raise PersistenceError()

        monkeypatch.setattr(notification_tasks.DeliveryService, "deliver", unavailable)

        with pytest.raises(Retry):
            await deliver_notification({"job_try": 1}, str(uuid4()))

    async def test_store_error_gives_up_after_last_try(self, worker_sessions, monkeypatch):
        async def unavailable(self, notification_id):
            raise PersistenceError()

        monkeypatch.setattr(notification_tasks.DeliveryService, "deliver", unavailable)
        monkeypatch.setattr(notification_tasks.settings, "DELIVERY_MAX_TRIES", 3)

        result = await deliver_notification({"job_try": 3}, str(uuid4()))

        assert result == {"success": False, "error": "Notification store unavailable"}


class TestCleanup:

    async def test_cleanup_task(self, db_session, worker_sessions, student):
        service = NotificationService(db_session)
        notification = await service.create(student.id, **content())
        await service.mark_as_read(notification.id, student)

        assert await cleanup_expired_notifications({}) == {"deleted": 0}


class TestSenders:

    async def test_webhook_not_configured(self, db_session, student):
        notification = await NotificationService(db_session).create(
            student.id, **content(channels=["webhook"])
        )
        outcome = await delivery_service.send_webhook(notification, student)

        assert outcome.status == ChannelStatus.FAILED
        assert outcome.reason == "Webhook URL is not configured"

    async def test_webhook_payload(self, db_session, student):
        course_id = uuid4()
        notification = await NotificationService(db_session).create(
            student.id, **content(context={"course_id": course_id, "metadata": {"grade": "18"}})
        )

        body = build_payload(notification)

        assert body["id"] == str(notification.id)
        assert body["type"] == "assignment_graded"
        assert body["course_id"] == str(course_id)
        assert body["metadata"] == {"grade": "18"}

    async def test_webhook_payload_carries_rich_content(self, db_session, student):
        notification = await NotificationService(db_session).create(
            student.id,
            **content(
                content={"markdown": "**18/20**", "action_buttons": [{"text": "View", "url": "/grades"}]},
                personalization={"user_name": "Student"},
            ),
        )

        body = build_payload(notification)

        assert body["content"] == {
            "markdown": "**18/20**",
            "action_buttons": [{"text": "View", "url": "/grades"}],
        }
        assert body["personalization"] == {"user_name": "Student"}
