"""
Notification service tests

Creation, broadcast, lifecycle, queries and analytics against an
in-memory database.
"""

from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import create_user
from learnhub_notify.core.exceptions import (
    AuthorizationError,
    NotFoundError,
    StateTransitionError,
    ValidationError,
)
from learnhub_notify.models import (
    ChannelStatus,
    ChannelType,
    NotificationPreference,
    NotificationPriority,
    NotificationStatus,
    NotificationType,
)
from learnhub_notify.core.config import settings
from learnhub_notify.services import notification_service
from learnhub_notify.services.notification_service import NotificationService
from learnhub_notify.utils.time import as_utc, utcnow


def content(**overrides):
    data = {
        "type": NotificationType.COURSE_UPDATE,
        "title": "New module published",
        "message": "Module 4 of Intro to Statistics is now available.",
    }
    data.update(overrides)
    return data


# ============================================================
# Create
# ============================================================

class TestCreate:

    async def test_create_defaults(self, db_session: AsyncSession, student):
        service = NotificationService(db_session)
        notification = await service.create(student.id, **content())

        assert notification.id is not None
        assert notification.status == NotificationStatus.PENDING
        assert notification.priority == NotificationPriority.NORMAL
        assert notification.expires_at is not None
        assert notification.short_message == "Module 4 of Intro to Statistics is now available."
        assert list(notification.channels) == [ChannelType.IN_APP]

    async def test_long_message_gets_truncated_preview(self, db_session, student):
        service = NotificationService(db_session)
        notification = await service.create(student.id, **content(message="a" * 400))

        assert len(notification.short_message) <= 100
        assert notification.short_message.endswith("...")

    async def test_default_expiry_is_thirty_days(self, db_session, student):
        notification = await NotificationService(db_session).create(student.id, **content())
        lifetime = as_utc(notification.expires_at) - as_utc(notification.created_at)
        assert abs(lifetime - timedelta(days=30)) < timedelta(seconds=5)

    async def test_title_too_long(self, db_session, student):
        with pytest.raises(ValidationError):
            await NotificationService(db_session).create(student.id, **content(title="t" * 250))

    async def test_blank_title(self, db_session, student):
        with pytest.raises(ValidationError):
            await NotificationService(db_session).create(student.id, **content(title="   "))

    async def test_message_too_long(self, db_session, student):
        with pytest.raises(ValidationError):
            await NotificationService(db_session).create(student.id, **content(message="m" * 1001))

    async def test_unknown_type(self, db_session, student):
        with pytest.raises(ValidationError):
            await NotificationService(db_session).create(student.id, **content(type="gossip"))

    async def test_unknown_priority(self, db_session, student):
        with pytest.raises(ValidationError):
            await NotificationService(db_session).create(student.id, **content(priority="critical"))

    async def test_duplicate_channels(self, db_session, student):
        with pytest.raises(ValidationError):
            await NotificationService(db_session).create(
                student.id, **content(channels=["in_app", "email", "in_app"])
            )

    async def test_empty_channel_list(self, db_session, student):
        with pytest.raises(ValidationError):
            await NotificationService(db_session).create(student.id, **content(channels=[]))

    async def test_expiry_in_the_past(self, db_session, student):
        with pytest.raises(ValidationError):
            await NotificationService(db_session).create(
                student.id, **content(expires_at=utcnow() - timedelta(minutes=1))
            )

    async def test_unknown_recipient(self, db_session, student):
        with pytest.raises(NotFoundError):
            await NotificationService(db_session).create(uuid4(), **content())

    async def test_deleted_recipient(self, db_session):
        gone = await create_user(db_session, "gone@learnhub.test", is_deleted=True)
        with pytest.raises(NotFoundError):
            await NotificationService(db_session).create(gone.id, **content())

    async def test_context_is_stored(self, db_session, student):
        course_id = uuid4()
        notification = await NotificationService(db_session).create(
            student.id,
            **content(context={
                "course_id": course_id,
                "related_url": "/courses/stats-101",
                "metadata": {"module": "4"},
            })
        )
        assert notification.course_id == course_id
        assert notification.related_url == "/courses/stats-101"
        assert notification.extra_data == {"module": "4"}

    async def test_empty_rich_content_not_stored(self, db_session, student):
        notification = await NotificationService(db_session).create(
            student.id, **content(content={}, personalization={"custom_data": {}})
        )
        assert notification.content is None
        assert notification.personalization is None

    async def test_invalid_rich_content(self, db_session, student):
        with pytest.raises(ValidationError):
            await NotificationService(db_session).create(
                student.id, **content(content={"attachments": [{"file_name": "notes.pdf"}]})
            )

    async def test_schedule_sets_delivery_time(self, db_session, student):
        at = utcnow() + timedelta(hours=2)
        notification = await NotificationService(db_session).schedule(at, student.id, **content())
        assert as_utc(notification.scheduled_for) == at
        assert notification.is_scheduled


class TestPreferences:

    async def _prefs(self, db, user, **fields):
        db.add(NotificationPreference(user_id=user.id, **fields))
        await db.commit()

    async def test_disabled_channel_dropped(self, db_session, student):
        await self._prefs(db_session, student, email_enabled=False, push_enabled=True, sms_enabled=False)

        notification = await NotificationService(db_session).create(
            student.id, **content(channels=["in_app", "email", "push"])
        )
        assert set(notification.channels) == {ChannelType.IN_APP, ChannelType.PUSH}

    async def test_muted_type_drops_external_channels(self, db_session, student):
        await self._prefs(
            db_session, student,
            email_enabled=True, push_enabled=True, sms_enabled=True,
            muted_types=["course_update"],
        )

        notification = await NotificationService(db_session).create(
            student.id, **content(channels=["email", "push", "webhook"])
        )
        assert set(notification.channels) == {ChannelType.WEBHOOK}

    async def test_below_min_priority_falls_back_to_in_app(self, db_session, student):
        await self._prefs(
            db_session, student,
            email_enabled=True, push_enabled=True, sms_enabled=False,
            min_priority=NotificationPriority.HIGH,
        )

        notification = await NotificationService(db_session).create(
            student.id, **content(channels=["email"], priority="normal")
        )
        assert list(notification.channels) == [ChannelType.IN_APP]

        urgent = await NotificationService(db_session).create(
            student.id, **content(channels=["email"], priority="urgent")
        )
        assert list(urgent.channels) == [ChannelType.EMAIL]


# ============================================================
# Broadcast
# ============================================================

class TestBroadcast:

    async def test_explicit_list_with_unknown_recipient(self, db_session, student, other_student):
        service = NotificationService(db_session)
        result = await service.broadcast(
            [student.id, uuid4(), other_student.id],
            **content(type=NotificationType.ANNOUNCEMENT)
        )

        assert result.requested == 3
        assert result.created == 2
        assert result.failed == 1
        assert len(result.failed_recipients) == 1

        page = await service.list_for_recipient(student.id)
        assert page.items[0].batch_id == result.batch_id

    async def test_duplicate_ids_notified_once(self, db_session, student):
        result = await NotificationService(db_session).broadcast(
            [student.id, student.id], **content()
        )
        assert result.requested == 1
        assert result.created == 1

    async def test_role_selector(self, db_session, student, other_student, instructor, admin):
        service = NotificationService(db_session)
        result = await service.broadcast("students", **content(type=NotificationType.REMINDER))

        assert result.requested == 2
        assert result.created == 2
        assert await service.unread_count(instructor.id) == 0
        assert await service.unread_count(student.id) == 1

    async def test_all_selector_skips_deleted_users(self, db_session, student, instructor):
        await create_user(db_session, "gone@learnhub.test", is_deleted=True)
        result = await NotificationService(db_session).broadcast("all", **content())
        assert result.created == 2

    async def test_invalid_payload_rejected_up_front(self, db_session, student):
        with pytest.raises(ValidationError):
            await NotificationService(db_session).broadcast(
                [student.id], **content(title="t" * 201)
            )
        assert await NotificationService(db_session).unread_count(student.id) == 0

    async def test_unknown_selector(self, db_session):
        with pytest.raises(ValidationError):
            await NotificationService(db_session).broadcast("parents", **content())

    async def test_empty_list(self, db_session):
        with pytest.raises(ValidationError):
            await NotificationService(db_session).broadcast([], **content())


# ============================================================
# Lifecycle and ownership
# ============================================================

class TestLifecycle:

    async def test_owner_marks_read(self, db_session, student):
        service = NotificationService(db_session)
        notification = await service.create(student.id, **content())

        updated = await service.mark_as_read(notification.id, student)
        first_read = updated.read_at
        again = await service.mark_as_read(notification.id, student)

        assert updated.status == NotificationStatus.READ
        assert as_utc(again.read_at) == as_utc(first_read)

    async def test_other_user_cannot_touch(self, db_session, student, other_student):
        service = NotificationService(db_session)
        notification = await service.create(student.id, **content())

        with pytest.raises(AuthorizationError):
            await service.mark_as_read(notification.id, other_student)
        with pytest.raises(AuthorizationError):
            await service.delete(notification.id, other_student)

    async def test_missing_notification(self, db_session, student):
        with pytest.raises(NotFoundError):
            await NotificationService(db_session).mark_as_read(uuid4(), student)

    async def test_admin_may_delete(self, db_session, student, admin):
        service = NotificationService(db_session)
        notification = await service.create(student.id, **content())

        await service.delete(notification.id, admin)
        with pytest.raises(NotFoundError):
            await service.get(notification.id)

    async def test_sender_cancels(self, db_session, student, instructor):
        service = NotificationService(db_session)
        notification = await service.create(student.id, sender_id=instructor.id, **content())

        cancelled = await service.cancel(notification.id, instructor)
        assert cancelled.status == NotificationStatus.CANCELLED

    async def test_recipient_cannot_cancel(self, db_session, student, instructor):
        service = NotificationService(db_session)
        notification = await service.create(student.id, sender_id=instructor.id, **content())

        with pytest.raises(AuthorizationError):
            await service.cancel(notification.id, student)

    async def test_cancel_after_read(self, db_session, student, admin):
        service = NotificationService(db_session)
        notification = await service.create(student.id, **content())
        await service.mark_as_read(notification.id, student)

        with pytest.raises(StateTransitionError):
            await service.cancel(notification.id, admin)

    async def test_reschedule(self, db_session, student, admin):
        service = NotificationService(db_session)
        notification = await service.create(student.id, **content(channels=["in_app", "email"]))
        await service.update_channel_status(notification.id, "in_app", "delivered")

        new_time = utcnow() + timedelta(days=1)
        rescheduled = await service.reschedule(notification.id, admin, new_time)

        assert rescheduled.status == NotificationStatus.PENDING
        assert as_utc(rescheduled.scheduled_for) == new_time
        assert all(c.status == ChannelStatus.PENDING for c in rescheduled.channels.values())

    async def test_update_channel_status_persists(self, db_session, student):
        service = NotificationService(db_session)
        notification = await service.create(student.id, **content(channels=["in_app", "push"]))

        await service.update_channel_status(notification.id, ChannelType.IN_APP, ChannelStatus.DELIVERED)
        await service.update_channel_status(
            notification.id, ChannelType.PUSH, ChannelStatus.SENT, external_id="projects/x/messages/1"
        )

        stored = await service.get(notification.id)
        assert stored.status == NotificationStatus.SENT
        assert stored.channels[ChannelType.PUSH].external_id == "projects/x/messages/1"

    async def test_update_missing_channel(self, db_session, student):
        service = NotificationService(db_session)
        notification = await service.create(student.id, **content())

        with pytest.raises(NotFoundError):
            await service.update_channel_status(notification.id, "sms", "sent")

    async def test_dismiss_and_action(self, db_session, student):
        service = NotificationService(db_session)
        notification = await service.create(student.id, **content(type=NotificationType.PEER_REVIEW_REQUEST))

        await service.take_action(notification.id, student, "accepted", {"review": "7"})
        dismissed = await service.dismiss(notification.id, student)

        assert dismissed.dismissed_at is not None
        assert dismissed.action_taken == "accepted"


# ============================================================
# Delivery claims and queueing
# ============================================================

class TestChannelClaims:

    async def test_second_claim_refused(self, db_session, student):
        service = NotificationService(db_session)
        notification = await service.create(student.id, **content(channels=["email"]))

        assert await service.claim_channel(notification, ChannelType.EMAIL) is True
        assert await service.claim_channel(notification, ChannelType.EMAIL) is False

    async def test_stale_claim_taken_over(self, db_session, student, monkeypatch):
        service = NotificationService(db_session)
        notification = await service.create(student.id, **content(channels=["email"]))
        assert await service.claim_channel(notification, ChannelType.EMAIL) is True

        monkeypatch.setattr(settings, "DELIVERY_CLAIM_TIMEOUT_SECONDS", 0)
        assert await service.claim_channel(notification, ChannelType.EMAIL) is True

    async def test_finished_channel_not_claimed(self, db_session, student):
        service = NotificationService(db_session)
        notification = await service.create(student.id, **content())
        notification = await service.update_channel_status(notification.id, "in_app", "delivered")

        assert await service.claim_channel(notification, ChannelType.IN_APP) is False

    async def test_reschedule_releases_claim(self, db_session, student, admin):
        service = NotificationService(db_session)
        notification = await service.create(student.id, **content(channels=["email"]))
        await service.claim_channel(notification, ChannelType.EMAIL)

        notification = await service.reschedule(notification.id, admin, utcnow() + timedelta(hours=1))

        assert notification.channels[ChannelType.EMAIL].claimed_at is None
        assert await service.claim_channel(notification, ChannelType.EMAIL) is True

    async def test_missing_channel(self, db_session, student):
        service = NotificationService(db_session)
        notification = await service.create(student.id, **content())

        with pytest.raises(NotFoundError):
            await service.claim_channel(notification, ChannelType.SMS)


class FakePool:
    def __init__(self):
        self.jobs = []

    async def enqueue_job(self, function, **kwargs):
        self.jobs.append((function, kwargs))


class TestQueueDelivery:

    @pytest.fixture
    def pool(self, monkeypatch):
        pool = FakePool()

        async def get_pool():
            return pool

        monkeypatch.setattr(settings, "DELIVERY_ENQUEUE_ON_CREATE", True)
        monkeypatch.setattr(notification_service, "get_arq_pool", get_pool)
        return pool

    async def test_due_notification_enqueued(self, db_session, student, pool):
        service = NotificationService(db_session)
        notification = await service.create(student.id, **content())

        assert await service.queue_delivery(notification) is True
        assert pool.jobs == [("deliver_notification", {"notification_id": str(notification.id)})]

    async def test_scheduled_notification_left_for_poll(self, db_session, student, pool):
        service = NotificationService(db_session)
        notification = await service.schedule(utcnow() + timedelta(hours=1), student.id, **content())

        assert await service.queue_delivery(notification) is False
        assert pool.jobs == []

    async def test_disabled_by_setting(self, db_session, student, pool, monkeypatch):
        service = NotificationService(db_session)
        notification = await service.create(student.id, **content())
        monkeypatch.setattr(settings, "DELIVERY_ENQUEUE_ON_CREATE", False)

        assert await service.queue_delivery(notification) is False
        assert pool.jobs == []

    async def test_unreachable_queue(self, db_session, student, monkeypatch):
        async def unreachable():
            raise ConnectionError("redis down")

        monkeypatch.setattr(settings, "DELIVERY_ENQUEUE_ON_CREATE", True)
        monkeypatch.setattr(notification_service, "get_arq_pool", unreachable)
        service = NotificationService(db_session)
        notification = await service.create(student.id, **content())

        assert await service.queue_delivery(notification) is False


# ============================================================
# Queries
# ============================================================

class TestQueries:

    async def test_unread_count_ignores_read_and_cancelled(self, db_session, student, admin):
        service = NotificationService(db_session)
        first = await service.create(student.id, **content())
        second = await service.create(student.id, **content())
        await service.create(student.id, **content())

        await service.mark_as_read(first.id, student)
        await service.cancel(second.id, admin)

        assert await service.unread_count(student.id) == 1

    async def test_mark_all_read_by_category(self, db_session, student, other_student):
        service = NotificationService(db_session)
        await service.create(student.id, **content(type=NotificationType.COURSE_UPDATE))
        await service.create(student.id, **content(type=NotificationType.COURSE_ENROLLMENT))
        assignment = await service.create(student.id, **content(type=NotificationType.ASSIGNMENT_GRADED))
        other = await service.create(other_student.id, **content(type=NotificationType.COURSE_UPDATE))

        modified = await service.mark_all_read(student.id, type="course")

        assert modified == 2
        assert (await service.get(assignment.id)).read_at is None
        assert (await service.get(other.id)).read_at is None
        assert await service.unread_count(student.id) == 1

    async def test_mark_all_read_skips_cancelled(self, db_session, student, admin):
        service = NotificationService(db_session)
        notification = await service.create(student.id, **content())
        await service.cancel(notification.id, admin)

        assert await service.mark_all_read(student.id) == 0
        assert (await service.get(notification.id)).status == NotificationStatus.CANCELLED

    async def test_list_newest_first_with_pages(self, db_session, student):
        service = NotificationService(db_session)
        created = [
            await service.create(student.id, **content(title=f"Update {i}"))
            for i in range(5)
        ]

        page = await service.list_for_recipient(student.id, page=1, limit=2)
        assert page.total == 5
        assert page.pages == 3
        assert page.unread_count == 5
        assert [n.id for n in page.items] == [created[4].id, created[3].id]

        last = await service.list_for_recipient(student.id, page=3, limit=2)
        assert [n.id for n in last.items] == [created[0].id]

    async def test_list_unread_only(self, db_session, student):
        service = NotificationService(db_session)
        read = await service.create(student.id, **content())
        unread = await service.create(student.id, **content())
        await service.mark_as_read(read.id, student)

        page = await service.list_for_recipient(student.id, unread_only=True)
        assert [n.id for n in page.items] == [unread.id]

    @pytest.mark.parametrize("page, limit", [(0, 20), (1, 0), (1, 51)])
    async def test_list_bounds(self, db_session, student, page, limit):
        with pytest.raises(ValidationError):
            await NotificationService(db_session).list_for_recipient(student.id, page=page, limit=limit)


# ============================================================
# Scheduling and expiry
# ============================================================

class TestDuePoll:

    async def test_scheduled_notification_becomes_due(self, db_session, student):
        service = NotificationService(db_session)
        now = utcnow()
        scheduled = await service.schedule(now + timedelta(hours=1), student.id, **content())

        assert await service.find_due(now + timedelta(minutes=30)) == []

        due = await service.find_due(now + timedelta(minutes=61))
        assert [n.id for n in due] == [scheduled.id]

    async def test_priority_order(self, db_session, student):
        service = NotificationService(db_session)
        low = await service.create(student.id, **content(priority="low"))
        urgent = await service.create(student.id, **content(priority="urgent"))
        normal = await service.create(student.id, **content(priority="normal"))
        high = await service.create(student.id, **content(priority="high"))

        due = await service.find_due()
        assert [n.id for n in due] == [urgent.id, high.id, normal.id, low.id]

    async def test_cancelled_and_expired_not_due(self, db_session, student, admin):
        service = NotificationService(db_session)
        cancelled = await service.create(student.id, **content())
        await service.cancel(cancelled.id, admin)
        await service.create(student.id, **content(expires_at=utcnow() + timedelta(hours=1)))

        assert await service.find_due(utcnow() + timedelta(hours=2)) == []

    async def test_cleanup_expired(self, db_session, student, admin):
        service = NotificationService(db_session)
        read = await service.create(student.id, **content())
        dismissed = await service.create(student.id, **content())
        cancelled = await service.create(student.id, **content())
        unread = await service.create(student.id, **content())

        await service.mark_as_read(read.id, student)
        await service.dismiss(dismissed.id, student)
        await service.cancel(cancelled.id, admin)

        assert await service.cleanup_expired(utcnow() + timedelta(days=1)) == 0

        deleted = await service.cleanup_expired(utcnow() + timedelta(days=31))
        assert deleted == 3
        assert (await service.get(unread.id)).id == unread.id
        with pytest.raises(NotFoundError):
            await service.get(read.id)


# ============================================================
# Analytics
# ============================================================

class TestAnalytics:

    async def test_read_rate(self, db_session, student):
        service = NotificationService(db_session)
        notifications = [await service.create(student.id, **content()) for _ in range(10)]
        for notification in notifications[:4]:
            await service.mark_as_read(notification.id, student)
        await service.mark_as_clicked(notifications[0].id, student)

        stats = await service.analytics(recipient_id=student.id)

        assert stats["total"] == 10
        assert stats["read_rate"] == 40.0
        assert stats["click_rate"] == 10.0
        assert stats["type_distribution"] == {"course_update": 10}
        assert stats["status_distribution"] == {"read": 4, "pending": 6}
        assert stats["channel_distribution"] == {"in_app": {"pending": 10}}

    async def test_empty_set(self, db_session, student):
        stats = await NotificationService(db_session).analytics(recipient_id=student.id)
        assert stats["total"] == 0
        assert stats["read_rate"] == 0.0
        assert stats["click_rate"] == 0.0

    async def test_rates_rounded(self, db_session, student):
        service = NotificationService(db_session)
        notifications = [await service.create(student.id, **content()) for _ in range(3)]
        await service.mark_as_read(notifications[0].id, student)

        stats = await service.analytics(recipient_id=student.id)
        assert stats["read_rate"] == 33.33

    async def test_bad_date_range(self, db_session):
        with pytest.raises(ValidationError):
            await NotificationService(db_session).analytics(
                start=utcnow(), end=utcnow() - timedelta(days=1)
            )

    async def test_scope(self, student, other_student, admin):
        assert NotificationService.analytics_scope(student) == student.id
        assert NotificationService.analytics_scope(admin) is None
        assert NotificationService.analytics_scope(admin, student.id) == student.id
        with pytest.raises(AuthorizationError):
            NotificationService.analytics_scope(student, other_student.id)
