"""Tests for DeadlineChecker."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

from models import AppRole, DataEntryStatus, NotificationPreferences, utcnow
from services import DeadlineChecker, NotificationService, days_until


def set_deadline(store, category_id, deadline):
    store.categories[category_id] = store.categories[category_id].model_copy(update={"deadline": deadline})


def notifications_of_type(store, notification_type):
    return [n for n in store.notifications.values() if n.type == notification_type]


@pytest.mark.parametrize("hours,expected", [
    (72, 3),
    (71, 3),
    (48.5, 3),
    (24, 1),
    (1, 1),
    (0, 0),
    (-5, 0),
    (-30, -1),
])
def test_days_until(hours, expected):
    now = datetime(2024, 9, 1, 12, 0, tzinfo=timezone.utc)
    assert days_until(now + timedelta(hours=hours), now) == expected


def test_days_until_naive_deadline():
    now = datetime(2024, 9, 1, 12, 0, tzinfo=timezone.utc)
    assert days_until(datetime(2024, 9, 2, 12, 0), now) == 1


class TestWarnings:

    @pytest.mark.asyncio
    async def test_three_day_warning_once_per_day(self, services, store, demo):
        now = utcnow()
        set_deadline(store, demo.category_id, now + timedelta(days=3))

        first = await services.deadlines.run(now)
        second = await services.deadlines.run(now)

        assert first.processed == 1
        assert first.warnings_3_days == 1
        assert second.warnings_3_days == 0
        warnings = notifications_of_type(store, "warning")
        assert {n.user_id for n in warnings} == {demo.users["schooladmin1"], demo.users["schooladmin2"]}

        notification = next(n for n in warnings if n.user_id == demo.users["schooladmin1"])
        assert notification.title == "Deadline approaching: General information"
        assert notification.message.startswith("Dear School Admin 1, 3 days are left")
        assert f"/data-entry/{demo.category_id}" in notification.message
        assert notification.priority == "high"
        assert notification.related_entity_id == str(demo.category_id)

    @pytest.mark.asyncio
    async def test_one_day_warning_for_sector_category(self, services, store, demo):
        now = utcnow()
        set_deadline(store, demo.category_id, None)
        set_deadline(store, demo.sector_category_id, now + timedelta(hours=20))

        result = await services.deadlines.run(now)

        assert result.warnings_1_day == 1
        recipients = {n.user_id for n in notifications_of_type(store, "warning")}
        assert recipients == {demo.users["sectoradmin"], demo.users["regionadmin"]}
        assert all(n.priority == "critical" for n in notifications_of_type(store, "warning"))

    @pytest.mark.asyncio
    async def test_no_warning_between_thresholds(self, services, store, demo):
        now = utcnow()
        set_deadline(store, demo.category_id, now + timedelta(days=2))

        result = await services.deadlines.run(now)

        assert result.processed == 1
        assert result.warnings_3_days == result.warnings_1_day == 0
        assert store.notifications == {}

    @pytest.mark.asyncio
    async def test_no_recipients(self, services, store, demo):
        store.user_roles = {k: r for k, r in store.user_roles.items() if r.role != AppRole.SCHOOLADMIN}

        result = await services.deadlines.run()

        assert result.errors == ["No recipients found for category General information"]

    @pytest.mark.asyncio
    async def test_missing_template(self, store, demo):
        notifications = NotificationService(store, default_templates={})
        checker = DeadlineChecker(store, notifications)

        result = await checker.run()

        assert result.errors == ["Template not found: deadline_warning_3_days"]

    @pytest.mark.asyncio
    async def test_store_failure(self, services, store):
        with patch.object(store, "list_categories", AsyncMock(side_effect=RuntimeError("timeout"))):
            result = await services.deadlines.run()
        assert result.processed == 0
        assert result.errors == ["Categories fetch error: timeout"]


class TestExpiry:

    @pytest.mark.asyncio
    async def test_expired_category_auto_approves_pending(
        self, services, store, demo, school_id, schooladmin, complete_values
    ):
        await services.data_entry.save_entries(schooladmin, school_id, demo.category_id, complete_values)
        await services.data_entry.submit_category(schooladmin, school_id, demo.category_id)
        now = utcnow()
        set_deadline(store, demo.category_id, now - timedelta(hours=2))

        result = await services.deadlines.run(now)

        assert result.expired == 1
        assert result.auto_approved == 4
        entries = [e for e in store.entries.values() if e.school_id == school_id]
        assert all(e.status == DataEntryStatus.APPROVED for e in entries)
        assert all(e.approved_by is None for e in entries)
        assert all(e.approval_comment == "Automatically approved after the deadline" for e in entries)

        history = await services.transitions.get_status_history(school_id, demo.category_id)
        assert history[0].metadata["reason"] == "deadline_expired"
        assert history[0].changed_by is None

        expired = notifications_of_type(store, "error")
        assert {n.user_id for n in expired} == {demo.users["schooladmin1"], demo.users["schooladmin2"]}
        assert expired[0].title == "Deadline passed: General information"

    @pytest.mark.asyncio
    async def test_expiry_is_handled_once(self, services, store, demo):
        now = utcnow()
        set_deadline(store, demo.category_id, now - timedelta(days=1))

        first = await services.deadlines.run(now)
        second = await services.deadlines.run(now + timedelta(days=1))

        assert first.expired == 1
        assert second.expired == 0
        assert first.auto_approved == 0

    @pytest.mark.asyncio
    async def test_expiry_without_notifications_is_handled_once(
        self, services, store, demo, school_id, schooladmin, complete_values
    ):
        for name in ("schooladmin1", "schooladmin2"):
            store.set_preferences(NotificationPreferences(user_id=demo.users[name], deadline_notifications=False))
        now = utcnow()
        set_deadline(store, demo.category_id, now - timedelta(days=1))

        first = await services.deadlines.run(now)
        assert notifications_of_type(store, "error") == []

        # data submitted after the deadline was handled waits for a reviewer
        await services.data_entry.save_entries(schooladmin, school_id, demo.category_id, complete_values)
        await services.data_entry.submit_category(schooladmin, school_id, demo.category_id)
        second = await services.deadlines.run(now + timedelta(hours=1))

        assert (first.expired, second.expired) == (1, 0)
        assert second.auto_approved == 0
        assert await services.transitions.get_current_status(school_id, demo.category_id) == DataEntryStatus.PENDING
        assert len([l for l in store.audit_logs if l.action == "deadline_expired"]) == 1

    @pytest.mark.asyncio
    async def test_expiry_without_template_is_handled_once(self, store, demo):
        checker = DeadlineChecker(store, NotificationService(store, default_templates={}))
        now = utcnow()
        set_deadline(store, demo.category_id, now - timedelta(hours=3))

        first = await checker.run(now)
        second = await checker.run(now + timedelta(hours=1))

        assert (first.expired, second.expired) == (1, 0)
        markers = [l for l in store.audit_logs if l.action == "deadline_expired"]
        assert [m.entity_id for m in markers] == [str(demo.category_id)]
        assert markers[0].new_value["auto_approved"] == 0

    @pytest.mark.asyncio
    async def test_moved_deadline_expires_again(self, services, store, demo):
        now = utcnow()
        set_deadline(store, demo.category_id, now - timedelta(days=2))
        await services.deadlines.run(now)

        set_deadline(store, demo.category_id, now + timedelta(hours=2))
        result = await services.deadlines.run(now + timedelta(hours=3))

        assert result.expired == 1

    @pytest.mark.asyncio
    async def test_completion_cache_is_refreshed(
        self, services, store, demo, school_id, schooladmin, complete_values
    ):
        await services.data_entry.save_entries(schooladmin, school_id, demo.category_id, complete_values)
        await services.data_entry.submit_category(schooladmin, school_id, demo.category_id)
        before = await services.completion.school_completion(school_id)
        assert before.status_counts["pending"] == 4
        now = utcnow()
        set_deadline(store, demo.category_id, now - timedelta(minutes=1))

        await services.deadlines.run(now)

        after = await services.completion.school_completion(school_id)
        assert after.status_counts["approved"] == 4
