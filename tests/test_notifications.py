"""Notification scheduler tests."""

from datetime import datetime, timezone

import pytest
from apscheduler.schedulers.background import BackgroundScheduler

from pingo.device import DeviceSettings
from pingo.notifications import (
    ROLE_MONITOR,
    InMemoryNotificationCenter,
    LogPresenter,
    NotificationPermissionDenied,
    NotificationScheduler,
    ReminderKind,
    ScheduledReminder,
    SchedulerNotificationCenter,
    plan_member_reminder,
)
from pingo.overdue import HOUR_MS
from pingo.schemas import MemberConfig, MemberStatus, StatusResponse

NOW = 1_700_000_000_000
MINUTE_MS = 60_000


def _snapshot(*members):
    return StatusResponse(students=[
        MemberStatus(name=name, lastCheckin=last, config=MemberConfig(interval=hours))
        for name, last, hours in members
    ])


def _member_settings(**kw):
    return DeviceSettings(family_email="fam@test.com", member_name="Ann", interval_hours=24,
                          advance_notice_minutes=30, **kw)


def _monitor_settings(threshold=0):
    return DeviceSettings(family_email="fam@test.com", member_name="Admin", role=ROLE_MONITOR,
                          monitor_threshold_minutes=threshold)


def test_member_reminder_fires_before_deadline():
    center = InMemoryNotificationCenter()
    armed = NotificationScheduler(center).reschedule(_snapshot(("Ann", NOW, 24)), _member_settings(), NOW)

    assert len(armed) == 1
    reminder = armed[0]
    assert reminder.kind is ReminderKind.PRE_DEADLINE
    assert reminder.fires_at_ms == NOW + 24 * HOUR_MS - 30 * MINUTE_MS
    assert center.pending_ids() == [reminder.id]


def test_member_reminder_in_the_past_is_not_armed():
    center = InMemoryNotificationCenter()
    late = NOW + 24 * HOUR_MS - 10 * MINUTE_MS
    armed = NotificationScheduler(center).reschedule(_snapshot(("Ann", NOW, 24)), _member_settings(), late)

    assert armed == []
    assert center.pending_ids() == []


def test_reschedule_replaces_previous_reminder():
    center = InMemoryNotificationCenter()
    scheduler = NotificationScheduler(center)
    scheduler.reschedule(_snapshot(("Ann", NOW, 24)), _member_settings(), NOW)

    later = NOW + HOUR_MS
    scheduler.reschedule(_snapshot(("Ann", later, 24)), _member_settings(), later)

    assert len(center.pending) == 1
    (reminder,) = center.pending.values()
    assert reminder.fires_at_ms == later + 24 * HOUR_MS - 30 * MINUTE_MS


def test_member_not_on_roster_gets_no_reminder():
    center = InMemoryNotificationCenter()
    armed = NotificationScheduler(center).reschedule(_snapshot(("Bob", NOW, 24)), _member_settings(), NOW)
    assert armed == []


def test_never_checked_in_gets_no_reminder():
    assert plan_member_reminder("Ann", 0, 24, 30, NOW) is None


def test_monitor_alarm_with_zero_threshold_is_at_deadline():
    center = InMemoryNotificationCenter()
    armed = NotificationScheduler(center).reschedule(
        _snapshot(("Ann", NOW, 12)), _monitor_settings(threshold=0), NOW
    )

    assert [(r.kind, r.subject, r.fires_at_ms) for r in armed] == [
        (ReminderKind.OVERDUE, "Ann", NOW + 12 * HOUR_MS)
    ]


def test_monitor_alarms_per_member_skip_past_and_unchecked():
    center = InMemoryNotificationCenter()
    snapshot = _snapshot(
        ("Ann", NOW, 24),
        ("Bob", NOW - 30 * HOUR_MS, 24),
        ("Cat", 0, 24),
        ("Dan", NOW - HOUR_MS, None),
    )
    armed = NotificationScheduler(center).reschedule(snapshot, _monitor_settings(threshold=15), NOW)

    assert {r.subject: r.fires_at_ms for r in armed} == {
        "Ann": NOW + 24 * HOUR_MS + 15 * MINUTE_MS,
        "Dan": NOW + 23 * HOUR_MS + 15 * MINUTE_MS,
    }
    assert sorted(center.pending_ids()) == ["pingo.overdue.Ann", "pingo.overdue.Dan"]


def test_monitor_reschedule_drops_alarm_for_member_now_overdue():
    center = InMemoryNotificationCenter()
    scheduler = NotificationScheduler(center)
    scheduler.reschedule(_snapshot(("Ann", NOW, 1)), _monitor_settings(), NOW)
    assert center.pending_ids() == ["pingo.overdue.Ann"]

    scheduler.reschedule(_snapshot(("Ann", NOW, 1)), _monitor_settings(), NOW + 2 * HOUR_MS)
    assert center.pending_ids() == []


def test_permission_denied_leaves_nothing_pending():
    center = InMemoryNotificationCenter()
    scheduler = NotificationScheduler(center)
    scheduler.reschedule(_snapshot(("Ann", NOW, 24), ("Bob", NOW, 24)), _monitor_settings(), NOW)
    assert len(center.pending) == 2

    center.authorized = False
    armed = scheduler.reschedule(_snapshot(("Ann", NOW, 24), ("Bob", NOW, 24)), _monitor_settings(), NOW)

    assert armed == []
    assert center.pending == {}


class _DeniedPresenter(LogPresenter):
    def ensure_authorized(self):
        raise NotificationPermissionDenied("denied")


@pytest.fixture
def paused_scheduler():
    scheduler = BackgroundScheduler(timezone=timezone.utc)
    scheduler.start(paused=True)
    yield scheduler
    scheduler.shutdown(wait=False)


def test_scheduler_center_arms_and_cancels_date_jobs(paused_scheduler):
    scheduler = paused_scheduler
    center = SchedulerNotificationCenter(scheduler, LogPresenter())
    future = int(datetime.now(timezone.utc).timestamp() * 1000) + HOUR_MS
    reminder = ScheduledReminder.build(ReminderKind.OVERDUE, "Ann", future)

    center.arm(reminder)
    center.arm(reminder)
    assert center.pending_ids("pingo.overdue.") == ["pingo.overdue.Ann"]

    center.cancel(["pingo.overdue.Ann", "pingo.overdue.Ghost"])
    assert center.pending_ids() == []


def test_scheduler_center_denied_presenter_arms_nothing(paused_scheduler):
    scheduler = paused_scheduler
    center = SchedulerNotificationCenter(scheduler, _DeniedPresenter())
    now = int(datetime.now(timezone.utc).timestamp() * 1000)

    armed = NotificationScheduler(center).reschedule(
        _snapshot(("Ann", now, 24)), _monitor_settings(), now
    )

    assert armed == []
    assert center.pending_ids() == []


def test_role_change_cancels_reminders_of_the_other_kind():
    center = InMemoryNotificationCenter()
    scheduler = NotificationScheduler(center)
    scheduler.reschedule(_snapshot(("Ann", NOW, 24), ("Bob", NOW, 24)), _monitor_settings(), NOW)
    assert sorted(center.pending_ids()) == ["pingo.overdue.Ann", "pingo.overdue.Bob"]

    scheduler.reschedule(_snapshot(("Ann", NOW, 24)), _member_settings(), NOW)

    assert center.pending_ids() == ["pingo.pre_deadline.Ann"]
