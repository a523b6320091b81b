"""Device-local reminders.

Every poll cycle rebuilds the full set of pending reminders for the device:
stale ones are cancelled and fresh ones armed from the latest snapshot.
Only future instants are ever armed.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional

import firebase_admin
from apscheduler.jobstores.base import JobLookupError
from firebase_admin import credentials, messaging
from firebase_admin._messaging_utils import UnregisteredError

from pingo import config
from pingo.overdue import deadline_ms
from pingo.schemas import StatusResponse

if TYPE_CHECKING:
    from pingo.device import DeviceSettings

logger = logging.getLogger(__name__)

ROLE_MEMBER = "student"
ROLE_MONITOR = "parent"


class NotificationPermissionDenied(Exception):
    """The device refuses to arm local notifications."""


class ReminderKind(str, Enum):
    PRE_DEADLINE = "pre_deadline"
    OVERDUE = "overdue"


def reminder_prefix(kind: ReminderKind) -> str:
    return f"pingo.{kind.value}."


@dataclass(frozen=True)
class ScheduledReminder:
    id: str
    fires_at_ms: int
    kind: ReminderKind
    subject: str

    @classmethod
    def build(cls, kind: ReminderKind, subject: str, fires_at_ms: int) -> "ScheduledReminder":
        # one id per (kind, member) so re-arming replaces instead of stacking
        return cls(id=reminder_prefix(kind) + subject, fires_at_ms=fires_at_ms, kind=kind, subject=subject)

    @property
    def fires_at(self) -> datetime:
        return datetime.fromtimestamp(self.fires_at_ms / 1000, tz=timezone.utc)

    def title_and_body(self, minutes: int = 0):
        if self.kind is ReminderKind.PRE_DEADLINE:
            return "Time to check in!", f"Your check-in deadline is in {minutes} minutes, please check in."
        return "⚠️ CHECK-IN MISSED!", f"{self.subject} missed their check-in deadline."


def plan_member_reminder(member: str, last_checkin_ms: int, interval_hours: int,
                         advance_notice_minutes: int, now_ms: int) -> Optional[ScheduledReminder]:
    """The pre-deadline nudge for the device's own member, if still ahead of us."""
    if last_checkin_ms <= 0:
        return None
    fires_at = deadline_ms(last_checkin_ms, interval_hours) - advance_notice_minutes * 60_000
    if fires_at <= now_ms:
        return None
    return ScheduledReminder.build(ReminderKind.PRE_DEADLINE, member, fires_at)


def plan_monitor_alarms(snapshot: StatusResponse, threshold_minutes: int,
                        now_ms: int) -> List[ScheduledReminder]:
    """One overdue alarm per watched member whose alarm instant is still ahead."""
    alarms = []
    for member in snapshot.students:
        if member.lastCheckin <= 0:
            continue
        fires_at = deadline_ms(member.lastCheckin, member.config.interval_hours) + threshold_minutes * 60_000
        if fires_at > now_ms:
            alarms.append(ScheduledReminder.build(ReminderKind.OVERDUE, member.name, fires_at))
    return alarms


class NotificationCenter:
    """Where reminders get armed. Subclasses talk to a real scheduler."""

    def arm(self, reminder: ScheduledReminder) -> None:
        raise NotImplementedError

    def cancel(self, ids: Iterable[str]) -> None:
        raise NotImplementedError

    def pending_ids(self, prefix: str = "") -> List[str]:
        raise NotImplementedError


class InMemoryNotificationCenter(NotificationCenter):
    def __init__(self, authorized: bool = True):
        self.authorized = authorized
        self.pending: Dict[str, ScheduledReminder] = {}

    def arm(self, reminder):
        if not self.authorized:
            raise NotificationPermissionDenied("notifications are disabled on this device")
        self.pending[reminder.id] = reminder

    def cancel(self, ids):
        for reminder_id in list(ids):
            self.pending.pop(reminder_id, None)

    def pending_ids(self, prefix=""):
        return [rid for rid in self.pending if rid.startswith(prefix)]


class SchedulerNotificationCenter(NotificationCenter):
    """Arms reminders as APScheduler date jobs that hand off to a presenter."""

    def __init__(self, scheduler, presenter, advance_notice_minutes: int = 0):
        self.scheduler = scheduler
        self.presenter = presenter
        self.advance_notice_minutes = advance_notice_minutes

    def arm(self, reminder):
        self.presenter.ensure_authorized()
        self.scheduler.add_job(
            self._fire,
            'date',
            run_date=reminder.fires_at,
            id=reminder.id,
            args=[reminder],
            replace_existing=True,
            misfire_grace_time=60,
        )
        logger.info(f"⏰ Armed {reminder.kind.value} reminder for {reminder.subject} at {reminder.fires_at.isoformat()}")

    def cancel(self, ids):
        for reminder_id in list(ids):
            try:
                self.scheduler.remove_job(reminder_id)
            except JobLookupError:
                logger.debug(f"Reminder {reminder_id} already fired or was never armed")

    def pending_ids(self, prefix=""):
        return [job.id for job in self.scheduler.get_jobs() if job.id.startswith(prefix)]

    def _fire(self, reminder: ScheduledReminder):
        title, body = reminder.title_and_body(self.advance_notice_minutes)
        self.presenter.present(reminder, title, body)


class LogPresenter:
    """Presents reminders as log lines, for terminal devices."""

    def ensure_authorized(self):
        pass

    def present(self, reminder, title, body):
        logger.warning(f"🔔 {title} {body}")


class FcmPresenter:
    """Presents reminders as data-only FCM messages to this device's token."""

    def __init__(self, token: Optional[str] = None, service_account: Optional[str] = None):
        self.token = token if token is not None else config.FCM_DEVICE_TOKEN
        self.service_account = service_account if service_account is not None else config.SERVICE_ACCOUNT
        self._initialized = False

    def _init_firebase(self):
        if self._initialized:
            return
        if not firebase_admin._apps:
            if not self.service_account:
                raise NotificationPermissionDenied("GOOGLE_APPLICATION_CREDENTIALS is not set")
            firebase_admin.initialize_app(credentials.Certificate(self.service_account))
        self._initialized = True

    def ensure_authorized(self):
        if not self.token:
            raise NotificationPermissionDenied("no FCM token registered for this device")
        self._init_firebase()

    def present(self, reminder, title, body):
        if not self.token:
            logger.warning(f"Skipping {reminder.id}: device token was revoked")
            return

        message_data = {
            "title": title,
            "body": body,
            "type": "alarm" if reminder.kind is ReminderKind.OVERDUE else "reminder",
            "member": reminder.subject,
            "fires_at": str(reminder.fires_at_ms),
        }
        token_preview = self.token[-20:]
        try:
            response = messaging.send(messaging.Message(
                data=message_data,
                android=messaging.AndroidConfig(priority="high"),
                token=self.token,
            ))
            logger.info(f"FCM SEND SUCCESS -> token=...{token_preview}, id={reminder.id}, response={response}")
        except UnregisteredError:
            logger.warning(f"FCM token ...{token_preview} is no longer registered, disabling notifications")
            self.token = None
        except Exception as e:
            logger.exception(f"FCM SEND FAILED -> token=...{token_preview}, id={reminder.id}, error={e}")


class NotificationScheduler:
    def __init__(self, center: NotificationCenter):
        self.center = center

    def reschedule(self, snapshot: StatusResponse, settings: "DeviceSettings",
                   now_ms: int) -> List[ScheduledReminder]:
        """Replace every pending reminder this device owns with a fresh plan.

        If arming is refused halfway, whatever was armed this cycle is
        cancelled too, so the device ends up with nothing pending rather
        than a partial or stale set.
        """
        if settings.role == ROLE_MONITOR:
            plan = plan_monitor_alarms(snapshot, settings.monitor_threshold_minutes, now_ms)
        else:
            me = snapshot.member(settings.member_name)
            plan = []
            if me is not None:
                reminder = plan_member_reminder(
                    settings.member_name, me.lastCheckin, settings.interval_hours,
                    settings.advance_notice_minutes, now_ms,
                )
                if reminder is not None:
                    plan.append(reminder)

        # both kinds, so reminders left over from a previous role go too
        stale = []
        for kind in ReminderKind:
            stale.extend(self.center.pending_ids(reminder_prefix(kind)))
        self.center.cancel(stale)

        armed = []
        try:
            for reminder in plan:
                self.center.arm(reminder)
                armed.append(reminder)
        except NotificationPermissionDenied as e:
            logger.warning(f"Cannot arm reminders ({e}); relying on the countdown only")
            self.center.cancel([r.id for r in armed])
            return []

        logger.info(f"Rescheduled reminders: cancelled {len(stale)}, armed {len(armed)}")
        return armed
