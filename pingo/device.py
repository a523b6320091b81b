"""Device poll loop.

Polls ``/status`` on a fixed cadence, keeps a one-second countdown and hands
each fresh snapshot to the notification scheduler. Responses are numbered
when requested; one that arrives after a newer one has been applied is
dropped.
"""

import argparse
import itertools
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, replace
from typing import Callable, Dict, Optional

from apscheduler.schedulers.background import BackgroundScheduler

from pingo import config
from pingo.client import PingoClient, TransportFailure
from pingo.notifications import (
    ROLE_MEMBER,
    ROLE_MONITOR,
    FcmPresenter,
    LogPresenter,
    NotificationScheduler,
    SchedulerNotificationCenter,
)
from pingo.overdue import coerce_interval_hours, evaluate, format_countdown
from pingo.schemas import StatusResponse

logger = logging.getLogger(__name__)

NEVER_CHECKED_IN = "--"


@dataclass(frozen=True)
class DeviceSettings:
    """What the device knows about itself for one poll cycle."""

    family_email: str
    member_name: str
    role: str = ROLE_MEMBER
    interval_hours: int = 24
    advance_notice_minutes: int = 30
    monitor_threshold_minutes: int = 0

    @classmethod
    def from_env(cls) -> "DeviceSettings":
        role = config.PINGO_ROLE if config.PINGO_ROLE in (ROLE_MEMBER, ROLE_MONITOR) else ROLE_MEMBER
        name = config.PINGO_MEMBER_NAME.strip()
        if role == ROLE_MONITOR and not name:
            name = config.ADMIN_NAME
        return cls(
            family_email=config.PINGO_FAMILY_EMAIL.strip().lower(),
            member_name=name,
            role=role,
            interval_hours=coerce_interval_hours(config.PINGO_ALERT_INTERVAL),
            advance_notice_minutes=config.PINGO_ADVANCE_NOTICE_MINUTES,
            monitor_threshold_minutes=config.PINGO_MONITOR_THRESHOLD_MINUTES,
        )


def adopt_server_interval(settings: DeviceSettings, snapshot: StatusResponse) -> DeviceSettings:
    """Return settings carrying the interval the backend holds for this device.

    The member's own config wins. A member that is not on the roster yet
    falls back to the first configured interval in the family.
    """
    interval = None
    me = snapshot.member(settings.member_name)
    if me is not None:
        interval = me.config.interval
    elif settings.role == ROLE_MEMBER:
        for member in snapshot.students:
            if member.config.interval:
                interval = member.config.interval
                break

    if not interval or interval <= 0 or interval == settings.interval_hours:
        return settings
    logger.info(f"Interval updated from server: {settings.interval_hours}h -> {interval}h")
    return replace(settings, interval_hours=interval)


class PollLoop:
    def __init__(self, client: PingoClient, notifier: NotificationScheduler, settings: DeviceSettings,
                 scheduler: Optional[BackgroundScheduler] = None, executor: Optional[ThreadPoolExecutor] = None,
                 poll_interval: Optional[int] = None, clock: Callable[[], float] = time.time,
                 on_tick: Optional[Callable[["PollLoop"], None]] = None):
        self.client = client
        self.notifier = notifier
        self.settings = settings
        self.scheduler = scheduler
        self.poll_interval = poll_interval or config.POLL_INTERVAL_SECONDS
        self.clock = clock
        self.on_tick = on_tick

        self._executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="pingo-poll")
        self._lock = threading.Lock()
        self._seq = itertools.count(1)
        self._last_applied = 0

        self.snapshot: Optional[StatusResponse] = None
        self.status_line = "Syncing..."
        self.countdown = "Syncing..."

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    def next_sequence(self) -> int:
        with self._lock:
            return next(self._seq)

    # Polling
    def poll(self) -> Optional[Future]:
        settings = self.settings
        if not settings.family_email:
            logger.debug("No family email configured, skipping poll")
            return None
        seq = self.next_sequence()
        return self._executor.submit(self._run_poll, seq, settings.family_email)

    def resume(self) -> Optional[Future]:
        """Poll right away, e.g. when the app comes back to the foreground."""
        return self.poll()

    def _run_poll(self, seq: int, email: str) -> bool:
        try:
            snapshot = self.client.fetch_status(email)
        except TransportFailure as e:
            logger.warning(f"Poll #{seq} failed: {e}")
            self._report_failure(seq, "Offline, retrying...")
            return False
        try:
            return self.apply(seq, snapshot)
        except Exception as e:
            logger.exception(f"Error applying poll #{seq}: {e}")
            self._report_failure(seq, "Sync error, retrying...")
            return False

    def _report_failure(self, seq: int, line: str):
        # a newer poll already succeeded; its status stands
        with self._lock:
            if seq >= self._last_applied:
                self.status_line = line

    def apply(self, seq: int, snapshot: StatusResponse) -> bool:
        """Apply a snapshot unless something newer was applied already."""
        with self._lock:
            if seq <= self._last_applied:
                logger.info(f"Discarding stale poll #{seq} (already applied #{self._last_applied})")
                return False
            self._last_applied = seq
            self.snapshot = snapshot
            self.settings = adopt_server_interval(self.settings, snapshot)
            settings = self.settings
            now = self._now_ms()
            self.countdown = self._countdown_for(snapshot, settings, now)
            self.notifier.reschedule(snapshot, settings, now)
            self.status_line = "Online"
        return True

    # Countdown
    def _countdown_for(self, snapshot: Optional[StatusResponse], settings: DeviceSettings, now: int) -> str:
        if snapshot is None:
            return self.countdown
        me = snapshot.member(settings.member_name)
        if me is None or me.lastCheckin <= 0:
            return NEVER_CHECKED_IN
        return format_countdown(evaluate(me.lastCheckin, settings.interval_hours, now))

    def member_countdowns(self) -> Dict[str, str]:
        """Countdown per watched member, for the monitor view."""
        snapshot = self.snapshot
        if snapshot is None:
            return {}
        now = self._now_ms()
        result = {}
        for member in snapshot.students:
            if member.lastCheckin <= 0:
                result[member.name] = NEVER_CHECKED_IN
            else:
                result[member.name] = format_countdown(
                    evaluate(member.lastCheckin, member.config.interval_hours, now)
                )
        return result

    def tick(self):
        self.countdown = self._countdown_for(self.snapshot, self.settings, self._now_ms())
        if self.on_tick is not None:
            self.on_tick(self)

    # Actions
    def check_in(self) -> bool:
        settings = self.settings
        try:
            self.client.checkin(settings.family_email, settings.member_name)
        except TransportFailure as e:
            logger.warning(f"Check-in failed: {e}")
            self.status_line = "Check-in failed, try again"
            return False
        self.status_line = "Checked in"
        self.poll()
        return True

    # Lifecycle
    def start(self):
        if self.scheduler is None:
            self.scheduler = BackgroundScheduler()
        self.scheduler.add_job(self.poll, 'interval', seconds=self.poll_interval, id="pingo.poll",
                               replace_existing=True)
        self.scheduler.add_job(self.tick, 'interval', seconds=1, id="pingo.tick", replace_existing=True)
        if not self.scheduler.running:
            self.scheduler.start()
        logger.info(f"Polling every {self.poll_interval}s as {self.settings.role} '{self.settings.member_name}'")
        self.resume()

    def stop(self):
        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.shutdown()
        # in-flight polls finish before the client goes away
        self._executor.shutdown(wait=True)
        self.client.close()


def _print_countdown(loop: PollLoop):
    if loop.settings.role == ROLE_MONITOR:
        line = "  ".join(f"{name}: {value}" for name, value in loop.member_countdowns().items())
    else:
        line = loop.countdown
    print(f"\r[{loop.status_line}] {line}    ", end="", flush=True)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Pingo device")
    parser.add_argument("--checkin", action="store_true", help="Check in once and exit")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.debug else logging.INFO)
    settings = DeviceSettings.from_env()
    if not settings.family_email:
        parser.error("PINGO_FAMILY_EMAIL is not set")

    client = PingoClient()
    if args.checkin:
        try:
            client.checkin(settings.family_email, settings.member_name)
        except TransportFailure as e:
            logger.error(f"Check-in failed: {e}")
            return 1
        finally:
            client.close()
        logger.info(f"✅ {settings.member_name} checked in")
        return 0

    scheduler = BackgroundScheduler()
    presenter = FcmPresenter() if config.FCM_DEVICE_TOKEN else LogPresenter()
    center = SchedulerNotificationCenter(scheduler, presenter, settings.advance_notice_minutes)
    loop = PollLoop(client, NotificationScheduler(center), settings, scheduler=scheduler,
                    on_tick=_print_countdown)
    loop.start()
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Stopping...")
    finally:
        loop.stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
