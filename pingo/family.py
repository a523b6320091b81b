"""Family services: check-in, config/join, status polling and reset codes.

Every function takes the store (and mailer where email goes out) explicitly
so the HTTP layer stays a thin dispatcher.
"""

import logging
import secrets
import time
from typing import Optional

from pingo import config
from pingo.mailer import Mailer, overdue_alert, reset_code_email
from pingo.overdue import coerce_interval_hours, evaluate
from pingo.schemas import MemberConfig, MemberStatus, ResetResponse, StatusResponse
from pingo.store import KVStore
from pingo.suppression import AlarmSuppression

logger = logging.getLogger(__name__)


def family_key(email: str) -> str:
    return f"FAMILY#{email}"


def status_key(email: str, name: str) -> str:
    return f"STATUS#{email}#{name}"


def config_key(email: str, name: str) -> str:
    return f"CONFIG#{email}#{name}"


def reset_key(email: str) -> str:
    return f"RESET_{email}"


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def normalize_name(name: Optional[str]) -> str:
    """Blank names stand for the family admin."""
    return (name or "").strip() or config.ADMIN_NAME


def now_ms() -> int:
    return int(time.time() * 1000)


def _parse_interval(value) -> Optional[int]:
    if value is None or str(value).strip() == "":
        return None
    try:
        hours = int(str(value).strip())
    except ValueError:
        logger.warning(f"Ignoring non-numeric interval {value!r}")
        return None
    if hours <= 0:
        logger.warning(f"Ignoring non-positive interval {value!r}")
        return None
    return hours


def _parse_millis(raw: Optional[str]) -> int:
    try:
        return int(raw or "0")
    except ValueError:
        logger.warning(f"Ignoring malformed check-in timestamp {raw!r}")
        return 0


def load_family(store: KVStore, email: str) -> dict:
    data = store.get_json(family_key(email)) or {}
    return {"members": list(data.get("members") or []), "pwd": data.get("pwd") or ""}


def record_checkin(store: KVStore, email: str, name: str, now: Optional[int] = None) -> int:
    """Stamp ``name`` as safe now and end any overdue episode it was in.

    The roster is not consulted: a name that never saved a config can still
    check in, it just won't show up in status until it joins.
    """
    ts = now if now is not None else now_ms()
    with store.transaction() as batch:
        batch.put(status_key(email, name), str(ts))
        AlarmSuppression(store).clear_suppression(email, name, batch=batch)
    logger.info(f"Checkin recorded for {name} ({email}) at {ts}")
    return ts


def save_config(store: KVStore, email: str, name: str, interval=None,
                reminder_time: Optional[str] = None, pwd: Optional[str] = None) -> dict:
    """Join the roster if needed and write the member's config.

    Admin interval wins: a member's interval is replaced by the admin's once
    the admin has saved one, and an admin save is copied to every member.
    Fields missing from the request keep their stored values.
    """
    is_admin = name == config.ADMIN_NAME
    family = load_family(store, email)
    if not is_admin and name not in family["members"]:
        family["members"].append(name)
        logger.info(f"👪 {name} joined family {email}")
    if pwd:
        family["pwd"] = pwd

    existing = store.get_json(config_key(email, name)) or {}
    final_interval = _parse_interval(interval)
    if final_interval is None:
        final_interval = _parse_interval(existing.get("interval"))
    final_reminder = reminder_time if reminder_time else existing.get("reminderTime")

    if not is_admin:
        admin_config = store.get_json(config_key(email, config.ADMIN_NAME)) or {}
        admin_interval = _parse_interval(admin_config.get("interval"))
        if admin_interval:
            if final_interval != admin_interval:
                logger.info(f"Admin interval {admin_interval}h overrides {final_interval}h requested for {name}")
            final_interval = admin_interval

    member_config = {"interval": final_interval, "reminderTime": final_reminder}

    fan_out = {}
    if is_admin:
        # members keep their own values for whatever the admin has not set
        for member in family["members"]:
            current = store.get_json(config_key(email, member)) or {}
            fan_out[member] = {
                "interval": final_interval if final_interval is not None else _parse_interval(current.get("interval")),
                "reminderTime": final_reminder or current.get("reminderTime"),
            }

    with store.transaction() as batch:
        batch.put_json(family_key(email), family)
        batch.put_json(config_key(email, name), member_config)
        for member, propagated in fan_out.items():
            batch.put_json(config_key(email, member), propagated)
    if is_admin:
        logger.info(f"Admin config {member_config} propagated to {len(family['members'])} member(s) of {email}")
    return member_config


def get_status(store: KVStore, email: str, mailer: Mailer, now: Optional[int] = None,
               suppression_ttl: Optional[int] = None) -> StatusResponse:
    """Snapshot every member and send at most one alert per overdue episode."""
    family = load_family(store, email)
    current = now if now is not None else now_ms()
    suppression = AlarmSuppression(store, ttl=suppression_ttl)

    students = []
    for member in family["members"]:
        last_checkin = _parse_millis(store.get(status_key(email, member)))
        member_config = MemberConfig.model_validate(store.get_json(config_key(email, member)) or {})
        state = evaluate(last_checkin, coerce_interval_hours(member_config.interval), current)

        if state.overdue and last_checkin > 0 and not suppression.has_suppression(email, member):
            logger.info(f"🚨 {member} ({email}) is overdue by {state.elapsed_past_deadline_ms // 1000}s, alerting family")
            subject, html = overdue_alert(member, last_checkin)
            if not mailer.send(email, subject, html):
                logger.warning(f"❌ Overdue alert for {member} ({email}) was not delivered")
            suppression.set_suppression(email, member)

        students.append(MemberStatus(name=member, lastCheckin=last_checkin, config=member_config))

    return StatusResponse(adminPassword=family["pwd"], students=students)


def issue_reset_code(store: KVStore, email: str, mailer: Mailer) -> ResetResponse:
    code = str(100000 + secrets.randbelow(900000))
    store.put(reset_key(email), code, ttl=config.RESET_CODE_TTL_SECONDS)
    subject, html = reset_code_email(code)
    delivered = mailer.send(email, subject, html)
    logger.info(f"Reset code issued for {email}, delivered={delivered}")
    return ResetResponse(success=delivered, debug_sent_code=code)
