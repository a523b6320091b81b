"""Overdue-alert suppression markers.

A marker under ``ALARM_SENT#{email}#{name}`` means the alert for the member's
current overdue episode has already gone out. Check-ins delete it; the ttl
lets it lapse on its own if a check-in never reaches the backend.
"""

import logging
from typing import Optional

from pingo import config
from pingo.store import KVStore

logger = logging.getLogger(__name__)


def suppression_key(email: str, name: str) -> str:
    return f"ALARM_SENT#{email}#{name}"


class AlarmSuppression:
    def __init__(self, store: KVStore, ttl: Optional[int] = None):
        self.store = store
        self.ttl = ttl or config.ALARM_SUPPRESSION_TTL_SECONDS

    def has_suppression(self, email: str, name: str) -> bool:
        return self.store.get(suppression_key(email, name)) is not None

    def set_suppression(self, email: str, name: str, ttl: Optional[int] = None):
        ttl = ttl or self.ttl
        self.store.put(suppression_key(email, name), "true", ttl=ttl)
        logger.info(f"🔕 Suppressing further overdue alerts for {name} ({email}) for {ttl}s")

    def clear_suppression(self, email: str, name: str, batch=None):
        """Delete the marker; a no-op when there is none.

        Pass ``batch`` to make the delete part of an open store transaction.
        """
        if batch is not None:
            batch.delete(suppression_key(email, name))
        else:
            self.store.delete(suppression_key(email, name))
        logger.debug(f"Cleared overdue suppression for {name} ({email})")
