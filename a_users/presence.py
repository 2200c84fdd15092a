# a_users/presence.py
from __future__ import annotations
import logging
import threading
import time
from datetime import datetime, timedelta, timezone as dt_timezone
from typing import Dict, Optional, Tuple

from django.utils import formats, timezone

from .models import PRESENCE_OFFLINE, PRESENCE_ONLINE, User

logger = logging.getLogger(__name__)

ONE_MINUTE_MS = 60_000
ONE_HOUR_MS = 60 * ONE_MINUTE_MS


def now_millis() -> int:
    return int(time.time() * 1000)


def _local(millis: int, tz) -> datetime:
    dt = datetime.fromtimestamp(millis / 1000, tz=dt_timezone.utc)
    return timezone.localtime(dt, tz or timezone.get_current_timezone())


def format_status(user: Optional[User], now: int, tz=None) -> str:
    """
    Human-readable presence for `user` as seen at `now` (epoch millis).

    Calendar-day comparisons use `tz`, defaulting to the active Django timezone.
    """
    if user is None:
        return ""

    status = user.presence_status
    if status == PRESENCE_ONLINE:
        return PRESENCE_ONLINE
    if status != PRESENCE_OFFLINE:
        # custom statuses are shown as-is
        return status or ""

    last_seen = user.last_seen
    if last_seen is None or last_seen <= 0:
        return PRESENCE_OFFLINE

    diff = now - last_seen
    if diff < ONE_MINUTE_MS:
        return "seen just now"
    if diff < ONE_HOUR_MS:
        return f"seen {diff // ONE_MINUTE_MS} min ago"

    seen_at = _local(last_seen, tz)
    today = _local(now, tz).date()
    time_text = formats.time_format(seen_at)
    if seen_at.date() == today:
        return f"seen today at {time_text}"
    if seen_at.date() == today - timedelta(days=1):
        return f"seen yesterday at {time_text}"
    return f"seen on {formats.date_format(seen_at, 'SHORT_DATE_FORMAT')} at {time_text}"


class PresenceTracker:
    """
    Memoized status strings, recomputed only when a user's presence fields change.
    Also writes presence transitions to users/{uid}.
    """

    def __init__(self, db=None, tz=None):
        self.db = db
        self.tz = tz
        self._cache: Dict[str, Tuple[tuple, str]] = {}
        self._lock = threading.Lock()

    def status_for(self, user: Optional[User], now: Optional[int] = None) -> str:
        if user is None:
            return ""
        key = (user.presence_status, user.last_seen)
        with self._lock:
            cached = self._cache.get(user.uid)
        if cached is not None and cached[0] == key:
            return cached[1]
        text = format_status(user, now if now is not None else now_millis(), self.tz)
        with self._lock:
            self._cache[user.uid] = (key, text)
        return text

    def set_online(self, uid: str):
        # lastSeenMillis is only rewritten when going offline
        self.db.collection("users").document(uid).update({"presenceStatus": PRESENCE_ONLINE})
        logger.debug("User %s is online", uid)

    def set_offline(self, uid: str, at: Optional[int] = None):
        self.db.collection("users").document(uid).update({
            "presenceStatus": PRESENCE_OFFLINE,
            "lastSeenMillis": at if at is not None else now_millis(),
        })
        logger.debug("User %s is offline", uid)
