"""Per-subject, per-item grant cooldowns."""

from __future__ import annotations

import logging
import re
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Mapping, Optional

from .models import ItemKey, Subject
from .utils import utc_now

logger = logging.getLogger("kitbot.cooldowns")

Clock = Callable[[], datetime]

_FRACTION_RE = re.compile(r"\.(\d+)")


def parse_timestamp(raw: str) -> datetime:
    """Parse an ISO-8601 expiry, including the ``Z``-suffixed, 7-digit form .NET writes.

    Naive values are taken as UTC. Raises ``ValueError`` for anything else.
    """
    text = raw.strip()
    if text[-1:] in ("Z", "z"):
        text = text[:-1] + "+00:00"
    # fromisoformat before 3.11 only takes 3 or 6 fractional digits.
    text = _FRACTION_RE.sub(lambda match: "." + match.group(1)[:6].ljust(6, "0"), text, count=1)
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class CooldownTracker:
    """Maps (subject, item key) to the instant the item may be granted again.

    An entry whose expiry is not in the future counts as absent and is dropped
    the next time it is read.
    """

    def __init__(self, *, clock: Clock = utc_now):
        self._clock = clock
        self._entries: Dict[Subject, Dict[ItemKey, datetime]] = {}
        self._lock = threading.RLock()

    def is_blocked(self, subject: Subject, item_key: ItemKey) -> bool:
        with self._lock:
            subject_entries = self._entries.get(subject)
            if not subject_entries:
                return False
            expires_at = subject_entries.get(item_key)
            if expires_at is None:
                return False
            if expires_at > self._clock():
                return True
            del subject_entries[item_key]
            if not subject_entries:
                del self._entries[subject]
            logger.debug("Evicted expired cooldown %s/%s", subject, item_key)
            return False

    def try_record(self, subject: Subject, item_key: ItemKey, duration_seconds: float) -> bool:
        """Start a cooldown. Returns True only when an entry was written."""
        if duration_seconds <= 0:
            return False
        with self._lock:
            expires_at = self._clock() + timedelta(seconds=duration_seconds)
            self._entries.setdefault(subject, {})[item_key] = expires_at
        return True

    def remaining(self, subject: Subject, item_key: ItemKey) -> Optional[timedelta]:
        with self._lock:
            if not self.is_blocked(subject, item_key):
                return None
            return self._entries[subject][item_key] - self._clock()

    def entries_for(self, subject: Subject) -> Dict[ItemKey, datetime]:
        """Return the live (unexpired) cooldowns for a subject."""
        with self._lock:
            for item_key in list(self._entries.get(subject, {})):
                self.is_blocked(subject, item_key)
            return dict(self._entries.get(subject, {}))

    def purge_expired(self) -> int:
        now = self._clock()
        removed = 0
        with self._lock:
            for subject in list(self._entries):
                subject_entries = self._entries[subject]
                for item_key, expires_at in list(subject_entries.items()):
                    if expires_at <= now:
                        del subject_entries[item_key]
                        removed += 1
                if not subject_entries:
                    del self._entries[subject]
        return removed

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return sum(len(items) for items in self._entries.values())

    def to_payload(self) -> Dict[str, Dict[str, str]]:
        with self._lock:
            return {
                subject: {item_key: expires_at.isoformat() for item_key, expires_at in items.items()}
                for subject, items in self._entries.items()
                if items
            }

    def load_payload(self, payload: Mapping[str, Mapping[str, str]]) -> int:
        """Replace the current entries with ``payload``; returns how many were kept."""
        loaded: Dict[Subject, Dict[ItemKey, datetime]] = {}
        count = 0
        for subject, items in payload.items():
            if not isinstance(items, Mapping):
                logger.warning("Skipping malformed cooldowns for subject %s", subject)
                continue
            for item_key, raw_value in items.items():
                try:
                    expires_at = parse_timestamp(str(raw_value))
                except ValueError:
                    logger.warning("Skipping cooldown %s/%s with bad timestamp %r", subject, item_key, raw_value)
                    continue
                loaded.setdefault(str(subject), {})[str(item_key)] = expires_at
                count += 1
        with self._lock:
            self._entries = loaded
        return count


__all__ = ["Clock", "CooldownTracker", "parse_timestamp"]
