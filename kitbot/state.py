"""Cooldown persistence on disk."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, Mapping, Optional

from .cooldowns import CooldownTracker

logger = logging.getLogger("kitbot.state")

LEGACY_COOLDOWN_KEY = "PlayerItemCooldownPeriods"


def _split_legacy(payload: Mapping[str, object]) -> Dict[str, Dict[str, str]]:
    """Convert ``{"<subject>_<item>": iso}`` entries into the nested layout.

    Subjects are Steam IDs and never contain an underscore, so the first
    underscore separates subject from item key.
    """
    nested: Dict[str, Dict[str, str]] = {}
    for raw_key, expires_at in payload.items():
        subject, sep, item_key = str(raw_key).partition("_")
        if not sep or not subject or not item_key:
            logger.warning("Skipping legacy cooldown with unrecognised key %r", raw_key)
            continue
        nested.setdefault(subject, {})[item_key] = str(expires_at)
    return nested


class CooldownStore:
    """Reads and writes the cooldown map as ``{subject: {item: iso8601}}``."""

    def __init__(self, path: Optional[Path]):
        self.path = path

    def load(self, tracker: CooldownTracker) -> int:
        """Replace ``tracker`` contents with what is on disk; returns the entry count."""
        if self.path is None or not self.path.exists():
            tracker.clear()
            return 0
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.error("Failed to parse %s: %s", self.path, exc)
            tracker.clear()
            return 0
        if not isinstance(payload, dict):
            logger.warning("Cooldown file %s must hold a JSON object; starting empty.", self.path)
            tracker.clear()
            return 0
        legacy = payload.get(LEGACY_COOLDOWN_KEY)
        if isinstance(legacy, dict):
            payload = _split_legacy(legacy)
        count = tracker.load_payload(payload)
        purged = tracker.purge_expired()
        logger.info("Loaded %d cooldown(s) from %s (%d already expired).", count - purged, self.path, purged)
        return count - purged

    def save(self, tracker: CooldownTracker) -> None:
        if self.path is None:
            raise RuntimeError("Cooldown state file not configured.")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(tracker.to_payload(), indent=2), encoding="utf-8")
        tmp_path.replace(self.path)
        logger.debug("Persisted %d cooldown(s) to %s", len(tracker), self.path)


__all__ = ["CooldownStore", "LEGACY_COOLDOWN_KEY"]
