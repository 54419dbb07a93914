"""Turn server console lines into spawn/respawn triggers."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional, Pattern, Sequence, Tuple

from .models import Subject, TriggerKind

logger = logging.getLogger("kitbot.events")

DEFAULT_SPAWN_PATTERN = r"^(?P<name>[^\[\]]+?)\[(?P<subject>\d+)\] has entered the game$"
DEFAULT_RESPAWN_PATTERN = r"^(?P<name>[^\[\]]+?)\[(?P<subject>\d+)\] has respawned$"

# Player chat is echoed to the console with these prefixes and never counts as an event.
CHAT_PREFIXES = ("[CHAT]", "[TEAM CHAT]")


@dataclass(frozen=True)
class SpawnEvent:
    subject: Subject
    trigger: TriggerKind
    name: str = ""


def _compile(pattern: str) -> Pattern[str]:
    compiled = re.compile(pattern)
    if "subject" not in compiled.groupindex:
        raise ValueError(f"Event pattern {pattern!r} needs a (?P<subject>...) group.")
    return compiled


class ConsoleEventParser:
    """Match console lines against the spawn and respawn patterns."""

    def __init__(
        self,
        *,
        spawn_pattern: str = DEFAULT_SPAWN_PATTERN,
        respawn_pattern: str = DEFAULT_RESPAWN_PATTERN,
    ):
        self._patterns: Sequence[Tuple[TriggerKind, Pattern[str]]] = (
            (TriggerKind.SPAWN, _compile(spawn_pattern)),
            (TriggerKind.RESPAWN, _compile(respawn_pattern)),
        )

    def parse(self, line: str) -> Optional[SpawnEvent]:
        text = (line or "").strip()
        if not text:
            return None
        if text.upper().startswith(CHAT_PREFIXES):
            logger.debug("Ignoring chat line: %.200s", text)
            return None
        for trigger, pattern in self._patterns:
            match = pattern.search(text)
            if match is None:
                continue
            subject = (match.group("subject") or "").strip()
            if not subject:
                continue
            name = match.groupdict().get("name") or ""
            logger.debug("Console line matched %s for %s (%s)", trigger.value, subject, name)
            return SpawnEvent(subject=subject, trigger=trigger, name=name.strip())
        return None


__all__ = ["CHAT_PREFIXES", "ConsoleEventParser", "DEFAULT_RESPAWN_PATTERN", "DEFAULT_SPAWN_PATTERN", "SpawnEvent"]
