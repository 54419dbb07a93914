"""Dataclasses and shared type definitions for KitBot."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import List, Optional, Tuple


Subject = str
ItemKey = str
CooldownKey = Tuple[Subject, ItemKey]


class SelectionPolicy(enum.Enum):
    RANDOM = "random"
    ASCENDING = "ascending"
    DESCENDING = "descending"

    @classmethod
    def parse(cls, raw: object) -> "SelectionPolicy":
        """Accept ``"random"``, ``"Ascending"``, ``1`` and similar config spellings."""
        if isinstance(raw, SelectionPolicy):
            return raw
        if isinstance(raw, int) and not isinstance(raw, bool):
            members = list(cls)
            if 0 <= raw < len(members):
                return members[raw]
            raise ValueError(f"Unknown selection policy index {raw}")
        text = str(raw or "").strip().lower()
        for member in cls:
            if member.value == text:
                return member
        raise ValueError(f"Unknown selection policy '{raw}'")


class TriggerKind(enum.Enum):
    SPAWN = "spawn"
    RESPAWN = "respawn"


@dataclass(frozen=True)
class GiveawayCommand:
    text: str
    cooldown_seconds: int = 0

    def render(self, subject: Subject) -> str:
        return self.text.replace("{0}", subject)


@dataclass(frozen=True)
class GiveawayItem:
    shortcode: str
    min_amount: int = 1
    max_amount: int = 1
    cooldown_seconds: int = 0
    attachments: Tuple[str, ...] = field(default_factory=tuple)
    weight: float = 1.0


@dataclass(frozen=True)
class RandomItemPool:
    items: Tuple[GiveawayItem, ...] = field(default_factory=tuple)
    min_amount: int = 1
    max_amount: int = 1
    can_have_duplicates: bool = False
    enabled: bool = True


@dataclass(frozen=True)
class Kit:
    name: str
    enabled: bool = True
    weight: float = 1.0
    commands: Tuple[GiveawayCommand, ...] = field(default_factory=tuple)
    items: Tuple[GiveawayItem, ...] = field(default_factory=tuple)
    random_pool: Optional[RandomItemPool] = None
    commands_enabled: bool = True
    items_enabled: bool = True
    show_message: bool = False
    message: str = ""
    remove_existing_inventory: bool = False


@dataclass(frozen=True)
class KitSet:
    kits: Tuple[Kit, ...] = field(default_factory=tuple)
    policy: SelectionPolicy = SelectionPolicy.RANDOM

    def enabled_kits(self) -> Tuple[Kit, ...]:
        return tuple(kit for kit in self.kits if kit.enabled)

    def find(self, name: str) -> Optional[Kit]:
        lowered = name.strip().lower()
        for kit in self.kits:
            if kit.name.lower() == lowered:
                return kit
        return None


@dataclass(frozen=True)
class KitConfig:
    """Top-level configuration: a master switch plus the kit set per trigger."""

    enabled: bool = False
    respawn: KitSet = field(default_factory=KitSet)
    spawn: Optional[KitSet] = None

    def kit_set_for(self, trigger: TriggerKind) -> KitSet:
        if trigger is TriggerKind.SPAWN and self.spawn is not None:
            return self.spawn
        return self.respawn


class EffectKind(enum.Enum):
    STRIP = "strip"
    COMMAND = "command"
    ITEM = "item"
    ATTACHMENT = "attachment"
    MESSAGE = "message"


class EffectStatus(enum.Enum):
    GRANTED = "granted"
    BLOCKED = "blocked"
    FAILED = "failed"


@dataclass(frozen=True)
class EffectOutcome:
    kind: EffectKind
    key: str
    status: EffectStatus
    amount: int = 0
    error: Optional[str] = None


@dataclass
class GrantResult:
    subject: Subject
    kit_name: str
    state_changed: bool = False
    outcomes: List[EffectOutcome] = field(default_factory=list)

    def _with_status(self, status: EffectStatus) -> Tuple[EffectOutcome, ...]:
        return tuple(outcome for outcome in self.outcomes if outcome.status is status)

    @property
    def granted(self) -> Tuple[EffectOutcome, ...]:
        return self._with_status(EffectStatus.GRANTED)

    @property
    def blocked(self) -> Tuple[EffectOutcome, ...]:
        return self._with_status(EffectStatus.BLOCKED)

    @property
    def failures(self) -> Tuple[EffectOutcome, ...]:
        return self._with_status(EffectStatus.FAILED)


__all__ = [
    "CooldownKey",
    "EffectKind",
    "EffectOutcome",
    "EffectStatus",
    "GiveawayCommand",
    "GiveawayItem",
    "GrantResult",
    "ItemKey",
    "Kit",
    "KitConfig",
    "KitSet",
    "RandomItemPool",
    "SelectionPolicy",
    "Subject",
    "TriggerKind",
]
