"""Kit and item selection: weighted rolls, cyclic rotation, policy dispatch."""

from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Generic, List, Optional, Sequence, TypeVar

from .models import Kit, KitSet, SelectionPolicy, Subject

logger = logging.getLogger("kitbot.selection")

T = TypeVar("T")

# Shared generator; CPython's Random methods are safe to call from several threads.
_default_rng = random.Random()


class InvalidSelectionInput(ValueError):
    """Raised when a mandatory choice is requested over an unusable candidate list."""


class EmptySelectionSet(ValueError):
    """Raised when rotating over an empty list."""


@dataclass(frozen=True)
class WeightedCandidate(Generic[T]):
    payload: T
    weight: float


def total_weight(candidates: Sequence[WeightedCandidate[T]]) -> float:
    if not candidates:
        raise InvalidSelectionInput("Weighted selection needs at least one candidate.")
    total = 0.0
    for candidate in candidates:
        weight = float(candidate.weight)
        if weight < 0:
            raise InvalidSelectionInput(f"Candidate {candidate.payload!r} has negative weight {weight}.")
        total += weight
    if total <= 0:
        raise InvalidSelectionInput("Weighted selection needs a positive total weight.")
    return total


def pick_weighted(candidates: Sequence[WeightedCandidate[T]], rng: Optional[random.Random] = None) -> T:
    """Roulette-wheel pick over ``candidates`` in their given order.

    The draw falls in ``[0, total)`` and the first candidate whose cumulative
    weight is strictly greater than the draw wins, so every candidate owns
    the half-open interval ``[previous_sum, previous_sum + weight)``.
    """
    total = total_weight(candidates)
    draw = (rng or _default_rng).random() * total
    cumulative = 0.0
    for candidate in candidates:
        cumulative += float(candidate.weight)
        if cumulative > draw:
            logger.debug("Weighted pick %.3f of %.3f -> %r", draw, total, candidate.payload)
            return candidate.payload
    # Float rounding can leave the draw a hair above the final sum.
    for candidate in reversed(candidates):
        if candidate.weight > 0:
            return candidate.payload
    raise InvalidSelectionInput("Weighted selection needs a positive total weight.")


def pick_uniform(items: Sequence[T], rng: Optional[random.Random] = None) -> T:
    if not items:
        raise InvalidSelectionInput("Uniform selection needs at least one candidate.")
    return (rng or _default_rng).choice(items)


class RotationMemory:
    """Remembers the key of the last item picked for each subject."""

    def __init__(self) -> None:
        self._last: Dict[Subject, str] = {}
        self._lock = threading.RLock()

    def get(self, subject: Subject) -> Optional[str]:
        with self._lock:
            return self._last.get(subject)

    def set(self, subject: Subject, key: str) -> None:
        with self._lock:
            self._last[subject] = key

    def update(self, subject: Subject, compute: Callable[[Optional[str]], str]) -> str:
        """Atomically replace the subject's entry with ``compute(previous)``."""
        with self._lock:
            new_key = compute(self._last.get(subject))
            self._last[subject] = new_key
            return new_key

    def clear(self) -> None:
        with self._lock:
            self._last.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._last)


def pick_next(
    subject: Subject,
    items: Sequence[T],
    memory: RotationMemory,
    policy: SelectionPolicy,
    *,
    key: Callable[[T], str] = str,
) -> T:
    """Return the item after (or before) the subject's previous pick, wrapping around.

    Every call moves the subject's position, even if nothing was granted.
    """
    if not items:
        raise EmptySelectionSet("Cannot rotate over an empty list.")
    if len(items) == 1:
        return items[0]
    if policy not in (SelectionPolicy.ASCENDING, SelectionPolicy.DESCENDING):
        raise ValueError(f"Rotation needs an ordered policy, got {policy.value}.")

    descending = policy is SelectionPolicy.DESCENDING
    keys = [key(item) for item in items]
    chosen: List[int] = []

    def _advance(last_key: Optional[str]) -> str:
        if last_key is None or last_key not in keys:
            index = len(items) - 1 if descending else 0
        elif descending:
            index = (keys.index(last_key) - 1) % len(items)
        else:
            index = (keys.index(last_key) + 1) % len(items)
        chosen.append(index)
        return keys[index]

    memory.update(subject, _advance)
    return items[chosen[0]]


class KitSelector:
    """Choose the kit a subject receives from a kit set."""

    def __init__(self, memory: Optional[RotationMemory] = None, *, rng: Optional[random.Random] = None):
        self.memory = memory if memory is not None else RotationMemory()
        self._rng = rng

    def select_kit(self, subject: Subject, kit_set: KitSet) -> Optional[Kit]:
        kits = kit_set.enabled_kits()
        if not kits:
            return None
        if kit_set.policy is SelectionPolicy.RANDOM:
            candidates = [WeightedCandidate(kit, kit.weight) for kit in kits]
            return pick_weighted(candidates, self._rng)
        return pick_next(subject, kits, self.memory, kit_set.policy, key=lambda kit: kit.name)


__all__ = [
    "EmptySelectionSet",
    "InvalidSelectionInput",
    "KitSelector",
    "RotationMemory",
    "WeightedCandidate",
    "pick_next",
    "pick_uniform",
    "pick_weighted",
    "total_weight",
]
