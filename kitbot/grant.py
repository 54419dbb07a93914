"""Apply a kit to a subject while honouring per-item cooldowns."""

from __future__ import annotations

import logging
import random
from typing import List, Optional, Protocol

from .cooldowns import CooldownTracker
from .models import (
    EffectKind,
    EffectOutcome,
    EffectStatus,
    GiveawayCommand,
    GiveawayItem,
    GrantResult,
    Kit,
    RandomItemPool,
    Subject,
)
from .selection import WeightedCandidate, pick_weighted

logger = logging.getLogger("kitbot.grant")
_roll_logger = logging.getLogger("kitbot.grant.rolls")


class ExternalEffectFailure(Exception):
    """Raised by a game-server collaborator when a command, give or message fails."""


class GameServer(Protocol):
    async def execute(self, command: str) -> None: ...

    async def strip(self, subject: Subject) -> None: ...

    async def give(self, subject: Subject, shortcode: str, amount: int) -> None: ...

    async def message(self, subject: Subject, text: str) -> None: ...


def _error_text(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


class GrantEngine:
    """Turns a kit into server effects and reports what happened.

    Collaborator failures never abort a grant: each is recorded as a failed
    outcome on the result and the remaining effects still run. The engine
    does not persist anything; ``GrantResult.state_changed`` tells the
    caller whether the cooldown map needs saving.
    """

    def __init__(
        self,
        cooldowns: CooldownTracker,
        server: GameServer,
        *,
        rng: Optional[random.Random] = None,
    ):
        self.cooldowns = cooldowns
        self.server = server
        self._rng = rng or random.Random()

    async def grant(self, subject: Subject, kit: Kit) -> GrantResult:
        result = GrantResult(subject=subject, kit_name=kit.name)

        if kit.remove_existing_inventory:
            await self._strip(subject, result)

        if kit.commands_enabled:
            for command in kit.commands:
                await self._run_command(subject, command, result)

        if kit.items_enabled:
            for item in kit.items:
                await self._give_item(subject, item, result)

        pool = kit.random_pool
        if pool is not None and pool.enabled:
            for item in self.resolve_pool(pool):
                await self._give_item(subject, item, result)

        if kit.show_message and kit.message:
            await self._send_message(subject, kit.message, result)

        return result

    def draw_amount(self, minimum: int, maximum: int) -> int:
        if minimum > maximum:
            return minimum
        return self._rng.randint(minimum, maximum)

    def resolve_pool(self, pool: RandomItemPool) -> List[GiveawayItem]:
        """Draw the concrete items a random pool yields for one grant."""
        count = self.draw_amount(pool.min_amount, pool.max_amount)
        remaining = list(pool.items)
        picks: List[GiveawayItem] = []
        for _ in range(max(0, count)):
            if not remaining or sum(max(item.weight, 0.0) for item in remaining) <= 0:
                break
            candidates = [WeightedCandidate(item, item.weight) for item in remaining]
            item = pick_weighted(candidates, self._rng)
            picks.append(item)
            if not pool.can_have_duplicates:
                remaining = [other for other in remaining if other is not item]
        _roll_logger.debug(
            "Random pool drew %s of %s requested: %s",
            len(picks),
            count,
            [item.shortcode for item in picks],
        )
        return picks

    async def _strip(self, subject: Subject, result: GrantResult) -> None:
        try:
            await self.server.strip(subject)
        except Exception as exc:  # pylint: disable=broad-except
            result.outcomes.append(
                EffectOutcome(EffectKind.STRIP, subject, EffectStatus.FAILED, error=_error_text(exc))
            )
            return
        result.outcomes.append(EffectOutcome(EffectKind.STRIP, subject, EffectStatus.GRANTED))

    async def _run_command(self, subject: Subject, command: GiveawayCommand, result: GrantResult) -> None:
        if self.cooldowns.is_blocked(subject, command.text):
            result.outcomes.append(EffectOutcome(EffectKind.COMMAND, command.text, EffectStatus.BLOCKED))
            return
        try:
            await self.server.execute(command.render(subject))
        except Exception as exc:  # pylint: disable=broad-except
            result.outcomes.append(
                EffectOutcome(EffectKind.COMMAND, command.text, EffectStatus.FAILED, error=_error_text(exc))
            )
            return
        result.outcomes.append(EffectOutcome(EffectKind.COMMAND, command.text, EffectStatus.GRANTED))
        if self.cooldowns.try_record(subject, command.text, command.cooldown_seconds):
            result.state_changed = True

    async def _give_item(self, subject: Subject, item: GiveawayItem, result: GrantResult) -> None:
        if self.cooldowns.is_blocked(subject, item.shortcode):
            result.outcomes.append(EffectOutcome(EffectKind.ITEM, item.shortcode, EffectStatus.BLOCKED))
            return
        amount = self.draw_amount(item.min_amount, item.max_amount)
        try:
            await self.server.give(subject, item.shortcode, amount)
        except Exception as exc:  # pylint: disable=broad-except
            result.outcomes.append(
                EffectOutcome(
                    EffectKind.ITEM,
                    item.shortcode,
                    EffectStatus.FAILED,
                    amount=amount,
                    error=_error_text(exc),
                )
            )
            return
        result.outcomes.append(EffectOutcome(EffectKind.ITEM, item.shortcode, EffectStatus.GRANTED, amount=amount))

        for attachment in item.attachments:
            try:
                await self.server.give(subject, attachment, 1)
            except Exception as exc:  # pylint: disable=broad-except
                result.outcomes.append(
                    EffectOutcome(
                        EffectKind.ATTACHMENT,
                        attachment,
                        EffectStatus.FAILED,
                        amount=1,
                        error=_error_text(exc),
                    )
                )
                continue
            result.outcomes.append(EffectOutcome(EffectKind.ATTACHMENT, attachment, EffectStatus.GRANTED, amount=1))

        if self.cooldowns.try_record(subject, item.shortcode, item.cooldown_seconds):
            result.state_changed = True

    async def _send_message(self, subject: Subject, text: str, result: GrantResult) -> None:
        try:
            await self.server.message(subject, text)
        except Exception as exc:  # pylint: disable=broad-except
            result.outcomes.append(
                EffectOutcome(EffectKind.MESSAGE, subject, EffectStatus.FAILED, error=_error_text(exc))
            )
            return
        result.outcomes.append(EffectOutcome(EffectKind.MESSAGE, subject, EffectStatus.GRANTED))


def _amount_label(item: GiveawayItem) -> str:
    if item.min_amount >= item.max_amount:
        return str(item.min_amount)
    return f"{item.min_amount}-{item.max_amount}"


def describe_kit(kit: Kit) -> str:
    """One-line human summary of a kit, used in admin replies."""
    parts: List[str] = []
    if kit.remove_existing_inventory:
        parts.append("strips inventory")
    if kit.commands_enabled and kit.commands:
        parts.append(f"{len(kit.commands)} command(s)")
    if kit.items_enabled and kit.items:
        parts.append(", ".join(f"{item.shortcode} x{_amount_label(item)}" for item in kit.items))
    pool = kit.random_pool
    if pool is not None and pool.enabled and pool.items:
        count = str(pool.min_amount) if pool.min_amount >= pool.max_amount else f"{pool.min_amount}-{pool.max_amount}"
        parts.append(f"{count} random from {len(pool.items)}")
    if kit.show_message and kit.message:
        parts.append("message")
    state = "" if kit.enabled else " (disabled)"
    body = "; ".join(parts) if parts else "empty"
    return f"{kit.name}{state} [w={kit.weight:g}]: {body}"


__all__ = ["ExternalEffectFailure", "GameServer", "GrantEngine", "describe_kit"]
