"""Spawn/respawn handling: pick a kit, grant it, persist cooldowns on change."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional

from .config import load_kit_config
from .cooldowns import CooldownTracker
from .grant import GrantEngine
from .models import EffectKind, GrantResult, KitConfig, Subject, TriggerKind
from .selection import KitSelector
from .state import CooldownStore

logger = logging.getLogger("kitbot.service")

GrantListener = Callable[[GrantResult, TriggerKind], Awaitable[None]]


class KitService:
    """Runs kit selection and granting for trigger events.

    Grants for one subject are serialized by a per-subject lock; different
    subjects are handled concurrently.
    """

    def __init__(
        self,
        *,
        config: KitConfig,
        engine: GrantEngine,
        selector: KitSelector,
        store: CooldownStore,
        config_path: Optional[Path] = None,
    ):
        self.config = config
        self.engine = engine
        self.selector = selector
        self.store = store
        self.config_path = config_path
        self._subject_locks: Dict[Subject, asyncio.Lock] = {}
        self._lock_users: Dict[Subject, int] = {}
        self._listeners: List[GrantListener] = []

    @property
    def cooldowns(self) -> CooldownTracker:
        return self.engine.cooldowns

    def add_listener(self, listener: GrantListener) -> None:
        self._listeners.append(listener)

    @asynccontextmanager
    async def _subject_lock(self, subject: Subject) -> AsyncIterator[None]:
        """Hold the subject's lock; it is dropped once nobody holds or awaits it."""
        lock = self._subject_locks.setdefault(subject, asyncio.Lock())
        self._lock_users[subject] = self._lock_users.get(subject, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._lock_users[subject] - 1
            if remaining:
                self._lock_users[subject] = remaining
            else:
                del self._lock_users[subject]
                del self._subject_locks[subject]

    async def on_subject_spawned(self, subject: Subject) -> Optional[GrantResult]:
        return await self.handle_trigger(subject, TriggerKind.SPAWN)

    async def on_subject_respawned(self, subject: Subject) -> Optional[GrantResult]:
        return await self.handle_trigger(subject, TriggerKind.RESPAWN)

    async def handle_trigger(
        self,
        subject: Subject,
        trigger: TriggerKind,
        *,
        kit_name: Optional[str] = None,
        force: bool = False,
    ) -> Optional[GrantResult]:
        """Grant a kit to ``subject``.

        ``kit_name`` skips selection and grants that kit from the trigger's
        set. ``force`` ignores the master ``enabled`` switch (admin grants).
        """
        subject = subject.strip()
        if not subject:
            return None
        if not self.config.enabled and not force:
            logger.debug("Kits disabled; ignoring %s for %s", trigger.value, subject)
            return None

        kit_set = self.config.kit_set_for(trigger)
        async with self._subject_lock(subject):
            if kit_name:
                kit = kit_set.find(kit_name)
                if kit is None:
                    logger.warning("Kit %s not found in %s set", kit_name, trigger.value)
                    return None
            else:
                kit = self.selector.select_kit(subject, kit_set)
            if kit is None:
                logger.info("No enabled kit to grant %s on %s", subject, trigger.value)
                return None

            logger.info("Granting kit %s to %s (%s)", kit.name, subject, trigger.value)
            result = await self.engine.grant(subject, kit)
            self._log_result(result)
            if result.state_changed:
                self._persist()

        for listener in list(self._listeners):
            try:
                await listener(result, trigger)
            except Exception as exc:  # pylint: disable=broad-except
                logger.warning("Grant listener failed for %s: %s", subject, exc)
        return result

    def _log_result(self, result: GrantResult) -> None:
        for outcome in result.failures:
            if outcome.kind is EffectKind.COMMAND:
                logger.warning("Command %r failed for %s: %s", outcome.key, result.subject, outcome.error)
            elif outcome.kind in (EffectKind.ITEM, EffectKind.ATTACHMENT):
                logger.warning(
                    "Error adding inventory item %s with amount %s for %s: %s",
                    outcome.key,
                    outcome.amount,
                    result.subject,
                    outcome.error,
                )
            else:
                logger.warning("%s failed for %s: %s", outcome.kind.value.capitalize(), result.subject, outcome.error)
        logger.info(
            "Kit %s for %s: %d granted, %d on cooldown, %d failed%s",
            result.kit_name,
            result.subject,
            len(result.granted),
            len(result.blocked),
            len(result.failures),
            " (cooldowns updated)" if result.state_changed else "",
        )

    def _persist(self) -> bool:
        try:
            self.store.save(self.cooldowns)
        except (OSError, RuntimeError) as exc:
            logger.error("Failed to persist cooldowns: %s", exc)
            return False
        return True

    def load_state(self) -> int:
        return self.store.load(self.cooldowns)

    async def reset_session(self) -> None:
        """Forget every cooldown and rotation position (new map/save file)."""
        self.cooldowns.clear()
        self.selector.memory.clear()
        self._persist()
        logger.info("Session reset: cooldowns and kit rotation cleared.")

    def reload_config(self) -> KitConfig:
        """Re-read the kit file.

        ``ConfigurationLoadFailure`` (missing or malformed file) and
        ``InvalidSelectionInput`` propagate and the old config stays active.
        """
        config = load_kit_config(self.config_path, strict=True)
        self.config = config
        return config


__all__ = ["GrantListener", "KitService"]
