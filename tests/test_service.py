import asyncio
import json
import random
import tempfile
import unittest
from pathlib import Path

from kitbot.config import ConfigurationLoadFailure
from kitbot.cooldowns import CooldownTracker
from kitbot.grant import ExternalEffectFailure, GrantEngine
from kitbot.models import GiveawayCommand, GiveawayItem, Kit, KitConfig, KitSet, SelectionPolicy, TriggerKind
from kitbot.selection import InvalidSelectionInput, KitSelector, RotationMemory
from kitbot.service import KitService


class FakeServer:
    def __init__(self) -> None:
        self.calls = []

    async def execute(self, command: str) -> None:
        await asyncio.sleep(0)
        self.calls.append(("execute", command))
        if command.startswith("fail"):
            raise ExternalEffectFailure("nope")

    async def strip(self, subject: str) -> None:
        self.calls.append(("strip", subject))

    async def give(self, subject: str, shortcode: str, amount: int) -> None:
        await asyncio.sleep(0)
        self.calls.append(("give", subject, shortcode, amount))

    async def message(self, subject: str, text: str) -> None:
        self.calls.append(("message", subject, text))


class CountingStore:
    def __init__(self) -> None:
        self.saves = 0

    def save(self, tracker: CooldownTracker) -> None:
        self.saves += 1

    def load(self, tracker: CooldownTracker) -> int:
        return 0


STARTER = Kit(
    name="starter",
    commands=(GiveawayCommand("recycler.give {0}", cooldown_seconds=3600),),
    items=(GiveawayItem("wood", 10, 10),),
)


class KitServiceTests(unittest.IsolatedAsyncioTestCase):
    def _service(self, config: KitConfig, *, config_path=None) -> KitService:
        self.server = FakeServer()
        self.store = CountingStore()
        return KitService(
            config=config,
            engine=GrantEngine(CooldownTracker(), self.server, rng=random.Random(1)),
            selector=KitSelector(RotationMemory(), rng=random.Random(1)),
            store=self.store,
            config_path=config_path,
        )

    async def test_disabled_config_grants_nothing(self) -> None:
        service = self._service(KitConfig(enabled=False, respawn=KitSet(kits=(STARTER,))))
        self.assertIsNone(await service.on_subject_respawned("P1"))
        self.assertEqual(self.server.calls, [])

    async def test_persists_only_when_cooldowns_change(self) -> None:
        service = self._service(KitConfig(enabled=True, respawn=KitSet(kits=(STARTER,))))
        first = await service.on_subject_respawned("P1")
        second = await service.on_subject_respawned("P1")
        self.assertTrue(first.state_changed)
        self.assertFalse(second.state_changed)
        self.assertEqual(self.store.saves, 1)

    async def test_concurrent_grants_to_same_subject_do_not_double_grant(self) -> None:
        service = self._service(KitConfig(enabled=True, respawn=KitSet(kits=(STARTER,))))
        await asyncio.gather(*(service.on_subject_respawned("P1") for _ in range(5)))
        executed = [call for call in self.server.calls if call[0] == "execute"]
        self.assertEqual(executed, [("execute", "recycler.give P1")])

    async def test_subject_locks_are_released_after_grants(self) -> None:
        service = self._service(KitConfig(enabled=True, respawn=KitSet(kits=(STARTER,))))
        subjects = [f"P{index}" for index in range(20)]
        await asyncio.gather(*(service.on_subject_respawned(subject) for subject in subjects * 2))
        self.assertEqual(service._subject_locks, {})
        self.assertEqual(service._lock_users, {})
        self.assertEqual(len(service.cooldowns), len(subjects))

    async def test_spawn_uses_spawn_set_when_present(self) -> None:
        fresh = Kit(name="fresh", items=(GiveawayItem("bandage"),))
        config = KitConfig(enabled=True, respawn=KitSet(kits=(STARTER,)), spawn=KitSet(kits=(fresh,)))
        service = self._service(config)
        result = await service.on_subject_spawned("P1")
        self.assertEqual(result.kit_name, "fresh")

    async def test_rotation_and_session_reset(self) -> None:
        kits = (Kit(name="a"), Kit(name="b"))
        service = self._service(KitConfig(enabled=True, respawn=KitSet(kits=kits, policy=SelectionPolicy.ASCENDING)))
        names = [(await service.on_subject_respawned("P1")).kit_name for _ in range(3)]
        self.assertEqual(names, ["a", "b", "a"])

        service.cooldowns.try_record("P1", "wood", 60)
        await service.reset_session()
        self.assertEqual(len(service.cooldowns), 0)
        self.assertEqual(len(service.selector.memory), 0)
        self.assertEqual((await service.on_subject_respawned("P1")).kit_name, "a")

    async def test_named_forced_grant(self) -> None:
        other = Kit(name="other", items=(GiveawayItem("stones"),))
        service = self._service(KitConfig(enabled=False, respawn=KitSet(kits=(STARTER, other))))
        result = await service.handle_trigger("P1", TriggerKind.RESPAWN, kit_name="OTHER", force=True)
        self.assertEqual(result.kit_name, "other")
        self.assertIsNone(await service.handle_trigger("P1", TriggerKind.RESPAWN, kit_name="missing", force=True))

    async def test_failures_are_logged_and_listeners_notified(self) -> None:
        kit = Kit(name="k", commands=(GiveawayCommand("fail {0}"), GiveawayCommand("ok {0}")))
        service = self._service(KitConfig(enabled=True, respawn=KitSet(kits=(kit,))))
        seen = []

        async def listener(result, trigger):
            seen.append((result.kit_name, trigger))

        service.add_listener(listener)
        with self.assertLogs("kitbot.service", level="WARNING") as logs:
            result = await service.on_subject_respawned("P1")
        self.assertEqual(len(result.failures), 1)
        self.assertIn(("execute", "ok P1"), self.server.calls)
        self.assertTrue(any("fail {0}" in line for line in logs.output))
        self.assertEqual(seen, [("k", TriggerKind.RESPAWN)])

    async def test_blank_subject_is_ignored(self) -> None:
        service = self._service(KitConfig(enabled=True, respawn=KitSet(kits=(STARTER,))))
        self.assertIsNone(await service.on_subject_respawned("   "))

    async def test_reload_keeps_previous_config_on_invalid_or_unreadable_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "kits.json"
            path.write_text(json.dumps({"enabled": True, "kits": [{"name": "new"}]}), encoding="utf-8")
            initial = KitConfig(enabled=True, respawn=KitSet(kits=(STARTER,)))
            service = self._service(initial, config_path=path)

            self.assertEqual(service.reload_config().respawn.kits[0].name, "new")

            path.write_text(json.dumps({"enabled": True, "kits": [{"name": "z", "weight": 0}]}), encoding="utf-8")
            with self.assertRaises(InvalidSelectionInput):
                service.reload_config()
            self.assertEqual(service.config.respawn.kits[0].name, "new")

            path.write_text("{ truncated", encoding="utf-8")
            with self.assertRaises(ConfigurationLoadFailure):
                service.reload_config()
            self.assertTrue(service.config.enabled)
            self.assertEqual(service.config.respawn.kits[0].name, "new")


if __name__ == "__main__":
    unittest.main()
