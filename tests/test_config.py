import json
import tempfile
import unittest
from pathlib import Path

from kitbot.config import (
    ConfigurationLoadFailure,
    dump_kit_config,
    load_kit_config,
    parse_kit_config,
    validate_kit_config,
)
from kitbot.models import KitConfig, SelectionPolicy, TriggerKind
from kitbot.selection import InvalidSelectionInput


SAMPLE = {
    "enabled": True,
    "respawn": {
        "policy": "ascending",
        "kits": [
            {
                "name": "starter",
                "weight": 2,
                "commands": [{"text": "recycler.give {0}", "cooldown_seconds": 3600}, "say hello"],
                "items": [
                    {"shortcode": "wood", "min_amount": 100, "max_amount": 250},
                    {"shortcode": "rifle.ak", "amount": 1, "cooldown_seconds": 600, "attachments": ["weapon.mod.holosight"]},
                ],
                "random_pool": {
                    "min_amount": 1,
                    "max_amount": 2,
                    "can_have_duplicates": True,
                    "items": [{"shortcode": "syringe.medical", "weight": 9}, {"shortcode": "largemedkit", "weight": 1}],
                },
                "show_message": True,
                "message": "Kit delivered",
                "remove_existing_inventory": True,
            },
            {"name": "backup", "enabled": False},
        ],
    },
}


class ParseKitConfigTests(unittest.TestCase):
    def test_full_snake_case_layout(self) -> None:
        config = parse_kit_config(SAMPLE)
        self.assertTrue(config.enabled)
        self.assertIsNone(config.spawn)
        self.assertIs(config.kit_set_for(TriggerKind.SPAWN), config.respawn)
        self.assertEqual(config.respawn.policy, SelectionPolicy.ASCENDING)

        starter = config.respawn.kits[0]
        self.assertEqual(starter.weight, 2.0)
        self.assertEqual([cmd.cooldown_seconds for cmd in starter.commands], [3600, 0])
        self.assertEqual((starter.items[0].min_amount, starter.items[0].max_amount), (100, 250))
        self.assertEqual((starter.items[1].min_amount, starter.items[1].max_amount), (1, 1))
        self.assertEqual(starter.items[1].attachments, ("weapon.mod.holosight",))
        self.assertTrue(starter.random_pool.can_have_duplicates)
        self.assertEqual([item.weight for item in starter.random_pool.items], [9.0, 1.0])
        self.assertTrue(starter.remove_existing_inventory)
        self.assertFalse(config.respawn.kits[1].enabled)

    def test_pascal_case_keys_are_accepted(self) -> None:
        config = parse_kit_config(
            {
                "Enabled": True,
                "Spawn": {
                    "SelectionPolicy": "Descending",
                    "Kits": [
                        {
                            "Name": "fresh",
                            "ShowRespawnMessage": True,
                            "RespawnMessage": "Hi",
                            "RandomItems": {
                                "MinAmount": 2,
                                "MaxAmount": 3,
                                "CanHaveDuplicates": False,
                                "Items": [{"ShortCode": "bandage", "MinAmount": 1, "MaxAmount": 4, "Weight": 5}],
                            },
                        }
                    ],
                },
            }
        )
        kit = config.kit_set_for(TriggerKind.SPAWN).kits[0]
        self.assertEqual(config.spawn.policy, SelectionPolicy.DESCENDING)
        self.assertEqual(kit.message, "Hi")
        self.assertEqual(kit.random_pool.items[0].max_amount, 4)
        self.assertEqual(config.respawn.kits, ())

    def test_legacy_single_kit_layout(self) -> None:
        config = parse_kit_config(
            {
                "Enabled": True,
                "CommandsToRunOnRespawnEnabled": True,
                "CommandsToRunOnRespawn": [{"Text": "recycler.give {0}", "CoolDownPeriodInSeconds": 86400}],
                "ItemsToAddToInventoryOnRespawnEnabled": False,
                "ItemsToAddToInventoryOnRespawn": [{"ShortCode": "wood", "Amount": 500, "CoolDownPeriodInSeconds": 0}],
                "ShowRespawnMessage": True,
                "RespawnMessage": "Starter kit added",
                "RemoveExistingInventory": True,
            }
        )
        self.assertTrue(config.enabled)
        kit = config.respawn.kits[0]
        self.assertEqual(kit.commands[0].cooldown_seconds, 86400)
        self.assertTrue(kit.commands_enabled)
        self.assertFalse(kit.items_enabled)
        self.assertEqual(kit.items[0].min_amount, 500)
        self.assertTrue(kit.show_message)
        self.assertIsNone(config.spawn)

    def test_top_level_kit_list(self) -> None:
        config = parse_kit_config({"enabled": True, "policy": 1, "kits": [{"name": "a"}, {"name": "b"}]})
        self.assertEqual(config.respawn.policy, SelectionPolicy.ASCENDING)
        self.assertEqual(len(config.respawn.kits), 2)

    def test_structural_errors_raise(self) -> None:
        bad_payloads = [
            ["not", "an", "object"],
            {"kits": [{"weight": 1}]},
            {"kits": [{"name": "a", "items": [{"amount": 3}]}]},
            {"kits": [{"name": "a", "weight": "heavy"}]},
            {"kits": [{"name": "a", "commands": "say hi"}]},
            {"policy": "sideways", "kits": []},
        ]
        for payload in bad_payloads:
            with self.subTest(payload=payload):
                with self.assertRaises(ConfigurationLoadFailure):
                    parse_kit_config(payload)

    def test_dump_round_trips(self) -> None:
        config = parse_kit_config(SAMPLE)
        self.assertEqual(parse_kit_config(json.loads(json.dumps(dump_kit_config(config)))), config)


class ValidateKitConfigTests(unittest.TestCase):
    def test_zero_weight_random_set_is_rejected(self) -> None:
        config = parse_kit_config({"kits": [{"name": "a", "weight": 0}, {"name": "b", "weight": 0}]})
        with self.assertRaises(InvalidSelectionInput):
            validate_kit_config(config)

    def test_zero_weight_is_fine_for_rotation(self) -> None:
        config = parse_kit_config({"policy": "ascending", "kits": [{"name": "a", "weight": 0}]})
        validate_kit_config(config)

    def test_duplicate_names_are_rejected(self) -> None:
        config = parse_kit_config({"kits": [{"name": "Kit"}, {"name": "kit"}]})
        with self.assertRaises(InvalidSelectionInput):
            validate_kit_config(config)

    def test_pool_weights_must_be_positive(self) -> None:
        config = parse_kit_config(
            {"kits": [{"name": "a", "random_pool": {"items": [{"shortcode": "x", "weight": 0}]}}]}
        )
        with self.assertRaises(InvalidSelectionInput):
            validate_kit_config(config)


class LoadKitConfigTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_missing_file_writes_disabled_default(self) -> None:
        path = self.root / "kits.json"
        config = load_kit_config(path)
        self.assertEqual(config, KitConfig())
        self.assertTrue(path.exists())
        self.assertFalse(json.loads(path.read_text(encoding="utf-8"))["enabled"])

    def test_malformed_json_falls_back_to_default(self) -> None:
        path = self.root / "kits.json"
        path.write_text("{ not json", encoding="utf-8")
        with self.assertLogs("kitbot.config", level="ERROR"):
            config = load_kit_config(path)
        self.assertFalse(config.enabled)
        self.assertEqual(config.respawn.kits, ())

    def test_yaml_file(self) -> None:
        path = self.root / "kits.yml"
        path.write_text(
            "enabled: true\n"
            "respawn:\n"
            "  policy: descending\n"
            "  kits:\n"
            "    - name: a\n"
            "      items: [wood, stones]\n"
            "    - name: b\n",
            encoding="utf-8",
        )
        config = load_kit_config(path)
        self.assertEqual(config.respawn.policy, SelectionPolicy.DESCENDING)
        self.assertEqual([item.shortcode for item in config.respawn.kits[0].items], ["wood", "stones"])

    def test_validation_errors_propagate(self) -> None:
        path = self.root / "kits.json"
        path.write_text(json.dumps({"kits": [{"name": "a", "weight": 0}]}), encoding="utf-8")
        with self.assertRaises(InvalidSelectionInput):
            load_kit_config(path)

    def test_none_path_returns_default(self) -> None:
        self.assertEqual(load_kit_config(None), KitConfig())

    def test_strict_load_raises_instead_of_disabling(self) -> None:
        path = self.root / "kits.json"
        with self.assertRaises(ConfigurationLoadFailure):
            load_kit_config(path, strict=True)
        self.assertFalse(path.exists())

        path.write_text("{ not json", encoding="utf-8")
        with self.assertRaises(ConfigurationLoadFailure):
            load_kit_config(path, strict=True)


if __name__ == "__main__":
    unittest.main()
