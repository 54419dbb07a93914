import os
import unittest
from pathlib import Path
from unittest import mock

from kitbot.utils import float_from_env, format_duration, int_from_env, parse_channel_ids, path_from_env


class EnvHelperTests(unittest.TestCase):
    def test_int_and_float_fall_back_on_garbage(self) -> None:
        with mock.patch.dict(os.environ, {"KITBOT_RCON_PORT": "abc", "KITBOT_RCON_TIMEOUT": "2.5"}):
            with self.assertLogs("kitbot.utils", level="WARNING"):
                self.assertEqual(int_from_env("KITBOT_RCON_PORT", 28016), 28016)
            self.assertEqual(float_from_env("KITBOT_RCON_TIMEOUT", 10.0), 2.5)
        with mock.patch.dict(os.environ, {}, clear=True):
            self.assertEqual(int_from_env("KITBOT_RCON_PORT", 28016), 28016)

    def test_path_from_env(self) -> None:
        with mock.patch.dict(os.environ, {"KITBOT_CONFIG_PATH": " kits.yml "}):
            self.assertEqual(path_from_env("KITBOT_CONFIG_PATH"), Path("kits.yml"))
        with mock.patch.dict(os.environ, {"KITBOT_CONFIG_PATH": ""}):
            self.assertIsNone(path_from_env("KITBOT_CONFIG_PATH"))

    def test_parse_channel_ids_skips_invalid(self) -> None:
        with self.assertLogs("kitbot.utils", level="WARNING"):
            ids = parse_channel_ids("123, nope,456,,\n789 ")
        self.assertEqual(ids, {123, 456, 789})

    def test_format_duration(self) -> None:
        self.assertEqual(format_duration(42), "42s")
        self.assertEqual(format_duration(125), "2m 05s")
        self.assertEqual(format_duration(3900), "1h 05m")
        self.assertEqual(format_duration(-5), "0s")


if __name__ == "__main__":
    unittest.main()
