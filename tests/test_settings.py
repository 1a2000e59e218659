import os
import sys
import unittest

import keyring
import yaml

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from config import YamlConfig
from db import SettingsRepository
from settings_schema import validate_settings


class DummyKeyring(keyring.backend.KeyringBackend):
    priority = 1

    def __init__(self):
        self.store = {}

    def get_password(self, service, username):
        return self.store.get((service, username))

    def set_password(self, service, username, password):
        self.store[(service, username)] = password

    def delete_password(self, service, username):
        self.store.pop((service, username), None)


class SettingsEncryptionTest(unittest.TestCase):
    def setUp(self) -> None:
        keyring.set_keyring(DummyKeyring())
        os.environ["ENCRYPT_SETTINGS"] = "1"
        self.path = "enc_settings.yaml"
        if os.path.exists(self.path):
            os.remove(self.path)

    def tearDown(self) -> None:
        if os.path.exists(self.path):
            os.remove(self.path)
        os.environ.pop("ENCRYPT_SETTINGS", None)

    def test_webhook_kept_out_of_yaml(self) -> None:
        cfg = YamlConfig(self.path)
        cfg.save({"webhook_url": "https://hooks.example/abc", "weight_unit": "kg"})
        with open(self.path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)
        self.assertIs(raw["webhook_url"], True)
        data = cfg.load()
        self.assertEqual(data["webhook_url"], "https://hooks.example/abc")
        self.assertEqual(data["weight_unit"], "kg")

    def test_clearing_webhook_forgets_secret(self) -> None:
        cfg = YamlConfig(self.path)
        cfg.save({"webhook_url": "https://hooks.example/abc"})
        cfg.save({"webhook_url": ""})
        self.assertIsNone(keyring.get_password(YamlConfig.SERVICE, "webhook_url"))
        self.assertNotIn("webhook_url", cfg.load())

    def test_plain_file_when_not_encrypted(self) -> None:
        cfg = YamlConfig(self.path, encrypt=False)
        cfg.save({"webhook_url": "https://hooks.example/abc"})
        with open(self.path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)
        self.assertEqual(raw["webhook_url"], "https://hooks.example/abc")


class SettingsRepositoryTest(unittest.TestCase):
    def setUp(self) -> None:
        self.db_path = "test_settings.db"
        self.yaml_path = "test_settings.yaml"
        for path in (self.db_path, self.yaml_path):
            if os.path.exists(path):
                os.remove(path)
        self.settings = SettingsRepository(self.db_path, self.yaml_path)

    def tearDown(self) -> None:
        for path in (self.db_path, self.yaml_path):
            if os.path.exists(path):
                os.remove(path)

    def test_defaults(self) -> None:
        data = self.settings.all_settings()
        self.assertIs(data["rest_auto_continue"], False)
        self.assertEqual(data["default_rest_seconds"], 60)
        self.assertEqual(data["history_limit"], 10)
        self.assertEqual(data["log_level"], "INFO")

    def test_update_is_mirrored_to_yaml(self) -> None:
        self.settings.update({"rest_auto_continue": "true", "history_limit": 5})
        self.assertTrue(self.settings.get_bool("rest_auto_continue", False))
        self.assertEqual(self.settings.get_int("history_limit", 10), 5)
        with open(self.yaml_path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)
        self.assertIs(raw["rest_auto_continue"], True)
        self.assertEqual(raw["history_limit"], 5)

    def test_yaml_edits_are_picked_up(self) -> None:
        with open(self.yaml_path, "w", encoding="utf-8") as f:
            yaml.safe_dump({"default_rest_seconds": 45}, f)
        self.assertEqual(self.settings.get_int("default_rest_seconds", 60), 45)

    def test_invalid_values_rejected(self) -> None:
        with self.assertRaises(ValueError):
            self.settings.update({"history_limit": "many"})
        with self.assertRaises(ValueError):
            validate_settings({"default_rest_seconds": "soon"})
        self.assertEqual(self.settings.get_int("history_limit", 10), 10)


if __name__ == "__main__":
    unittest.main()
