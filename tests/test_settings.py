import json
import tempfile
import unittest
from pathlib import Path

from storage_browser.settings import (
    AppConfig,
    AppSettings,
    ConfigStorage,
    ConfigurationError,
    SettingsStorage,
)


class ConfigStorageTests(unittest.TestCase):
    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.path = Path(tmp.name) / "config.json"
        self.storage = ConfigStorage(self.path)

    def test_load_returns_none_when_missing(self):
        self.assertIsNone(self.storage.load())
        with self.assertRaises(ConfigurationError):
            self.storage.require()

    def test_save_writes_camel_case_keys(self):
        self.storage.save(AppConfig(project_id=" proj ", credentials_file="/keys/hmac.json", theme="dark"))

        payload = json.loads(self.path.read_text(encoding="utf-8"))
        self.assertEqual(
            {"projectId": "proj", "credentialsFile": "/keys/hmac.json", "theme": "dark"},
            payload,
        )
        self.assertEqual(AppConfig("proj", "/keys/hmac.json", "dark"), self.storage.require())

    def test_load_rejects_malformed_shapes(self):
        payloads = [
            "not json",
            json.dumps(["list"]),
            json.dumps({"projectId": "p"}),
            json.dumps({"projectId": "", "credentialsFile": "c"}),
            json.dumps({"projectId": 5, "credentialsFile": "c"}),
        ]
        for payload in payloads:
            with self.subTest(payload=payload):
                self.path.write_text(payload, encoding="utf-8")
                self.assertIsNone(self.storage.load())

    def test_unknown_theme_falls_back_to_system(self):
        self.path.write_text(
            json.dumps({"projectId": "p", "credentialsFile": "c", "theme": "neon"}),
            encoding="utf-8",
        )

        self.assertEqual("system", self.storage.load().theme)

    def test_save_requires_fields(self):
        with self.assertRaises(ConfigurationError):
            self.storage.save(AppConfig(project_id="", credentials_file="c"))
        self.assertFalse(self.path.exists())


class SettingsStorageTests(unittest.TestCase):
    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.path = Path(tmp.name) / "settings.json"
        self.storage = SettingsStorage(self.path)

    def test_load_returns_defaults_when_missing(self):
        self.assertEqual(AppSettings(), self.storage.load())

    def test_load_sanitizes_invalid_values(self):
        payload = {
            "page_size": 7,
            "preview_max_bytes": "nope",
            "max_concurrency": 0,
            "upload_multipart_threshold": -1,
            "upload_chunk_size": True,
            "upload_max_concurrency": "3",
            "download_dir": 12,
            "last_bucket": 123,
        }
        self.path.write_text(json.dumps(payload), encoding="utf-8")

        settings = self.storage.load()

        defaults = AppSettings()
        self.assertEqual(defaults.page_size, settings.page_size)
        self.assertEqual(defaults.preview_max_bytes, settings.preview_max_bytes)
        self.assertEqual(defaults.max_concurrency, settings.max_concurrency)
        self.assertEqual(defaults.upload_multipart_threshold, settings.upload_multipart_threshold)
        self.assertEqual(defaults.upload_chunk_size, settings.upload_chunk_size)
        self.assertEqual(3, settings.upload_max_concurrency)
        self.assertEqual(defaults.download_dir, settings.download_dir)
        self.assertEqual("", settings.last_bucket)

    def test_round_trip(self):
        settings = AppSettings(page_size=25, max_concurrency=2, download_dir="/data", last_bucket="photos")

        self.storage.save(settings)

        self.assertEqual(settings, self.storage.load())

    def test_transfer_config_uses_upload_settings(self):
        config = AppSettings(upload_multipart_threshold=1024, upload_chunk_size=2048, upload_max_concurrency=3).transfer_config()

        self.assertEqual(1024, config.multipart_threshold)
        self.assertEqual(2048, config.multipart_chunksize)
        self.assertEqual(3, config.max_concurrency)


if __name__ == "__main__":
    unittest.main()
