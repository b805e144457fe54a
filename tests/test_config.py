import json
import tempfile
import unittest
from pathlib import Path

from hostwatch.config import AppConfig, apply_env, load_config, save_config


class ConfigTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.path = Path(self._tmp.name) / "nested" / "config.json"

    def tearDown(self):
        self._tmp.cleanup()

    def test_missing_file_writes_defaults(self):
        cfg = load_config(self.path)
        self.assertEqual(cfg, AppConfig())
        self.assertEqual(cfg.interval_s, 2.0)
        self.assertEqual(cfg.anomaly_buffer_size, 100)
        self.assertTrue(self.path.exists())

    def test_save_and_reload(self):
        cfg = AppConfig(sample_interval_ms=5000, retention_days=7, log_level="DEBUG")
        save_config(cfg, self.path)
        self.assertEqual(load_config(self.path), cfg)

    def test_unknown_keys_are_ignored(self):
        self.path.parent.mkdir(parents=True)
        self.path.write_text(json.dumps({"sample_interval_ms": 1000, "theme": "dark"}))
        self.assertEqual(load_config(self.path).sample_interval_ms, 1000)

    def test_corrupt_file_falls_back_to_defaults(self):
        self.path.parent.mkdir(parents=True)
        self.path.write_text("{not json")
        with self.assertLogs("hostwatch.config", level="WARNING"):
            cfg = load_config(self.path)
        self.assertEqual(cfg, AppConfig())
        self.assertEqual(json.loads(self.path.read_text())["sample_interval_ms"], 2000)

    def test_env_overrides(self):
        cfg = apply_env(AppConfig(), {
            "HOSTWATCH_DB_PATH": "/tmp/x.db",
            "HOSTWATCH_INTERVAL_SECS": "10",
            "HOSTWATCH_LOG_LEVEL": "debug",
        })
        self.assertEqual(cfg.db_path, "/tmp/x.db")
        self.assertEqual(cfg.interval_s, 10.0)
        self.assertEqual(cfg.log_level, "DEBUG")

    def test_invalid_interval_is_ignored(self):
        with self.assertLogs("hostwatch.config", level="WARNING"):
            cfg = apply_env(AppConfig(), {"HOSTWATCH_INTERVAL_SECS": "soon"})
        self.assertEqual(cfg.sample_interval_ms, 2000)

    def test_non_positive_interval_is_ignored(self):
        for raw in ("0", "-5"):
            with self.assertLogs("hostwatch.config", level="WARNING"):
                cfg = apply_env(AppConfig(), {"HOSTWATCH_INTERVAL_SECS": raw})
            self.assertEqual(cfg.interval_s, 2.0)


if __name__ == "__main__":
    unittest.main()
