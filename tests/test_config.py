"""Tests for YAML configuration loading."""

import tempfile
import unittest
from pathlib import Path

from speedcheck.config import load_config


class TestLoadConfig(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)

    def tearDown(self):
        self._tmp.cleanup()

    def _write(self, text: str) -> str:
        path = self.root / "config.yaml"
        path.write_text(text, encoding="utf-8")
        return str(path)

    def test_defaults_from_empty_file(self):
        config = load_config(self._write(""))
        self.assertEqual(config.latency.sample_count, 10)
        self.assertEqual(config.latency.sample_timeout_ms, 2000)
        self.assertEqual(config.throughput.chunk_bytes, 65536)
        self.assertEqual(config.throughput.phase_timeout_seconds, 30.0)
        self.assertEqual(config.paths.logs_dir, (self.root / "logs").resolve())
        self.assertTrue(config.paths.logs_dir.is_dir())

    def test_sections_override_defaults(self):
        config = load_config(self._write(
            "web:\n  port: 9100\n"
            "latency:\n  sample_count: 3\n"
            "throughput:\n  download_bytes: 1048576\n  chunk_bytes: 32768\n"
            "logging:\n  level: DEBUG\n"
        ))
        self.assertEqual(config.web.port, 9100)
        self.assertEqual(config.latency.sample_count, 3)
        self.assertEqual(config.throughput.download_bytes, 1048576)
        self.assertEqual(config.throughput.chunk_bytes, 32768)
        self.assertEqual(config.logging.level, "DEBUG")

    def test_ping_target_defaults_to_own_echo(self):
        config = load_config(self._write("web:\n  host: 0.0.0.0\n  port: 9100\n"))
        self.assertEqual(config.ping_target_url, "http://127.0.0.1:9100")

    def test_explicit_ping_target(self):
        config = load_config(self._write("latency:\n  target_url: http://probe.local:8000\n"))
        self.assertEqual(config.ping_target_url, "http://probe.local:8000")

    def test_missing_file(self):
        with self.assertRaises(FileNotFoundError):
            load_config(str(self.root / "absent.yaml"))

    def test_unknown_key_rejected(self):
        with self.assertRaises(TypeError):
            load_config(self._write("latency:\n  samples: 3\n"))

    def test_invalid_values_rejected(self):
        with self.assertRaises(ValueError):
            load_config(self._write("latency:\n  sample_count: 0\n"))
        with self.assertRaises(ValueError):
            load_config(self._write("throughput:\n  download_bytes: 200\n  max_bytes: 100\n"))
        with self.assertRaises(ValueError):
            load_config(self._write("throughput:\n  chunk_bytes: 4096\n  pool_bytes: 1024\n"))


if __name__ == "__main__":
    unittest.main()
