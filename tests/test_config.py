"""
Tests for configuration loading.

Config file wins over the environment, field by field; whatever is still
missing or malformed after both sources is an error, not a silent fallback.
Every test runs with a scrubbed os.environ.
"""

import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from pydantic import ValidationError

from canvasterm.config import (
    DEFAULT_TEMPLATE,
    ConfigError,
    default_config_path,
    home_dir,
    load_config,
    write_default_config,
)


def env(**values):
    return mock.patch.dict(os.environ, values, clear=True)


class TestHome(unittest.TestCase):
    def test_override(self) -> None:
        self.assertEqual(home_dir({"CANVASTERM_HOME": "/tmp/ct"}), Path("/tmp/ct"))
        self.assertEqual(default_config_path({"CANVASTERM_HOME": "/tmp/ct"}), Path("/tmp/ct/config.toml"))

    def test_default(self) -> None:
        self.assertEqual(home_dir({}), Path.home() / ".canvasterm")

    def test_reads_process_environment(self) -> None:
        with env(CANVASTERM_HOME="/tmp/ct2"):
            self.assertEqual(default_config_path(), Path("/tmp/ct2/config.toml"))


class TestLoadConfig(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.dir = Path(self._tmp.name)
        self.path = self.dir / "config.toml"

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_file_wins_over_env(self) -> None:
        self.path.write_text('canvas_url = "https://a.example.edu"\napi_token = "tok"\n', encoding="utf-8")
        with env(CANVAS_URL="https://b.example.edu", CANVAS_API_TOKEN="other"):
            config = load_config(self.path)
        self.assertEqual(config.canvas_url, "https://a.example.edu")
        self.assertEqual(config.api_token, "tok")

    def test_env_fallback(self) -> None:
        with env(CANVAS_URL=" https://b.example.edu ", CANVAS_API_TOKEN="other"):
            config = load_config(self.dir / "missing.toml")
        self.assertEqual(config.canvas_url, "https://b.example.edu")
        self.assertEqual(config.api_token, "other")

    def test_file_and_env_merge_per_field(self) -> None:
        self.path.write_text('canvas_url = "https://a.example.edu"\n', encoding="utf-8")
        with env(CANVAS_API_TOKEN="from-env"):
            config = load_config(self.path)
        self.assertEqual(config.canvas_url, "https://a.example.edu")
        self.assertEqual(config.api_token, "from-env")

    def test_config_is_frozen(self) -> None:
        with env(CANVAS_URL="https://b.example.edu", CANVAS_API_TOKEN="other"):
            config = load_config(self.dir / "missing.toml")
        with self.assertRaises(ValidationError):
            config.api_token = "changed"

    def test_missing_everything(self) -> None:
        with env():
            with self.assertRaises(ConfigError) as ctx:
                load_config(self.dir / "missing.toml")
        message = str(ctx.exception)
        self.assertIn("CANVAS_URL not set", message)
        self.assertIn("CANVAS_API_TOKEN not set", message)
        self.assertIn("canvasterm init", message)

    def test_missing_token(self) -> None:
        with env(CANVAS_URL="https://b.example.edu"):
            with self.assertRaises(ConfigError) as ctx:
                load_config(self.dir / "missing.toml")
        self.assertIn("CANVAS_API_TOKEN", str(ctx.exception))
        self.assertNotIn("CANVAS_URL", str(ctx.exception))

    def test_blank_values_are_missing(self) -> None:
        self.path.write_text('canvas_url = "   "\napi_token = "tok"\n', encoding="utf-8")
        with env():
            with self.assertRaises(ConfigError) as ctx:
                load_config(self.path)
        self.assertIn("CANVAS_URL", str(ctx.exception))

    def test_url_without_scheme_is_rejected(self) -> None:
        with env(CANVAS_URL="lms.example.edu", CANVAS_API_TOKEN="tok"):
            with self.assertRaises(ConfigError) as ctx:
                load_config(self.dir / "missing.toml")
        self.assertIn("http://", str(ctx.exception))

    def test_incomplete_or_broken_file(self) -> None:
        self.path.write_text('canvas_url = "https://a.example.edu"\n', encoding="utf-8")
        with env():
            with self.assertRaises(ConfigError):
                load_config(self.path)
        self.path.write_text("canvas_url = [unterminated", encoding="utf-8")
        with env():
            with self.assertRaises(ConfigError) as ctx:
                load_config(self.path)
        self.assertIn(str(self.path), str(ctx.exception))

    def test_template_roundtrip(self) -> None:
        p = write_default_config(self.dir / "nested" / "config.toml")
        self.assertEqual(p.read_text(encoding="utf-8"), DEFAULT_TEMPLATE)
        with env():
            config = load_config(p)
        self.assertTrue(config.canvas_url.startswith("https://"))


if __name__ == "__main__":
    unittest.main()
