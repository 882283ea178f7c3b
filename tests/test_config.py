"""
Tests for lumina_core.config — TOML configuration and environment overrides.

Covers:
  - Default values for all dataclass sections
  - TOML parsing and section merging
  - Environment variable overrides (precedence over TOML)
  - _merge helper edge cases
  - Missing / broken TOML files and invalid values
"""

from __future__ import annotations

import os
import textwrap
import unittest
from unittest.mock import patch

import pytest

from lumina_core.config import (
    APIConfig,
    LoggingConfig,
    LuminaConfig,
    NetworkConfig,
    SyncConfig,
    WalletConfig,
    _merge,
    load_config,
    validate_config,
)
from lumina_core.errors import InvalidInput
from lumina_core.ledger_client import DEFAULT_ENDPOINT

# ═══════════════════════════════════════════════════════════════════
#  Defaults
# ═══════════════════════════════════════════════════════════════════

class TestDefaults(unittest.TestCase):

    def test_wallet_defaults(self):
        w = WalletConfig()
        self.assertEqual(w.path, "data/wallet.db")
        self.assertEqual(w.default_token, "LMT")
        self.assertEqual(w.kdf_iterations, 600_000)

    def test_network_defaults(self):
        n = NetworkConfig()
        self.assertEqual(n.endpoint, DEFAULT_ENDPOINT)
        self.assertEqual(n.request_timeout, 10.0)

    def test_sync_defaults(self):
        s = SyncConfig()
        self.assertEqual(s.batch_size, 100)
        self.assertEqual(s.max_retries, 3)

    def test_api_defaults(self):
        a = APIConfig()
        self.assertFalse(a.enabled)
        self.assertEqual(a.host, "127.0.0.1")
        self.assertEqual(a.port, 8080)
        self.assertEqual(a.api_key, "")
        self.assertEqual(a.rate_limit_rpm, 120)

    def test_logging_defaults(self):
        lc = LoggingConfig()
        self.assertEqual(lc.level, "INFO")
        self.assertEqual(lc.format, "human")
        self.assertIsNone(lc.file)

    def test_lumina_config_defaults(self):
        cfg = LuminaConfig()
        self.assertIsInstance(cfg.wallet, WalletConfig)
        self.assertIsInstance(cfg.api, APIConfig)
        validate_config(cfg)


# ═══════════════════════════════════════════════════════════════════
#  _merge helper
# ═══════════════════════════════════════════════════════════════════

class TestMerge(unittest.TestCase):

    def test_merge_updates_fields(self):
        s = SyncConfig()
        _merge(s, {"batch_size": 25, "max_retries": 1})
        self.assertEqual(s.batch_size, 25)
        self.assertEqual(s.max_retries, 1)

    def test_merge_ignores_unknown_keys(self):
        s = SyncConfig()
        _merge(s, {"nonexistent": 1})
        self.assertFalse(hasattr(s, "nonexistent"))

    def test_merge_hyphenated_keys(self):
        a = APIConfig()
        _merge(a, {"rate-limit-rpm": 10, "api-key": "k"})
        self.assertEqual(a.rate_limit_rpm, 10)
        self.assertEqual(a.api_key, "k")


# ═══════════════════════════════════════════════════════════════════
#  TOML loading
# ═══════════════════════════════════════════════════════════════════

class TestLoadFile:

    def test_load_no_file(self):
        cfg = load_config(None)
        assert cfg.sync.batch_size == 100

    def test_load_missing_file(self, tmp_path):
        cfg = load_config(str(tmp_path / "missing.toml"))
        assert cfg.wallet.path == "data/wallet.db"

    def test_load_toml_file(self, tmp_path):
        path = tmp_path / "lumina.toml"
        path.write_text(textwrap.dedent("""\
            [wallet]
            path = "/var/lib/lumina/wallet.db"
            kdf-iterations = 1000

            [network]
            endpoint = "https://node.example"
            request_timeout = 2.5

            [sync]
            batch_size = 50

            [api]
            enabled = true
            port = 9090
            api_key = "s3cret"

            [logging]
            level = "DEBUG"
            format = "json"
        """))
        cfg = load_config(str(path))
        assert cfg.wallet.path == "/var/lib/lumina/wallet.db"
        assert cfg.wallet.kdf_iterations == 1000
        assert cfg.network.endpoint == "https://node.example"
        assert cfg.network.request_timeout == 2.5
        assert cfg.sync.batch_size == 50
        assert cfg.api.enabled is True
        assert cfg.api.port == 9090
        assert cfg.api.api_key == "s3cret"
        assert cfg.logging.format == "json"

    def test_broken_toml(self, tmp_path):
        path = tmp_path / "broken.toml"
        path.write_text("[sync\nbatch_size = ")
        with pytest.raises(InvalidInput):
            load_config(str(path))

    @pytest.mark.parametrize("section,body", [
        ("sync", "batch_size = 0"),
        ("sync", "max_retries = -1"),
        ("sync", "retry_backoff = -0.5"),
        ("network", "request_timeout = 0"),
        ("wallet", "kdf_iterations = 0"),
        ("api", "port = 70000"),
        ("logging", 'format = "xml"'),
        ("sync", 'batch_size = "many"'),
    ])
    def test_invalid_values(self, tmp_path, section, body):
        path = tmp_path / "bad.toml"
        path.write_text(f"[{section}]\n{body}\n")
        with pytest.raises(InvalidInput):
            load_config(str(path))


# ═══════════════════════════════════════════════════════════════════
#  Environment overrides
# ═══════════════════════════════════════════════════════════════════

class TestEnvOverrides(unittest.TestCase):

    @patch.dict(os.environ, {"LUMINA_WALLET_PATH": "/tmp/env.db"}, clear=False)
    def test_env_wallet_path(self):
        self.assertEqual(load_config(None).wallet.path, "/tmp/env.db")

    @patch.dict(os.environ, {"LUMINA_ENDPOINT": "https://env.example"}, clear=False)
    def test_env_endpoint(self):
        self.assertEqual(load_config(None).network.endpoint, "https://env.example")

    @patch.dict(os.environ, {"LUMINA_REQUEST_TIMEOUT": "3.5"}, clear=False)
    def test_env_request_timeout(self):
        self.assertEqual(load_config(None).network.request_timeout, 3.5)

    @patch.dict(os.environ, {"LUMINA_BATCH_SIZE": "10"}, clear=False)
    def test_env_batch_size(self):
        self.assertEqual(load_config(None).sync.batch_size, 10)

    @patch.dict(os.environ, {"LUMINA_API_PORT": "4444"}, clear=False)
    def test_env_api_port_enables_api(self):
        cfg = load_config(None)
        self.assertEqual(cfg.api.port, 4444)
        self.assertTrue(cfg.api.enabled)

    @patch.dict(os.environ, {"LUMINA_API_KEY": "envkey"}, clear=False)
    def test_env_api_key(self):
        self.assertEqual(load_config(None).api.api_key, "envkey")

    @patch.dict(os.environ, {"LUMINA_LOG_LEVEL": "debug"}, clear=False)
    def test_env_log_level_uppercased(self):
        self.assertEqual(load_config(None).logging.level, "DEBUG")

    @patch.dict(os.environ, {"LUMINA_LOG_FMT": "json", "LUMINA_LOG_FILE": "/tmp/l.log"}, clear=False)
    def test_env_log_format_and_file(self):
        cfg = load_config(None)
        self.assertEqual(cfg.logging.format, "json")
        self.assertEqual(cfg.logging.file, "/tmp/l.log")

    @patch.dict(os.environ, {"LUMINA_BATCH_SIZE": "lots"}, clear=False)
    def test_env_bad_integer(self):
        with self.assertRaises(InvalidInput):
            load_config(None)

    @patch.dict(os.environ, {"LUMINA_LOG_FMT": "yaml"}, clear=False)
    def test_env_bad_format(self):
        with self.assertRaises(InvalidInput):
            load_config(None)


class TestEnvPrecedence:

    def test_env_beats_toml(self, tmp_path, monkeypatch):
        path = tmp_path / "lumina.toml"
        path.write_text('[network]\nendpoint = "https://file.example"\n')
        monkeypatch.setenv("LUMINA_ENDPOINT", "https://env.example")
        assert load_config(str(path)).network.endpoint == "https://env.example"
