"""
TOML-based configuration for the Lumina wallet.

Loads settings from a TOML file and/or environment variables.
Environment variables take precedence over file values.

Usage:
    from lumina_core.config import load_config
    cfg = load_config("lumina.toml")
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from lumina_core.errors import InvalidInput
from lumina_core.ledger_client import DEFAULT_ENDPOINT


@dataclass
class WalletConfig:
    """Wallet store location and secret handling."""
    path: str = "data/wallet.db"
    default_token: str = "LMT"
    kdf_iterations: int = 600_000


@dataclass
class NetworkConfig:
    endpoint: str = DEFAULT_ENDPOINT
    request_timeout: float = 10.0     # seconds per LedgerClient call


@dataclass
class SyncConfig:
    """Block sync batching and retry policy."""
    batch_size: int = 100
    max_retries: int = 3
    retry_backoff: float = 0.5        # seconds, doubled per attempt


@dataclass
class APIConfig:
    """HTTP API settings."""
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 8080
    api_key: str = ""                 # require this key on POST endpoints (empty = no auth)
    rate_limit_rpm: int = 120         # max requests per minute per IP (0 = unlimited)
    max_body_bytes: int = 65_536


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    format: str = "human"   # "human" or "json"
    file: str | None = None


@dataclass
class LuminaConfig:
    """Top-level configuration container."""
    wallet: WalletConfig = field(default_factory=WalletConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    api: APIConfig = field(default_factory=APIConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _merge(dc: Any, raw: dict[str, Any]) -> None:
    """Merge a raw dict into a dataclass instance (in-place)."""
    for key, value in raw.items():
        key_under = key.replace("-", "_")
        if hasattr(dc, key_under):
            setattr(dc, key_under, value)


def _env_int(name: str, value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise InvalidInput(f"{name} must be an integer, got {value!r}") from None


def _env_float(name: str, value: str) -> float:
    try:
        return float(value)
    except ValueError:
        raise InvalidInput(f"{name} must be a number, got {value!r}") from None


def validate_config(cfg: LuminaConfig) -> None:
    """Raise ``InvalidInput`` for settings the wallet cannot run with."""
    if not isinstance(cfg.sync.batch_size, int) or cfg.sync.batch_size < 1:
        raise InvalidInput("sync.batch_size must be an integer >= 1")
    if not isinstance(cfg.sync.max_retries, int) or cfg.sync.max_retries < 0:
        raise InvalidInput("sync.max_retries must be an integer >= 0")
    if not isinstance(cfg.sync.retry_backoff, (int, float)) or cfg.sync.retry_backoff < 0:
        raise InvalidInput("sync.retry_backoff must not be negative")
    if not isinstance(cfg.network.request_timeout, (int, float)) or cfg.network.request_timeout <= 0:
        raise InvalidInput("network.request_timeout must be positive")
    if not isinstance(cfg.wallet.kdf_iterations, int) or cfg.wallet.kdf_iterations < 1:
        raise InvalidInput("wallet.kdf_iterations must be a positive integer")
    if not isinstance(cfg.api.port, int) or not 0 < cfg.api.port < 65536:
        raise InvalidInput("api.port must be between 1 and 65535")
    if cfg.logging.format not in ("human", "json"):
        raise InvalidInput("logging.format must be 'human' or 'json'")


def load_config(path: str | None = None) -> LuminaConfig:
    """
    Load configuration from a TOML file, then overlay environment variables.

    Env-var mapping:
        LUMINA_WALLET_PATH      -> wallet.path
        LUMINA_ENDPOINT         -> network.endpoint
        LUMINA_REQUEST_TIMEOUT  -> network.request_timeout
        LUMINA_BATCH_SIZE       -> sync.batch_size
        LUMINA_API_PORT         -> api.port  (also enables the API)
        LUMINA_API_KEY          -> api.api_key
        LUMINA_LOG_LEVEL        -> logging.level
        LUMINA_LOG_FMT          -> logging.format
        LUMINA_LOG_FILE         -> logging.file
    """
    cfg = LuminaConfig()

    # ── TOML file ────────────────────────────────────────────────
    if path is not None:
        p = Path(path)
        if p.exists():
            try:
                with open(p, "rb") as f:
                    data = tomllib.load(f)
            except tomllib.TOMLDecodeError as exc:
                raise InvalidInput(f"Invalid config file {path}: {exc}") from exc
            for section_name, section_dc in [
                ("wallet", cfg.wallet),
                ("network", cfg.network),
                ("sync", cfg.sync),
                ("api", cfg.api),
                ("logging", cfg.logging),
            ]:
                if section_name in data:
                    _merge(section_dc, data[section_name])

    # ── Environment variable overrides ───────────────────────────
    if v := os.environ.get("LUMINA_WALLET_PATH"):
        cfg.wallet.path = v
    if v := os.environ.get("LUMINA_ENDPOINT"):
        cfg.network.endpoint = v
    if v := os.environ.get("LUMINA_REQUEST_TIMEOUT"):
        cfg.network.request_timeout = _env_float("LUMINA_REQUEST_TIMEOUT", v)
    if v := os.environ.get("LUMINA_BATCH_SIZE"):
        cfg.sync.batch_size = _env_int("LUMINA_BATCH_SIZE", v)
    if v := os.environ.get("LUMINA_API_PORT"):
        cfg.api.port = _env_int("LUMINA_API_PORT", v)
        cfg.api.enabled = True
    if v := os.environ.get("LUMINA_API_KEY"):
        cfg.api.api_key = v
    if v := os.environ.get("LUMINA_LOG_LEVEL"):
        cfg.logging.level = v.upper()
    if v := os.environ.get("LUMINA_LOG_FMT"):
        cfg.logging.format = v
    if v := os.environ.get("LUMINA_LOG_FILE"):
        cfg.logging.file = v

    validate_config(cfg)
    return cfg
