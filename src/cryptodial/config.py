"""Configuration system for Cryptodial.

Loads service config from ``cryptodial.yaml`` (or the file named by
``CRYPTODIAL_CONFIG``), expands ``${VAR}`` environment placeholders and
validates the result with pydantic models.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field


CONFIG_ENV_VAR = "CRYPTODIAL_CONFIG"
DEFAULT_CONFIG_PATH = Path("cryptodial.yaml")


# ---------------------------------------------------------------------------
# Environment-variable expansion helper
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)\}")


def _expand_env_vars(value: str) -> str:
    """Replace ``${VAR_NAME}`` placeholders with their environment values.

    If the variable is not set the placeholder is left as-is so that
    validation can catch it later.
    """

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))

    return _ENV_VAR_RE.sub(_replace, value)


def _expand_env_recursive(obj: object) -> object:
    """Walk an arbitrary nested structure and expand env vars in strings."""
    if isinstance(obj, str):
        return _expand_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _expand_env_recursive(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand_env_recursive(item) for item in obj]
    return obj


def is_unresolved(value: str) -> bool:
    """True if *value* still holds a ``${VAR}`` placeholder."""
    return bool(_ENV_VAR_RE.search(value))


# ---------------------------------------------------------------------------
# Pydantic v2 models
# ---------------------------------------------------------------------------


class ChainEndpointConfig(BaseModel):
    """RPC settings for one chain."""

    rpc_url: str
    timeout: float = 30.0          # per-call RPC timeout, seconds
    receipt_timeout: float = 120.0  # how long to wait for inclusion


class ChainsConfig(BaseModel):
    """RPC endpoints for every supported chain."""

    evm: ChainEndpointConfig = Field(
        default_factory=lambda: ChainEndpointConfig(rpc_url="https://rpc.ankr.com/electroneum")
    )
    binance: ChainEndpointConfig = Field(
        default_factory=lambda: ChainEndpointConfig(rpc_url="https://bsc-dataseed.binance.org/")
    )
    polygon: ChainEndpointConfig = Field(
        default_factory=lambda: ChainEndpointConfig(rpc_url="https://polygon-rpc.com")
    )
    solana: ChainEndpointConfig = Field(
        default_factory=lambda: ChainEndpointConfig(rpc_url="https://api.mainnet-beta.solana.com")
    )


class VaultConfig(BaseModel):
    """Key vault settings. ``salt`` must come from the environment in production."""

    salt: str = "${ENCRYPTION_SALT}"
    scrypt_n: int = 2**14
    scrypt_r: int = 8
    scrypt_p: int = 1


class SessionConfig(BaseModel):
    """USSD session storage."""

    ttl_seconds: int = 300
    sweep_interval: float = 60.0
    db_path: str = ":memory:"


class StorageConfig(BaseModel):
    """Durable storage for wallets and the transaction ledger."""

    db_path: str = "data/cryptodial.db"


class SmsConfig(BaseModel):
    """Africa's Talking SMS gateway."""

    enabled: bool = False
    username: str = "${AT_USERNAME}"
    api_key: str = "${AT_API_KEY}"
    sender_id: Optional[str] = None
    base_url: str = "https://api.africastalking.com/version1/messaging"
    timeout: float = 15.0


class ServerConfig(BaseModel):
    """HTTP server for the USSD callback."""

    host: str = "127.0.0.1"
    port: int = 8000


class CryptodialConfig(BaseModel):
    """Root configuration object."""

    name: str = "Cryptodial"
    country_code: str = "254"
    chains: ChainsConfig = Field(default_factory=ChainsConfig)
    vault: VaultConfig = Field(default_factory=VaultConfig)
    sessions: SessionConfig = Field(default_factory=SessionConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    sms: SmsConfig = Field(default_factory=SmsConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)


# ---------------------------------------------------------------------------
# Public helpers
# ---------------------------------------------------------------------------


def get_config_path(path: Path | None = None) -> Path:
    """Return the config file path: explicit, ``$CRYPTODIAL_CONFIG``, or the default."""
    if path is not None:
        return Path(path)
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_PATH


def load_config(path: Path | None = None) -> CryptodialConfig:
    """Load and validate configuration from a YAML file.

    Environment variable placeholders (``${VAR}``) are expanded before
    validation, including those in the built-in defaults. A missing file
    yields the defaults.
    """
    config_path = get_config_path(path)
    raw_data: dict = {}
    if config_path.exists():
        raw_data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    defaults = CryptodialConfig().model_dump(mode="python")
    merged = _deep_merge(defaults, raw_data)
    expanded = _expand_env_recursive(merged)
    return CryptodialConfig.model_validate(expanded)


def save_config(config: CryptodialConfig, path: Path) -> None:
    """Serialize a :class:`CryptodialConfig` to a YAML file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    data = config.model_dump(mode="python", exclude_none=True)
    with open(path, "w", encoding="utf-8") as fh:
        yaml.dump(data, fh, default_flow_style=False, sort_keys=False)


def _deep_merge(base: dict, override: dict) -> dict:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged
