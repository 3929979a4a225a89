"""Configuration system for feed-gate.

Loads the gateway config from ``.feed-gate/config.yaml``, supports
environment variable expansion so RPC credentials can stay out of the file,
and validates everything with pydantic.
"""

from __future__ import annotations

import os
import re
from decimal import Decimal
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import BaseModel, Field, field_validator


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


# ---------------------------------------------------------------------------
# Pydantic v2 models
# ---------------------------------------------------------------------------


class RpcConfig(BaseModel):
    """Connection to the bitcoind-compatible node."""

    url: str = "http://127.0.0.1:8332/"
    username: str = ""               # ${BITCOIN_RPC_USER}
    password: str = ""               # ${BITCOIN_RPC_PASSWORD}
    timeout_seconds: float = Field(default=30.0, gt=0)
    min_confirmations: int = Field(default=1, ge=0)
    max_confirmations: int = Field(default=9_999_999, ge=0)
    address_label: str = ""          # label used by getnewaddress / getaddressesbylabel


class PaymentConfig(BaseModel):
    """Monthly pricing and settlement parameters, in BTC."""

    monthly_threshold: Decimal = Decimal("0.0002")   # roughly 0.0024 BTC / year
    network_fee: Decimal = Field(default=Decimal("0.000075"), ge=0)
    collection_address: str = ""     # ${COLLECTION_ADDRESS}
    admin_username: str = "admin"


class SweepConfig(BaseModel):
    """Monthly settlement sweep settings."""

    enabled: bool = True
    timezone: str = "UTC"

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone '{value}'") from exc
        return value

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


class StorageConfig(BaseModel):
    """Account store location, relative to the config directory."""

    path: str = "feed_gate.db"


class GatewayConfig(BaseModel):
    """Root configuration object for one gateway deployment."""

    rpc: RpcConfig = Field(default_factory=RpcConfig)
    payments: PaymentConfig = Field(default_factory=PaymentConfig)
    sweep: SweepConfig = Field(default_factory=SweepConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)


# ---------------------------------------------------------------------------
# Public helpers
# ---------------------------------------------------------------------------


def get_config_dir(base: Path | None = None, *, create: bool = False) -> Path:
    """Return the ``.feed-gate/`` directory under *base* (default: cwd)."""
    if base is None:
        base = Path.cwd()
    config_dir = base / ".feed-gate"
    if create:
        config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def load_config(path: Path) -> GatewayConfig:
    """Load and validate a gateway configuration from a YAML file.

    Environment variable placeholders (``${VAR}``) are expanded before
    validation.
    """
    raw_text = path.read_text(encoding="utf-8")
    raw_data = yaml.safe_load(raw_text) or {}
    expanded = _expand_env_recursive(raw_data)
    return GatewayConfig.model_validate(expanded)


def save_config(config: GatewayConfig, path: Path) -> None:
    """Serialize a :class:`GatewayConfig` to a YAML file.

    Amounts are written as strings so they survive the round-trip exactly.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    data = config.model_dump(mode="json", exclude_none=True)
    with open(path, "w", encoding="utf-8") as fh:
        yaml.dump(data, fh, default_flow_style=False, sort_keys=False)
