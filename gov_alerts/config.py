"""Configuration management for the governance alert engine."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from gov_alerts.errors import ConfigError


DEFAULT_CONFIG_PATH = "config.yaml"
DEFAULT_CHAIN_REGISTRY_URL = "https://raw.githubusercontent.com/cosmos/chain-registry/master"


class ChainConfig(BaseModel):
    """Per-chain endpoint preferences."""
    rest_endpoints: list[str] = Field(default_factory=list, description="Preferred REST (LCD) base URLs, tried first")
    account_prefix: str | None = Field(default=None, description="bech32 account prefix, derived from the operator address if unset")

    @field_validator("rest_endpoints")
    @classmethod
    def _strip_endpoints(cls, value: list[str]) -> list[str]:
        out: list[str] = []
        for item in value:
            s = str(item or "").strip().rstrip("/")
            if not s:
                continue
            if not s.startswith(("http://", "https://")):
                raise ValueError(f"REST endpoint must be an http(s) URL: {item!r}")
            out.append(s)
        return out


class ChainRegistryConfig(BaseModel):
    """Lookup of public REST endpoints in the cosmos chain-registry."""
    enabled: bool = Field(default=True, description="Append chain-registry REST endpoints to the candidates")
    base_url: str = Field(default=DEFAULT_CHAIN_REGISTRY_URL, description="Raw base URL of the chain-registry repository")
    max_endpoints: int = Field(default=8, ge=1, description="Upper bound on registry candidates per chain")


class ValidatorEntry(BaseModel):
    chain_name: str
    address: str


class TelegramSettings(BaseModel):
    bot_token: str = ""
    chat_id: str = ""


class SlackSettings(BaseModel):
    bot_token: str = ""
    channel_id: str = ""


class GovAlertsConfig(BaseModel):
    """Main configuration for the alert engine."""

    # Polling
    interval_seconds: int = Field(default=300, ge=1, description="Seconds between poll cycles")
    cycle_timeout_seconds: float = Field(default=240.0, gt=0, description="Upper bound on a single poll cycle")
    chain_concurrency: int = Field(default=4, ge=1, description="Chains processed in parallel")

    # Alert policy
    alert_window_hours: float = Field(default=24.0, gt=0, description="Alert when the deadline is this close")
    alert_window_inclusive: bool = Field(default=True, description="Alert exactly at the window boundary")

    # HTTP
    http_timeout_seconds: float = Field(default=8.0, gt=0, description="Timeout for REST calls")
    probe_timeout_seconds: float = Field(default=3.0, gt=0, description="Timeout for endpoint health probes")
    max_proposal_pages: int = Field(default=5, ge=1, description="Pagination limit for the proposal list")

    # State
    state_path: str = Field(default="state/alerts.json", description="Where delivered alerts are remembered")

    # Sources
    chains: dict[str, ChainConfig] = Field(default_factory=dict)
    chain_registry: ChainRegistryConfig = Field(default_factory=ChainRegistryConfig)
    validators: list[ValidatorEntry] = Field(default_factory=list, description="Static list of monitored validators")
    validators_db: str | None = Field(default=None, description="SQLite database owned by the registration bot")

    # Delivery
    sink: Literal["telegram", "slack", "log"] = Field(default="telegram")
    telegram: TelegramSettings = Field(default_factory=TelegramSettings)
    slack: SlackSettings = Field(default_factory=SlackSettings)

    log_level: str = Field(default="INFO")

    def chain(self, name: str) -> ChainConfig:
        return self.chains.get(name) or ChainConfig()


def _env(name: str) -> str | None:
    raw = os.getenv(name)
    if raw is None:
        return None
    s = raw.strip()
    return s or None


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    telegram = dict(data.get("telegram") or {})
    slack = dict(data.get("slack") or {})
    overrides = {
        ("telegram", "bot_token"): _env("TELEGRAM_BOT_TOKEN"),
        ("telegram", "chat_id"): _env("TELEGRAM_CHAT_ID"),
        ("slack", "bot_token"): _env("SLACK_BOT_TOKEN"),
        ("slack", "channel_id"): _env("SLACK_CHANNEL_ID"),
    }
    for (section, key), value in overrides.items():
        if value is None:
            continue
        (telegram if section == "telegram" else slack)[key] = value
    data["telegram"] = telegram
    data["slack"] = slack

    state_path = _env("GOV_ALERTS_STATE_PATH")
    if state_path:
        data["state_path"] = state_path
    log_level = _env("LOG_LEVEL")
    if log_level:
        data["log_level"] = log_level
    return data


def load_config(config_path: str | Path | None = None) -> GovAlertsConfig:
    """Load configuration from a YAML file, then apply environment overrides."""
    if config_path is None:
        config_path = os.getenv("GOV_ALERTS_CONFIG", DEFAULT_CONFIG_PATH)
    path = Path(config_path)

    data: dict[str, Any] = {}
    if path.exists():
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"failed to parse {path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise ConfigError("Config YAML must be a mapping")
        data = raw

    try:
        return GovAlertsConfig(**_apply_env_overrides(data))
    except ValidationError as exc:
        raise ConfigError(f"invalid config {path}: {exc}") from exc
