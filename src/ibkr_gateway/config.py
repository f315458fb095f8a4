"""Gateway client config loading from config.json plus env overrides."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator


def _env_path(name: str, fallback: Path) -> Path:
    raw = os.environ.get(name, "").strip()
    return Path(raw).expanduser() if raw else fallback.expanduser()


_USER_HOME = Path.home()
_XDG_CONFIG_HOME = _env_path("XDG_CONFIG_HOME", _USER_HOME / ".config")
DEFAULT_CONFIG_HOME = _XDG_CONFIG_HOME / "ibkr-gateway"
DEFAULT_CONFIG_JSON = _env_path("IBKR_GATEWAY_CONFIG_JSON", DEFAULT_CONFIG_HOME / "config.json")

ENV_PREFIX = "IBKR_"
SECTIONS = frozenset({"gateway", "auth", "logging"})


class GatewayConfig(BaseModel):
    host: str = "localhost"
    port: int = 5000
    request_timeout_seconds: float = 30.0
    tickle_timeout_seconds: float = 10.0
    tickle_interval_seconds: float = 30.0
    max_auth_attempts: int = 3
    # The gateway serves a self-signed localhost certificate; nothing else reads this flag.
    verify_tls: bool = False

    @field_validator("port")
    @classmethod
    def _validate_port(cls, value: int) -> int:
        if not 1 <= value <= 65535:
            raise ValueError("port must be between 1 and 65535")
        return value

    @field_validator("request_timeout_seconds", "tickle_timeout_seconds", "tickle_interval_seconds")
    @classmethod
    def _validate_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @field_validator("max_auth_attempts")
    @classmethod
    def _validate_attempts(cls, value: int) -> int:
        if value < 1:
            raise ValueError("max_auth_attempts must be at least 1")
        return value


class AuthConfig(BaseModel):
    headless_mode: bool = False
    username: str = ""
    password: str = ""
    auth_timeout_seconds: int = 60
    paper_trading: bool = True


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_file: Path | None = None


class AppConfig(BaseModel):
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @property
    def login_url(self) -> str:
        return f"https://{self.gateway.host}:{self.gateway.port}"

    def expanded(self) -> "AppConfig":
        clone = self.model_copy(deep=True)
        if clone.logging.log_file is not None:
            clone.logging.log_file = clone.logging.log_file.expanduser()
        return clone


def _coerce_env_value(value: str) -> Any:
    lower = value.lower()
    if lower in {"true", "false"}:
        return lower == "true"
    try:
        if "." in value:
            return float(value)
        return int(value)
    except ValueError:
        return value


def _read_config_json(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}

    try:
        loaded = json.loads(path.read_text(encoding="utf-8"))
    except Exception:
        return {}

    if isinstance(loaded, dict):
        return loaded
    return {}


def _extract_sections(data: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for section in SECTIONS:
        value = data.get(section)
        if isinstance(value, dict):
            out[section] = value
    return out


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    result = dict(data)
    for key, raw in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        tokens = key[len(ENV_PREFIX) :].lower().split("_")
        section = tokens[0]
        if section not in SECTIONS or len(tokens) == 1:
            continue
        field = "_".join(tokens[1:])
        section_obj = dict(result.get(section, {}))
        section_obj[field] = _coerce_env_value(raw)
        result[section] = section_obj
    return result


def load_config(path: Path | None = None) -> AppConfig:
    raw = _read_config_json(path or DEFAULT_CONFIG_JSON)
    merged = _apply_env_overrides(_extract_sections(raw))
    return AppConfig.model_validate(merged).expanded()
