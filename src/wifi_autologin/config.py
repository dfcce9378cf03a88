from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Optional, Union
from urllib.parse import urlparse

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .util.urls import origin_of


_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z0-9_]+)\}")


def _expand_env_vars(value: object) -> object:
    if isinstance(value, str):
        def repl(match: re.Match[str]) -> str:
            var = match.group(1)
            return os.getenv(var, "")

        return _ENV_VAR_PATTERN.sub(repl, value)
    if isinstance(value, list):
        return [_expand_env_vars(v) for v in value]
    if isinstance(value, dict):
        return {k: _expand_env_vars(v) for k, v in value.items()}
    return value


def _env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name, "") or "").strip().lower()
    if not raw:
        return bool(default)
    return raw in {"1", "true", "t", "yes", "y", "on"}


def _deep_merge(base: object, override: object) -> object:
    if isinstance(base, dict) and isinstance(override, dict):
        out = dict(base)
        for k, v in override.items():
            if k in out:
                out[k] = _deep_merge(out[k], v)
            else:
                out[k] = v
        return out
    return override


def parse_extra_fields(value: object) -> dict[str, str]:
    """
    Accept extra hidden form parameters either as a mapping or as a JSON object string
    (`'{"mode": "191"}'`). Empty input yields an empty mapping.
    """
    if value is None:
        return {}
    if isinstance(value, dict):
        return {str(k): "" if v is None else str(v) for k, v in value.items()}
    s = str(value).strip()
    if not s:
        return {}
    try:
        data = json.loads(s)
    except json.JSONDecodeError as e:
        raise ValueError(f"extra_fields must be a JSON object (got: {s[:40]!r})") from e
    if not isinstance(data, dict):
        raise ValueError("extra_fields must be a JSON object mapping field name -> value")
    return {str(k): "" if v is None else str(v) for k, v in data.items()}


def _default_config_from_env() -> dict:
    """
    Env-only defaults so a plain `.env` is enough for most setups; YAML is an optional override.
    """
    return {
        "portal": {
            "login_url": os.getenv("PORTAL_LOGIN_URL", ""),
            "user_field": os.getenv("PORTAL_USER_FIELD", ""),
            "pass_field": os.getenv("PORTAL_PASS_FIELD", ""),
            "username": os.getenv("PORTAL_USERNAME", ""),
            "password": os.getenv("PORTAL_PASSWORD", ""),
            "extra_fields": os.getenv("PORTAL_EXTRA_FIELDS", ""),
        },
        "probe": {
            "url": os.getenv("PROBE_URL", "http://clients3.google.com/generate_204"),
        },
        "browser": {
            "headless": _env_bool("BROWSER_HEADLESS", default=True),
            "channel": os.getenv("BROWSER_CHANNEL", ""),
            "debug_dir": os.getenv("DEBUG_DIR", "data/debug"),
        },
        "store": {
            "path": os.getenv("CONFIG_STORE_PATH", "data/portal_config.json"),
        },
        "notifications": {
            "desktop": _env_bool("DESKTOP_NOTIFICATIONS", default=False),
        },
        "logging": {
            "level": os.getenv("LOG_LEVEL", "INFO"),
            "file_path": os.getenv("LOG_FILE", "data/autologin.log"),
        },
    }


class PortalConfig(BaseModel):
    """
    Credentials + form hints for one captive portal.

    Immutable: the engine replaces the whole snapshot on update and never mutates it in place.
    """

    model_config = ConfigDict(frozen=True)

    login_url: str
    user_field: str = ""
    pass_field: str = ""
    username: str = ""
    password: str = Field(default="", repr=False)
    # Fixed hidden parameters some portals expect (e.g. {"mode": "191"}).
    extra_fields: dict[str, str] = Field(default_factory=dict)

    @field_validator("extra_fields", mode="before")
    @classmethod
    def _parse_extra_fields(cls, value: object) -> dict[str, str]:
        return parse_extra_fields(value)

    @field_validator("user_field", "pass_field", mode="before")
    @classmethod
    def _strip_field_hint(cls, value: object) -> str:
        return str(value or "").strip()

    @field_validator("login_url")
    @classmethod
    def _validate_login_url(cls, value: str) -> str:
        url = (value or "").strip()
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"portal.login_url must be a full URL like 'http://172.16.2.1:1000' (got: {url!r})")
        return url

    @property
    def origin(self) -> str:
        return origin_of(self.login_url)


class ProbeConfig(BaseModel):
    # Returns an empty 204 when the network is not intercepted.
    url: str = "http://clients3.google.com/generate_204"
    timeout_ms: int = 2000
    retry_delay_ms: int = 300


class EngineConfig(BaseModel):
    check_interval_seconds: float = 60.0
    settle_delay_ms: int = 2000
    notify_success_cooldown_seconds: float = 180.0

    # Lightweight page opened to let the portal intercept/redirect us.
    probe_session_url: str = "http://neverssl.com/"
    probe_cooldown_seconds: float = 15.0
    load_timeout_ms: int = 15_000
    reload_timeout_ms: int = 7_000

    max_field_check_tries: int = Field(default=3, ge=1)
    field_check_interval_ms: int = 1200
    reload_on_first_fail: bool = True


class BackoffConfig(BaseModel):
    initial_seconds: int = 2
    ceiling_seconds: int = 16
    extended_ceiling_seconds: int = 60
    steady_seconds: int = 5
    steady_after_failures: int = 6
    keepalive_seconds: int = 5


class HeuristicsConfig(BaseModel):
    """
    Field-matching heuristics. These are a deliberate best-effort policy; override them here
    rather than editing code when a portal is missed.
    """

    username_pattern: str = r"user|login|email|username|id"
    username_types: list[str] = Field(default_factory=lambda: ["text", "email", ""])
    keepalive_url_token: str = "keepalive"
    keepalive_text_pattern: str = r"keepalive|authentication keep-?alive|authentication refresh"

    @field_validator("username_pattern", "keepalive_text_pattern")
    @classmethod
    def _must_compile(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as e:
            raise ValueError(f"invalid regular expression {value!r}: {e}") from e
        return value


class BrowserConfig(BaseModel):
    headless: bool = True
    # Optional system browser channel ("chrome", "msedge"); empty uses Playwright's Chromium.
    channel: str = ""
    slow_mo_ms: int = 0
    debug_dir: str = "data/debug"


class StoreConfig(BaseModel):
    path: str = "data/portal_config.json"


class NotificationsConfig(BaseModel):
    desktop: bool = False


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file_path: str = "data/autologin.log"


class AppConfig(BaseModel):
    portal: Optional[PortalConfig] = None
    probe: ProbeConfig = ProbeConfig()
    engine: EngineConfig = EngineConfig()
    backoff: BackoffConfig = BackoffConfig()
    heuristics: HeuristicsConfig = HeuristicsConfig()
    browser: BrowserConfig = BrowserConfig()
    store: StoreConfig = StoreConfig()
    notifications: NotificationsConfig = NotificationsConfig()
    logging: LoggingConfig = LoggingConfig()

    @model_validator(mode="before")
    @classmethod
    def _drop_incomplete_portal(cls, data: object) -> object:
        # Seed credentials are optional: an empty login_url means "not configured yet".
        if isinstance(data, dict):
            portal = data.get("portal")
            if isinstance(portal, dict) and not str(portal.get("login_url") or "").strip():
                data = dict(data)
                data["portal"] = None
        return data


def load_config(path: Union[str, Path, None] = None) -> AppConfig:
    raw: dict = {}
    if path:
        p = Path(path)
        if p.exists():
            raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
            raw = _expand_env_vars(raw)  # supports ${ENV_VAR} in YAML

    merged = _deep_merge(_default_config_from_env(), raw)
    return AppConfig.model_validate(merged)
