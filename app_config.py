"""Configuration loading for the city lookup service."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

LOGGER = logging.getLogger(__name__)

APP_ROOT = Path(__file__).parent
CONFIG_PATH = APP_ROOT / "config.json"

DEFAULT_USER_AGENT = "city-lookup/0.1 (+https://github.com/city-lookup/city-lookup)"


@dataclass
class AppConfig:
    language: str = "en"
    prayer_method: int = 2
    prayer_school: int = 0
    weather_api_key: str = ""
    timezone_api_key: str = ""
    user_agent: str = DEFAULT_USER_AGENT
    request_timeout: float = 10.0
    debounce_seconds: float = 0.3
    suggestion_limit: int = 5


def load_config(path: Path = CONFIG_PATH, environ: Optional[Mapping[str, str]] = None) -> AppConfig:
    """Build an AppConfig from *path* (if present) and environment overrides."""
    environ = os.environ if environ is None else environ
    payload = _load_json(path, default={})
    LOGGER.debug("Loaded config keys from %s: %s", path, list(payload.keys()))

    calc_cfg = payload.get("calculation", {})
    if not isinstance(calc_cfg, dict):
        calc_cfg = {}
    api_cfg = payload.get("api_keys", {})
    if not isinstance(api_cfg, dict):
        api_cfg = {}

    defaults = AppConfig()
    config = AppConfig(
        language=str(payload.get("language") or defaults.language),
        prayer_method=_coerce(calc_cfg.get("method"), int, defaults.prayer_method, "calculation.method"),
        prayer_school=_coerce(calc_cfg.get("school"), int, defaults.prayer_school, "calculation.school"),
        weather_api_key=str(api_cfg.get("weather") or ""),
        timezone_api_key=str(api_cfg.get("timezonedb") or ""),
        user_agent=str(payload.get("user_agent") or defaults.user_agent),
        request_timeout=_coerce(payload.get("request_timeout"), float, defaults.request_timeout, "request_timeout"),
        debounce_seconds=_coerce(payload.get("debounce_ms"), float, defaults.debounce_seconds * 1000, "debounce_ms")
        / 1000.0,
        suggestion_limit=_coerce(payload.get("suggestion_limit"), int, defaults.suggestion_limit, "suggestion_limit"),
    )

    if environ.get("WEATHER_API_KEY"):
        config.weather_api_key = environ["WEATHER_API_KEY"]
    if environ.get("TIMEZONEDB_API_KEY"):
        config.timezone_api_key = environ["TIMEZONEDB_API_KEY"]
    if environ.get("CITYLOOKUP_LANGUAGE"):
        config.language = environ["CITYLOOKUP_LANGUAGE"]

    if not config.weather_api_key:
        LOGGER.warning("No OpenWeatherMap API key configured; weather lookups will fail")
    if not config.timezone_api_key:
        LOGGER.warning("No TimeZoneDB API key configured; timezone lookups will fail")
    return config


def _coerce(value: Optional[object], kind: type, default: Any, name: str) -> Any:
    if value in (None, ""):
        return default
    try:
        return kind(value)
    except (TypeError, ValueError):
        LOGGER.warning("Invalid value %r for %s; using default %r", value, name, default)
        return default


def _load_json(path: Path, default: Dict[str, Any]) -> Dict[str, Any]:
    if not path.exists():
        return default
    with path.open("r", encoding="utf-8") as handle:
        payload = json.load(handle)
    if not isinstance(payload, dict):
        LOGGER.warning("Ignoring config at %s: expected a JSON object", path)
        return default
    return payload
