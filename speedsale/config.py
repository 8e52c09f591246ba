"""Configuration loading for the SpeedSale pipeline."""

from __future__ import annotations

import os
from copy import deepcopy
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from speedsale.logging_config import get_logger

LOGGER = get_logger(__name__)

DEFAULT_CONFIG_PATH = "config.yml"

DEFAULT_CONFIG: dict[str, Any] = {
    "database": {
        "url": None,
        "sqlite_path": "speedsale.sqlite",
        "busy_timeout": 30,
    },
    "scraping": {
        "max_workers": 2,
        "request_timeout_s": 30,
        "navigation_timeout_ms": 15000,
        "pagination_timeout_ms": 30000,
        "default_interval_hours": 24,
    },
    "retailers": {},
    "alerts": {"default_threshold": 10},
    "schedule": {
        "scrape_cron": "0 */6 * * *",
        "alerts_cron": "0 */12 * * *",
        "health_cron": "0 * * * *",
    },
    "logging": {"level": None},
    "app_url": "https://speedsale.vercel.app",
    "healthcheck_url": "",
}


def _deep_merge(default: Any, override: Any) -> Any:
    if not isinstance(default, dict) or not isinstance(override, dict):
        return deepcopy(override)

    merged: dict[str, Any] = deepcopy(default)
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = deepcopy(value)
    return merged


def resolve_config_path(path_value: str | Path | None = None) -> Path:
    """Return the absolute config path from an argument, env var or default."""

    raw = path_value or os.getenv("SPEEDSALE_CONFIG") or DEFAULT_CONFIG_PATH
    path = Path(raw)
    if not path.is_absolute():
        path = Path.cwd() / path
    return path


def load_config(path: str | Path | None = None) -> dict[str, Any]:
    """Load ``.env`` and the YAML config file, merged over :data:`DEFAULT_CONFIG`."""

    load_dotenv()

    config_path = resolve_config_path(path)
    if config_path.exists():
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    else:
        LOGGER.warning("Configuration file %s not found; using defaults", config_path)
        data = {}

    if not isinstance(data, dict):
        LOGGER.warning("Configuration file %s is not a mapping; using defaults", config_path)
        data = {}

    merged = _deep_merge(DEFAULT_CONFIG, data) if data else deepcopy(DEFAULT_CONFIG)

    database_url = os.getenv("DATABASE_URL")
    if database_url:
        merged["database"]["url"] = database_url

    return merged


def database_url(config: dict[str, Any]) -> str:
    """Return the SQLAlchemy URL described by *config*."""

    database = config.get("database") or {}
    url = database.get("url")
    if url:
        return str(url)
    return f"sqlite:///{database.get('sqlite_path') or 'speedsale.sqlite'}"


def scraping_setting(config: dict[str, Any], key: str) -> Any:
    """Return a ``scraping`` setting, falling back to the built-in default."""

    scraping = config.get("scraping") or {}
    value = scraping.get(key)
    if value is None:
        return DEFAULT_CONFIG["scraping"][key]
    return value
