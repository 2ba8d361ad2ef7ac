"""TOML config loading and profiles."""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path
from typing import Any

# Default config search path (project root or cwd)
_CONFIG_DIR = Path(__file__).resolve().parent.parent.parent.parent / "config"
_CWD_CONFIG = Path.cwd() / "config"

# Out-of-band database location; wins over [storage] db_path
DB_PATH_ENV = "PREDPRICES_DB_PATH"


def _load_toml(path: Path) -> dict[str, Any]:
    with open(path, "rb") as f:
        return tomllib.load(f)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override into base. Override values take precedence."""
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _find_config_dir(config_dir: Path | None = None) -> Path:
    if config_dir is not None:
        return Path(config_dir)
    if _CWD_CONFIG.exists():
        return _CWD_CONFIG
    return _CONFIG_DIR


def load_config(profile: str | None = None, config_dir: Path | None = None) -> dict[str, Any]:
    """Load merged config from default.toml and optional profile overlay."""
    directory = _find_config_dir(config_dir)
    default_path = directory / "default.toml"
    if not default_path.exists():
        return {}
    base = _load_toml(default_path)
    if profile:
        profile_path = directory / f"{profile}.toml"
        if profile_path.exists():
            overlay = _load_toml(profile_path)
            base = _deep_merge(base, overlay)
    return base


def get_settings(profile: str | None = None, config_dir: Path | None = None) -> Settings:
    """Return Settings instance from merged config."""
    raw = load_config(profile, config_dir)
    return Settings.from_dict(raw)


class Settings:
    """Application settings from TOML config."""

    def __init__(
        self,
        *,
        storage: dict[str, Any] | None = None,
        collector: dict[str, Any] | None = None,
        polymarket: dict[str, Any] | None = None,
        logging: dict[str, Any] | None = None,
    ):
        self.storage = storage or {}
        self.collector = collector or {}
        self.polymarket = polymarket or {}
        self.logging = logging or {}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Settings:
        return cls(
            storage=raw.get("storage"),
            collector=raw.get("collector"),
            polymarket=raw.get("polymarket"),
            logging=raw.get("logging"),
        )

    # Convenience accessors with defaults
    @property
    def db_path(self) -> str:
        return os.environ.get(DB_PATH_ENV) or self.storage.get("db_path", "data/predprices.duckdb")

    @property
    def requests_per_minute(self) -> int:
        return int(self.collector.get("requests_per_minute", 90))

    @property
    def rate_limit_cooldown_sec(self) -> float:
        return float(self.collector.get("rate_limit_cooldown_sec", 30.0))

    @property
    def request_timeout_sec(self) -> float:
        return float(self.collector.get("request_timeout_sec", 10.0))

    @property
    def lookahead_hours(self) -> float:
        return float(self.collector.get("lookahead_hours", 48))

    @property
    def high_frequency_window_min(self) -> float:
        return float(self.collector.get("high_frequency_window_min", 10))

    @property
    def high_frequency_interval_sec(self) -> float:
        return float(self.collector.get("high_frequency_interval_sec", 120))

    @property
    def low_frequency_interval_sec(self) -> float:
        return float(self.collector.get("low_frequency_interval_sec", 600))

    @property
    def error_cooldown_sec(self) -> float:
        return float(self.collector.get("error_cooldown_sec", 60))

    @property
    def market_types(self) -> list[str]:
        """Catalog sub-market types to sample. Empty list disables the filter."""
        return list(self.collector.get("market_types", ["moneyline"]) or [])

    @property
    def clob_api_base(self) -> str:
        return self.polymarket.get("clob_api_base", "https://clob.polymarket.com")

    @property
    def logging_level(self) -> str:
        return self.logging.get("level", "INFO").upper()

    @property
    def logging_format(self) -> str:
        return self.logging.get("format", "console")

    @property
    def logging_level_num(self) -> int:
        return getattr(logging, self.logging_level, logging.INFO)


def configure_logging(settings: Settings) -> None:
    """Configure structlog with settings. Call once at application entry."""
    import structlog

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if settings.logging_format == "json":
        # ConsoleRenderer formats exc_info itself
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(settings.logging_level_num),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
