"""
Runtime configuration for the daily Coinranking ingestion job.

Settings come from the process environment (optionally seeded from a ``.env``
file) and are converted into typed dataclasses with dacite.
"""

import os
import logging
from dataclasses import dataclass, field
from typing import Optional, Dict, Mapping

from dacite import from_dict, Config as DaciteConfig
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

PAGE_SIZE = 100
DEFAULT_PAGES = 20
DEFAULT_RATE_INTERVAL_MS = 2000
DEFAULT_HOUR = 20
DEFAULT_MINUTE = 32
DEFAULT_SECOND = 0
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_PAGE_RETRIES = 0

REQUIRED_ENV_VARS = ("API_KEY", "API_URL", "DATABASE_URL")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigError(ValueError):
    """Raised when required settings are missing or invalid at startup."""
    pass


@dataclass
class RunTime:
    """Daily time-of-day (UTC) at which a cycle starts."""
    hour: int = DEFAULT_HOUR
    minute: int = DEFAULT_MINUTE
    second: int = DEFAULT_SECOND

    def __post_init__(self):
        if not 0 <= self.hour <= 23:
            raise ConfigError(f"run hour out of range: {self.hour}")
        if not 0 <= self.minute <= 59:
            raise ConfigError(f"run minute out of range: {self.minute}")
        if not 0 <= self.second <= 59:
            raise ConfigError(f"run second out of range: {self.second}")

    def __str__(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}:{self.second:02d}"


@dataclass
class ApiSettings:
    base_url: str
    api_key: str
    pages: int = DEFAULT_PAGES
    page_size: int = PAGE_SIZE
    rate_interval_ms: int = DEFAULT_RATE_INTERVAL_MS
    request_timeout: float = DEFAULT_TIMEOUT_SECONDS
    page_retries: int = DEFAULT_PAGE_RETRIES

    @property
    def rate_interval_seconds(self) -> float:
        return self.rate_interval_ms / 1000.0


@dataclass
class IngestionConfig:
    """Fully validated settings consumed by the ingestion core."""
    api: ApiSettings
    db_path: str
    run_at: RunTime = field(default_factory=RunTime)
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, data: Dict) -> "IngestionConfig":
        """
        Build a config from a plain dict.

        :param data: Dict shaped like the dataclass tree, e.g.
                     {"api": {"base_url": ..., "api_key": ...}, "db_path": ...}
        """
        return from_dict(
            data_class=cls,
            data=data,
            config=DaciteConfig(cast=[int, float], strict=True)
        )


def parse_run_at(value: str) -> RunTime:
    """
    Parse ``HH:MM`` or ``HH:MM:SS``.

    :raises ConfigError: If the value is not a valid time-of-day
    """
    parts = value.strip().split(":")
    if len(parts) not in (2, 3):
        raise ConfigError(f"RUN_AT must be HH:MM[:SS], got {value!r}")

    try:
        numbers = [int(p) for p in parts]
    except ValueError:
        raise ConfigError(f"RUN_AT must be HH:MM[:SS], got {value!r}")

    if len(numbers) == 2:
        numbers.append(0)

    return RunTime(hour=numbers[0], minute=numbers[1], second=numbers[2])


def _positive_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default

    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"{name}={raw!r} is not an integer, using {default}")
        return default

    if value <= 0:
        logger.warning(f"{name}={raw!r} must be positive, using {default}")
        return default
    return value


def _non_negative_number(env: Mapping[str, str], name: str, default, cast):
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default

    try:
        value = cast(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")

    if value < 0:
        raise ConfigError(f"{name} must be >= 0, got {raw!r}")
    return value


def load_config(env: Optional[Mapping[str, str]] = None) -> IngestionConfig:
    """
    Load configuration from the environment.

    When ``env`` is omitted a ``.env`` file in the working directory is loaded
    first and ``os.environ`` is used.

    :raises ConfigError: If a required variable is missing or a value is invalid
    """
    if env is None:
        load_dotenv()
        env = os.environ

    missing = [name for name in REQUIRED_ENV_VARS if not env.get(name)]
    if missing:
        raise ConfigError(f"Missing required settings: {', '.join(missing)}")

    run_at = parse_run_at(env["RUN_AT"]) if env.get("RUN_AT") else RunTime()

    log_level = env.get("LOG_LEVEL", "INFO").upper()
    if log_level not in LOG_LEVELS:
        raise ConfigError(f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}, got {log_level!r}")

    data = {
        "api": {
            "base_url": env["API_URL"],
            "api_key": env["API_KEY"],
            "pages": _positive_int(env, "PAGES", DEFAULT_PAGES),
            "rate_interval_ms": _non_negative_number(env, "RATE_INTERVAL_MS", DEFAULT_RATE_INTERVAL_MS, int),
            "request_timeout": _non_negative_number(env, "REQUEST_TIMEOUT", DEFAULT_TIMEOUT_SECONDS, float),
            "page_retries": _non_negative_number(env, "PAGE_RETRIES", DEFAULT_PAGE_RETRIES, int),
        },
        "db_path": env["DATABASE_URL"],
        "run_at": {"hour": run_at.hour, "minute": run_at.minute, "second": run_at.second},
        "log_level": log_level,
    }

    return IngestionConfig.from_dict(data)
