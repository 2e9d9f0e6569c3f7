import math
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Get the directory where this config file is located.
_BACKEND_DIR = Path(__file__).parent.resolve()
_PROJECT_ROOT = _BACKEND_DIR.parent.resolve()
_DEFAULT_DB_PATH = (_PROJECT_ROOT / "data" / "market_scheduler.db").resolve()
_SQLITE_ASYNC_PREFIX = "sqlite+aiosqlite:///"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Project-root .env first, backend/.env overrides it when present.
        env_file=(str(_PROJECT_ROOT / ".env"), str(_BACKEND_DIR / ".env")),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Upstream venue
    GAMMA_API_URL: str = "https://gamma-api.polymarket.com"
    CLOB_API_URL: str = "https://clob.polymarket.com"
    POLYMARKET_TIMEOUT_SECONDS: float = 12.0
    POLYMARKET_USER_AGENT: str = "market-scheduler/1.0"

    # Database
    DATABASE_URL: str = f"{_SQLITE_ASYNC_PREFIX}{_DEFAULT_DB_PATH}"

    # Production Settings
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Scheduler tick (raw values, clamped by SchedulerConfig.from_settings)
    MARKET_SCHEDULER_SECRET: Optional[str] = None
    MARKET_SCHEDULER_MIN_INTERVAL_SECONDS: float = 30
    MARKET_SCHEDULER_MAX_INTERVAL_SECONDS: float = 3600
    MARKET_SCHEDULER_MAX_USERS_PER_TICK: float = 100
    MARKET_SCHEDULER_CONCURRENCY: float = 12
    MARKET_SCHEDULER_MAX_TRADES_PER_SCAN: float = 250
    MARKET_SCHEDULER_MAX_MARKET_LIMIT: float = 5000
    MARKET_SCHEDULER_DEFAULT_BUYS_PER_DAY: float = 24
    MARKET_SCHEDULER_DEFAULT_CAPITAL_USD: float = 1000
    MARKET_SCHEDULER_MAX_POSITION_USD: float = 100000

    @field_validator("GAMMA_API_URL", "CLOB_API_URL", mode="before")
    @classmethod
    def _normalize_url_field(cls, value: object) -> object:
        """Trim accidental quotes/whitespace and trailing slashes from URL env vars."""
        if value is None:
            return value
        return str(value).strip().strip('"').strip("'").rstrip("/")

    @field_validator("DATABASE_URL", mode="before")
    @classmethod
    def _normalize_database_url(cls, value: object) -> object:
        """Resolve relative SQLite paths against the project root."""
        if value is None:
            return value
        text = str(value).strip().strip('"').strip("'")
        if not text.startswith(_SQLITE_ASYNC_PREFIX):
            return text
        path_part = text[len(_SQLITE_ASYNC_PREFIX) :]
        if not path_part or path_part in {":memory:", "/:memory:"}:
            return f"{_SQLITE_ASYNC_PREFIX}:memory:"
        if path_part.startswith("/"):
            return f"{_SQLITE_ASYNC_PREFIX}{Path(path_part).resolve()}"
        return f"{_SQLITE_ASYNC_PREFIX}{(_PROJECT_ROOT / path_part).resolve()}"

    @field_validator("MARKET_SCHEDULER_SECRET", mode="before")
    @classmethod
    def _blank_secret_is_unset(cls, value: object) -> object:
        if value is None:
            return None
        text = str(value).strip()
        return text or None


settings = Settings()


def _clamp(value: float, low: float, high: float) -> float:
    return min(high, max(low, value))


def _finite(value: object, default: float) -> float:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return default
    return parsed if math.isfinite(parsed) else default


@dataclass(frozen=True)
class SchedulerConfig:
    """Immutable global bounds for one scheduler tick.

    Built once per tick from ``Settings`` and passed into the orchestrator, so
    a tick is a function of (tenants, config, now) only.
    """

    min_interval_seconds: int = 30
    max_interval_seconds: int = 3600
    max_users_per_tick: int = 100
    concurrency: int = 12
    max_trades_per_scan: int = 250
    max_market_limit: int = 5000
    default_buys_per_day: int = 24
    default_capital_usd: float = 1000.0
    max_position_usd_cap: float = 100000.0

    @classmethod
    def from_settings(cls, source: Optional[Settings] = None) -> "SchedulerConfig":
        s = source or settings
        return cls(
            min_interval_seconds=int(_clamp(_finite(s.MARKET_SCHEDULER_MIN_INTERVAL_SECONDS, 30), 5, 86400)),
            max_interval_seconds=int(_clamp(_finite(s.MARKET_SCHEDULER_MAX_INTERVAL_SECONDS, 3600), 30, 86400)),
            max_users_per_tick=int(_clamp(math.floor(_finite(s.MARKET_SCHEDULER_MAX_USERS_PER_TICK, 100)), 1, 1000)),
            concurrency=int(_clamp(math.floor(_finite(s.MARKET_SCHEDULER_CONCURRENCY, 12)), 1, 100)),
            max_trades_per_scan=int(_clamp(math.floor(_finite(s.MARKET_SCHEDULER_MAX_TRADES_PER_SCAN, 250)), 1, 5000)),
            max_market_limit=int(_clamp(math.floor(_finite(s.MARKET_SCHEDULER_MAX_MARKET_LIMIT, 5000)), 50, 10000)),
            default_buys_per_day=int(
                _clamp(math.floor(_finite(s.MARKET_SCHEDULER_DEFAULT_BUYS_PER_DAY, 24)), 1, 100000)
            ),
            default_capital_usd=max(_finite(s.MARKET_SCHEDULER_DEFAULT_CAPITAL_USD, 1000.0), 1.0),
            max_position_usd_cap=max(_finite(s.MARKET_SCHEDULER_MAX_POSITION_USD, 100000.0), 1.0),
        )
