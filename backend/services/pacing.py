"""Per-tenant pacing: how often a tenant may run and how many trades per run.

A tenant's ``buys_per_day`` is spread over the runs a day is expected to hold
instead of being spent on the first eligible tick.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from config import SchedulerConfig
from models.tenant import RuntimeState
from utils.utcnow import as_naive_utc, day_bucket

SECONDS_PER_DAY = 86400
MAX_BUYS_PER_DAY = 100000

REASON_DAILY_BUDGET = "daily_budget_reached"


def too_soon_reason(elapsed_seconds: int) -> str:
    return f"too_soon_{elapsed_seconds}s"


@dataclass(frozen=True)
class PacingDecision:
    due: bool
    reason: str
    buys_per_day: int
    interval_seconds: int
    runs_today: int = 0
    trades_today: int = 0
    remaining_daily_trades: int = 0
    trades_this_run: int = 0


def clamp_buys_per_day(raw: object, default: int) -> int:
    try:
        value = float(raw) if raw is not None else float(default)
    except (TypeError, ValueError):
        value = float(default)
    if not math.isfinite(value) or value == 0:
        value = float(default)
    return int(min(MAX_BUYS_PER_DAY, max(1, math.floor(value))))


def effective_interval_seconds(buys_per_day: int, config: SchedulerConfig) -> int:
    from_buys = SECONDS_PER_DAY // max(1, buys_per_day)
    return int(min(config.max_interval_seconds, max(config.min_interval_seconds, from_buys)))


def expected_runs_per_day(interval_seconds: int) -> int:
    return max(1, SECONDS_PER_DAY // max(1, interval_seconds))


def next_eligible_run_at(last_run_at: Optional[datetime], interval_seconds: int) -> Optional[datetime]:
    if last_run_at is None:
        return None
    return as_naive_utc(last_run_at) + timedelta(seconds=interval_seconds)


def compute_pacing(
    buys_per_day: Optional[int],
    state: Optional[RuntimeState],
    now: datetime,
    config: SchedulerConfig,
) -> PacingDecision:
    """Decide whether a tenant is due this tick and its trade quota for the run."""
    buys = clamp_buys_per_day(buys_per_day, config.default_buys_per_day)
    interval = effective_interval_seconds(buys, config)
    now_utc = as_naive_utc(now)

    if state is not None and state.last_run_at is not None:
        elapsed = int(math.floor((now_utc - as_naive_utc(state.last_run_at)).total_seconds()))
        if elapsed < interval:
            return PacingDecision(
                due=False,
                reason=too_soon_reason(elapsed),
                buys_per_day=buys,
                interval_seconds=interval,
            )

    counters = state.counters_for(day_bucket(now_utc)) if state is not None else None
    runs_today = counters.runs_today if counters else 0
    trades_today = counters.trades_today if counters else 0

    remaining = max(0, buys - trades_today)
    if remaining <= 0:
        return PacingDecision(
            due=False,
            reason=REASON_DAILY_BUDGET,
            buys_per_day=buys,
            interval_seconds=interval,
            runs_today=runs_today,
            trades_today=trades_today,
        )

    target = max(1, math.ceil(buys / expected_runs_per_day(interval)))
    return PacingDecision(
        due=True,
        reason="due",
        buys_per_day=buys,
        interval_seconds=interval,
        runs_today=runs_today,
        trades_today=trades_today,
        remaining_daily_trades=remaining,
        trades_this_run=int(min(target, remaining, config.max_trades_per_scan)),
    )
