import sys
from pathlib import Path

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from datetime import datetime, timedelta, timezone

import pytest

from config import SchedulerConfig
from models.tenant import RuntimeState
from services.pacing import (
    REASON_DAILY_BUDGET,
    clamp_buys_per_day,
    compute_pacing,
    effective_interval_seconds,
    next_eligible_run_at,
)

NOW = datetime(2025, 3, 14, 12, 0, 0)
CONFIG = SchedulerConfig()


def _state(**overrides) -> RuntimeState:
    fields = {"tenant_id": "t1", "day_bucket": "2025-03-14"}
    fields.update(overrides)
    return RuntimeState(**fields)


def test_interval_from_buys_per_day_is_clamped():
    assert effective_interval_seconds(24, CONFIG) == 3600
    assert effective_interval_seconds(48, CONFIG) == 1800
    assert effective_interval_seconds(1, CONFIG) == 3600
    assert effective_interval_seconds(100000, CONFIG) == 30


@pytest.mark.parametrize(
    "raw,expected",
    [(None, 24), (0, 24), (float("nan"), 24), ("12", 12), (-5, 1), (10**9, 100000), (7.9, 7)],
)
def test_clamp_buys_per_day(raw, expected):
    assert clamp_buys_per_day(raw, 24) == expected


def test_first_run_is_due():
    decision = compute_pacing(24, None, NOW, CONFIG)

    assert decision.due
    assert decision.interval_seconds == 3600
    assert decision.trades_this_run == 1
    assert decision.remaining_daily_trades == 24


def test_too_soon_until_interval_elapses():
    t0 = NOW
    state = _state(runs_today=1, trades_today=1, last_run_at=t0)

    early = compute_pacing(24, state, t0 + timedelta(seconds=3599), CONFIG)
    on_time = compute_pacing(24, state, t0 + timedelta(seconds=3600), CONFIG)

    assert not early.due
    assert early.reason == "too_soon_3599s"
    assert on_time.due


def test_timezone_aware_now_is_compared_in_utc():
    state = _state(last_run_at=NOW)
    aware = (NOW + timedelta(seconds=10)).replace(tzinfo=timezone.utc)

    assert compute_pacing(24, state, aware, CONFIG).reason == "too_soon_10s"


def test_daily_budget_reached_when_trades_hit_buys_per_day():
    state = _state(runs_today=5, trades_today=24, last_run_at=NOW - timedelta(hours=2))

    decision = compute_pacing(24, state, NOW, CONFIG)

    assert not decision.due
    assert decision.reason == REASON_DAILY_BUDGET
    assert decision.runs_today == 5


def test_timing_is_checked_before_quota():
    state = _state(trades_today=24, last_run_at=NOW - timedelta(seconds=5))
    assert compute_pacing(24, state, NOW, CONFIG).reason == "too_soon_5s"


def test_counters_from_a_previous_day_read_as_zero():
    state = _state(day_bucket="2025-03-13", runs_today=24, trades_today=24, last_run_at=NOW - timedelta(hours=3))

    decision = compute_pacing(24, state, NOW, CONFIG)

    assert decision.due
    assert decision.runs_today == 0
    assert decision.trades_today == 0
    assert decision.remaining_daily_trades == 24


def test_trades_per_run_spreads_budget_over_expected_runs():
    # 86400 / 30 = 2880 runs; 5000 buys -> ceil(5000 / 2880) = 2
    assert compute_pacing(5000, None, NOW, CONFIG).trades_this_run == 2

    # 200 buys -> interval 432s, 200 runs -> 1 per run
    assert compute_pacing(200, None, NOW, CONFIG).trades_this_run == 1


def test_trades_per_run_bounded_by_remaining_and_scan_cap():
    config = SchedulerConfig(max_trades_per_scan=3)
    state = _state(trades_today=99_998, last_run_at=NOW - timedelta(minutes=1))

    assert compute_pacing(100000, None, NOW, config).trades_this_run == 3
    assert compute_pacing(100000, state, NOW, config).trades_this_run == 2


def test_next_eligible_run_at():
    assert next_eligible_run_at(None, 3600) is None
    assert next_eligible_run_at(NOW, 3600) == NOW + timedelta(hours=1)
