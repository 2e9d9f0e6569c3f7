"""Tenant-side records read and written by the scheduler."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from models.market import RiskLevel


class RuntimeStatus(str, Enum):
    RUNNING = "running"
    PAPER = "paper"
    PAUSED = "paused"
    STOPPED = "stopped"

    @classmethod
    def parse(cls, value: object) -> "RuntimeStatus":
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return cls.STOPPED


class RiskMix(str, Enum):
    CONSERVATIVE = "conservative"
    BALANCED = "balanced"
    AGGRESSIVE = "aggressive"


SCHEDULABLE_STATUSES = (RuntimeStatus.RUNNING, RuntimeStatus.PAPER)


def risk_level_from_mix(mix: Optional[str]) -> RiskLevel:
    value = str(getattr(mix, "value", mix) or "").strip().lower()
    if value == RiskMix.CONSERVATIVE.value:
        return RiskLevel.LOW
    if value == RiskMix.AGGRESSIVE.value:
        return RiskLevel.HIGH
    return RiskLevel.MEDIUM


@dataclass(frozen=True)
class TenantRuntime:
    tenant_id: str
    status: RuntimeStatus


@dataclass(frozen=True)
class Directive:
    """Tenant-authored trading preferences. Read-only for the scheduler."""

    amount: Optional[float] = None
    buys_per_day: Optional[int] = None
    risk_mix: Optional[str] = None
    focus_areas: list[str] = field(default_factory=list)
    paper_mode: Optional[bool] = None
    whale_follow: bool = False


@dataclass(frozen=True)
class DailyCounters:
    runs_today: int = 0
    trades_today: int = 0


@dataclass
class RuntimeState:
    """Per-tenant scheduler state, one row per tenant.

    Counters belong to ``day_bucket``. Readers go through ``counters_for`` so a
    row left over from a previous day reads as zero without a reset job.
    """

    tenant_id: str
    day_bucket: str
    runs_today: int = 0
    trades_today: int = 0
    last_run_at: Optional[datetime] = None
    last_scan_at: Optional[datetime] = None
    last_error: Optional[str] = None
    last_error_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def counters_for(self, today: str) -> DailyCounters:
        if self.day_bucket != today:
            return DailyCounters()
        return DailyCounters(
            runs_today=max(0, int(self.runs_today or 0)),
            trades_today=max(0, int(self.trades_today or 0)),
        )
