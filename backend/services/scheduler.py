"""Scheduler tick: one bounded pass over every tenant whose bot is switched on.

A tick loads up to ``max_users_per_tick`` running/paper tenants and processes
them in sequential batches of ``concurrency``. For each tenant it applies
pacing, fetches markets through a per-tick cache, scores and decides, then
records paper trades and the runtime state in one store write. A tenant failure is
persisted on that tenant's state row and never aborts the tick; only a failure
to enumerate tenants does.
"""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Protocol

from config import SchedulerConfig
from models.bot import DEFAULT_CONFIG, BotConfig, BotStatus, TradeDecision, TradeRecord, normalize_focus_areas
from models.market import FocusArea, MarketSnapshot
from models.tenant import Directive, RuntimeState, RuntimeStatus, TenantRuntime, risk_level_from_mix
from services.decision import decide_trades
from services.market_cache import MarketFetchCache
from services.pacing import PacingDecision, compute_pacing, next_eligible_run_at
from services.paper_simulator import simulate_paper_trade
from services.scoring import score_opportunities
from services.tenant_store import TenantStore, truncate_error
from utils.logger import scheduler_logger as logger
from utils.utcnow import as_naive_utc, day_bucket, day_start, to_iso, utcnow

STATUS_EXECUTED = "executed"
STATUS_SKIPPED = "skipped"
STATUS_ERROR = "error"

REASON_OK = "ok"
REASON_NO_DECISIONS = "no_decisions"
REASON_LIVE_PENDING = "live_pending_credentials"

MIN_CANDIDATES = 200
CANDIDATES_PER_POSITION = 6
MARKETS_PER_POSITION = 8
MIN_MARKET_LIMIT = 50
BASE_MARKET_LIMIT = 120


class SchedulerTickError(Exception):
    """The tick could not run at all (tenant enumeration failed)."""


class MarketFeed(Protocol):
    async def fetch_markets(self, focus_areas: list[FocusArea], limit: int) -> list[MarketSnapshot]: ...


@dataclass(frozen=True)
class LiveExecutionResult:
    """Decisions prepared for a live tenant; nothing is signed or submitted."""

    status: str = "pending_credentials"
    decisions: tuple[TradeDecision, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "orders": [
                {
                    "marketId": d.opportunity.id,
                    "side": d.side.value,
                    "shares": d.shares,
                    "price": d.price,
                    "reason": d.reason,
                }
                for d in self.decisions
            ],
        }


@dataclass
class SchedulerUserResult:
    tenant_id: str
    status: str
    reason: str
    trades_executed: int = 0
    decisions: int = 0
    live: Optional[LiveExecutionResult] = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "userId": self.tenant_id,
            "status": self.status,
            "reason": self.reason,
            "tradesExecuted": self.trades_executed,
            "decisions": self.decisions,
        }
        if self.live is not None:
            payload["live"] = self.live.to_dict()
        return payload


@dataclass
class SchedulerTickResult:
    users_considered: int
    users_executed: int
    total_trades_executed: int
    results: list[SchedulerUserResult] = field(default_factory=list)
    timestamp: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "usersConsidered": self.users_considered,
            "usersExecuted": self.users_executed,
            "totalTradesExecuted": self.total_trades_executed,
            "results": [r.to_dict() for r in self.results],
            "timestamp": to_iso(self.timestamp),
        }


def capital_per_trade(directive: Optional[Directive], buys_per_day: int, config: SchedulerConfig) -> float:
    amount = 0.0
    if directive is not None and directive.amount is not None:
        try:
            amount = float(directive.amount)
        except (TypeError, ValueError):
            amount = 0.0
        if not math.isfinite(amount):
            amount = 0.0
    base = amount if amount > 0 else config.default_capital_usd
    per_trade = base / max(1, buys_per_day)
    return min(config.max_position_usd_cap, max(1.0, per_trade))


def market_limit(positions: int, config: SchedulerConfig) -> int:
    wanted = max(positions * MARKETS_PER_POSITION, BASE_MARKET_LIMIT)
    return int(min(config.max_market_limit, max(MIN_MARKET_LIMIT, wanted)))


def derive_bot_config(
    directive: Optional[Directive],
    status: RuntimeStatus,
    pacing: PacingDecision,
    config: SchedulerConfig,
) -> BotConfig:
    """Effective bot config for one run, built from the tenant's directive."""
    positions = pacing.trades_this_run
    if directive is not None and directive.paper_mode is not None:
        paper_mode = bool(directive.paper_mode)
    else:
        paper_mode = status != RuntimeStatus.RUNNING

    # rebuilt through the constructor so every override is clamped
    return BotConfig(
        **{
            **DEFAULT_CONFIG.model_dump(),
            "risk_level": risk_level_from_mix(directive.risk_mix if directive else None),
            "paper_mode": paper_mode,
            "bot_status": _bot_status(status),
            "focus_areas": normalize_focus_areas(directive.focus_areas if directive else None),
            "max_trades_per_scan": positions,
            "max_position_usd": capital_per_trade(directive, pacing.buys_per_day, config),
            "min_opportunity_edge_pct": 1.0,
            "max_candidates": max(positions * CANDIDATES_PER_POSITION, MIN_CANDIDATES),
            "whale_watch": bool(directive.whale_follow) if directive else False,
        }
    )


def _bot_status(status: RuntimeStatus) -> BotStatus:
    try:
        return BotStatus(status.value)
    except ValueError:
        return BotStatus.STOPPED


def _executes_paper(bot_config: BotConfig, status: RuntimeStatus) -> bool:
    return bot_config.paper_mode or status == RuntimeStatus.PAPER


async def _run_for_tenant(
    tenant: TenantRuntime,
    store: TenantStore,
    markets: MarketFetchCache,
    config: SchedulerConfig,
    now: datetime,
) -> SchedulerUserResult:
    log = logger.with_context(tenant_id=tenant.tenant_id)
    today = day_bucket(now)

    directive, state, daily_pnl = await asyncio.gather(
        store.get_latest_directive(tenant.tenant_id),
        store.get_runtime_state(tenant.tenant_id),
        store.get_today_pnl(tenant.tenant_id, day_start(now)),
    )

    pacing = compute_pacing(directive.buys_per_day if directive else None, state, now, config)
    if not pacing.due:
        return SchedulerUserResult(tenant_id=tenant.tenant_id, status=STATUS_SKIPPED, reason=pacing.reason)

    bot_config = derive_bot_config(directive, tenant.status, pacing, config)
    limit = market_limit(pacing.trades_this_run, config)
    snapshots = await markets.get(bot_config.focus_areas, limit)

    opportunities = score_opportunities(snapshots, bot_config)
    decisions = decide_trades(opportunities, bot_config, daily_pnl)[: pacing.trades_this_run]

    records: list[TradeRecord] = []
    live: Optional[LiveExecutionResult] = None
    if _executes_paper(bot_config, tenant.status):
        records = [simulate_paper_trade(tenant.tenant_id, d, now) for d in decisions]
        reason = REASON_OK if records else REASON_NO_DECISIONS
    else:
        live = LiveExecutionResult(decisions=tuple(decisions))
        reason = REASON_LIVE_PENDING

    executed = await store.record_run(
        tenant.tenant_id,
        records,
        RuntimeState(
            tenant_id=tenant.tenant_id,
            day_bucket=today,
            runs_today=pacing.runs_today + 1,
            trades_today=pacing.trades_today + len(records),
            last_run_at=now,
            last_scan_at=now,
            last_error=None,
            last_error_at=None,
            updated_at=now,
        ),
    )

    log.info(
        "Tenant run complete",
        reason=reason,
        decisions=len(decisions),
        trades_executed=executed,
        markets=len(snapshots),
        opportunities=len(opportunities),
    )
    return SchedulerUserResult(
        tenant_id=tenant.tenant_id,
        status=STATUS_EXECUTED,
        reason=reason,
        trades_executed=executed,
        decisions=len(decisions),
        live=live,
    )


async def _run_guarded(
    tenant: TenantRuntime,
    store: TenantStore,
    markets: MarketFetchCache,
    config: SchedulerConfig,
    now: datetime,
) -> SchedulerUserResult:
    try:
        return await _run_for_tenant(tenant, store, markets, config, now)
    except Exception as exc:
        message = truncate_error(str(exc) or type(exc).__name__)
        logger.exception("Tenant run failed", tenant_id=tenant.tenant_id, error=message)
        try:
            await store.record_runtime_error(tenant.tenant_id, message, now, day_bucket(now))
        except Exception as store_exc:
            logger.error("Failed to persist tenant error", tenant_id=tenant.tenant_id, error=str(store_exc))
        return SchedulerUserResult(tenant_id=tenant.tenant_id, status=STATUS_ERROR, reason=message)


async def run_market_scheduler_tick(
    store: TenantStore,
    feed: MarketFeed,
    config: Optional[SchedulerConfig] = None,
    now: Optional[datetime] = None,
) -> SchedulerTickResult:
    """Run one scheduler pass and summarize it.

    Raises ``SchedulerTickError`` only when the tenant list cannot be loaded.
    """
    config = config or SchedulerConfig.from_settings()
    now = as_naive_utc(now) if now is not None else utcnow()

    try:
        tenants = await store.list_active_tenants(config.max_users_per_tick)
    except Exception as exc:
        raise SchedulerTickError(f"Failed to fetch runtime rows: {exc}") from exc
    tenants = list(tenants)[: config.max_users_per_tick]

    markets = MarketFetchCache(feed.fetch_markets)
    results: list[SchedulerUserResult] = []
    try:
        for offset in range(0, len(tenants), config.concurrency):
            batch = tenants[offset : offset + config.concurrency]
            results.extend(await asyncio.gather(*(_run_guarded(t, store, markets, config, now) for t in batch)))
    finally:
        markets.close()

    summary = SchedulerTickResult(
        users_considered=len(tenants),
        users_executed=sum(1 for r in results if r.status == STATUS_EXECUTED),
        total_trades_executed=sum(r.trades_executed for r in results),
        results=results,
        timestamp=now,
    )
    logger.info(
        "Scheduler tick complete",
        users_considered=summary.users_considered,
        users_executed=summary.users_executed,
        total_trades_executed=summary.total_trades_executed,
        market_fetches=markets.fetch_count,
    )
    return summary


# ==================== HEALTH ====================


@dataclass(frozen=True)
class SchedulerHealth:
    status: RuntimeStatus
    runs_today: int
    trades_today: int
    run_frequency_seconds: int
    last_run_at: Optional[datetime]
    last_scan_at: Optional[datetime]
    next_eligible_run_at: Optional[datetime]
    last_error: Optional[str]
    last_error_at: Optional[datetime]
    updated_at: Optional[datetime]

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "runsToday": self.runs_today,
            "tradesToday": self.trades_today,
            "runFrequencySeconds": self.run_frequency_seconds,
            "lastRunIso": to_iso(self.last_run_at),
            "lastScanIso": to_iso(self.last_scan_at),
            "nextEligibleRunIso": to_iso(self.next_eligible_run_at),
            "lastError": self.last_error,
            "lastErrorAtIso": to_iso(self.last_error_at),
            "updatedAtIso": to_iso(self.updated_at),
        }


async def get_scheduler_health(
    store: TenantStore,
    tenant_id: str,
    config: Optional[SchedulerConfig] = None,
    now: Optional[datetime] = None,
) -> SchedulerHealth:
    config = config or SchedulerConfig.from_settings()
    now = as_naive_utc(now) if now is not None else utcnow()

    status, state, directive = await asyncio.gather(
        store.get_runtime_status(tenant_id),
        store.get_runtime_state(tenant_id),
        store.get_latest_directive(tenant_id),
    )
    pacing = compute_pacing(directive.buys_per_day if directive else None, None, now, config)
    counters = state.counters_for(day_bucket(now)) if state is not None else None

    return SchedulerHealth(
        status=status or RuntimeStatus.STOPPED,
        runs_today=counters.runs_today if counters else 0,
        trades_today=counters.trades_today if counters else 0,
        run_frequency_seconds=pacing.interval_seconds,
        last_run_at=state.last_run_at if state else None,
        last_scan_at=state.last_scan_at if state else None,
        next_eligible_run_at=next_eligible_run_at(state.last_run_at if state else None, pacing.interval_seconds),
        last_error=state.last_error if state else None,
        last_error_at=state.last_error_at if state else None,
        updated_at=state.updated_at if state else None,
    )
