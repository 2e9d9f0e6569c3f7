"""Shared fixtures for market scheduler tests."""

import sys
from pathlib import Path

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

import asyncio
import json
from dataclasses import replace
from datetime import datetime
from typing import Optional

import pytest

from config import SchedulerConfig
from models.bot import TradeRecord
from models.market import MarketSnapshot
from models.tenant import Directive, RuntimeState, RuntimeStatus, TenantRuntime


NOW = datetime(2025, 3, 14, 12, 0, 0)


def make_snapshot(
    market_id: str = "m1",
    question: str = "Will BTC exceed $100k?",
    yes: object = 0.40,
    no: object = 0.45,
    volume: float = 150_000.0,
    liquidity: float = 250_000.0,
    category: str = "",
) -> MarketSnapshot:
    return MarketSnapshot(
        id=market_id,
        question=question,
        category=category,
        outcome_prices=[yes, no],
        volume_24h=volume,
        liquidity=liquidity,
    )


class FakeFeed:
    """In-memory market feed that records every upstream call."""

    def __init__(self, markets=None, error: Optional[Exception] = None, delay: float = 0.0):
        self.markets = list(markets or [])
        self.error = error
        self.delay = delay
        self.calls: list[tuple[tuple[str, ...], int]] = []

    async def fetch_markets(self, focus_areas, limit):
        self.calls.append((tuple(a.value for a in focus_areas), limit))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.markets)


class FakeTenantStore:
    """``TenantStore`` kept in dicts so tests can seed and inspect it."""

    def __init__(self):
        self.runtimes: dict[str, RuntimeStatus] = {}
        self.directives: dict[str, Directive] = {}
        self.states: dict[str, RuntimeState] = {}
        self.pnl: dict[str, float] = {}
        self.trades: dict[str, list[TradeRecord]] = {}
        self.list_error: Optional[Exception] = None
        self.run_errors: list[Exception] = []
        self.directive_errors: dict[str, Exception] = {}

    def add_tenant(
        self,
        tenant_id: str,
        status: RuntimeStatus = RuntimeStatus.PAPER,
        directive: Optional[Directive] = None,
        state: Optional[RuntimeState] = None,
        pnl: float = 0.0,
    ) -> None:
        self.runtimes[tenant_id] = status
        if directive is not None:
            self.directives[tenant_id] = directive
        if state is not None:
            self.states[tenant_id] = state
        self.pnl[tenant_id] = pnl

    async def list_active_tenants(self, limit):
        if self.list_error is not None:
            raise self.list_error
        active = [
            TenantRuntime(tenant_id=tid, status=status)
            for tid, status in self.runtimes.items()
            if status in (RuntimeStatus.RUNNING, RuntimeStatus.PAPER)
        ]
        return active[:limit]

    async def get_runtime_status(self, tenant_id):
        return self.runtimes.get(tenant_id)

    async def get_latest_directive(self, tenant_id):
        if tenant_id in self.directive_errors:
            raise self.directive_errors[tenant_id]
        return self.directives.get(tenant_id)

    async def get_runtime_state(self, tenant_id):
        state = self.states.get(tenant_id)
        return replace(state) if state is not None else None

    async def get_today_pnl(self, tenant_id, since):
        return self.pnl.get(tenant_id, 0.0)

    async def insert_trades(self, tenant_id, records):
        self.trades.setdefault(tenant_id, []).extend(records)
        return len(records)

    async def upsert_runtime_state(self, state):
        self.states[state.tenant_id] = replace(state)

    async def record_run(self, tenant_id, records, state):
        if self.run_errors:
            raise self.run_errors.pop(0)
        self.trades.setdefault(tenant_id, []).extend(records)
        self.states[state.tenant_id] = replace(state)
        return len(records)

    async def record_runtime_error(self, tenant_id, message, at, day):
        state = self.states.get(tenant_id) or RuntimeState(tenant_id=tenant_id, day_bucket=day)
        self.states[tenant_id] = replace(
            state,
            last_error=message[:500],
            last_error_at=at,
            last_run_at=at,
            updated_at=at,
        )


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def scheduler_config():
    return SchedulerConfig()


@pytest.fixture
def fake_store():
    return FakeTenantStore()


@pytest.fixture
def raw_market_response():
    """A realistic Gamma-API /markets row."""
    return {
        "id": "123456",
        "conditionId": "0xabc123",
        "question": "Will BTC exceed $100k by end of 2025?",
        "slug": "will-btc-exceed-100k-2025",
        "clobTokenIds": json.dumps(["token_yes_1", "token_no_1"]),
        "outcomePrices": json.dumps(["0.52", "0.50"]),
        "active": True,
        "closed": False,
        "volume24hr": "12345.67",
        "liquidity": "5000.00",
        "endDate": "2025-12-31T00:00:00Z",
    }


@pytest.fixture
def snapshot():
    """Factory for ``MarketSnapshot`` rows."""
    return make_snapshot


@pytest.fixture
def feed_factory():
    return FakeFeed
