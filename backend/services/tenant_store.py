"""Tenant store: the read/write contract the scheduler relies on, and its SQL backing."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Optional, Protocol, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from models.bot import TradeRecord
from models.database import (
    AsyncSessionLocal,
    MarketBotRuntime,
    MarketBotRuntimeState,
    MarketDirective,
    MarketTrade,
)
from models.tenant import SCHEDULABLE_STATUSES, Directive, RuntimeState, RuntimeStatus, TenantRuntime
from utils.logger import store_logger as logger
from utils.utcnow import as_naive_utc

MAX_ERROR_LENGTH = 500


class TenantStoreError(Exception):
    """A tenant store read or write failed."""


class TenantStore(Protocol):
    async def list_active_tenants(self, limit: int) -> list[TenantRuntime]: ...

    async def get_runtime_status(self, tenant_id: str) -> Optional[RuntimeStatus]: ...

    async def get_latest_directive(self, tenant_id: str) -> Optional[Directive]: ...

    async def get_runtime_state(self, tenant_id: str) -> Optional[RuntimeState]: ...

    async def get_today_pnl(self, tenant_id: str, since: datetime) -> float: ...

    async def insert_trades(self, tenant_id: str, records: Sequence[TradeRecord]) -> int: ...

    async def upsert_runtime_state(self, state: RuntimeState) -> None: ...

    async def record_run(self, tenant_id: str, records: Sequence[TradeRecord], state: RuntimeState) -> int: ...

    async def record_runtime_error(self, tenant_id: str, message: str, at: datetime, day: str) -> None: ...


def truncate_error(message: object) -> str:
    return str(message or "unknown_error")[:MAX_ERROR_LENGTH]


def _directive_from_row(row: MarketDirective) -> Directive:
    focus = row.focus_areas if isinstance(row.focus_areas, list) else []
    return Directive(
        amount=row.amount,
        buys_per_day=row.buys_per_day,
        risk_mix=row.risk_mix,
        focus_areas=[str(v) for v in focus],
        paper_mode=row.paper_mode,
        whale_follow=bool(row.whale_follow),
    )


def _state_from_row(row: MarketBotRuntimeState) -> RuntimeState:
    return RuntimeState(
        tenant_id=row.user_id,
        day_bucket=row.day_bucket,
        runs_today=int(row.runs_today or 0),
        trades_today=int(row.trades_today or 0),
        last_run_at=row.last_run_at,
        last_scan_at=row.last_scan_at,
        last_error=row.last_error,
        last_error_at=row.last_error_at,
        updated_at=row.updated_at,
    )


def _trade_row(tenant_id: str, record: TradeRecord) -> MarketTrade:
    return MarketTrade(
        id=record.id,
        user_id=tenant_id,
        market_id=record.market_id,
        question=record.question,
        side=record.side.value,
        shares=record.shares,
        price=record.price,
        total=record.total,
        status=record.status.value,
        pnl=record.pnl,
        paper_trade=record.paper_trade,
        reason=record.reason,
        created_at=as_naive_utc(record.created_at),
        closed_at=as_naive_utc(record.closed_at) if record.closed_at else None,
    )


def _add_trades(session: AsyncSession, tenant_id: str, records: Sequence[TradeRecord]) -> None:
    session.add_all([_trade_row(tenant_id, r) for r in records])


async def _apply_state(session: AsyncSession, state: RuntimeState) -> None:
    row = await session.get(MarketBotRuntimeState, state.tenant_id)
    if row is None:
        row = MarketBotRuntimeState(user_id=state.tenant_id)
        session.add(row)
    row.day_bucket = state.day_bucket
    row.runs_today = int(state.runs_today)
    row.trades_today = int(state.trades_today)
    row.last_run_at = as_naive_utc(state.last_run_at) if state.last_run_at else None
    row.last_scan_at = as_naive_utc(state.last_scan_at) if state.last_scan_at else None
    row.last_error = truncate_error(state.last_error) if state.last_error else None
    row.last_error_at = as_naive_utc(state.last_error_at) if state.last_error_at else None
    row.updated_at = as_naive_utc(state.updated_at) if state.updated_at else None


class SqlTenantStore:
    """``TenantStore`` on the SQLAlchemy async session factory.

    Each call opens its own session, so concurrent tenants in one tick never
    share a transaction.
    """

    def __init__(self, session_factory: Optional[Callable[[], Any]] = None):
        self._session_factory = session_factory or AsyncSessionLocal

    async def list_active_tenants(self, limit: int) -> list[TenantRuntime]:
        statuses = [s.value for s in SCHEDULABLE_STATUSES]
        async with self._session_factory() as session:
            rows = (
                (
                    await session.execute(
                        select(MarketBotRuntime)
                        .where(MarketBotRuntime.status.in_(statuses))
                        .order_by(MarketBotRuntime.user_id.asc())
                        .limit(max(1, int(limit)))
                    )
                )
                .scalars()
                .all()
            )
        return [TenantRuntime(tenant_id=row.user_id, status=RuntimeStatus.parse(row.status)) for row in rows]

    async def get_runtime_status(self, tenant_id: str) -> Optional[RuntimeStatus]:
        async with self._session_factory() as session:
            row = await session.get(MarketBotRuntime, tenant_id)
        if row is None:
            return None
        return RuntimeStatus.parse(row.status)

    async def get_latest_directive(self, tenant_id: str) -> Optional[Directive]:
        async with self._session_factory() as session:
            row = (
                (
                    await session.execute(
                        select(MarketDirective)
                        .where(MarketDirective.user_id == tenant_id)
                        .order_by(MarketDirective.created_at.desc())
                        .limit(1)
                    )
                )
                .scalars()
                .first()
            )
        return _directive_from_row(row) if row is not None else None

    async def get_runtime_state(self, tenant_id: str) -> Optional[RuntimeState]:
        async with self._session_factory() as session:
            row = await session.get(MarketBotRuntimeState, tenant_id)
        return _state_from_row(row) if row is not None else None

    async def get_today_pnl(self, tenant_id: str, since: datetime) -> float:
        """Realized P&L of trades created at or after ``since``; open trades count as 0."""
        async with self._session_factory() as session:
            total = (
                await session.execute(
                    select(func.coalesce(func.sum(MarketTrade.pnl), 0.0)).where(
                        MarketTrade.user_id == tenant_id,
                        MarketTrade.created_at >= as_naive_utc(since),
                    )
                )
            ).scalar()
        return float(total or 0.0)

    async def insert_trades(self, tenant_id: str, records: Sequence[TradeRecord]) -> int:
        if not records:
            return 0
        async with self._session_factory() as session:
            try:
                _add_trades(session, tenant_id, records)
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise TenantStoreError(f"insert_failed:{exc}") from exc
        logger.debug("Inserted paper trades", tenant_id=tenant_id, count=len(records))
        return len(records)

    async def upsert_runtime_state(self, state: RuntimeState) -> None:
        async with self._session_factory() as session:
            await _apply_state(session, state)
            await session.commit()

    async def record_run(self, tenant_id: str, records: Sequence[TradeRecord], state: RuntimeState) -> int:
        """Insert a run's trades and write its runtime state in one transaction.

        Either both land or neither does, so ``trades_today`` always matches
        the trades stored for the day.
        """
        async with self._session_factory() as session:
            try:
                _add_trades(session, tenant_id, records)
                await _apply_state(session, state)
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise TenantStoreError(f"record_run_failed:{exc}") from exc
        if records:
            logger.debug("Recorded run", tenant_id=tenant_id, count=len(records))
        return len(records)

    async def record_runtime_error(self, tenant_id: str, message: str, at: datetime, day: str) -> None:
        """Persist a tenant-scoped failure.

        Only the error fields and ``last_run_at`` move; counters and the day
        bucket keep whatever the last successful run wrote. A new row starts
        at ``day`` with zero counters.
        """
        stamp = as_naive_utc(at)
        async with self._session_factory() as session:
            row = await session.get(MarketBotRuntimeState, tenant_id)
            if row is None:
                row = MarketBotRuntimeState(user_id=tenant_id, day_bucket=day, runs_today=0, trades_today=0)
                session.add(row)
            row.last_error = truncate_error(message)
            row.last_error_at = stamp
            row.last_run_at = stamp
            row.updated_at = stamp
            await session.commit()
