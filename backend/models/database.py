from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    JSON,
    String,
    Text,
    event,
)
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from datetime import datetime
from pathlib import Path
import logging

from config import settings

logger = logging.getLogger(__name__)

Base = declarative_base()


# ==================== TENANT INPUTS ====================


class MarketDirective(Base):
    """Tenant-authored trading directive. The newest row per tenant wins."""

    __tablename__ = "market_directives"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False)
    name = Column(String, nullable=True)
    amount = Column(Float, nullable=True)
    buys_per_day = Column(Integer, nullable=True)
    risk_mix = Column(String, nullable=True)  # conservative, balanced, aggressive
    focus_areas = Column(JSON, default=list)
    paper_mode = Column(Boolean, nullable=True)
    whale_follow = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (Index("idx_directive_user_created", "user_id", "created_at"),)


class MarketBotRuntime(Base):
    """Bot on/off switch per tenant: running, paper, paused or stopped."""

    __tablename__ = "market_bot_runtime"

    user_id = Column(String, primary_key=True)
    status = Column(String, nullable=False, default="stopped")
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (Index("idx_runtime_status", "status"),)


# ==================== SCHEDULER STATE ====================


class MarketBotRuntimeState(Base):
    """Scheduler bookkeeping per tenant; counters are scoped to ``day_bucket``."""

    __tablename__ = "market_bot_runtime_state"

    user_id = Column(String, primary_key=True)
    day_bucket = Column(String, nullable=False)
    runs_today = Column(Integer, nullable=False, default=0)
    trades_today = Column(Integer, nullable=False, default=0)
    last_run_at = Column(DateTime, nullable=True)
    last_scan_at = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)
    last_error_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class MarketTrade(Base):
    """Paper (or settled live) trade for a tenant."""

    __tablename__ = "market_trades"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False)
    market_id = Column(String, nullable=False)
    question = Column(Text)
    side = Column(String, nullable=False)  # YES / NO
    shares = Column(Integer, nullable=False)
    price = Column(Float, nullable=False)
    total = Column(Float, nullable=False)
    status = Column(String, nullable=False, default="open")
    pnl = Column(Float, nullable=True)
    paper_trade = Column(Boolean, nullable=False, default=True)
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    closed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_trade_user_created", "user_id", "created_at"),
        Index("idx_trade_market", "market_id"),
    )


# ==================== ENGINE ====================

_engine_kw: dict = {}
if "sqlite" in settings.DATABASE_URL:
    _engine_kw["connect_args"] = {"timeout": 30}  # Wait up to 30s when DB is locked

async_engine = create_async_engine(settings.DATABASE_URL, **_engine_kw)


def _set_sqlite_pragma(dbapi_connection, connection_record):
    """WAL mode so tick writes do not block API reads."""
    if "sqlite" not in settings.DATABASE_URL:
        return
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=30000")
    cursor.close()


event.listens_for(async_engine.sync_engine, "connect")(_set_sqlite_pragma)

AsyncSessionLocal = sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


def _ensure_sqlite_directory() -> None:
    prefix = "sqlite+aiosqlite:///"
    url = settings.DATABASE_URL
    if not url.startswith(prefix) or url.endswith(":memory:"):
        return
    Path(url[len(prefix) :]).parent.mkdir(parents=True, exist_ok=True)


async def init_database():
    """Create any missing tables."""
    _ensure_sqlite_directory()
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ready")
