"""Per-tenant bot configuration and the trade artifacts derived from it."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from models.market import FocusArea, Opportunity, RiskLevel

_FOCUS_ALIASES = {
    "construction": FocusArea.ECONOMY,
    "real estate": FocusArea.ECONOMY,
}
_SELECTABLE_FOCUS = {
    FocusArea.ALL,
    FocusArea.CRYPTO,
    FocusArea.POLITICS,
    FocusArea.SPORTS,
    FocusArea.WEATHER,
    FocusArea.ECONOMY,
}


class Side(str, Enum):
    YES = "YES"
    NO = "NO"


class TradeStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"
    CANCELLED = "cancelled"


class BotStatus(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    PAPER = "paper"


def _bounded(value: Any, low: float, high: float, default: float) -> float:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(parsed):
        return default
    return min(high, max(low, parsed))


def normalize_focus_areas(values: Any) -> list[FocusArea]:
    """Lower-case, alias and de-duplicate focus tags; unknown tags are dropped.

    An empty result means "no filter" and becomes ``[FocusArea.ALL]``.
    """
    if values is None:
        values = []
    elif isinstance(values, (str, FocusArea)):
        values = [values]

    normalized: list[FocusArea] = []
    for value in values:
        text = str(value.value if isinstance(value, FocusArea) else value).strip().lower()
        area: Optional[FocusArea] = None
        for needle, alias in _FOCUS_ALIASES.items():
            if needle in text:
                area = alias
                break
        if area is None:
            try:
                area = FocusArea(text)
            except ValueError:
                continue
        if area in _SELECTABLE_FOCUS and area not in normalized:
            normalized.append(area)
    return normalized or [FocusArea.ALL]


class PortfolioMix(BaseModel):
    """Percentage weights of the tenant's budget per opportunity risk tier."""

    low: float = 60.0
    medium: float = 30.0
    high: float = 10.0

    @field_validator("low", "medium", "high", mode="before")
    @classmethod
    def _clamp_weight(cls, value: Any) -> float:
        return _bounded(value, 0.0, 100.0, 0.0)

    def weight_for(self, tier: RiskLevel) -> float:
        return float(getattr(self, RiskLevel(tier).value, 0.0))


class BotConfig(BaseModel):
    """Effective per-tenant trading configuration.

    Every numeric bound is clamped by the validators below, so a config built
    from stored tenant input can be handed to the engines as-is.
    """

    risk_level: RiskLevel = RiskLevel.LOW
    max_daily_loss: float = 25.0
    emergency_stop_pct: float = 15.0
    max_trades_per_scan: int = 25
    max_position_usd: float = 250.0
    min_opportunity_edge_pct: float = 1.0
    max_candidates: int = 200
    paper_mode: bool = True
    wallet_address: Optional[str] = None
    bot_status: BotStatus = BotStatus.STOPPED
    portfolio_mix: PortfolioMix = Field(default_factory=PortfolioMix)
    focus_areas: list[FocusArea] = Field(default_factory=lambda: [FocusArea.ALL])
    whale_watch: bool = False

    @field_validator("risk_level", mode="before")
    @classmethod
    def _risk_level(cls, value: Any) -> RiskLevel:
        try:
            return RiskLevel(str(getattr(value, "value", value)).strip().lower())
        except ValueError:
            return RiskLevel.LOW

    @field_validator("max_daily_loss", mode="before")
    @classmethod
    def _max_daily_loss(cls, value: Any) -> float:
        return _bounded(value, 0.0, 10_000_000.0, 25.0)

    @field_validator("emergency_stop_pct", mode="before")
    @classmethod
    def _emergency_stop_pct(cls, value: Any) -> float:
        return _bounded(value, 0.0, 100.0, 15.0)

    @field_validator("max_trades_per_scan", mode="before")
    @classmethod
    def _max_trades_per_scan(cls, value: Any) -> int:
        return int(math.floor(_bounded(value, 1, 5000, 25)))

    @field_validator("max_position_usd", mode="before")
    @classmethod
    def _max_position_usd(cls, value: Any) -> float:
        return _bounded(value, 1.0, 10_000_000.0, 250.0)

    @field_validator("min_opportunity_edge_pct", mode="before")
    @classmethod
    def _min_edge(cls, value: Any) -> float:
        return _bounded(value, 0.0, 100.0, 1.0)

    @field_validator("max_candidates", mode="before")
    @classmethod
    def _max_candidates(cls, value: Any) -> int:
        return int(math.floor(_bounded(value, 1, 5000, 200)))

    @field_validator("focus_areas", mode="before")
    @classmethod
    def _focus_areas(cls, value: Any) -> list[FocusArea]:
        return normalize_focus_areas(value)

    @property
    def focus_filter_active(self) -> bool:
        return FocusArea.ALL not in self.focus_areas


DEFAULT_CONFIG = BotConfig()


@dataclass(frozen=True)
class TradeDecision:
    """One trade the decision engine wants for a tenant in the current tick."""

    opportunity: Opportunity
    side: Side
    shares: int
    reason: str
    edge: float

    @property
    def price(self) -> float:
        if self.side == Side.YES:
            return self.opportunity.yes_price
        return self.opportunity.no_price


class TradeRecord(BaseModel):
    """A priced trade as persisted for a tenant."""

    id: str
    tenant_id: str
    market_id: str
    question: str
    side: Side
    shares: int
    price: float
    total: float
    status: TradeStatus = TradeStatus.OPEN
    pnl: Optional[float] = None
    paper_trade: bool = True
    reason: Optional[str] = None
    created_at: datetime
    closed_at: Optional[datetime] = None
