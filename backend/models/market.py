from pydantic import BaseModel, ConfigDict
from typing import Any, Optional
from enum import Enum
import json
import math


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class FocusArea(str, Enum):
    ALL = "all"
    CRYPTO = "crypto"
    POLITICS = "politics"
    SPORTS = "sports"
    WEATHER = "weather"
    ECONOMY = "economy"
    OTHER = "other"  # catch-all category for markets matching no keyword


def _parse_maybe_json_list(raw: object) -> list[object]:
    """Accept list values directly or parse JSON-encoded list strings."""
    if raw is None:
        return []
    if isinstance(raw, (list, tuple)):
        return list(raw)
    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return []
        try:
            parsed = json.loads(text)
        except (json.JSONDecodeError, TypeError):
            return []
        if isinstance(parsed, list):
            return parsed
    return []


def _price_or_none(raw: object) -> Optional[float]:
    if isinstance(raw, bool):
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value):
        return None
    return value


def _amount(raw: object) -> float:
    value = _price_or_none(raw)
    return value if value is not None else 0.0


def _category_text(raw: object) -> str:
    if isinstance(raw, dict):
        return str(raw.get("label") or raw.get("name") or "")
    if raw is None:
        return ""
    return str(raw)


class MarketSnapshot(BaseModel):
    """Raw upstream view of one binary market, as returned by the feed.

    Prices keep their position (YES first, NO second); an unparseable entry
    becomes ``None`` instead of shifting the other outcome into its slot.
    """

    id: str
    question: str = ""
    category: str = ""
    outcome_prices: list[Optional[float]] = []
    volume_24h: float = 0.0
    liquidity: float = 0.0
    end_date: Optional[str] = None
    clob_token_ids: list[str] = []

    @classmethod
    def from_gamma_response(cls, data: dict) -> "MarketSnapshot":
        """Parse a Gamma ``/markets`` row; missing fields fall back to empty values."""
        prices = [
            _price_or_none(p)
            for p in _parse_maybe_json_list(data.get("outcomePrices", data.get("outcome_prices")))
        ]
        token_ids = [
            str(t).strip()
            for t in _parse_maybe_json_list(data.get("clobTokenIds", data.get("clob_token_ids")))
            if str(t or "").strip()
        ]
        end_date = data.get("endDate", data.get("end_date"))

        return cls(
            id=str(data.get("id") or data.get("conditionId") or data.get("slug") or ""),
            question=str(data.get("question") or data.get("title") or ""),
            category=_category_text(data.get("category")),
            outcome_prices=prices,
            volume_24h=_amount(data.get("volume24hr", data.get("volume_24h"))),
            liquidity=_amount(
                data.get("liquidity") if data.get("liquidity") is not None else data.get("liquidityNum")
            ),
            end_date=str(end_date) if end_date else None,
            clob_token_ids=token_ids,
        )

    @property
    def yes_price(self) -> Optional[float]:
        return self.outcome_prices[0] if len(self.outcome_prices) > 0 else None

    @property
    def no_price(self) -> Optional[float]:
        return self.outcome_prices[1] if len(self.outcome_prices) > 1 else None

    def matches_keywords(self, keywords: list[str]) -> bool:
        question = self.question.lower()
        category = self.category.lower()
        return any(kw in question or kw in category for kw in keywords)


def coerce_snapshot(raw: Any) -> Optional[MarketSnapshot]:
    """Return a snapshot for a model or raw dict; ``None`` for anything unusable."""
    if isinstance(raw, MarketSnapshot):
        return raw
    if isinstance(raw, dict):
        try:
            return MarketSnapshot.from_gamma_response(raw)
        except (TypeError, ValueError):
            return None
    return None


class Opportunity(BaseModel):
    """A scored candidate market. Immutable once produced for a tick."""

    model_config = ConfigDict(frozen=True)

    id: str
    question: str
    category: FocusArea
    yes_price: float
    no_price: float
    spread: float
    edge: float  # percent, one decimal
    volume_24h: float
    liquidity: float
    risk_tier: RiskLevel
    confidence: int  # 0-100
    expires_at: Optional[str] = None
