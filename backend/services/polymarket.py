import httpx
from datetime import datetime
from typing import Iterable, Optional

from pydantic import BaseModel

from config import settings
from models.market import FocusArea, MarketSnapshot
from utils.logger import feed_logger as logger
from utils.rate_limiter import RateLimiter, endpoint_for_url, rate_limiter
from utils.utcnow import utcnow

# Keywords used to narrow the upstream market list to a tenant's focus areas.
FOCUS_KEYWORDS: dict[FocusArea, list[str]] = {
    FocusArea.CRYPTO: ["crypto", "bitcoin", "ethereum", "btc", "eth", "defi"],
    FocusArea.POLITICS: ["politics", "election", "president", "congress", "vote"],
    FocusArea.SPORTS: ["sports", "nfl", "nba", "mlb", "soccer", "football"],
    FocusArea.WEATHER: ["weather", "hurricane", "temperature", "climate"],
    FocusArea.ECONOMY: ["economy", "gdp", "fed", "interest", "inflation", "construction"],
}


class MarketFeedError(Exception):
    """Upstream market data could not be fetched."""


class OrderBookLevel(BaseModel):
    price: float
    size: float


class OrderBookSnapshot(BaseModel):
    market_id: str
    bids: list[OrderBookLevel] = []
    asks: list[OrderBookLevel] = []
    spread: float
    mid_price: float
    fetched_at: datetime


class ActivityItem(BaseModel):
    id: str
    market_id: str
    side: str  # BUY / SELL
    outcome: str  # YES / NO
    size: float
    price: float
    timestamp: str


class MarketResolution(BaseModel):
    market_id: str
    title: str = ""
    description: str = ""
    resolution_source: Optional[str] = None
    resolved_outcome: Optional[str] = None
    resolved_at: Optional[str] = None
    end_date: Optional[str] = None
    tags: list[str] = []


def _to_float(raw: object, default: float = 0.0) -> float:
    try:
        return float(raw)
    except (TypeError, ValueError):
        return default


def _book_levels(raw_levels: object) -> list[OrderBookLevel]:
    levels: list[OrderBookLevel] = []
    if not isinstance(raw_levels, list):
        return levels
    for level in raw_levels:
        if not isinstance(level, dict):
            continue
        levels.append(OrderBookLevel(price=_to_float(level.get("price")), size=_to_float(level.get("size"))))
    return levels


def filter_by_focus(markets: Iterable[MarketSnapshot], focus_areas: Iterable[FocusArea]) -> list[MarketSnapshot]:
    """Keep markets whose question or category mentions a focus keyword.

    ``FocusArea.ALL`` (or no focus at all) disables the filter.
    """
    markets = list(markets)
    areas = [FocusArea(a) for a in focus_areas]
    if not areas or FocusArea.ALL in areas:
        return markets
    keywords = [kw for area in areas for kw in FOCUS_KEYWORDS.get(area, [])]
    return [m for m in markets if m.matches_keywords(keywords)]


class PolymarketClient:
    """Upstream market feed for the scheduler.

    Every request is rate limited through the process-wide token buckets and
    bounded by a fixed timeout. Errors surface as ``MarketFeedError`` so the
    scheduler can fail only the tenants that needed the data.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        limiter: Optional[RateLimiter] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.gamma_url = settings.GAMMA_API_URL
        self.clob_url = settings.CLOB_API_URL
        self.timeout_seconds = float(timeout_seconds or settings.POLYMARKET_TIMEOUT_SECONDS)
        self._client = client
        self._limiter = limiter or rate_limiter

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout_seconds,
                headers={"Accept": "application/json", "User-Agent": settings.POLYMARKET_USER_AGENT},
            )
        return self._client

    async def close(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _get_json(self, url: str, params: Optional[dict] = None) -> object:
        await self._limiter.acquire(endpoint_for_url(url))
        client = await self._get_client()
        try:
            response = await client.get(url, params=params, timeout=self.timeout_seconds)
            response.raise_for_status()
            return response.json()
        except httpx.TimeoutException as exc:
            raise MarketFeedError(f"upstream_timeout:{url}") from exc
        except httpx.HTTPStatusError as exc:
            raise MarketFeedError(f"upstream_status_{exc.response.status_code}:{url}") from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise MarketFeedError(f"upstream_error:{exc}") from exc

    # ==================== GAMMA API ====================

    async def fetch_markets(self, focus_areas: Iterable[FocusArea], limit: int = 50) -> list[MarketSnapshot]:
        """Active markets ordered by 24h volume, narrowed to ``focus_areas``.

        Malformed rows are skipped; a failed request raises ``MarketFeedError``.
        """
        params = {
            "limit": int(limit),
            "active": "true",
            "closed": "false",
            "order": "volume24hr",
            "ascending": "false",
        }
        data = await self._get_json(f"{self.gamma_url}/markets", params=params)
        if not isinstance(data, list):
            raise MarketFeedError("upstream_unexpected_payload")

        snapshots: list[MarketSnapshot] = []
        skipped = 0
        for row in data:
            if not isinstance(row, dict):
                skipped += 1
                continue
            try:
                snapshots.append(MarketSnapshot.from_gamma_response(row))
            except (TypeError, ValueError):
                skipped += 1
        if skipped:
            logger.debug("Skipped malformed market rows", skipped=skipped, received=len(data))

        return filter_by_focus(snapshots, focus_areas)

    async def get_market_resolution(self, market_id: str) -> MarketResolution:
        raw = await self._get_json(f"{self.gamma_url}/markets/{market_id}")
        record = raw if isinstance(raw, dict) else {}
        tags = record.get("tags") if isinstance(record.get("tags"), list) else []
        return MarketResolution(
            market_id=str(record.get("id") or market_id),
            title=str(record.get("question") or ""),
            description=str(record.get("description") or ""),
            resolution_source=record.get("resolution_source") or record.get("resolutionSource"),
            resolved_outcome=record.get("resolved_outcome"),
            resolved_at=record.get("resolved_at"),
            end_date=record.get("end_date_iso") or record.get("endDate"),
            tags=[str(t.get("label") if isinstance(t, dict) else t) for t in tags],
        )

    # ==================== CLOB API ====================

    async def get_order_book(self, token_id: str) -> OrderBookSnapshot:
        raw = await self._get_json(f"{self.clob_url}/book", params={"token_id": token_id})
        record = raw if isinstance(raw, dict) else {}
        bids = _book_levels(record.get("bids"))
        asks = _book_levels(record.get("asks"))
        best_bid = bids[0].price if bids else 0.0
        best_ask = asks[0].price if asks else 1.0
        return OrderBookSnapshot(
            market_id=str(record.get("market") or token_id),
            bids=bids,
            asks=asks,
            spread=round(best_ask - best_bid, 4),
            mid_price=round((best_bid + best_ask) / 2, 4),
            fetched_at=utcnow(),
        )

    async def get_market_activity(self, token_id: str, limit: int = 50) -> list[ActivityItem]:
        raw = await self._get_json(f"{self.clob_url}/trades", params={"token_id": token_id, "limit": int(limit)})
        items: list[ActivityItem] = []
        for trade in raw if isinstance(raw, list) else []:
            if not isinstance(trade, dict):
                continue
            items.append(
                ActivityItem(
                    id=str(trade.get("id") or ""),
                    market_id=str(trade.get("market") or token_id),
                    side="SELL" if str(trade.get("side") or "").upper() == "SELL" else "BUY",
                    outcome="NO" if str(trade.get("outcome") or "").upper() == "NO" else "YES",
                    size=_to_float(trade.get("size")),
                    price=_to_float(trade.get("price")),
                    timestamp=str(trade.get("match_time") or trade.get("created_at") or utcnow().isoformat() + "Z"),
                )
            )
        return items


# Singleton instance
polymarket_client = PolymarketClient()
