"""Opportunity scoring: raw market snapshots to a ranked opportunity list.

Pure function of its inputs. No I/O, no clock, no randomness, so a given set
of snapshots and config always produces the same ranking.
"""

from __future__ import annotations

import math
import re
from typing import Any, Iterable, Optional

from models.bot import BotConfig
from models.market import FocusArea, MarketSnapshot, Opportunity, RiskLevel, coerce_snapshot

MAX_CANDIDATES_CEILING = 5000

# Evaluated in order; the first matching category wins.
CATEGORY_PATTERNS: list[tuple[FocusArea, re.Pattern]] = [
    (FocusArea.CRYPTO, re.compile(r"crypto|bitcoin|btc|eth|defi|token")),
    (FocusArea.POLITICS, re.compile(r"president|congress|election|poll|vote|politic")),
    (FocusArea.SPORTS, re.compile(r"nfl|nba|mlb|soccer|football|sport|game|match")),
    (FocusArea.WEATHER, re.compile(r"weather|hurricane|temperature|storm|climate")),
    (FocusArea.ECONOMY, re.compile(r"economy|gdp|fed|inflation|construction|interest")),
]

# Confidence components: (scale, max contribution)
VOLUME_SCALE, VOLUME_WEIGHT = 100_000.0, 30.0
LIQUIDITY_SCALE, LIQUIDITY_WEIGHT = 200_000.0, 30.0
EDGE_SCALE, EDGE_WEIGHT = 10.0, 40.0


def categorize(question: str, category: Optional[str] = None) -> FocusArea:
    text = f"{question or ''} {category or ''}".lower()
    for area, pattern in CATEGORY_PATTERNS:
        if pattern.search(text):
            return area
    return FocusArea.OTHER


def assess_risk(spread: float, liquidity: float, volume: float = 0.0) -> RiskLevel:
    if spread < 0.05 and liquidity > 50_000:
        return RiskLevel.LOW
    if spread > 0.15 or liquidity < 5_000:
        return RiskLevel.HIGH
    return RiskLevel.MEDIUM


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def compute_confidence(volume: float, liquidity: float, edge: float) -> int:
    volume_score = min(max(volume, 0.0) / VOLUME_SCALE, 1.0) * VOLUME_WEIGHT
    liquidity_score = min(max(liquidity, 0.0) / LIQUIDITY_SCALE, 1.0) * LIQUIDITY_WEIGHT
    edge_score = min(max(edge, 0.0) / EDGE_SCALE, 1.0) * EDGE_WEIGHT
    return _round_half_up(volume_score + liquidity_score + edge_score)


def _binary_prices(snapshot: MarketSnapshot) -> Optional[tuple[float, float]]:
    yes_price, no_price = snapshot.yes_price, snapshot.no_price
    if yes_price is None or no_price is None:
        return None
    # Outcome prices are probabilities; anything outside (0, 1) is a bad row.
    if not (0.0 < yes_price < 1.0 and 0.0 < no_price < 1.0):
        return None
    return yes_price, no_price


def score_snapshot(snapshot: MarketSnapshot, min_edge: float) -> Optional[Opportunity]:
    """Score one snapshot; ``None`` when it is unparseable or below ``min_edge``."""
    prices = _binary_prices(snapshot)
    if prices is None:
        return None
    yes_price, no_price = prices

    spread = abs(1.0 - yes_price - no_price)
    raw_edge = spread * 100.0
    edge = round(raw_edge, 1)
    # both the raw and the stored one-decimal edge must meet the minimum
    if raw_edge < min_edge or edge < min_edge:
        return None

    return Opportunity(
        id=snapshot.id,
        question=snapshot.question,
        category=categorize(snapshot.question, snapshot.category),
        yes_price=yes_price,
        no_price=no_price,
        spread=spread,
        edge=edge,
        volume_24h=snapshot.volume_24h,
        liquidity=snapshot.liquidity,
        risk_tier=assess_risk(spread, snapshot.liquidity, snapshot.volume_24h),
        confidence=compute_confidence(snapshot.volume_24h, snapshot.liquidity, raw_edge),
        expires_at=snapshot.end_date,
    )


def score_opportunities(markets: Iterable[Any], config: BotConfig) -> list[Opportunity]:
    """Rank markets by edge (then confidence), keeping at most ``max_candidates``.

    Malformed snapshots are skipped, never raised.
    """
    min_edge = max(0.0, float(config.min_opportunity_edge_pct))
    max_candidates = min(max(int(config.max_candidates), 1), MAX_CANDIDATES_CEILING)

    scored: list[Opportunity] = []
    for raw in markets:
        snapshot = coerce_snapshot(raw)
        if snapshot is None:
            continue
        opportunity = score_snapshot(snapshot, min_edge)
        if opportunity is not None:
            scored.append(opportunity)

    # sorted() is stable: equal (edge, confidence) keep input order
    scored = sorted(scored, key=lambda o: (-o.edge, -o.confidence))
    return scored[:max_candidates]
