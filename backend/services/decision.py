from __future__ import annotations

import math
from typing import Iterable

from models.bot import BotConfig, Side, TradeDecision
from models.market import Opportunity, RiskLevel

# Minimum opportunity confidence by the tenant's configured risk level.
MIN_CONFIDENCE_BY_RISK_LEVEL: dict[RiskLevel, int] = {
    RiskLevel.LOW: 60,
    RiskLevel.MEDIUM: 45,
    RiskLevel.HIGH: 30,
}

TIER_BUDGET_FRACTION = 0.3
MIN_NOTIONAL_USD = 1.0


def is_loss_limit_hit(config: BotConfig, daily_pnl: float) -> bool:
    return daily_pnl <= -config.max_daily_loss


def choose_side(opportunity: Opportunity) -> tuple[Side, float]:
    """Buy the cheaper outcome."""
    if opportunity.yes_price < opportunity.no_price:
        return Side.YES, opportunity.yes_price
    return Side.NO, opportunity.no_price


def size_position(remaining_budget: float, tier_weight: float, price: float, max_position_usd: float) -> int:
    budget_for_tier = remaining_budget * (tier_weight / 100.0)
    max_position = min(budget_for_tier * TIER_BUDGET_FRACTION, max_position_usd)
    return max(1, int(math.floor(max_position / price)))


def decide_trades(
    opportunities: Iterable[Opportunity],
    config: BotConfig,
    daily_pnl: float,
) -> list[TradeDecision]:
    """Turn ranked opportunities into at most ``max_trades_per_scan`` decisions.

    Opportunities are taken in the order given. Nothing is returned once the
    tenant's realized loss today reaches ``max_daily_loss``.
    """
    if is_loss_limit_hit(config, daily_pnl):
        return []

    remaining_budget = config.max_daily_loss + daily_pnl
    if remaining_budget <= 0:
        return []

    min_confidence = MIN_CONFIDENCE_BY_RISK_LEVEL[config.risk_level]
    focus = set(config.focus_areas)
    filter_by_focus = config.focus_filter_active
    max_trades = max(1, int(config.max_trades_per_scan))

    decisions: list[TradeDecision] = []
    for opp in opportunities:
        tier_weight = config.portfolio_mix.weight_for(opp.risk_tier)
        if tier_weight <= 0:
            continue
        if opp.confidence < min_confidence:
            continue
        if filter_by_focus and opp.category not in focus:
            continue

        side, price = choose_side(opp)
        shares = size_position(remaining_budget, tier_weight, price, config.max_position_usd)
        if shares * price < MIN_NOTIONAL_USD:
            continue

        decisions.append(
            TradeDecision(
                opportunity=opp,
                side=side,
                shares=shares,
                reason=f"{opp.edge}% edge, {opp.confidence}% confidence, {opp.risk_tier.value} risk",
                edge=opp.edge,
            )
        )
        if len(decisions) >= max_trades:
            break

    return decisions
