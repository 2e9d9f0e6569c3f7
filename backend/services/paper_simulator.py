from __future__ import annotations

import uuid
from datetime import datetime

from models.bot import TradeDecision, TradeRecord, TradeStatus


def _paper_trade_id() -> str:
    return f"paper_{uuid.uuid4().hex}"


def simulate_paper_trade(tenant_id: str, decision: TradeDecision, now: datetime) -> TradeRecord:
    """Price a decision as an open paper trade. Persisting it is the caller's job."""
    price = decision.price
    return TradeRecord(
        id=_paper_trade_id(),
        tenant_id=tenant_id,
        market_id=decision.opportunity.id,
        question=decision.opportunity.question,
        side=decision.side,
        shares=decision.shares,
        price=price,
        total=round(decision.shares * price, 2),
        status=TradeStatus.OPEN,
        pnl=None,
        paper_trade=True,
        reason=decision.reason,
        created_at=now,
        closed_at=None,
    )
