from .market import FocusArea, MarketSnapshot, Opportunity, RiskLevel
from .bot import (
    DEFAULT_CONFIG,
    BotConfig,
    BotStatus,
    PortfolioMix,
    Side,
    TradeDecision,
    TradeRecord,
    TradeStatus,
)
from .tenant import Directive, RuntimeState, RuntimeStatus, TenantRuntime

__all__ = [
    "FocusArea",
    "MarketSnapshot",
    "Opportunity",
    "RiskLevel",
    "DEFAULT_CONFIG",
    "BotConfig",
    "BotStatus",
    "PortfolioMix",
    "Side",
    "TradeDecision",
    "TradeRecord",
    "TradeStatus",
    "Directive",
    "RuntimeState",
    "RuntimeStatus",
    "TenantRuntime",
]
