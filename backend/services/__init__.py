from importlib import import_module

__all__ = [
    "polymarket_client",
    "PolymarketClient",
    "MarketFetchCache",
    "SqlTenantStore",
    "run_market_scheduler_tick",
    "get_scheduler_health",
]

_LAZY_EXPORTS = {
    "polymarket_client": ("services.polymarket", "polymarket_client"),
    "PolymarketClient": ("services.polymarket", "PolymarketClient"),
    "MarketFetchCache": ("services.market_cache", "MarketFetchCache"),
    "SqlTenantStore": ("services.tenant_store", "SqlTenantStore"),
    "run_market_scheduler_tick": ("services.scheduler", "run_market_scheduler_tick"),
    "get_scheduler_health": ("services.scheduler", "get_scheduler_health"),
}


def __getattr__(name):
    if name not in _LAZY_EXPORTS:
        raise AttributeError(f"module 'services' has no attribute {name!r}")

    module_name, attr_name = _LAZY_EXPORTS[name]
    module = import_module(module_name)
    value = getattr(module, attr_name)
    globals()[name] = value
    return value
