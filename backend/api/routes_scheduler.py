"""API routes for the market scheduler trigger and per-tenant scheduler health."""

from __future__ import annotations

import hmac
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from config import SchedulerConfig, settings
from services.polymarket import polymarket_client
from services.scheduler import (
    MarketFeed,
    SchedulerTickError,
    get_scheduler_health,
    run_market_scheduler_tick,
)
from services.tenant_store import SqlTenantStore, TenantStore
from utils.logger import api_logger as logger
from utils.utcnow import to_iso, utcnow

TICK_PATH = "/market/scheduler/tick"

router = APIRouter(prefix="/market/scheduler", tags=["Market Scheduler"])

NO_STORE = {"Cache-Control": "no-store"}


def get_tenant_store() -> TenantStore:
    return SqlTenantStore()


def get_market_feed() -> MarketFeed:
    return polymarket_client


def get_scheduler_config() -> SchedulerConfig:
    return SchedulerConfig.from_settings()


def _envelope(data: Any, status_code: int = 200, meta: Optional[dict] = None) -> JSONResponse:
    body: dict[str, Any] = {"ok": True, "data": data}
    if meta:
        body["meta"] = meta
    return JSONResponse(content=body, status_code=status_code, headers=NO_STORE)


def _error(code: str, message: str, status_code: int) -> JSONResponse:
    return JSONResponse(
        content={"ok": False, "error": {"code": code, "message": message}},
        status_code=status_code,
        headers=NO_STORE,
    )


def _unauthorized() -> JSONResponse:
    return _error("unauthorized", "Invalid scheduler secret", 401)


def has_valid_secret(request: Request) -> bool:
    """Accept ``Authorization: Bearer <secret>`` or ``x-market-scheduler-secret``.

    With no secret configured every request is rejected.
    """
    expected = settings.MARKET_SCHEDULER_SECRET
    if not expected:
        return False

    auth_header = request.headers.get("authorization") or ""
    bearer = auth_header[len("Bearer ") :].strip() if auth_header.startswith("Bearer ") else ""
    header_secret = request.headers.get("x-market-scheduler-secret") or ""

    return any(
        candidate and hmac.compare_digest(candidate.encode(), expected.encode())
        for candidate in (bearer, header_secret)
    )


@router.post("/tick")
async def trigger_tick(
    request: Request,
    store: TenantStore = Depends(get_tenant_store),
    feed: MarketFeed = Depends(get_market_feed),
    config: SchedulerConfig = Depends(get_scheduler_config),
):
    if not has_valid_secret(request):
        return _unauthorized()

    try:
        summary = await run_market_scheduler_tick(store, feed, config, utcnow())
    except SchedulerTickError as e:
        logger.error("Scheduler tick failed", error=str(e))
        return _error("scheduler_tick_failed", str(e) or "Scheduler tick failed", 500)

    return _envelope(summary.to_dict())


@router.get("/tick")
async def tick_readiness(request: Request):
    if not has_valid_secret(request):
        return _unauthorized()

    return _envelope(
        {
            "status": "ready",
            "endpoint": f"/api{TICK_PATH}",
            "trigger": "POST with Authorization: Bearer <MARKET_SCHEDULER_SECRET>",
        }
    )


@router.get("/health/{tenant_id}")
async def scheduler_health(
    tenant_id: str,
    request: Request,
    store: TenantStore = Depends(get_tenant_store),
    config: SchedulerConfig = Depends(get_scheduler_config),
):
    if not has_valid_secret(request):
        return _unauthorized()

    try:
        health = await get_scheduler_health(store, tenant_id, config, utcnow())
    except Exception as e:
        logger.error("Scheduler health lookup failed", tenant_id=tenant_id, error=str(e))
        return _error("scheduler_health_unhandled_error", str(e) or "Failed to fetch scheduler health", 500)

    return _envelope(health.to_dict(), meta={"timestamp": to_iso(utcnow())})
