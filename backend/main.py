from contextlib import asynccontextmanager
import traceback

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from config import settings
from api import router
from models.database import init_database
from services.polymarket import polymarket_client
from utils.logger import setup_logging, get_logger
from utils.rate_limiter import rate_limiter
from utils.utcnow import utcnow

# Setup logging
setup_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON)
logger = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    logger.info("Starting market scheduler API...")

    await init_database()
    logger.info("Database initialized")

    if not settings.MARKET_SCHEDULER_SECRET:
        logger.warning("MARKET_SCHEDULER_SECRET is not set; tick requests will be rejected")

    try:
        yield
    finally:
        logger.info("Shutting down...")
        await polymarket_client.close()
        logger.info("Shutdown complete")


app = FastAPI(
    title="Market Scheduler",
    description="Multi-tenant prediction market scanning and paper trading scheduler",
    version="1.0.0",
    lifespan=lifespan,
)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(
        "Unhandled exception",
        path=request.url.path,
        method=request.method,
        error=str(exc),
        traceback=traceback.format_exc(),
    )
    return JSONResponse(
        status_code=500,
        content={"ok": False, "error": {"code": "internal_error", "message": str(exc)}},
        headers={"Cache-Control": "no-store"},
    )


# API routes
app.include_router(router, prefix="/api")


@app.get("/health")
async def health_check():
    """Basic health check - for load balancers"""
    return {"status": "ok"}


@app.get("/health/live")
async def liveness_check():
    """Liveness check: is the service running?"""
    return {
        "status": "alive",
        "timestamp": utcnow().isoformat(),
        "rate_limits": rate_limiter.get_status(),
    }


if __name__ == "__main__":
    import os
    import uvicorn

    port = int(os.environ.get("PORT", 8000))
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=port,
        timeout_keep_alive=30,
    )
