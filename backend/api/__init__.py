from fastapi import APIRouter

from .routes_scheduler import router as scheduler_router

router = APIRouter()
router.include_router(scheduler_router)

__all__ = ["router", "scheduler_router"]
