from fastapi import APIRouter, Depends

from events_pipeline.api.routes import events, health
from events_pipeline.core.security import require_api_key

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(
    events.router,
    prefix="/events",
    tags=["events"],
    dependencies=[Depends(require_api_key)],
)
