from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI
from starlette.requests import Request

from events_pipeline.api.router import api_router
from events_pipeline.core.config import Settings, get_settings
from events_pipeline.core.telemetry import configure_logging, setup_telemetry, shutdown_telemetry
from events_pipeline.services.repository import get_repository

QUIET_PATHS = frozenset({"/healthz"})

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        yield
    finally:
        runtime = getattr(app.state, "telemetry", None)
        if runtime is not None:
            shutdown_telemetry(runtime)
            app.state.telemetry = None
        await get_repository().close()
        get_repository.cache_clear()


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging()

    application = FastAPI(title=settings.app_name, lifespan=lifespan)
    application.state.telemetry = setup_telemetry(settings, app=application)

    @application.middleware("http")
    async def log_requests(request: Request, call_next):
        started_at = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started_at) * 1000.0
        level = logging.DEBUG if request.url.path in QUIET_PATHS else logging.INFO
        logger.log(
            level,
            "http request method=%s path=%s status=%s duration_ms=%.2f",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
        )
        return response

    application.include_router(api_router)
    return application


app = create_app()
