from contextlib import asynccontextmanager
import logging
import time

import asyncpg  # type: ignore[import-untyped]
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from starlette.requests import Request

from app.api.router import api_router
from app.core.config import get_settings
from app.core.telemetry import (
    TelemetryRuntime,
    configure_api_logging,
    setup_api_telemetry,
    shutdown_api_telemetry,
)
from app.db.schema import ensure_schema
from app.services.cache import get_cache
from app.services.repository import get_repository

settings = get_settings()
configure_api_logging(settings)
_telemetry_runtime: TelemetryRuntime | None = None
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    runtime_settings = get_settings()
    if runtime_settings.database_url and runtime_settings.schema_check_enabled:
        await ensure_schema(runtime_settings.database_url)
    try:
        yield
    finally:
        if _telemetry_runtime is not None:
            shutdown_api_telemetry(app, _telemetry_runtime)
        # Ensure asyncpg pool and redis connections shut down on app teardown.
        await get_repository().close()
        get_repository.cache_clear()
        await get_cache().close()
        get_cache.cache_clear()


app = FastAPI(title=settings.app_name, lifespan=lifespan)
_telemetry_runtime = setup_api_telemetry(app, settings)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    started_at = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started_at) * 1000.0
    logger.info(
        "http request method=%s path=%s status=%s duration_ms=%.2f",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
    )
    return response


@app.exception_handler(asyncpg.PostgresError)
async def postgres_error_handler(_: Request, exc: asyncpg.PostgresError) -> JSONResponse:
    logger.error("store query failed: %s", exc)
    return JSONResponse(status_code=500, content={"detail": str(exc)})


app.include_router(api_router)
