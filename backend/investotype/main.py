"""FastAPI application entrypoint."""

from __future__ import annotations

import logging
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from investotype.api.dependencies import get_market_data
from investotype.api.routes import api_router
from investotype.config import get_settings
from investotype.core.errors import SimulationError
from investotype.core.logging import setup_logging
from investotype.core.telemetry import setup_telemetry

settings = get_settings()
setup_logging(settings.log_level)
logger = logging.getLogger(__name__)
logger.info("Simulator configuration: %s", settings.dict_for_logging())

app = FastAPI(title=settings.app_name, version="0.1.0")
setup_telemetry(app, settings)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_origin_regex=r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["traceparent", "tracestate", "x-request-id"],
)


@app.exception_handler(SimulationError)
async def simulation_error_handler(request: Request, exc: SimulationError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


@app.on_event("shutdown")
async def shutdown() -> None:
    """Close the shared market-data HTTP client if it was ever opened."""

    if get_market_data.cache_info().currsize:
        await get_market_data().aclose()


@app.get("/health", tags=["health"])
async def health() -> dict[str, str]:
    """Return service readiness metadata."""

    return {
        "status": "ok",
        "timestamp": datetime.now().isoformat(),
        "baseCurrency": settings.base_currency,
    }


def configure_app() -> FastAPI:
    """Attach routes."""

    app.include_router(api_router, prefix="/api")
    return app


configure_app()

__all__ = ["app", "configure_app"]
