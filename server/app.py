"""FastAPI application for the trading arena."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from api_client.market.base import MarketDataError
from models.config import AppSettings
from server.dependencies import ServiceContainer
from server.routers import backtest, cron, debug, openrouter, simulation
from simulation.errors import (
    ForbiddenError,
    InsufficientHistoryError,
    InvalidParameterError,
    InvalidSymbolError,
    SimulationConflictError,
    SimulationError,
    SimulationNotFoundError,
)

logger = logging.getLogger(__name__)

_ERROR_STATUS: dict[type[SimulationError], int] = {
    SimulationConflictError: 409,
    InvalidSymbolError: 400,
    SimulationNotFoundError: 404,
    ForbiddenError: 403,
    InvalidParameterError: 400,
    InsufficientHistoryError: 400,
}


def create_app(
    settings: AppSettings | None = None,
    services: ServiceContainer | None = None,
) -> FastAPI:
    """Build the API.

    Pass *services* to run against pre-built (or fake) services; otherwise
    they are built from *settings* on startup and closed on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = services is None
        app.state.services = services or ServiceContainer.from_settings(settings or AppSettings.from_env())
        try:
            yield
        finally:
            if owned:
                await app.state.services.aclose()

    app = FastAPI(title="Trading Arena", version="0.1.0", lifespan=lifespan)
    if services is not None:
        # Available even when the app is used without running the lifespan.
        app.state.services = services

    app.include_router(cron.router)
    app.include_router(simulation.router)
    app.include_router(backtest.router)
    app.include_router(debug.router)
    app.include_router(openrouter.router)

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = [
            f"{'.'.join(str(p) for p in err.get('loc', ())[1:])}: {err.get('msg')}"
            for err in exc.errors()
        ]
        return JSONResponse({"error": "Invalid request", "details": errors}, status_code=400)

    @app.exception_handler(SimulationError)
    async def _simulation_error(request: Request, exc: SimulationError) -> JSONResponse:
        status = _ERROR_STATUS.get(type(exc), 500)
        body: dict[str, object] = {"error": str(exc)}
        if isinstance(exc, InvalidSymbolError):
            body = {"error": "Invalid symbol", "details": exc.details}
        return JSONResponse(body, status_code=status)

    @app.exception_handler(MarketDataError)
    async def _market_data_error(request: Request, exc: MarketDataError) -> JSONResponse:
        logger.warning("Market data unavailable: %s", exc)
        return JSONResponse({"error": "Market data unavailable", "details": str(exc)}, status_code=502)

    return app
