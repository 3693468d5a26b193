from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from liftr_chat.api.deps import close_clients
from liftr_chat.api.middleware.correlation_id import CorrelationIdMiddleware
from liftr_chat.api.v1.routers import functions, health
from liftr_chat.application.exceptions import (
    NetworkError,
    UnauthorizedError,
    ValidationError,
)
from liftr_chat.config import settings
from liftr_chat.infrastructure.db.session import engine

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup / shutdown lifecycle."""
    logger.info("Functions app started")
    yield
    await close_clients()
    await engine.dispose()
    logger.info("Functions app stopped")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Liftr Chat Functions",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(CorrelationIdMiddleware)

    _register_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(functions.router)

    return app


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(UnauthorizedError)
    async def _unauthorized(_req: Request, exc: UnauthorizedError) -> JSONResponse:
        return JSONResponse(status_code=401, content={"detail": exc.detail or "Unauthorized"})

    @app.exception_handler(ValidationError)
    async def _validation(_req: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=422, content={"detail": exc.detail})

    @app.exception_handler(NetworkError)
    async def _upstream(_req: Request, exc: NetworkError) -> JSONResponse:
        logger.warning("Upstream call failed status=%s: %s", exc.status, exc.detail)
        return JSONResponse(status_code=502, content={"detail": exc.detail})
