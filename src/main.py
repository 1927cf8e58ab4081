"""FastAPI application factory."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from src.api.errors import register_exception_handlers
from src.api.v1.router import api_router
from src.core.config import settings
from src.core.logging_config import setup_logging
from src.db.session import dispose_engine

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("Starting %s (env=%s)", settings.PROJECT_NAME, settings.ENV)
    yield
    await dispose_engine()
    logger.info("Shutdown complete")


def create_application() -> FastAPI:
    application = FastAPI(
        title=settings.PROJECT_NAME,
        lifespan=lifespan,
    )
    register_exception_handlers(application)
    application.include_router(api_router, prefix=settings.API_PREFIX)

    @application.get("/health", tags=["health"])
    async def health():
        return {"status": "ok"}

    return application


app = create_application()

__all__ = ["create_application", "app"]
