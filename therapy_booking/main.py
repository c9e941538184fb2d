# therapy_booking/main.py
"""
FastAPI application for the therapy booking engine.

Run locally with:
    uvicorn therapy_booking.main:app --reload
"""

from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator

from fastapi import APIRouter, FastAPI

from . import __version__, models  # noqa: F401
from .core.config import settings
from .database import engine
from .init_db import init_db
from .routes import prometheus
from .routes.v1 import availability as availability_v1, credits as credits_v1, sessions as sessions_v1

logger = logging.getLogger(__name__)

API_TITLE = "Therapy Booking API"
API_DESCRIPTION = "Session booking, availability and credit ledger for therapy sessions"


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Create any missing tables (and the overlap backstop) before serving."""
    logger.info("Starting %s v%s (%s)", API_TITLE, __version__, settings.environment)
    init_db(engine)
    yield
    logger.info("Shutting down %s", API_TITLE)


def create_app() -> FastAPI:
    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=app_lifespan,
    )

    api_v1 = APIRouter(prefix="/api/v1")
    api_v1.include_router(sessions_v1.router, prefix="/sessions")
    api_v1.include_router(availability_v1.router, prefix="/therapists")
    api_v1.include_router(credits_v1.router, prefix="/credits")

    app.include_router(api_v1)
    app.include_router(prometheus.router)
    return app


app = create_app()
