# backend/sessionbook/main.py
"""
FastAPI application for the tutoring-session booking engine.
"""

from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator

from fastapi import APIRouter, FastAPI, Request, Response
from fastapi.responses import JSONResponse

from . import __version__
from .core.config import settings
from .core.exceptions import DomainException
from .database import init_db
from .monitoring.prometheus_metrics import prometheus_metrics
from .routes.v1 import health as health_v1, sessions as sessions_v1

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    logger.info(
        "Starting sessionbook %s (environment=%s, timezone=%s)",
        __version__,
        settings.environment,
        settings.booking_timezone,
    )
    if settings.environment != "production":
        init_db()
    yield
    logger.info("Shutting down sessionbook")


app = FastAPI(
    title="Sessionbook API",
    description="Tutoring session booking and teacher availability",
    version=__version__,
    lifespan=app_lifespan,
)


@app.exception_handler(DomainException)
async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
    """Map domain errors that escape a route to their HTTP status."""
    http_exc = exc.to_http_exception()
    return JSONResponse(status_code=http_exc.status_code, content={"detail": http_exc.detail})


api_v1 = APIRouter(prefix="/api/v1")
api_v1.include_router(sessions_v1.router, prefix="/sessions")
api_v1.include_router(health_v1.router, prefix="/health")
app.include_router(api_v1)


@app.get("/metrics", include_in_schema=False)
def metrics() -> Response:
    return Response(
        content=prometheus_metrics.get_metrics(),
        media_type=prometheus_metrics.get_content_type(),
    )
