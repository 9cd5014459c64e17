from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from access_engine.api.enrollments import router as enrollments_router
from access_engine.api.health import router as health_router
from access_engine.api.licenses import router as licenses_router
from access_engine.api.metrics_endpoint import router as metrics_router
from access_engine.core.config import SETTINGS
from access_engine.core.logging import setup_logging
from access_engine.db.engine import lifespan_db
from access_engine.db.redis import lifespan_redis
from access_engine.middleware.errors import install_error_handlers
from access_engine.middleware.metrics import MetricsMiddleware
from access_engine.middleware.request_context import RequestContextMiddleware

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    # nested so teardown runs in reverse order
    async with lifespan_db():
        async with lifespan_redis():
            yield


app = FastAPI(
    title="course-access-engine",
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)

# Last added runs first: RequestContext (outermost) -> Metrics -> route,
# so every request has its id before metrics and logs are recorded.
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)

install_error_handlers(app)

app.include_router(metrics_router)
app.include_router(health_router)
app.include_router(licenses_router)
app.include_router(enrollments_router)

logger.info(
    "course-access-engine started  env=%s log_level=%s port=%d docs=%s",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.port,
    "on" if SETTINGS.is_dev else "off",
)
