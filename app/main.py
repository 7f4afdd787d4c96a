from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.admin import router as admin_router
from app.api.credentials import router as credentials_router
from app.api.errors import register_error_handlers
from app.api.health import router as health_router
from app.api.institutions import router as institutions_router
from app.api.ipfs import router as ipfs_router
from app.api.metrics_endpoint import router as metrics_router
from app.api.verification import router as verification_router
from app.core.config import SETTINGS
from app.core.logging import setup_logging
from app.db.redis import lifespan_redis
from app.middleware.metrics import MetricsMiddleware
from app.middleware.request_context import RequestContextMiddleware
from app.services.wiring import lifespan_gateways

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    # Nested so teardown runs in reverse order even if one side fails.
    async with lifespan_redis():
        async with lifespan_gateways():
            yield


# only app setup + router registration

app = FastAPI(
    title="credverse-api",
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)

register_error_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Middleware execution order: last-added runs first (outermost layer).
# RequestContext (outermost) → Metrics → CORS → route handler
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)

app.include_router(metrics_router)
app.include_router(health_router)
app.include_router(admin_router)
app.include_router(credentials_router)
app.include_router(institutions_router)
app.include_router(ipfs_router)
app.include_router(verification_router)

logger.info(
    "credverse-api started  env=%s network=%s chain=%s ipfs=%s docs=%s",
    SETTINGS.app_env,
    SETTINGS.chain_network,
    SETTINGS.chain_backend,
    SETTINGS.content_backend,
    "on" if SETTINGS.is_dev else "off",
)
