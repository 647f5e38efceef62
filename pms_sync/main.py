"""
Thin HTTP surface of the sync service.

Serves the per-connection webhook receiver plus health checks and metrics; all
sync work happens in ``pms_sync.services``.
"""

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from pms_sync.config import ALLOWED_ORIGINS
from pms_sync.logging_config import setup_logging
from pms_sync.middleware import RequestIDMiddleware
from pms_sync.routes.health import router as health_router
from pms_sync.routes.metrics import router as metrics_router
from pms_sync.routes.webhooks import router as webhooks_router

setup_logging()
logger = structlog.get_logger(__name__)

app = FastAPI(
    title="PMS Sync API",
    description="Webhook receiver and health checks for the PMS synchronization service",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if "*" in ALLOWED_ORIGINS else ALLOWED_ORIGINS,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["*"],
)
# Added last so it runs first and every downstream log line carries the id
app.add_middleware(RequestIDMiddleware)

app.include_router(health_router, tags=["Health"])
app.include_router(metrics_router, tags=["Metrics"])
app.include_router(webhooks_router, tags=["Webhooks"])
