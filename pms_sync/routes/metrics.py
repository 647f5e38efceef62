"""
Prometheus scrape endpoint.

Sync workers and the API process share the default registry, so everything
declared in ``pms_sync.metrics`` is exported here, e.g.::

    pms_sync_runs_total{adapter="smoobu",status="success",sync_type="full"} 3.0
    pms_sync_webhook_events_total{adapter="hostaway",event="reservation.created",status="processed"} 1.0
"""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

router = APIRouter()


@router.get("/metrics", response_class=Response)
async def metrics() -> Response:
    return Response(content=generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)
