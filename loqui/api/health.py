"""
Health and metrics endpoints.

Lightweight endpoints for operational monitoring without exposing secrets.
"""

from fastapi import APIRouter, Response

from loqui.core.database import check_connection
from loqui.core.metrics import METRICS


root_router = APIRouter(tags=["health"])


@root_router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@root_router.get("/readyz")
def readyz():
    """Readiness check: database reachable."""
    if check_connection():
        return {"status": "ok", "db": "connected"}
    return Response(content='{"status":"unavailable","db":"disconnected"}', status_code=503, media_type="application/json")


@root_router.get("/metrics")
def metrics_endpoint():
    return Response(content=METRICS.export_prometheus(), media_type="text/plain")
