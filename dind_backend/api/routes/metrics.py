"""
dind_backend/api/routes/metrics.py
Exposes Prometheus-compatible metrics endpoint.
"""

from fastapi import APIRouter, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST
from ..metrics.registry import render_prometheus_metrics

router = APIRouter(tags=["Metrics"])

@router.get("/metrics")
async def metrics(request: Request):
    """Prometheus scrape endpoint."""
    coordinator = getattr(request.app.state, "coordinator", None)
    data = render_prometheus_metrics(coordinator)
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
