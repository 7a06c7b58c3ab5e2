"""
Prometheus metrics endpoint.

Public, unauthenticated scrape target exposing the update-delivery
counters registered on ``app.core.metrics.REGISTRY``.
"""

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, generate_latest

from ..core.metrics import REGISTRY

router = APIRouter()

_scrape_counter = Counter(
    "updates_prometheus_scrapes_total",
    "Total number of Prometheus metrics scrapes",
    registry=REGISTRY,
)


@router.get("/metrics", include_in_schema=False)
async def prometheus_metrics() -> Response:
    _scrape_counter.inc()
    return Response(content=generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)
