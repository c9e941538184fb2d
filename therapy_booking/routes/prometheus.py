# therapy_booking/routes/prometheus.py
"""
GET /metrics in Prometheus text format.

Unauthenticated: scrapers do not carry caller identity headers.
"""

from fastapi import APIRouter, Response
from prometheus_client import Counter

from ..monitoring.prometheus_metrics import REGISTRY, prometheus_metrics

router = APIRouter()

scrapes_total = Counter(
    "therapy_booking_prometheus_scrapes_total",
    "Metrics endpoint scrapes",
    registry=REGISTRY,
)


@router.get("/metrics", include_in_schema=False)
def metrics() -> Response:
    scrapes_total.inc()
    return Response(content=prometheus_metrics.exposition(), media_type=prometheus_metrics.content_type())
