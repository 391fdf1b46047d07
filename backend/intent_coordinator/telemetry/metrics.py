from __future__ import annotations

import logging

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse
from prometheus_client import (  # type: ignore[reportMissingImports]
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)

# In-process API metrics
api_requests_total = Counter(
    "api_requests_total", "Total API requests", ["method", "endpoint", "status"]
)
api_request_duration_seconds = Histogram(
    "api_request_duration_seconds", "API request duration seconds", ["endpoint"]
)

# Engine
coordinator_events_total = Counter(
    "coordinator_events_total", "Dispatched events and polls by outcome", ["event", "outcome"]
)
bridge_polls_total = Counter("bridge_polls_total", "Bridge status polls by result", ["status"])
intent_transitions_total = Counter(
    "intent_transitions_total", "Intent status writes made by the engine", ["status"]
)
bridge_polls_outstanding = Gauge("bridge_polls_outstanding", "Currently scheduled poll timers")

router = APIRouter()


@router.get("/metrics")
def metrics() -> PlainTextResponse:
    """Prometheus metrics endpoint."""
    return PlainTextResponse(generate_latest(), media_type=CONTENT_TYPE_LATEST)
