"""
Metrics collection and monitoring for the NanoDC monitor.

This module provides integration with Prometheus for collecting and exposing
metrics about fetch cycles, the remote API and the published slot views.
"""

import logging
from typing import Dict

from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, Info, generate_latest

from .config import ENVIRONMENT

# Configure logging
logger = logging.getLogger(__name__)

# Define metrics
API_REQUEST_COUNT = Counter(
    "nanodc_api_requests_total",
    "Requests sent to the NanoDC data API",
    ["endpoint", "method", "outcome"]
)

API_REQUEST_LATENCY = Histogram(
    "nanodc_api_request_duration_seconds",
    "Latency of NanoDC data API requests in seconds",
    ["endpoint", "method"]
)

SNAPSHOT_BYTES = Gauge(
    "nanodc_snapshot_bytes",
    "Size of the last snapshot response body"
)

CYCLE_COUNT = Counter(
    "nanodc_fetch_cycles_total",
    "Fetch cycles by result",
    ["result"]
)

RESOLVED_SLOTS = Gauge(
    "nanodc_resolved_slots",
    "Slots in the published view by binding state",
    ["facility", "state"]
)

MAPPING_AMBIGUITIES = Counter(
    "nanodc_mapping_ambiguities_total",
    "Slots that matched more than one node",
    ["facility"]
)

RENDER_CONNECTIONS = Gauge(
    "nanodc_render_connections_active",
    "Number of connected renderer WebSocket clients"
)

MONITOR_INFO = Info(
    "nanodc_monitor",
    "Information about the NanoDC monitor"
)


def observe_api_request(endpoint: str, method: str, outcome: str, duration_seconds: float):
    """Count one request against the data API and record its latency."""
    API_REQUEST_COUNT.labels(endpoint=endpoint, method=method, outcome=outcome).inc()
    API_REQUEST_LATENCY.labels(endpoint=endpoint, method=method).observe(duration_seconds)


def record_cycle(result: str):
    CYCLE_COUNT.labels(result=result).inc()


def update_slot_counts(facility_id: str, state_counts: Dict[str, int]):
    """
    Update the resolved slot gauges.

    Args:
        facility_id: Facility the view was resolved for
        state_counts: Dictionary mapping binding state to slot count
    """
    for state, count in state_counts.items():
        RESOLVED_SLOTS.labels(facility=facility_id, state=state).set(count)


def record_ambiguity(facility_id: str):
    MAPPING_AMBIGUITIES.labels(facility=facility_id).inc()


def increment_render_connections():
    """Increment the count of connected renderers."""
    RENDER_CONNECTIONS.inc()


def decrement_render_connections():
    """Decrement the count of connected renderers."""
    RENDER_CONNECTIONS.dec()


async def metrics_endpoint(request):
    """
    Endpoint to expose Prometheus metrics.

    Returns:
        Raw Prometheus metrics in text format
    """
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def setup_metrics(app: FastAPI):
    """
    Set up metrics exposure for a FastAPI app.

    Args:
        app: The FastAPI application
    """
    MONITOR_INFO.info({
        "version": app.version,
        "title": app.title,
        "environment": ENVIRONMENT
    })

    app.add_route("/metrics", metrics_endpoint)

    logger.info("Prometheus metrics configured and exposed at /metrics")
