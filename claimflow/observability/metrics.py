# ==== PROMETHEUS METRICS ==== #

"""
Prometheus metrics for monitoring the claim workflow in claimflow.

This module provides workflow metrics with Prometheus integration: accepted
transitions, rejected commands by error code, engine latency, HTTP latency
and database session usage.
"""

from fastapi.responses import PlainTextResponse
from prometheus_client import (
    Counter, 
    Gauge, 
    Histogram, 
    generate_latest, 
    REGISTRY
)


# ==== WORKFLOW METRICS ==== #

claim_transitions_total = Counter(
    "claimflow_claim_transitions_total",
    "Total accepted claim actions by action kind",
    ["action"]
)

claim_rejections_total = Counter(
    "claimflow_claim_rejections_total",
    "Total rejected claim commands by action and error code",
    ["action", "code"]
)

engine_duration_seconds = Histogram(
    "claimflow_engine_duration_seconds",
    "Time spent in workflow engine and query operations in seconds",
    ["operation"]
)


# ==== HTTP AND STORAGE METRICS ==== #

http_request_duration_seconds = Histogram(
    "claimflow_http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "path"]
)

db_sessions_active = Gauge(
    "claimflow_db_sessions_active",
    "Number of open database sessions"
)


app_info = Gauge(
    "claimflow_app_info",
    "Application information",
    ["version", "environment", "service_name"]
)


# ==== METRICS INITIALIZATION ==== #


def init_metrics(app) -> None:
    """Initialize metrics collection.
    
    Args:
        app: FastAPI application instance
    """
    from claimflow import __version__
    from claimflow.settings import settings
    app_info.labels(
        version=__version__,
        environment=settings.APP_ENV,
        service_name=settings.SERVICE_NAME
    ).set(1)


def get_metrics() -> PlainTextResponse:
    """Expose Prometheus metrics for scraping.

    Mounted at ``settings.PROMETHEUS_SCRAPE_PATH`` by the application factory.

    Returns:
        Prometheus metrics in text format
    """
    return PlainTextResponse(
        generate_latest(REGISTRY).decode("utf-8"),
        media_type="text/plain; version=0.0.4; charset=utf-8"
    )
