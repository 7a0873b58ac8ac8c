# ==== CORRELATION ID MIDDLEWARE ==== #

"""
Correlation ID middleware for request tracing in claimflow.

Every request gets an ``X-Correlation-Id`` (echoed from the caller or newly
generated) that is stored on ``request.state`` for error responses and
returned on the response, alongside a latency observation.
"""

import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from claimflow.observability.metrics import http_request_duration_seconds
from claimflow.observability.tracing import get_tracer


# ==== MODULE INITIALIZATION ==== #

tracer = get_tracer(__name__)


# ==== CORRELATION MIDDLEWARE CLASS ==== #

class CorrelationMiddleware(BaseHTTPMiddleware):
    """Attach correlation IDs to requests and responses and time each request."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """
        Process request with correlation ID tracking.

        Args:
            request (Request): Incoming HTTP request
            call_next (Callable): Next middleware/handler in chain

        Returns:
            Response: HTTP response with correlation ID header
        """
        # --► CORRELATION ID MANAGEMENT
        correlation_id = request.headers.get(
            "X-Correlation-Id",
            str(uuid.uuid4())
        )
        request.state.correlation_id = correlation_id

        start_time = time.perf_counter()

        with tracer.start_as_current_span("http_request") as span:
            span.set_attribute("http.method", request.method)
            span.set_attribute("http.url", str(request.url))
            span.set_attribute("correlation_id", correlation_id)

            response = await call_next(request)
            response.headers["X-Correlation-Id"] = correlation_id

            # --► METRICS COLLECTION
            # Label by route template so claim ids do not explode cardinality
            route = request.scope.get("route")
            path = getattr(route, "path", request.url.path)
            http_request_duration_seconds.labels(
                method=request.method,
                path=path
            ).observe(time.perf_counter() - start_time)

            span.set_attribute("http.status_code", response.status_code)
            return response
