"""Per-request server span, X-Trace-ID header and HTTP metrics."""

import time

from fastapi import Request, Response
from opentelemetry.trace import SpanKind
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from ....core.observability.metrics import record_counter, record_histogram
from ....core.observability.tracing import create_span, get_trace_id

UNTRACED_PATHS = frozenset({"/health", "/health/ready"})


class TracingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if path in UNTRACED_PATHS:
            return await call_next(request)

        labels = {"method": request.method, "path": path}
        started = time.monotonic()
        status = "500"
        try:
            with create_span(
                f"{request.method} {path}",
                {"http.method": request.method, "http.route": path, "http.scheme": request.url.scheme},
                kind=SpanKind.SERVER,
                parent_headers=request.headers,
            ) as span:
                response = await call_next(request)
                status = str(response.status_code)
                span.set_attribute("http.status_code", response.status_code)
                trace_id = get_trace_id()
                if trace_id:
                    response.headers["X-Trace-ID"] = trace_id
                return response
        finally:
            record_counter("http_requests_total", 1, {**labels, "status": status})
            record_histogram("http_request_duration_seconds", time.monotonic() - started, labels)
