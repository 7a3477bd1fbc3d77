"""
Observability Middleware

Flask middleware adding OpenTelemetry instrumentation, request timing and a
request-completed log line to all HTTP requests.
"""

import time
import logging
from flask import Flask, request, g
from opentelemetry import trace
from opentelemetry.instrumentation.flask import FlaskInstrumentor

logger = logging.getLogger(__name__)


def add_observability_middleware(app: Flask):
    """Add OpenTelemetry instrumentation and request logging to Flask app."""

    FlaskInstrumentor().instrument_app(app)

    @app.before_request
    def before_request():
        """Start timing and capture the trace id for correlation."""
        g.start_time = time.time()
        g.trace_id = None

        span = trace.get_current_span()
        if span.is_recording():
            span_context = span.get_span_context()
            g.trace_id = format(span_context.trace_id, "032x")

            span.set_attributes({
                "http.method": request.method,
                "http.target": request.path,
                "http.user_agent": request.headers.get("User-Agent", "")
            })

    @app.after_request
    def after_request(response):
        """Log request completion and expose the trace id."""
        duration_ms = (time.time() - g.get('start_time', time.time())) * 1000

        span = trace.get_current_span()
        if span.is_recording():
            span.set_attributes({
                "http.status_code": response.status_code,
                "http.duration_ms": round(duration_ms, 2)
            })

        logger.info(
            "HTTP request completed",
            extra={
                "method": request.method,
                "path": request.path,
                "status_code": response.status_code,
                "duration_ms": round(duration_ms, 2),
                "trace_id": g.get('trace_id'),
                "user_id": getattr(g.get('user_context'), 'user_id', None)
            }
        )

        if g.get('trace_id'):
            response.headers['X-Trace-Id'] = g.trace_id

        return response
