"""
OpenTelemetry Configuration

Sets up distributed tracing and structured logging for the Bendrija
governance API.
"""

import os
import json
import logging
from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

SERVICE_NAME = 'bendrija-governance-api'

SAMPLING_RATIOS = {
    'production': 0.1,
    'staging': 0.5,
}

# Attributes every LogRecord carries; anything else came in through ``extra=``
RESERVED_RECORD_ATTRS = set(logging.LogRecord('', 0, '', 0, '', (), None).__dict__) | {
    'message', 'asctime', 'taskName'
}


class StructuredFormatter(logging.Formatter):
    """
    Render log records as one JSON object per line.

    Fields passed with ``extra=`` are emitted alongside the message, and the
    active span's trace and span ids are attached for correlation.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key not in RESERVED_RECORD_ATTRS and not key.startswith('_'):
                entry[key] = value

        span_context = trace.get_current_span().get_span_context()
        if span_context.is_valid:
            entry['trace_id'] = format(span_context.trace_id, '032x')
            entry['span_id'] = format(span_context.span_id, '016x')

        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str, ensure_ascii=False)


def setup_observability():
    """Initialize OpenTelemetry instrumentation based on environment configuration."""
    environment = os.getenv('ENVIRONMENT', 'development')
    otel_enabled = os.getenv('OTEL_ENABLED', 'true').lower() == 'true'
    service_version = os.getenv('SERVICE_VERSION', '1.0.0')

    setup_structured_logging(environment)

    if not otel_enabled:
        # Spans are no-ops without a tracer provider
        return None

    sampler = TraceIdRatioBased(SAMPLING_RATIOS.get(environment, 1.0))

    resource = Resource.create({
        "service.name": SERVICE_NAME,
        "service.version": service_version,
        "deployment.environment": environment
    })

    tracer_provider = TracerProvider(
        sampler=sampler,
        resource=resource
    )

    otlp_endpoint = os.getenv('OTEL_EXPORTER_OTLP_ENDPOINT')
    if otlp_endpoint:
        otlp_exporter = OTLPSpanExporter(
            endpoint=otlp_endpoint,
            headers={"Authorization": f"Bearer {os.getenv('OTEL_API_KEY', '')}"}
        )
        tracer_provider.add_span_processor(
            BatchSpanProcessor(otlp_exporter, max_export_batch_size=512)
        )
    elif environment == 'development' and os.getenv('OTEL_CONSOLE_EXPORT', 'false').lower() == 'true':
        tracer_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(tracer_provider)
    return tracer_provider


def setup_structured_logging(environment: str):
    """Configure JSON logging with trace correlation and per-environment levels."""
    log_level = {
        'production': logging.WARNING,
        'staging': logging.INFO,
        'development': logging.INFO
    }.get(environment, logging.INFO)

    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter())
    logging.basicConfig(level=log_level, handlers=[handler])

    if environment == 'production':
        # Reduce noise, focus on errors and governance events
        logging.getLogger('pika').setLevel(logging.ERROR)
        logging.getLogger('pymongo').setLevel(logging.WARNING)

    elif environment == 'development':
        logging.getLogger('domain').setLevel(logging.DEBUG)
        logging.getLogger('services').setLevel(logging.DEBUG)
        logging.getLogger('pika').setLevel(logging.WARNING)
