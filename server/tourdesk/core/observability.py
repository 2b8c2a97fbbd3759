"""Observability setup for OpenTelemetry, metrics, and structured logging."""

import logging

import structlog
from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

from .config import settings

SERVICE_NAME = "tourdesk-api"

# Prometheus metrics
REGISTRY = CollectorRegistry()

# Request metrics
REQUEST_COUNT = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status_code'],
    registry=REGISTRY
)

REQUEST_DURATION = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    registry=REGISTRY
)

# Sync metrics
SYNC_RUNS = Counter(
    'channel_sync_runs_total',
    'Sync runs by trigger and final status',
    ['trigger', 'status'],
    registry=REGISTRY
)

SYNC_DURATION = Histogram(
    'channel_sync_duration_seconds',
    'Duration of sync runs in seconds',
    ['sync_type'],
    buckets=(1, 5, 15, 30, 60, 120, 300, 600),
    registry=REGISTRY
)

BOOKINGS_RECONCILED = Counter(
    'channel_bookings_reconciled_total',
    'Bookings reconciled by outcome',
    ['outcome'],
    registry=REGISTRY
)

CHANNEL_REQUESTS = Counter(
    'channel_api_requests_total',
    'Requests sent to the channel API by status class',
    ['method', 'status_class'],
    registry=REGISTRY
)

SYNC_IN_PROGRESS = Gauge(
    'channel_sync_in_progress',
    'Whether a sync run currently holds the tenant lock',
    registry=REGISTRY
)

# Grouping metrics
GROUPS_CREATED = Counter(
    'tour_groups_created_total',
    'Tour groups created',
    ['kind'],
    registry=REGISTRY
)

GROUPS_DISSOLVED = Counter(
    'tour_groups_dissolved_total',
    'Tour groups dissolved',
    ['reason'],
    registry=REGISTRY
)


def setup_structured_logging():
    """Configure structured logging with structlog."""

    def add_trace_context(logger, method_name, event_dict):
        """Add trace context to log events."""
        span = trace.get_current_span()
        if span and span.is_recording():
            ctx = span.get_span_context()
            event_dict['trace_id'] = format(ctx.trace_id, '032x')
            event_dict['span_id'] = format(ctx.span_id, '016x')
        return event_dict

    # Request ids are bound into contextvars by the request middleware
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_trace_context,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.ConsoleRenderer() if settings.debug else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.log_level)
        ),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _resource(app_name: str) -> Resource:
    return Resource.create({
        "service.name": app_name,
        "service.version": "1.0.0",
        "environment": settings.environment,
    })


def setup_tracing(app_name: str = SERVICE_NAME):
    """Setup OpenTelemetry tracing."""
    provider = TracerProvider(resource=_resource(app_name))

    if settings.otlp_endpoint:
        otlp_exporter = OTLPSpanExporter(endpoint=settings.otlp_endpoint)
        provider.add_span_processor(BatchSpanProcessor(otlp_exporter))

    trace.set_tracer_provider(provider)
    return trace.get_tracer(__name__)


def setup_metrics(app_name: str = SERVICE_NAME):
    """Setup OpenTelemetry metrics."""
    if settings.otlp_endpoint:
        otlp_exporter = OTLPMetricExporter(endpoint=settings.otlp_endpoint)
        reader = PeriodicExportingMetricReader(exporter=otlp_exporter, export_interval_millis=60000)
        metrics.set_meter_provider(MeterProvider(resource=_resource(app_name), metric_readers=[reader]))

    return metrics.get_meter(__name__)


def instrument_fastapi(app):
    """Instrument FastAPI with OpenTelemetry."""
    FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy(engine):
    """Instrument SQLAlchemy with OpenTelemetry."""
    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)


def status_class(status_code: int) -> str:
    """Collapse an HTTP status code into its class label, e.g. ``4xx``."""
    return f"{status_code // 100}xx"


class MetricsCollector:
    """Collector for sync and grouping metrics."""

    @staticmethod
    def record_http_request(method: str, endpoint: str, status_code: int, duration: float):
        """Record an HTTP request served by the API."""
        REQUEST_COUNT.labels(method=method, endpoint=endpoint, status_code=str(status_code)).inc()
        REQUEST_DURATION.labels(method=method, endpoint=endpoint).observe(duration)

    @staticmethod
    def record_channel_request(method: str, status_code: int | None):
        """Record a request sent to the channel API (None for transport errors)."""
        label = status_class(status_code) if status_code is not None else "error"
        CHANNEL_REQUESTS.labels(method=method, status_class=label).inc()

    @staticmethod
    def record_reconcile(outcome: str):
        """Record the outcome of reconciling one booking."""
        BOOKINGS_RECONCILED.labels(outcome=outcome).inc()

    @staticmethod
    def record_sync_run(trigger: str, status: str, sync_type: str, duration: float):
        """Record a finished sync run."""
        SYNC_RUNS.labels(trigger=trigger, status=status).inc()
        SYNC_DURATION.labels(sync_type=sync_type).observe(duration)

    @staticmethod
    def set_sync_in_progress(running: bool):
        """Flag whether a sync run is active."""
        SYNC_IN_PROGRESS.set(1 if running else 0)

    @staticmethod
    def record_group_created(manual: bool):
        """Record a tour group creation."""
        GROUPS_CREATED.labels(kind="manual" if manual else "auto").inc()

    @staticmethod
    def record_group_dissolved(reason: str):
        """Record a tour group being dissolved."""
        GROUPS_DISSOLVED.labels(reason=reason).inc()


def get_prometheus_metrics():
    """Get Prometheus metrics for the /metrics endpoint."""
    return generate_latest(REGISTRY)


# Global metrics collector instance
metrics_collector = MetricsCollector()
