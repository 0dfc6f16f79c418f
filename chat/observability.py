"""OpenTelemetry and structlog configuration for streamchat."""

import logging
import os
import sys

import structlog
from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import ConsoleMetricExporter, PeriodicExportingMetricReader
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

# Service identification
SERVICE_NAME_VALUE = os.getenv("OTEL_SERVICE_NAME", "streamchat")
SERVICE_VERSION_VALUE = os.getenv("OTEL_SERVICE_VERSION", "0.1.0")
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")

logger = structlog.get_logger(__name__)


def get_resource() -> Resource:
    """Create OpenTelemetry resource with service attributes."""
    return Resource.create(
        {
            SERVICE_NAME: SERVICE_NAME_VALUE,
            SERVICE_VERSION: SERVICE_VERSION_VALUE,
            "deployment.environment": ENVIRONMENT,
        }
    )


def configure_tracing() -> TracerProvider:
    """Configure OpenTelemetry tracing.

    A terminal client prints to the same console the spans would go to, so
    export is off unless OTEL_TRACES_EXPORTER selects one.
    """
    provider = TracerProvider(resource=get_resource())
    exporter_type = os.getenv("OTEL_TRACES_EXPORTER", "none")

    span_exporter = None
    if exporter_type == "otlp":
        otlp_endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
        if otlp_endpoint:
            span_exporter = OTLPSpanExporter(endpoint=otlp_endpoint)
            logger.info("otel_span_exporter", exporter="otlp", endpoint=otlp_endpoint)
        else:
            logger.warning("otel_otlp_endpoint_missing", signal="traces")
    elif exporter_type == "console":
        span_exporter = ConsoleSpanExporter()
        logger.info("otel_span_exporter", exporter="console")

    if span_exporter is not None:
        provider.add_span_processor(BatchSpanProcessor(span_exporter))

    trace.set_tracer_provider(provider)
    return provider


def configure_metrics() -> MeterProvider:
    """Configure OpenTelemetry metrics."""
    exporter_type = os.getenv("OTEL_METRICS_EXPORTER", "none")

    metric_exporter = None
    if exporter_type == "otlp":
        otlp_endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
        if otlp_endpoint:
            metric_exporter = OTLPMetricExporter(endpoint=otlp_endpoint)
            logger.info("otel_metric_exporter", exporter="otlp", endpoint=otlp_endpoint)
        else:
            logger.warning("otel_otlp_endpoint_missing", signal="metrics")
    elif exporter_type == "console":
        metric_exporter = ConsoleMetricExporter()
        logger.info("otel_metric_exporter", exporter="console")

    metric_readers = []
    if metric_exporter is not None:
        metric_readers.append(
            PeriodicExportingMetricReader(
                metric_exporter,
                export_interval_millis=int(os.getenv("OTEL_METRIC_EXPORT_INTERVAL", "60000")),
            )
        )

    provider = MeterProvider(resource=get_resource(), metric_readers=metric_readers)
    metrics.set_meter_provider(provider)
    return provider


def add_otel_context(logger, method_name, event_dict):
    """Add OpenTelemetry trace context to log events."""
    span = trace.get_current_span()
    if span and span.is_recording():
        ctx = span.get_span_context()
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    return event_dict


def configure_logging():
    """Configure structlog with OpenTelemetry integration."""
    log_level = os.getenv("LOG_LEVEL", "WARNING").upper()
    log_format = os.getenv("LOG_FORMAT", "console").lower()  # json or console

    # Keep stdout for the conversation; logs go to stderr or LOG_FILE.
    log_file = os.getenv("LOG_FILE")
    handler = logging.FileHandler(log_file) if log_file else logging.StreamHandler(sys.stderr)
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level, logging.WARNING),
        handlers=[handler],
    )

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_otel_context,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
    ]

    if log_format == "json":
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.processors.ExceptionRenderer(),
            structlog.dev.ConsoleRenderer(colors=log_file is None and sys.stderr.isatty()),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.get_logger().info("logging_configured", log_level=log_level, log_format=log_format)


def initialize_observability():
    """Initialize logging, tracing and metrics."""
    configure_logging()

    tracer_provider = configure_tracing()
    meter_provider = configure_metrics()

    logger.info(
        "observability_initialized",
        service_name=SERVICE_NAME_VALUE,
        service_version=SERVICE_VERSION_VALUE,
        environment=ENVIRONMENT,
    )
    return tracer_provider, meter_provider


def get_tracer(name: str = __name__) -> trace.Tracer:
    """Get a tracer instance for creating spans."""
    return trace.get_tracer(name, SERVICE_VERSION_VALUE)


def get_meter(name: str = __name__) -> metrics.Meter:
    """Get a meter instance for creating metrics."""
    return metrics.get_meter(name, SERVICE_VERSION_VALUE)


class ChatMetrics:
    """Client-side counters for streaming and playback."""

    def __init__(self):
        meter = get_meter("streamchat.metrics")

        self.turns = meter.create_counter(
            name="chat.turns", description="Completed or aborted chat turns", unit="1"
        )
        self.malformed_chunks = meter.create_counter(
            name="chat.malformed_chunks", description="Undecodable stream chunks", unit="1"
        )
        self.duplicate_deltas = meter.create_counter(
            name="chat.duplicate_deltas", description="Discarded retransmitted deltas", unit="1"
        )
        self.audio_chunks = meter.create_counter(
            name="audio.chunks_received", description="Audio chunks received", unit="1"
        )
        self.append_failures = meter.create_counter(
            name="audio.append_failures", description="Rejected media sink appends", unit="1"
        )

        self.turn_duration = meter.create_histogram(
            name="chat.turn.duration",
            description="Time from request to finalized answer",
            unit="ms",
        )


chat_metrics: ChatMetrics | None = None


def get_chat_metrics() -> ChatMetrics:
    """Get the global metrics instance."""
    global chat_metrics
    if chat_metrics is None:
        chat_metrics = ChatMetrics()
    return chat_metrics
