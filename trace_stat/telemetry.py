"""OpenTelemetry and logging setup for Trace Stat.

Tracing and metrics always go through the SDK providers so pipeline steps can
be timed; they are only exported when OTEL_EXPORTER_OTLP_ENDPOINT is set.
Log lines carry the active trace and span ids.
"""

import json
import logging
import os
import sys
from typing import Any

from opentelemetry import metrics, trace
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

logger = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
TEXT_LOG_FORMAT = (
    "%(asctime)s %(levelname)-7s %(name)s "
    "[trace=%(otelTraceID)s span=%(otelSpanID)s] %(message)s"
)
MAX_ARG_LENGTH = 200
METRIC_EXPORT_INTERVAL_MS = 60000

_providers_installed = False


def get_tracer(name: str) -> trace.Tracer:
    return trace.get_tracer(name)


def get_meter(name: str) -> metrics.Meter:
    return metrics.get_meter(name)


def log_tool_call(logger: logging.Logger, func_name: str, **kwargs: Any) -> None:
    """Debug-logs a pipeline call, shortening argument values over MAX_ARG_LENGTH chars."""
    shown = {}
    for name, value in kwargs.items():
        text = str(value)
        shown[name] = text if len(text) <= MAX_ARG_LENGTH else f"{text[:MAX_ARG_LENGTH]}..."
    logger.debug(f"{func_name} called with {shown}")


def set_span_attribute(key: str, value: Any) -> None:
    """Tags the current span; a no-op outside of a recording span."""
    current = trace.get_current_span()
    if current.is_recording():
        current.set_attribute(key, value)


class JsonLogFormatter(logging.Formatter):
    """One JSON object per log line, with trace correlation ids when present."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "time": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        trace_id = getattr(record, "otelTraceID", "0")
        if trace_id and trace_id != "0":
            entry["trace_id"] = trace_id
            entry["span_id"] = getattr(record, "otelSpanID", "0")
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def _install_providers(service_name: str) -> None:
    global _providers_installed

    resource = Resource.create({SERVICE_NAME: service_name})
    tracer_provider = TracerProvider(resource=resource)
    readers = []

    endpoint = os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT")
    if endpoint:
        # Exporters pull in grpc, so they are imported only when used
        from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

        tracer_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
        readers.append(
            PeriodicExportingMetricReader(
                OTLPMetricExporter(endpoint=endpoint),
                export_interval_millis=METRIC_EXPORT_INTERVAL_MS,
            )
        )
        logger.debug(f"Exporting telemetry to {endpoint}")

    trace.set_tracer_provider(tracer_provider)
    metrics.set_meter_provider(MeterProvider(resource=resource, metric_readers=readers))
    _providers_installed = True


def _configure_logging(level: int) -> None:
    handler = logging.StreamHandler(sys.stderr)
    if os.environ.get("LOG_FORMAT", "TEXT").upper() == "JSON":
        handler.setFormatter(JsonLogFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_LOG_FORMAT, datefmt="%H:%M:%S"))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)


def setup_telemetry(level: int = logging.INFO, service_name: str = "trace-stat") -> None:
    """
    Configures tracing, metrics and logging for one CLI invocation.

    Environment:
        LOG_LEVEL: Overrides `level` (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        LOG_FORMAT: TEXT (default) or JSON.
        OTEL_EXPORTER_OTLP_ENDPOINT: Enables OTLP gRPC export of spans and metrics.
        OTEL_SDK_DISABLED: "true" leaves the no-op providers in place.

    Args:
        level: Default logging level.
        service_name: service.name resource attribute.
    """
    env_level = os.environ.get("LOG_LEVEL", "").upper()
    if env_level in LOG_LEVELS:
        level = getattr(logging, env_level)

    if not _providers_installed and os.environ.get("OTEL_SDK_DISABLED") != "true":
        _install_providers(service_name)

    instrumentor = LoggingInstrumentor()
    if not instrumentor.is_instrumented_by_opentelemetry:
        instrumentor.instrument(set_logging_format=False)

    _configure_logging(level)
