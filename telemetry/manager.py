"""
OpenTelemetry Manager for the Fibonacci service.

Provides the telemetry provider consumed by the instrumented computation, using
standard OTEL_* environment variables. Uses OTEL_SDK_DISABLED (standard OTel env
var) to control whether telemetry is enabled.

Key design:
- Process-global SDK initialization via module-level _initialized flag
- OtelManager hands out tracers and meters; explicit providers can be injected
- OtelConfig uses pydantic BaseSettings with OTEL-compliant env var names
"""

import logging
import os
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict
from opentelemetry import trace, metrics
from opentelemetry import _logs as otel_logs
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.sdk.resources import Resource, SERVICE_NAME
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc._log_exporter import OTLPLogExporter
from opentelemetry.propagate import set_global_textmap
from opentelemetry.propagators.composite import CompositePropagator
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator
from opentelemetry.baggage.propagation import W3CBaggagePropagator
from opentelemetry.trace import Status, StatusCode

logger = logging.getLogger(__name__)


def _get_log_level() -> int:
    """Get the configured log level as a logging constant.

    Reads from LOG_LEVEL env var and converts to logging.DEBUG/INFO/etc.
    Defaults to INFO if not set or invalid.
    """
    level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    level_map = {
        "TRACE": logging.DEBUG,  # Python doesn't have TRACE
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "WARN": logging.WARNING,
        "ERROR": logging.ERROR,
    }
    return level_map.get(level_str, logging.INFO)


class NamedLoggingHandler(LoggingHandler):
    """LoggingHandler that adds the logger name as an explicit attribute.

    The standard LoggingHandler uses logger name for InstrumentationScope but
    excludes it from log record attributes.
    """

    def emit(self, record: logging.LogRecord) -> None:
        """Emit a log record with logger name as attribute."""
        if not hasattr(record, "logger_name"):
            record.logger_name = record.name
        super().emit(record)


# Process-global initialization state
_initialized: bool = False


class OtelConfig(BaseSettings):
    """OpenTelemetry configuration from standard OTEL_* environment variables.

    Uses pydantic BaseSettings for automatic env var parsing.
    OTEL_SDK_DISABLED=true disables telemetry (standard OTel env var).
    """

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=False)

    # Standard OTel env vars - required when telemetry enabled
    otel_service_name: str
    otel_exporter_otlp_endpoint: str

    otel_sdk_disabled: bool = False

    @property
    def enabled(self) -> bool:
        """Check if OTel is enabled (not disabled)."""
        return not self.otel_sdk_disabled


def _sdk_disabled() -> bool:
    return os.getenv("OTEL_SDK_DISABLED", "false").lower() in ("true", "1", "yes")


def is_otel_enabled() -> bool:
    """Check if OTel is initialized and enabled.

    Returns True only if init_otel() was successfully called and OTel is active.
    """
    return _initialized


def should_enable_otel() -> bool:
    """Check if OTel should be enabled based on environment variables.

    This checks env vars BEFORE init_otel() is called, useful for deciding
    whether to enable log correlation before the SDK is initialized.

    Returns True if OTEL_SDK_DISABLED is not set to true AND required env vars
    (OTEL_SERVICE_NAME, OTEL_EXPORTER_OTLP_ENDPOINT) are configured.
    """
    if _sdk_disabled():
        return False

    service_name = os.getenv("OTEL_SERVICE_NAME", "")
    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "")
    return bool(service_name and endpoint)


def init_otel(service_name: Optional[str] = None) -> bool:
    """Initialize OpenTelemetry with standard OTEL_* env vars.

    Should be called once at process startup. Idempotent - safe to call multiple times.

    Args:
        service_name: Default service name if OTEL_SERVICE_NAME not set

    Returns:
        True if OTel was initialized, False if disabled or already initialized
    """
    global _initialized

    if _initialized:
        return False

    if _sdk_disabled():
        logger.debug("OpenTelemetry disabled (OTEL_SDK_DISABLED=true)")
        return False

    try:
        if service_name and not os.getenv("OTEL_SERVICE_NAME"):
            os.environ["OTEL_SERVICE_NAME"] = service_name

        if not os.getenv("OTEL_SERVICE_NAME") or not os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT"):
            logger.debug(
                "OpenTelemetry not configured: "
                "OTEL_SERVICE_NAME and OTEL_EXPORTER_OTLP_ENDPOINT required"
            )
            return False

        config = OtelConfig()  # type: ignore[call-arg]
    except Exception as e:
        logger.warning(f"OpenTelemetry config error: {e}")
        return False

    # Resource.create also merges OTEL_RESOURCE_ATTRIBUTES from the environment
    resource = Resource.create({SERVICE_NAME: config.otel_service_name})

    set_global_textmap(
        CompositePropagator([TraceContextTextMapPropagator(), W3CBaggagePropagator()])
    )

    # Exporters read OTEL_EXPORTER_OTLP_* env vars for endpoint, TLS and headers
    tracer_provider = TracerProvider(resource=resource)
    tracer_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter()))
    trace.set_tracer_provider(tracer_provider)

    metric_reader = PeriodicExportingMetricReader(OTLPMetricExporter())
    meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
    metrics.set_meter_provider(meter_provider)

    logger_provider = LoggerProvider(resource=resource)
    logger_provider.add_log_record_processor(BatchLogRecordProcessor(OTLPLogExporter()))
    otel_logs.set_logger_provider(logger_provider)
    otel_handler = NamedLoggingHandler(level=_get_log_level(), logger_provider=logger_provider)
    logging.getLogger().addHandler(otel_handler)

    logger.info(
        f"OpenTelemetry initialized: {config.otel_exporter_otlp_endpoint} "
        f"(service: {config.otel_service_name})"
    )
    _initialized = True
    return True


def mark_current_span_failed(description: str) -> None:
    """Set ERROR status on the active span. No-op when no span is recording."""
    span = trace.get_current_span()
    if not span.is_recording():
        return
    span.set_status(Status(StatusCode.ERROR, description))


class OtelManager:
    """Telemetry provider handing out tracers and meters.

    Created once at startup and shared by every request. Without explicit
    providers the process-global ones are used, which are no-ops until
    init_otel() has run.

    Example:
        otel = OtelManager("fibonacci-service")
        tracer = otel.get_tracer("fibonacci.computation")
        counter = otel.get_meter("fibonacci.computation").create_counter("calls")
    """

    def __init__(
        self,
        service_name: str,
        tracer_provider: Optional[trace.TracerProvider] = None,
        meter_provider: Optional[metrics.MeterProvider] = None,
    ):
        """Initialize manager with service context.

        Args:
            service_name: Name of the service
            tracer_provider: Explicit tracer provider (defaults to the global one)
            meter_provider: Explicit meter provider (defaults to the global one)
        """
        self.service_name = service_name
        self._tracer_provider = tracer_provider
        self._meter_provider = meter_provider

    def get_tracer(self, name: str) -> trace.Tracer:
        """Get a tracer for creating spans."""
        return trace.get_tracer(name, tracer_provider=self._tracer_provider)

    def get_meter(self, name: str) -> metrics.Meter:
        """Get a meter for creating instruments."""
        return metrics.get_meter(name, meter_provider=self._meter_provider)
