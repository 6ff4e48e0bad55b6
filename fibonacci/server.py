"""
FibonacciServer implementation.

FastAPI server exposing the instrumented /fibonacci endpoint plus health probes.
Includes OpenTelemetry instrumentation for tracing, metrics, and log correlation.
"""

import os
import time
import logging
import sys
from typing import Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from pydantic_settings import BaseSettings, SettingsConfigDict
import uvicorn

from fibonacci.computation import MAX_N, MIN_N, InstrumentedFibonacci
from fibonacci.handler import FibonacciHandler
from telemetry.manager import OtelManager, init_otel, is_otel_enabled, should_enable_otel

DEFAULT_SERVICE_NAME = "fibonacci-service"

FIBONACCI_PATH = "/fibonacci"

# Methods routed to the handler; anything but GET/HEAD is answered with 400.
# Other verbs reach the handler through the 405 exception handler.
ROUTED_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE"]
HTTP_METHOD_NOT_ALLOWED = 405


def get_log_level() -> str:
    """Get log level from environment, preferring LOG_LEVEL over FIBONACCI_LOG_LEVEL."""
    return os.getenv("LOG_LEVEL", os.getenv("FIBONACCI_LOG_LEVEL", "INFO")).upper()


def configure_logging(level: str = "INFO", otel_correlation: bool = False) -> None:
    """Configure logging for the application.

    Sets up a consistent logging format and ensures all application loggers
    are properly configured to output to stdout.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        otel_correlation: If True, include trace_id and span_id in log format
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if otel_correlation:
        log_format = (
            "%(asctime)s - %(name)s - %(levelname)s - "
            "[trace_id=%(otelTraceID)s span_id=%(otelSpanID)s] - %(message)s"
        )
    else:
        log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
        force=True,
    )

    if otel_correlation:
        try:
            from opentelemetry.instrumentation.logging import LoggingInstrumentor

            LoggingInstrumentor().instrument(set_logging_format=False)
        except Exception as e:
            logging.getLogger(__name__).warning(f"Failed to enable OTel log correlation: {e}")

    for logger_name in ["fibonacci", "telemetry"]:
        logging.getLogger(logger_name).setLevel(log_level)

    logging.getLogger("uvicorn.error").setLevel(log_level)


logger = logging.getLogger(__name__)


class FibonacciServerSettings(BaseSettings):
    """Fibonacci server configuration from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    fibonacci_host: str = "0.0.0.0"
    fibonacci_port: int = 8080
    fibonacci_log_level: str = "INFO"
    fibonacci_access_log: bool = False  # Mute uvicorn access logs by default

    # Fallback for OTEL_SERVICE_NAME when it is not set
    otel_service_name: str = DEFAULT_SERVICE_NAME


class FibonacciServer:
    """FibonacciServer exposing GET /fibonacci?n=<int>."""

    def __init__(
        self,
        handler: FibonacciHandler,
        name: str = DEFAULT_SERVICE_NAME,
        port: int = 8080,
        access_log: bool = False,
    ):
        """Initialize FibonacciServer with a request handler.

        Args:
            handler: Handler serving the /fibonacci route
            name: Service name reported by the health probes
            port: Port to serve on
            access_log: Whether to enable uvicorn access logs (default: False)
        """
        self.handler = handler
        self.name = name
        self.port = port
        self.access_log = access_log

        self.app = FastAPI(
            title="Fibonacci",
            description=f"Instrumented Fibonacci for {MIN_N} <= n <= {MAX_N}",
            lifespan=self._lifespan,
        )

        self._setup_routes()
        self._setup_telemetry()
        logger.info(f"FibonacciServer initialized for {name} on port {port}")

    def _setup_telemetry(self):
        """Setup OpenTelemetry instrumentation for FastAPI."""
        if is_otel_enabled():
            try:
                from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

                FastAPIInstrumentor.instrument_app(self.app)
                logger.info("OpenTelemetry instrumentation enabled (FastAPI)")
            except Exception as e:
                logger.warning(f"Failed to enable OpenTelemetry instrumentation: {e}")

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        self._log_startup_config()
        yield
        logger.info("FibonacciServer shutdown")

    def _log_startup_config(self):
        """Log server configuration on startup for debugging."""
        logger.info("=" * 60)
        logger.info("FibonacciServer Starting")
        logger.info("=" * 60)
        logger.info(f"Service Name: {self.name}")
        logger.info(f"Port: {self.port}")
        logger.info(f"Accepted n: {MIN_N} <= n <= {MAX_N}")
        logger.info(f"Log Level: {get_log_level()}")

        otel_enabled = is_otel_enabled()
        logger.info(f"OpenTelemetry Enabled: {otel_enabled}")
        if otel_enabled:
            logger.info(f"  OTEL_SERVICE_NAME: {os.getenv('OTEL_SERVICE_NAME', 'N/A')}")
            logger.info(
                f"  OTEL_EXPORTER_OTLP_ENDPOINT: {os.getenv('OTEL_EXPORTER_OTLP_ENDPOINT', 'N/A')}"
            )

        logger.info(f"Access Log: {self.access_log}")
        logger.info("=" * 60)

    def _setup_routes(self):
        """Setup HTTP routes for health probes and the fibonacci endpoint."""

        @self.app.get("/health")
        async def health():
            """Health check endpoint for Kubernetes liveness probes."""
            return JSONResponse(
                {
                    "status": "healthy",
                    "name": self.name,
                    "timestamp": int(time.time()),
                }
            )

        @self.app.get("/ready")
        async def ready():
            """Readiness check endpoint for Kubernetes readiness probes."""
            return JSONResponse(
                {
                    "status": "ready",
                    "name": self.name,
                    "timestamp": int(time.time()),
                }
            )

        @self.app.api_route(FIBONACCI_PATH, methods=ROUTED_METHODS)
        def get_fibonacci(request: Request):
            """Compute fibonacci(n) for the n query parameter.

            Runs in the threadpool; the computation is synchronous and CPU-bound.
            """
            body, status = self.handler.handle(request.query_params, request.method)
            return JSONResponse(body, status_code=status)

        @self.app.exception_handler(StarletteHTTPException)
        async def method_not_allowed(request: Request, exc: StarletteHTTPException):
            """Answer unrouted methods on /fibonacci through the handler's error policy."""
            if exc.status_code != HTTP_METHOD_NOT_ALLOWED or request.url.path != FIBONACCI_PATH:
                return await http_exception_handler(request, exc)
            body, status = self.handler.handle(request.query_params, request.method)
            return JSONResponse(body, status_code=status)

    def run(self, host: str = "0.0.0.0"):
        """Run the server.

        Args:
            host: Host to bind to
        """
        logger.info(f"Starting FibonacciServer on {host}:{self.port}")
        uvicorn.run(self.app, host=host, port=self.port, access_log=self.access_log)


def create_fibonacci_server(
    settings: Optional[FibonacciServerSettings] = None,
    telemetry: Optional[OtelManager] = None,
) -> FibonacciServer:
    """Create a FibonacciServer with its process-wide telemetry collaborators.

    Args:
        settings: Server settings (loaded from env if not provided)
        telemetry: Telemetry provider (built from the global OTel SDK if not provided)

    Returns:
        FibonacciServer instance
    """
    if not settings:
        settings = FibonacciServerSettings()

    otel_should_enable = should_enable_otel()

    log_level = os.getenv("LOG_LEVEL", settings.fibonacci_log_level).upper()
    configure_logging(log_level, otel_correlation=otel_should_enable)

    if telemetry is None:
        init_otel(settings.otel_service_name)
        telemetry = OtelManager(os.getenv("OTEL_SERVICE_NAME", settings.otel_service_name))

    computation = InstrumentedFibonacci(telemetry)
    handler = FibonacciHandler(computation)

    server = FibonacciServer(
        handler,
        name=telemetry.service_name,
        port=settings.fibonacci_port,
        access_log=settings.fibonacci_access_log,
    )
    logger.info(f"Created FibonacciServer: {telemetry.service_name}")
    return server


def main():
    """Run the Fibonacci server using settings from the environment."""
    settings = FibonacciServerSettings()
    server = create_fibonacci_server(settings)
    server.run(host=settings.fibonacci_host)


if __name__ == "__main__":
    main()
