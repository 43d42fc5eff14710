"""
OpenTelemetry initialization for the TickerSqueak alert service.

Traces, metrics and logs are exported over OTLP/gRPC only when
`OTEL_EXPORTER_OTLP_ENDPOINT` is set and `ENABLE_OTEL` is truthy. Without an
endpoint the API-level no-op providers stay in place, so `get_tracer()` and
`get_meter()` are always safe to call at import time.

Usage:
1. Call `setup_telemetry()` once at service startup.
2. Call `instrument_fastapi_app(app)` for the HTTP surface.
3. Call `attach_logging_handler()` after uvicorn has configured logging.
"""

import logging
import os

from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc._log_exporter import OTLPLogExporter
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

DEFAULT_SERVICE_NAME = "tickersqueak"

_global_logger_provider = None
_otlp_logging_handler = None

logger = logging.getLogger(__name__)

_initialization_state = {
    "tracing": {"success": False, "error": None},
    "metrics": {"success": False, "error": None},
    "logs": {"success": False, "error": None},
}


def _env_flag(name: str, default: str = "true") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


def parse_otlp_headers(headers_env: str | None) -> dict[str, str] | None:
    """Parse `key1=value1,key2=value2` into a header dict."""
    if not headers_env or not headers_env.strip():
        return None

    headers = {}
    for pair in headers_env.split(","):
        if "=" not in pair:
            continue
        key, value = pair.split("=", 1)
        if key.strip():
            headers[key.strip()] = value.strip()

    if not headers:
        logger.warning(
            "OTEL_EXPORTER_OTLP_HEADERS provided but no valid key=value pairs found"
        )
        return None
    return headers


def setup_telemetry(
    service_name: str = DEFAULT_SERVICE_NAME,
    service_version: str | None = None,
    otlp_endpoint: str | None = None,
) -> None:
    """
    Configure tracer, meter and logger providers with OTLP exporters.

    Args:
        service_name: Name reported as `service.name`
        service_version: Version reported as `service.version`
        otlp_endpoint: OTLP gRPC endpoint; defaults to OTEL_EXPORTER_OTLP_ENDPOINT
    """
    global _global_logger_provider

    if not _env_flag("ENABLE_OTEL"):
        return

    otlp_endpoint = otlp_endpoint or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if not otlp_endpoint:
        logger.info("No OTLP endpoint configured; telemetry export disabled")
        return

    service_version = service_version or os.getenv("OTEL_SERVICE_VERSION", "1.0.0")
    resource = Resource.create(
        {
            "service.name": service_name,
            "service.version": service_version,
            "deployment.environment": os.getenv("ENVIRONMENT", "desktop"),
        }
    )
    headers = parse_otlp_headers(os.getenv("OTEL_EXPORTER_OTLP_HEADERS"))
    fail_fast = _env_flag("OTEL_FAIL_FAST", "false")

    if _env_flag("ENABLE_TRACES"):
        try:
            tracer_provider = TracerProvider(resource=resource)
            tracer_provider.add_span_processor(
                BatchSpanProcessor(
                    OTLPSpanExporter(endpoint=otlp_endpoint, headers=headers)
                )
            )
            trace.set_tracer_provider(tracer_provider)
            _initialization_state["tracing"]["success"] = True
            logger.info(f"OpenTelemetry tracing enabled for {service_name}")
        except Exception as e:
            _initialization_state["tracing"]["error"] = str(e)
            logger.error(f"Failed to set up OpenTelemetry tracing: {e}", exc_info=True)
            if fail_fast:
                raise

    if _env_flag("ENABLE_METRICS"):
        try:
            reader = PeriodicExportingMetricReader(
                OTLPMetricExporter(endpoint=otlp_endpoint, headers=headers),
                export_interval_millis=int(
                    os.getenv("OTEL_METRIC_EXPORT_INTERVAL", "60000")
                ),
            )
            metrics.set_meter_provider(
                MeterProvider(resource=resource, metric_readers=[reader])
            )
            _initialization_state["metrics"]["success"] = True
            logger.info(f"OpenTelemetry metrics enabled for {service_name}")
        except Exception as e:
            _initialization_state["metrics"]["error"] = str(e)
            logger.error(f"Failed to set up OpenTelemetry metrics: {e}", exc_info=True)
            if fail_fast:
                raise

    if _env_flag("ENABLE_LOGS"):
        try:
            LoggingInstrumentor().instrument(set_logging_format=False)
            logger_provider = LoggerProvider(resource=resource)
            logger_provider.add_log_record_processor(
                BatchLogRecordProcessor(
                    OTLPLogExporter(endpoint=otlp_endpoint, headers=headers)
                )
            )
            _global_logger_provider = logger_provider
            _initialization_state["logs"]["success"] = True
            logger.info(f"OpenTelemetry logging export configured for {service_name}")
        except Exception as e:
            _initialization_state["logs"]["error"] = str(e)
            logger.error(
                f"Failed to set up OpenTelemetry logging export: {e}", exc_info=True
            )
            if fail_fast:
                raise


def instrument_fastapi_app(app) -> None:
    """Instrument a FastAPI application; failures are logged, not raised."""
    try:
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

        FastAPIInstrumentor.instrument_app(app)
        logger.info("FastAPI application instrumented")
    except Exception as e:
        logger.error(f"Failed to instrument FastAPI application: {e}", exc_info=True)
        if _env_flag("OTEL_FAIL_FAST", "false"):
            raise


def attach_logging_handler() -> bool:
    """
    Attach the OTLP logging handler to the root and uvicorn loggers.

    Uvicorn loggers do not propagate to the root logger, so they need the
    handler attached explicitly.
    """
    global _otlp_logging_handler

    if _global_logger_provider is None:
        logger.debug("Logger provider not configured - logging export not available")
        return False

    root_logger = logging.getLogger()
    if _otlp_logging_handler is not None and _otlp_logging_handler in root_logger.handlers:
        return True

    handler = LoggingHandler(level=logging.NOTSET, logger_provider=_global_logger_provider)
    for name in (None, "uvicorn", "uvicorn.access", "uvicorn.error"):
        logging.getLogger(name).addHandler(handler)
    _otlp_logging_handler = handler

    logger.info("OTLP logging handler attached to root and uvicorn loggers")
    return True


def get_tracer(name: str | None = None) -> trace.Tracer:
    return trace.get_tracer(name or DEFAULT_SERVICE_NAME)


def get_meter(name: str | None = None) -> metrics.Meter:
    return metrics.get_meter(name or DEFAULT_SERVICE_NAME)


def get_initialization_state() -> dict:
    return {k: dict(v) for k, v in _initialization_state.items()}
