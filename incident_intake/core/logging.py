"""Logging and tracing utilities for the intake service."""

from __future__ import annotations

import logging
from logging.config import dictConfig

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from incident_intake.core.config import Settings

SERVICE_LOGGER = "incident_intake"

_TRACER_INITIALISED = False


def _parse_headers(header_string: str | None) -> dict[str, str]:
    if not header_string:
        return {}
    headers: dict[str, str] = {}
    for item in header_string.split(","):
        if "=" not in item:
            continue
        key, value = item.split("=", 1)
        headers[key.strip()] = value.strip()
    return headers


def _level(name: str, default: int = logging.INFO) -> int:
    return getattr(logging, name.upper(), default)


class ServiceContextFilter(logging.Filter):
    """Stamp records with the deployment environment and the active trace id."""

    def __init__(self, environment: str) -> None:
        super().__init__()
        self.environment = environment

    def filter(self, record: logging.LogRecord) -> bool:
        record.environment = self.environment
        span_context = trace.get_current_span().get_span_context()
        record.trace_id = trace.format_trace_id(span_context.trace_id) if span_context.is_valid else "-"
        return True


def configure_logging(settings: Settings) -> logging.Logger:
    """Route every record through one stream handler and return the package logger.

    ``settings.log_levels`` overrides the level of individual loggers, e.g.
    ``{"incident_intake.assistant": "DEBUG"}``.
    """

    level = _level(settings.log_level)
    loggers: dict[str, dict[str, object]] = {
        SERVICE_LOGGER: {"level": level},
        # httpx logs every request line at INFO, including assistant calls
        "httpx": {"level": max(level, logging.WARNING)},
        "asyncpg": {"level": max(level, logging.WARNING)},
    }
    for name, override in settings.log_levels.items():
        loggers[name] = {"level": _level(override, level)}

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {
                "service_context": {
                    "()": ServiceContextFilter,
                    "environment": settings.environment,
                }
            },
            "formatters": {
                "service": {"format": settings.log_format},
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "service",
                    "filters": ["service_context"],
                }
            },
            "root": {"handlers": ["console"], "level": level},
            "loggers": loggers,
        }
    )
    return logging.getLogger(SERVICE_LOGGER)


def init_tracer(settings: Settings) -> TracerProvider | None:
    """Initialise the OpenTelemetry tracer if enabled in settings."""

    global _TRACER_INITIALISED

    if _TRACER_INITIALISED or not settings.otel_enabled:
        return None

    resource = Resource(attributes={"service.name": settings.otel_service_name})
    provider = TracerProvider(resource=resource)

    exporter_kwargs: dict[str, object] = {}
    if settings.otel_exporter_otlp_endpoint:
        exporter_kwargs["endpoint"] = settings.otel_exporter_otlp_endpoint
    headers = _parse_headers(settings.otel_exporter_otlp_headers)
    if headers:
        exporter_kwargs["headers"] = headers

    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(**exporter_kwargs)))

    trace.set_tracer_provider(provider)
    _TRACER_INITIALISED = True
    return provider


def shutdown_tracer(provider: TracerProvider | None) -> None:
    """Shut down the configured tracer provider."""

    if provider is None:
        return

    global _TRACER_INITIALISED
    provider.shutdown()
    _TRACER_INITIALISED = False
