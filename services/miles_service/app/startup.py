from __future__ import annotations

import sys

from fastapi import FastAPI
from loguru import logger
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from .settings import miles_settings


def setup_logging() -> None:
    """Configure Loguru for consistent, structured service logs."""
    logger.remove()
    logger.add(
        sys.stdout,
        level=miles_settings().log_level.upper(),
        backtrace=False,
        diagnose=False,
        colorize=False,
        serialize=False,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
               "<level>{level: <8}</level> | "
               "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
               "<level>{message}</level> {extra}",
    )


def setup_instrumentation(app: FastAPI) -> None:
    """Attach OpenTelemetry tracing when an OTLP endpoint is configured. Idempotent."""
    settings = miles_settings()
    if settings.otel_endpoint is None:
        logger.info("OpenTelemetry disabled (no MILES_OTEL_ENDPOINT).")
        return
    if getattr(app.state, "tracer_provider", None) is not None:
        return

    resource = Resource(attributes={SERVICE_NAME: settings.service_name})
    tracer_provider = TracerProvider(resource=resource)
    tracer_provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=str(settings.otel_endpoint)))
    )
    trace.set_tracer_provider(tracer_provider)
    FastAPIInstrumentor.instrument_app(app, tracer_provider=tracer_provider)
    app.state.tracer_provider = tracer_provider
    logger.info("OpenTelemetry instrumentation configured.")


def shutdown_instrumentation(app: FastAPI) -> None:
    tracer_provider = getattr(app.state, "tracer_provider", None)
    if tracer_provider is not None:
        tracer_provider.shutdown()
        logger.info("OpenTelemetry instrumentation shut down.")
