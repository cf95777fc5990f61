"""Span and log export over OTLP

Metrics stay on prometheus_client (/metrics); the collector only receives
traces and log records. Everything here is a no-op unless
OTEL_EXPORTER_OTLP_ENDPOINT is set.
"""
import logging

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from payhook.core.config import settings

logger = logging.getLogger(__name__)

# Proxy tracer: spans go nowhere until initialize_otel() installs a provider
tracer = trace.get_tracer("payhook.webhooks")


def otel_enabled() -> bool:
    return bool(settings.OTEL_EXPORTER_OTLP_ENDPOINT)


def _service_resource() -> Resource:
    return Resource.create({
        "service.name": settings.OTEL_SERVICE_NAME,
        "deployment.environment": settings.OTEL_ENVIRONMENT,
        "payhook.environment": settings.ENVIRONMENT,
    })


def initialize_otel() -> bool:
    """Install the global tracer provider. Returns whether export is active."""
    if not otel_enabled():
        return False

    try:
        provider = TracerProvider(resource=_service_resource())
        exporter = OTLPSpanExporter(endpoint=settings.OTEL_EXPORTER_OTLP_ENDPOINT, insecure=True)
        provider.add_span_processor(BatchSpanProcessor(exporter))
        trace.set_tracer_provider(provider)
    except Exception as e:
        logger.warning(f"Span export disabled, tracer provider setup failed: {e}")
        return False
    return True


def setup_otel_logging() -> bool:
    """Forward root logger records (webhook audit lines included) to the collector"""
    if not otel_enabled():
        return False

    try:
        from opentelemetry._logs import set_logger_provider
        from opentelemetry.exporter.otlp.proto.grpc._log_exporter import OTLPLogExporter
        from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
        from opentelemetry.sdk._logs.export import BatchLogRecordProcessor

        provider = LoggerProvider(resource=_service_resource())
        provider.add_log_record_processor(
            BatchLogRecordProcessor(
                OTLPLogExporter(endpoint=settings.OTEL_EXPORTER_OTLP_ENDPOINT, insecure=True),
                schedule_delay_millis=5000,
            )
        )
        set_logger_provider(provider)
        logging.getLogger().addHandler(LoggingHandler(level=logging.INFO, logger_provider=provider))
    except Exception as e:
        logger.warning(f"Log export disabled: {e}")
        return False
    return True


def instrument_app(app) -> None:
    """Server spans for FastAPI routes, client spans for collaborator calls"""
    FastAPIInstrumentor.instrument_app(app, excluded_urls="health,metrics")
    HTTPXClientInstrumentor().instrument()


def instrument_engine(engine) -> None:
    try:
        SQLAlchemyInstrumentor().instrument(engine=engine)
    except Exception as e:
        logger.warning(f"SQLAlchemy spans disabled: {e}")
