"""FastAPI application entry point"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from payhook.api import monitoring, webhooks
from payhook.core import otel
from payhook.core.config import settings
from payhook.core.logging import setup_logging
from payhook.db import redis as redis_module
from payhook.db.session import engine, init_db

setup_logging()
logger = logging.getLogger(__name__)


def _start_telemetry() -> None:
    if not otel.initialize_otel():
        logger.info("No OTLP collector configured, spans and log export disabled")
        return
    otel.instrument_engine(engine)
    if otel.setup_otel_logging():
        logger.info(f"Exporting spans and logs to {settings.OTEL_EXPORTER_OTLP_ENDPOINT}")
    else:
        logger.warning(f"Exporting spans to {settings.OTEL_EXPORTER_OTLP_ENDPOINT}, log export failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    _start_telemetry()

    try:
        init_db()
    except Exception as e:
        logger.error(f"Database unavailable at startup: {e}")
        raise

    if not redis_module.ping():
        # Deduplication reads the database until Redis is back
        logger.warning("Redis unreachable, processed-event cache disabled")

    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.error("STRIPE_WEBHOOK_SECRET is not set, every delivery will be answered with 500")

    logger.info(f"payhook ready ({settings.ENVIRONMENT})")
    yield
    logger.info("payhook shutting down")


app = FastAPI(
    title="payhook",
    description="Stripe webhook reliability and orchestration service",
    version="1.0.0",
    lifespan=lifespan,
)

if otel.otel_enabled():
    otel.instrument_app(app)

app.include_router(webhooks.router)
app.include_router(monitoring.router)


@app.exception_handler(Exception)
async def unhandled_exception(request: Request, exc: Exception):
    """Last resort: any error escaping a route becomes a bare 500"""
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})
