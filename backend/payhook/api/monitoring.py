"""Monitoring API routes for health checks and metrics"""
import logging

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text

from payhook.db import redis as redis_module
from payhook.db.session import SessionLocal

router = APIRouter(tags=["monitoring"])
logger = logging.getLogger(__name__)


@router.get("/metrics")
def metrics_endpoint():
    """Prometheus metrics endpoint"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@router.get("/health")
def health_check():
    """Health check endpoint"""
    checks = {"database": "ok", "redis": "ok" if redis_module.ping() else "unavailable"}
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        checks["database"] = "unavailable"
    finally:
        db.close()

    # Redis only backs the dedup fast path; the service works without it
    status = "healthy" if checks["database"] == "ok" else "unhealthy"
    return {"status": status, "checks": checks}
