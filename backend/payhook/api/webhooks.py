"""Webhook API routes"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from payhook.core.security import require_operator
from payhook.db.session import SessionLocal
from payhook.services.context import WebhookContext
from payhook.services.webhook_service import process_webhook

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])
logger = logging.getLogger(__name__)


def get_webhook_context() -> WebhookContext:
    """Dependency building the request-scoped pipeline context"""
    return WebhookContext.build(SessionLocal)


@router.get("/stripe")
def stripe_webhook_status():
    """Liveness check for the provider dashboard. Does no processing."""
    return {"message": "Stripe webhook endpoint is active", "status": "active"}


@router.post("/stripe")
async def stripe_webhook(request: Request, ctx: WebhookContext = Depends(get_webhook_context)):
    """Handle Stripe webhook events

    Note: This route must be excluded from any global JSON parsing middleware
    to ensure the request body remains as raw bytes for signature verification.
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    result = await process_webhook(payload, sig_header, ctx)
    return JSONResponse(status_code=result.status_code, content=result.body)


@router.get("/logs/{event_id}", dependencies=[Depends(require_operator)])
async def get_event_logs(event_id: str, ctx: WebhookContext = Depends(get_webhook_context)):
    """Every processing attempt recorded for one provider event"""
    logs = await ctx.logger.find_by_event_id(event_id)
    record = await ctx.dedup.get_record(event_id)
    if not logs and record is None:
        raise HTTPException(404, f"No webhook logs for event {event_id}")
    return {
        "event_id": event_id,
        "idempotency": record.to_dict() if record is not None else None,
        "logs": logs,
    }


@router.get("/stats", dependencies=[Depends(require_operator)])
def get_webhook_stats(ctx: WebhookContext = Depends(get_webhook_context)):
    """Monitor summary since process start"""
    return ctx.monitor.summary()
