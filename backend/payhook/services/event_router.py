"""Dispatches an authenticated event to exactly one handler and owns its log row"""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional

from payhook.core.errors import failure_reason
from payhook.schemas.events import WebhookEvent
from payhook.services.handlers.checkout import handle_checkout_completed, handle_checkout_expired
from payhook.services.handlers.common import HandlerOutcome
from payhook.services.handlers.payment import handle_payment_failed
from payhook.services.handlers.subscription import handle_subscription_event

logger = logging.getLogger(__name__)

Handler = Callable[[WebhookEvent, object, Optional[int]], Awaitable[HandlerOutcome]]

# ============================================================================
# EVENT TYPE -> HANDLER
# ============================================================================

HANDLERS: Dict[str, Handler] = {
    "checkout.session.completed": handle_checkout_completed,
    "checkout.session.expired": handle_checkout_expired,
    "payment_intent.payment_failed": handle_payment_failed,
    "customer.subscription.created": handle_subscription_event,
    "customer.subscription.updated": handle_subscription_event,
    "customer.subscription.deleted": handle_subscription_event,
    "customer.subscription.trial_will_end": handle_subscription_event,
}


def log_context(event: WebhookEvent, delivery: int = 1) -> dict:
    """Initial detail of the `started` row"""
    payload = event.payload
    context = {"livemode": event.livemode, "delivery": delivery}
    preorder_id = getattr(payload, "preorder_id", None)
    if preorder_id:
        context["preorder_id"] = preorder_id
    email = getattr(payload, "email", None)
    if email:
        context["email"] = email
    return context


async def dispatch(event: WebhookEvent, ctx, attempt: int = 1, delivery: int = 1) -> HandlerOutcome:
    """Run the handler for `event` between a `started` row and its terminal status

    Handler exceptions are logged as `failure` and re-raised for the retry
    orchestrator. Event types without a handler finish as `success`.
    """
    log_id = await ctx.logger.log_start(event.type, event.id, log_context(event, delivery), attempt=attempt)
    handler = HANDLERS.get(event.type)

    try:
        if handler is None:
            logger.info(f"Unhandled event type: {event.type}")
            outcome = HandlerOutcome(detail={"note": f"No handler for {event.type}"})
        else:
            outcome = await handler(event, ctx, log_id)
    except asyncio.CancelledError:
        # Processing budget expired mid-handler
        await ctx.logger.log_failure(
            log_id, "Processing cancelled: time budget exhausted", {"reason": "timeout"},
            event_type=event.type, event_id=event.id,
        )
        raise
    except Exception as e:
        detail = {"reason": failure_reason(e), "error_type": type(e).__name__}
        detail.update(getattr(e, "detail", None) or {})
        await ctx.logger.log_failure(log_id, str(e), detail, event_type=event.type, event_id=event.id)
        raise

    if outcome.status == "expired":
        await ctx.logger.log_expired(log_id, outcome.detail, event_type=event.type, event_id=event.id)
    else:
        await ctx.logger.log_success(log_id, outcome.detail, event_type=event.type, event_id=event.id)
    return outcome
