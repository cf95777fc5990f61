"""payment_intent.payment_failed"""
import logging
from typing import Optional

from payhook.schemas.events import PaymentIntentPayload, WebhookEvent
from payhook.services.handlers.common import HandlerOutcome

logger = logging.getLogger(__name__)


async def handle_payment_failed(event: WebhookEvent, ctx, log_id: Optional[int]) -> HandlerOutcome:
    intent: PaymentIntentPayload = event.payload
    detail = {
        "outcome": "payment_failed",
        "payment_intent_id": intent.payment_intent_id,
        "error": intent.error_message,
        "preorder_id": intent.preorder_id,
    }
    if intent.last_payment_error and intent.last_payment_error.code:
        detail["error_code"] = intent.last_payment_error.code

    if intent.preorder_id:
        # Only a pending preorder moves to failed; a completed one is left alone
        detail["preorder_updated"] = await ctx.preorders.mark_payment_failed(
            intent.preorder_id, intent.error_message
        )

    logger.warning(f"Payment failed for {intent.payment_intent_id}: {intent.error_message}")
    return HandlerOutcome(detail=detail)
