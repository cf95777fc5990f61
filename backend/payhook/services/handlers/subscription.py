"""customer.subscription.* lifecycle events"""
import logging
from typing import Optional

from payhook.schemas.events import SubscriptionPayload, WebhookEvent
from payhook.services.handlers.common import SKIPPED, HandlerOutcome, run_side_effect

logger = logging.getLogger(__name__)


async def handle_subscription_event(event: WebhookEvent, ctx, log_id: Optional[int]) -> HandlerOutcome:
    payload: SubscriptionPayload = event.payload
    deleted = event.type == "customer.subscription.deleted"

    row, applied = await ctx.subscriptions.upsert(payload, event.created_at, deleted=deleted)
    detail = {
        "subscription_id": payload.subscription_id,
        "customer_id": payload.customer,
        "status": row.status,
        "plan_type": row.plan_type,
        "applied": applied,
    }
    if event.type == "customer.subscription.trial_will_end":
        detail["trial_end"] = payload.trial_end

    if not applied:
        detail["user_sync"] = SKIPPED
        return HandlerOutcome(detail=detail)

    sync_payload = {
        "subscription_id": row.stripe_subscription_id,
        "status": row.status,
        "plan_type": row.plan_type,
        "price_id": row.stripe_price_id,
        "current_period_end": payload.current_period_end,
        "cancel_at_period_end": row.cancel_at_period_end,
    }
    outcome, _ = await run_side_effect(
        ctx,
        "user_subscription_sync",
        lambda: ctx.collaborators.user_accounts.sync_subscription(payload.customer, sync_payload),
        ctx.budgets.user_creation_ms,
    )
    detail["user_sync"] = outcome
    logger.info(f"Subscription {payload.subscription_id} -> {row.status} ({row.plan_type})")
    return HandlerOutcome(detail=detail)
