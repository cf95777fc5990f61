"""checkout.session.completed and checkout.session.expired"""
import asyncio
import logging
from typing import Optional

from payhook.core.errors import DomainNotFoundError
from payhook.db.helpers import utcnow
from payhook.models.preorder import Preorder
from payhook.schemas.events import CheckoutSessionPayload, WebhookEvent
from payhook.services.collaborators.marketing import ABANDONED_CART, PREORDER_COMPLETED
from payhook.services.handlers.common import FAILED, SKIPPED, SUCCESS, HandlerOutcome, run_side_effect

logger = logging.getLogger(__name__)


def _completion_values(session: CheckoutSessionPayload) -> dict:
    """Columns written when a preorder is paid"""
    values = {
        "session_id": session.session_id,
        "payment_intent_id": session.payment_intent,
        "amount_cents": session.amount_total,
        "currency": session.currency,
        "payment_error": None,
    }
    if session.email:
        values["email"] = session.email
    details = session.customer_details
    if details:
        if details.phone:
            values["phone"] = details.phone
        if details.name:
            values["billing_name"] = details.name
        if details.address:
            values.update({
                "billing_address_line1": details.address.line1,
                "billing_address_line2": details.address.line2,
                "billing_city": details.address.city,
                "billing_state": details.address.state,
                "billing_postal_code": details.address.postal_code,
                "billing_country": details.address.country,
            })
    if session.locale:
        values["locale"] = session.locale
    return values


def _order_context(preorder: Preorder, session: CheckoutSessionPayload) -> dict:
    return {
        "preorder_id": preorder.id,
        "preorder_number": preorder.preorder_number,
        "email": preorder.email or session.email,
        "phone": preorder.phone,
        "color": preorder.color,
        "amount_cents": preorder.amount_cents,
        "currency": preorder.currency,
        "session_id": preorder.session_id,
        "payment_intent_id": preorder.payment_intent_id,
        "billing": {
            "name": preorder.billing_name,
            "line1": preorder.billing_address_line1,
            "line2": preorder.billing_address_line2,
            "city": preorder.billing_city,
            "state": preorder.billing_state,
            "postal_code": preorder.billing_postal_code,
            "country": preorder.billing_country,
        },
    }


async def _send_completion_event(ctx, preorder: Preorder, order_context: dict, event_id: str):
    if not order_context["email"]:
        return SKIPPED, None
    properties = {
        "preorder_id": preorder.id,
        "preorder_number": preorder.preorder_number,
        "color": preorder.color,
        "amount": (preorder.amount_cents or 0) / 100,
        "currency": preorder.currency,
        "locale": preorder.locale,
    }
    return await run_side_effect(
        ctx,
        "marketing",
        lambda: ctx.collaborators.marketing.send_event(
            PREORDER_COMPLETED, order_context["email"], properties, unique_id=event_id
        ),
        ctx.budgets.marketing_ms,
    )


async def _sync_order(ctx, order_context: dict):
    return await run_side_effect(
        ctx,
        "commerce",
        lambda: ctx.collaborators.commerce.create_remote_order(order_context),
        ctx.budgets.commerce_ms,
    )


async def _reward_referral(ctx, preorder: Preorder, referrer_code: Optional[str]):
    return await run_side_effect(
        ctx,
        "referral",
        lambda: ctx.collaborators.referrals.compute_reward(referrer_code, preorder.amount_cents),
        ctx.budgets.referral_ms,
    )


async def handle_checkout_completed(event: WebhookEvent, ctx, log_id: Optional[int]) -> HandlerOutcome:
    session: CheckoutSessionPayload = event.payload

    if session.mode == "subscription":
        # The subscription row arrives with customer.subscription.created
        return HandlerOutcome(detail={
            "session_id": session.session_id,
            "mode": "subscription",
            "subscription_id": session.subscription,
            "message": "Subscription checkout completed",
        })

    preorder_id = session.preorder_id
    if not preorder_id:
        raise DomainNotFoundError(
            "Checkout session has no preorderId metadata",
            detail={"session_id": session.session_id},
        )

    # Critical: a timeout here aborts the attempt
    preorder = await ctx.preorders.get(preorder_id)
    if preorder is None:
        raise DomainNotFoundError(f"Preorder {preorder_id} not found", detail={"preorder_id": preorder_id})

    if preorder.is_terminal:
        logger.info(f"Preorder {preorder_id} already {preorder.status}, nothing to do")
        return HandlerOutcome(detail={
            "preorder_id": preorder_id,
            "outcome": "already_completed",
            "preorder_status": preorder.status,
        })

    updated = await ctx.preorders.mark_completed(preorder_id, _completion_values(session))
    if updated is None:
        logger.info(f"Preorder {preorder_id} was completed concurrently, nothing to do")
        return HandlerOutcome(detail={"preorder_id": preorder_id, "outcome": "already_completed"})

    detail = {"preorder_id": preorder_id, "email": updated.email, "outcome": "completed"}
    await ctx.logger.update_detail(log_id, detail)
    logger.info(f"✅ Preorder {preorder_id} marked completed")

    order_context = _order_context(updated, session)
    bookkeeping = {}

    # Link the buyer to an account before notifying anyone else
    if order_context["email"]:
        user_outcome, user_result = await run_side_effect(
            ctx,
            "user_account",
            lambda: ctx.collaborators.user_accounts.create_or_link_account(order_context["email"], order_context),
            ctx.budgets.user_creation_ms,
        )
    else:
        user_outcome, user_result = SKIPPED, None
    detail["user_account"] = user_outcome
    if user_outcome == SUCCESS:
        detail["user_created"] = user_result.value["created"]
        bookkeeping["user_id"] = user_result.value["user_id"]

    # Independent notifications; a slow one does not hold back the others
    (marketing, _), (commerce, commerce_result), (referral, referral_result) = await asyncio.gather(
        _send_completion_event(ctx, updated, order_context, event.id),
        _sync_order(ctx, order_context),
        _reward_referral(ctx, updated, session.referrer_code or updated.referrer_code),
    )

    now = utcnow()
    detail["marketing"] = marketing
    if marketing == SUCCESS:
        bookkeeping["marketing_event_sent_at"] = now

    detail["commerce"] = commerce
    if commerce == SUCCESS:
        detail["commerce_order_id"] = commerce_result.value["order_id"]
        detail["commerce_order_number"] = commerce_result.value["order_number"]
        bookkeeping.update({
            "commerce_order_id": commerce_result.value["order_id"],
            "commerce_order_number": commerce_result.value["order_number"],
            "commerce_synced_at": now,
            "commerce_error": None,
            "commerce_last_attempt_at": now,
        })
    elif commerce != SKIPPED:
        error = commerce_result.error if commerce_result is not None else "timeout"
        bookkeeping.update({"commerce_error": error, "commerce_last_attempt_at": now})

    detail["referral"] = referral
    if referral == SUCCESS:
        detail["referral_reward_cents"] = referral_result.value["reward_cents"]
        bookkeeping["referral_reward_cents"] = referral_result.value["reward_cents"]

    try:
        await ctx.preorders.record_side_effects(preorder_id, bookkeeping)
        detail["bookkeeping"] = SUCCESS
    except Exception as e:
        # The preorder itself is completed; only the bookkeeping columns are stale
        logger.error(f"Failed to record side effects for preorder {preorder_id}: {type(e).__name__}: {e}")
        detail["bookkeeping"] = FAILED

    return HandlerOutcome(detail=detail)


async def handle_checkout_expired(event: WebhookEvent, ctx, log_id: Optional[int]) -> HandlerOutcome:
    session: CheckoutSessionPayload = event.payload
    detail = {
        "session_id": session.session_id,
        "preorder_id": session.preorder_id,
        "email": session.email,
    }

    if session.email and session.preorder_id:
        properties = {
            "preorder_id": session.preorder_id,
            "session_id": session.session_id,
            "color": session.metadata.get("color"),
            "amount": (session.amount_total or 0) / 100,
            "currency": session.currency,
        }
        outcome, _ = await run_side_effect(
            ctx,
            "marketing",
            lambda: ctx.collaborators.marketing.send_event(
                ABANDONED_CART, session.email, properties, unique_id=event.id
            ),
            ctx.budgets.marketing_ms,
        )
    else:
        outcome = SKIPPED
    detail["abandoned_cart"] = outcome

    return HandlerOutcome(status="expired", detail=detail)
