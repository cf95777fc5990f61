"""Top-level webhook processing: verify, deduplicate, dispatch with retries"""
import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from payhook.core.errors import (
    AuthenticationError,
    ConfigurationError,
    MalformedPayloadError,
    failure_reason,
)
from payhook.core.logging import webhook_logger
from payhook.core.otel import tracer
from payhook.services.context import WebhookContext
from payhook.services.event_router import dispatch
from payhook.services.idempotency_service import ClaimStatus
from payhook.services.reliability import execute_with_retry, with_timeout

logger = logging.getLogger(__name__)


@dataclass
class WebhookResult:
    status_code: int
    body: dict = field(default_factory=dict)


def _elapsed_ms(started: float) -> float:
    return (time.monotonic() - started) * 1000


async def process_webhook(raw_body: bytes, signature_header: Optional[str], ctx: WebhookContext) -> WebhookResult:
    """Process one delivery and decide the HTTP answer

    200: processed, or a confirmed duplicate
    400: missing/invalid signature or malformed body (never retried here)
    500: processing failed after retries, or the webhook secret is missing
    503: the same event is still being processed by another delivery, or the
         request deadline leaves no time to process it
    """
    started = time.monotonic()

    try:
        event = ctx.verifier.verify(raw_body, signature_header)
    except ConfigurationError as e:
        webhook_logger.error(f"❌ Rejecting webhook: {e.message}")
        ctx.monitor.record_rejected(e.reason)
        return WebhookResult(500, {"error": "Webhook secret not configured"})
    except (AuthenticationError, MalformedPayloadError) as e:
        webhook_logger.warning(f"Rejected webhook ({e.reason}): {e.message}")
        ctx.monitor.record_rejected(e.reason)
        return WebhookResult(400, {"error": e.message})

    ctx.monitor.record_received(event.type)
    webhook_logger.info(f"📨 Received {event.type} {event.id}")

    with tracer.start_as_current_span("webhook.process") as span:
        span.set_attribute("webhook.event_id", event.id)
        span.set_attribute("webhook.event_type", event.type)

        try:
            if await ctx.dedup.has_been_processed(event.id):
                return _duplicate(event, ctx)

            claim = await ctx.dedup.claim(event)
            if claim.status == ClaimStatus.IN_FLIGHT:
                logger.info(f"{event.id} is in flight elsewhere, waiting up to {ctx.dedup_wait_ms}ms")
                claim = await ctx.dedup.wait_for_claim(event, ctx.dedup_wait_ms, ctx.dedup_poll_ms)
        except Exception as e:
            # Dedup store unreachable: cannot safely run side effects
            webhook_logger.error(f"❌ Dedup check failed for {event.id}: {type(e).__name__}: {e}")
            ctx.monitor.record_failure(event.type, failure_reason(e), _elapsed_ms(started))
            return WebhookResult(500, {"error": "Webhook processing failed", "event_id": event.id})

        if claim.status == ClaimStatus.PROCESSED:
            return _duplicate(event, ctx)
        if claim.status == ClaimStatus.IN_FLIGHT:
            webhook_logger.warning(f"⏳ {event.id} still in flight, asking provider to redeliver")
            ctx.monitor.record_failure(event.type, "in_flight", _elapsed_ms(started))
            return WebhookResult(503, {"error": "Event is already being processed", "event_id": event.id})

        if await ctx.logger.find_success(event.id) is not None:
            # Finished earlier but never marked processed; do not run side effects again
            webhook_logger.warning(f"🔁 {event.id} already has a success log, marking processed")
            await _mark_processed(event, ctx, {"result": "success", "recovered_from_log": True})
            return _duplicate(event, ctx)

        budget_ms = ctx.budgets.processing_budget(_elapsed_ms(started))
        if budget_ms <= 0:
            webhook_logger.warning(f"⏳ No time left to process {event.id} before the request deadline")
            ctx.monitor.record_failure(event.type, "deadline", _elapsed_ms(started))
            await _release(event, ctx, "request deadline reached before processing")
            return WebhookResult(503, {"error": "Request deadline reached", "event_id": event.id})

        attempts = {"count": 0}

        async def _attempt():
            attempts["count"] += 1
            return await dispatch(event, ctx, attempt=attempts["count"], delivery=claim.attempt)

        try:
            outcome = await with_timeout(
                execute_with_retry(_attempt, ctx.retry_policy, f"{event.type} {event.id}"),
                budget_ms,
                "webhook_processing",
            )
        except Exception as e:
            duration = _elapsed_ms(started)
            reason = failure_reason(e)
            span.set_attribute("webhook.outcome", "failure")
            webhook_logger.error(
                f"❌ {event.type} {event.id} failed after {attempts['count']} attempt(s) "
                f"in {duration:.0f}ms ({reason}): {e}"
            )
            ctx.monitor.record_failure(event.type, reason, duration)
            await _release(event, ctx, str(e))
            return WebhookResult(500, {"error": "Webhook processing failed", "event_id": event.id})

        await _mark_processed(event, ctx, {"result": outcome.status, **outcome.detail})

        duration = _elapsed_ms(started)
        span.set_attribute("webhook.outcome", outcome.status)
        ctx.monitor.record_success(event.type, duration)
        webhook_logger.info(f"✅ {event.type} {event.id} processed in {duration:.0f}ms ({outcome.status})")
        return WebhookResult(200, {
            "received": True,
            "event_id": event.id,
            "event_type": event.type,
            "status": outcome.status,
        })


async def _release(event, ctx: WebhookContext, error: str) -> None:
    try:
        await ctx.dedup.release(event.id, error)
    except Exception as e:
        # Lease expiry will free the claim instead
        logger.error(f"Could not release claim for {event.id}: {e}")


async def _mark_processed(event, ctx: WebhookContext, summary: dict) -> None:
    try:
        await ctx.dedup.mark_processed(event.id, summary)
    except Exception as e:
        # Side effects are done and logged; a redelivery finds the preorder terminal
        logger.error(f"Could not mark {event.id} processed: {type(e).__name__}: {e}")


def _duplicate(event, ctx: WebhookContext) -> WebhookResult:
    webhook_logger.info(f"🔁 Duplicate {event.type} {event.id}, skipping")
    ctx.monitor.record_duplicate(event.type)
    return WebhookResult(200, {"received": True, "duplicate": True, "event_id": event.id})
