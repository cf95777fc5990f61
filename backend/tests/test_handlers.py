"""Event router and side-effect handler tests"""
import pytest

from payhook.core.errors import DomainNotFoundError
from payhook.models import Preorder, Subscription, WebhookLog
from payhook.schemas.events import build_event
from payhook.services.collaborators.base import CollaboratorResult
from payhook.services.event_router import HANDLERS, dispatch

from conftest import checkout_session, stripe_event, subscription_object


def _logs(db_session, event_id):
    db_session.expire_all()
    return db_session.query(WebhookLog).filter(WebhookLog.provider_event_id == event_id).all()


@pytest.mark.critical
class TestEventRouter:
    """Test dispatch()"""

    def test_every_handled_type_is_registered(self):
        """Test the dispatch table covers the supported event types"""
        assert set(HANDLERS) == {
            "checkout.session.completed",
            "checkout.session.expired",
            "payment_intent.payment_failed",
            "customer.subscription.created",
            "customer.subscription.updated",
            "customer.subscription.deleted",
            "customer.subscription.trial_will_end",
        }

    @pytest.mark.asyncio
    async def test_unknown_type_logged_as_success(self, webhook_ctx, db_session):
        """Test unhandled event types finish as success with a note"""
        event = build_event(stripe_event("invoice.created", {"object": "invoice"}, event_id="evt_u"))

        outcome = await dispatch(event, webhook_ctx)

        logs = _logs(db_session, "evt_u")
        assert outcome.status == "success"
        assert len(logs) == 1
        assert logs[0].status == "success"
        assert "No handler" in logs[0].detail["note"]

    @pytest.mark.asyncio
    async def test_handler_error_logged_and_reraised(self, webhook_ctx, db_session):
        """Test a failing handler leaves a failure row and re-raises"""
        event = build_event(stripe_event("checkout.session.completed", checkout_session("ord_missing"), event_id="evt_f"))

        with pytest.raises(DomainNotFoundError):
            await dispatch(event, webhook_ctx)

        logs = _logs(db_session, "evt_f")
        assert [log.status for log in logs] == ["failure"]
        assert logs[0].detail["reason"] == "domain_not_found"
        assert logs[0].preorder_id == "ord_missing"


@pytest.mark.critical
class TestCheckoutCompleted:
    """Test the checkout completion handler"""

    @pytest.mark.asyncio
    async def test_completes_preorder_and_runs_side_effects(self, webhook_ctx, db_session, make_preorder, collaborators):
        """Test the preorder is completed and every notification runs once"""
        make_preorder("ord_42", referrer_code="FRIEND")
        event = build_event(stripe_event("checkout.session.completed", checkout_session("ord_42"), event_id="evt_1"))

        outcome = await dispatch(event, webhook_ctx)

        assert outcome.detail["outcome"] == "completed"
        assert outcome.detail["marketing"] == "success"
        assert outcome.detail["commerce"] == "success"
        assert outcome.detail["referral"] == "success"
        assert outcome.detail["user_account"] == "success"
        assert len(collaborators.marketing.calls) == 1
        assert len(collaborators.commerce.calls) == 1

        db_session.expire_all()
        preorder = db_session.get(Preorder, "ord_42")
        assert preorder.status == "completed"
        assert preorder.completed_at is not None
        assert preorder.amount_cents == 12900
        assert preorder.payment_intent_id == "pi_test_123"
        assert preorder.billing_city == "Springfield"
        assert preorder.user_id == "user_1"
        assert preorder.commerce_order_id == "shop_1001"
        assert preorder.marketing_event_sent_at is not None
        assert preorder.referral_reward_cents == 2580

    @pytest.mark.asyncio
    async def test_terminal_preorder_is_not_mutated(self, webhook_ctx, db_session, make_preorder, collaborators):
        """Test a completed preorder is left untouched by a redelivered event"""
        make_preorder("ord_42", status="completed", amount_cents=100)
        event = build_event(stripe_event("checkout.session.completed", checkout_session("ord_42"), event_id="evt_1"))

        outcome = await dispatch(event, webhook_ctx)

        assert outcome.detail["outcome"] == "already_completed"
        assert collaborators.marketing.calls == []
        db_session.expire_all()
        assert db_session.get(Preorder, "ord_42").amount_cents == 100

    @pytest.mark.asyncio
    async def test_second_completion_sends_nothing(self, webhook_ctx, db_session, make_preorder, collaborators):
        """Test notifications for a preorder run once even when its completion is dispatched twice"""
        make_preorder("ord_42")
        first = build_event(stripe_event("checkout.session.completed", checkout_session("ord_42"), event_id="evt_1"))
        second = build_event(stripe_event("checkout.session.completed", checkout_session("ord_42"), event_id="evt_1b"))

        await dispatch(first, webhook_ctx)
        outcome = await dispatch(second, webhook_ctx)

        assert outcome.detail["outcome"] == "already_completed"
        assert "marketing" not in outcome.detail
        assert "commerce" not in outcome.detail
        assert len(collaborators.marketing.calls) == 1
        assert len(collaborators.commerce.calls) == 1
        db_session.expire_all()
        assert db_session.get(Preorder, "ord_42").commerce_order_id == "shop_1001"

    @pytest.mark.asyncio
    async def test_marketing_timeout_is_not_fatal(self, webhook_ctx, db_session, make_preorder, collaborators):
        """Test a slow marketing call is recorded as timeout while the rest succeeds"""
        make_preorder("ord_42")
        collaborators.marketing.delay = 1.0
        event = build_event(stripe_event("checkout.session.completed", checkout_session("ord_42"), event_id="evt_3"))

        outcome = await dispatch(event, webhook_ctx)

        assert outcome.status == "success"
        assert outcome.detail["marketing"] == "timeout"
        assert outcome.detail["commerce"] == "success"
        db_session.expire_all()
        preorder = db_session.get(Preorder, "ord_42")
        assert preorder.status == "completed"
        assert preorder.marketing_event_sent_at is None

    @pytest.mark.asyncio
    async def test_commerce_failure_is_recorded(self, webhook_ctx, db_session, make_preorder, collaborators):
        """Test a failed order sync stores the error for later inspection"""
        make_preorder("ord_42")
        collaborators.commerce.result = CollaboratorResult.failure("HTTP 422: invalid address")
        event = build_event(stripe_event("checkout.session.completed", checkout_session("ord_42"), event_id="evt_c"))

        outcome = await dispatch(event, webhook_ctx)

        assert outcome.detail["commerce"] == "failed"
        db_session.expire_all()
        preorder = db_session.get(Preorder, "ord_42")
        assert preorder.commerce_error == "HTTP 422: invalid address"
        assert preorder.commerce_last_attempt_at is not None

    @pytest.mark.asyncio
    async def test_collaborator_exception_is_contained(self, webhook_ctx, make_preorder, collaborators):
        """Test an exception inside a non-critical step does not fail the event"""
        make_preorder("ord_42")
        collaborators.user_accounts.exc = RuntimeError("bug")
        event = build_event(stripe_event("checkout.session.completed", checkout_session("ord_42"), event_id="evt_x"))

        outcome = await dispatch(event, webhook_ctx)

        assert outcome.status == "success"
        assert outcome.detail["user_account"] == "failed"

    @pytest.mark.asyncio
    async def test_missing_preorder_metadata(self, webhook_ctx):
        """Test a session without preorderId is a non-retryable failure"""
        event = build_event(stripe_event("checkout.session.completed", checkout_session(None), event_id="evt_m"))

        with pytest.raises(DomainNotFoundError):
            await dispatch(event, webhook_ctx)

    @pytest.mark.asyncio
    async def test_subscription_mode_checkout(self, webhook_ctx, collaborators):
        """Test subscription checkouts do not touch preorders"""
        session = checkout_session(None, mode="subscription", subscription="sub_1")
        event = build_event(stripe_event("checkout.session.completed", session, event_id="evt_s"))

        outcome = await dispatch(event, webhook_ctx)

        assert outcome.detail["mode"] == "subscription"
        assert collaborators.marketing.calls == []


@pytest.mark.high
class TestCheckoutExpired:
    """Test the checkout expiry handler"""

    @pytest.mark.asyncio
    async def test_expired_status_and_abandoned_cart(self, webhook_ctx, db_session, collaborators):
        """Test expiry is logged as expired and triggers an abandoned-cart event"""
        event = build_event(stripe_event("checkout.session.expired", checkout_session("ord_42"), event_id="evt_e"))

        outcome = await dispatch(event, webhook_ctx)

        assert outcome.status == "expired"
        assert outcome.detail["abandoned_cart"] == "success"
        assert collaborators.marketing.calls[0][0] == "Abandoned Cart"
        assert _logs(db_session, "evt_e")[0].status == "expired"


@pytest.mark.high
class TestPaymentFailed:
    """Test the payment failure handler"""

    def _event(self, event_id="evt_p"):
        intent = {
            "id": "pi_1",
            "object": "payment_intent",
            "last_payment_error": {"code": "card_declined", "message": "Your card was declined."},
            "metadata": {"preorderId": "ord_42"},
        }
        return build_event(stripe_event("payment_intent.payment_failed", intent, event_id=event_id))

    @pytest.mark.asyncio
    async def test_pending_preorder_marked_failed(self, webhook_ctx, db_session, make_preorder):
        """Test a pending preorder moves to failed with the provider error"""
        make_preorder("ord_42", status="processing")

        outcome = await dispatch(self._event(), webhook_ctx)

        assert outcome.detail["outcome"] == "payment_failed"
        assert outcome.detail["preorder_updated"] is True
        db_session.expire_all()
        preorder = db_session.get(Preorder, "ord_42")
        assert preorder.status == "failed"
        assert preorder.payment_error == "Your card was declined."

    @pytest.mark.asyncio
    async def test_completed_preorder_untouched(self, webhook_ctx, db_session, make_preorder):
        """Test a late payment failure cannot undo a completed preorder"""
        make_preorder("ord_42", status="completed")

        outcome = await dispatch(self._event(), webhook_ctx)

        assert outcome.detail["preorder_updated"] is False
        db_session.expire_all()
        assert db_session.get(Preorder, "ord_42").status == "completed"


@pytest.mark.high
class TestSubscriptionEvents:
    """Test subscription lifecycle handling"""

    @pytest.mark.asyncio
    async def test_created_then_deleted(self, webhook_ctx, db_session, collaborators):
        """Test the subscription row follows created and deleted events"""
        created = build_event(stripe_event(
            "customer.subscription.created", subscription_object(), event_id="evt_s1", created=1700000000
        ))
        deleted = build_event(stripe_event(
            "customer.subscription.deleted", subscription_object(status="canceled"), event_id="evt_s2", created=1700000100
        ))

        await dispatch(created, webhook_ctx)
        outcome = await dispatch(deleted, webhook_ctx)

        assert outcome.detail["applied"] is True
        db_session.expire_all()
        row = db_session.query(Subscription).filter(Subscription.stripe_subscription_id == "sub_123").one()
        assert row.status == "canceled"
        assert row.stripe_customer_id == "cus_123"
        assert len(collaborators.user_accounts.calls) == 2

    @pytest.mark.asyncio
    async def test_stale_event_is_ignored(self, webhook_ctx, db_session, collaborators):
        """Test an older event arriving late does not roll state back"""
        newer = build_event(stripe_event(
            "customer.subscription.updated", subscription_object(status="past_due"), event_id="evt_new", created=1700000200
        ))
        older = build_event(stripe_event(
            "customer.subscription.updated", subscription_object(status="active"), event_id="evt_old", created=1700000100
        ))

        await dispatch(newer, webhook_ctx)
        outcome = await dispatch(older, webhook_ctx)

        assert outcome.detail["applied"] is False
        assert outcome.detail["user_sync"] == "skipped"
        db_session.expire_all()
        row = db_session.query(Subscription).filter(Subscription.stripe_subscription_id == "sub_123").one()
        assert row.status == "past_due"
