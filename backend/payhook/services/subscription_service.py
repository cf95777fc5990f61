"""Subscription mirror kept in sync from customer.subscription.* events"""
import logging
from datetime import datetime, timezone
from typing import Callable, Optional, Tuple

from sqlalchemy.orm import Session

from payhook.core.config import settings
from payhook.db.helpers import as_utc, run_in_session
from payhook.models.subscription import Subscription
from payhook.schemas.events import SubscriptionPayload

logger = logging.getLogger(__name__)


def _from_epoch(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def plan_for_price(price_id: Optional[str]) -> str:
    """Map a Stripe price ID to a plan key ('free' when unknown)"""
    if not price_id:
        return "free"
    return settings.SUBSCRIPTION_PRICE_PLANS.get(price_id, "free")


class SubscriptionRepository:
    def __init__(self, session_factory: Callable[[], Session], timeout_ms: Optional[int] = None):
        self.session_factory = session_factory
        self.timeout_ms = timeout_ms or settings.DB_OPERATION_TIMEOUT_MS

    async def upsert(
        self,
        payload: SubscriptionPayload,
        event_created_at: Optional[datetime],
        deleted: bool = False,
    ) -> Tuple[Subscription, bool]:
        """Insert or update the subscription row for `payload`

        Returns ``(row, applied)``. An event older than the last applied one is
        ignored (``applied`` is False) so out-of-order redelivery cannot roll
        state back.
        """
        def _upsert(db: Session) -> Tuple[Subscription, bool]:
            row = db.query(Subscription).filter(
                Subscription.stripe_subscription_id == payload.subscription_id
            ).first()

            last_applied = as_utc(row.last_event_at) if row is not None else None
            if last_applied and event_created_at and event_created_at < last_applied:
                logger.info(
                    f"Skipping stale event for subscription {payload.subscription_id}: "
                    f"{event_created_at.isoformat()} < {last_applied.isoformat()}"
                )
                return row, False

            if row is None:
                row = Subscription(stripe_subscription_id=payload.subscription_id)
                db.add(row)

            row.stripe_customer_id = payload.customer
            row.stripe_price_id = payload.price_id
            row.plan_type = plan_for_price(payload.price_id)
            row.status = "canceled" if deleted else payload.status
            row.current_period_start = _from_epoch(payload.current_period_start)
            row.current_period_end = _from_epoch(payload.current_period_end)
            row.cancel_at_period_end = payload.cancel_at_period_end
            row.canceled_at = _from_epoch(payload.canceled_at)
            row.trial_start = _from_epoch(payload.trial_start)
            row.trial_end = _from_epoch(payload.trial_end)
            row.metadata_json = dict(payload.metadata)
            if payload.metadata.get("userId"):
                row.user_id = payload.metadata["userId"]
            if event_created_at is not None:
                row.last_event_at = event_created_at
            db.flush()
            return row, True

        return await run_in_session(self.session_factory, _upsert, self.timeout_ms, "subscription_upsert")
