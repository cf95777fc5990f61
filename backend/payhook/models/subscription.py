"""Subscription model"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean, JSON
from datetime import datetime, timezone
from payhook.models.base import Base


class Subscription(Base):
    """Stripe subscription mirrored from customer.subscription.* events"""
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    stripe_subscription_id = Column(String(255), unique=True, nullable=False, index=True)
    stripe_customer_id = Column(String(255), nullable=False, index=True)
    stripe_price_id = Column(String(255), nullable=True)
    user_id = Column(String(255), nullable=True, index=True)
    email = Column(String(255), nullable=True)
    plan_type = Column(String(50), nullable=False, default="free")  # 'free', 'basic', 'pro', 'premium'
    status = Column(String(50), nullable=False)  # 'active', 'canceled', 'incomplete', 'incomplete_expired', 'past_due', 'trialing', 'unpaid'
    current_period_start = Column(DateTime(timezone=True), nullable=True)
    current_period_end = Column(DateTime(timezone=True), nullable=True)
    cancel_at_period_end = Column(Boolean, default=False, nullable=False)
    canceled_at = Column(DateTime(timezone=True), nullable=True)
    trial_start = Column(DateTime(timezone=True), nullable=True)
    trial_end = Column(DateTime(timezone=True), nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    last_event_at = Column(DateTime(timezone=True), nullable=True)  # Provider timestamp of the last applied event
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)
