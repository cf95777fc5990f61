"""Preorder model"""
from sqlalchemy import Column, Integer, String, DateTime, Text
from datetime import datetime, timezone
from payhook.models.base import Base

PREORDER_STATUSES = ("initiated", "processing", "completed", "failed", "refunded", "cancelled")
TERMINAL_PREORDER_STATUSES = ("completed", "refunded", "cancelled")


class Preorder(Base):
    """Preorder created by the storefront before checkout; completed by webhooks"""
    __tablename__ = "preorders"

    id = Column(String(64), primary_key=True)
    user_id = Column(String(255), nullable=True, index=True)  # Set once the user-account service links the buyer
    email = Column(String(255), nullable=True, index=True)
    color = Column(String(50), nullable=True)
    price_id = Column(String(255), nullable=True)
    status = Column(String(20), default="initiated", nullable=False, index=True)
    preorder_number = Column(String(50), nullable=True)
    locale = Column(String(10), nullable=True)
    referrer_code = Column(String(100), nullable=True)

    # Payment
    session_id = Column(String(255), nullable=True)
    payment_intent_id = Column(String(255), nullable=True)
    amount_cents = Column(Integer, nullable=True)
    currency = Column(String(3), nullable=True)
    payment_error = Column(Text, nullable=True)

    # Billing
    phone = Column(String(50), nullable=True)
    billing_name = Column(String(255), nullable=True)
    billing_address_line1 = Column(String(255), nullable=True)
    billing_address_line2 = Column(String(255), nullable=True)
    billing_city = Column(String(100), nullable=True)
    billing_state = Column(String(100), nullable=True)
    billing_postal_code = Column(String(20), nullable=True)
    billing_country = Column(String(2), nullable=True)

    # Side-effect bookkeeping
    marketing_event_sent_at = Column(DateTime(timezone=True), nullable=True)
    commerce_order_id = Column(String(255), nullable=True)
    commerce_order_number = Column(String(50), nullable=True)
    commerce_synced_at = Column(DateTime(timezone=True), nullable=True)
    commerce_error = Column(Text, nullable=True)
    commerce_last_attempt_at = Column(DateTime(timezone=True), nullable=True)
    referral_reward_cents = Column(Integer, nullable=True)

    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_PREORDER_STATUSES
