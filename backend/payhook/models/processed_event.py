"""ProcessedWebhookEvent model"""
from sqlalchemy import Column, Integer, String, Text, JSON, DateTime
from datetime import datetime, timezone
from payhook.models.base import Base

OUTCOME_IN_PROGRESS = "in_progress"
OUTCOME_PROCESSED = "processed"
OUTCOME_FAILED = "failed"


class ProcessedWebhookEvent(Base):
    """Idempotency record: one row per provider event ID ever observed"""
    __tablename__ = "processed_webhook_events"

    provider_event_id = Column(String(255), primary_key=True)
    event_type = Column(String(100), nullable=False)
    outcome = Column(String(20), default=OUTCOME_IN_PROGRESS, nullable=False, index=True)
    attempts = Column(Integer, default=1, nullable=False)
    lease_expires_at = Column(DateTime(timezone=True), nullable=True)
    summary = Column(JSON, nullable=True)
    last_error = Column(Text, nullable=True)
    seen_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "provider_event_id": self.provider_event_id,
            "event_type": self.event_type,
            "outcome": self.outcome,
            "attempts": self.attempts,
            "summary": self.summary or {},
            "last_error": self.last_error,
            "seen_at": self.seen_at.isoformat() if self.seen_at else None,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
        }
