"""WebhookLog model"""
from sqlalchemy import Column, Integer, String, Text, JSON, DateTime, Index, text
from datetime import datetime, timezone
from payhook.models.base import Base

LOG_STATUSES = ("started", "success", "failure", "expired")


class WebhookLog(Base):
    """One row per processing attempt of a provider event"""
    __tablename__ = "webhook_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    provider = Column(String(50), default="stripe", nullable=False)
    event_type = Column(String(100), nullable=False, index=True)
    provider_event_id = Column(String(255), nullable=False, index=True)
    status = Column(String(20), default="started", nullable=False)
    attempt = Column(Integer, default=1, nullable=False)
    preorder_id = Column(String(64), nullable=True, index=True)
    email = Column(String(255), nullable=True)
    detail = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)

    __table_args__ = (
        # At most one success per provider event
        Index(
            "uq_webhook_logs_success_per_event",
            "provider_event_id",
            unique=True,
            sqlite_where=text("status = 'success'"),
            postgresql_where=text("status = 'success'"),
        ),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "provider": self.provider,
            "event_type": self.event_type,
            "provider_event_id": self.provider_event_id,
            "status": self.status,
            "attempt": self.attempt,
            "preorder_id": self.preorder_id,
            "email": self.email,
            "detail": self.detail or {},
            "error": self.error,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
