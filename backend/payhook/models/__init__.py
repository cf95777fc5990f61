"""SQLAlchemy models package - imports all models so they register with Base.metadata"""
from payhook.models.base import Base
from payhook.models.preorder import Preorder
from payhook.models.subscription import Subscription
from payhook.models.webhook_log import WebhookLog
from payhook.models.processed_event import ProcessedWebhookEvent

# Export all for convenience
__all__ = [
    "Base", "Preorder", "Subscription", "WebhookLog", "ProcessedWebhookEvent"
]
