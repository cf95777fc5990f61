"""Request-scoped dependencies of the webhook pipeline"""
from dataclasses import dataclass, field
from typing import Callable, Optional

from sqlalchemy.orm import Session

from payhook.core.config import settings
from payhook.services.collaborators.commerce import CommerceSyncClient
from payhook.services.collaborators.marketing import MarketingDispatcher
from payhook.services.collaborators.referrals import ReferralCalculator
from payhook.services.collaborators.user_accounts import UserAccountClient
from payhook.services.idempotency_service import DeduplicationStore
from payhook.services.monitor_service import WebhookMonitor, webhook_monitor
from payhook.services.preorder_service import PreorderRepository
from payhook.services.reliability import RetryPolicy
from payhook.services.signature_service import SignatureVerifier
from payhook.services.subscription_service import SubscriptionRepository
from payhook.services.webhook_log_service import ProcessingLogger


@dataclass(frozen=True)
class Budgets:
    """Per-operation time budgets in milliseconds"""
    processing_ms: int = 25000
    db_ms: int = 8000
    user_creation_ms: int = 10000
    marketing_ms: int = 5000
    commerce_ms: int = 8000
    referral_ms: int = 5000
    request_deadline_ms: int = 30000
    headroom_ms: int = 2000

    @classmethod
    def from_settings(cls) -> "Budgets":
        return cls(
            processing_ms=settings.WEBHOOK_PROCESSING_TIMEOUT_MS,
            db_ms=settings.DB_OPERATION_TIMEOUT_MS,
            user_creation_ms=settings.USER_CREATION_TIMEOUT_MS,
            marketing_ms=settings.MARKETING_EVENT_TIMEOUT_MS,
            commerce_ms=settings.COMMERCE_SYNC_TIMEOUT_MS,
            referral_ms=settings.REFERRAL_TIMEOUT_MS,
            request_deadline_ms=settings.REQUEST_DEADLINE_MS,
            headroom_ms=settings.DEADLINE_HEADROOM_MS,
        )

    def processing_budget(self, elapsed_ms: float) -> int:
        """Processing time left once `elapsed_ms` of the request deadline is spent

        Never more than `processing_ms`; zero or less means no time is left.
        """
        remaining = self.request_deadline_ms - self.headroom_ms - int(elapsed_ms)
        return min(self.processing_ms, remaining)


@dataclass
class Collaborators:
    user_accounts: UserAccountClient = field(default_factory=UserAccountClient)
    marketing: MarketingDispatcher = field(default_factory=MarketingDispatcher)
    commerce: CommerceSyncClient = field(default_factory=CommerceSyncClient)
    referrals: ReferralCalculator = field(default_factory=ReferralCalculator)


@dataclass
class WebhookContext:
    verifier: SignatureVerifier
    dedup: DeduplicationStore
    logger: ProcessingLogger
    monitor: WebhookMonitor
    preorders: PreorderRepository
    subscriptions: SubscriptionRepository
    collaborators: Collaborators
    retry_policy: RetryPolicy
    budgets: Budgets
    dedup_wait_ms: int = 2000
    dedup_poll_ms: int = 250

    @classmethod
    def build(
        cls,
        session_factory: Callable[[], Session],
        monitor: Optional[WebhookMonitor] = None,
        collaborators: Optional[Collaborators] = None,
        verifier: Optional[SignatureVerifier] = None,
        retry_policy: Optional[RetryPolicy] = None,
        budgets: Optional[Budgets] = None,
        use_cache: bool = True,
    ) -> "WebhookContext":
        monitor = monitor or webhook_monitor
        budgets = budgets or Budgets.from_settings()
        return cls(
            verifier=verifier or SignatureVerifier(),
            dedup=DeduplicationStore(session_factory, timeout_ms=budgets.db_ms, use_cache=use_cache),
            logger=ProcessingLogger(session_factory, monitor, timeout_ms=budgets.db_ms),
            monitor=monitor,
            preorders=PreorderRepository(session_factory, timeout_ms=budgets.db_ms),
            subscriptions=SubscriptionRepository(session_factory, timeout_ms=budgets.db_ms),
            collaborators=collaborators or Collaborators(),
            retry_policy=retry_policy or RetryPolicy.from_settings(),
            budgets=budgets,
            dedup_wait_ms=settings.DEDUP_WAIT_MS,
            dedup_poll_ms=settings.DEDUP_POLL_INTERVAL_MS,
        )
