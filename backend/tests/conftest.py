"""Shared pytest fixtures for test suite"""
import asyncio
import hashlib
import hmac
import json
import os
import sys
import time
from pathlib import Path
from typing import Generator, Optional
from unittest.mock import patch

import fakeredis
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from payhook.main import app
from payhook.api.webhooks import get_webhook_context
from payhook.db import redis as redis_module
from payhook.models import Base, Preorder
from payhook.services.collaborators.base import CollaboratorResult
from payhook.services.collaborators.referrals import ReferralCalculator
from payhook.services.context import Budgets, Collaborators, WebhookContext
from payhook.services.monitor_service import InMemoryMetricsSink, WebhookMonitor
from payhook.services.reliability import RetryPolicy
from payhook.services.signature_service import SignatureVerifier


TEST_WEBHOOK_SECRET = "whsec_test_secret"

# SQLite in-memory database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"

# Create test engine with StaticPool for in-memory database
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Create test session factory
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


# ============================================================================
# FAKE COLLABORATORS
# ============================================================================

class FakeCollaborator:
    """Records calls; optionally sleeps, fails or raises"""

    def __init__(self, result: Optional[CollaboratorResult] = None, delay: float = 0.0, exc: Exception = None):
        self.result = result
        self.delay = delay
        self.exc = exc
        self.calls = []

    async def _respond(self, default: CollaboratorResult, *args):
        self.calls.append(args)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.exc is not None:
            raise self.exc
        return self.result if self.result is not None else default


class FakeUserAccounts(FakeCollaborator):
    async def create_or_link_account(self, email, order_context):
        return await self._respond(CollaboratorResult.success({"user_id": "user_1", "created": True}), email, order_context)

    async def sync_subscription(self, customer_id, subscription):
        return await self._respond(CollaboratorResult.success({}), customer_id, subscription)


class FakeMarketing(FakeCollaborator):
    async def send_event(self, name, email, properties, unique_id=None):
        return await self._respond(CollaboratorResult.success({}), name, email, properties, unique_id)


class FakeCommerce(FakeCollaborator):
    async def create_remote_order(self, order_context):
        return await self._respond(
            CollaboratorResult.success({"order_id": "shop_1001", "order_number": "1001"}), order_context
        )


# ============================================================================
# DATABASE / REDIS
# ============================================================================

@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh SQLite in-memory database session for each test"""
    # Create all tables
    Base.metadata.create_all(bind=test_engine)

    # Create session
    session = TestSessionLocal()

    try:
        yield session
    finally:
        session.close()
        # Drop all tables after test
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def mock_redis():
    """Mock Redis client using fakeredis"""
    fake_redis = fakeredis.FakeStrictRedis(decode_responses=True)
    redis_module.set_redis_client(fake_redis)
    try:
        yield fake_redis
    finally:
        redis_module.set_redis_client(None)


@pytest.fixture
def make_preorder(db_session: Session):
    """Factory inserting a preorder row"""
    def _make(preorder_id: str = "ord_42", status: str = "initiated", **fields) -> Preorder:
        fields.setdefault("email", "buyer@example.com")
        fields.setdefault("color", "black")
        fields.setdefault("preorder_number", "PO-0042")
        preorder = Preorder(id=preorder_id, status=status, **fields)
        db_session.add(preorder)
        db_session.commit()
        db_session.refresh(preorder)
        return preorder

    return _make


# ============================================================================
# PIPELINE CONTEXT
# ============================================================================

@pytest.fixture
def monitor() -> WebhookMonitor:
    return WebhookMonitor(InMemoryMetricsSink())


@pytest.fixture
def collaborators() -> Collaborators:
    return Collaborators(
        user_accounts=FakeUserAccounts(),
        marketing=FakeMarketing(),
        commerce=FakeCommerce(),
        referrals=ReferralCalculator(reward_percent=20, enabled=True),
    )


@pytest.fixture
def budgets() -> Budgets:
    return Budgets(
        processing_ms=5000,
        db_ms=2000,
        user_creation_ms=500,
        marketing_ms=100,
        commerce_ms=500,
        referral_ms=500,
    )


@pytest.fixture
def webhook_ctx(db_session, mock_redis, monitor, collaborators, budgets) -> WebhookContext:
    """Pipeline context wired to the test database, fakes and zero retry delay"""
    ctx = WebhookContext.build(
        TestSessionLocal,
        monitor=monitor,
        collaborators=collaborators,
        verifier=SignatureVerifier(secret=TEST_WEBHOOK_SECRET, tolerance_seconds=300),
        retry_policy=RetryPolicy(max_retries=2, base_delay_ms=0, max_delay_ms=0),
        budgets=budgets,
    )
    ctx.dedup_wait_ms = 50
    ctx.dedup_poll_ms = 10
    return ctx


@pytest.fixture(scope="function")
def client(webhook_ctx) -> Generator[TestClient, None, None]:
    """FastAPI test client with test database, fakes and mocked Redis"""
    app.dependency_overrides[get_webhook_context] = lambda: webhook_ctx

    try:
        # Disable OpenTelemetry instrumentation in tests
        with patch('payhook.core.otel.initialize_otel', return_value=False):
            with patch('payhook.core.otel.setup_otel_logging', return_value=False):
                with TestClient(app) as test_client:
                    yield test_client
    finally:
        # Cleanup - always clear overrides
        app.dependency_overrides.clear()


# ============================================================================
# SIGNED EVENTS
# ============================================================================

def sign(payload: str, secret: str = TEST_WEBHOOK_SECRET, timestamp: int = None) -> str:
    """Build a Stripe-Signature header for `payload`"""
    timestamp = int(time.time()) if timestamp is None else timestamp
    digest = hmac.new(secret.encode("utf-8"), f"{timestamp}.{payload}".encode("utf-8"), hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def stripe_event(event_type: str, data_object: dict, event_id: str = "evt_test", created: int = None) -> dict:
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": int(time.time()) if created is None else created,
        "livemode": False,
        "data": {"object": data_object},
    }


def checkout_session(preorder_id: Optional[str] = "ord_42", **overrides) -> dict:
    session = {
        "id": "cs_test_123",
        "object": "checkout.session",
        "mode": "payment",
        "status": "complete",
        "payment_status": "paid",
        "amount_total": 12900,
        "currency": "usd",
        "payment_intent": "pi_test_123",
        "customer_details": {
            "email": "buyer@example.com",
            "name": "Ada Buyer",
            "phone": "+15555550100",
            "address": {
                "line1": "1 Main St",
                "city": "Springfield",
                "state": "IL",
                "postal_code": "62701",
                "country": "US",
            },
        },
        "metadata": {"preorderId": preorder_id} if preorder_id else {},
    }
    session.update(overrides)
    return session


def subscription_object(subscription_id: str = "sub_123", status: str = "active", **overrides) -> dict:
    sub = {
        "id": subscription_id,
        "object": "subscription",
        "customer": "cus_123",
        "status": status,
        "cancel_at_period_end": False,
        "current_period_start": 1700000000,
        "current_period_end": 1702592000,
        "items": {"data": [{"price": {"id": "price_pro"}}]},
        "metadata": {},
    }
    sub.update(overrides)
    return sub


@pytest.fixture
def post_event(client):
    """POST a signed event to the webhook endpoint"""
    def _post(event: dict, secret: str = TEST_WEBHOOK_SECRET, signature: str = None):
        body = json.dumps(event)
        headers = {
            "Content-Type": "application/json",
            "Stripe-Signature": signature if signature is not None else sign(body, secret),
        }
        return client.post("/api/webhooks/stripe", content=body, headers=headers)

    return _post
