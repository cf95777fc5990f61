"""Collaborator client tests (HTTP mocked with httpx.MockTransport)"""
import json

import httpx
import pytest

from payhook.services.collaborators.commerce import CommerceSyncClient
from payhook.services.collaborators.marketing import PREORDER_COMPLETED, MarketingDispatcher
from payhook.services.collaborators.referrals import ReferralCalculator
from payhook.services.collaborators.user_accounts import UserAccountClient


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


ORDER_CONTEXT = {
    "preorder_id": "ord_42",
    "email": "buyer@example.com",
    "phone": "+15555550100",
    "color": "black",
    "amount_cents": 12900,
    "currency": "usd",
    "session_id": "cs_1",
    "payment_intent_id": "pi_1",
    "billing": {"name": "Ada Buyer", "line1": "1 Main St", "city": "Springfield", "country": "US"},
}


@pytest.mark.high
class TestMarketingDispatcher:
    """Test the marketing event client"""

    @pytest.mark.asyncio
    async def test_sends_event(self):
        """Test the event request carries metric, profile and API key"""
        seen = {}

        def handler(request: httpx.Request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(202)

        dispatcher = MarketingDispatcher(api_key="pk_test", api_url="https://mk.test/api", client=mock_client(handler))

        result = await dispatcher.send_event(PREORDER_COMPLETED, "buyer@example.com", {"preorder_id": "ord_42"}, unique_id="evt_1")

        assert result.ok
        assert seen["url"] == "https://mk.test/api/events/"
        assert seen["auth"] == "Klaviyo-API-Key pk_test"
        attributes = seen["body"]["data"]["attributes"]
        assert attributes["metric"]["data"]["attributes"]["name"] == "Preorder Completed"
        assert attributes["profile"]["data"]["attributes"]["email"] == "buyer@example.com"
        assert attributes["unique_id"] == "evt_1"

    @pytest.mark.asyncio
    async def test_error_status_is_failure_result(self):
        """Test a 5xx answer becomes a failure result, not an exception"""
        dispatcher = MarketingDispatcher(
            api_key="pk_test", api_url="https://mk.test/api",
            client=mock_client(lambda request: httpx.Response(503, text="unavailable")),
        )

        result = await dispatcher.send_event(PREORDER_COMPLETED, "buyer@example.com", {})

        assert not result.ok
        assert "503" in result.error

    @pytest.mark.asyncio
    async def test_network_error_is_failure_result(self):
        """Test connection errors become failure results"""
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        dispatcher = MarketingDispatcher(api_key="pk_test", api_url="https://mk.test/api", client=mock_client(handler))

        result = await dispatcher.send_event(PREORDER_COMPLETED, "buyer@example.com", {})

        assert not result.ok
        assert "ConnectError" in result.error

    @pytest.mark.asyncio
    async def test_unconfigured_is_skipped(self):
        """Test a missing API key skips the call"""
        result = await MarketingDispatcher(api_key="").send_event(PREORDER_COMPLETED, "a@example.com", {})

        assert result.ok and result.skipped


@pytest.mark.high
class TestCommerceSyncClient:
    """Test the order sync client"""

    @pytest.mark.asyncio
    async def test_creates_order(self):
        """Test a created order returns its remote ID and number"""
        seen = {}

        def handler(request: httpx.Request):
            seen["token"] = request.headers["X-Shopify-Access-Token"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json={"order": {"id": 555, "order_number": 1001}})

        commerce = CommerceSyncClient(store_domain="shop.test", access_token="shpat_1", client=mock_client(handler))

        result = await commerce.create_remote_order(ORDER_CONTEXT)

        assert result.ok
        assert result.value == {"order_id": "555", "order_number": "1001"}
        assert seen["token"] == "shpat_1"
        assert seen["body"]["order"]["line_items"][0]["price"] == "129.00"
        assert seen["body"]["order"]["currency"] == "USD"

    @pytest.mark.asyncio
    async def test_response_without_order_is_failure(self):
        """Test a response missing the order ID is a failure"""
        commerce = CommerceSyncClient(
            store_domain="shop.test", access_token="shpat_1",
            client=mock_client(lambda request: httpx.Response(200, json={})),
        )

        result = await commerce.create_remote_order(ORDER_CONTEXT)

        assert not result.ok


@pytest.mark.high
class TestUserAccountClient:
    """Test the user-account client"""

    @pytest.mark.asyncio
    async def test_links_account(self):
        """Test the linked user ID is returned"""
        def handler(request: httpx.Request):
            assert request.headers["Authorization"] == "Bearer svc_token"
            return httpx.Response(200, json={"user_id": 7, "created": False})

        accounts = UserAccountClient(base_url="https://users.test", token="svc_token", client=mock_client(handler))

        result = await accounts.create_or_link_account("buyer@example.com", ORDER_CONTEXT)

        assert result.ok
        assert result.value == {"user_id": "7", "created": False}

    @pytest.mark.asyncio
    async def test_unconfigured_is_skipped(self):
        """Test a missing service URL skips the call"""
        result = await UserAccountClient(base_url="").create_or_link_account("a@example.com", {})

        assert result.skipped


@pytest.mark.medium
class TestReferralCalculator:
    """Test referral rewards"""

    @pytest.mark.asyncio
    async def test_percentage_reward(self):
        """Test reward is a percentage of the order total"""
        result = await ReferralCalculator(reward_percent=20, enabled=True).compute_reward("FRIEND", 12900)

        assert result.ok
        assert result.value["reward_cents"] == 2580

    @pytest.mark.asyncio
    async def test_no_code_is_skipped(self):
        """Test orders without a referrer code are skipped"""
        result = await ReferralCalculator(enabled=True).compute_reward(None, 12900)

        assert result.skipped

    @pytest.mark.asyncio
    async def test_zero_amount_fails(self):
        """Test a zero total cannot earn a reward"""
        result = await ReferralCalculator(enabled=True).compute_reward("FRIEND", 0)

        assert not result.ok
