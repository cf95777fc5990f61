"""User-account service client"""
from typing import Optional

import httpx

from payhook.core.config import settings
from payhook.services.collaborators.base import CollaboratorResult, HttpCollaborator, logger


class UserAccountClient(HttpCollaborator):
    """Creates or links the buyer's account and mirrors subscription plans"""

    name = "user_accounts"

    def __init__(self, base_url: Optional[str] = None, token: Optional[str] = None,
                 client: Optional[httpx.AsyncClient] = None):
        super().__init__(client=client)
        self.base_url = (settings.USER_SERVICE_URL if base_url is None else base_url).rstrip("/")
        self.token = settings.USER_SERVICE_TOKEN if token is None else token

    @property
    def configured(self) -> bool:
        return bool(self.base_url)

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def create_or_link_account(self, email: str, order_context: dict) -> CollaboratorResult:
        """Returns {"user_id": str, "created": bool}"""
        if not self.configured:
            return CollaboratorResult.skip("user service not configured")

        result = await self._request(
            "POST",
            f"{self.base_url}/users/link",
            json={"email": email, "order": order_context},
            headers=self._headers(),
        )
        if not result.ok:
            return result

        user_id = (result.value or {}).get("user_id")
        if not user_id:
            return CollaboratorResult.failure("user service response had no user_id")
        created = bool(result.value.get("created", False))
        logger.info(f"{'Created' if created else 'Linked'} user {user_id} for {email}")
        return CollaboratorResult.success({"user_id": str(user_id), "created": created})

    async def sync_subscription(self, customer_id: str, subscription: dict) -> CollaboratorResult:
        if not self.configured:
            return CollaboratorResult.skip("user service not configured")

        return await self._request(
            "POST",
            f"{self.base_url}/subscriptions/sync",
            json={"stripe_customer_id": customer_id, "subscription": subscription},
            headers=self._headers(),
        )
