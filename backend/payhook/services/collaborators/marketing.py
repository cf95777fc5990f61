"""Marketing event dispatcher (Klaviyo Events API)"""
from typing import Optional

import httpx

from payhook.core.config import settings
from payhook.services.collaborators.base import CollaboratorResult, HttpCollaborator

PREORDER_COMPLETED = "Preorder Completed"
ABANDONED_CART = "Abandoned Cart"


class MarketingDispatcher(HttpCollaborator):
    name = "marketing"

    def __init__(self, api_key: Optional[str] = None, api_url: Optional[str] = None,
                 client: Optional[httpx.AsyncClient] = None):
        super().__init__(client=client)
        self.api_key = settings.KLAVIYO_API_KEY if api_key is None else api_key
        self.api_url = (settings.KLAVIYO_API_URL if api_url is None else api_url).rstrip("/")

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def send_event(self, name: str, email: str, properties: dict, unique_id: Optional[str] = None) -> CollaboratorResult:
        if not self.configured:
            return CollaboratorResult.skip("marketing API key not configured")
        if not email:
            return CollaboratorResult.failure("no email for marketing event")

        attributes = {
            "properties": properties,
            "metric": {"data": {"type": "metric", "attributes": {"name": name}}},
            "profile": {"data": {"type": "profile", "attributes": {"email": email}}},
        }
        if unique_id:
            # Lets the marketing platform drop replays of the same event
            attributes["unique_id"] = unique_id

        return await self._request(
            "POST",
            f"{self.api_url}/events/",
            json={"data": {"type": "event", "attributes": attributes}},
            headers={
                "Authorization": f"Klaviyo-API-Key {self.api_key}",
                "revision": settings.KLAVIYO_API_REVISION,
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
        )
