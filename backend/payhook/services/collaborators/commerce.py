"""E-commerce order sync (Shopify Admin API)"""
from typing import Optional

import httpx

from payhook.core.config import settings
from payhook.services.collaborators.base import CollaboratorResult, HttpCollaborator


def _order_payload(order_context: dict) -> dict:
    billing = order_context.get("billing") or {}
    amount = (order_context.get("amount_cents") or 0) / 100
    address = {
        "name": billing.get("name"),
        "address1": billing.get("line1"),
        "address2": billing.get("line2"),
        "city": billing.get("city"),
        "province": billing.get("state"),
        "zip": billing.get("postal_code"),
        "country_code": billing.get("country"),
        "phone": order_context.get("phone"),
    }
    return {
        "order": {
            "email": order_context.get("email"),
            "phone": order_context.get("phone"),
            "currency": (order_context.get("currency") or "usd").upper(),
            "financial_status": "paid",
            "send_receipt": False,
            "line_items": [{
                "title": "Preorder",
                "variant_title": order_context.get("color"),
                "quantity": 1,
                "price": f"{amount:.2f}",
            }],
            "billing_address": address,
            "shipping_address": address,
            "note_attributes": [
                {"name": "preorder_id", "value": order_context.get("preorder_id")},
                {"name": "stripe_session_id", "value": order_context.get("session_id")},
                {"name": "stripe_payment_intent", "value": order_context.get("payment_intent_id")},
            ],
            "tags": "preorder,stripe",
        }
    }


class CommerceSyncClient(HttpCollaborator):
    name = "commerce"

    def __init__(self, store_domain: Optional[str] = None, access_token: Optional[str] = None,
                 client: Optional[httpx.AsyncClient] = None):
        super().__init__(client=client)
        self.store_domain = settings.SHOPIFY_STORE_DOMAIN if store_domain is None else store_domain
        self.access_token = settings.SHOPIFY_ACCESS_TOKEN if access_token is None else access_token

    @property
    def configured(self) -> bool:
        return bool(self.store_domain and self.access_token)

    async def create_remote_order(self, order_context: dict) -> CollaboratorResult:
        """Returns {"order_id": str, "order_number": str}"""
        if not self.configured:
            return CollaboratorResult.skip("commerce store not configured")

        result = await self._request(
            "POST",
            f"https://{self.store_domain}/admin/api/{settings.SHOPIFY_API_VERSION}/orders.json",
            json=_order_payload(order_context),
            headers={
                "X-Shopify-Access-Token": self.access_token,
                "Content-Type": "application/json",
            },
        )
        if not result.ok:
            return result

        order = (result.value or {}).get("order") or {}
        if not order.get("id"):
            return CollaboratorResult.failure("commerce response had no order id")
        return CollaboratorResult.success({
            "order_id": str(order["id"]),
            "order_number": str(order.get("order_number") or order.get("name") or ""),
        })
