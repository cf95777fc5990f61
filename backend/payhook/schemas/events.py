"""Pydantic schemas for provider webhook events

`data.object` is parsed once into a tagged union so handlers never reach into
raw dictionaries.
"""
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from payhook.core.errors import MalformedPayloadError


def _expandable_id(value):
    """Stripe fields like `payment_intent` are an ID or an expanded object"""
    if isinstance(value, dict):
        return value.get("id")
    return value


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)


class Address(_Payload):
    line1: Optional[str] = None
    line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None


class CustomerDetails(_Payload):
    email: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[Address] = None


class CheckoutSessionPayload(_Payload):
    """checkout.session.completed / checkout.session.expired"""
    kind: Literal["checkout_session"] = "checkout_session"
    session_id: str = Field(alias="id")
    mode: Optional[str] = None  # 'payment' (preorder) or 'subscription'
    status: Optional[str] = None
    payment_status: Optional[str] = None
    customer_email: Optional[str] = None
    customer_details: Optional[CustomerDetails] = None
    amount_total: Optional[int] = None
    currency: Optional[str] = None
    locale: Optional[str] = None
    payment_intent: Optional[str] = None
    subscription: Optional[str] = None
    metadata: Dict[str, str] = {}

    @field_validator("payment_intent", "subscription", mode="before")
    @classmethod
    def normalize_ids(cls, v):
        return _expandable_id(v)

    @property
    def email(self) -> Optional[str]:
        if self.customer_details and self.customer_details.email:
            return self.customer_details.email
        return self.customer_email or self.metadata.get("email")

    @property
    def preorder_id(self) -> Optional[str]:
        return self.metadata.get("preorderId") or self.metadata.get("preorder_id")

    @property
    def referrer_code(self) -> Optional[str]:
        return self.metadata.get("referrerCode") or self.metadata.get("referrer_code")


class PaymentError(_Payload):
    code: Optional[str] = None
    decline_code: Optional[str] = None
    message: Optional[str] = None


class PaymentIntentPayload(_Payload):
    """payment_intent.payment_failed"""
    kind: Literal["payment_intent"] = "payment_intent"
    payment_intent_id: str = Field(alias="id")
    amount: Optional[int] = None
    currency: Optional[str] = None
    receipt_email: Optional[str] = None
    last_payment_error: Optional[PaymentError] = None
    metadata: Dict[str, str] = {}

    @property
    def preorder_id(self) -> Optional[str]:
        return self.metadata.get("preorderId") or self.metadata.get("preorder_id")

    @property
    def error_message(self) -> str:
        if self.last_payment_error and self.last_payment_error.message:
            return self.last_payment_error.message
        return "Payment failed"


class SubscriptionPayload(_Payload):
    """customer.subscription.created/updated/deleted/trial_will_end"""
    kind: Literal["subscription"] = "subscription"
    subscription_id: str = Field(alias="id")
    customer: str
    status: str
    price_id: Optional[str] = None
    current_period_start: Optional[int] = None
    current_period_end: Optional[int] = None
    cancel_at_period_end: bool = False
    canceled_at: Optional[int] = None
    trial_start: Optional[int] = None
    trial_end: Optional[int] = None
    metadata: Dict[str, str] = {}

    @model_validator(mode="before")
    @classmethod
    def flatten_items(cls, data):
        """Pull price and period out of `items.data[0]` (newer API versions keep them there)"""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        data["customer"] = _expandable_id(data.get("customer"))
        items = (data.get("items") or {}).get("data") or []
        if items:
            first = items[0] or {}
            price = first.get("price") or {}
            data.setdefault("price_id", price.get("id") if isinstance(price, dict) else price)
            for key in ("current_period_start", "current_period_end"):
                if data.get(key) is None and first.get(key) is not None:
                    data[key] = first[key]
        return data


class UnrecognizedPayload(_Payload):
    """Any event type without a handler"""
    kind: Literal["unrecognized"] = "unrecognized"
    object: Optional[str] = None
    raw: Dict[str, Any] = {}


EventPayload = Annotated[
    Union[CheckoutSessionPayload, PaymentIntentPayload, SubscriptionPayload, UnrecognizedPayload],
    Field(discriminator="kind"),
]

# Event type -> payload model
PAYLOAD_MODELS = {
    "checkout.session.completed": CheckoutSessionPayload,
    "checkout.session.expired": CheckoutSessionPayload,
    "payment_intent.payment_failed": PaymentIntentPayload,
    "customer.subscription.created": SubscriptionPayload,
    "customer.subscription.updated": SubscriptionPayload,
    "customer.subscription.deleted": SubscriptionPayload,
    "customer.subscription.trial_will_end": SubscriptionPayload,
}


class WebhookEvent(BaseModel):
    """Authenticated provider event. Immutable once constructed."""
    model_config = ConfigDict(frozen=True)

    id: str
    type: str
    created: Optional[int] = None
    livemode: bool = False
    payload: EventPayload
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def created_at(self) -> Optional[datetime]:
        if self.created is None:
            return None
        return datetime.fromtimestamp(self.created, tz=timezone.utc)


def parse_payload(event_type: str, data_object: Dict[str, Any]):
    """Parse `data.object` into the payload variant for `event_type`"""
    model = PAYLOAD_MODELS.get(event_type)
    if model is None:
        return UnrecognizedPayload(object=data_object.get("object"), raw=data_object)
    try:
        return model.model_validate(data_object)
    except ValidationError as e:
        raise MalformedPayloadError(
            f"Invalid {event_type} payload: {e.error_count()} validation error(s)",
            detail={"event_type": event_type},
        ) from e


def build_event(raw: Dict[str, Any]) -> WebhookEvent:
    """Build a WebhookEvent from a decoded event body"""
    if not isinstance(raw, dict):
        raise MalformedPayloadError("Event body must be a JSON object")
    event_id = raw.get("id")
    event_type = raw.get("type")
    if not isinstance(event_id, str) or not event_id or not isinstance(event_type, str) or not event_type:
        raise MalformedPayloadError("Event is missing 'id' or 'type'")

    data = raw.get("data") or {}
    data_object = data.get("object") if isinstance(data, dict) else None
    if not isinstance(data_object, dict):
        raise MalformedPayloadError("Event is missing 'data.object'", detail={"event_id": event_id})

    created = raw.get("created")
    return WebhookEvent(
        id=event_id,
        type=event_type,
        created=created if isinstance(created, int) else None,
        livemode=bool(raw.get("livemode", False)),
        payload=parse_payload(event_type, data_object),
    )
