"""Webhook signature verification"""
import json
import logging
from typing import Optional

import stripe

from payhook.core.config import settings
from payhook.core.errors import AuthenticationError, ConfigurationError, MalformedPayloadError
from payhook.schemas.events import WebhookEvent, build_event

logger = logging.getLogger(__name__)


class SignatureVerifier:
    """Authenticates raw webhook bodies and turns them into WebhookEvents

    The provider signs ``"{timestamp}.{raw body}"`` with HMAC-SHA256; the
    header carries ``t=<timestamp>,v1=<hex digest>[,v1=...]``. The body must be
    the exact bytes received, never a re-serialized copy.
    """

    def __init__(self, secret: Optional[str] = None, tolerance_seconds: Optional[int] = None):
        self.secret = settings.STRIPE_WEBHOOK_SECRET if secret is None else secret
        self.tolerance_seconds = (
            settings.STRIPE_SIGNATURE_TOLERANCE_SECONDS if tolerance_seconds is None else tolerance_seconds
        )

    def verify(self, raw_body: bytes, signature_header: Optional[str]) -> WebhookEvent:
        if not self.secret:
            raise ConfigurationError("Webhook secret is not configured")
        if not signature_header:
            raise AuthenticationError("Missing signature header")

        try:
            payload = raw_body.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedPayloadError("Body is not valid UTF-8") from e

        try:
            stripe.WebhookSignature.verify_header(
                payload, signature_header, self.secret, self.tolerance_seconds
            )
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Webhook signature verification failed: {e}")
            raise AuthenticationError("Invalid signature") from e

        try:
            raw_event = json.loads(payload)
        except json.JSONDecodeError as e:
            raise MalformedPayloadError("Body is not valid JSON") from e

        return build_event(raw_event)
