import json
import logging
from typing import Mapping, Optional

from pydantic import ValidationError
from svix.webhooks import Webhook, WebhookVerificationError

from customer_sync.config import ClerkSyncSettings, get_settings
from customer_sync.errors import ConfigurationError, PayloadShapeError, SignatureError
from customer_sync.schemas import (
    USER_EVENT_TYPES,
    ClerkEventType,
    ClerkUserData,
    ClerkWebhookEnvelope,
    UserPayload,
    VerifiedEvent,
)

logger = logging.getLogger("customer_sync.verifier")

SVIX_ID_HEADER = "svix-id"
SVIX_TIMESTAMP_HEADER = "svix-timestamp"
SVIX_SIGNATURE_HEADER = "svix-signature"


class ClerkWebhookVerifier:
    """Authenticates Clerk webhooks signed with the Svix scheme.

    Clerk signs ``"{svix-id}.{svix-timestamp}.{body}"`` with HMAC-SHA256 using the
    base64 key material of the ``whsec_`` secret and may send several candidate
    signatures during a secret rotation. The Svix SDK checks each candidate in
    constant time and rejects timestamps more than five minutes from now.
    """

    def __init__(self, settings: ClerkSyncSettings):
        secret = (settings.clerk_webhook_secret or "").strip()
        if not secret:
            raise ConfigurationError("CLERK_WEBHOOK_SECRET is not configured")
        try:
            self._webhook = Webhook(secret)
        except ValueError as exc:
            raise ConfigurationError("CLERK_WEBHOOK_SECRET is not a valid signing secret") from exc

    def verify(self, payload: Optional[bytes], headers: Mapping[str, str]) -> VerifiedEvent:
        if payload is None:
            raise ConfigurationError("raw request body is unavailable")

        normalized_headers = {str(name).lower(): value for name, value in headers.items()}
        try:
            # Only the signature check is used; svix 2.x returns None instead of the parsed body.
            self._webhook.verify(payload, normalized_headers)
        except WebhookVerificationError as exc:
            raise SignatureError(str(exc)) from exc
        except json.JSONDecodeError as exc:
            # svix 1.x parses the body after the signature matched.
            raise PayloadShapeError("payload is not valid JSON") from exc
        except ValueError as exc:
            # Malformed signature entries or a body svix cannot read.
            raise SignatureError("malformed signature headers") from exc

        try:
            decoded = json.loads(payload)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise PayloadShapeError("payload is not valid JSON") from exc

        return _decode_event(decoded, svix_id=normalized_headers.get(SVIX_ID_HEADER))


def _decode_event(decoded, svix_id: Optional[str] = None) -> VerifiedEvent:
    try:
        envelope = ClerkWebhookEnvelope.model_validate(decoded)
    except ValidationError as exc:
        raise PayloadShapeError("payload is not a Clerk event envelope") from exc

    event_type = ClerkEventType.from_raw(envelope.type)
    subject = None
    if event_type in USER_EVENT_TYPES:
        try:
            subject = UserPayload.from_clerk(ClerkUserData.model_validate(envelope.data))
        except ValidationError as exc:
            raise PayloadShapeError("user data has unexpected field types") from exc

    return VerifiedEvent(
        event_type=event_type,
        raw_type=envelope.type,
        svix_id=svix_id,
        subject=subject,
    )


def get_clerk_webhook_verifier() -> ClerkWebhookVerifier:
    return ClerkWebhookVerifier(get_settings())
