"""
Webhook parser for Circle notifications.
"""

import base64
import binascii
import json
from collections.abc import Mapping
from typing import Any

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from arcle.core.events import ChallengeEvent, NotificationType, WebhookEvent
from arcle.core.exceptions import ValidationError
from arcle.core.logging import get_logger
from arcle.core.types import parse_dt, utcnow

PublicKey = Ed25519PublicKey | ec.EllipticCurvePublicKey


class InvalidSignatureError(ValidationError):
    """Raised when webhook signature verification fails."""

    pass


def load_public_key(key: str) -> PublicKey:
    """
    Load a notification verification key.

    Accepts PEM, base64 DER (Circle's ``/notifications/publicKey`` format),
    raw Ed25519 hex or raw Ed25519 base64.
    """
    if "-----BEGIN PUBLIC KEY-----" in key:
        try:
            loaded = serialization.load_pem_public_key(key.encode("utf-8"))
        except (ValueError, UnsupportedAlgorithm) as e:
            raise InvalidSignatureError(f"Invalid PEM key: {e}") from e
        return _check_key_type(loaded)

    try:
        return Ed25519PublicKey.from_public_bytes(bytes.fromhex(key))
    except ValueError:
        pass

    try:
        raw = base64.b64decode(key, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidSignatureError(
            "Could not parse verification key (expected PEM, hex or base64)"
        ) from e

    if len(raw) == 32:
        return Ed25519PublicKey.from_public_bytes(raw)
    try:
        loaded = serialization.load_der_public_key(raw)
    except (ValueError, UnsupportedAlgorithm) as e:
        raise InvalidSignatureError(f"Invalid DER key: {e}") from e
    return _check_key_type(loaded)


def _check_key_type(key: Any) -> PublicKey:
    if not isinstance(key, (Ed25519PublicKey, ec.EllipticCurvePublicKey)):
        raise InvalidSignatureError("Key is neither Ed25519 nor ECDSA")
    return key


class WebhookParser:
    """
    Framework-agnostic webhook parser.

    Validates signatures and converts raw payloads into typed events. HTTP
    transport stays with the application.
    """

    def __init__(self, verification_key: str | None = None) -> None:
        """
        Args:
            verification_key: Public key for signature verification; when None,
                signatures are not checked (local development only).
        """
        self._key = load_public_key(verification_key) if verification_key else None
        self._logger = get_logger("webhooks")

    def verify_signature(self, payload: str | bytes, headers: Mapping[str, str]) -> bool:
        """
        Verify the ``x-circle-signature`` header against the raw body.

        Raises:
            InvalidSignatureError: If the header is missing or does not match
        """
        if self._key is None:
            return True

        lowered = {k.lower(): v for k, v in headers.items()}
        signature = lowered.get("x-circle-signature")
        if not signature:
            raise InvalidSignatureError("Missing x-circle-signature header")

        payload_bytes = payload.encode("utf-8") if isinstance(payload, str) else payload
        try:
            signature_bytes = base64.b64decode(signature, validate=True)
        except (binascii.Error, ValueError):
            raise InvalidSignatureError("Invalid base64 signature") from None

        try:
            if isinstance(self._key, Ed25519PublicKey):
                self._key.verify(signature_bytes, payload_bytes)
            else:
                self._key.verify(signature_bytes, payload_bytes, ec.ECDSA(hashes.SHA256()))
        except InvalidSignature:
            raise InvalidSignatureError("Signature mismatch") from None
        return True

    def handle(
        self, payload: str | bytes | dict[str, Any], headers: Mapping[str, str]
    ) -> WebhookEvent:
        """
        Parse and validate a webhook request.

        Raises:
            InvalidSignatureError: If signature invalid
            ValidationError: If payload malformed
        """
        if isinstance(payload, (str, bytes)):
            self.verify_signature(payload, headers)
            try:
                text = payload.decode("utf-8") if isinstance(payload, bytes) else payload
                data = json.loads(text)
            except (UnicodeDecodeError, json.JSONDecodeError) as e:
                raise ValidationError(f"Invalid JSON payload: {e}") from e
        else:
            data = payload

        if not isinstance(data, dict) or "notificationType" not in data:
            raise ValidationError("Missing 'notificationType' in payload")

        raw_type = str(data["notificationType"])
        event_type = NotificationType.from_raw(raw_type)
        if event_type == NotificationType.UNKNOWN:
            self._logger.debug(f"Unrecognized notification type {raw_type}")

        try:
            timestamp = parse_dt(data.get("timestamp")) or utcnow()
        except ValueError:
            timestamp = utcnow()

        return WebhookEvent(
            id=data.get("notificationId", "unknown"),
            type=event_type,
            raw_type=raw_type,
            timestamp=timestamp,
            data=data.get("notification", {}),
            raw_payload=data,
        )

    @staticmethod
    def challenge_event(event: WebhookEvent) -> ChallengeEvent:
        """Extract the challenge completion report from a challenge notification."""
        if event.type != NotificationType.CHALLENGE:
            raise ValidationError(f"Not a challenge notification: {event.raw_type}")
        if "id" not in event.data:
            raise ValidationError("Challenge notification without an id")
        return ChallengeEvent.from_notification(event.data)
