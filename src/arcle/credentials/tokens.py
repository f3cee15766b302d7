"""
User token helpers.

Circle user tokens are JWTs valid for 60 minutes. The expiry is read from the
``exp`` claim when the token carries one; the signature is the provider's
concern and is not verified here.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt

from arcle.core.circle_client import UserToken
from arcle.core.types import Credential, utcnow

DEFAULT_TOKEN_LIFETIME = 3600.0


def token_expiry(
    token: str,
    fallback_lifetime: float = DEFAULT_TOKEN_LIFETIME,
    now: datetime | None = None,
) -> datetime:
    """Expiry from the JWT ``exp`` claim, else ``now + fallback_lifetime``."""
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.InvalidTokenError:
        claims = {}
    exp = claims.get("exp")
    if isinstance(exp, (int, float)):
        return datetime.fromtimestamp(exp, tz=timezone.utc)
    return (now or utcnow()) + timedelta(seconds=fallback_lifetime)


def build_credential(
    owner_id: str,
    token: UserToken,
    previous: Credential | None = None,
    device_id: str | None = None,
    fallback_lifetime: float = DEFAULT_TOKEN_LIFETIME,
) -> Credential:
    """Turn provider token material into a credential snapshot."""
    return Credential(
        owner_id=owner_id,
        auth_token=token.user_token,
        encryption_key=token.encryption_key,
        expires_at=token_expiry(token.user_token, fallback_lifetime),
        refresh_token=token.refresh_token or (previous.refresh_token if previous else None),
        device_id=device_id or (previous.device_id if previous else None),
    )
