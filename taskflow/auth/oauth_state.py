"""Signed OAuth `state` values.

The OAuth callback is hit by the provider's redirect without our bearer
token, so the state carries the user id, signed and short-lived.
"""

import secrets
from datetime import datetime, timedelta
from typing import Optional

import jwt

from taskflow.config import get_settings
from taskflow.models.constants import OAUTH_STATE_TTL_MINUTES

JWT_ALGORITHM = "HS256"


def create_oauth_state(user_id: int, provider: str, secret: Optional[str] = None) -> str:
    payload = {
        "uid": user_id,
        "provider": provider,
        "nonce": secrets.token_urlsafe(8),
        "exp": datetime.utcnow() + timedelta(minutes=OAUTH_STATE_TTL_MINUTES),
        "iat": datetime.utcnow(),
    }
    return jwt.encode(payload, secret or get_settings().api_secret, algorithm=JWT_ALGORITHM)


def read_oauth_state(state: str, provider: str, secret: Optional[str] = None) -> Optional[int]:
    """Return the user id in a state value, or None if invalid, expired or for another provider."""
    try:
        payload = jwt.decode(state, secret or get_settings().api_secret, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None
    if payload.get("provider") != provider:
        return None
    try:
        return int(payload["uid"])
    except (KeyError, TypeError, ValueError):
        return None
