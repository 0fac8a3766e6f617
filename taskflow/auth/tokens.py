"""Bearer tokens shared with the action-parameter API.

Format: base64("<hmac-sha256 hex>|<json payload>") where the payload is
`{"uid": <user id>, "exp": <unix seconds>}` in compact JSON and the HMAC is
computed over the payload string with API_SECRET.
"""

import base64
import binascii
import hashlib
import hmac
import json
import time
from typing import Optional

from taskflow.config import get_settings
from taskflow.models.constants import TOKEN_TTL_DAYS

TOKEN_TTL_SECONDS = 86400 * TOKEN_TTL_DAYS


class TokenValidationError(Exception):
    """Token could not be validated.

    `kind` is one of MALFORMED, BAD_SIGNATURE or EXPIRED; the message always
    starts with "Token validation failed:".
    """

    MALFORMED = "malformed"
    BAD_SIGNATURE = "bad_signature"
    EXPIRED = "expired"

    # Matches the error strings the action API returns for each cause
    HTTP_DETAIL = {
        MALFORMED: "Invalid Token",
        BAD_SIGNATURE: "Invalid Signature",
        EXPIRED: "Token Expired",
    }

    def __init__(self, kind: str, reason: str):
        super().__init__(f"Token validation failed: {reason}")
        self.kind = kind
        self.reason = reason

    @property
    def http_detail(self) -> str:
        return self.HTTP_DETAIL.get(self.kind, "Unauthorized")


def _secret_bytes(secret: Optional[str]) -> bytes:
    return (secret if secret is not None else get_settings().api_secret).encode("utf-8")


def _sign(payload: str, secret: Optional[str]) -> str:
    return hmac.new(_secret_bytes(secret), payload.encode("utf-8"), hashlib.sha256).hexdigest()


def generate_token(user_id: int, secret: Optional[str] = None, now: Optional[float] = None) -> str:
    """Create a token for a user that expires in 7 days."""
    issued = int(now if now is not None else time.time())
    payload = json.dumps({"uid": user_id, "exp": issued + TOKEN_TTL_SECONDS}, separators=(",", ":"))
    raw = f"{_sign(payload, secret)}|{payload}"
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")


def validate_token(token: str, secret: Optional[str] = None, now: Optional[float] = None) -> int:
    """Validate a token and return its user id.

    Raises:
        TokenValidationError: malformed token, HMAC mismatch, or expired
    """
    try:
        decoded = base64.b64decode(token.encode("ascii"), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeError, AttributeError):
        raise TokenValidationError(TokenValidationError.MALFORMED, "Invalid token format")

    parts = decoded.split("|", 1)
    if len(parts) != 2:
        raise TokenValidationError(TokenValidationError.MALFORMED, "Invalid token format")
    signature, payload = parts

    if not hmac.compare_digest(_sign(payload, secret).encode("utf-8"), signature.encode("utf-8")):
        raise TokenValidationError(TokenValidationError.BAD_SIGNATURE, "Invalid token signature")

    try:
        data = json.loads(payload)
        uid = data["uid"]
        exp = float(data["exp"])
    except (ValueError, KeyError, TypeError):
        raise TokenValidationError(TokenValidationError.MALFORMED, "Invalid token payload")

    current = now if now is not None else time.time()
    if exp < current:
        raise TokenValidationError(TokenValidationError.EXPIRED, "Token expired")

    try:
        return int(uid)
    except (TypeError, ValueError):
        raise TokenValidationError(TokenValidationError.MALFORMED, "Invalid token payload")
