"""One-time codes for linking a Telegram account.

The user gets the raw code once (to send to the bot as `/link <code>`);
only an HMAC of it is stored.
"""

import hashlib
import hmac
import os
import secrets

from taskflow.config import get_settings

# No ambiguous characters (0/O, 1/I)
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 8


def _pepper_bytes() -> bytes:
    pepper = os.getenv("LINK_CODE_PEPPER") or get_settings().api_secret
    return pepper.encode("utf-8")


def normalize_link_code(code: str) -> str:
    return "".join(code.split()).upper()


def hash_link_code(code: str) -> str:
    """Hash a link code for storage/lookup (HMAC-SHA256)."""
    mac = hmac.new(_pepper_bytes(), normalize_link_code(code).encode("utf-8"), hashlib.sha256)
    return mac.hexdigest()


def generate_link_code() -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))
