"""Gmail integration for TaskFlow.

OAuth2 (offline access) for connecting, and a thin Gmail API client that
turns new messages into InboundMessage objects for the scanner.
"""

import base64
import logging
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import requests
from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from taskflow.config import Settings
from taskflow.errors import IntegrationNotConnected, UpstreamError
from taskflow.models.draft_task import DraftSource
from taskflow.models.proposal import InboundMessage
from taskflow.models.constants import EMAIL_CLASSIFY_CHARS, MEETING_KEYWORDS

logger = logging.getLogger(__name__)

# Gmail API scopes
SCOPES = [
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/gmail.modify",
]

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"


def build_auth_url(settings: Settings, state: str) -> str:
    """Authorization URL for the Gmail consent screen.

    `prompt=consent` forces Google to return a refresh token every time.
    """
    if not settings.google_client_id:
        raise UpstreamError("Gmail OAuth is not configured (GOOGLE_CLIENT_ID missing)", service="gmail")
    params = {
        "client_id": settings.google_client_id,
        "redirect_uri": settings.google_redirect_uri,
        "response_type": "code",
        "scope": " ".join(SCOPES),
        "access_type": "offline",
        "prompt": "consent",
        "include_granted_scopes": "true",
        "state": state,
    }
    return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"


def exchange_code(settings: Settings, code: str) -> Dict[str, Any]:
    """Exchange an authorization code for tokens.

    Returns the token response (access_token, refresh_token, expires_in, scope).
    """
    if not settings.google_client_id or not settings.google_client_secret:
        raise UpstreamError("Gmail OAuth is not configured", service="gmail")
    resp = requests.post(
        GOOGLE_TOKEN_URL,
        data={
            "code": code,
            "client_id": settings.google_client_id,
            "client_secret": settings.google_client_secret,
            "redirect_uri": settings.google_redirect_uri,
            "grant_type": "authorization_code",
        },
        timeout=settings.http_timeout_sec,
    )
    if not resp.ok:
        # Google's error body can echo the code; log only the status
        logger.warning(f"Gmail token exchange failed with status {resp.status_code}")
        raise UpstreamError("Failed to exchange Gmail authorization code", service="gmail")
    tokens = resp.json()
    if not tokens.get("access_token"):
        raise UpstreamError("No access token received from Google", service="gmail")
    return tokens


def token_expiry(tokens: Dict[str, Any]) -> datetime:
    return datetime.utcnow() + timedelta(seconds=int(tokens.get("expires_in") or 3600))


def build_credentials(
    settings: Settings,
    access_token: Optional[str],
    refresh_token: Optional[str],
    expiry: Optional[datetime],
) -> Credentials:
    """Credentials for a stored Gmail connection, refreshed if expired.

    Raises:
        IntegrationNotConnected: no refresh token, or Google rejected the refresh
    """
    creds = Credentials(
        token=access_token,
        refresh_token=refresh_token,
        token_uri=GOOGLE_TOKEN_URL,
        client_id=settings.google_client_id,
        client_secret=settings.google_client_secret,
        scopes=SCOPES,
        expiry=expiry,
    )
    if not creds.valid:
        if not refresh_token:
            raise IntegrationNotConnected("gmail", "Gmail access expired. Please reconnect.")
        try:
            creds.refresh(Request())
        except RefreshError as e:
            logger.warning(f"Gmail token refresh failed: {type(e).__name__}")
            raise IntegrationNotConnected("gmail", "Failed to refresh Gmail token. Please reconnect.") from e
    return creds


def _decode_body(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8", errors="replace")


def extract_plain_text(payload: Dict[str, Any]) -> str:
    """Concatenate text/plain parts of a message payload (recursing into multiparts)."""
    body = payload.get("body") or {}
    mime_type = payload.get("mimeType", "")
    if body.get("data") and (mime_type.startswith("text/plain") or not payload.get("parts")):
        return _decode_body(body["data"])
    text = ""
    for part in payload.get("parts") or []:
        part_mime = part.get("mimeType", "")
        if part_mime == "text/plain" and (part.get("body") or {}).get("data"):
            text += _decode_body(part["body"]["data"])
        elif part_mime.startswith("multipart/"):
            text += extract_plain_text(part)
    return text


def looks_like_meeting(subject: str, body: str) -> bool:
    content = f"{subject} {body}".lower()
    return any(keyword in content for keyword in MEETING_KEYWORDS)


def _parse_date_header(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_message(message: Dict[str, Any]) -> InboundMessage:
    """Convert a Gmail API message (format=full) into an InboundMessage."""
    payload = message.get("payload") or {}
    headers = {h.get("name", "").lower(): h.get("value", "") for h in payload.get("headers") or []}
    subject = headers.get("subject") or "No Subject"
    sender = headers.get("from") or "Unknown"
    body = extract_plain_text(payload) or message.get("snippet", "")

    return InboundMessage(
        source=DraftSource.GMAIL,
        source_id=message["id"],
        text=body[:EMAIL_CLASSIFY_CHARS],
        subject=subject,
        sender=sender,
        received_at=_parse_date_header(headers.get("date")),
        is_meeting=looks_like_meeting(subject, body),
    )


class GmailClient:
    """Client for the Gmail API."""

    def __init__(self, credentials: Credentials):
        self.credentials = credentials
        self.service = build("gmail", "v1", credentials=credentials, cache_discovery=False)

    def _execute(self, request, operation: str):
        try:
            return request.execute()
        except HttpError as e:
            status = getattr(e.resp, "status", None)
            logger.warning(f"Gmail API error during {operation}: {status}")
            if status in (401, 403):
                raise IntegrationNotConnected("gmail", "Gmail rejected the stored credentials. Please reconnect.") from e
            raise UpstreamError(f"Gmail API error ({status})", service="gmail") from e
        except RefreshError as e:
            raise IntegrationNotConnected("gmail", "Failed to refresh Gmail token. Please reconnect.") from e

    def get_profile_email(self) -> Optional[str]:
        profile = self._execute(self.service.users().getProfile(userId="me"), "getProfile")
        return profile.get("emailAddress")

    def list_message_ids(self, after: Optional[datetime] = None, max_results: int = 50) -> List[str]:
        """IDs of messages received after `after` (all mail when None), newest first."""
        params: Dict[str, Any] = {"userId": "me", "maxResults": max_results}
        if after is not None:
            epoch = int(after.replace(tzinfo=timezone.utc).timestamp()) if after.tzinfo is None else int(after.timestamp())
            params["q"] = f"after:{epoch}"
        response = self._execute(self.service.users().messages().list(**params), "messages.list")
        return [m["id"] for m in response.get("messages") or []][:max_results]

    def get_message(self, message_id: str) -> Dict[str, Any]:
        return self._execute(
            self.service.users().messages().get(userId="me", id=message_id, format="full"),
            "messages.get",
        )

    def fetch_new_messages(self, after: Optional[datetime] = None, max_results: int = 50) -> List[InboundMessage]:
        """Fetch and parse new messages.

        Listing failures propagate. A single message that cannot be fetched
        is logged and skipped.
        """
        messages: List[InboundMessage] = []
        for message_id in self.list_message_ids(after=after, max_results=max_results):
            try:
                messages.append(parse_message(self.get_message(message_id)))
            except IntegrationNotConnected:
                raise
            except Exception as e:
                logger.warning(f"Skipping Gmail message {message_id}: {type(e).__name__}")
        logger.debug(f"Gmail fetch returned {len(messages)} message(s)")
        return messages
