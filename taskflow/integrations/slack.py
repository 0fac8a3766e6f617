"""Slack integration for TaskFlow.

OAuth v2 for connecting, and a small Slack Web API client that finds
messages mentioning the user in the channels they belong to.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import requests

from taskflow.config import Settings
from taskflow.errors import IntegrationNotConnected, UpstreamError
from taskflow.models.draft_task import DraftSource
from taskflow.models.proposal import InboundMessage

logger = logging.getLogger(__name__)

SLACK_API_BASE = "https://slack.com/api"
SLACK_AUTHORIZE_URL = "https://slack.com/oauth/v2/authorize"

USER_SCOPES = [
    "channels:read",
    "channels:history",
    "groups:read",
    "groups:history",
    "im:history",
    "users:read",
    "chat:write",
]

# Slack error codes that mean the stored token is no longer usable
AUTH_ERRORS = {"invalid_auth", "not_authed", "token_revoked", "token_expired", "account_inactive", "missing_scope"}
HISTORY_LIMIT = 100


class SlackAPIError(UpstreamError):
    """Slack returned ok=false."""

    def __init__(self, method: str, error: str):
        super().__init__(f"Slack {method} failed: {error}", service="slack")
        self.method = method
        self.error = error


def build_auth_url(settings: Settings, state: str) -> str:
    if not settings.slack_client_id:
        raise UpstreamError("Slack OAuth is not configured (SLACK_CLIENT_ID missing)", service="slack")
    params = {
        "client_id": settings.slack_client_id,
        "user_scope": ",".join(USER_SCOPES),
        "redirect_uri": settings.slack_redirect_uri,
        "state": state,
    }
    return f"{SLACK_AUTHORIZE_URL}?{urlencode(params)}"


def exchange_code(settings: Settings, code: str) -> Dict[str, Any]:
    """Exchange an OAuth code for a user token.

    Returns a dict with access_token, slack_user_id, team_id, team_name.
    """
    if not settings.slack_client_id or not settings.slack_client_secret:
        raise UpstreamError("Slack OAuth is not configured", service="slack")
    try:
        resp = requests.post(
            f"{SLACK_API_BASE}/oauth.v2.access",
            data={
                "client_id": settings.slack_client_id,
                "client_secret": settings.slack_client_secret,
                "code": code,
                "redirect_uri": settings.slack_redirect_uri,
            },
            timeout=settings.http_timeout_sec,
        )
        resp.raise_for_status()
    except requests.RequestException as e:
        logger.warning(f"Slack token exchange failed: {type(e).__name__}")
        raise UpstreamError("Failed to exchange Slack authorization code", service="slack") from e
    data = resp.json()
    if not data.get("ok"):
        raise SlackAPIError("oauth.v2.access", data.get("error") or "unknown_error")

    authed_user = data.get("authed_user") or {}
    team = data.get("team") or {}
    access_token = authed_user.get("access_token") or data.get("access_token")
    if not access_token or not authed_user.get("id"):
        raise UpstreamError("Slack did not return a user token", service="slack")
    return {
        "access_token": access_token,
        "slack_user_id": authed_user["id"],
        "team_id": team.get("id"),
        "team_name": team.get("name"),
    }


def _slack_ts_to_datetime(ts: Optional[str]) -> Optional[datetime]:
    if not ts:
        return None
    try:
        return datetime.fromtimestamp(float(ts), tz=timezone.utc).replace(tzinfo=None)
    except (TypeError, ValueError):
        return None


class SlackClient:
    """Client for the Slack Web API (user token)."""

    def __init__(self, access_token: str, timeout: int = 10):
        self.access_token = access_token
        self.timeout = timeout

    def _call(self, method: str, params: Optional[Dict[str, Any]] = None, http_method: str = "GET") -> Dict[str, Any]:
        url = f"{SLACK_API_BASE}/{method}"
        headers = {"Authorization": f"Bearer {self.access_token}"}
        try:
            if http_method == "POST":
                resp = requests.post(url, headers=headers, json=params or {}, timeout=self.timeout)
            else:
                resp = requests.get(url, headers=headers, params=params or {}, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.warning(f"Slack {method} request failed: {type(e).__name__}")
            raise UpstreamError(f"Slack {method} request failed", service="slack") from e

        data = resp.json()
        if not data.get("ok"):
            error = data.get("error") or "unknown_error"
            if error in AUTH_ERRORS:
                message = (
                    "Missing required Slack permissions. Please disconnect and reconnect Slack."
                    if error == "missing_scope"
                    else "Slack authentication failed. Please reconnect Slack."
                )
                raise IntegrationNotConnected("slack", message)
            raise SlackAPIError(method, error)
        return data

    def list_channels(self) -> List[Dict[str, Any]]:
        data = self._call(
            "conversations.list",
            {"types": "public_channel,private_channel", "exclude_archived": "true", "limit": 1000},
        )
        return [c for c in data.get("channels") or [] if c.get("is_member", True)]

    def history(self, channel_id: str, oldest: Optional[float] = None) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"channel": channel_id, "limit": HISTORY_LIMIT}
        if oldest is not None:
            params["oldest"] = f"{oldest:.6f}"
        return self._call("conversations.history", params).get("messages") or []

    def replies(self, channel_id: str, thread_ts: str, oldest: Optional[float] = None) -> List[Dict[str, Any]]:
        """Thread replies, without the parent message."""
        params: Dict[str, Any] = {"channel": channel_id, "ts": thread_ts, "limit": HISTORY_LIMIT}
        if oldest is not None:
            params["oldest"] = f"{oldest:.6f}"
        messages = self._call("conversations.replies", params).get("messages") or []
        return [m for m in messages if m.get("ts") != thread_ts]

    def permalink(self, channel_id: str, ts: str) -> Optional[str]:
        try:
            return self._call("chat.getPermalink", {"channel": channel_id, "message_ts": ts}).get("permalink")
        except UpstreamError:
            return None

    def post_message(self, channel: str, text: str) -> None:
        self._call("chat.postMessage", {"channel": channel, "text": text}, http_method="POST")

    def _to_inbound(self, message: Dict[str, Any], channel: Dict[str, Any], is_reply: bool) -> InboundMessage:
        channel_name = channel.get("name") or channel.get("id")
        ts = message["ts"]
        return InboundMessage(
            source=DraftSource.SLACK,
            source_id=f"{channel['id']}:{ts}",
            text=message.get("text") or "",
            sender=message.get("user"),
            channel=f"#{channel_name}" + (" (thread reply)" if is_reply else ""),
            permalink=self.permalink(channel["id"], ts),
            received_at=_slack_ts_to_datetime(ts),
        )

    def fetch_mentions(self, slack_user_id: str, after: Optional[datetime] = None, max_results: int = 50) -> List[InboundMessage]:
        """Messages (and thread replies) mentioning `slack_user_id` since `after`.

        Channels the user cannot read are skipped. Auth failures propagate.
        """
        mention = f"<@{slack_user_id}>"
        oldest = after.replace(tzinfo=timezone.utc).timestamp() if after is not None else None
        found: List[InboundMessage] = []

        for channel in self.list_channels():
            if len(found) >= max_results:
                break
            try:
                history = self.history(channel["id"], oldest=oldest)
            except SlackAPIError as e:
                if e.error != "not_in_channel":
                    logger.warning(f"Skipping Slack channel {channel.get('name')}: {e.error}")
                continue

            for message in history:
                if len(found) >= max_results:
                    break
                if mention in (message.get("text") or "") and message.get("user") != slack_user_id:
                    found.append(self._to_inbound(message, channel, is_reply=False))
                if message.get("reply_count"):
                    try:
                        replies = self.replies(channel["id"], message["ts"], oldest=oldest)
                    except SlackAPIError as e:
                        logger.warning(f"Skipping Slack thread {message['ts']}: {e.error}")
                        continue
                    for reply in replies:
                        if len(found) >= max_results:
                            break
                        if mention in (reply.get("text") or "") and reply.get("user") != slack_user_id:
                            found.append(self._to_inbound(reply, channel, is_reply=True))

        logger.debug(f"Slack fetch found {len(found)} mention(s)")
        return found
