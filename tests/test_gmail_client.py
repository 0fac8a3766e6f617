"""Tests for Gmail message parsing and the Gmail API client."""

import base64
import pytest
from datetime import datetime
from unittest.mock import MagicMock, patch

from taskflow.config import Settings
from taskflow.errors import IntegrationNotConnected
from taskflow.integrations.gmail import (
    GmailClient,
    build_auth_url,
    build_credentials,
    extract_plain_text,
    parse_message,
)


def _b64(text):
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def _message(message_id, subject, body, date="Mon, 02 Mar 2026 10:00:00 +0100"):
    return {
        "id": message_id,
        "snippet": body[:20],
        "payload": {
            "mimeType": "multipart/alternative",
            "headers": [
                {"name": "Subject", "value": subject},
                {"name": "From", "value": "Anna <anna@example.com>"},
                {"name": "Date", "value": date},
            ],
            "parts": [
                {"mimeType": "text/plain", "body": {"data": _b64(body)}},
                {"mimeType": "text/html", "body": {"data": _b64(f"<p>{body}</p>")}},
            ],
        },
    }


class TestParsing:

    def test_extract_plain_text_from_nested_multipart(self):
        payload = {
            "mimeType": "multipart/mixed",
            "parts": [
                {
                    "mimeType": "multipart/alternative",
                    "parts": [{"mimeType": "text/plain", "body": {"data": _b64("Hello there")}}],
                },
                {"mimeType": "application/pdf", "body": {"attachmentId": "x"}},
            ],
        }
        assert extract_plain_text(payload) == "Hello there"

    def test_single_part_body(self):
        payload = {"mimeType": "text/plain", "body": {"data": _b64("Just text")}}
        assert extract_plain_text(payload) == "Just text"

    def test_parse_message(self):
        message = parse_message(_message("abc", "Q3 report", "Please send the Q3 report"))

        assert message.source == "gmail"
        assert message.source_id == "abc"
        assert message.subject == "Q3 report"
        assert message.sender == "Anna <anna@example.com>"
        assert message.text == "Please send the Q3 report"
        assert message.received_at == datetime(2026, 3, 2, 9, 0)
        assert message.is_meeting is False

    def test_meeting_detection(self):
        assert parse_message(_message("m", "Invitation: sync", "Zoom link inside")).is_meeting is True

    def test_missing_headers_and_body(self):
        message = parse_message({"id": "x", "snippet": "fallback snippet", "payload": {"mimeType": "multipart/mixed"}})
        assert message.subject == "No Subject"
        assert message.sender == "Unknown"
        assert message.text == "fallback snippet"
        assert message.received_at is None


class TestClient:

    def _service(self, ids, messages):
        service = MagicMock()
        messages_resource = service.users.return_value.messages.return_value
        messages_resource.list.return_value.execute.return_value = {"messages": [{"id": i} for i in ids]}
        messages_resource.get.side_effect = lambda userId, id, format: MagicMock(
            execute=MagicMock(return_value=messages[id])
        )
        return service, messages_resource

    def test_fetch_new_messages_uses_after_query(self):
        service, resource = self._service(["a", "b"], {
            "a": _message("a", "First", "one"),
            "b": _message("b", "Second", "two"),
        })
        with patch("taskflow.integrations.gmail.build", return_value=service):
            client = GmailClient(credentials=MagicMock())
            messages = client.fetch_new_messages(after=datetime(2026, 3, 1, 0, 0), max_results=5)

        assert [m.source_id for m in messages] == ["a", "b"]
        _, kwargs = resource.list.call_args
        assert kwargs["q"] == "after:1772323200"
        assert kwargs["maxResults"] == 5

    def test_first_scan_has_no_query(self):
        service, resource = self._service([], {})
        with patch("taskflow.integrations.gmail.build", return_value=service):
            GmailClient(credentials=MagicMock()).fetch_new_messages()
        _, kwargs = resource.list.call_args
        assert "q" not in kwargs

    def test_broken_message_is_skipped(self):
        service, _ = self._service(["a", "b"], {"a": {"no": "id"}, "b": _message("b", "Ok", "fine")})
        with patch("taskflow.integrations.gmail.build", return_value=service):
            messages = GmailClient(credentials=MagicMock()).fetch_new_messages()
        assert [m.source_id for m in messages] == ["b"]


class TestOAuthHelpers:

    def test_auth_url_requests_offline_access(self):
        settings = Settings(google_client_id="cid", google_redirect_uri="http://localhost:8000/gmail/callback")
        url = build_auth_url(settings, "state-123")
        assert "access_type=offline" in url
        assert "prompt=consent" in url
        assert "state=state-123" in url

    def test_expired_token_without_refresh_token(self):
        settings = Settings(google_client_id="cid", google_client_secret="secret")
        with pytest.raises(IntegrationNotConnected):
            build_credentials(settings, "old-token", None, datetime(2020, 1, 1))

    def test_valid_token_is_not_refreshed(self):
        settings = Settings(google_client_id="cid", google_client_secret="secret")
        creds = build_credentials(settings, "token", "refresh", datetime(2100, 1, 1))
        assert creds.token == "token"
