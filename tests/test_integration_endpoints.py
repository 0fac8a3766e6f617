"""Tests for the Gmail, Slack and Telegram connection endpoints."""

import pytest
from datetime import datetime
from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs, urlparse

from taskflow.auth.link_codes import hash_link_code
from taskflow.auth.oauth_state import create_oauth_state
from taskflow.config import Settings, get_settings
from taskflow.database.integration_repository import IntegrationRepository
from taskflow.database.telegram_repository import TelegramRepository
from taskflow.models.integration import ScanResult


OAUTH_SETTINGS = Settings(
    api_secret="test-secret",
    frontend_url="http://app.test",
    google_client_id="google-client",
    google_client_secret="google-secret",
    google_redirect_uri="http://api.test/gmail/callback",
    slack_client_id="slack-client",
    slack_client_secret="slack-secret",
    slack_redirect_uri="http://api.test/slack/callback",
    telegram_webhook_secret="hook-secret",
    scheduler_enabled=False,
)


@pytest.fixture
def oauth_client(test_client):
    """Test client whose settings have OAuth apps configured."""
    from taskflow.api.app import app

    app.dependency_overrides[get_settings] = lambda: OAUTH_SETTINGS
    yield test_client
    app.dependency_overrides.pop(get_settings, None)


def _redirect_params(response):
    assert response.status_code == 302
    location = urlparse(response.headers["location"])
    assert f"{location.scheme}://{location.netloc}{location.path}" == "http://app.test/settings"
    return {k: v[0] for k, v in parse_qs(location.query).items()}


class TestStatusAndSettings:

    @pytest.mark.parametrize("source", ["gmail", "slack", "telegram"])
    def test_status_when_not_connected(self, test_client, source):
        response = test_client.get(f"/{source}/status")
        assert response.status_code == 200
        assert response.json()["connected"] is False
        assert response.json()["source"] == source

    def test_gmail_status_when_connected(self, test_client, db_session, test_user_id):
        IntegrationRepository(db_session).upsert_gmail(
            test_user_id, email="me@example.com", access_token="a", refresh_token="r"
        )

        data = test_client.get("/gmail/status").json()

        assert data["connected"] is True
        assert data["email"] == "me@example.com"
        assert data["enabled"] is True
        assert data["scan_frequency"] == 60
        assert "access_token" not in data

    def test_settings_without_connection(self, test_client):
        response = test_client.put("/slack/settings", json={"scan_frequency": 30})
        assert response.status_code == 400
        assert response.json()["error"] == "not_connected"

    def test_update_gmail_settings(self, test_client, db_session, test_user_id):
        IntegrationRepository(db_session).upsert_gmail(test_user_id, email=None, access_token="a", refresh_token="r")

        response = test_client.put(
            "/gmail/settings",
            json={"scan_frequency": 30, "prompt_instructions": "Ignore newsletters"},
        )

        assert response.status_code == 200
        assert response.json()["scan_frequency"] == 30
        assert response.json()["prompt_instructions"] == "Ignore newsletters"

    def test_invalid_frequency_rejected(self, test_client, db_session, test_user_id):
        IntegrationRepository(db_session).upsert_gmail(test_user_id, email=None, access_token="a", refresh_token="r")
        assert test_client.put("/gmail/settings", json={"scan_frequency": 0}).status_code == 422

    def test_disconnect(self, test_client, db_session, test_user_id):
        IntegrationRepository(db_session).upsert_slack(
            test_user_id, slack_user_id="U1", team_id="T1", team_name="Acme", access_token="xoxp"
        )

        assert test_client.post("/slack/disconnect").json() == {"success": True, "disconnected": True}
        assert test_client.post("/slack/disconnect").json() == {"success": True, "disconnected": False}
        assert IntegrationRepository(db_session).get("slack", test_user_id) is None


class TestScanNow:

    def test_scan_now_not_connected(self, test_client):
        response = test_client.post("/gmail/scan-now")
        assert response.status_code == 400
        assert response.json()["error"] == "not_connected"

    def test_scan_now_runs_scanner(self, test_client, db_session, test_user_id):
        from taskflow.api.app import app, get_scan_service

        IntegrationRepository(db_session).upsert_slack(
            test_user_id, slack_user_id="U1", team_id=None, team_name=None, access_token="xoxp"
        )
        scans = MagicMock()
        scans.scan.return_value = ScanResult(
            source="slack", success=True, items_fetched=3, drafts_created=1, scanned_at=datetime(2026, 3, 2, 9, 0)
        )
        app.dependency_overrides[get_scan_service] = lambda: scans
        try:
            response = test_client.post("/slack/scan-now")
        finally:
            app.dependency_overrides.pop(get_scan_service, None)

        assert response.status_code == 200
        assert response.json()["items_fetched"] == 3
        assert response.json()["drafts_created"] == 1
        _, user_id, source = scans.scan.call_args[0]
        assert (user_id, source) == (test_user_id, "slack")


class TestOAuthConnect:

    def test_connect_without_oauth_app(self, test_client):
        response = test_client.post("/gmail/connect")
        assert response.status_code == 400

    def test_slack_connect_url(self, oauth_client):
        response = oauth_client.post("/slack/connect")

        assert response.status_code == 200
        url = urlparse(response.json()["authUrl"])
        params = parse_qs(url.query)
        assert params["client_id"] == ["slack-client"]
        assert params["redirect_uri"] == ["http://api.test/slack/callback"]
        assert params["state"][0]

    def test_gmail_connect_url(self, oauth_client):
        url = urlparse(oauth_client.post("/gmail/connect").json()["authUrl"])
        params = parse_qs(url.query)
        assert url.netloc == "accounts.google.com"
        assert params["access_type"] == ["offline"]
        assert params["client_id"] == ["google-client"]


class TestOAuthCallbacks:

    def test_missing_code(self, oauth_client):
        response = oauth_client.get("/gmail/callback", follow_redirects=False)
        params = _redirect_params(response)
        assert params["gmail"] == "error"
        assert params["message"] == "Authorization code missing"

    def test_provider_error(self, oauth_client):
        response = oauth_client.get("/slack/callback", params={"error": "access_denied"}, follow_redirects=False)
        assert _redirect_params(response) == {"slack": "error", "message": "access_denied"}

    def test_invalid_state(self, oauth_client):
        response = oauth_client.get(
            "/slack/callback", params={"code": "abc", "state": "forged"}, follow_redirects=False
        )
        assert _redirect_params(response)["message"] == "Invalid or expired state"

    def test_state_for_other_provider(self, oauth_client, test_user_id):
        state = create_oauth_state(test_user_id, "gmail", secret="test-secret")
        response = oauth_client.get(
            "/slack/callback", params={"code": "abc", "state": state}, follow_redirects=False
        )
        assert _redirect_params(response)["slack"] == "error"

    def test_slack_connected(self, oauth_client, db_session, test_user_id):
        state = create_oauth_state(test_user_id, "slack", secret="test-secret")
        exchanged = {"access_token": "xoxp-1", "slack_user_id": "U42", "team_id": "T1", "team_name": "Acme"}

        with patch("taskflow.api.app.slack.exchange_code", return_value=exchanged) as exchange:
            response = oauth_client.get(
                "/slack/callback", params={"code": "abc", "state": state}, follow_redirects=False
            )

        assert _redirect_params(response) == {"slack": "connected", "team": "Acme"}
        assert exchange.call_args[0][1] == "abc"
        row = IntegrationRepository(db_session).get("slack", test_user_id)
        assert row.slack_user_id == "U42"
        assert row.team_name == "Acme"

    def test_gmail_connected(self, oauth_client, db_session, test_user_id):
        state = create_oauth_state(test_user_id, "gmail", secret="test-secret")
        gmail_client = MagicMock()
        gmail_client.get_profile_email.return_value = "me@example.com"

        with patch("taskflow.api.app.gmail.exchange_code", return_value={"access_token": "a", "refresh_token": "r"}), \
                patch("taskflow.api.app.gmail.token_expiry", return_value=None), \
                patch("taskflow.api.app.gmail.build_credentials", return_value=MagicMock()), \
                patch("taskflow.api.app.gmail.GmailClient", return_value=gmail_client):
            response = oauth_client.get(
                "/gmail/callback", params={"code": "abc", "state": state}, follow_redirects=False
            )

        assert _redirect_params(response) == {"gmail": "connected", "email": "me@example.com"}
        assert IntegrationRepository(db_session).get("gmail", test_user_id).email == "me@example.com"

    def test_exchange_failure_redirects_with_error(self, oauth_client, db_session, test_user_id):
        from taskflow.errors import UpstreamError

        state = create_oauth_state(test_user_id, "slack", secret="test-secret")
        with patch("taskflow.api.app.slack.exchange_code", side_effect=UpstreamError("invalid_code", service="slack")):
            response = oauth_client.get(
                "/slack/callback", params={"code": "abc", "state": state}, follow_redirects=False
            )

        assert _redirect_params(response)["slack"] == "error"
        assert IntegrationRepository(db_session).get("slack", test_user_id) is None


class TestTelegramEndpoints:

    def test_connect_issues_link_code(self, test_client, db_session, test_user_id):
        response = test_client.post("/telegram/connect")

        assert response.status_code == 200
        data = response.json()
        assert len(data["code"]) == 8
        assert data["code"] in data["instructions"]
        assert data["botUsername"] is None
        assert TelegramRepository(db_session).consume_link_code(hash_link_code(data["code"])) == test_user_id

    def test_webhook_without_bot(self, test_client):
        response = test_client.post("/telegram/webhook", json={"update_id": 1})
        assert response.status_code == 503

    def test_webhook_checks_secret_and_dispatches(self, oauth_client):
        from taskflow.api.app import app, get_telegram_client, get_telegram_handler

        handler = MagicMock()
        app.dependency_overrides[get_telegram_client] = lambda: MagicMock(bot_username="taskflow_bot")
        app.dependency_overrides[get_telegram_handler] = lambda: handler
        try:
            bad = oauth_client.post(
                "/telegram/webhook",
                json={"update_id": 1},
                headers={"X-Telegram-Bot-Api-Secret-Token": "wrong"},
            )
            good = oauth_client.post(
                "/telegram/webhook",
                json={"update_id": 2},
                headers={"X-Telegram-Bot-Api-Secret-Token": "hook-secret"},
            )
        finally:
            app.dependency_overrides.pop(get_telegram_client, None)
            app.dependency_overrides.pop(get_telegram_handler, None)

        assert bad.status_code == 401
        assert good.json() == {"ok": True}
        assert handler.handle_update.call_count == 1
        assert handler.handle_update.call_args[0][1] == {"update_id": 2}

    def test_status_reports_bot_username(self, test_client, db_session, test_user_id):
        from taskflow.api.app import app, get_telegram_client

        IntegrationRepository(db_session).link_telegram(
            test_user_id, telegram_user_id="555", telegram_username="tester", chat_id="555"
        )
        app.dependency_overrides[get_telegram_client] = lambda: MagicMock(bot_username="taskflow_bot")
        try:
            data = test_client.get("/telegram/status").json()
        finally:
            app.dependency_overrides.pop(get_telegram_client, None)

        assert data["connected"] is True
        assert data["telegram_username"] == "tester"
        assert data["bot_username"] == "taskflow_bot"


class TestStartup:

    def test_webhook_cleanup_failure_skips_polling(self):
        from fastapi.testclient import TestClient

        import taskflow.api.app as app_module
        from taskflow.errors import UpstreamError

        telegram = MagicMock()
        telegram.delete_webhook.side_effect = UpstreamError("Bad Gateway", service="telegram")
        settings = Settings(telegram_bot_token="123:abc", telegram_polling=True, scheduler_enabled=False)

        with patch("taskflow.api.app.get_settings", return_value=settings), \
                patch("taskflow.api.app.get_telegram_client", return_value=telegram):
            with TestClient(app_module.app) as client:
                assert client.get("/health").status_code == 200
                assert app_module.telegram_poller is None

        telegram.wait_until_ready.assert_called_once()
        telegram.delete_webhook.assert_called_once()

    def test_reminder_jobs_registered_with_bot(self):
        from taskflow.api.app import _add_reminder_jobs
        from taskflow.database.repository import TaskRepository
        from taskflow.engine.notifications import ReminderService
        from taskflow.engine.scheduler import ScanScheduler

        clock = lambda: datetime(2026, 3, 2, 9, 0)
        with_bot = ScanScheduler(lambda u, s: None, clock=clock)
        without_bot = ScanScheduler(lambda u, s: None, clock=clock)

        _add_reminder_jobs(with_bot, ReminderService(MagicMock(), TaskRepository))
        _add_reminder_jobs(without_bot, ReminderService(None, TaskRepository))

        jobs = {job.name: job for job in with_bot.periodic_jobs()}
        assert jobs["overdue_reminders"].interval_minutes == 60
        assert jobs["overdue_reminders"].last_run_at == datetime(2026, 3, 2, 9, 0)
        assert jobs["daily_summaries"].last_run_at is None
        assert without_bot.periodic_jobs() == []
