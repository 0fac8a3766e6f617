"""Tests for IntegrationRepository and the Telegram inbox."""

import pytest
from datetime import datetime, timedelta

from taskflow.database.integration_repository import (
    IntegrationRepository,
    decrypt_secret,
    encrypt_secret,
)
from taskflow.database.telegram_repository import TelegramRepository
from taskflow.models.integration import IntegrationSettingsUpdate


@pytest.fixture
def integrations(db_session):
    return IntegrationRepository(db_session)


@pytest.fixture
def telegram_repo(db_session):
    return TelegramRepository(db_session)


class TestSecrets:

    def test_encrypt_round_trip(self):
        enc = encrypt_secret("xoxp-secret")
        assert enc != "xoxp-secret"
        assert decrypt_secret(enc) == "xoxp-secret"

    def test_missing_key(self, monkeypatch):
        monkeypatch.delenv("TOKEN_ENCRYPTION_KEY", raising=False)
        with pytest.raises(RuntimeError):
            encrypt_secret("x")


class TestGmailAndSlackRows:

    def test_upsert_gmail_encrypts_tokens(self, integrations, test_user_id):
        row = integrations.upsert_gmail(
            test_user_id, email="me@example.com", access_token="ya29.a", refresh_token="1//r"
        )
        assert row.email == "me@example.com"
        assert row.access_token_encrypted != "ya29.a"
        assert decrypt_secret(row.refresh_token_encrypted) == "1//r"
        assert row.scan_frequency == 60
        assert row.connected is True

    def test_reconnect_keeps_refresh_token(self, integrations, test_user_id):
        integrations.upsert_gmail(test_user_id, email="me@example.com", access_token="a1", refresh_token="r1")
        row = integrations.upsert_gmail(test_user_id, email=None, access_token="a2", refresh_token=None)

        assert decrypt_secret(row.access_token_encrypted) == "a2"
        assert decrypt_secret(row.refresh_token_encrypted) == "r1"
        assert row.email == "me@example.com"

    def test_upsert_slack(self, integrations, test_user_id):
        row = integrations.upsert_slack(
            test_user_id, slack_user_id="U1", team_id="T1", team_name="Acme", access_token="xoxp-1"
        )
        assert row.scan_frequency == 15
        assert row.to_status().team_name == "Acme"
        assert row.to_status().source == "slack"

    def test_delete(self, integrations, test_user_id):
        integrations.upsert_slack(test_user_id, slack_user_id="U1", team_id=None, team_name=None, access_token="t")
        assert integrations.delete("slack", test_user_id) == 1
        assert integrations.get("slack", test_user_id) is None
        assert integrations.delete("slack", test_user_id) == 0

    def test_unknown_source(self, integrations, test_user_id):
        with pytest.raises(ValueError):
            integrations.get("fax", test_user_id)


class TestSettingsAndScanState:

    def test_settings_apply_only_fields_for_source(self, integrations, test_user_id):
        integrations.upsert_gmail(test_user_id, email="me@example.com", access_token="a", refresh_token="r")

        row = integrations.update_settings("gmail", test_user_id, IntegrationSettingsUpdate(
            scan_frequency=30, prompt_instructions="Ignore newsletters", notifications_enabled=False
        ))
        assert row.scan_frequency == 30
        assert row.prompt_instructions == "Ignore newsletters"
        assert not hasattr(row, "notifications_enabled")

    def test_settings_for_missing_row(self, integrations, test_user_id):
        assert integrations.update_settings("slack", test_user_id, IntegrationSettingsUpdate(enabled=False)) is None

    def test_failure_keeps_last_scan_at(self, integrations, test_user_id):
        integrations.upsert_gmail(test_user_id, email="me@example.com", access_token="a", refresh_token="r")
        first = datetime(2026, 3, 1, 9, 0)
        integrations.mark_scan_success("gmail", test_user_id, first)

        integrations.mark_scan_failure("gmail", test_user_id, first + timedelta(hours=1), "invalid_grant")

        row = integrations.get("gmail", test_user_id)
        assert row.last_scan_at == first
        assert row.connected is False
        assert row.last_error == "invalid_grant"

        integrations.mark_scan_success("gmail", test_user_id, first + timedelta(hours=2))
        row = integrations.get("gmail", test_user_id)
        assert row.connected is True
        assert row.last_error is None

    def test_list_scheduled_skips_disabled(self, integrations, test_user_id, other_user_id):
        integrations.upsert_gmail(test_user_id, email=None, access_token="a", refresh_token="r")
        integrations.upsert_slack(other_user_id, slack_user_id="U2", team_id=None, team_name=None, access_token="t")
        integrations.update_settings("slack", other_user_id, IntegrationSettingsUpdate(enabled=False))

        scheduled = integrations.list_scheduled()
        assert [(s.user_id, s.source, s.scan_frequency) for s in scheduled] == [(test_user_id, "gmail", 60)]


class TestTelegram:

    def test_link_replaces_previous_owner(self, integrations, test_user_id, other_user_id):
        integrations.link_telegram(other_user_id, telegram_user_id="777", telegram_username="bob", chat_id="777")
        integrations.link_telegram(test_user_id, telegram_user_id="777", telegram_username="bob", chat_id="777")

        assert integrations.get("telegram", other_user_id) is None
        assert integrations.get_telegram_by_telegram_user("777").user_id == test_user_id

    def test_link_code_is_single_use(self, telegram_repo, test_user_id):
        telegram_repo.create_link_code(test_user_id, "hash-1", datetime.utcnow() + timedelta(minutes=15))

        assert telegram_repo.consume_link_code("hash-1") == test_user_id
        assert telegram_repo.consume_link_code("hash-1") is None

    def test_expired_link_code(self, telegram_repo, test_user_id):
        telegram_repo.create_link_code(test_user_id, "hash-2", datetime.utcnow() - timedelta(minutes=1))
        assert telegram_repo.consume_link_code("hash-2") is None

    def test_new_code_invalidates_unused_ones(self, telegram_repo, test_user_id):
        expires = datetime.utcnow() + timedelta(minutes=15)
        telegram_repo.create_link_code(test_user_id, "old", expires)
        telegram_repo.create_link_code(test_user_id, "new", expires)

        assert telegram_repo.consume_link_code("old") is None
        assert telegram_repo.consume_link_code("new") == test_user_id

    def test_inbox_queue_and_processing(self, telegram_repo, test_user_id):
        t0 = datetime(2026, 3, 1, 9, 0)
        assert telegram_repo.add_message(test_user_id, 42, 2, "second", received_at=t0 + timedelta(seconds=5))
        assert telegram_repo.add_message(test_user_id, 42, 1, "first", received_at=t0)
        assert telegram_repo.add_message(test_user_id, 42, 1, "first again") is False

        pending = telegram_repo.pending_messages(test_user_id, limit=10)
        assert [m.text for m in pending] == ["first", "second"]

        assert telegram_repo.mark_message_processed("42", "1") is True
        assert [m.text for m in telegram_repo.pending_messages(test_user_id, limit=10)] == ["second"]
        assert telegram_repo.mark_processed([pending[1].id]) == 1
        assert telegram_repo.pending_messages(test_user_id, limit=10) == []
