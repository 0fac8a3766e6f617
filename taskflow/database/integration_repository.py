"""Repository for per-user integration rows (Gmail, Slack, Telegram).

Security notes:
- OAuth tokens are secrets: stored encrypted-at-rest and never logged.
- Callers must ensure decrypted values are not leaked to clients.
"""

import logging
import os
from datetime import datetime
from typing import Dict, List, NamedTuple, Optional, Type, Union

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy.orm import Session

from taskflow.database.models import (
    GmailIntegrationDB,
    SlackIntegrationDB,
    TelegramIntegrationDB,
    enum_to_value,
)
from taskflow.models.integration import IntegrationSettingsUpdate

logger = logging.getLogger(__name__)

IntegrationRow = Union[GmailIntegrationDB, SlackIntegrationDB, TelegramIntegrationDB]

MODEL_BY_SOURCE: Dict[str, Type] = {
    "gmail": GmailIntegrationDB,
    "slack": SlackIntegrationDB,
    "telegram": TelegramIntegrationDB,
}

# Settings fields each source accepts
SETTINGS_FIELDS = {
    "gmail": ("scan_frequency", "enabled", "prompt_instructions"),
    "slack": ("scan_frequency", "enabled", "notifications_enabled"),
    "telegram": ("scan_frequency", "enabled", "notifications_enabled", "daily_summary_time"),
}


def _require_fernet() -> Fernet:
    key = os.getenv("TOKEN_ENCRYPTION_KEY", "").strip()
    if not key:
        raise RuntimeError(
            "TOKEN_ENCRYPTION_KEY is not set. "
            "Set it to a Fernet key (base64 urlsafe 32-byte) to enable encrypted token storage."
        )
    return Fernet(key)


def encrypt_secret(raw: str) -> str:
    f = _require_fernet()
    return f.encrypt(raw.encode("utf-8")).decode("utf-8")


def decrypt_secret(enc: str) -> str:
    f = _require_fernet()
    try:
        return f.decrypt(enc.encode("utf-8")).decode("utf-8")
    except InvalidToken as e:
        raise RuntimeError("Stored token could not be decrypted; TOKEN_ENCRYPTION_KEY may be wrong.") from e


def _model_for(source) -> Type:
    key = enum_to_value(source)
    if key not in MODEL_BY_SOURCE:
        raise ValueError(f"Unknown integration source: {key}")
    return MODEL_BY_SOURCE[key]


class ScheduledIntegration(NamedTuple):
    """What the scan scheduler needs to know about one integration."""

    user_id: int
    source: str
    scan_frequency: int
    last_scan_at: Optional[datetime]


class IntegrationRepository:
    """Repository for integration rows."""

    def __init__(self, db: Session):
        self.db = db

    def _commit(self, row, action: str):
        try:
            self.db.commit()
            self.db.refresh(row)
            return row
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to {action}: {type(e).__name__}: {str(e)}")
            raise

    def get(self, source, user_id: int) -> Optional[IntegrationRow]:
        model = _model_for(source)
        return self.db.query(model).filter(model.user_id == user_id).first()

    def delete(self, source, user_id: int) -> int:
        """Delete a user's integration row. Returns number of rows deleted (0 or 1)."""
        model = _model_for(source)
        affected = self.db.query(model).filter(model.user_id == user_id).delete(synchronize_session=False)
        self.db.commit()
        if affected:
            logger.info(f"Disconnected {enum_to_value(source)} for user {user_id}")
        return int(affected)

    # --- Gmail ---

    def upsert_gmail(
        self,
        user_id: int,
        *,
        email: Optional[str],
        access_token: str,
        refresh_token: Optional[str],
        expiry: Optional[datetime] = None,
    ) -> GmailIntegrationDB:
        row = self.get("gmail", user_id)
        now = datetime.utcnow()
        if row is None:
            row = GmailIntegrationDB(user_id=user_id, created_at=now)
            self.db.add(row)
        row.email = email or row.email
        row.access_token_encrypted = encrypt_secret(access_token)
        # Google only returns a refresh token on first consent; keep the old one otherwise
        if refresh_token:
            row.refresh_token_encrypted = encrypt_secret(refresh_token)
        row.token_expiry = expiry
        row.connected = True
        row.enabled = True
        row.last_error = None
        row.updated_at = now
        return self._commit(row, f"save Gmail tokens for user {user_id}")

    def update_gmail_access_token(self, user_id: int, access_token: str, expiry: Optional[datetime]) -> None:
        row = self.get("gmail", user_id)
        if row is None:
            return
        row.access_token_encrypted = encrypt_secret(access_token)
        row.token_expiry = expiry
        self._commit(row, f"refresh Gmail token for user {user_id}")

    # --- Slack ---

    def upsert_slack(
        self,
        user_id: int,
        *,
        slack_user_id: str,
        team_id: Optional[str],
        team_name: Optional[str],
        access_token: str,
    ) -> SlackIntegrationDB:
        row = self.get("slack", user_id)
        now = datetime.utcnow()
        if row is None:
            row = SlackIntegrationDB(user_id=user_id, created_at=now)
            self.db.add(row)
        row.slack_user_id = slack_user_id
        row.team_id = team_id
        row.team_name = team_name
        row.access_token_encrypted = encrypt_secret(access_token)
        row.connected = True
        row.enabled = True
        row.last_error = None
        row.updated_at = now
        return self._commit(row, f"save Slack token for user {user_id}")

    # --- Telegram ---

    def get_telegram_by_telegram_user(self, telegram_user_id: str) -> Optional[TelegramIntegrationDB]:
        return self.db.query(TelegramIntegrationDB).filter(
            TelegramIntegrationDB.telegram_user_id == str(telegram_user_id)
        ).first()

    def link_telegram(
        self,
        user_id: int,
        *,
        telegram_user_id: str,
        telegram_username: Optional[str],
        chat_id: str,
    ) -> TelegramIntegrationDB:
        """Link a Telegram account to a user, replacing any previous link on either side."""
        self.db.query(TelegramIntegrationDB).filter(
            (TelegramIntegrationDB.telegram_user_id == str(telegram_user_id))
            & (TelegramIntegrationDB.user_id != user_id)
        ).delete(synchronize_session=False)

        row = self.get("telegram", user_id)
        now = datetime.utcnow()
        if row is None:
            row = TelegramIntegrationDB(user_id=user_id, created_at=now)
            self.db.add(row)
        row.telegram_user_id = str(telegram_user_id)
        row.telegram_username = telegram_username
        row.chat_id = str(chat_id)
        row.linked_at = now
        row.connected = True
        row.enabled = True
        row.last_error = None
        row.updated_at = now
        return self._commit(row, f"link Telegram for user {user_id}")

    def list_telegram_notifiable(self) -> List[TelegramIntegrationDB]:
        """Linked Telegram accounts that accept notifications."""
        return self.db.query(TelegramIntegrationDB).filter(
            TelegramIntegrationDB.notifications_enabled.is_(True),
        ).order_by(TelegramIntegrationDB.user_id).all()

    # --- Settings & scan state ---

    def update_settings(self, source, user_id: int, settings: IntegrationSettingsUpdate) -> Optional[IntegrationRow]:
        """Apply the supplied settings that are valid for this source."""
        row = self.get(source, user_id)
        if row is None:
            return None
        supplied = settings.model_dump(exclude_unset=True)
        for field in SETTINGS_FIELDS[enum_to_value(source)]:
            if field in supplied and supplied[field] is not None:
                setattr(row, field, supplied[field])
        row.updated_at = datetime.utcnow()
        return self._commit(row, f"update {enum_to_value(source)} settings for user {user_id}")

    def mark_scan_success(self, source, user_id: int, when: datetime) -> None:
        row = self.get(source, user_id)
        if row is None:
            return
        row.last_scan_at = when
        row.last_attempt_at = when
        row.connected = True
        row.last_error = None
        self._commit(row, f"record {enum_to_value(source)} scan for user {user_id}")

    def mark_scan_failure(self, source, user_id: int, when: datetime, error: str) -> None:
        """Record a failed fetch. `last_scan_at` is left alone so the next scan retries the same window."""
        row = self.get(source, user_id)
        if row is None:
            return
        row.last_attempt_at = when
        row.connected = False
        row.last_error = error[:500]
        self._commit(row, f"record {enum_to_value(source)} scan failure for user {user_id}")

    def list_scheduled(self) -> List[ScheduledIntegration]:
        """All enabled integrations across sources."""
        out: List[ScheduledIntegration] = []
        for source, model in MODEL_BY_SOURCE.items():
            rows = self.db.query(model).filter(model.enabled.is_(True)).all()
            for row in rows:
                out.append(ScheduledIntegration(row.user_id, source, row.scan_frequency, row.last_scan_at))
        return out
