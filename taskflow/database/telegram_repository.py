"""Repository for the Telegram inbox and link codes."""

import logging
from datetime import datetime
from typing import List, Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from taskflow.database.models import TelegramMessageDB, TelegramLinkCodeDB

logger = logging.getLogger(__name__)


class TelegramRepository:
    """Repository for inbound Telegram messages and one-time link codes."""

    def __init__(self, db: Session):
        self.db = db

    def add_message(
        self,
        user_id: int,
        chat_id: str,
        message_id: str,
        text: str,
        sender: Optional[str] = None,
        received_at: Optional[datetime] = None,
    ) -> bool:
        """Queue a message for the scanner. Returns False if it was already queued."""
        row = TelegramMessageDB(
            user_id=user_id,
            chat_id=str(chat_id),
            message_id=str(message_id),
            text=text,
            sender=sender,
            received_at=received_at or datetime.utcnow(),
        )
        try:
            self.db.add(row)
            self.db.commit()
            return True
        except IntegrityError:
            self.db.rollback()
            logger.debug(f"Telegram message {chat_id}:{message_id} already queued")
            return False

    def pending_messages(self, user_id: int, limit: int) -> List[TelegramMessageDB]:
        """Oldest unprocessed messages first."""
        return (
            self.db.query(TelegramMessageDB)
            .filter(TelegramMessageDB.user_id == user_id, TelegramMessageDB.processed_at.is_(None))
            .order_by(TelegramMessageDB.received_at, TelegramMessageDB.id)
            .limit(limit)
            .all()
        )

    def mark_processed(self, message_ids: List[int], when: Optional[datetime] = None) -> int:
        if not message_ids:
            return 0
        affected = (
            self.db.query(TelegramMessageDB)
            .filter(TelegramMessageDB.id.in_(message_ids))
            .update({"processed_at": when or datetime.utcnow()}, synchronize_session=False)
        )
        self.db.commit()
        return int(affected)

    def mark_message_processed(self, chat_id: str, message_id: str, when: Optional[datetime] = None) -> bool:
        affected = (
            self.db.query(TelegramMessageDB)
            .filter(TelegramMessageDB.chat_id == str(chat_id), TelegramMessageDB.message_id == str(message_id))
            .update({"processed_at": when or datetime.utcnow()}, synchronize_session=False)
        )
        self.db.commit()
        return bool(affected)

    def create_link_code(self, user_id: int, code_hash: str, expires_at: datetime) -> None:
        """Store a new link code, invalidating the user's unused ones."""
        self.db.query(TelegramLinkCodeDB).filter(
            TelegramLinkCodeDB.user_id == user_id,
            TelegramLinkCodeDB.used_at.is_(None),
        ).delete(synchronize_session=False)
        self.db.add(TelegramLinkCodeDB(user_id=user_id, code_hash=code_hash, expires_at=expires_at))
        self.db.commit()

    def consume_link_code(self, code_hash: str, now: Optional[datetime] = None) -> Optional[int]:
        """Mark a valid code used and return its user id; None if unknown, used or expired."""
        now = now or datetime.utcnow()
        affected = (
            self.db.query(TelegramLinkCodeDB)
            .filter(
                TelegramLinkCodeDB.code_hash == code_hash,
                TelegramLinkCodeDB.used_at.is_(None),
                TelegramLinkCodeDB.expires_at > now,
            )
            .update({"used_at": now}, synchronize_session=False)
        )
        self.db.commit()
        if not affected:
            return None
        row = self.db.query(TelegramLinkCodeDB).filter(TelegramLinkCodeDB.code_hash == code_hash).first()
        return row.user_id if row else None
