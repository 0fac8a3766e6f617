"""Repository for User database operations."""

import logging
from datetime import date, datetime, timedelta
from typing import Optional, Tuple
from sqlalchemy.orm import Session

from taskflow.models.user import User
from taskflow.models.constants import XP_PER_COMPLETED_TASK, XP_PER_LEVEL
from taskflow.database.models import UserDB

logger = logging.getLogger(__name__)


def level_for_xp(xp: int) -> int:
    return xp // XP_PER_LEVEL + 1


class UserRepository:
    """Repository for User database operations."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, user_id: int) -> Optional[User]:
        """Get user by ID."""
        user_db = self.db.query(UserDB).filter(UserDB.id == user_id).first()
        return user_db.to_pydantic() if user_db else None

    def get_by_email(self, email: str) -> Optional[User]:
        """Get user by email."""
        user_db = self.db.query(UserDB).filter(UserDB.email == email).first()
        return user_db.to_pydantic() if user_db else None

    def get_password_hash(self, email: str) -> Optional[Tuple[int, str]]:
        """Return (user_id, password_hash) for an email, or None."""
        row = self.db.query(UserDB.id, UserDB.password_hash).filter(UserDB.email == email).first()
        return (row[0], row[1]) if row else None

    def create(self, username: str, email: str, password_hash: str) -> User:
        """Create a new user."""
        try:
            user_db = UserDB(
                username=username,
                email=email,
                password_hash=password_hash,
                xp=0,
                level=1,
                streak=0,
                created_at=datetime.utcnow(),
            )
            self.db.add(user_db)
            self.db.commit()
            self.db.refresh(user_db)
            logger.debug(f"Created user {user_db.id}")
            return user_db.to_pydantic()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to create user: {type(e).__name__}: {str(e)}")
            raise

    def record_login(self, user_id: int, today: Optional[date] = None) -> User:
        """Update the login streak.

        Logging in on consecutive days extends the streak; a gap resets it
        to 1. Logging in twice on the same day changes nothing.
        """
        today = today or datetime.utcnow().date()
        user_db = self.db.query(UserDB).filter(UserDB.id == user_id).first()
        if not user_db:
            raise ValueError(f"User {user_id} not found")

        if user_db.last_active_date != today:
            if user_db.last_active_date == today - timedelta(days=1):
                user_db.streak = (user_db.streak or 0) + 1
            else:
                user_db.streak = 1
            user_db.last_active_date = today
            try:
                self.db.commit()
                self.db.refresh(user_db)
            except Exception as e:
                self.db.rollback()
                logger.error(f"Failed to record login for user {user_id}: {type(e).__name__}: {str(e)}")
                raise
        return user_db.to_pydantic()

    def award_completion_xp(self, user_id: int) -> Tuple[User, bool]:
        """Add completion XP and recompute the level.

        Returns the updated user and whether the level went up.
        """
        user_db = self.db.query(UserDB).filter(UserDB.id == user_id).first()
        if not user_db:
            raise ValueError(f"User {user_id} not found")

        user_db.xp = (user_db.xp or 0) + XP_PER_COMPLETED_TASK
        new_level = level_for_xp(user_db.xp)
        leveled_up = new_level > (user_db.level or 1)
        if leveled_up:
            user_db.level = new_level
        try:
            self.db.commit()
            self.db.refresh(user_db)
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to award XP to user {user_id}: {type(e).__name__}: {str(e)}")
            raise
        if leveled_up:
            logger.info(f"User {user_id} reached level {new_level}")
        return user_db.to_pydantic(), leveled_up

    def mark_daily_reset(self, user_id: int, when: Optional[datetime] = None) -> User:
        user_db = self.db.query(UserDB).filter(UserDB.id == user_id).first()
        if not user_db:
            raise ValueError(f"User {user_id} not found")
        user_db.last_reset_at = when or datetime.utcnow()
        try:
            self.db.commit()
            self.db.refresh(user_db)
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to reset user {user_id}: {type(e).__name__}: {str(e)}")
            raise
        return user_db.to_pydantic()
