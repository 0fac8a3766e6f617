"""Repository for DraftTask database operations.

Every mutation is a compare-and-set UPDATE guarded by the draft's status
and version, so two writers racing on the same draft cannot both succeed.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy import desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from taskflow.models.draft_task import DraftTask, DraftTaskCreate, DraftStatus
from taskflow.database.models import DraftTaskDB, enum_to_value

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("title", "description", "workspace", "energy", "estimated_time", "tags", "due_date")


class DraftTaskRepository:
    """Repository for DraftTask database operations."""

    def __init__(self, db: Session):
        self.db = db

    def create(self, user_id: int, draft: DraftTaskCreate) -> Optional[DraftTask]:
        """Insert a pending draft.

        Returns None when a draft for the same (source, source_id) already exists.
        """
        now = datetime.utcnow()
        draft_db = DraftTaskDB(
            user_id=user_id,
            source=enum_to_value(draft.source),
            source_id=draft.source_id,
            title=draft.title,
            description=draft.description,
            workspace=enum_to_value(draft.workspace),
            energy=enum_to_value(draft.energy),
            estimated_time=draft.estimated_time,
            tags=list(draft.tags),
            due_date=draft.due_date,
            ai_confidence=draft.ai_confidence,
            status=DraftStatus.PENDING.value,
            version=1,
            created_at=now,
            updated_at=now,
        )
        try:
            self.db.add(draft_db)
            self.db.commit()
            self.db.refresh(draft_db)
            logger.debug(f"Created draft {draft_db.id} from {draft_db.source}: {draft_db.title[:50]}")
            return draft_db.to_pydantic()
        except IntegrityError:
            self.db.rollback()
            logger.debug(f"Draft for {draft.source}:{draft.source_id} already exists, skipping")
            return None
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to create draft for user {user_id}: {type(e).__name__}: {str(e)}")
            raise

    def get(self, user_id: int, draft_id: int) -> Optional[DraftTask]:
        """Get draft by ID for a specific user."""
        draft_db = self.db.query(DraftTaskDB).filter(
            DraftTaskDB.id == draft_id,
            DraftTaskDB.user_id == user_id,
        ).first()
        return draft_db.to_pydantic() if draft_db else None

    def list(self, user_id: int, status: Optional[DraftStatus] = DraftStatus.PENDING) -> List[DraftTask]:
        """List a user's drafts, newest first. `status=None` returns all."""
        query = self.db.query(DraftTaskDB).filter(DraftTaskDB.user_id == user_id)
        if status is not None:
            query = query.filter(DraftTaskDB.status == enum_to_value(status))
        drafts_db = query.order_by(desc(DraftTaskDB.created_at), desc(DraftTaskDB.id)).all()
        return [draft_db.to_pydantic() for draft_db in drafts_db]

    def exists_for_source(self, user_id: int, source: str, source_id: str) -> bool:
        return self.db.query(DraftTaskDB.id).filter(
            DraftTaskDB.user_id == user_id,
            DraftTaskDB.source == enum_to_value(source),
            DraftTaskDB.source_id == source_id,
        ).first() is not None

    def compare_and_set(
        self,
        user_id: int,
        draft_id: int,
        expected_version: int,
        values: Dict[str, Any],
        expected_status: DraftStatus = DraftStatus.PENDING,
    ) -> bool:
        """Apply `values` only if the draft still has the expected status and version.

        Bumps the version and `updated_at`. Returns True if the row was updated.
        """
        changes = {key: enum_to_value(value) if key in ("workspace", "energy", "status") else value
                   for key, value in values.items()}
        changes["version"] = expected_version + 1
        changes["updated_at"] = datetime.utcnow()
        try:
            affected = self.db.query(DraftTaskDB).filter(
                DraftTaskDB.id == draft_id,
                DraftTaskDB.user_id == user_id,
                DraftTaskDB.status == enum_to_value(expected_status),
                DraftTaskDB.version == expected_version,
            ).update(changes, synchronize_session=False)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to update draft {draft_id}: {type(e).__name__}: {str(e)}")
            raise
        if affected:
            logger.debug(f"Draft {draft_id} updated to version {expected_version + 1}")
        return bool(affected)

    def delete(self, user_id: int, draft_id: int) -> bool:
        """Delete a draft (any status). Returns False if it does not exist."""
        try:
            affected = self.db.query(DraftTaskDB).filter(
                DraftTaskDB.id == draft_id,
                DraftTaskDB.user_id == user_id,
            ).delete(synchronize_session=False)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to delete draft {draft_id}: {type(e).__name__}: {str(e)}")
            raise
        if affected:
            logger.debug(f"Deleted draft {draft_id}")
        return bool(affected)
