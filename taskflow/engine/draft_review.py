"""Draft review workflow.

Mediates between AI-proposed drafts and the canonical task list:
list, edit, approve, reject, delete and their bulk forms.

State machine: pending -> approved | rejected. Both targets are terminal.
Transitions are compare-and-set on (status, version), so a draft can be
approved at most once and yields at most one canonical task.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set

from taskflow.database.draft_task_repository import DraftTaskRepository, EDITABLE_FIELDS
from taskflow.database.repository import TaskStore
from taskflow.errors import (
    DraftStateError,
    NotFound,
    TaskFlowError,
    UpstreamError,
    ValidationError,
    VersionConflict,
)
from taskflow.models.draft_task import (
    ApprovalResult,
    BulkItemResult,
    DraftStatus,
    DraftTask,
    DraftTaskCreate,
)
from taskflow.models.task_factory import clean_tags, create_task_from_draft, merge_draft_fields

logger = logging.getLogger(__name__)


def _unique_ids(ids: Iterable[int]) -> List[int]:
    """Deduplicate while preserving order."""
    seen: Set[int] = set()
    unique: List[int] = []
    for draft_id in ids:
        if draft_id not in seen:
            seen.add(draft_id)
            unique.append(draft_id)
    return unique


def task_id_for_draft(draft: DraftTask) -> str:
    """Stable canonical task id for a draft.

    Retrying an approval after an ambiguous store failure upserts the
    same task instead of creating a second one.
    """
    name = f"taskflow:draft:{draft.user_id}:{draft.id}:{draft.created_at.isoformat()}"
    return str(uuid.uuid5(uuid.NAMESPACE_URL, name))


def clean_fields(fields: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Keep editable fields only and validate them.

    Raises:
        ValidationError: title supplied but blank
    """
    cleaned: Dict[str, Any] = {}
    for key, value in (fields or {}).items():
        if key not in EDITABLE_FIELDS:
            continue
        if key == "title":
            title = (value or "").strip()
            if not title:
                raise ValidationError("Title cannot be empty")
            value = title
        elif key == "tags":
            value = clean_tags(value)
        cleaned[key] = value
    return cleaned


class DraftReviewService:
    """Review operations over a user's drafts."""

    def __init__(self, drafts: DraftTaskRepository, task_store: TaskStore):
        self.drafts = drafts
        self.task_store = task_store

    # --- queries ---

    def list_drafts(self, user_id: int, status: Optional[str] = DraftStatus.PENDING.value) -> List[DraftTask]:
        """Drafts with the given status, newest first. `status=None` or 'all' lists every draft."""
        if status is None or status == "all":
            return self.drafts.list(user_id, status=None)
        try:
            resolved = DraftStatus(status)
        except ValueError:
            raise ValidationError(f"Invalid draft status: {status}")
        return self.drafts.list(user_id, status=resolved)

    def get_draft(self, user_id: int, draft_id: int) -> DraftTask:
        draft = self.drafts.get(user_id, draft_id)
        if draft is None:
            raise NotFound(f"Draft task {draft_id} not found")
        return draft

    # --- creation (scanners) ---

    def create_draft(self, user_id: int, data: DraftTaskCreate) -> Optional[DraftTask]:
        """Create a pending draft, or return None if this message was already ingested."""
        if data.source_id:
            if self.drafts.exists_for_source(user_id, data.source, data.source_id):
                logger.debug(f"Skipping duplicate draft for {data.source}:{data.source_id}")
                return None
            if self.task_store.find_by_source(user_id, data.source, data.source_id) is not None:
                logger.debug(f"Skipping draft for {data.source}:{data.source_id}; task already exists")
                return None
        draft = self.drafts.create(user_id, data)
        if draft is not None:
            logger.info(f"Created draft {draft.id} for user {user_id} from {draft.source}")
        return draft

    # --- transitions ---

    def _require_pending(self, user_id: int, draft_id: int, action: str, expected_version: Optional[int]) -> DraftTask:
        draft = self.get_draft(user_id, draft_id)
        if draft.status != DraftStatus.PENDING:
            raise DraftStateError(draft_id, draft.status, action)
        if expected_version is not None and expected_version != draft.version:
            raise VersionConflict(draft_id, expected_version, draft.version)
        return draft

    def _raise_lost_race(self, user_id: int, draft_id: int, action: str, read_version: int) -> None:
        """Explain why a compare-and-set matched no row."""
        current = self.get_draft(user_id, draft_id)
        if current.status != DraftStatus.PENDING:
            raise DraftStateError(draft_id, current.status, action)
        raise VersionConflict(draft_id, read_version, current.version)

    def edit_draft(
        self,
        user_id: int,
        draft_id: int,
        fields: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> DraftTask:
        """Change the supplied fields of a pending draft; other fields are untouched."""
        changes = clean_fields(fields)
        if not changes:
            raise ValidationError("No fields to update")

        draft = self._require_pending(user_id, draft_id, "edit", expected_version)
        if not self.drafts.compare_and_set(user_id, draft_id, draft.version, changes):
            self._raise_lost_race(user_id, draft_id, "edit", draft.version)
        logger.debug(f"Edited draft {draft_id} fields {sorted(changes)}")
        return self.get_draft(user_id, draft_id)

    def approve_draft(
        self,
        user_id: int,
        draft_id: int,
        overrides: Optional[Dict[str, Any]] = None,
        expected_version: Optional[int] = None,
    ) -> ApprovalResult:
        """Approve a pending draft and create its canonical task.

        The draft is claimed first (pending -> approved); if the task store
        then fails, the claim is undone and UpstreamError is raised.
        """
        changes = clean_fields(overrides)
        draft = self._require_pending(user_id, draft_id, "approve", expected_version)

        task_id = task_id_for_draft(draft)
        merged = merge_draft_fields(draft, changes)
        claim = {
            **merged,
            "status": DraftStatus.APPROVED.value,
            "task_id": task_id,
            "reviewed_at": datetime.utcnow(),
        }
        if not self.drafts.compare_and_set(user_id, draft_id, draft.version, claim):
            self._raise_lost_race(user_id, draft_id, "approve", draft.version)

        approved = self.get_draft(user_id, draft_id)
        task = create_task_from_draft(approved, task_id=task_id)
        try:
            created = self.task_store.upsert(task)
        except Exception as e:
            logger.error(f"Task store failed while approving draft {draft_id}: {type(e).__name__}: {str(e)}")
            reverted = self.drafts.compare_and_set(
                user_id,
                draft_id,
                approved.version,
                {"status": DraftStatus.PENDING.value, "task_id": None, "reviewed_at": None},
                expected_status=DraftStatus.APPROVED,
            )
            if not reverted:
                logger.error(f"Could not return draft {draft_id} to pending after failed approval")
            if isinstance(e, UpstreamError):
                raise
            raise UpstreamError(f"Failed to create task for draft {draft_id}", service="task_store") from e

        logger.info(f"Approved draft {draft_id} for user {user_id} as task {created.id}")
        return ApprovalResult(draft=approved, task=created)

    def reject_draft(self, user_id: int, draft_id: int, expected_version: Optional[int] = None) -> DraftTask:
        """Reject a pending draft. No task is created."""
        draft = self._require_pending(user_id, draft_id, "reject", expected_version)
        values = {"status": DraftStatus.REJECTED.value, "reviewed_at": datetime.utcnow()}
        if not self.drafts.compare_and_set(user_id, draft_id, draft.version, values):
            self._raise_lost_race(user_id, draft_id, "reject", draft.version)
        logger.info(f"Rejected draft {draft_id} for user {user_id}")
        return self.get_draft(user_id, draft_id)

    def delete_draft(self, user_id: int, draft_id: int) -> None:
        if not self.drafts.delete(user_id, draft_id):
            raise NotFound(f"Draft task {draft_id} not found")

    # --- bulk ---

    def bulk_approve(self, user_id: int, draft_ids: List[int]) -> List[BulkItemResult]:
        """Approve each id independently; failures are reported, not raised."""
        if not draft_ids:
            raise ValidationError("draftIds must be a non-empty list")
        results: List[BulkItemResult] = []
        for draft_id in _unique_ids(draft_ids):
            try:
                outcome = self.approve_draft(user_id, draft_id)
                results.append(BulkItemResult(id=draft_id, success=True, draft=outcome.draft, task=outcome.task))
            except TaskFlowError as e:
                results.append(BulkItemResult(id=draft_id, success=False, error=e.message))
        failed = sum(1 for r in results if not r.success)
        logger.info(f"Bulk approve for user {user_id}: {len(results) - failed} approved, {failed} failed")
        return results

    def bulk_reject(self, user_id: int, draft_ids: List[int]) -> List[BulkItemResult]:
        """Reject each id independently; failures are reported, not raised."""
        if not draft_ids:
            raise ValidationError("draftIds must be a non-empty list")
        results: List[BulkItemResult] = []
        for draft_id in _unique_ids(draft_ids):
            try:
                draft = self.reject_draft(user_id, draft_id)
                results.append(BulkItemResult(id=draft_id, success=True, draft=draft))
            except TaskFlowError as e:
                results.append(BulkItemResult(id=draft_id, success=False, error=e.message))
        failed = sum(1 for r in results if not r.success)
        logger.info(f"Bulk reject for user {user_id}: {len(results) - failed} rejected, {failed} failed")
        return results
