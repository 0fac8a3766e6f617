"""Task creation factory for TaskFlow.

This module centralizes task creation logic so that manual tasks, tasks
synced from clients, and tasks approved from drafts all get the same
defaults.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from taskflow.models.task import Task, TaskStatus, normalize_status
from taskflow.models.draft_task import DraftTask
from taskflow.models.constants import DEFAULT_WORKSPACE, DEFAULT_ENERGY, MAX_TAGS


def clean_tags(tags: Optional[List[str]], limit: Optional[int] = None) -> List[str]:
    """Strip, drop empties and deduplicate tags while preserving order."""
    seen = set()
    cleaned: List[str] = []
    for tag in tags or []:
        value = str(tag).strip()
        if not value or value.lower() in seen:
            continue
        seen.add(value.lower())
        cleaned.append(value)
    if limit is not None:
        cleaned = cleaned[:limit]
    return cleaned


def create_task_base(
    user_id: int,
    title: str,
    description: Optional[str] = None,
    workspace: Optional[Any] = None,
    energy: Optional[Any] = None,
    status: Optional[Any] = None,
    estimated_time: Optional[int] = None,
    tags: Optional[List[str]] = None,
    dependencies: Optional[List[str]] = None,
    due_date: Optional[datetime] = None,
    snoozed_until: Optional[datetime] = None,
    recurrence: Optional[Any] = None,
    original_recurrence_id: Optional[str] = None,
    subtasks: Optional[List[Any]] = None,
    meeting_link: Optional[str] = None,
    source_type: str = "manual",
    source_id: Optional[str] = None,
    draft_id: Optional[int] = None,
    task_id: Optional[str] = None,
    created_at: Optional[datetime] = None,
    completed_at: Optional[datetime] = None,
) -> Task:
    """Create a task with defaults, allowing overrides.

    Args:
        user_id: User ID who owns this task
        title: Task title (required, stripped)
        workspace: Defaults to 'personal'
        energy: Defaults to 'medium'
        status: Raw or legacy status, normalized (defaults to pending)
        task_id: Use this id instead of generating a new UUID
        created_at: Defaults to now

    Returns:
        Task object with defaults applied
    """
    resolved_status = normalize_status(status)
    if resolved_status == TaskStatus.DONE and completed_at is None:
        completed_at = datetime.utcnow()

    return Task(
        id=task_id or str(uuid.uuid4()),
        user_id=user_id,
        title=title.strip(),
        description=description,
        workspace=workspace or DEFAULT_WORKSPACE,
        energy=energy or DEFAULT_ENERGY,
        status=resolved_status,
        estimated_time=estimated_time,
        tags=clean_tags(tags),
        dependencies=list(dependencies or []),
        created_at=created_at or datetime.utcnow(),
        completed_at=completed_at,
        due_date=due_date,
        snoozed_until=snoozed_until,
        recurrence=recurrence,
        original_recurrence_id=original_recurrence_id,
        subtasks=list(subtasks or []),
        meeting_link=meeting_link or None,
        source_type=source_type,
        source_id=source_id,
        draft_id=draft_id,
    )


def merge_draft_fields(draft: DraftTask, overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Return the draft's editable fields with any supplied overrides applied."""
    fields = {
        "title": draft.title,
        "description": draft.description,
        "workspace": draft.workspace,
        "energy": draft.energy,
        "estimated_time": draft.estimated_time,
        "tags": list(draft.tags),
        "due_date": draft.due_date,
    }
    for key, value in (overrides or {}).items():
        if key in fields:
            fields[key] = value
    return fields


def create_task_from_draft(
    draft: DraftTask,
    overrides: Optional[Dict[str, Any]] = None,
    task_id: Optional[str] = None,
) -> Task:
    """Build the canonical task for an approved draft.

    Fields come from the draft, overridden by `overrides`. Workspace and
    energy fall back to the defaults when neither supplies them.
    """
    fields = merge_draft_fields(draft, overrides)
    return create_task_base(
        user_id=draft.user_id,
        title=fields["title"],
        description=fields["description"],
        workspace=fields["workspace"],
        energy=fields["energy"],
        estimated_time=fields["estimated_time"],
        tags=fields["tags"],
        due_date=fields["due_date"],
        source_type=draft.source,
        source_id=draft.source_id,
        draft_id=draft.id,
        task_id=task_id,
    )


def proposal_tags(tags: Optional[List[str]], *extra: str) -> List[str]:
    """Classifier tags (at most MAX_TAGS) followed by source tags."""
    return clean_tags(clean_tags(tags, limit=MAX_TAGS) + [t for t in extra if t])
