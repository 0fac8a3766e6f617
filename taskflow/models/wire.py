"""Conversion between Task and the action-parameter API's JSON shape.

The action API stores timestamps as epoch milliseconds. Rows returned by
`get_tasks` use snake_case column names (except `estimatedTime`), while
`sync_tasks` bodies use camelCase; both are accepted when reading.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from taskflow.models.task import Task, TaskStatus, RecurrenceRule, Subtask, normalize_status
from taskflow.models.task_factory import create_task_base


def to_epoch_ms(value: Optional[datetime]) -> Optional[int]:
    """Naive datetimes are treated as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def from_epoch_ms(value: Any) -> Optional[datetime]:
    """Parse epoch milliseconds (int or numeric string) or an ISO string into a naive UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    try:
        ms = int(float(value))
    except (TypeError, ValueError):
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        return parsed
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).replace(tzinfo=None)


def _pick(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def subtasks_to_wire(subtasks: List[Subtask]) -> List[Dict[str, Any]]:
    return [
        {"id": s.id, "title": s.title, "completed": s.completed, "completedAt": to_epoch_ms(s.completed_at)}
        for s in subtasks
    ]


def subtasks_from_wire(items: Any) -> List[Subtask]:
    if not isinstance(items, list):
        return []
    return [
        Subtask(
            id=str(_pick(item, "id")),
            title=_pick(item, "title") or "",
            completed=bool(_pick(item, "completed")),
            completed_at=from_epoch_ms(_pick(item, "completedAt", "completed_at")),
        )
        for item in items
        if isinstance(item, dict) and _pick(item, "id") is not None
    ]


def task_to_wire(task: Task) -> Dict[str, Any]:
    """Serialize a task for `sync_tasks` (camelCase, epoch ms).

    The remote store predates the 'pending' status and expects 'todo'.
    """
    status = task.status
    wire_status = "todo" if status == TaskStatus.PENDING else status
    return {
        "id": task.id,
        "title": task.title,
        "description": task.description,
        "workspace": task.workspace,
        "energy": task.energy,
        "status": wire_status,
        "estimatedTime": task.estimated_time,
        "tags": list(task.tags),
        "dependencies": list(task.dependencies),
        "createdAt": to_epoch_ms(task.created_at),
        "completedAt": to_epoch_ms(task.completed_at),
        "dueDate": to_epoch_ms(task.due_date),
        "snoozedUntil": to_epoch_ms(task.snoozed_until),
        "recurrence": task.recurrence.model_dump() if task.recurrence else None,
        "originalRecurrenceId": task.original_recurrence_id,
        "subtasks": subtasks_to_wire(task.subtasks),
        "meetingLink": task.meeting_link,
    }


def task_from_wire(data: Dict[str, Any], user_id: int) -> Task:
    """Parse a task from a `get_tasks` row or a `sync_tasks` body."""
    recurrence = _pick(data, "recurrence")
    estimated = _pick(data, "estimatedTime", "estimated_time")
    return create_task_base(
        user_id=user_id,
        task_id=_pick(data, "id"),
        title=_pick(data, "title") or "",
        description=_pick(data, "description"),
        workspace=_pick(data, "workspace"),
        energy=_pick(data, "energy"),
        status=normalize_status(_pick(data, "status")),
        estimated_time=int(estimated) if estimated is not None else None,
        tags=_pick(data, "tags") or [],
        dependencies=_pick(data, "dependencies") or [],
        created_at=from_epoch_ms(_pick(data, "createdAt", "created_at")),
        completed_at=from_epoch_ms(_pick(data, "completedAt", "completed_at")),
        due_date=from_epoch_ms(_pick(data, "dueDate", "due_date")),
        snoozed_until=from_epoch_ms(_pick(data, "snoozedUntil", "snoozed_until")),
        recurrence=RecurrenceRule(**recurrence) if isinstance(recurrence, dict) else None,
        original_recurrence_id=_pick(data, "originalRecurrenceId", "original_recurrence_id"),
        subtasks=subtasks_from_wire(_pick(data, "subtasks")),
        meeting_link=_pick(data, "meetingLink", "meeting_link"),
    )


def task_to_row(task: Task) -> Dict[str, Any]:
    """Serialize a task the way `get_tasks` returns rows (pending is reported as 'todo')."""
    return {
        "id": task.id,
        "user_id": task.user_id,
        "title": task.title,
        "description": task.description,
        "workspace": task.workspace,
        "energy": task.energy,
        "status": "todo" if task.status == TaskStatus.PENDING else task.status,
        "estimatedTime": task.estimated_time,
        "tags": list(task.tags),
        "dependencies": list(task.dependencies),
        "created_at": to_epoch_ms(task.created_at),
        "completed_at": to_epoch_ms(task.completed_at),
        "due_date": to_epoch_ms(task.due_date),
        "snoozed_until": to_epoch_ms(task.snoozed_until),
        "recurrence": task.recurrence.model_dump() if task.recurrence else None,
        "original_recurrence_id": task.original_recurrence_id,
        "subtasks": subtasks_to_wire(task.subtasks),
        "meeting_link": task.meeting_link,
    }
