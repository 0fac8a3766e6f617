"""Task data model for TaskFlow."""

from datetime import datetime
from typing import List, Optional, Union
from enum import Enum
from pydantic import BaseModel, Field


class TaskStatus(str, Enum):
    """Task status enumeration."""
    PENDING = "pending"
    WAITING = "waiting"
    DONE = "done"


class Workspace(str, Enum):
    """Workspace (task categorization dimension)."""
    PERSONAL = "personal"
    JOB = "job"
    FREELANCE = "freelance"


class EnergyLevel(str, Enum):
    """Energy level enumeration."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RecurrenceFrequency(str, Enum):
    """Recurrence frequency enumeration."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


# Older clients still send these status values
LEGACY_STATUS_MAPPING = {
    "todo": TaskStatus.PENDING,
    "in-progress": TaskStatus.PENDING,
    "in_progress": TaskStatus.PENDING,
    "completed": TaskStatus.DONE,
}


def normalize_status(value: Union[str, TaskStatus, None]) -> TaskStatus:
    """Map a raw status value (including legacy values) to a TaskStatus.

    Unknown or empty values fall back to PENDING.
    """
    if value is None:
        return TaskStatus.PENDING
    if isinstance(value, TaskStatus):
        return value
    raw = str(value).strip().lower()
    if raw in LEGACY_STATUS_MAPPING:
        return LEGACY_STATUS_MAPPING[raw]
    try:
        return TaskStatus(raw)
    except ValueError:
        return TaskStatus.PENDING


class RecurrenceRule(BaseModel):
    """Recurrence rule attached to a task."""

    frequency: RecurrenceFrequency = Field(..., description="daily, weekly or monthly")
    interval: int = Field(1, ge=1, description="Repeat every N periods")

    class Config:
        """Pydantic configuration."""
        use_enum_values = True


class Subtask(BaseModel):
    """A checklist item inside a task."""

    id: str
    title: str
    completed: bool = False
    completed_at: Optional[datetime] = Field(None, alias="completedAt")

    class Config:
        """Pydantic configuration."""
        populate_by_name = True


class Task(BaseModel):
    """Canonical Task model."""

    id: str = Field(..., description="Unique task identifier (UUID v4)")
    user_id: int = Field(..., description="User ID who owns this task")
    title: str = Field(..., description="Task title")
    description: Optional[str] = Field(None, description="Task description")
    workspace: Workspace = Field(Workspace.PERSONAL, description="Workspace")
    energy: EnergyLevel = Field(EnergyLevel.MEDIUM, description="Energy level")
    status: TaskStatus = Field(TaskStatus.PENDING, description="Task status")
    estimated_time: Optional[int] = Field(None, ge=0, description="Estimated time in minutes")
    tags: List[str] = Field(default_factory=list, description="Ordered list of tags")
    dependencies: List[str] = Field(default_factory=list, description="IDs of tasks this task depends on")
    created_at: datetime = Field(..., description="Task creation timestamp")
    completed_at: Optional[datetime] = Field(None, description="Completion timestamp")
    due_date: Optional[datetime] = Field(None, description="Due date")
    snoozed_until: Optional[datetime] = Field(None, description="Hidden until this timestamp")
    recurrence: Optional[RecurrenceRule] = Field(None, description="Optional recurrence rule")
    original_recurrence_id: Optional[str] = Field(
        None, description="If spawned from a recurring task, the id of the first task in the series"
    )
    subtasks: List[Subtask] = Field(default_factory=list, description="Ordered checklist items")
    meeting_link: Optional[str] = Field(None, description="Video call URL for meeting tasks")

    # Provenance
    source_type: str = Field("manual", description="Where the task came from ('manual', 'gmail', 'slack', 'telegram')")
    source_id: Optional[str] = Field(None, description="External ID in the source system")
    draft_id: Optional[int] = Field(None, description="Draft task this task was approved from")

    class Config:
        """Pydantic configuration."""
        use_enum_values = True
