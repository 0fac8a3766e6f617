"""Request/response models for draft, task and AI endpoints.

Request bodies accept both snake_case and the camelCase names the web
client sends (`estimatedTime`, `dueDate`, `draftIds`, ...).
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from taskflow.models.draft_task import BulkItemResult
from taskflow.models.task import EnergyLevel, RecurrenceRule, Subtask, Task, Workspace


class DraftEditRequest(BaseModel):
    """Fields to change on a draft. Only supplied fields are applied."""

    title: Optional[str] = None
    description: Optional[str] = None
    workspace: Optional[Workspace] = None
    energy: Optional[EnergyLevel] = None
    estimated_time: Optional[int] = Field(None, ge=0, alias="estimatedTime")
    tags: Optional[List[str]] = None
    due_date: Optional[datetime] = Field(None, alias="dueDate")
    expected_version: Optional[int] = Field(None, ge=1, alias="expectedVersion")

    class Config:
        """Pydantic configuration."""
        use_enum_values = True
        populate_by_name = True

    def supplied_fields(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude={"expected_version"})


class DraftActionRequest(BaseModel):
    """Optional body for reject."""

    expected_version: Optional[int] = Field(None, ge=1, alias="expectedVersion")

    class Config:
        """Pydantic configuration."""
        populate_by_name = True


class BulkDraftRequest(BaseModel):
    draft_ids: List[int] = Field(..., alias="draftIds")

    class Config:
        """Pydantic configuration."""
        populate_by_name = True


class BulkDraftResponse(BaseModel):
    results: List[BulkItemResult]


class TaskCreateRequest(BaseModel):
    """Request model for creating a task manually."""

    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    workspace: Optional[Workspace] = None
    energy: Optional[EnergyLevel] = None
    status: Optional[str] = None
    estimated_time: Optional[int] = Field(None, ge=0, alias="estimatedTime")
    tags: List[str] = Field(default_factory=list)
    dependencies: List[str] = Field(default_factory=list)
    due_date: Optional[datetime] = Field(None, alias="dueDate")
    recurrence: Optional[RecurrenceRule] = None
    subtasks: List[Subtask] = Field(default_factory=list)
    meeting_link: Optional[str] = Field(None, alias="meetingLink")

    class Config:
        """Pydantic configuration."""
        use_enum_values = True
        populate_by_name = True


class TaskUpdateRequest(BaseModel):
    """Request model for updating a task. Only supplied fields change."""

    title: Optional[str] = None
    description: Optional[str] = None
    workspace: Optional[Workspace] = None
    energy: Optional[EnergyLevel] = None
    status: Optional[str] = None
    estimated_time: Optional[int] = Field(None, ge=0, alias="estimatedTime")
    tags: Optional[List[str]] = None
    dependencies: Optional[List[str]] = None
    due_date: Optional[datetime] = Field(None, alias="dueDate")
    snoozed_until: Optional[datetime] = Field(None, alias="snoozedUntil")
    recurrence: Optional[RecurrenceRule] = None
    subtasks: Optional[List[Subtask]] = None
    meeting_link: Optional[str] = Field(None, alias="meetingLink")

    class Config:
        """Pydantic configuration."""
        use_enum_values = True
        populate_by_name = True


class TaskListResponse(BaseModel):
    tasks: List[Task]


class CompletionResponse(BaseModel):
    """Task completion with the user's XP progress."""

    task: Task
    xp: int
    level: int
    leveled_up: bool = False


class ParseTaskRequest(BaseModel):
    input: str = Field(..., min_length=1, description="Free-form task text")


class DailyMotivationRequest(BaseModel):
    completed_tasks: int = Field(0, ge=0, alias="completedTasks")
    pending_tasks: int = Field(0, ge=0, alias="pendingTasks")

    class Config:
        """Pydantic configuration."""
        populate_by_name = True


class DailyPlanRequest(BaseModel):
    pending_tasks: List[Dict[str, Any]] = Field(default_factory=list, alias="pendingTasks")

    class Config:
        """Pydantic configuration."""
        populate_by_name = True


class FollowUpRequest(BaseModel):
    task_title: str = Field(..., min_length=1, alias="taskTitle")

    class Config:
        """Pydantic configuration."""
        populate_by_name = True


class MessageResponse(BaseModel):
    message: str


class PlanResponse(BaseModel):
    plan: str
