"""Draft task data model for TaskFlow.

A draft task is an AI-proposed task that waits for the user to approve,
edit or reject it before it becomes part of the canonical task list.
"""

from datetime import datetime
from typing import List, Optional
from enum import Enum
from pydantic import BaseModel, Field

from taskflow.models.task import Task, Workspace, EnergyLevel


class DraftSource(str, Enum):
    """Channel a draft task was ingested from."""
    GMAIL = "gmail"
    SLACK = "slack"
    TELEGRAM = "telegram"


class DraftStatus(str, Enum):
    """Draft status enumeration.

    Transitions are one-way: pending -> approved or pending -> rejected.
    """
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class DraftTask(BaseModel):
    """Draft task model."""

    id: int = Field(..., description="Draft identifier assigned by the store")
    user_id: int = Field(..., description="User ID who owns this draft")
    source: DraftSource = Field(..., description="Ingestion channel")
    source_id: Optional[str] = Field(None, description="External message ID in the source channel")
    title: str = Field(..., description="Proposed task title")
    description: Optional[str] = Field(None, description="Proposed task description")
    workspace: Optional[Workspace] = Field(None, description="Suggested workspace")
    energy: Optional[EnergyLevel] = Field(None, description="Estimated energy level")
    estimated_time: Optional[int] = Field(None, ge=0, description="Estimated time in minutes")
    tags: List[str] = Field(default_factory=list, description="Ordered list of tags")
    due_date: Optional[datetime] = Field(None, description="Due date")
    ai_confidence: Optional[float] = Field(None, ge=0.0, le=1.0, description="Classifier confidence")
    status: DraftStatus = Field(DraftStatus.PENDING, description="Review status")
    task_id: Optional[str] = Field(None, description="Canonical task created on approval")
    version: int = Field(1, ge=1, description="Optimistic concurrency token, bumped on every change")
    created_at: datetime = Field(..., description="Creation timestamp")
    updated_at: datetime = Field(..., description="Last update timestamp")
    reviewed_at: Optional[datetime] = Field(None, description="When the draft was approved or rejected")

    class Config:
        """Pydantic configuration."""
        use_enum_values = True


class DraftTaskCreate(BaseModel):
    """Fields a scanner supplies when creating a pending draft."""

    source: DraftSource
    source_id: Optional[str] = None
    title: str
    description: Optional[str] = None
    workspace: Optional[Workspace] = None
    energy: Optional[EnergyLevel] = None
    estimated_time: Optional[int] = Field(None, ge=0)
    tags: List[str] = Field(default_factory=list)
    due_date: Optional[datetime] = None
    ai_confidence: Optional[float] = Field(None, ge=0.0, le=1.0)

    class Config:
        """Pydantic configuration."""
        use_enum_values = True


class ApprovalResult(BaseModel):
    """Approved draft together with the canonical task it produced."""

    draft: DraftTask
    task: Task


class BulkItemResult(BaseModel):
    """Outcome of one id within a bulk approve/reject."""

    id: int
    success: bool
    draft: Optional[DraftTask] = None
    task: Optional[Task] = None
    error: Optional[str] = None
