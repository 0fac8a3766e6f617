"""Classifier input/output models."""

from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field

from taskflow.models.task import Workspace, EnergyLevel
from taskflow.models.draft_task import DraftSource
from taskflow.models.constants import DEFAULT_ESTIMATED_TIME


class InboundMessage(BaseModel):
    """A message fetched by a scanner, before classification."""

    source: DraftSource
    source_id: str = Field(..., description="Stable external id used for duplicate detection")
    text: str = Field(..., description="Message body")
    subject: Optional[str] = None
    sender: Optional[str] = None
    channel: Optional[str] = None
    permalink: Optional[str] = None
    received_at: Optional[datetime] = None
    is_meeting: bool = False

    class Config:
        """Pydantic configuration."""
        use_enum_values = True


class TaskProposal(BaseModel):
    """Structured task proposal returned by the AI classifier."""

    is_task: bool = Field(True, description="Whether the message asks for some action")
    confidence: float = Field(0.5, ge=0.0, le=1.0)
    title: str
    description: Optional[str] = None
    energy: EnergyLevel = EnergyLevel.MEDIUM
    estimated_time: int = Field(DEFAULT_ESTIMATED_TIME, ge=0)
    tags: List[str] = Field(default_factory=list)
    workspace: Optional[Workspace] = None
    due_date: Optional[datetime] = None

    class Config:
        """Pydantic configuration."""
        use_enum_values = True
