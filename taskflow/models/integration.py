"""Integration status, settings and scan result models.

Each integration reports a tagged status structure so clients can tell
them apart by the `source` field alone.
"""

from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union
from pydantic import BaseModel, Field

from taskflow.models.draft_task import DraftTask
from taskflow.models.constants import MIN_SCAN_FREQUENCY_MINUTES, MAX_SCAN_FREQUENCY_MINUTES


class GmailStatus(BaseModel):
    """Gmail connection status."""

    source: Literal["gmail"] = "gmail"
    connected: bool
    email: Optional[str] = None
    enabled: bool = False
    scan_frequency: Optional[int] = None
    prompt_instructions: Optional[str] = None
    last_scan_at: Optional[datetime] = None
    last_error: Optional[str] = None


class SlackStatus(BaseModel):
    """Slack connection status."""

    source: Literal["slack"] = "slack"
    connected: bool
    team_name: Optional[str] = None
    slack_user_id: Optional[str] = None
    enabled: bool = False
    scan_frequency: Optional[int] = None
    notifications_enabled: bool = False
    last_scan_at: Optional[datetime] = None
    last_error: Optional[str] = None


class TelegramStatus(BaseModel):
    """Telegram link status."""

    source: Literal["telegram"] = "telegram"
    connected: bool
    telegram_user_id: Optional[str] = None
    telegram_username: Optional[str] = None
    linked_at: Optional[datetime] = None
    notifications_enabled: bool = False
    daily_summary_time: Optional[str] = None
    enabled: bool = False
    scan_frequency: Optional[int] = None
    last_scan_at: Optional[datetime] = None
    last_error: Optional[str] = None
    bot_username: Optional[str] = None


IntegrationStatus = Annotated[
    Union[GmailStatus, SlackStatus, TelegramStatus],
    Field(discriminator="source"),
]


class IntegrationSettingsUpdate(BaseModel):
    """Settings update for an integration. Fields that do not apply to a source are ignored."""

    scan_frequency: Optional[int] = Field(
        None, ge=MIN_SCAN_FREQUENCY_MINUTES, le=MAX_SCAN_FREQUENCY_MINUTES, description="Minutes between scans"
    )
    enabled: Optional[bool] = None
    prompt_instructions: Optional[str] = Field(None, description="Gmail only: extra instructions for the classifier")
    notifications_enabled: Optional[bool] = Field(None, description="Slack/Telegram only")
    daily_summary_time: Optional[str] = Field(
        None, pattern=r"^([01]\d|2[0-3]):[0-5]\d$", description="Telegram only: HH:MM"
    )


class ScanResult(BaseModel):
    """Outcome of a single scanner run."""

    source: str
    success: bool
    connected: bool = True
    items_fetched: int = 0
    drafts_created: int = 0
    skipped: int = 0
    failed: int = 0
    drafts: List[DraftTask] = Field(default_factory=list)
    error: Optional[str] = None
    scanned_at: Optional[datetime] = None
