"""SQLAlchemy database models for TaskFlow."""

from datetime import datetime
from typing import Union, TypeVar, Type
import uuid
from sqlalchemy import Column, String, Integer, Float, Boolean, Date, DateTime, JSON, Text, ForeignKey, UniqueConstraint

from taskflow.database.database import Base
from taskflow.models.task import TaskStatus, Workspace, EnergyLevel, normalize_status
from taskflow.models.draft_task import DraftStatus
from taskflow.models.constants import DEFAULT_SCAN_FREQUENCY_MINUTES

T = TypeVar('T')


def enum_to_value(enum_obj: Union[str, T, None]):
    """Convert enum to string value (handles both enum and string)."""
    if enum_obj is None:
        return None
    if hasattr(enum_obj, 'value'):
        return enum_obj.value
    return str(enum_obj)


def value_to_enum(value: str, enum_class: Type[T], default: T) -> T:
    """Convert string to enum with fallback to default."""
    if not value:
        return default
    try:
        return enum_class(value.lower())
    except (ValueError, AttributeError):
        return default


def subtasks_to_json(subtasks) -> list:
    """Subtask models (or dicts) as JSON-ready dicts."""
    return [item.model_dump(mode="json") if hasattr(item, "model_dump") else dict(item) for item in subtasks or []]


class UserDB(Base):
    """Database model for User."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String, nullable=False)
    email = Column(String, nullable=False, unique=True, index=True)
    password_hash = Column(String, nullable=False)

    # Gamification
    xp = Column(Integer, nullable=False, default=0)
    level = Column(Integer, nullable=False, default=1)
    streak = Column(Integer, nullable=False, default=0)
    last_active_date = Column(Date, nullable=True)
    last_reset_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def to_pydantic(self):
        """Convert database model to Pydantic model."""
        from taskflow.models.user import User

        return User(
            id=self.id,
            username=self.username,
            email=self.email,
            xp=self.xp or 0,
            level=self.level or 1,
            streak=self.streak or 0,
            last_active_date=self.last_active_date,
            last_reset_at=self.last_reset_at,
            created_at=self.created_at,
        )


class TaskDB(Base):
    """Database model for Task."""

    __tablename__ = "tasks"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    workspace = Column(String, nullable=False, default=Workspace.PERSONAL.value)
    energy = Column(String, nullable=False, default=EnergyLevel.MEDIUM.value)
    status = Column(String, nullable=False, default=TaskStatus.PENDING.value, index=True)
    estimated_time = Column(Integer, nullable=True)
    tags = Column(JSON, nullable=False, default=list)
    dependencies = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)
    due_date = Column(DateTime, nullable=True)
    snoozed_until = Column(DateTime, nullable=True)

    # Recurrence rule stored as {"frequency": ..., "interval": ...}
    recurrence = Column(JSON, nullable=True)
    original_recurrence_id = Column(String, nullable=True)
    # Checklist items stored as [{"id", "title", "completed", "completed_at"}]
    subtasks = Column(JSON, nullable=False, default=list)
    meeting_link = Column(Text, nullable=True)

    # Provenance
    source_type = Column(String, nullable=False, default="manual", index=True)
    source_id = Column(String, nullable=True, index=True)
    # Unique: a draft produces at most one task
    draft_id = Column(Integer, ForeignKey("draft_tasks.id", ondelete="SET NULL"), nullable=True, unique=True)

    def to_pydantic(self):
        """Convert database model to Pydantic model."""
        from taskflow.models.task import Task, RecurrenceRule, Subtask

        return Task(
            id=self.id,
            user_id=self.user_id,
            title=self.title,
            description=self.description,
            workspace=value_to_enum(self.workspace, Workspace, Workspace.PERSONAL),
            energy=value_to_enum(self.energy, EnergyLevel, EnergyLevel.MEDIUM),
            status=normalize_status(self.status),
            estimated_time=self.estimated_time,
            tags=self.tags or [],
            dependencies=self.dependencies or [],
            created_at=self.created_at,
            completed_at=self.completed_at,
            due_date=self.due_date,
            snoozed_until=self.snoozed_until,
            recurrence=RecurrenceRule(**self.recurrence) if self.recurrence else None,
            original_recurrence_id=self.original_recurrence_id,
            subtasks=[Subtask(**item) for item in self.subtasks or []],
            meeting_link=self.meeting_link,
            source_type=self.source_type,
            source_id=self.source_id,
            draft_id=self.draft_id,
        )

    @classmethod
    def from_pydantic(cls, task):
        """Create database model from Pydantic model."""
        return cls(
            id=task.id,
            user_id=task.user_id,
            title=task.title,
            description=task.description,
            workspace=enum_to_value(task.workspace),
            energy=enum_to_value(task.energy),
            status=enum_to_value(task.status),
            estimated_time=task.estimated_time,
            tags=list(task.tags),
            dependencies=list(task.dependencies),
            created_at=task.created_at,
            completed_at=task.completed_at,
            due_date=task.due_date,
            snoozed_until=task.snoozed_until,
            recurrence=task.recurrence.model_dump() if task.recurrence else None,
            original_recurrence_id=task.original_recurrence_id,
            subtasks=subtasks_to_json(task.subtasks),
            meeting_link=task.meeting_link,
            source_type=task.source_type,
            source_id=task.source_id,
            draft_id=task.draft_id,
        )


class DraftTaskDB(Base):
    """Database model for DraftTask."""

    __tablename__ = "draft_tasks"
    __table_args__ = (
        # The same inbound message never yields two drafts.
        # NULL source_id values do not participate.
        UniqueConstraint("user_id", "source", "source_id", name="uq_draft_source_message"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    source = Column(String, nullable=False, index=True)
    source_id = Column(String, nullable=True)

    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    workspace = Column(String, nullable=True)
    energy = Column(String, nullable=True)
    estimated_time = Column(Integer, nullable=True)
    tags = Column(JSON, nullable=False, default=list)
    due_date = Column(DateTime, nullable=True)
    ai_confidence = Column(Float, nullable=True)

    status = Column(String, nullable=False, default=DraftStatus.PENDING.value, index=True)
    task_id = Column(String, nullable=True)
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    reviewed_at = Column(DateTime, nullable=True)

    def to_pydantic(self):
        """Convert database model to Pydantic model."""
        from taskflow.models.draft_task import DraftTask

        return DraftTask(
            id=self.id,
            user_id=self.user_id,
            source=self.source,
            source_id=self.source_id,
            title=self.title,
            description=self.description,
            workspace=value_to_enum(self.workspace, Workspace, None),
            energy=value_to_enum(self.energy, EnergyLevel, None),
            estimated_time=self.estimated_time,
            tags=self.tags or [],
            due_date=self.due_date,
            ai_confidence=self.ai_confidence,
            status=value_to_enum(self.status, DraftStatus, DraftStatus.PENDING),
            task_id=self.task_id,
            version=self.version or 1,
            created_at=self.created_at,
            updated_at=self.updated_at,
            reviewed_at=self.reviewed_at,
        )


class ScanStateMixin:
    """Columns shared by integrations that are scanned on a schedule."""

    enabled = Column(Boolean, nullable=False, default=True)
    connected = Column(Boolean, nullable=False, default=True)
    last_scan_at = Column(DateTime, nullable=True)
    last_attempt_at = Column(DateTime, nullable=True)
    last_error = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class GmailIntegrationDB(ScanStateMixin, Base):
    """Per-user Gmail connection.

    Access and refresh tokens are stored encrypted (Fernet).
    """

    __tablename__ = "gmail_integrations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    email = Column(String, nullable=True)
    access_token_encrypted = Column(Text, nullable=True)
    refresh_token_encrypted = Column(Text, nullable=True)
    token_expiry = Column(DateTime, nullable=True)
    scan_frequency = Column(Integer, nullable=False, default=DEFAULT_SCAN_FREQUENCY_MINUTES["gmail"])
    prompt_instructions = Column(Text, nullable=True)

    def to_status(self):
        from taskflow.models.integration import GmailStatus

        return GmailStatus(
            connected=bool(self.connected),
            email=self.email,
            enabled=bool(self.enabled),
            scan_frequency=self.scan_frequency,
            prompt_instructions=self.prompt_instructions,
            last_scan_at=self.last_scan_at,
            last_error=self.last_error,
        )


class SlackIntegrationDB(ScanStateMixin, Base):
    """Per-user Slack connection (user token from OAuth v2)."""

    __tablename__ = "slack_integrations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    slack_user_id = Column(String, nullable=True)
    team_id = Column(String, nullable=True)
    team_name = Column(String, nullable=True)
    access_token_encrypted = Column(Text, nullable=True)
    scan_frequency = Column(Integer, nullable=False, default=DEFAULT_SCAN_FREQUENCY_MINUTES["slack"])
    notifications_enabled = Column(Boolean, nullable=False, default=True)

    def to_status(self):
        from taskflow.models.integration import SlackStatus

        return SlackStatus(
            connected=bool(self.connected),
            team_name=self.team_name,
            slack_user_id=self.slack_user_id,
            enabled=bool(self.enabled),
            scan_frequency=self.scan_frequency,
            notifications_enabled=bool(self.notifications_enabled),
            last_scan_at=self.last_scan_at,
            last_error=self.last_error,
        )


class TelegramIntegrationDB(ScanStateMixin, Base):
    """Link between a TaskFlow user and a Telegram account."""

    __tablename__ = "telegram_integrations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    telegram_user_id = Column(String, nullable=False, unique=True, index=True)
    telegram_username = Column(String, nullable=True)
    chat_id = Column(String, nullable=False)
    linked_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    notifications_enabled = Column(Boolean, nullable=False, default=True)
    daily_summary_time = Column(String, nullable=True, default="09:00")
    scan_frequency = Column(Integer, nullable=False, default=DEFAULT_SCAN_FREQUENCY_MINUTES["telegram"])

    def to_status(self):
        from taskflow.models.integration import TelegramStatus

        return TelegramStatus(
            connected=bool(self.connected),
            telegram_user_id=self.telegram_user_id,
            telegram_username=self.telegram_username,
            linked_at=self.linked_at,
            notifications_enabled=bool(self.notifications_enabled),
            daily_summary_time=self.daily_summary_time,
            enabled=bool(self.enabled),
            scan_frequency=self.scan_frequency,
            last_scan_at=self.last_scan_at,
            last_error=self.last_error,
        )


class TelegramMessageDB(Base):
    """Inbound Telegram text from a linked user, waiting to be scanned."""

    __tablename__ = "telegram_messages"
    __table_args__ = (
        UniqueConstraint("chat_id", "message_id", name="uq_telegram_chat_message"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    chat_id = Column(String, nullable=False)
    message_id = Column(String, nullable=False)
    text = Column(Text, nullable=False)
    sender = Column(String, nullable=True)
    received_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    processed_at = Column(DateTime, nullable=True, index=True)


class TelegramLinkCodeDB(Base):
    """One-time code a user sends to the bot with /link.

    Only the HMAC hash of the code is stored.
    """

    __tablename__ = "telegram_link_codes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    code_hash = Column(String, nullable=False, unique=True, index=True)
    expires_at = Column(DateTime, nullable=False)
    used_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
