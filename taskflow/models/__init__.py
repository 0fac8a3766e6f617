"""Data models for TaskFlow."""

from taskflow.models.task import Task, TaskStatus, Workspace, EnergyLevel, RecurrenceRule, RecurrenceFrequency, Subtask
from taskflow.models.draft_task import DraftTask, DraftStatus, DraftSource, DraftTaskCreate
from taskflow.models.user import User
from taskflow.models.proposal import TaskProposal, InboundMessage
from taskflow.models.integration import GmailStatus, SlackStatus, TelegramStatus, ScanResult

__all__ = [
    "Task",
    "TaskStatus",
    "Workspace",
    "EnergyLevel",
    "RecurrenceRule",
    "RecurrenceFrequency",
    "Subtask",
    "DraftTask",
    "DraftStatus",
    "DraftSource",
    "DraftTaskCreate",
    "User",
    "TaskProposal",
    "InboundMessage",
    "GmailStatus",
    "SlackStatus",
    "TelegramStatus",
    "ScanResult",
]
