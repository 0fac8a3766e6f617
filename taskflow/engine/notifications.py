"""Telegram notifications: new drafts, overdue tasks and the daily summary."""

import logging
from datetime import date, datetime, time, timedelta
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from taskflow.database.integration_repository import IntegrationRepository
from taskflow.database.repository import TaskStore
from taskflow.errors import UpstreamError
from taskflow.integrations.telegram import TelegramClient
from taskflow.models.draft_task import DraftTask
from taskflow.models.task import Task, TaskStatus

logger = logging.getLogger(__name__)

SOURCE_LABELS = {"gmail": "Gmail", "slack": "Slack", "telegram": "Telegram"}
MAX_LISTED_TITLES = 10
MAX_OVERDUE_REMINDED = 10
MAX_SUMMARY_TASKS = 5
DEFAULT_SUMMARY_TIME = time(9, 0)
ENERGY_EMOJI = {"high": "🔴", "medium": "🟡", "low": "🟢"}


def format_drafts_message(source: str, drafts: List[DraftTask]) -> str:
    count = len(drafts)
    label = SOURCE_LABELS.get(source, source)
    lines = [f"📝 {count} new draft task{'s' if count != 1 else ''} from {label}:"]
    lines.extend(f"• {d.title}" for d in drafts[:MAX_LISTED_TITLES])
    if count > MAX_LISTED_TITLES:
        lines.append(f"…and {count - MAX_LISTED_TITLES} more")
    lines.append("Open TaskFlow to review them.")
    return "\n".join(lines)


# --- task selection shared with the bot commands ---


def short_id(task: Task) -> str:
    return task.id[:8]


def energy_emoji(task: Task) -> str:
    return ENERGY_EMOJI.get(task.energy, "⚪")


def open_tasks(tasks: List[Task]) -> List[Task]:
    return [t for t in tasks if t.status != TaskStatus.DONE.value]


def overdue_tasks(tasks: List[Task], now: datetime) -> List[Task]:
    """Open tasks whose due date has passed, oldest due date first."""
    overdue = [t for t in open_tasks(tasks) if t.due_date is not None and t.due_date < now]
    return sorted(overdue, key=lambda t: t.due_date)


def due_today(tasks: List[Task], now: datetime) -> List[Task]:
    return [t for t in open_tasks(tasks) if t.due_date is not None and t.due_date.date() == now.date()]


def days_overdue(task: Task, now: datetime) -> int:
    return (now - task.due_date).days


def format_overdue_reminder(tasks: List[Task], now: datetime) -> str:
    lines = [f"⚠️ You have {len(tasks)} overdue task(s)", ""]
    for index, task in enumerate(tasks, start=1):
        lines.append(f"{index}. {energy_emoji(task)} {task.title}")
        lines.append(f"   📅 {days_overdue(task, now)} day(s) overdue")
        lines.append(f"   ID: {short_id(task)}")
    lines.append("")
    lines.append("Use /done <task_id> to mark as complete")
    return "\n".join(lines)


def format_daily_summary(tasks: List[Task], now: datetime) -> str:
    """Completed-today count plus the open tasks that are due today or undated."""
    midnight = datetime.combine(now.date(), time.min)
    completed = [
        t for t in tasks
        if t.status == TaskStatus.DONE.value and t.completed_at is not None and t.completed_at >= midnight
    ]
    todays = [
        t for t in open_tasks(tasks)
        if t.due_date is None or midnight <= t.due_date < midnight + timedelta(days=1)
    ]
    todays.sort(key=lambda t: (t.due_date is None, t.due_date or now))

    lines = ["📊 Daily Task Summary", "", f"✅ Completed today: {len(completed)}", f"📋 Pending: {len(todays)}", ""]
    if not todays:
        lines.append("✨ No tasks for today!")
        return "\n".join(lines)
    lines.append("Today's Tasks:")
    for index, task in enumerate(todays[:MAX_SUMMARY_TASKS], start=1):
        lines.append(f"{index}. {energy_emoji(task)} {task.title}")
    if len(todays) > MAX_SUMMARY_TASKS:
        lines.append(f"... and {len(todays) - MAX_SUMMARY_TASKS} more")
    return "\n".join(lines)


def parse_summary_time(value: Optional[str]) -> time:
    """'HH:MM' (UTC) to a time; missing or malformed values use 09:00."""
    if not value:
        return DEFAULT_SUMMARY_TIME
    try:
        hours, minutes = value.split(":", 1)
        return time(int(hours), int(minutes))
    except ValueError:
        logger.warning(f"Ignoring malformed daily summary time {value!r}")
        return DEFAULT_SUMMARY_TIME


class DraftNotifier:
    """Sends a Telegram message to a user when a scan created drafts."""

    def __init__(self, telegram: Optional[TelegramClient]):
        self.telegram = telegram

    def notify_drafts_created(self, db: Session, user_id: int, source: str, drafts: List[DraftTask]) -> bool:
        """Returns True if a message was sent. Delivery failures are logged, never raised."""
        if not drafts or self.telegram is None:
            return False

        repo = IntegrationRepository(db)
        link = repo.get("telegram", user_id)
        if link is None or not link.notifications_enabled:
            return False

        origin = repo.get(source, user_id)
        if origin is not None and getattr(origin, "notifications_enabled", True) is False:
            return False

        try:
            self.telegram.send_message(link.chat_id, format_drafts_message(source, drafts))
        except UpstreamError as e:
            logger.warning(f"Could not notify user {user_id} on Telegram: {e.message}")
            return False
        logger.debug(f"Notified user {user_id} about {len(drafts)} {source} draft(s)")
        return True


class ReminderService:
    """Overdue-task reminders and daily summaries for linked Telegram users.

    Both run from the scheduler. The daily summary goes out on the first run
    at or after the user's `daily_summary_time` (UTC), once per day; the
    sent-on dates are kept in memory, so a restart after the summary time
    sends that day's summary again.
    """

    def __init__(self, telegram: Optional[TelegramClient], task_store_factory: Callable[[Session], TaskStore]):
        self.telegram = telegram
        self.task_store_factory = task_store_factory
        self._summary_sent_on: Dict[int, date] = {}

    def _send(self, user_id: int, chat_id: str, text: str, what: str) -> bool:
        try:
            self.telegram.send_message(chat_id, text)
        except UpstreamError as e:
            logger.warning(f"Could not send {what} to user {user_id}: {e.message}")
            return False
        logger.debug(f"Sent {what} to user {user_id}")
        return True

    def send_overdue_reminders(self, db: Session, now: Optional[datetime] = None) -> int:
        """Message every notifiable user who has overdue tasks. Returns how many were sent."""
        if self.telegram is None:
            return 0
        now = now or datetime.utcnow()
        store = self.task_store_factory(db)
        sent = 0
        for link in IntegrationRepository(db).list_telegram_notifiable():
            try:
                overdue = overdue_tasks(store.get_all(link.user_id), now)[:MAX_OVERDUE_REMINDED]
            except UpstreamError as e:
                logger.warning(f"Skipping overdue check for user {link.user_id}: {e.message}")
                continue
            if overdue and self._send(link.user_id, link.chat_id, format_overdue_reminder(overdue, now), "overdue reminder"):
                sent += 1
        if sent:
            logger.info(f"Sent overdue reminders to {sent} user(s)")
        return sent

    def send_daily_summaries(self, db: Session, now: Optional[datetime] = None) -> int:
        """Send today's summary to users whose summary time has passed. Returns how many were sent."""
        if self.telegram is None:
            return 0
        now = now or datetime.utcnow()
        store = self.task_store_factory(db)
        sent = 0
        for link in IntegrationRepository(db).list_telegram_notifiable():
            if self._summary_sent_on.get(link.user_id) == now.date():
                continue
            if now.time() < parse_summary_time(link.daily_summary_time):
                continue
            try:
                tasks = store.get_all(link.user_id)
            except UpstreamError as e:
                logger.warning(f"Skipping daily summary for user {link.user_id}: {e.message}")
                continue
            if self._send(link.user_id, link.chat_id, format_daily_summary(tasks, now), "daily summary"):
                self._summary_sent_on[link.user_id] = now.date()
                sent += 1
        return sent
