"""Telegram bot update handling.

Updates arrive through the webhook endpoint or, when TELEGRAM_POLLING is
set, through `TelegramPoller`. Plain text from a linked account goes to the
inbox; the Telegram scanner turns it into drafts on its next run. Commands
let a linked user add, list and complete tasks directly.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from taskflow.auth.link_codes import hash_link_code
from taskflow.database.draft_task_repository import DraftTaskRepository
from taskflow.database.integration_repository import IntegrationRepository
from taskflow.database.repository import TaskStore
from taskflow.database.telegram_repository import TelegramRepository
from taskflow.engine.completion import complete_task
from taskflow.engine.notifications import days_overdue, due_today, energy_emoji, open_tasks, overdue_tasks, short_id
from taskflow.errors import NotFound, UpstreamError
from taskflow.integrations.openai_client import OpenAIClient
from taskflow.integrations.telegram import TelegramClient
from taskflow.models.constants import DEFAULT_ESTIMATED_TIME, XP_PER_COMPLETED_TASK
from taskflow.models.draft_task import DraftStatus
from taskflow.models.task import TaskStatus
from taskflow.models.task_factory import create_task_base

logger = logging.getLogger(__name__)

MAX_LISTED = 10

WELCOME_TEXT = (
    "👋 Welcome to TaskFlow!\n\n"
    "To get started, link your Telegram account to your TaskFlow account.\n\n"
    "1. Open your TaskFlow settings\n"
    "2. Find the Telegram integration section\n"
    "3. Copy the linking code\n"
    "4. Send /link <code> here\n\n"
    "Use /help to see all commands."
)

HELP_TEXT = (
    "📚 TaskFlow Bot Commands\n\n"
    "/start - Welcome message\n"
    "/link <code> - Link Telegram to your TaskFlow account\n"
    "/add <task> - Add a new task\n"
    "/list - List pending tasks\n"
    "/today - Show tasks due today\n"
    "/overdue - Show overdue tasks\n"
    "/done <task_id> - Mark a task as complete\n"
    "/drafts - List drafts waiting for review\n"
    "/help - Show this help\n\n"
    "Any other message becomes a draft task for you to review.\n\n"
    "Examples:\n"
    "/add Fix the bug in login page\n"
    "/done abc12345"
)

NOT_LINKED_TEXT = "❌ Please link your account first using /link <code>"
QUEUED_TEXT = "📝 Got it! A draft task will be created shortly.\nOpen TaskFlow to approve or edit it."


class TelegramUpdateHandler:
    """Turns one Telegram update into side effects and a reply."""

    def __init__(
        self,
        client: Optional[TelegramClient],
        task_store_factory: Callable[[Session], TaskStore],
        classifier: Optional[OpenAIClient] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.client = client
        self.task_store_factory = task_store_factory
        self.classifier = classifier
        self.clock = clock

    def handle_update(self, db: Session, update: Dict[str, Any]) -> Optional[str]:
        """Handle an update and send the reply. Returns the reply text, or None if there was nothing to answer."""
        message = update.get("message") or {}
        text = (message.get("text") or "").strip()
        chat = message.get("chat") or {}
        sender = message.get("from") or {}
        if not text or "id" not in chat or "id" not in sender:
            return None

        reply = self._reply_for(db, message, text, str(chat["id"]), str(sender["id"]))
        if reply and self.client is not None:
            try:
                self.client.send_message(str(chat["id"]), reply)
            except UpstreamError as e:
                logger.warning(f"Failed to send Telegram reply: {e.message}")
        return reply

    def _reply_for(self, db: Session, message: Dict[str, Any], text: str, chat_id: str, telegram_user_id: str) -> str:
        command, _, argument = text.partition(" ")
        command = command.split("@", 1)[0].lower()
        argument = argument.strip()

        if command == "/start":
            return WELCOME_TEXT
        if command == "/help":
            return HELP_TEXT
        if command == "/link":
            return self._link(db, argument, chat_id, telegram_user_id, (message.get("from") or {}).get("username"))

        link = IntegrationRepository(db).get_telegram_by_telegram_user(telegram_user_id)
        if link is None:
            return NOT_LINKED_TEXT

        task_commands = {
            "/add": lambda: self._add_task(db, link.user_id, argument),
            "/list": lambda: self._list_tasks(db, link.user_id),
            "/today": lambda: self._today(db, link.user_id),
            "/overdue": lambda: self._overdue(db, link.user_id),
            "/done": lambda: self._done(db, link.user_id, argument),
        }
        if command in task_commands:
            try:
                return task_commands[command]()
            except UpstreamError as e:
                logger.warning(f"Telegram {command} failed for user {link.user_id}: {e.message}")
                return f"❌ Task store unavailable: {e.message}"
        if command == "/drafts":
            return self._list_drafts(db, link.user_id)
        if command.startswith("/"):
            return f"Unknown command {command}. Use /help to see all commands."

        received_at = datetime.utcfromtimestamp(message["date"]) if message.get("date") else None
        TelegramRepository(db).add_message(
            link.user_id,
            chat_id,
            str(message.get("message_id")),
            text,
            sender=(message.get("from") or {}).get("username"),
            received_at=received_at,
        )
        logger.debug(f"Queued Telegram message {message.get('message_id')} for user {link.user_id}")
        return QUEUED_TEXT

    def _link(self, db: Session, code: str, chat_id: str, telegram_user_id: str, username: Optional[str]) -> str:
        if not code:
            return "Usage: /link <code>\n\nGet your code from the TaskFlow settings page."
        user_id = TelegramRepository(db).consume_link_code(hash_link_code(code))
        if user_id is None:
            return "❌ Invalid or expired code.\n\nUse /help for instructions."
        IntegrationRepository(db).link_telegram(
            user_id,
            telegram_user_id=telegram_user_id,
            telegram_username=username,
            chat_id=chat_id,
        )
        logger.info(f"Linked Telegram account to user {user_id}")
        return "✅ Successfully linked! Send me anything and it becomes a draft task."

    def _add_task(self, db: Session, user_id: int, text: str) -> str:
        """Create a task right away; the classifier fills in energy, workspace and estimate when available."""
        if not text:
            return "Usage: /add <task>\n\nExample: /add Fix the bug in login page"
        title, workspace, energy, estimated, tags, due = text, None, None, DEFAULT_ESTIMATED_TIME, [], None
        if self.classifier is not None:
            proposal = self.classifier.parse_task(text)
            title = proposal.title or text
            workspace, energy, estimated = proposal.workspace, proposal.energy, proposal.estimated_time
            tags, due = proposal.tags, proposal.due_date

        task = create_task_base(
            user_id=user_id,
            title=title,
            workspace=workspace,
            energy=energy,
            estimated_time=estimated,
            tags=tags,
            due_date=due,
            source_type="telegram",
        )
        task = self.task_store_factory(db).create(task)
        logger.info(f"Added task {task.id} for user {user_id} from Telegram")
        return (
            "✅ Task added!\n\n"
            f"📝 {task.title}\n"
            f"⚡ Energy: {task.energy}\n"
            f"🏢 Workspace: {task.workspace}\n"
            f"⏱️ Estimated: {task.estimated_time} min\n"
            f"ID: {short_id(task)}"
        )

    def _list_tasks(self, db: Session, user_id: int) -> str:
        tasks = open_tasks(self.task_store_factory(db).get_all(user_id))
        if not tasks:
            return "🎉 No pending tasks! You're all caught up."
        lines = [f"📋 Your Pending Tasks ({len(tasks)})", ""]
        for index, task in enumerate(tasks[:MAX_LISTED], start=1):
            lines.append(f"{index}. {energy_emoji(task)} {task.title}")
            if task.due_date:
                lines.append(f"   📅 Due: {task.due_date.date().isoformat()}")
            lines.append(f"   ID: {short_id(task)}")
        if len(tasks) > MAX_LISTED:
            lines.append(f"... and {len(tasks) - MAX_LISTED} more tasks")
        return "\n".join(lines)

    def _today(self, db: Session, user_id: int) -> str:
        tasks = due_today(self.task_store_factory(db).get_all(user_id), self.clock())
        if not tasks:
            return "✨ No tasks due today!"
        lines = [f"📅 Tasks Due Today ({len(tasks)})", ""]
        for index, task in enumerate(tasks, start=1):
            lines.append(f"{index}. {energy_emoji(task)} {task.title}")
            lines.append(f"   ID: {short_id(task)}")
        return "\n".join(lines)

    def _overdue(self, db: Session, user_id: int) -> str:
        now = self.clock()
        tasks = overdue_tasks(self.task_store_factory(db).get_all(user_id), now)
        if not tasks:
            return "✅ No overdue tasks!"
        lines = [f"⚠️ Overdue Tasks ({len(tasks)})", ""]
        for index, task in enumerate(tasks, start=1):
            lines.append(f"{index}. {task.title}")
            lines.append(f"   📅 {days_overdue(task, now)} day(s) overdue")
            lines.append(f"   ID: {short_id(task)}")
        return "\n".join(lines)

    def _done(self, db: Session, user_id: int, task_ref: str) -> str:
        """Complete a task by full id or by an unambiguous id prefix."""
        if not task_ref:
            return "Usage: /done <task_id>\n\nUse /list to see task IDs."
        store = self.task_store_factory(db)
        tasks = store.get_all(user_id)
        matches = [t for t in tasks if t.id == task_ref] or [t for t in tasks if t.id.startswith(task_ref)]
        if not matches:
            return "❌ Task not found. Use /list to see your tasks."
        if len(matches) > 1:
            return f"❌ Several tasks start with {task_ref}. Send more of the ID."

        task = matches[0]
        if task.status == TaskStatus.DONE.value:
            return f"☑️ Already completed: {task.title}"
        try:
            _, user, leveled_up = complete_task(db, store, user_id, task.id)
        except NotFound:
            return "❌ Task not found. Use /list to see your tasks."
        reply = f"✅ Task completed: {task.title}\n🎉 +{XP_PER_COMPLETED_TASK} XP!"
        if leveled_up:
            reply += f"\n⭐ Level up! You are now level {user.level}."
        return reply

    def _list_drafts(self, db: Session, user_id: int) -> str:
        drafts = DraftTaskRepository(db).list(user_id, status=DraftStatus.PENDING)
        if not drafts:
            return "✨ No drafts waiting for review."
        lines = [f"📝 Drafts Waiting for Review ({len(drafts)})", ""]
        for index, draft in enumerate(drafts[:MAX_LISTED], start=1):
            lines.append(f"{index}. [{draft.source}] {draft.title}")
        if len(drafts) > MAX_LISTED:
            lines.append(f"... and {len(drafts) - MAX_LISTED} more drafts")
        return "\n".join(lines)


class TelegramPoller:
    """Long-polls getUpdates when no webhook is configured."""

    def __init__(
        self,
        client: TelegramClient,
        handler: TelegramUpdateHandler,
        session_factory: Callable[[], Session],
        poll_timeout: int = 25,
        retry_delay: float = 5,
    ):
        self.client = client
        self.handler = handler
        self.session_factory = session_factory
        self.poll_timeout = poll_timeout
        self.retry_delay = retry_delay
        self.offset: Optional[int] = None
        self._task: Optional[asyncio.Task] = None

    def poll_once(self) -> int:
        """Fetch and handle one batch of updates. Returns how many were handled."""
        updates: List[Dict[str, Any]] = self.client.get_updates(offset=self.offset, poll_timeout=self.poll_timeout)
        if not updates:
            return 0
        db = self.session_factory()
        try:
            for update in updates:
                self.offset = update["update_id"] + 1
                try:
                    self.handler.handle_update(db, update)
                except Exception as e:
                    db.rollback()
                    logger.error(f"Failed to handle Telegram update {update['update_id']}: {type(e).__name__}: {str(e)}")
        finally:
            db.close()
        return len(updates)

    async def _loop(self) -> None:
        logger.info("Telegram polling started")
        while True:
            try:
                await asyncio.to_thread(self.poll_once)
            except asyncio.CancelledError:
                raise
            except UpstreamError as e:
                logger.warning(f"Telegram polling error: {e.message}")
                await asyncio.sleep(self.retry_delay)
            except Exception as e:
                logger.error(f"Telegram polling failed: {type(e).__name__}: {str(e)}")
                await asyncio.sleep(self.retry_delay)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop())
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None
        logger.info("Telegram polling stopped")
