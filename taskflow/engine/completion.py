"""Task completion with XP, shared by the REST API, the action API and the bot."""

import logging
from typing import Tuple

from sqlalchemy.orm import Session

from taskflow.database.repository import TaskStore
from taskflow.database.user_repository import UserRepository
from taskflow.errors import NotFound
from taskflow.models.task import Task, TaskStatus
from taskflow.models.user import User

logger = logging.getLogger(__name__)


def complete_task(db: Session, store: TaskStore, user_id: int, task_id: str) -> Tuple[Task, User, bool]:
    """Mark a task done and award XP once per completion.

    Returns the task, the user after any XP change and whether the user
    levelled up. Completing an already-done task awards nothing.

    Raises:
        NotFound: the user or the task does not exist
    """
    task = store.get(user_id, task_id)
    if task is None:
        raise NotFound(f"Task {task_id} not found")
    was_done = task.status == TaskStatus.DONE.value
    completed = store.set_completed(user_id, task_id, True)

    users = UserRepository(db)
    if was_done:
        user = users.get(user_id)
        if user is None:
            raise NotFound("User not found")
        return completed, user, False
    try:
        user, leveled_up = users.award_completion_xp(user_id)
    except ValueError:
        raise NotFound("User not found")
    logger.debug(f"User {user_id} completed task {task_id}")
    return completed, user, leveled_up
