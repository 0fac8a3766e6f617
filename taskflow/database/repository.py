"""Repository layer for canonical task storage."""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional
from sqlalchemy.orm import Session
from sqlalchemy import desc

from taskflow.models.task import Task, TaskStatus
from taskflow.database.models import TaskDB, enum_to_value, subtasks_to_json

logger = logging.getLogger(__name__)


class TaskStore(ABC):
    """Where canonical tasks live.

    Implemented by the local SQL repository and by the remote
    action-parameter API client.
    """

    @abstractmethod
    def create(self, task: Task) -> Task:
        ...

    @abstractmethod
    def get(self, user_id: int, task_id: str) -> Optional[Task]:
        ...

    @abstractmethod
    def get_all(self, user_id: int) -> List[Task]:
        ...

    @abstractmethod
    def update(self, task: Task) -> Task:
        ...

    @abstractmethod
    def delete(self, user_id: int, task_id: str) -> bool:
        ...

    @abstractmethod
    def find_by_source(self, user_id: int, source_type: str, source_id: str) -> Optional[Task]:
        ...

    def owner_of(self, task_id: str) -> Optional[int]:
        """User id owning a task id, or None when unknown to this store."""
        return None

    def upsert(self, task: Task) -> Task:
        """Create the task, or replace it if the id already exists."""
        if self.get(task.user_id, task.id) is None:
            return self.create(task)
        return self.update(task)

    def set_completed(self, user_id: int, task_id: str, completed: bool) -> Task:
        """Mark a task done (with completion time) or back to pending."""
        task = self.get(user_id, task_id)
        if task is None:
            raise ValueError(f"Task {task_id} not found")
        if completed:
            task.status = TaskStatus.DONE.value
            task.completed_at = datetime.utcnow()
        else:
            task.status = TaskStatus.PENDING.value
            task.completed_at = None
        return self.update(task)


class TaskRepository(TaskStore):
    """Repository for Task database operations."""

    def __init__(self, db: Session):
        self.db = db

    def create(self, task: Task) -> Task:
        """Create a new task."""
        try:
            task_db = TaskDB.from_pydantic(task)
            self.db.add(task_db)
            self.db.commit()
            self.db.refresh(task_db)
            logger.debug(f"Created task {task.id}: {task.title[:50]}")
            return task_db.to_pydantic()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to create task {task.id}: {type(e).__name__}: {str(e)}")
            raise

    def get(self, user_id: int, task_id: str) -> Optional[Task]:
        """Get task by ID for a specific user."""
        task_db = self.db.query(TaskDB).filter(
            TaskDB.id == task_id,
            TaskDB.user_id == user_id,
        ).first()
        return task_db.to_pydantic() if task_db else None

    def owner_of(self, task_id: str) -> Optional[int]:
        """Task ids are global, so a row may belong to another user."""
        row = self.db.query(TaskDB.user_id).filter(TaskDB.id == task_id).first()
        return row[0] if row else None

    def get_all(self, user_id: int) -> List[Task]:
        """Get all tasks for a user sorted by creation date (newest first)."""
        tasks_db = self.db.query(TaskDB).filter(
            TaskDB.user_id == user_id,
        ).order_by(desc(TaskDB.created_at)).all()
        return [task_db.to_pydantic() for task_db in tasks_db]

    def get_by_status(self, user_id: int, status: TaskStatus) -> List[Task]:
        """Get a user's tasks with the given status (newest first)."""
        tasks_db = self.db.query(TaskDB).filter(
            TaskDB.user_id == user_id,
            TaskDB.status == enum_to_value(status),
        ).order_by(desc(TaskDB.created_at)).all()
        return [task_db.to_pydantic() for task_db in tasks_db]

    def find_by_source(self, user_id: int, source_type: str, source_id: str) -> Optional[Task]:
        """Find a task that was created from a given external message."""
        task_db = self.db.query(TaskDB).filter(
            TaskDB.user_id == user_id,
            TaskDB.source_type == source_type,
            TaskDB.source_id == source_id,
        ).first()
        return task_db.to_pydantic() if task_db else None

    def update(self, task: Task) -> Task:
        """Update an existing task (user_id must match task.user_id)."""
        task_db = self.db.query(TaskDB).filter(
            TaskDB.id == task.id,
            TaskDB.user_id == task.user_id,
        ).first()
        if not task_db:
            raise ValueError(f"Task {task.id} not found")

        task_db.title = task.title
        task_db.description = task.description
        task_db.workspace = enum_to_value(task.workspace)
        task_db.energy = enum_to_value(task.energy)
        task_db.status = enum_to_value(task.status)
        task_db.estimated_time = task.estimated_time
        task_db.tags = list(task.tags)
        task_db.dependencies = list(task.dependencies)
        task_db.completed_at = task.completed_at
        task_db.due_date = task.due_date
        task_db.snoozed_until = task.snoozed_until
        task_db.recurrence = task.recurrence.model_dump() if task.recurrence else None
        task_db.original_recurrence_id = task.original_recurrence_id
        task_db.subtasks = subtasks_to_json(task.subtasks)
        task_db.meeting_link = task.meeting_link

        try:
            self.db.commit()
            self.db.refresh(task_db)
            logger.debug(f"Updated task {task.id}: {task.title[:50]}")
            return task_db.to_pydantic()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to update task {task.id}: {type(e).__name__}: {str(e)}")
            raise

    def delete(self, user_id: int, task_id: str) -> bool:
        """Delete a task by ID for a specific user."""
        task_db = self.db.query(TaskDB).filter(
            TaskDB.id == task_id,
            TaskDB.user_id == user_id,
        ).first()
        if not task_db:
            return False

        try:
            self.db.delete(task_db)
            self.db.commit()
            logger.debug(f"Deleted task {task_id}")
            return True
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to delete task {task_id}: {type(e).__name__}: {str(e)}")
            raise
