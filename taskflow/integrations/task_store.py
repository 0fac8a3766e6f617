"""Client for a remote canonical task store speaking the action-parameter API.

Every call hits a single endpoint with `?action=<name>`, JSON bodies and a
bearer token minted for the user the call is made on behalf of.
"""

import logging
from typing import Any, Dict, List, Optional

import requests

from taskflow.auth.tokens import generate_token
from taskflow.config import Settings
from taskflow.database.repository import TaskRepository, TaskStore
from taskflow.errors import UpstreamError
from taskflow.models.task import Task
from taskflow.models.wire import task_from_wire, task_to_wire

logger = logging.getLogger(__name__)


class RemoteTaskStore(TaskStore):
    """TaskStore backed by the remote action-parameter API."""

    def __init__(self, settings: Settings, session: Optional[requests.Session] = None):
        if not settings.task_store_url:
            raise ValueError("TASK_STORE_URL is not configured")
        self.base_url = settings.task_store_url
        self.secret = settings.api_secret
        self.timeout = settings.http_timeout_sec
        self.http = session or requests.Session()

    def _request(self, action: str, user_id: int, method: str = "GET", body: Optional[Dict[str, Any]] = None) -> Any:
        headers = {
            "Authorization": f"Bearer {generate_token(user_id, secret=self.secret)}",
            "Content-Type": "application/json",
        }
        try:
            resp = self.http.request(
                method,
                self.base_url,
                params={"action": action},
                json=body if method == "POST" else None,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Task store {action} failed: {type(e).__name__}")
            raise UpstreamError(f"Task store unreachable ({action})", service="task_store") from e

        try:
            data = resp.json()
        except ValueError:
            data = None

        if not resp.ok:
            error = data.get("error") if isinstance(data, dict) else None
            logger.error(f"Task store {action} returned {resp.status_code}")
            raise UpstreamError(f"Task store {action} failed: {error or resp.status_code}", service="task_store")
        return data

    def get_all(self, user_id: int) -> List[Task]:
        rows = self._request("get_tasks", user_id) or []
        return [task_from_wire(row, user_id) for row in rows]

    def get(self, user_id: int, task_id: str) -> Optional[Task]:
        for task in self.get_all(user_id):
            if task.id == task_id:
                return task
        return None

    def create(self, task: Task) -> Task:
        self._request("sync_tasks", task.user_id, method="POST", body=task_to_wire(task))
        logger.debug(f"Synced task {task.id} to remote store")
        return task

    def update(self, task: Task) -> Task:
        return self.create(task)

    def upsert(self, task: Task) -> Task:
        # sync_tasks is already an upsert on the remote side
        return self.create(task)

    def delete(self, user_id: int, task_id: str) -> bool:
        self._request("delete_task", user_id, method="POST", body={"id": task_id})
        return True

    def find_by_source(self, user_id: int, source_type: str, source_id: str) -> Optional[Task]:
        # The remote schema has no provenance columns; draft dedup covers this case
        return None

    def set_completed(self, user_id: int, task_id: str, completed: bool) -> Task:
        action = "complete_task" if completed else "uncomplete_task"
        self._request(action, user_id, method="POST", body={"id": task_id})
        task = self.get(user_id, task_id)
        if task is None:
            raise ValueError(f"Task {task_id} not found")
        return task


def make_task_store(settings: Settings, db) -> TaskStore:
    """Remote store when TASK_STORE_URL is set, otherwise the local tasks table."""
    if settings.task_store_url:
        return RemoteTaskStore(settings)
    return TaskRepository(db)
