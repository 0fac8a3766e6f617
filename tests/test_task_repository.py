"""Tests for TaskRepository CRUD operations."""

import pytest
from datetime import datetime, timedelta
import uuid

from taskflow.models.task import Task, TaskStatus
from taskflow.models.task_factory import create_task_base


@pytest.fixture
def sample_task(test_user_id):
    return create_task_base(
        user_id=test_user_id,
        title="Write quarterly report",
        description="Numbers from finance",
        workspace="job",
        energy="high",
        estimated_time=90,
        tags=["report", "q3"],
    )


class TestTaskRepository:
    """Test TaskRepository CRUD operations."""

    def test_create_task(self, task_repository, sample_task, test_user_id):
        created = task_repository.create(sample_task)

        assert created.id == sample_task.id
        assert created.title == "Write quarterly report"
        assert created.status == "pending"
        assert created.workspace == "job"
        assert created.tags == ["report", "q3"]
        assert created.user_id == test_user_id

    def test_get_task_by_id(self, task_repository, sample_task, test_user_id):
        created = task_repository.create(sample_task)
        retrieved = task_repository.get(test_user_id, created.id)

        assert retrieved is not None
        assert retrieved.id == created.id
        assert retrieved.estimated_time == 90

    def test_get_nonexistent_task(self, task_repository, test_user_id):
        assert task_repository.get(test_user_id, "nonexistent-id") is None

    def test_get_all_sorted_by_creation_date(self, task_repository, test_user_id):
        """get_all() returns tasks newest first."""
        now = datetime.utcnow()
        for offset, title in ((2, "Task 3"), (1, "Task 2"), (0, "Task 1")):
            task_repository.create(create_task_base(
                user_id=test_user_id,
                title=title,
                created_at=now - timedelta(minutes=offset),
            ))

        titles = [t.title for t in task_repository.get_all(test_user_id)]
        assert titles == ["Task 1", "Task 2", "Task 3"]

    def test_tasks_are_scoped_to_user(self, task_repository, sample_task, other_user_id):
        task_repository.create(sample_task)
        assert task_repository.get_all(other_user_id) == []
        assert task_repository.get(other_user_id, sample_task.id) is None

    def test_update_task(self, task_repository, sample_task, test_user_id):
        created = task_repository.create(sample_task)
        created.title = "Write annual report"
        created.status = TaskStatus.WAITING.value
        created.dependencies = ["other-task"]

        updated = task_repository.update(created)
        assert updated.title == "Write annual report"
        assert updated.status == "waiting"
        assert task_repository.get(test_user_id, created.id).dependencies == ["other-task"]

    def test_update_missing_task_raises(self, task_repository, sample_task):
        with pytest.raises(ValueError):
            task_repository.update(sample_task)

    def test_delete_task(self, task_repository, sample_task, test_user_id):
        created = task_repository.create(sample_task)
        assert task_repository.delete(test_user_id, created.id) is True
        assert task_repository.get(test_user_id, created.id) is None
        assert task_repository.delete(test_user_id, created.id) is False

    def test_get_by_status(self, task_repository, test_user_id):
        task_repository.create(create_task_base(user_id=test_user_id, title="Open"))
        task_repository.create(create_task_base(user_id=test_user_id, title="Closed", status="done"))

        done = task_repository.get_by_status(test_user_id, TaskStatus.DONE)
        assert [t.title for t in done] == ["Closed"]
        assert done[0].completed_at is not None


class TestUpsertAndProvenance:

    def test_upsert_creates_then_replaces(self, task_repository, sample_task, test_user_id):
        task_repository.upsert(sample_task)
        changed = sample_task.model_copy(update={"title": "Renamed"})
        task_repository.upsert(changed)

        tasks = task_repository.get_all(test_user_id)
        assert len(tasks) == 1
        assert tasks[0].title == "Renamed"

    def test_find_by_source(self, task_repository, test_user_id):
        task = create_task_base(
            user_id=test_user_id,
            title="Reply to Anna",
            source_type="slack",
            source_id="C123:1700000000.000100",
        )
        task_repository.create(task)

        found = task_repository.find_by_source(test_user_id, "slack", "C123:1700000000.000100")
        assert found is not None and found.id == task.id
        assert task_repository.find_by_source(test_user_id, "gmail", "C123:1700000000.000100") is None

    def test_set_completed_and_back(self, task_repository, sample_task, test_user_id):
        task_repository.create(sample_task)

        done = task_repository.set_completed(test_user_id, sample_task.id, True)
        assert done.status == "done"
        assert done.completed_at is not None

        reopened = task_repository.set_completed(test_user_id, sample_task.id, False)
        assert reopened.status == "pending"
        assert reopened.completed_at is None

    def test_set_completed_unknown_task(self, task_repository, test_user_id):
        with pytest.raises(ValueError):
            task_repository.set_completed(test_user_id, str(uuid.uuid4()), True)

    def test_recurrence_round_trips(self, task_repository, test_user_id):
        task = Task(
            id=str(uuid.uuid4()),
            user_id=test_user_id,
            title="Water plants",
            created_at=datetime.utcnow(),
            recurrence={"frequency": "weekly", "interval": 2},
        )
        task_repository.create(task)

        stored = task_repository.get(test_user_id, task.id)
        assert stored.recurrence.frequency == "weekly"
        assert stored.recurrence.interval == 2
