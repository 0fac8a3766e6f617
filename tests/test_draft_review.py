"""Tests for the draft review workflow."""

import pytest
from unittest.mock import patch

from taskflow.database.draft_task_repository import DraftTaskRepository
from taskflow.database.models import TaskDB
from taskflow.engine.draft_review import DraftReviewService, task_id_for_draft
from taskflow.errors import DraftStateError, NotFound, UpstreamError, ValidationError, VersionConflict
from taskflow.models.draft_task import DraftTaskCreate


class TestListAndGet:

    def test_list_defaults_to_pending(self, review_service, make_draft, test_user_id):
        keep = make_draft()
        gone = make_draft()
        review_service.reject_draft(test_user_id, gone.id)

        drafts = review_service.list_drafts(test_user_id)
        assert [d.id for d in drafts] == [keep.id]

    def test_list_all_and_by_status(self, review_service, make_draft, test_user_id):
        a = make_draft()
        b = make_draft()
        review_service.reject_draft(test_user_id, a.id)

        assert {d.id for d in review_service.list_drafts(test_user_id, "all")} == {a.id, b.id}
        assert [d.id for d in review_service.list_drafts(test_user_id, "rejected")] == [a.id]

    def test_list_is_newest_first(self, review_service, make_draft, test_user_id):
        first = make_draft()
        second = make_draft()
        assert [d.id for d in review_service.list_drafts(test_user_id)] == [second.id, first.id]

    def test_invalid_status_filter(self, review_service, test_user_id):
        with pytest.raises(ValidationError):
            review_service.list_drafts(test_user_id, "archived")

    def test_other_users_drafts_are_invisible(self, review_service, make_draft, other_user_id, test_user_id):
        theirs = make_draft(user_id=other_user_id)
        with pytest.raises(NotFound):
            review_service.get_draft(test_user_id, theirs.id)


class TestEdit:

    def test_edit_title_only_leaves_other_fields(self, review_service, make_draft, test_user_id):
        draft = make_draft(title="Old", description="Keep me", tags=["gmail", "urgent"])
        edited = review_service.edit_draft(test_user_id, draft.id, {"title": "  New title  "})

        assert edited.title == "New title"
        assert edited.description == "Keep me"
        assert edited.tags == ["gmail", "urgent"]
        assert edited.estimated_time == draft.estimated_time
        assert edited.status == "pending"
        assert edited.version == draft.version + 1

    def test_empty_title_rejected(self, review_service, make_draft, test_user_id):
        draft = make_draft()
        with pytest.raises(ValidationError):
            review_service.edit_draft(test_user_id, draft.id, {"title": "   "})
        assert review_service.get_draft(test_user_id, draft.id).title == draft.title

    def test_no_fields_rejected(self, review_service, make_draft, test_user_id):
        draft = make_draft()
        with pytest.raises(ValidationError):
            review_service.edit_draft(test_user_id, draft.id, {"status": "approved"})

    def test_edit_after_approval_is_state_error(self, review_service, make_draft, test_user_id):
        draft = make_draft()
        review_service.approve_draft(test_user_id, draft.id)
        with pytest.raises(DraftStateError):
            review_service.edit_draft(test_user_id, draft.id, {"title": "Too late"})

    def test_stale_version_is_conflict(self, review_service, make_draft, test_user_id):
        draft = make_draft()
        review_service.edit_draft(test_user_id, draft.id, {"title": "First edit"})

        with pytest.raises(VersionConflict):
            review_service.edit_draft(test_user_id, draft.id, {"title": "Second edit"}, expected_version=draft.version)
        assert review_service.get_draft(test_user_id, draft.id).title == "First edit"


class TestApprove:

    def test_approve_creates_task_with_draft_fields(self, review_service, task_repository, make_draft, test_user_id):
        draft = make_draft(title="Send invoice", workspace="freelance", energy="low", estimated_time=20, tags=["gmail"])
        result = review_service.approve_draft(test_user_id, draft.id)

        assert result.draft.status == "approved"
        assert result.draft.task_id == result.task.id
        assert result.draft.reviewed_at is not None

        task = task_repository.get(test_user_id, result.task.id)
        assert task.title == "Send invoice"
        assert task.workspace == "freelance"
        assert task.energy == "low"
        assert task.estimated_time == 20
        assert task.tags == ["gmail"]
        assert task.status == "pending"
        assert task.source_type == "gmail"
        assert task.source_id == draft.source_id
        assert task.draft_id == draft.id

    def test_approve_with_overrides(self, review_service, task_repository, make_draft, test_user_id):
        draft = make_draft(title="Original")
        result = review_service.approve_draft(test_user_id, draft.id, {"title": "Edited", "estimated_time": 45})

        assert result.task.title == "Edited"
        assert result.task.estimated_time == 45
        assert result.draft.title == "Edited"

    def test_missing_fields_take_defaults(self, review_service, draft_repository, test_user_id):
        draft = draft_repository.create(test_user_id, DraftTaskCreate(source="telegram", source_id="1:1", title="Call mom"))
        result = review_service.approve_draft(test_user_id, draft.id)
        assert result.task.workspace == "personal"
        assert result.task.energy == "medium"
        assert result.task.estimated_time is None

    def test_double_approval_is_rejected_and_creates_one_task(self, review_service, make_draft, db_session, test_user_id):
        draft = make_draft()
        review_service.approve_draft(test_user_id, draft.id)

        with pytest.raises(DraftStateError):
            review_service.approve_draft(test_user_id, draft.id)
        assert db_session.query(TaskDB).filter(TaskDB.draft_id == draft.id).count() == 1

    def test_approve_rejected_draft_fails(self, review_service, make_draft, db_session, test_user_id):
        draft = make_draft()
        review_service.reject_draft(test_user_id, draft.id)
        with pytest.raises(DraftStateError):
            review_service.approve_draft(test_user_id, draft.id)
        assert db_session.query(TaskDB).count() == 0

    def test_stale_version_on_approve(self, review_service, make_draft, db_session, test_user_id):
        draft = make_draft()
        review_service.edit_draft(test_user_id, draft.id, {"title": "Changed"})
        with pytest.raises(VersionConflict):
            review_service.approve_draft(test_user_id, draft.id, expected_version=draft.version)
        assert db_session.query(TaskDB).count() == 0

    def test_store_failure_returns_draft_to_pending(self, review_service, task_repository, make_draft, test_user_id):
        draft = make_draft()
        with patch.object(task_repository, "upsert", side_effect=RuntimeError("db down")):
            with pytest.raises(UpstreamError):
                review_service.approve_draft(test_user_id, draft.id)

        after = review_service.get_draft(test_user_id, draft.id)
        assert after.status == "pending"
        assert after.task_id is None

        # A retry succeeds and reuses the same task id
        result = review_service.approve_draft(test_user_id, draft.id)
        assert result.task.id == task_id_for_draft(after)

    def test_unknown_draft(self, review_service, test_user_id):
        with pytest.raises(NotFound):
            review_service.approve_draft(test_user_id, 999)


class TestRejectAndDelete:

    def test_reject_creates_no_task(self, review_service, make_draft, db_session, test_user_id):
        draft = make_draft()
        rejected = review_service.reject_draft(test_user_id, draft.id)
        assert rejected.status == "rejected"
        assert db_session.query(TaskDB).count() == 0

    def test_reject_twice_is_state_error(self, review_service, make_draft, test_user_id):
        draft = make_draft()
        review_service.reject_draft(test_user_id, draft.id)
        with pytest.raises(DraftStateError):
            review_service.reject_draft(test_user_id, draft.id)

    def test_delete_any_status(self, review_service, make_draft, test_user_id):
        draft = make_draft()
        review_service.approve_draft(test_user_id, draft.id)
        review_service.delete_draft(test_user_id, draft.id)
        with pytest.raises(NotFound):
            review_service.get_draft(test_user_id, draft.id)

    def test_delete_unknown(self, review_service, test_user_id):
        with pytest.raises(NotFound):
            review_service.delete_draft(test_user_id, 12345)


class TestBulk:

    def test_bulk_approve_reports_per_id(self, review_service, make_draft, test_user_id):
        d1 = make_draft()
        d3 = make_draft()

        results = review_service.bulk_approve(test_user_id, [d1.id, 999, d3.id])

        assert [r.id for r in results] == [d1.id, 999, d3.id]
        assert [r.success for r in results] == [True, False, True]
        assert results[1].error
        assert results[0].task is not None

    def test_bulk_dedups_ids(self, review_service, make_draft, db_session, test_user_id):
        draft = make_draft()
        results = review_service.bulk_approve(test_user_id, [draft.id, draft.id])
        assert len(results) == 1
        assert db_session.query(TaskDB).count() == 1

    def test_bulk_reject(self, review_service, make_draft, test_user_id):
        d1 = make_draft()
        d2 = make_draft()
        review_service.approve_draft(test_user_id, d2.id)

        results = review_service.bulk_reject(test_user_id, [d1.id, d2.id])
        assert [r.success for r in results] == [True, False]

    def test_bulk_empty_list(self, review_service, test_user_id):
        with pytest.raises(ValidationError):
            review_service.bulk_approve(test_user_id, [])
        with pytest.raises(ValidationError):
            review_service.bulk_reject(test_user_id, [])


class TestCreateDraft:

    def test_duplicate_source_message_is_skipped(self, review_service, test_user_id):
        data = DraftTaskCreate(source="slack", source_id="C1:1700000000.0001", title="Review PR")
        assert review_service.create_draft(test_user_id, data) is not None
        assert review_service.create_draft(test_user_id, data) is None
        assert len(review_service.list_drafts(test_user_id)) == 1

    def test_rejected_message_is_not_reingested(self, review_service, test_user_id):
        data = DraftTaskCreate(source="slack", source_id="C1:1", title="Review PR")
        draft = review_service.create_draft(test_user_id, data)
        review_service.reject_draft(test_user_id, draft.id)
        assert review_service.create_draft(test_user_id, data) is None

    def test_existing_task_for_source_blocks_draft(self, review_service, make_draft, test_user_id):
        draft = make_draft(source_id="abc")
        review_service.approve_draft(test_user_id, draft.id)
        review_service.delete_draft(test_user_id, draft.id)

        again = DraftTaskCreate(source="gmail", source_id="abc", title="Same email")
        assert review_service.create_draft(test_user_id, again) is None

    def test_drafts_without_source_id_are_not_deduplicated(self, db_session, task_repository, test_user_id):
        service = DraftReviewService(DraftTaskRepository(db_session), task_repository)
        data = DraftTaskCreate(source="telegram", title="No id")
        assert service.create_draft(test_user_id, data) is not None
        assert service.create_draft(test_user_id, data) is not None
