"""Draft review, scanning and scheduling engine for TaskFlow."""

from taskflow.engine.draft_review import DraftReviewService, task_id_for_draft
from taskflow.engine.scanner import Scanner, ScanService
from taskflow.engine.scheduler import ScanScheduler, ScanJob

__all__ = [
    "DraftReviewService",
    "task_id_for_draft",
    "Scanner",
    "ScanService",
    "ScanScheduler",
    "ScanJob",
]
