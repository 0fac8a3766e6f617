"""Ingestion scanning.

A scan for one (user, source) pair fetches a bounded batch of new inbound
messages, classifies each one and turns task-like messages into pending
drafts. Failures are contained:

- fetch-level failure: the integration is flagged disconnected with the
  error, `last_scan_at` is left as-is, and the next scheduled tick retries;
- per-message classification failure: logged, counted, skipped.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from taskflow.config import Settings
from taskflow.database.draft_task_repository import DraftTaskRepository
from taskflow.database.integration_repository import IntegrationRepository
from taskflow.database.repository import TaskStore
from taskflow.engine.draft_review import DraftReviewService
from taskflow.engine.notifications import DraftNotifier
from taskflow.errors import ClassificationError, IntegrationNotConnected
from taskflow.integrations.openai_client import OpenAIClient
from taskflow.models.draft_task import DraftTask, DraftTaskCreate
from taskflow.models.integration import ScanResult
from taskflow.models.proposal import InboundMessage, TaskProposal

logger = logging.getLogger(__name__)


class Scanner(ABC):
    """Source-specific part of a scan."""

    source: str = ""

    def __init__(self, settings: Settings):
        self.settings = settings

    @abstractmethod
    def fetch(self, db: Session, integration: Any, since: Optional[datetime], limit: int) -> List[InboundMessage]:
        """Fetch up to `limit` messages newer than `since`. Raise on fetch-level failure."""

    def classify(self, classifier: OpenAIClient, message: InboundMessage, integration: Any) -> TaskProposal:
        return classifier.classify_message(message)

    @abstractmethod
    def build_draft(self, message: InboundMessage, proposal: TaskProposal) -> DraftTaskCreate:
        """Map a positive classification to draft fields."""

    def mark_handled(self, db: Session, message: InboundMessage) -> None:
        """Called once a message needs no further processing."""


class ScanService:
    """Runs scans for any registered source."""

    def __init__(
        self,
        settings: Settings,
        classifier: OpenAIClient,
        scanners: Dict[str, Scanner],
        task_store_factory: Callable[[Session], TaskStore],
        notifier: Optional[DraftNotifier] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.settings = settings
        self.classifier = classifier
        self.scanners = scanners
        self.task_store_factory = task_store_factory
        self.notifier = notifier
        self.clock = clock

    def scan(self, db: Session, user_id: int, source: str) -> ScanResult:
        """Run one scan. Never raises for fetch or classification failures."""
        scanner = self.scanners.get(source)
        if scanner is None:
            return ScanResult(source=source, success=False, connected=False, error=f"Unknown source: {source}")

        integrations = IntegrationRepository(db)
        integration = integrations.get(source, user_id)
        if integration is None:
            return ScanResult(source=source, success=False, connected=False, error=f"{source} is not connected")

        started = self.clock()
        try:
            messages = scanner.fetch(db, integration, integration.last_scan_at, self.settings.scan_batch_size)
        except Exception as e:
            error = e.message if isinstance(e, IntegrationNotConnected) else f"{type(e).__name__}: {str(e)}"
            logger.warning(f"{source} fetch failed for user {user_id}: {error}")
            integrations.mark_scan_failure(source, user_id, started, error)
            return ScanResult(source=source, success=False, connected=False, error=error, scanned_at=started)

        review = DraftReviewService(DraftTaskRepository(db), self.task_store_factory(db))
        created: List[DraftTask] = []
        skipped = 0
        failed = 0
        for message in messages:
            try:
                proposal = scanner.classify(self.classifier, message, integration)
            except ClassificationError as e:
                failed += 1
                logger.warning(f"Classification failed for {source}:{message.source_id}: {e.message}")
                continue

            if not proposal.is_task:
                skipped += 1
                scanner.mark_handled(db, message)
                continue

            draft = review.create_draft(user_id, scanner.build_draft(message, proposal))
            if draft is None:
                skipped += 1
            else:
                created.append(draft)
            scanner.mark_handled(db, message)

        integrations.mark_scan_success(source, user_id, started)
        logger.info(
            f"{source} scan for user {user_id}: fetched={len(messages)} created={len(created)} "
            f"skipped={skipped} failed={failed}"
        )

        if created and self.notifier is not None:
            self.notifier.notify_drafts_created(db, user_id, source, created)

        return ScanResult(
            source=source,
            success=True,
            connected=True,
            items_fetched=len(messages),
            drafts_created=len(created),
            skipped=skipped,
            failed=failed,
            drafts=created,
            scanned_at=started,
        )
