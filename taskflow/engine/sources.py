"""Gmail, Slack and Telegram scanners."""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from taskflow.config import Settings
from taskflow.database.integration_repository import IntegrationRepository, decrypt_secret
from taskflow.database.telegram_repository import TelegramRepository
from taskflow.engine.scanner import Scanner
from taskflow.errors import IntegrationNotConnected
from taskflow.integrations.gmail import GmailClient, build_credentials
from taskflow.integrations.openai_client import OpenAIClient
from taskflow.integrations.slack import SlackClient
from taskflow.models.constants import EMAIL_DESCRIPTION_CHARS, TELEGRAM_DIRECT_CONFIDENCE
from taskflow.models.draft_task import DraftSource, DraftTaskCreate
from taskflow.models.proposal import InboundMessage, TaskProposal
from taskflow.models.task import Workspace
from taskflow.models.task_factory import proposal_tags

logger = logging.getLogger(__name__)


class GmailScanner(Scanner):
    """Drafts from new emails in the connected inbox."""

    source = DraftSource.GMAIL.value

    def __init__(self, settings: Settings, client_factory: Optional[Callable[[Session, Any], Any]] = None):
        super().__init__(settings)
        self.client_factory = client_factory or self._default_client

    def _default_client(self, db: Session, integration: Any) -> GmailClient:
        if not integration.access_token_encrypted:
            raise IntegrationNotConnected("gmail", "Gmail is not connected")
        access = decrypt_secret(integration.access_token_encrypted)
        refresh = decrypt_secret(integration.refresh_token_encrypted) if integration.refresh_token_encrypted else None
        creds = build_credentials(self.settings, access, refresh, integration.token_expiry)
        if creds.token != access:
            IntegrationRepository(db).update_gmail_access_token(integration.user_id, creds.token, creds.expiry)
        return GmailClient(creds)

    def fetch(self, db: Session, integration: Any, since: Optional[datetime], limit: int) -> List[InboundMessage]:
        client = self.client_factory(db, integration)
        return client.fetch_new_messages(after=since, max_results=limit)

    def classify(self, classifier: OpenAIClient, message: InboundMessage, integration: Any) -> TaskProposal:
        return classifier.classify_message(message, instructions=integration.prompt_instructions)

    def build_draft(self, message: InboundMessage, proposal: TaskProposal) -> DraftTaskCreate:
        body = (message.text or "")[:EMAIL_DESCRIPTION_CHARS]
        description = f"From: {message.sender}\nSubject: {message.subject}\n\n{body}"
        due_date = proposal.due_date
        if due_date is None and message.is_meeting:
            due_date = message.received_at
        return DraftTaskCreate(
            source=DraftSource.GMAIL,
            source_id=message.source_id,
            title=proposal.title,
            description=description,
            workspace=proposal.workspace or Workspace.JOB,
            energy=proposal.energy,
            estimated_time=proposal.estimated_time,
            tags=proposal_tags(proposal.tags, "gmail", "meeting" if message.is_meeting else ""),
            due_date=due_date,
            ai_confidence=proposal.confidence,
        )


def _channel_tag(channel: Optional[str]) -> str:
    if not channel:
        return ""
    return channel.split()[0].lstrip("#")


class SlackScanner(Scanner):
    """Drafts from Slack messages that mention the connected user."""

    source = DraftSource.SLACK.value

    def __init__(self, settings: Settings, client_factory: Optional[Callable[[Any], Any]] = None):
        super().__init__(settings)
        self.client_factory = client_factory or self._default_client

    def _default_client(self, integration: Any) -> SlackClient:
        if not integration.access_token_encrypted:
            raise IntegrationNotConnected("slack", "Slack is not connected")
        return SlackClient(decrypt_secret(integration.access_token_encrypted), timeout=self.settings.http_timeout_sec)

    def fetch(self, db: Session, integration: Any, since: Optional[datetime], limit: int) -> List[InboundMessage]:
        client = self.client_factory(integration)
        return client.fetch_mentions(integration.slack_user_id, after=since, max_results=limit)

    def build_draft(self, message: InboundMessage, proposal: TaskProposal) -> DraftTaskCreate:
        parts = [f"From Slack {message.channel}:", message.text]
        if message.permalink:
            parts.append(message.permalink)
        return DraftTaskCreate(
            source=DraftSource.SLACK,
            source_id=message.source_id,
            title=proposal.title,
            description="\n\n".join(parts),
            workspace=proposal.workspace or Workspace.JOB,
            energy=proposal.energy,
            estimated_time=proposal.estimated_time,
            tags=proposal_tags(proposal.tags, "slack", _channel_tag(message.channel)),
            due_date=proposal.due_date,
            ai_confidence=proposal.confidence,
        )


class TelegramScanner(Scanner):
    """Drafts from the Telegram inbox.

    Anything a linked user sends the bot is meant as a task, so messages
    are parsed rather than triaged and always produce a draft.
    """

    source = DraftSource.TELEGRAM.value

    def fetch(self, db: Session, integration: Any, since: Optional[datetime], limit: int) -> List[InboundMessage]:
        rows = TelegramRepository(db).pending_messages(integration.user_id, limit)
        return [
            InboundMessage(
                source=DraftSource.TELEGRAM,
                source_id=f"{row.chat_id}:{row.message_id}",
                text=row.text,
                sender=row.sender,
                received_at=row.received_at,
            )
            for row in rows
        ]

    def classify(self, classifier: OpenAIClient, message: InboundMessage, integration: Any) -> TaskProposal:
        proposal = classifier.parse_task(message.text)
        return proposal.model_copy(update={"is_task": True, "confidence": TELEGRAM_DIRECT_CONFIDENCE})

    def build_draft(self, message: InboundMessage, proposal: TaskProposal) -> DraftTaskCreate:
        title = (proposal.title or "").strip() or message.text[:100]
        return DraftTaskCreate(
            source=DraftSource.TELEGRAM,
            source_id=message.source_id,
            title=title[:200],
            description=message.text,
            workspace=proposal.workspace or Workspace.PERSONAL,
            energy=proposal.energy,
            estimated_time=proposal.estimated_time,
            tags=proposal_tags(proposal.tags, "telegram"),
            due_date=proposal.due_date,
            ai_confidence=proposal.confidence,
        )

    def mark_handled(self, db: Session, message: InboundMessage) -> None:
        chat_id, _, message_id = message.source_id.rpartition(":")
        TelegramRepository(db).mark_message_processed(chat_id, message_id)


def default_scanners(settings: Settings) -> Dict[str, Scanner]:
    return {
        "gmail": GmailScanner(settings),
        "slack": SlackScanner(settings),
        "telegram": TelegramScanner(settings),
    }
