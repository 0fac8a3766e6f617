"""OpenAI API integration for TaskFlow.

Classifies inbound messages into task proposals and provides the smaller
AI helpers (task parsing, motivation, daily plan, client follow-up).
"""

import json
import logging
from typing import Any, Dict, List, Optional
from openai import OpenAI, APIError

from taskflow.config import Settings, get_settings
from taskflow.errors import ClassificationError
from taskflow.models.proposal import InboundMessage, TaskProposal
from taskflow.models.task import EnergyLevel, Workspace
from taskflow.models.task_factory import clean_tags
from taskflow.models.constants import DEFAULT_ESTIMATED_TIME, MAX_TAGS

logger = logging.getLogger(__name__)

PARSE_SYSTEM_PROMPT = """You are a task parsing assistant. Analyze task inputs and extract structured information.
Context: User is a busy software developer.
- "Fix bug" usually implies High energy.
- "Email" or "Call" usually implies Low energy.
- Extract time if mentioned (e.g., "20m").
Return valid JSON only."""

PARSE_PROMPT_TEMPLATE = """Analyze this task input: "{text}".
Extract: title (cleaned of time estimates), energy (high/medium/low), estimatedTime (minutes, default 15), tags (up to 3 short tags), workspace (job/freelance/personal)."""

CLASSIFY_SYSTEM_PROMPT = """You triage incoming messages for a busy software developer.
Decide whether the message asks the reader to do something (a task, a request, a deadline, a meeting to attend).
Newsletters, receipts, notifications and FYI messages are not tasks.
Return valid JSON only."""

CLASSIFY_PROMPT_TEMPLATE = """Source: {source}
{context}
Message:
\"\"\"
{text}
\"\"\"
{instructions}
Respond with a JSON object containing:
- "is_task": true or false
- "confidence": number between 0.0 and 1.0
- "title": short actionable task title
- "energy": "high", "medium" or "low"
- "estimatedTime": minutes (default 15)
- "tags": up to 3 short tags
- "workspace": "job", "freelance" or "personal"

Example response:
{{"is_task": true, "confidence": 0.85, "title": "Send Q3 report to Anna", "energy": "medium", "estimatedTime": 30, "tags": ["report"], "workspace": "job"}}"""

MOTIVATION_PROMPT_TEMPLATE = (
    "User has completed {completed} tasks and has {pending} remaining. "
    "Give a short, witty, 1-sentence dopamine-boosting encouragement for a developer. No cringe."
)

DAILY_PLAN_PROMPT_TEMPLATE = """Here are the tasks remaining for tomorrow:
{tasks}

Create a short, strategic bullet-point plan (max 3 points) for how to tackle these tomorrow to minimize burnout."""

FOLLOW_UP_PROMPT_TEMPLATE = """Draft a professional, short, and polite follow-up message to a client regarding the task: "{title}".
Keep it under 280 characters. Casual but professional tone."""

MOTIVATION_FALLBACK = "Great work today! Keep pushing forward."
DAILY_PLAN_FALLBACK = "Focus on the high energy tasks first tomorrow!"
EMPTY_PLAN_MESSAGE = "No tasks left! Enjoy your clean slate."
FOLLOW_UP_FALLBACK = "Hey, just checking in on this."


def _strip_code_fences(content: str) -> str:
    content = content.strip()
    if content.startswith("```json"):
        content = content[7:]
    if content.startswith("```"):
        content = content[3:]
    if content.endswith("```"):
        content = content[:-3]
    return content.strip()


def _as_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    if value is None:
        return default
    return bool(value)


def normalize_proposal(data: Dict[str, Any], fallback_title: str) -> TaskProposal:
    """Build a TaskProposal from loosely-typed model output.

    Unknown energy becomes medium, unknown workspace becomes None,
    confidence is clamped to [0, 1] and tags are capped.
    """
    title = str(data.get("title") or "").strip() or fallback_title.strip()

    energy_raw = str(data.get("energy") or "").strip().lower()
    energy = EnergyLevel(energy_raw) if energy_raw in {e.value for e in EnergyLevel} else EnergyLevel.MEDIUM

    workspace_raw = data.get("workspace") or data.get("workspaceSuggestions") or ""
    workspace_raw = str(workspace_raw).strip().lower()
    workspace = Workspace(workspace_raw) if workspace_raw in {w.value for w in Workspace} else None

    try:
        estimated_time = int(float(data.get("estimatedTime") or data.get("estimated_time") or 0))
    except (TypeError, ValueError):
        estimated_time = 0
    if estimated_time <= 0:
        estimated_time = DEFAULT_ESTIMATED_TIME

    try:
        confidence = float(data.get("confidence", 0.5))
    except (TypeError, ValueError):
        confidence = 0.5
    confidence = min(max(confidence, 0.0), 1.0)

    tags = data.get("tags")
    tags = clean_tags(tags, limit=MAX_TAGS) if isinstance(tags, list) else []

    return TaskProposal(
        is_task=_as_bool(data.get("is_task"), True),
        confidence=confidence,
        title=title,
        energy=energy,
        estimated_time=estimated_time,
        tags=tags,
        workspace=workspace,
    )


def _message_context(message: InboundMessage) -> str:
    lines = []
    if message.subject:
        lines.append(f"Subject: {message.subject}")
    if message.sender:
        lines.append(f"From: {message.sender}")
    if message.channel:
        lines.append(f"Channel: {message.channel}")
    return "\n".join(lines)


class OpenAIClient:
    """Client for OpenAI API integration."""

    def __init__(self, settings: Optional[Settings] = None, client: Optional[OpenAI] = None):
        """Initialize OpenAI client.

        Args:
            settings: Application settings (API key, model). Defaults to the process settings.
            client: Pre-built OpenAI client (tests inject a mock here).

        Note:
            Without an API key the client still initializes; classification
            then raises and the helpers return their fallbacks.
        """
        self.settings = settings or get_settings()
        self.model = self.settings.openai_model
        self.client = client

        if self.client is None:
            if self.settings.openai_api_key:
                self.client = OpenAI(api_key=self.settings.openai_api_key)
            else:
                logger.warning("OPENAI_API_KEY not configured. AI classification will not be available.")

    def _log_api_error(self, e: APIError, operation: str) -> None:
        error_code = getattr(e, 'code', None)
        status_code = getattr(e, 'status_code', None)

        if error_code == 'insufficient_quota':
            logger.warning(f"OpenAI API quota insufficient during {operation}. Please check billing.")
        elif status_code == 429:
            logger.warning(f"OpenAI API rate limit exceeded during {operation}.")
        else:
            # Don't log full error message as it might contain sensitive info
            logger.error(f"OpenAI API error during {operation}: {status_code or 'unknown'} ({error_code or 'unknown'})")

    def _complete_json(self, system_prompt: str, user_prompt: str, max_tokens: int = 300) -> Dict[str, Any]:
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            response_format={"type": "json_object"},
            temperature=0.3,
            max_tokens=max_tokens,
        )
        content = response.choices[0].message.content
        if not content:
            raise ValueError("Empty response from OpenAI")
        result = json.loads(_strip_code_fences(content))
        if not isinstance(result, dict):
            raise ValueError("OpenAI response is not a JSON object")
        return result

    def _complete_text(self, prompt: str, temperature: float, max_tokens: int) -> Optional[str]:
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            temperature=temperature,
            max_tokens=max_tokens,
        )
        content = response.choices[0].message.content
        return content.strip() if content else None

    def classify_message(self, message: InboundMessage, instructions: Optional[str] = None) -> TaskProposal:
        """Classify an inbound message.

        Raises:
            ClassificationError: client not configured, API failure, or unparseable response
        """
        if not self.client:
            raise ClassificationError("OpenAI client not configured")

        text = (message.text or "").strip()
        if not text and not message.subject:
            raise ClassificationError("Message has no text to classify")

        prompt = CLASSIFY_PROMPT_TEMPLATE.format(
            source=message.source,
            context=_message_context(message),
            text=text,
            instructions=f"Additional instructions from the user:\n{instructions.strip()}\n" if instructions and instructions.strip() else "",
        )
        try:
            data = self._complete_json(CLASSIFY_SYSTEM_PROMPT, prompt)
        except APIError as e:
            self._log_api_error(e, "classification")
            raise ClassificationError(f"OpenAI API error: {getattr(e, 'status_code', None) or 'unknown'}") from e
        except (ValueError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to parse OpenAI classification for {message.source}:{message.source_id}: {type(e).__name__}")
            raise ClassificationError("Could not parse classifier response") from e
        except Exception as e:
            logger.error(f"Error calling OpenAI API: {type(e).__name__}")
            raise ClassificationError(f"Classifier call failed: {type(e).__name__}") from e

        proposal = normalize_proposal(data, fallback_title=message.subject or text[:80])
        logger.debug(f"Classified {message.source}:{message.source_id} is_task={proposal.is_task} confidence={proposal.confidence}")
        return proposal

    def parse_task(self, text: str) -> TaskProposal:
        """Parse free-form task input. Falls back to a basic proposal on any failure."""
        fallback = TaskProposal(title=text.strip(), energy=EnergyLevel.MEDIUM, estimated_time=DEFAULT_ESTIMATED_TIME)
        if not self.client:
            logger.debug("OpenAI client not initialized. Returning basic parse.")
            return fallback
        try:
            data = self._complete_json(PARSE_SYSTEM_PROMPT, PARSE_PROMPT_TEMPLATE.format(text=text))
        except APIError as e:
            self._log_api_error(e, "task parsing")
            return fallback
        except Exception as e:
            logger.error(f"Error parsing task with OpenAI API: {type(e).__name__}")
            return fallback
        return normalize_proposal(data, fallback_title=text)

    def daily_motivation(self, completed: int, pending: int) -> str:
        if not self.client:
            return MOTIVATION_FALLBACK
        try:
            content = self._complete_text(
                MOTIVATION_PROMPT_TEMPLATE.format(completed=completed, pending=pending),
                temperature=0.8,
                max_tokens=100,
            )
            return content or "You're crushing it."
        except APIError as e:
            self._log_api_error(e, "daily motivation")
        except Exception as e:
            logger.error(f"Error generating motivation: {type(e).__name__}")
        return MOTIVATION_FALLBACK

    def daily_plan(self, pending_tasks: List[Dict[str, Any]]) -> str:
        """Short plan for tomorrow. `pending_tasks` items need 'title' and optionally 'energy'."""
        if not pending_tasks:
            return EMPTY_PLAN_MESSAGE
        if not self.client:
            return DAILY_PLAN_FALLBACK
        tasks_list = "\n".join(f"- {t.get('title')} ({t.get('energy') or 'medium'} energy)" for t in pending_tasks)
        try:
            content = self._complete_text(
                DAILY_PLAN_PROMPT_TEMPLATE.format(tasks=tasks_list),
                temperature=0.7,
                max_tokens=200,
            )
            return content or "Prioritize high energy tasks in the morning."
        except APIError as e:
            self._log_api_error(e, "daily plan")
        except Exception as e:
            logger.error(f"Error generating daily plan: {type(e).__name__}")
        return DAILY_PLAN_FALLBACK

    def client_follow_up(self, task_title: str) -> str:
        if not self.client:
            return FOLLOW_UP_FALLBACK
        try:
            content = self._complete_text(
                FOLLOW_UP_PROMPT_TEMPLATE.format(title=task_title),
                temperature=0.7,
                max_tokens=150,
            )
            return content or "Just checking in on this item."
        except APIError as e:
            self._log_api_error(e, "follow-up")
        except Exception as e:
            logger.error(f"Error generating follow-up: {type(e).__name__}")
        return FOLLOW_UP_FALLBACK
