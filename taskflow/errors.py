"""Error taxonomy for TaskFlow.

Every error carries the HTTP status it maps to; the API layer turns them
into `{"detail": ..., "error": ...}` responses.
"""

from typing import Optional


class TaskFlowError(Exception):
    """Base class for TaskFlow errors."""

    status_code = 500
    kind = "internal_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(TaskFlowError):
    """Unknown draft, task, user or integration."""

    status_code = 404
    kind = "not_found"


class ValidationError(TaskFlowError):
    """Missing or invalid input, e.g. an empty title."""

    status_code = 400
    kind = "validation_error"


class DraftStateError(TaskFlowError):
    """Operation not allowed in the draft's current status."""

    status_code = 409
    kind = "invalid_state"

    def __init__(self, draft_id: int, status: str, action: str):
        super().__init__(f"Draft {draft_id} is already {status}; cannot {action}")
        self.draft_id = draft_id
        self.status = status


class VersionConflict(TaskFlowError):
    """Draft changed since the caller read it."""

    status_code = 409
    kind = "version_conflict"

    def __init__(self, draft_id: int, expected: int, actual: int):
        super().__init__(f"Draft {draft_id} was modified (expected version {expected}, found {actual})")
        self.draft_id = draft_id
        self.expected = expected
        self.actual = actual


class UpstreamError(TaskFlowError):
    """A third-party API, the classifier or the remote task store failed."""

    status_code = 502
    kind = "upstream_error"

    def __init__(self, message: str, service: Optional[str] = None):
        super().__init__(message)
        self.service = service


class ClassificationError(UpstreamError):
    """The AI classifier call failed or returned something unusable."""

    kind = "classification_error"

    def __init__(self, message: str):
        super().__init__(message, service="openai")


class IntegrationNotConnected(UpstreamError):
    """The integration has no usable credentials; the user must reconnect."""

    status_code = 400
    kind = "not_connected"

    def __init__(self, source: str, message: Optional[str] = None):
        super().__init__(message or f"{source} is not connected", service=source)
        self.source = source


class AuthError(TaskFlowError):
    """Invalid or expired credentials."""

    status_code = 401
    kind = "auth_error"
