"""FastAPI web application for TaskFlow."""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from taskflow.api.auth_models import AuthResponse, AuthUser, LoginRequest, RegisterRequest
from taskflow.api.request_models import (
    BulkDraftRequest,
    BulkDraftResponse,
    CompletionResponse,
    DailyMotivationRequest,
    DailyPlanRequest,
    DraftActionRequest,
    DraftEditRequest,
    FollowUpRequest,
    MessageResponse,
    ParseTaskRequest,
    PlanResponse,
    TaskCreateRequest,
    TaskListResponse,
    TaskUpdateRequest,
)
from taskflow.auth.dependencies import get_current_user
from taskflow.auth.link_codes import generate_link_code, hash_link_code
from taskflow.auth.oauth_state import create_oauth_state, read_oauth_state
from taskflow.auth.passwords import hash_password, verify_password
from taskflow.auth.tokens import TokenValidationError, generate_token, validate_token
from taskflow.config import Settings, get_settings
from taskflow.database.database import SessionLocal, get_db, init_db
from taskflow.database.draft_task_repository import DraftTaskRepository
from taskflow.database.integration_repository import IntegrationRepository
from taskflow.database.repository import TaskStore
from taskflow.database.telegram_repository import TelegramRepository
from taskflow.database.user_repository import UserRepository
from taskflow.engine.completion import complete_task as complete_task_with_xp
from taskflow.engine.draft_review import DraftReviewService
from taskflow.engine.notifications import DraftNotifier, ReminderService
from taskflow.engine.scanner import ScanService
from taskflow.engine.scheduler import ScanScheduler
from taskflow.engine.sources import default_scanners
from taskflow.engine.telegram_bot import TelegramPoller, TelegramUpdateHandler
from taskflow.errors import IntegrationNotConnected, NotFound, TaskFlowError, UpstreamError, ValidationError
from taskflow.integrations import gmail, slack
from taskflow.integrations.openai_client import OpenAIClient
from taskflow.integrations.task_store import make_task_store
from taskflow.integrations.telegram import TelegramClient
from taskflow.models.constants import DAILY_SUMMARY_CHECK_MINUTES, LINK_CODE_TTL_MINUTES, OVERDUE_REMINDER_INTERVAL_MINUTES
from taskflow.models.draft_task import ApprovalResult, DraftTask
from taskflow.models.integration import (
    GmailStatus,
    IntegrationSettingsUpdate,
    ScanResult,
    SlackStatus,
    TelegramStatus,
)
from taskflow.models.proposal import TaskProposal
from taskflow.models.task import Task, TaskStatus, normalize_status
from taskflow.models.task_factory import clean_tags, create_task_base
from taskflow.models.user import User
from taskflow.models.wire import task_from_wire, task_to_row

logger = logging.getLogger(__name__)

# Background workers, created in the lifespan
scheduler: Optional[ScanScheduler] = None
telegram_poller: Optional[TelegramPoller] = None


# --- shared services ---


@lru_cache()
def get_openai_client() -> OpenAIClient:
    return OpenAIClient(get_settings())


@lru_cache()
def _telegram_client() -> Optional[TelegramClient]:
    settings = get_settings()
    if not settings.telegram_bot_token:
        return None
    return TelegramClient(settings.telegram_bot_token, timeout=settings.http_timeout_sec)


def get_telegram_client() -> Optional[TelegramClient]:
    return _telegram_client()


def get_task_store(db: Session = Depends(get_db), settings: Settings = Depends(get_settings)) -> TaskStore:
    return make_task_store(settings, db)


def get_review_service(db: Session = Depends(get_db), task_store: TaskStore = Depends(get_task_store)) -> DraftReviewService:
    return DraftReviewService(DraftTaskRepository(db), task_store)


def build_scan_service(
    settings: Settings,
    classifier: OpenAIClient,
    telegram: Optional[TelegramClient],
) -> ScanService:
    return ScanService(
        settings,
        classifier,
        default_scanners(settings),
        task_store_factory=lambda db: make_task_store(settings, db),
        notifier=DraftNotifier(telegram),
    )


def get_scan_service(
    settings: Settings = Depends(get_settings),
    classifier: OpenAIClient = Depends(get_openai_client),
    telegram: Optional[TelegramClient] = Depends(get_telegram_client),
) -> ScanService:
    return build_scan_service(settings, classifier, telegram)


def get_telegram_handler(
    settings: Settings = Depends(get_settings),
    telegram: Optional[TelegramClient] = Depends(get_telegram_client),
    classifier: OpenAIClient = Depends(get_openai_client),
) -> TelegramUpdateHandler:
    return TelegramUpdateHandler(telegram, task_store_factory=lambda db: make_task_store(settings, db), classifier=classifier)


def _run_scheduled_scan(user_id: int, source: str) -> None:
    settings = get_settings()
    service = build_scan_service(settings, get_openai_client(), get_telegram_client())
    db = SessionLocal()
    try:
        result = service.scan(db, user_id, source)
        if not result.success:
            logger.warning(f"Scheduled {source} scan for user {user_id} failed: {result.error}")
    finally:
        db.close()


def _reschedule(source: str, user_id: int, row: Any) -> None:
    """Keep the in-process scheduler in step with integration changes."""
    if scheduler is None:
        return
    if row is None or not row.enabled:
        scheduler.cancel(user_id, source)
    else:
        scheduler.schedule(user_id, source, row.scan_frequency, row.last_scan_at)


def _with_session(func):
    """Adapt `func(db, now)` to a periodic job that opens its own session."""
    def run(now: datetime) -> None:
        db = SessionLocal()
        try:
            func(db, now)
        finally:
            db.close()
    return run


def _add_reminder_jobs(jobs: ScanScheduler, reminders: ReminderService) -> None:
    if reminders.telegram is None:
        return
    # First overdue reminder goes out one interval after startup
    jobs.add_periodic(
        "overdue_reminders",
        OVERDUE_REMINDER_INTERVAL_MINUTES,
        _with_session(reminders.send_overdue_reminders),
        last_run_at=jobs.clock(),
    )
    jobs.add_periodic("daily_summaries", DAILY_SUMMARY_CHECK_MINUTES, _with_session(reminders.send_daily_summaries))


# --- app ---


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the bot and the scan scheduler; stop them on shutdown."""
    global scheduler, telegram_poller
    settings = get_settings()
    init_db()

    telegram = get_telegram_client()
    if telegram is not None:
        try:
            await asyncio.to_thread(telegram.wait_until_ready, settings.telegram_startup_retries)
        except UpstreamError as e:
            logger.error(f"Telegram bot unavailable, continuing without it: {e.message}")
            telegram = None
    polling = telegram is not None and settings.telegram_polling
    if polling:
        try:
            await asyncio.to_thread(telegram.delete_webhook)
        except UpstreamError as e:
            logger.error(f"Failed to clear Telegram webhook, polling disabled: {e.message}")
            polling = False
    if polling:
        handler = TelegramUpdateHandler(
            telegram,
            task_store_factory=lambda db: make_task_store(settings, db),
            classifier=get_openai_client(),
        )
        telegram_poller = TelegramPoller(telegram, handler, SessionLocal)
        telegram_poller.start()

    if settings.scheduler_enabled:
        scheduler = ScanScheduler(
            runner=_run_scheduled_scan,
            tick_seconds=settings.scheduler_tick_seconds,
            session_factory=SessionLocal,
        )
        _add_reminder_jobs(scheduler, ReminderService(telegram, task_store_factory=lambda db: make_task_store(settings, db)))
        scheduler.start()

    yield

    if telegram_poller is not None:
        await telegram_poller.stop()
        telegram_poller = None
    if scheduler is not None:
        await scheduler.stop()
        scheduler = None


app = FastAPI(
    title="TaskFlow API",
    description="Turns emails, Slack mentions and Telegram messages into draft tasks you approve",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[get_settings().frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(TaskFlowError)
async def taskflow_error_handler(request: Request, exc: TaskFlowError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "error": exc.kind})


@app.get("/")
async def root():
    return {"message": "TaskFlow API Online"}


@app.get("/health")
async def health():
    return {"status": "ok", "timestamp": datetime.utcnow().isoformat()}


# --- auth ---


def _auth_response(user: User) -> AuthResponse:
    return AuthResponse(
        token=generate_token(user.id),
        user=AuthUser(
            id=user.id,
            username=user.username,
            xp=user.xp,
            level=user.level,
            streak=user.streak,
            last_reset_at=user.last_reset_at,
        ),
    )


def _register(db: Session, username: str, email: str, password: str) -> User:
    if not username or not email or not password:
        raise ValidationError("Missing fields")
    users = UserRepository(db)
    if users.get_by_email(email) is not None:
        raise ValidationError("User already exists")
    return users.create(username, email, hash_password(password))


def _login(db: Session, email: str, password: str) -> User:
    users = UserRepository(db)
    found = users.get_password_hash(email)
    if found is None:
        raise NotFound("User not found")
    user_id, password_hash = found
    if not verify_password(password, password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    return users.record_login(user_id)


@app.post("/auth/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(request: RegisterRequest, db: Session = Depends(get_db)):
    user = _register(db, request.username.strip(), request.email.strip().lower(), request.password)
    logger.info(f"Registered user {user.id}")
    return _auth_response(user)


@app.post("/auth/login", response_model=AuthResponse)
async def login(request: LoginRequest, db: Session = Depends(get_db)):
    return _auth_response(_login(db, request.email.strip().lower(), request.password))


@app.get("/auth/me", response_model=User)
async def me(current_user: User = Depends(get_current_user)):
    return current_user


# --- draft tasks ---


@app.get("/draft-tasks", response_model=List[DraftTask])
def list_draft_tasks(
    status_filter: Optional[str] = Query("pending", alias="status"),
    current_user: User = Depends(get_current_user),
    review: DraftReviewService = Depends(get_review_service),
):
    """List drafts (pending by default; `status=all` for every draft)."""
    return review.list_drafts(current_user.id, status_filter)


@app.get("/draft-tasks/{draft_id}", response_model=DraftTask)
def get_draft_task(
    draft_id: int,
    current_user: User = Depends(get_current_user),
    review: DraftReviewService = Depends(get_review_service),
):
    return review.get_draft(current_user.id, draft_id)


@app.put("/draft-tasks/{draft_id}", response_model=DraftTask)
def edit_draft_task(
    draft_id: int,
    request: DraftEditRequest,
    current_user: User = Depends(get_current_user),
    review: DraftReviewService = Depends(get_review_service),
):
    return review.edit_draft(current_user.id, draft_id, request.supplied_fields(), request.expected_version)


@app.post("/draft-tasks/bulk-approve", response_model=BulkDraftResponse)
def bulk_approve_draft_tasks(
    request: BulkDraftRequest,
    current_user: User = Depends(get_current_user),
    review: DraftReviewService = Depends(get_review_service),
):
    return BulkDraftResponse(results=review.bulk_approve(current_user.id, request.draft_ids))


@app.post("/draft-tasks/bulk-reject", response_model=BulkDraftResponse)
def bulk_reject_draft_tasks(
    request: BulkDraftRequest,
    current_user: User = Depends(get_current_user),
    review: DraftReviewService = Depends(get_review_service),
):
    return BulkDraftResponse(results=review.bulk_reject(current_user.id, request.draft_ids))


@app.post("/draft-tasks/{draft_id}/approve", response_model=ApprovalResult)
def approve_draft_task(
    draft_id: int,
    request: Optional[DraftEditRequest] = None,
    current_user: User = Depends(get_current_user),
    review: DraftReviewService = Depends(get_review_service),
):
    """Approve a draft, optionally overriding fields, and create its task."""
    overrides = request.supplied_fields() if request else None
    expected_version = request.expected_version if request else None
    return review.approve_draft(current_user.id, draft_id, overrides, expected_version)


@app.post("/draft-tasks/{draft_id}/reject", response_model=DraftTask)
def reject_draft_task(
    draft_id: int,
    request: Optional[DraftActionRequest] = None,
    current_user: User = Depends(get_current_user),
    review: DraftReviewService = Depends(get_review_service),
):
    return review.reject_draft(current_user.id, draft_id, request.expected_version if request else None)


@app.delete("/draft-tasks/{draft_id}")
def delete_draft_task(
    draft_id: int,
    current_user: User = Depends(get_current_user),
    review: DraftReviewService = Depends(get_review_service),
):
    review.delete_draft(current_user.id, draft_id)
    return {"success": True}


# --- tasks ---


def _require_task(store: TaskStore, user_id: int, task_id: str) -> Task:
    task = store.get(user_id, task_id)
    if task is None:
        raise NotFound(f"Task {task_id} not found")
    return task


@app.get("/tasks", response_model=TaskListResponse)
def list_tasks(
    current_user: User = Depends(get_current_user),
    store: TaskStore = Depends(get_task_store),
):
    return TaskListResponse(tasks=store.get_all(current_user.id))


@app.post("/tasks", response_model=Task, status_code=status.HTTP_201_CREATED)
def create_task(
    request: TaskCreateRequest,
    current_user: User = Depends(get_current_user),
    store: TaskStore = Depends(get_task_store),
):
    if not request.title.strip():
        raise ValidationError("Title cannot be empty")
    task = create_task_base(
        user_id=current_user.id,
        title=request.title,
        description=request.description,
        workspace=request.workspace,
        energy=request.energy,
        status=request.status,
        estimated_time=request.estimated_time,
        tags=request.tags,
        dependencies=request.dependencies,
        due_date=request.due_date,
        recurrence=request.recurrence,
        subtasks=request.subtasks,
        meeting_link=request.meeting_link,
    )
    return store.create(task)


@app.get("/tasks/{task_id}", response_model=Task)
def get_task(
    task_id: str,
    current_user: User = Depends(get_current_user),
    store: TaskStore = Depends(get_task_store),
):
    return _require_task(store, current_user.id, task_id)


@app.put("/tasks/{task_id}", response_model=Task)
def update_task(
    task_id: str,
    request: TaskUpdateRequest,
    current_user: User = Depends(get_current_user),
    store: TaskStore = Depends(get_task_store),
):
    task = _require_task(store, current_user.id, task_id)
    changes = request.model_dump(exclude_unset=True)
    if "title" in changes:
        changes["title"] = (changes["title"] or "").strip()
        if not changes["title"]:
            raise ValidationError("Title cannot be empty")
    if "tags" in changes:
        changes["tags"] = clean_tags(changes["tags"])
    if "subtasks" in changes:
        changes["subtasks"] = list(request.subtasks or [])
    if "status" in changes:
        new_status = normalize_status(changes["status"]).value
        changes["status"] = new_status
        if new_status == TaskStatus.DONE.value and task.status != TaskStatus.DONE.value:
            changes["completed_at"] = datetime.utcnow()
        elif new_status != TaskStatus.DONE.value:
            changes["completed_at"] = None
    updated = task.model_copy(update=changes)
    return store.update(Task.model_validate(updated.model_dump()))


@app.delete("/tasks/{task_id}")
def delete_task(
    task_id: str,
    current_user: User = Depends(get_current_user),
    store: TaskStore = Depends(get_task_store),
):
    if not store.delete(current_user.id, task_id):
        raise NotFound(f"Task {task_id} not found")
    return {"success": True}


@app.post("/tasks/{task_id}/complete", response_model=CompletionResponse)
def complete_task(
    task_id: str,
    current_user: User = Depends(get_current_user),
    store: TaskStore = Depends(get_task_store),
    db: Session = Depends(get_db),
):
    task, user, leveled_up = complete_task_with_xp(db, store, current_user.id, task_id)
    return CompletionResponse(task=task, xp=user.xp, level=user.level, leveled_up=leveled_up)


@app.post("/tasks/{task_id}/uncomplete", response_model=Task)
def uncomplete_task(
    task_id: str,
    current_user: User = Depends(get_current_user),
    store: TaskStore = Depends(get_task_store),
):
    _require_task(store, current_user.id, task_id)
    return store.set_completed(current_user.id, task_id, False)


# --- action-parameter API ---


class _ActionError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def _action_user_id(request: Request) -> int:
    header = request.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        raise _ActionError(401, "Unauthorized")
    try:
        return validate_token(header[len("Bearer "):].strip())
    except TokenValidationError as e:
        raise _ActionError(401, e.http_detail)


async def _json_body(request: Request) -> Dict[str, Any]:
    try:
        data = await request.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _action_task_id(body: Dict[str, Any]) -> str:
    task_id = body.get("id")
    if not task_id:
        raise _ActionError(400, "Task id is required")
    return str(task_id)


def _dispatch_action(action: str, method: str, body: Dict[str, Any], request: Request, db: Session, settings: Settings) -> Any:
    if method == "POST" and action == "register":
        user = _register(db, (body.get("username") or "").strip(), (body.get("email") or "").strip().lower(), body.get("password") or "")
        return _auth_response(user).model_dump(mode="json", exclude={"token_type"})

    if method == "POST" and action == "login":
        try:
            user = _login(db, (body.get("email") or "").strip().lower(), body.get("password") or "")
        except HTTPException as e:
            raise _ActionError(e.status_code, e.detail)
        return _auth_response(user).model_dump(mode="json", exclude={"token_type"})

    if (method, action) not in {
        ("GET", "get_tasks"),
        ("POST", "sync_tasks"),
        ("POST", "delete_task"),
        ("POST", "complete_task"),
        ("POST", "uncomplete_task"),
        ("POST", "daily_reset"),
    }:
        return {"message": "TaskFlow API Online"}

    user_id = _action_user_id(request)
    store = make_task_store(settings, db)

    if action == "get_tasks":
        return [task_to_row(task) for task in store.get_all(user_id)]

    if action == "sync_tasks":
        if not body.get("id") or not body.get("title"):
            raise _ActionError(400, "Missing fields")
        try:
            task = task_from_wire(body, user_id)
        except (PydanticValidationError, ValueError, TypeError) as e:
            logger.warning(f"Rejected sync_tasks body for user {user_id}: {type(e).__name__}")
            raise _ActionError(400, "Invalid task fields")
        owner = store.owner_of(task.id)
        if owner is not None and owner != user_id:
            raise _ActionError(409, "Task id already in use")
        store.upsert(task)
        return {"success": True}

    if action == "delete_task":
        store.delete(user_id, _action_task_id(body))
        return {"success": True}

    if action == "complete_task":
        try:
            _, updated, leveled_up = complete_task_with_xp(db, store, user_id, _action_task_id(body))
        except NotFound as e:
            raise _ActionError(404, e.message)
        return {"success": True, "new_xp": updated.xp, "new_level": updated.level, "leveled_up": leveled_up}

    if action == "uncomplete_task":
        try:
            store.set_completed(user_id, _action_task_id(body), False)
        except ValueError as e:
            raise _ActionError(404, str(e))
        return {"success": True}

    # daily_reset
    try:
        user = UserRepository(db).mark_daily_reset(user_id)
    except ValueError:
        raise _ActionError(404, "User not found")
    return {"success": True, "reset_time": user.last_reset_at.isoformat()}


@app.api_route("/api", methods=["GET", "POST"])
async def action_api(
    request: Request,
    action: str = "",
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Single-endpoint API selected by `?action=`; errors are `{"error": message}`."""
    body = await _json_body(request) if request.method == "POST" else {}
    try:
        result = await asyncio.to_thread(_dispatch_action, action, request.method, body, request, db, settings)
    except _ActionError as e:
        return JSONResponse(status_code=e.status_code, content={"error": e.message})
    except TaskFlowError as e:
        return JSONResponse(status_code=e.status_code, content={"error": e.message})
    return JSONResponse(content=result)


# --- AI helpers ---


@app.post("/ai/parse-task", response_model=TaskProposal)
def parse_task(
    request: ParseTaskRequest,
    current_user: User = Depends(get_current_user),
    classifier: OpenAIClient = Depends(get_openai_client),
):
    if not request.input.strip():
        raise ValidationError("Input is required")
    return classifier.parse_task(request.input)


@app.post("/ai/daily-motivation", response_model=MessageResponse)
def daily_motivation(
    request: DailyMotivationRequest,
    current_user: User = Depends(get_current_user),
    classifier: OpenAIClient = Depends(get_openai_client),
):
    return MessageResponse(message=classifier.daily_motivation(request.completed_tasks, request.pending_tasks))


@app.post("/ai/daily-plan", response_model=PlanResponse)
def daily_plan(
    request: DailyPlanRequest,
    current_user: User = Depends(get_current_user),
    classifier: OpenAIClient = Depends(get_openai_client),
):
    return PlanResponse(plan=classifier.daily_plan(request.pending_tasks))


@app.post("/ai/follow-up", response_model=MessageResponse)
def client_follow_up(
    request: FollowUpRequest,
    current_user: User = Depends(get_current_user),
    classifier: OpenAIClient = Depends(get_openai_client),
):
    return MessageResponse(message=classifier.client_follow_up(request.task_title))


# --- integrations: shared ---


def _settings_response(source: str, db: Session, user_id: int, update: IntegrationSettingsUpdate):
    row = IntegrationRepository(db).update_settings(source, user_id, update)
    if row is None:
        raise IntegrationNotConnected(source)
    _reschedule(source, user_id, row)
    return row.to_status()


def _disconnect(source: str, db: Session, user_id: int) -> Dict[str, Any]:
    removed = IntegrationRepository(db).delete(source, user_id)
    _reschedule(source, user_id, None)
    return {"success": True, "disconnected": bool(removed)}


def _scan_now(source: str, db: Session, user_id: int, scans: ScanService) -> ScanResult:
    if IntegrationRepository(db).get(source, user_id) is None:
        raise IntegrationNotConnected(source)
    return scans.scan(db, user_id, source)


def _frontend_redirect(settings: Settings, source: str, outcome: str, **params: str) -> RedirectResponse:
    query = urlencode({source: outcome, **params})
    return RedirectResponse(url=f"{settings.frontend_url}/settings?{query}", status_code=status.HTTP_302_FOUND)


# --- Gmail ---


@app.get("/gmail/status", response_model=GmailStatus)
def gmail_status(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    row = IntegrationRepository(db).get("gmail", current_user.id)
    return row.to_status() if row else GmailStatus(connected=False)


@app.post("/gmail/connect")
def gmail_connect(current_user: User = Depends(get_current_user), settings: Settings = Depends(get_settings)):
    if not settings.google_client_id or not settings.google_client_secret:
        raise ValidationError("Gmail OAuth is not configured")
    state = create_oauth_state(current_user.id, "gmail", secret=settings.api_secret)
    return {"authUrl": gmail.build_auth_url(settings, state)}


@app.get("/gmail/callback")
def gmail_callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """OAuth redirect target. Always redirects back to the frontend settings page."""
    if error or not code:
        return _frontend_redirect(settings, "gmail", "error", message=error or "Authorization code missing")
    user_id = read_oauth_state(state or "", "gmail", secret=settings.api_secret)
    if user_id is None:
        return _frontend_redirect(settings, "gmail", "error", message="Invalid or expired state")

    try:
        tokens = gmail.exchange_code(settings, code)
        expiry = gmail.token_expiry(tokens)
        creds = gmail.build_credentials(settings, tokens["access_token"], tokens.get("refresh_token"), expiry)
        email = gmail.GmailClient(creds).get_profile_email()
        row = IntegrationRepository(db).upsert_gmail(
            user_id,
            email=email,
            access_token=tokens["access_token"],
            refresh_token=tokens.get("refresh_token"),
            expiry=expiry,
        )
    except TaskFlowError as e:
        logger.warning(f"Gmail connect failed for user {user_id}: {e.message}")
        return _frontend_redirect(settings, "gmail", "error", message=e.message)

    _reschedule("gmail", user_id, row)
    logger.info(f"Gmail connected for user {user_id}")
    return _frontend_redirect(settings, "gmail", "connected", email=email or "")


@app.post("/gmail/disconnect")
def gmail_disconnect(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return _disconnect("gmail", db, current_user.id)


@app.post("/gmail/scan-now", response_model=ScanResult)
def gmail_scan_now(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    scans: ScanService = Depends(get_scan_service),
):
    return _scan_now("gmail", db, current_user.id, scans)


@app.put("/gmail/settings", response_model=GmailStatus)
def gmail_settings(
    request: IntegrationSettingsUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _settings_response("gmail", db, current_user.id, request)


# --- Slack ---


@app.get("/slack/status", response_model=SlackStatus)
def slack_status(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    row = IntegrationRepository(db).get("slack", current_user.id)
    return row.to_status() if row else SlackStatus(connected=False)


@app.post("/slack/connect")
def slack_connect(current_user: User = Depends(get_current_user), settings: Settings = Depends(get_settings)):
    if not settings.slack_client_id or not settings.slack_client_secret:
        raise ValidationError("Slack OAuth is not configured")
    state = create_oauth_state(current_user.id, "slack", secret=settings.api_secret)
    return {"authUrl": slack.build_auth_url(settings, state)}


@app.get("/slack/callback")
def slack_callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """OAuth redirect target. Always redirects back to the frontend settings page."""
    if error or not code:
        return _frontend_redirect(settings, "slack", "error", message=error or "Authorization code missing")
    user_id = read_oauth_state(state or "", "slack", secret=settings.api_secret)
    if user_id is None:
        return _frontend_redirect(settings, "slack", "error", message="Invalid or expired state")

    try:
        result = slack.exchange_code(settings, code)
        row = IntegrationRepository(db).upsert_slack(
            user_id,
            slack_user_id=result["slack_user_id"],
            team_id=result.get("team_id"),
            team_name=result.get("team_name"),
            access_token=result["access_token"],
        )
    except TaskFlowError as e:
        logger.warning(f"Slack connect failed for user {user_id}: {e.message}")
        return _frontend_redirect(settings, "slack", "error", message=e.message)

    _reschedule("slack", user_id, row)
    logger.info(f"Slack connected for user {user_id}")
    return _frontend_redirect(settings, "slack", "connected", team=result.get("team_name") or "")


@app.post("/slack/disconnect")
def slack_disconnect(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return _disconnect("slack", db, current_user.id)


@app.post("/slack/scan-now", response_model=ScanResult)
def slack_scan_now(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    scans: ScanService = Depends(get_scan_service),
):
    return _scan_now("slack", db, current_user.id, scans)


@app.put("/slack/settings", response_model=SlackStatus)
def slack_settings(
    request: IntegrationSettingsUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _settings_response("slack", db, current_user.id, request)


# --- Telegram ---


@app.get("/telegram/status", response_model=TelegramStatus)
def telegram_status(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    telegram: Optional[TelegramClient] = Depends(get_telegram_client),
):
    row = IntegrationRepository(db).get("telegram", current_user.id)
    result = row.to_status() if row else TelegramStatus(connected=False)
    result.bot_username = telegram.bot_username if telegram else None
    return result


@app.post("/telegram/connect")
def telegram_connect(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    telegram: Optional[TelegramClient] = Depends(get_telegram_client),
):
    """Issue a one-time code the user sends to the bot as `/link <code>`."""
    code = generate_link_code()
    expires_at = datetime.utcnow() + timedelta(minutes=LINK_CODE_TTL_MINUTES)
    TelegramRepository(db).create_link_code(current_user.id, hash_link_code(code), expires_at)
    bot_username = telegram.bot_username if telegram else None
    return {
        "code": code,
        "expiresAt": expires_at.isoformat(),
        "botUsername": bot_username,
        "instructions": f"Send /link {code} to the TaskFlow bot within {LINK_CODE_TTL_MINUTES} minutes.",
    }


@app.post("/telegram/disconnect")
def telegram_disconnect(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return _disconnect("telegram", db, current_user.id)


@app.post("/telegram/scan-now", response_model=ScanResult)
def telegram_scan_now(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    scans: ScanService = Depends(get_scan_service),
):
    return _scan_now("telegram", db, current_user.id, scans)


@app.put("/telegram/settings", response_model=TelegramStatus)
def telegram_settings(
    request: IntegrationSettingsUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _settings_response("telegram", db, current_user.id, request)


@app.post("/telegram/webhook")
def telegram_webhook(
    update: Dict[str, Any],
    x_telegram_bot_api_secret_token: Optional[str] = Header(None),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    telegram: Optional[TelegramClient] = Depends(get_telegram_client),
    handler: TelegramUpdateHandler = Depends(get_telegram_handler),
):
    """Telegram webhook. Verified with the secret token registered via setWebhook."""
    if telegram is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Telegram bot not initialized")
    if settings.telegram_webhook_secret and x_telegram_bot_api_secret_token != settings.telegram_webhook_secret:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook secret")
    handler.handle_update(db, update)
    return {"ok": True}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
