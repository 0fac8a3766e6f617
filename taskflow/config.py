"""Runtime configuration for TaskFlow.

Settings are read once from the environment (and a local `.env` file) into a
`Settings` object that is handed to the scanners, clients and scheduler
when they are constructed.
"""

import os
from typing import Optional
from pydantic import BaseModel, Field
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = "False") -> bool:
    return os.getenv(name, default).lower() == "true"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


class Settings(BaseModel):
    """Application settings."""

    # Core
    database_url: str = "sqlite:///./taskflow.db"
    api_secret: str = "change-me-in-production"
    frontend_url: str = "http://localhost:5173"
    public_base_url: str = "http://localhost:8000"
    http_timeout_sec: int = 10

    # Remote task store (action-parameter API). Local SQL store when unset.
    task_store_url: Optional[str] = None

    # OpenAI
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"

    # Gmail OAuth
    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None
    google_redirect_uri: Optional[str] = None

    # Slack OAuth
    slack_client_id: Optional[str] = None
    slack_client_secret: Optional[str] = None
    slack_redirect_uri: Optional[str] = None

    # Telegram
    telegram_bot_token: Optional[str] = None
    telegram_webhook_secret: Optional[str] = None
    telegram_polling: bool = False
    telegram_startup_retries: int = 5

    # Scanning
    scan_batch_size: int = Field(50, ge=1)
    scheduler_enabled: bool = True
    scheduler_tick_seconds: int = Field(60, ge=1)

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables."""
        public_base_url = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/")
        return cls(
            database_url=os.getenv("DATABASE_URL", "sqlite:///./taskflow.db"),
            api_secret=os.getenv("API_SECRET", "change-me-in-production"),
            frontend_url=os.getenv("FRONTEND_URL", "http://localhost:5173").rstrip("/"),
            public_base_url=public_base_url,
            http_timeout_sec=_env_int("HTTP_TIMEOUT_SEC", 10),
            task_store_url=os.getenv("TASK_STORE_URL") or None,
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            google_client_id=os.getenv("GOOGLE_CLIENT_ID") or None,
            google_client_secret=os.getenv("GOOGLE_CLIENT_SECRET") or None,
            google_redirect_uri=os.getenv("GOOGLE_REDIRECT_URI") or f"{public_base_url}/gmail/callback",
            slack_client_id=os.getenv("SLACK_CLIENT_ID") or None,
            slack_client_secret=os.getenv("SLACK_CLIENT_SECRET") or None,
            slack_redirect_uri=os.getenv("SLACK_REDIRECT_URI") or f"{public_base_url}/slack/callback",
            telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN") or None,
            telegram_webhook_secret=os.getenv("TELEGRAM_WEBHOOK_SECRET") or None,
            telegram_polling=_env_bool("TELEGRAM_POLLING"),
            telegram_startup_retries=_env_int("TELEGRAM_STARTUP_RETRIES", 5),
            scan_batch_size=_env_int("SCAN_BATCH_SIZE", 50),
            scheduler_enabled=_env_bool("SCHEDULER_ENABLED", "True"),
            scheduler_tick_seconds=_env_int("SCHEDULER_TICK_SECONDS", 60),
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Return the process-wide settings (dependency for FastAPI)."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings
