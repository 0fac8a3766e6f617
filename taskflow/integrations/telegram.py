"""Telegram Bot API client for TaskFlow."""

import logging
import time
from typing import Any, Callable, Dict, List, Optional

import requests

from taskflow.errors import UpstreamError

logger = logging.getLogger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org"


class TelegramAPIError(UpstreamError):
    """Telegram returned ok=false or could not be reached."""

    def __init__(self, method: str, description: str, error_code: Optional[int] = None):
        super().__init__(f"Telegram {method} failed: {description}", service="telegram")
        self.method = method
        self.error_code = error_code


class TelegramClient:
    """Client for the Telegram Bot HTTP API."""

    def __init__(self, bot_token: str, timeout: int = 10, sleep: Callable[[float], None] = time.sleep):
        """Initialize Telegram client.

        Args:
            bot_token: Bot token from @BotFather
            timeout: HTTP timeout in seconds
            sleep: Sleep function used between startup retries (tests pass a no-op)
        """
        if not bot_token:
            raise ValueError("Telegram bot token is required")
        self.bot_token = bot_token
        self.timeout = timeout
        self._sleep = sleep
        self.bot_username: Optional[str] = None

    def _call(self, method: str, payload: Optional[Dict[str, Any]] = None, timeout: Optional[int] = None) -> Any:
        url = f"{TELEGRAM_API_BASE}/bot{self.bot_token}/{method}"
        try:
            resp = requests.post(url, json=payload or {}, timeout=timeout or self.timeout)
        except requests.RequestException as e:
            # The URL contains the bot token; never log the exception text
            logger.warning(f"Telegram {method} request failed: {type(e).__name__}")
            raise TelegramAPIError(method, type(e).__name__) from e

        try:
            data = resp.json()
        except ValueError:
            raise TelegramAPIError(method, f"HTTP {resp.status_code}", resp.status_code)
        if not data.get("ok"):
            raise TelegramAPIError(method, data.get("description") or "unknown error", data.get("error_code"))
        return data.get("result")

    def get_me(self) -> Dict[str, Any]:
        me = self._call("getMe")
        self.bot_username = me.get("username")
        return me

    def wait_until_ready(self, retries: int = 5, base_delay: float = 1.0, max_delay: float = 30.0) -> Dict[str, Any]:
        """Call getMe until it succeeds, backing off exponentially.

        Raises:
            TelegramAPIError: still failing after `retries` attempts
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                me = self.get_me()
                logger.info(f"Telegram bot @{self.bot_username} ready after {attempt} attempt(s)")
                return me
            except TelegramAPIError as e:
                if attempt >= retries:
                    logger.error(f"Telegram bot not reachable after {attempt} attempts")
                    raise
                delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
                logger.warning(f"Telegram getMe failed (attempt {attempt}/{retries}, code {e.error_code}); retrying in {delay:.1f}s")
                self._sleep(delay)

    def get_updates(self, offset: Optional[int] = None, poll_timeout: int = 0) -> List[Dict[str, Any]]:
        payload: Dict[str, Any] = {"timeout": poll_timeout, "allowed_updates": ["message"]}
        if offset is not None:
            payload["offset"] = offset
        return self._call("getUpdates", payload, timeout=self.timeout + poll_timeout) or []

    def send_message(self, chat_id: str, text: str, parse_mode: Optional[str] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"chat_id": chat_id, "text": text, "disable_web_page_preview": True}
        if parse_mode:
            payload["parse_mode"] = parse_mode
        return self._call("sendMessage", payload)

    def set_webhook(self, url: str, secret_token: Optional[str] = None) -> bool:
        payload: Dict[str, Any] = {"url": url, "allowed_updates": ["message"]}
        if secret_token:
            payload["secret_token"] = secret_token
        return bool(self._call("setWebhook", payload))

    def delete_webhook(self) -> bool:
        return bool(self._call("deleteWebhook"))
