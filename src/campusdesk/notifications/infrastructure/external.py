"""
Notification External Service Integrations
==========================================

External services for ticket notifications:
- Slack Web API (chat.postMessage) sender
- Transactional email HTTP API sender
- YAML notification config watcher
- APScheduler for the outbox and reminder sweeps
"""

import asyncio
import hashlib
import threading
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx
import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from campusdesk.config import settings
from campusdesk.core import ConfigurationException, NotificationException
from campusdesk.notifications.application import (
    IChatSender,
    IEmailSender,
    INotificationConfigProvider,
)
from campusdesk.notifications.domain import ChatMessage, EmailMessage, NotificationConfig
from campusdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class ConfigFileHandler(FileSystemEventHandler):
    """
    Watchdog handler for the notification config file.

    Editors often save by writing a temp file and renaming it over the
    original, so creations and moves onto the path count as changes too.
    """

    def __init__(self, config_manager: "NotificationConfigManager", config_path: Path):
        self.config_manager = config_manager
        self.config_path = config_path.resolve()
        super().__init__()

    def _targets_config(self, path) -> bool:
        return bool(path) and Path(path).resolve() == self.config_path

    def on_modified(self, event):
        if not event.is_directory and self._targets_config(event.src_path):
            self.config_manager.reload()

    on_created = on_modified

    def on_moved(self, event):
        if not event.is_directory and self._targets_config(getattr(event, "dest_path", None)):
            self.config_manager.reload()


class NotificationConfigManager(INotificationConfigProvider):
    """
    Notification routing loaded from YAML, hot-reloaded on change.

    A broken file at startup is a configuration error; a broken edit
    while running is logged and the last good config stays in effect.
    """

    def __init__(self):
        self._config: Optional[NotificationConfig] = None
        self._digest: Optional[str] = None
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> NotificationConfig:
        """
        Initial load.

        Raises:
            ConfigurationException: the file exists but is not a valid config
        """
        self._path = path
        try:
            self._config, self._digest = self._read(path)
        except (OSError, yaml.YAMLError, ValueError) as e:
            raise ConfigurationException(f"Invalid notification config {path}: {e}")
        logger.info(
            "Notification config loaded",
            extra={"path": str(path), "domains": sorted(self._config.domain_channels)}
        )
        return self._config

    def _read(self, path: Path) -> Tuple[NotificationConfig, Optional[str]]:
        if not path.exists():
            logger.warning(f"Notification config file not found: {path}, using defaults")
            return NotificationConfig(), None

        raw = path.read_bytes()
        data = yaml.safe_load(raw) or {}
        if not isinstance(data, dict):
            raise ValueError("top level must be a mapping")
        return NotificationConfig(**data), hashlib.sha256(raw).hexdigest()

    def reload(self) -> bool:
        """
        Re-read the file.

        Returns:
            True if a new config took effect. Unchanged content and invalid
            edits both return False.
        """
        if self._path is None:
            return False

        try:
            new_config, digest = self._read(self._path)
        except (OSError, yaml.YAMLError, ValueError) as e:
            logger.error(f"Failed to reload notification config, keeping previous: {e}")
            return False

        with self._lock:
            if digest is not None and digest == self._digest:
                return False
            self._config, self._digest = new_config, digest
        logger.info(
            "Notification config reloaded",
            extra={"domains": sorted(new_config.domain_channels), "chat_events": new_config.chat_events}
        )
        return True

    def start_watching(self) -> None:
        """
        Watch the config file's directory.

        Skipped when the file doesn't exist or inotify is unavailable
        (some container runtimes).
        """
        if self._path is None:
            raise RuntimeError("Config not loaded. Call load() first.")

        if not self._path.exists():
            logger.info(f"Config file doesn't exist, skipping file watch: {self._path}")
            return

        try:
            self._observer = Observer()
            self._observer.schedule(ConfigFileHandler(self, self._path), str(self._path.parent), recursive=False)
            self._observer.start()
            logger.info(f"Started watching config file: {self._path}")
        except OSError as e:
            logger.warning(f"File watching not available, using static config: {e}")
            self._observer = None

    def stop_watching(self) -> None:
        """Safe to call when not watching."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    def get_config(self) -> NotificationConfig:
        with self._lock:
            if self._config is None:
                raise RuntimeError("Notification configuration not loaded")
            return self._config


class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Per-channel circuit breaker.

    - CLOSED: requests pass; `failure_threshold` consecutive failures open it
    - OPEN: requests are rejected until `recovery_timeout` seconds pass
    - HALF_OPEN: one probe is let through; success closes, failure reopens

    An open circuit makes the outbox event fail fast and retry on backoff
    instead of waiting on a provider that is down.
    """

    def __init__(
        self,
        name: str = "http",
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at: Optional[float] = None

    @property
    def state(self) -> str:
        if self._state == CircuitState.OPEN and self._opened_at is not None:
            if self._clock() - self._opened_at >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        return self.state != CircuitState.OPEN

    def record_success(self) -> None:
        if self._state != CircuitState.CLOSED:
            logger.info("Circuit breaker closed", extra={"circuit": self.name})
        self._failure_count = 0
        self._opened_at = None
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        if self.state == CircuitState.HALF_OPEN or self._failure_count >= self.failure_threshold:
            self._open()

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        logger.warning(
            "Circuit breaker opened",
            extra={
                "circuit": self.name,
                "failure_count": self._failure_count,
                "recovery_timeout": self.recovery_timeout,
            }
        )


class _HttpSender:
    """Shared HTTP plumbing: lazy client, circuit breaker, retry with backoff."""

    channel = "http"

    def __init__(
        self,
        timeout: float,
        client: Optional[httpx.AsyncClient] = None,
        max_retries: int = 3,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self._timeout = timeout
        self._http_client = client
        self._max_retries = max(1, max_retries)
        self._circuit_breaker = circuit_breaker or CircuitBreaker(name=self.channel)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def _post(self, url: str, body: Dict[str, Any], headers: Dict[str, str]) -> httpx.Response:
        """
        POST with retries.

        Raises:
            NotificationException: circuit open or every attempt failed
        """
        if not self._circuit_breaker.allow_request():
            raise NotificationException(self.channel, "circuit breaker open")

        last_error = "no attempt made"
        for attempt in range(self._max_retries):
            try:
                client = await self._get_client()
                response = await client.post(url, json=body, headers=headers)
                if response.status_code < 300:
                    return response
                last_error = f"HTTP {response.status_code}"
                logger.warning(
                    f"{self.channel} API returned non-2xx",
                    extra={"status_code": response.status_code, "attempt": attempt + 1}
                )
                if response.status_code < 500 and response.status_code != 429:
                    break
            except httpx.HTTPError as e:
                last_error = str(e) or type(e).__name__
                logger.warning(
                    f"{self.channel} request failed",
                    extra={"error": last_error, "attempt": attempt + 1}
                )

            if attempt < self._max_retries - 1:
                await asyncio.sleep(2 ** attempt)

        self._circuit_breaker.record_failure()
        raise NotificationException(self.channel, last_error)

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


class SlackChatSender(_HttpSender, IChatSender):
    """
    Slack Web API client (chat.postMessage).

    Messages about a ticket are threaded under the ticket's stored thread ts
    when one is known.
    """

    channel = "slack"

    def __init__(
        self,
        token: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
        max_retries: int = 3,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        super().__init__(
            timeout=timeout or settings.slack_timeout_seconds,
            client=client,
            max_retries=max_retries,
            circuit_breaker=circuit_breaker,
        )
        self._token = token if token is not None else settings.slack_bot_token
        self._api_url = api_url or settings.slack_api_url

    @property
    def enabled(self) -> bool:
        return bool(self._token)

    @staticmethod
    def build_body(message: ChatMessage) -> Dict[str, Any]:
        text = message.text
        if message.mention_user_ids:
            mentions = " ".join(f"<@{user_id}>" for user_id in message.mention_user_ids)
            text = f"{text}\n{mentions}"
        body: Dict[str, Any] = {"channel": message.channel, "text": text}
        if message.thread_ts:
            body["thread_ts"] = message.thread_ts
        return body

    async def send(self, message: ChatMessage) -> Optional[str]:
        if not self.enabled:
            raise NotificationException(self.channel, "bot token not configured")

        response = await self._post(
            self._api_url,
            self.build_body(message),
            {"Authorization": f"Bearer {self._token}"},
        )

        # Slack reports API errors with HTTP 200 and ok=false
        data = response.json()
        if not data.get("ok"):
            self._circuit_breaker.record_failure()
            raise NotificationException(self.channel, str(data.get("error", "unknown error")))

        self._circuit_breaker.record_success()
        logger.info(
            "Slack notification sent",
            extra={"slack_channel": message.channel, "threaded": bool(message.thread_ts)}
        )
        return data.get("ts")


class HttpEmailSender(_HttpSender, IEmailSender):
    """
    Transactional email sender over a JSON HTTP API.
    """

    channel = "email"

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        sender: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
        max_retries: int = 3,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        super().__init__(
            timeout=timeout or settings.email_timeout_seconds,
            client=client,
            max_retries=max_retries,
            circuit_breaker=circuit_breaker,
        )
        self._api_url = api_url if api_url is not None else settings.email_api_url
        self._api_key = api_key if api_key is not None else settings.email_api_key
        self._sender = sender or settings.email_from

    @property
    def enabled(self) -> bool:
        return bool(self._api_url)

    async def send(self, message: EmailMessage) -> None:
        if not self.enabled:
            raise NotificationException(self.channel, "email API URL not configured")

        body: Dict[str, Any] = {
            "from": self._sender,
            "to": message.to,
            "subject": message.subject,
            "text": message.body,
        }
        if message.in_reply_to:
            body["headers"] = {"In-Reply-To": message.in_reply_to, "References": message.in_reply_to}

        headers = {}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        await self._post(self._api_url, body, headers)
        self._circuit_breaker.record_success()
        logger.info("Email notification sent", extra={"subject": message.subject})


class JobScheduler:
    """
    Wrapper for APScheduler running the in-process background jobs.

    Jobs are registered before `start()`: the outbox sweep on an interval
    and, optionally, the reminder sweep once a day at a local hour. Each
    job runs at most one instance at a time and missed runs coalesce.
    """

    def __init__(self, timezone: str = "UTC"):
        self.timezone = timezone
        self._scheduler = AsyncIOScheduler(timezone=timezone)
        self._job_ids: List[str] = []
        self._running = False

    def add_interval_job(self, job_id: str, func: Callable[[], Awaitable[Any]], seconds: int) -> None:
        self._scheduler.add_job(
            func,
            "interval",
            seconds=seconds,
            id=job_id,
            misfire_grace_time=60,
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )
        self._job_ids.append(job_id)
        logger.info("Scheduled interval job", extra={"job_id": job_id, "interval_seconds": seconds})

    def add_daily_job(self, job_id: str, func: Callable[[], Awaitable[Any]], hour: int, minute: int = 0) -> None:
        self._scheduler.add_job(
            func,
            "cron",
            hour=hour,
            minute=minute,
            id=job_id,
            misfire_grace_time=3600,
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )
        self._job_ids.append(job_id)
        logger.info(
            "Scheduled daily job",
            extra={"job_id": job_id, "hour": hour, "minute": minute, "timezone": self.timezone}
        )

    async def start(self) -> None:
        if self._running:
            logger.warning("Job scheduler already running")
            return
        if not self._job_ids:
            logger.info("No background jobs configured, scheduler not started")
            return

        self._scheduler.start()
        self._running = True
        logger.info("Job scheduler started", extra={"jobs": self._job_ids})

    async def stop(self) -> None:
        """Stop the scheduler, waiting for running jobs."""
        if not self._running:
            return
        self._scheduler.shutdown(wait=True)
        self._running = False
        logger.info("Job scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def job_ids(self) -> List[str]:
        return list(self._job_ids)
