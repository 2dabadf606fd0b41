"""
SLA External Service Integrations
==================================

External services around the SLA engine:
- Slack webhook notifications for escalations and breaches
- YAML reference data file watcher
- APScheduler for the periodic escalation sweep
"""

import asyncio
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from src.config import settings
from src.shared.infrastructure.logging import get_logger
from src.sla.application import ReferenceDataCache
from src.sla.infrastructure.repositories import YAMLReferenceDataRepository

logger = get_logger(__name__)


class ReferenceFileHandler(FileSystemEventHandler):
    """Watchdog event handler for reference data file changes."""

    def __init__(self, watcher: "ReferenceDataWatcher"):
        self.watcher = watcher
        super().__init__()

    def on_modified(self, event):
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.watcher.path.resolve():
            logger.info(f"Reference data file changed: {event.src_path}")
            self.watcher.reload()

    on_created = on_modified


class ReferenceDataWatcher:
    """
    Hot-reload of the YAML reference data.

    A successful reload invalidates the reference cache so the next
    snapshot sees the new calendars and policies. An invalid file is
    logged and the previous data stays in effect.
    """

    def __init__(self, repository: YAMLReferenceDataRepository, cache: ReferenceDataCache):
        self._repository = repository
        self._cache = cache
        self._observer = None

    @property
    def path(self) -> Path:
        return self._repository.path

    @property
    def is_watching(self) -> bool:
        return self._observer is not None

    def reload(self) -> bool:
        """Reload the file and invalidate cached snapshots on success."""
        if not self._repository.reload():
            return False
        self._cache.invalidate()
        return True

    def start(self) -> None:
        """
        Start watching the reference data file.

        Skips watching if the file does not exist or inotify is unavailable.
        """
        if not self.path.exists():
            logger.info(f"Reference data file doesn't exist, skipping file watch: {self.path}")
            return

        try:
            self._observer = Observer()
            self._observer.schedule(
                ReferenceFileHandler(self),
                str(self.path.parent),
                recursive=False
            )
            self._observer.start()
            logger.info(f"Started watching reference data file: {self.path}")
        except OSError as e:
            logger.warning(f"File watching not available, using static reference data: {e}")
            self._observer = None

    def stop(self) -> None:
        """Stop watching (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None


class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for preventing cascade failures.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: After N failures, reject all requests for M seconds
    - HALF_OPEN: After timeout, allow one test request
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic
    ):
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
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        self._failure_count = 0
        self._opened_at = None
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        if self._state == CircuitState.HALF_OPEN or self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            self._opened_at = self._clock()
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


@dataclass
class SlackMessage:
    """Slack notification for an SLA event on a ticket."""
    ticket_id: int
    title: str
    priority: str
    event: str  # escalation or breach
    policy_name: str
    due_date: Optional[str] = None
    escalation_level: int = 0
    assign_to_role: Optional[str] = None
    elapsed_minutes: Optional[float] = None


class SlackClient:
    """
    Slack webhook client with circuit breaker and retry logic.

    Handles sending SLA notifications to Slack with:
    - Circuit breaker to prevent cascade failures
    - Exponential backoff retry
    - Timeout handling
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        backoff_seconds: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self._webhook_url = webhook_url if webhook_url is not None else settings.slack_webhook_url
        self._timeout = timeout_seconds or settings.slack_timeout_seconds
        self._backoff = backoff_seconds
        self._transport = transport
        self._circuit_breaker = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        self._http_client: Optional[httpx.AsyncClient] = None

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._circuit_breaker

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self._http_client

    def _build_message(self, data: SlackMessage, channel: str) -> Dict[str, Any]:
        """Build Slack Block Kit message."""
        if data.event == "breach":
            header_text = f":rotating_light: SLA breached: ticket #{data.ticket_id}"
        else:
            header_text = f":warning: SLA escalation level {data.escalation_level}: ticket #{data.ticket_id}"

        fields = [
            {"type": "mrkdwn", "text": f"*Ticket:*\n#{data.ticket_id} {data.title}"},
            {"type": "mrkdwn", "text": f"*Priority:*\n{data.priority.title()}"},
            {"type": "mrkdwn", "text": f"*Policy:*\n{data.policy_name}"},
            {"type": "mrkdwn", "text": f"*Due:*\n{data.due_date or 'n/a'}"},
        ]
        if data.assign_to_role:
            fields.append({"type": "mrkdwn", "text": f"*Escalated to:*\n{data.assign_to_role}"})

        blocks = [
            {"type": "header", "text": {"type": "plain_text", "text": header_text, "emoji": True}},
            {"type": "section", "fields": fields},
        ]
        if data.elapsed_minutes is not None:
            blocks.append({
                "type": "context",
                "elements": [{"type": "mrkdwn", "text": f"Elapsed SLA time: {data.elapsed_minutes:.0f} min"}]
            })

        return {"channel": channel, "text": header_text, "blocks": blocks}

    async def send(
        self,
        data: SlackMessage,
        channel: Optional[str] = None,
        max_retries: int = 3
    ) -> bool:
        """
        Send a notification to the Slack webhook.

        Returns:
            True if sent successfully, False otherwise
        """
        if not self._webhook_url:
            logger.debug("Slack webhook URL not configured, skipping notification")
            return False

        if not self._circuit_breaker.allow_request():
            logger.warning(
                "Circuit breaker open, skipping Slack notification",
                extra={"ticket_id": data.ticket_id}
            )
            return False

        message = self._build_message(data, channel or settings.slack_channel)

        for attempt in range(max_retries):
            try:
                client = await self._get_client()
                response = await client.post(self._webhook_url, json=message)

                if response.status_code == 200:
                    self._circuit_breaker.record_success()
                    logger.info(
                        "Slack notification sent",
                        extra={"ticket_id": data.ticket_id, "sla_event": data.event, "channel": message["channel"]}
                    )
                    return True

                logger.warning(
                    "Slack webhook returned non-200",
                    extra={"status_code": response.status_code, "attempt": attempt + 1}
                )
            except httpx.HTTPError as e:
                logger.error(
                    "Slack notification failed",
                    extra={"error": str(e), "attempt": attempt + 1, "ticket_id": data.ticket_id}
                )

            if attempt < max_retries - 1:
                await asyncio.sleep(self._backoff * 2 ** attempt)

        self._circuit_breaker.record_failure()
        return False

    async def close(self) -> None:
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


class EscalationScheduler:
    """
    Wrapper for APScheduler running the escalation sweep.

    Manages the lifecycle of the scheduler and its single interval job.
    """

    def __init__(self, interval_seconds: Optional[int] = None):
        if interval_seconds is None:
            interval_seconds = settings.escalation_sweep_interval
        self.interval_seconds = interval_seconds
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def start(self, job_func: Callable[[], Awaitable[Any]]) -> None:
        """Start the scheduler with the given coroutine function."""
        if self._running:
            logger.warning("Escalation scheduler already running")
            return

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            job_func,
            "interval",
            seconds=self.interval_seconds,
            id="sla_escalation_sweep",
            name="SLA Escalation Sweep",
            misfire_grace_time=60,
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )
        self._scheduler.start()
        self._running = True

        logger.info(
            "Escalation scheduler started",
            extra={"interval_seconds": self.interval_seconds}
        )

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)

        self._running = False
        logger.info("Escalation scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running
