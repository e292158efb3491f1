"""
Notification Application Services
=================================

Transactional outbox: events are appended in the same transaction as the
ticket change, then delivered at least once by the dispatcher.

Delivery paths:
- dispatch_after_commit: fast path, run as a background task once the
  request has committed
- sweep: backstop, run by the scheduler or the cron endpoint

Both paths claim an event before calling the senders so two workers never
deliver the same event concurrently. Senders must still tolerate
duplicates (a worker can die after sending but before marking).
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import AsyncContextManager, Awaitable, Callable, Dict, List, Optional
from uuid import uuid4

from campusdesk.config import VALID_EVENT_TYPES
from campusdesk.core import ValidationException
from campusdesk.notifications.domain import (
    ChatMessage,
    EmailMessage,
    NotificationConfig,
    OutboxEvent,
    retry_delay,
)
from campusdesk.shared.infrastructure.logging import get_logger, log_latency

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ========== Repository & Port Interfaces ==========

class IOutboxRepository(ABC):
    """Interface for outbox data access."""

    @abstractmethod
    async def add(self, event: OutboxEvent) -> OutboxEvent:
        """Persist a new event and return it with its id."""

    @abstractmethod
    async def get_by_correlation_id(self, correlation_id: str) -> Optional[OutboxEvent]:
        """Find an event by correlation id."""

    @abstractmethod
    async def list_eligible(
        self,
        now: datetime,
        lease_seconds: int,
        limit: int
    ) -> List[OutboxEvent]:
        """Events a sweep may try to claim, ordered by id."""

    @abstractmethod
    async def claim(
        self,
        event_id: int,
        worker_id: str,
        now: datetime,
        lease_seconds: int
    ) -> Optional[OutboxEvent]:
        """
        Atomically claim an event for delivery.

        Succeeds only when the event is unprocessed, not dead-lettered, due
        for retry and unclaimed (or its lease expired). Increments attempts.

        Returns:
            The claimed event, or None if another worker holds it or it is
            no longer eligible
        """

    @abstractmethod
    async def mark_processed(self, event_id: int, worker_id: str, now: datetime) -> bool:
        """Record successful delivery and release the claim."""

    @abstractmethod
    async def mark_failed(
        self,
        event_id: int,
        worker_id: str,
        error: str,
        next_retry_at: datetime,
        dead_lettered_at: Optional[datetime] = None
    ) -> None:
        """Record a failed delivery and release the claim."""


class IChatSender(ABC):
    """Chat notification port."""

    @property
    @abstractmethod
    def enabled(self) -> bool:
        """Whether the sender is configured."""

    @abstractmethod
    async def send(self, message: ChatMessage) -> Optional[str]:
        """
        Post a message.

        Returns:
            The provider's message/thread reference, if any

        Raises:
            NotificationException: delivery failed
        """


class IEmailSender(ABC):
    """Email notification port."""

    @property
    @abstractmethod
    def enabled(self) -> bool:
        """Whether the sender is configured."""

    @abstractmethod
    async def send(self, message: EmailMessage) -> None:
        """
        Raises:
            NotificationException: delivery failed
        """


class INotificationConfigProvider(ABC):
    """Interface for notification routing configuration."""

    @abstractmethod
    def get_config(self) -> NotificationConfig:
        """Get current notification configuration."""


EventHandler = Callable[[OutboxEvent], Awaitable[None]]
OutboxUnitOfWork = Callable[[], AsyncContextManager[IOutboxRepository]]


# ========== Application Services ==========

class OutboxPublisher:
    """
    Appends events to the outbox inside the caller's transaction.

    One publisher lives for one unit of work; `pending` collects the
    correlation ids to hand to the dispatcher after commit.
    """

    def __init__(self, repository: IOutboxRepository, clock: Clock = utcnow):
        self._repo = repository
        self._clock = clock
        self.pending: List[str] = []

    async def append(
        self,
        event_type: str,
        ticket_id: Optional[int],
        data: Optional[dict] = None
    ) -> OutboxEvent:
        """
        Record an event for later delivery.

        Args:
            event_type: One of the ticket event types
            ticket_id: Ticket the event is about
            data: Extra payload fields

        Returns:
            The persisted event
        """
        if event_type not in VALID_EVENT_TYPES:
            raise ValidationException(f"Unknown event type '{event_type}'")

        correlation_id = uuid4().hex
        payload = dict(data or {})
        payload["ticket_id"] = ticket_id
        payload["correlation_id"] = correlation_id

        event = await self._repo.add(OutboxEvent(
            id=None,
            event_type=event_type,
            payload=payload,
            correlation_id=correlation_id,
            created_at=self._clock(),
        ))
        self.pending.append(correlation_id)

        logger.debug(
            "Outbox event appended",
            extra={"event_type": event_type, "ticket_id": ticket_id, "outbox_correlation_id": correlation_id}
        )
        return event

    def drain(self) -> List[str]:
        """Return and clear the correlation ids appended so far."""
        pending, self.pending = self.pending, []
        return pending


class OutboxDispatcher:
    """
    Claims and delivers outbox events.

    Each database step (lookup, claim, mark) runs in its own short unit of
    work from `uow_factory`; senders are called outside any transaction.
    """

    PROCESSED = "processed"
    FAILED = "failed"
    DEAD_LETTERED = "dead_lettered"

    def __init__(
        self,
        uow_factory: OutboxUnitOfWork,
        handlers: Dict[str, EventHandler],
        worker_id: str,
        max_attempts: int = 5,
        lease_seconds: int = 120,
        retry_delay_seconds: float = 0.5,
        batch_size: int = 10,
        clock: Clock = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._uow = uow_factory
        self._handlers = handlers
        self._worker_id = worker_id
        self._max_attempts = max_attempts
        self._lease_seconds = lease_seconds
        self._retry_delay_seconds = retry_delay_seconds
        self._batch_size = batch_size
        self._clock = clock
        self._sleep = sleep

    async def dispatch_after_commit(self, correlation_id: str) -> bool:
        """
        Try to deliver one freshly committed event.

        The event may not be visible yet when this runs, so it is looked up
        at most twice with a short pause in between. Anything left over is
        picked up by the next sweep. Never raises.

        Returns:
            True if the event was delivered by this call
        """
        try:
            event = await self._find(correlation_id)
            if event is None:
                await self._sleep(self._retry_delay_seconds)
                event = await self._find(correlation_id)
            if event is None:
                logger.warning(
                    "Outbox event not visible after retry, leaving it for the sweep",
                    extra={"outbox_correlation_id": correlation_id}
                )
                return False
            return await self._deliver(event) == self.PROCESSED
        except Exception as e:
            logger.error(
                "Immediate outbox dispatch failed",
                extra={"outbox_correlation_id": correlation_id, "error": str(e)}
            )
            return False

    async def dispatch_many(self, correlation_ids: List[str]) -> None:
        for correlation_id in correlation_ids:
            await self.dispatch_after_commit(correlation_id)

    async def sweep(self, limit: Optional[int] = None) -> Dict[str, int]:
        """
        Deliver up to `limit` eligible events, oldest first.

        Returns:
            Counts of processed, failed and dead-lettered events
        """
        limit = limit or self._batch_size
        counts = {self.PROCESSED: 0, self.FAILED: 0, self.DEAD_LETTERED: 0}

        with log_latency(logger, "outbox_sweep", limit=limit):
            async with self._uow() as repo:
                events = await repo.list_eligible(self._clock(), self._lease_seconds, limit)

            for event in events:
                try:
                    outcome = await self._deliver(event)
                except Exception as e:
                    # Claim or bookkeeping failed; the lease lets a later sweep retry it
                    logger.error(
                        "Outbox sweep could not process event",
                        extra={"event_id": event.id, "event_type": event.event_type, "error": str(e)}
                    )
                    counts[self.FAILED] += 1
                    continue
                if outcome is not None:
                    counts[outcome] += 1

        if any(counts.values()):
            logger.info("Outbox sweep finished", extra=counts)
        return counts

    async def _find(self, correlation_id: str) -> Optional[OutboxEvent]:
        async with self._uow() as repo:
            return await repo.get_by_correlation_id(correlation_id)

    async def _deliver(self, event: OutboxEvent) -> Optional[str]:
        """Claim, send, and record the outcome. None when not claimed."""
        async with self._uow() as repo:
            claimed = await repo.claim(event.id, self._worker_id, self._clock(), self._lease_seconds)
        if claimed is None:
            logger.debug(
                "Outbox event not claimable, skipping",
                extra={"event_id": event.id, "event_type": event.event_type}
            )
            return None

        try:
            handler = self._handlers.get(claimed.event_type)
            if handler is None:
                raise ValidationException(f"No handler registered for event type '{claimed.event_type}'")
            await handler(claimed)
        except Exception as e:
            return await self._record_failure(claimed, e)

        async with self._uow() as repo:
            await repo.mark_processed(claimed.id, self._worker_id, self._clock())

        logger.info(
            "Outbox event delivered",
            extra={
                "event_id": claimed.id,
                "event_type": claimed.event_type,
                "ticket_id": claimed.ticket_id,
                "attempts": claimed.attempts,
            }
        )
        return self.PROCESSED

    async def _record_failure(self, event: OutboxEvent, error: Exception) -> str:
        now = self._clock()
        message = f"{type(error).__name__}: {error}"[:2000]
        dead = event.attempts >= self._max_attempts

        async with self._uow() as repo:
            await repo.mark_failed(
                event.id,
                self._worker_id,
                message,
                next_retry_at=now + retry_delay(event.attempts),
                dead_lettered_at=now if dead else None,
            )

        log = logger.error if dead else logger.warning
        log(
            "Outbox event dead-lettered" if dead else "Outbox delivery failed, will retry",
            extra={
                "event_id": event.id,
                "event_type": event.event_type,
                "ticket_id": event.ticket_id,
                "attempts": event.attempts,
                "error": message,
            }
        )
        return self.DEAD_LETTERED if dead else self.FAILED
