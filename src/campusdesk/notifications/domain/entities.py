"""
Notification Domain Entities
============================

Outbox events and the messages built from them.

An outbox event is written in the same transaction as the ticket change it
describes. Delivery happens later and at least once: a worker claims the
event, calls the senders, then marks it processed or failed.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

# Retry delay cap in minutes
MAX_BACKOFF_MINUTES = 60


def retry_delay(attempts: int) -> timedelta:
    """Backoff after the `attempts`-th failed delivery: min(60, 2^attempts) minutes."""
    exponent = min(max(attempts, 0), 6)
    return timedelta(minutes=min(MAX_BACKOFF_MINUTES, 2 ** exponent))


@dataclass
class OutboxEvent:
    """
    Durable record of a side effect that still has to reach chat/email.

    `processed_at` goes from None to a timestamp exactly once. A dead-lettered
    event is never retried.
    """

    id: Optional[int]
    event_type: str
    payload: dict
    correlation_id: str
    created_at: datetime
    attempts: int = 0
    claimed_by: Optional[str] = None
    claimed_at: Optional[datetime] = None
    next_retry_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    last_error: Optional[str] = None
    dead_lettered_at: Optional[datetime] = None

    @property
    def ticket_id(self) -> Optional[int]:
        return self.payload.get("ticket_id")

    @property
    def is_processed(self) -> bool:
        return self.processed_at is not None

    @property
    def is_dead_lettered(self) -> bool:
        return self.dead_lettered_at is not None

    def is_claimable(self, now: datetime, lease_seconds: int) -> bool:
        """Mirror of the conditional claim update, for in-memory use."""
        if self.is_processed or self.is_dead_lettered:
            return False
        if self.next_retry_at is not None and self.next_retry_at > now:
            return False
        if self.claimed_at is None:
            return True
        return self.claimed_at <= now - timedelta(seconds=lease_seconds)


@dataclass
class ChatMessage:
    """A message for a chat channel, optionally threaded."""
    channel: str
    text: str
    thread_ts: Optional[str] = None
    mention_user_ids: List[str] = field(default_factory=list)


@dataclass
class EmailMessage:
    to: str
    subject: str
    body: str
    in_reply_to: Optional[str] = None
