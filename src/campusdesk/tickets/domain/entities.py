"""
Ticket Domain Entities
======================

Pure Python domain entities for the ticket lifecycle.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns. Status terminality
always comes from a `StatusDefinition`; entities never compare status text.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Optional, Tuple

from campusdesk.tickets.domain.routing import RoutableTicket
from campusdesk.tickets.domain.value_objects import StatusDefinition, TATExtension


@dataclass
class Comment:
    """A comment stored in ticket metadata."""
    author_id: str
    text: str
    created_at: datetime
    internal: bool = False
    source: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "author_id": self.author_id,
            "text": self.text,
            "created_at": self.created_at.isoformat(),
            "internal": self.internal,
            "source": self.source,
        }


@dataclass
class Category:
    """Read-only master data used for routing and SLA lookup."""
    id: int
    name: str
    domain: str
    scope: Optional[str] = None
    sla_hours: Optional[int] = None
    active: bool = True


@dataclass
class Ticket:
    """
    Ticket entity.

    Holds the lifecycle state of one support ticket. Mutating methods
    update `updated_at`; persistence bumps `version` on every save.
    """

    id: Optional[int]
    status: str
    created_by: str
    created_at: datetime
    updated_at: datetime

    category_id: Optional[int] = None
    category_domain: Optional[str] = None
    category_scope: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None
    creator_email: Optional[str] = None
    assigned_to: Optional[str] = None

    # Escalation
    escalation_level: int = 0
    last_escalated_at: Optional[datetime] = None

    # SLA
    acknowledgement_due_at: Optional[datetime] = None
    resolution_due_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    reopened_at: Optional[datetime] = None
    reopen_count: int = 0

    # TAT
    tat_text: Optional[str] = None
    tat_set_at: Optional[datetime] = None
    tat_set_by: Optional[str] = None
    tat_extensions: Tuple[TATExtension, ...] = ()

    group_id: Optional[int] = None
    last_reminded_on: Optional[date] = None
    version: int = 0
    metadata: dict = field(default_factory=dict)

    def __post_init__(self):
        if self.escalation_level < 0:
            raise ValueError("escalation_level cannot be negative")
        if self.updated_at < self.created_at:
            raise ValueError("updated_at cannot be before created_at")

    # ----- status -----

    def transition_to(
        self,
        target: StatusDefinition,
        current: Optional[StatusDefinition],
        now: datetime,
    ) -> bool:
        """
        Move the ticket to `target`.

        Leaving a final status for a non-final one counts as a reopen.

        Args:
            target: Resolved target status
            current: Catalog entry for the current status (None if retired)
            now: Transition timestamp

        Returns:
            False when the ticket already had that status (no-op)
        """
        if self.status.strip().upper() == target.value:
            return False

        was_final = current is not None and current.is_final
        if was_final and not target.is_final:
            self.reopen_count += 1
            self.reopened_at = now
            self.resolved_at = None
        elif target.is_final and not was_final:
            self.resolved_at = now

        self.status = target.value
        self.updated_at = now
        return True

    # ----- TAT -----

    def apply_tat(self, tat_text: str, due_at: datetime, actor_id: str, now: datetime) -> TATExtension:
        """Set or extend the TAT, appending to the extension log."""
        entry = TATExtension(
            previous_tat=self.tat_text,
            previous_due_at=self.resolution_due_at,
            new_tat=tat_text,
            new_due_at=due_at,
            actor_id=actor_id,
            recorded_at=now,
        )
        self.tat_extensions = self.tat_extensions + (entry,)
        self.tat_text = tat_text
        self.tat_set_at = now
        self.tat_set_by = actor_id
        self.resolution_due_at = due_at
        self.updated_at = now
        return entry

    # ----- escalation / assignment / comments -----

    def escalate(self, now: datetime) -> int:
        """Raise the escalation level by one. Returns the new level."""
        self.escalation_level += 1
        self.last_escalated_at = now
        self.updated_at = now
        return self.escalation_level

    def assign(self, admin_id: Optional[str], now: datetime) -> bool:
        if self.assigned_to == admin_id:
            return False
        self.assigned_to = admin_id
        self.updated_at = now
        return True

    def add_comment(self, comment: Comment) -> None:
        comments = list(self.metadata.get("comments") or [])
        comments.append(comment.to_dict())
        self.metadata = {**self.metadata, "comments": comments}
        self.updated_at = comment.created_at

    @property
    def comments(self) -> List[dict]:
        value = self.metadata.get("comments")
        return value if isinstance(value, list) else []

    @property
    def thread_ts(self) -> Optional[str]:
        """Chat thread reference for threaded notifications."""
        value = self.metadata.get("slack_thread_ts")
        return str(value) if value else None

    def as_routable(self) -> RoutableTicket:
        return RoutableTicket(
            ticket_id=self.id,
            category_domain=self.category_domain,
            category_scope=self.category_scope,
            location=self.location,
            assigned_to=self.assigned_to,
        )


@dataclass
class TicketGroup:
    """
    A named set of tickets handled together.

    Members reference the group through `Ticket.group_id`. An archived group
    only ever contains final tickets.
    """

    id: Optional[int]
    name: str
    created_by: str
    created_at: datetime
    updated_at: datetime
    description: Optional[str] = None
    committee_id: Optional[int] = None
    is_archived: bool = False
    tat_text: Optional[str] = None
    tat_due_at: Optional[datetime] = None

    def set_tat(self, tat_text: str, due_at: datetime, now: datetime) -> None:
        self.tat_text = tat_text
        self.tat_due_at = due_at
        self.updated_at = now

    def set_archived(self, archived: bool, now: datetime) -> bool:
        if self.is_archived == archived:
            return False
        self.is_archived = archived
        self.updated_at = now
        return True
