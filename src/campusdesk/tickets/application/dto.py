"""
Ticket Application DTOs
=======================

Data Transfer Objects for the tickets API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses.
"""

from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from campusdesk.tickets.application.services import GroupOperationResult, ItemResult, QueueEntry
from campusdesk.tickets.domain import DueBucket, TATExtension, Ticket, TicketGroup


# ========== Type Aliases for Literals ==========
VisibilityStr = Literal["owner", "queue", "pickable"]
DueBucketStr = Literal["overdue", "today", "upcoming", "none"]


# ========== Request DTOs ==========

class TicketCreateRequest(BaseModel):
    """Request model for ticket intake."""
    category_id: int = Field(..., ge=1, description="Ticket category")
    description: Optional[str] = Field(None, max_length=10000, description="Issue description")
    location: Optional[str] = Field(None, max_length=255, description="Hostel, block or building")
    creator_email: Optional[str] = Field(None, max_length=320, description="Address for email updates")
    tat: Optional[str] = Field(None, max_length=64, description="Explicit TAT, e.g. '2 days'")
    metadata: dict = Field(default_factory=dict, description="Free-form data (image references, etc.)")


class StatusChangeRequest(BaseModel):
    status: str = Field(..., min_length=1, max_length=64)
    comment: Optional[str] = Field(None, max_length=10000)


class CommentRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=10000)
    internal: bool = Field(default=False, description="Admin-only note, not sent to the student")


class TATRequest(BaseModel):
    tat: str = Field(..., min_length=1, max_length=64, description="e.g. '48 hours', '3 days', '1 week'")
    mark_in_progress: bool = Field(
        default=False,
        description="Move an OPEN ticket to IN_PROGRESS and assign it to the caller"
    )


class EscalateRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=2000)


class AssignRequest(BaseModel):
    assignee_id: Optional[str] = Field(None, max_length=255, description="Admin id, null to unassign")


class GroupCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=2000)
    committee_id: Optional[int] = Field(None, ge=1)
    ticket_ids: List[int] = Field(default_factory=list)


class GroupMembershipRequest(BaseModel):
    """Add and/or remove group members in one call."""
    add: List[int] = Field(default_factory=list)
    remove: List[int] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_not_empty(self) -> "GroupMembershipRequest":
        if not self.add and not self.remove:
            raise ValueError("add or remove must list at least one ticket")
        return self


class GroupTATRequest(BaseModel):
    tat: str = Field(..., min_length=1, max_length=64)


class BulkActionRequest(BaseModel):
    action: str = Field(..., description="comment or close")
    comment: Optional[str] = Field(None, max_length=10000)
    status: Optional[str] = Field(None, max_length=64, description="Final status for close (default RESOLVED)")


# ========== Response DTOs ==========

class TATExtensionResponse(BaseModel):
    previous_tat: Optional[str]
    previous_due_at: Optional[datetime]
    new_tat: str
    new_due_at: datetime
    actor_id: str
    recorded_at: datetime

    @classmethod
    def from_entity(cls, entry: TATExtension) -> "TATExtensionResponse":
        return cls(**entry.__dict__)


class TicketResponse(BaseModel):
    """Response model for ticket detail."""
    id: int
    status: str
    category_id: Optional[int]
    category_domain: Optional[str]
    category_scope: Optional[str]
    location: Optional[str]
    description: Optional[str]
    created_by: str
    assigned_to: Optional[str]
    escalation_level: int
    last_escalated_at: Optional[datetime]
    acknowledgement_due_at: Optional[datetime]
    resolution_due_at: Optional[datetime]
    resolved_at: Optional[datetime]
    reopened_at: Optional[datetime]
    reopen_count: int
    group_id: Optional[int]
    tat: Optional[str] = None
    tat_set_at: Optional[datetime]
    tat_set_by: Optional[str]
    tat_extensions: List[TATExtensionResponse] = Field(default_factory=list)
    last_reminded_on: Optional[date]
    comments: List[dict] = Field(default_factory=list)
    due: Optional[DueBucketStr] = None
    version: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_entity(cls, ticket: Ticket, due: Optional[DueBucket] = None) -> "TicketResponse":
        return cls(
            id=ticket.id,
            status=ticket.status,
            category_id=ticket.category_id,
            category_domain=ticket.category_domain,
            category_scope=ticket.category_scope,
            location=ticket.location,
            description=ticket.description,
            created_by=ticket.created_by,
            assigned_to=ticket.assigned_to,
            escalation_level=ticket.escalation_level,
            last_escalated_at=ticket.last_escalated_at,
            acknowledgement_due_at=ticket.acknowledgement_due_at,
            resolution_due_at=ticket.resolution_due_at,
            resolved_at=ticket.resolved_at,
            reopened_at=ticket.reopened_at,
            reopen_count=ticket.reopen_count,
            group_id=ticket.group_id,
            tat=ticket.tat_text,
            tat_set_at=ticket.tat_set_at,
            tat_set_by=ticket.tat_set_by,
            tat_extensions=[TATExtensionResponse.from_entity(e) for e in ticket.tat_extensions],
            last_reminded_on=ticket.last_reminded_on,
            comments=ticket.comments,
            due=due.value if due else None,
            version=ticket.version,
            created_at=ticket.created_at,
            updated_at=ticket.updated_at,
        )


class StatusChangeResponse(BaseModel):
    ticket: TicketResponse
    changed: bool


class QueueItemResponse(BaseModel):
    ticket_id: int
    status: str
    category_domain: Optional[str]
    location: Optional[str]
    assigned_to: Optional[str]
    escalation_level: int
    resolution_due_at: Optional[datetime]
    visibility: VisibilityStr
    due: DueBucketStr

    @classmethod
    def from_entry(cls, entry: QueueEntry) -> "QueueItemResponse":
        t = entry.ticket
        return cls(
            ticket_id=t.id,
            status=t.status,
            category_domain=t.category_domain,
            location=t.location,
            assigned_to=t.assigned_to,
            escalation_level=t.escalation_level,
            resolution_due_at=t.resolution_due_at,
            visibility=entry.visibility.value,
            due=entry.due.value,
        )


class QueueResponse(BaseModel):
    items: List[QueueItemResponse]
    total: int


class GroupResponse(BaseModel):
    id: int
    name: str
    description: Optional[str]
    committee_id: Optional[int]
    is_archived: bool
    tat: Optional[str]
    tat_due_at: Optional[datetime]
    created_by: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_entity(cls, group: TicketGroup) -> "GroupResponse":
        return cls(
            id=group.id,
            name=group.name,
            description=group.description,
            committee_id=group.committee_id,
            is_archived=group.is_archived,
            tat=group.tat_text,
            tat_due_at=group.tat_due_at,
            created_by=group.created_by,
            created_at=group.created_at,
            updated_at=group.updated_at,
        )


class ItemResultResponse(BaseModel):
    ticket_id: int
    success: bool
    error: Optional[str] = None
    changed: bool = False

    @classmethod
    def from_result(cls, item: ItemResult) -> "ItemResultResponse":
        return cls(ticket_id=item.ticket_id, success=item.success, error=item.error, changed=item.changed)


class SummaryResponse(BaseModel):
    total: int
    successful: int
    failed: int


class GroupOperationResponse(BaseModel):
    """Per-ticket outcome of a group operation."""
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    group_id: int
    results: List[ItemResultResponse]
    summary: SummaryResponse
    group_archived: bool = Field(..., serialization_alias="groupArchived")

    @classmethod
    def from_result(cls, result: GroupOperationResult) -> "GroupOperationResponse":
        return cls(
            success=result.success,
            group_id=result.group_id,
            results=[ItemResultResponse.from_result(r) for r in result.results],
            summary=SummaryResponse(**result.summary),
            group_archived=result.group_archived,
        )


class GroupCreateResponse(BaseModel):
    group: GroupResponse
    membership: GroupOperationResponse


class GroupMembershipResponse(BaseModel):
    added: Optional[GroupOperationResponse] = None
    removed: Optional[GroupOperationResponse] = None
