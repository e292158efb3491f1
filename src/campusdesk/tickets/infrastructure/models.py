"""
Ticket Infrastructure Models
============================

SQLAlchemy ORM models for the tickets module.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from campusdesk.infrastructure.database import Base


def _now() -> datetime:
    return datetime.now(timezone.utc)


class TicketStatusModel(Base):
    """
    Status catalog row.

    Maps to the 'ticket_statuses' table.
    """
    __tablename__ = "ticket_statuses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    value: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    label: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    progress_percent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_final: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class CategoryModel(Base):
    """
    Category master data (read-only for this service).

    Maps to the 'categories' table.
    """
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    domain: Mapped[str] = mapped_column(String(128), nullable=False)
    scope: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    sla_hours: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, default=48)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class AdminAssignmentModel(Base):
    """
    Staff directory projection used for routing.

    Maps to the 'admin_assignments' table.
    """
    __tablename__ = "admin_assignments"

    admin_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    domain: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    scope: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)


class TicketGroupModel(Base):
    """
    Database model for TicketGroup.

    Maps to the 'ticket_groups' table.
    """
    __tablename__ = "ticket_groups"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    committee_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    tat_text: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    tat_due_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)


class TicketModel(Base):
    """
    Database model for Ticket entity.

    Maps to the 'tickets' table. `version` backs optimistic concurrency:
    every update is conditional on the version that was read.
    """
    __tablename__ = "tickets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    status: Mapped[str] = mapped_column(String(64), nullable=False)

    # Routing
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"), nullable=True)
    category_domain: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    category_scope: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    assigned_to: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)

    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    creator_email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)

    # Escalation
    escalation_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_escalated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # SLA
    acknowledgement_due_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resolution_due_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    reopened_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    reopen_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_reminded_on: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    # TAT
    tat_text: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    tat_set_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    tat_set_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    tat_extensions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    group_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("ticket_groups.id", ondelete="SET NULL"), nullable=True, index=True
    )

    # Free-form: comments, image references, chat thread reference
    metadata_: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)

    __table_args__ = (
        # Reminder sweep: range scan on the due date
        Index("ix_tickets_resolution_due_at", "resolution_due_at"),
    )


class CommitteeTagModel(Base):
    """
    Ticket tagged for a committee.

    Maps to the 'ticket_committee_tags' table.
    """
    __tablename__ = "ticket_committee_tags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ticket_id: Mapped[int] = mapped_column(ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False)
    committee_id: Mapped[int] = mapped_column(Integer, nullable=False)
    tagged_by: Mapped[str] = mapped_column(String(255), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)

    __table_args__ = (
        UniqueConstraint("ticket_id", "committee_id", name="uq_ticket_committee"),
    )
