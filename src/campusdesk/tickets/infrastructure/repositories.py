"""
Ticket Infrastructure Repositories
==================================

Concrete implementations of repository interfaces using SQLAlchemy.

This layer contains the data access logic - how we store and retrieve
entities from the database.
"""

import time
from datetime import date, datetime
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from campusdesk.config import settings
from campusdesk.core import ConcurrencyException, RepositoryException
from campusdesk.shared.infrastructure.logging import get_logger
from campusdesk.tickets.application import (
    IAdminDirectory,
    ICategoryRepository,
    IStatusProvider,
    ITicketGroupRepository,
    ITicketRepository,
)
from campusdesk.tickets.domain import (
    AdminAssignment,
    Category,
    StatusCatalog,
    StatusDefinition,
    TATExtension,
    Ticket,
    TicketGroup,
)
from campusdesk.tickets.infrastructure.models import (
    AdminAssignmentModel,
    CategoryModel,
    CommitteeTagModel,
    TicketGroupModel,
    TicketModel,
    TicketStatusModel,
)

logger = get_logger(__name__)


# ========== Mapping ==========

def load_extension_log(ticket_id: int, raw) -> Tuple[TATExtension, ...]:
    """Decode a stored TAT log. A malformed log is logged and read as empty."""
    if not raw:
        return ()
    try:
        return tuple(TATExtension.from_dict(entry) for entry in raw)
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        logger.warning(
            "Malformed TAT extension log, ignoring",
            extra={"ticket_id": ticket_id, "error": str(e)}
        )
        return ()


def _ticket_to_entity(model: TicketModel) -> Ticket:
    metadata = model.metadata_
    if not isinstance(metadata, dict):
        logger.warning("Malformed ticket metadata, ignoring", extra={"ticket_id": model.id})
        metadata = {}

    return Ticket(
        id=model.id,
        status=model.status,
        created_by=model.created_by,
        created_at=model.created_at,
        updated_at=model.updated_at,
        category_id=model.category_id,
        category_domain=model.category_domain,
        category_scope=model.category_scope,
        location=model.location,
        description=model.description,
        creator_email=model.creator_email,
        assigned_to=model.assigned_to,
        escalation_level=model.escalation_level,
        last_escalated_at=model.last_escalated_at,
        acknowledgement_due_at=model.acknowledgement_due_at,
        resolution_due_at=model.resolution_due_at,
        resolved_at=model.resolved_at,
        reopened_at=model.reopened_at,
        reopen_count=model.reopen_count,
        tat_text=model.tat_text,
        tat_set_at=model.tat_set_at,
        tat_set_by=model.tat_set_by,
        tat_extensions=load_extension_log(model.id, model.tat_extensions),
        group_id=model.group_id,
        last_reminded_on=model.last_reminded_on,
        version=model.version,
        metadata=dict(metadata),
    )


def _ticket_values(ticket: Ticket) -> dict:
    """
    Column values written on insert and update.

    `last_reminded_on` is left out: only `mark_reminded` writes it, and it
    does not bump the version, so a stale save must not reset it.
    """
    return {
        "status": ticket.status,
        "category_id": ticket.category_id,
        "category_domain": ticket.category_domain,
        "category_scope": ticket.category_scope,
        "location": ticket.location,
        "assigned_to": ticket.assigned_to,
        "description": ticket.description,
        "created_by": ticket.created_by,
        "creator_email": ticket.creator_email,
        "escalation_level": ticket.escalation_level,
        "last_escalated_at": ticket.last_escalated_at,
        "acknowledgement_due_at": ticket.acknowledgement_due_at,
        "resolution_due_at": ticket.resolution_due_at,
        "resolved_at": ticket.resolved_at,
        "reopened_at": ticket.reopened_at,
        "reopen_count": ticket.reopen_count,
        "tat_text": ticket.tat_text,
        "tat_set_at": ticket.tat_set_at,
        "tat_set_by": ticket.tat_set_by,
        "tat_extensions": [e.to_dict() for e in ticket.tat_extensions],
        "group_id": ticket.group_id,
        "metadata_": ticket.metadata,
        "updated_at": ticket.updated_at,
    }


def _group_to_entity(model: TicketGroupModel) -> TicketGroup:
    return TicketGroup(
        id=model.id,
        name=model.name,
        description=model.description,
        committee_id=model.committee_id,
        is_archived=model.is_archived,
        tat_text=model.tat_text,
        tat_due_at=model.tat_due_at,
        created_by=model.created_by,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


# ========== Repositories ==========

def _select_tickets():
    # Conditional UPDATEs bypass the identity map, so reads must refresh it
    return select(TicketModel).execution_options(populate_existing=True)


class SQLAlchemyTicketRepository(ITicketRepository):
    """
    SQLAlchemy implementation of ticket repository.

    Saves are conditional on the version that was read; a concurrent
    writer makes the update match zero rows.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, ticket_id: int) -> Optional[Ticket]:
        stmt = _select_tickets().where(TicketModel.id == ticket_id)
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return _ticket_to_entity(model) if model else None

    async def add(self, ticket: Ticket) -> Ticket:
        model = TicketModel(created_at=ticket.created_at, version=1, **_ticket_values(ticket))
        self._session.add(model)
        await self._session.flush()

        ticket.id = model.id
        ticket.version = model.version
        return ticket

    async def save(self, ticket: Ticket) -> Ticket:
        if ticket.id is None:
            raise RepositoryException("Cannot save a ticket that was never added")

        stmt = (
            update(TicketModel)
            .where(TicketModel.id == ticket.id, TicketModel.version == ticket.version)
            .values(version=TicketModel.version + 1, **_ticket_values(ticket))
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount != 1:
            raise ConcurrencyException("Ticket", str(ticket.id), ticket.version)

        ticket.version += 1
        return ticket

    async def list_by_group(self, group_id: int) -> List[Ticket]:
        stmt = _select_tickets().where(TicketModel.group_id == group_id).order_by(TicketModel.id.asc())
        result = await self._session.execute(stmt)
        return [_ticket_to_entity(m) for m in result.scalars().all()]

    async def list_active(self, final_values: Sequence[str], limit: int = 500) -> List[Ticket]:
        stmt = _select_tickets()
        if final_values:
            stmt = stmt.where(TicketModel.status.not_in(list(final_values)))
        stmt = stmt.order_by(TicketModel.created_at.asc()).limit(limit)
        result = await self._session.execute(stmt)
        return [_ticket_to_entity(m) for m in result.scalars().all()]

    async def find_due_between(
        self,
        start: datetime,
        end: datetime,
        final_values: Sequence[str]
    ) -> List[Ticket]:
        stmt = _select_tickets().where(
            TicketModel.resolution_due_at >= start,
            TicketModel.resolution_due_at < end,
        )
        if final_values:
            stmt = stmt.where(TicketModel.status.not_in(list(final_values)))
        stmt = stmt.order_by(TicketModel.resolution_due_at.asc(), TicketModel.id.asc())
        result = await self._session.execute(stmt)
        return [_ticket_to_entity(m) for m in result.scalars().all()]

    async def mark_reminded(self, ticket_id: int, today: date) -> bool:
        stmt = (
            update(TicketModel)
            .where(
                TicketModel.id == ticket_id,
                or_(TicketModel.last_reminded_on.is_(None), TicketModel.last_reminded_on < today),
            )
            .values(last_reminded_on=today)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1


class SQLAlchemyTicketGroupRepository(ITicketGroupRepository):
    """
    SQLAlchemy implementation of ticket group repository.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def _get_model(self, group_id: int) -> Optional[TicketGroupModel]:
        result = await self._session.execute(
            select(TicketGroupModel).where(TicketGroupModel.id == group_id)
        )
        return result.scalar_one_or_none()

    async def get(self, group_id: int) -> Optional[TicketGroup]:
        model = await self._get_model(group_id)
        return _group_to_entity(model) if model else None

    async def add(self, group: TicketGroup) -> TicketGroup:
        model = TicketGroupModel(
            name=group.name,
            description=group.description,
            committee_id=group.committee_id,
            is_archived=group.is_archived,
            tat_text=group.tat_text,
            tat_due_at=group.tat_due_at,
            created_by=group.created_by,
            created_at=group.created_at,
            updated_at=group.updated_at,
        )
        self._session.add(model)
        await self._session.flush()

        group.id = model.id
        return group

    async def save(self, group: TicketGroup) -> TicketGroup:
        model = await self._get_model(group.id)
        if not model:
            raise RepositoryException(f"Group {group.id} not found")

        model.name = group.name
        model.description = group.description
        model.committee_id = group.committee_id
        model.is_archived = group.is_archived
        model.tat_text = group.tat_text
        model.tat_due_at = group.tat_due_at
        model.updated_at = group.updated_at

        await self._session.flush()
        return group

    async def tag_committee(
        self,
        ticket_id: int,
        committee_id: int,
        tagged_by: str,
        reason: Optional[str] = None
    ) -> bool:
        stmt = (
            pg_insert(CommitteeTagModel)
            .values(ticket_id=ticket_id, committee_id=committee_id, tagged_by=tagged_by, reason=reason)
            .on_conflict_do_nothing(constraint="uq_ticket_committee")
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1


class SQLAlchemyCategoryRepository(ICategoryRepository):
    """Read-only access to category master data."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, category_id: int) -> Optional[Category]:
        result = await self._session.execute(
            select(CategoryModel).where(CategoryModel.id == category_id)
        )
        model = result.scalar_one_or_none()
        if model is None:
            return None
        return Category(
            id=model.id,
            name=model.name,
            domain=model.domain,
            scope=model.scope,
            sla_hours=model.sla_hours,
            active=model.active,
        )


class SQLAlchemyAdminDirectory(IAdminDirectory):
    """Admin domain/scope assignments."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def list_assignments(self) -> List[AdminAssignment]:
        result = await self._session.execute(
            select(AdminAssignmentModel).order_by(AdminAssignmentModel.admin_id)
        )
        return [
            AdminAssignment(m.admin_id, m.domain, m.scope)
            for m in result.scalars().all()
        ]

    async def get_assignment(self, admin_id: str) -> Optional[AdminAssignment]:
        result = await self._session.execute(
            select(AdminAssignmentModel).where(AdminAssignmentModel.admin_id == admin_id)
        )
        model = result.scalar_one_or_none()
        return AdminAssignment(model.admin_id, model.domain, model.scope) if model else None


# ========== Status catalog ==========

class StatusCatalogCache:
    """Process-wide TTL cache for the status catalog."""

    def __init__(self, ttl_seconds: float):
        self.ttl_seconds = ttl_seconds
        self._catalog: Optional[StatusCatalog] = None
        self._loaded_at = 0.0

    def get(self) -> Optional[StatusCatalog]:
        if self._catalog is None:
            return None
        if time.monotonic() - self._loaded_at >= self.ttl_seconds:
            return None
        return self._catalog

    def store(self, catalog: StatusCatalog) -> None:
        self._catalog = catalog
        self._loaded_at = time.monotonic()

    def invalidate(self) -> None:
        self._catalog = None


# Shared by every request in the process
status_cache = StatusCatalogCache(settings.status_cache_ttl_seconds)


class SQLAlchemyStatusProvider(IStatusProvider):
    """
    Status catalog loaded from 'ticket_statuses' and cached with a TTL.
    """

    def __init__(self, session: AsyncSession, cache: StatusCatalogCache):
        self._session = session
        self._cache = cache

    async def get_catalog(self) -> StatusCatalog:
        catalog = self._cache.get()
        if catalog is not None:
            return catalog

        result = await self._session.execute(
            select(TicketStatusModel).order_by(TicketStatusModel.display_order)
        )
        catalog = StatusCatalog(
            StatusDefinition(
                value=m.value,
                label=m.label,
                is_final=m.is_final,
                is_active=m.is_active,
                progress_percent=m.progress_percent,
                display_order=m.display_order,
                description=m.description,
            )
            for m in result.scalars().all()
        )
        if len(catalog) == 0:
            raise RepositoryException("Status catalog is empty")

        self._cache.store(catalog)
        logger.debug("Status catalog loaded", extra={"statuses": len(catalog)})
        return catalog


DEFAULT_STATUSES = [
    StatusDefinition("OPEN", "Open", description="New ticket, not yet picked up",
                     progress_percent=10, display_order=1),
    StatusDefinition("IN_PROGRESS", "In Progress", description="An admin is working on the ticket",
                     progress_percent=50, display_order=2),
    StatusDefinition("AWAITING_STUDENT", "Awaiting Student", description="Waiting for the student to respond",
                     progress_percent=70, display_order=3),
    StatusDefinition("REOPENED", "Reopened", description="Reopened after being resolved",
                     progress_percent=30, display_order=4),
    StatusDefinition("RESOLVED", "Resolved", description="Issue resolved",
                     progress_percent=100, display_order=5, is_final=True),
    StatusDefinition("CLOSED", "Closed", description="Closed without further action",
                     progress_percent=100, display_order=6, is_final=True),
]


async def seed_statuses(session: AsyncSession) -> int:
    """Insert the default statuses when the catalog table is empty."""
    count = await session.scalar(select(func.count()).select_from(TicketStatusModel))
    if count:
        return 0

    for definition in DEFAULT_STATUSES:
        session.add(TicketStatusModel(
            value=definition.value,
            label=definition.label,
            description=definition.description,
            progress_percent=definition.progress_percent,
            is_active=definition.is_active,
            is_final=definition.is_final,
            display_order=definition.display_order,
        ))
    await session.flush()
    logger.info("Seeded status catalog", extra={"statuses": len(DEFAULT_STATUSES)})
    return len(DEFAULT_STATUSES)
