"""
Shared fixtures: in-memory repositories, a controllable clock and
ready-wired services.
"""

import copy
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Set, Tuple

import pytest

from campusdesk.config import Role, Settings
from campusdesk.core import Actor, ConcurrencyException
from campusdesk.notifications.application import IOutboxRepository, OutboxPublisher
from campusdesk.notifications.domain import OutboxEvent
from campusdesk.tickets.application import (
    GroupService,
    IAdminDirectory,
    ICategoryRepository,
    IStatusProvider,
    ITicketGroupRepository,
    ITicketRepository,
    ReminderService,
    TicketService,
)
from campusdesk.tickets.domain import (
    AdminAssignment,
    Category,
    StatusCatalog,
    Ticket,
    TicketGroup,
)
from campusdesk.tickets.infrastructure import DEFAULT_STATUSES

# Wednesday 2024-03-13, 10:00 in Asia/Kolkata
FIXED_NOW = datetime(2024, 3, 13, 4, 30, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


# ========== In-memory repositories ==========

class InMemoryTicketRepository(ITicketRepository):
    """
    Stores copies, like a database would.

    `vanish_on_get` ids are still listed by `list_by_group` but read back as
    missing, the way a row deleted mid-operation looks. `fail_on_save` maps
    ticket ids to the exception their next save raises.
    """

    def __init__(self):
        self.rows: Dict[int, Ticket] = {}
        self.vanish_on_get: Set[int] = set()
        self.fail_on_save: Dict[int, Exception] = {}
        self._next_id = 1

    def seed(self, ticket: Ticket) -> Ticket:
        if ticket.id is None:
            ticket.id = self._next_id
        self._next_id = max(self._next_id, ticket.id + 1)
        ticket.version = 1
        self.rows[ticket.id] = copy.deepcopy(ticket)
        return ticket

    async def get(self, ticket_id: int) -> Optional[Ticket]:
        if ticket_id in self.vanish_on_get:
            return None
        row = self.rows.get(ticket_id)
        return copy.deepcopy(row) if row else None

    async def add(self, ticket: Ticket) -> Ticket:
        ticket.id = None
        return self.seed(ticket)

    async def save(self, ticket: Ticket) -> Ticket:
        if ticket.id in self.fail_on_save:
            raise self.fail_on_save.pop(ticket.id)
        stored = self.rows.get(ticket.id)
        if stored is None or stored.version != ticket.version:
            raise ConcurrencyException("Ticket", str(ticket.id), ticket.version)
        ticket.version += 1
        row = copy.deepcopy(ticket)
        # Only mark_reminded writes the stamp
        row.last_reminded_on = stored.last_reminded_on
        self.rows[ticket.id] = row
        return ticket

    async def list_by_group(self, group_id: int) -> List[Ticket]:
        members = [t for t in self.rows.values() if t.group_id == group_id]
        return [copy.deepcopy(t) for t in sorted(members, key=lambda t: t.id)]

    async def list_active(self, final_values: Sequence[str], limit: int = 500) -> List[Ticket]:
        active = [t for t in self.rows.values() if t.status not in final_values]
        active.sort(key=lambda t: (t.created_at, t.id))
        return [copy.deepcopy(t) for t in active[:limit]]

    async def find_due_between(
        self,
        start: datetime,
        end: datetime,
        final_values: Sequence[str]
    ) -> List[Ticket]:
        due = [
            t for t in self.rows.values()
            if t.resolution_due_at is not None
            and start <= t.resolution_due_at < end
            and t.status not in final_values
        ]
        due.sort(key=lambda t: (t.resolution_due_at, t.id))
        return [copy.deepcopy(t) for t in due]

    async def mark_reminded(self, ticket_id: int, today: date) -> bool:
        row = self.rows.get(ticket_id)
        if row is None:
            return False
        if row.last_reminded_on is not None and row.last_reminded_on >= today:
            return False
        row.last_reminded_on = today
        return True


class InMemoryGroupRepository(ITicketGroupRepository):
    def __init__(self):
        self.rows: Dict[int, TicketGroup] = {}
        self.committee_tags: Set[Tuple[int, int]] = set()
        self._next_id = 1

    async def get(self, group_id: int) -> Optional[TicketGroup]:
        row = self.rows.get(group_id)
        return copy.deepcopy(row) if row else None

    async def add(self, group: TicketGroup) -> TicketGroup:
        group.id = self._next_id
        self._next_id += 1
        self.rows[group.id] = copy.deepcopy(group)
        return group

    async def save(self, group: TicketGroup) -> TicketGroup:
        self.rows[group.id] = copy.deepcopy(group)
        return group

    async def tag_committee(
        self,
        ticket_id: int,
        committee_id: int,
        tagged_by: str,
        reason: Optional[str] = None
    ) -> bool:
        key = (ticket_id, committee_id)
        if key in self.committee_tags:
            return False
        self.committee_tags.add(key)
        return True


class InMemoryCategoryRepository(ICategoryRepository):
    def __init__(self, categories: Sequence[Category] = ()):
        self.rows = {c.id: c for c in categories}

    async def get(self, category_id: int) -> Optional[Category]:
        return self.rows.get(category_id)


class InMemoryAdminDirectory(IAdminDirectory):
    def __init__(self, assignments: Sequence[AdminAssignment] = ()):
        self.assignments = list(assignments)

    async def list_assignments(self) -> List[AdminAssignment]:
        return list(self.assignments)

    async def get_assignment(self, admin_id: str) -> Optional[AdminAssignment]:
        for assignment in self.assignments:
            if assignment.admin_id == admin_id:
                return assignment
        return None


class StaticStatusProvider(IStatusProvider):
    def __init__(self, catalog: StatusCatalog):
        self.catalog = catalog

    async def get_catalog(self) -> StatusCatalog:
        return self.catalog


class InMemoryOutboxRepository(IOutboxRepository):
    """
    Mirrors the conditional SQL updates of the real repository.

    `hidden_lookups[correlation_id] = n` makes the next n lookups miss, as
    if the writing transaction had not committed yet.
    """

    def __init__(self):
        self.rows: Dict[int, OutboxEvent] = {}
        self.hidden_lookups: Dict[str, int] = {}
        self._next_id = 1

    async def add(self, event: OutboxEvent) -> OutboxEvent:
        event.id = self._next_id
        self._next_id += 1
        self.rows[event.id] = copy.deepcopy(event)
        return event

    async def get_by_correlation_id(self, correlation_id: str) -> Optional[OutboxEvent]:
        remaining = self.hidden_lookups.get(correlation_id, 0)
        if remaining > 0:
            self.hidden_lookups[correlation_id] = remaining - 1
            return None
        for event in self.rows.values():
            if event.correlation_id == correlation_id:
                return copy.deepcopy(event)
        return None

    async def list_eligible(self, now: datetime, lease_seconds: int, limit: int) -> List[OutboxEvent]:
        eligible = [e for e in self.rows.values() if e.is_claimable(now, lease_seconds)]
        eligible.sort(key=lambda e: e.id)
        return [copy.deepcopy(e) for e in eligible[:limit]]

    async def claim(
        self,
        event_id: int,
        worker_id: str,
        now: datetime,
        lease_seconds: int
    ) -> Optional[OutboxEvent]:
        row = self.rows.get(event_id)
        if row is None or not row.is_claimable(now, lease_seconds):
            return None
        row.claimed_by = worker_id
        row.claimed_at = now
        row.attempts += 1
        return copy.deepcopy(row)

    async def mark_processed(self, event_id: int, worker_id: str, now: datetime) -> bool:
        row = self.rows.get(event_id)
        if row is None or row.claimed_by != worker_id or row.processed_at is not None:
            return False
        row.processed_at = now
        row.claimed_by = None
        row.claimed_at = None
        row.last_error = None
        return True

    async def mark_failed(
        self,
        event_id: int,
        worker_id: str,
        error: str,
        next_retry_at: datetime,
        dead_lettered_at: Optional[datetime] = None
    ) -> None:
        row = self.rows.get(event_id)
        if row is None or row.claimed_by != worker_id or row.processed_at is not None:
            return
        row.last_error = error
        row.claimed_by = None
        row.claimed_at = None
        row.next_retry_at = next_retry_at
        row.dead_lettered_at = dead_lettered_at

    def events_of(self, event_type: str) -> List[OutboxEvent]:
        return [e for e in self.rows.values() if e.event_type == event_type]


def uow_for(repository: InMemoryOutboxRepository):
    """Unit-of-work factory handing out the same in-memory repository."""
    @asynccontextmanager
    async def factory():
        yield repository
    return factory


# ========== Builders ==========

def make_ticket(**overrides) -> Ticket:
    values = dict(
        id=None,
        status="OPEN",
        created_by="student-1",
        created_at=FIXED_NOW - timedelta(days=1),
        updated_at=FIXED_NOW - timedelta(days=1),
        category_id=1,
        category_domain="Hostel",
        location="Tower-A",
        creator_email="student1@campus.example.edu",
        resolution_due_at=FIXED_NOW + timedelta(days=3),
    )
    values.update(overrides)
    return Ticket(**values)


def make_group(**overrides) -> TicketGroup:
    values = dict(
        id=None,
        name="Water outage Tower-A",
        created_by="admin-x",
        created_at=FIXED_NOW - timedelta(hours=2),
        updated_at=FIXED_NOW - timedelta(hours=2),
    )
    values.update(overrides)
    return TicketGroup(**values)


# ========== Fixtures ==========

@pytest.fixture
def app_settings() -> Settings:
    return Settings(
        environment="development",
        timezone="Asia/Kolkata",
        reminders_enabled=True,
        reminder_skip_weekends=True,
        acknowledgement_hours=24,
        default_sla_hours=48,
        cron_secret=None,
    )


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def catalog() -> StatusCatalog:
    return StatusCatalog(DEFAULT_STATUSES)


@pytest.fixture
def statuses(catalog) -> StaticStatusProvider:
    return StaticStatusProvider(catalog)


@pytest.fixture
def tickets() -> InMemoryTicketRepository:
    return InMemoryTicketRepository()


@pytest.fixture
def groups() -> InMemoryGroupRepository:
    return InMemoryGroupRepository()


@pytest.fixture
def outbox() -> InMemoryOutboxRepository:
    return InMemoryOutboxRepository()


@pytest.fixture
def publisher(outbox, clock) -> OutboxPublisher:
    return OutboxPublisher(outbox, clock)


@pytest.fixture
def categories() -> InMemoryCategoryRepository:
    return InMemoryCategoryRepository([
        Category(id=1, name="Plumbing", domain="Hostel", sla_hours=72),
        Category(id=2, name="Wi-Fi", domain="College", sla_hours=None),
        Category(id=3, name="Retired", domain="Hostel", active=False),
    ])


@pytest.fixture
def directory() -> InMemoryAdminDirectory:
    return InMemoryAdminDirectory([
        AdminAssignment("admin-x", domain="Hostel", scope="Tower-A"),
        AdminAssignment("admin-y", domain="College"),
        AdminAssignment("admin-z", domain="Hostel", scope="Tower-B"),
    ])


@pytest.fixture
def admin() -> Actor:
    return Actor(id="admin-x", role=Role.ADMIN)


@pytest.fixture
def student() -> Actor:
    return Actor(id="student-1", role=Role.STUDENT)


@pytest.fixture
def ticket_service(tickets, statuses, publisher, categories, directory, groups, app_settings, clock) -> TicketService:
    return TicketService(
        tickets, statuses, publisher, categories, directory,
        groups=groups, settings=app_settings, clock=clock,
    )


@pytest.fixture
def group_service(tickets, statuses, publisher, groups, app_settings, clock) -> GroupService:
    return GroupService(tickets, statuses, publisher, groups, settings=app_settings, clock=clock)


@pytest.fixture
def reminder_service(tickets, statuses, publisher, app_settings, clock) -> ReminderService:
    return ReminderService(tickets, statuses, publisher, settings=app_settings, clock=clock)
