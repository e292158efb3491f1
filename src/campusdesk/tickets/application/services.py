"""
Ticket Application Services
===========================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

- TicketService: intake, status changes, comments, TAT, escalation, queue
- ReminderService: daily "due today" reminder sweep
- GroupService: group membership, group TAT and bulk actions

Every externally visible change appends an outbox event through the
request's OutboxPublisher, inside the same transaction as the change.
"""

from abc import ABC, abstractmethod
from contextlib import nullcontext
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import AsyncContextManager, Callable, Dict, List, Optional, Sequence, Tuple

from campusdesk.config import Role, EventType, GroupAction, Settings, VALID_GROUP_ACTIONS, get_settings
from campusdesk.core import (
    Actor,
    AuthorizationException,
    ResourceNotFoundException,
    ValidationException,
    require_admin,
)
from campusdesk.notifications.application import OutboxPublisher
from campusdesk.notifications.application.services import Clock, utcnow
from campusdesk.shared.infrastructure.logging import get_logger
from campusdesk.tickets.domain import (
    AdminAssignment,
    Category,
    Comment,
    DueBucket,
    SLACalculator,
    StatusCatalog,
    Ticket,
    TicketGroup,
    Visibility,
    classify_due,
    filter_queue,
    local_date,
    local_day_bounds,
    parse_tat,
    pick_owner,
)

logger = get_logger(__name__)


# ========== Repository Interfaces (Dependency Inversion) ==========

class ITicketRepository(ABC):
    """Interface for ticket data access."""

    @abstractmethod
    async def get(self, ticket_id: int) -> Optional[Ticket]:
        """Get ticket by id."""

    @abstractmethod
    async def add(self, ticket: Ticket) -> Ticket:
        """Persist a new ticket; returns it with id and version set."""

    @abstractmethod
    async def save(self, ticket: Ticket) -> Ticket:
        """
        Persist changes if the stored version still equals `ticket.version`.

        Raises:
            ConcurrencyException: the row changed since it was read
        """

    @abstractmethod
    async def list_by_group(self, group_id: int) -> List[Ticket]:
        """Members of a group, ordered by id."""

    @abstractmethod
    async def list_active(self, final_values: Sequence[str], limit: int = 500) -> List[Ticket]:
        """Non-final tickets, oldest first."""

    @abstractmethod
    async def find_due_between(
        self,
        start: datetime,
        end: datetime,
        final_values: Sequence[str]
    ) -> List[Ticket]:
        """Non-final tickets with start <= resolution_due_at < end."""

    @abstractmethod
    async def mark_reminded(self, ticket_id: int, today: date) -> bool:
        """
        Stamp last_reminded_on = today unless already reminded today.

        Returns:
            True if this call stamped the ticket
        """


class ITicketGroupRepository(ABC):
    """Interface for ticket group data access."""

    @abstractmethod
    async def get(self, group_id: int) -> Optional[TicketGroup]:
        """Get group by id."""

    @abstractmethod
    async def add(self, group: TicketGroup) -> TicketGroup:
        """Persist a new group."""

    @abstractmethod
    async def save(self, group: TicketGroup) -> TicketGroup:
        """Persist group changes."""

    @abstractmethod
    async def tag_committee(
        self,
        ticket_id: int,
        committee_id: int,
        tagged_by: str,
        reason: Optional[str] = None
    ) -> bool:
        """Tag a ticket for a committee. Returns False if already tagged."""


class ICategoryRepository(ABC):
    """Read-only category master data."""

    @abstractmethod
    async def get(self, category_id: int) -> Optional[Category]:
        """Get category by id."""


class IAdminDirectory(ABC):
    """Staff directory projection used for routing."""

    @abstractmethod
    async def list_assignments(self) -> List[AdminAssignment]:
        """All admins with their domain/scope."""

    @abstractmethod
    async def get_assignment(self, admin_id: str) -> Optional[AdminAssignment]:
        """One admin's domain/scope, None if unknown."""


class IStatusProvider(ABC):
    """Interface for status catalog access."""

    @abstractmethod
    async def get_catalog(self) -> StatusCatalog:
        """Get the current status catalog."""


Savepoint = Callable[[], AsyncContextManager]


# ========== Results ==========

@dataclass
class ItemResult:
    """Outcome of a group operation for one ticket."""
    ticket_id: int
    success: bool
    error: Optional[str] = None
    changed: bool = False


@dataclass
class GroupOperationResult:
    """Per-ticket results of a group operation."""
    group_id: int
    results: List[ItemResult] = field(default_factory=list)
    group_archived: bool = False

    @property
    def summary(self) -> Dict[str, int]:
        successful = sum(1 for r in self.results if r.success)
        return {
            "total": len(self.results),
            "successful": successful,
            "failed": len(self.results) - successful,
        }

    @property
    def success(self) -> bool:
        return all(r.success for r in self.results)


@dataclass
class QueueEntry:
    ticket: Ticket
    visibility: Visibility
    due: DueBucket


# ========== Shared workflow helpers ==========

class _TicketWorkflow:
    """Dependencies and helpers shared by the ticket services."""

    def __init__(
        self,
        tickets: ITicketRepository,
        statuses: IStatusProvider,
        publisher: OutboxPublisher,
        groups: Optional[ITicketGroupRepository] = None,
        settings: Optional[Settings] = None,
        clock: Clock = utcnow,
    ):
        self._tickets = tickets
        self._statuses = statuses
        self._publisher = publisher
        self._groups = groups
        self._settings = settings or get_settings()
        self._clock = clock

    async def _load_ticket(self, ticket_id: int) -> Ticket:
        ticket = await self._tickets.get(ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", str(ticket_id))
        return ticket

    async def _load_group(self, group_id: int) -> TicketGroup:
        group = await self._groups.get(group_id)
        if group is None:
            raise ResourceNotFoundException("Group", str(group_id))
        return group

    async def _publish(self, event_type: str, ticket: Ticket, actor_id: Optional[str], **data) -> None:
        payload = {
            "status": ticket.status,
            "category_domain": ticket.category_domain,
            "creator_email": ticket.creator_email,
            "assigned_to": ticket.assigned_to,
            "thread_ts": ticket.thread_ts,
            "actor_id": actor_id,
        }
        payload.update(data)
        await self._publisher.append(event_type, ticket.id, payload)

    def _apply_tat(
        self,
        ticket: Ticket,
        tat_text: str,
        due_at: datetime,
        actor: Actor,
        catalog: StatusCatalog,
        now: datetime,
        mark_in_progress: bool,
    ) -> None:
        """Set the TAT; optionally pick up an OPEN ticket (IN_PROGRESS, assigned to actor)."""
        ticket.apply_tat(tat_text, due_at, actor.id, now)
        if mark_in_progress and ticket.status.upper() == self._settings.initial_status:
            target = catalog.require(self._settings.in_progress_status)
            ticket.transition_to(target, catalog.get(ticket.status), now)
            ticket.assign(actor.id, now)

    async def _propagate_group_tat(
        self,
        group: TicketGroup,
        actor: Actor,
        catalog: StatusCatalog,
        now: datetime,
        skip_ids: Sequence[int] = (),
    ) -> List[ItemResult]:
        """Apply the group's TAT to every member not in `skip_ids`."""
        results = []
        for member in await self._tickets.list_by_group(group.id):
            if member.id in skip_ids:
                continue
            if catalog.is_final(member.status):
                continue
            self._apply_tat(member, group.tat_text, group.tat_due_at, actor, catalog, now, True)
            await self._tickets.save(member)
            await self._publish(EventType.TAT_SET, member, actor.id, tat=group.tat_text, group_id=group.id)
            results.append(ItemResult(member.id, True, changed=True))
        return results

    async def _refresh_archive(self, group: TicketGroup, catalog: StatusCatalog, now: datetime) -> bool:
        """Archive iff the group has members and all of them are final."""
        members = await self._tickets.list_by_group(group.id)
        archived = bool(members) and all(catalog.is_final(m.status) for m in members)
        if group.set_archived(archived, now):
            await self._groups.save(group)
            logger.info(
                "Group archive state changed",
                extra={"group_id": group.id, "is_archived": archived, "members": len(members)}
            )
        return group.is_archived

    async def _refresh_group_archive(self, group_id: int, catalog: StatusCatalog, now: datetime) -> None:
        """Re-check archival of a group a ticket changed in (or left)."""
        if self._groups is None:
            return
        group = await self._groups.get(group_id)
        if group is not None:
            await self._refresh_archive(group, catalog, now)


# ========== Application Services ==========

class TicketService(_TicketWorkflow):
    """
    Ticket lifecycle service.

    Authorization is checked before any ticket is read.
    """

    def __init__(
        self,
        tickets: ITicketRepository,
        statuses: IStatusProvider,
        publisher: OutboxPublisher,
        categories: ICategoryRepository,
        directory: IAdminDirectory,
        groups: Optional[ITicketGroupRepository] = None,
        settings: Optional[Settings] = None,
        clock: Clock = utcnow,
    ):
        super().__init__(tickets, statuses, publisher, groups, settings, clock)
        self._categories = categories
        self._directory = directory

    async def create_ticket(
        self,
        actor: Actor,
        category_id: int,
        description: Optional[str] = None,
        location: Optional[str] = None,
        creator_email: Optional[str] = None,
        tat: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> Ticket:
        """
        Create a ticket with its due dates and an initial owner.

        Args:
            actor: Submitting user
            category_id: Category (drives domain routing and SLA hours)
            description: Free text
            location: Hostel/building, used for scope routing
            creator_email: Address for email updates
            tat: Explicit turnaround time; overrides the category SLA

        Returns:
            The persisted ticket
        """
        delta = parse_tat(tat) if tat else None

        category = await self._categories.get(category_id)
        if category is None or not category.active:
            raise ValidationException(f"Unknown category '{category_id}'")

        catalog = await self._statuses.get_catalog()
        initial = catalog.require(self._settings.initial_status)
        now = self._clock()

        ticket = Ticket(
            id=None,
            status=initial.value,
            created_by=actor.id,
            created_at=now,
            updated_at=now,
            category_id=category.id,
            category_domain=category.domain,
            category_scope=category.scope,
            location=location.strip() if location and location.strip() else None,
            description=description,
            creator_email=creator_email,
            metadata=dict(metadata or {}),
        )
        ticket.acknowledgement_due_at = SLACalculator.acknowledgement_due(
            now, self._settings.acknowledgement_hours
        )
        ticket.resolution_due_at = SLACalculator.resolution_due(
            now, category.sla_hours, self._settings.default_sla_hours
        )
        if delta is not None:
            ticket.apply_tat(tat.strip(), now + delta, actor.id, now)

        assignments = await self._directory.list_assignments()
        ticket.assigned_to = pick_owner(ticket.as_routable(), assignments)

        ticket = await self._tickets.add(ticket)
        await self._publish(EventType.TICKET_CREATED, ticket, actor.id, description=description)

        logger.info(
            "Ticket created",
            extra={
                "ticket_id": ticket.id,
                "category_domain": ticket.category_domain,
                "assigned_to": ticket.assigned_to,
            }
        )
        return ticket

    async def get_ticket(self, actor: Actor, ticket_id: int) -> Tuple[Ticket, DueBucket]:
        """Ticket detail for admins and the ticket's creator."""
        if not actor.is_admin and actor.role != Role.STUDENT:
            raise AuthorizationException("Not allowed to view tickets")
        ticket = await self._load_ticket(ticket_id)
        if not actor.is_admin and ticket.created_by != actor.id:
            raise AuthorizationException("Not allowed to view this ticket")
        return ticket, await self.due_bucket(ticket)

    async def due_bucket(self, ticket: Ticket, catalog: Optional[StatusCatalog] = None) -> DueBucket:
        catalog = catalog or await self._statuses.get_catalog()
        today = local_date(self._clock(), self._settings.tz)
        return classify_due(
            ticket.resolution_due_at,
            today,
            self._settings.tz,
            is_final=catalog.is_final(ticket.status),
        )

    async def queue(self, actor: Actor, limit: int = 500) -> List[QueueEntry]:
        """Active tickets visible to the acting admin, owners first."""
        require_admin(actor)
        assignment = await self._directory.get_assignment(actor.id) or AdminAssignment(actor.id)
        catalog = await self._statuses.get_catalog()

        tickets = await self._tickets.list_active(catalog.final_values(), limit)
        by_id = {t.id: t for t in tickets}
        visible = filter_queue((t.as_routable() for t in tickets), assignment)

        rank = {Visibility.OWNER: 0, Visibility.QUEUE: 1, Visibility.PICKABLE: 2}
        entries = []
        for routable, visibility in visible:
            ticket = by_id[routable.ticket_id]
            entries.append(QueueEntry(ticket, visibility, await self.due_bucket(ticket, catalog)))
        entries.sort(key=lambda e: (rank[e.visibility], e.ticket.id))
        return entries

    async def change_status(
        self,
        actor: Actor,
        ticket_id: int,
        status: str,
        comment: Optional[str] = None,
    ) -> Tuple[Ticket, bool]:
        """
        Move a ticket to another status.

        Returns:
            (ticket, changed). Setting the current status again is a no-op
            and emits no event.
        """
        require_admin(actor)
        catalog = await self._statuses.get_catalog()
        target = catalog.require(status)
        ticket = await self._load_ticket(ticket_id)

        previous = ticket.status
        now = self._clock()
        changed = ticket.transition_to(target, catalog.get(previous), now)
        if comment and comment.strip():
            ticket.add_comment(Comment(actor.id, comment.strip(), now, source="status_change"))
        elif not changed:
            return ticket, False

        ticket = await self._tickets.save(ticket)
        if changed:
            await self._publish(
                EventType.STATUS_CHANGED, ticket, actor.id,
                previous_status=previous,
                comment=comment,
                reopen_count=ticket.reopen_count,
            )
            logger.info(
                "Ticket status changed",
                extra={"ticket_id": ticket.id, "from_status": previous, "to_status": ticket.status}
            )
            if ticket.group_id is not None:
                await self._refresh_group_archive(ticket.group_id, catalog, now)
        return ticket, changed

    async def add_comment(
        self,
        actor: Actor,
        ticket_id: int,
        text: str,
        internal: bool = False,
    ) -> Ticket:
        """Comment on a ticket. Internal notes are admin-only and not notified."""
        if not text or not text.strip():
            raise ValidationException("Comment text is required")
        if internal:
            require_admin(actor)
        elif not actor.is_admin and actor.role != Role.STUDENT:
            raise AuthorizationException("Not allowed to comment")

        ticket = await self._load_ticket(ticket_id)
        if not actor.is_admin and ticket.created_by != actor.id:
            raise AuthorizationException("Not allowed to comment on this ticket")

        ticket.add_comment(Comment(actor.id, text.strip(), self._clock(), internal=internal))
        ticket = await self._tickets.save(ticket)
        if not internal:
            await self._publish(EventType.COMMENT_ADDED, ticket, actor.id, comment=text.strip())
        return ticket

    async def set_tat(
        self,
        actor: Actor,
        ticket_id: int,
        tat: str,
        mark_in_progress: bool = False,
    ) -> Ticket:
        """
        Set or extend a ticket's TAT.

        The new due date counts from now. If the ticket is in a group, the
        group adopts the TAT and every other member gets it too.
        """
        require_admin(actor)
        delta = parse_tat(tat)
        tat = tat.strip()
        catalog = await self._statuses.get_catalog()
        ticket = await self._load_ticket(ticket_id)
        if catalog.is_final(ticket.status):
            raise ValidationException("Cannot set a TAT on a closed ticket")

        now = self._clock()
        due_at = now + delta
        self._apply_tat(ticket, tat, due_at, actor, catalog, now, mark_in_progress)
        ticket = await self._tickets.save(ticket)
        await self._publish(EventType.TAT_SET, ticket, actor.id, tat=tat, due_at=due_at.isoformat())

        if ticket.group_id is not None and self._groups is not None:
            group = await self._groups.get(ticket.group_id)
            if group is not None:
                group.set_tat(tat, due_at, now)
                await self._groups.save(group)
                await self._propagate_group_tat(group, actor, catalog, now, skip_ids=(ticket.id,))

        logger.info(
            "Ticket TAT set",
            extra={"ticket_id": ticket.id, "tat": tat, "extensions": len(ticket.tat_extensions)}
        )
        return ticket

    async def escalate(self, actor: Actor, ticket_id: int, reason: Optional[str] = None) -> Ticket:
        """
        Raise the escalation level by exactly one.

        Admins may escalate any ticket; a student only their own.
        """
        if not actor.is_admin and actor.role != Role.STUDENT:
            raise AuthorizationException("Not allowed to escalate tickets")
        ticket = await self._load_ticket(ticket_id)
        if not actor.is_admin and ticket.created_by != actor.id:
            raise AuthorizationException("Only the ticket creator can escalate this ticket")

        catalog = await self._statuses.get_catalog()
        if catalog.is_final(ticket.status):
            raise ValidationException("Cannot escalate a closed ticket")

        level = ticket.escalate(self._clock())
        ticket = await self._tickets.save(ticket)
        await self._publish(EventType.ESCALATED, ticket, actor.id, escalation_level=level, reason=reason)

        logger.info("Ticket escalated", extra={"ticket_id": ticket.id, "escalation_level": level})
        return ticket

    async def reassign(self, actor: Actor, ticket_id: int, assignee_id: Optional[str]) -> Tuple[Ticket, bool]:
        """Assign a ticket to another admin, or unassign with None."""
        require_admin(actor)
        if assignee_id is not None:
            assignee_id = assignee_id.strip()
            if await self._directory.get_assignment(assignee_id) is None:
                raise ValidationException(f"Unknown admin '{assignee_id}'")

        ticket = await self._load_ticket(ticket_id)
        previous = ticket.assigned_to
        if not ticket.assign(assignee_id, self._clock()):
            return ticket, False

        ticket = await self._tickets.save(ticket)
        await self._publish(EventType.ASSIGNED, ticket, actor.id, previous_assignee=previous)
        return ticket, True


class ReminderService(_TicketWorkflow):
    """
    Daily TAT reminder sweep.

    Sends one `ticket.tat_reminder` per non-final ticket whose resolution is
    due on today's local date. Re-running the sweep on the same day sends
    nothing new. Escalation levels are never touched here.
    """

    async def run_sweep(self, now: Optional[datetime] = None) -> int:
        now = now or self._clock()
        tz = self._settings.tz
        today = local_date(now, tz)

        if not self._settings.reminders_enabled:
            logger.info("Reminder sweep disabled")
            return 0
        if self._settings.reminder_skip_weekends and today.weekday() >= 5:
            logger.info("Reminder sweep skipped on weekend", extra={"date": today.isoformat()})
            return 0

        catalog = await self._statuses.get_catalog()
        start, end = local_day_bounds(today, tz)
        due = await self._tickets.find_due_between(start, end, catalog.final_values())

        sent = 0
        for ticket in due:
            if catalog.is_final(ticket.status):
                continue
            if not await self._tickets.mark_reminded(ticket.id, today):
                continue
            await self._publish(
                EventType.TAT_REMINDER, ticket, None,
                due_at=ticket.resolution_due_at.isoformat(),
                tat=ticket.tat_text,
            )
            sent += 1

        logger.info("Reminder sweep finished", extra={"date": today.isoformat(), "reminders_sent": sent})
        return sent


class GroupService(_TicketWorkflow):
    """
    Group membership and bulk actions.

    Members are processed one at a time, each inside its own savepoint, so
    a failing ticket never rolls back its siblings.
    """

    def __init__(
        self,
        tickets: ITicketRepository,
        statuses: IStatusProvider,
        publisher: OutboxPublisher,
        groups: ITicketGroupRepository,
        savepoint: Savepoint = nullcontext,
        settings: Optional[Settings] = None,
        clock: Clock = utcnow,
    ):
        super().__init__(tickets, statuses, publisher, groups, settings, clock)
        self._savepoint = savepoint

    async def create_group(
        self,
        actor: Actor,
        name: str,
        description: Optional[str] = None,
        committee_id: Optional[int] = None,
        ticket_ids: Sequence[int] = (),
    ) -> Tuple[TicketGroup, GroupOperationResult]:
        require_admin(actor)
        if not name or not name.strip():
            raise ValidationException("Group name is required")

        now = self._clock()
        group = await self._groups.add(TicketGroup(
            id=None,
            name=name.strip(),
            description=description,
            committee_id=committee_id,
            created_by=actor.id,
            created_at=now,
            updated_at=now,
        ))
        result = GroupOperationResult(group.id)
        if ticket_ids:
            result = await self.add_tickets(actor, group.id, ticket_ids)
        logger.info("Group created", extra={"group_id": group.id, "members": len(ticket_ids)})
        return group, result

    async def add_tickets(self, actor: Actor, group_id: int, ticket_ids: Sequence[int]) -> GroupOperationResult:
        """
        Attach tickets to a group.

        - group has a TAT: new members get it (OPEN ones are picked up by the actor)
        - group has none: it adopts the first added ticket's TAT and shares it
        - group linked to a committee: each added ticket is tagged
        - archival of this group, and of any group a ticket left, is re-checked
        """
        require_admin(actor)
        group = await self._load_group(group_id)
        catalog = await self._statuses.get_catalog()
        now = self._clock()

        result = GroupOperationResult(group.id)
        adopted: Optional[Ticket] = None
        left_groups: List[int] = []

        for ticket_id in _unique(ticket_ids):
            try:
                async with self._savepoint():
                    ticket = await self._tickets.get(ticket_id)
                    if ticket is None:
                        result.results.append(ItemResult(ticket_id, False, "Ticket not found"))
                        continue
                    if ticket.group_id == group.id:
                        result.results.append(ItemResult(ticket_id, True, changed=False))
                        continue

                    previous_group = ticket.group_id
                    ticket.group_id = group.id
                    ticket.updated_at = now
                    tat_applied = False
                    if group.tat_text and not catalog.is_final(ticket.status):
                        self._apply_tat(ticket, group.tat_text, group.tat_due_at, actor, catalog, now, True)
                        tat_applied = True

                    await self._tickets.save(ticket)
                    if tat_applied:
                        await self._publish(EventType.TAT_SET, ticket, actor.id, tat=group.tat_text, group_id=group.id)

                    if group.committee_id is not None:
                        await self._groups.tag_committee(
                            ticket.id, group.committee_id, actor.id,
                            reason=f"Added to group {group.name}"
                        )

                    if previous_group is not None:
                        left_groups.append(previous_group)
                    if adopted is None and not group.tat_text and ticket.tat_text and ticket.resolution_due_at:
                        adopted = ticket
                    result.results.append(ItemResult(ticket_id, True, changed=True))
            except Exception as e:
                result.results.append(self._item_failure(ticket_id, e, "add_tickets"))

        # Shared only once every ticket has joined, so each member gets it once
        if adopted is not None:
            group.set_tat(adopted.tat_text, adopted.resolution_due_at, now)
            await self._groups.save(group)
            logger.info("Group adopted ticket TAT", extra={"group_id": group.id, "ticket_id": adopted.id})
            await self._propagate_group_tat(group, actor, catalog, now, skip_ids=(adopted.id,))

        result.group_archived = await self._refresh_archive(group, catalog, now)
        for left_id in dict.fromkeys(left_groups):
            await self._refresh_group_archive(left_id, catalog, now)
        return result

    async def remove_tickets(self, actor: Actor, group_id: int, ticket_ids: Sequence[int]) -> GroupOperationResult:
        """Detach tickets from a group, then re-evaluate archival."""
        require_admin(actor)
        group = await self._load_group(group_id)
        catalog = await self._statuses.get_catalog()
        now = self._clock()

        result = GroupOperationResult(group.id)
        for ticket_id in _unique(ticket_ids):
            try:
                async with self._savepoint():
                    ticket = await self._tickets.get(ticket_id)
                    if ticket is None or ticket.group_id != group.id:
                        result.results.append(ItemResult(ticket_id, False, "Ticket is not in this group"))
                        continue
                    ticket.group_id = None
                    ticket.updated_at = now
                    await self._tickets.save(ticket)
                    result.results.append(ItemResult(ticket_id, True, changed=True))
            except Exception as e:
                result.results.append(self._item_failure(ticket_id, e, "remove_tickets"))

        result.group_archived = await self._refresh_archive(group, catalog, now)
        return result

    async def set_group_tat(self, actor: Actor, group_id: int, tat: str) -> GroupOperationResult:
        """Set a TAT on the group and every active member."""
        require_admin(actor)
        delta = parse_tat(tat)
        group = await self._load_group(group_id)
        catalog = await self._statuses.get_catalog()
        now = self._clock()

        group.set_tat(tat.strip(), now + delta, now)
        await self._groups.save(group)

        result = GroupOperationResult(group.id)
        result.results = await self._propagate_group_tat(group, actor, catalog, now)
        result.group_archived = group.is_archived
        return result

    async def bulk_action(
        self,
        actor: Actor,
        group_id: int,
        action: str,
        comment: Optional[str] = None,
        status: Optional[str] = None,
    ) -> GroupOperationResult:
        """
        Apply `comment` or `close` to every ticket in a group.

        The request is validated in full before any ticket is touched.
        Tickets that disappear mid-run are reported as failures. After a
        close the group is archived iff every member is final.
        """
        require_admin(actor)
        action = (action or "").strip().lower()
        if action not in VALID_GROUP_ACTIONS:
            raise ValidationException(
                f"Unsupported action '{action}'",
                details={"valid": VALID_GROUP_ACTIONS}
            )
        text = comment.strip() if comment else ""
        if action == GroupAction.COMMENT and not text:
            raise ValidationException("Comment text is required for the comment action")

        catalog = await self._statuses.get_catalog()
        target = None
        if action == GroupAction.CLOSE:
            target = catalog.require(status or self._settings.default_close_status)
            if not target.is_final:
                raise ValidationException(f"Status '{target.value}' is not a closing status")

        group = await self._load_group(group_id)
        members = await self._tickets.list_by_group(group.id)
        if not members:
            raise ValidationException("Group has no tickets")

        now = self._clock()
        result = GroupOperationResult(group.id)

        for ticket_id in [m.id for m in members]:
            try:
                async with self._savepoint():
                    ticket = await self._tickets.get(ticket_id)
                    if ticket is None:
                        result.results.append(ItemResult(ticket_id, False, "Ticket was deleted"))
                        continue

                    if action == GroupAction.COMMENT:
                        ticket.add_comment(Comment(actor.id, text, now, source="group"))
                        await self._tickets.save(ticket)
                        await self._publish(EventType.COMMENT_ADDED, ticket, actor.id, comment=text, group_id=group.id)
                        result.results.append(ItemResult(ticket_id, True, changed=True))
                        continue

                    previous = ticket.status
                    changed = ticket.transition_to(target, catalog.get(previous), now)
                    if not changed:
                        result.results.append(ItemResult(ticket_id, True, changed=False))
                        continue
                    if text:
                        ticket.add_comment(Comment(actor.id, text, now, source="group"))
                    await self._tickets.save(ticket)
                    await self._publish(
                        EventType.STATUS_CHANGED, ticket, actor.id,
                        previous_status=previous, comment=text or None, group_id=group.id
                    )
                    result.results.append(ItemResult(ticket_id, True, changed=True))
            except Exception as e:
                result.results.append(self._item_failure(ticket_id, e, action))

        if action == GroupAction.CLOSE:
            result.group_archived = await self._refresh_archive(group, catalog, now)
        else:
            result.group_archived = group.is_archived

        logger.info(
            "Group bulk action finished",
            extra={"group_id": group.id, "action": action, **result.summary}
        )
        return result

    @staticmethod
    def _item_failure(ticket_id: int, error: Exception, operation: str) -> ItemResult:
        logger.warning(
            "Group item failed",
            extra={"ticket_id": ticket_id, "operation": operation, "error": str(error)},
            exc_info=not isinstance(error, (ValidationException, ResourceNotFoundException)),
        )
        message = getattr(error, "message", None) or str(error) or type(error).__name__
        return ItemResult(ticket_id, False, message)


def _unique(ids: Sequence[int]) -> List[int]:
    seen = set()
    ordered = []
    for value in ids:
        if value not in seen:
            seen.add(value)
            ordered.append(value)
    return ordered
