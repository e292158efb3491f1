"""
Ticket Controllers (API Routes)
===============================

FastAPI routes for tickets, groups and the reminder cron.

Controllers are thin - they delegate to application services. Every
mutating route hands the outbox events it appended to the dispatcher as
a background task, after the transaction commits.
"""

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from campusdesk.core import Actor
from campusdesk.infrastructure.database import get_session
from campusdesk.notifications.application import OutboxDispatcher, OutboxPublisher
from campusdesk.notifications.interfaces.controllers import (
    get_dispatcher,
    get_publisher,
    schedule_dispatch,
)
from campusdesk.shared.api.security import get_actor, get_admin_actor, verify_cron_auth
from campusdesk.shared.infrastructure.logging import get_logger
from campusdesk.tickets.application import GroupService, ReminderService, TicketService
from campusdesk.tickets.application.dto import (
    AssignRequest,
    BulkActionRequest,
    CommentRequest,
    EscalateRequest,
    GroupCreateRequest,
    GroupCreateResponse,
    GroupMembershipRequest,
    GroupMembershipResponse,
    GroupOperationResponse,
    GroupResponse,
    GroupTATRequest,
    QueueItemResponse,
    QueueResponse,
    StatusChangeRequest,
    StatusChangeResponse,
    TATRequest,
    TicketCreateRequest,
    TicketResponse,
)
from campusdesk.tickets.infrastructure import (
    SQLAlchemyAdminDirectory,
    SQLAlchemyCategoryRepository,
    SQLAlchemyStatusProvider,
    SQLAlchemyTicketGroupRepository,
    SQLAlchemyTicketRepository,
    status_cache,
)

logger = get_logger(__name__)
router = APIRouter(prefix="/tickets", tags=["Tickets"])
group_router = APIRouter(prefix="/groups", tags=["Ticket Groups"])
cron_router = APIRouter(prefix="/cron", tags=["Cron"])


class ReminderSweepResponse(BaseModel):
    reminders_sent: int


# ========== Dependencies ==========

async def get_ticket_service(
    session: AsyncSession = Depends(get_session),
    publisher: OutboxPublisher = Depends(get_publisher),
) -> TicketService:
    """Get ticket service instance."""
    return TicketService(
        tickets=SQLAlchemyTicketRepository(session),
        statuses=SQLAlchemyStatusProvider(session, status_cache),
        publisher=publisher,
        categories=SQLAlchemyCategoryRepository(session),
        directory=SQLAlchemyAdminDirectory(session),
        groups=SQLAlchemyTicketGroupRepository(session),
    )


async def get_group_service(
    session: AsyncSession = Depends(get_session),
    publisher: OutboxPublisher = Depends(get_publisher),
) -> GroupService:
    """Get group service instance; each member runs in its own savepoint."""
    return GroupService(
        tickets=SQLAlchemyTicketRepository(session),
        statuses=SQLAlchemyStatusProvider(session, status_cache),
        publisher=publisher,
        groups=SQLAlchemyTicketGroupRepository(session),
        savepoint=session.begin_nested,
    )


async def get_reminder_service(
    session: AsyncSession = Depends(get_session),
    publisher: OutboxPublisher = Depends(get_publisher),
) -> ReminderService:
    return ReminderService(
        tickets=SQLAlchemyTicketRepository(session),
        statuses=SQLAlchemyStatusProvider(session, status_cache),
        publisher=publisher,
    )


# ========== Ticket Routes ==========

@router.post(
    "",
    response_model=TicketResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a ticket",
    description="""
    Create a ticket in the initial status.

    The category's SLA sets the acknowledgement and resolution due dates;
    an explicit `tat` overrides the resolution due date. The ticket is
    assigned to the best-matching admin by the routing rules (domain and
    location scope), or left unassigned.

    Emits `ticket.created`.
    """,
)
async def create_ticket(
    request: TicketCreateRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_actor),
    service: TicketService = Depends(get_ticket_service),
    publisher: OutboxPublisher = Depends(get_publisher),
    dispatcher: OutboxDispatcher = Depends(get_dispatcher),
):
    ticket = await service.create_ticket(
        actor,
        category_id=request.category_id,
        description=request.description,
        location=request.location,
        creator_email=request.creator_email,
        tat=request.tat,
        metadata=request.metadata,
    )
    schedule_dispatch(background_tasks, publisher, dispatcher)
    return TicketResponse.from_entity(ticket)


@router.get(
    "/queue",
    response_model=QueueResponse,
    summary="Admin work queue",
    description="""
    Active tickets visible to the calling admin, ranked owner first, then
    queue (domain and scope match), then pickable (domain match only).

    Each item carries a due bucket (`overdue`, `today`, `upcoming`, `none`)
    computed in the configured local timezone.
    """,
)
async def get_queue(
    limit: int = Query(default=500, ge=1, le=2000),
    actor: Actor = Depends(get_admin_actor),
    service: TicketService = Depends(get_ticket_service),
):
    entries = await service.queue(actor, limit=limit)
    items = [QueueItemResponse.from_entry(e) for e in entries]
    return QueueResponse(items=items, total=len(items))


@router.get(
    "/{ticket_id}",
    response_model=TicketResponse,
    summary="Get a ticket",
)
async def get_ticket(
    ticket_id: int,
    actor: Actor = Depends(get_actor),
    service: TicketService = Depends(get_ticket_service),
):
    ticket, due = await service.get_ticket(actor, ticket_id)
    return TicketResponse.from_entity(ticket, due)


@router.post(
    "/{ticket_id}/status",
    response_model=StatusChangeResponse,
    summary="Change ticket status",
    description="""
    Move a ticket to any active status in the catalog (admin only).

    Setting the current status again is a no-op (`changed: false`).
    Leaving a final status counts as a reopen.

    Emits `ticket.status_changed` when the status actually changes.
    """,
)
async def change_status(
    ticket_id: int,
    request: StatusChangeRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_admin_actor),
    service: TicketService = Depends(get_ticket_service),
    publisher: OutboxPublisher = Depends(get_publisher),
    dispatcher: OutboxDispatcher = Depends(get_dispatcher),
):
    ticket, changed = await service.change_status(actor, ticket_id, request.status, request.comment)
    schedule_dispatch(background_tasks, publisher, dispatcher)
    return StatusChangeResponse(ticket=TicketResponse.from_entity(ticket), changed=changed)


@router.post(
    "/{ticket_id}/comments",
    response_model=TicketResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Comment on a ticket",
    description="""
    Append a comment. Students may comment on their own tickets; internal
    notes are admin-only and emit no notification.
    """,
)
async def add_comment(
    ticket_id: int,
    request: CommentRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_actor),
    service: TicketService = Depends(get_ticket_service),
    publisher: OutboxPublisher = Depends(get_publisher),
    dispatcher: OutboxDispatcher = Depends(get_dispatcher),
):
    ticket = await service.add_comment(actor, ticket_id, request.text, request.internal)
    schedule_dispatch(background_tasks, publisher, dispatcher)
    return TicketResponse.from_entity(ticket)


@router.post(
    "/{ticket_id}/tat",
    response_model=TicketResponse,
    summary="Set or extend a ticket's TAT",
    description="""
    Set the turnaround time, e.g. `48 hours`, `3 days`, `1 week`.

    The first TAT sets the resolution due date; later ones are recorded as
    extensions with the previous value. If the ticket belongs to a group,
    the TAT is applied to the group and its other active members.

    Emits `ticket.tat_set`.
    """,
)
async def set_tat(
    ticket_id: int,
    request: TATRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_admin_actor),
    service: TicketService = Depends(get_ticket_service),
    publisher: OutboxPublisher = Depends(get_publisher),
    dispatcher: OutboxDispatcher = Depends(get_dispatcher),
):
    ticket = await service.set_tat(actor, ticket_id, request.tat, request.mark_in_progress)
    schedule_dispatch(background_tasks, publisher, dispatcher)
    return TicketResponse.from_entity(ticket)


@router.post(
    "/{ticket_id}/escalate",
    response_model=TicketResponse,
    summary="Escalate a ticket",
    description="Raise the escalation level by one. Levels never decrease. Emits `ticket.escalated`.",
)
async def escalate(
    ticket_id: int,
    request: EscalateRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_actor),
    service: TicketService = Depends(get_ticket_service),
    publisher: OutboxPublisher = Depends(get_publisher),
    dispatcher: OutboxDispatcher = Depends(get_dispatcher),
):
    ticket = await service.escalate(actor, ticket_id, request.reason)
    schedule_dispatch(background_tasks, publisher, dispatcher)
    return TicketResponse.from_entity(ticket)


@router.post(
    "/{ticket_id}/assign",
    response_model=StatusChangeResponse,
    summary="Reassign a ticket",
)
async def assign(
    ticket_id: int,
    request: AssignRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_admin_actor),
    service: TicketService = Depends(get_ticket_service),
    publisher: OutboxPublisher = Depends(get_publisher),
    dispatcher: OutboxDispatcher = Depends(get_dispatcher),
):
    ticket, changed = await service.reassign(actor, ticket_id, request.assignee_id)
    schedule_dispatch(background_tasks, publisher, dispatcher)
    return StatusChangeResponse(ticket=TicketResponse.from_entity(ticket), changed=changed)


# ========== Group Routes ==========

@group_router.post(
    "",
    response_model=GroupCreateResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_201_CREATED,
    summary="Create a ticket group",
)
async def create_group(
    request: GroupCreateRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_admin_actor),
    service: GroupService = Depends(get_group_service),
    publisher: OutboxPublisher = Depends(get_publisher),
    dispatcher: OutboxDispatcher = Depends(get_dispatcher),
):
    group, result = await service.create_group(
        actor,
        name=request.name,
        description=request.description,
        committee_id=request.committee_id,
        ticket_ids=request.ticket_ids,
    )
    schedule_dispatch(background_tasks, publisher, dispatcher)
    return GroupCreateResponse(
        group=GroupResponse.from_entity(group),
        membership=GroupOperationResponse.from_result(result),
    )


@group_router.patch(
    "/{group_id}/tickets",
    response_model=GroupMembershipResponse,
    response_model_by_alias=True,
    summary="Add or remove group members",
    description="""
    Attach and/or detach tickets. Each ticket is processed independently;
    per-ticket outcomes are reported in `results`.

    New members inherit the group's TAT. A group without a TAT adopts the
    TAT of the first added ticket that has one. Tickets added to a
    committee group are tagged for that committee.
    """,
)
async def update_members(
    group_id: int,
    request: GroupMembershipRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_admin_actor),
    service: GroupService = Depends(get_group_service),
    publisher: OutboxPublisher = Depends(get_publisher),
    dispatcher: OutboxDispatcher = Depends(get_dispatcher),
):
    response = GroupMembershipResponse()
    if request.add:
        result = await service.add_tickets(actor, group_id, request.add)
        response.added = GroupOperationResponse.from_result(result)
    if request.remove:
        result = await service.remove_tickets(actor, group_id, request.remove)
        response.removed = GroupOperationResponse.from_result(result)
    schedule_dispatch(background_tasks, publisher, dispatcher)
    return response


@group_router.post(
    "/{group_id}/tat",
    response_model=GroupOperationResponse,
    response_model_by_alias=True,
    summary="Set a group TAT",
)
async def set_group_tat(
    group_id: int,
    request: GroupTATRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_admin_actor),
    service: GroupService = Depends(get_group_service),
    publisher: OutboxPublisher = Depends(get_publisher),
    dispatcher: OutboxDispatcher = Depends(get_dispatcher),
):
    result = await service.set_group_tat(actor, group_id, request.tat)
    schedule_dispatch(background_tasks, publisher, dispatcher)
    return GroupOperationResponse.from_result(result)


@group_router.post(
    "/{group_id}/bulk-action",
    response_model=GroupOperationResponse,
    response_model_by_alias=True,
    summary="Apply an action to every ticket in a group",
    description="""
    Supported actions:
    - `comment`: append `comment` to every member
    - `close`: move every member to `status` (a final status, default RESOLVED)

    Each member is processed in its own savepoint; a failing ticket does
    not undo the others. `success` is true only when every member succeeded.
    After a close, `groupArchived` reports whether all members are final.
    """,
)
async def bulk_action(
    group_id: int,
    request: BulkActionRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_admin_actor),
    service: GroupService = Depends(get_group_service),
    publisher: OutboxPublisher = Depends(get_publisher),
    dispatcher: OutboxDispatcher = Depends(get_dispatcher),
):
    result = await service.bulk_action(
        actor, group_id, request.action, comment=request.comment, status=request.status
    )
    schedule_dispatch(background_tasks, publisher, dispatcher)
    return GroupOperationResponse.from_result(result)


# ========== Cron Routes ==========

@cron_router.post(
    "/reminders",
    response_model=ReminderSweepResponse,
    summary="Send today's TAT reminders",
    description="""
    Queue one `ticket.tat_reminder` per active ticket due today (local
    time). Safe to call repeatedly: a ticket is reminded at most once per
    day. Skipped on weekends when configured.
    """,
    dependencies=[Depends(verify_cron_auth)],
)
async def run_reminders(
    background_tasks: BackgroundTasks,
    service: ReminderService = Depends(get_reminder_service),
    publisher: OutboxPublisher = Depends(get_publisher),
    dispatcher: OutboxDispatcher = Depends(get_dispatcher),
):
    sent = await service.run_sweep()
    schedule_dispatch(background_tasks, publisher, dispatcher)
    return ReminderSweepResponse(reminders_sent=sent)
