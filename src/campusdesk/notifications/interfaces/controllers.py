"""
Notification Controllers (API Routes)
=====================================

Outbox sweep endpoint for external cron, plus the request-scoped outbox
dependencies shared by every router that mutates tickets.
"""

from typing import Dict

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from campusdesk.config import settings
from campusdesk.infrastructure.database import get_session
from campusdesk.notifications.application import OutboxDispatcher, OutboxPublisher
from campusdesk.notifications.infrastructure import SQLAlchemyOutboxRepository
from campusdesk.shared.api.security import verify_cron_auth
from campusdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/cron", tags=["Cron"])


class OutboxSweepResponse(BaseModel):
    processed: int
    failed: int
    dead_lettered: int


# ========== Dependencies ==========

async def get_publisher(session: AsyncSession = Depends(get_session)) -> OutboxPublisher:
    """Outbox publisher bound to the request's transaction."""
    return OutboxPublisher(SQLAlchemyOutboxRepository(session))


def get_dispatcher(request: Request) -> OutboxDispatcher:
    """Process-wide dispatcher built at startup."""
    return request.app.state.dispatcher


def schedule_dispatch(
    background_tasks: BackgroundTasks,
    publisher: OutboxPublisher,
    dispatcher: OutboxDispatcher,
) -> None:
    """Hand the events appended by this request to the dispatcher once the response is out."""
    pending = publisher.drain()
    if pending:
        background_tasks.add_task(dispatcher.dispatch_many, pending)


# ========== Route Handlers ==========

@router.post(
    "/process-outbox",
    response_model=OutboxSweepResponse,
    summary="Deliver pending outbox events",
    description="""
    Claim and deliver up to `limit` pending outbox events, oldest first.

    Intended for an external cron. Requires `Authorization: Bearer <CRON_SECRET>`
    when a cron secret is configured.

    Failed events are retried with exponential backoff (2, 4, 8 ... minutes,
    capped at 60) and dead-lettered after the configured maximum attempts.
    """,
    dependencies=[Depends(verify_cron_auth)],
)
async def process_outbox(
    limit: int = Query(default=settings.outbox_sweep_batch_size, ge=1, le=500),
    dispatcher: OutboxDispatcher = Depends(get_dispatcher),
) -> Dict[str, int]:
    return await dispatcher.sweep(limit)
