"""
Notification Infrastructure Repositories
========================================

SQLAlchemy implementation of the outbox repository.

Claiming uses a single conditional UPDATE ... RETURNING so that two workers
racing for the same row cannot both win: the loser's WHERE clause no longer
matches and it gets no row back.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncGenerator, List, Optional

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from campusdesk.infrastructure.database import unit_of_work
from campusdesk.notifications.application import IOutboxRepository
from campusdesk.notifications.domain import OutboxEvent
from campusdesk.notifications.infrastructure.models import OutboxModel


def _to_entity(model: OutboxModel) -> OutboxEvent:
    return OutboxEvent(
        id=model.id,
        event_type=model.event_type,
        payload=dict(model.payload or {}),
        correlation_id=model.correlation_id,
        created_at=model.created_at,
        attempts=model.attempts,
        claimed_by=model.claimed_by,
        claimed_at=model.claimed_at,
        next_retry_at=model.next_retry_at,
        processed_at=model.processed_at,
        last_error=model.last_error,
        dead_lettered_at=model.dead_lettered_at,
    )


def _eligible(now: datetime, lease_seconds: int):
    lease_cutoff = now - timedelta(seconds=lease_seconds)
    return and_(
        OutboxModel.processed_at.is_(None),
        OutboxModel.dead_lettered_at.is_(None),
        or_(OutboxModel.next_retry_at.is_(None), OutboxModel.next_retry_at <= now),
        or_(OutboxModel.claimed_at.is_(None), OutboxModel.claimed_at <= lease_cutoff),
    )


class SQLAlchemyOutboxRepository(IOutboxRepository):
    """
    SQLAlchemy implementation of outbox repository.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def add(self, event: OutboxEvent) -> OutboxEvent:
        model = OutboxModel(
            event_type=event.event_type,
            payload=event.payload,
            correlation_id=event.correlation_id,
            created_at=event.created_at,
            attempts=0,
        )
        self._session.add(model)
        await self._session.flush()

        event.id = model.id
        return event

    async def get_by_correlation_id(self, correlation_id: str) -> Optional[OutboxEvent]:
        stmt = select(OutboxModel).where(OutboxModel.correlation_id == correlation_id)
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return _to_entity(model) if model else None

    async def list_eligible(self, now: datetime, lease_seconds: int, limit: int) -> List[OutboxEvent]:
        stmt = (
            select(OutboxModel)
            .where(_eligible(now, lease_seconds))
            .order_by(OutboxModel.id.asc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return [_to_entity(m) for m in result.scalars().all()]

    async def claim(
        self,
        event_id: int,
        worker_id: str,
        now: datetime,
        lease_seconds: int
    ) -> Optional[OutboxEvent]:
        stmt = (
            update(OutboxModel)
            .where(OutboxModel.id == event_id, _eligible(now, lease_seconds))
            .values(
                claimed_by=worker_id,
                claimed_at=now,
                attempts=OutboxModel.attempts + 1,
            )
            .returning(OutboxModel)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return _to_entity(model) if model else None

    async def mark_processed(self, event_id: int, worker_id: str, now: datetime) -> bool:
        stmt = (
            update(OutboxModel)
            .where(
                OutboxModel.id == event_id,
                OutboxModel.claimed_by == worker_id,
                OutboxModel.processed_at.is_(None),
            )
            .values(processed_at=now, claimed_by=None, claimed_at=None, last_error=None)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def mark_failed(
        self,
        event_id: int,
        worker_id: str,
        error: str,
        next_retry_at: datetime,
        dead_lettered_at: Optional[datetime] = None
    ) -> None:
        stmt = (
            update(OutboxModel)
            .where(
                OutboxModel.id == event_id,
                OutboxModel.claimed_by == worker_id,
                OutboxModel.processed_at.is_(None),
            )
            .values(
                last_error=error,
                claimed_by=None,
                claimed_at=None,
                next_retry_at=next_retry_at,
                dead_lettered_at=dead_lettered_at,
            )
            .execution_options(synchronize_session=False)
        )
        await self._session.execute(stmt)


@asynccontextmanager
async def outbox_unit_of_work() -> AsyncGenerator[IOutboxRepository, None]:
    """One committed transaction around an outbox repository."""
    async with unit_of_work() as session:
        yield SQLAlchemyOutboxRepository(session)
