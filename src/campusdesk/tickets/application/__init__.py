"""
Tickets Application Layer
=========================

Application layer for the tickets module.

Contains:
- Services: TicketService, ReminderService, GroupService
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from campusdesk.tickets.application.services import (
    GroupOperationResult,
    GroupService,
    IAdminDirectory,
    ICategoryRepository,
    IStatusProvider,
    ITicketGroupRepository,
    ITicketRepository,
    ItemResult,
    QueueEntry,
    ReminderService,
    Savepoint,
    TicketService,
)

__all__ = [
    # Services
    "TicketService",
    "ReminderService",
    "GroupService",
    # Results
    "GroupOperationResult",
    "ItemResult",
    "QueueEntry",
    # Repository Interfaces
    "ITicketRepository",
    "ITicketGroupRepository",
    "ICategoryRepository",
    "IAdminDirectory",
    "IStatusProvider",
    "Savepoint",
]
