"""
Tickets Infrastructure Layer
============================

Infrastructure implementations for the tickets module:
- Models: SQLAlchemy ORM models
- Repositories: Data access layer, status catalog cache and seed
"""

from campusdesk.tickets.infrastructure.models import (
    AdminAssignmentModel,
    CategoryModel,
    CommitteeTagModel,
    TicketGroupModel,
    TicketModel,
    TicketStatusModel,
)
from campusdesk.tickets.infrastructure.repositories import (
    DEFAULT_STATUSES,
    SQLAlchemyAdminDirectory,
    SQLAlchemyCategoryRepository,
    SQLAlchemyStatusProvider,
    SQLAlchemyTicketGroupRepository,
    SQLAlchemyTicketRepository,
    StatusCatalogCache,
    load_extension_log,
    seed_statuses,
    status_cache,
)

__all__ = [
    "AdminAssignmentModel",
    "CategoryModel",
    "CommitteeTagModel",
    "TicketGroupModel",
    "TicketModel",
    "TicketStatusModel",
    "DEFAULT_STATUSES",
    "SQLAlchemyAdminDirectory",
    "SQLAlchemyCategoryRepository",
    "SQLAlchemyStatusProvider",
    "SQLAlchemyTicketGroupRepository",
    "SQLAlchemyTicketRepository",
    "StatusCatalogCache",
    "load_extension_log",
    "seed_statuses",
    "status_cache",
]
