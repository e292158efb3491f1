"""
Tickets Domain Layer
====================

Domain layer for the tickets module.

Contains:
- Entities: Ticket, TicketGroup, Category, Comment
- Value Objects: StatusCatalog, TATExtension, DueBucket
- Domain Services: routing rules, TAT parsing, SLACalculator

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from campusdesk.tickets.domain.entities import Category, Comment, Ticket, TicketGroup
from campusdesk.tickets.domain.routing import (
    AdminAssignment,
    RoutableTicket,
    RoutingDecision,
    Visibility,
    filter_queue,
    pick_owner,
    resolve_candidates,
    resolve_visibility,
)
from campusdesk.tickets.domain.value_objects import (
    DueBucket,
    SLACalculator,
    StatusCatalog,
    StatusDefinition,
    TATExtension,
    classify_due,
    local_date,
    local_day_bounds,
    parse_tat,
    tat_due_at,
)

__all__ = [
    # Entities
    "Category",
    "Comment",
    "Ticket",
    "TicketGroup",
    # Routing
    "AdminAssignment",
    "RoutableTicket",
    "RoutingDecision",
    "Visibility",
    "filter_queue",
    "pick_owner",
    "resolve_candidates",
    "resolve_visibility",
    # Value Objects & Services
    "DueBucket",
    "SLACalculator",
    "StatusCatalog",
    "StatusDefinition",
    "TATExtension",
    "classify_due",
    "local_date",
    "local_day_bounds",
    "parse_tat",
    "tat_due_at",
]
