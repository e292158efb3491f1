"""
Assignment Resolver
===================

Decides which admins own or see a ticket.

Routing is an ordered list of small predicates. Each rule looks at one
ticket and one admin assignment and either returns a `Visibility` or `None`
to let the next rule decide. The first decision wins; if no rule decides,
the ticket is hidden from that admin.

Everything here is pure: no I/O, no clock, safe to call concurrently.

Example:
    ticket #501: domain "Hostel", location "Tower-A", unassigned
    admin X:     domain "Hostel", scope "Tower-A"
    -> location_scope_match -> PICKABLE (shows up in X's queue)

    ticket #502: same but location "Tower-B"
    -> no rule matches -> HIDDEN
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, List, Optional, Sequence, Tuple


class Visibility(str, Enum):
    """How a ticket appears to a given admin."""
    OWNER = "owner"
    QUEUE = "queue"
    PICKABLE = "pickable"
    HIDDEN = "hidden"


# Candidate ordering: owners first, then domain queue, then pickable.
_RANK = {Visibility.OWNER: 0, Visibility.QUEUE: 1, Visibility.PICKABLE: 2}


@dataclass(frozen=True)
class RoutableTicket:
    """The slice of a ticket routing needs."""
    ticket_id: int
    category_domain: Optional[str] = None
    category_scope: Optional[str] = None
    location: Optional[str] = None
    assigned_to: Optional[str] = None


@dataclass(frozen=True)
class AdminAssignment:
    """Staff directory projection: an admin's domain and optional scope."""
    admin_id: str
    domain: Optional[str] = None
    scope: Optional[str] = None


@dataclass(frozen=True)
class RoutingDecision:
    admin_id: str
    visibility: Visibility
    rule: str


def _norm(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip().lower()
    return value or None


def _scope_allows(ticket: RoutableTicket, admin: AdminAssignment) -> bool:
    """An admin with a scope only sees tickets whose location/scope is absent or equal."""
    scope = _norm(admin.scope)
    if scope is None:
        return True
    for value in (_norm(ticket.location), _norm(ticket.category_scope)):
        if value is not None and value != scope:
            return False
    return True


# ========== Rules ==========

def assigned_to_admin(ticket: RoutableTicket, admin: AdminAssignment) -> Optional[Visibility]:
    assignee = _norm(ticket.assigned_to)
    if assignee is None or assignee != _norm(admin.admin_id):
        return None
    return Visibility.OWNER if _scope_allows(ticket, admin) else Visibility.HIDDEN


def assigned_to_other(ticket: RoutableTicket, admin: AdminAssignment) -> Optional[Visibility]:
    assignee = _norm(ticket.assigned_to)
    if assignee is not None and assignee != _norm(admin.admin_id):
        return Visibility.HIDDEN
    return None


def category_domain_match(ticket: RoutableTicket, admin: AdminAssignment) -> Optional[Visibility]:
    domain = _norm(admin.domain)
    if domain is None or _norm(ticket.category_domain) != domain:
        return None
    scope = _norm(admin.scope)
    if scope is None or _norm(ticket.category_scope) == scope:
        return Visibility.QUEUE
    return None


def location_scope_match(ticket: RoutableTicket, admin: AdminAssignment) -> Optional[Visibility]:
    if _norm(ticket.assigned_to) is not None:
        return None
    domain = _norm(admin.domain)
    scope = _norm(admin.scope)
    if domain is None or scope is None:
        return None
    if _norm(ticket.category_domain) == domain and _norm(ticket.location) == scope:
        return Visibility.PICKABLE
    return None


Rule = Callable[[RoutableTicket, AdminAssignment], Optional[Visibility]]

RULES: Tuple[Rule, ...] = (
    assigned_to_admin,
    assigned_to_other,
    category_domain_match,
    location_scope_match,
)


# ========== Operations ==========

def _decide(
    ticket: RoutableTicket,
    admin: AdminAssignment,
    rules: Sequence[Rule] = RULES,
) -> RoutingDecision:
    for rule in rules:
        visibility = rule(ticket, admin)
        if visibility is not None:
            return RoutingDecision(admin.admin_id, visibility, rule.__name__)
    return RoutingDecision(admin.admin_id, Visibility.HIDDEN, "no_match")


def resolve_visibility(ticket: RoutableTicket, admin: AdminAssignment) -> Visibility:
    """Visibility of one ticket for one admin."""
    return _decide(ticket, admin).visibility


def resolve_candidates(
    ticket: RoutableTicket,
    assignments: Iterable[AdminAssignment],
) -> List[RoutingDecision]:
    """
    Rank every admin that can see the ticket.

    Returns:
        Decisions ordered OWNER -> QUEUE -> PICKABLE, then by admin id.
        Hidden admins are omitted.
    """
    decisions = [_decide(ticket, admin) for admin in assignments]
    visible = [d for d in decisions if d.visibility != Visibility.HIDDEN]
    return sorted(visible, key=lambda d: (_RANK[d.visibility], d.admin_id))


def pick_owner(
    ticket: RoutableTicket,
    assignments: Iterable[AdminAssignment],
) -> Optional[str]:
    """
    Choose the assignee for a new ticket.

    The explicit assignee wins. Otherwise the ticket is auto-assigned only
    when exactly one admin qualifies; ambiguous tickets stay pickable.
    """
    if _norm(ticket.assigned_to) is not None:
        return ticket.assigned_to.strip()
    candidates = {d.admin_id for d in resolve_candidates(ticket, assignments)}
    if len(candidates) == 1:
        return candidates.pop()
    return None


def filter_queue(
    tickets: Iterable[RoutableTicket],
    admin: AdminAssignment,
) -> List[Tuple[RoutableTicket, Visibility]]:
    """Tickets visible to `admin`, paired with how they are visible."""
    result = []
    for ticket in tickets:
        visibility = resolve_visibility(ticket, admin)
        if visibility != Visibility.HIDDEN:
            result.append((ticket, visibility))
    return result
