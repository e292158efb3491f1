"""
Tests for ticket routing: which admin owns or sees a ticket.
"""

from hypothesis import given, strategies as st

from campusdesk.tickets.domain import (
    AdminAssignment,
    RoutableTicket,
    Visibility,
    filter_queue,
    pick_owner,
    resolve_candidates,
    resolve_visibility,
)


def ticket(ticket_id=1, **kwargs) -> RoutableTicket:
    return RoutableTicket(ticket_id=ticket_id, **kwargs)


class TestResolveVisibility:
    def test_assignee_is_owner(self):
        t = ticket(category_domain="Hostel", location="Tower-A", assigned_to="admin-x")
        admin = AdminAssignment("admin-x", "Hostel", "Tower-A")
        assert resolve_visibility(t, admin) == Visibility.OWNER

    def test_assigned_elsewhere_is_hidden(self):
        t = ticket(category_domain="Hostel", location="Tower-A", assigned_to="admin-z")
        admin = AdminAssignment("admin-x", "Hostel", "Tower-A")
        assert resolve_visibility(t, admin) == Visibility.HIDDEN

    def test_assignee_outside_scope_is_hidden(self):
        t = ticket(category_domain="Hostel", location="Tower-B", assigned_to="admin-x")
        admin = AdminAssignment("admin-x", "Hostel", "Tower-A")
        assert resolve_visibility(t, admin) == Visibility.HIDDEN

    def test_domain_admin_without_scope_sees_queue(self):
        t = ticket(category_domain="College", location="Library")
        admin = AdminAssignment("admin-y", "College")
        assert resolve_visibility(t, admin) == Visibility.QUEUE

    def test_domain_and_category_scope_match_is_queue(self):
        t = ticket(category_domain="Hostel", category_scope="Tower-A")
        admin = AdminAssignment("admin-x", "Hostel", "tower-a")
        assert resolve_visibility(t, admin) == Visibility.QUEUE

    def test_unassigned_ticket_in_admin_location_is_pickable(self):
        # ticket #501: Hostel / Tower-A, admin X scoped to Tower-A
        t = ticket(501, category_domain="Hostel", location="Tower-A")
        admin = AdminAssignment("admin-x", "Hostel", "Tower-A")
        assert resolve_visibility(t, admin) == Visibility.PICKABLE

    def test_unassigned_ticket_in_other_location_is_hidden(self):
        # ticket #502: same domain, Tower-B
        t = ticket(502, category_domain="Hostel", location="Tower-B")
        admin = AdminAssignment("admin-x", "Hostel", "Tower-A")
        assert resolve_visibility(t, admin) == Visibility.HIDDEN

    def test_other_domain_is_hidden(self):
        t = ticket(category_domain="Mess", location="Tower-A")
        admin = AdminAssignment("admin-x", "Hostel", "Tower-A")
        assert resolve_visibility(t, admin) == Visibility.HIDDEN

    def test_admin_without_domain_only_sees_own_tickets(self):
        admin = AdminAssignment("admin-w")
        assert resolve_visibility(ticket(category_domain="Hostel"), admin) == Visibility.HIDDEN
        assert resolve_visibility(ticket(assigned_to="admin-w"), admin) == Visibility.OWNER

    def test_matching_ignores_case_and_whitespace(self):
        t = ticket(category_domain=" hostel ", location="TOWER-A")
        admin = AdminAssignment("admin-x", "Hostel", "Tower-A")
        assert resolve_visibility(t, admin) == Visibility.PICKABLE


class TestResolveCandidates:
    def test_ranked_owner_queue_pickable(self):
        t = ticket(category_domain="Hostel", category_scope="Tower-A", location="Tower-A")
        admins = [
            AdminAssignment("b-queue", "Hostel"),
            AdminAssignment("a-queue", "Hostel", "Tower-A"),
            AdminAssignment("z-other", "Mess"),
        ]
        decisions = resolve_candidates(t, admins)
        assert [d.admin_id for d in decisions] == ["a-queue", "b-queue"]
        assert all(d.visibility == Visibility.QUEUE for d in decisions)

    def test_owner_first_and_others_hidden(self):
        t = ticket(category_domain="Hostel", location="Tower-A", assigned_to="admin-x")
        admins = [AdminAssignment("admin-a", "Hostel"), AdminAssignment("admin-x", "Hostel", "Tower-A")]
        decisions = resolve_candidates(t, admins)
        assert [(d.admin_id, d.visibility) for d in decisions] == [("admin-x", Visibility.OWNER)]
        assert decisions[0].rule == "assigned_to_admin"

    def test_pickable_after_queue(self):
        t = ticket(category_domain="Hostel", location="Tower-A")
        admins = [AdminAssignment("a-pick", "Hostel", "Tower-A"), AdminAssignment("b-queue", "Hostel")]
        decisions = resolve_candidates(t, admins)
        assert [(d.admin_id, d.visibility) for d in decisions] == [
            ("b-queue", Visibility.QUEUE),
            ("a-pick", Visibility.PICKABLE),
        ]


class TestPickOwner:
    def test_single_candidate_is_assigned(self):
        t = ticket(category_domain="Hostel", location="Tower-A")
        admins = [AdminAssignment("admin-x", "Hostel", "Tower-A"), AdminAssignment("admin-z", "Hostel", "Tower-B")]
        assert pick_owner(t, admins) == "admin-x"

    def test_ambiguous_ticket_stays_unassigned(self):
        t = ticket(category_domain="Hostel", location="Tower-A")
        admins = [AdminAssignment("admin-x", "Hostel", "Tower-A"), AdminAssignment("admin-h", "Hostel")]
        assert pick_owner(t, admins) is None

    def test_no_candidate(self):
        assert pick_owner(ticket(category_domain="Sports"), [AdminAssignment("admin-x", "Hostel")]) is None

    def test_explicit_assignee_wins(self):
        t = ticket(category_domain="Hostel", assigned_to=" admin-q ")
        assert pick_owner(t, [AdminAssignment("admin-x", "Hostel")]) == "admin-q"


def test_filter_queue_drops_hidden_tickets():
    admin = AdminAssignment("admin-x", "Hostel", "Tower-A")
    tickets = [
        ticket(501, category_domain="Hostel", location="Tower-A"),
        ticket(502, category_domain="Hostel", location="Tower-B"),
        ticket(503, category_domain="Hostel", assigned_to="admin-x"),
    ]
    visible = filter_queue(tickets, admin)
    assert [(t.ticket_id, v) for t, v in visible] == [
        (501, Visibility.PICKABLE),
        (503, Visibility.OWNER),
    ]


_names = st.one_of(st.none(), st.sampled_from(["Hostel", "College", "Mess", "Tower-A", "Tower-B", ""]))


@given(domain=_names, scope=_names, location=_names, category_scope=_names, admin_domain=_names, admin_scope=_names)
def test_ticket_assigned_to_someone_else_is_never_visible(
    domain, scope, location, category_scope, admin_domain, admin_scope
):
    t = ticket(category_domain=domain, category_scope=category_scope, location=location, assigned_to="someone-else")
    admin = AdminAssignment("admin-x", admin_domain, admin_scope)
    assert resolve_visibility(t, admin) == Visibility.HIDDEN


@given(domain=_names, location=_names, admin_domain=_names, admin_scope=_names)
def test_candidates_never_include_hidden(domain, location, admin_domain, admin_scope):
    t = ticket(category_domain=domain, location=location)
    admins = [AdminAssignment("a", admin_domain, admin_scope), AdminAssignment("b", admin_domain)]
    assert all(d.visibility != Visibility.HIDDEN for d in resolve_candidates(t, admins))
