"""
Tests for group membership, group TAT and bulk actions.
"""

from contextlib import asynccontextmanager
from datetime import timedelta

import pytest

from campusdesk.config import EventType
from campusdesk.core import (
    AuthorizationException,
    ConcurrencyException,
    ResourceNotFoundException,
    ValidationException,
)
from campusdesk.tickets.application import GroupService

from conftest import FIXED_NOW, make_group, make_ticket


async def seeded_group(groups, tickets, count=3, **group_fields):
    group = await groups.add(make_group(**group_fields))
    members = [tickets.seed(make_ticket(group_id=group.id)) for _ in range(count)]
    return group, members


class TestBulkClose:
    async def test_closing_every_member_archives_group(self, group_service, groups, tickets, admin, outbox):
        group, members = await seeded_group(groups, tickets)

        result = await group_service.bulk_action(admin, group.id, "close", comment="Fixed the main valve")

        assert result.success is True
        assert result.summary == {"total": 3, "successful": 3, "failed": 0}
        assert result.group_archived is True
        assert groups.rows[group.id].is_archived is True
        for member in members:
            row = tickets.rows[member.id]
            assert row.status == "RESOLVED"
            assert row.resolved_at == FIXED_NOW
            assert row.comments[-1]["source"] == "group"
        assert len(outbox.events_of(EventType.STATUS_CHANGED)) == 3

    async def test_two_resolved_and_one_open_member_archive_on_close(self, group_service, groups, tickets, admin):
        group = await groups.add(make_group())
        for _ in range(2):
            tickets.seed(make_ticket(group_id=group.id, status="RESOLVED"))
        open_ticket = tickets.seed(make_ticket(group_id=group.id))

        result = await group_service.bulk_action(admin, group.id, "close")

        assert result.success is True
        assert result.summary == {"total": 3, "successful": 3, "failed": 0}
        assert result.group_archived is True
        assert tickets.rows[open_ticket.id].status == "RESOLVED"

    async def test_explicit_closing_status(self, group_service, groups, tickets, admin):
        group, members = await seeded_group(groups, tickets, count=1)
        await group_service.bulk_action(admin, group.id, "CLOSE", status="closed")
        assert tickets.rows[members[0].id].status == "CLOSED"

    async def test_already_closed_member_counts_as_success(self, group_service, groups, tickets, admin, outbox):
        group, members = await seeded_group(groups, tickets, count=2)
        tickets.rows[members[0].id].status = "RESOLVED"

        result = await group_service.bulk_action(admin, group.id, "close")

        assert result.success is True
        assert [r.changed for r in result.results] == [False, True]
        assert len(outbox.events_of(EventType.STATUS_CHANGED)) == 1

    async def test_non_closing_status_rejected_up_front(self, group_service, groups, tickets, admin):
        group, members = await seeded_group(groups, tickets)
        with pytest.raises(ValidationException, match="not a closing status"):
            await group_service.bulk_action(admin, group.id, "close", status="IN_PROGRESS")
        assert all(tickets.rows[m.id].status == "OPEN" for m in members)

    async def test_failed_member_keeps_group_open(self, group_service, groups, tickets, admin):
        group, members = await seeded_group(groups, tickets)
        tickets.fail_on_save[members[1].id] = ConcurrencyException("Ticket", str(members[1].id), 1)

        result = await group_service.bulk_action(admin, group.id, "close")

        assert result.summary == {"total": 3, "successful": 2, "failed": 1}
        assert result.success is False
        failed = result.results[1]
        assert failed.ticket_id == members[1].id
        assert "modified concurrently" in failed.error
        assert tickets.rows[members[0].id].status == "RESOLVED"
        assert tickets.rows[members[2].id].status == "RESOLVED"
        assert tickets.rows[members[1].id].status == "OPEN"
        assert result.group_archived is False


class TestBulkComment:
    async def test_deleted_member_reported(self, group_service, groups, tickets, admin, outbox):
        group, members = await seeded_group(groups, tickets, count=4)
        tickets.vanish_on_get.add(members[2].id)

        result = await group_service.bulk_action(admin, group.id, "comment", comment="Water back at 6pm")

        assert result.summary == {"total": 4, "successful": 3, "failed": 1}
        assert result.success is False
        deleted = result.results[2]
        assert (deleted.ticket_id, deleted.success, deleted.error) == (members[2].id, False, "Ticket was deleted")
        assert len(outbox.events_of(EventType.COMMENT_ADDED)) == 3
        assert result.group_archived is False

    async def test_comment_required(self, group_service, groups, tickets, admin):
        group, _ = await seeded_group(groups, tickets)
        with pytest.raises(ValidationException):
            await group_service.bulk_action(admin, group.id, "comment", comment="  ")

    async def test_unknown_action(self, group_service, groups, tickets, admin, outbox):
        group, _ = await seeded_group(groups, tickets)
        with pytest.raises(ValidationException) as exc_info:
            await group_service.bulk_action(admin, group.id, "delete")
        assert exc_info.value.details["valid"] == ["comment", "close"]
        assert outbox.rows == {}

    async def test_empty_group(self, group_service, groups, admin):
        group = await groups.add(make_group())
        with pytest.raises(ValidationException, match="no tickets"):
            await group_service.bulk_action(admin, group.id, "comment", comment="hi")

    async def test_missing_group(self, group_service, admin):
        with pytest.raises(ResourceNotFoundException):
            await group_service.bulk_action(admin, 77, "comment", comment="hi")

    async def test_admin_only(self, group_service, groups, tickets, student):
        group, _ = await seeded_group(groups, tickets)
        with pytest.raises(AuthorizationException):
            await group_service.bulk_action(student, group.id, "comment", comment="hi")


async def test_each_member_runs_in_its_own_savepoint(tickets, statuses, publisher, groups, app_settings, clock, admin):
    entered = []

    @asynccontextmanager
    async def savepoint():
        entered.append(True)
        yield

    service = GroupService(tickets, statuses, publisher, groups, savepoint=savepoint,
                           settings=app_settings, clock=clock)
    group, _ = await seeded_group(groups, tickets, count=3)

    await service.bulk_action(admin, group.id, "comment", comment="update")

    assert len(entered) == 3


class TestAddTickets:
    async def test_new_members_inherit_group_tat(self, group_service, groups, tickets, admin, outbox):
        due = FIXED_NOW + timedelta(days=2)
        group = await groups.add(make_group(tat_text="2 days", tat_due_at=due))
        ticket = tickets.seed(make_ticket())

        result = await group_service.add_tickets(admin, group.id, [ticket.id])

        assert result.success and result.results[0].changed
        row = tickets.rows[ticket.id]
        assert row.group_id == group.id
        assert row.tat_text == "2 days"
        assert row.resolution_due_at == due
        assert row.status == "IN_PROGRESS"
        assert row.assigned_to == "admin-x"
        assert len(outbox.events_of(EventType.TAT_SET)) == 1

    async def test_group_adopts_first_ticket_tat(self, group_service, groups, tickets, admin):
        group, (existing,) = await seeded_group(groups, tickets, count=1)
        due = FIXED_NOW + timedelta(days=5)
        with_tat = tickets.seed(make_ticket(tat_text="5 days", resolution_due_at=due))

        await group_service.add_tickets(admin, group.id, [with_tat.id])

        assert groups.rows[group.id].tat_text == "5 days"
        assert groups.rows[group.id].tat_due_at == due
        assert tickets.rows[existing.id].tat_text == "5 days"
        assert tickets.rows[existing.id].resolution_due_at == due
        assert tickets.rows[with_tat.id].tat_extensions == ()

    async def test_adopted_tat_reaches_later_tickets_once(self, group_service, groups, tickets, admin, outbox):
        group = await groups.add(make_group())
        due = FIXED_NOW + timedelta(days=5)
        with_tat = tickets.seed(make_ticket(tat_text="5 days", resolution_due_at=due))
        plain = tickets.seed(make_ticket())

        await group_service.add_tickets(admin, group.id, [with_tat.id, plain.id])

        extensions = tickets.rows[plain.id].tat_extensions
        assert len(extensions) == 1
        assert extensions[0].new_tat == "5 days"
        assert tickets.rows[plain.id].resolution_due_at == due
        assert [e.ticket_id for e in outbox.events_of(EventType.TAT_SET)] == [plain.id]

    async def test_failed_join_does_not_lend_its_tat(self, group_service, groups, tickets, admin):
        group = await groups.add(make_group())
        with_tat = tickets.seed(make_ticket(tat_text="5 days", resolution_due_at=FIXED_NOW + timedelta(days=5)))
        plain = tickets.seed(make_ticket())
        tickets.fail_on_save[with_tat.id] = ConcurrencyException("Ticket", str(with_tat.id), 1)

        result = await group_service.add_tickets(admin, group.id, [with_tat.id, plain.id])

        assert result.summary == {"total": 2, "successful": 1, "failed": 1}
        assert groups.rows[group.id].tat_text is None
        assert tickets.rows[with_tat.id].group_id is None
        assert tickets.rows[plain.id].tat_text is None
        assert tickets.rows[plain.id].tat_extensions == ()

    async def test_committee_group_tags_members(self, group_service, groups, tickets, admin):
        group = await groups.add(make_group(committee_id=7))
        first = tickets.seed(make_ticket())
        second = tickets.seed(make_ticket())

        await group_service.add_tickets(admin, group.id, [first.id, second.id])

        assert groups.committee_tags == {(first.id, 7), (second.id, 7)}

    async def test_active_ticket_unarchives_group(self, group_service, groups, tickets, admin):
        group = await groups.add(make_group(is_archived=True))
        ticket = tickets.seed(make_ticket())

        result = await group_service.add_tickets(admin, group.id, [ticket.id])

        assert result.group_archived is False
        assert groups.rows[group.id].is_archived is False

    async def test_closed_ticket_keeps_group_archived(self, group_service, groups, tickets, admin):
        group = await groups.add(make_group(is_archived=True))
        ticket = tickets.seed(make_ticket(status="CLOSED"))

        result = await group_service.add_tickets(admin, group.id, [ticket.id])

        assert result.group_archived is True

    async def test_missing_and_duplicate_ids(self, group_service, groups, tickets, admin):
        group, (member,) = await seeded_group(groups, tickets, count=1)

        result = await group_service.add_tickets(admin, group.id, [member.id, 404, member.id])

        assert [(r.ticket_id, r.success, r.changed) for r in result.results] == [
            (member.id, True, False),
            (404, False, False),
        ]
        assert result.results[1].error == "Ticket not found"


class TestRemoveAndGroupTAT:
    async def test_removing_last_active_member_archives(self, group_service, groups, tickets, admin):
        group = await groups.add(make_group())
        active = tickets.seed(make_ticket(group_id=group.id))
        tickets.seed(make_ticket(group_id=group.id, status="RESOLVED"))

        result = await group_service.remove_tickets(admin, group.id, [active.id, 999])

        assert [r.success for r in result.results] == [True, False]
        assert tickets.rows[active.id].group_id is None
        assert result.group_archived is True

    async def test_removing_everything_leaves_group_unarchived(self, group_service, groups, tickets, admin):
        group, members = await seeded_group(groups, tickets, count=2)
        result = await group_service.remove_tickets(admin, group.id, [m.id for m in members])
        assert result.group_archived is False

    async def test_group_tat_skips_final_members(self, group_service, groups, tickets, admin):
        group = await groups.add(make_group())
        active = tickets.seed(make_ticket(group_id=group.id))
        closed = tickets.seed(make_ticket(group_id=group.id, status="RESOLVED"))

        result = await group_service.set_group_tat(admin, group.id, "1 week")

        assert [r.ticket_id for r in result.results] == [active.id]
        assert groups.rows[group.id].tat_due_at == FIXED_NOW + timedelta(weeks=1)
        assert tickets.rows[active.id].tat_text == "1 week"
        assert tickets.rows[closed.id].tat_text is None

    async def test_group_tat_must_parse(self, group_service, groups, admin):
        group = await groups.add(make_group())
        with pytest.raises(ValidationException):
            await group_service.set_group_tat(admin, group.id, "asap")


async def test_create_group_with_members(group_service, tickets, groups, admin):
    first = tickets.seed(make_ticket())
    second = tickets.seed(make_ticket())

    group, result = await group_service.create_group(admin, "  Lift outage  ", ticket_ids=[first.id, second.id])

    assert group.name == "Lift outage"
    assert group.created_by == "admin-x"
    assert result.summary["successful"] == 2
    assert {t.id for t in await tickets.list_by_group(group.id)} == {first.id, second.id}


class TestArchiveFollowsMembers:
    async def test_reopening_a_member_unarchives(self, group_service, ticket_service, groups, tickets, admin):
        group, (first, _) = await seeded_group(groups, tickets, count=2)
        await group_service.bulk_action(admin, group.id, "close")
        assert groups.rows[group.id].is_archived is True

        _, changed = await ticket_service.change_status(admin, first.id, "REOPENED")

        assert changed is True
        assert groups.rows[group.id].is_archived is False

    async def test_resolving_last_open_member_archives(self, ticket_service, groups, tickets, admin):
        group = await groups.add(make_group())
        tickets.seed(make_ticket(group_id=group.id, status="RESOLVED"))
        last_open = tickets.seed(make_ticket(group_id=group.id))

        await ticket_service.change_status(admin, last_open.id, "RESOLVED")

        assert groups.rows[group.id].is_archived is True

    async def test_moving_last_open_member_archives_old_group(self, group_service, groups, tickets, admin):
        old = await groups.add(make_group())
        tickets.seed(make_ticket(group_id=old.id, status="RESOLVED"))
        moving = tickets.seed(make_ticket(group_id=old.id))
        new = await groups.add(make_group(name="Lift outage"))

        result = await group_service.add_tickets(admin, new.id, [moving.id])

        assert tickets.rows[moving.id].group_id == new.id
        assert result.group_archived is False
        assert groups.rows[old.id].is_archived is True

    async def test_closed_ticket_archives_empty_group_it_joins(self, group_service, groups, tickets, admin):
        group = await groups.add(make_group())
        closed = tickets.seed(make_ticket(status="CLOSED"))

        result = await group_service.add_tickets(admin, group.id, [closed.id])

        assert result.group_archived is True
