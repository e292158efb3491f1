"""
Tests for the daily TAT reminder sweep.
"""

from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from campusdesk.config import EventType

from conftest import FIXED_NOW, make_ticket

IST = ZoneInfo("Asia/Kolkata")

DUE_TODAY = datetime(2024, 3, 13, 18, 0, tzinfo=IST)
DUE_EARLY_TODAY = datetime(2024, 3, 13, 0, 1, tzinfo=IST)
DUE_TOMORROW = datetime(2024, 3, 14, 0, 1, tzinfo=IST)
DUE_YESTERDAY = datetime(2024, 3, 12, 23, 59, tzinfo=IST)


class TestReminderSweep:
    async def test_reminds_tickets_due_today(self, reminder_service, tickets, outbox):
        late = tickets.seed(make_ticket(resolution_due_at=DUE_TODAY, tat_text="2 days"))
        early = tickets.seed(make_ticket(resolution_due_at=DUE_EARLY_TODAY))
        tickets.seed(make_ticket(resolution_due_at=DUE_TOMORROW))
        tickets.seed(make_ticket(resolution_due_at=DUE_YESTERDAY))
        tickets.seed(make_ticket(resolution_due_at=DUE_TODAY, status="RESOLVED"))

        sent = await reminder_service.run_sweep()

        assert sent == 2
        reminders = outbox.events_of(EventType.TAT_REMINDER)
        assert sorted(e.ticket_id for e in reminders) == sorted([late.id, early.id])
        by_ticket = {e.ticket_id: e for e in reminders}
        assert by_ticket[late.id].payload["tat"] == "2 days"
        assert by_ticket[late.id].payload["due_at"] == DUE_TODAY.isoformat()

    async def test_second_run_same_day_sends_nothing(self, reminder_service, tickets, outbox, clock):
        ticket = tickets.seed(make_ticket(resolution_due_at=DUE_TODAY))

        assert await reminder_service.run_sweep() == 1
        clock.advance(hours=3)
        assert await reminder_service.run_sweep() == 0

        assert len(outbox.events_of(EventType.TAT_REMINDER)) == 1
        assert tickets.rows[ticket.id].last_reminded_on == DUE_TODAY.date()

    async def test_sweep_never_escalates(self, reminder_service, tickets, outbox):
        ticket = tickets.seed(make_ticket(resolution_due_at=DUE_TODAY, escalation_level=1))

        await reminder_service.run_sweep()

        assert tickets.rows[ticket.id].escalation_level == 1
        assert outbox.events_of(EventType.ESCALATED) == []

    async def test_reminder_does_not_bump_version(self, reminder_service, tickets):
        ticket = tickets.seed(make_ticket(resolution_due_at=DUE_TODAY))
        await reminder_service.run_sweep()
        assert tickets.rows[ticket.id].version == 1

    async def test_edit_read_before_sweep_keeps_reminder_stamp(self, reminder_service, tickets, outbox, clock):
        ticket = tickets.seed(make_ticket(resolution_due_at=DUE_TODAY))
        read_before_sweep = await tickets.get(ticket.id)

        assert await reminder_service.run_sweep() == 1
        read_before_sweep.escalate(clock())
        await tickets.save(read_before_sweep)

        assert await reminder_service.run_sweep() == 0
        assert len(outbox.events_of(EventType.TAT_REMINDER)) == 1
        row = tickets.rows[ticket.id]
        assert row.last_reminded_on == DUE_TODAY.date()
        assert row.escalation_level == 1

    async def test_weekend_is_skipped(self, reminder_service, tickets, outbox):
        saturday = FIXED_NOW + timedelta(days=3)
        tickets.seed(make_ticket(resolution_due_at=saturday))

        assert await reminder_service.run_sweep(now=saturday) == 0
        assert outbox.rows == {}

    async def test_weekend_runs_when_not_skipped(self, reminder_service, tickets, app_settings):
        app_settings.reminder_skip_weekends = False
        saturday = FIXED_NOW + timedelta(days=3)
        tickets.seed(make_ticket(resolution_due_at=saturday))

        assert await reminder_service.run_sweep(now=saturday) == 1

    async def test_disabled(self, reminder_service, tickets, app_settings):
        app_settings.reminders_enabled = False
        tickets.seed(make_ticket(resolution_due_at=DUE_TODAY))
        assert await reminder_service.run_sweep() == 0

    async def test_next_day_reminds_again(self, reminder_service, tickets, clock):
        ticket = tickets.seed(make_ticket(resolution_due_at=DUE_TODAY))
        assert await reminder_service.run_sweep() == 1

        # Extended to tomorrow; tomorrow's sweep reminds once more
        row = tickets.rows[ticket.id]
        row.resolution_due_at = DUE_TOMORROW
        assert await reminder_service.run_sweep(now=clock.advance(days=1)) == 1
