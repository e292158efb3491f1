"""
Tests for turning outbox events into chat and email messages.
"""

import pytest
from pydantic import ValidationError

from campusdesk.config import VALID_EVENT_TYPES, EventType
from campusdesk.core import NotificationException
from campusdesk.notifications.application import (
    IChatSender,
    IEmailSender,
    INotificationConfigProvider,
    TicketNotificationHandler,
)
from campusdesk.notifications.application.handlers import build_chat_text
from campusdesk.notifications.domain import NotificationConfig, OutboxEvent

from conftest import FIXED_NOW


class FakeChat(IChatSender):
    def __init__(self, enabled=True, error=None):
        self._enabled = enabled
        self.error = error
        self.sent = []

    @property
    def enabled(self):
        return self._enabled

    async def send(self, message):
        if self.error:
            raise self.error
        self.sent.append(message)
        return "1710300000.000100"


class FakeEmail(IEmailSender):
    def __init__(self, enabled=True):
        self._enabled = enabled
        self.sent = []

    @property
    def enabled(self):
        return self._enabled

    async def send(self, message):
        self.sent.append(message)


class StaticConfig(INotificationConfigProvider):
    def __init__(self, config):
        self.config = config

    def get_config(self):
        return self.config


CONFIG = NotificationConfig(
    default_channel="#support",
    domain_channels={"Hostel": "#hostel-ops"},
    cc_user_ids={"HOSTEL": ["U123"]},
)


def make_event(event_type=EventType.TICKET_CREATED, **payload):
    data = {
        "ticket_id": 42,
        "status": "OPEN",
        "category_domain": "Hostel",
        "creator_email": "student1@campus.example.edu",
        "thread_ts": None,
        "actor_id": "student-1",
    }
    data.update(payload)
    return OutboxEvent(id=1, event_type=event_type, payload=data, correlation_id="c1", created_at=FIXED_NOW)


@pytest.fixture
def chat():
    return FakeChat()


@pytest.fixture
def email():
    return FakeEmail()


@pytest.fixture
def handler(chat, email):
    return TicketNotificationHandler(chat, email, StaticConfig(CONFIG))


class TestTicketNotificationHandler:
    async def test_created_goes_to_domain_channel_and_creator(self, handler, chat, email):
        await handler(make_event())

        [message] = chat.sent
        assert message.channel == "#hostel-ops"
        assert message.mention_user_ids == ["U123"]
        assert message.text.startswith("Ticket #42 received")
        [mail] = email.sent
        assert mail.to == "student1@campus.example.edu"
        assert mail.subject == "Ticket #42 received"

    async def test_unknown_domain_falls_back_to_default_channel(self, handler, chat):
        await handler(make_event(category_domain="Mess"))
        assert chat.sent[0].channel == "#support"
        assert chat.sent[0].mention_user_ids == []

    async def test_replies_in_ticket_thread(self, handler, chat):
        await handler(make_event(EventType.STATUS_CHANGED, status="RESOLVED", thread_ts="1710300000.123"))
        assert chat.sent[0].thread_ts == "1710300000.123"
        assert chat.sent[0].text.startswith("Ticket #42 is now RESOLVED")

    async def test_comment_is_email_only(self, handler, chat, email):
        await handler(make_event(EventType.COMMENT_ADDED, comment="Plumber at 4pm"))
        assert chat.sent == []
        assert "Plumber at 4pm" in email.sent[0].body

    async def test_no_email_without_recipient(self, handler, email):
        await handler(make_event(creator_email=None))
        assert email.sent == []

    async def test_disabled_senders_are_skipped(self, email):
        handler = TicketNotificationHandler(FakeChat(enabled=False), email, StaticConfig(CONFIG))
        await handler(make_event())
        assert len(email.sent) == 1

    async def test_sender_failure_propagates(self, email):
        chat = FakeChat(error=NotificationException("slack", "channel_not_found"))
        handler = TicketNotificationHandler(chat, email, StaticConfig(CONFIG))
        with pytest.raises(NotificationException):
            await handler(make_event())

    def test_registry_covers_every_event_type(self, handler):
        registry = handler.registry()
        assert set(registry) == set(VALID_EVENT_TYPES)
        assert all(h is handler for h in registry.values())


def test_chat_text_includes_reason_and_actor():
    text = build_chat_text(make_event(EventType.ESCALATED, escalation_level=2, reason="No response"))
    assert text.splitlines() == [
        "Ticket #42 escalated to level 2",
        "Reason: No response",
        "By: student-1",
    ]


class TestNotificationConfig:
    def test_domain_keys_are_case_insensitive(self):
        assert CONFIG.channel_for(" HOSTEL ") == "#hostel-ops"
        assert CONFIG.mentions_for("hostel") == ["U123"]

    def test_no_channel_at_all(self):
        assert NotificationConfig().channel_for("Hostel") is None
        assert NotificationConfig().channel_for(None) is None

    def test_unknown_event_type_rejected(self):
        with pytest.raises(ValidationError):
            NotificationConfig(chat_events=["ticket.exploded"])

    def test_defaults(self):
        config = NotificationConfig()
        assert EventType.TAT_REMINDER in config.chat_events
        assert EventType.COMMENT_ADDED not in config.chat_events
        assert EventType.COMMENT_ADDED in config.email_events
