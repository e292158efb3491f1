"""
Ticket event handlers: turn an outbox event into chat and email messages.
"""

from typing import Dict, Optional

from campusdesk.config import VALID_EVENT_TYPES, EventType
from campusdesk.notifications.application.services import (
    EventHandler,
    IChatSender,
    IEmailSender,
    INotificationConfigProvider,
)
from campusdesk.notifications.domain import ChatMessage, EmailMessage, OutboxEvent
from campusdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


_SUBJECTS = {
    EventType.TICKET_CREATED: "Ticket #{ticket_id} received",
    EventType.STATUS_CHANGED: "Ticket #{ticket_id} is now {status}",
    EventType.COMMENT_ADDED: "New comment on ticket #{ticket_id}",
    EventType.TAT_SET: "Ticket #{ticket_id}: expected resolution {tat}",
    EventType.ESCALATED: "Ticket #{ticket_id} escalated to level {escalation_level}",
    EventType.ASSIGNED: "Ticket #{ticket_id} assigned",
    EventType.TAT_REMINDER: "Ticket #{ticket_id} is due today",
}


def _render(template: str, payload: dict) -> str:
    values = {
        "ticket_id": payload.get("ticket_id"),
        "status": payload.get("status", ""),
        "tat": payload.get("tat", ""),
        "escalation_level": payload.get("escalation_level", ""),
    }
    return template.format(**values)


def build_chat_text(event: OutboxEvent) -> str:
    payload = event.payload
    lines = [_render(_SUBJECTS.get(event.event_type, "Ticket #{ticket_id} updated"), payload)]
    if payload.get("comment"):
        lines.append(str(payload["comment"]))
    if payload.get("reason"):
        lines.append(f"Reason: {payload['reason']}")
    if payload.get("actor_id"):
        lines.append(f"By: {payload['actor_id']}")
    return "\n".join(lines)


class TicketNotificationHandler:
    """
    Delivers ticket events to chat and email.

    Which channels an event reaches comes from the hot-reloaded
    notification config. A sender failure raises, leaving the outbox event
    unprocessed for retry.
    """

    def __init__(
        self,
        chat_sender: IChatSender,
        email_sender: IEmailSender,
        config_provider: INotificationConfigProvider,
    ):
        self._chat = chat_sender
        self._email = email_sender
        self._config_provider = config_provider

    async def __call__(self, event: OutboxEvent) -> None:
        config = self._config_provider.get_config()
        payload = event.payload
        domain = payload.get("category_domain")

        if event.event_type in config.chat_events and self._chat.enabled:
            channel = config.channel_for(domain)
            if channel:
                await self._chat.send(ChatMessage(
                    channel=channel,
                    text=build_chat_text(event),
                    thread_ts=payload.get("thread_ts"),
                    mention_user_ids=config.mentions_for(domain),
                ))
            else:
                logger.debug("No chat channel for domain", extra={"domain": domain})

        recipient: Optional[str] = payload.get("creator_email")
        if event.event_type in config.email_events and self._email.enabled and recipient:
            await self._email.send(EmailMessage(
                to=recipient,
                subject=_render(_SUBJECTS.get(event.event_type, "Ticket #{ticket_id} updated"), payload),
                body=build_chat_text(event),
                in_reply_to=payload.get("email_message_id"),
            ))

    def registry(self) -> Dict[str, EventHandler]:
        """Handler map covering every ticket event type."""
        return {event_type: self for event_type in VALID_EVENT_TYPES}
