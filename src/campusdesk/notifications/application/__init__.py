"""
Notifications Application Layer
===============================

Contains:
- Services: OutboxPublisher, OutboxDispatcher
- Handlers: TicketNotificationHandler
- Ports: outbox repository, chat/email senders, config provider

This layer depends on the domain layer and port interfaces,
but not on concrete infrastructure implementations.
"""

from campusdesk.notifications.application.handlers import TicketNotificationHandler
from campusdesk.notifications.application.services import (
    EventHandler,
    IChatSender,
    IEmailSender,
    INotificationConfigProvider,
    IOutboxRepository,
    OutboxDispatcher,
    OutboxPublisher,
    OutboxUnitOfWork,
)

__all__ = [
    "TicketNotificationHandler",
    "EventHandler",
    "IChatSender",
    "IEmailSender",
    "INotificationConfigProvider",
    "IOutboxRepository",
    "OutboxDispatcher",
    "OutboxPublisher",
    "OutboxUnitOfWork",
]
