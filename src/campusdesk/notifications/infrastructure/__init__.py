"""
Notifications Infrastructure Layer
==================================

Infrastructure implementations for notification delivery:
- Models: SQLAlchemy outbox model
- Repositories: Outbox data access with conditional claims
- External: Slack / email senders, config watcher, job scheduler
"""

from campusdesk.notifications.infrastructure.models import OutboxModel
from campusdesk.notifications.infrastructure.repositories import (
    SQLAlchemyOutboxRepository,
    outbox_unit_of_work,
)
from campusdesk.notifications.infrastructure.external import (
    CircuitBreaker,
    ConfigFileHandler,
    HttpEmailSender,
    JobScheduler,
    NotificationConfigManager,
    SlackChatSender,
)

__all__ = [
    "OutboxModel",
    "SQLAlchemyOutboxRepository",
    "outbox_unit_of_work",
    "CircuitBreaker",
    "ConfigFileHandler",
    "HttpEmailSender",
    "JobScheduler",
    "NotificationConfigManager",
    "SlackChatSender",
]
