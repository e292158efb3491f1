"""
Notifications Domain Layer
==========================

Contains:
- Entities: OutboxEvent, ChatMessage, EmailMessage
- Value Objects: NotificationConfig
- Domain Services: retry_delay backoff
"""

from campusdesk.notifications.domain.entities import (
    ChatMessage,
    EmailMessage,
    OutboxEvent,
    retry_delay,
)
from campusdesk.notifications.domain.value_objects import NotificationConfig

__all__ = [
    "ChatMessage",
    "EmailMessage",
    "OutboxEvent",
    "retry_delay",
    "NotificationConfig",
]
