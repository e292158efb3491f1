"""
Notification Value Objects
==========================

Routing configuration for outbound notifications, loaded from YAML.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from campusdesk.config import VALID_EVENT_TYPES, EventType


class NotificationConfig(BaseModel):
    """
    Which events go where.

    Chat channels are chosen per ticket domain with a default fallback;
    email goes to the ticket creator for the listed event types.
    """
    default_channel: Optional[str] = Field(
        default=None,
        description="Chat channel used when a domain has no channel of its own"
    )
    domain_channels: Dict[str, str] = Field(
        default_factory=dict,
        description="Chat channel per ticket domain (case-insensitive)"
    )
    cc_user_ids: Dict[str, List[str]] = Field(
        default_factory=dict,
        description="Chat users mentioned on messages for a domain"
    )
    chat_events: List[str] = Field(
        default_factory=lambda: [
            EventType.TICKET_CREATED,
            EventType.STATUS_CHANGED,
            EventType.ESCALATED,
            EventType.TAT_SET,
            EventType.TAT_REMINDER,
        ],
        description="Event types posted to chat"
    )
    email_events: List[str] = Field(
        default_factory=lambda: [
            EventType.TICKET_CREATED,
            EventType.STATUS_CHANGED,
            EventType.COMMENT_ADDED,
            EventType.TAT_SET,
        ],
        description="Event types emailed to the ticket creator"
    )

    @field_validator("domain_channels", "cc_user_ids")
    @classmethod
    def lower_domain_keys(cls, v: dict) -> dict:
        return {k.strip().lower(): val for k, val in v.items()}

    @field_validator("chat_events", "email_events")
    @classmethod
    def validate_event_types(cls, v: List[str]) -> List[str]:
        unknown = [e for e in v if e not in VALID_EVENT_TYPES]
        if unknown:
            raise ValueError(f"unknown event types: {unknown}")
        return v

    def channel_for(self, domain: Optional[str]) -> Optional[str]:
        if domain:
            channel = self.domain_channels.get(domain.strip().lower())
            if channel:
                return channel
        return self.default_channel

    def mentions_for(self, domain: Optional[str]) -> List[str]:
        if not domain:
            return []
        return list(self.cc_user_ids.get(domain.strip().lower(), []))
