"""
Notifications Module
====================

Bounded Context for reliable delivery of ticket notifications.

Responsibilities:
- Append outbox events in the same transaction as ticket changes
- Claim/lease events so only one worker delivers each
- Deliver to Slack and email, at least once
- Retry with exponential backoff and dead-letter repeat failures
- Hot-reload notification routing from YAML
"""

__version__ = "1.0.0"
