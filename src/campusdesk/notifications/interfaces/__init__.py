"""
Notifications Interfaces Layer
===============================

API routes for outbox processing.
"""

from campusdesk.notifications.interfaces.controllers import router

__all__ = ["router"]
