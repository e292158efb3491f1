"""
Tickets Interfaces Layer
========================

FastAPI routers for tickets, groups and the reminder cron.
"""

from campusdesk.tickets.interfaces.controllers import cron_router, group_router, router

__all__ = ["router", "group_router", "cron_router"]
