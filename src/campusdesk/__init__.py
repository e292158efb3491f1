"""
CampusDesk
==========

Campus support-ticket service: routing, TAT/SLA tracking, group actions
and outbox-backed notifications.
"""

__version__ = "1.0.0"
