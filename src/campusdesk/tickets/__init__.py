"""
Tickets Module
==============

Bounded Context for the campus support-ticket lifecycle.

Responsibilities:
- Route new tickets to admins by domain and location scope
- Track acknowledgement/resolution due dates and TAT extensions
- Drive status changes against the runtime status catalog
- Escalate on request and send daily "due today" reminders
- Group tickets and apply bulk comment/close actions
"""

__version__ = "1.0.0"
