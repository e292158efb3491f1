"""
Shared Kernel Module
====================

This module contains shared infrastructure used across all bounded contexts
(Tickets and Notifications).

Architecture Pattern: Modular Monolith
- Each module (tickets, notifications) is a bounded context
- Shared kernel contains only generic infrastructure
- Domain models are extended within each module

DO NOT add ticket lifecycle or outbox logic to the shared kernel.
"""

__version__ = "1.0.0"
