"""
Core Module
============

Shared core utilities and abstractions used across the application.

This module contains framework-agnostic code that defines the fundamental
building blocks of the system.
"""

from campusdesk.core.actor import Actor, require_admin
from campusdesk.core.exceptions import (
    ApplicationException,
    RepositoryException,
    ValidationException,
    AuthorizationException,
    ResourceNotFoundException,
    ConcurrencyException,
    ConfigurationException,
    ExternalServiceException,
    NotificationException,
)

__all__ = [
    "Actor",
    "require_admin",
    "ApplicationException",
    "RepositoryException",
    "ValidationException",
    "AuthorizationException",
    "ResourceNotFoundException",
    "ConcurrencyException",
    "ConfigurationException",
    "ExternalServiceException",
    "NotificationException",
]
