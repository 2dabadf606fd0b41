"""
Core Exceptions
================

Custom exceptions for the SLA engine following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries.
"""

from typing import Optional, Any


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[Any] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id is not None:
            message += f" with id '{resource_id}'"
        message += " not found"
        super().__init__(message, details)


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""


# ========== SLA engine errors ==========

class InvalidDuration(DomainException):
    """Raised when an SLA duration is not a positive number of minutes."""

    def __init__(self, duration_minutes: Any):
        self.duration_minutes = duration_minutes
        super().__init__(
            f"SLA duration must be greater than zero, got {duration_minutes}",
            {"duration_minutes": duration_minutes}
        )


class PolicyNotFound(ResourceNotFoundException):
    """Raised when no active SLA policy matches a ticket."""

    def __init__(self, context: Optional[dict] = None):
        super().__init__("SLA policy", details=context or {})


class NoBusinessWindowFound(ConfigurationException):
    """Raised when a department has no usable business window within the lookahead."""

    def __init__(self, department_id: Optional[int], lookahead_days: int):
        self.department_id = department_id
        self.lookahead_days = lookahead_days
        super().__init__(
            f"No business hours window found for department {department_id} "
            f"within {lookahead_days} days",
            {"department_id": department_id, "lookahead_days": lookahead_days}
        )


class InvalidTransition(DomainException):
    """Raised when an event does not apply to a ticket's current state."""

    def __init__(
        self,
        ticket_id: Any,
        current_status: str,
        event: str,
        reason: Optional[str] = None
    ):
        self.ticket_id = ticket_id
        self.current_status = current_status
        self.event = event
        message = f"Cannot apply '{event}' to ticket {ticket_id} in status '{current_status}'"
        if reason:
            message += f": {reason}"
        super().__init__(
            message,
            {"ticket_id": ticket_id, "status": current_status, "event": event}
        )


class ConcurrencyConflict(RepositoryException):
    """Raised when an optimistic version check fails on a ticket write."""

    def __init__(self, ticket_id: Any, expected_version: int):
        self.ticket_id = ticket_id
        self.expected_version = expected_version
        super().__init__(
            f"Ticket {ticket_id} was modified concurrently (expected version {expected_version})",
            {"ticket_id": ticket_id, "expected_version": expected_version}
        )
