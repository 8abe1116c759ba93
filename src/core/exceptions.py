"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries.
"""

from typing import Optional


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


class ValidationException(ApplicationException):
    """Exception for validation errors."""


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id:
            message += f" with id '{resource_id}'"
        message += " not found"
        super().__init__(message, details)


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""


# ========== Workflow ==========

class InvalidTransitionException(DomainException):
    """No configured edge from the current state matches the request."""

    def __init__(self, transition: str, current_state: str):
        self.transition = transition
        self.current_state = current_state
        super().__init__(
            f"Invalid transition '{transition}' from '{current_state}'",
            {"transition": transition, "current_state": current_state}
        )


class TransitionNotPermittedException(DomainException):
    """The actor's role may not perform the transition."""

    def __init__(self, transition: str, role: Optional[str]):
        self.transition = transition
        self.role = role
        super().__init__(
            f"Role '{role}' cannot perform '{transition}'",
            {"transition": transition, "role": role}
        )


class ConditionNotMetException(DomainException):
    """The transition's condition tree evaluated to false."""

    def __init__(self, transition: str, unmet: Optional[list] = None):
        self.transition = transition
        self.unmet = unmet or []
        super().__init__(
            "Transition conditions not met",
            {"transition": transition, "unmet_conditions": self.unmet}
        )


class ConfirmationRequiredException(DomainException):
    """The transition requires a non-empty confirmation comment."""

    def __init__(self, transition: str, confirm_message: Optional[str] = None):
        self.transition = transition
        super().__init__(
            confirm_message or f"Transition '{transition}' requires a confirmation comment",
            {"transition": transition}
        )


class ConcurrentModificationException(DomainException):
    """
    The execution changed state between the caller's read and the write.

    Callers should refetch the available transitions and retry.
    """

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        expected_state: Optional[str],
        actual_state: Optional[str]
    ):
        self.expected_state = expected_state
        self.actual_state = actual_state
        super().__init__(
            f"{entity_type} {entity_id} was modified concurrently",
            {
                "entity_type": entity_type,
                "entity_id": entity_id,
                "expected_state": expected_state,
                "actual_state": actual_state,
            }
        )


class TrackerNotFoundException(ResourceNotFoundException):
    """SLA tracker does not exist."""

    def __init__(self, tracker_id: str):
        super().__init__("SLA tracker", tracker_id)


class MalformedRuleException(ConfigurationException):
    """A condition rule cannot be evaluated (bad regex, bad operand, path too deep)."""


class WorkflowConfigurationException(ConfigurationException):
    """
    Generic failure surfaced to callers when workflow configuration is broken.

    Carries no rule internals; the underlying cause is logged.
    """

    def __init__(self, message: str = "Workflow configuration error"):
        super().__init__(message)
