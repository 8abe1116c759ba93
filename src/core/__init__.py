"""
Core Module
============

Shared core utilities and abstractions used across the application.

This module contains framework-agnostic code that defines the fundamental
building blocks of the system.
"""

from src.core.clock import Clock, SystemClock, DeterministicClock
from src.core.exceptions import (
    ApplicationException,
    DomainException,
    RepositoryException,
    ValidationException,
    ResourceNotFoundException,
    ConfigurationException,
    InvalidTransitionException,
    TransitionNotPermittedException,
    ConditionNotMetException,
    ConfirmationRequiredException,
    ConcurrentModificationException,
    TrackerNotFoundException,
    MalformedRuleException,
    WorkflowConfigurationException,
)

__all__ = [
    "Clock",
    "SystemClock",
    "DeterministicClock",
    "ApplicationException",
    "DomainException",
    "RepositoryException",
    "ValidationException",
    "ResourceNotFoundException",
    "ConfigurationException",
    "InvalidTransitionException",
    "TransitionNotPermittedException",
    "ConditionNotMetException",
    "ConfirmationRequiredException",
    "ConcurrentModificationException",
    "TrackerNotFoundException",
    "MalformedRuleException",
    "WorkflowConfigurationException",
]
