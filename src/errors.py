"""
errors.py

Domain error hierarchy shared by the calendar, scheduler and tolerance
services.

Every failure the computation core reports is a DomainError carrying an
ErrorKind, so callers (and the API layer) can branch on the kind rather than
on message text. DomainError derives from ValueError, matching the
service-layer convention that business rule violations raise ValueError.
"""

from __future__ import annotations

import uuid
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CIRCULAR_DEPENDENCY = "circular_dependency"
    INVALID_TRANSITION = "invalid_transition"
    OVERFLOW = "overflow"
    MC_BUDGET_EXCEEDED = "mc_budget_exceeded"
    CONFIGURATION = "configuration"
    EMPTY_PROJECT = "empty_project"


class DomainError(ValueError):
    """Base class for all domain failures; `kind` identifies the failure."""
    kind: ErrorKind = ErrorKind.VALIDATION


class ValidationError(DomainError):
    kind = ErrorKind.VALIDATION


class ReferenceNotFoundError(DomainError):
    kind = ErrorKind.NOT_FOUND


class CircularDependencyError(DomainError):
    kind = ErrorKind.CIRCULAR_DEPENDENCY

    def __init__(self, message: str, cycle: Optional[List[uuid.UUID]] = None):
        super().__init__(message)
        self.cycle: List[uuid.UUID] = list(cycle or [])


class InvalidTransitionError(DomainError):
    kind = ErrorKind.INVALID_TRANSITION


class BudgetExceededError(DomainError):
    """An iteration-bounded calculation ran out of budget before converging."""
    kind = ErrorKind.MC_BUDGET_EXCEEDED

    def __init__(self, message: str, diagnostic: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.diagnostic: Dict[str, Any] = dict(diagnostic or {})


class ConfigurationError(DomainError):
    kind = ErrorKind.CONFIGURATION


class EmptyProjectError(DomainError):
    kind = ErrorKind.EMPTY_PROJECT
