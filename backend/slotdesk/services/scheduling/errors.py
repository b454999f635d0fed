"""Exceptions raised by the scheduling engine.

Expected business outcomes (too soon, slot full, ...) are *not* exceptions;
they are returned as rejection values. Everything here means the request
could not be evaluated at all.
"""

from __future__ import annotations

from typing import Optional


class SchedulingError(Exception):
    """Base class for scheduling failures."""


class ValidationError(SchedulingError):
    """Missing or malformed input; no external call has been made."""

    code = "validation_error"

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class InvalidTime(ValidationError):
    code = "invalid_time"


class ResourceInvalid(ValidationError):
    """Explicit unit id is unknown, belongs to another business or is inactive."""

    code = "invalid_unit"


class DependencyFailure(SchedulingError):
    """An external collaborator (calendar, store, ...) failed or timed out."""

    def __init__(self, dependency: str, message: str) -> None:
        super().__init__(f"{dependency}: {message}")
        self.dependency = dependency


class CalendarError(DependencyFailure):
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__("calendar", message)
        self.status_code = status_code


class ConsistencyFailure(SchedulingError):
    """Compensation after a partial booking failed; storage and calendar disagree."""

    def __init__(
        self,
        message: str,
        appointment_id: Optional[str] = None,
        event_id: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.appointment_id = appointment_id
        self.event_id = event_id
