"""Domain errors for recurring schedules and sessions"""


class SchedulingError(Exception):
    pass


class RecurrenceValidationError(SchedulingError, ValueError):
    """Malformed rule or schedule input. Raised before any I/O."""


class NotFoundError(SchedulingError, LookupError):
    """Schedule / session / patient missing or not owned by the caller."""


class SessionConflictError(SchedulingError):
    """A user move targets an instant already booked for the patient."""
