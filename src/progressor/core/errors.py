"""
Error taxonomy for the progression pipeline.

``retryable`` tells the job processor whether a failure should be
rescheduled with backoff or should fail the job for good.
"""


class ProgressionError(Exception):
    """Base class for progression pipeline errors."""

    retryable: bool = True


class ValidationError(ProgressionError):
    """Raised when data validation fails."""

    retryable = False


class EngineInputInvalid(ValidationError):
    """Malformed session payload: bad sets, rep range, or exercise shape."""


class MissingContext(ProgressionError):
    """The session or user a job refers to does not exist."""

    retryable = False


class TransientStoreError(ProgressionError):
    """Lock contention or connectivity trouble; safe to retry later."""

    retryable = True


class JobNotFound(ProgressionError):
    """No job exists with the requested id."""

    retryable = False
