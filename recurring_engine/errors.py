"""
Error taxonomy for the Recurring Event & Matching Engine.

Validation problems are rejected when a template or rule is created, conflicts
on the match store are recovered locally, missing references are surfaced to
the caller, and only store outages abort a whole batch.
"""


class EngineError(Exception):
    """Base class for all engine errors."""
    pass


class ValidationError(EngineError, ValueError):
    """Raised when a template, override or rule is malformed."""
    pass


class ConflictError(EngineError):
    """Raised when a uniqueness constraint is violated (e.g. duplicate match)."""
    pass


class CascadeConfirmationRequired(ConflictError):
    """Raised when a delete would cascade into matched data without confirmation."""

    def __init__(self, message: str, override_count: int = 0, match_count: int = 0):
        super().__init__(message)
        self.override_count = override_count
        self.match_count = match_count


class NotFoundError(EngineError, LookupError):
    """Raised when a referenced template, override, transaction or match is missing."""
    pass


class StoreUnavailableError(EngineError):
    """Raised by store adapters when the backing store cannot be reached."""
    pass
