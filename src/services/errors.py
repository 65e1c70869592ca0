"""Error taxonomy for the billing and ledger engine."""


class DuesError(Exception):
    """Base engine error carrying a human-readable message and a stable code."""

    code = "dues_error"

    def __init__(self, message: str, code: str | None = None):
        """Initialize error."""
        self.message = message
        if code is not None:
            self.code = code
        super().__init__(message)


class ValidationError(DuesError):
    """Input rejected before any state change."""

    code = "validation_error"


class InvalidTransitionError(ValidationError):
    """Payment status transition not allowed for the requesting actor."""

    code = "invalid_transition"


class NotFoundError(DuesError):
    """Unknown club, period, player or entry."""

    code = "not_found"


class PersistenceError(DuesError):
    """Underlying snapshot store write failed."""

    code = "persistence_error"


__all__ = [
    "DuesError",
    "ValidationError",
    "InvalidTransitionError",
    "NotFoundError",
    "PersistenceError",
]
