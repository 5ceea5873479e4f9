"""
Error taxonomy for the ritual engine.

Every failure carries a stable ``kind`` string and a human-readable message.
The HTTP layer maps ``status_code`` onto responses; services never raise
HTTPException directly.
"""

from typing import Optional


class RitualEngineError(Exception):
    kind = "RitualEngineError"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(RitualEngineError):
    """Malformed, missing or out-of-range input. Never retried automatically."""

    kind = "ValidationError"
    status_code = 422

    def __init__(self, field: Optional[str], message: str):
        self.field = field
        text = f"{field}: {message}" if field else message
        super().__init__(text)


class MissingField(ValidationError):
    kind = "MissingField"

    def __init__(self, field: str):
        super().__init__(field, "field is required")


class InvalidStepReference(ValidationError):
    kind = "InvalidStepReference"

    def __init__(self, field: str, step_id: str):
        self.step_id = step_id
        super().__init__(field, f"step {step_id} does not belong to this ritual")


class Unauthorized(RitualEngineError):
    """
    Caller is not authenticated or does not own the resource.
    The message is identical whether or not the resource exists.
    """

    kind = "Unauthorized"
    status_code = 403

    def __init__(self, message: str = "Access denied", *, authenticated: bool = True):
        super().__init__(message)
        if not authenticated:
            self.status_code = 401


class NotFound(RitualEngineError):
    kind = "NotFound"
    status_code = 404


class RitualInactive(RitualEngineError):
    kind = "RitualInactive"
    status_code = 409

    def __init__(self, ritual_id: str):
        self.ritual_id = ritual_id
        super().__init__(f"ritual {ritual_id} is inactive")


class ConflictRetryExhausted(RitualEngineError):
    """Concurrent updates kept colliding. Safe for the client to retry."""

    kind = "ConflictRetryExhausted"
    status_code = 503

    def __init__(self, ritual_id: str, attempts: int):
        self.ritual_id = ritual_id
        self.attempts = attempts
        super().__init__(
            f"ritual {ritual_id} was modified concurrently; gave up after {attempts} attempts"
        )


class VersionConflict(Exception):
    """Internal signal: the ritual row version moved under a transaction."""
