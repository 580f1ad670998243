"""Error taxonomy for the generation core.

Every component raises one of these. The orchestrator is the only place that
catches them and turns them into result dicts; see `DaggerGMError.to_result`.
"""

from __future__ import annotations

from typing import Any


class DaggerGMError(Exception):
    """Base class. `code` is stable and safe to show to API clients."""

    code = "error"

    def to_result(self) -> dict[str, Any]:
        return {"success": False, "error": str(self), "code": self.code}


class AuthenticationRequired(DaggerGMError):
    code = "authentication_required"

    def __init__(self, message: str = "Authentication required. Please log in to generate adventures.") -> None:
        super().__init__(message)


class ValidationError(DaggerGMError):
    """Malformed input. Raised before any credit or budget is touched."""

    code = "validation_error"


class NotFound(DaggerGMError):
    code = "not_found"


class InsufficientCredits(DaggerGMError):
    code = "insufficient_credits"

    def __init__(self, message: str = "Insufficient credits to generate adventure") -> None:
        super().__init__(message)


class RegenerationLimitExceeded(DaggerGMError):
    code = "regeneration_limit_exceeded"

    def __init__(self, phase: str, used: int, limit: int) -> None:
        self.phase = phase
        self.used = used
        self.limit = limit
        super().__init__(
            f"{phase.capitalize()} regeneration limit reached ({used}/{limit} used, "
            f"{limit} maximum)"
        )

    def to_result(self) -> dict[str, Any]:
        result = super().to_result()
        result.update(phase=self.phase, used=self.used, limit=self.limit)
        return result


class MovementLocked(DaggerGMError):
    """The target movement is confirmed and may not be rewritten."""

    code = "movement_locked"


class InvalidStateTransition(DaggerGMError):
    code = "invalid_state_transition"


class PersistenceError(DaggerGMError):
    code = "persistence_error"


class RateLimitError(DaggerGMError):
    """Raised by the rate limiter. Carried to the caller unchanged."""

    code = "rate_limited"

    def __init__(self, message: str, reset_time: float, retry_after_seconds: int) -> None:
        self.reset_time = reset_time
        self.retry_after_seconds = retry_after_seconds
        super().__init__(message)

    def to_result(self) -> dict[str, Any]:
        result = super().to_result()
        result.update(retry_after=self.retry_after_seconds, reset_time=self.reset_time)
        return result


# ---------------------------------------------------------------------------
# LLM errors
# ---------------------------------------------------------------------------

class LLMError(DaggerGMError, RuntimeError):
    """Raised when the LLM backend cannot produce a usable answer."""

    code = "llm_error"


class LLMTransientError(LLMError):
    """Timeout, connection failure, rate limit or 5xx. Safe to retry."""

    code = "llm_transient_error"


class LLMSchemaValidationError(LLMError):
    """The backend answered, but the payload failed structural validation."""

    code = "llm_schema_validation_error"
