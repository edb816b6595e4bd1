"""
Error taxonomy for the pricing & margin authorization engine.

Calculation errors are raised at the point of computation and must block the
offending save.  Gate errors (StaleStateError) are *returned* inside a
TransitionResult together with the authoritative quote so duplicate or racing
admin actions are safe to retry.
"""
from typing import Any, Optional


class PricingEngineError(ValueError):
    """Base class; `field` names the offending rate or input when known."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> dict:
        return {"detail": self.message, "field": self.field, "error": type(self).__name__}


class ConfigurationError(PricingEngineError):
    """No margin tier matches and no fallback rate is available."""


class InvalidRateError(PricingEngineError):
    """Rates would make the markup divisor non-positive, or a rate is out of range."""


class ValidationError(PricingEngineError):
    """Non-positive cost/quantity, negative total, edits outside draft, etc."""


class StaleStateError(PricingEngineError):
    """Transition precondition not met; `current` holds the authoritative quote."""

    def __init__(self, message: str, current: Any = None, action: Optional[str] = None):
        super().__init__(message, field="lifecycle_status")
        self.current = current
        self.action = action
