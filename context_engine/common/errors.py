"""
Error types raised by the context engine.

Store failures are propagated to the caller unchanged; the engine
never retries and never returns a partial report.
"""

from typing import Any, Optional, Tuple


class ContextEngineError(Exception):
    """Base class for all context engine errors."""


class NotFound(ContextEngineError):
    """Entity id is unknown to the context store."""

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


class InvalidRange(ContextEngineError):
    """A bounded field (confidence, priority, limit) was given an out-of-range value."""

    def __init__(self, field: str, value: Any, bounds: Tuple[Optional[float], Optional[float]]):
        self.field = field
        self.value = value
        self.bounds = bounds
        lower, upper = bounds
        if upper is None:
            expected = f">= {lower}"
        else:
            expected = f"in [{lower}, {upper}]"
        super().__init__(f"{field} must be {expected}, got {value!r}")


class StoreUnavailable(ContextEngineError):
    """The context store could not be read or written."""


class PatternError(ContextEngineError):
    """A trigger pattern is malformed (bad regex, no capture group, bad weight)."""
