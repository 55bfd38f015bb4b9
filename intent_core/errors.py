"""Exception types raised by the intent insight modules."""
from __future__ import annotations


class IntentInsightsError(Exception):
    """Base class for errors raised by this package."""


class ConfigError(IntentInsightsError, RuntimeError):
    """Raised when configuration cannot be loaded or is invalid."""


class EmbeddingError(IntentInsightsError):
    """Raised when the embedding service fails for a batch of texts."""


class DimensionMismatchError(IntentInsightsError, ValueError):
    """Raised when vectors of different lengths are compared."""

    def __init__(self, expected: int, actual: int, *, context: str = "") -> None:
        self.expected = expected
        self.actual = actual
        suffix = f" ({context})" if context else ""
        super().__init__(f"Vector dimension mismatch: expected {expected}, got {actual}{suffix}")


class SourceDataError(IntentInsightsError, ValueError):
    """Raised when a ticket or canonical intent export cannot be read."""
