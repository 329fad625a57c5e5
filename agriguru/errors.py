"""
Error types shared across the price-resolution stack.

Only ConfigurationError is meant to escape the pipeline; the others are
caught at a tier boundary and turned into an empty tier.
"""


class AgriGuruError(Exception):
    """Base class for all AgriGuru errors."""


class ConfigurationError(AgriGuruError):
    """Missing credentials or a malformed catalog. Fatal, never retried."""


class SourceUnavailable(AgriGuruError):
    """The government price API timed out, failed, or returned garbage."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class IntentExtractionError(AgriGuruError):
    """The LLM call failed or returned something unusable."""
