"""
Product Intelligence Errors
===========================

Exception taxonomy for the deduplication & retrieval engine.

Hierarchy:
    IntelligenceError
    ├── InvalidArgument (also a ValueError)
    │   ├── InvalidDimension
    │   └── DimensionMismatch
    ├── ProviderUnavailable
    │   ├── RateLimited
    │   └── EmbeddingUnavailable
    └── InvalidModelResponse

InvalidArgument is a client error and is never retried. ProviderUnavailable
and its subclasses are transient; retry policy belongs to the provider client.
"""

from typing import Any, Dict, Optional


class IntelligenceError(Exception):
    """Base exception for the intelligence engine."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class InvalidArgument(IntelligenceError, ValueError):
    """Caller supplied malformed input."""
    pass


class InvalidDimension(InvalidArgument):
    """Embedding length is not one of the supported dimensionalities."""

    def __init__(self, dimensions: int, supported: tuple):
        self.dimensions = dimensions
        self.supported = supported
        super().__init__(
            f"Embedding must have one of {supported} dimensions, got {dimensions}",
            {"dimensions": dimensions, "supported": list(supported)},
        )


class DimensionMismatch(InvalidArgument):
    """Two vectors of different length were compared."""

    def __init__(self, left: int, right: int):
        self.left = left
        self.right = right
        super().__init__(
            f"Vector dimensions must match: {left} vs {right}",
            {"left": left, "right": right},
        )


class ProviderUnavailable(IntelligenceError):
    """An external embedding or completion provider failed."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.provider = provider
        super().__init__(message, details)


class RateLimited(ProviderUnavailable):
    """Provider rejected the call because of rate limiting."""

    def __init__(
        self,
        provider: Optional[str] = None,
        retry_after: Optional[float] = None,
    ):
        self.retry_after = retry_after
        message = f"Rate limited by provider {provider or 'unknown'}"
        if retry_after is not None:
            message += f" (retry after {retry_after}s)"
        super().__init__(message, provider, {"retry_after": retry_after})


class EmbeddingUnavailable(ProviderUnavailable):
    """The embedding provider could not produce a vector."""
    pass


class InvalidModelResponse(IntelligenceError):
    """Completion output could not be parsed into the expected shape."""

    # Raw content is truncated to keep logs and error payloads bounded
    MAX_RAW_CHARS = 500

    def __init__(self, message: str, raw_content: Optional[str] = None):
        self.raw_content = (raw_content or "")[:self.MAX_RAW_CHARS]
        super().__init__(message, {"raw_content": self.raw_content})
