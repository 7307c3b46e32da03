from __future__ import annotations

"""Controlled pipeline errors.

Components raise these with a short message that is safe to show to the
user as-is. The controller turns them into a structured `PipelineFailure`;
they never escape a run.
"""

from typing import Optional


class IngestionError(RuntimeError):
    """Base error for the pipeline; converted to a failure result, not propagated."""


class InputValidationError(IngestionError):
    """Request parameters are unusable (blank username, no time control...)."""


class ConfigurationError(IngestionError):
    """Required configuration (service URL, token) is missing."""


class ReferenceDataError(IngestionError):
    """Opening catalog (model artifacts) could not be loaded."""


class FetchError(IngestionError):
    """Raised when an upstream request fails (HTTP status or network)."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class UserNotFoundError(FetchError):
    """Upstream has no such user (404)."""


class RateLimitedError(FetchError):
    """Upstream kept answering 429 after the retry budget was spent."""


class UpstreamServerError(FetchError):
    """Upstream kept answering 5xx after the retry budget was spent."""


class InvalidResponseError(FetchError):
    """Upstream answered 2xx with a body that fails schema validation."""


class NoRatingError(IngestionError):
    """The user has no usable rating in the analysed time controls."""


class InferenceError(IngestionError):
    """The inference service failed or returned a malformed response."""
