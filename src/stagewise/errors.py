"""Exception taxonomy for stagewise.

Inconsistent event history is deliberately absent: it is tolerated and
logged by the interval reconstructor, never raised.
"""

from __future__ import annotations


class StagewiseError(Exception):
    """Base exception for stagewise."""

    status_code = 500


class ValidationError(StagewiseError):
    """A required parameter is missing or malformed."""

    status_code = 400


class NotFoundError(StagewiseError):
    """A referenced role or task does not exist."""

    status_code = 404


class StoreQueryError(StagewiseError):
    """The event store failed to answer a query."""

    status_code = 503


class RateLimitExceeded(StagewiseError):
    """The caller's rate-limit window is exhausted."""

    status_code = 429

    def __init__(self, retry_after: int, limit: int = 0, reset_at: int = 0):
        self.retry_after = retry_after
        self.limit = limit
        self.reset_at = reset_at
        super().__init__(f"Rate limit exceeded. Please try again in {retry_after} seconds.")


class PayloadTooLarge(StagewiseError):
    """An intake batch exceeds the accepted size."""

    status_code = 413
