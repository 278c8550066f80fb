"""
Error taxonomy for the recommendation engine.

Service-level errors come out of the client; the engine adds the two
run-level conditions callers have to tell apart from each other.
"""
from typing import Optional


class BeatmapRecsError(Exception):
    """Base class for every error raised by this package."""


class ScoreServiceError(BeatmapRecsError):
    """The scoring service could not satisfy a request."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        url: Optional[str] = None
    ):
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class AuthError(ScoreServiceError):
    """Credentials were rejected by the service."""


class NotFoundError(ScoreServiceError):
    """The requested user or beatmap does not exist."""


class RateLimitedError(ScoreServiceError):
    """The service kept throttling us after all retries."""

    def __init__(self, message: str, retry_after: Optional[float] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class TransientError(ScoreServiceError):
    """Network failure, timeout or 5xx that outlived the retry budget."""


class RecommendationsUnavailable(BeatmapRecsError):
    """Nothing to recommend: no usable top plays or every mod group failed."""


class OperationCancelled(BeatmapRecsError):
    """The run was cancelled before any result could be produced."""
