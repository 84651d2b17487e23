"""
Exception hierarchy for the vector synchronization pipeline.
"""

from typing import Optional


class VectorSyncError(Exception):
    """Base exception for all pipeline errors."""

    pass


class ConfigurationError(VectorSyncError):
    """Invalid or missing configuration. Fatal at startup."""

    pass


class StoreUnavailableError(VectorSyncError):
    """The primary document store could not be reached."""

    pass


class EmbeddingProviderError(VectorSyncError):
    """
    Error returned by the embedding provider.

    ``retryable`` tells the retry layer whether another attempt can succeed
    (network blips, throttling, 5xx) or not (bad request, auth failure).
    """

    def __init__(
        self,
        message: str,
        retryable: bool = True,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.retryable = retryable
        self.status_code = status_code


class ChangeStreamError(VectorSyncError):
    """A change stream failed. ``terminal`` errors are never restarted."""

    def __init__(self, message: str, terminal: bool = False):
        super().__init__(message)
        self.terminal = terminal


class EmbeddingRetryError(VectorSyncError):
    """Embedding failed after the retry layer gave up."""

    def __init__(self, message: str, attempts: int, last_error: BaseException):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class VectorWriteError(VectorSyncError):
    """Writing a vector record failed with an error retrying cannot fix."""

    def __init__(self, message: str, attempts: int, last_error: BaseException):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error
