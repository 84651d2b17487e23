"""
Error classification for change streams, embedding calls and vector writes.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import httpx
from pymongo.errors import (
    AutoReconnect,
    ConnectionFailure,
    DuplicateKeyError,
    NetworkTimeout,
    PyMongoError,
)

from .exceptions import ChangeStreamError, EmbeddingProviderError

logger = logging.getLogger(__name__)

DUPLICATE_KEY_CODE = 11000
BSON_TOO_LARGE_CODE = 10334
BSON_TOO_LARGE_NAME = "BSONObjectTooLarge"
# $changeStream against a standalone server
CHANGE_STREAM_UNSUPPORTED_CODE = 40573
TERMINAL_STREAM_CODES = {BSON_TOO_LARGE_CODE, CHANGE_STREAM_UNSUPPORTED_CODE}


class ErrorCategory(Enum):
    """Error categories relevant to the pipeline."""

    NETWORK_ERROR = "network_error"
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    CLIENT_ERROR = "client_error"
    DOCUMENT_TOO_LARGE = "document_too_large"
    DUPLICATE_KEY = "duplicate_key"
    UNSUPPORTED_DEPLOYMENT = "unsupported_deployment"
    UNKNOWN = "unknown"


@dataclass
class ErrorPattern:
    """Pattern for matching and classifying errors."""

    error_types: Tuple[type, ...]
    category: ErrorCategory
    retryable: bool
    codes: Tuple[int, ...] = ()
    keywords: List[str] = field(default_factory=list)

    def matches(self, error: BaseException) -> bool:
        if self.error_types and isinstance(error, self.error_types):
            return True

        code = error_code(error)
        if code is not None and code in self.codes:
            return True

        error_message = str(error).lower()
        return any(keyword.lower() in error_message for keyword in self.keywords)


def error_code(error: BaseException) -> Optional[int]:
    """Numeric server error code of a pymongo error, if any."""
    code = getattr(error, "code", None)
    return code if isinstance(code, int) else None


def error_code_name(error: BaseException) -> Optional[str]:
    details = getattr(error, "details", None)
    if isinstance(details, dict):
        return details.get("codeName")
    return None


class ErrorClassifier:
    """
    Classifies errors and decides whether retrying can help.

    Order of patterns matters: the first match wins.
    """

    def __init__(self) -> None:
        self.error_patterns = self._create_error_patterns()
        self.error_statistics: Dict[str, int] = {}

    def _create_error_patterns(self) -> List[ErrorPattern]:
        return [
            ErrorPattern(
                error_types=(),
                category=ErrorCategory.DOCUMENT_TOO_LARGE,
                retryable=False,
                codes=(BSON_TOO_LARGE_CODE,),
                keywords=[BSON_TOO_LARGE_NAME, "object to insert too large"],
            ),
            ErrorPattern(
                error_types=(),
                category=ErrorCategory.UNSUPPORTED_DEPLOYMENT,
                retryable=False,
                codes=(CHANGE_STREAM_UNSUPPORTED_CODE,),
            ),
            ErrorPattern(
                error_types=(DuplicateKeyError,),
                category=ErrorCategory.DUPLICATE_KEY,
                retryable=True,
                codes=(DUPLICATE_KEY_CODE,),
                keywords=["E11000", "duplicate key"],
            ),
            ErrorPattern(
                error_types=(asyncio.TimeoutError, httpx.TimeoutException, NetworkTimeout),
                category=ErrorCategory.TIMEOUT,
                retryable=True,
            ),
            ErrorPattern(
                error_types=(httpx.TransportError, AutoReconnect, ConnectionFailure, ConnectionError),
                category=ErrorCategory.NETWORK_ERROR,
                retryable=True,
            ),
        ]

    def classify(self, error: BaseException) -> ErrorCategory:
        """Classify an error into a category."""
        category = ErrorCategory.UNKNOWN

        if isinstance(error, EmbeddingProviderError) and error.status_code is not None:
            category = self._category_for_status(error.status_code)
        else:
            for pattern in self.error_patterns:
                if pattern.matches(error):
                    category = pattern.category
                    break

        self.error_statistics[category.value] = self.error_statistics.get(category.value, 0) + 1
        return category

    def _category_for_status(self, status_code: int) -> ErrorCategory:
        if status_code == 429:
            return ErrorCategory.RATE_LIMITED
        if status_code in (408, 504):
            return ErrorCategory.TIMEOUT
        if status_code >= 500:
            return ErrorCategory.SERVER_ERROR
        return ErrorCategory.CLIENT_ERROR

    def is_retryable_embedding_error(self, error: BaseException) -> bool:
        """
        Whether another embedding attempt may succeed.

        Only errors the provider explicitly marked as permanent stop the
        retry loop early; anything unrecognised is given its bounded retries.
        Cancellation is never retried.
        """
        if isinstance(error, asyncio.CancelledError):
            return False
        if isinstance(error, EmbeddingProviderError):
            return error.retryable
        return True

    def is_terminal_stream_error(self, error: BaseException) -> bool:
        """
        Whether a change stream error makes restarting pointless.

        Oversized documents and servers without change stream support fail
        the same way on every restart, so they permanently disable the
        subscription.
        """
        if isinstance(error, ChangeStreamError):
            return error.terminal

        current: Optional[BaseException] = error
        seen = set()
        while current is not None and id(current) not in seen:
            seen.add(id(current))
            if error_code(current) in TERMINAL_STREAM_CODES:
                return True
            if error_code_name(current) == BSON_TOO_LARGE_NAME:
                return True
            if BSON_TOO_LARGE_NAME.lower() in str(current).lower():
                return True
            current = current.__cause__ or current.__context__
        return False

    def is_duplicate_key_error(self, error: BaseException) -> bool:
        if isinstance(error, DuplicateKeyError):
            return True
        return isinstance(error, PyMongoError) and error_code(error) == DUPLICATE_KEY_CODE

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "total_errors": sum(self.error_statistics.values()),
            "by_category": dict(self.error_statistics),
        }


# Module-level instance used when none is injected
default_classifier = ErrorClassifier()
