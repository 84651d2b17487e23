"""
Embedding Engine - bounded retry and rate limiting around the provider.

Every embedding request made by the pipeline passes through here. The
engine caps concurrent provider calls, enforces a minimum spacing between
requests, and retries failed calls a bounded number of times with a fixed
delay before surfacing the final failure.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_fixed,
)

from ..core.config_manager import EmbeddingConfig, ProcessingConfig
from ..core.error_classifier import ErrorClassifier, default_classifier
from ..core.exceptions import EmbeddingProviderError, EmbeddingRetryError
from .embedding_client import EmbeddingClient

logger = logging.getLogger(__name__)


class RateLimiter:
    """Enforces a minimum interval between consecutive requests."""

    def __init__(self, min_interval: float):
        self.min_interval = min_interval
        self._last_request = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        if self.min_interval <= 0:
            return

        async with self._lock:
            now = time.monotonic()
            wait_time = self._last_request + self.min_interval - now
            if wait_time > 0:
                await asyncio.sleep(wait_time)
            self._last_request = time.monotonic()


class EmbeddingEngine:
    """
    Retrying, rate-limited front for an ``EmbeddingClient``.

    Features:
    - Concurrency cap at the provider boundary
    - Minimum spacing between provider requests
    - Bounded retry with a fixed inter-attempt delay
    - Vector dimension validation
    """

    def __init__(
        self,
        client: EmbeddingClient,
        embedding_config: EmbeddingConfig,
        processing_config: ProcessingConfig,
        classifier: Optional[ErrorClassifier] = None,
    ):
        self.client = client
        self.model = embedding_config.model
        self.dimensions = embedding_config.dimensions
        self.max_retries = processing_config.max_retries
        self.retry_delay = processing_config.retry_delay
        self.classifier = classifier or default_classifier

        self._semaphore = asyncio.Semaphore(processing_config.max_concurrent_embeddings)
        self._rate_limiter = RateLimiter(processing_config.rate_limit_delay)

        self._metrics = {
            "requests": 0,
            "failed_requests": 0,
            "retries": 0,
            "embeddings": 0,
            "exhausted": 0,
        }

    async def embed(self, text: str) -> List[float]:
        """
        Embed text, retrying transient failures.

        Raises:
            EmbeddingRetryError: once all attempts failed, or immediately on
                a failure the provider marked as permanent
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_fixed(self.retry_delay),
            retry=retry_if_exception(self.classifier.is_retryable_embedding_error),
            before_sleep=self._log_retry,
            reraise=False,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    embedding = await self._embed_once(text)
        except RetryError as e:
            last_error = e.last_attempt.exception()
            attempts = e.last_attempt.attempt_number
            self._metrics["exhausted"] += 1
            raise EmbeddingRetryError(
                f"Embedding failed after {attempts} attempts: {last_error}",
                attempts=attempts,
                last_error=last_error,
            ) from last_error
        except Exception as e:
            # Non-retryable: tenacity re-raises it from the first failing attempt
            attempts = retrying.statistics.get("attempt_number", 1)
            self._metrics["exhausted"] += 1
            raise EmbeddingRetryError(
                f"Embedding failed permanently after {attempts} attempt(s): {e}",
                attempts=attempts,
                last_error=e,
            ) from e

        self._metrics["embeddings"] += 1
        return embedding

    async def _embed_once(self, text: str) -> List[float]:
        async with self._semaphore:
            await self._rate_limiter.acquire()
            self._metrics["requests"] += 1
            try:
                embedding = await self.client.embed(text, self.model)
            except Exception as e:
                self._metrics["failed_requests"] += 1
                self.classifier.classify(e)
                raise

        if len(embedding) != self.dimensions:
            self._metrics["failed_requests"] += 1
            error = EmbeddingProviderError(
                f"Expected {self.dimensions}-dimensional embedding, got {len(embedding)}",
                retryable=False,
            )
            self.classifier.classify(error)
            raise error
        return embedding

    def _log_retry(self, retry_state: RetryCallState) -> None:
        self._metrics["retries"] += 1
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            f"Embedding attempt {retry_state.attempt_number}/{self.max_retries} failed: {error}; "
            f"retrying in {self.retry_delay:.1f}s"
        )

    def get_statistics(self) -> Dict[str, Any]:
        return dict(self._metrics, model=self.model, dimensions=self.dimensions)
