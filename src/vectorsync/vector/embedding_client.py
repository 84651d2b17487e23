"""
Embedding Provider HTTP Client

Async client for OpenAI-compatible ``/embeddings`` endpoints. Failures are
raised as ``EmbeddingProviderError`` carrying whether a retry can help.
"""

import logging
from typing import List, Optional, Protocol

import httpx

from ..core.config_manager import EmbeddingConfig
from ..core.exceptions import EmbeddingProviderError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {408, 409, 429}


class EmbeddingClient(Protocol):
    """Capability interface: turn text into a fixed-dimension vector."""

    async def embed(self, text: str, model: str) -> List[float]: ...


class OpenAIEmbeddingClient:
    """Embedding client for the OpenAI embeddings API and compatible servers."""

    def __init__(self, config: EmbeddingConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._client = client
        self._owns_client = client is None

    async def initialize(self) -> None:
        """Initialize the HTTP client."""
        if self._client is not None:
            return

        self._client = httpx.AsyncClient(
            base_url=self.config.base_url,
            headers={
                "Authorization": f"Bearer {self.config.api_key}",
                "Content-Type": "application/json",
                "User-Agent": "vectorsync/1.0",
            },
            timeout=httpx.Timeout(self.config.timeout),
            limits=httpx.Limits(max_keepalive_connections=10, max_connections=50),
        )
        logger.info(f"Embedding client initialized for {self.config.base_url}")

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "OpenAIEmbeddingClient":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _build_payload(self, text: str, model: str) -> dict:
        payload = {
            "model": model,
            "input": text[:self.config.max_input_chars],
            "encoding_format": "float",
        }
        # Only the v3 models accept a reduced output dimension
        if model.startswith("text-embedding-3"):
            payload["dimensions"] = self.config.dimensions
        return payload

    async def embed(self, text: str, model: str) -> List[float]:
        """
        Generate an embedding for a single text.

        Raises:
            EmbeddingProviderError: on transport failure, error status or
                malformed response
        """
        if self._client is None:
            await self.initialize()

        try:
            response = await self._client.post("/embeddings", json=self._build_payload(text, model))
        except httpx.TimeoutException as e:
            raise EmbeddingProviderError(f"Embedding request timed out: {e}", retryable=True) from e
        except httpx.TransportError as e:
            raise EmbeddingProviderError(f"Embedding request failed: {e}", retryable=True) from e

        if response.status_code >= 400:
            retryable = (
                response.status_code in RETRYABLE_STATUS_CODES
                or response.status_code >= 500
            )
            raise EmbeddingProviderError(
                f"Embedding API returned {response.status_code}: {response.text[:200]}",
                retryable=retryable,
                status_code=response.status_code,
            )

        try:
            data = response.json()
            embedding = data["data"][0]["embedding"]
            return [float(value) for value in embedding]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise EmbeddingProviderError(
                f"Malformed embedding response: {e}", retryable=False
            ) from e
