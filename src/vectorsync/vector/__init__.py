"""
Vector layer of the synchronization pipeline.

- Embedding provider client (OpenAI-compatible HTTP API)
- Embedding engine with bounded retry, concurrency cap and rate limiting
- Vector record sinks: MongoDB collection (default) and Qdrant
"""

from .embedding_client import EmbeddingClient, OpenAIEmbeddingClient
from .embedding_engine import EmbeddingEngine, RateLimiter
from .qdrant_vector_index import QdrantVectorIndex, point_id
from .vector_index import MongoVectorIndex, VectorIndex

__all__ = [
    # Embedding
    "EmbeddingClient",
    "OpenAIEmbeddingClient",
    "EmbeddingEngine",
    "RateLimiter",

    # Sinks
    "VectorIndex",
    "MongoVectorIndex",
    "QdrantVectorIndex",
    "point_id",
]
