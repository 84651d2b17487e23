"""
Core infrastructure: configuration, errors and primary store access.
"""

from .config_manager import ConfigManager, VectorSyncConfig
from .document_store import DocumentStore, MongoDocumentStore
from .error_classifier import ErrorClassifier
from .exceptions import (
    ChangeStreamError,
    ConfigurationError,
    EmbeddingProviderError,
    EmbeddingRetryError,
    StoreUnavailableError,
    VectorSyncError,
    VectorWriteError,
)

__all__ = [
    "ConfigManager",
    "VectorSyncConfig",
    "DocumentStore",
    "MongoDocumentStore",
    "ErrorClassifier",
    "ChangeStreamError",
    "ConfigurationError",
    "EmbeddingProviderError",
    "EmbeddingRetryError",
    "StoreUnavailableError",
    "VectorSyncError",
    "VectorWriteError",
]
