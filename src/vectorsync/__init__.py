"""
vectorsync - keep a vector index synchronized with a MongoDB document store.

Discovers document types at startup, follows every collection's change
stream, and re-embeds changed documents through an external embedding
provider.
"""

__version__ = "1.0.0"

from .core.config_manager import ConfigManager, VectorSyncConfig
from .sync.pipeline import PipelineController

__all__ = ["ConfigManager", "VectorSyncConfig", "PipelineController", "__version__"]
