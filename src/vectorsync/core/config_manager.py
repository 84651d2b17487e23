"""
Pipeline Configuration Management

Pydantic configuration models for the synchronization pipeline, loaded from
an optional YAML file and overridden by environment variables. Configuration
is consumed once at startup.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


# Environment variable -> dotted config path
ENV_MAPPINGS = {
    # Primary store
    "MONGODB_URI": "store.uri",
    "DATABASE_NAME": "store.database",

    # Vector index
    "VECTOR_INDEX_BACKEND": "vector_index.backend",
    "VECTOR_COLLECTION": "vector_index.collection_name",
    "QDRANT_HOST": "vector_index.qdrant_host",
    "QDRANT_PORT": "vector_index.qdrant_port",
    "QDRANT_COLLECTION": "vector_index.qdrant_collection",

    # Embedding provider
    "OPENAI_API_KEY": "embedding.api_key",
    "EMBEDDING_BASE_URL": "embedding.base_url",
    "EMBEDDING_MODEL": "embedding.model",
    "EMBEDDING_DIMENSIONS": "embedding.dimensions",
    "EMBEDDING_TIMEOUT": "embedding.timeout",

    # Processing
    "VECTOR_BATCH_SIZE": "processing.batch_size",
    "VECTOR_RATE_LIMIT_DELAY": "processing.rate_limit_delay",
    "VECTOR_MAX_CONCURRENCY": "processing.max_concurrent_embeddings",
    "VECTOR_RETRY_DELAY": "processing.retry_delay",
    "VECTOR_MAX_RETRIES": "processing.max_retries",
    "VECTOR_DEBOUNCE_MS": "processing.debounce_interval",
    "VECTOR_FRESHNESS_WINDOW_MS": "processing.freshness_window",

    # Discovery
    "VECTOR_DISCOVERY_ENABLED": "discovery.enabled",
    "VECTOR_ALLOWED_COLLECTIONS": "discovery.allowed_collections",
    "VECTOR_MAX_COLLECTIONS": "discovery.max_collections",
    "VECTOR_DISCOVERY_SAMPLE_LIMIT": "discovery.sample_limit",

    # Monitoring
    "VECTOR_MONITORING_ENABLED": "monitoring.enabled",
    "VECTOR_LOG_INTERVAL": "monitoring.log_interval",

    # Global
    "LOG_LEVEL": "log_level",
}

# Durations given in milliseconds in the environment, stored in seconds
MILLISECOND_ENV_VARS = {
    "VECTOR_RATE_LIMIT_DELAY",
    "VECTOR_RETRY_DELAY",
    "VECTOR_DEBOUNCE_MS",
    "VECTOR_FRESHNESS_WINDOW_MS",
    "VECTOR_LOG_INTERVAL",
}

# Values that must stay strings even when they look numeric
STRING_ENV_VARS = {"OPENAI_API_KEY", "DATABASE_NAME", "VECTOR_ALLOWED_COLLECTIONS"}

REQUIRED_SETTINGS = {"embedding.api_key": "OPENAI_API_KEY"}


class StoreConfig(BaseModel):
    """Primary document store (MongoDB) connection."""

    uri: str = Field(default="mongodb://localhost:27017", description="MongoDB connection URI")
    database: str = Field(default="vectorsync", description="Database to monitor")
    server_selection_timeout: float = Field(default=5.0, gt=0, description="Connect timeout in seconds")


class VectorIndexConfig(BaseModel):
    """Destination of the derived vector records."""

    backend: Literal["mongo", "qdrant"] = Field(default="mongo", description="Vector sink")
    collection_name: str = Field(default="documentvectors", description="Mongo vector collection")
    qdrant_host: str = Field(default="localhost", description="Qdrant server host")
    qdrant_port: int = Field(default=6333, description="Qdrant HTTP port")
    qdrant_collection: str = Field(default="document_vectors", description="Qdrant collection name")
    qdrant_timeout: float = Field(default=30.0, description="Qdrant request timeout")


class EmbeddingConfig(BaseModel):
    """Embedding provider settings."""

    api_key: str = Field(default="", description="Provider API key")
    base_url: str = Field(default="https://api.openai.com/v1", description="API base URL")
    model: str = Field(default="text-embedding-3-small", description="Embedding model")
    dimensions: int = Field(default=1536, ge=1, description="Vector dimensionality")
    timeout: float = Field(default=30.0, ge=1.0, le=300.0, description="Request timeout in seconds")
    max_input_chars: int = Field(default=8000, ge=1, description="Input truncation length")

    @field_validator("api_key")
    @classmethod
    def strip_api_key(cls, v: str) -> str:
        return v.strip()


class ProcessingConfig(BaseModel):
    """Debounce, retry and rate-limit settings. Durations are in seconds."""

    batch_size: int = Field(default=10, ge=1, le=500, description="Backfill batch size")
    rate_limit_delay: float = Field(default=0.2, ge=0.0, description="Minimum spacing between embedding calls")
    max_concurrent_embeddings: int = Field(default=5, ge=1, le=100, description="Concurrent embedding calls")
    retry_delay: float = Field(default=5.0, ge=0.0, description="Delay between retries and stream restarts")
    max_retries: int = Field(default=3, ge=1, le=10, description="Embedding attempts per document")
    debounce_interval: float = Field(default=2.0, ge=0.0, description="Quiet window per document")
    freshness_window: float = Field(default=60.0, ge=0.0, description="Feedback-loop guard window")
    min_semantic_length: int = Field(default=10, ge=0, description="Shortest text worth indexing")
    max_semantic_length: int = Field(default=8000, ge=16, description="Semantic text cap")
    max_searchable_length: int = Field(default=4000, ge=16, description="Searchable content cap")
    upsert_max_retries: int = Field(default=3, ge=1, description="Attempts on duplicate-key races")
    upsert_retry_base_delay: float = Field(default=0.1, ge=0.0, description="Duplicate-key backoff step")
    shutdown_timeout: float = Field(default=30.0, gt=0.0, description="Wait for in-flight work on stop")

    @property
    def max_upsert_retry_span(self) -> float:
        """Total time spent sleeping across duplicate-key retries."""
        return sum(
            self.upsert_retry_base_delay * attempt
            for attempt in range(1, self.upsert_max_retries)
        )


class DiscoveryConfig(BaseModel):
    """Schema discovery scope."""

    enabled: bool = Field(default=True, description="Auto-discover all non-system collections")
    allowed_collections: List[str] = Field(default_factory=list, description="Explicit allow-list")
    max_collections: int = Field(default=50, ge=1, description="Cap on monitored collections")
    sample_limit: int = Field(default=1000, ge=1, description="Cap on per-type document counts")
    type_field: str = Field(default="type", description="Discriminator field")

    @field_validator("allowed_collections", mode="before")
    @classmethod
    def split_collection_list(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, str):
            return [name.strip() for name in v.split(",") if name.strip()]
        return v


class MonitoringConfig(BaseModel):
    """Periodic metrics logging."""

    enabled: bool = Field(default=True, description="Emit metrics periodically")
    log_interval: float = Field(default=60.0, gt=0.0, description="Seconds between metric logs")


class VectorSyncConfig(BaseModel):
    """Complete configuration for the synchronization pipeline."""

    store: StoreConfig = Field(default_factory=StoreConfig)
    vector_index: VectorIndexConfig = Field(default_factory=VectorIndexConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    processing: ProcessingConfig = Field(default_factory=ProcessingConfig)
    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @property
    def worst_case_write_latency(self) -> float:
        """Longest time from a debounce firing to the vector record being written."""
        processing = self.processing
        return (
            processing.max_retries * self.embedding.timeout
            + (processing.max_retries - 1) * processing.retry_delay
            + processing.max_upsert_retry_span
        )

    @model_validator(mode="after")
    def check_freshness_window(self) -> "VectorSyncConfig":
        # The guard only works if our own write lands inside the window.
        worst_case_write = self.worst_case_write_latency
        if self.processing.freshness_window < worst_case_write:
            logger.warning(
                f"Freshness window {self.processing.freshness_window:.1f}s is shorter than "
                f"the worst-case write latency {worst_case_write:.1f}s; "
                f"the pipeline may re-index its own writes"
            )
        return self


class ConfigManager:
    """Configuration loader with YAML file and environment variable support."""

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path or os.getenv("VECTORSYNC_CONFIG_PATH")
        self._config: Optional[VectorSyncConfig] = None

    def load_config(
        self,
        config_path: Optional[str] = None,
        from_env: bool = True,
        validate: bool = True,
        environ: Optional[Mapping[str, str]] = None,
    ) -> VectorSyncConfig:
        """
        Load configuration from file and environment variables.

        Args:
            config_path: Path to a YAML configuration file
            from_env: Whether to override with environment variables
            validate: Whether to enforce required settings
            environ: Environment mapping to read instead of ``os.environ``

        Returns:
            Validated configuration object

        Raises:
            ConfigurationError: if the configuration is invalid or incomplete
        """
        config_data: Dict[str, Any] = {}

        file_path = config_path or self.config_path
        if file_path:
            config_data = self._load_from_file(file_path)

        if from_env:
            env_overrides = self._load_from_environment(environ if environ is not None else os.environ)
            config_data = self._merge_configs(config_data, env_overrides)

        try:
            config = VectorSyncConfig(**config_data)
        except ValidationError as e:
            logger.error(f"Configuration validation failed: {e}")
            raise ConfigurationError(f"Invalid configuration: {e}") from e

        if validate:
            self._validate_config(config)

        self._config = config
        logger.info("Configuration loaded successfully")
        return config

    def get_config(self) -> VectorSyncConfig:
        """Get the current configuration."""
        if not self._config:
            raise ConfigurationError("Configuration not loaded. Call load_config() first.")
        return self._config

    def _load_from_file(self, file_path: str) -> Dict[str, Any]:
        """Load configuration from YAML file."""
        path = Path(file_path).expanduser()
        if not path.exists():
            logger.warning(f"Configuration file not found: {file_path}")
            return {}

        try:
            with open(path, "r") as f:
                config_data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Malformed configuration file {file_path}: {e}") from e

        logger.info(f"Configuration loaded from {file_path}")
        return config_data or {}

    def _load_from_environment(self, environ: Mapping[str, str]) -> Dict[str, Any]:
        """Load configuration from environment variables."""
        env_config: Dict[str, Any] = {}

        for env_var, config_path in ENV_MAPPINGS.items():
            raw = environ.get(env_var)
            if raw is None or raw == "":
                continue

            if env_var in STRING_ENV_VARS:
                value: Any = raw
            else:
                value = self._convert_env_value(raw)

            if env_var in MILLISECOND_ENV_VARS:
                if not isinstance(value, (int, float)) or isinstance(value, bool):
                    raise ConfigurationError(f"{env_var} must be a number of milliseconds, got {raw!r}")
                value = value / 1000.0

            self._set_nested_value(env_config, config_path, value)

        return env_config

    def _convert_env_value(self, value: str) -> Union[str, int, float, bool]:
        """Convert environment variable string to appropriate type."""
        if value.lower() in ("true", "false"):
            return value.lower() == "true"

        try:
            if "." in value:
                return float(value)
            return int(value)
        except ValueError:
            pass

        return value

    def _set_nested_value(self, config: Dict[str, Any], path: str, value: Any) -> None:
        """Set a nested configuration value using dot notation."""
        keys = path.split(".")
        current = config

        for key in keys[:-1]:
            if key not in current:
                current[key] = {}
            current = current[key]

        current[keys[-1]] = value

    def _merge_configs(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge configuration dictionaries."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_configs(result[key], value)
            else:
                result[key] = value

        return result

    def _validate_config(self, config: VectorSyncConfig) -> None:
        """Enforce settings without which the pipeline cannot start."""
        missing = []
        for dotted, env_var in REQUIRED_SETTINGS.items():
            section, name = dotted.split(".")
            if not getattr(getattr(config, section), name):
                missing.append(env_var)

        if missing:
            raise ConfigurationError(
                f"Missing required settings: {', '.join(missing)}. "
                f"Set them in the environment or the configuration file."
            )

        logger.debug("Configuration validation passed")


def load_config_from_env() -> VectorSyncConfig:
    """Load configuration primarily from environment variables."""
    return ConfigManager().load_config(from_env=True)
