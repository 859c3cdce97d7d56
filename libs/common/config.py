"""Configuration management for the embedding engine.

This module centralizes environment-driven configuration. It builds on
``pydantic_settings.BaseSettings`` so configuration can be provided via
environment variables, ``.env`` files, or defaults.

Highlights
- Strongly-typed settings with sensible defaults
- One place to discover commonly used environment variables
- Small service-specific subclasses to keep concerns clear

Usage
- Inject the config in your entrypoint: ``config = EmbeddingConfig()``
- Or select dynamically: ``config = get_config("embedding")``
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration shared by every entrypoint.

    Parameters are read from the process environment with the given names.
    Defaults keep local development convenient while still being explicit.

    Notes
    - Add new shared settings here so downstream configs inherit them.
    - Prefer ``Field(..., validation_alias="NAME")`` over reading
      ``os.environ`` directly.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Environment
    ml_env: str = Field(default="local", validation_alias="ML_ENV")

    # Logging
    ml_log_level: str = Field(default="INFO", validation_alias="ML_LOG_LEVEL")
    ml_log_format: str = Field(default="json", validation_alias="ML_LOG_FORMAT")

    # Performance
    ml_gpu_preference: str = Field(default="auto", validation_alias="ML_GPU_PREFERENCE")


class EmbeddingConfig(BaseConfig):
    """Configuration for the embedding engine.

    Selects the default model (repository, revision and architecture) and the
    knobs the queue-backed manager needs at startup and shutdown.
    """

    ml_embedding_model: str = Field(
        default="sentence-transformers/all-MiniLM-L6-v2", validation_alias="ML_EMBEDDING_MODEL"
    )
    # Unset revision and type fall back to the preset pin, then to main and bert
    ml_embedding_revision: Optional[str] = Field(default=None, validation_alias="ML_EMBEDDING_REVISION")
    ml_embedding_type: Optional[str] = Field(default=None, validation_alias="ML_EMBEDDING_TYPE")
    ml_embedding_normalize: bool = Field(default=True, validation_alias="ML_EMBEDDING_NORMALIZE")

    # Hub access
    ml_hf_cache_dir: Optional[str] = Field(default=None, validation_alias="ML_HF_CACHE_DIR")
    ml_hf_token: Optional[str] = Field(default=None, validation_alias="ML_HF_TOKEN")

    # Queue lifecycle
    ml_queue_shutdown_timeout: float = Field(default=30.0, validation_alias="ML_QUEUE_SHUTDOWN_TIMEOUT")


def get_config(service_name: str) -> BaseConfig:
    """Get configuration for a specific service.

    Parameters
    - service_name: ``embedding`` or anything else for the shared base.

    Returns
    - A concrete ``BaseConfig`` subclass pre-wired to read the right env vars.
    """
    config_map = {
        "embedding": EmbeddingConfig,
    }

    # Default to ``BaseConfig`` to avoid surprising crashes for unknown names.
    config_class = config_map.get(service_name, BaseConfig)
    return config_class()
