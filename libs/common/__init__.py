"""Common utilities shared across the embedding engine.

Includes:
- ``config``: Pydantic-based configuration from environment variables.
- ``logging``: structured logging setup with structlog.
- ``metrics``: Prometheus metrics helpers.

Import pattern:
- from libs.common.config import EmbeddingConfig
- from libs.common.logging import configure_logging
"""
