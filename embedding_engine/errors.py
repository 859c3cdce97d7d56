"""Error taxonomy for the embedding engine.

Every error raised by the loader, the batch encoder and the request queue
derives from ``EmbeddingEngineError`` so callers can catch the family at once
or pick the stage they care about.
"""

from typing import Optional


class EmbeddingEngineError(Exception):
    """Base class for embedding engine failures."""
    pass


class RepositoryError(EmbeddingEngineError):
    """A model artifact is missing from its repository or cannot be read."""

    def __init__(self, message: str, artifact: Optional[str] = None):
        super().__init__(message)
        self.artifact = artifact


class ConfigError(EmbeddingEngineError):
    """Config does not match the schema of the requested architecture."""
    pass


class WeightLoadError(EmbeddingEngineError):
    """Tensor names or shapes do not match what the config implies."""
    pass


class TokenizationError(EmbeddingEngineError):
    """The tokenizer rejected a batch."""
    pass


class ComputeError(EmbeddingEngineError):
    """Tensor backend failure during forward pass, pooling or normalization."""
    pass


class DeliveryError(EmbeddingEngineError):
    """A reply cannot be delivered: the worker has stopped or terminated."""
    pass


class ModelNotFoundError(EmbeddingEngineError, KeyError):
    """No queue is serving the requested model name."""

    def __str__(self) -> str:
        return Exception.__str__(self)
