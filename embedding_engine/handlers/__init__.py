"""Request handlers served by ``embedding_engine.batching.queue.Queue``.

- ``base``: the ``RequestHandler`` contract.
- ``embedding_handler``: ``EmbeddingHandler`` with its request/response types.
"""

from .base import RequestHandler
from .embedding_handler import EmbeddingHandler, EmbedRequest, EmbedResponse

__all__ = ["RequestHandler", "EmbeddingHandler", "EmbedRequest", "EmbedResponse"]
