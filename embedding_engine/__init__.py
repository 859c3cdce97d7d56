"""Sentence embedding engine.

Layout:
- ``encoders``: model variants, repository loader, batch encoder, presets,
  ``SentenceEmbedder`` and the queue-backed ``EmbeddingManager``.
- ``batching``: device selection and the single-worker request ``Queue``.
- ``handlers``: ``RequestHandler`` contract and ``EmbeddingHandler``.
- ``runtime``: engine-local metrics facade.
- ``errors``: the error taxonomy.

Import convenience:
- from embedding_engine.encoders.sentence_embedder import SentenceEmbedder
- from embedding_engine.batching.queue import Queue
"""

__version__ = "0.1.0"
