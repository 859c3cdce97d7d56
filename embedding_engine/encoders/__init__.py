"""Embedding encoders and managers.

- ``models``: ``EmbedderModel`` variants behind one forward contract.
- ``loader``: repositories and ``load_model_and_tokenizer``.
- ``batch_encoder``: tokenize, forward, pool, normalize, usage.
- ``sentence_embedder``: direct access without a queue.
- ``embedding_manager``: one queue per served model.

Keep heavy ML imports within implementation modules to minimize import
overhead for unrelated paths.
"""
