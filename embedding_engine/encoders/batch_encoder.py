"""Batch encoding: tokenize, forward, pool, normalize, account.

Pooling is a plain mean over every sequence position, padding included, so a
sentence's vector depends on the longest sentence in its batch. Usage keeps
the historical accounting where ``prompt_tokens`` counts sequences rather than
tokens; consumers that bill on it should be aware.
"""

from dataclasses import dataclass
from typing import Sequence, Tuple

import structlog
import torch
from tokenizers import Tokenizer

from ..errors import ComputeError, TokenizationError
from .models import EmbedderModel

logger = structlog.get_logger("embedding_engine.batch_encoder")


@dataclass(frozen=True)
class Usage:
    """Token accounting attached to each batch result."""
    prompt_tokens: int
    total_tokens: int


def normalize_l2(embeddings: torch.Tensor) -> torch.Tensor:
    """Scale each row to unit Euclidean length.

    Rows with zero norm are returned unchanged (all zeros).
    """
    norms = embeddings.norm(p=2, dim=-1, keepdim=True)
    norms = torch.where(norms == 0, torch.ones_like(norms), norms)
    return embeddings / norms


def tokenize_batch(tokenizer: Tokenizer, sentences: Sequence[str]) -> list:
    """Tokenize with special tokens; padding comes from the tokenizer."""
    if isinstance(sentences, str):
        raise TokenizationError("Expected a sequence of sentences, got a single str")
    sentences = list(sentences)
    for index, sentence in enumerate(sentences):
        if not isinstance(sentence, str):
            raise TokenizationError(
                f"Sentence {index} is {type(sentence).__name__}, expected str"
            )
    try:
        return tokenizer.encode_batch(sentences, add_special_tokens=True)
    except Exception as exc:  # tokenizers raises bare ``Exception``
        raise TokenizationError(f"Failed to encode batch: {exc}") from exc


def encode_batch_with_usage(
    model: EmbedderModel,
    tokenizer: Tokenizer,
    sentences: Sequence[str],
    normalize: bool,
) -> Tuple[torch.Tensor, Usage]:
    """Embed ``sentences`` and report usage.

    Returns
    - ``[N, hidden]`` float tensor, row ``i`` belonging to ``sentences[i]``
    - ``Usage`` with ``prompt_tokens = N`` and
      ``total_tokens = N + padded_len``
    """
    encodings = tokenize_batch(tokenizer, sentences)
    prompt_tokens = len(encodings)

    if prompt_tokens == 0:
        return torch.empty((0, model.hidden_size), device=model.device), Usage(0, 0)

    try:
        token_ids = torch.stack([
            torch.tensor(encoding.ids, dtype=torch.long, device=model.device)
            for encoding in encodings
        ])

        logger.debug("Running inference on batch", shape=tuple(token_ids.shape))
        with torch.inference_mode():
            embeddings = model.forward(token_ids)
        logger.debug("Generated embeddings", shape=tuple(embeddings.shape))

        if embeddings.dim() != 3:
            raise ComputeError(
                f"Expected hidden states of rank 3, got shape {tuple(embeddings.shape)}"
            )

        # Mean over every position, padding included
        _n_sentences, out_tokens, _hidden_size = embeddings.shape
        embeddings = embeddings.sum(dim=1) / out_tokens

        if normalize:
            embeddings = normalize_l2(embeddings)
    except (RuntimeError, IndexError, ValueError) as exc:
        raise ComputeError(f"Inference failed: {exc}") from exc

    # Sequence count, not token count
    usage = Usage(
        prompt_tokens=prompt_tokens,
        total_tokens=prompt_tokens + out_tokens,
    )
    return embeddings, usage


def encode_batch(
    model: EmbedderModel,
    tokenizer: Tokenizer,
    sentences: Sequence[str],
    normalize: bool,
) -> torch.Tensor:
    """Embed ``sentences`` without usage accounting."""
    embeddings, _ = encode_batch_with_usage(model, tokenizer, sentences, normalize)
    return embeddings
