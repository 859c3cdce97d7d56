"""Direct, queue-less access to a model and its tokenizer.

``SentenceEmbedder`` is the library entrypoint for single-threaded callers
(scripts, notebooks, tests). Services that share a model across threads hand
it to a queue through ``into_handler``.
"""

from pathlib import Path
from typing import Optional, Sequence, Tuple, Union

import torch
from tokenizers import Tokenizer

from ..batching.device import DeviceLike
from ..handlers.embedding_handler import EmbeddingHandler
from .batch_encoder import Usage, encode_batch, encode_batch_with_usage
from .loader import (
    HubRepository,
    LocalRepository,
    ModelRepository,
    ensure_padding,
    load_model_and_tokenizer,
)
from .models import EmbedderModel, EmbedderType, get_model_class
from .presets import get_preset


class SentenceEmbedder:
    """A model and tokenizer pair with the batch encoding operations.

    The tokenizer gets padding enabled if it has none, since sentences of
    different lengths are encoded together.
    """

    def __init__(self, model: EmbedderModel, tokenizer: Tokenizer):
        self.model = model
        self.tokenizer = ensure_padding(tokenizer)

    @classmethod
    def from_repository(
        cls,
        repository: ModelRepository,
        embedder_type: Union[EmbedderType, str] = EmbedderType.BERT,
        device: Optional[DeviceLike] = None,
    ) -> "SentenceEmbedder":
        model, tokenizer = load_model_and_tokenizer(repository, embedder_type, device)
        return cls(model, tokenizer)

    @classmethod
    def from_repo(
        cls,
        repo_name: str,
        revision: str = "main",
        embedder_type: Union[EmbedderType, str] = EmbedderType.BERT,
        device: Optional[DeviceLike] = None,
        cache_dir: Optional[str] = None,
        token: Optional[str] = None,
    ) -> "SentenceEmbedder":
        """Load from a hub repository pinned to ``revision``."""
        repository = HubRepository(repo_name, revision, cache_dir=cache_dir, token=token)
        return cls.from_repository(repository, embedder_type, device)

    @classmethod
    def from_path(
        cls,
        path: Union[str, Path],
        embedder_type: Union[EmbedderType, str] = EmbedderType.BERT,
        device: Optional[DeviceLike] = None,
    ) -> "SentenceEmbedder":
        """Load from a local directory holding the three artifacts."""
        return cls.from_repository(LocalRepository(path), embedder_type, device)

    @classmethod
    def from_preset(
        cls,
        preset_name: str,
        device: Optional[DeviceLike] = None,
        cache_dir: Optional[str] = None,
        token: Optional[str] = None,
    ) -> "SentenceEmbedder":
        preset = get_preset(preset_name)
        return cls.from_repo(
            preset.repo_name, preset.revision, preset.embedder_type,
            device=device, cache_dir=cache_dir, token=token,
        )

    @classmethod
    def empty(
        cls,
        embedder_type: Union[EmbedderType, str],
        tokenizer: Tokenizer,
        device: Optional[DeviceLike] = None,
    ) -> "SentenceEmbedder":
        """Zero-weight embedder around ``tokenizer``, for warm-up and tests."""
        return cls(get_model_class(embedder_type).empty(device), tokenizer)

    @property
    def hidden_size(self) -> int:
        return self.model.hidden_size

    def encode_batch(self, sentences: Sequence[str], normalize: bool = True) -> torch.Tensor:
        return encode_batch(self.model, self.tokenizer, sentences, normalize)

    def encode_batch_with_usage(
        self, sentences: Sequence[str], normalize: bool = True
    ) -> Tuple[torch.Tensor, Usage]:
        return encode_batch_with_usage(self.model, self.tokenizer, sentences, normalize)

    def into_handler(self, model_name: str = "default", metrics=None) -> EmbeddingHandler:
        """Wrap this embedder's model and tokenizer for a queue.

        The embedder must not be used afterwards; the queue worker owns them.
        """
        return EmbeddingHandler(self.model, self.tokenizer, model_name=model_name, metrics=metrics)
