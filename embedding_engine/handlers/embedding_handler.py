"""Embedding request handler wrapping a model, its tokenizer and the batch encoder."""

import time
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np
import structlog
from tokenizers import Tokenizer

from ..runtime.metrics import MetricsCollector
from ..encoders.batch_encoder import Usage, encode_batch_with_usage
from ..encoders.loader import ensure_padding
from ..encoders.models import EmbedderModel
from .base import RequestHandler

logger = structlog.get_logger("embedding_engine.embedding_handler")


@dataclass
class EmbedRequest:
    """Sentences to embed, in order."""
    sentences: List[str]
    normalize: bool = True


@dataclass
class EmbedResponse:
    """Embeddings aligned with the request's sentences plus batch usage."""
    embeddings: List[List[float]]
    usage: Usage
    model_name: Optional[str] = None
    latency_ms: float = field(default=0.0, compare=False)

    @property
    def dimension(self) -> int:
        return len(self.embeddings[0]) if self.embeddings else 0

    def as_array(self) -> np.ndarray:
        """Embeddings as a ``float32`` matrix of shape ``[N, dimension]``."""
        return np.asarray(self.embeddings, dtype=np.float32).reshape(len(self.embeddings), self.dimension)


class EmbeddingHandler(RequestHandler[EmbedRequest, EmbedResponse]):
    """Turns ``EmbedRequest`` into ``EmbedResponse`` with one encoder pass.

    Errors from tokenization or compute propagate unchanged; inside a queue
    that stops the worker.
    """

    def __init__(
        self,
        model: EmbedderModel,
        tokenizer: Tokenizer,
        model_name: str = "default",
        metrics: Optional[MetricsCollector] = None,
    ):
        self.model = model
        self.tokenizer = ensure_padding(tokenizer)
        self.model_name = model_name
        self.metrics = metrics

    def handle(self, request: EmbedRequest) -> EmbedResponse:
        start_time = time.perf_counter()
        try:
            embeddings, usage = encode_batch_with_usage(
                self.model, self.tokenizer, request.sentences, request.normalize
            )
        except Exception as e:
            if self.metrics:
                self.metrics.record_embedding(
                    self.model_name, len(request.sentences), time.perf_counter() - start_time,
                    status="error"
                )
            logger.error(
                "Failed to generate embeddings",
                model_name=self.model_name,
                count=len(request.sentences),
                error=str(e),
            )
            raise

        duration = time.perf_counter() - start_time
        if self.metrics:
            self.metrics.record_embedding(self.model_name, len(request.sentences), duration)
            self.metrics.record_usage(self.model_name, usage.prompt_tokens, usage.total_tokens)

        logger.debug(
            "Embeddings generated",
            model_name=self.model_name,
            count=len(request.sentences),
            normalize=request.normalize,
            duration_ms=duration * 1000,
        )
        return EmbedResponse(
            embeddings=embeddings.cpu().tolist(),
            usage=usage,
            model_name=self.model_name,
            latency_ms=duration * 1000,
        )
