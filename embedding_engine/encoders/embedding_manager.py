"""Embedding manager owning one request queue per loaded model.

Models are loaded through the repository loader, wrapped in an
``EmbeddingHandler`` and moved onto a dedicated ``Queue``. Async callers
submit sentences by model name and await the queue's reply; the manager never
touches a model after handing it to its queue.
"""

import asyncio
import time
from typing import Any, Dict, List, Optional, Sequence, Union

import structlog

from libs.common.config import EmbeddingConfig
from ..runtime.metrics import MetricsCollector
from ..batching.device import DeviceLike, get_device, get_gpu_detector
from ..batching.queue import Queue
from ..errors import ConfigError, ModelNotFoundError, TokenizationError
from ..handlers.embedding_handler import EmbedRequest, EmbedResponse
from .models import EmbedderType
from .presets import get_preset
from .sentence_embedder import SentenceEmbedder

logger = structlog.get_logger("embedding_engine.embedding_manager")

DEFAULT_ALIAS = "default"


class EmbeddingManager:
    """Manages model queues and embedding generation.

    Notes
    - Each model name maps to exactly one running queue
    - ``default`` is an alias for the model configured in ``EmbeddingConfig``
    - Metadata (dimension, variant, revision) is kept in ``model_info``
    """

    def __init__(
        self,
        config: EmbeddingConfig,
        metrics: Optional[MetricsCollector] = None,
        device: Optional[DeviceLike] = None,
    ):
        self.config = config
        self.metrics = metrics
        # Falls back to the process-wide device; ``ML_GPU_PREFERENCE`` only
        # decides it if nothing selected one yet
        self.device = device if device is not None else get_device(config.ml_gpu_preference)
        self.queues: Dict[str, Queue[EmbedRequest, EmbedResponse]] = {}
        self.model_info: Dict[str, Dict[str, Any]] = {}
        self.aliases: Dict[str, str] = {}

    async def initialize(self):
        """Load the configured default model and alias it as ``default``."""
        try:
            await self.load_model(
                self.config.ml_embedding_model,
                revision=self.config.ml_embedding_revision,
                embedder_type=self.config.ml_embedding_type,
                alias=DEFAULT_ALIAS,
            )
            logger.info("Embedding manager initialized successfully")
        except Exception as e:
            logger.error("Failed to initialize embedding manager", error=str(e))
            raise

    async def load_model(
        self,
        model_name: str,
        revision: Optional[str] = None,
        embedder_type: Optional[Union[EmbedderType, str]] = None,
        alias: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Load ``model_name`` from the hub and start its queue.

        Preset names (e.g. ``all-MiniLM-L6-v2``) resolve to their pinned
        repository, revision and variant unless overridden.
        """
        repo_name = model_name
        try:
            preset = get_preset(model_name)
        except ConfigError:
            preset = None
        if preset is not None:
            repo_name = preset.repo_name
            revision = revision or preset.revision
            embedder_type = embedder_type or preset.embedder_type
        revision = revision or "main"
        embedder_type = embedder_type or EmbedderType.BERT

        try:
            embedder = await asyncio.to_thread(
                SentenceEmbedder.from_repo,
                repo_name,
                revision,
                embedder_type,
                self.device,
                self.config.ml_hf_cache_dir,
                self.config.ml_hf_token,
            )
        except Exception as e:
            logger.error("Failed to load model", model_name=model_name, revision=revision, error=str(e))
            raise

        info = self.register_embedder(model_name, embedder, revision=revision, source=repo_name)
        if alias:
            self.aliases[alias] = model_name
        return info

    def register_embedder(
        self,
        model_name: str,
        embedder: SentenceEmbedder,
        revision: Optional[str] = None,
        source: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Move ``embedder`` onto a new queue served under ``model_name``.

        A queue already serving that name is shut down and replaced.
        """
        previous = self.queues.pop(model_name, None)
        if previous is not None:
            logger.info("Replacing model queue", model_name=model_name)
            previous.shutdown()

        info = {
            "name": model_name,
            "source": source or model_name,
            "revision": revision,
            "embedder_type": embedder.model.variant.value,
            "dimension": embedder.hidden_size,
            "device": str(embedder.model.device),
            "loaded_at": time.time(),
        }

        handler = embedder.into_handler(model_name, self.metrics)
        self.queues[model_name] = Queue(handler, name=f"queue-{model_name}", metrics=self.metrics)
        self.model_info[model_name] = info
        self._report_models_loaded()

        logger.info("Loaded embedding model", **info)
        return dict(info)

    async def generate_embeddings(
        self,
        sentences: Sequence[str],
        model_name: str = DEFAULT_ALIAS,
        normalize: Optional[bool] = None,
    ) -> EmbedResponse:
        """Embed ``sentences`` on the named model's queue.

        ``normalize`` falls back to ``ML_EMBEDDING_NORMALIZE``.
        """
        queue = self._get_queue(model_name)
        if isinstance(sentences, str):
            raise TokenizationError("Expected a sequence of sentences, got a single str")
        if normalize is None:
            normalize = self.config.ml_embedding_normalize

        request = EmbedRequest(sentences=list(sentences), normalize=normalize)
        try:
            response = await queue.submit_async(request)
        except Exception as e:
            logger.error(
                "Failed to generate embeddings",
                model_name=model_name,
                count=len(request.sentences),
                error=str(e),
            )
            raise

        logger.info(
            "Embeddings generated",
            model_name=model_name,
            count=len(response.embeddings),
            prompt_tokens=response.usage.prompt_tokens,
            total_tokens=response.usage.total_tokens,
        )
        return response

    def _resolve(self, model_name: str) -> str:
        return self.aliases.get(model_name, model_name)

    def _get_queue(self, model_name: str) -> Queue[EmbedRequest, EmbedResponse]:
        name = self._resolve(model_name)
        if name not in self.queues:
            raise ModelNotFoundError(f"Model {model_name} not found")
        return self.queues[name]

    async def list_models(self) -> List[Dict[str, Any]]:
        """List all served models with their queue state."""
        return [
            {**info, "running": self.queues[name].is_running}
            for name, info in self.model_info.items()
        ]

    async def get_model_info(self, model_name: str) -> Optional[Dict[str, Any]]:
        """Get information about a specific model, or ``None``."""
        name = self._resolve(model_name)
        if name not in self.model_info:
            return None
        queue = self.queues[name]
        return {
            **self.model_info[name],
            "running": queue.is_running,
            "pending": queue.pending,
        }

    async def unload_model(self, model_name: str) -> bool:
        """Stop a model's queue after its pending entries; ``False`` if unknown."""
        name = self._resolve(model_name)
        queue = self.queues.pop(name, None)
        if queue is None:
            return False
        self.model_info.pop(name, None)
        self.aliases = {alias: target for alias, target in self.aliases.items() if target != name}
        queue.shutdown()
        await asyncio.to_thread(queue.join, self.config.ml_queue_shutdown_timeout)
        get_gpu_detector().clear_cache(self.device)
        self._report_models_loaded()
        logger.info("Unloaded embedding model", model_name=name)
        return True

    async def health_check(self) -> bool:
        """Healthy when at least one model is served and every queue runs."""
        if not self.queues:
            return False
        unhealthy = [name for name, queue in self.queues.items() if not queue.is_running]
        if unhealthy:
            logger.warning("Model queues not running", models=unhealthy)
            return False
        return True

    async def cleanup(self):
        """Stop every queue, letting already submitted entries finish."""
        queues = list(self.queues.items())
        self.queues.clear()
        self.model_info.clear()
        self.aliases.clear()

        for _, queue in queues:
            queue.shutdown()
        for name, queue in queues:
            stopped = await asyncio.to_thread(queue.join, self.config.ml_queue_shutdown_timeout)
            if not stopped:
                logger.warning("Queue did not stop in time", model_name=name)

        get_gpu_detector().clear_cache(self.device)
        self._report_models_loaded()
        logger.info("Embedding manager cleanup completed", queues=len(queues))

    def _report_models_loaded(self) -> None:
        if self.metrics:
            self.metrics.set_models_loaded(len(self.queues))
