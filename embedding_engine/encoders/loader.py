"""Model loading from hub or local repositories.

A repository yields three artifacts: ``model.safetensors``, ``config.json``
and ``tokenizer.json``. The loader fetches each one, parses the config into
the requested variant's schema, memory-maps the weights at float32 on the
selected device and hands both to the variant's ``load``.

Each stage fails with its own error so callers know which artifact is at
fault: ``RepositoryError`` (missing/unreadable file), ``ConfigError`` (schema
mismatch) and ``WeightLoadError`` (tensor names/shapes).
"""

import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional, Tuple, Union

import structlog
import torch
from huggingface_hub import hf_hub_download
from huggingface_hub.errors import HfHubHTTPError, LocalEntryNotFoundError
from safetensors import SafetensorError, safe_open
from tokenizers import Tokenizer

from ..batching.device import DeviceLike, resolve_device
from ..errors import RepositoryError
from .models import EmbedderModel, EmbedderType, get_model_class

logger = structlog.get_logger("embedding_engine.loader")

WEIGHTS_FILE = "model.safetensors"
CONFIG_FILE = "config.json"
TOKENIZER_FILE = "tokenizer.json"

_MISSING_MESSAGES = {
    WEIGHTS_FILE: "Model repository is not available or doesn't contain `model.safetensors`.",
    CONFIG_FILE: "Model repository doesn't contain `config.json`.",
    TOKENIZER_FILE: "Model repository doesn't contain `tokenizer.json`.",
}


class ModelRepository(ABC):
    """A named, versioned source of model artifacts."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human readable identifier used in logs and errors."""
        pass

    @abstractmethod
    def get(self, filename: str) -> Path:
        """Return a local path to ``filename``.

        Raises ``RepositoryError`` naming the artifact when it is absent.
        """
        pass

    def _missing(self, filename: str) -> RepositoryError:
        message = _MISSING_MESSAGES.get(
            filename, f"Model repository doesn't contain `{filename}`."
        )
        return RepositoryError(f"{message} (repository: {self.name})", artifact=filename)


class HubRepository(ModelRepository):
    """Repository on the Hugging Face hub, pinned to a revision."""

    def __init__(
        self,
        repo_name: str,
        revision: str = "main",
        cache_dir: Optional[str] = None,
        token: Optional[str] = None,
    ):
        self.repo_name = repo_name
        self.revision = revision
        self.cache_dir = cache_dir
        self.token = token

    @property
    def name(self) -> str:
        return f"{self.repo_name}@{self.revision}"

    def get(self, filename: str) -> Path:
        try:
            path = hf_hub_download(
                repo_id=self.repo_name,
                filename=filename,
                revision=self.revision,
                cache_dir=self.cache_dir,
                token=self.token,
            )
        except (HfHubHTTPError, LocalEntryNotFoundError, OSError) as exc:
            raise self._missing(filename) from exc
        return Path(path)


class LocalRepository(ModelRepository):
    """Repository laid out as a plain directory."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    @property
    def name(self) -> str:
        return str(self.path)

    def get(self, filename: str) -> Path:
        candidate = self.path / filename
        if not candidate.is_file():
            raise self._missing(filename)
        return candidate


def load_tokenizer(path: Path) -> Tokenizer:
    """Read ``tokenizer.json`` and make sure batches are padded."""
    try:
        tokenizer = Tokenizer.from_file(str(path))
    except Exception as exc:  # tokenizers raises bare ``Exception``
        raise RepositoryError(
            f"Failed to read `{TOKENIZER_FILE}` from {path}: {exc}", artifact=TOKENIZER_FILE
        ) from exc

    return ensure_padding(tokenizer)


def ensure_padding(tokenizer: Tokenizer) -> Tokenizer:
    """Enable batch padding with ``[PAD]`` (or id 0) unless already configured.

    Batches are stacked into one matrix, so every row must share a length.
    """
    if tokenizer.padding is None:
        pad_token = "[PAD]"
        pad_id = tokenizer.token_to_id(pad_token)
        if pad_id is None:
            pad_id = 0
        tokenizer.enable_padding(pad_id=pad_id, pad_token=pad_token)
    return tokenizer


def load_weights(path: Path, device: torch.device) -> Dict[str, torch.Tensor]:
    """Memory-map a safetensors file and return float32 tensors on ``device``."""
    try:
        with safe_open(str(path), framework="pt", device=str(device)) as f:
            return {name: f.get_tensor(name).to(torch.float32) for name in f.keys()}
    except (SafetensorError, OSError) as exc:
        raise RepositoryError(
            f"Failed to read `{WEIGHTS_FILE}` from {path}: {exc}", artifact=WEIGHTS_FILE
        ) from exc


def load_model_and_tokenizer(
    repository: ModelRepository,
    embedder_type: Union[EmbedderType, str] = EmbedderType.BERT,
    device: Optional[DeviceLike] = None,
) -> Tuple[EmbedderModel, Tokenizer]:
    """Resolve a repository into a live ``(model, tokenizer)`` pair.

    Parameters
    - repository: Where the three artifacts come from
    - embedder_type: Architecture tag selecting config schema and module
    - device: Explicit device; defaults to the process-wide selection
    """
    start_time = time.time()
    model_class = get_model_class(embedder_type)
    device = resolve_device(device)

    try:
        weights_path = repository.get(WEIGHTS_FILE)
        config_path = repository.get(CONFIG_FILE)
        tokenizer_path = repository.get(TOKENIZER_FILE)

        tokenizer = load_tokenizer(tokenizer_path)
        try:
            config_bytes = config_path.read_bytes()
        except OSError as exc:
            raise RepositoryError(
                f"Failed to read `{CONFIG_FILE}` from {config_path}: {exc}", artifact=CONFIG_FILE
            ) from exc
        config = model_class.parse_config(config_bytes)

        weights = load_weights(weights_path, device)
        model = model_class.load(weights, config, device)

    except Exception as e:
        logger.error(
            "Failed to load model",
            repository=repository.name,
            embedder_type=model_class.variant.value,
            error=str(e),
        )
        raise

    logger.info(
        "Model loaded successfully",
        repository=repository.name,
        embedder_type=model_class.variant.value,
        device=str(device),
        hidden_size=model.hidden_size,
        duration_ms=(time.time() - start_time) * 1000,
    )
    return model, tokenizer
