"""Encoder model variants behind one forward-pass contract.

Every supported architecture is wrapped in an ``EmbedderModel`` exposing
``forward(token_ids) -> hidden_states``. Architecture-specific auxiliary
inputs (BERT's segment ids, for instance) are supplied inside the variant so
the batch encoder and the queue never see the difference.

Adding a family
- Subclass ``EmbedderModel`` with a config schema, module builder and forward
- Add a tag to ``EmbedderType`` and register the class in ``MODEL_REGISTRY``
"""

import json
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, ClassVar, Dict, Mapping, Optional, Tuple, Type, Union

import structlog
import torch
from pydantic import BaseModel, ConfigDict, ValidationError
from transformers import BertConfig, BertModel, DistilBertConfig, DistilBertModel, PretrainedConfig

from ..batching.device import DeviceLike, resolve_device
from ..errors import ConfigError, WeightLoadError

logger = structlog.get_logger("embedding_engine.models")


class EmbedderType(str, Enum):
    """Supported encoder architectures."""
    BERT = "bert"
    DISTIL_BERT = "distilbert"


class BertConfigSchema(BaseModel):
    """Fields a BERT ``config.json`` must provide."""

    model_config = ConfigDict(extra="allow")

    vocab_size: int
    hidden_size: int
    num_hidden_layers: int
    num_attention_heads: int
    intermediate_size: int
    hidden_act: str = "gelu"
    hidden_dropout_prob: float = 0.1
    attention_probs_dropout_prob: float = 0.1
    max_position_embeddings: int = 512
    type_vocab_size: int = 2
    layer_norm_eps: float = 1e-12
    pad_token_id: int = 0
    position_embedding_type: str = "absolute"


class DistilBertConfigSchema(BaseModel):
    """Fields a DistilBERT ``config.json`` must provide."""

    model_config = ConfigDict(extra="allow")

    vocab_size: int
    dim: int
    n_layers: int
    n_heads: int
    hidden_dim: int
    activation: str = "gelu"
    dropout: float = 0.1
    attention_dropout: float = 0.1
    max_position_embeddings: int = 512
    sinusoidal_pos_embds: bool = False
    pad_token_id: int = 0


class EmbedderModel(ABC):
    """A loaded encoder placed on a device and set to eval mode.

    Instances are not thread-safe. They are meant to be owned by exactly one
    worker (see ``embedding_engine.batching.queue``).
    """

    variant: ClassVar[EmbedderType]
    config_schema: ClassVar[Type[BaseModel]]
    config_class: ClassVar[Type[PretrainedConfig]]
    # Checkpoints exported from task heads prefix the encoder's tensors
    weight_prefixes: ClassVar[Tuple[str, ...]] = ()

    def __init__(self, module: torch.nn.Module, device: Optional[DeviceLike] = None):
        self.device = resolve_device(device)
        self.module = module.to(self.device).eval()

    @property
    def config(self) -> PretrainedConfig:
        return self.module.config

    @property
    def hidden_size(self) -> int:
        return self.module.config.hidden_size

    @classmethod
    @abstractmethod
    def build_module(cls, config: PretrainedConfig) -> torch.nn.Module:
        """Instantiate the architecture's module from its config."""
        pass

    @classmethod
    @abstractmethod
    def default_config(cls) -> PretrainedConfig:
        """Preset used by ``empty``."""
        pass

    @abstractmethod
    def forward(self, token_ids: torch.Tensor) -> torch.Tensor:
        """Run the encoder.

        Parameters
        - token_ids: ``long`` tensor of shape ``[batch, seq_len]``

        Returns
        - Hidden states of shape ``[batch, seq_len, hidden]``
        """
        pass

    @classmethod
    def parse_config(cls, raw: Union[str, bytes, Mapping[str, Any]]) -> PretrainedConfig:
        """Parse ``config.json`` contents into this variant's config object."""
        try:
            data = json.loads(raw) if isinstance(raw, (str, bytes)) else dict(raw)
            schema = cls.config_schema.model_validate(data)
        except (json.JSONDecodeError, ValidationError, TypeError, ValueError) as exc:
            raise ConfigError(
                f"Failed to deserialize config.json as {cls.config_schema.__name__}. "
                f"Make sure the repository holds a '{cls.variant.value}' model."
            ) from exc
        return cls.config_class.from_dict(schema.model_dump())

    @classmethod
    def load(
        cls,
        weights: Mapping[str, torch.Tensor],
        config: PretrainedConfig,
        device: Optional[DeviceLike] = None,
    ) -> "EmbedderModel":
        """Build the module from ``config`` and bind ``weights`` to it.

        Tensors unknown to the architecture (pooler or task heads) are ignored.
        Missing tensors and shape mismatches raise ``WeightLoadError``.
        """
        module = cls.build_module(config)
        state_dict = cls._strip_prefixes(weights)

        try:
            result = module.load_state_dict(state_dict, strict=False, assign=True)
        except RuntimeError as exc:
            raise WeightLoadError(
                f"Weights do not match the {cls.variant.value} config: {exc}"
            ) from exc

        if result.missing_keys:
            missing = sorted(result.missing_keys)
            raise WeightLoadError(
                f"Weights are missing {len(missing)} tensor(s) required by the "
                f"{cls.variant.value} config, e.g. {', '.join(missing[:5])}"
            )
        if result.unexpected_keys:
            logger.debug(
                "Ignoring tensors unknown to the architecture",
                variant=cls.variant.value,
                tensors=sorted(result.unexpected_keys),
            )

        return cls(module, device)

    @classmethod
    def empty(
        cls,
        device: Optional[DeviceLike] = None,
        config: Optional[PretrainedConfig] = None,
    ) -> "EmbedderModel":
        """Structurally valid model with every parameter set to zero.

        Useful for warm-up and tests. ``config`` defaults to the variant's
        base preset.
        """
        module = cls.build_module(config or cls.default_config())
        with torch.no_grad():
            for parameter in module.parameters():
                parameter.zero_()
        return cls(module, device)

    @classmethod
    def _strip_prefixes(cls, weights: Mapping[str, torch.Tensor]) -> Dict[str, torch.Tensor]:
        state_dict = {}
        for name, tensor in weights.items():
            for prefix in cls.weight_prefixes:
                if name.startswith(prefix):
                    name = name[len(prefix):]
                    break
            state_dict[name] = tensor
        return state_dict


class BertEmbedder(EmbedderModel):
    """BERT family (MiniLM, BGE, E5 and other BERT-shaped checkpoints)."""

    variant = EmbedderType.BERT
    config_schema = BertConfigSchema
    config_class = BertConfig
    weight_prefixes = ("bert.",)

    @classmethod
    def build_module(cls, config: PretrainedConfig) -> torch.nn.Module:
        return BertModel(config, add_pooling_layer=False)

    @classmethod
    def default_config(cls) -> PretrainedConfig:
        # bert-base: hidden 768, 12 layers, 12 heads
        return BertConfig()

    def forward(self, token_ids: torch.Tensor) -> torch.Tensor:
        token_type_ids = torch.zeros_like(token_ids)
        output = self.module(input_ids=token_ids, token_type_ids=token_type_ids)
        return output.last_hidden_state


class DistilBertEmbedder(EmbedderModel):
    """DistilBERT family; takes token ids only."""

    variant = EmbedderType.DISTIL_BERT
    config_schema = DistilBertConfigSchema
    config_class = DistilBertConfig
    weight_prefixes = ("distilbert.",)

    @classmethod
    def build_module(cls, config: PretrainedConfig) -> torch.nn.Module:
        return DistilBertModel(config)

    @classmethod
    def default_config(cls) -> PretrainedConfig:
        # distilbert-base: dim 768, 6 layers, 12 heads
        return DistilBertConfig()

    def forward(self, token_ids: torch.Tensor) -> torch.Tensor:
        return self.module(input_ids=token_ids).last_hidden_state


MODEL_REGISTRY: Dict[EmbedderType, Type[EmbedderModel]] = {
    EmbedderType.BERT: BertEmbedder,
    EmbedderType.DISTIL_BERT: DistilBertEmbedder,
}


def get_model_class(embedder_type: Union[EmbedderType, str]) -> Type[EmbedderModel]:
    """Resolve a variant tag to its ``EmbedderModel`` class."""
    try:
        return MODEL_REGISTRY[EmbedderType(embedder_type)]
    except (ValueError, KeyError) as exc:
        supported = ", ".join(t.value for t in EmbedderType)
        raise ConfigError(
            f"Unsupported embedder type '{embedder_type}'. Supported: {supported}"
        ) from exc
