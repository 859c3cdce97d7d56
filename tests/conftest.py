"""Shared fixtures: tiny on-disk model repositories and tokenizers."""

from pathlib import Path

import pytest
import torch
from safetensors.torch import save_file
from tokenizers import Tokenizer
from tokenizers.models import WordLevel
from tokenizers.normalizers import Lowercase
from tokenizers.pre_tokenizers import Whitespace
from tokenizers.processors import TemplateProcessing
from transformers import BertConfig, BertModel, DistilBertConfig, DistilBertModel

from embedding_engine.encoders.loader import load_model_and_tokenizer, LocalRepository
from embedding_engine.encoders.models import EmbedderType
from embedding_engine.encoders.sentence_embedder import SentenceEmbedder

VOCAB = [
    "[PAD]", "[UNK]", "[CLS]", "[SEP]",
    "the", "cat", "dog", "sits", "outside", "a", "man", "is", "playing",
    "guitar", "i", "love", "pasta", "new", "movie", "awesome",
]

HIDDEN_SIZE = 32


def build_tokenizer(padding: bool = True) -> Tokenizer:
    """Word-level tokenizer adding ``[CLS]``/``[SEP]`` like BERT's."""
    vocab = {token: index for index, token in enumerate(VOCAB)}
    tokenizer = Tokenizer(WordLevel(vocab, unk_token="[UNK]"))
    tokenizer.normalizer = Lowercase()
    tokenizer.pre_tokenizer = Whitespace()
    tokenizer.post_processor = TemplateProcessing(
        single="[CLS] $A [SEP]",
        pair="[CLS] $A [SEP] $B:1 [SEP]:1",
        special_tokens=[("[CLS]", vocab["[CLS]"]), ("[SEP]", vocab["[SEP]"])],
    )
    if padding:
        tokenizer.enable_padding(pad_id=vocab["[PAD]"], pad_token="[PAD]")
    return tokenizer


def tiny_bert_config() -> BertConfig:
    return BertConfig(
        vocab_size=len(VOCAB),
        hidden_size=HIDDEN_SIZE,
        num_hidden_layers=2,
        num_attention_heads=4,
        intermediate_size=64,
        max_position_embeddings=64,
    )


def tiny_distilbert_config() -> DistilBertConfig:
    return DistilBertConfig(
        vocab_size=len(VOCAB),
        dim=HIDDEN_SIZE,
        n_layers=2,
        n_heads=4,
        hidden_dim=64,
        max_position_embeddings=64,
    )


def build_module(embedder_type: EmbedderType) -> torch.nn.Module:
    torch.manual_seed(0)
    if embedder_type == EmbedderType.BERT:
        module = BertModel(tiny_bert_config(), add_pooling_layer=False)
    else:
        module = DistilBertModel(tiny_distilbert_config())
    return module.eval()


def write_repository(
    path: Path,
    module: torch.nn.Module,
    prefix: str = "",
    tokenizer: Tokenizer = None,
) -> Path:
    """Write ``model.safetensors``, ``config.json`` and ``tokenizer.json``."""
    path.mkdir(parents=True, exist_ok=True)
    weights = {f"{prefix}{name}": tensor.detach().clone().contiguous()
               for name, tensor in module.state_dict().items()}
    save_file(weights, str(path / "model.safetensors"))
    (path / "config.json").write_text(module.config.to_json_string(use_diff=False))
    (tokenizer or build_tokenizer()).save(str(path / "tokenizer.json"))
    return path


@pytest.fixture
def tokenizer():
    return build_tokenizer()


@pytest.fixture
def bert_module():
    return build_module(EmbedderType.BERT)


@pytest.fixture
def distilbert_module():
    return build_module(EmbedderType.DISTIL_BERT)


@pytest.fixture
def bert_repo(tmp_path, bert_module):
    return write_repository(tmp_path / "tiny-bert", bert_module)


@pytest.fixture
def distilbert_repo(tmp_path, distilbert_module):
    return write_repository(tmp_path / "tiny-distilbert", distilbert_module)


@pytest.fixture
def bert_pair(bert_repo):
    return load_model_and_tokenizer(LocalRepository(bert_repo), EmbedderType.BERT, device="cpu")


@pytest.fixture
def bert_embedder(bert_repo):
    return SentenceEmbedder.from_path(bert_repo, EmbedderType.BERT, device="cpu")
