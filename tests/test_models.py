"""Tests for encoder model variants."""

import json

import pytest
import torch

from embedding_engine.encoders.models import (
    BertEmbedder,
    DistilBertEmbedder,
    EmbedderType,
    get_model_class,
)
from embedding_engine.errors import ConfigError, WeightLoadError

from .conftest import HIDDEN_SIZE, tiny_bert_config, tiny_distilbert_config


@pytest.mark.parametrize("embedder_type", list(EmbedderType))
def test_empty_model_default_preset_is_forward_callable(embedder_type):
    """Zero-weight construction works for every variant and yields no NaNs."""
    model = get_model_class(embedder_type).empty(device="cpu")
    assert model.hidden_size == 768

    token_ids = torch.tensor([[2, 5, 3], [2, 6, 3]], dtype=torch.long)
    with torch.inference_mode():
        hidden = model.forward(token_ids)

    assert hidden.shape == (2, 3, 768)
    assert not torch.isnan(hidden).any()
    assert all(not p.any() for p in model.module.parameters())


def test_empty_model_accepts_custom_config():
    """Test empty models honour a custom config."""
    model = DistilBertEmbedder.empty(device="cpu", config=tiny_distilbert_config())
    assert model.hidden_size == HIDDEN_SIZE
    assert model.variant == EmbedderType.DISTIL_BERT


def test_bert_forward_supplies_zero_token_type_ids(bert_module):
    """Test BERT forward passes zero token type ids."""
    weights = bert_module.state_dict()
    model = BertEmbedder.load(weights, tiny_bert_config(), device="cpu")
    token_ids = torch.tensor([[2, 4, 5, 7, 3]], dtype=torch.long)

    with torch.inference_mode():
        hidden = model.forward(token_ids)
        expected = bert_module(
            input_ids=token_ids, token_type_ids=torch.zeros_like(token_ids)
        ).last_hidden_state

    assert hidden.shape == (1, 5, HIDDEN_SIZE)
    assert torch.allclose(hidden, expected, atol=1e-6)


def test_distilbert_forward_takes_ids_only(distilbert_module):
    """Test DistilBERT forward takes input ids only."""
    model = DistilBertEmbedder.load(distilbert_module.state_dict(), tiny_distilbert_config(), device="cpu")
    token_ids = torch.tensor([[2, 6, 3]], dtype=torch.long)

    with torch.inference_mode():
        hidden = model.forward(token_ids)
        expected = distilbert_module(input_ids=token_ids).last_hidden_state

    assert torch.allclose(hidden, expected, atol=1e-6)


def test_load_strips_architecture_prefix(bert_module):
    """Test loading strips the architecture prefix."""
    weights = {f"bert.{name}": tensor for name, tensor in bert_module.state_dict().items()}
    model = BertEmbedder.load(weights, tiny_bert_config(), device="cpu")
    assert model.hidden_size == HIDDEN_SIZE


def test_load_ignores_unknown_tensors(bert_module):
    """Test loading ignores unknown tensors."""
    weights = dict(bert_module.state_dict())
    weights["pooler.dense.weight"] = torch.zeros(HIDDEN_SIZE, HIDDEN_SIZE)
    weights["cls.predictions.bias"] = torch.zeros(4)

    model = BertEmbedder.load(weights, tiny_bert_config(), device="cpu")
    assert model.hidden_size == HIDDEN_SIZE


def test_load_missing_tensor_raises_weight_load_error(bert_module):
    """Test a missing tensor raises WeightLoadError."""
    weights = dict(bert_module.state_dict())
    del weights["embeddings.word_embeddings.weight"]

    with pytest.raises(WeightLoadError, match="embeddings.word_embeddings.weight"):
        BertEmbedder.load(weights, tiny_bert_config(), device="cpu")


def test_load_shape_mismatch_raises_weight_load_error(bert_module):
    """Test a shape mismatch raises WeightLoadError."""
    config = tiny_bert_config()
    config.intermediate_size = 128

    with pytest.raises(WeightLoadError):
        BertEmbedder.load(bert_module.state_dict(), config, device="cpu")


def test_parse_config_accepts_matching_schema():
    """Test parsing a matching config."""
    raw = tiny_bert_config().to_json_string()
    config = BertEmbedder.parse_config(raw)
    assert config.hidden_size == HIDDEN_SIZE
    assert config.num_hidden_layers == 2


def test_parse_config_rejects_other_architecture():
    """Test parsing rejects another architecture."""
    raw = tiny_bert_config().to_json_string()
    with pytest.raises(ConfigError, match="DistilBertConfigSchema"):
        DistilBertEmbedder.parse_config(raw)


def test_parse_config_rejects_invalid_json():
    """Test parsing rejects invalid JSON."""
    with pytest.raises(ConfigError):
        BertEmbedder.parse_config(b"{not json")


def test_parse_config_rejects_wrong_field_types():
    """Test parsing rejects wrongly typed fields."""
    raw = json.loads(tiny_bert_config().to_json_string())
    raw["hidden_size"] = "wide"
    with pytest.raises(ConfigError):
        BertEmbedder.parse_config(raw)


def test_get_model_class_resolves_tags():
    """Test variant tags resolve to model classes."""
    assert get_model_class("bert") is BertEmbedder
    assert get_model_class(EmbedderType.DISTIL_BERT) is DistilBertEmbedder


def test_get_model_class_unknown_tag():
    """Test an unknown variant tag raises ConfigError."""
    with pytest.raises(ConfigError, match="Unsupported embedder type"):
        get_model_class("mpnet")
