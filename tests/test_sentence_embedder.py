"""Tests for the queue-less embedder facade and model presets."""

import numpy as np
import pytest
import torch

from embedding_engine.encoders.batch_encoder import Usage
from embedding_engine.encoders.models import EmbedderType
from embedding_engine.encoders.presets import get_preset, list_presets
from embedding_engine.encoders.sentence_embedder import SentenceEmbedder
from embedding_engine.errors import ConfigError
from embedding_engine.handlers.embedding_handler import EmbeddingHandler, EmbedRequest, EmbedResponse

from .conftest import HIDDEN_SIZE, build_tokenizer


def test_from_path_encodes(bert_embedder):
    """Test an embedder loaded from a path encodes."""
    embeddings = bert_embedder.encode_batch(["the cat sits outside", "i love pasta"])

    assert bert_embedder.hidden_size == HIDDEN_SIZE
    assert embeddings.shape == (2, HIDDEN_SIZE)
    assert torch.allclose(embeddings.norm(dim=1), torch.ones(2), atol=1e-5)


def test_encode_with_usage(bert_embedder):
    """Test encoding also reports usage."""
    _, usage = bert_embedder.encode_batch_with_usage(["cat", "dog", "a man"], normalize=False)
    assert usage == Usage(prompt_tokens=3, total_tokens=3 + 4)


def test_empty_embedder_uses_default_preset(tokenizer):
    """Test the empty embedder builds a full-size model."""
    embedder = SentenceEmbedder.empty(EmbedderType.DISTIL_BERT, tokenizer, device="cpu")

    embeddings = embedder.encode_batch(["cat"])
    assert embeddings.shape == (1, 768)
    assert not torch.isnan(embeddings).any()


def test_into_handler_produces_responses(bert_embedder):
    """Test the handler built from an embedder answers requests."""
    expected = bert_embedder.encode_batch(["cat", "dog"], normalize=True)
    handler = bert_embedder.into_handler(model_name="tiny")

    response = handler.handle(EmbedRequest(sentences=["cat", "dog"]))

    assert isinstance(handler, EmbeddingHandler)
    assert isinstance(response, EmbedResponse)
    assert response.model_name == "tiny"
    assert response.dimension == HIDDEN_SIZE
    assert response.usage == Usage(prompt_tokens=2, total_tokens=5)
    np.testing.assert_allclose(response.as_array(), expected.numpy(), atol=1e-6)


def test_empty_embedder_pads_mixed_lengths():
    """Tokenizers without padding still encode sentences of different lengths."""
    embedder = SentenceEmbedder.empty(EmbedderType.BERT, build_tokenizer(padding=False), device="cpu")

    embeddings = embedder.encode_batch(["cat", "the cat sits outside"])

    assert embedder.tokenizer.padding is not None
    assert embeddings.shape == (2, 768)
    assert not torch.isnan(embeddings).any()


def test_handler_pads_mixed_lengths(bert_pair):
    """Handlers built directly also get a padding tokenizer."""
    model, _ = bert_pair
    handler = EmbeddingHandler(model, build_tokenizer(padding=False))

    response = handler.handle(EmbedRequest(sentences=["cat", "a man is playing guitar"]))

    assert len(response.embeddings) == 2
    assert response.usage == Usage(prompt_tokens=2, total_tokens=2 + 7)


def test_empty_response_array_shape():
    """Test an empty response converts to a zero-row array."""
    response = EmbedResponse(embeddings=[], usage=Usage(0, 0))
    assert response.dimension == 0
    assert response.as_array().shape == (0, 0)


def test_from_preset_resolves_pinned_revision(monkeypatch):
    """Test presets load their pinned revision."""
    calls = []

    def fake_from_repo(cls, repo_name, revision, embedder_type, **kwargs):
        calls.append((repo_name, revision, embedder_type))
        return "embedder"

    monkeypatch.setattr(SentenceEmbedder, "from_repo", classmethod(fake_from_repo))

    assert SentenceEmbedder.from_preset("all-MiniLM-L6-v2") == "embedder"
    assert calls == [("sentence-transformers/all-MiniLM-L6-v2", "refs/pr/21", EmbedderType.BERT)]


def test_get_preset_by_short_and_repo_name():
    """Test presets resolve by short and repository name."""
    assert get_preset("all-MiniLM-L6-v2").revision == "refs/pr/21"
    preset = get_preset("sentence-transformers/multi-qa-distilbert-cos-v1")
    assert preset.embedder_type == EmbedderType.DISTIL_BERT
    assert len(list_presets()) == 4


def test_unknown_preset():
    """Test an unknown preset raises ConfigError."""
    with pytest.raises(ConfigError, match="Unknown model preset"):
        get_preset("no-such-model")


@pytest.mark.integration
def test_all_minilm_from_hub():
    """Downloads the pinned all-MiniLM-L6-v2 revision."""
    embedder = SentenceEmbedder.from_preset("all-MiniLM-L6-v2", device="cpu")
    sentences = [
        "The cat sits outside",
        "A man is playing guitar",
        "I love pasta",
        "The new movie is awesome",
    ]

    embeddings, usage = embedder.encode_batch_with_usage(sentences, normalize=True)

    assert embeddings.shape == (4, 384)
    assert usage.prompt_tokens == 4
    assert torch.allclose(embeddings.norm(dim=1), torch.ones(4), atol=1e-4)
    similarity = embeddings @ embeddings.T
    assert similarity[0, 0] > similarity[0, 2]
