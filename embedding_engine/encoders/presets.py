"""Named model presets pinned to a repository revision and architecture."""

from dataclasses import dataclass
from typing import Dict, List

from ..errors import ConfigError
from .models import EmbedderType


@dataclass(frozen=True)
class ModelPreset:
    name: str
    repo_name: str
    revision: str
    embedder_type: EmbedderType


PRESETS: Dict[str, ModelPreset] = {
    preset.name: preset
    for preset in (
        ModelPreset(
            "all-MiniLM-L6-v2", "sentence-transformers/all-MiniLM-L6-v2", "refs/pr/21", EmbedderType.BERT
        ),
        ModelPreset(
            "all-MiniLM-L12-v2", "sentence-transformers/all-MiniLM-L12-v2", "main", EmbedderType.BERT
        ),
        ModelPreset("bge-small-en-v1.5", "BAAI/bge-small-en-v1.5", "main", EmbedderType.BERT),
        ModelPreset(
            "multi-qa-distilbert-cos-v1",
            "sentence-transformers/multi-qa-distilbert-cos-v1",
            "main",
            EmbedderType.DISTIL_BERT,
        ),
    )
}


def get_preset(name: str) -> ModelPreset:
    """Look up a preset by short name or by its full repository name."""
    if name in PRESETS:
        return PRESETS[name]
    for preset in PRESETS.values():
        if preset.repo_name == name:
            return preset
    raise ConfigError(f"Unknown model preset '{name}'. Known presets: {', '.join(sorted(PRESETS))}")


def list_presets() -> List[ModelPreset]:
    return list(PRESETS.values())
