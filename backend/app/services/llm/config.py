"""
LLM model presets for LiteLLM.

Model ids carry the LiteLLM provider prefix (``openrouter/...``,
``openai/...``). The merge-assessment primary model is read from settings;
the fallbacks are fixed.
"""
from dataclasses import dataclass, field
from typing import Dict, List

from ...config import settings


@dataclass(frozen=True)
class ModelConfig:
    """One model and its default sampling parameters."""
    model_id: str
    temperature: float = 0.1
    max_tokens: int = 1000
    top_p: float = 1.0
    extra_params: Dict = field(default_factory=dict)  # Provider-specific


@dataclass(frozen=True)
class ModelPreset:
    """Primary model plus ordered fallbacks for a use case."""
    primary: ModelConfig
    fallbacks: List[ModelConfig] = field(default_factory=list)


OPENROUTER_GEMINI_FLASH = ModelConfig(model_id="openrouter/google/gemini-2.5-flash")
OPENAI_GPT4O_MINI = ModelConfig(model_id="openai/gpt-4o-mini")

# Environment variables LiteLLM reads per provider prefix
PROVIDER_ENV_VARS = {
    "openrouter": "OPENROUTER_API_KEY",
    "openai": "OPENAI_API_KEY",
}


def _merge_assessment_preset() -> ModelPreset:
    primary = ModelConfig(
        model_id=settings.merge_assessment_model,
        temperature=settings.merge_assessment_temperature,
        max_tokens=settings.merge_assessment_max_tokens,
    )
    fallbacks = [
        candidate
        for candidate in (OPENROUTER_GEMINI_FLASH, OPENAI_GPT4O_MINI)
        if candidate.model_id != primary.model_id
    ]
    return ModelPreset(primary=primary, fallbacks=fallbacks)


_PRESET_BUILDERS = {
    "merge_assessment": _merge_assessment_preset,
}


def get_preset_for_use_case(use_case: str) -> ModelPreset:
    """Preset for ``use_case``; unknown use cases get the merge-assessment preset."""
    builder = _PRESET_BUILDERS.get(use_case, _merge_assessment_preset)
    return builder()


def get_fallback_chain(preset: ModelPreset) -> List[str]:
    """Model ids in the order they are tried."""
    return [preset.primary.model_id, *(m.model_id for m in preset.fallbacks)]


def get_model_params(model_config: ModelConfig, **overrides) -> Dict:
    """LiteLLM completion kwargs for ``model_config`` with ``overrides`` applied last."""
    params = {
        "model": model_config.model_id,
        "temperature": model_config.temperature,
        "max_tokens": model_config.max_tokens,
        **model_config.extra_params,
    }
    if model_config.top_p != 1.0:
        params["top_p"] = model_config.top_p
    params.update(overrides)
    return params
