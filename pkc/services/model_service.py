"""
Model service for LLM provider management.
Handles model resolution and listing available models.
"""
import os
from typing import Tuple, Dict, List, Optional

from ..config import get_settings

DEFAULT_OPENAI_MODEL = get_settings().openai_model

DEFAULT_OLLAMA_MODEL = "qwen2.5:7b"


def _model_list(env_name: str, default: str) -> List[str]:
    """Comma-separated model names from the environment, defaults included."""
    names = [default] if default else []
    for name in os.getenv(env_name, "").split(","):
        name = name.strip()
        if name and name not in names:
            names.append(name)
    return names


# Model registry; the configured default OpenAI model is always selectable
AVAILABLE_MODELS = {
    "openai": _model_list("OPENAI_MODELS", DEFAULT_OPENAI_MODEL),
    "ollama": _model_list("OLLAMA_MODELS", "") or [DEFAULT_OLLAMA_MODEL],
}


def get_available_models() -> Dict[str, List[str]]:
    """
    Get all available models grouped by provider.

    Returns:
        Dictionary with provider names as keys and model lists as values
    """
    return AVAILABLE_MODELS


def resolve_model(model_string: Optional[str] = None) -> Tuple[str, str]:
    """
    Resolve a model string to provider and model name.

    Args:
        model_string: Format "provider:model_name" (e.g., "openai:gpt-4o-mini")
                     or None for default

    Returns:
        Tuple of (provider, model_name)

    Examples:
        >>> resolve_model("ollama:qwen2.5:7b")
        ('ollama', 'qwen2.5:7b')
    """
    if not model_string:
        return "openai", DEFAULT_OPENAI_MODEL

    provider, sep, model_name = model_string.partition(":")
    if not sep or provider not in AVAILABLE_MODELS or not model_name:
        # Fallback to default if format is unexpected
        return "openai", DEFAULT_OPENAI_MODEL

    return provider, model_name


def validate_model(provider: str, model_name: str) -> bool:
    """
    Check if a model is available in the registry.
    """
    return (
        provider in AVAILABLE_MODELS
        and model_name in AVAILABLE_MODELS[provider]
    )
