"""
Registry of the vision LLM providers the captioner can talk to.
"""

import os
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .config import PLACEHOLDER_VALUES
from .errors import UnknownProviderError


@dataclass(frozen=True)
class ProviderConfig:
    id: str
    display_name: str
    requires_credential: bool
    credential_env_var: str
    base_url: Optional[str] = None
    known_models: Tuple[str, ...] = ()


PROVIDERS: Dict[str, ProviderConfig] = {
    "gemini": ProviderConfig(
        id="gemini",
        display_name="Google Gemini",
        requires_credential=True,
        credential_env_var="GEMINI_API_KEY",
        # Replaced by the live model listing when a key is configured
        known_models=("gemini-2.5-flash", "gemini-2.5-pro", "gemini-1.5-flash-latest"),
    ),
    "openai": ProviderConfig(
        id="openai",
        display_name="OpenAI",
        requires_credential=True,
        credential_env_var="OPENAI_API_KEY",
        base_url="https://api.openai.com/v1",
        known_models=("gpt-4-vision-preview", "gpt-4-turbo", "gpt-4o", "gpt-4o-mini"),
    ),
    "openrouter": ProviderConfig(
        id="openrouter",
        display_name="OpenRouter",
        requires_credential=True,
        credential_env_var="OPENROUTER_API_KEY",
        base_url="https://openrouter.ai/api/v1",
        known_models=(
            "anthropic/claude-3.5-sonnet",
            "anthropic/claude-3-opus",
            "openai/gpt-4-vision-preview",
            "google/gemini-pro-vision",
            "meta-llama/llama-3.2-90b-vision",
        ),
    ),
    "together": ProviderConfig(
        id="together",
        display_name="Together AI",
        requires_credential=True,
        credential_env_var="TOGETHER_API_KEY",
        base_url="https://api.together.xyz/v1",
        known_models=(
            "meta-llama/Llama-3.2-90B-Vision-Instruct-Turbo",
            "meta-llama/Llama-3.2-11B-Vision-Instruct-Turbo",
        ),
    ),
    "groq": ProviderConfig(
        id="groq",
        display_name="Groq",
        requires_credential=True,
        credential_env_var="GROQ_API_KEY",
        base_url="https://api.groq.com/openai/v1",
        known_models=("llama-3.2-90b-vision-preview", "llama-3.2-11b-vision-preview"),
    ),
    "ollama": ProviderConfig(
        id="ollama",
        display_name="Ollama (Local)",
        requires_credential=False,
        credential_env_var="OLLAMA_BASE_URL",
        base_url="http://localhost:11434/v1",
        known_models=("llava:latest", "llava:13b", "llava:34b", "bakllava:latest"),
    ),
}


def lookup(provider_id: str) -> ProviderConfig:
    """Return the provider config or raise UnknownProviderError."""
    try:
        return PROVIDERS[provider_id]
    except KeyError:
        raise UnknownProviderError(provider_id) from None


def get_credential(provider: ProviderConfig, env: Optional[Mapping[str, str]] = None) -> Optional[str]:
    env = os.environ if env is None else env
    if not provider.requires_credential:
        return None
    value = env.get(provider.credential_env_var)
    if not value:
        raise ValueError(f"{provider.credential_env_var} is not set")
    if value == PLACEHOLDER_VALUES.get(provider.credential_env_var):
        raise ValueError(f"{provider.credential_env_var} is set to a placeholder value")
    return value


def provider_base_url(provider: ProviderConfig, env: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """Base URL for OpenAI-compatible calls; OLLAMA_BASE_URL overrides the local default."""
    env = os.environ if env is None else env
    if provider.requires_credential:
        return provider.base_url

    override = (env.get(provider.credential_env_var) or "").rstrip("/")
    if not override:
        return provider.base_url
    if not override.endswith("/v1"):
        override += "/v1"
    return override


def is_available(provider: ProviderConfig, env: Optional[Mapping[str, str]] = None) -> bool:
    env = os.environ if env is None else env
    if not provider.requires_credential:
        return True
    return bool(env.get(provider.credential_env_var))


def available_providers(env: Optional[Mapping[str, str]] = None,
                        gemini_models: Optional[Sequence[str]] = None) -> List[dict]:
    """Describe every provider with its availability and model list."""
    listing = []
    for provider in PROVIDERS.values():
        models = list(provider.known_models)
        if provider.id == "gemini" and gemini_models:
            models = list(gemini_models)
        listing.append({
            "id": provider.id,
            "name": provider.display_name,
            "requiresApiKey": provider.requires_credential,
            "isAvailable": is_available(provider, env),
            "models": models,
        })
    return listing
