"""Factory for creating LLM providers from configuration."""

from __future__ import annotations

import importlib

from taxonomist.config import LLMConfig
from taxonomist.llm.base import LLMProvider

# provider name -> (module, class); "local" is any OpenAI-compatible server
_PROVIDERS = {
    "anthropic": ("taxonomist.llm.anthropic_provider", "AnthropicProvider"),
    "openai": ("taxonomist.llm.openai_provider", "OpenAIProvider"),
    "local": ("taxonomist.llm.openai_provider", "OpenAIProvider"),
}


def create_provider(config: LLMConfig, model: str | None = None) -> LLMProvider:
    """Create an LLM provider from configuration.

    Args:
        config: LLM configuration with provider, model, etc.
        model: Optional model id overriding ``config.model``.

    Raises:
        ValueError: If the provider is unknown.
        ProviderNotAvailableError: If the provider's SDK is not installed
            (raised lazily, on first request).
    """
    provider = config.provider.lower()
    if provider not in _PROVIDERS:
        raise ValueError(
            f"Unknown LLM provider: '{provider}'. "
            f"Supported providers: {', '.join(sorted(_PROVIDERS))}"
        )

    module_name, class_name = _PROVIDERS[provider]
    provider_cls = getattr(importlib.import_module(module_name), class_name)
    return provider_cls(
        model=model or config.model,
        api_key=config.api_key,
        base_url=config.base_url,
    )
