"""Provider factory for feedback models selected by a `provider:model` string."""

from typing import Optional, Tuple

import httpx

from callcoach.providers.anthropic import AnthropicProvider
from callcoach.providers.base import BaseProvider
from callcoach.providers.gemini import GeminiProvider
from callcoach.providers.ollama import OllamaProvider
from callcoach.providers.openai_compat import OpenAIProvider, OpenRouterProvider

PROVIDERS = {
    "openrouter": OpenRouterProvider,
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
    "gemini": GeminiProvider,
    "ollama": OllamaProvider,
}

DEFAULT_PROVIDER = "openrouter"


def parse_selector(selector: str) -> Tuple[str, str]:
    """Split `provider:model` into its parts.

    Only the first colon separates, so `ollama:gemma3:4b` keeps its tag. A
    selector without a known provider prefix is an OpenRouter model name.
    """
    selector = selector.strip()
    provider, sep, model = selector.partition(":")
    if sep and provider.lower() in PROVIDERS:
        provider, model = provider.lower(), model.strip()
    else:
        provider, model = DEFAULT_PROVIDER, selector
    if not model:
        raise ValueError(f"Model selector '{selector}' names no model")
    return provider, model


def create_provider(
    selector: str,
    api_key: Optional[str] = None,
    base_url: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = 90.0,
) -> BaseProvider:
    """Factory function to create a provider instance from a selector.

    Args:
        selector: "provider:model", e.g. "anthropic:claude-3-5-haiku-latest"
        api_key: Credential for the provider (ignored by ollama)
        base_url: Override the provider's default endpoint
        client: Shared httpx client, mainly for tests

    Raises:
        ValueError: If the selector names no model
    """
    provider, model = parse_selector(selector)
    cls = PROVIDERS[provider]
    return cls(model, api_key=api_key, base_url=base_url, client=client, timeout=timeout)


__all__ = ["create_provider", "parse_selector", "BaseProvider", "PROVIDERS"]
