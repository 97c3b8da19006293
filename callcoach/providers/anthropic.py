"""Anthropic Messages API provider."""

from callcoach.events import ProviderError
from callcoach.providers.base import BaseProvider

ANTHROPIC_VERSION = "2023-06-01"


class AnthropicProvider(BaseProvider):
    name = "anthropic"
    default_base_url = "https://api.anthropic.com"
    max_tokens = 1024

    async def generate(self, prompt: str) -> str:
        headers = {
            "x-api-key": self._require_key(),
            "anthropic-version": ANTHROPIC_VERSION,
        }
        body = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        data = await self._post_json(f"{self.base_url}/v1/messages", body, headers)

        blocks = data.get("content") if isinstance(data, dict) else None
        if not isinstance(blocks, list):
            raise ProviderError("anthropic: response has no content blocks")
        texts = [b.get("text") for b in blocks if isinstance(b, dict) and b.get("type") == "text"]
        if not all(isinstance(t, str) for t in texts):
            raise ProviderError("anthropic: text block is not a string")
        return "".join(texts).strip()
