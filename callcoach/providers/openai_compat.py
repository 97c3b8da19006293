"""OpenAI chat-completions providers (OpenAI itself and OpenRouter)."""

from callcoach.events import ProviderError
from callcoach.providers.base import BaseProvider


class OpenAIProvider(BaseProvider):
    name = "openai"
    default_base_url = "https://api.openai.com/v1"

    async def generate(self, prompt: str) -> str:
        headers = {"Authorization": f"Bearer {self._require_key()}"}
        body = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
        }
        data = await self._post_json(f"{self.base_url}/chat/completions", body, headers)
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError(f"{self.name}: malformed response: {e!r}") from e
        if not isinstance(content, str):
            raise ProviderError(f"{self.name}: response content is not text")
        return content.strip()


class OpenRouterProvider(OpenAIProvider):
    name = "openrouter"
    default_base_url = "https://openrouter.ai/api/v1"
