from callcoach.events import ProviderError
from callcoach.providers.base import BaseProvider


class OllamaProvider(BaseProvider):
    """Local inference through Ollama's /api/chat endpoint. No API key."""

    name = "ollama"
    default_base_url = "http://127.0.0.1:11434"

    async def generate(self, prompt: str) -> str:
        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "stream": False,
        }
        data = await self._post_json(f"{self.base_url}/api/chat", payload)

        message = data.get("message") if isinstance(data, dict) else None
        if not isinstance(message, dict):
            raise ProviderError("ollama: response has no message")
        return str(message.get("content") or "").strip()
