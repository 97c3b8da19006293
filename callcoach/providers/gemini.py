from callcoach.events import ProviderError
from callcoach.providers.base import BaseProvider


class GeminiProvider(BaseProvider):
    """Gemini Developer API (AI Studio) generateContent endpoint."""

    name = "gemini"
    default_base_url = "https://generativelanguage.googleapis.com"

    async def generate(self, prompt: str) -> str:
        # Gemini REST: POST /v1beta/models/{model}:generateContent
        url = f"{self.base_url}/v1beta/models/{self.model}:generateContent"
        body = {
            "contents": [
                {"role": "user", "parts": [{"text": prompt}]}
            ]
        }
        headers = {"x-goog-api-key": self._require_key()}
        data = await self._post_json(url, body, headers)

        try:
            cand0 = (data.get("candidates") or [])[0]
            parts = ((cand0.get("content") or {}).get("parts") or [])
        except (AttributeError, IndexError) as e:
            raise ProviderError(f"gemini: malformed response: {e!r}") from e
        texts = [p.get("text", "") for p in parts if isinstance(p, dict)]
        if not all(isinstance(t, str) for t in texts):
            raise ProviderError("gemini: part text is not a string")
        return "".join(texts).strip()
