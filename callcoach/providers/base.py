"""Abstract base class for feedback model providers."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx

from callcoach.events import ProviderError


class BaseProvider(ABC):
    """One vendor backend behind a single `generate(prompt) -> text` capability."""

    name: str = ""
    default_base_url: str = ""

    def __init__(
        self,
        model: str,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 90.0,
    ):
        self.model = model
        self.api_key = (api_key or "").strip() or None
        self.base_url = (base_url or self.default_base_url).rstrip("/")
        self.timeout = timeout
        self._client = client

    def __repr__(self):
        return f"{type(self).__name__}(model={self.model!r})"

    @abstractmethod
    async def generate(self, prompt: str) -> str:
        """Send a single rendered prompt and return the model's text.

        Raises:
            ProviderError: missing credentials or an unusable response body
            httpx.HTTPError: transport failure or non-2xx status
        """

    def _require_key(self) -> str:
        if not self.api_key:
            raise ProviderError(f"{self.name.upper()}_API_KEY is not set")
        return self.api_key

    async def _post_json(self, url: str, body: Dict[str, Any], headers: Optional[Dict[str, str]] = None) -> Any:
        if self._client is not None:
            r = await self._client.post(url, json=body, headers=headers, timeout=self.timeout)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                r = await client.post(url, json=body, headers=headers)
        r.raise_for_status()
        return r.json()
