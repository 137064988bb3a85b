"""
LLM provider adapters
Every provider exposes ``name`` and ``invoke(prompt) -> text``; the rest of the
codebase never sees provider payload shapes.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx

from proxy_service.clients.http import get_http_client, response_details
from proxy_service.config import settings
from proxy_service.exceptions import ConfigurationError, LLMError

logger = logging.getLogger(__name__)


class LLMProvider(ABC):
    name = "base"

    def __init__(self, api_key: str, model: str, http: Optional[httpx.AsyncClient] = None):
        self.api_key = api_key
        self.model = model
        self._http = http

    @property
    def http(self) -> httpx.AsyncClient:
        return self._http or get_http_client()

    def require_key(self) -> str:
        if not self.api_key:
            raise ConfigurationError("API key is not configured")
        return self.api_key

    @abstractmethod
    async def invoke(
        self,
        prompt: str,
        system: Optional[str] = None,
        json_mode: bool = False,
        max_tokens: int = 500,
        temperature: float = 0.4,
        model: Optional[str] = None,
    ) -> str:
        """Send one prompt and return the model's text"""

    async def _post(self, url: str, headers: Dict[str, str], payload: Dict[str, Any]) -> Any:
        try:
            response = await self.http.post(url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise LLMError(f"{self.name} request failed", details=str(exc))
        if response.is_error:
            raise LLMError(
                f"{self.name} API Error: {response.status_code} {response.reason_phrase}",
                upstream_status=response.status_code,
                details=f"Request failed with status code {response.status_code}",
                response=response_details(response),
            )
        try:
            return response.json()
        except ValueError as exc:
            raise LLMError(f"{self.name} returned malformed JSON", details=str(exc))


class OpenAIProvider(LLMProvider):
    """Chat-completions API, optionally in JSON-object response mode"""

    name = "openai"

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None, url: Optional[str] = None, http=None):
        super().__init__(
            settings.OPENAI_API_KEY if api_key is None else api_key,
            model or settings.OPENAI_MODEL,
            http,
        )
        self.url = url or settings.OPENAI_URL

    async def invoke(self, prompt, system=None, json_mode=False, max_tokens=500, temperature=0.4, model=None) -> str:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        payload: Dict[str, Any] = {
            "model": model or self.model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        data = await self._post(
            self.url,
            {"Content-Type": "application/json", "Authorization": f"Bearer {self.require_key()}"},
            payload,
        )
        try:
            return data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            raise LLMError("openai response has no message content", response=data)


class AnthropicProvider(LLMProvider):
    """Messages API with a separate system prompt"""

    name = "anthropic"

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None, url: Optional[str] = None, http=None):
        super().__init__(
            settings.ANTHROPIC_API_KEY if api_key is None else api_key,
            model or settings.ANTHROPIC_MODEL,
            http,
        )
        self.url = url or settings.ANTHROPIC_URL

    async def invoke(self, prompt, system=None, json_mode=False, max_tokens=500, temperature=0.4, model=None) -> str:
        payload: Dict[str, Any] = {
            "model": model or self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            payload["system"] = system

        data = await self._post(
            self.url,
            {
                "x-api-key": self.require_key(),
                "anthropic-version": settings.ANTHROPIC_VERSION,
                "Content-Type": "application/json",
            },
            payload,
        )
        try:
            return data["content"][0]["text"]
        except (KeyError, IndexError, TypeError):
            raise LLMError("anthropic response has no text content", response=data)


_PROVIDERS = {
    OpenAIProvider.name: OpenAIProvider,
    AnthropicProvider.name: AnthropicProvider,
}


def build_llm_provider(name: Optional[str] = None, http: Optional[httpx.AsyncClient] = None) -> LLMProvider:
    name = (name or settings.LLM_PROVIDER).lower()
    provider_cls = _PROVIDERS.get(name)
    if provider_cls is None:
        raise ConfigurationError(f"Unknown LLM provider: {name}", details=sorted(_PROVIDERS))
    return provider_cls(http=http)
