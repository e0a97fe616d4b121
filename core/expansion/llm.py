# Path: core/expansion/llm.py
# Purpose: Define the LLM provider contract and an OpenAI-compatible chat completions client.
# Layer: core/expansion.
# Details: One attempt per call with a hard timeout; failures surface as LLMProviderError.

from __future__ import annotations

import logging
from typing import Optional, Protocol

import httpx

from core.errors import LLMProviderError

logger = logging.getLogger(__name__)


class LLMProvider(Protocol):
    """Text generation provider used for extensions and abstractness classification."""

    model: str

    async def generate(self, prompt: str) -> str:
        """Return the raw completion text for a prompt."""


class ChatCompletionsProvider:
    """Client for an OpenAI-compatible ``/chat/completions`` endpoint (Groq by default)."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str],
        model: str,
        timeout_s: float = 10.0,
        temperature: float = 0.7,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.temperature = temperature
        self._api_key = api_key
        self._timeout = timeout_s
        self._client = client

    async def generate(self, prompt: str) -> str:
        if not self._api_key:
            raise LLMProviderError("No API key configured for the LLM provider.")
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)

        body = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self.temperature,
        }
        try:
            response = await self._client.post(
                f"{self.base_url}/chat/completions",
                json=body,
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
            response.raise_for_status()
            payload = response.json()
            return str(payload["choices"][0]["message"]["content"] or "")
        except (httpx.HTTPError, ValueError, KeyError, IndexError, TypeError) as exc:
            raise LLMProviderError(f"LLM call to {self.model} failed: {exc}") from exc

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
