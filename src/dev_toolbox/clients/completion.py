"""AI completion client (Anthropic Messages API) and its cached form."""

from __future__ import annotations

import logging
from typing import Any

from dev_toolbox.http.client import JsonHttpClient, RemoteCallError
from dev_toolbox.runtime.cache import CacheStore
from dev_toolbox.runtime.hashing import generate_hash

logger = logging.getLogger(__name__)

ANTHROPIC_BASE_URL = "https://api.anthropic.com"
ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_MAX_TOKENS = 1000
DEFAULT_TEMPERATURE = 0.3


class CompletionClient:
    """Single-turn text completions."""

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        http: JsonHttpClient | None = None,
        base_url: str = ANTHROPIC_BASE_URL,
        timeout_seconds: float = 120.0,
    ) -> None:
        self.model = model
        self._http = http or JsonHttpClient(
            base_url=base_url,
            timeout_seconds=timeout_seconds,
            headers={
                "x-api-key": api_key,
                "anthropic-version": ANTHROPIC_VERSION,
                "content-type": "application/json",
            },
        )

    async def complete(
        self,
        prompt: str,
        *,
        system: str | None = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        temperature: float = DEFAULT_TEMPERATURE,
    ) -> str:
        body: dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            body["system"] = system
        payload = await self._http.post_json("/v1/messages", body)
        text = extract_text(payload)
        if not text:
            raise RemoteCallError("completion returned no text", transient=False)
        return text

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> CompletionClient:
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()


def extract_text(payload: Any) -> str:
    if not isinstance(payload, dict):
        return ""
    blocks = payload.get("content") or []
    return "".join(
        str(block.get("text", ""))
        for block in blocks
        if isinstance(block, dict) and block.get("type") == "text"
    ).strip()


class CachedCompletionClient:
    """Completions answered from the cache when the same request was already paid for.

    The key covers model, prompt and sampling parameters; the API key is never
    part of it.
    """

    def __init__(self, client: CompletionClient, cache: CacheStore, *, ttl: float | None) -> None:
        self._client = client
        self._cache = cache
        self._ttl = ttl

    @property
    def model(self) -> str:
        return self._client.model

    def cache_key(
        self,
        prompt: str,
        *,
        system: str | None,
        max_tokens: int,
        temperature: float,
    ) -> str:
        return generate_hash(
            "claude",
            "complete",
            self._client.model,
            {
                "prompt": prompt,
                "system": system,
                "max_tokens": max_tokens,
                "temperature": temperature,
            },
        )

    async def complete(
        self,
        prompt: str,
        *,
        system: str | None = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        temperature: float = DEFAULT_TEMPERATURE,
    ) -> str:
        key = self.cache_key(prompt, system=system, max_tokens=max_tokens, temperature=temperature)
        return await self._cache.get_or_compute(
            key,
            ttl=self._ttl,
            compute=lambda: self._client.complete(
                prompt,
                system=system,
                max_tokens=max_tokens,
                temperature=temperature,
            ),
            metadata={"method": "complete", "model": self._client.model},
        )

    async def aclose(self) -> None:
        await self._client.aclose()
