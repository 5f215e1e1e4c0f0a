"""Async JSON HTTP client with retries and timeout."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from dev_toolbox import __version__

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_USER_AGENT = f"dev-toolbox/{__version__}"

_TRANSIENT_STATUS_CODES = frozenset({408, 425, 429})


class RemoteCallError(RuntimeError):
    """Remote call failure with retryability hint."""

    def __init__(self, message: str, *, status_code: int = 0, transient: bool) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.transient = transient


class JsonHttpClient:
    """``httpx.AsyncClient`` wrapper that speaks JSON and raises :class:`RemoteCallError`."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        base_url: str = "",
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        user_agent: str = DEFAULT_USER_AGENT,
        headers: dict[str, str] | None = None,
        auth: httpx.Auth | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        base_headers = {"User-Agent": user_agent, "Accept": "application/json"}
        if headers:
            base_headers.update(headers)
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            headers=base_headers,
            auth=auth,
            transport=transport or httpx.AsyncHTTPTransport(retries=max_retries),
            follow_redirects=True,
        )

    async def get_json(self, path: str, *, params: dict[str, str] | None = None) -> Any:
        return await self._request("GET", path, params=params)

    async def post_json(self, path: str, payload: dict[str, Any]) -> Any:
        return await self._request("POST", path, json=payload)

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("Timeout calling %s %s", method, path)
            raise RemoteCallError(f"timeout calling {path}", transient=True) from exc
        except httpx.HTTPError as exc:
            logger.warning("HTTP error calling %s %s: %s", method, path, exc)
            raise RemoteCallError(str(exc), transient=True) from exc

        if not response.is_success:
            status = response.status_code
            raise RemoteCallError(
                f"HTTP {status} from {path}",
                status_code=status,
                transient=status in _TRANSIENT_STATUS_CODES or status >= 500,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise RemoteCallError(
                f"invalid JSON from {path}",
                status_code=response.status_code,
                transient=False,
            ) from exc

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> JsonHttpClient:
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()
