from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

import httpx

from .errors import NetworkUnavailable


@dataclass(slots=True)
class FetchResult:
    url: str
    status_code: int
    content: bytes

    @property
    def ok(self) -> bool:
        return self.status_code == 200

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.content)


class HttpFetcher:
    """Asynchronous GET/POST returning ``(status, bytes)``.

    A reply with any status code, including an empty body, is a
    ``FetchResult``. Failing to get any reply at all raises
    ``NetworkUnavailable``.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        user_agent: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"User-Agent": user_agent} if user_agent else None
        self.client = httpx.AsyncClient(
            timeout=timeout,
            headers=headers,
            transport=transport,
            follow_redirects=True,
        )

    async def __aenter__(self) -> HttpFetcher:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    async def _send(self, method: str, url: str, **kwargs: Any) -> FetchResult:
        try:
            response = await self.client.request(method, url, **kwargs)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise NetworkUnavailable(f"{method} {url} failed: {exc}") from exc
        return FetchResult(url=str(response.url), status_code=response.status_code, content=response.content)

    async def get(self, url: str, headers: dict[str, str] | None = None) -> FetchResult:
        return await self._send("GET", url, headers=headers)

    async def post_json(self, url: str, payload: Any, headers: dict[str, str] | None = None) -> FetchResult:
        return await self._send("POST", url, json=payload, headers=headers)
