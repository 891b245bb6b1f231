"""config JSON 取得用 HTTP トランスポート"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Protocol

import httpx


@dataclass(frozen=True)
class TransportResponse:
    """HTTP レスポンスの最小表現。ヘッダー名は小文字で保持する。"""

    status_code: int
    text: str = ""
    headers: Mapping[str, str] = field(default_factory=dict)

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())


class FetchTransport(Protocol):
    """GET リクエストを送信するトランスポートのプロトコル。

    タイムアウト時は TimeoutError、その他の通信エラーは任意の例外を送出する。
    """

    async def get(self, url: str, headers: Mapping[str, str]) -> TransportResponse: ...

    async def aclose(self) -> None: ...


class HttpxFetchTransport:
    """httpx.AsyncClient を使ったトランスポート。"""

    def __init__(
        self,
        request_timeout_seconds: float = 30.0,
        connect_timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(request_timeout_seconds, connect=connect_timeout_seconds),
        )

    async def get(self, url: str, headers: Mapping[str, str]) -> TransportResponse:
        try:
            resp = await self._client.get(url, headers=dict(headers))
        except httpx.TimeoutException as e:
            raise TimeoutError(f"Request timed out: {url}") from e
        return TransportResponse(
            status_code=resp.status_code,
            text=resp.text,
            headers={k.lower(): v for k, v in resp.headers.items()},
        )

    async def aclose(self) -> None:
        """自身で生成した httpx クライアントを閉じる。"""
        if self._owns_client:
            await self._client.aclose()
