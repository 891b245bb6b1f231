"""永続キャッシュ抽象基底クラスとインメモリ実装"""

from __future__ import annotations

from abc import ABC, abstractmethod


class ConfigCache(ABC):
    """config JSON キャッシュの抽象基底クラス。

    値は ConfigEntry.serialize() の文字列。実装は Redis などのバックエンドを
    ラップする。例外は呼び出し側でキャッシュミスとして扱われる。
    """

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """キーに対応する値を取得する。存在しなければ None。"""
        ...

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """キーと値を保存する。"""
        ...


class InMemoryConfigCache(ConfigCache):
    """プロセス内インメモリキャッシュ。"""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def set(self, key: str, value: str) -> None:
        self._store[key] = value
