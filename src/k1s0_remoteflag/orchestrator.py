"""キャッシュオーケストレーター

リフレッシュ間隔に基づいて永続キャッシュとフェッチャーを協調させ、
評価に使う最新の ConfigEntry を提供する。フェッチは asyncio.Lock で
直列化し、同時に 1 リクエストのみ発行する。
"""

from __future__ import annotations

import asyncio
import contextlib
import hashlib

from .cache import ConfigCache
from .entry import EMPTY_ENTRY, ConfigEntry
from .fetcher import CONFIG_JSON_NAME, ConfigFetcher, FetchResponse
from .hooks import Hooks
from .log import InternalLogger
from .results import RefreshResult
from .utils import get_unix_milliseconds


def make_cache_key(sdk_key: str) -> str:
    """SDK キーから永続キャッシュのキーを算出する。"""
    return hashlib.sha1(f"{sdk_key}_{CONFIG_JSON_NAME}_v2".encode()).hexdigest()


class CacheOrchestrator:
    """設定キャッシュのリフレッシュ制御を行う。"""

    def __init__(
        self,
        cache_key: str,
        fetcher: ConfigFetcher,
        cache: ConfigCache,
        logger: InternalLogger,
        hooks: Hooks,
        refresh_interval_seconds: float = 60.0,
        poll_interval_seconds: float | None = None,
        offline: bool = False,
    ) -> None:
        self._cache_key = cache_key
        self._fetcher = fetcher
        self._cache = cache
        self._logger = logger
        self._hooks = hooks
        self._refresh_interval_seconds = refresh_interval_seconds
        self._poll_interval_seconds = poll_interval_seconds
        self._offline = offline
        self._entry: ConfigEntry = EMPTY_ENTRY
        self._cached_text: str | None = None
        self._lock = asyncio.Lock()
        self._task: asyncio.Task[None] | None = None
        self._running = False

    @property
    def is_offline(self) -> bool:
        return self._offline

    def set_online(self) -> None:
        self._offline = False
        self._logger.info("Switched to ONLINE mode.", event_id=5200)

    def set_offline(self) -> None:
        self._offline = True
        self._logger.info("Switched to OFFLINE mode.", event_id=5200)

    async def get_current_entry(self) -> ConfigEntry:
        """評価に使うエントリを返す。期限切れかつオンラインの場合はフェッチする。"""
        entry = await self._load()
        if self._offline or not entry.is_expired(
            self._refresh_interval_seconds, get_unix_milliseconds()
        ):
            return entry
        return await self._refresh_if_expired(self._refresh_interval_seconds)

    async def force_refresh(self) -> RefreshResult:
        """リフレッシュ間隔を無視して config JSON を取得する。"""
        if self._offline:
            message = "Client is in offline mode, it cannot initiate HTTP calls."
            self._logger.warning(message, event_id=3200)
            return RefreshResult(is_success=False, error=InternalLogger.format(message, 3200))
        response = await self._fetch()
        return RefreshResult(is_success=not response.is_failed, error=response.error)

    async def start(self) -> None:
        """バックグラウンドポーリングを開始する。ポーリング間隔未設定なら何もしない。"""
        if self._poll_interval_seconds is None or self._task is not None:
            return
        self._running = True
        self._task = asyncio.create_task(self._poll_loop(self._poll_interval_seconds))

    async def stop(self) -> None:
        """バックグラウンドポーリングを停止する。"""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def _fetch(self) -> FetchResponse:
        async with self._lock:
            entry = await self._load()
            response = await self._fetcher.fetch(entry.etag)
            await self._handle_response(response, entry)
        return response

    async def _refresh_if_expired(self, interval_seconds: float) -> ConfigEntry:
        async with self._lock:
            # 待機中に他のタスクが更新済みの場合はフェッチしない
            entry = await self._load()
            if self._offline or not entry.is_expired(interval_seconds, get_unix_milliseconds()):
                return entry
            response = await self._fetcher.fetch(entry.etag)
            return await self._handle_response(response, entry)

    async def _handle_response(self, response: FetchResponse, entry: ConfigEntry) -> ConfigEntry:
        if response.is_fetched:
            new_entry = response.entry
            await self._store(new_entry)
            self._hooks.fire_on_config_changed(new_entry.config.settings)
            return new_entry
        if response.is_not_modified:
            new_entry = entry.with_time(get_unix_milliseconds())
            await self._store(new_entry)
            return new_entry
        return entry

    async def _load(self) -> ConfigEntry:
        """永続キャッシュからエントリを読み込む。読み込めない場合はメモリ上の最新エントリ。"""
        try:
            cached = await self._cache.get(self._cache_key)
            if not cached:
                return self._entry
            if cached == self._cached_text:
                return self._entry
            entry = ConfigEntry.from_cached(cached)
        except Exception as e:
            self._logger.error("Error occurred while reading the cache.", event_id=2200, exception=e)
            return self._entry
        self._entry = entry
        self._cached_text = cached
        return entry

    async def _store(self, entry: ConfigEntry) -> None:
        self._entry = entry
        serialized = entry.serialize()
        self._cached_text = serialized
        try:
            await self._cache.set(self._cache_key, serialized)
        except Exception as e:
            self._logger.error("Error occurred while writing the cache.", event_id=2201, exception=e)

    async def _poll_loop(self, interval_seconds: float) -> None:
        """一定間隔で取得する。経過時間による期限判定は行わない。"""
        while self._running:
            try:
                if not self._offline:
                    await self._fetch()
            except Exception as e:
                self._logger.error("Config polling error.", exception=e)
            await asyncio.sleep(interval_seconds)
