"""キャッシュエントリ (config JSON のスナップショット)"""

from __future__ import annotations

import math
from dataclasses import dataclass, field

from .exceptions import RemoteFlagError, RemoteFlagErrorCodes
from .models import ConfigDocument


@dataclass(frozen=True)
class ConfigEntry:
    """取得時刻・ETag 付きの config JSON スナップショット。

    永続キャッシュには "{fetch_time}\\n{etag}\\n{config_json}" 形式で保存する。
    """

    config_json: str = ""
    config: ConfigDocument = field(default_factory=ConfigDocument)
    etag: str = ""
    fetch_time: float = 0.0

    @property
    def is_empty(self) -> bool:
        return not self.config_json

    def serialize(self) -> str:
        fetch_time = float(self.fetch_time)
        # 整数ミリ秒はそのまま、端数は repr で損失なく書き出す
        time_text = str(int(fetch_time)) if fetch_time.is_integer() else repr(fetch_time)
        return f"{time_text}\n{self.etag}\n{self.config_json}"

    def with_time(self, fetch_time: float) -> ConfigEntry:
        """ドキュメントを再パースせず取得時刻のみ差し替えたエントリを返す。"""
        return ConfigEntry(
            config_json=self.config_json,
            config=self.config,
            etag=self.etag,
            fetch_time=fetch_time,
        )

    def is_expired(self, interval_seconds: float, now_ms: float) -> bool:
        if self.is_empty:
            return True
        return self.fetch_time + interval_seconds * 1000 <= now_ms

    @classmethod
    def from_config_json(cls, config_json: str, etag: str, fetch_time: float) -> ConfigEntry:
        """config JSON をパースしてエントリを生成する。

        Raises:
            RemoteFlagError: config JSON が不正な場合 (INVALID_CONFIG)
        """
        config = ConfigDocument.from_json(config_json)
        return cls(config_json=config_json, config=config, etag=etag, fetch_time=fetch_time)

    @classmethod
    def from_cached(cls, cached: str) -> ConfigEntry:
        """永続キャッシュの文字列からエントリを復元する。

        Raises:
            RemoteFlagError: 形式が不正な場合 (SERIALIZATION_ERROR / INVALID_CONFIG)
        """
        time_text, sep, rest = cached.partition("\n")
        etag, sep2, config_json = rest.partition("\n")
        if not sep or not sep2:
            raise RemoteFlagError(
                code=RemoteFlagErrorCodes.SERIALIZATION_ERROR,
                message="Number of values is fewer than expected.",
            )
        try:
            fetch_time = float(time_text)
        except ValueError as e:
            raise RemoteFlagError(
                code=RemoteFlagErrorCodes.SERIALIZATION_ERROR,
                message=f"Invalid fetch time: {time_text}",
                cause=e,
            ) from e
        if not math.isfinite(fetch_time) or fetch_time <= 0:
            raise RemoteFlagError(
                code=RemoteFlagErrorCodes.SERIALIZATION_ERROR,
                message=f"Invalid fetch time: {time_text}",
            )
        return cls.from_config_json(config_json, etag, fetch_time)


EMPTY_ENTRY = ConfigEntry()
