"""フラグオーバーライド (ローカル定義のフラグ値)"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Any

import yaml

from .exceptions import RemoteFlagError, RemoteFlagErrorCodes
from .log import InternalLogger
from .models import ConfigDocument, Setting


class OverrideBehaviour(StrEnum):
    """ローカル値とリモート値の優先関係。"""

    LOCAL_ONLY = "local_only"
    LOCAL_OVER_REMOTE = "local_over_remote"
    REMOTE_OVER_LOCAL = "remote_over_local"


class OverrideDataSource(ABC):
    """オーバーライド値の取得元。"""

    def __init__(self) -> None:
        self._logger = InternalLogger()

    def set_logger(self, logger: InternalLogger) -> None:
        self._logger = logger

    @abstractmethod
    def get_overrides(self) -> dict[str, Setting]:
        """キー → Setting のマップを返す。"""
        ...


class DictDataSource(OverrideDataSource):
    """辞書で与えた単純値をオーバーライドとして使う。"""

    def __init__(self, values: Mapping[str, Any]) -> None:
        super().__init__()
        self._settings = {key: Setting.from_value(value) for key, value in values.items()}

    def get_overrides(self) -> dict[str, Setting]:
        return dict(self._settings)


class LocalFileDataSource(OverrideDataSource):
    """JSON / YAML ファイルからオーバーライドを読み込む。

    ファイルは {"flags": {キー: 値}} の単純形式、または config JSON 全体の
    いずれか。拡張子 .yaml / .yml は YAML として、それ以外は JSON として読む。
    ファイルは get_overrides() の呼び出しごとに読み直す。
    """

    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self._path = Path(path)
        if not self._path.exists():
            raise RemoteFlagError(
                code=RemoteFlagErrorCodes.INVALID_OPTIONS,
                message=f"The file '{self._path}' doesn't exist.",
            )

    def get_overrides(self) -> dict[str, Setting]:
        try:
            text = self._path.read_text(encoding="utf-8")
        except OSError as e:
            self._logger.error(
                f"Failed to read the local config file '{self._path}'.",
                event_id=1302,
                exception=e,
            )
            return {}

        try:
            data = self._parse(text)
        except (ValueError, yaml.YAMLError) as e:
            self._logger.error(
                f"Failed to decode the local config file '{self._path}': {e}",
                event_id=2302,
                exception=e,
            )
            return {}

        if isinstance(data, dict) and isinstance(data.get("flags"), dict):
            return {key: Setting.from_value(value) for key, value in data["flags"].items()}
        try:
            return dict(ConfigDocument.from_dict(data).settings)
        except RemoteFlagError as e:
            self._logger.error(
                f"Failed to decode the local config file '{self._path}': {e.message}",
                event_id=2302,
                exception=e,
            )
            return {}

    def _parse(self, text: str) -> Any:
        if self._path.suffix.lower() in (".yaml", ".yml"):
            return yaml.safe_load(text)
        return json.loads(text)


@dataclass(frozen=True)
class FlagOverrides:
    """オーバーライドの取得元と優先関係の組。"""

    data_source: OverrideDataSource
    behaviour: OverrideBehaviour = OverrideBehaviour.LOCAL_ONLY

    def __post_init__(self) -> None:
        try:
            behaviour = OverrideBehaviour(self.behaviour)
        except ValueError as e:
            raise RemoteFlagError(
                code=RemoteFlagErrorCodes.INVALID_OPTIONS,
                message=f"Invalid override behaviour: {self.behaviour}",
                cause=e,
            ) from e
        object.__setattr__(self, "behaviour", behaviour)
