"""クライアント設定ファイル読み込み"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from .exceptions import RemoteFlagError, RemoteFlagErrorCodes
from .options import ClientOptions


def _read_yaml(path: Path) -> dict[str, Any]:
    """YAML ファイルを読み込む。"""
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise RemoteFlagError(
            code=RemoteFlagErrorCodes.READ_FILE,
            message=f"Failed to read options file: {path}",
            cause=e,
        ) from e
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise RemoteFlagError(
            code=RemoteFlagErrorCodes.PARSE_YAML,
            message=f"Failed to parse YAML: {path}",
            cause=e,
        ) from e
    if not isinstance(data, dict):
        raise RemoteFlagError(
            code=RemoteFlagErrorCodes.INVALID_OPTIONS,
            message=f"Options file must contain a mapping: {path}",
        )
    return data


def load_options(path: Path, section: str | None = "remoteflag") -> ClientOptions:
    """設定ファイルを読み込んで ClientOptions を返す。

    path: YAML ファイルパス
    section: 設定が格納されたトップレベルキー。None または該当キーがない場合はファイル全体を使う。
    """
    data = _read_yaml(Path(path))
    if section is not None and isinstance(data.get(section), dict):
        data = data[section]
    return ClientOptions.create(**data)
