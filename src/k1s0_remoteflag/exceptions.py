"""remoteflag ライブラリの例外型定義"""

from __future__ import annotations


class RemoteFlagError(Exception):
    """remoteflag ライブラリのエラー基底クラス。"""

    def __init__(
        self,
        code: str,
        message: str,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        return f"{self.code}: {super().__str__()}"

    @property
    def message(self) -> str:
        return super().__str__()


class RemoteFlagErrorCodes:
    """RemoteFlagError のエラーコード定数。"""

    INVALID_OPTIONS: str = "INVALID_OPTIONS"
    READ_FILE: str = "READ_FILE_ERROR"
    PARSE_YAML: str = "PARSE_YAML_ERROR"
    INVALID_CONFIG: str = "INVALID_CONFIG"
    CIRCULAR_DEPENDENCY: str = "CIRCULAR_DEPENDENCY"
    FETCH_ERROR: str = "FETCH_ERROR"
    CACHE_ERROR: str = "CACHE_ERROR"
    SERIALIZATION_ERROR: str = "SERIALIZATION_ERROR"
    SETTING_NOT_FOUND: str = "SETTING_NOT_FOUND"
    CONFIG_MISSING: str = "CONFIG_MISSING"
