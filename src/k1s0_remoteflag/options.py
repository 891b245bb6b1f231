"""クライアント設定 (pydantic BaseModel)"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from .exceptions import RemoteFlagError, RemoteFlagErrorCodes
from .fetcher import DataGovernance

_LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


class ClientOptions(BaseModel):
    """RemoteFlagClient の設定値。

    キャッシュ・トランスポート・ロガーなどの実行時オブジェクトは
    RemoteFlagClient のコンストラクタ引数で渡す。
    """

    base_url: str | None = None
    data_governance: DataGovernance = DataGovernance.GLOBAL
    cache_refresh_interval_seconds: float = Field(default=60.0, ge=0)
    poll_interval_seconds: float | None = Field(default=None, gt=0)
    request_timeout_seconds: float = Field(default=30.0, gt=0)
    connect_timeout_seconds: float = Field(default=10.0, gt=0)
    log_level: str = "WARNING"
    offline: bool = False

    @classmethod
    def create(cls, **data: Any) -> ClientOptions:
        """設定値を検証して ClientOptions を生成する。

        Raises:
            RemoteFlagError: 検証に失敗した場合 (INVALID_OPTIONS)
        """
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise RemoteFlagError(
                code=RemoteFlagErrorCodes.INVALID_OPTIONS,
                message=f"Invalid client options: {e}",
                cause=e,
            ) from e

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        value = value.upper()
        if value not in _LOG_LEVELS:
            raise ValueError(f"unknown log level: {value}")
        return value

    @property
    def log_level_number(self) -> int:
        return _LOG_LEVELS[self.log_level]
