"""ライブラリ内部ロガー

標準 logging のロガーをラップし、イベント ID の付与、ログレベルの閾値、
無視する例外型の除外、ERROR 時の on_error フック呼び出しを行う。
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from .hooks import Hooks

DEFAULT_LOGGER_NAME = "k1s0_remoteflag"


class InternalLogger:
    """イベント ID 付きでログを出力するロガー。"""

    def __init__(
        self,
        logger: logging.Logger | None = None,
        level: int = logging.WARNING,
        exceptions_to_ignore: Sequence[type[BaseException]] = (),
        hooks: Hooks | None = None,
    ) -> None:
        self._logger = logger or logging.getLogger(DEFAULT_LOGGER_NAME)
        self._level = level
        self._exceptions_to_ignore = tuple(exceptions_to_ignore)
        self._hooks = hooks

    @staticmethod
    def format(message: str, event_id: int) -> str:
        return f"[{event_id}] {message}"

    def is_enabled_for(self, level: int) -> bool:
        return level >= self._level and self._logger.isEnabledFor(level)

    def debug(self, message: str, event_id: int = 0) -> None:
        self._log(logging.DEBUG, message, event_id, None)

    def info(self, message: str, event_id: int = 0) -> None:
        self._log(logging.INFO, message, event_id, None)

    def warning(
        self, message: str, event_id: int = 0, exception: BaseException | None = None
    ) -> None:
        self._log(logging.WARNING, message, event_id, exception)

    def error(
        self, message: str, event_id: int = 0, exception: BaseException | None = None
    ) -> None:
        if self._hooks is not None:
            self._hooks.fire_on_error(self.format(message, event_id), exception)
        self._log(logging.ERROR, message, event_id, exception)

    def _log(
        self,
        level: int,
        message: str,
        event_id: int,
        exception: BaseException | None,
    ) -> None:
        if exception is not None and isinstance(exception, self._exceptions_to_ignore):
            return
        if not self.is_enabled_for(level):
            return
        extra: dict[str, Any] = {"event_id": event_id}
        if exception is not None:
            extra["error"] = str(exception)
        self._logger.log(
            level,
            self.format(message, event_id),
            exc_info=exception if level >= logging.ERROR else None,
            extra=extra,
        )
