"""クライアントイベントフック"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .models import Setting
    from .results import EvaluationDetails

logger = logging.getLogger(__name__)


class Hooks:
    """on_config_changed / on_flag_evaluated / on_error コールバックを管理する。

    コールバックは登録順に同期的に呼び出す。コールバック内の例外はログに記録して
    握りつぶし、後続のコールバック呼び出しは継続する。
    """

    def __init__(self) -> None:
        self._on_config_changed: list[Callable[[Mapping[str, Setting]], Any]] = []
        self._on_flag_evaluated: list[Callable[[EvaluationDetails], Any]] = []
        self._on_error: list[Callable[[str, BaseException | None], Any]] = []

    def add_on_config_changed(self, callback: Callable[[Mapping[str, Setting]], Any]) -> None:
        self._on_config_changed.append(callback)

    def add_on_flag_evaluated(self, callback: Callable[[EvaluationDetails], Any]) -> None:
        self._on_flag_evaluated.append(callback)

    def add_on_error(self, callback: Callable[[str, BaseException | None], Any]) -> None:
        self._on_error.append(callback)

    def clear(self) -> None:
        """登録済みのコールバックをすべて削除する。"""
        self._on_config_changed.clear()
        self._on_flag_evaluated.clear()
        self._on_error.clear()

    def fire_on_config_changed(self, settings: Mapping[str, Setting]) -> None:
        for callback in list(self._on_config_changed):
            self._invoke("on_config_changed", callback, settings)

    def fire_on_flag_evaluated(self, details: EvaluationDetails) -> None:
        for callback in list(self._on_flag_evaluated):
            self._invoke("on_flag_evaluated", callback, details)

    def fire_on_error(self, message: str, exception: BaseException | None = None) -> None:
        for callback in list(self._on_error):
            self._invoke("on_error", callback, message, exception)

    @staticmethod
    def _invoke(name: str, callback: Callable[..., Any], *args: Any) -> None:
        try:
            callback(*args)
        except Exception as e:
            logger.error(
                "Exception occurred in hook callback",
                extra={"hook": name, "error": str(e)},
            )
