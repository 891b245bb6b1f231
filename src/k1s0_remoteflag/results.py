"""評価結果・リフレッシュ結果モデル"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .context import EvaluationContext
from .models import PercentageOption, TargetingRule


@dataclass(frozen=True)
class EvaluationResult:
    """評価器が返す 1 フラグ分の評価結果。"""

    value: bool | str | int | float
    variation_id: str | None = None
    matched_targeting_rule: TargetingRule | None = None
    matched_percentage_option: PercentageOption | None = None


@dataclass(frozen=True)
class EvaluationDetails:
    """クライアントが公開する評価詳細。"""

    key: str
    value: Any
    variation_id: str | None = None
    user: EvaluationContext | None = None
    is_default_value: bool = False
    error: str | None = None
    error_exception: BaseException | None = None
    fetch_time_unix_milliseconds: float = 0.0
    matched_targeting_rule: TargetingRule | None = None
    matched_percentage_option: PercentageOption | None = None

    @classmethod
    def from_error(
        cls,
        key: str,
        value: Any,
        user: EvaluationContext | None,
        error: str,
        fetch_time_unix_milliseconds: float = 0.0,
        exception: BaseException | None = None,
    ) -> EvaluationDetails:
        return cls(
            key=key,
            value=value,
            user=user,
            is_default_value=True,
            error=error,
            error_exception=exception,
            fetch_time_unix_milliseconds=fetch_time_unix_milliseconds,
        )


@dataclass(frozen=True)
class RefreshResult:
    """force_refresh の結果。"""

    is_success: bool
    error: str | None = None
