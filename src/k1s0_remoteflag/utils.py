"""値の文字列化などの共通ユーティリティ

ターゲティングの比較と評価ログの両方で同じ文字列表現を使う。
"""

from __future__ import annotations

import json
import math
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable


def get_unix_milliseconds() -> float:
    """現在時刻を Unix ミリ秒で返す。"""
    return float(math.floor(time.time() * 1000))


def number_to_string(value: float | int) -> str:
    """数値を正規の文字列表現に変換する。"""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    if value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    if 1e-7 <= abs(value) < 1e21:
        return format(Decimal(repr(value)), "f")
    mantissa, exponent = repr(value).split("e")
    return f"{mantissa}e{exponent[0]}{exponent[1:].lstrip('0')}"


def datetime_to_unix_seconds(value: datetime) -> float:
    """datetime を Unix 秒に変換する。naive な値は UTC として扱う。"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def unix_seconds_to_datetime(seconds: float) -> datetime | None:
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def format_value(value: Any) -> str:
    """任意の値を正規の文字列表現に変換する。"""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (bool, int, float)):
        return number_to_string(value)
    if isinstance(value, datetime):
        return number_to_string(datetime_to_unix_seconds(value))
    if isinstance(value, (list, tuple)):
        return json.dumps([v if isinstance(v, str) else format_value(v) for v in value])
    if isinstance(value, dict):
        return json.dumps(value, default=format_value)
    return str(value)


def format_string_list(
    items: list[str],
    max_count: int = 0,
    get_omitted_text: Callable[[int], str] | None = None,
    separator: str = ", ",
) -> str:
    """文字列リストを 'a', 'b' 形式で整形する。max_count を超えた分は省略する。"""
    count = len(items)
    if count == 0:
        return ""
    omitted = 0
    if 0 < max_count < count:
        items = items[:max_count]
        omitted = count - max_count
    text = separator.join(f"'{item}'" for item in items)
    if omitted and get_omitted_text is not None:
        text += get_omitted_text(omitted)
    return text


def is_string_list(value: Any) -> bool:
    return isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value)
