"""比較演算子ライブラリ

ユーザー属性値の変換と、各比較演算子ファミリーの純粋関数。
属性値が変換できない場合は InvalidAttributeError を送出し、呼び出し側で
「条件不一致」として扱う。比較値 (config JSON 側) の形式不備は
RemoteFlagError(INVALID_CONFIG) とする。
"""

from __future__ import annotations

import hashlib
import json
import math
import re
from collections.abc import Sequence
from datetime import datetime
from typing import Any

import semver

from .exceptions import RemoteFlagError, RemoteFlagErrorCodes
from .models import UserComparator
from .utils import datetime_to_unix_seconds, format_value

_NUMBER_PATTERN = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")


class InvalidAttributeError(ValueError):
    """ユーザー属性値が比較演算子に適合しない。"""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


def _invalid_comparison_value() -> RemoteFlagError:
    return RemoteFlagError(
        code=RemoteFlagErrorCodes.INVALID_CONFIG,
        message="Comparison value is missing or invalid.",
    )


# --- 属性値の変換 ---


def to_text(value: Any) -> tuple[str, bool]:
    """属性値を文字列に変換する。戻り値の 2 番目は型変換が発生したかどうか。"""
    if isinstance(value, str):
        return value, False
    return format_value(value), True


def to_semver(value: Any) -> semver.Version:
    text = value if isinstance(value, str) else format_value(value)
    try:
        return semver.Version.parse(text.strip())
    except (ValueError, TypeError) as e:
        raise InvalidAttributeError(f"'{text}' is not a valid semantic version") from e


def parse_number(text: str) -> float:
    """小数点にカンマを許容して数値をパースする。パースできなければ ValueError。"""
    text = text.strip().replace(",", ".")
    if text == "NaN":
        return math.nan
    if text in ("Infinity", "+Infinity"):
        return math.inf
    if text == "-Infinity":
        return -math.inf
    if not _NUMBER_PATTERN.match(text):
        raise ValueError(f"'{text}' is not a number")
    return float(text)


def to_number(value: Any) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    if isinstance(value, str):
        try:
            return parse_number(value)
        except ValueError:
            pass
    raise InvalidAttributeError(f"'{format_value(value)}' is not a valid decimal number")


def to_unix_seconds(value: Any) -> float:
    if isinstance(value, datetime):
        return datetime_to_unix_seconds(value)
    try:
        return to_number(value)
    except InvalidAttributeError:
        raise InvalidAttributeError(
            f"'{format_value(value)}' is not a valid Unix timestamp "
            "(number of seconds elapsed since Unix epoch)"
        ) from None


def to_string_list(value: Any) -> list[str]:
    """配列属性を文字列リストに変換する。JSON 配列文字列とカンマ区切り文字列を受け付ける。"""
    if isinstance(value, (list, tuple)):
        if all(isinstance(v, str) for v in value):
            return list(value)
    elif isinstance(value, str):
        text = value.strip()
        if text.startswith("["):
            try:
                parsed = json.loads(text)
            except ValueError:
                parsed = None
            if isinstance(parsed, list) and all(isinstance(v, str) for v in parsed):
                return parsed
        else:
            return [item.strip() for item in text.split(",") if item.strip()]
    raise InvalidAttributeError(f"'{format_value(value)}' is not a valid string array")


# --- ハッシュ ---


def hash_value(value: str | bytes, config_salt: str, context_salt: str) -> str:
    """ソルト付き SHA-256 ハッシュ (16 進文字列) を返す。"""
    data = value.encode("utf-8") if isinstance(value, str) else value
    return hashlib.sha256(data + (config_salt + context_salt).encode("utf-8")).hexdigest()


# --- 比較値の検証 ---


def ensure_string(comparison_value: Any) -> str:
    if not isinstance(comparison_value, str):
        raise _invalid_comparison_value()
    return comparison_value


def ensure_number(comparison_value: Any) -> float:
    if not isinstance(comparison_value, (int, float)) or isinstance(comparison_value, bool):
        raise _invalid_comparison_value()
    return float(comparison_value)


def ensure_string_list(comparison_value: Any) -> list[str]:
    if not isinstance(comparison_value, (list, tuple)) or not all(
        isinstance(v, str) for v in comparison_value
    ):
        raise _invalid_comparison_value()
    return list(comparison_value)


# --- テキスト ---


def text_equals(text: str, comparison_value: str, negate: bool) -> bool:
    return (text == comparison_value) != negate


def text_is_one_of(text: str, comparison_values: Sequence[str], negate: bool) -> bool:
    return (text in comparison_values) != negate


def text_contains_any_of(text: str, comparison_values: Sequence[str], negate: bool) -> bool:
    return any(v in text for v in comparison_values) != negate


def text_starts_or_ends_with_any_of(
    text: str, comparison_values: Sequence[str], starts_with: bool, negate: bool
) -> bool:
    if starts_with:
        matched = any(text.startswith(v) for v in comparison_values)
    else:
        matched = any(text.endswith(v) for v in comparison_values)
    return matched != negate


# --- センシティブ (ハッシュ) ---


def sensitive_text_equals(
    text: str, comparison_value: str, config_salt: str, context_salt: str, negate: bool
) -> bool:
    return (hash_value(text, config_salt, context_salt) == comparison_value) != negate


def sensitive_text_is_one_of(
    text: str,
    comparison_values: Sequence[str],
    config_salt: str,
    context_salt: str,
    negate: bool,
) -> bool:
    hashed = hash_value(text, config_salt, context_salt)
    return (hashed in comparison_values) != negate


def sensitive_text_starts_or_ends_with_any_of(
    text: str,
    comparison_values: Sequence[str],
    config_salt: str,
    context_salt: str,
    starts_with: bool,
    negate: bool,
) -> bool:
    """比較値は "<バイト長>_<ハッシュ>" 形式。先頭/末尾 N バイトのハッシュと比較する。"""
    data = text.encode("utf-8")
    matched = False
    for item in comparison_values:
        length_text, sep, expected = item.partition("_")
        if not sep:
            raise _invalid_comparison_value()
        try:
            length = int(length_text.strip())
        except ValueError as e:
            raise _invalid_comparison_value() from e
        if length < 0:
            raise _invalid_comparison_value()
        if len(data) < length:
            continue
        part = data[:length] if starts_with else data[len(data) - length :]
        if hash_value(part, config_salt, context_salt) == expected:
            matched = True
            break
    return matched != negate


# --- SemVer ---


def _parse_comparison_semver(text: str) -> semver.Version:
    try:
        return semver.Version.parse(text)
    except (ValueError, TypeError) as e:
        raise InvalidAttributeError(
            f"comparison value '{text}' is not a valid semantic version"
        ) from e


def semver_is_one_of(
    version: semver.Version, comparison_values: Sequence[str], negate: bool
) -> bool:
    """不正な比較値が 1 つでもあれば InvalidAttributeError (否定形でも不一致扱い)。"""
    matched = False
    for item in comparison_values:
        item = item.strip()
        if not item:
            continue
        if version == _parse_comparison_semver(item):
            matched = True
    return matched != negate


def semver_compare(
    version: semver.Version, comparison_value: str, comparator: UserComparator
) -> bool:
    other = _parse_comparison_semver(comparison_value.strip())
    result = version.compare(other)
    if comparator is UserComparator.SEMVER_LESS:
        return result < 0
    if comparator is UserComparator.SEMVER_LESS_OR_EQUALS:
        return result <= 0
    if comparator is UserComparator.SEMVER_GREATER:
        return result > 0
    return result >= 0


# --- 数値 / 日時 ---


def number_compare(number: float, comparison_value: float, comparator: UserComparator) -> bool:
    if comparator is UserComparator.NUMBER_EQUALS:
        return number == comparison_value
    if comparator is UserComparator.NUMBER_NOT_EQUALS:
        return number != comparison_value
    if comparator is UserComparator.NUMBER_LESS:
        return number < comparison_value
    if comparator is UserComparator.NUMBER_LESS_OR_EQUALS:
        return number <= comparison_value
    if comparator is UserComparator.NUMBER_GREATER:
        return number > comparison_value
    return number >= comparison_value


def datetime_compare(seconds: float, comparison_value: float, before: bool) -> bool:
    if math.isnan(seconds):
        return False
    return seconds < comparison_value if before else seconds > comparison_value


# --- 配列 ---


def array_contains_any_of(
    items: Sequence[str], comparison_values: Sequence[str], negate: bool
) -> bool:
    return any(item in comparison_values for item in items) != negate


def sensitive_array_contains_any_of(
    items: Sequence[str],
    comparison_values: Sequence[str],
    config_salt: str,
    context_salt: str,
    negate: bool,
) -> bool:
    matched = any(
        hash_value(item, config_salt, context_salt) in comparison_values for item in items
    )
    return matched != negate
