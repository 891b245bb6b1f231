"""config JSON データモデル

サーバーから配信される圧縮キー形式の config JSON を不変 dataclass に変換する。
リスト・辞書の構造不備はパース時に RemoteFlagError(INVALID_CONFIG) とし、
比較演算子コードや値コンテナの不備は該当フラグの評価時まで保持する。
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Union

from .exceptions import RemoteFlagError, RemoteFlagErrorCodes
from .utils import format_value

DEFAULT_PERCENTAGE_ATTRIBUTE = "Identifier"


class SettingType(IntEnum):
    """設定値の型。UNSUPPORTED は不正なオーバーライド値を表す。"""

    BOOLEAN = 0
    STRING = 1
    INT = 2
    DOUBLE = 3
    UNSUPPORTED = -1

    @classmethod
    def parse(cls, code: Any) -> SettingType:
        if isinstance(code, int) and not isinstance(code, bool) and 0 <= code <= 3:
            return cls(code)
        return cls.UNSUPPORTED


class RedirectMode(IntEnum):
    """データガバナンスのリダイレクトモード。"""

    NO = 0
    SHOULD = 1
    FORCE = 2


class UserComparator(IntEnum):
    """ユーザー条件の比較演算子。"""

    TEXT_IS_ONE_OF = 0
    TEXT_IS_NOT_ONE_OF = 1
    TEXT_CONTAINS_ANY_OF = 2
    TEXT_NOT_CONTAINS_ANY_OF = 3
    SEMVER_IS_ONE_OF = 4
    SEMVER_IS_NOT_ONE_OF = 5
    SEMVER_LESS = 6
    SEMVER_LESS_OR_EQUALS = 7
    SEMVER_GREATER = 8
    SEMVER_GREATER_OR_EQUALS = 9
    NUMBER_EQUALS = 10
    NUMBER_NOT_EQUALS = 11
    NUMBER_LESS = 12
    NUMBER_LESS_OR_EQUALS = 13
    NUMBER_GREATER = 14
    NUMBER_GREATER_OR_EQUALS = 15
    SENSITIVE_TEXT_IS_ONE_OF = 16
    SENSITIVE_TEXT_IS_NOT_ONE_OF = 17
    DATETIME_BEFORE = 18
    DATETIME_AFTER = 19
    SENSITIVE_TEXT_EQUALS = 20
    SENSITIVE_TEXT_NOT_EQUALS = 21
    SENSITIVE_TEXT_STARTS_WITH_ANY_OF = 22
    SENSITIVE_TEXT_NOT_STARTS_WITH_ANY_OF = 23
    SENSITIVE_TEXT_ENDS_WITH_ANY_OF = 24
    SENSITIVE_TEXT_NOT_ENDS_WITH_ANY_OF = 25
    SENSITIVE_ARRAY_CONTAINS_ANY_OF = 26
    SENSITIVE_ARRAY_NOT_CONTAINS_ANY_OF = 27
    TEXT_EQUALS = 28
    TEXT_NOT_EQUALS = 29
    TEXT_STARTS_WITH_ANY_OF = 30
    TEXT_NOT_STARTS_WITH_ANY_OF = 31
    TEXT_ENDS_WITH_ANY_OF = 32
    TEXT_NOT_ENDS_WITH_ANY_OF = 33
    ARRAY_CONTAINS_ANY_OF = 34
    ARRAY_NOT_CONTAINS_ANY_OF = 35

    @property
    def value_kind(self) -> str:
        """比較値の種別 ("string" / "number" / "list")。"""
        if self in _NUMBER_COMPARATORS:
            return "number"
        if self in _STRING_COMPARATORS:
            return "string"
        return "list"

    @property
    def is_sensitive(self) -> bool:
        return self in _SENSITIVE_COMPARATORS


_NUMBER_COMPARATORS = frozenset(
    {
        UserComparator.NUMBER_EQUALS,
        UserComparator.NUMBER_NOT_EQUALS,
        UserComparator.NUMBER_LESS,
        UserComparator.NUMBER_LESS_OR_EQUALS,
        UserComparator.NUMBER_GREATER,
        UserComparator.NUMBER_GREATER_OR_EQUALS,
        UserComparator.DATETIME_BEFORE,
        UserComparator.DATETIME_AFTER,
    }
)

_STRING_COMPARATORS = frozenset(
    {
        UserComparator.SEMVER_LESS,
        UserComparator.SEMVER_LESS_OR_EQUALS,
        UserComparator.SEMVER_GREATER,
        UserComparator.SEMVER_GREATER_OR_EQUALS,
        UserComparator.SENSITIVE_TEXT_EQUALS,
        UserComparator.SENSITIVE_TEXT_NOT_EQUALS,
        UserComparator.TEXT_EQUALS,
        UserComparator.TEXT_NOT_EQUALS,
    }
)

_SENSITIVE_COMPARATORS = frozenset(
    {
        UserComparator.SENSITIVE_TEXT_IS_ONE_OF,
        UserComparator.SENSITIVE_TEXT_IS_NOT_ONE_OF,
        UserComparator.SENSITIVE_TEXT_EQUALS,
        UserComparator.SENSITIVE_TEXT_NOT_EQUALS,
        UserComparator.SENSITIVE_TEXT_STARTS_WITH_ANY_OF,
        UserComparator.SENSITIVE_TEXT_NOT_STARTS_WITH_ANY_OF,
        UserComparator.SENSITIVE_TEXT_ENDS_WITH_ANY_OF,
        UserComparator.SENSITIVE_TEXT_NOT_ENDS_WITH_ANY_OF,
        UserComparator.SENSITIVE_ARRAY_CONTAINS_ANY_OF,
        UserComparator.SENSITIVE_ARRAY_NOT_CONTAINS_ANY_OF,
    }
)


class SegmentComparator(IntEnum):
    """セグメント条件の比較演算子。"""

    IS_IN = 0
    IS_NOT_IN = 1


class PrerequisiteFlagComparator(IntEnum):
    """前提フラグ条件の比較演算子。"""

    EQUALS = 0
    NOT_EQUALS = 1


def _try_enum(enum_type: type[IntEnum], code: Any) -> Any:
    if not isinstance(code, int) or isinstance(code, bool):
        return None
    try:
        return enum_type(code)
    except ValueError:
        return None


def _invalid(message: str) -> RemoteFlagError:
    return RemoteFlagError(code=RemoteFlagErrorCodes.INVALID_CONFIG, message=message)


def _ensure_list(data: Any, what: str) -> list[Any]:
    if data is None:
        return []
    if not isinstance(data, list):
        raise _invalid(f"{what} list is invalid.")
    return data


def _ensure_dict(data: Any, what: str) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise _invalid(f"{what} is missing or invalid.")
    return data


@dataclass(frozen=True)
class SettingValue:
    """値コンテナ ({"b": ...} / {"s": ...} / {"i": ...} / {"d": ...})。"""

    raw: Any

    _KEYS = {
        SettingType.BOOLEAN: "b",
        SettingType.STRING: "s",
        SettingType.INT: "i",
        SettingType.DOUBLE: "d",
    }

    def get(self, setting_type: SettingType) -> bool | str | int | float:
        """設定型に従って値を取り出す。不正な場合は RemoteFlagError。"""
        if setting_type is SettingType.UNSUPPORTED:
            if self.raw is None:
                raise _invalid("Setting value is null.")
            raise _invalid(
                f"Setting value '{format_value(self.raw)}' is of an unsupported type "
                f"({type(self.raw).__name__})."
            )
        value = self.raw.get(self._KEYS[setting_type]) if isinstance(self.raw, dict) else None
        if setting_type is SettingType.BOOLEAN and isinstance(value, bool):
            return value
        if setting_type is SettingType.STRING and isinstance(value, str):
            return value
        if setting_type is SettingType.INT and isinstance(value, int) and not isinstance(value, bool):
            return value
        if (
            setting_type is SettingType.DOUBLE
            and isinstance(value, (int, float))
            and not isinstance(value, bool)
        ):
            return float(value)
        raise _invalid("Setting value is missing or invalid.")

    def infer(self) -> bool | str | int | float | None:
        """型情報なしで値を推定する。推定できない場合は None。"""
        if not isinstance(self.raw, dict):
            return None
        for setting_type, key in self._KEYS.items():
            if key in self.raw:
                try:
                    return self.get(setting_type)
                except RemoteFlagError:
                    return None
        return None


@dataclass(frozen=True)
class Preferences:
    """config JSON のプリファレンス。"""

    base_url: str | None = None
    redirect_mode: RedirectMode = RedirectMode.NO
    salt: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Preferences:
        base_url = data.get("u")
        salt = data.get("s")
        return cls(
            base_url=base_url if isinstance(base_url, str) else None,
            redirect_mode=_try_enum(RedirectMode, data.get("r", 0)) or RedirectMode.NO,
            salt=salt if isinstance(salt, str) else None,
        )


@dataclass(frozen=True)
class UserCondition:
    """ユーザー属性に対する条件。"""

    comparison_attribute: Any
    comparator: UserComparator | None
    comparison_value: Any

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UserCondition:
        comparator = _try_enum(UserComparator, data.get("c"))
        if comparator is None:
            comparison_value = next(
                (data[k] for k in ("s", "d", "l") if data.get(k) is not None), None
            )
        else:
            comparison_value = data.get({"string": "s", "number": "d", "list": "l"}[comparator.value_kind])
        return cls(
            comparison_attribute=data.get("a"),
            comparator=comparator,
            comparison_value=comparison_value,
        )


@dataclass(frozen=True)
class SegmentCondition:
    """セグメント参照条件。"""

    segment_index: Any
    comparator: SegmentComparator | None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SegmentCondition:
        return cls(
            segment_index=data.get("s"),
            comparator=_try_enum(SegmentComparator, data.get("c")),
        )


@dataclass(frozen=True)
class PrerequisiteFlagCondition:
    """前提フラグ条件。"""

    prerequisite_flag_key: Any
    comparator: PrerequisiteFlagComparator | None
    comparison_value: SettingValue

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PrerequisiteFlagCondition:
        return cls(
            prerequisite_flag_key=data.get("f"),
            comparator=_try_enum(PrerequisiteFlagComparator, data.get("c")),
            comparison_value=SettingValue(data.get("v")),
        )


Condition = Union[UserCondition, SegmentCondition, PrerequisiteFlagCondition]


def _parse_condition(data: Any) -> Condition:
    container = _ensure_dict(data, "Condition")
    if "u" in container:
        return UserCondition.from_dict(_ensure_dict(container["u"], "User condition"))
    if "s" in container:
        return SegmentCondition.from_dict(_ensure_dict(container["s"], "Segment condition"))
    if "p" in container:
        return PrerequisiteFlagCondition.from_dict(
            _ensure_dict(container["p"], "Prerequisite flag condition")
        )
    raise _invalid("Condition is missing or invalid.")


@dataclass(frozen=True)
class Segment:
    """名前付きの再利用可能な条件グループ。"""

    name: Any
    conditions: tuple[UserCondition, ...] = ()

    @classmethod
    def from_dict(cls, data: Any) -> Segment:
        data = _ensure_dict(data, "Segment")
        return cls(
            name=data.get("n"),
            conditions=tuple(
                UserCondition.from_dict(_ensure_dict(c, "User condition"))
                for c in _ensure_list(data.get("r"), "Segment condition")
            ),
        )


@dataclass(frozen=True)
class PercentageOption:
    """パーセンテージオプション。"""

    percentage: Any
    value: SettingValue
    variation_id: str | None = None

    @classmethod
    def from_dict(cls, data: Any) -> PercentageOption:
        data = _ensure_dict(data, "Percentage option")
        return cls(
            percentage=data.get("p"),
            value=SettingValue(data.get("v")),
            variation_id=data.get("i"),
        )


@dataclass(frozen=True)
class SimpleValue:
    """ルールの THEN 部に指定された単純値。"""

    value: SettingValue
    variation_id: str | None = None


@dataclass(frozen=True)
class TargetingRule:
    """AND 条件グループと、その結果 (単純値または % オプション)。"""

    conditions: tuple[Condition, ...] = ()
    simple_value: SimpleValue | None = None
    percentage_options: tuple[PercentageOption, ...] | None = None

    @classmethod
    def from_dict(cls, data: Any) -> TargetingRule:
        data = _ensure_dict(data, "Targeting rule")
        simple_value = None
        raw_simple = data.get("s")
        if isinstance(raw_simple, dict):
            simple_value = SimpleValue(SettingValue(raw_simple.get("v")), raw_simple.get("i"))
        elif raw_simple is not None:
            simple_value = SimpleValue(SettingValue(None))
        percentage_options = None
        if data.get("p") is not None:
            percentage_options = tuple(
                PercentageOption.from_dict(o) for o in _ensure_list(data["p"], "Percentage option")
            )
        return cls(
            conditions=tuple(_parse_condition(c) for c in _ensure_list(data.get("c"), "Condition")),
            simple_value=simple_value,
            percentage_options=percentage_options,
        )

    @property
    def has_percentage_options(self) -> bool:
        """THEN 部が % オプションかどうか。THEN 部が不正なら RemoteFlagError。"""
        if self.simple_value is not None and self.percentage_options is None:
            return False
        if self.simple_value is None and self.percentage_options is not None:
            return True
        raise _invalid("Targeting rule THEN part is missing or invalid.")


@dataclass(frozen=True)
class Setting:
    """フィーチャーフラグ / 設定値の定義。"""

    setting_type: SettingType
    value: SettingValue
    variation_id: str | None = None
    percentage_option_attribute: str | None = None
    targeting_rules: tuple[TargetingRule, ...] = ()
    percentage_options: tuple[PercentageOption, ...] = ()
    config_salt: str | None = None
    segments: tuple[Segment, ...] = field(default=(), repr=False)

    @classmethod
    def from_dict(
        cls,
        data: Any,
        config_salt: str | None = None,
        segments: tuple[Segment, ...] = (),
    ) -> Setting:
        data = _ensure_dict(data, "Setting")
        attribute = data.get("a")
        return cls(
            setting_type=SettingType.parse(data.get("t")),
            value=SettingValue(data.get("v")),
            variation_id=data.get("i"),
            percentage_option_attribute=attribute if isinstance(attribute, str) else None,
            targeting_rules=tuple(
                TargetingRule.from_dict(r) for r in _ensure_list(data.get("r"), "Targeting rule")
            ),
            percentage_options=tuple(
                PercentageOption.from_dict(o)
                for o in _ensure_list(data.get("p"), "Percentage option")
            ),
            config_salt=config_salt,
            segments=segments,
        )

    @classmethod
    def from_value(cls, value: Any) -> Setting:
        """単純な Python 値からルールなしの Setting を生成する。"""
        if isinstance(value, bool):
            return cls(SettingType.BOOLEAN, SettingValue({"b": value}))
        if isinstance(value, str):
            return cls(SettingType.STRING, SettingValue({"s": value}))
        if isinstance(value, int):
            return cls(SettingType.INT, SettingValue({"i": value}))
        if isinstance(value, float):
            return cls(SettingType.DOUBLE, SettingValue({"d": value}))
        return cls(SettingType.UNSUPPORTED, SettingValue(value))

    @property
    def percentage_attribute(self) -> str:
        return self.percentage_option_attribute or DEFAULT_PERCENTAGE_ATTRIBUTE

    @property
    def has_targeting(self) -> bool:
        return bool(self.targeting_rules) or bool(self.percentage_options)

    def get_value(self) -> bool | str | int | float:
        return self.value.get(self.setting_type)


@dataclass(frozen=True)
class ConfigDocument:
    """ダウンロードされた config JSON 全体。"""

    preferences: Preferences | None = None
    segments: tuple[Segment, ...] = ()
    settings: Mapping[str, Setting] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> ConfigDocument:
        if not isinstance(data, dict):
            raise _invalid("Invalid config JSON content.")
        preferences = None
        if isinstance(data.get("p"), dict):
            preferences = Preferences.from_dict(data["p"])
        segments = tuple(Segment.from_dict(s) for s in _ensure_list(data.get("s"), "Segment"))
        raw_settings = data.get("f") or {}
        if not isinstance(raw_settings, dict):
            raise _invalid("Setting map is invalid.")
        salt = preferences.salt if preferences is not None else None
        settings = {
            key: Setting.from_dict(value, config_salt=salt, segments=segments)
            for key, value in raw_settings.items()
        }
        return cls(preferences=preferences, segments=segments, settings=settings)

    @classmethod
    def from_json(cls, text: str) -> ConfigDocument:
        """config JSON 文字列をパースする。"""
        try:
            data = json.loads(text)
        except ValueError as e:
            raise RemoteFlagError(
                code=RemoteFlagErrorCodes.INVALID_CONFIG,
                message=f"JSON error: {e}",
                cause=e,
            ) from e
        return cls.from_dict(data)
