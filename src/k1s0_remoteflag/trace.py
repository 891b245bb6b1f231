"""評価トレース (人間向けの評価ログ) ビルダー

評価器の判断経路をインデント付きの行形式テキストとして組み立てる。
診断専用で、評価結果には影響しない。
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from .exceptions import RemoteFlagError
from .models import (
    PrerequisiteFlagComparator,
    PrerequisiteFlagCondition,
    Segment,
    SegmentComparator,
    SegmentCondition,
    Setting,
    SettingType,
    TargetingRule,
    UserComparator,
    UserCondition,
)
from .utils import format_string_list, format_value, is_string_list, unix_seconds_to_datetime

INVALID_NAME_PLACEHOLDER = "<invalid name>"
INVALID_REFERENCE_PLACEHOLDER = "<invalid reference>"
INVALID_OPERATOR_PLACEHOLDER = "<invalid operator>"
INVALID_VALUE_PLACEHOLDER = "<invalid value>"

STRING_LIST_MAX_COUNT = 10

_USER_COMPARATOR_TEXTS = {
    UserComparator.TEXT_IS_ONE_OF: "IS ONE OF",
    UserComparator.SENSITIVE_TEXT_IS_ONE_OF: "IS ONE OF",
    UserComparator.SEMVER_IS_ONE_OF: "IS ONE OF",
    UserComparator.TEXT_IS_NOT_ONE_OF: "IS NOT ONE OF",
    UserComparator.SENSITIVE_TEXT_IS_NOT_ONE_OF: "IS NOT ONE OF",
    UserComparator.SEMVER_IS_NOT_ONE_OF: "IS NOT ONE OF",
    UserComparator.TEXT_CONTAINS_ANY_OF: "CONTAINS ANY OF",
    UserComparator.TEXT_NOT_CONTAINS_ANY_OF: "NOT CONTAINS ANY OF",
    UserComparator.SEMVER_LESS: "<",
    UserComparator.NUMBER_LESS: "<",
    UserComparator.SEMVER_LESS_OR_EQUALS: "<=",
    UserComparator.NUMBER_LESS_OR_EQUALS: "<=",
    UserComparator.SEMVER_GREATER: ">",
    UserComparator.NUMBER_GREATER: ">",
    UserComparator.SEMVER_GREATER_OR_EQUALS: ">=",
    UserComparator.NUMBER_GREATER_OR_EQUALS: ">=",
    UserComparator.NUMBER_EQUALS: "=",
    UserComparator.NUMBER_NOT_EQUALS: "!=",
    UserComparator.DATETIME_BEFORE: "BEFORE",
    UserComparator.DATETIME_AFTER: "AFTER",
    UserComparator.TEXT_EQUALS: "EQUALS",
    UserComparator.SENSITIVE_TEXT_EQUALS: "EQUALS",
    UserComparator.TEXT_NOT_EQUALS: "NOT EQUALS",
    UserComparator.SENSITIVE_TEXT_NOT_EQUALS: "NOT EQUALS",
    UserComparator.TEXT_STARTS_WITH_ANY_OF: "STARTS WITH ANY OF",
    UserComparator.SENSITIVE_TEXT_STARTS_WITH_ANY_OF: "STARTS WITH ANY OF",
    UserComparator.TEXT_NOT_STARTS_WITH_ANY_OF: "NOT STARTS WITH ANY OF",
    UserComparator.SENSITIVE_TEXT_NOT_STARTS_WITH_ANY_OF: "NOT STARTS WITH ANY OF",
    UserComparator.TEXT_ENDS_WITH_ANY_OF: "ENDS WITH ANY OF",
    UserComparator.SENSITIVE_TEXT_ENDS_WITH_ANY_OF: "ENDS WITH ANY OF",
    UserComparator.TEXT_NOT_ENDS_WITH_ANY_OF: "NOT ENDS WITH ANY OF",
    UserComparator.SENSITIVE_TEXT_NOT_ENDS_WITH_ANY_OF: "NOT ENDS WITH ANY OF",
    UserComparator.ARRAY_CONTAINS_ANY_OF: "ARRAY CONTAINS ANY OF",
    UserComparator.SENSITIVE_ARRAY_CONTAINS_ANY_OF: "ARRAY CONTAINS ANY OF",
    UserComparator.ARRAY_NOT_CONTAINS_ANY_OF: "ARRAY NOT CONTAINS ANY OF",
    UserComparator.SENSITIVE_ARRAY_NOT_CONTAINS_ANY_OF: "ARRAY NOT CONTAINS ANY OF",
}


def _values_text(count: int) -> str:
    return "value" if count == 1 else "values"


def format_user_comparator(comparator: UserComparator | None) -> str:
    if comparator is None:
        return INVALID_OPERATOR_PLACEHOLDER
    return _USER_COMPARATOR_TEXTS.get(comparator, INVALID_OPERATOR_PLACEHOLDER)


def format_segment_comparator(comparator: SegmentComparator | None) -> str:
    if comparator is SegmentComparator.IS_IN:
        return "IS IN SEGMENT"
    if comparator is SegmentComparator.IS_NOT_IN:
        return "IS NOT IN SEGMENT"
    return INVALID_OPERATOR_PLACEHOLDER


def format_prerequisite_flag_comparator(comparator: PrerequisiteFlagComparator | None) -> str:
    if comparator is PrerequisiteFlagComparator.EQUALS:
        return "EQUALS"
    if comparator is PrerequisiteFlagComparator.NOT_EQUALS:
        return "NOT EQUALS"
    return INVALID_OPERATOR_PLACEHOLDER


def format_setting_value(value: Any) -> str:
    if value is None:
        return INVALID_VALUE_PLACEHOLDER
    return format_value(value)


class EvaluationTraceBuilder:
    """評価ログを組み立てるビルダー。各メソッドは self を返す。"""

    def __init__(self) -> None:
        self._parts: list[str] = []
        self._indent = ""

    def __str__(self) -> str:
        return "".join(self._parts)

    def reset_indent(self) -> EvaluationTraceBuilder:
        self._indent = ""
        return self

    def increase_indent(self) -> EvaluationTraceBuilder:
        self._indent += "  "
        return self

    def decrease_indent(self) -> EvaluationTraceBuilder:
        self._indent = self._indent[2:]
        return self

    def new_line(self, text: str = "") -> EvaluationTraceBuilder:
        self._parts.append("\n" + self._indent + text)
        return self

    def append(self, text: str) -> EvaluationTraceBuilder:
        self._parts.append(text)
        return self

    # --- 条件 ---

    def append_user_condition(self, condition: UserCondition) -> EvaluationTraceBuilder:
        attribute = condition.comparison_attribute
        if not isinstance(attribute, str):
            attribute = INVALID_NAME_PLACEHOLDER
        comparator = condition.comparator
        value = condition.comparison_value
        if comparator is None:
            return self._append_user_condition_core(attribute, None, None)

        kind = comparator.value_kind
        if kind == "list":
            return self._append_user_condition_string_list(
                attribute, comparator, value, comparator.is_sensitive
            )
        if kind == "string":
            return self._append_user_condition_string(
                attribute, comparator, value, comparator.is_sensitive
            )
        return self._append_user_condition_number(
            attribute,
            comparator,
            value,
            comparator in (UserComparator.DATETIME_BEFORE, UserComparator.DATETIME_AFTER),
        )

    def append_segment_condition(
        self, condition: SegmentCondition, segments: tuple[Segment, ...]
    ) -> EvaluationTraceBuilder:
        index = condition.segment_index
        segment = None
        if isinstance(index, int) and not isinstance(index, bool) and 0 <= index < len(segments):
            segment = segments[index]
        if segment is None:
            name = INVALID_REFERENCE_PLACEHOLDER
        elif isinstance(segment.name, str) and segment.name:
            name = segment.name
        else:
            name = INVALID_NAME_PLACEHOLDER
        comparator = format_segment_comparator(condition.comparator)
        return self.append(f"User {comparator} '{name}'")

    def append_prerequisite_flag_condition(
        self, condition: PrerequisiteFlagCondition, settings: Mapping[str, Setting]
    ) -> EvaluationTraceBuilder:
        key = condition.prerequisite_flag_key
        if not isinstance(key, str):
            key = INVALID_NAME_PLACEHOLDER
        elif key not in settings:
            key = INVALID_REFERENCE_PLACEHOLDER
        comparator = format_prerequisite_flag_comparator(condition.comparator)
        value = format_setting_value(condition.comparison_value.infer())
        return self.append(f"Flag '{key}' {comparator} '{value}'")

    def append_condition_result(self, result: bool) -> EvaluationTraceBuilder:
        return self.append("true" if result else "false")

    def append_condition_consequence(self, result: bool) -> EvaluationTraceBuilder:
        self.append(" => ").append_condition_result(result)
        if not result:
            self.append(", skipping the remaining AND conditions")
        return self

    # --- ルールの THEN 部 ---

    def append_targeting_rule_then_part(
        self, rule: TargetingRule, setting_type: SettingType, new_line: bool
    ) -> EvaluationTraceBuilder:
        (self.new_line() if new_line else self.append(" ")).append("THEN")
        try:
            has_percentage_options = rule.has_percentage_options
        except RemoteFlagError:
            return self.append(f" '{INVALID_VALUE_PLACEHOLDER}'")
        if has_percentage_options:
            return self.append(" % options")
        assert rule.simple_value is not None
        try:
            value: Any = rule.simple_value.value.get(setting_type)
        except RemoteFlagError:
            value = None
        return self.append(f" '{format_setting_value(value)}'")

    def append_targeting_rule_consequence(
        self,
        rule: TargetingRule,
        setting_type: SettingType,
        is_match_or_error: bool | str,
        new_line: bool,
    ) -> EvaluationTraceBuilder:
        self.increase_indent()
        self.append_targeting_rule_then_part(rule, setting_type, new_line).append(" => ")
        if is_match_or_error is True:
            self.append("MATCH, applying rule")
        elif is_match_or_error is False:
            self.append("no match")
        else:
            self.append(is_match_or_error)
        return self.decrease_indent()

    # --- 内部 ---

    def _append_user_condition_core(
        self, attribute: str, comparator: UserComparator | None, value: str | None
    ) -> EvaluationTraceBuilder:
        comparator_text = format_user_comparator(comparator)
        if value is None:
            value = INVALID_VALUE_PLACEHOLDER
        return self.append(f"User.{attribute} {comparator_text} '{value}'")

    def _append_user_condition_string(
        self, attribute: str, comparator: UserComparator, value: Any, is_sensitive: bool
    ) -> EvaluationTraceBuilder:
        if not isinstance(value, str):
            return self._append_user_condition_core(attribute, comparator, None)
        return self._append_user_condition_core(
            attribute, comparator, "<hashed value>" if is_sensitive else value
        )

    def _append_user_condition_string_list(
        self, attribute: str, comparator: UserComparator, value: Any, is_sensitive: bool
    ) -> EvaluationTraceBuilder:
        if not is_string_list(value):
            return self._append_user_condition_core(attribute, comparator, None)
        comparator_text = format_user_comparator(comparator)
        if is_sensitive:
            count = len(value)
            return self.append(
                f"User.{attribute} {comparator_text} [<{count} hashed {_values_text(count)}>]"
            )
        formatted = format_string_list(
            list(value),
            STRING_LIST_MAX_COUNT,
            lambda count: f", ... <{count} more {_values_text(count)}>",
        )
        return self.append(f"User.{attribute} {comparator_text} [{formatted}]")

    def _append_user_condition_number(
        self, attribute: str, comparator: UserComparator, value: Any, is_datetime: bool
    ) -> EvaluationTraceBuilder:
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            return self._append_user_condition_core(attribute, comparator, None)
        comparator_text = format_user_comparator(comparator)
        value_text = format_value(value)
        if is_datetime:
            moment = unix_seconds_to_datetime(value)
            if moment is not None:
                iso = moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"
                return self.append(
                    f"User.{attribute} {comparator_text} '{value_text}' ({iso} UTC)"
                )
        return self.append(f"User.{attribute} {comparator_text} '{value_text}'")


def format_user_condition(condition: UserCondition) -> str:
    return str(EvaluationTraceBuilder().append_user_condition(condition))
