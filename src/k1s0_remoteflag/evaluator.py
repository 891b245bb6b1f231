"""ターゲティングルール評価器

設定のターゲティングルールと % オプションを順に評価して値を決定する。
ユーザー属性の欠落・不正は該当条件の不一致として扱い、config JSON の
構造不備 (不正なセグメント参照、未知の演算子、循環する前提フラグなど) は
RemoteFlagError を送出して当該フラグの評価を中断する。
"""

from __future__ import annotations

import hashlib
from collections.abc import Mapping
from dataclasses import dataclass
from typing import assert_never

from . import comparators
from .comparators import InvalidAttributeError
from .context import EvaluationContext
from .exceptions import RemoteFlagError, RemoteFlagErrorCodes
from .log import InternalLogger
from .models import (
    Condition,
    PercentageOption,
    PrerequisiteFlagComparator,
    PrerequisiteFlagCondition,
    SegmentComparator,
    SegmentCondition,
    Setting,
    TargetingRule,
    UserComparator,
    UserCondition,
)
from .results import EvaluationResult
from .trace import (
    EvaluationTraceBuilder,
    format_segment_comparator,
    format_setting_value,
    format_user_condition,
)
from .utils import format_value

_MISSING_USER_MESSAGE = "cannot evaluate, User Object is missing"


def _invalid(message: str) -> RemoteFlagError:
    return RemoteFlagError(code=RemoteFlagErrorCodes.INVALID_CONFIG, message=message)


def percentage_scale(key: str, attribute_value: str) -> int:
    """設定キーと属性値から [0, 100) のハッシュ値を算出する。"""
    digest = hashlib.sha1((key + attribute_value).encode("utf-8")).hexdigest()
    return int(digest[:7], 16) % 100


@dataclass(frozen=True)
class _EvaluateContext:
    key: str
    setting: Setting
    user: EvaluationContext | None
    settings: Mapping[str, Setting]
    visited_keys: tuple[str, ...] = ()


class RolloutEvaluator:
    """設定値をターゲティングルールに従って評価する。

    評価は同期的かつ副作用なし (ログ出力を除く) で、不変のスナップショットに
    対して任意のスレッド・タスクから並行に呼び出せる。
    """

    def __init__(self, logger: InternalLogger) -> None:
        self._logger = logger

    def evaluate(
        self,
        key: str,
        setting: Setting,
        user: EvaluationContext | None,
        settings: Mapping[str, Setting],
        trace: EvaluationTraceBuilder | None = None,
    ) -> EvaluationResult:
        """設定を評価する。

        Args:
            key: 設定キー
            setting: 評価対象の設定
            user: 評価コンテキスト (None の場合はターゲティングを行わない)
            settings: 前提フラグ解決用の全設定
            trace: 評価ログビルダー (省略可)

        Raises:
            RemoteFlagError: config JSON の構造不備で評価を継続できない場合
        """
        context = _EvaluateContext(key=key, setting=setting, user=user, settings=settings)
        return self._evaluate_setting(context, trace)

    def _evaluate_setting(
        self, context: _EvaluateContext, trace: EvaluationTraceBuilder | None
    ) -> EvaluationResult:
        if trace is not None:
            trace.append(f"Evaluating '{context.key}'")
            if context.user is not None:
                trace.append(f" for User '{context.user}'")
            trace.increase_indent()
        try:
            result = self._evaluate_setting_core(context, trace)
            if trace is not None:
                trace.new_line(f"Returning '{format_setting_value(result.value)}'.")
            return result
        finally:
            if trace is not None:
                trace.decrease_indent()

    def _evaluate_setting_core(
        self, context: _EvaluateContext, trace: EvaluationTraceBuilder | None
    ) -> EvaluationResult:
        setting = context.setting
        if context.user is None:
            if setting.has_targeting:
                self._logger.warning(
                    f"Cannot evaluate targeting rules and % options for setting '{context.key}' "
                    "(User Object is missing). You should pass a User Object to the evaluation "
                    "methods like `get_value()` in order to make targeting work properly.",
                    event_id=3001,
                )
                if trace is not None:
                    trace.new_line(
                        "Skipping targeting rules and % options because the User Object is missing."
                    )
            return EvaluationResult(value=setting.get_value(), variation_id=setting.variation_id)

        if setting.targeting_rules:
            result = self._evaluate_targeting_rules(context, trace)
            if result is not None:
                return result

        if setting.percentage_options:
            result = self._evaluate_percentage_options(
                setting.percentage_options, None, context, trace
            )
            if result is not None:
                return result

        return EvaluationResult(value=setting.get_value(), variation_id=setting.variation_id)

    # --- ターゲティングルール ---

    def _evaluate_targeting_rules(
        self, context: _EvaluateContext, trace: EvaluationTraceBuilder | None
    ) -> EvaluationResult | None:
        setting = context.setting
        if trace is not None:
            trace.new_line("Evaluating targeting rules and applying the first match if any:")

        for rule in setting.targeting_rules:
            is_match_or_error = self._evaluate_conditions(
                rule.conditions, context.key, context, trace
            )
            new_line = len(rule.conditions) > 1 or any(
                not isinstance(c, UserCondition) for c in rule.conditions
            )
            if is_match_or_error is not True:
                if trace is not None:
                    trace.append_targeting_rule_consequence(
                        rule, setting.setting_type, is_match_or_error, new_line
                    )
                continue

            if trace is not None:
                trace.append_targeting_rule_consequence(
                    rule, setting.setting_type, True, new_line
                )

            if not rule.has_percentage_options:
                assert rule.simple_value is not None
                return EvaluationResult(
                    value=rule.simple_value.value.get(setting.setting_type),
                    variation_id=rule.simple_value.variation_id,
                    matched_targeting_rule=rule,
                )

            assert rule.percentage_options is not None
            if trace is not None:
                trace.increase_indent()
            result = self._evaluate_percentage_options(
                rule.percentage_options, rule, context, trace
            )
            if result is not None:
                if trace is not None:
                    trace.decrease_indent()
                return result
            if trace is not None:
                trace.new_line(
                    "The current targeting rule is ignored and the evaluation continues "
                    "with the next rule."
                ).decrease_indent()
        return None

    def _evaluate_conditions(
        self,
        conditions: tuple[Condition, ...],
        context_salt: str,
        context: _EvaluateContext,
        trace: EvaluationTraceBuilder | None,
    ) -> bool | str:
        """AND 条件を評価する。最初の不一致で打ち切る。

        Returns:
            一致なら True、不一致なら False、属性欠落などで評価できなければその理由
        """
        result: bool | str = True
        if trace is not None:
            trace.new_line("- ")

        for index, condition in enumerate(conditions):
            if trace is not None:
                if index == 0:
                    trace.append("IF ").increase_indent()
                else:
                    trace.increase_indent().new_line("AND ")

            if isinstance(condition, UserCondition):
                if trace is not None:
                    trace.append_user_condition(condition)
                result = self._evaluate_user_condition(condition, context_salt, context)
            elif isinstance(condition, SegmentCondition):
                result = self._evaluate_segment_condition(condition, context, trace)
            elif isinstance(condition, PrerequisiteFlagCondition):
                result = self._evaluate_prerequisite_flag_condition(condition, context, trace)
            else:
                assert_never(condition)

            if trace is not None:
                if len(conditions) > 1:
                    trace.append_condition_consequence(result is True)
                trace.decrease_indent()

            if result is not True:
                break
        return result

    # --- ユーザー条件 ---

    def _evaluate_user_condition(
        self, condition: UserCondition, context_salt: str, context: _EvaluateContext
    ) -> bool | str:
        if context.user is None:
            return _MISSING_USER_MESSAGE
        attribute = condition.comparison_attribute
        if not isinstance(attribute, str):
            raise _invalid("Comparison attribute name is missing.")
        comparator = condition.comparator
        if comparator is None:
            raise _invalid("Comparison operator is invalid.")

        user_value = context.user.get_attribute(attribute)
        if user_value is None or (isinstance(user_value, str) and user_value == ""):
            self._logger.warning(
                f"Cannot evaluate condition ({format_user_condition(condition)}) for setting "
                f"'{context.key}' (the User.{attribute} attribute is missing). You should set "
                f"the User.{attribute} attribute in order to make targeting work properly.",
                event_id=3003,
            )
            return f"cannot evaluate, the User.{attribute} attribute is missing"

        try:
            return self._compare(condition, comparator, user_value, context_salt, context)
        except InvalidAttributeError as e:
            self._logger.warning(
                f"Cannot evaluate condition ({format_user_condition(condition)}) for setting "
                f"'{context.key}' ({e.reason}). Please check the User.{attribute} attribute "
                "and make sure that its value corresponds to the comparison operator.",
                event_id=3004,
            )
            return f"cannot evaluate, the User.{attribute} attribute is invalid ({e.reason})"

    def _compare(
        self,
        condition: UserCondition,
        comparator: UserComparator,
        user_value: object,
        context_salt: str,
        context: _EvaluateContext,
    ) -> bool:
        value = condition.comparison_value
        c = UserComparator

        if comparator in (c.TEXT_EQUALS, c.TEXT_NOT_EQUALS):
            return comparators.text_equals(
                self._get_text(user_value, condition, context),
                comparators.ensure_string(value),
                comparator is c.TEXT_NOT_EQUALS,
            )
        if comparator in (c.TEXT_IS_ONE_OF, c.TEXT_IS_NOT_ONE_OF):
            return comparators.text_is_one_of(
                self._get_text(user_value, condition, context),
                comparators.ensure_string_list(value),
                comparator is c.TEXT_IS_NOT_ONE_OF,
            )
        if comparator in (c.TEXT_CONTAINS_ANY_OF, c.TEXT_NOT_CONTAINS_ANY_OF):
            return comparators.text_contains_any_of(
                self._get_text(user_value, condition, context),
                comparators.ensure_string_list(value),
                comparator is c.TEXT_NOT_CONTAINS_ANY_OF,
            )
        if comparator in (
            c.TEXT_STARTS_WITH_ANY_OF,
            c.TEXT_NOT_STARTS_WITH_ANY_OF,
            c.TEXT_ENDS_WITH_ANY_OF,
            c.TEXT_NOT_ENDS_WITH_ANY_OF,
        ):
            return comparators.text_starts_or_ends_with_any_of(
                self._get_text(user_value, condition, context),
                comparators.ensure_string_list(value),
                starts_with=comparator in (c.TEXT_STARTS_WITH_ANY_OF, c.TEXT_NOT_STARTS_WITH_ANY_OF),
                negate=comparator in (c.TEXT_NOT_STARTS_WITH_ANY_OF, c.TEXT_NOT_ENDS_WITH_ANY_OF),
            )
        if comparator in (c.SENSITIVE_TEXT_EQUALS, c.SENSITIVE_TEXT_NOT_EQUALS):
            return comparators.sensitive_text_equals(
                self._get_text(user_value, condition, context),
                comparators.ensure_string(value),
                self._config_salt(context),
                context_salt,
                comparator is c.SENSITIVE_TEXT_NOT_EQUALS,
            )
        if comparator in (c.SENSITIVE_TEXT_IS_ONE_OF, c.SENSITIVE_TEXT_IS_NOT_ONE_OF):
            return comparators.sensitive_text_is_one_of(
                self._get_text(user_value, condition, context),
                comparators.ensure_string_list(value),
                self._config_salt(context),
                context_salt,
                comparator is c.SENSITIVE_TEXT_IS_NOT_ONE_OF,
            )
        if comparator in (
            c.SENSITIVE_TEXT_STARTS_WITH_ANY_OF,
            c.SENSITIVE_TEXT_NOT_STARTS_WITH_ANY_OF,
            c.SENSITIVE_TEXT_ENDS_WITH_ANY_OF,
            c.SENSITIVE_TEXT_NOT_ENDS_WITH_ANY_OF,
        ):
            return comparators.sensitive_text_starts_or_ends_with_any_of(
                self._get_text(user_value, condition, context),
                comparators.ensure_string_list(value),
                self._config_salt(context),
                context_salt,
                starts_with=comparator
                in (c.SENSITIVE_TEXT_STARTS_WITH_ANY_OF, c.SENSITIVE_TEXT_NOT_STARTS_WITH_ANY_OF),
                negate=comparator
                in (c.SENSITIVE_TEXT_NOT_STARTS_WITH_ANY_OF, c.SENSITIVE_TEXT_NOT_ENDS_WITH_ANY_OF),
            )
        if comparator in (c.SEMVER_IS_ONE_OF, c.SEMVER_IS_NOT_ONE_OF):
            comparison_values = comparators.ensure_string_list(value)
            return comparators.semver_is_one_of(
                comparators.to_semver(user_value),
                comparison_values,
                comparator is c.SEMVER_IS_NOT_ONE_OF,
            )
        if comparator in (
            c.SEMVER_LESS,
            c.SEMVER_LESS_OR_EQUALS,
            c.SEMVER_GREATER,
            c.SEMVER_GREATER_OR_EQUALS,
        ):
            comparison_value = comparators.ensure_string(value)
            return comparators.semver_compare(
                comparators.to_semver(user_value), comparison_value, comparator
            )
        if comparator in (c.DATETIME_BEFORE, c.DATETIME_AFTER):
            comparison_number = comparators.ensure_number(value)
            return comparators.datetime_compare(
                comparators.to_unix_seconds(user_value),
                comparison_number,
                before=comparator is c.DATETIME_BEFORE,
            )
        if comparator in (c.ARRAY_CONTAINS_ANY_OF, c.ARRAY_NOT_CONTAINS_ANY_OF):
            comparison_values = comparators.ensure_string_list(value)
            return comparators.array_contains_any_of(
                comparators.to_string_list(user_value),
                comparison_values,
                comparator is c.ARRAY_NOT_CONTAINS_ANY_OF,
            )
        if comparator in (c.SENSITIVE_ARRAY_CONTAINS_ANY_OF, c.SENSITIVE_ARRAY_NOT_CONTAINS_ANY_OF):
            comparison_values = comparators.ensure_string_list(value)
            return comparators.sensitive_array_contains_any_of(
                comparators.to_string_list(user_value),
                comparison_values,
                self._config_salt(context),
                context_salt,
                comparator is c.SENSITIVE_ARRAY_NOT_CONTAINS_ANY_OF,
            )
        # 残りは数値比較
        comparison_number = comparators.ensure_number(value)
        return comparators.number_compare(
            comparators.to_number(user_value), comparison_number, comparator
        )

    def _get_text(
        self, user_value: object, condition: UserCondition, context: _EvaluateContext
    ) -> str:
        text, converted = comparators.to_text(user_value)
        if converted:
            self._logger.warning(
                f"Evaluation of condition ({format_user_condition(condition)}) for setting "
                f"'{context.key}' may not produce the expected result (the "
                f"User.{condition.comparison_attribute} attribute is not a string value, thus "
                f"it was automatically converted to the string value '{text}'). Please make "
                "sure that using a non-string value was intended.",
                event_id=3005,
            )
        return text

    @staticmethod
    def _config_salt(context: _EvaluateContext) -> str:
        salt = context.setting.config_salt
        if not isinstance(salt, str) or not salt:
            raise _invalid("Config JSON salt is missing.")
        return salt

    # --- セグメント条件 ---

    def _evaluate_segment_condition(
        self,
        condition: SegmentCondition,
        context: _EvaluateContext,
        trace: EvaluationTraceBuilder | None,
    ) -> bool | str:
        segments = context.setting.segments
        if trace is not None:
            trace.append_segment_condition(condition, segments)

        index = condition.segment_index
        if (
            not isinstance(index, int)
            or isinstance(index, bool)
            or not 0 <= index < len(segments)
        ):
            raise _invalid("Segment reference is invalid.")
        segment = segments[index]
        if not isinstance(segment.name, str) or not segment.name:
            raise _invalid("Segment name is missing.")
        comparator = condition.comparator
        if comparator is None:
            raise _invalid("Comparison operator is invalid.")

        if context.user is None:
            return _MISSING_USER_MESSAGE

        if trace is not None:
            trace.new_line("(").increase_indent()
            trace.new_line(f"Evaluating segment '{segment.name}':")

        segment_result = self._evaluate_conditions(
            segment.conditions, segment.name, context, trace
        )
        result: bool | str = segment_result
        if not isinstance(segment_result, str):
            result = segment_result if comparator is SegmentComparator.IS_IN else not segment_result

        if trace is not None:
            trace.new_line("Segment evaluation result: ")
            if isinstance(segment_result, str):
                trace.append(f"{segment_result}.")
            else:
                matched = SegmentComparator.IS_IN if segment_result else SegmentComparator.IS_NOT_IN
                trace.append(f"User {format_segment_comparator(matched)}.")
            trace.new_line("Condition (").append_segment_condition(condition, segments).append(")")
            if isinstance(result, str):
                trace.append(" failed to evaluate.")
            else:
                trace.append(" evaluates to ").append_condition_result(result).append(".")
            trace.decrease_indent().new_line(")")
        return result

    # --- 前提フラグ条件 ---

    def _evaluate_prerequisite_flag_condition(
        self,
        condition: PrerequisiteFlagCondition,
        context: _EvaluateContext,
        trace: EvaluationTraceBuilder | None,
    ) -> bool:
        if trace is not None:
            trace.append_prerequisite_flag_condition(condition, context.settings)

        key = condition.prerequisite_flag_key
        if not isinstance(key, str) or key not in context.settings:
            raise _invalid("Prerequisite flag key is missing or invalid.")
        comparator = condition.comparator
        if comparator is None:
            raise _invalid("Comparison operator is invalid.")

        prerequisite = context.settings[key]
        try:
            expected = condition.comparison_value.get(prerequisite.setting_type)
        except RemoteFlagError as e:
            inferred = condition.comparison_value.infer()
            raise _invalid(
                f"Type mismatch between comparison value '{format_value(inferred)}' "
                f"and prerequisite flag '{key}'."
            ) from e

        visited = (*context.visited_keys, context.key)
        if key in visited:
            cycle = (*visited[visited.index(key) :], key)
            raise RemoteFlagError(
                code=RemoteFlagErrorCodes.CIRCULAR_DEPENDENCY,
                message="Circular dependency detected between the following depending flags: "
                + " -> ".join(f"'{k}'" for k in cycle)
                + ".",
            )

        if trace is not None:
            trace.new_line("(").increase_indent()
            trace.new_line(f"Evaluating prerequisite flag '{key}':").new_line()

        prerequisite_result = self._evaluate_setting(
            _EvaluateContext(
                key=key,
                setting=prerequisite,
                user=context.user,
                settings=context.settings,
                visited_keys=visited,
            ),
            trace,
        )
        actual = prerequisite_result.value
        if comparator is PrerequisiteFlagComparator.EQUALS:
            result = actual == expected
        else:
            result = actual != expected

        if trace is not None:
            trace.new_line(
                f"Prerequisite flag evaluation result: '{format_setting_value(actual)}'."
            )
            trace.new_line("Condition (").append_prerequisite_flag_condition(
                condition, context.settings
            ).append(") evaluates to ").append_condition_result(result).append(".")
            trace.decrease_indent().new_line(")")
        return result

    # --- % オプション ---

    def _evaluate_percentage_options(
        self,
        options: tuple[PercentageOption, ...],
        rule: TargetingRule | None,
        context: _EvaluateContext,
        trace: EvaluationTraceBuilder | None,
    ) -> EvaluationResult | None:
        setting = context.setting
        attribute = setting.percentage_attribute
        user_value = context.user.get_attribute(attribute) if context.user is not None else None
        if user_value is None:
            self._logger.warning(
                f"Cannot evaluate % options for setting '{context.key}' (the User.{attribute} "
                f"attribute is missing). You should set the User.{attribute} attribute in "
                "order to make targeting work properly.",
                event_id=3003,
            )
            if trace is not None:
                trace.new_line(f"Skipping % options because the User.{attribute} attribute is missing.")
            return None

        if trace is not None:
            trace.new_line(f"Evaluating % options based on the User.{attribute} attribute:")
        text, _ = comparators.to_text(user_value)
        scale = percentage_scale(context.key, text)
        if trace is not None:
            trace.new_line(
                f"- Computing hash in the [0..99] range from User.{attribute} => {scale} "
                "(this value is sticky and consistent across all SDKs)"
            )

        bucket = 0
        for number, option in enumerate(options, start=1):
            percentage = option.percentage
            if not isinstance(percentage, int) or isinstance(percentage, bool):
                raise _invalid("Percentage is missing or invalid.")
            bucket += percentage
            if scale < bucket:
                value = option.value.get(setting.setting_type)
                if trace is not None:
                    trace.new_line(
                        f"- Hash value {scale} selects % option {number} ({percentage}%), "
                        f"'{format_setting_value(value)}'."
                    )
                return EvaluationResult(
                    value=value,
                    variation_id=option.variation_id,
                    matched_targeting_rule=rule,
                    matched_percentage_option=option,
                )

        if trace is not None:
            trace.new_line(f"- Hash value {scale} does not select any % option.")
        return None
