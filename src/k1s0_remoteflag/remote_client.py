"""RemoteFlagClient 実装"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from .cache import ConfigCache, InMemoryConfigCache
from .context import EvaluationContext
from .evaluator import RolloutEvaluator
from .exceptions import RemoteFlagError, RemoteFlagErrorCodes
from .fetcher import ConfigFetcher
from .hooks import Hooks
from .log import InternalLogger
from .models import Setting, SettingType
from .options import ClientOptions
from .orchestrator import CacheOrchestrator, make_cache_key
from .overrides import FlagOverrides, OverrideBehaviour
from .results import EvaluationDetails, RefreshResult
from .trace import EvaluationTraceBuilder
from .transport import FetchTransport, HttpxFetchTransport
from .utils import format_value


@dataclass(frozen=True)
class _SettingsResult:
    settings: Mapping[str, Setting] = field(default_factory=dict)
    fetch_time: float = 0.0
    has_config: bool = False


def _error_text(message: str, event_id: int, exception: BaseException) -> str:
    """評価中断の理由 (例外の内容) を含むエラーメッセージを返す。"""
    return f"{InternalLogger.format(message, event_id)} Reason: {exception}"


def _matches_type(setting_type: SettingType, value: Any) -> bool:
    if setting_type is SettingType.BOOLEAN:
        return isinstance(value, bool)
    if setting_type is SettingType.STRING:
        return isinstance(value, str)
    if setting_type is SettingType.INT:
        return isinstance(value, int) and not isinstance(value, bool)
    if setting_type is SettingType.DOUBLE:
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    return False


class RemoteFlagClient:
    """リモート設定を取得・キャッシュしてフラグを評価する非同期クライアント。

    評価 API はデータ起因のエラーで例外を送出せず、呼び出し側が指定した
    デフォルト値を返す。エラーはロガーと on_error フックに通知される。

    Example:
        async with RemoteFlagClient("sdk-key") as client:
            enabled = await client.get_value("new_checkout", False, user)
    """

    def __init__(
        self,
        sdk_key: str,
        options: ClientOptions | None = None,
        *,
        cache: ConfigCache | None = None,
        transport: FetchTransport | None = None,
        logger: logging.Logger | None = None,
        exceptions_to_ignore: Sequence[type[BaseException]] = (),
        overrides: FlagOverrides | None = None,
        default_user: EvaluationContext | None = None,
        hooks: Hooks | None = None,
    ) -> None:
        if not sdk_key:
            raise RemoteFlagError(
                code=RemoteFlagErrorCodes.INVALID_OPTIONS,
                message="sdk_key cannot be empty.",
            )
        self._options = options or ClientOptions()
        self._hooks = hooks or Hooks()
        self._logger = InternalLogger(
            logger=logger,
            level=self._options.log_level_number,
            exceptions_to_ignore=exceptions_to_ignore,
            hooks=self._hooks,
        )
        self._overrides = overrides
        if overrides is not None:
            overrides.data_source.set_logger(self._logger)
        self._default_user = default_user

        self._owns_transport = transport is None
        self._transport: FetchTransport = transport or HttpxFetchTransport(
            request_timeout_seconds=self._options.request_timeout_seconds,
            connect_timeout_seconds=self._options.connect_timeout_seconds,
        )
        fetcher = ConfigFetcher(
            sdk_key,
            self._transport,
            self._logger,
            base_url=self._options.base_url,
            data_governance=self._options.data_governance,
        )
        self._orchestrator = CacheOrchestrator(
            cache_key=make_cache_key(sdk_key),
            fetcher=fetcher,
            cache=cache or InMemoryConfigCache(),
            logger=self._logger,
            hooks=self._hooks,
            refresh_interval_seconds=self._options.cache_refresh_interval_seconds,
            poll_interval_seconds=self._options.poll_interval_seconds,
            offline=self._options.offline,
        )
        self._evaluator = RolloutEvaluator(self._logger)

    async def __aenter__(self) -> RemoteFlagClient:
        await self.start()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def start(self) -> None:
        """バックグラウンドポーリングを開始する (poll_interval_seconds 設定時のみ)。"""
        if not self._is_local_only():
            await self._orchestrator.start()

    async def close(self) -> None:
        """ポーリングを停止し、自身で生成したトランスポートを閉じる。"""
        await self._orchestrator.stop()
        if self._owns_transport:
            await self._transport.aclose()

    @property
    def hooks(self) -> Hooks:
        return self._hooks

    # --- 評価 API ---

    async def get_value(
        self, key: str, default_value: Any, user: EvaluationContext | None = None
    ) -> Any:
        """フラグ値を評価する。評価できない場合は default_value を返す。"""
        details = await self._get_details("get_value", key, default_value, user)
        return details.value

    async def get_value_details(
        self, key: str, default_value: Any, user: EvaluationContext | None = None
    ) -> EvaluationDetails:
        """フラグ値を評価し、マッチしたルールなどの詳細を返す。"""
        return await self._get_details("get_value_details", key, default_value, user)

    async def get_key_and_value(self, variation_id: str) -> tuple[str, Any] | None:
        """バリエーション ID に対応するキーと値を返す。見つからなければ None。"""
        try:
            result = await self._get_settings()
            if not self._check_settings_available(result, "None"):
                return None
            for key, setting in result.settings.items():
                value = self._find_variation(setting, variation_id)
                if value is not None:
                    return key, value
            self._logger.error(
                f"Could not find the setting for the specified variation ID: '{variation_id}'.",
                event_id=2011,
            )
            return None
        except Exception as e:
            self._logger.error(
                "Error occurred in the `get_key_and_value` method. Returning None.",
                event_id=1002,
                exception=e,
            )
            return None

    async def get_all_keys(self) -> list[str]:
        try:
            result = await self._get_settings()
            if not self._check_settings_available(result, "empty list"):
                return []
            return list(result.settings)
        except Exception as e:
            self._logger.error(
                "Error occurred in the `get_all_keys` method. Returning empty list.",
                event_id=1002,
                exception=e,
            )
            return []

    async def get_all_values(self, user: EvaluationContext | None = None) -> dict[str, Any]:
        details = await self._get_all_details("get_all_values", user)
        return {d.key: d.value for d in details}

    async def get_all_value_details(
        self, user: EvaluationContext | None = None
    ) -> list[EvaluationDetails]:
        return await self._get_all_details("get_all_value_details", user)

    # --- 状態制御 ---

    async def force_refresh(self) -> RefreshResult:
        """リフレッシュ間隔を無視して config JSON を再取得する。"""
        if self._is_local_only():
            message = (
                "Client is configured to use the `LOCAL_ONLY` override behavior, "
                "thus `force_refresh()` has no effect."
            )
            self._logger.warning(message, event_id=3202)
            return RefreshResult(is_success=False, error=InternalLogger.format(message, 3202))
        try:
            return await self._orchestrator.force_refresh()
        except Exception as e:
            message = "Error occurred in the `force_refresh` method."
            self._logger.error(message, event_id=1003, exception=e)
            return RefreshResult(is_success=False, error=InternalLogger.format(message, 1003))

    def set_default_user(self, user: EvaluationContext) -> None:
        self._default_user = user

    def clear_default_user(self) -> None:
        self._default_user = None

    def set_online(self) -> None:
        self._orchestrator.set_online()

    def set_offline(self) -> None:
        self._orchestrator.set_offline()

    def is_offline(self) -> bool:
        return self._orchestrator.is_offline

    # --- 内部 ---

    async def _get_details(
        self,
        method: str,
        key: str,
        default_value: Any,
        user: EvaluationContext | None,
    ) -> EvaluationDetails:
        actual_user = user if user is not None else self._default_user
        fetch_time = 0.0
        try:
            result = await self._get_settings()
            fetch_time = result.fetch_time
            error = self._check_setting_available(result, key, default_value)
            if error is not None:
                details = EvaluationDetails.from_error(
                    key, default_value, actual_user, error, fetch_time
                )
                self._hooks.fire_on_flag_evaluated(details)
                return details
            setting = result.settings[key]
            self._check_default_type(key, setting, default_value)
            return self._evaluate(key, setting, actual_user, result)
        except Exception as e:
            message = (
                f"Error occurred in the `{method}` method while evaluating setting '{key}'. "
                "Returning the `default_value` parameter that you specified in your "
                f"application: '{format_value(default_value)}'."
            )
            self._logger.error(message, event_id=1002, exception=e)
            details = EvaluationDetails.from_error(
                key, default_value, actual_user, _error_text(message, 1002, e), fetch_time, e
            )
            self._hooks.fire_on_flag_evaluated(details)
            return details

    async def _get_all_details(
        self, method: str, user: EvaluationContext | None
    ) -> list[EvaluationDetails]:
        actual_user = user if user is not None else self._default_user
        try:
            result = await self._get_settings()
        except Exception as e:
            self._logger.error(
                f"Error occurred in the `{method}` method. Returning empty result.",
                event_id=1002,
                exception=e,
            )
            return []
        if not self._check_settings_available(result, "empty result"):
            return []

        details: list[EvaluationDetails] = []
        for key, setting in result.settings.items():
            try:
                details.append(self._evaluate(key, setting, actual_user, result))
            except Exception as e:
                message = (
                    f"Error occurred in the `{method}` method while evaluating setting '{key}'."
                )
                self._logger.error(message, event_id=1002, exception=e)
                error_details = EvaluationDetails.from_error(
                    key, None, actual_user, _error_text(message, 1002, e), result.fetch_time, e
                )
                self._hooks.fire_on_flag_evaluated(error_details)
                details.append(error_details)
        return details

    def _evaluate(
        self,
        key: str,
        setting: Setting,
        user: EvaluationContext | None,
        result: _SettingsResult,
    ) -> EvaluationDetails:
        trace = EvaluationTraceBuilder() if self._logger.is_enabled_for(logging.INFO) else None
        evaluation = self._evaluator.evaluate(key, setting, user, result.settings, trace)
        if trace is not None:
            self._logger.info(str(trace), event_id=5000)
        details = EvaluationDetails(
            key=key,
            value=evaluation.value,
            variation_id=evaluation.variation_id,
            user=user,
            is_default_value=False,
            error=None,
            fetch_time_unix_milliseconds=result.fetch_time,
            matched_targeting_rule=evaluation.matched_targeting_rule,
            matched_percentage_option=evaluation.matched_percentage_option,
        )
        self._hooks.fire_on_flag_evaluated(details)
        return details

    def _is_local_only(self) -> bool:
        return (
            self._overrides is not None
            and self._overrides.behaviour is OverrideBehaviour.LOCAL_ONLY
        )

    async def _get_settings(self) -> _SettingsResult:
        if self._overrides is None:
            return await self._get_remote_settings()
        local = self._overrides.data_source.get_overrides()
        behaviour = self._overrides.behaviour
        if behaviour is OverrideBehaviour.LOCAL_ONLY:
            return _SettingsResult(settings=local, fetch_time=0.0, has_config=True)
        remote = await self._get_remote_settings()
        if behaviour is OverrideBehaviour.LOCAL_OVER_REMOTE:
            merged = {**remote.settings, **local}
        else:
            merged = {**local, **remote.settings}
        return _SettingsResult(
            settings=merged, fetch_time=remote.fetch_time, has_config=remote.has_config
        )

    async def _get_remote_settings(self) -> _SettingsResult:
        entry = await self._orchestrator.get_current_entry()
        if entry.is_empty:
            return _SettingsResult()
        return _SettingsResult(
            settings=entry.config.settings, fetch_time=entry.fetch_time, has_config=True
        )

    def _check_settings_available(self, result: _SettingsResult, default_text: str) -> bool:
        if not result.settings:
            self._logger.error(f"Config JSON is not present. Returning {default_text}.", event_id=1000)
            return False
        return True

    def _check_setting_available(
        self, result: _SettingsResult, key: str, default_value: Any
    ) -> str | None:
        if not result.has_config:
            message = (
                f"Config JSON is not present when evaluating setting '{key}'. Returning the "
                "`default_value` parameter that you specified in your application: "
                f"'{format_value(default_value)}'."
            )
            self._logger.error(message, event_id=1000)
            return InternalLogger.format(message, 1000)
        if key not in result.settings:
            available = ", ".join(f"'{k}'" for k in result.settings)
            message = (
                f"Failed to evaluate setting '{key}' (the key was not found in config JSON). "
                "Returning the `default_value` parameter that you specified in your "
                f"application: '{format_value(default_value)}'. Available keys: [{available}]."
            )
            self._logger.error(message, event_id=1001)
            return InternalLogger.format(message, 1001)
        return None

    def _check_default_type(self, key: str, setting: Setting, default_value: Any) -> None:
        if default_value is None or setting.setting_type is SettingType.UNSUPPORTED:
            return
        if not _matches_type(setting.setting_type, default_value):
            self._logger.warning(
                f"The type of setting '{key}' ({setting.setting_type.name}) does not match the "
                f"type of the specified default value ({type(default_value).__name__}). "
                "Please make sure that using a default value not matching the setting's type "
                "was intended.",
                event_id=4002,
            )

    @staticmethod
    def _find_variation(setting: Setting, variation_id: str) -> Any:
        if setting.variation_id == variation_id:
            return setting.get_value()
        for rule in setting.targeting_rules:
            if rule.simple_value is not None and rule.simple_value.variation_id == variation_id:
                return rule.simple_value.value.get(setting.setting_type)
            for option in rule.percentage_options or ():
                if option.variation_id == variation_id:
                    return option.value.get(setting.setting_type)
        for option in setting.percentage_options:
            if option.variation_id == variation_id:
                return option.value.get(setting.setting_type)
        return None
