"""RemoteFlagClient のユニットテスト"""

import json
import logging
from collections.abc import Mapping
from typing import Any

import pytest
from k1s0_remoteflag import (
    ClientOptions,
    DictDataSource,
    EvaluationContext,
    EvaluationDetails,
    FlagOverrides,
    OverrideBehaviour,
    RemoteFlagClient,
    RemoteFlagClientProtocol,
    RemoteFlagError,
    RemoteFlagErrorCodes,
    TransportResponse,
)

SDK_KEY = "sdk-key-123"

CONFIG = {
    "p": {"s": "salt"},
    "s": [],
    "f": {
        "enabled": {
            "t": 0,
            "v": {"b": False},
            "i": "enabled-off",
            "r": [
                {
                    "c": [{"u": {"a": "Email", "c": 2, "l": ["@example.com"]}}],
                    "s": {"v": {"b": True}, "i": "enabled-on"},
                }
            ],
        },
        "color": {"t": 1, "v": {"s": "red"}, "i": "color-red"},
        "limit": {"t": 2, "v": {"i": 10}, "i": "limit-10"},
        "broken": {
            "t": 0,
            "v": {"b": False},
            "r": [{"c": [{"s": {"s": 7, "c": 0}}], "s": {"v": {"b": True}}}],
        },
    },
}


class FakeTransport:
    """固定の応答を返すトランスポート。"""

    def __init__(self, response: TransportResponse) -> None:
        self.response = response
        self.calls = 0
        self.closed = False

    async def get(self, url: str, headers: Mapping[str, str]) -> TransportResponse:
        self.calls += 1
        return self.response

    async def aclose(self) -> None:
        self.closed = True


def ok_transport() -> FakeTransport:
    return FakeTransport(TransportResponse(200, json.dumps(CONFIG), {"etag": '"v1"'}))


def make_client(transport: FakeTransport | None = None, **kwargs: Any) -> RemoteFlagClient:
    return RemoteFlagClient(SDK_KEY, transport=transport or ok_transport(), **kwargs)


def event_ids(caplog: pytest.LogCaptureFixture) -> list[int]:
    return [getattr(r, "event_id", None) for r in caplog.records]


def test_empty_sdk_key_raises() -> None:
    """空の SDK キーは INVALID_OPTIONS。"""
    with pytest.raises(RemoteFlagError) as exc_info:
        RemoteFlagClient("", transport=ok_transport())
    assert exc_info.value.code == RemoteFlagErrorCodes.INVALID_OPTIONS


async def test_get_value() -> None:
    """フラグ値の評価。"""
    client = make_client()
    matching = EvaluationContext("u1", email="a@example.com")
    other = EvaluationContext("u2", email="b@test.com")
    assert await client.get_value("enabled", False, matching) is True
    assert await client.get_value("enabled", False, other) is False
    assert await client.get_value("color", "blue") == "red"
    assert await client.get_value("limit", 0) == 10


async def test_get_value_missing_key_returns_default(caplog: pytest.LogCaptureFixture) -> None:
    """存在しないキーはデフォルト値を返す。"""
    client = make_client()
    assert await client.get_value("nope", "fallback") == "fallback"
    assert 1001 in event_ids(caplog)


async def test_get_value_without_config_returns_default(caplog: pytest.LogCaptureFixture) -> None:
    """config が取得できない場合はデフォルト値を返す。"""
    client = make_client(FakeTransport(TransportResponse(500)))
    assert await client.get_value("enabled", True) is True
    assert 1000 in event_ids(caplog)


async def test_evaluation_error_returns_default_and_fires_hooks(
    caplog: pytest.LogCaptureFixture,
) -> None:
    """評価エラーはデフォルト値を返し、on_error と on_flag_evaluated を呼ぶ。"""
    client = make_client()
    errors: list[str] = []
    evaluated: list[EvaluationDetails] = []
    client.hooks.add_on_error(lambda message, exception: errors.append(message))
    client.hooks.add_on_flag_evaluated(evaluated.append)
    value = await client.get_value("broken", True, EvaluationContext("u1"))
    assert value is True
    assert 1002 in event_ids(caplog)
    assert any(m.startswith("[1002]") for m in errors)
    assert evaluated[-1].is_default_value is True
    assert evaluated[-1].error is not None


async def test_evaluation_error_details_carry_reason() -> None:
    """評価中断の理由が評価詳細に含まれる。"""
    details = await make_client().get_value_details("broken", True, EvaluationContext("u1"))
    assert details.is_default_value is True
    assert details.error is not None
    assert details.error.startswith("[1002]")
    assert "Segment reference is invalid." in details.error
    assert isinstance(details.error_exception, RemoteFlagError)
    assert details.error_exception.code == RemoteFlagErrorCodes.INVALID_CONFIG


async def test_circular_dependency_reason_in_details() -> None:
    """循環する前提フラグの経路が評価詳細に含まれる。"""

    def depends_on(key: str) -> dict[str, Any]:
        condition = {"p": {"f": key, "c": 0, "v": {"b": True}}}
        return {"t": 0, "v": {"b": False}, "r": [{"c": [condition], "s": {"v": {"b": True}}}]}

    config = {"f": {"a": depends_on("b"), "b": depends_on("a")}}
    client = make_client(FakeTransport(TransportResponse(200, json.dumps(config))))
    details = await client.get_value_details("a", False, EvaluationContext("u1"))
    assert details.error is not None
    assert "'a' -> 'b' -> 'a'" in details.error
    assert isinstance(details.error_exception, RemoteFlagError)
    assert details.error_exception.code == RemoteFlagErrorCodes.CIRCULAR_DEPENDENCY


async def test_get_value_details() -> None:
    """評価詳細にマッチしたルールが含まれる。"""
    client = make_client()
    user = EvaluationContext("u1", email="a@example.com")
    details = await client.get_value_details("enabled", False, user)
    assert details.key == "enabled"
    assert details.value is True
    assert details.variation_id == "enabled-on"
    assert details.user is user
    assert details.is_default_value is False
    assert details.error is None
    assert details.fetch_time_unix_milliseconds > 0
    assert details.matched_targeting_rule is not None
    assert details.matched_percentage_option is None


async def test_get_value_details_for_missing_key() -> None:
    """存在しないキーの詳細はエラー付き。"""
    details = await make_client().get_value_details("nope", 1)
    assert details.is_default_value is True
    assert details.value == 1
    assert details.error is not None and details.error.startswith("[1001]")


async def test_default_user_is_used() -> None:
    """ユーザー未指定時はデフォルトユーザーで評価する。"""
    client = make_client(default_user=EvaluationContext("d", email="d@example.com"))
    assert await client.get_value("enabled", False) is True
    other = EvaluationContext("u", email="u@x.com")
    assert await client.get_value("enabled", False, other) is False
    client.clear_default_user()
    assert await client.get_value("enabled", False) is False
    client.set_default_user(EvaluationContext("d", email="d@example.com"))
    assert await client.get_value("enabled", False) is True


async def test_default_type_mismatch_warns(caplog: pytest.LogCaptureFixture) -> None:
    """デフォルト値の型が設定型と異なる場合は警告するが評価は行う。"""
    client = make_client()
    assert await client.get_value("color", 0) == "red"
    assert 4002 in event_ids(caplog)


async def test_get_all_keys_and_values() -> None:
    """全キー・全値の取得。"""
    client = make_client()
    assert sorted(await client.get_all_keys()) == ["broken", "color", "enabled", "limit"]
    values = await client.get_all_values(EvaluationContext("u1", email="a@example.com"))
    assert values["enabled"] is True
    assert values["color"] == "red"
    assert values["broken"] is None


async def test_get_all_value_details() -> None:
    """全設定の評価詳細。評価エラーの設定はエラー付きで含まれる。"""
    details = await make_client().get_all_value_details(EvaluationContext("u1"))
    by_key = {d.key: d for d in details}
    assert by_key["limit"].value == 10
    assert by_key["broken"].is_default_value is True
    assert by_key["broken"].error is not None


async def test_get_all_keys_without_config(caplog: pytest.LogCaptureFixture) -> None:
    """config がない場合は空リスト。"""
    client = make_client(FakeTransport(TransportResponse(500)))
    assert await client.get_all_keys() == []
    assert await client.get_all_values() == {}
    assert 1000 in event_ids(caplog)


async def test_get_key_and_value() -> None:
    """バリエーション ID からキーと値を引く。"""
    client = make_client()
    assert await client.get_key_and_value("enabled-on") == ("enabled", True)
    assert await client.get_key_and_value("color-red") == ("color", "red")


async def test_get_key_and_value_not_found(caplog: pytest.LogCaptureFixture) -> None:
    """見つからないバリエーション ID は None。"""
    assert await make_client().get_key_and_value("missing") is None
    assert 2011 in event_ids(caplog)


async def test_force_refresh_and_offline(caplog: pytest.LogCaptureFixture) -> None:
    """force_refresh とオフライン切り替え。"""
    transport = ok_transport()
    client = make_client(transport)
    result = await client.force_refresh()
    assert result.is_success is True
    assert transport.calls == 1
    client.set_offline()
    assert client.is_offline() is True
    result = await client.force_refresh()
    assert result.is_success is False
    assert transport.calls == 1
    client.set_online()
    assert client.is_offline() is False


async def test_offline_option() -> None:
    """offline オプションで起動すると HTTP を行わない。"""
    transport = ok_transport()
    client = make_client(transport, options=ClientOptions(offline=True))
    assert await client.get_value("color", "blue") == "blue"
    assert transport.calls == 0


async def test_trace_is_logged_at_info(caplog: pytest.LogCaptureFixture) -> None:
    """INFO 有効時は評価トレースを出力する。"""
    caplog.set_level(logging.INFO, logger="k1s0_remoteflag")
    client = make_client(options=ClientOptions(log_level="INFO"))
    await client.get_value("color", "blue")
    traces = [r for r in caplog.records if getattr(r, "event_id", None) == 5000]
    assert traces
    assert "Evaluating 'color'" in traces[0].getMessage()


async def test_trace_is_not_logged_at_warning(caplog: pytest.LogCaptureFixture) -> None:
    """WARNING 閾値ではトレースを出力しない。"""
    caplog.set_level(logging.INFO, logger="k1s0_remoteflag")
    client = make_client()
    await client.get_value("color", "blue")
    assert 5000 not in event_ids(caplog)


# --- オーバーライド ---


async def test_local_only_override(caplog: pytest.LogCaptureFixture) -> None:
    """LOCAL_ONLY はリモートを参照しない。"""
    transport = ok_transport()
    overrides = FlagOverrides(DictDataSource({"color": "green"}), OverrideBehaviour.LOCAL_ONLY)
    client = make_client(transport, overrides=overrides)
    assert await client.get_value("color", "blue") == "green"
    assert transport.calls == 0
    result = await client.force_refresh()
    assert result.is_success is False
    assert 3202 in event_ids(caplog)


async def test_local_over_remote_override() -> None:
    """LOCAL_OVER_REMOTE はローカル値を優先する。"""
    overrides = FlagOverrides(
        DictDataSource({"color": "green", "extra": 1}), OverrideBehaviour.LOCAL_OVER_REMOTE
    )
    client = make_client(overrides=overrides)
    assert await client.get_value("color", "blue") == "green"
    assert await client.get_value("limit", 0) == 10
    assert await client.get_value("extra", 0) == 1


async def test_remote_over_local_override() -> None:
    """REMOTE_OVER_LOCAL はリモート値を優先する。"""
    overrides = FlagOverrides(
        DictDataSource({"color": "green", "extra": 1}), OverrideBehaviour.REMOTE_OVER_LOCAL
    )
    client = make_client(overrides=overrides)
    assert await client.get_value("color", "blue") == "red"
    assert await client.get_value("extra", 0) == 1


# --- ライフサイクル ---


async def test_async_context_manager_closes_transport() -> None:
    """async with を抜けると自身で生成したトランスポートを閉じる。"""
    async with RemoteFlagClient(SDK_KEY) as client:
        assert client.is_offline() is False
    assert client._transport._client.is_closed  # type: ignore[attr-defined]


async def test_injected_transport_is_not_closed() -> None:
    """注入されたトランスポートは閉じない。"""
    transport = ok_transport()
    async with make_client(transport):
        pass
    assert transport.closed is False


async def test_client_via_protocol() -> None:
    """プロトコル型として利用できる。"""
    client: RemoteFlagClientProtocol = make_client()
    assert await client.get_value("color", "blue") == "red"
    assert client.is_offline() is False
    await client.close()
