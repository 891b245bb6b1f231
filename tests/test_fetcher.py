"""ConfigFetcher のユニットテスト（respx モック）"""

import json
from typing import Any

import httpx
import pytest
import respx
from k1s0_remoteflag import (
    ConfigFetcher,
    DataGovernance,
    FetchStatus,
    HttpxFetchTransport,
    InternalLogger,
    RemoteFlagError,
)
from k1s0_remoteflag.fetcher import EU_ONLY_URL, GLOBAL_URL

SDK_KEY = "sdk-key-123"
CUSTOM_URL = "https://flags.example.com"


def config_url(base_url: str) -> str:
    return f"{base_url}/configuration-files/{SDK_KEY}/config_v6.json"


def config_body(base_url: str | None = None, redirect: int = 0, value: bool = True) -> str:
    data: dict[str, Any] = {"f": {"flag": {"t": 0, "v": {"b": value}}}}
    if base_url is not None:
        data["p"] = {"u": base_url, "r": redirect}
    return json.dumps(data)


def make_fetcher(**kwargs: Any) -> ConfigFetcher:
    return ConfigFetcher(SDK_KEY, HttpxFetchTransport(), InternalLogger(), **kwargs)


def event_ids(caplog: pytest.LogCaptureFixture) -> list[int]:
    return [getattr(r, "event_id", None) for r in caplog.records]


def test_empty_sdk_key_raises() -> None:
    """空の SDK キーはエラー。"""
    with pytest.raises(RemoteFlagError):
        ConfigFetcher("", HttpxFetchTransport(), InternalLogger())


def test_base_url_selection() -> None:
    """カスタム URL、データガバナンスに応じた base URL。"""
    assert make_fetcher().base_url == GLOBAL_URL
    assert make_fetcher(data_governance=DataGovernance.EU_ONLY).base_url == EU_ONLY_URL
    assert make_fetcher(base_url=CUSTOM_URL + "/").base_url == CUSTOM_URL


@respx.mock
async def test_fetch_success() -> None:
    """200 応答でエントリが生成される。"""
    route = respx.get(config_url(GLOBAL_URL)).mock(
        return_value=httpx.Response(200, text=config_body(), headers={"ETag": '"v1"'})
    )
    response = await make_fetcher().fetch(None)
    assert response.status is FetchStatus.FETCHED
    assert response.entry.etag == '"v1"'
    assert response.entry.config.settings["flag"].get_value() is True
    assert response.entry.fetch_time > 0
    request = route.calls.last.request
    assert request.headers["X-ConfigCat-UserAgent"].startswith("k1s0-remoteflag/")
    assert "If-None-Match" not in request.headers


@respx.mock
async def test_fetch_sends_etag() -> None:
    """ETag がある場合は If-None-Match を送信する。"""
    route = respx.get(config_url(GLOBAL_URL)).mock(return_value=httpx.Response(304))
    response = await make_fetcher().fetch('"v1"')
    assert response.status is FetchStatus.NOT_MODIFIED
    assert route.calls.last.request.headers["If-None-Match"] == '"v1"'


@respx.mock
async def test_fetch_invalid_body(caplog: pytest.LogCaptureFixture) -> None:
    """2xx でも本文が不正な場合は FAILED。"""
    respx.get(config_url(GLOBAL_URL)).mock(return_value=httpx.Response(200, text="{broken"))
    response = await make_fetcher().fetch(None)
    assert response.is_failed
    assert response.error is not None and response.error.startswith("[1105]")
    assert 1105 in event_ids(caplog)


@pytest.mark.parametrize(("status", "event_id"), [(403, 1100), (404, 1100), (500, 1101)])
async def test_fetch_unexpected_status(
    caplog: pytest.LogCaptureFixture, status: int, event_id: int
) -> None:
    """2xx / 304 以外は FAILED。"""
    with respx.mock:
        respx.get(config_url(GLOBAL_URL)).mock(return_value=httpx.Response(status))
        response = await make_fetcher().fetch(None)
    assert response.is_failed
    assert event_id in event_ids(caplog)


@respx.mock
async def test_fetch_network_error(caplog: pytest.LogCaptureFixture) -> None:
    """通信エラーは例外にならず FAILED。"""
    respx.get(config_url(GLOBAL_URL)).mock(side_effect=httpx.ConnectError("Connection refused"))
    response = await make_fetcher().fetch(None)
    assert response.is_failed
    assert isinstance(response.exception, httpx.ConnectError)
    assert 1103 in event_ids(caplog)


@respx.mock
async def test_fetch_timeout(caplog: pytest.LogCaptureFixture) -> None:
    """タイムアウトは FAILED (1102)。"""
    respx.get(config_url(GLOBAL_URL)).mock(side_effect=httpx.ReadTimeout("timed out"))
    response = await make_fetcher().fetch(None)
    assert response.is_failed
    assert isinstance(response.exception, TimeoutError)
    assert 1102 in event_ids(caplog)


# --- データガバナンスのリダイレクト ---


@respx.mock
async def test_redirect_no_is_not_followed() -> None:
    """NO モードはリダイレクトしない。"""
    global_route = respx.get(config_url(GLOBAL_URL)).mock(
        return_value=httpx.Response(200, text=config_body(EU_ONLY_URL, redirect=0))
    )
    eu_route = respx.get(config_url(EU_ONLY_URL))
    response = await make_fetcher().fetch(None)
    assert response.is_fetched
    assert global_route.call_count == 1
    assert eu_route.call_count == 0


@respx.mock
async def test_redirect_should_is_followed(caplog: pytest.LogCaptureFixture) -> None:
    """SHOULD モードはカスタム URL がなければ追従し、警告を出す。"""
    respx.get(config_url(GLOBAL_URL)).mock(
        return_value=httpx.Response(200, text=config_body(EU_ONLY_URL, redirect=1, value=False))
    )
    eu_route = respx.get(config_url(EU_ONLY_URL)).mock(
        return_value=httpx.Response(200, text=config_body(EU_ONLY_URL, redirect=0, value=True))
    )
    fetcher = make_fetcher()
    response = await fetcher.fetch(None)
    assert response.entry.config.settings["flag"].get_value() is True
    assert eu_route.call_count == 1
    assert fetcher.base_url == EU_ONLY_URL
    assert 3002 in event_ids(caplog)


@respx.mock
async def test_redirect_should_respects_custom_url() -> None:
    """SHOULD モードでカスタム URL が指定されていれば追従しない。"""
    respx.get(config_url(CUSTOM_URL)).mock(
        return_value=httpx.Response(200, text=config_body(EU_ONLY_URL, redirect=1))
    )
    eu_route = respx.get(config_url(EU_ONLY_URL))
    fetcher = make_fetcher(base_url=CUSTOM_URL)
    response = await fetcher.fetch(None)
    assert response.is_fetched
    assert eu_route.call_count == 0
    assert fetcher.base_url == CUSTOM_URL


@respx.mock
async def test_redirect_force_overrides_custom_url() -> None:
    """FORCE モードはカスタム URL よりも優先される。"""
    respx.get(config_url(CUSTOM_URL)).mock(
        return_value=httpx.Response(200, text=config_body(EU_ONLY_URL, redirect=2, value=False))
    )
    respx.get(config_url(EU_ONLY_URL)).mock(
        return_value=httpx.Response(200, text=config_body(EU_ONLY_URL, redirect=2, value=True))
    )
    response = await make_fetcher(base_url=CUSTOM_URL).fetch(None)
    assert response.entry.config.settings["flag"].get_value() is True


@respx.mock
async def test_redirect_loop_is_bounded(caplog: pytest.LogCaptureFixture) -> None:
    """リダイレクトのループは追加 2 回で打ち切り、最後の応答を返す。"""
    global_route = respx.get(config_url(GLOBAL_URL)).mock(
        return_value=httpx.Response(200, text=config_body(EU_ONLY_URL, redirect=2))
    )
    eu_route = respx.get(config_url(EU_ONLY_URL)).mock(
        return_value=httpx.Response(200, text=config_body(GLOBAL_URL, redirect=2))
    )
    response = await make_fetcher().fetch(None)
    assert response.is_fetched
    assert global_route.call_count == 2
    assert eu_route.call_count == 1
    assert 1104 in event_ids(caplog)


@respx.mock
async def test_redirect_failure_returns_failed() -> None:
    """リダイレクト先の取得に失敗した場合は FAILED。"""
    respx.get(config_url(GLOBAL_URL)).mock(
        return_value=httpx.Response(200, text=config_body(EU_ONLY_URL, redirect=2))
    )
    respx.get(config_url(EU_ONLY_URL)).mock(return_value=httpx.Response(500))
    response = await make_fetcher().fetch(None)
    assert response.is_failed
