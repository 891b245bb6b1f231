"""InternalLogger のユニットテスト"""

import logging

import pytest
from k1s0_remoteflag import Hooks, InternalLogger


def test_format() -> None:
    """メッセージにはイベント ID が前置される。"""
    assert InternalLogger.format("hello", 1000) == "[1000] hello"


def test_records_carry_event_id(caplog: pytest.LogCaptureFixture) -> None:
    """ログレコードに event_id が付与される。"""
    InternalLogger().warning("careful", event_id=3002)
    record = caplog.records[-1]
    assert record.levelno == logging.WARNING
    assert record.getMessage() == "[3002] careful"
    assert record.event_id == 3002  # type: ignore[attr-defined]


def test_level_threshold(caplog: pytest.LogCaptureFixture) -> None:
    """閾値未満のログは出力しない。"""
    caplog.set_level(logging.DEBUG, logger="k1s0_remoteflag")
    logger = InternalLogger(level=logging.ERROR)
    logger.warning("hidden", event_id=1)
    logger.info("hidden", event_id=2)
    logger.error("shown", event_id=3)
    assert [r.event_id for r in caplog.records] == [3]  # type: ignore[attr-defined]
    assert logger.is_enabled_for(logging.INFO) is False


def test_ignored_exceptions_are_not_logged(caplog: pytest.LogCaptureFixture) -> None:
    """無視対象の例外を伴うログは出力しない。"""
    logger = InternalLogger(exceptions_to_ignore=[ConnectionError])
    logger.error("ignored", event_id=1103, exception=ConnectionError("down"))
    logger.error("kept", event_id=1103, exception=ValueError("bad"))
    messages = [r.getMessage() for r in caplog.records]
    assert messages == ["[1103] kept"]


def test_error_fires_on_error_hook() -> None:
    """ERROR ログは on_error フックを呼び出す。"""
    hooks = Hooks()
    received: list[tuple[str, BaseException | None]] = []
    hooks.add_on_error(lambda message, exception: received.append((message, exception)))
    error = ValueError("bad")
    InternalLogger(hooks=hooks).error("failed", event_id=1002, exception=error)
    assert received == [("[1002] failed", error)]


def test_custom_logger(caplog: pytest.LogCaptureFixture) -> None:
    """任意の logging.Logger を使える。"""
    InternalLogger(logger=logging.getLogger("app.flags")).error("oops", event_id=1)
    assert caplog.records[-1].name == "app.flags"
