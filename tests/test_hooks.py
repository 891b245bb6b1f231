"""Hooks のユニットテスト"""

from typing import Any

from k1s0_remoteflag import EvaluationDetails, Hooks


def make_details() -> EvaluationDetails:
    return EvaluationDetails.from_error("flag", False, None, "[1001] missing", 0.0)


def test_callbacks_are_called_in_order() -> None:
    """登録順に呼び出される。"""
    hooks = Hooks()
    calls: list[str] = []
    hooks.add_on_flag_evaluated(lambda d: calls.append("first"))
    hooks.add_on_flag_evaluated(lambda d: calls.append("second"))
    hooks.fire_on_flag_evaluated(make_details())
    assert calls == ["first", "second"]


def test_callback_exception_does_not_stop_others() -> None:
    """コールバックの例外は後続の呼び出しを妨げない。"""
    hooks = Hooks()
    received: list[Any] = []

    def broken(message: str, exception: BaseException | None) -> None:
        raise RuntimeError("boom")

    hooks.add_on_error(broken)
    hooks.add_on_error(lambda message, exception: received.append(message))
    hooks.fire_on_error("[1000] error")
    assert received == ["[1000] error"]


def test_config_changed() -> None:
    """on_config_changed に設定マップが渡される。"""
    hooks = Hooks()
    received: list[Any] = []
    hooks.add_on_config_changed(received.append)
    hooks.fire_on_config_changed({})
    assert received == [{}]


def test_clear() -> None:
    """clear 後は呼び出されない。"""
    hooks = Hooks()
    calls: list[Any] = []
    hooks.add_on_flag_evaluated(calls.append)
    hooks.add_on_error(lambda m, e: calls.append(m))
    hooks.clear()
    hooks.fire_on_flag_evaluated(make_details())
    hooks.fire_on_error("x")
    assert calls == []
