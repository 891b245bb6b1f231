"""config JSON モデルのユニットテスト"""

import pytest
from k1s0_remoteflag import ConfigDocument, RemoteFlagError, RemoteFlagErrorCodes, Setting
from k1s0_remoteflag.models import (
    PrerequisiteFlagComparator,
    PrerequisiteFlagCondition,
    RedirectMode,
    SegmentComparator,
    SegmentCondition,
    SettingType,
    SettingValue,
    TargetingRule,
    UserComparator,
    UserCondition,
)

CONFIG = {
    "p": {"u": "https://cdn-global.configcat.com", "r": 0, "s": "salt-1"},
    "s": [
        {
            "n": "Beta users",
            "r": [{"a": "Email", "c": 2, "l": ["@example.com"]}],
        }
    ],
    "f": {
        "isFeatureEnabled": {
            "t": 0,
            "v": {"b": False},
            "i": "v-default",
            "r": [
                {
                    "c": [
                        {"u": {"a": "Country", "c": 28, "s": "JP"}},
                        {"s": {"s": 0, "c": 0}},
                        {"p": {"f": "otherFlag", "c": 0, "v": {"s": "on"}}},
                    ],
                    "s": {"v": {"b": True}, "i": "v-rule"},
                }
            ],
            "p": [
                {"p": 30, "v": {"b": True}, "i": "v-30"},
                {"p": 70, "v": {"b": False}, "i": "v-70"},
            ],
        },
        "otherFlag": {"t": 1, "v": {"s": "on"}, "i": "v-other"},
    },
}


def test_parse_config_document() -> None:
    """config JSON 全体のパース。"""
    doc = ConfigDocument.from_dict(CONFIG)
    assert doc.preferences is not None
    assert doc.preferences.salt == "salt-1"
    assert doc.preferences.redirect_mode is RedirectMode.NO
    assert [s.name for s in doc.segments] == ["Beta users"]
    assert set(doc.settings) == {"isFeatureEnabled", "otherFlag"}


def test_parse_setting_fields() -> None:
    """設定の各フィールドが変換されること。"""
    setting = ConfigDocument.from_dict(CONFIG).settings["isFeatureEnabled"]
    assert setting.setting_type is SettingType.BOOLEAN
    assert setting.get_value() is False
    assert setting.variation_id == "v-default"
    assert setting.config_salt == "salt-1"
    assert setting.percentage_attribute == "Identifier"
    assert setting.has_targeting is True
    assert [o.percentage for o in setting.percentage_options] == [30, 70]


def test_parse_condition_kinds() -> None:
    """ユーザー・セグメント・前提フラグ条件の判別。"""
    rule = ConfigDocument.from_dict(CONFIG).settings["isFeatureEnabled"].targeting_rules[0]
    user, segment, prerequisite = rule.conditions
    assert isinstance(user, UserCondition)
    assert user.comparator is UserComparator.TEXT_EQUALS
    assert user.comparison_value == "JP"
    assert isinstance(segment, SegmentCondition)
    assert segment.comparator is SegmentComparator.IS_IN
    assert isinstance(prerequisite, PrerequisiteFlagCondition)
    assert prerequisite.comparator is PrerequisiteFlagComparator.EQUALS
    assert prerequisite.comparison_value.get(SettingType.STRING) == "on"
    assert rule.has_percentage_options is False


def test_unknown_comparator_is_kept_as_none() -> None:
    """未知の演算子コードはパース時ではなく評価時のエラーになる。"""
    condition = UserCondition.from_dict({"a": "Email", "c": 99, "s": "x"})
    assert condition.comparator is None
    assert condition.comparison_value == "x"


def test_rule_with_both_then_parts_is_invalid() -> None:
    """THEN 部に単純値と % オプションの両方がある場合はエラー。"""
    rule = TargetingRule.from_dict(
        {"c": [], "s": {"v": {"b": True}}, "p": [{"p": 100, "v": {"b": True}}]}
    )
    with pytest.raises(RemoteFlagError) as exc_info:
        _ = rule.has_percentage_options
    assert exc_info.value.code == RemoteFlagErrorCodes.INVALID_CONFIG


def test_setting_value_type_mismatch() -> None:
    """値コンテナと設定型が一致しない場合はエラー。"""
    with pytest.raises(RemoteFlagError) as exc_info:
        SettingValue({"s": "text"}).get(SettingType.BOOLEAN)
    assert exc_info.value.message == "Setting value is missing or invalid."


def test_double_value_accepts_int() -> None:
    """DOUBLE 型は整数値を float として返す。"""
    assert SettingValue({"d": 3}).get(SettingType.DOUBLE) == 3.0


def test_infer_value() -> None:
    """型情報なしで値を推定する。"""
    assert SettingValue({"i": 5}).infer() == 5
    assert SettingValue(None).infer() is None


def test_setting_from_value() -> None:
    """Python 値から Setting を生成する。"""
    assert Setting.from_value(True).setting_type is SettingType.BOOLEAN
    assert Setting.from_value("a").setting_type is SettingType.STRING
    assert Setting.from_value(1).setting_type is SettingType.INT
    assert Setting.from_value(1.5).setting_type is SettingType.DOUBLE
    assert Setting.from_value([1]).setting_type is SettingType.UNSUPPORTED


def test_unsupported_value_raises_on_get() -> None:
    """サポート外の値は取得時にエラー。"""
    setting = Setting.from_value({"nested": 1})
    with pytest.raises(RemoteFlagError):
        setting.get_value()


def test_invalid_json_raises() -> None:
    """JSON 構文エラーは INVALID_CONFIG。"""
    with pytest.raises(RemoteFlagError) as exc_info:
        ConfigDocument.from_json("{not json")
    assert exc_info.value.code == RemoteFlagErrorCodes.INVALID_CONFIG
    assert exc_info.value.message.startswith("JSON error:")


def test_non_object_json_raises() -> None:
    """オブジェクト以外の JSON はエラー。"""
    with pytest.raises(RemoteFlagError) as exc_info:
        ConfigDocument.from_json("[]")
    assert exc_info.value.message == "Invalid config JSON content."


def test_invalid_rule_list_raises() -> None:
    """ルールがリストでない場合はパース時にエラー。"""
    with pytest.raises(RemoteFlagError):
        ConfigDocument.from_dict({"f": {"x": {"t": 0, "v": {"b": True}, "r": {}}}})


def test_empty_document() -> None:
    """空のドキュメント。"""
    doc = ConfigDocument.from_json("{}")
    assert doc.preferences is None
    assert dict(doc.settings) == {}
