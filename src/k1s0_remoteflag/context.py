"""評価コンテキスト (ユーザーオブジェクト)"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .utils import format_value

UserAttributeValue = str | int | float | bool | datetime | list[str]


@dataclass(frozen=True)
class EvaluationContext:
    """ターゲティング評価に使うユーザー属性。

    評価呼び出しごとに生成し、読み取り専用として扱う。
    """

    identifier: str
    email: str | None = None
    country: str | None = None
    custom: dict[str, UserAttributeValue] = field(default_factory=dict)

    def get_attribute(self, name: str) -> Any:
        """属性名に対応する値を返す。存在しなければ None。"""
        if name == "Identifier":
            return self.identifier
        if name == "Email":
            return self.email
        if name == "Country":
            return self.country
        return self.custom.get(name)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"Identifier": self.identifier}
        if self.email is not None:
            result["Email"] = self.email
        if self.country is not None:
            result["Country"] = self.country
        for key, value in self.custom.items():
            if key not in ("Identifier", "Email", "Country"):
                result[key] = value
        return result

    def __str__(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, default=format_value)
