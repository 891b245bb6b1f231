"""RemoteFlagClient プロトコル"""

from __future__ import annotations

from typing import Any, Protocol

from .context import EvaluationContext
from .hooks import Hooks
from .results import EvaluationDetails, RefreshResult


class RemoteFlagClientProtocol(Protocol):
    """リモートフラグクライアントプロトコル。"""

    async def get_value(
        self, key: str, default_value: Any, user: EvaluationContext | None = None
    ) -> Any: ...

    async def get_value_details(
        self, key: str, default_value: Any, user: EvaluationContext | None = None
    ) -> EvaluationDetails: ...

    async def get_key_and_value(self, variation_id: str) -> tuple[str, Any] | None: ...

    async def get_all_keys(self) -> list[str]: ...

    async def get_all_values(self, user: EvaluationContext | None = None) -> dict[str, Any]: ...

    async def get_all_value_details(
        self, user: EvaluationContext | None = None
    ) -> list[EvaluationDetails]: ...

    async def force_refresh(self) -> RefreshResult: ...

    def set_default_user(self, user: EvaluationContext) -> None: ...

    def clear_default_user(self) -> None: ...

    def set_online(self) -> None: ...

    def set_offline(self) -> None: ...

    def is_offline(self) -> bool: ...

    @property
    def hooks(self) -> Hooks: ...

    async def close(self) -> None: ...
