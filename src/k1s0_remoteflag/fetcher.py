"""config JSON フェッチャー

ETag による条件付き GET と、config JSON のプリファレンスに基づく
データガバナンスのリダイレクト追従を行う。通信エラーは例外として送出せず、
FetchStatus.FAILED の FetchResponse として返す。
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from .entry import EMPTY_ENTRY, ConfigEntry
from .exceptions import RemoteFlagError, RemoteFlagErrorCodes
from .log import InternalLogger
from .models import RedirectMode
from .transport import FetchTransport, TransportResponse
from .utils import get_unix_milliseconds

SDK_VERSION = "1.0.0"
CONFIG_JSON_NAME = "config_v6.json"

GLOBAL_URL = "https://cdn-global.configcat.com"
EU_ONLY_URL = "https://cdn-eu.configcat.com"

MAX_REDIRECTS = 2


class DataGovernance(StrEnum):
    """config JSON の配信リージョン。"""

    GLOBAL = "global"
    EU_ONLY = "eu_only"


class FetchStatus(StrEnum):
    FETCHED = "fetched"
    NOT_MODIFIED = "not_modified"
    FAILED = "failed"


@dataclass(frozen=True)
class FetchResponse:
    """フェッチ結果。entry は FETCHED の場合のみ意味を持つ。"""

    status: FetchStatus
    entry: ConfigEntry = EMPTY_ENTRY
    error: str | None = None
    exception: BaseException | None = None

    @classmethod
    def success(cls, entry: ConfigEntry) -> FetchResponse:
        return cls(status=FetchStatus.FETCHED, entry=entry)

    @classmethod
    def not_modified(cls) -> FetchResponse:
        return cls(status=FetchStatus.NOT_MODIFIED)

    @classmethod
    def failure(cls, error: str, exception: BaseException | None = None) -> FetchResponse:
        return cls(status=FetchStatus.FAILED, error=error, exception=exception)

    @property
    def is_fetched(self) -> bool:
        return self.status is FetchStatus.FETCHED

    @property
    def is_not_modified(self) -> bool:
        return self.status is FetchStatus.NOT_MODIFIED

    @property
    def is_failed(self) -> bool:
        return self.status is FetchStatus.FAILED


class ConfigFetcher:
    """config JSON を取得するフェッチャー。"""

    def __init__(
        self,
        sdk_key: str,
        transport: FetchTransport,
        logger: InternalLogger,
        base_url: str | None = None,
        data_governance: DataGovernance = DataGovernance.GLOBAL,
    ) -> None:
        if not sdk_key:
            raise RemoteFlagError(
                code=RemoteFlagErrorCodes.INVALID_OPTIONS,
                message="sdk_key cannot be empty.",
            )
        self._url_path = f"configuration-files/{sdk_key}/{CONFIG_JSON_NAME}"
        self._transport = transport
        self._logger = logger
        self._url_is_custom = bool(base_url)
        if base_url:
            self._base_url = base_url.rstrip("/")
        elif data_governance is DataGovernance.EU_ONLY:
            self._base_url = EU_ONLY_URL
        else:
            self._base_url = GLOBAL_URL
        self._user_agent = f"k1s0-remoteflag/{SDK_VERSION}"

    @property
    def base_url(self) -> str:
        return self._base_url

    async def fetch(self, etag: str | None) -> FetchResponse:
        """config JSON を取得する。

        Args:
            etag: 前回取得時の ETag (条件付き GET に使用)

        Returns:
            FETCHED / NOT_MODIFIED / FAILED のいずれかの FetchResponse
        """
        url = self._base_url
        response = await self._send_request(etag, url)
        redirects = 0
        while True:
            new_url = self._redirect_target(response, url)
            if new_url is None:
                break
            if redirects >= MAX_REDIRECTS:
                self._logger.error(
                    "Redirection loop encountered while trying to fetch config JSON. "
                    "Please check the data governance settings of the config.",
                    event_id=1104,
                )
                break
            redirects += 1
            url = new_url
            self._base_url = new_url
            response = await self._send_request(etag, url)
        return response

    def _redirect_target(self, response: FetchResponse, url: str) -> str | None:
        """リダイレクト先の base URL を返す。追従しない場合は None。"""
        if not response.is_fetched:
            return None
        preferences = response.entry.config.preferences
        if preferences is None:
            return None
        new_url = (preferences.base_url or "").rstrip("/")
        if not new_url or new_url == url:
            return None
        redirect = preferences.redirect_mode
        if redirect is RedirectMode.NO:
            return None
        if self._url_is_custom and redirect is not RedirectMode.FORCE:
            return None
        if redirect is RedirectMode.SHOULD:
            self._logger.warning(
                "The `data_governance` option specified at the client initialization is not "
                "in sync with the preferences of the config. Please check the data governance "
                "setting.",
                event_id=3002,
            )
        return new_url

    async def _send_request(self, etag: str | None, base_url: str) -> FetchResponse:
        url = f"{base_url}/{self._url_path}"
        headers = {"X-ConfigCat-UserAgent": self._user_agent}
        if etag:
            headers["If-None-Match"] = etag

        try:
            resp = await self._transport.get(url, headers)
        except TimeoutError as e:
            message = "Request timed out while trying to fetch config JSON."
            self._logger.error(message, event_id=1102, exception=e)
            return FetchResponse.failure(InternalLogger.format(message, 1102), e)
        except Exception as e:
            message = (
                "Unexpected error occurred while trying to fetch config JSON. It is most "
                "likely due to a local network issue. Please make sure your application can "
                "reach the config servers (or your proxy server) over HTTP."
            )
            self._logger.error(message, event_id=1103, exception=e)
            return FetchResponse.failure(InternalLogger.format(message, 1103), e)

        return self._handle_response(resp, etag)

    def _handle_response(self, resp: TransportResponse, etag: str | None) -> FetchResponse:
        status = resp.status_code
        if 200 <= status < 300:
            self._logger.debug("Fetch was successful: new config fetched.")
            new_etag = resp.header("ETag") or etag or ""
            try:
                entry = ConfigEntry.from_config_json(resp.text, new_etag, get_unix_milliseconds())
            except RemoteFlagError as e:
                message = (
                    "Fetching config JSON was successful but the HTTP response content "
                    "was invalid."
                )
                self._logger.error(message, event_id=1105, exception=e)
                return FetchResponse.failure(InternalLogger.format(message, 1105), e)
            return FetchResponse.success(entry)

        if status == 304:
            self._logger.debug("Fetch was successful: config not modified.")
            return FetchResponse.not_modified()

        if status in (401, 403, 404):
            message = (
                "Your SDK Key seems to be wrong. Please check the SDK Key. "
                f"Received unexpected response: {status}"
            )
            event_id = 1100
        else:
            message = f"Unexpected HTTP response was received while trying to fetch config JSON: {status}"
            event_id = 1101
        self._logger.error(message, event_id=event_id)
        return FetchResponse.failure(InternalLogger.format(message, event_id))
