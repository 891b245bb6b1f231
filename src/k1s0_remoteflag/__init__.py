"""k1s0 remoteflag library."""

from .cache import ConfigCache, InMemoryConfigCache
from .client import RemoteFlagClientProtocol
from .context import EvaluationContext
from .entry import EMPTY_ENTRY, ConfigEntry
from .evaluator import RolloutEvaluator
from .exceptions import RemoteFlagError, RemoteFlagErrorCodes
from .fetcher import ConfigFetcher, DataGovernance, FetchResponse, FetchStatus
from .hooks import Hooks
from .loader import load_options
from .log import InternalLogger
from .models import (
    ConfigDocument,
    PercentageOption,
    Setting,
    SettingType,
    TargetingRule,
)
from .options import ClientOptions
from .orchestrator import CacheOrchestrator
from .overrides import (
    DictDataSource,
    FlagOverrides,
    LocalFileDataSource,
    OverrideBehaviour,
    OverrideDataSource,
)
from .remote_client import RemoteFlagClient
from .results import EvaluationDetails, EvaluationResult, RefreshResult
from .trace import EvaluationTraceBuilder
from .transport import FetchTransport, HttpxFetchTransport, TransportResponse

__all__ = [
    "EMPTY_ENTRY",
    "CacheOrchestrator",
    "ClientOptions",
    "ConfigCache",
    "ConfigDocument",
    "ConfigEntry",
    "ConfigFetcher",
    "DataGovernance",
    "DictDataSource",
    "EvaluationContext",
    "EvaluationDetails",
    "EvaluationResult",
    "EvaluationTraceBuilder",
    "FetchResponse",
    "FetchStatus",
    "FetchTransport",
    "FlagOverrides",
    "Hooks",
    "HttpxFetchTransport",
    "InMemoryConfigCache",
    "InternalLogger",
    "LocalFileDataSource",
    "OverrideBehaviour",
    "OverrideDataSource",
    "PercentageOption",
    "RefreshResult",
    "RemoteFlagClient",
    "RemoteFlagClientProtocol",
    "RemoteFlagError",
    "RemoteFlagErrorCodes",
    "RolloutEvaluator",
    "Setting",
    "SettingType",
    "TargetingRule",
    "TransportResponse",
    "load_options",
]
