"""External service integrations."""

from soulscan.infrastructure.integrations.deezer_client import DeezerClient
from soulscan.infrastructure.integrations.image_fetcher import HttpImageFetcher
from soulscan.infrastructure.integrations.lastfm_client import LastfmClient
from soulscan.infrastructure.integrations.lrclib_client import LrclibClient
from soulscan.infrastructure.integrations.netease_client import NeteaseClient
from soulscan.infrastructure.integrations.retry import (
    RETRYABLE_STATUS_CODES,
    RetryPolicy,
    RetryStats,
    outcome_from_exception,
    outcome_from_status,
)

__all__ = [
    "DeezerClient",
    "HttpImageFetcher",
    "LastfmClient",
    "LrclibClient",
    "NeteaseClient",
    "RETRYABLE_STATUS_CODES",
    "RetryPolicy",
    "RetryStats",
    "outcome_from_exception",
    "outcome_from_status",
]
