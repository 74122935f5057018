"""Shared plumbing for the enrichment provider clients.

Hey future me - every provider client makes exactly ONE HTTP attempt per
call and turns whatever happened into an AttemptOutcome. Transport errors
(timeouts, refused connections, DNS) become RetryableFailure, 404 becomes
Success(None) ("we asked, they don't know it"), 5xx/429 are retryable and
every other 4xx is permanent. RetryPolicy does the looping.

The httpx.AsyncClient is created lazily (needs a running loop) and can be
injected for tests or to share one connection pool between providers.
"""

import logging
from typing import Any, ClassVar

import httpx

from soulscan.config.settings import HttpSettings
from soulscan.domain.value_objects.outcomes import (
    AttemptOutcome,
    PermanentFailure,
    RetryableFailure,
    Success,
)
from soulscan.infrastructure.integrations.retry import (
    DEFAULT_RATE_LIMIT_DELAY,
    outcome_from_exception,
    outcome_from_status,
)

logger = logging.getLogger(__name__)


class BaseProviderClient:
    """Lazily created httpx client plus outcome mapping."""

    API_BASE_URL: ClassVar[str] = ""
    # Sent with every request, on top of the shared client's headers
    REQUEST_HEADERS: ClassVar[dict[str, str]] = {}
    name: str = "provider"

    def __init__(
        self,
        http_settings: HttpSettings,
        *,
        client: httpx.AsyncClient | None = None,
        rate_limit_delay: float = DEFAULT_RATE_LIMIT_DELAY,
    ) -> None:
        """Initialize client.

        Args:
            http_settings: Timeout and User-Agent
            client: Pre-built client (not closed by close())
            rate_limit_delay: Backoff multiplier for 429 without Retry-After
        """
        self.http_settings = http_settings
        self.rate_limit_delay = rate_limit_delay
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers={
                    "User-Agent": self.http_settings.user_agent,
                    "Accept": "application/json",
                },
                timeout=self.http_settings.timeout,
                follow_redirects=True,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client (only if we created it)."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "BaseProviderClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()

    # =========================================================================
    # Single attempt helpers
    # =========================================================================

    async def _send(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
    ) -> AttemptOutcome[httpx.Response]:
        """Send one request. Any response (even 500) is Success; transport errors are not."""
        client = await self._get_client()
        # Full URLs so one injected client can serve every provider
        if not url.startswith(("http://", "https://")):
            url = f"{self.API_BASE_URL}{url}"
        try:
            response = await client.request(
                method, url, params=params, data=data, headers=self.REQUEST_HEADERS or None
            )
        except httpx.HTTPError as e:
            logger.debug(f"{self.name}: {method} {url} failed: {e.__class__.__name__}: {e}")
            return outcome_from_exception(e)
        return Success(response)

    async def _get(
        self, url: str, params: dict[str, Any] | None = None
    ) -> AttemptOutcome[httpx.Response]:
        """Send one GET."""
        return await self._send("GET", url, params=params)

    def _status_outcome(self, response: httpx.Response) -> RetryableFailure | PermanentFailure:
        return outcome_from_status(
            response.status_code,
            retry_after=response.headers.get("Retry-After"),
            rate_limit_delay=self.rate_limit_delay,
        )

    async def _get_json(
        self, url: str, params: dict[str, Any] | None = None
    ) -> AttemptOutcome[Any]:
        """One GET decoded as JSON. 404 -> Success(None)."""
        return self._decode_json(await self._get(url, params))

    async def _post_form_json(self, url: str, data: dict[str, Any]) -> AttemptOutcome[Any]:
        """One form-encoded POST decoded as JSON. 404 -> Success(None)."""
        return self._decode_json(await self._send("POST", url, data=data))

    def _decode_json(self, sent: AttemptOutcome[httpx.Response]) -> AttemptOutcome[Any]:
        if not isinstance(sent, Success):
            return sent
        response = sent.value

        if response.status_code == 404:
            return Success(None)
        if response.is_error:
            return self._status_outcome(response)
        try:
            return Success(response.json())
        except ValueError as e:
            return PermanentFailure(reason=f"{self.name}: invalid JSON: {e}")
