"""
Rate-Limited Fetcher.

Issues every request against the catalog API and artwork host through a
shared TokenBucket, retrying transient failures with exponential backoff.

Failure classification:
- Transient: timeouts, connection errors/resets, protocol errors, 429, 5xx
  -> retried up to max_attempts, then TransientFetchError
- Permanent: 404 and other 4xx, malformed bodies, unusable URLs,
  redirect loops, undecodable bodies
  -> PermanentFetchError immediately, no retry
- Authentication: 401, 403 -> AuthenticationError (fatal)
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from cardforge.config import Settings
from cardforge.models.card import CatalogRecord
from cardforge.models.failure import (
    AuthenticationError,
    EmptyCatalogError,
    FailureKind,
    PermanentFetchError,
    TransientFetchError,
)
from cardforge.parsers.ygoprodeck import (
    MalformedResponseError,
    parse_catalog,
    parse_database_version,
)
from cardforge.services.rate_limiter import TokenBucket

logger = logging.getLogger(__name__)

AUTH_STATUS_CODES = frozenset({401, 403})


class FetchEventKind(str, Enum):
    """Progress event types emitted by the fetcher."""

    REQUEST = "request"
    RETRY = "retry"
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True, slots=True)
class FetchEvent:
    """A single progress event for one request attempt."""

    kind: FetchEventKind
    url: str
    attempt: int
    detail: str | None = None


EventCallback = Callable[[FetchEvent], None]


def classify_response(url: str, response: httpx.Response) -> None:
    """
    Raise the matching pipeline error for a non-success response.

    Raises:
        AuthenticationError: 401/403
        TransientFetchError: 429 or 5xx (retryable)
        PermanentFetchError: any other non-2xx status
    """
    status = response.status_code
    if response.is_success:
        return
    if status in AUTH_STATUS_CODES:
        raise AuthenticationError(url, status)
    if status == 429:
        raise TransientFetchError(url, FailureKind.RATE_LIMITED, f"HTTP {status}")
    if status >= 500:
        raise TransientFetchError(url, FailureKind.SERVER_ERROR, f"HTTP {status}")
    kind = FailureKind.NOT_FOUND if status == 404 else FailureKind.CLIENT_ERROR
    raise PermanentFetchError(url, kind, f"HTTP {status}")


class CatalogFetcher:
    """
    HTTP access to the catalog API and artwork host.

    Every attempt, retries included, takes a token from the shared limiter
    before touching the network.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        limiter: TokenBucket,
        *,
        catalog_url: str,
        version_url: str,
        max_attempts: int = 5,
        backoff_base: float = 0.5,
        backoff_max: float = 30.0,
        on_event: EventCallback | None = None,
    ) -> None:
        self._client = client
        self._limiter = limiter
        self._catalog_url = catalog_url
        self._version_url = version_url
        self._max_attempts = max_attempts
        self._backoff_base = backoff_base
        self._backoff_max = backoff_max
        self._on_event = on_event

    @classmethod
    def from_settings(
        cls,
        client: httpx.AsyncClient,
        limiter: TokenBucket,
        settings: Settings,
        on_event: EventCallback | None = None,
    ) -> "CatalogFetcher":
        return cls(
            client,
            limiter,
            catalog_url=settings.catalog_url,
            version_url=settings.version_url,
            max_attempts=settings.max_attempts,
            backoff_base=settings.backoff_base,
            backoff_max=settings.backoff_max,
            on_event=on_event,
        )

    def _emit(
        self, kind: FetchEventKind, url: str, attempt: int, detail: str | None = None
    ) -> None:
        if self._on_event is not None:
            self._on_event(FetchEvent(kind=kind, url=url, attempt=attempt, detail=detail))

    def _before_sleep(self, url: str) -> Callable[[RetryCallState], None]:
        def log_retry(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            detail = getattr(error, "detail", None) or str(error)
            logger.warning(
                "FETCH_RETRY",
                extra={"url": url, "attempt": retry_state.attempt_number, "detail": detail},
            )
            self._emit(FetchEventKind.RETRY, url, retry_state.attempt_number, detail)

        return log_retry

    async def _attempt(self, url: str, attempt: int) -> httpx.Response:
        await self._limiter.acquire()
        self._emit(FetchEventKind.REQUEST, url, attempt)

        try:
            response = await self._client.get(url)
        except httpx.TimeoutException as e:
            raise TransientFetchError(url, FailureKind.NETWORK_TIMEOUT, str(e)) from e
        except (httpx.UnsupportedProtocol, httpx.LocalProtocolError, httpx.InvalidURL) as e:
            raise PermanentFetchError(url, FailureKind.INVALID_REQUEST, str(e)) from e
        except httpx.TransportError as e:
            raise TransientFetchError(url, FailureKind.NETWORK_ERROR, str(e)) from e
        except httpx.HTTPError as e:
            # Redirect loops and undecodable bodies
            raise PermanentFetchError(url, FailureKind.CLIENT_ERROR, str(e)) from e

        classify_response(url, response)
        return response

    async def _get(self, url: str) -> httpx.Response:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=self._backoff_base, max=self._backoff_max),
            retry=retry_if_exception_type(TransientFetchError),
            before_sleep=self._before_sleep(url),
            reraise=True,
        )
        number = 0
        try:
            async for attempt in retrying:
                with attempt:
                    number = attempt.retry_state.attempt_number
                    response = await self._attempt(url, number)
        except (TransientFetchError, PermanentFetchError) as e:
            self._emit(FetchEventKind.FAILURE, url, number, e.detail)
            raise

        self._emit(FetchEventKind.SUCCESS, url, number)
        return response

    async def _get_json(self, url: str) -> object:
        response = await self._get(url)
        try:
            return response.json()
        except ValueError as e:
            raise PermanentFetchError(url, FailureKind.MALFORMED_RESPONSE, str(e)) from e

    async def fetch_catalog(self) -> list[CatalogRecord]:
        """
        Download the full card catalog.

        Returns:
            Raw catalog records, in API order.

        Raises:
            EmptyCatalogError: If the response holds no records (fatal)
            AuthenticationError: If the API rejects the request (fatal)
            PermanentFetchError: If the body is malformed or the URL is wrong
            TransientFetchError: If retries are exhausted
        """
        url = self._catalog_url
        logger.info("Downloading card catalog from %s", url)
        payload = await self._get_json(url)

        try:
            records = parse_catalog(payload)
        except MalformedResponseError as e:
            raise PermanentFetchError(url, FailureKind.MALFORMED_RESPONSE, str(e)) from e

        if not records:
            raise EmptyCatalogError(url)

        logger.info("Downloaded %d catalog records", len(records))
        return records

    async def fetch_database_version(self) -> str:
        """Fetch the upstream database version string."""
        url = self._version_url
        payload = await self._get_json(url)
        try:
            return parse_database_version(payload)
        except MalformedResponseError as e:
            raise PermanentFetchError(url, FailureKind.MALFORMED_RESPONSE, str(e)) from e

    async def fetch_asset(self, url: str) -> bytes:
        """
        Download binary asset bytes (artwork).

        Raises:
            AuthenticationError: If the host rejects the request (fatal)
            PermanentFetchError: For 404 and other non-retryable statuses
            TransientFetchError: If retries are exhausted
        """
        response = await self._get(url)
        return response.content
