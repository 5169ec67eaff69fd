"""Rate-limited, bounded-concurrency HTTP fetching."""
import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from fiction_mirror.config import Settings
from fiction_mirror.exceptions import ConfigError, NetworkError

logger = logging.getLogger(__name__)

# Statuses worth asking again for
RETRY_HTTP_CODES = [500, 502, 503, 504, 408, 429]


class TransientStatusError(Exception):
    """Server answered with a status that usually clears up on retry."""

    def __init__(self, url: str, status_code: int):
        super().__init__(f"HTTP {status_code}")
        self.url = url
        self.status_code = status_code


class SpacingGate:
    """
    Minimum spacing between request grants, shared by every caller.

    The first grant is immediate; every later grant waits until ``interval``
    seconds have passed since the previous one. Grants are handed out one at a
    time in arrival order.
    """

    def __init__(
        self,
        interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if interval <= 0:
            raise ConfigError("request spacing must be positive", {"interval": interval})
        self.interval = interval
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._next_grant: Optional[float] = None
        self.grants = 0

    async def acquire(self) -> float:
        """Block until a request may be issued. Returns the grant time."""
        async with self._lock:
            if self._next_grant is not None:
                wait = self._next_grant - self._clock()
                while wait > 0:
                    await self._sleep(wait)
                    wait = self._next_grant - self._clock()
            granted = self._clock()
            self._next_grant = granted + self.interval
            self.grants += 1
            return granted


class CapacityGate:
    """Upper bound on simultaneously in-flight requests. ``0`` means unbounded."""

    def __init__(self, limit: int):
        if limit < 0:
            raise ConfigError("concurrency limit cannot be negative", {"limit": limit})
        self.limit = limit
        self._semaphore = asyncio.Semaphore(limit) if limit else None
        self.in_flight = 0
        self.peak = 0

    async def __aenter__(self) -> "CapacityGate":
        if self._semaphore is not None:
            await self._semaphore.acquire()
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.in_flight -= 1
        if self._semaphore is not None:
            self._semaphore.release()


def _retry_logger(url: str) -> Callable[[RetryCallState], None]:
    def log(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            f"Retrying {url} after {type(exc).__name__}: {exc} "
            f"(attempt {retry_state.attempt_number})"
        )
    return log


class RateLimitedFetcher:
    """
    Single GET entry point for TOC and chapter pages.

    Each attempt passes the capacity gate, then the spacing gate, then goes on
    the wire. Transport failures and transient statuses are retried; each retry
    goes through both gates again.
    """

    def __init__(
        self,
        spacing: SpacingGate,
        capacity: CapacityGate,
        max_retries: int = 3,
        retry_backoff: float = 1.0,
        timeout: float = 30.0,
        user_agent: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.spacing = spacing
        self.capacity = capacity
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self.timeout = timeout
        self.user_agent = user_agent
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "RateLimitedFetcher":
        settings.validate_limits()
        return cls(
            spacing=SpacingGate(settings.time_limit_ms / 1000),
            capacity=CapacityGate(settings.connections),
            max_retries=settings.max_retries,
            retry_backoff=settings.retry_backoff,
            timeout=settings.request_timeout,
            user_agent=settings.user_agent,
            transport=transport,
        )

    async def __aenter__(self) -> "RateLimitedFetcher":
        headers = {
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en",
        }
        if self.user_agent:
            headers["User-Agent"] = self.user_agent
        self._client = httpx.AsyncClient(
            timeout=self.timeout,
            headers=headers,
            follow_redirects=True,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def fetch(self, url: str) -> bytes:
        """
        GET a page.

        Args:
            url: Absolute URL

        Returns:
            Response body bytes

        Raises:
            NetworkError: retries exhausted, a non-retryable HTTP status or
                any other request failure such as a redirect loop
        """
        if self._client is None:
            raise RuntimeError("fetcher used outside of 'async with'")

        attempts = self.max_retries + 1
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(attempts),
                wait=wait_exponential(multiplier=self.retry_backoff, max=30),
                retry=retry_if_exception_type((httpx.TransportError, TransientStatusError)),
                before_sleep=_retry_logger(url),
                reraise=True,
            ):
                with attempt:
                    return await self._attempt(url)
        except (httpx.TransportError, TransientStatusError) as e:
            raise NetworkError(url, f"{type(e).__name__}: {e} (gave up after {attempts} attempts)") from e
        except httpx.HTTPStatusError as e:
            raise NetworkError(url, f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise NetworkError(url, f"{type(e).__name__}: {e}") from e

    async def _attempt(self, url: str) -> bytes:
        async with self.capacity:
            await self.spacing.acquire()
            logger.debug(f"GET {url}")
            response = await self._client.get(url)
        if response.status_code in RETRY_HTTP_CODES:
            raise TransientStatusError(url, response.status_code)
        response.raise_for_status()
        return response.content
