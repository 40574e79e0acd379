"""HTTP session for the portal: cookies, timeouts, metrics and slow-response backoff.

PortalSession wraps one httpx.AsyncClient per scrape run. The portal is a slow
legacy server that starts crawling when it throttles a client, so besides a
generous timeout the session watches response latency:

  elapsed > slow_response_ms   -> slow streak + 1
  elapsed < fast_response_ms   -> slow streak reset
  slow streak == threshold     -> sleep a random 45-60s cooldown, reset streak

The cooldown happens inside ``request`` so callers never see it, only a longer
call. Every exchange updates running metrics and is mirrored to an optional
archive hook for later HAR export.
"""

import asyncio
import random
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping

import httpx

from src.portal_scraper.archive import build_har_entry
from src.portal_scraper.config import ScraperConfig
from src.portal_scraper.errors import NetworkFailure, NetworkTimeout
from src.portal_scraper.logging import get_logger
from src.portal_scraper.models import RequestMetrics
from src.portal_scraper.utils import BROWSER_HEADERS, utc_now_iso

logger = get_logger(__name__)

ExchangeHook = Callable[[RequestMetrics, dict[str, Any] | None], None]
CooldownHook = Callable[[float], None]
Sleep = Callable[[float], Awaitable[None]]


@dataclass
class PortalResponse:
    """Fully read response of one portal request."""

    status: int
    text: str
    elapsed_ms: int
    url: str
    reason: str = ""
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class PortalSession:
    """Authenticated (cookie-carrying) HTTP client for the portal."""

    def __init__(
        self,
        config: ScraperConfig,
        *,
        metrics: RequestMetrics | None = None,
        on_exchange: ExchangeHook | None = None,
        on_cooldown: CooldownHook | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the session.

        Args:
            config: Scraper configuration (timeouts, breaker thresholds).
            metrics: Metrics to continue from; they span the whole session history.
            on_exchange: Called after every request with metrics and a HAR entry
                (None when the request failed before a response arrived).
            on_cooldown: Called with the cooldown length before sleeping.
            transport: Optional httpx transport (tests use httpx.MockTransport).
            sleep: Awaitable sleep, injectable for tests.
            clock: Monotonic clock in seconds, injectable for tests.
            rng: Random source for the cooldown length.
        """
        self.config = config
        self._metrics = metrics.model_copy() if metrics else RequestMetrics()
        self._on_exchange = on_exchange
        self._on_cooldown = on_cooldown
        self._sleep = sleep
        self._clock = clock
        self._rng = rng or random.Random()
        self._consecutive_slow = 0
        self._client = httpx.AsyncClient(
            headers=BROWSER_HEADERS,
            follow_redirects=True,
            timeout=config.request_timeout_seconds,
            transport=transport,
        )

    async def __aenter__(self) -> "PortalSession":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    @property
    def metrics(self) -> RequestMetrics:
        return self._metrics.model_copy()

    @property
    def consecutive_slow_responses(self) -> int:
        return self._consecutive_slow

    @property
    def cookies(self) -> httpx.Cookies:
        return self._client.cookies

    async def get(
        self,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> PortalResponse:
        return await self.request(url, "GET", headers=headers, timeout=timeout)

    async def post(
        self,
        url: str,
        data: Mapping[str, str],
        *,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> PortalResponse:
        return await self.request(
            url, "POST", headers=headers, data=data, timeout=timeout
        )

    async def request(
        self,
        url: str,
        method: str = "GET",
        *,
        headers: Mapping[str, str] | None = None,
        data: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> PortalResponse:
        """Perform one request and return the fully read response.

        Non-2xx statuses are returned, not raised; callers decide.

        Raises:
            NetworkTimeout: The request exceeded ``timeout`` (default from config).
            NetworkFailure: Connection-level failure.
        """
        timeout_seconds = timeout or self.config.request_timeout_seconds
        logger.debug("request_started", method=method, url=url)
        started = self._clock()

        try:
            response = await asyncio.wait_for(
                self._client.request(method, url, headers=headers, data=data),
                timeout=timeout_seconds,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            self._record(url, method, "timeout", int(timeout_seconds * 1000), 0, None)
            logger.error(
                "request_timeout",
                method=method,
                url=url,
                timeout_seconds=timeout_seconds,
            )
            raise NetworkTimeout(url, timeout_seconds) from e
        except httpx.HTTPError as e:
            elapsed_ms = int((self._clock() - started) * 1000)
            self._record(url, method, "error", elapsed_ms, 0, None)
            logger.error(
                "request_failed",
                method=method,
                url=url,
                error=str(e),
                type=type(e).__name__,
            )
            raise NetworkFailure(f"Fetch error for {url}: {e}", url=url) from e

        elapsed_ms = int((self._clock() - started) * 1000)
        text = response.text
        await self._observe_latency(elapsed_ms, url=url, method=method)

        entry = build_har_entry(
            url=url,
            method=method,
            request_headers=headers,
            request_body=data,
            status=response.status_code,
            status_text=response.reason_phrase,
            response_headers=dict(response.headers),
            response_body=text,
            elapsed_ms=elapsed_ms,
            max_body_length=self.config.har_max_body_length,
        )
        self._record(url, method, response.status_code, elapsed_ms, len(text), entry)
        logger.debug(
            "request_finished",
            method=method,
            url=url,
            status=response.status_code,
            elapsed_ms=elapsed_ms,
            bytes=len(text),
        )

        return PortalResponse(
            status=response.status_code,
            text=text,
            elapsed_ms=elapsed_ms,
            url=str(response.url),
            reason=response.reason_phrase,
            headers=dict(response.headers),
        )

    async def _observe_latency(self, elapsed_ms: int, *, url: str, method: str) -> None:
        """Update the slow streak and cool down once it reaches the threshold."""
        if elapsed_ms > self.config.slow_response_ms:
            self._consecutive_slow += 1
            logger.warning(
                "slow_response",
                url=url,
                method=method,
                elapsed_ms=elapsed_ms,
                consecutive_slow=self._consecutive_slow,
            )
            if self._consecutive_slow >= self.config.slow_streak_threshold:
                pause = self._rng.uniform(
                    self.config.cooldown_min_seconds, self.config.cooldown_max_seconds
                )
                logger.warning(
                    "rate_limit_suspected", cooldown_seconds=round(pause, 1), url=url
                )
                if self._on_cooldown:
                    self._on_cooldown(pause)
                await self._sleep(pause)
                self._consecutive_slow = 0
                logger.info("rate_limit_cooldown_finished")
        elif elapsed_ms < self.config.fast_response_ms:
            self._consecutive_slow = 0

    def _record(
        self,
        url: str,
        method: str,
        status: int | str,
        elapsed_ms: int,
        size: int,
        entry: dict[str, Any] | None,
    ) -> None:
        metrics = self._metrics
        total_requests = metrics.total_requests + 1
        total_time = metrics.total_response_time_ms + elapsed_ms
        slow = 1 if elapsed_ms > self.config.slow_response_ms else 0
        self._metrics = metrics.model_copy(
            update={
                "total_requests": total_requests,
                "total_response_time_ms": total_time,
                "avg_response_ms": round(total_time / total_requests),
                "bytes_downloaded": metrics.bytes_downloaded + size,
                "slow_responses": metrics.slow_responses + slow,
                "last_response_ms": elapsed_ms,
                "last_status": status,
                "last_request_url": url,
                "last_request_method": method,
                "last_request_at": utc_now_iso(),
            }
        )
        if self._on_exchange:
            self._on_exchange(self.metrics, entry)
