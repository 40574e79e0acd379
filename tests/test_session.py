"""PortalSession tests: latency breaker, error mapping, metrics and archive hook."""

import random
from unittest.mock import AsyncMock

import httpx
import pytest

from src.portal_scraper.errors import NetworkFailure, NetworkTimeout
from src.portal_scraper.session import PortalSession
from tests.conftest import BASE_URL, FakeClock, html_response

URL = f"{BASE_URL}/J_VG.do"


def timed_transport(clock: FakeClock, latencies: list[float]) -> httpx.MockTransport:
    """Each request advances the clock by the next latency in seconds."""
    pending = list(latencies)

    def handler(request: httpx.Request) -> httpx.Response:
        clock.advance(pending.pop(0))
        return html_response("<html>ok</html>")

    return httpx.MockTransport(handler)


async def run_requests(config, clock, latencies, sleep) -> PortalSession:
    session = PortalSession(
        config,
        transport=timed_transport(clock, latencies),
        sleep=sleep,
        clock=clock,
        rng=random.Random(1),
    )
    async with session:
        for _ in latencies:
            await session.get(URL)
    return session


# --- slow-response breaker ---


@pytest.mark.asyncio
async def test_three_slow_responses_trigger_one_cooldown(config, clock):
    sleep = AsyncMock()
    cooldowns: list[float] = []
    session = PortalSession(
        config,
        transport=timed_transport(clock, [6, 6, 6]),
        sleep=sleep,
        clock=clock,
        on_cooldown=cooldowns.append,
    )

    async with session:
        for _ in range(3):
            await session.get(URL)

    assert sleep.await_count == 1
    (pause,) = sleep.await_args.args
    assert 45 <= pause <= 60
    assert cooldowns == [pause]
    assert session.consecutive_slow_responses == 0


@pytest.mark.asyncio
async def test_fast_response_resets_slow_streak(config, clock):
    sleep = AsyncMock()

    session = await run_requests(config, clock, [6, 6, 1, 6, 6], sleep)

    sleep.assert_not_awaited()
    assert session.consecutive_slow_responses == 2


@pytest.mark.asyncio
async def test_medium_response_neither_counts_nor_resets(config, clock):
    sleep = AsyncMock()

    session = await run_requests(config, clock, [6, 3, 6], sleep)

    assert session.consecutive_slow_responses == 2
    sleep.assert_not_awaited()

    session = await run_requests(config, clock, [6, 3, 6, 3, 6], sleep)

    sleep.assert_awaited_once()
    assert session.consecutive_slow_responses == 0


@pytest.mark.asyncio
async def test_breaker_thresholds_are_configurable(config, clock):
    config = config.model_copy(update={"slow_streak_threshold": 2, "cooldown_min_seconds": 5, "cooldown_max_seconds": 5})
    sleep = AsyncMock()

    await run_requests(config, clock, [6, 6], sleep)

    sleep.assert_awaited_once_with(5)


# --- errors ---


@pytest.mark.asyncio
async def test_timeout_maps_to_network_timeout(config):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    session = PortalSession(config, transport=httpx.MockTransport(handler))

    async with session:
        with pytest.raises(NetworkTimeout) as excinfo:
            await session.get(URL)

    assert excinfo.value.url == URL
    assert session.metrics.last_status == "timeout"
    assert session.metrics.total_requests == 1


@pytest.mark.asyncio
async def test_connection_error_maps_to_network_failure(config):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    session = PortalSession(config, transport=httpx.MockTransport(handler))

    async with session:
        with pytest.raises(NetworkFailure, match="Fetch error"):
            await session.get(URL)

    assert session.metrics.last_status == "error"
    assert session.metrics.bytes_downloaded == 0


@pytest.mark.asyncio
async def test_error_status_is_returned_not_raised(config):
    session = PortalSession(config, transport=httpx.MockTransport(lambda request: html_response("down", 503)))

    async with session:
        response = await session.get(URL)

    assert response.status == 503
    assert not response.ok
    assert session.metrics.last_status == 503


# --- metrics and archive ---


@pytest.mark.asyncio
async def test_metrics_accumulate(config, clock):
    session = await run_requests(config, clock, [1, 3], AsyncMock())

    metrics = session.metrics
    assert metrics.total_requests == 2
    assert metrics.total_response_time_ms == 4000
    assert metrics.avg_response_ms == 2000
    assert metrics.last_response_ms == 3000
    assert metrics.bytes_downloaded == 2 * len("<html>ok</html>")
    assert metrics.last_request_method == "GET"
    assert metrics.last_request_url == URL


@pytest.mark.asyncio
async def test_metrics_continue_from_previous_run(config, clock):
    first = await run_requests(config, clock, [1], AsyncMock())

    session = PortalSession(
        config,
        metrics=first.metrics,
        transport=timed_transport(clock, [6]),
        clock=clock,
    )
    async with session:
        await session.get(URL)

    assert session.metrics.total_requests == 2
    assert session.metrics.slow_responses == 1


@pytest.mark.asyncio
async def test_exchange_hook_receives_har_entry(config):
    exchanges = []
    session = PortalSession(
        config,
        transport=httpx.MockTransport(lambda request: html_response("<html>grades</html>")),
        on_exchange=lambda metrics, entry: exchanges.append((metrics, entry)),
    )

    async with session:
        await session.post(URL, {"command": "display"}, headers={"Referer": BASE_URL})

    ((metrics, entry),) = exchanges
    assert metrics.total_requests == 1
    assert entry["request"]["method"] == "POST"
    assert entry["request"]["postData"]["text"] == "command=display"
    assert entry["response"]["status"] == 200
    assert entry["response"]["content"]["text"] == "<html>grades</html>"


@pytest.mark.asyncio
async def test_exchange_hook_on_failure_has_no_entry(config):
    exchanges = []

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("reset", request=request)

    session = PortalSession(
        config,
        transport=httpx.MockTransport(handler),
        on_exchange=lambda metrics, entry: exchanges.append(entry),
    )

    async with session:
        with pytest.raises(NetworkFailure):
            await session.get(URL)

    assert exchanges == [None]


@pytest.mark.asyncio
async def test_cookies_persist_across_requests(config):
    seen_cookies: list[str | None] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen_cookies.append(request.headers.get("cookie"))
        return httpx.Response(200, text="ok", headers={"Set-Cookie": "JSESSIONID=abc; Path=/"})

    session = PortalSession(config, transport=httpx.MockTransport(handler))

    async with session:
        await session.get(URL)
        await session.get(f"{BASE_URL}/J_VCSC.do")

    assert seen_cookies == [None, "JSESSIONID=abc"]
