"""Shared scraping utilities: request headers, timestamps, ids and pacing."""

import random
import time
import uuid
from datetime import datetime, timezone

# The portal rejects requests that don't look like a desktop browser navigation.
BROWSER_HEADERS: dict[str, str] = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
    ),
    "Accept": (
        "text/html,application/xhtml+xml,application/xml;q=0.9,"
        "image/avif,image/webp,image/apng,*/*;q=0.8"
    ),
    "Accept-Language": "en-US,en;q=0.9",
    "Connection": "keep-alive",
    "Upgrade-Insecure-Requests": "1",
}

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


def generate_session_id() -> str:
    """Session id in the ``session_<epoch-ms>_<random>`` form used by state files."""
    return f"session_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def random_delay(rng: random.Random, low: float, high: float) -> float:
    """Uniform jitter in [low, high] seconds."""
    if high <= low:
        return low
    return rng.uniform(low, high)


def form_headers(
    referer: str | None = None, origin: str | None = None
) -> dict[str, str]:
    """Extra headers for a form POST on top of the session's browser headers."""
    headers = {"Content-Type": FORM_CONTENT_TYPE}
    if origin:
        headers["Origin"] = origin
    if referer:
        headers["Referer"] = referer
    return headers


def truncate(text: str, limit: int, marker: str) -> str:
    """Cut ``text`` to ``limit`` characters, appending ``marker`` when cut."""
    if len(text) <= limit:
        return text
    return f"{text[:limit]}\n{marker}"


def origin_of(url: str) -> str:
    """``scheme://host`` part of a URL, as sent in the Origin header."""
    scheme, _, rest = url.partition("://")
    return f"{scheme}://{rest.split('/', 1)[0]}"
