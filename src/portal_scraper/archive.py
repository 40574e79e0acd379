"""Capacity-bounded request archive (HAR entries) and HTML snapshots.

Purely diagnostic: nothing in the scrape depends on these. Both archives keep
the newest entries and evict the oldest first; bodies are truncated past a size
ceiling so the persisted state stays small.
"""

from typing import Any, Mapping
from urllib.parse import urlencode

from src.portal_scraper.models import HtmlSnapshot
from src.portal_scraper.utils import FORM_CONTENT_TYPE, truncate, utc_now_iso

HAR_VERSION = "1.2"
HAR_CREATOR = {"name": "portal-scraper", "version": "1.0"}


def _header_list(headers: Mapping[str, str] | None) -> list[dict[str, str]]:
    return [{"name": name, "value": value} for name, value in (headers or {}).items()]


def build_har_entry(
    *,
    url: str,
    method: str,
    request_headers: Mapping[str, str] | None,
    request_body: Mapping[str, str] | str | None,
    status: int,
    status_text: str | None,
    response_headers: Mapping[str, str] | None,
    response_body: str,
    elapsed_ms: int,
    max_body_length: int,
) -> dict[str, Any]:
    """Build one HAR 1.2 ``entries[]`` item."""
    if isinstance(request_body, Mapping):
        request_body = urlencode(request_body)

    entry: dict[str, Any] = {
        "startedDateTime": utc_now_iso(),
        "time": elapsed_ms,
        "request": {
            "method": method,
            "url": url,
            "headers": _header_list(request_headers),
        },
        "response": {
            "status": status,
            "statusText": status_text,
            "headers": _header_list(response_headers),
            "content": {
                "size": len(response_body),
                "mimeType": "text/html",
                "text": truncate(response_body, max_body_length, "/* truncated */"),
            },
        },
    }
    if request_body:
        entry["request"]["postData"] = {
            "mimeType": FORM_CONTENT_TYPE,
            "text": request_body,
        }
    return entry


def append_bounded(
    entries: list[dict[str, Any]], entry: dict[str, Any], limit: int
) -> list[dict[str, Any]]:
    """Return a new list with ``entry`` appended and at most ``limit`` items."""
    updated = [*entries, entry]
    if len(updated) > limit:
        updated = updated[-limit:]
    return updated


def store_snapshot(
    snapshots: Mapping[str, HtmlSnapshot],
    order: list[str],
    name: str,
    html: str,
    *,
    max_snapshots: int,
    max_size: int,
) -> tuple[dict[str, HtmlSnapshot], list[str]]:
    """Insert or refresh a named snapshot, evicting the least recently stored."""
    updated = dict(snapshots)
    updated[name] = HtmlSnapshot(
        timestamp=utc_now_iso(),
        html=truncate(html, max_size, "<!-- truncated -->"),
        length=len(html),
    )
    new_order = [existing for existing in order if existing != name]
    new_order.append(name)
    while len(new_order) > max_snapshots:
        evicted = new_order.pop(0)
        updated.pop(evicted, None)
    return updated, new_order


def should_capture_snapshot(
    order: list[str], name: str, *, max_snapshots: int, debug_mode: bool
) -> bool:
    """Capture while there is room or on refresh of a known page.

    Debug mode always captures.
    """
    return debug_mode or len(order) < max_snapshots or name in order


def to_har(entries: list[dict[str, Any]]) -> dict[str, Any]:
    """Wrap archived entries into a HAR document."""
    return {
        "log": {
            "version": HAR_VERSION,
            "creator": dict(HAR_CREATOR),
            "entries": list(entries),
        }
    }
