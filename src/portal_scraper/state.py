"""Scrape state ownership and fire-and-forget persistence.

StateManager owns the single ScrapeState. Every mutation builds a new state
with ``model_copy(update=...)`` and swaps it in, so the persister and any
observer only ever see complete snapshots. After each mutation the snapshot is
handed to the StatePersister (coalescing, written off the event loop) and to
the optional progress observer (best effort).
"""

import asyncio
from typing import Any

from src.portal_scraper.archive import (
    append_bounded,
    should_capture_snapshot,
    store_snapshot,
)
from src.portal_scraper.config import ScraperConfig
from src.portal_scraper.datasets import format_dataset_label
from src.portal_scraper.interfaces import ProgressObserver, StateStore
from src.portal_scraper.logging import get_logger
from src.portal_scraper.models import (
    Checkpoint,
    DatasetProgress,
    ErrorEntry,
    LogEntry,
    RequestMetrics,
    ScrapeState,
)
from src.portal_scraper.utils import utc_now_iso

logger = get_logger(__name__)

_UNSET: Any = object()

# Log entry types mapped to structlog levels
_LOG_LEVELS = {"error": "error", "warning": "warning", "debug": "debug"}


class StatePersister:
    """Writes state snapshots without blocking the scrape.

    Only the latest pending snapshot is kept; while a write is in flight newer
    snapshots replace the pending one (last write wins). Writes run in a worker
    thread via ``asyncio.to_thread``. Outside an event loop the write happens
    inline.
    """

    def __init__(self, store: StateStore) -> None:
        self.store = store
        self._pending: ScrapeState | None = None
        self._writer: asyncio.Task | None = None
        self.writes = 0

    def schedule(self, state: ScrapeState) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._write(state)
            return

        self._pending = state
        if self._writer is None or self._writer.done():
            self._writer = loop.create_task(self._drain())

    async def _drain(self) -> None:
        while self._pending is not None:
            state, self._pending = self._pending, None
            await asyncio.to_thread(self._write, state)

    def _write(self, state: ScrapeState) -> None:
        try:
            self.store.save(state)
            self.writes += 1
        except OSError as e:
            logger.error("state_persist_failed", error=str(e))

    async def flush(self) -> None:
        """Wait until every scheduled snapshot is on disk."""
        while self._writer is not None and not self._writer.done():
            await self._writer
        if self._pending is not None:
            state, self._pending = self._pending, None
            await asyncio.to_thread(self._write, state)


class StateManager:
    """Single owner of the ScrapeState."""

    def __init__(
        self,
        config: ScraperConfig,
        *,
        store: StateStore | None = None,
        observer: ProgressObserver | None = None,
        state: ScrapeState | None = None,
    ) -> None:
        self.config = config
        self._state = state or ScrapeState(debug_mode=config.debug_mode)
        self._persister = StatePersister(store) if store is not None else None
        self._observer = observer

    @classmethod
    def restore(
        cls,
        config: ScraperConfig,
        store: StateStore,
        *,
        observer: ProgressObserver | None = None,
    ) -> "StateManager":
        """Load the persisted state, if any.

        A state persisted mid-run belongs to a process that is gone, so
        ``is_running`` is forced off; a paused run stays resumable. Logs are
        trimmed to the history limit.
        """
        state = store.load()
        if state is None:
            return cls(config, store=store, observer=observer)

        logs = state.logs
        trimmed = state.logs_trimmed
        if len(logs) > config.log_history_limit:
            logs = logs[-config.log_history_limit:]
            trimmed = True
        state = state.model_copy(
            update={"is_running": False, "logs": logs, "logs_trimmed": trimmed}
        )
        logger.info(
            "state_restored",
            session_id=state.session_id,
            paused=state.is_paused,
            datasets=sorted(state.scraped_data),
        )
        return cls(config, store=store, observer=observer, state=state)

    @property
    def state(self) -> ScrapeState:
        return self._state

    def snapshot(self) -> ScrapeState:
        """Deep copy safe to hand to callers."""
        return self._state.model_copy(deep=True)

    # --- Core mutation ---

    def update(self, **changes: Any) -> ScrapeState:
        """Replace the state with a copy carrying ``changes``.

        The new state is then persisted and handed to the observer.
        """
        changes["last_updated"] = utc_now_iso()
        self._state = self._state.model_copy(update=changes)
        self._publish()
        return self._state

    def replace(self, state: ScrapeState) -> ScrapeState:
        self._state = state.model_copy(update={"last_updated": utc_now_iso()})
        self._publish()
        return self._state

    def _publish(self) -> None:
        if self._persister is not None:
            self._persister.schedule(self._state)
        if self._observer is not None:
            try:
                self._observer(self._state)
            except Exception as e:
                logger.warning(
                    "progress_observer_failed", error=str(e), type=type(e).__name__
                )

    async def flush(self) -> None:
        if self._persister is not None:
            await self._persister.flush()

    # --- Logs and errors ---

    def add_log(self, message: str, type: str = "info", **context: Any) -> None:
        """Append to the user-visible log ring buffer and mirror it to structlog."""
        timestamp = utc_now_iso()
        entry = LogEntry(
            timestamp=timestamp, message=message, type=type, context=context
        )
        logs = [*self._state.logs, entry]
        trimmed = self._state.logs_trimmed
        limit = self.config.log_history_limit
        if len(logs) > limit:
            logs = logs[-limit:]
            trimmed = True

        level = _LOG_LEVELS.get(type, "info")
        getattr(logger, level)("scrape_log", message=message, type=type, **context)
        self.update(logs=logs, logs_trimmed=trimmed, last_log_at=timestamp)

    def record_error(self, step: str, error: str) -> None:
        entry = ErrorEntry(step=step, error=error, timestamp=utc_now_iso())
        self.update(errors=[*self._state.errors, entry])

    def clear_logs(self) -> None:
        """Drop logs together with the request archive and page snapshots."""
        self.update(
            logs=[],
            logs_trimmed=False,
            last_log_at=None,
            har_entries=[],
            html_snapshots={},
            html_snapshot_order=[],
        )

    def delete_logs(self) -> None:
        self.update(logs=[], logs_trimmed=False, last_log_at=None)

    # --- Progress ---

    def update_dataset_progress(
        self,
        key: str,
        *,
        label: str | None = None,
        completed: int | None = None,
        total: int | None = None,
        items: int | None = None,
        detail: str | None = _UNSET,
    ) -> None:
        """Merge new counters into a dataset's progress summary."""
        existing = self._state.dataset_progress.get(key) or DatasetProgress(
            label=format_dataset_label(key)
        )
        progress = DatasetProgress(
            label=label or existing.label,
            completed=existing.completed if completed is None else completed,
            total=existing.total if total is None else total,
            items=existing.items if items is None else items,
            detail=existing.detail if detail is _UNSET else detail,
            updated_at=utc_now_iso(),
        )
        self.update(dataset_progress={**self._state.dataset_progress, key: progress})

    def set_substep(self, fraction: float) -> None:
        """Fractional progress within the current step, capped below one step.

        The fraction never falls while the step is unchanged.
        """
        state = self._state
        substep = max(state.substep_progress, min(0.999, max(0.0, fraction)))
        if state.total_steps and state.completed_steps + substep > state.total_steps:
            substep = max(0.0, state.total_steps - state.completed_steps)
        self.update(
            substep_progress=substep,
            progress=self._progress(state.completed_steps, substep),
        )

    def complete_step(self) -> None:
        state = self._state
        completed = state.completed_steps + 1
        if state.total_steps:
            completed = min(completed, state.total_steps)
        self.update(
            completed_steps=completed,
            substep_progress=0.0,
            progress=self._progress(completed, 0.0),
        )

    def _progress(self, completed: int, substep: float) -> int:
        state = self._state
        if state.total_steps <= 0:
            return state.progress
        value = round((completed + substep) / state.total_steps * 100)
        return min(100, max(state.progress, value))

    # --- Checkpoints ---

    def set_checkpoint(
        self, key: str, next_index: int, total: int, next_key: str | None = None
    ) -> None:
        checkpoint = Checkpoint(
            next_index=next_index,
            total=total,
            next_key=next_key,
            updated_at=utc_now_iso(),
        )
        self.update(checkpoints={**self._state.checkpoints, key: checkpoint})

    def clear_checkpoint(self, key: str) -> None:
        if key not in self._state.checkpoints:
            return
        checkpoints = {
            name: value
            for name, value in self._state.checkpoints.items()
            if name != key
        }
        self.update(checkpoints=checkpoints)

    # --- Scraped data ---

    def set_dataset_payload(self, key: str, payload: Any) -> None:
        self.update(scraped_data={**self._state.scraped_data, key: payload})

    def item_count(self, key: str) -> int:
        data = self._state.scraped_data.get(key)
        return len(data) if isinstance(data, list) else 0

    def replace_items(
        self,
        key: str,
        item_field: str,
        item_key: str,
        records: list[dict[str, Any]],
    ) -> int:
        """Swap out every record tagged ``item_field == item_key`` for ``records``.

        Re-scraping a sub-item (e.g. after a resume) therefore never duplicates
        its rows. Returns the dataset's new record count.
        """
        existing = self._state.scraped_data.get(key)
        rows: list[dict[str, Any]] = []
        if isinstance(existing, list):
            rows = [row for row in existing if row.get(item_field) != item_key]
        rows.extend(records)
        self.set_dataset_payload(key, rows)
        return len(rows)

    # --- Diagnostics ---

    def record_exchange(
        self, metrics: RequestMetrics, entry: dict[str, Any] | None
    ) -> None:
        changes: dict[str, Any] = {"metrics": metrics}
        if entry is not None:
            changes["har_entries"] = append_bounded(
                self._state.har_entries, entry, self.config.har_max_entries
            )
        self.update(**changes)

    def save_snapshot(self, name: str, html: str) -> bool:
        """Keep an HTML snapshot of a page; returns False when skipped."""
        state = self._state
        if not name or not isinstance(html, str):
            return False
        if not should_capture_snapshot(
            state.html_snapshot_order,
            name,
            max_snapshots=self.config.max_html_snapshots,
            debug_mode=state.debug_mode,
        ):
            return False

        snapshots, order = store_snapshot(
            state.html_snapshots,
            state.html_snapshot_order,
            name,
            html,
            max_snapshots=self.config.max_html_snapshots,
            max_size=self.config.max_html_snapshot_size,
        )
        self.update(html_snapshots=snapshots, html_snapshot_order=order)
        return True
