"""Resumable multi-dataset scrape pipeline.

States:
  Idle -> Running -> Paused | Completed | Failed
  Paused -> Running (resume) | Terminated (hard stop)

A run is one asyncio task: login (one step), then every selected dataset in
the fixed page order, strictly sequentially. Pause is cooperative: ``stop()``
raises a flag that is polled between datasets and between catalog sub-items,
so a pause lands within one HTTP round-trip. The dataset in flight stores a
checkpoint and the run parks at its index; ``resume()`` logs in again and picks
up from there.

Scraped data, dataset progress, request metrics and the log/HAR archives
survive across runs; only per-run counters and errors are reset.
"""

import asyncio
import contextlib
import random
import time
from typing import Any, Awaitable, Callable, Mapping

import httpx
from pydantic import BaseModel

from src.portal_scraper.archive import to_har
from src.portal_scraper.auth import Authenticator
from src.portal_scraper.config import ScraperConfig, get_config
from src.portal_scraper.datasets import (
    DATASET_LABELS,
    DATASET_PATHS,
    PAGE_ORDER,
    normalize_page_selection,
    selected_keys,
)
from src.portal_scraper.errors import ConfigurationError
from src.portal_scraper.interfaces import (
    CredentialStore,
    ProgressObserver,
    SettingsCredentialStore,
    StateStore,
)
from src.portal_scraper.logging import bind_run_context, get_logger
from src.portal_scraper.models import (
    ClassOffering,
    ControlResult,
    Credentials,
    CurriculumCourse,
    DatasetStatus,
    ExtractedTable,
    GradeRecord,
    HtmlSnapshot,
    PagePayload,
    ScrapeState,
    WeeklySchedule,
)
from src.portal_scraper.pages.base import DatasetScraper, ScrapeContext
from src.portal_scraper.pages.catalog import (
    OfficialCurriculumScraper,
    ScheduleOfClassesScraper,
)
from src.portal_scraper.pages.simple import GradesScraper, SimplePageScraper
from src.portal_scraper.session import PortalSession
from src.portal_scraper.state import StateManager
from src.portal_scraper.utils import generate_session_id, utc_now_iso

logger = get_logger(__name__)

# Record model per list-shaped dataset, for typed aggregated views
RECORD_MODELS: dict[str, type[BaseModel]] = {
    "scheduleOfClasses": ClassOffering,
    "officialCurriculum": CurriculumCourse,
    "grades": GradeRecord,
}

AggregatedTable = (
    list[ExtractedTable] | WeeklySchedule | list[BaseModel] | list[dict[str, Any]]
)

NO_CREDENTIALS = "No credentials found. Please save your credentials first."


def build_scrapers() -> dict[str, DatasetScraper]:
    """One scraper per known dataset, keyed by dataset key."""
    scrapers: dict[str, DatasetScraper] = {
        "scheduleOfClasses": ScheduleOfClassesScraper(),
        "officialCurriculum": OfficialCurriculumScraper(),
        "grades": GradesScraper(),
    }
    for key in PAGE_ORDER:
        if key not in scrapers:
            scrapers[key] = SimplePageScraper(
                key, DATASET_PATHS[key], DATASET_LABELS[key]
            )
    return scrapers


class ScrapeOrchestrator:
    """Drives dataset scrapers over one authenticated portal session per run."""

    def __init__(
        self,
        config: ScraperConfig | None = None,
        *,
        credentials: CredentialStore | None = None,
        store: StateStore | None = None,
        observer: ProgressObserver | None = None,
        scrapers: Mapping[str, DatasetScraper] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            config: Scraper configuration (defaults to the settings singleton).
            credentials: Credential source (defaults to PORTAL_USER/PORTAL_PASS).
            store: State persistence; the last persisted state is restored.
            observer: Called with every new state snapshot (best effort).
            scrapers: Dataset scrapers by key (defaults to build_scrapers()).
            transport: Optional httpx transport for the portal session.
            sleep: Awaitable sleep used for every delay, injectable for tests.
            clock: Monotonic clock for response timing.
            rng: Random source for delays and cooldowns.
        """
        self.config = config or get_config()
        self.credentials = credentials or SettingsCredentialStore(self.config)
        if store is not None:
            self.state_manager = StateManager.restore(
                self.config, store, observer=observer
            )
        else:
            self.state_manager = StateManager(self.config, observer=observer)
        self.scrapers = dict(scrapers) if scrapers is not None else build_scrapers()
        self._transport = transport
        self._sleep = sleep
        self._clock = clock
        self._rng = rng or random.Random()
        self._task: asyncio.Task | None = None
        self._pause_requested = False

    @property
    def state(self) -> ScrapeState:
        return self.state_manager.state

    @property
    def is_busy(self) -> bool:
        """True while a run task is in flight (including a pending pause)."""
        return self._task is not None and not self._task.done()

    # --- Control ---

    async def start(
        self, selection: Mapping[str, object] | None = None
    ) -> ControlResult:
        """Start a new run over the selected datasets.

        Returns an error result when a run is in flight ("already running") or
        no credentials are stored ("no credentials").
        """
        manager = self.state_manager
        if self.state.is_running or self.is_busy:
            manager.add_log("Scraping already in progress", "warning")
            return ControlResult(ok=False, error="already running")

        credentials = await self.credentials.load_credentials()
        if credentials is None:
            self._fail(ConfigurationError(NO_CREDENTIALS))
            return ControlResult(ok=False, error="no credentials")

        pages = normalize_page_selection(selection)
        keys = selected_keys(pages)
        session_id = self.state.session_id or generate_session_id()
        self._pause_requested = False

        manager.update(
            is_running=True,
            is_paused=False,
            is_completed=False,
            is_terminated=False,
            session_id=session_id,
            progress=0,
            total_steps=len(keys) + 1,
            completed_steps=0,
            substep_progress=0.0,
            current_step="Initializing...",
            current_page="initializing",
            selected_pages=pages,
            page_order=keys,
            current_dataset_index=0,
            checkpoints={},
            errors=[],
            debug_mode=self.state.debug_mode or self.config.debug_mode,
            started_at=utc_now_iso(),
            completed_at=None,
        )
        bind_run_context(session_id)
        manager.add_log(
            "=== Scraping Started ===", step="bootstrap", sessionId=session_id
        )
        manager.add_log(
            f"Selected pages: {', '.join(keys) or 'none'}",
            step="bootstrap",
            pages=keys,
        )

        self._task = asyncio.create_task(self._run(credentials, resume=False))
        return ControlResult(ok=True)

    async def stop(self) -> ControlResult:
        """Request a graceful pause; it takes effect at the next poll point."""
        manager = self.state_manager
        if self.state.is_running and not self.state.is_paused:
            self._pause_requested = True
            manager.update(is_paused=True, current_step="Pausing...")
            manager.add_log(
                "Scraping paused - you can resume or export data", "warning"
            )
        return ControlResult(ok=True, paused=True)

    async def resume(self) -> ControlResult:
        """Continue a paused run at its current dataset and checkpoint."""
        if self.is_busy and self._pause_requested:
            # Let the run reach its poll point and park
            await self.wait()

        manager = self.state_manager
        state = self.state
        if not state.is_paused:
            return ControlResult(ok=False, error="not paused")
        if self.is_busy:
            return ControlResult(ok=False, error="already running")

        credentials = await self.credentials.load_credentials()
        if credentials is None:
            manager.record_error("main", NO_CREDENTIALS)
            return ControlResult(ok=False, error="no credentials")

        self._pause_requested = False
        manager.update(
            is_running=True,
            is_paused=False,
            is_completed=False,
            current_step="Resuming...",
        )
        bind_run_context(state.session_id)
        manager.add_log(
            "Resuming scraping...",
            step="resume",
            datasetIndex=state.current_dataset_index,
            checkpoints=sorted(state.checkpoints),
        )

        self._task = asyncio.create_task(self._run(credentials, resume=True))
        return ControlResult(ok=True)

    async def hard_stop(self) -> ControlResult:
        """Terminate the run for good: checkpoints and cursor are discarded."""
        self._pause_requested = True
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._task = None

        self.state_manager.update(
            is_running=False,
            is_paused=False,
            is_completed=True,
            is_terminated=True,
            checkpoints={},
            current_dataset_index=0,
            substep_progress=0.0,
            current_step="Scraping terminated",
            current_page="",
            completed_at=utc_now_iso(),
        )
        self.state_manager.add_log("Scraping terminated - cannot resume", "error")
        return ControlResult(ok=True, terminated=True)

    async def wait(self) -> None:
        """Wait for the in-flight run task, if any."""
        if self._task is not None:
            await self._task

    async def aclose(self) -> None:
        """Wait for pending state writes."""
        await self.state_manager.flush()

    # --- Queries ---

    def get_state(self) -> ScrapeState:
        return self.state_manager.snapshot()

    def get_aggregated_table(self, key: str) -> AggregatedTable:
        """Typed view of one dataset.

        Catalog and grade datasets yield their records, the class schedule its
        WeeklySchedule (when a grid was found), other pages their tables.
        """
        data = self.state.scraped_data.get(key)
        if data is None:
            return []

        if isinstance(data, list):
            model = RECORD_MODELS.get(key)
            if model is None:
                return list(data)
            return [model.model_validate(row) for row in data]

        payload = PagePayload.model_validate(data)
        if payload.schedule is not None:
            return payload.schedule
        if payload.records is not None:
            model = RECORD_MODELS.get(key)
            if model is None:
                return payload.records
            return [model.model_validate(row) for row in payload.records]
        return payload.tables

    def export_har(self) -> dict[str, Any]:
        return to_har(self.state.har_entries)

    def export_html_snapshots(self) -> dict[str, HtmlSnapshot]:
        return dict(self.state.html_snapshots)

    # --- Maintenance ---

    def clear_logs(self) -> None:
        self.state_manager.clear_logs()

    def delete_logs(self) -> None:
        self.state_manager.delete_logs()

    def clear_all_data(self) -> ControlResult:
        """Reset to a fresh state (scraped data included)."""
        if self.state.is_running or self.is_busy:
            return ControlResult(ok=False, error="already running")
        self.state_manager.replace(ScrapeState(debug_mode=self.config.debug_mode))
        return ControlResult(ok=True)

    def set_debug_mode(self, enabled: bool) -> None:
        self.state_manager.update(debug_mode=enabled)
        self.state_manager.add_log(f"Debug mode {'enabled' if enabled else 'disabled'}")

    # --- Run ---

    async def _run(self, credentials: Credentials, *, resume: bool) -> None:
        manager = self.state_manager
        session = PortalSession(
            self.config,
            metrics=self.state.metrics,
            on_exchange=manager.record_exchange,
            on_cooldown=self._on_cooldown,
            transport=self._transport,
            sleep=self._sleep,
            clock=self._clock,
            rng=self._rng,
        )
        try:
            async with session:
                await self._login(session, credentials, count_step=not resume)
                await self._run_datasets(session)
        except Exception as e:
            logger.error("scrape_run_failed", error=str(e), type=type(e).__name__)
            self._fail(e, keep_paused=resume)

    async def _login(
        self, session: PortalSession, credentials: Credentials, *, count_step: bool
    ) -> None:
        manager = self.state_manager
        manager.update(current_page="login", current_step="Logging in...")
        manager.add_log("Starting login process...", step="login")

        authenticator = Authenticator(
            session,
            self.config,
            sleep=self._sleep,
            on_snapshot=manager.save_snapshot,
            on_retry=self._on_login_retry,
        )
        try:
            await authenticator.login(credentials.username, credentials.password)
        except Exception as e:
            manager.add_log(f"Login error: {e}", "error", step="login", error=str(e))
            manager.record_error("login", str(e))
            raise

        manager.add_log(
            "Login successful!",
            "success",
            step="login",
            attempts=authenticator.attempts,
        )
        if count_step:
            manager.complete_step()

    async def _run_datasets(self, session: PortalSession) -> None:
        manager = self.state_manager
        ctx = ScrapeContext(
            session=session,
            state=manager,
            config=self.config,
            pause_requested=lambda: self._pause_requested,
            sleep=self._sleep,
            rng=self._rng,
        )

        order = self.state.page_order
        index = self.state.current_dataset_index
        while index < len(order):
            if self._pause_requested:
                self._park(index)
                return

            key = order[index]
            manager.update(current_dataset_index=index)
            scraper = self.scrapers.get(key)
            if scraper is None:
                manager.add_log(f"No scraper registered for {key}", "error", step=key)
                manager.record_error(key, f"No scraper registered for {key}")
                status = DatasetStatus.FAILED
            else:
                status = await scraper.run(ctx, self.state.checkpoints.get(key))

            if status is DatasetStatus.PAUSED:
                self._park(index)
                return

            manager.complete_step()
            index += 1
            manager.update(current_dataset_index=index)

        self._complete()

    def _park(self, index: int) -> None:
        order = self.state.page_order
        self.state_manager.update(
            is_running=False,
            is_paused=True,
            current_dataset_index=index,
            current_step="Paused",
        )
        self.state_manager.add_log(
            "Scraping paused",
            "warning",
            step="pause",
            datasetIndex=index,
            dataset=order[index] if index < len(order) else None,
        )

    def _complete(self) -> None:
        state = self.state
        self.state_manager.update(
            is_running=False,
            is_paused=False,
            is_completed=True,
            progress=100,
            completed_steps=state.total_steps,
            substep_progress=0.0,
            current_step="Scraping complete!",
            current_page="",
            completed_at=utc_now_iso(),
        )
        self.state_manager.add_log(
            "=== Scraping Completed Successfully ===",
            "success",
            step="complete",
            sessionId=state.session_id,
            errors=len(state.errors),
        )

    def _fail(self, error: Exception, *, keep_paused: bool = False) -> None:
        """Abort the run; scraped data stays. A failed resume stays resumable."""
        manager = self.state_manager
        manager.update(
            is_running=False,
            is_paused=keep_paused,
            current_step=f"Error: {error}",
            completed_at=utc_now_iso(),
        )
        manager.add_log(f"Fatal error: {error}", "error", step="main", error=str(error))
        manager.record_error("main", str(error))

    def _on_cooldown(self, seconds: float) -> None:
        self.state_manager.update(
            current_step=f"Rate limit suspected - cooling down for {seconds:.0f}s..."
        )
        self.state_manager.add_log(
            f"Rate limiting suspected, pausing for {seconds:.0f}s",
            "warning",
            step="rateLimit",
            cooldownSeconds=round(seconds, 1),
        )

    def _on_login_retry(self, error: BaseException | None, delay: float) -> None:
        manager = self.state_manager
        manager.add_log(
            f"Login error: {error}", "error", step="login", error=str(error)
        )
        manager.add_log(
            f"Waiting {delay:g}s before retry...",
            "warning",
            step="login",
            backoffDelay=delay,
        )
