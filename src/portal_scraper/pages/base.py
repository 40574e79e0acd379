"""Shared dataset scraper plumbing: run context, pause polling, status mapping.

Every dataset scraper implements ``scrape()``; ``run()`` wraps it and turns
the two ways a scrape can stop early into a DatasetStatus:

  PauseRequested  -> checkpoint saved, PAUSED
  ScrapingError   -> error recorded for the dataset step, FAILED

Sub-item failures inside paginated scrapers are handled by the scraper itself
and never reach ``run()``.
"""

import asyncio
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from src.portal_scraper.config import ScraperConfig
from src.portal_scraper.datasets import format_dataset_label
from src.portal_scraper.errors import NetworkFailure, PauseRequested, ScrapingError
from src.portal_scraper.logging import get_logger
from src.portal_scraper.models import Checkpoint, DatasetStatus
from src.portal_scraper.session import PortalResponse, PortalSession
from src.portal_scraper.state import StateManager

log = get_logger(__name__)

WELCOME_PATH = "welcome.do"


@dataclass
class ScrapeContext:
    """Everything a dataset scraper needs for one run."""

    session: PortalSession
    state: StateManager
    config: ScraperConfig
    pause_requested: Callable[[], bool] = lambda: False
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    rng: random.Random = field(default_factory=random.Random)

    def check_pause(
        self,
        dataset: str,
        next_index: int = 0,
        total: int = 0,
        next_key: str | None = None,
    ) -> None:
        """Poll point: raise PauseRequested carrying the resume cursor."""
        if self.pause_requested():
            raise PauseRequested(
                dataset, next_index=next_index, total=total, next_key=next_key
            )


class DatasetScraper(ABC):
    """One named dataset scraped from one portal page."""

    def __init__(self, key: str, path: str, label: str | None = None) -> None:
        self.key = key
        self.path = path
        self.label = label or format_dataset_label(key)

    async def run(
        self, ctx: ScrapeContext, checkpoint: Checkpoint | None = None
    ) -> DatasetStatus:
        ctx.state.update(
            current_page=self.key, current_step=f"Scraping {self.label}..."
        )
        ctx.state.add_log(f"Starting {self.label} scrape", step=self.key)

        try:
            await self.scrape(ctx, checkpoint)
        except PauseRequested as pause:
            ctx.state.set_checkpoint(
                self.key, pause.next_index, pause.total, pause.next_key
            )
            ctx.state.add_log(
                f"{self.label} paused at {pause.next_index}/{pause.total}",
                "warning",
                step=self.key,
                next_index=pause.next_index,
            )
            return DatasetStatus.PAUSED
        except ScrapingError as e:
            ctx.state.add_log(
                f"Error scraping {self.label}: {e}",
                "error",
                step=self.key,
                error=str(e),
            )
            ctx.state.record_error(self.key, str(e))
            ctx.state.update_dataset_progress(
                self.key,
                label=self.label,
                completed=0,
                total=1,
                items=0,
                detail=f"Error: {e}",
            )
            return DatasetStatus.FAILED

        return DatasetStatus.COMPLETED

    @abstractmethod
    async def scrape(self, ctx: ScrapeContext, checkpoint: Checkpoint | None) -> None:
        """Fetch and store the dataset; raise ScrapingError to fail the dataset."""

    def page_url(self, ctx: ScrapeContext) -> str:
        return ctx.config.url_for(self.path)

    async def fetch_page(self, ctx: ScrapeContext) -> PortalResponse:
        """GET the dataset page as if navigated from the welcome page."""
        url = self.page_url(ctx)
        response = await ctx.session.get(
            url, headers={"Referer": ctx.config.url_for(WELCOME_PATH)}
        )
        if not response.ok:
            raise NetworkFailure(
                f"Failed to load {self.path}: {response.status}",
                url=url,
                status=response.status,
            )
        return response
