"""Student portal scraper.

Logs into the portal over plain HTTP form posts, scrapes the selected datasets
(class catalogs, curricula, grades and single-page reports) and keeps a
persisted, resumable scrape state.
"""

from src.portal_scraper.models import ControlResult, ScrapeState, WeeklySchedule
from src.portal_scraper.orchestrator import ScrapeOrchestrator, build_scrapers
from src.portal_scraper.schedule import parse_weekly_schedule

__all__ = [
    "ScrapeOrchestrator",
    "build_scrapers",
    "ScrapeState",
    "ControlResult",
    "WeeklySchedule",
    "parse_weekly_schedule",
]
