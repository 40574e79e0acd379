"""Single-page dataset scrapers (grades, enrolled classes, class schedule, ...).

One GET per dataset. The page is stored table-centric: sanitized tables,
flattened text and a truncated copy of the HTML. The class schedule page also
gets a derived WeeklySchedule; the grades page also gets GradeRecords read
from its ``text02`` cells.
"""

from typing import Any

from src.portal_scraper.datasets import WEEKLY_SCHEDULE_DATASET
from src.portal_scraper.extract import (
    extract_rows_by_cell_class,
    extract_tables,
    sanitize_tables_for_dataset,
    strip_html,
)
from src.portal_scraper.logging import get_logger
from src.portal_scraper.models import (
    Checkpoint,
    ExtractedTable,
    GradeRecord,
    PagePayload,
    WeeklySchedule,
)
from src.portal_scraper.pages.base import DatasetScraper, ScrapeContext
from src.portal_scraper.schedule import parse_weekly_schedule
from src.portal_scraper.utils import truncate, utc_now_iso

log = get_logger(__name__)


class SimplePageScraper(DatasetScraper):
    """GET one page and store its tables."""

    def __init__(
        self,
        key: str,
        path: str,
        label: str | None = None,
        *,
        derive_schedule: bool | None = None,
    ) -> None:
        super().__init__(key, path, label)
        if derive_schedule is None:
            derive_schedule = key == WEEKLY_SCHEDULE_DATASET
        self.derive_schedule = derive_schedule

    async def scrape(self, ctx: ScrapeContext, checkpoint: Checkpoint | None) -> None:
        response = await self.fetch_page(ctx)
        html = response.text
        if ctx.state.state.debug_mode:
            ctx.state.save_snapshot(self.key, html)

        captured_at = utc_now_iso()
        raw_tables = extract_tables(html)
        tables = sanitize_tables_for_dataset(
            raw_tables, max_nav_rows=ctx.config.nav_table_max_rows
        )
        # Sanitizing merges the blank lines that separate stacked class entries,
        # so the grid is parsed from the raw tables
        schedule = None
        if self.derive_schedule:
            schedule = self.build_schedule(raw_tables, captured_at)
        records = self.parse_records(html)

        payload = PagePayload(
            html=truncate(
                html, ctx.config.max_html_snapshot_size, "<!-- truncated -->"
            ),
            text=strip_html(html),
            tables=tables,
            schedule=schedule,
            records=records,
            captured_at=captured_at,
        )
        ctx.state.set_dataset_payload(self.key, payload.to_json_dict())

        if records is not None:
            items = len(records)
        else:
            items = sum(table.total_rows for table in tables)
        ctx.state.update_dataset_progress(
            self.key,
            label=self.label,
            completed=1,
            total=1,
            items=items,
            detail=self.describe(tables, schedule, records),
        )
        ctx.state.add_log(
            f"{self.label} scraped successfully",
            "success",
            step=self.key,
            tables=len(tables),
            items=items,
        )

        await ctx.sleep(ctx.config.simple_page_delay_seconds)

    def build_schedule(
        self, tables: list[ExtractedTable], generated_at: str
    ) -> WeeklySchedule | None:
        schedule = parse_weekly_schedule(tables, generated_at=generated_at)
        if schedule is None:
            log.info("weekly_schedule_missing", dataset=self.key)
        return schedule

    def parse_records(self, html: str) -> list[dict[str, Any]] | None:
        """Typed records derived from the page, or None for table-only pages."""
        return None

    def describe(
        self,
        tables: list[ExtractedTable],
        schedule: WeeklySchedule | None,
        records: list[dict[str, Any]] | None,
    ) -> str:
        if schedule is not None:
            return f"{len(schedule.events)} classes"
        if records is not None:
            return f"{len(records)} records"
        return f"{len(tables)} tables"


class GradesScraper(SimplePageScraper):
    """View Grades (J_VG.do); grade rows are the cells styled ``text02``."""

    CELL_CLASS = "text02"
    MIN_CELLS = 6

    def __init__(
        self, key: str = "grades", path: str = "J_VG.do", label: str | None = None
    ) -> None:
        super().__init__(key, path, label, derive_schedule=False)

    def parse_records(self, html: str) -> list[dict[str, Any]] | None:
        records: list[dict[str, Any]] = []
        for row in extract_rows_by_cell_class(html, self.CELL_CLASS):
            if len(row) < self.MIN_CELLS:
                continue
            cells = [" ".join(cell.split()) for cell in row] + [""]
            record = GradeRecord(
                school_year=cells[0],
                semester=cells[1],
                program=cells[2],
                course_code=cells[3],
                course_title=cells[4],
                units=cells[5],
                grade=cells[6],
            )
            records.append(record.to_json_dict())
        return records
