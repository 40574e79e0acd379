"""Paginated catalog scrapers - one portal POST per drop-down option.

Page structure (J_VCSC.do, J_VOFC.do):
  GET page        -> form with a <select> listing every sub-item
                     (departments / degree programs)
  POST key        -> same page re-rendered with the results table(s);
                     the data table is the one carrying a known column
                     header ("Subject Code", "Course Title"), layout and
                     navigation tables share the page

Sub-items are fetched strictly one after another with a 2-4s random delay.
After each sub-item a checkpoint (next index + next key) is stored, so a pause
or a crash resumes at the first unfinished sub-item. Rows are tagged with the
sub-item key and replaced per key, so re-fetching a sub-item on resume never
duplicates rows.
"""

from abc import abstractmethod
from typing import NamedTuple

from src.portal_scraper.errors import NetworkFailure, ParseError
from src.portal_scraper.extract import (
    find_keyed_tables,
    find_named_select_options,
    find_selected_option,
)
from src.portal_scraper.logging import get_logger
from src.portal_scraper.models import (
    Checkpoint,
    ClassOffering,
    CurriculumCourse,
    PortalModel,
)
from src.portal_scraper.pages.base import DatasetScraper, ScrapeContext
from src.portal_scraper.utils import form_headers, origin_of, random_delay

log = get_logger(__name__)


class CatalogItem(NamedTuple):
    code: str
    name: str


def _flat(cell: str) -> str:
    return " ".join(cell.split())


class PaginatedCatalogScraper(DatasetScraper):
    """Iterates a <select> option list, POSTing one query per option."""

    SELECT_NAME = ""
    TABLE_MARKER = ""
    # Record field (camelCase, as stored) holding the sub-item key
    ITEM_FIELD = ""
    # Error steps are "<prefix>_<code>"; snapshots use the same prefix
    STEP_PREFIX = ""
    ITEM_NOUN = "items"

    async def scrape(self, ctx: ScrapeContext, checkpoint: Checkpoint | None) -> None:
        page = await self.fetch_page(ctx)
        items = self.parse_items(page.text)
        if items:
            ctx.state.add_log(
                f"Found {len(items)} {self.ITEM_NOUN}", step=self.key, total=len(items)
            )
        else:
            ctx.state.add_log(
                f"Could not find {self.SELECT_NAME} dropdown", "warning", step=self.key
            )
        form_base = self.base_form(page.text, ctx)

        total = len(items)
        start = self.resume_index(items, checkpoint)
        if start == 0:
            ctx.state.set_dataset_payload(self.key, [])
        else:
            ctx.state.add_log(
                f"Resuming {self.label} at {start + 1}/{total}",
                step=self.key,
                next_index=start,
            )
        ctx.state.update_dataset_progress(
            self.key,
            label=self.label,
            completed=start,
            total=total,
            items=ctx.state.item_count(self.key),
            detail=None,
        )

        for index in range(start, total):
            item = items[index]
            ctx.check_pause(self.key, next_index=index, total=total, next_key=item.code)

            ctx.state.update(
                current_step=f"Scraping {item.name} ({index + 1}/{total})..."
            )
            ctx.state.add_log(
                f"Fetching {self.label} for: {item.name}",
                step=self.key,
                item=item.code,
                index=index + 1,
                total=total,
            )

            try:
                records = await self.fetch_item(ctx, item, form_base, index)
                count = ctx.state.replace_items(
                    self.key,
                    self.ITEM_FIELD,
                    item.code,
                    [record.to_json_dict() for record in records],
                )
                detail = item.name
                if records:
                    ctx.state.add_log(
                        f"Scraped {len(records)} rows from {item.name}",
                        "success",
                        step=self.key,
                        item=item.code,
                        items=len(records),
                    )
            except Exception as e:
                log.warning(
                    "catalog_item_failed",
                    dataset=self.key,
                    item=item.code,
                    error=str(e),
                )
                ctx.state.add_log(
                    f"Error processing {item.name}: {e}",
                    "error",
                    step=self.key,
                    item=item.code,
                    error=str(e),
                )
                ctx.state.record_error(f"{self.STEP_PREFIX}_{item.code}", str(e))
                count = ctx.state.item_count(self.key)
                detail = f"{item.name} (error)"

            next_index = index + 1
            next_key = items[next_index].code if next_index < total else None
            ctx.state.set_checkpoint(self.key, next_index, total, next_key)
            ctx.state.update_dataset_progress(
                self.key,
                completed=next_index,
                total=total,
                items=count,
                detail=detail,
            )
            ctx.state.set_substep(next_index / total)

            if next_index < total:
                await ctx.sleep(
                    random_delay(
                        ctx.rng,
                        ctx.config.page_delay_min_seconds,
                        ctx.config.page_delay_max_seconds,
                    )
                )

        ctx.state.clear_checkpoint(self.key)
        ctx.state.add_log(
            f"Total {self.label} rows scraped: {ctx.state.item_count(self.key)}",
            "success",
            step=self.key,
            total=ctx.state.item_count(self.key),
        )

    def resume_index(
        self, items: list[CatalogItem], checkpoint: Checkpoint | None
    ) -> int:
        """Index of the first unfinished sub-item.

        The stored next key wins over the stored index, so options that were
        added or removed upstream since the pause do not shift the cursor.
        """
        if checkpoint is None:
            return 0
        if checkpoint.next_key:
            for index, item in enumerate(items):
                if item.code == checkpoint.next_key:
                    return index
        return max(0, min(checkpoint.next_index, len(items)))

    def parse_items(self, html: str) -> list[CatalogItem]:
        return [
            CatalogItem(code=option.value, name=option.text or option.value)
            for option in find_named_select_options(html, self.SELECT_NAME)
            if option.value
        ]

    def base_form(self, html: str, ctx: ScrapeContext) -> dict[str, str]:
        """Form fields shared by every sub-item POST."""
        return {}

    def item_form(self, item: CatalogItem, form_base: dict[str, str]) -> dict[str, str]:
        return {**form_base, self.SELECT_NAME: item.code}

    def should_snapshot(self, ctx: ScrapeContext, index: int) -> bool:
        return True

    async def fetch_item(
        self,
        ctx: ScrapeContext,
        item: CatalogItem,
        form_base: dict[str, str],
        index: int,
    ) -> list[PortalModel]:
        url = self.page_url(ctx)
        response = await ctx.session.post(
            url,
            self.item_form(item, form_base),
            headers=form_headers(referer=url, origin=origin_of(url)),
        )
        if not response.ok:
            raise NetworkFailure(
                f"Failed to fetch {item.name}: {response.status}",
                url=url,
                status=response.status,
            )

        if self.should_snapshot(ctx, index):
            ctx.state.save_snapshot(f"{self.STEP_PREFIX}_{item.code}", response.text)

        records = self.parse_records(response.text, item)
        if not records:
            ctx.state.add_log(
                f"No {self.label} table found for {item.name}",
                "warning",
                step=self.key,
                item=item.code,
            )
        return records

    @abstractmethod
    def parse_records(self, html: str, item: CatalogItem) -> list[PortalModel]:
        """Records of one sub-item's results page; empty when no data table."""


class ScheduleOfClassesScraper(PaginatedCatalogScraper):
    """Schedule of Classes, department by department (J_VCSC.do)."""

    SELECT_NAME = "deptCode"
    PERIOD_SELECT = "applicablePeriod"
    TABLE_MARKER = "Subject Code"
    ITEM_FIELD = "department"
    STEP_PREFIX = "schedule"
    ITEM_NOUN = "departments"
    MIN_CELLS = 7

    def __init__(
        self,
        key: str = "scheduleOfClasses",
        path: str = "J_VCSC.do",
        label: str | None = None,
    ) -> None:
        super().__init__(key, path, label)

    def parse_items(self, html: str) -> list[CatalogItem]:
        return [
            CatalogItem(code=option.value, name=option.value)
            for option in find_named_select_options(html, self.SELECT_NAME)
            if option.value and option.value != "ALL"
        ]

    def base_form(self, html: str, ctx: ScrapeContext) -> dict[str, str]:
        period = find_selected_option(html, self.PERIOD_SELECT)
        if period is None:
            options = find_named_select_options(html, self.PERIOD_SELECT)
            period = options[0] if options else None
        if period is None:
            raise ParseError(f"No {self.PERIOD_SELECT} found on {self.path}")

        ctx.state.add_log(
            f"Using period: {period.value}", step=self.key, period=period.value
        )
        return {
            self.PERIOD_SELECT: period.value,
            "command": "displayResults",
            "subjCode": "ALL",
        }

    def parse_records(self, html: str, item: CatalogItem) -> list[PortalModel]:
        tables = find_keyed_tables(html, self.TABLE_MARKER)
        if not tables:
            return []

        records: list[PortalModel] = []
        for row in tables[0].rows:
            if len(row) < self.MIN_CELLS:
                continue
            cells = [_flat(cell) for cell in row] + [""] * (15 - len(row))
            records.append(
                ClassOffering(
                    department=item.code,
                    subject_code=cells[0],
                    section=cells[1],
                    course_title=cells[2],
                    units=cells[3],
                    time=cells[4],
                    room=cells[5],
                    instructor=cells[6],
                    max_no=cells[7],
                    lang=cells[8],
                    level=cells[9],
                    free_slots=cells[10],
                    remarks=cells[11],
                    s=cells[12],
                    p=cells[13],
                )
            )
        return records


class OfficialCurriculumScraper(PaginatedCatalogScraper):
    """Official curriculum, degree program by degree program (J_VOFC.do).

    One results page holds a table per term: a title row ("First Year, First
    Semester") above the "Cat No | Course Title | Units | ..." header row.
    """

    SELECT_NAME = "degCode"
    TABLE_MARKER = "Course Title"
    ITEM_FIELD = "degreeCode"
    STEP_PREFIX = "curriculum"
    ITEM_NOUN = "degree programs"
    MIN_CELLS = 2
    # Results pages are large; only the first few are kept outside debug mode
    SNAPSHOT_LIMIT = 5

    def __init__(
        self,
        key: str = "officialCurriculum",
        path: str = "J_VOFC.do",
        label: str | None = None,
    ) -> None:
        super().__init__(key, path, label)

    def item_form(self, item: CatalogItem, form_base: dict[str, str]) -> dict[str, str]:
        return {self.SELECT_NAME: item.code}

    def should_snapshot(self, ctx: ScrapeContext, index: int) -> bool:
        return ctx.state.state.debug_mode or index < self.SNAPSHOT_LIMIT

    def parse_records(self, html: str, item: CatalogItem) -> list[PortalModel]:
        records: list[PortalModel] = []
        for table in find_keyed_tables(html, self.TABLE_MARKER):
            for row in table.rows:
                if len(row) < self.MIN_CELLS:
                    continue
                cells = [_flat(cell) for cell in row] + [""] * (5 - len(row))
                records.append(
                    CurriculumCourse(
                        degree_program=item.name,
                        degree_code=item.code,
                        term=table.title,
                        cat_no=cells[0],
                        course_title=cells[1],
                        units=cells[2],
                        prerequisites=cells[3],
                        category=cells[4],
                    )
                )
        return records

