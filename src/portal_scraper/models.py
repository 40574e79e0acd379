"""Pydantic models for scrape state, extracted tables and dataset records.

All data structures use Pydantic v2 for validation, serialization, and type
safety. Models serialize with camelCase aliases (``model_dump(by_alias=True)``)
because the persisted ``ScrapeState`` JSON layout is a compatibility contract
with earlier state files; Python code uses the snake_case attributes.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class PortalModel(BaseModel):
    """Base model: camelCase on the wire, snake_case in code."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# --- Extraction ---


class ExtractedTable(PortalModel):
    """One table from a page. Rows may be ragged (shorter/longer than headers)."""

    caption: str | None = None
    headers: list[str] = Field(default_factory=list)
    rows: list[list[str]] = Field(default_factory=list)
    total_rows: int = 0


class SelectOption(PortalModel):
    value: str
    text: str
    selected: bool = False


class ScheduleDay(PortalModel):
    key: str  # "mon"
    label: str  # header text as shown, e.g. "MON"


class ScheduleEvent(PortalModel):
    """A single class meeting derived from a weekly grid cell."""

    day_key: str
    day_label: str
    start_time: str  # "HH:MM" 24h
    end_time: str
    duration_minutes: int
    course_code: str = ""
    section: str | None = None
    course_title: str | None = None
    mode: str | None = None  # "(ONLINE)" style suffix, without parentheses
    room: str | None = None
    instructor: str | None = None
    details: list[str] = Field(default_factory=list)
    raw: str = ""


class ScheduleSlot(PortalModel):
    label: str  # time label as printed in the first column
    start_time: str
    end_time: str
    events: dict[str, list[ScheduleEvent]] = Field(default_factory=dict)


class WeeklySchedule(PortalModel):
    days: list[ScheduleDay] = Field(default_factory=list)
    slots: list[ScheduleSlot] = Field(default_factory=list)
    events: list[ScheduleEvent] = Field(default_factory=list)
    generated_at: str | None = None


# --- Dataset records ---


class ClassOffering(PortalModel):
    """One row of the Schedule of Classes (J_VCSC.do), per department."""

    department: str
    subject_code: str = ""
    section: str = ""
    course_title: str = ""
    units: str = ""
    time: str = ""
    room: str = ""
    instructor: str = ""
    max_no: str = ""
    lang: str = ""
    level: str = ""
    free_slots: str = ""
    remarks: str = ""
    s: str = ""
    p: str = ""


class CurriculumCourse(PortalModel):
    """One course of an official curriculum (J_VOFC.do), per degree program."""

    degree_program: str
    degree_code: str
    term: str | None = None  # semester title row preceding the column headers
    cat_no: str = ""
    course_title: str = ""
    units: str = ""
    prerequisites: str = ""
    category: str = ""


class GradeRecord(PortalModel):
    school_year: str = ""
    semester: str = ""
    program: str = ""
    course_code: str = ""
    course_title: str = ""
    units: str = ""
    grade: str = ""


class PagePayload(PortalModel):
    """Table-centric payload of a single-page dataset."""

    html: str = ""
    text: str = ""
    tables: list[ExtractedTable] = Field(default_factory=list)
    schedule: WeeklySchedule | None = None
    records: list[dict[str, Any]] | None = None
    captured_at: str


# --- State ---


class Credentials(PortalModel):
    username: str
    password: str


class Checkpoint(PortalModel):
    """Resume cursor into a paginated dataset."""

    next_index: int
    total: int = 0
    next_key: str | None = None
    updated_at: str


class DatasetProgress(PortalModel):
    label: str
    completed: int = 0
    total: int = 0
    items: int = 0
    detail: str | None = None
    updated_at: str | None = None


class ErrorEntry(PortalModel):
    step: str
    error: str
    timestamp: str | None = None


class LogEntry(PortalModel):
    timestamp: str
    message: str
    type: str = "info"
    context: dict[str, Any] = Field(default_factory=dict)


class RequestMetrics(PortalModel):
    total_requests: int = 0
    total_response_time_ms: int = 0
    avg_response_ms: int = 0
    bytes_downloaded: int = 0
    slow_responses: int = 0
    last_response_ms: int = 0
    last_status: int | str | None = None
    last_request_url: str | None = None
    last_request_method: str | None = None
    last_request_at: str | None = None


class HtmlSnapshot(PortalModel):
    timestamp: str
    html: str
    length: int


class ScrapeState(PortalModel):
    """Process-wide scrape state; the single mutable root (replaced wholesale)."""

    is_running: bool = False
    is_paused: bool = False
    is_completed: bool = False
    is_terminated: bool = False
    session_id: str | None = None
    progress: int = 0
    total_steps: int = 0
    completed_steps: int = 0
    current_step: str = ""
    current_page: str = ""
    substep_progress: float = 0.0
    selected_pages: dict[str, bool] | None = None
    page_order: list[str] = Field(default_factory=list)
    current_dataset_index: int = 0
    checkpoints: dict[str, Checkpoint] = Field(default_factory=dict)
    dataset_progress: dict[str, DatasetProgress] = Field(default_factory=dict)
    scraped_data: dict[str, Any] = Field(default_factory=dict)
    errors: list[ErrorEntry] = Field(default_factory=list)
    logs: list[LogEntry] = Field(default_factory=list)
    logs_trimmed: bool = False
    metrics: RequestMetrics = Field(default_factory=RequestMetrics)
    har_entries: list[dict[str, Any]] = Field(default_factory=list)
    html_snapshots: dict[str, HtmlSnapshot] = Field(default_factory=dict)
    html_snapshot_order: list[str] = Field(default_factory=list)
    debug_mode: bool = False
    started_at: str | None = None
    completed_at: str | None = None
    last_updated: str | None = None
    last_log_at: str | None = None


class DatasetStatus(str, Enum):
    COMPLETED = "completed"
    PAUSED = "paused"
    FAILED = "failed"


class ControlResult(PortalModel):
    """Return value of the orchestrator's control operations."""

    ok: bool = True
    error: str | None = None
    paused: bool | None = None
    terminated: bool | None = None
