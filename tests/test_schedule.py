"""Weekly schedule parser tests."""

import pytest

from src.portal_scraper.extract import extract_tables
from src.portal_scraper.models import ExtractedTable
from src.portal_scraper.schedule import (
    duration_minutes,
    format_time_range,
    locate_weekly_grid,
    parse_schedule_entry,
    parse_time_range,
    parse_weekly_schedule,
    resolve_day,
    split_cell_entries,
)
from tests.conftest import CLASS_SCHEDULE_PAGE


# --- time ranges ---


@pytest.mark.parametrize(
    "label, expected",
    [
        ("1:00-2:30pm", ("13:00", "14:30")),
        ("1300-1430", ("13:00", "14:30")),
        ("0800-0930", ("08:00", "09:30")),
        ("8:00am - 9:30am", ("08:00", "09:30")),
        ("9 to 10am", ("09:00", "10:00")),
        ("11:30-12:30pm", ("11:30", "12:30")),
        ("12:00am-1:00am", ("00:00", "01:00")),
        ("12:00pm-1:00pm", ("12:00", "13:00")),
        ("730-900", ("07:30", "09:00")),
        ("4:30 p.m.–6:00 p.m.", ("16:30", "18:00")),
    ],
)
def test_parse_time_range(label, expected):
    assert parse_time_range(label) == expected


@pytest.mark.parametrize("label", ["TBA", "", "Time", "25:00-26:00", "10:75-11:00", "-0930"])
def test_parse_time_range_rejects(label):
    assert parse_time_range(label) is None


@pytest.mark.parametrize(
    "label",
    ["7:00am-8:30am", "9:15am-12:45pm", "11:00am-1:30pm", "12:30pm-3:00pm", "1:00pm-9:59pm"],
)
def test_time_range_am_pm_is_ordered_and_canonical(label):
    start, end = parse_time_range(label)

    assert duration_minutes(start, end) > 0
    assert start < end
    assert parse_time_range(format_time_range(start, end)) == (start, end)
    assert format_time_range(start, end) == f"{start}-{end}"


def test_duration_crosses_midnight():
    start, end = parse_time_range("10:00pm-1:00am")

    assert (start, end) == ("22:00", "01:00")
    assert duration_minutes(start, end) == 180


def test_duration_minutes():
    assert duration_minutes("08:00", "09:30") == 90


# --- days ---


@pytest.mark.parametrize(
    "label, key",
    [("Mon", "mon"), ("TUES.", "tue"), ("Thursday (Aug 12)", "thu"), ("sat", "sat"), ("Room", None), ("", None)],
)
def test_resolve_day(label, key):
    assert resolve_day(label) == key


# --- cell splitting and entries ---


def test_parse_schedule_entry_example():
    entry = parse_schedule_entry("CSCI 30\nSec A\nIntro to Computing\nDr. Jane Doe, PhD\nRoom 301")

    assert entry["course_code"] == "CSCI 30"
    assert entry["section"] == "A"
    assert entry["course_title"] == "Intro to Computing"
    assert entry["instructor"] == "Dr. Jane Doe, PhD"
    assert entry["room"] == "Room 301"
    assert entry["details"] == []


def test_parse_schedule_entry_mode_and_inline_section():
    entry = parse_schedule_entry("math 21 Sec B (ONLINE)\nCalculus\nMWF")

    assert entry["course_code"] == "MATH 21"
    assert entry["section"] == "B"
    assert entry["mode"] == "ONLINE"
    assert entry["course_title"] == "Calculus"
    # No room keyword: the first comma-free leftover line is the room
    assert entry["room"] == "MWF"


def test_parse_schedule_entry_details_keep_order():
    entry = parse_schedule_entry("ENGL 11\nWriting\nSEC-B204 Room\nLecture\nRequired, core")

    assert entry["room"] == "SEC-B204 Room"
    assert entry["instructor"] == "Required, core"
    assert entry["details"] == ["Lecture"]


def test_parse_schedule_entry_without_code():
    entry = parse_schedule_entry("Homeroom\nGym")

    assert entry["course_code"] == ""
    assert entry["course_title"] == "Homeroom"
    assert entry["room"] == "Gym"


def test_split_cell_entries_on_blank_lines():
    text = "MATH 21\nCalculus\n\nPHYS 10\nPhysics"

    assert split_cell_entries(text) == ["MATH 21\nCalculus", "PHYS 10\nPhysics"]


def test_split_cell_entries_on_course_headers():
    text = "CSCI 30\nSec A\nRoom 301\nMATH 21\nSec B\nLab 2"

    assert split_cell_entries(text) == ["CSCI 30\nSec A\nRoom 301", "MATH 21\nSec B\nLab 2"]


def test_split_cell_entries_empty():
    assert split_cell_entries("   ") == []


# --- whole grid ---


def test_parse_weekly_schedule_from_page():
    schedule = parse_weekly_schedule(extract_tables(CLASS_SCHEDULE_PAGE), generated_at="2024-08-12T00:00:00+00:00")

    assert schedule is not None
    assert [day.key for day in schedule.days] == ["mon", "tue", "wed"]
    # "TBA" row is skipped
    assert [slot.label for slot in schedule.slots] == ["0800-0930", "1:00-2:30pm"]
    assert [(event.day_key, event.start_time, event.course_code) for event in schedule.events] == [
        ("mon", "08:00", "CSCI 30"),
        ("tue", "13:00", "MATH 21"),
        ("tue", "13:00", "PHYS 10"),
        ("wed", "08:00", "CSCI 30"),
    ]

    math = schedule.events[1]
    assert math.mode == "ONLINE"
    assert math.section == "B"
    assert math.duration_minutes == 90
    assert schedule.events[2].room == "Lab 2"
    assert schedule.slots[1].events["tue"][1].course_title == "Physics"
    assert schedule.generated_at == "2024-08-12T00:00:00+00:00"


def test_parse_weekly_schedule_is_deterministic():
    tables = extract_tables(CLASS_SCHEDULE_PAGE)

    first = parse_weekly_schedule(tables, generated_at="t").model_dump()
    second = parse_weekly_schedule(tables, generated_at="t").model_dump()

    assert first == second


def test_sort_follows_column_order_not_alphabet():
    table = ExtractedTable(
        headers=["", "Fri", "Mon"],
        rows=[["1000-1100", "B 2", ""], ["0800-0900", "A 1", "C 3"]],
        total_rows=2,
    )

    schedule = parse_weekly_schedule([table])

    assert [(event.day_key, event.start_time) for event in schedule.events] == [
        ("fri", "08:00"),
        ("fri", "10:00"),
        ("mon", "08:00"),
    ]


def test_no_grid_yields_none():
    table = ExtractedTable(headers=["Subject", "Units"], rows=[["CSCI30", "3"]], total_rows=1)

    assert locate_weekly_grid([table]) is None
    assert parse_weekly_schedule([table]) is None
