"""Weekly schedule parser - turns the "My Class Schedule" grid into events.

The class schedule page (J_VMCS.do) renders a time-by-weekday matrix:

  table
    tr -> th "Time" | th "Mon" | th "Tue" | ... | th "Sat"
    tr -> td "0800-0930" | td entry(s) | td | ...
    tr -> td "9:30-11:00am" | ...

Each day cell may stack several class entries, separated by blank lines or
simply by a new course-code line:

    CSCI 30 (ONLINE)
    Sec A
    Intro to Computing
    Dr. Jane Doe, PhD
    Room 301

Parsing is pure and deterministic: the same tables always produce the same
events, sorted by (day column order, start time). Only ``generated_at`` is
supplied by the caller.
"""

import re
from typing import Iterable

from src.portal_scraper.logging import get_logger
from src.portal_scraper.models import (
    ExtractedTable,
    ScheduleDay,
    ScheduleEvent,
    ScheduleSlot,
    WeeklySchedule,
)

log = get_logger(__name__)

# Day-name lookup, abbreviations included
DAY_ALIASES: dict[str, str] = {
    "mon": "mon", "monday": "mon",
    "tue": "tue", "tues": "tue", "tuesday": "tue",
    "wed": "wed", "weds": "wed", "wednesday": "wed",
    "thu": "thu", "thur": "thu", "thurs": "thu", "thursday": "thu",
    "fri": "fri", "friday": "fri",
    "sat": "sat", "saturday": "sat",
    "sun": "sun", "sunday": "sun",
}

_TIME_HEADER_RE = re.compile(r"\b(time|times|hour|hours|period|slot)\b", re.IGNORECASE)
_RANGE_SPLIT_RE = re.compile(r"\s*[-–—]\s*|\s+to\s+", re.IGNORECASE)
_MERIDIEM_RE = re.compile(r"([ap])\.?\s*m\.?$", re.IGNORECASE)

_COURSE_CODE_RE = re.compile(r"^([A-Za-z]{2,})(\s*)(\d+[A-Za-z]?(?:\.\d+)?)")
_SECTION_RE = re.compile(
    r"\bsec(?:tion)?\b\.?\s*[:#-]?\s*([A-Za-z0-9]+(?:-[A-Za-z0-9]+)?)", re.IGNORECASE
)
_SECTION_LINE_RE = re.compile(
    r"^sec(?:tion)?\b\.?\s*[:#-]?\s*([A-Za-z0-9]+(?:-[A-Za-z0-9]+)?)$", re.IGNORECASE
)
_MODE_RE = re.compile(r"\(([^()]+)\)\s*$")
_ROOM_RE = re.compile(
    r"\b(room|rm|hall|lab|laboratory|bldg|building|online|hybrid|campus|"
    r"auditorium|gym|field|zoom|virtual|tba)\b",
    re.IGNORECASE,
)
_PARAGRAPH_SPLIT_RE = re.compile(r"\n\s*\n")


def resolve_day(label: str) -> str | None:
    """Map a header like ``"Mon"``, ``"TUES."`` or ``"Monday (Aug 12)"`` to a day."""
    words = re.findall(r"[a-z]+", (label or "").lower())
    if not words:
        return None
    return DAY_ALIASES.get(words[0])


def _is_time_header(label: str) -> bool:
    text = (label or "").strip()
    if not text:
        # Grid corner cells are often left blank
        return True
    if _TIME_HEADER_RE.search(text):
        return True
    visible = re.sub(r"\s", "", text)
    digits = sum(char.isdigit() for char in visible)
    return digits * 2 >= len(visible)


def _to_24h(token: str, meridiem: str | None) -> tuple[int, int] | None:
    digits = re.sub(r"\D", "", token)
    if not digits:
        return None
    if len(digits) <= 2:
        hour, minute = int(digits), 0
    elif len(digits) == 3:
        hour, minute = int(digits[0]), int(digits[1:3])
    else:
        hour, minute = int(digits[:2]), int(digits[2:4])

    if meridiem == "a" and hour == 12:
        hour = 0
    elif meridiem == "p" and hour < 12:
        hour += 12

    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        return None
    return hour, minute


def _split_meridiem(token: str) -> tuple[str, str | None]:
    match = _MERIDIEM_RE.search(token)
    if not match:
        return token.strip(), None
    return token[: match.start()].strip(), match.group(1).lower()


def _fmt(hour: int, minute: int) -> str:
    return f"{hour:02d}:{minute:02d}"


def parse_time_range(label: str) -> tuple[str, str] | None:
    """Parse ``"1:00-2:30pm"`` / ``"1300-1430"`` into 24h ``("HH:MM", "HH:MM")``.

    A trailing am/pm on the end token carries over to a start token without
    its own marker, unless that would put the start after the end ("11:30-12:30pm"
    is a morning start). Returns None when the label is not a time range.
    """
    parts = _RANGE_SPLIT_RE.split((label or "").strip(), maxsplit=1)
    if len(parts) != 2 or not parts[0].strip() or not parts[1].strip():
        return None

    start_token, start_marker = _split_meridiem(parts[0])
    end_token, end_marker = _split_meridiem(parts[1])

    end = _to_24h(end_token, end_marker)
    if end is None:
        return None

    if start_marker is None and end_marker is not None:
        start = _to_24h(start_token, end_marker)
        if start is not None and end_marker == "p" and start > end:
            start = _to_24h(start_token, "a")
    else:
        start = _to_24h(start_token, start_marker)
    if start is None:
        return None

    return _fmt(*start), _fmt(*end)


def _minutes(value: str) -> int:
    hour, minute = value.split(":")
    return int(hour) * 60 + int(minute)


def duration_minutes(start: str, end: str) -> int:
    """Minutes from start to end; an end before the start crosses midnight."""
    delta = _minutes(end) - _minutes(start)
    if delta < 0:
        delta += 24 * 60
    return delta


def format_time_range(start: str, end: str) -> str:
    """Canonical ``HH:MM-HH:MM`` label."""
    return f"{start}-{end}"


def _is_course_header(line: str) -> bool:
    return (
        bool(_COURSE_CODE_RE.match(line))
        and not _ROOM_RE.search(line)
        and not _SECTION_LINE_RE.match(line)
    )


def split_cell_entries(text: str) -> list[str]:
    """Split a day cell into one text block per stacked class entry."""
    text = (text or "").strip()
    if not text:
        return []

    blocks = [
        block.strip() for block in _PARAGRAPH_SPLIT_RE.split(text) if block.strip()
    ]
    if len(blocks) > 1:
        return blocks

    entries: list[str] = []
    current: list[str] = []
    for line in (line.strip() for line in text.split("\n")):
        if not line:
            continue
        if current and _is_course_header(line):
            entries.append("\n".join(current))
            current = [line]
        else:
            current.append(line)
    if current:
        entries.append("\n".join(current))
    return entries


def parse_schedule_entry(text: str) -> dict:
    """Parse one class entry into course/section/title/instructor/room fields.

    First line: course code, optional ``Sec X`` and optional ``(MODE)`` suffix.
    Remaining lines: a comma-bearing line is the instructor, a room/modality
    keyword line is the room, the first other line is the title, the rest are
    details. Without a keyword match the first comma-free detail is the room.
    """
    lines = [line.strip() for line in (text or "").split("\n") if line.strip()]
    fields: dict = {
        "course_code": "",
        "section": None,
        "course_title": None,
        "mode": None,
        "room": None,
        "instructor": None,
        "details": [],
        "raw": (text or "").strip(),
    }
    if not lines:
        return fields

    first = lines[0]
    remaining = lines[1:]

    mode_match = _MODE_RE.search(first)
    if mode_match:
        fields["mode"] = mode_match.group(1).strip()
        first = first[: mode_match.start()].strip()

    code_match = _COURSE_CODE_RE.match(first)
    if code_match:
        letters, space, number = code_match.groups()
        fields["course_code"] = f"{letters}{' ' if space else ''}{number}".upper()
        rest = first[code_match.end():]
        section_match = _SECTION_RE.search(rest)
        if section_match:
            fields["section"] = section_match.group(1)
    elif first:
        remaining = [first, *remaining]

    unclaimed: list[str] = []
    for line in remaining:
        section_line = _SECTION_LINE_RE.match(line)
        if fields["section"] is None and section_line:
            fields["section"] = section_line.group(1)
        elif (
            fields["instructor"] is None
            and "," in line
            and re.search(r"[A-Za-z]", line)
        ):
            fields["instructor"] = line
        elif fields["room"] is None and _ROOM_RE.search(line):
            fields["room"] = line
        elif fields["course_title"] is None:
            fields["course_title"] = line
        else:
            unclaimed.append(line)

    if fields["room"] is None:
        fallback = next((line for line in unclaimed if "," not in line), None)
        if fallback is not None:
            fields["room"] = fallback
            unclaimed.remove(fallback)

    fields["details"] = unclaimed
    return fields


def locate_weekly_grid(
    tables: Iterable[ExtractedTable],
) -> tuple[ExtractedTable, list[tuple[int, ScheduleDay]]] | None:
    """First table shaped like a weekly grid, with its day columns."""
    for table in tables:
        headers = table.headers
        if len(headers) < 2 or not _is_time_header(headers[0]):
            continue

        day_columns: list[tuple[int, ScheduleDay]] = []
        seen: set[str] = set()
        for index, header in enumerate(headers[1:], start=1):
            key = resolve_day(header)
            if key is None or key in seen:
                continue
            seen.add(key)
            day_columns.append((index, ScheduleDay(key=key, label=header.strip())))

        if day_columns:
            return table, day_columns
    return None


def parse_weekly_schedule(
    tables: Iterable[ExtractedTable], generated_at: str | None = None
) -> WeeklySchedule | None:
    """Build a WeeklySchedule from page tables; None when no grid is present."""
    located = locate_weekly_grid(tables)
    if located is None:
        log.debug("weekly_grid_not_found")
        return None

    table, day_columns = located
    slots: list[ScheduleSlot] = []
    events: list[ScheduleEvent] = []

    for row in table.rows:
        if not row:
            continue
        time_range = parse_time_range(row[0])
        if time_range is None:
            log.debug("schedule_row_skipped", label=row[0])
            continue

        start, end = time_range
        minutes = duration_minutes(start, end)
        slot_events: dict[str, list[ScheduleEvent]] = {}

        for column, day in day_columns:
            cell = row[column] if column < len(row) else ""
            for entry in split_cell_entries(cell):
                event = ScheduleEvent(
                    day_key=day.key,
                    day_label=day.label,
                    start_time=start,
                    end_time=end,
                    duration_minutes=minutes,
                    **parse_schedule_entry(entry),
                )
                slot_events.setdefault(day.key, []).append(event)
                events.append(event)

        slots.append(
            ScheduleSlot(
                label=row[0], start_time=start, end_time=end, events=slot_events
            )
        )

    day_order = {day.key: position for position, (_, day) in enumerate(day_columns)}
    events.sort(key=lambda event: (day_order[event.day_key], event.start_time))

    log.debug(
        "weekly_schedule_parsed",
        days=len(day_columns),
        slots=len(slots),
        events=len(events),
    )
    return WeeklySchedule(
        days=[day for _, day in day_columns],
        slots=slots,
        events=events,
        generated_at=generated_at,
    )
