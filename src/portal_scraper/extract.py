"""Targeted HTML extraction for the portal's server-rendered pages.

The portal's markup is old, unversioned and frequently malformed, so this is
deliberately not a DOM parser: tables, rows, cells, ``<select>`` options and
``<input>`` values are found with tag-bounded, non-greedy patterns tuned to the
known page structures. Callers only use the functions below, so the
implementation can be swapped for a real parser without touching them.

Table scanning rules:
  * ``<table>...</table>`` regions are matched non-greedily. If a region
    contains a nested ``<table`` only the innermost segment is parsed; the
    outer (layout) table is skipped rather than mis-parsed.
  * A row containing any ``<th>`` is a header row. The first header row, or
    the first row when there is none, becomes ``headers``.
  * Tables without data rows are dropped.
"""

import html as html_lib
import re
from typing import Iterable, Iterator, NamedTuple

from src.portal_scraper.models import ExtractedTable, SelectOption

_TABLE_RE = re.compile(r"<table\b[^>]*>(.*?)</table\s*>", re.IGNORECASE | re.DOTALL)
_TABLE_OPEN_RE = re.compile(r"<table\b[^>]*>", re.IGNORECASE)
_CAPTION_RE = re.compile(
    r"<caption\b[^>]*>(.*?)</caption\s*>", re.IGNORECASE | re.DOTALL
)
_ROW_RE = re.compile(r"<tr\b[^>]*>(.*?)</tr\s*>", re.IGNORECASE | re.DOTALL)
_CELL_RE = re.compile(
    r"<(td|th)\b([^>]*)>(.*?)</(?:td|th)\s*>", re.IGNORECASE | re.DOTALL
)
_CLASS_ATTR_RE = re.compile(
    r"""\bclass\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s>]+))""", re.IGNORECASE
)

_LINE_BREAK_RE = re.compile(r"<br\s*/?>|</(?:p|div|li)\s*>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]*>")
_SOURCE_WHITESPACE_RE = re.compile(r"[\r\n\t]+")
_INLINE_SPACE_RE = re.compile(r"[ \t\f\v\xa0]+")
_BLANK_LINES_RE = re.compile(r"\n{3,}")
_WHITESPACE_RE = re.compile(r"\s+")

_VALUE_ATTR_RE = re.compile(
    r"""\bvalue\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s>]+))""", re.IGNORECASE
)
_OPTION_RE = re.compile(
    r"<option\b([^>]*)>(.*?)(?=<option\b|</option\s*>|</select\s*>|$)",
    re.IGNORECASE | re.DOTALL,
)
_SELECTED_ATTR_RE = re.compile(r"\bselected\b", re.IGNORECASE)

# Portal chrome that shows up as tiny tables on every page.
NAVIGATION_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\bsign\s*out\b", re.IGNORECASE),
    re.compile(r"\blog\s*out\b", re.IGNORECASE),
    re.compile(r"\bmain\s+menu\b", re.IGNORECASE),
    re.compile(r"\bback\s+to\s+top\b", re.IGNORECASE),
    re.compile(r"\bskip\s+to\s+(?:main\s+)?content\b", re.IGNORECASE),
    re.compile(r"\bclick\s+here\b", re.IGNORECASE),
    re.compile(r"\ball\s+rights\s+reserved\b|\bcopyright\b|©", re.IGNORECASE),
    re.compile(r"\bwelcome\b.*\bhome\b|\bhome\b\s*\|", re.IGNORECASE),
)


class ParsedRow(NamedTuple):
    cells: list[str]
    is_header: bool
    cell_classes: list[str]


class KeyedTable(NamedTuple):
    """Rows of a table found by a column-header phrase."""

    title: str | None  # text of the first row when it precedes the header row
    header: list[str]
    rows: list[list[str]]


def normalize_cell_text(value: str) -> str:
    """Turn cell markup into trimmed text, keeping ``<br>`` line structure.

    Source newlines are insignificant HTML whitespace; line-break tags become
    ``\\n``. Runs of spaces collapse to one, each line is trimmed, and at most one
    blank line is kept between paragraphs (the schedule parser splits on it).
    """
    if not value:
        return ""
    text = _SOURCE_WHITESPACE_RE.sub(" ", value)
    text = _LINE_BREAK_RE.sub("\n", text)
    text = _TAG_RE.sub("", text)
    text = html_lib.unescape(text)
    lines = [_INLINE_SPACE_RE.sub(" ", line).strip() for line in text.split("\n")]
    text = "\n".join(lines)
    text = _BLANK_LINES_RE.sub("\n\n", text)
    return text.strip()


def strip_html(value: str) -> str:
    """Flatten markup to a single line of text."""
    if not value:
        return ""
    text = _LINE_BREAK_RE.sub("\n", value)
    # Adjacent cells must not run together
    text = _TAG_RE.sub(" ", text)
    text = html_lib.unescape(text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def iter_table_markup(html: str) -> Iterator[str]:
    """Yield the inner markup of each (innermost) table in document order."""
    for match in _TABLE_RE.finditer(html or ""):
        body = match.group(1)
        nested = None
        for nested in _TABLE_OPEN_RE.finditer(body):
            pass
        if nested is not None:
            body = body[nested.end():]
        yield body


def _cell_class(attrs: str) -> str:
    match = _CLASS_ATTR_RE.search(attrs)
    if not match:
        return ""
    return next(group for group in match.groups() if group is not None)


def parse_table_rows(table_markup: str) -> list[ParsedRow]:
    """Parse ``<tr>`` rows of one table; rows without cells are skipped."""
    rows: list[ParsedRow] = []
    for row_match in _ROW_RE.finditer(table_markup):
        cells: list[str] = []
        classes: list[str] = []
        is_header = False
        for cell_match in _CELL_RE.finditer(row_match.group(1)):
            tag, attrs, content = cell_match.groups()
            if tag.lower() == "th":
                is_header = True
            cells.append(normalize_cell_text(content))
            classes.append(_cell_class(attrs))
        if cells:
            rows.append(ParsedRow(cells, is_header, classes))
    return rows


def extract_tables(html: str) -> list[ExtractedTable]:
    """Extract every data-bearing table of a page.

    Deterministic: the same markup always yields the same tables.
    """
    tables: list[ExtractedTable] = []
    for markup in iter_table_markup(html):
        parsed = parse_table_rows(markup)
        if not parsed:
            continue

        header_row = next((row for row in parsed if row.is_header), parsed[0])
        data_rows = [row.cells for row in parsed if row is not header_row]
        if not data_rows:
            continue

        caption_match = _CAPTION_RE.search(markup)
        caption = strip_html(caption_match.group(1)) if caption_match else None

        tables.append(
            ExtractedTable(
                caption=caption or None,
                headers=header_row.cells,
                rows=data_rows,
                total_rows=len(data_rows),
            )
        )
    return tables


def _table_text(table: ExtractedTable) -> str:
    parts: list[str] = [table.caption or "", *table.headers]
    for row in table.rows:
        parts.extend(row)
    return " ".join(part for part in parts if part)


def is_navigation_table(table: ExtractedTable) -> bool:
    text = _table_text(table)
    return any(pattern.search(text) for pattern in NAVIGATION_PATTERNS)


def _clean_cell(value: str) -> str:
    lines = [line.strip() for line in (value or "").split("\n")]
    return "\n".join(line for line in lines if line)


def sanitize_tables_for_dataset(
    tables: Iterable[ExtractedTable], max_nav_rows: int = 3
) -> list[ExtractedTable]:
    """Drop navigation chrome and blank rows from extracted tables.

    A table matching a navigation phrase is dropped unless it has more than
    ``max_nav_rows`` rows (header row included); real data tables are rarely
    that small. Cells lose embedded blank lines; fully blank rows are removed.
    """
    cleaned: list[ExtractedTable] = []
    for table in tables:
        row_count = len(table.rows) + (1 if table.headers else 0)
        if row_count <= max_nav_rows and is_navigation_table(table):
            continue

        rows = [[_clean_cell(cell) for cell in row] for row in table.rows]
        rows = [row for row in rows if any(row)]
        if not rows:
            continue

        cleaned.append(
            ExtractedTable(
                caption=_clean_cell(table.caption) if table.caption else None,
                headers=[_clean_cell(header) for header in table.headers],
                rows=rows,
                total_rows=len(rows),
            )
        )
    return cleaned


def _select_markup(html: str, name: str) -> str | None:
    escaped = re.escape(name)
    pattern = re.compile(
        r"<select\b[^>]*\bname\s*=\s*"
        rf"""(?:"{escaped}"|'{escaped}'|{escaped}(?=[\s>]))"""
        r"[^>]*>(.*?)</select\s*>",
        re.IGNORECASE | re.DOTALL,
    )
    match = pattern.search(html or "")
    return match.group(1) if match else None


def find_named_select_options(html: str, name: str) -> list[SelectOption]:
    """Options of ``<select name=...>`` in document order (empty if absent).

    Options without a ``value`` attribute use their text as value; options with
    neither value nor text are skipped.
    """
    markup = _select_markup(html, name)
    if markup is None:
        return []

    options: list[SelectOption] = []
    for match in _OPTION_RE.finditer(markup):
        attrs, content = match.groups()
        text = strip_html(content)
        value_match = _VALUE_ATTR_RE.search(attrs)
        if value_match:
            raw_value = next(
                group for group in value_match.groups() if group is not None
            )
            value = html_lib.unescape(raw_value).strip()
        else:
            value = text
        if not value and not text:
            continue
        options.append(
            SelectOption(
                value=value,
                text=text or value,
                selected=bool(_SELECTED_ATTR_RE.search(attrs)),
            )
        )
    return options


def find_selected_option(html: str, name: str) -> SelectOption | None:
    """The ``selected`` option of a named select, if the page marks one."""
    options = find_named_select_options(html, name)
    return next((option for option in options if option.selected), None)


def find_input_value(html: str, name: str) -> str | None:
    """Value of ``<input name=...>``; attribute order may vary."""
    escaped = re.escape(name)
    patterns = (
        rf"""<input\b[^>]*\bname\s*=\s*["']?{escaped}(?=["'\s/>])"""
        r"""[^>]*\bvalue\s*=\s*["']([^"']*)["']""",
        r"""<input\b[^>]*\bvalue\s*=\s*["']([^"']*)["']"""
        rf"""[^>]*\bname\s*=\s*["']?{escaped}(?=["'\s/>])""",
    )
    for pattern in patterns:
        match = re.search(pattern, html or "", re.IGNORECASE)
        if match:
            return html_lib.unescape(match.group(1))
    return None


def find_keyed_tables(html: str, marker: str) -> list[KeyedTable]:
    """Tables whose text contains ``marker`` (a column-header phrase).

    Pages may hold several tables; only those mentioning the marker are data
    tables. The first row containing the marker is the header; rows above it
    (semester titles and the like) are reported as ``title``.
    """
    needle = marker.lower()
    found: list[KeyedTable] = []
    for markup in iter_table_markup(html):
        if needle not in strip_html(markup).lower():
            continue
        parsed = parse_table_rows(markup)
        if not parsed:
            continue

        header_index = next(
            (
                index
                for index, row in enumerate(parsed)
                if any(needle in cell.lower() for cell in row.cells)
            ),
            0,
        )
        title = None
        if header_index > 0:
            title = next(
                (
                    " ".join(row.cells).strip()
                    for row in parsed[:header_index]
                    if any(row.cells)
                ),
                None,
            )

        found.append(
            KeyedTable(
                title=title or None,
                header=parsed[header_index].cells,
                rows=[row.cells for row in parsed[header_index + 1:]],
            )
        )
    return found


def extract_rows_by_cell_class(html: str, css_class: str) -> list[list[str]]:
    """Rows built only from cells carrying ``css_class`` (e.g. ``text02``)."""
    rows: list[list[str]] = []
    for markup in iter_table_markup(html):
        for row in parse_table_rows(markup):
            cells = [
                cell
                for cell, classes in zip(row.cells, row.cell_classes)
                if css_class in classes.split()
            ]
            if cells:
                rows.append(cells)
    return rows
