"""Dataset registry: keys, labels, portal pages and the fixed scrape order."""

import re
from typing import Mapping

# Fixed page order of a run; selection order never changes it
DATASET_LABELS: dict[str, str] = {
    "scheduleOfClasses": "Schedule of Classes",
    "officialCurriculum": "Curriculum",
    "grades": "View Grades",
    "advisoryGrades": "Advisory Grades",
    "enrolledClasses": "Currently Enrolled",
    "classSchedule": "My Class Schedule",
    "tuitionReceipt": "Tuition Receipt",
    "studentInfo": "Student Information",
    "programOfStudy": "Program of Study",
    "holdOrders": "Hold Orders",
    "facultyAttendance": "Faculty Attendance",
}

PAGE_ORDER: tuple[str, ...] = tuple(DATASET_LABELS)

DATASET_PATHS: dict[str, str] = {
    "scheduleOfClasses": "J_VCSC.do",
    "officialCurriculum": "J_VOFC.do",
    "grades": "J_VG.do",
    "advisoryGrades": "J_VADGR.do",
    "enrolledClasses": "J_VCEC.do",
    "classSchedule": "J_VMCS.do",
    "tuitionReceipt": "J_PTR.do",
    "studentInfo": "J_STUD_INFO.do",
    "programOfStudy": "J_VIPS.do",
    "holdOrders": "J_VHOR.do",
    "facultyAttendance": "J_IFAT.do",
}

# Older clients used these selection keys
SELECTION_ALIASES: dict[str, str] = {
    "schedule": "scheduleOfClasses",
    "curriculum": "officialCurriculum",
    "viewGrades": "grades",
    "advisory": "advisoryGrades",
    "currentlyEnrolled": "enrolledClasses",
    "myClassSchedule": "classSchedule",
    "receipts": "tuitionReceipt",
    "profile": "studentInfo",
    "program": "programOfStudy",
    "holds": "holdOrders",
    "faculty": "facultyAttendance",
}

# Dataset rendered as a weekly calendar
WEEKLY_SCHEDULE_DATASET = "classSchedule"


def format_dataset_label(key: str | None) -> str:
    """Human label for a dataset key; unknown keys are title-cased from camelCase."""
    if not key:
        return "Dataset"
    if key in DATASET_LABELS:
        return DATASET_LABELS[key]
    spaced = re.sub(r"([A-Z])", r" \1", key).replace("_", " ").strip()
    return spaced[:1].upper() + spaced[1:]


def normalize_page_selection(pages: Mapping[str, object] | None) -> dict[str, bool]:
    """Map a selection (canonical keys or aliases) onto every known dataset."""
    pages = pages or {}
    selection = {key: bool(pages.get(key)) for key in PAGE_ORDER}
    for alias, key in SELECTION_ALIASES.items():
        if pages.get(alias):
            selection[key] = True
    return selection


def selected_keys(selection: Mapping[str, bool]) -> list[str]:
    """Selected dataset keys in the fixed page order."""
    return [key for key in PAGE_ORDER if selection.get(key)]
