"""Dataset registry, selection and credential store tests."""

import pytest

from src.portal_scraper.config import ScraperConfig
from src.portal_scraper.datasets import (
    DATASET_PATHS,
    PAGE_ORDER,
    format_dataset_label,
    normalize_page_selection,
    selected_keys,
)
from src.portal_scraper.interfaces import SettingsCredentialStore
from src.portal_scraper.orchestrator import build_scrapers


def test_page_order_is_fixed():
    assert PAGE_ORDER == (
        "scheduleOfClasses",
        "officialCurriculum",
        "grades",
        "advisoryGrades",
        "enrolledClasses",
        "classSchedule",
        "tuitionReceipt",
        "studentInfo",
        "programOfStudy",
        "holdOrders",
        "facultyAttendance",
    )
    assert set(DATASET_PATHS) == set(PAGE_ORDER)


def test_selection_order_does_not_matter():
    selection = normalize_page_selection({"holdOrders": True, "grades": 1, "scheduleOfClasses": True})

    assert selected_keys(selection) == ["scheduleOfClasses", "grades", "holdOrders"]


def test_aliases_map_to_canonical_keys():
    selection = normalize_page_selection({"schedule": True, "myClassSchedule": True, "unknown": True})

    assert selected_keys(selection) == ["scheduleOfClasses", "classSchedule"]
    assert "unknown" not in selection
    assert set(selection) == set(PAGE_ORDER)


def test_empty_selection():
    assert selected_keys(normalize_page_selection(None)) == []


@pytest.mark.parametrize(
    "key, label",
    [
        ("scheduleOfClasses", "Schedule of Classes"),
        ("officialCurriculum", "Curriculum"),
        ("studentInfo", "Student Information"),
        ("someNewPage", "Some New Page"),
        ("", "Dataset"),
        (None, "Dataset"),
    ],
)
def test_format_dataset_label(key, label):
    assert format_dataset_label(key) == label


def test_every_dataset_has_a_scraper():
    scrapers = build_scrapers()

    assert list(scrapers) == ["scheduleOfClasses", "officialCurriculum", "grades", *PAGE_ORDER[3:]]
    assert scrapers["classSchedule"].derive_schedule
    assert not scrapers["holdOrders"].derive_schedule
    assert all(scrapers[key].path == DATASET_PATHS[key] for key in PAGE_ORDER)


@pytest.mark.asyncio
async def test_settings_credential_store(config):
    assert await SettingsCredentialStore(config).load_credentials() is None

    configured = ScraperConfig(_env_file=None, portal_user="student", portal_pass="secret")
    credentials = await SettingsCredentialStore(configured).load_credentials()

    assert (credentials.username, credentials.password) == ("student", "secret")


def test_url_for_joins_paths(config):
    assert config.url_for("J_VG.do") == "https://portal.test/j_aisis/J_VG.do"
    assert config.model_copy(update={"portal_base_url": "https://x.test/app/"}).url_for("/a.do") == "https://x.test/app/a.do"
