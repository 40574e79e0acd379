"""Shared fixtures: config, fake clock and a stub portal served through httpx.MockTransport."""

import random
from typing import Callable
from unittest.mock import AsyncMock
from urllib.parse import parse_qs

import httpx
import pytest

from src.portal_scraper.config import ScraperConfig
from src.portal_scraper.pages.base import ScrapeContext
from src.portal_scraper.session import PortalSession
from src.portal_scraper.state import StateManager

BASE_URL = "https://portal.test/j_aisis"
USERNAME = "student"
PASSWORD = "secret"

NAV_TABLE = "<table><tr><td><a href='logout.do'>Sign Out</a></td></tr></table>"

LOGIN_PAGE = """<html><body>
<form action="login.do" method="post">
  <input type="text" name="userName">
  <input type="password" name="password">
  <input type="hidden" name="rnd" value="r4nd0m">
</form></body></html>"""

WELCOME_PAGE = "<html><body><h1>AISIS</h1><p>welcome, student</p></body></html>"
LOGIN_FAILED_PAGE = "<html><body><p>Invalid username or password.</p></body></html>"

SCHEDULE_INDEX = f"""<html><body>{NAV_TABLE}
<form action="J_VCSC.do" method="post">
<select name="applicablePeriod">
  <option value="2024-1">2024-1</option>
  <option value="2024-2" selected>2024-2</option>
</select>
<select name="deptCode">
  <option value="ALL">ALL</option>
  <option value="DISCS">DISCS</option>
  <option value="MA">MA</option>
  <option value="PH">PH</option>
</select>
</form></body></html>"""

SCHEDULE_HEADER = (
    "<tr><td>Subject Code</td><td>Section</td><td>Course Title</td><td>Units</td><td>Time</td>"
    "<td>Room</td><td>Instructor</td><td>Max No</td><td>Lang</td><td>Level</td>"
    "<td>Free Slots</td><td>Remarks</td><td>S</td><td>P</td></tr>"
)

CURRICULUM_INDEX = """<html><body>
<select name="degCode">
  <option value="">-- Select --</option>
  <option value="BS CS_2020">BS Computer Science (2020)</option>
  <option value="AB EC_2019">AB Economics (2019)</option>
</select></body></html>"""

CLASS_SCHEDULE_PAGE = f"""<html><body>{NAV_TABLE}
<table>
<tr><th>Time</th><th>Mon</th><th>Tue</th><th>Wed</th></tr>
<tr><td>0800-0930</td><td>CSCI 30<br>Sec A<br>Intro to Computing<br>Dr. Jane Doe, PhD<br>Room 301</td><td></td><td>CSCI 30<br>Sec A<br>Intro to Computing<br>Room 301</td></tr>
<tr><td>1:00-2:30pm</td><td></td><td>MATH 21 (ONLINE)<br>Sec B<br>Calculus<br><br>PHYS 10<br>Sec C<br>Physics<br>Lab 2</td><td></td></tr>
<tr><td>TBA</td><td>ignored</td><td></td><td></td></tr>
</table></body></html>"""

GRADES_PAGE = """<html><body><table>
<tr><td class="header06">School Year</td><td class="header06">Sem</td><td class="header06">Program</td>
<td class="header06">Subject Code</td><td class="header06">Title</td><td class="header06">Units</td><td class="header06">Grade</td></tr>
<tr><td class="text02">2023</td><td class="text02">1</td><td class="text02">BS CS</td><td class="text02">CSCI 21</td>
<td class="text02">Intro to Programming</td><td class="text02">3</td><td class="text02">A</td></tr>
<tr><td class="text02">2023</td><td class="text02">2</td><td class="text02">BS CS</td><td class="text02">MATH 31.1</td>
<td class="text02">Calculus I</td><td class="text02">3</td><td class="text02">B+</td></tr>
</table></body></html>"""

SIMPLE_PAGE = f"""<html><body>{NAV_TABLE}
<table><caption>Hold Orders</caption>
<tr><th>Office</th><th>Reason</th></tr>
<tr><td>Registrar</td><td>Missing form</td></tr>
</table></body></html>"""


def schedule_results(dept: str) -> str:
    rows = "".join(
        f"<tr><td>{dept} {number}</td><td>{section}</td><td>{dept} Course {number}</td><td>3</td>"
        f"<td>M-TH 0800-0930</td><td>SEC-A{number}</td><td>DOE, JANE</td><td>40</td><td>ENG</td>"
        f"<td>U</td><td>5</td><td>-</td><td>N</td><td>-</td></tr>"
        for number, section in ((10, "A"), (11, "B"))
    )
    return f"<html><body>{NAV_TABLE}<table>{SCHEDULE_HEADER}{rows}</table></body></html>"


def curriculum_results(code: str) -> str:
    terms = []
    for term, course in (("First Year, First Semester", "CSCI 21"), ("First Year, Second Semester", "CSCI 22")):
        terms.append(
            f"<table><tr><td colspan='5'>{term}</td></tr>"
            "<tr><td>Cat No</td><td>Course Title</td><td>Units</td><td>Prerequisites</td><td>Category</td></tr>"
            f"<tr><td>{course}</td><td>{code} {course} Title</td><td>3</td><td></td><td>M</td></tr>"
            "<tr><td>Total</td></tr></table>"
        )
    return f"<html><body>{''.join(terms)}</body></html>"


def html_response(text: str, status: int = 200) -> httpx.Response:
    return httpx.Response(status, text=text, headers={"Content-Type": "text/html"})


def form_of(request: httpx.Request) -> dict[str, str]:
    return {key: values[0] for key, values in parse_qs(request.content.decode()).items()}


class FakeClock:
    """Monotonic clock advanced explicitly by the stub portal."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class PortalStub:
    """Minimal portal: routes by (method, page name), records every request."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.routes: dict[tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}

    def route(self, method: str, page: str, handler: Callable[[httpx.Request], httpx.Response] | str) -> None:
        if isinstance(handler, str):
            text = handler
            handler = lambda request: html_response(text)  # noqa: E731
        self.routes[(method, page)] = handler

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        page = request.url.path.rsplit("/", 1)[-1]
        handler = self.routes.get((request.method, page))
        if handler is None:
            return html_response("<html>Not Found</html>", status=404)
        return handler(request)

    def posted(self, page: str, field: str) -> list[str]:
        """Values of ``field`` in every POST to ``page``, in order."""
        return [
            form_of(request).get(field, "")
            for request in self.requests
            if request.method == "POST" and request.url.path.endswith(page)
        ]

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def _login_handler(request: httpx.Request) -> httpx.Response:
    form = form_of(request)
    if form.get("userName") == USERNAME and form.get("password") == PASSWORD:
        return html_response(WELCOME_PAGE)
    return html_response(LOGIN_FAILED_PAGE)


def _schedule_handler(request: httpx.Request) -> httpx.Response:
    return html_response(schedule_results(form_of(request)["deptCode"]))


def _curriculum_handler(request: httpx.Request) -> httpx.Response:
    return html_response(curriculum_results(form_of(request)["degCode"]))


def build_portal() -> PortalStub:
    """Stub serving every dataset page the scrapers know."""
    stub = PortalStub()
    stub.route("GET", "displayLogin.do", LOGIN_PAGE)
    stub.route("POST", "login.do", _login_handler)
    stub.route("GET", "J_VCSC.do", SCHEDULE_INDEX)
    stub.route("POST", "J_VCSC.do", _schedule_handler)
    stub.route("GET", "J_VOFC.do", CURRICULUM_INDEX)
    stub.route("POST", "J_VOFC.do", _curriculum_handler)
    stub.route("GET", "J_VG.do", GRADES_PAGE)
    stub.route("GET", "J_VMCS.do", CLASS_SCHEDULE_PAGE)
    for page in ("J_VADGR.do", "J_VCEC.do", "J_PTR.do", "J_STUD_INFO.do", "J_VIPS.do", "J_VHOR.do", "J_IFAT.do"):
        stub.route("GET", page, SIMPLE_PAGE)
    return stub


@pytest.fixture
def config() -> ScraperConfig:
    return ScraperConfig(
        _env_file=None,
        portal_base_url=BASE_URL,
        portal_user="",
        portal_pass="",
        debug_mode=False,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_sleep() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def portal() -> PortalStub:
    return build_portal()


@pytest.fixture
def state_manager(config: ScraperConfig) -> StateManager:
    return StateManager(config)


@pytest.fixture
def make_context(config, portal, state_manager, fake_sleep):
    """Factory for a ScrapeContext over the stub portal."""
    sessions: list[PortalSession] = []

    def _make(pause_requested: Callable[[], bool] = lambda: False) -> ScrapeContext:
        session = PortalSession(config, transport=portal.transport, sleep=fake_sleep)
        sessions.append(session)
        return ScrapeContext(
            session=session,
            state=state_manager,
            config=config,
            pause_requested=pause_requested,
            sleep=fake_sleep,
            rng=random.Random(7),
        )

    return _make
