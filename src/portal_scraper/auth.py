"""Portal login handshake.

Stages:
  INIT -> FETCH_LOGIN_PAGE -> EXTRACT_TOKEN -> SUBMIT_CREDENTIALS
       -> VERIFY_SUCCESS -> AUTHENTICATED | FAILED

The login page sometimes carries a one-time ``rnd`` token; it is sent back
when present and omitted otherwise. Success is recognised by the welcome page
(body marker or final URL after redirects).

Only network-class failures (TransientError) are retried, with exponential
backoff (2s, 4s, 8s). Bad credentials fail immediately.
"""

import asyncio
from enum import Enum
from typing import Awaitable, Callable

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.portal_scraper.config import ScraperConfig
from src.portal_scraper.errors import AuthenticationError, TransientError
from src.portal_scraper.extract import find_input_value
from src.portal_scraper.logging import get_logger
from src.portal_scraper.session import PortalSession
from src.portal_scraper.utils import form_headers, origin_of

logger = get_logger(__name__)

SnapshotHook = Callable[[str, str], None]
# (error, backoff seconds) before each retry sleep
RetryHook = Callable[[BaseException | None, float], None]


class AuthStage(str, Enum):
    INIT = "init"
    FETCH_LOGIN_PAGE = "fetch_login_page"
    EXTRACT_TOKEN = "extract_token"
    SUBMIT_CREDENTIALS = "submit_credentials"
    VERIFY_SUCCESS = "verify_success"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


class Authenticator:
    """Runs the login state machine over a PortalSession."""

    LOGIN_PAGE_PATH = "displayLogin.do"
    LOGIN_SUBMIT_PATH = "login.do"
    TOKEN_FIELD = "rnd"
    SUCCESS_MARKER = "welcome"
    SUCCESS_PATH = "welcome.do"

    def __init__(
        self,
        session: PortalSession,
        config: ScraperConfig,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_snapshot: SnapshotHook | None = None,
        on_retry: RetryHook | None = None,
    ) -> None:
        self.session = session
        self.config = config
        self.stage = AuthStage.INIT
        self.attempts = 0
        self._sleep = sleep
        self._on_snapshot = on_snapshot
        self._on_retry = on_retry

    @property
    def is_authenticated(self) -> bool:
        return self.stage is AuthStage.AUTHENTICATED

    async def login(self, username: str, password: str) -> None:
        """Authenticate, retrying network failures with exponential backoff.

        Raises:
            AuthenticationError: Login page unavailable, credentials rejected or
                success could not be verified.
            TransientError: Network failures persisted past the retry budget.
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.config.login_max_retries + 1),
            wait=wait_exponential(
                multiplier=self.config.login_backoff_seconds, exp_base=2
            ),
            retry=retry_if_exception_type(TransientError),
            before_sleep=self._log_retry,
            sleep=self._sleep,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    await self._attempt(username, password)
        except Exception:
            self.stage = AuthStage.FAILED
            raise

    async def _attempt(self, username: str, password: str) -> None:
        self.attempts += 1
        logger.info("login_started", attempt=self.attempts)

        self.stage = AuthStage.FETCH_LOGIN_PAGE
        login_page_url = self.config.url_for(self.LOGIN_PAGE_PATH)
        page = await self.session.get(login_page_url)
        if not page.ok:
            raise AuthenticationError(f"Failed to load login page: {page.status}")
        self._snapshot("login_page", page.text)

        self.stage = AuthStage.EXTRACT_TOKEN
        token = find_input_value(page.text, self.TOKEN_FIELD)
        logger.debug("login_token", found=bool(token))

        self.stage = AuthStage.SUBMIT_CREDENTIALS
        form = {
            "userName": username,
            "password": password,
            "command": "login",
            "submit": "Sign in",
        }
        if token:
            form[self.TOKEN_FIELD] = token
        response = await self.session.post(
            self.config.url_for(self.LOGIN_SUBMIT_PATH),
            form,
            headers=form_headers(
                referer=login_page_url,
                origin=origin_of(self.config.portal_base_url),
            ),
        )
        logger.debug("login_response", status=response.status, final_url=response.url)
        if not response.ok:
            raise AuthenticationError(f"Login failed: {response.status}")
        self._snapshot("login_response", response.text)

        self.stage = AuthStage.VERIFY_SUCCESS
        verified = (
            self.SUCCESS_MARKER in response.text or self.SUCCESS_PATH in response.url
        )
        if not verified:
            raise AuthenticationError(
                "Login failed: Invalid credentials or unexpected response"
            )

        self.stage = AuthStage.AUTHENTICATED
        logger.info("login_succeeded", attempt=self.attempts)

    def _snapshot(self, name: str, html: str) -> None:
        if self._on_snapshot:
            self._on_snapshot(name, html)

    def _log_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            "login_retry_scheduled",
            attempt=retry_state.attempt_number,
            backoff_seconds=delay,
            error=str(error),
        )
        if self._on_retry:
            self._on_retry(error, delay)
