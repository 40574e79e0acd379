"""Collaborator interfaces: credentials, state persistence and observers.

The orchestrator only talks to these protocols. Default implementations read
credentials from the settings and persist state as a JSON file (see store.py).
"""

from typing import Callable, Protocol

from src.portal_scraper.config import ScraperConfig
from src.portal_scraper.models import Credentials, ScrapeState

ProgressObserver = Callable[[ScrapeState], None]


class CredentialStore(Protocol):
    async def load_credentials(self) -> Credentials | None: ...


class StateStore(Protocol):
    def save(self, state: ScrapeState) -> None: ...

    def load(self) -> ScrapeState | None: ...


class SettingsCredentialStore:
    """Credentials from PORTAL_USER / PORTAL_PASS (environment or .env)."""

    def __init__(self, config: ScraperConfig) -> None:
        self.config = config

    async def load_credentials(self) -> Credentials | None:
        if not self.config.portal_user or not self.config.portal_pass:
            return None
        return Credentials(
            username=self.config.portal_user, password=self.config.portal_pass
        )


class StaticCredentialStore:
    """Fixed credentials, e.g. passed on the command line."""

    def __init__(self, credentials: Credentials | None) -> None:
        self._credentials = credentials

    async def load_credentials(self) -> Credentials | None:
        return self._credentials
