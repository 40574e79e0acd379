"""Scraper configuration loaded from environment variables.

Timing constants default to the values tuned against the live portal: a slow
legacy server (90s timeout), a slow-response breaker (3 x >5s -> 45-60s
cooldown) and polite inter-request delays.
"""

from pydantic import Field
from pydantic_settings import BaseSettings


class ScraperConfig(BaseSettings):
    """Scraper configuration loaded from environment variables.

    Settings are loaded from environment variables with sensible defaults.
    For local development, create a .env file in the project root.
    """

    # Portal settings (server-rendered JSP app, form posts only)
    portal_base_url: str = Field(
        default="https://aisis.ateneo.edu/j_aisis",
        description="Base URL of the student portal, without trailing slash",
    )
    portal_user: str = Field(
        default="",
        description="Portal username used by the default credential store",
    )
    portal_pass: str = Field(
        default="",
        description="Portal password used by the default credential store",
    )

    # Paths
    state_file: str = Field(
        default="data/state/scrape_state.json",
        description="JSON file holding the persisted scrape state",
    )

    # HTTP client
    request_timeout_seconds: float = Field(
        default=90.0,
        description="Per-request timeout; the portal can take a minute to answer",
    )
    slow_response_ms: int = Field(
        default=5000,
        description="Responses slower than this count towards the slow streak",
    )
    fast_response_ms: int = Field(
        default=2000,
        description="Responses faster than this reset the slow streak",
    )
    slow_streak_threshold: int = Field(
        default=3,
        description="Consecutive slow responses that trigger a cooldown",
    )
    cooldown_min_seconds: float = Field(default=45.0)
    cooldown_max_seconds: float = Field(default=60.0)

    # Pacing
    page_delay_min_seconds: float = Field(
        default=2.0,
        description="Lower bound of the randomized delay between paginated sub-items",
    )
    page_delay_max_seconds: float = Field(default=4.0)
    simple_page_delay_seconds: float = Field(
        default=1.0,
        description="Fixed delay after each single-page dataset",
    )

    # Login
    login_max_retries: int = Field(
        default=3,
        description="Retries after the first login attempt (network errors only)",
    )
    login_backoff_seconds: float = Field(
        default=2.0,
        description="First login backoff; doubles per retry (2s, 4s, 8s)",
    )

    # Diagnostics archives kept in the state
    log_history_limit: int = Field(default=500)
    har_max_entries: int = Field(default=200)
    har_max_body_length: int = Field(default=200_000)
    max_html_snapshots: int = Field(default=20)
    max_html_snapshot_size: int = Field(default=250_000)
    debug_mode: bool = Field(
        default=False,
        description="Capture an HTML snapshot of every fetched page",
    )

    # Extraction heuristics
    nav_table_max_rows: int = Field(
        default=3,
        description="Navigation-looking tables with at most this many rows are dropped",
    )

    # Logging
    log_json: bool = Field(
        default=False,
        description="Output logs in JSON format (for production)",
    )
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    model_config = {
        "env_prefix": "",
        "case_sensitive": False,
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    def url_for(self, path: str) -> str:
        """Join a portal page path (e.g. ``J_VCSC.do``) onto the base URL."""
        return f"{self.portal_base_url.rstrip('/')}/{path.lstrip('/')}"


# Singleton pattern
_config: ScraperConfig | None = None


def get_config() -> ScraperConfig:
    """Get the scraper configuration singleton.

    Returns:
        ScraperConfig: Scraper configuration instance
    """
    global _config
    if _config is None:
        _config = ScraperConfig()
    return _config
