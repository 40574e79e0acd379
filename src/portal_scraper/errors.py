"""Error hierarchy for scraping retry classification.

This hierarchy lets tenacity retry predicates classify transient failures
(should retry) vs permanent failures (should not retry), and lets the
orchestrator decide how far a failure propagates:

    sub-item failure  -> recorded, next sub-item
    dataset failure   -> recorded, next dataset
    AuthenticationError / ConfigurationError -> run aborted

Example usage with tenacity:
    AsyncRetrying(
        retry=retry_if_exception_type(TransientError),
        stop=stop_after_attempt(4),
    )
"""


class ScrapingError(Exception):
    """Base exception for all scraping errors."""

    pass


class TransientError(ScrapingError):
    """Temporary failure that may succeed on retry.

    Examples: network timeouts, connection resets, 503 Service Unavailable.
    """

    pass


class NetworkTimeout(TransientError):
    """Request exceeded the configured timeout and was cancelled."""

    def __init__(self, url: str, timeout_seconds: float) -> None:
        super().__init__(f"Request timeout after {timeout_seconds:g}s: {url}")
        self.url = url
        self.timeout_seconds = timeout_seconds


class NetworkFailure(TransientError):
    """Connection-level failure or unexpected HTTP status while fetching."""

    def __init__(
        self, message: str, *, url: str | None = None, status: int | None = None
    ) -> None:
        super().__init__(message)
        self.url = url
        self.status = status


class PermanentError(ScrapingError):
    """Failure that won't succeed on retry.

    Examples: missing required table, data validation failure.
    """

    pass


class AuthenticationError(PermanentError):
    """Invalid credentials or unverifiable login - aborts the whole run.

    Requires human intervention, cannot be fixed by retry.
    """

    pass


class ConfigurationError(PermanentError):
    """Run cannot start, e.g. no stored credentials."""

    pass


class ParseError(PermanentError):
    """Expected table or column not found in a page.

    Non-fatal: the affected sub-item or dataset yields empty/partial data.
    """

    pass


class PauseRequested(Exception):
    """Control-flow signal raised at a pause poll point.

    Not a ScrapingError: it never lands in the error list. Carries the cursor
    the interrupted dataset should resume from.
    """

    def __init__(
        self,
        dataset: str,
        next_index: int = 0,
        total: int = 0,
        next_key: str | None = None,
    ) -> None:
        super().__init__(f"Pause requested during {dataset} at index {next_index}")
        self.dataset = dataset
        self.next_index = next_index
        self.total = total
        self.next_key = next_key
