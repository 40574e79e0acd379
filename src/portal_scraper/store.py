"""JSON file persistence for ScrapeState.

Writes are atomic (temp file, fsync, os.replace) so an interrupted write never
leaves a half-written state file. A corrupted file is copied aside and
ignored, so the next run starts fresh instead of crashing.
"""

import json
import os
import shutil
from datetime import datetime
from pathlib import Path

from pydantic import ValidationError

from src.portal_scraper.logging import get_logger
from src.portal_scraper.models import ScrapeState

logger = get_logger(__name__)


class JsonStateStore:
    """Persists the scrape state to a single JSON file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def load(self) -> ScrapeState | None:
        """Load the last persisted state, or None if missing/corrupted."""
        if not self.path.exists():
            logger.debug(
                "state_load_skipped", reason="file_not_found", path=str(self.path)
            )
            return None

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            state = ScrapeState.model_validate(data)
        except (json.JSONDecodeError, ValidationError, UnicodeDecodeError) as e:
            logger.warning("state_file_corrupted", path=str(self.path), error=str(e))
            self._backup_corrupted()
            return None

        logger.info("state_loaded", path=str(self.path), session_id=state.session_id)
        return state

    def save(self, state: ScrapeState) -> None:
        """Atomically write the state to disk."""
        payload = json.dumps(state.to_json_dict(), ensure_ascii=False)
        temp_file = self.path.with_suffix(".tmp")
        try:
            with open(temp_file, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_file, self.path)
        except OSError:
            if temp_file.exists():
                temp_file.unlink()
            raise

    def _backup_corrupted(self) -> None:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        backup_path = self.path.with_name(
            f"{self.path.stem}.corrupted.{timestamp}.json"
        )
        shutil.copy2(self.path, backup_path)
        logger.info("state_file_backed_up", path=str(backup_path))


class MemoryStateStore:
    """In-process store; keeps the last saved snapshot."""

    def __init__(self, state: ScrapeState | None = None) -> None:
        self.saved: ScrapeState | None = state
        self.save_count = 0

    def load(self) -> ScrapeState | None:
        return self.saved.model_copy(deep=True) if self.saved else None

    def save(self, state: ScrapeState) -> None:
        self.saved = state
        self.save_count += 1
