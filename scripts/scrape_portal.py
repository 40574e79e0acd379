"""Scrape the student portal into the persisted scrape state.

Standalone CLI around ScrapeOrchestrator. Logs in with PORTAL_USER /
PORTAL_PASS (.env), scrapes the selected datasets and prints a JSON run
summary on stdout. Ctrl+C pauses gracefully (checkpoint saved); --resume
continues a paused run.

Run with:  python scripts/scrape_portal.py
Subset:    python scripts/scrape_portal.py --pages scheduleOfClasses,grades
Resume:    python scripts/scrape_portal.py --resume
Export:    python scripts/scrape_portal.py --export-only --dump classSchedule --output data/schedule.json
HAR:       python scripts/scrape_portal.py --export-only --har data/portal.har

Dataset keys: scheduleOfClasses, officialCurriculum, grades, advisoryGrades,
              enrolledClasses, classSchedule, tuitionReceipt, studentInfo,
              programOfStudy, holdOrders, facultyAttendance

Exit codes:
  0 = completed (or paused, or export written)
  1 = error (message on stderr)
"""

import argparse
import asyncio
import json
import os
import signal
import sys
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Add project root to path for src imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from src.portal_scraper.config import get_config  # noqa: E402
from src.portal_scraper.datasets import PAGE_ORDER  # noqa: E402
from src.portal_scraper.logging import setup_logging  # noqa: E402
from src.portal_scraper.orchestrator import ScrapeOrchestrator  # noqa: E402
from src.portal_scraper.store import JsonStateStore  # noqa: E402


def _log(msg: str) -> None:
    """Write diagnostic messages to stderr so stdout stays clean for JSON."""
    print(msg, file=sys.stderr)


def _parse_args() -> argparse.Namespace:
    """Parse CLI arguments using argparse."""
    parser = argparse.ArgumentParser(
        description="Scrape the student portal with pause/resume support.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--pages",
        type=str,
        default=",".join(PAGE_ORDER),
        help="Comma-separated dataset keys (aliases accepted). Default: all.",
    )
    parser.add_argument(
        "--resume",
        action="store_true",
        help="Resume the paused run stored in the state file.",
    )
    parser.add_argument(
        "--export-only",
        action="store_true",
        help="Do not scrape; only export from the persisted state.",
    )
    parser.add_argument(
        "--state-file",
        type=str,
        default=None,
        help="State file path (default: STATE_FILE setting).",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Capture an HTML snapshot of every fetched page.",
    )
    parser.add_argument(
        "--dump",
        type=str,
        default=None,
        metavar="KEY",
        help="Write the aggregated table of dataset KEY as JSON.",
    )
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Output file for --dump. Default: data/{KEY}.json",
    )
    parser.add_argument(
        "--har",
        type=str,
        default=None,
        metavar="PATH",
        help="Write the request archive as a HAR file.",
    )
    return parser.parse_args()


def _jsonable(value):
    """Aggregated tables are models or lists of models."""
    if isinstance(value, list):
        return [_jsonable(item) for item in value]
    if hasattr(value, "to_json_dict"):
        return value.to_json_dict()
    return value


def _write_json(path: Path, data) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")


def _summary(orchestrator: ScrapeOrchestrator) -> dict:
    state = orchestrator.get_state()
    datasets = {}
    for key, data in state.scraped_data.items():
        if isinstance(data, list):
            datasets[key] = len(data)
        else:
            datasets[key] = sum(table.get("totalRows", 0) for table in data.get("tables", []))
    return {
        "sessionId": state.session_id,
        "progress": state.progress,
        "isCompleted": state.is_completed,
        "isPaused": state.is_paused,
        "currentStep": state.current_step,
        "errors": [error.to_json_dict() for error in state.errors],
        "datasets": datasets,
        "metrics": state.metrics.to_json_dict(),
    }


async def main(args: argparse.Namespace) -> int:
    config = get_config()
    overrides = {}
    if args.state_file:
        overrides["state_file"] = args.state_file
    if args.debug:
        overrides["debug_mode"] = True
    if overrides:
        config = config.model_copy(update=overrides)
    setup_logging(json_output=config.log_json, log_level=config.log_level)

    orchestrator = ScrapeOrchestrator(config, store=JsonStateStore(config.state_file))
    _log(f"scrape_portal: state file {config.state_file}")

    if not args.export_only:
        if args.resume:
            result = await orchestrator.resume()
        else:
            selection = {key.strip(): True for key in args.pages.split(",") if key.strip()}
            result = await orchestrator.start(selection)
        if not result.ok:
            _log(f"  ERROR: {result.error}")
            await orchestrator.aclose()
            return 1

        loop = asyncio.get_running_loop()
        # Ctrl+C pauses at the next poll point instead of killing the run
        loop.add_signal_handler(signal.SIGINT, lambda: asyncio.ensure_future(orchestrator.stop()))
        _log("  Scraping... (Ctrl+C pauses, resume later with --resume)")
        try:
            await orchestrator.wait()
        finally:
            loop.remove_signal_handler(signal.SIGINT)

    if args.dump:
        output_path = Path(args.output or f"data/{args.dump}.json")
        _write_json(output_path, _jsonable(orchestrator.get_aggregated_table(args.dump)))
        _log(f"  Wrote {args.dump} -> {output_path}")

    if args.har:
        _write_json(Path(args.har), orchestrator.export_har())
        _log(f"  Wrote HAR ({len(orchestrator.state.har_entries)} entries) -> {args.har}")

    await orchestrator.aclose()

    summary = _summary(orchestrator)
    print(json.dumps(summary, indent=2))
    if orchestrator.state.is_paused:
        _log("scrape_portal: paused")
        return 0
    if args.export_only or orchestrator.state.is_completed:
        _log("scrape_portal: done")
        return 0
    _log(f"scrape_portal: failed ({orchestrator.state.current_step})")
    return 1


if __name__ == "__main__":
    args = _parse_args()
    try:
        sys.exit(asyncio.run(main(args)))
    except Exception as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)
