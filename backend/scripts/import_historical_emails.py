"""Import historical quotation emails in paced batches.

Usage (from repository root):
    python backend/scripts/import_historical_emails.py --since 2025-01-01

Usage (from backend directory):
    python scripts/import_historical_emails.py --since 2025-01-01 --until 2025-06-30
    # or
    python -m scripts.import_historical_emails --since 2025-01-01 --max-emails 200
"""

from __future__ import annotations

import argparse
import sys
from datetime import datetime, timezone
from pathlib import Path

# Make `pricememory` imports work whether the script is run from repo root or backend/.
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from pricememory.config import get_settings
from pricememory.logging_config import configure_logging
from pricememory.services.ingestion import get_ingestion_orchestrator


def _parse_date(value: str) -> datetime:
    try:
        parsed = datetime.strptime(value, "%Y-%m-%d")
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}") from exc
    return parsed.replace(tzinfo=timezone.utc)


def parse_args() -> argparse.Namespace:
    """Parse script CLI arguments."""

    settings = get_settings()
    parser = argparse.ArgumentParser(description="Backfill the price memory from historical quotation emails.")
    parser.add_argument("--since", type=_parse_date, required=True, help="First day to import (YYYY-MM-DD).")
    parser.add_argument("--until", type=_parse_date, default=None, help="Stop before this day (YYYY-MM-DD).")
    parser.add_argument(
        "--batch-size",
        type=int,
        default=settings.backfill_batch_size,
        help=f"Emails per batch (default: {settings.backfill_batch_size})",
    )
    parser.add_argument(
        "--pause-seconds",
        type=float,
        default=settings.backfill_pause_seconds,
        help=f"Pause between batches (default: {settings.backfill_pause_seconds})",
    )
    parser.add_argument(
        "--max-emails",
        type=int,
        default=settings.ingestion_max_messages,
        help=f"Upper bound on candidate emails (default: {settings.ingestion_max_messages})",
    )
    return parser.parse_args()


def main() -> int:
    """Run the backfill and print a short summary."""

    args = parse_args()
    configure_logging(get_settings().log_level)
    orchestrator = get_ingestion_orchestrator()
    summary = orchestrator.run_backfill(
        since=args.since,
        until=args.until,
        batch_size=args.batch_size,
        pause_seconds=args.pause_seconds,
        max_messages=args.max_emails,
    )

    print(f"Backfill {summary.status}")
    print(f"messages_seen={summary.messages_seen}")
    print(f"skipped_duplicates={summary.skipped_duplicates}")
    print(f"processed={summary.processed}")
    print(f"succeeded={summary.succeeded} partial={summary.partial} failed={summary.failed}")
    print(f"queued_for_review={summary.queued_for_review}")
    print(f"price_entries_created={summary.price_entries_created}")
    print(f"materials_created={summary.materials_created} clients_created={summary.clients_created}")
    if summary.detail:
        print(f"detail={summary.detail}")
    return 0 if summary.status == "completed" else 1


if __name__ == "__main__":
    raise SystemExit(main())
