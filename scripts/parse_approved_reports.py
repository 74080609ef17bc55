#!/usr/bin/env python3
"""Parse every approved accomplishment report that has not been parsed yet.

Usage:
    python scripts/parse_approved_reports.py               # Parse pending reports
    python scripts/parse_approved_reports.py --reset-failed
    python scripts/parse_approved_reports.py --report-id 42
"""

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from dotenv import load_dotenv  # noqa: E402

from app.arsd.config import load_config  # noqa: E402
from app.arsd.modules.accomplishment_reports.service import (  # noqa: E402
    parse_all_approved_reports,
    parse_approved_report,
    reset_failed_reports,
)
from app.arsd.storage import storage_from_config  # noqa: E402
from scripts._db_utils import script_session  # noqa: E402


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Parse approved accomplishment reports.")
    parser.add_argument("--report-id", type=int, help="Parse (or re-parse) a single report")
    parser.add_argument("--reset-failed", action="store_true", help="Clear failed parse state first")
    args = parser.parse_args(argv)

    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    config = load_config()
    storage = storage_from_config(config)
    with script_session(config["DATABASE_URL"]) as s:
        if args.reset_failed:
            print(f"Reset {reset_failed_reports(s)} failed reports.")

        if args.report_id:
            result = parse_approved_report(s, storage, args.report_id)
            if result.success:
                print(f"Report {args.report_id}: {result.records_saved} records saved {result.counts}")
                return 0
            print(f"Report {args.report_id} failed: {result.error}")
            return 1

        summary = parse_all_approved_reports(s, storage)

    print(f"Processed {summary['processed']} of {summary['total']} reports ({summary['failed']} failed).")
    for err in summary["errors"]:
        print(f"  report {err['report_id']}: {err['error']}")
    return 0 if not summary["failed"] else 1


if __name__ == "__main__":
    sys.exit(main())
