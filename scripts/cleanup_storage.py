#!/usr/bin/env python3
"""Delete stored files of old, successfully parsed accomplishment reports.

Usage:
    python scripts/cleanup_storage.py --stats            # What would be deleted
    python scripts/cleanup_storage.py --dry-run          # Log each file, change nothing
    python scripts/cleanup_storage.py --weeks 4 --yes    # Delete without confirmation
"""

import argparse
import logging
import sys
from pathlib import Path

# Ensure repo root is on sys.path when running as a script
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from dotenv import load_dotenv  # noqa: E402

from app.arsd.config import load_config  # noqa: E402
from app.arsd.errors import ValidationError  # noqa: E402
from app.arsd.modules.storage_cleanup.service import (  # noqa: E402
    DEFAULT_BATCH_SIZE,
    DEFAULT_WEEKS_TO_KEEP,
    cleanup_old_files,
    cleanup_stats,
    validate_cleanup_options,
)
from app.arsd.storage import storage_from_config  # noqa: E402
from scripts._db_utils import script_session  # noqa: E402


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Clean up parsed accomplishment report files.")
    parser.add_argument("--weeks", type=int, default=DEFAULT_WEEKS_TO_KEEP, help="Weeks of files to keep (1-52)")
    parser.add_argument("--batch-size", type=int, default=DEFAULT_BATCH_SIZE, help="Files per batch (1-100)")
    parser.add_argument("--dry-run", action="store_true", help="Report what would be deleted")
    parser.add_argument("--stats", action="store_true", help="Only print cleanup statistics")
    parser.add_argument("--yes", action="store_true", help="Skip confirmation prompt")
    args = parser.parse_args(argv)

    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        validate_cleanup_options(args.weeks, args.batch_size)
    except ValidationError as e:
        parser.error(e.message)

    config = load_config()
    with script_session(config["DATABASE_URL"]) as s:
        stats = cleanup_stats(s, args.weeks)
        print(f"Cutoff date:       {stats['cutoff_date']}")
        print(f"Files to delete:   {stats['total_files_to_delete']}")
        print(f"Storage to free:   {stats['total_size_to_free_mb']} MB")
        if stats["oldest_file"]:
            print(f"Weeks covered:     {stats['oldest_file']} .. {stats['newest_file']}")
        if args.stats or stats["total_files_to_delete"] == 0:
            return 0

        if not args.dry_run and not args.yes:
            answer = input(f"Delete {stats['total_files_to_delete']} files? [y/N] ").strip().lower()
            if answer not in ("y", "yes"):
                print("Aborted.")
                return 1

        result = cleanup_old_files(
            s,
            storage_from_config(config),
            dry_run=args.dry_run,
            weeks_to_keep=args.weeks,
            batch_size=args.batch_size,
        )

    verb = "Would delete" if args.dry_run else "Deleted"
    print(f"{verb} {result.files_deleted} files ({result.storage_freed_mb} MB).")
    for err in result.errors:
        print(f"  ERROR: {err}")
    return 0 if result.success else 2


if __name__ == "__main__":
    sys.exit(main())
