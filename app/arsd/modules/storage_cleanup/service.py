"""
Retention for uploaded accomplishment report files.

Once a report has been parsed successfully its spreadsheet is no longer needed;
files of weeks older than the retention window are removed from storage and
the report row keeps its parsed data with `file_deleted_at` set.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, time, timedelta
from typing import TYPE_CHECKING

from app.arsd.audit import record_event
from app.arsd.errors import ValidationError
from app.arsd.modules.accomplishment_reports.models import AccomplishmentReport
from app.arsd.storage import StorageError

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.arsd.models import User
    from app.arsd.storage import Storage

logger = logging.getLogger(__name__)

DEFAULT_WEEKS_TO_KEEP = 2
DEFAULT_BATCH_SIZE = 50


def validate_cleanup_options(weeks_to_keep: int, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
    if not 1 <= weeks_to_keep <= 52:
        raise ValidationError("weeks_to_keep must be between 1 and 52")
    if not 1 <= batch_size <= 100:
        raise ValidationError("batch_size must be between 1 and 100")


def week_ending(d: datetime | None = None) -> datetime:
    """Saturday 23:59:59 of the (Sunday-start) week containing d."""
    d = d or datetime.now()
    days_to_add = (5 - d.weekday()) % 7
    saturday = (d + timedelta(days=days_to_add)).date()
    return datetime.combine(saturday, time.max)


def cutoff_date(weeks_to_keep: int = DEFAULT_WEEKS_TO_KEEP, now: datetime | None = None) -> date:
    """Reports whose week ended on or before this date are eligible for cleanup."""
    return (week_ending(now) - timedelta(days=7 * weeks_to_keep)).date()


def find_old_parsed_reports(
    s: "Session", weeks_to_keep: int = DEFAULT_WEEKS_TO_KEEP, now: datetime | None = None
) -> list[AccomplishmentReport]:
    cutoff = cutoff_date(weeks_to_keep, now)
    reports = (
        s.query(AccomplishmentReport)
        .filter(
            AccomplishmentReport.parsed_status == "success",
            AccomplishmentReport.storage_key.isnot(None),
            AccomplishmentReport.file_deleted_at.is_(None),
            AccomplishmentReport.week_ending_date <= cutoff,
        )
        .order_by(AccomplishmentReport.week_ending_date.asc(), AccomplishmentReport.id.asc())
        .all()
    )
    logger.info("Found %d parsed report files older than %s (keeping %d weeks)", len(reports), cutoff, weeks_to_keep)
    return reports


@dataclass
class CleanupResult:
    success: bool
    files_deleted: int = 0
    storage_freed: int = 0
    errors: list[str] = field(default_factory=list)
    deleted_files: list[str] = field(default_factory=list)

    @property
    def storage_freed_mb(self) -> float:
        return round(self.storage_freed / 1024 / 1024, 2)

    def to_dict(self) -> dict:
        d = asdict(self)
        d["storage_freed_mb"] = self.storage_freed_mb
        return d


def cleanup_stats(s: "Session", weeks_to_keep: int = DEFAULT_WEEKS_TO_KEEP, now: datetime | None = None) -> dict:
    reports = find_old_parsed_reports(s, weeks_to_keep, now)
    total_size = sum(r.file_size or 0 for r in reports)
    return {
        "total_files_to_delete": len(reports),
        "total_size_to_free": total_size,
        "total_size_to_free_mb": round(total_size / 1024 / 1024, 2),
        "cutoff_date": cutoff_date(weeks_to_keep, now).isoformat(),
        "oldest_file": reports[0].week_ending_date.isoformat() if reports else None,
        "newest_file": reports[-1].week_ending_date.isoformat() if reports else None,
        "weeks_to_keep": weeks_to_keep,
    }


def cleanup_old_files(
    s: "Session",
    storage: "Storage",
    *,
    dry_run: bool = False,
    weeks_to_keep: int = DEFAULT_WEEKS_TO_KEEP,
    batch_size: int = DEFAULT_BATCH_SIZE,
    user: "User | None" = None,
    now: datetime | None = None,
) -> CleanupResult:
    """
    Delete stored files of old, successfully parsed reports. A dry run reports
    what would be removed without touching storage or the database. Each batch
    is flushed on its own; a file that cannot be deleted is reported and its
    row left untouched.
    """
    reports = find_old_parsed_reports(s, weeks_to_keep, now)
    if not reports:
        return CleanupResult(success=True)

    if dry_run:
        for r in reports:
            logger.info("Dry run: would delete %s (%s bytes, week %s)", r.file_name, r.file_size, r.week_ending_date)
        return CleanupResult(
            success=True,
            files_deleted=len(reports),
            storage_freed=sum(r.file_size or 0 for r in reports),
            deleted_files=[r.file_name for r in reports],
        )

    batch_size = max(1, batch_size)
    result = CleanupResult(success=True)
    deleted_at = datetime.utcnow()
    for start in range(0, len(reports), batch_size):
        batch = reports[start : start + batch_size]
        logger.info(
            "Cleanup batch %d/%d (%d files)",
            start // batch_size + 1,
            (len(reports) + batch_size - 1) // batch_size,
            len(batch),
        )
        for report in batch:
            try:
                storage.delete(report.storage_key)
            except (StorageError, OSError) as e:
                result.errors.append(f"Failed to delete {report.file_name}: {e}")
                logger.warning("Cleanup could not delete key=%s: %s", report.storage_key, e)
                continue
            report.storage_key = None
            report.file_deleted_at = deleted_at
            result.files_deleted += 1
            result.storage_freed += report.file_size or 0
            result.deleted_files.append(report.file_name)
        s.flush()

    result.success = not result.errors
    record_event(
        s,
        actor=user,
        action="storage.cleanup",
        entity_type="AccomplishmentReport",
        metadata={
            "weeks_to_keep": weeks_to_keep,
            "files_deleted": result.files_deleted,
            "storage_freed": result.storage_freed,
            "errors": len(result.errors),
        },
    )
    logger.info(
        "Storage cleanup completed: %d files deleted, %.2f MB freed, %d errors",
        result.files_deleted,
        result.storage_freed_mb,
        len(result.errors),
    )
    return result
