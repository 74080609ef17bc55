from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from pathlib import PurePath
from typing import TYPE_CHECKING

from sqlalchemy import or_
from werkzeug.utils import secure_filename

from app.arsd.audit import record_event
from app.arsd.constants import REPORT_ALLOWED_EXTENSIONS, REPORT_STATUSES
from app.arsd.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.arsd.modules.accomplishment_reports.models import PARSED_MODELS, AccomplishmentReport
from app.arsd.modules.accomplishment_reports.parsers.accomplishment import parse_accomplishment_report
from app.arsd.modules.projects.models import Project
from app.arsd.modules.projects.service import update_latest_accomplishment_date
from app.arsd.rbac import user_has_permission
from app.arsd.storage import StorageError

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.arsd.models import User
    from app.arsd.storage import Storage

logger = logging.getLogger(__name__)

REPORT_KEY_PREFIX = "accomplishment-reports"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def week_ending_date(d: date) -> date:
    """Saturday of d's Monday-based week. Sunday belongs to the week before."""
    monday = d - timedelta(days=d.weekday())
    return monday + timedelta(days=5)


def week_range(d: date) -> tuple[date, date]:
    saturday = week_ending_date(d)
    return saturday - timedelta(days=5), saturday


def status_text(status: str | None) -> str:
    return REPORT_STATUSES.get(status or "", "Unknown")


def format_file_size(size: int | None) -> str:
    n = float(size or 0)
    if n <= 0:
        return "0 Bytes"
    for unit in ("Bytes", "KB", "MB", "GB"):
        if n < 1024 or unit == "GB":
            if unit == "Bytes":
                return f"{int(n)} Bytes"
            return f"{round(n, 2):g} {unit}"
        n /= 1024
    return f"{n} GB"


def build_report_storage_key(project_code: str, filename: str, now: datetime | None = None) -> str:
    now = now or datetime.utcnow()
    safe_name = secure_filename(filename) or "report.xlsx"
    return f"{REPORT_KEY_PREFIX}/{project_code}-{int(now.timestamp() * 1000)}-{safe_name}"


def can_upload_for(user: "User", project: Project) -> bool:
    if user_has_permission(user, "reports.view_all"):
        return True
    if not user_has_permission(user, "reports.upload"):
        return False
    return user.id in (project.project_manager_id, project.project_inspector_id)


def can_review(user: "User", project: Project) -> bool:
    if not user_has_permission(user, "reports.review"):
        return False
    return user_has_permission(user, "reports.view_all") or user.id in (
        project.project_manager_id,
        project.project_inspector_id,
    )


def get_report(s: "Session", report_id: int) -> AccomplishmentReport:
    report = s.get(AccomplishmentReport, report_id)
    if not report:
        raise NotFoundError(f"Report {report_id} not found")
    return report


# ---------------------------------------------------------------------------
# Upload / review
# ---------------------------------------------------------------------------


def upload_report(
    s: "Session",
    storage: "Storage",
    project: Project,
    file_bytes: bytes,
    filename: str,
    week_ending: date,
    user: "User",
    *,
    notes: str | None = None,
    content_type: str | None = None,
    max_bytes: int | None = None,
) -> AccomplishmentReport:
    if not can_upload_for(user, project):
        raise ForbiddenError("You are not assigned to this project.")

    ext = PurePath(filename or "").suffix.lower()
    if ext not in REPORT_ALLOWED_EXTENSIONS:
        raise ValidationError("Invalid file type. Upload an Excel (.xlsx) or CSV file.")
    if not file_bytes:
        raise ValidationError("The uploaded file is empty.")
    if max_bytes and len(file_bytes) > max_bytes:
        raise ValidationError(f"File is too large. Maximum size is {format_file_size(max_bytes)}.")

    week_ending = week_ending_date(week_ending)
    existing = (
        s.query(AccomplishmentReport)
        .filter(
            AccomplishmentReport.project_id == project.id,
            AccomplishmentReport.week_ending_date == week_ending,
        )
        .one_or_none()
    )
    if existing:
        raise ConflictError(f"A report for the week ending {week_ending.isoformat()} already exists for this project.")

    key = build_report_storage_key(project.project_code, filename)
    storage.put_bytes(key, file_bytes, content_type=content_type)

    now = datetime.utcnow()
    report = AccomplishmentReport(
        project_id=project.id,
        uploaded_by_user_id=user.id,
        file_name=secure_filename(filename) or "report.xlsx",
        file_size=len(file_bytes),
        content_type=content_type,
        storage_key=key,
        upload_date=now,
        week_ending_date=week_ending,
        status="pending",
        notes=(notes or "").strip() or None,
        created_at=now,
        updated_at=now,
    )
    s.add(report)
    s.flush()

    record_event(
        s,
        actor=user,
        action="report.upload",
        entity_type="AccomplishmentReport",
        entity_id=str(report.id),
        metadata={
            "project_id": project.id,
            "week_ending_date": week_ending.isoformat(),
            "file_name": report.file_name,
            "file_size": report.file_size,
        },
    )
    return report


def list_reports(s: "Session", user: "User", filters: dict | None = None) -> list[AccomplishmentReport]:
    filters = filters or {}
    q = s.query(AccomplishmentReport).join(Project, AccomplishmentReport.project_id == Project.id)
    if not user_has_permission(user, "reports.view_all"):
        q = q.filter(
            or_(
                Project.project_manager_id == user.id,
                Project.project_inspector_id == user.id,
            )
        )
    if filters.get("project_id"):
        q = q.filter(AccomplishmentReport.project_id == filters["project_id"])
    if filters.get("status"):
        q = q.filter(AccomplishmentReport.status == filters["status"])
    if filters.get("week_ending_date"):
        q = q.filter(AccomplishmentReport.week_ending_date == week_ending_date(filters["week_ending_date"]))
    if filters.get("uploaded_by_user_id"):
        q = q.filter(AccomplishmentReport.uploaded_by_user_id == filters["uploaded_by_user_id"])
    return q.order_by(AccomplishmentReport.week_ending_date.desc(), AccomplishmentReport.upload_date.desc()).all()


def weekly_upload_status(s: "Session", user: "User", today: date | None = None) -> list[dict]:
    """Current-week report state for every project the user manages or inspects."""
    week_start, week_ending = week_range(today or date.today())
    projects = (
        s.query(Project)
        .filter(or_(Project.project_manager_id == user.id, Project.project_inspector_id == user.id))
        .order_by(Project.project_name.asc())
        .all()
    )
    if not projects:
        return []
    reports = {
        r.project_id: r
        for r in s.query(AccomplishmentReport)
        .filter(
            AccomplishmentReport.project_id.in_([p.id for p in projects]),
            AccomplishmentReport.week_ending_date == week_ending,
        )
        .all()
    }
    out = []
    for p in projects:
        report = reports.get(p.id)
        out.append(
            {
                "project": p,
                "week_start_date": week_start,
                "week_ending_date": week_ending,
                "uploaded": report is not None,
                "report": report,
                "status": report.status if report else None,
            }
        )
    return out


def update_report_status(
    s: "Session",
    storage: "Storage",
    report: AccomplishmentReport,
    status: str,
    user: "User",
    notes: str | None = None,
) -> "ParseResult | None":
    """
    Review a report. Approving moves the project's latest accomplishment date
    and parses the workbook; the parse outcome is returned (None otherwise).
    """
    if status not in REPORT_STATUSES:
        raise ValidationError(f"Invalid status: {status}")
    if not can_review(user, report.project):
        raise ForbiddenError("You cannot review reports for this project.")

    old = report.status
    report.status = status
    if notes is not None:
        report.notes = notes.strip() or None
    now = datetime.utcnow()
    report.reviewed_by_user_id = user.id
    report.reviewed_at = now
    report.updated_at = now

    record_event(
        s,
        actor=user,
        action="report.status_change",
        entity_type="AccomplishmentReport",
        entity_id=str(report.id),
        metadata={"old": old, "new": status},
    )

    if status != "approved":
        return None
    update_latest_accomplishment_date(s, report.project, report.week_ending_date)
    s.flush()
    return parse_approved_report(s, storage, report.id, user=user)


def delete_report_file(report: AccomplishmentReport, storage: "Storage | None" = None) -> None:
    if not report.storage_key:
        return
    if storage is None:
        from flask import current_app

        from app.arsd.storage import storage_from_config

        storage = storage_from_config(current_app.config)
    try:
        storage.delete(report.storage_key)
    except (StorageError, OSError) as e:
        logger.warning("Could not delete stored report key=%s: %s", report.storage_key, e)


def delete_report(s: "Session", storage: "Storage", report: AccomplishmentReport, user: "User") -> None:
    if not (user_has_permission(user, "reports.view_all") or report.uploaded_by_user_id == user.id):
        raise ForbiddenError("You cannot delete this report.")
    if report.status == "approved" and not user_has_permission(user, "reports.view_all"):
        raise ForbiddenError("Approved reports can only be deleted by an administrator.")
    delete_report_file(report, storage)
    record_event(
        s,
        actor=user,
        action="report.delete",
        entity_type="AccomplishmentReport",
        entity_id=str(report.id),
        metadata={"project_id": report.project_id, "week_ending_date": report.week_ending_date.isoformat()},
    )
    s.delete(report)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


@dataclass
class ParseResult:
    success: bool
    error: str | None = None
    records_saved: int = 0
    counts: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "error": self.error,
            "records_saved": self.records_saved,
            "counts": self.counts,
        }


def _clear_parsed_rows(s: "Session", report_id: int) -> None:
    for model in PARSED_MODELS.values():
        s.query(model).filter(model.accomplishment_report_id == report_id).delete(synchronize_session=False)


def _save_parsed_rows(s: "Session", report: AccomplishmentReport, parsed) -> int:
    saved = 0
    for name, model in PARSED_MODELS.items():
        for row in getattr(parsed, name):
            s.add(model(accomplishment_report_id=report.id, **row))
            saved += 1
    return saved


def parse_approved_report(
    s: "Session",
    storage: "Storage",
    report_id: int,
    *,
    user: "User | None" = None,
) -> ParseResult:
    from app.arsd.modules.warehouse.service import replace_ipow_items

    report = s.get(AccomplishmentReport, report_id)
    if not report:
        return ParseResult(success=False, error=f"Report {report_id} not found")
    if report.status != "approved":
        return ParseResult(success=False, error="Only approved reports can be parsed")
    if not report.storage_key:
        return ParseResult(success=False, error="Report file is no longer available")

    project = report.project
    try:
        with s.begin_nested():
            file_bytes = storage.read_bytes(report.storage_key)
            parsed = parse_accomplishment_report(
                file_bytes,
                report.file_name,
                default_project_code=project.parsed_project_id or project.project_code,
            )
            _clear_parsed_rows(s, report.id)
            saved = _save_parsed_rows(s, report, parsed)
            if parsed.ipow_items:
                replace_ipow_items(s, project.id, parsed.ipow_items, user)
            s.flush()
    except Exception as e:
        logger.exception("Parsing report_id=%s failed", report_id)
        report.parsed_at = datetime.utcnow()
        report.parsed_status = "failed"
        report.parse_error = str(e) or e.__class__.__name__
        record_event(
            s,
            actor=user,
            action="report.parse_failed",
            entity_type="AccomplishmentReport",
            entity_id=str(report.id),
            metadata={"error": report.parse_error},
        )
        return ParseResult(success=False, error=report.parse_error)

    report.parsed_at = datetime.utcnow()
    report.parsed_status = "success"
    report.parse_error = None
    project.has_parsed_data = True
    if parsed.project_code:
        project.parsed_project_id = parsed.project_code

    counts = parsed.counts()
    record_event(
        s,
        actor=user,
        action="report.parse",
        entity_type="AccomplishmentReport",
        entity_id=str(report.id),
        metadata={"counts": counts, "ipow_items": len(parsed.ipow_items)},
    )
    logger.info("Parsed report_id=%s records=%s", report.id, saved)
    return ParseResult(success=True, records_saved=saved, counts=counts)


def parse_all_approved_reports(s: "Session", storage: "Storage", *, user: "User | None" = None) -> dict:
    pending = (
        s.query(AccomplishmentReport)
        .filter(AccomplishmentReport.status == "approved", AccomplishmentReport.parsed_at.is_(None))
        .order_by(AccomplishmentReport.week_ending_date.asc())
        .all()
    )
    processed = 0
    errors: list[dict] = []
    for report in pending:
        result = parse_approved_report(s, storage, report.id, user=user)
        if result.success:
            processed += 1
        else:
            errors.append({"report_id": report.id, "error": result.error})
    return {"total": len(pending), "processed": processed, "failed": len(errors), "errors": errors}


def reset_failed_reports(s: "Session", *, user: "User | None" = None) -> int:
    failed = (
        s.query(AccomplishmentReport)
        .filter(AccomplishmentReport.status == "approved", AccomplishmentReport.parsed_status == "failed")
        .all()
    )
    for report in failed:
        report.parsed_at = None
        report.parsed_status = None
        report.parse_error = None
    if failed:
        record_event(
            s,
            actor=user,
            action="report.reset_failed",
            entity_type="AccomplishmentReport",
            entity_id=None,
            metadata={"report_ids": [r.id for r in failed]},
        )
    return len(failed)


def get_report_with_data(s: "Session", report_id: int) -> dict:
    report = get_report(s, report_id)
    data = report.to_dict()
    for name in PARSED_MODELS:
        rows = getattr(report, name)
        data[name] = [
            {c.name: getattr(r, c.name) for c in r.__table__.columns} for r in rows
        ]
    return data


def latest_parsed_report(s: "Session", project_id: int) -> AccomplishmentReport | None:
    return (
        s.query(AccomplishmentReport)
        .filter(
            AccomplishmentReport.project_id == project_id,
            AccomplishmentReport.parsed_status == "success",
        )
        .order_by(AccomplishmentReport.week_ending_date.desc())
        .first()
    )
