from __future__ import annotations

import io
from datetime import date

from flask import Blueprint, abort, current_app, flash, redirect, render_template, request, send_file, url_for

from app.arsd.constants import REPORT_STATUSES
from app.arsd.db import db_session
from app.arsd.errors import AppError
from app.arsd.modules.accomplishment_reports.models import AccomplishmentReport
from app.arsd.modules.accomplishment_reports.service import (
    can_review,
    delete_report,
    format_file_size,
    list_reports,
    parse_approved_report,
    status_text,
    update_report_status,
    upload_report,
    week_range,
    weekly_upload_status,
)
from app.arsd.modules.projects.models import Project
from app.arsd.modules.projects.service import projects_visible_to
from app.arsd.rbac import require_permission, user_has_permission
from app.arsd.storage import StorageError, storage_from_config
from app.arsd.utils import current_user, parse_int, parse_iso_date

bp = Blueprint("reports", __name__)


@bp.app_template_filter("filesize")
def _filesize_filter(value) -> str:
    return format_file_size(value)


@bp.app_template_filter("report_status")
def _report_status_filter(value) -> str:
    return status_text(value)


def _load_report(report_id: int) -> AccomplishmentReport:
    s = db_session()
    u = current_user()
    report = s.get(AccomplishmentReport, report_id)
    if not report:
        abort(404)
    if not (user_has_permission(u, "reports.view_all") or u.id in (
        report.project.project_manager_id,
        report.project.project_inspector_id,
    )):
        abort(404)
    return report


@bp.get("/reports/uploads")
@require_permission("reports.upload")
def uploads():
    s = db_session()
    u = current_user()
    filters = {
        "project_id": parse_int(request.args.get("project_id")),
        "status": (request.args.get("status") or "").strip() or None,
        "week_ending_date": parse_iso_date(request.args.get("week")),
    }
    if user_has_permission(u, "reports.view_all"):
        projects = projects_visible_to(s, u)
    else:
        projects = [p for p in projects_visible_to(s, u) if u.id in (p.project_manager_id, p.project_inspector_id)]
    week_start, week_end = week_range(date.today())
    return render_template(
        "admin/reports/uploads.html",
        weekly=weekly_upload_status(s, u),
        reports=list_reports(s, u, filters),
        projects=projects,
        filters=filters,
        statuses=REPORT_STATUSES,
        current_week_start=week_start,
        current_week_ending=week_end,
    )


@bp.post("/reports/upload")
@require_permission("reports.upload")
def upload_post():
    s = db_session()
    u = current_user()
    project = s.get(Project, parse_int(request.form.get("project_id")) or 0)
    week = parse_iso_date(request.form.get("week_ending_date"))
    f = request.files.get("file")
    if not project:
        flash("Select a project.", "danger")
        return redirect(url_for("reports.uploads"))
    if not week:
        flash("Week ending date is required.", "danger")
        return redirect(url_for("reports.uploads"))
    if not f or not f.filename:
        flash("Please select a file to upload.", "danger")
        return redirect(url_for("reports.uploads"))

    try:
        report = upload_report(
            s,
            storage_from_config(current_app.config),
            project,
            f.read(),
            f.filename,
            week,
            u,
            notes=request.form.get("notes"),
            content_type=f.mimetype,
            max_bytes=current_app.config.get("REPORT_MAX_UPLOAD_BYTES"),
        )
    except AppError as e:
        s.rollback()
        flash(e.message, "danger")
        return redirect(url_for("reports.uploads"))
    s.commit()
    flash(f"Report for week ending {report.week_ending_date.isoformat()} uploaded.", "success")
    return redirect(url_for("reports.uploads"))


@bp.get("/reports/<int:report_id>")
@require_permission("reports.upload")
def report_detail(report_id: int):
    u = current_user()
    report = _load_report(report_id)
    return render_template(
        "admin/reports/detail.html",
        report=report,
        can_review=can_review(u, report.project),
        statuses=REPORT_STATUSES,
    )


@bp.get("/reports/<int:report_id>/download")
@require_permission("reports.upload")
def report_download(report_id: int):
    report = _load_report(report_id)
    if not report.has_file:
        flash("The file for this report has been removed by storage cleanup.", "warning")
        return redirect(url_for("reports.report_detail", report_id=report_id))
    storage = storage_from_config(current_app.config)
    try:
        data = storage.read_bytes(report.storage_key)
    except StorageError:
        abort(404)
    return send_file(
        io.BytesIO(data),
        mimetype=report.content_type or "application/octet-stream",
        as_attachment=True,
        download_name=report.file_name,
    )


@bp.post("/reports/<int:report_id>/status")
@require_permission("reports.review")
def report_status_post(report_id: int):
    s = db_session()
    u = current_user()
    report = _load_report(report_id)
    status = (request.form.get("status") or "").strip()
    try:
        result = update_report_status(
            s,
            storage_from_config(current_app.config),
            report,
            status,
            u,
            notes=request.form.get("notes"),
        )
    except AppError as e:
        s.rollback()
        flash(e.message, "danger")
        return redirect(url_for("reports.report_detail", report_id=report_id))
    s.commit()
    flash(f"Report marked {status_text(status).lower()}.", "success")
    if result is not None and not result.success:
        flash(f"Report approved but could not be parsed: {result.error}", "warning")
    elif result is not None:
        flash(f"Parsed {result.records_saved} records.", "info")
    return redirect(url_for("reports.report_detail", report_id=report_id))


@bp.post("/reports/<int:report_id>/parse")
@require_permission("reports.parse")
def report_parse_post(report_id: int):
    s = db_session()
    u = current_user()
    report = _load_report(report_id)
    result = parse_approved_report(s, storage_from_config(current_app.config), report.id, user=u)
    s.commit()
    if result.success:
        flash(f"Parsed {result.records_saved} records.", "success")
    else:
        flash(f"Parse failed: {result.error}", "danger")
    return redirect(url_for("reports.report_detail", report_id=report_id))


@bp.post("/reports/<int:report_id>/delete")
@require_permission("reports.upload")
def report_delete_post(report_id: int):
    s = db_session()
    u = current_user()
    report = _load_report(report_id)
    try:
        delete_report(s, storage_from_config(current_app.config), report, u)
    except AppError as e:
        s.rollback()
        flash(e.message, "danger")
        return redirect(url_for("reports.report_detail", report_id=report_id))
    s.commit()
    flash("Report deleted.", "success")
    return redirect(url_for("reports.uploads"))
