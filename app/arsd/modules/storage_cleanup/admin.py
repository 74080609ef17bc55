from __future__ import annotations

import secrets

from flask import Blueprint, current_app, flash, jsonify, redirect, render_template, request, url_for

from app.arsd.db import db_session
from app.arsd.errors import AppError
from app.arsd.modules.storage_cleanup.service import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_WEEKS_TO_KEEP,
    cleanup_old_files,
    cleanup_stats,
    validate_cleanup_options,
)
from app.arsd.rbac import require_permission
from app.arsd.storage import storage_from_config
from app.arsd.utils import current_user, parse_int

bp = Blueprint("cleanup", __name__)


def _bearer_ok() -> bool:
    expected = current_app.config.get("CRON_SECRET_TOKEN") or ""
    if not expected:
        return True
    header = request.headers.get("Authorization") or ""
    return secrets.compare_digest(header, f"Bearer {expected}")


@bp.route("/api/cron/cleanup-storage", methods=["GET", "POST"])
def cron_cleanup_storage():
    """Scheduled cleanup. Authenticated by CRON_SECRET_TOKEN rather than a session."""
    if not _bearer_ok():
        return jsonify({"success": False, "error": "Unauthorized"}), 401

    s = db_session()
    weeks = int(current_app.config.get("CLEANUP_WEEKS_TO_KEEP") or 1)
    options = {"dry_run": False, "weeks_to_keep": weeks, "batch_size": DEFAULT_BATCH_SIZE}
    stats = cleanup_stats(s, weeks)
    if stats["total_files_to_delete"] == 0:
        return jsonify(
            {
                "success": True,
                "message": "No files to cleanup - all files are within retention period",
                "stats": stats,
                "options": options,
            }
        )

    result = cleanup_old_files(
        s, storage_from_config(current_app.config), weeks_to_keep=weeks, batch_size=DEFAULT_BATCH_SIZE
    )
    s.commit()
    if result.success:
        message = f"Automated cleanup completed: {result.files_deleted} files deleted, {result.storage_freed_mb} MB freed"
    else:
        message = f"Automated cleanup failed: {', '.join(result.errors)}"
    return jsonify({**result.to_dict(), "message": message, "stats": stats, "options": options})


def _options_from_request() -> tuple[bool, int, int]:
    body = request.get_json(silent=True) if request.is_json else None
    source = body if isinstance(body, dict) else request.form
    dry_run_raw = source.get("dry_run", request.args.get("dry_run"))
    dry_run = dry_run_raw is True or str(dry_run_raw or "").strip().lower() in ("1", "true", "on")
    weeks = parse_int(str(source.get("weeks_to_keep") or request.args.get("weeks_to_keep") or "")) or DEFAULT_WEEKS_TO_KEEP
    batch = parse_int(str(source.get("batch_size") or request.args.get("batch_size") or "")) or DEFAULT_BATCH_SIZE
    return dry_run, weeks, batch


@bp.get("/api/storage/cleanup")
@require_permission("storage.cleanup")
def cleanup_stats_api():
    weeks = parse_int(request.args.get("weeks_to_keep")) or DEFAULT_WEEKS_TO_KEEP
    validate_cleanup_options(weeks)
    return jsonify({"success": True, "stats": cleanup_stats(db_session(), weeks)})


@bp.post("/api/storage/cleanup")
@require_permission("storage.cleanup")
def cleanup_run_api():
    dry_run, weeks, batch = _options_from_request()
    validate_cleanup_options(weeks, batch)
    s = db_session()
    stats = cleanup_stats(s, weeks)
    result = cleanup_old_files(
        s,
        storage_from_config(current_app.config),
        dry_run=dry_run,
        weeks_to_keep=weeks,
        batch_size=batch,
        user=current_user(),
    )
    s.commit()
    return jsonify({**result.to_dict(), "stats": stats, "dry_run": dry_run})


@bp.get("/admin/storage-cleanup")
@require_permission("storage.cleanup")
def cleanup_page():
    weeks = parse_int(request.args.get("weeks_to_keep")) or DEFAULT_WEEKS_TO_KEEP
    try:
        validate_cleanup_options(weeks)
    except AppError as e:
        flash(e.message, "danger")
        weeks = DEFAULT_WEEKS_TO_KEEP
    return render_template(
        "admin/storage_cleanup.html",
        stats=cleanup_stats(db_session(), weeks),
        weeks_to_keep=weeks,
    )


@bp.post("/admin/storage-cleanup")
@require_permission("storage.cleanup")
def cleanup_page_post():
    dry_run, weeks, batch = _options_from_request()
    try:
        validate_cleanup_options(weeks, batch)
    except AppError as e:
        flash(e.message, "danger")
        return redirect(url_for("cleanup.cleanup_page"))
    s = db_session()
    result = cleanup_old_files(
        s,
        storage_from_config(current_app.config),
        dry_run=dry_run,
        weeks_to_keep=weeks,
        batch_size=batch,
        user=current_user(),
    )
    s.commit()
    verb = "Would delete" if dry_run else "Deleted"
    flash(f"{verb} {result.files_deleted} files ({result.storage_freed_mb} MB).", "success" if result.success else "warning")
    for err in result.errors:
        flash(err, "danger")
    return redirect(url_for("cleanup.cleanup_page", weeks_to_keep=weeks))
