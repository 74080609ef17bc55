from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from app.arsd.db import db_session
from app.arsd.modules.accomplishment_reports.models import AccomplishmentReport
from app.arsd.modules.accomplishment_reports.service import (
    get_report_with_data,
    parse_all_approved_reports,
    parse_approved_report,
    reset_failed_reports,
)
from app.arsd.rbac import require_permission
from app.arsd.storage import storage_from_config
from app.arsd.utils import current_user, parse_int

bp = Blueprint("reports_api", __name__)


@bp.post("/accomplishment-reports/parse-approved")
@require_permission("reports.parse")
def parse_approved():
    """Parse one approved report (reportId) or every approved report not parsed yet."""
    s = db_session()
    u = current_user()
    body = request.get_json(silent=True) or {}
    storage = storage_from_config(current_app.config)

    report_id = parse_int(body.get("reportId") if isinstance(body, dict) else None)
    if report_id:
        result = parse_approved_report(s, storage, report_id, user=u)
        s.commit()
        payload = {"reportId": report_id, **result.to_dict()}
        return jsonify(payload), (200 if result.success else 422)

    summary = parse_all_approved_reports(s, storage, user=u)
    s.commit()
    return jsonify({"success": summary["failed"] == 0, **summary})


@bp.get("/accomplishment-reports/parse-approved")
@require_permission("reports.parse")
def parse_status():
    s = db_session()
    q = s.query(AccomplishmentReport).filter(AccomplishmentReport.status == "approved")
    total = q.count()
    recent = q.order_by(AccomplishmentReport.updated_at.desc()).limit(20).all()
    return jsonify(
        {
            "total": total,
            "unparsed": q.filter(AccomplishmentReport.parsed_at.is_(None)).count(),
            "reports": [r.to_dict() for r in recent],
        }
    )


@bp.get("/accomplishment-reports/<int:report_id>")
@require_permission("reports.view_all")
def report_data(report_id: int):
    return jsonify(get_report_with_data(db_session(), report_id))


@bp.post("/reset-failed-reports")
@require_permission("reports.parse")
def reset_failed():
    s = db_session()
    count = reset_failed_reports(s, user=current_user())
    s.commit()
    return jsonify({"success": True, "reset": count})
