from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import func, text

from app.arsd.constants import PROJECT_STATUSES
from app.arsd.models import User
from app.arsd.modules.accomplishment_reports.models import AccomplishmentReport
from app.arsd.modules.accomplishment_reports.service import latest_parsed_report
from app.arsd.modules.dashboard.calculations import calculate_project_stats, round2
from app.arsd.modules.projects.models import Project

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.arsd.storage import Storage

logger = logging.getLogger(__name__)

LEADERBOARD_PERIODS = {"week": 7, "month": 30, "overall": None}


def project_analytics(s: "Session", project: Project) -> dict:
    """Figures for the project detail page, from the latest successfully parsed report."""
    report = latest_parsed_report(s, project.id)
    if report is None:
        return {"report": None, "stats": None}
    cost = report.project_costs[0] if report.project_costs else None
    details = report.project_details[0] if report.project_details else None
    return {
        "report": report,
        "details": details,
        "stats": calculate_project_stats(cost, details),
        "monthly_costs": sorted(report.monthly_costs, key=lambda m: (m.month is None, m.month)),
        "man_hours": sorted(report.man_hours, key=lambda m: m.date),
        "materials": list(report.materials),
        "cost_items": list(report.cost_items),
        "purchase_orders": list(report.purchase_orders),
    }


def _latest_parsed_reports(s: "Session", since: date | None) -> dict[int, AccomplishmentReport]:
    q = s.query(AccomplishmentReport).filter(AccomplishmentReport.parsed_status == "success")
    if since is not None:
        q = q.filter(AccomplishmentReport.week_ending_date >= since)
    latest: dict[int, AccomplishmentReport] = {}
    for r in q.order_by(AccomplishmentReport.week_ending_date.desc()).all():
        latest.setdefault(r.project_id, r)
    return latest


def leaderboard(s: "Session", period: str = "overall", today: date | None = None) -> dict:
    """
    Rank projects by slippage (actual minus target progress, higher is better),
    project managers by their average slippage and projects by savings.
    """
    days = LEADERBOARD_PERIODS.get(period)
    since = (today or date.today()) - timedelta(days=days) if days else None
    rows = []
    for project_id, report in _latest_parsed_reports(s, since).items():
        project = report.project
        cost = report.project_costs[0] if report.project_costs else None
        details = report.project_details[0] if report.project_details else None
        if cost is None and details is None:
            continue
        stats = calculate_project_stats(cost, details)
        rows.append({"project": project, "report": report, "stats": stats})

    projects = sorted(rows, key=lambda r: (-r["stats"].slippage, r["project"].project_name))

    by_manager: dict[int, dict] = {}
    for r in rows:
        pm = r["project"].project_manager
        if pm is None:
            continue
        entry = by_manager.setdefault(pm.id, {"user": pm, "slippages": []})
        entry["slippages"].append(r["stats"].slippage)
    managers = [
        {
            "user": e["user"],
            "projects_count": len(e["slippages"]),
            "avg_slippage": round2(sum(e["slippages"]) / len(e["slippages"])),
        }
        for e in by_manager.values()
    ]
    managers.sort(key=lambda m: (-m["avg_slippage"], -m["projects_count"], m["user"].label))

    savings = sorted(
        (r for r in rows if r["stats"].savings),
        key=lambda r: -r["stats"].savings,
    )
    return {"period": period, "projects": projects, "managers": managers, "savings": savings}


def _db_healthy(s: "Session") -> bool:
    try:
        s.execute(text("SELECT 1"))
    except Exception:
        logger.exception("Database health check failed")
        return False
    return True


def admin_summary(s: "Session", storage: "Storage | None" = None) -> dict:
    counts = dict(s.query(Project.status, func.count(Project.id)).group_by(Project.status).all())
    status_counts = {key: counts.get(key, 0) for key in PROJECT_STATUSES}
    report_counts = dict(
        s.query(AccomplishmentReport.status, func.count(AccomplishmentReport.id))
        .group_by(AccomplishmentReport.status)
        .all()
    )
    return {
        "projects_total": sum(counts.values()),
        "projects_by_status": status_counts,
        "reports_pending": report_counts.get("pending", 0),
        "reports_approved": report_counts.get("approved", 0),
        "reports_parse_failed": s.query(AccomplishmentReport)
        .filter(AccomplishmentReport.parsed_status == "failed")
        .count(),
        "reports_unparsed": s.query(AccomplishmentReport)
        .filter(AccomplishmentReport.status == "approved", AccomplishmentReport.parsed_at.is_(None))
        .count(),
        "users_pending": s.query(User).filter(User.status == "pending").count(),
        "db_ok": _db_healthy(s),
        "storage_backend": type(storage).__name__ if storage is not None else None,
    }
