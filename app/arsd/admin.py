from datetime import datetime, time, timedelta

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, url_for

from app.arsd.db import db_session
from app.arsd.models import AuditEvent
from app.arsd.modules.dashboard.service import LEADERBOARD_PERIODS, admin_summary, leaderboard
from app.arsd.rbac import default_dashboard_route, has_role, primary_role, require_permission
from app.arsd.storage import storage_from_config
from app.arsd.utils import current_user, parse_iso_date

bp = Blueprint("admin", __name__)


@bp.get("/")
@require_permission("admin.view")
def index():
    u = current_user()
    # Only superadmin and HR land here; everyone else has a working page of their own.
    if not has_role(u, "superadmin", "hr"):
        return redirect(default_dashboard_route(primary_role(u)))
    s = db_session()
    summary = admin_summary(s, storage_from_config(current_app.config))
    summary["env"] = current_app.config.get("ENV")
    return render_template("admin/index.html", summary=summary)


@bp.get("/me")
@require_permission("admin.view")
def me():
    user = g.current_user
    role_keys = sorted(user.role_keys)
    perm_keys = sorted({p.key for r in user.roles for p in r.permissions})
    return render_template("admin/me.html", user=user, role_keys=role_keys, perm_keys=perm_keys)


@bp.get("/leaderboard")
@require_permission("dashboard.leaderboard")
def leaderboard_view():
    period = (request.args.get("period") or "overall").strip()
    if period not in LEADERBOARD_PERIODS:
        period = "overall"
    board = leaderboard(db_session(), period)
    return render_template("admin/leaderboard.html", board=board, periods=list(LEADERBOARD_PERIODS))


@bp.get("/audit")
@require_permission("users.manage")
def audit_list():
    """Last 200 audit events, filterable by action, actor email and date range."""
    s = db_session()
    action = (request.args.get("action") or "").strip()
    actor_email = (request.args.get("actor_email") or "").strip()
    date_from = parse_iso_date(request.args.get("date_from"))
    date_to = parse_iso_date(request.args.get("date_to"))

    if (request.args.get("date_from") or "").strip() and not date_from:
        flash("date_from must be YYYY-MM-DD", "danger")
    if (request.args.get("date_to") or "").strip() and not date_to:
        flash("date_to must be YYYY-MM-DD", "danger")

    q = s.query(AuditEvent)
    if action:
        q = q.filter(AuditEvent.action.like(f"%{action}%"))
    if actor_email:
        q = q.filter(AuditEvent.actor_user_email.like(f"%{actor_email.lower()}%"))
    if date_from:
        q = q.filter(AuditEvent.created_at >= datetime.combine(date_from, time.min))
    if date_to:
        # inclusive end date
        q = q.filter(AuditEvent.created_at < datetime.combine(date_to + timedelta(days=1), time.min))

    events = q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(200).all()
    return render_template(
        "admin/audit/list.html",
        events=events,
        action=action,
        actor_email=actor_email,
        date_from=(request.args.get("date_from") or "").strip(),
        date_to=(request.args.get("date_to") or "").strip(),
    )


@bp.get("/login")
def login_redirect():
    return redirect(url_for("auth.login_get"))
