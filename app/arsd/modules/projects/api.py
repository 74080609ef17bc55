from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.arsd.db import db_session
from app.arsd.modules.projects.service import list_projects, projects_visible_to
from app.arsd.rbac import require_permission, user_has_permission
from app.arsd.utils import current_user

bp = Blueprint("projects_api", __name__)


@bp.get("/projects")
@require_permission("admin.view")
def api_projects():
    s = db_session()
    u = current_user()
    filters = {
        "status": (request.args.get("status") or "").strip() or None,
        "search": (request.args.get("search") or "").strip(),
    }
    if not user_has_permission(u, "projects.view_all"):
        filters["ids"] = [p.id for p in projects_visible_to(s, u)]
    projects = list_projects(s, filters)
    return jsonify({"projects": [p.to_dict() for p in projects], "total": len(projects)})
