from __future__ import annotations

from flask import Blueprint, abort, flash, redirect, render_template, request, url_for

from app.arsd.constants import PROJECT_STATUSES
from app.arsd.db import db_session
from app.arsd.errors import AppError
from app.arsd.modules.dashboard.service import project_analytics
from app.arsd.modules.projects.models import Project
from app.arsd.modules.projects.service import (
    available_users_for_role,
    create_project,
    delete_project,
    list_projects,
    next_project_code,
    projects_visible_to,
    update_project,
)
from app.arsd.rbac import require_permission, user_has_permission
from app.arsd.utils import current_user, parse_int

bp = Blueprint("projects", __name__)


def _form_payload() -> dict:
    return {
        "project_name": request.form.get("project_name"),
        "client": request.form.get("client"),
        "location": request.form.get("location"),
        "status": request.form.get("status") or "in_planning",
        "project_manager_id": parse_int(request.form.get("project_manager_id")),
        "project_inspector_id": parse_int(request.form.get("project_inspector_id")),
        "warehouseman_id": parse_int(request.form.get("warehouseman_id")),
    }


def _assignee_choices(s) -> dict:
    return {
        "managers": available_users_for_role(s, "project_manager"),
        "inspectors": available_users_for_role(s, "project_inspector"),
        "warehousemen": available_users_for_role(s, "warehouseman"),
    }


@bp.get("/projects")
@require_permission("admin.view")
def projects_list():
    s = db_session()
    u = current_user()
    filters = {
        "status": (request.args.get("status") or "").strip() or None,
        "search": (request.args.get("q") or "").strip(),
        "project_manager_id": parse_int(request.args.get("manager")),
    }
    if not user_has_permission(u, "projects.view_all"):
        filters["ids"] = [p.id for p in projects_visible_to(s, u)]
    projects = list_projects(s, filters)
    return render_template(
        "admin/projects/list.html",
        projects=projects,
        filters=filters,
        statuses=PROJECT_STATUSES,
    )


@bp.get("/projects/new")
@require_permission("projects.create")
def projects_new_get():
    s = db_session()
    return render_template(
        "admin/projects/form.html",
        project=None,
        suggested_code=next_project_code(s),
        statuses=PROJECT_STATUSES,
        **_assignee_choices(s),
    )


@bp.post("/projects/new")
@require_permission("projects.create")
def projects_new_post():
    s = db_session()
    u = current_user()
    payload = _form_payload()
    payload["project_code"] = request.form.get("project_code")
    try:
        project = create_project(s, payload, u)
    except AppError as e:
        s.rollback()
        flash(e.message, "danger")
        return redirect(url_for("projects.projects_new_get"))
    s.commit()
    flash(f"Project {project.project_code} created.", "success")
    return redirect(url_for("projects.projects_detail", project_id=project.id))


@bp.get("/projects/<int:project_id>")
@require_permission("admin.view")
def projects_detail(project_id: int):
    s = db_session()
    u = current_user()
    project = s.get(Project, project_id)
    if not project:
        abort(404)
    if not (user_has_permission(u, "projects.view_all") or project.is_assigned(u)):
        abort(403)
    return render_template(
        "admin/projects/detail.html",
        project=project,
        analytics=project_analytics(s, project),
        statuses=PROJECT_STATUSES,
    )


@bp.get("/projects/<int:project_id>/edit")
@require_permission("projects.edit")
def projects_edit_get(project_id: int):
    s = db_session()
    project = s.get(Project, project_id)
    if not project:
        abort(404)
    return render_template(
        "admin/projects/form.html",
        project=project,
        suggested_code=project.project_code,
        statuses=PROJECT_STATUSES,
        **_assignee_choices(s),
    )


@bp.post("/projects/<int:project_id>/edit")
@require_permission("projects.edit")
def projects_edit_post(project_id: int):
    s = db_session()
    u = current_user()
    project = s.get(Project, project_id)
    if not project:
        abort(404)
    reason = (request.form.get("reason") or "").strip() or None
    try:
        update_project(s, project, _form_payload(), u, reason=reason)
    except AppError as e:
        s.rollback()
        flash(e.message, "danger")
        return redirect(url_for("projects.projects_edit_get", project_id=project_id))
    s.commit()
    flash("Project updated.", "success")
    return redirect(url_for("projects.projects_detail", project_id=project_id))


@bp.post("/projects/<int:project_id>/delete")
@require_permission("projects.delete")
def projects_delete(project_id: int):
    s = db_session()
    u = current_user()
    project = s.get(Project, project_id)
    if not project:
        abort(404)
    code = project.project_code
    delete_project(s, project, u, reason=(request.form.get("reason") or "").strip() or None)
    s.commit()
    flash(f"Project {code} deleted.", "success")
    return redirect(url_for("projects.projects_list"))
