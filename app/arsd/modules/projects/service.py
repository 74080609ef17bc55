from __future__ import annotations

import re
from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import or_

from app.arsd.audit import record_event
from app.arsd.constants import PROJECT_STATUSES
from app.arsd.errors import ConflictError, NotFoundError, ValidationError
from app.arsd.models import Role, User
from app.arsd.modules.projects.models import Project
from app.arsd.rbac import has_role, user_has_permission

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

_CODE_RE = re.compile(r"^PRJ-(\d{4})-(\d+)$")

ASSIGNMENT_FIELDS = {
    "project_manager_id": "project_manager",
    "project_inspector_id": "project_inspector",
    "warehouseman_id": "warehouseman",
}


def next_project_code(s: "Session", year: int | None = None) -> str:
    year = year or date.today().year
    prefix = f"PRJ-{year}-"
    codes = s.query(Project.project_code).filter(Project.project_code.like(f"{prefix}%")).all()
    highest = 0
    for (code,) in codes:
        m = _CODE_RE.match(code or "")
        if m and int(m.group(1)) == year:
            highest = max(highest, int(m.group(2)))
    return f"{prefix}{highest + 1:04d}"


def validate_project_payload(payload: dict) -> list[str]:
    errors = []
    for key, label in (("project_name", "Project name"), ("client", "Client"), ("location", "Location")):
        if not (payload.get(key) or "").strip():
            errors.append(f"{label} is required.")
    status = (payload.get("status") or "in_planning").strip()
    if status not in PROJECT_STATUSES:
        errors.append(f"Invalid status: {status}.")
    return errors


def _check_assignee(s: "Session", user_id: int | None, role_key: str) -> int | None:
    if not user_id:
        return None
    u = s.get(User, user_id)
    if not u or role_key not in u.role_keys:
        raise ValidationError(f"User {user_id} is not a {role_key.replace('_', ' ')}.")
    return u.id


def list_projects(s: "Session", filters: dict | None = None) -> list[Project]:
    filters = filters or {}
    q = s.query(Project)
    if filters.get("status"):
        q = q.filter(Project.status == filters["status"])
    if filters.get("project_manager_id"):
        q = q.filter(Project.project_manager_id == filters["project_manager_id"])
    if filters.get("project_inspector_id"):
        q = q.filter(Project.project_inspector_id == filters["project_inspector_id"])
    if filters.get("warehouseman_id"):
        q = q.filter(Project.warehouseman_id == filters["warehouseman_id"])
    if filters.get("ids") is not None:
        q = q.filter(Project.id.in_(filters["ids"]))
    search = (filters.get("search") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(
            or_(
                Project.project_name.ilike(like),
                Project.client.ilike(like),
                Project.location.ilike(like),
                Project.project_code.ilike(like),
            )
        )
    return q.order_by(Project.created_at.desc(), Project.id.desc()).all()


def get_project(s: "Session", project_id: int) -> Project:
    project = s.get(Project, project_id)
    if not project:
        raise NotFoundError(f"Project {project_id} not found")
    return project


def projects_visible_to(s: "Session", user: User) -> list[Project]:
    """All projects for cross-project roles, otherwise only the user's assignments."""
    if user_has_permission(user, "projects.view_all") or has_role(user, "superadmin"):
        return list_projects(s)
    return (
        s.query(Project)
        .filter(
            or_(
                Project.project_manager_id == user.id,
                Project.project_inspector_id == user.id,
                Project.warehouseman_id == user.id,
            )
        )
        .order_by(Project.project_name.asc())
        .all()
    )


def available_users_for_role(s: "Session", role_key: str) -> list[User]:
    return (
        s.query(User)
        .join(User.roles)
        .filter(Role.key == role_key, User.is_active.is_(True), User.status == "active")
        .order_by(User.display_name.asc(), User.email.asc())
        .all()
    )


def create_project(s: "Session", payload: dict, user: User) -> Project:
    errors = validate_project_payload(payload)
    if errors:
        raise ValidationError(errors[0], errors=errors)

    code = (payload.get("project_code") or "").strip() or next_project_code(s)
    if s.query(Project).filter(Project.project_code == code).one_or_none():
        raise ConflictError(f"Project code {code} already exists.")

    now = datetime.utcnow()
    project = Project(
        project_code=code,
        project_name=payload["project_name"].strip(),
        client=payload["client"].strip(),
        location=payload["location"].strip(),
        status=(payload.get("status") or "in_planning").strip(),
        project_manager_id=_check_assignee(s, payload.get("project_manager_id"), "project_manager"),
        project_inspector_id=_check_assignee(s, payload.get("project_inspector_id"), "project_inspector"),
        warehouseman_id=_check_assignee(s, payload.get("warehouseman_id"), "warehouseman"),
        created_at=now,
        updated_at=now,
        created_by_user_id=user.id,
        updated_by_user_id=user.id,
    )
    s.add(project)
    s.flush()

    record_event(
        s,
        actor=user,
        action="project.create",
        entity_type="Project",
        entity_id=str(project.id),
        metadata={"project_code": project.project_code, "project_name": project.project_name},
    )
    return project


def update_project(s: "Session", project: Project, payload: dict, user: User, reason: str | None = None) -> Project:
    errors = validate_project_payload(
        {
            "project_name": payload.get("project_name", project.project_name),
            "client": payload.get("client", project.client),
            "location": payload.get("location", project.location),
            "status": payload.get("status", project.status),
        }
    )
    if errors:
        raise ValidationError(errors[0], errors=errors)

    changes: dict = {}

    def _set(attr: str, val):
        if val != getattr(project, attr):
            changes[attr] = {"old": getattr(project, attr), "new": val}
            setattr(project, attr, val)

    for attr in ("project_name", "client", "location", "status"):
        if attr in payload:
            _set(attr, (payload.get(attr) or "").strip())
    for attr, role_key in ASSIGNMENT_FIELDS.items():
        if attr in payload:
            _set(attr, _check_assignee(s, payload.get(attr), role_key))

    if not changes:
        return project

    project.updated_at = datetime.utcnow()
    project.updated_by_user_id = user.id
    record_event(
        s,
        actor=user,
        action="project.edit",
        entity_type="Project",
        entity_id=str(project.id),
        reason=reason,
        metadata={"changes": changes},
    )
    return project


def delete_project(s: "Session", project: Project, user: User, reason: str | None = None) -> None:
    from app.arsd.modules.accomplishment_reports.service import delete_report_file

    for report in list(project.reports):
        delete_report_file(report)

    record_event(
        s,
        actor=user,
        action="project.delete",
        entity_type="Project",
        entity_id=str(project.id),
        reason=reason,
        metadata={"project_code": project.project_code, "project_name": project.project_name},
    )
    s.delete(project)


def update_latest_accomplishment_date(s: "Session", project: Project, week_ending: date) -> None:
    # Re-approving an older week must not move the date backwards.
    if project.latest_accomplishment_update is None or week_ending > project.latest_accomplishment_update:
        project.latest_accomplishment_update = week_ending
        project.updated_at = datetime.utcnow()
