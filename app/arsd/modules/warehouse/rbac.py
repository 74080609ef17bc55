"""Role rules for warehouse documents."""
from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import or_

from app.arsd.models import User
from app.arsd.modules.projects.models import Project
from app.arsd.rbac import has_role

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

UNLOCK_ROLES = ("superadmin", "project_inspector", "project_manager")
VIEW_ALL_ROLES = ("superadmin", "purchasing", "material_control")
PO_EDIT_ROLES = ("superadmin", "material_control")


def can_create_dr_release(user: User | None) -> bool:
    return has_role(user, "warehouseman")


def can_unlock_dr_release(user: User | None) -> bool:
    return has_role(user, *UNLOCK_ROLES)


def can_lock_dr_release(user: User | None) -> bool:
    return can_unlock_dr_release(user) or has_role(user, "warehouseman")


def can_view_all_projects(user: User | None) -> bool:
    return has_role(user, *VIEW_ALL_ROLES)


def can_edit_po(user: User | None) -> bool:
    return has_role(user, *PO_EDIT_ROLES)


def accessible_project_ids(s: "Session", user: User) -> set[int] | None:
    """None means every project."""
    if can_view_all_projects(user):
        return None
    rows = (
        s.query(Project.id)
        .filter(
            or_(
                Project.project_manager_id == user.id,
                Project.project_inspector_id == user.id,
                Project.warehouseman_id == user.id,
            )
        )
        .all()
    )
    return {r[0] for r in rows}


def can_access_project(s: "Session", user: User, project_id: int) -> bool:
    ids = accessible_project_ids(s, user)
    return ids is None or project_id in ids
