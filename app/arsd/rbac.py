from __future__ import annotations

from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import abort, g, jsonify, redirect, request, url_for

from app.arsd.models import User

# Higher rank wins when a user holds several roles.
ROLE_HIERARCHY: dict[str, int] = {
    "superadmin": 4,
    "hr": 3,
    "project_manager": 2,
    "project_inspector": 1,
    "warehouseman": 1,
    "purchasing": 1,
    "material_control": 1,
    "pending": 0,
}

ROLE_NAMES: dict[str, str] = {
    "superadmin": "Superadmin",
    "hr": "HR",
    "project_manager": "Project Manager",
    "project_inspector": "Project Inspector",
    "warehouseman": "Warehouseman",
    "purchasing": "Purchasing",
    "material_control": "Material Control",
    "pending": "Pending",
}

DEFAULT_DASHBOARD_ROUTES: dict[str, str] = {
    "superadmin": "/admin/",
    "hr": "/admin/",
    "project_manager": "/admin/reports/uploads",
    "project_inspector": "/admin/reports/uploads",
    "warehouseman": "/admin/warehouse/",
    "purchasing": "/admin/warehouse/",
    "material_control": "/admin/warehouse/",
    "pending": "/pending-approval",
}


def user_has_permission(user: User | None, permission_key: str) -> bool:
    if not can_access_dashboard(user):
        return False
    for role in user.roles:  # type: ignore[union-attr]
        for perm in role.permissions:
            if perm.key == permission_key:
                return True
    return False


def primary_role(user: User | None) -> str:
    if not user or not user.roles:
        return "pending"
    return max(user.role_keys, key=lambda k: (ROLE_HIERARCHY.get(k, 0), k))


def has_role(user: User | None, *role_keys: str) -> bool:
    if not can_access_dashboard(user):
        return False
    return bool(user.role_keys.intersection(role_keys))  # type: ignore[union-attr]


def can_access_role(user_role: str, target_role: str) -> bool:
    return ROLE_HIERARCHY.get(user_role, 0) >= ROLE_HIERARCHY.get(target_role, 0)


def can_access_dashboard(user: User | None) -> bool:
    if not user or not user.is_active:
        return False
    return user.status == "active" and primary_role(user) != "pending"


def default_dashboard_route(role: str | None) -> str:
    return DEFAULT_DASHBOARD_ROUTES.get(role or "pending", "/pending-approval")


def _wants_json() -> bool:
    return request.path.startswith("/api/")


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            # Unauthenticated → redirect to login (API callers get a 401).
            if not user or not user.is_active:
                if _wants_json():
                    return jsonify({"error": "Unauthorized", "code": "AUTH_ERROR"}), 401
                nxt = request.full_path or request.path
                if nxt.endswith("?"):
                    nxt = nxt[:-1]
                return redirect(url_for("auth.login_get", next=nxt))
            # Signed in but not approved yet
            if not can_access_dashboard(user):
                if _wants_json():
                    return jsonify({"error": "Account pending approval", "code": "PERMISSION_ERROR"}), 403
                return redirect(url_for("routes.pending_approval"))
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                if _wants_json():
                    return jsonify({"error": "Forbidden", "code": "PERMISSION_ERROR"}), 403
                abort(403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator
