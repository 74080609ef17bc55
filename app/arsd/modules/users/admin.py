from flask import Blueprint, abort, flash, redirect, render_template, request, url_for

from app.arsd.db import db_session
from app.arsd.errors import AppError, NotFoundError
from app.arsd.models import USER_STATUSES
from app.arsd.modules.users.service import (
    create_user,
    get_user,
    list_roles,
    list_users,
    reset_password,
    set_user_roles,
    set_user_status,
)
from app.arsd.rbac import require_permission
from app.arsd.utils import current_user

bp = Blueprint("users", __name__)


@bp.get("/users")
@require_permission("users.manage")
def users_list():
    s = db_session()
    status = (request.args.get("status") or "").strip() or None
    search = (request.args.get("q") or "").strip() or None
    return render_template(
        "admin/users/list.html",
        users=list_users(s, status=status, search=search),
        roles=list_roles(s),
        statuses=USER_STATUSES,
        status=status,
        q=search or "",
    )


@bp.post("/users/new")
@require_permission("users.manage")
def users_new_post():
    s = db_session()
    try:
        user = create_user(
            s,
            email=request.form.get("email") or "",
            password=request.form.get("password") or "",
            display_name=request.form.get("display_name"),
            role_keys=request.form.getlist("role_keys"),
            actor=current_user(),
        )
    except AppError as e:
        s.rollback()
        for msg in getattr(e, "errors", [e.message]):
            flash(msg, "danger")
        return redirect(url_for("users.users_list"))
    s.commit()
    flash(f"Account created for {user.email}.", "success")
    return redirect(url_for("users.users_detail", user_id=user.id))


@bp.get("/users/<int:user_id>")
@require_permission("users.manage")
def users_detail(user_id: int):
    s = db_session()
    try:
        account = get_user(s, user_id)
    except NotFoundError:
        abort(404)
    return render_template(
        "admin/users/detail.html",
        account=account,
        roles=list_roles(s),
        statuses=USER_STATUSES,
    )


@bp.post("/users/<int:user_id>/roles")
@require_permission("users.manage")
def users_roles_post(user_id: int):
    s = db_session()
    try:
        account = get_user(s, user_id)
        set_user_roles(s, account, request.form.getlist("role_keys"), current_user())
    except NotFoundError:
        abort(404)
    except AppError as e:
        s.rollback()
        flash(e.message, "danger")
        return redirect(url_for("users.users_detail", user_id=user_id))
    s.commit()
    flash(f"Roles updated for {account.email}.", "success")
    return redirect(url_for("users.users_detail", user_id=user_id))


@bp.post("/users/<int:user_id>/status")
@require_permission("users.manage")
def users_status_post(user_id: int):
    s = db_session()
    try:
        account = get_user(s, user_id)
        set_user_status(s, account, (request.form.get("status") or "").strip(), current_user())
    except NotFoundError:
        abort(404)
    except AppError as e:
        s.rollback()
        flash(e.message, "danger")
        return redirect(url_for("users.users_detail", user_id=user_id))
    s.commit()
    flash(f"Status updated for {account.email}.", "success")
    return redirect(url_for("users.users_detail", user_id=user_id))


@bp.post("/users/<int:user_id>/reset-password")
@require_permission("users.manage")
def users_reset_password(user_id: int):
    s = db_session()
    password = request.form.get("password") or ""
    if password != (request.form.get("password_confirm") or ""):
        flash("Passwords do not match.", "danger")
        return redirect(url_for("users.users_detail", user_id=user_id))
    try:
        account = get_user(s, user_id)
        reset_password(s, account, password, current_user())
    except NotFoundError:
        abort(404)
    except AppError as e:
        s.rollback()
        flash(e.message, "danger")
        return redirect(url_for("users.users_detail", user_id=user_id))
    s.commit()
    flash(f"Password reset for {account.email}.", "success")
    return redirect(url_for("users.users_detail", user_id=user_id))
