from __future__ import annotations

import io
import mimetypes
from datetime import date

from flask import Blueprint, abort, current_app, flash, redirect, render_template, request, send_file, url_for

from app.arsd.db import db_session
from app.arsd.errors import AppError, NotFoundError
from app.arsd.modules.projects.models import Project
from app.arsd.modules.projects.service import projects_visible_to
from app.arsd.modules.warehouse.models import DeliveryReceipt, ReleaseForm
from app.arsd.modules.warehouse.rbac import (
    can_access_project,
    can_create_dr_release,
    can_edit_po,
    can_lock_dr_release,
    can_unlock_dr_release,
)
from app.arsd.modules.warehouse.service import (
    create_delivery_receipt,
    create_release_form,
    get_delivery_receipt,
    get_release_form,
    list_delivery_receipts,
    list_release_forms,
    next_dr_no,
    next_release_no,
    parse_list_filters,
    set_lock,
    stock_items_for_project,
    update_delivery_receipt,
    update_release_form,
    upload_dr_photo,
    upload_release_attachment,
    upsert_po_override,
)
from app.arsd.rbac import require_permission
from app.arsd.storage import StorageError, storage_from_config
from app.arsd.utils import current_user

bp = Blueprint("warehouse", __name__)


def _form_items(qty_fields: tuple[str, ...]) -> list[dict]:
    """Items repeater: parallel lists named item_description[], wbs[], unit[] and the qty fields."""
    descriptions = request.form.getlist("item_description[]")
    columns = {f: request.form.getlist(f"{f}[]") for f in ("wbs", "unit", *qty_fields)}
    items = []
    for i, desc in enumerate(descriptions):
        row = {"item_description": desc}
        for f, values in columns.items():
            row[f] = values[i] if i < len(values) else None
        items.append(row)
    return items


def _dr_form_payload() -> dict:
    return {
        "project_id": request.form.get("project_id"),
        "supplier": request.form.get("supplier"),
        "date": request.form.get("date"),
        "time": request.form.get("time"),
        "warehouseman": request.form.get("warehouseman"),
        "items": _form_items(("qty_in_dr", "qty_in_po")),
    }


def _release_form_payload() -> dict:
    return {
        "project_id": request.form.get("project_id"),
        "received_by": request.form.get("received_by"),
        "date": request.form.get("date"),
        "warehouseman": request.form.get("warehouseman"),
        "purpose": request.form.get("purpose"),
        "items": _form_items(("qty",)),
    }


def _flash_upload(result, label: str) -> None:
    if not result.success:
        flash(f"{label} could not be uploaded: {result.error}", "warning")


def _send_stored(key: str | None, name: str):
    if not key:
        abort(404)
    try:
        data = storage_from_config(current_app.config).read_bytes(key)
    except StorageError:
        abort(404)
    mimetype = mimetypes.guess_type(key)[0] or "application/octet-stream"
    return send_file(io.BytesIO(data), mimetype=mimetype, download_name=name)


@bp.get("/warehouse/")
@require_permission("warehouse.view")
def index():
    s = db_session()
    u = current_user()
    projects = projects_visible_to(s, u)
    dr_counts: dict[int, int] = {}
    for dr in list_delivery_receipts(s, u):
        dr_counts[dr.project_id] = dr_counts.get(dr.project_id, 0) + 1
    release_counts: dict[int, int] = {}
    for rel in list_release_forms(s, u):
        release_counts[rel.project_id] = release_counts.get(rel.project_id, 0) + 1
    return render_template(
        "admin/warehouse/index.html",
        projects=projects,
        dr_counts=dr_counts,
        release_counts=release_counts,
        can_create=can_create_dr_release(u),
    )


# Delivery receipts


@bp.get("/warehouse/delivery-receipts")
@require_permission("warehouse.view")
def dr_list():
    s = db_session()
    u = current_user()
    filters = parse_list_filters(request.args)
    return render_template(
        "admin/warehouse/dr_list.html",
        receipts=list_delivery_receipts(s, u, filters),
        projects=projects_visible_to(s, u),
        filters=filters,
        can_create=can_create_dr_release(u),
    )


@bp.get("/warehouse/delivery-receipts/new")
@require_permission("warehouse.create")
def dr_new_get():
    s = db_session()
    u = current_user()
    return render_template(
        "admin/warehouse/dr_form.html",
        dr=None,
        next_no=next_dr_no(s),
        projects=projects_visible_to(s, u),
        selected_project_id=request.args.get("project_id", type=int),
        today=date.today(),
    )


@bp.post("/warehouse/delivery-receipts/new")
@require_permission("warehouse.create")
def dr_new_post():
    s = db_session()
    u = current_user()
    try:
        dr = create_delivery_receipt(s, _dr_form_payload(), u)
    except AppError as e:
        s.rollback()
        flash(e.message, "danger")
        return redirect(url_for("warehouse.dr_new_get"))
    s.commit()

    storage = storage_from_config(current_app.config)
    for kind, label in (("dr_photo", "DR photo"), ("po_photo", "PO photo")):
        f = request.files.get(kind)
        if f and f.filename:
            try:
                _flash_upload(upload_dr_photo(s, storage, dr, kind, f.read(), f.filename, f.mimetype, u), label)
            except AppError as e:
                flash(f"{label}: {e.message}", "warning")
    s.commit()
    flash(f"Delivery receipt {dr.dr_no} created.", "success")
    return redirect(url_for("warehouse.dr_detail", dr_id=dr.id))


@bp.get("/warehouse/delivery-receipts/<int:dr_id>")
@require_permission("warehouse.view")
def dr_detail(dr_id: int):
    s = db_session()
    u = current_user()
    try:
        dr = get_delivery_receipt(s, u, dr_id)
    except NotFoundError:
        abort(404)
    return render_template(
        "admin/warehouse/dr_detail.html",
        dr=dr,
        can_unlock=can_unlock_dr_release(u),
        can_lock=can_lock_dr_release(u),
    )


@bp.get("/warehouse/delivery-receipts/<int:dr_id>/edit")
@require_permission("warehouse.view")
def dr_edit_get(dr_id: int):
    s = db_session()
    u = current_user()
    try:
        dr = get_delivery_receipt(s, u, dr_id)
    except NotFoundError:
        abort(404)
    if dr.locked:
        flash(f"{dr.dr_no} is locked.", "danger")
        return redirect(url_for("warehouse.dr_detail", dr_id=dr_id))
    return render_template(
        "admin/warehouse/dr_form.html",
        dr=dr,
        next_no=dr.dr_no,
        projects=projects_visible_to(s, u),
        selected_project_id=dr.project_id,
        today=dr.date,
    )


@bp.post("/warehouse/delivery-receipts/<int:dr_id>/edit")
@require_permission("warehouse.view")
def dr_edit_post(dr_id: int):
    s = db_session()
    u = current_user()
    try:
        dr = get_delivery_receipt(s, u, dr_id)
        update_delivery_receipt(s, dr, _dr_form_payload(), u)
    except NotFoundError:
        abort(404)
    except AppError as e:
        s.rollback()
        flash(e.message, "danger")
        return redirect(url_for("warehouse.dr_detail", dr_id=dr_id))
    s.commit()
    flash("Delivery receipt updated.", "success")
    return redirect(url_for("warehouse.dr_detail", dr_id=dr_id))


@bp.post("/warehouse/delivery-receipts/<int:dr_id>/lock")
@require_permission("warehouse.view")
def dr_lock_post(dr_id: int):
    s = db_session()
    u = current_user()
    locked = request.form.get("locked") == "1"
    try:
        set_lock(s, get_delivery_receipt(s, u, dr_id), locked, u)
    except NotFoundError:
        abort(404)
    except AppError as e:
        s.rollback()
        flash(e.message, "danger")
        return redirect(url_for("warehouse.dr_detail", dr_id=dr_id))
    s.commit()
    flash("Delivery receipt locked." if locked else "Delivery receipt unlocked.", "success")
    return redirect(url_for("warehouse.dr_detail", dr_id=dr_id))


@bp.get("/warehouse/delivery-receipts/<int:dr_id>/<kind>")
@require_permission("warehouse.view")
def dr_photo(dr_id: int, kind: str):
    if kind not in ("dr_photo", "po_photo"):
        abort(404)
    s = db_session()
    try:
        dr = get_delivery_receipt(s, current_user(), dr_id)
    except NotFoundError:
        abort(404)
    return _send_stored(getattr(dr, f"{kind}_key"), f"{dr.dr_no}-{kind}")


# Release forms


@bp.get("/warehouse/releases")
@require_permission("warehouse.view")
def release_list():
    s = db_session()
    u = current_user()
    filters = parse_list_filters(request.args)
    return render_template(
        "admin/warehouse/release_list.html",
        releases=list_release_forms(s, u, filters),
        projects=projects_visible_to(s, u),
        filters=filters,
        can_create=can_create_dr_release(u),
    )


@bp.get("/warehouse/releases/new")
@require_permission("warehouse.create")
def release_new_get():
    s = db_session()
    u = current_user()
    return render_template(
        "admin/warehouse/release_form.html",
        release=None,
        next_no=next_release_no(s),
        projects=projects_visible_to(s, u),
        selected_project_id=request.args.get("project_id", type=int),
        today=date.today(),
    )


@bp.post("/warehouse/releases/new")
@require_permission("warehouse.create")
def release_new_post():
    s = db_session()
    u = current_user()
    try:
        rel = create_release_form(s, _release_form_payload(), u)
    except AppError as e:
        s.rollback()
        flash(e.message, "danger")
        return redirect(url_for("warehouse.release_new_get"))
    s.commit()

    f = request.files.get("attachment")
    if f and f.filename:
        try:
            result = upload_release_attachment(
                s, storage_from_config(current_app.config), rel, f.read(), f.filename, f.mimetype, u
            )
            _flash_upload(result, "Attachment")
        except AppError as e:
            flash(f"Attachment: {e.message}", "warning")
        s.commit()
    flash(f"Release form {rel.release_no} created.", "success")
    return redirect(url_for("warehouse.release_detail", release_id=rel.id))


@bp.get("/warehouse/releases/<int:release_id>")
@require_permission("warehouse.view")
def release_detail(release_id: int):
    s = db_session()
    u = current_user()
    try:
        rel = get_release_form(s, u, release_id)
    except NotFoundError:
        abort(404)
    return render_template(
        "admin/warehouse/release_detail.html",
        release=rel,
        can_unlock=can_unlock_dr_release(u),
        can_lock=can_lock_dr_release(u),
    )


@bp.get("/warehouse/releases/<int:release_id>/edit")
@require_permission("warehouse.view")
def release_edit_get(release_id: int):
    s = db_session()
    u = current_user()
    try:
        rel = get_release_form(s, u, release_id)
    except NotFoundError:
        abort(404)
    if rel.locked:
        flash(f"{rel.release_no} is locked.", "danger")
        return redirect(url_for("warehouse.release_detail", release_id=release_id))
    return render_template(
        "admin/warehouse/release_form.html",
        release=rel,
        next_no=rel.release_no,
        projects=projects_visible_to(s, u),
        selected_project_id=rel.project_id,
        today=rel.date,
    )


@bp.post("/warehouse/releases/<int:release_id>/edit")
@require_permission("warehouse.view")
def release_edit_post(release_id: int):
    s = db_session()
    u = current_user()
    try:
        rel = get_release_form(s, u, release_id)
        update_release_form(s, rel, _release_form_payload(), u)
    except NotFoundError:
        abort(404)
    except AppError as e:
        s.rollback()
        flash(e.message, "danger")
        return redirect(url_for("warehouse.release_detail", release_id=release_id))
    s.commit()
    flash("Release form updated.", "success")
    return redirect(url_for("warehouse.release_detail", release_id=release_id))


@bp.post("/warehouse/releases/<int:release_id>/lock")
@require_permission("warehouse.view")
def release_lock_post(release_id: int):
    s = db_session()
    u = current_user()
    locked = request.form.get("locked") == "1"
    try:
        set_lock(s, get_release_form(s, u, release_id), locked, u)
    except NotFoundError:
        abort(404)
    except AppError as e:
        s.rollback()
        flash(e.message, "danger")
        return redirect(url_for("warehouse.release_detail", release_id=release_id))
    s.commit()
    flash("Release form locked." if locked else "Release form unlocked.", "success")
    return redirect(url_for("warehouse.release_detail", release_id=release_id))


@bp.get("/warehouse/releases/<int:release_id>/attachment")
@require_permission("warehouse.view")
def release_attachment(release_id: int):
    s = db_session()
    try:
        rel = get_release_form(s, current_user(), release_id)
    except NotFoundError:
        abort(404)
    return _send_stored(rel.attachment_key, f"{rel.release_no}-attachment")


# Stocks


@bp.get("/warehouse/stocks/<int:project_id>")
@require_permission("warehouse.view")
def stocks(project_id: int):
    s = db_session()
    u = current_user()
    project = s.get(Project, project_id)
    if not project or not can_access_project(s, u, project.id):
        abort(404)
    return render_template(
        "admin/warehouse/stocks.html",
        project=project,
        items=stock_items_for_project(s, project.id),
        can_edit_po=can_edit_po(u),
    )


@bp.post("/warehouse/stocks/<int:project_id>/po")
@require_permission("warehouse.po_edit")
def stocks_po_post(project_id: int):
    s = db_session()
    u = current_user()
    project = s.get(Project, project_id)
    if not project or not can_access_project(s, u, project.id):
        abort(404)
    try:
        upsert_po_override(
            s,
            project.id,
            request.form.get("wbs"),
            request.form.get("item_description") or "",
            request.form.get("po"),
            u,
        )
    except AppError as e:
        s.rollback()
        flash(e.message, "danger")
        return redirect(url_for("warehouse.stocks", project_id=project_id))
    s.commit()
    flash("PO quantity updated.", "success")
    return redirect(url_for("warehouse.stocks", project_id=project_id))
