from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from app.arsd.db import db_session
from app.arsd.errors import NotFoundError, ValidationError
from app.arsd.modules.accomplishment_reports.parsers.cells import ParseError
from app.arsd.modules.accomplishment_reports.parsers.ipow import parse_ipow_workbook
from app.arsd.modules.projects.models import Project
from app.arsd.modules.warehouse.rbac import can_access_project
from app.arsd.modules.warehouse.service import (
    create_delivery_receipt,
    create_release_form,
    get_delivery_receipt,
    get_release_form,
    list_delivery_receipts,
    list_ipow_items,
    list_release_forms,
    next_dr_no,
    next_release_no,
    parse_list_filters,
    replace_ipow_items,
    set_lock,
    stock_items_for_project,
    update_delivery_receipt,
    update_release_form,
    upload_dr_photo,
    upload_release_attachment,
    upsert_po_override,
)
from app.arsd.rbac import require_permission
from app.arsd.storage import storage_from_config
from app.arsd.utils import current_user, parse_int

bp = Blueprint("warehouse_api", __name__)


def _json_body() -> dict:
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise ValidationError("Expected a JSON object body.")
    return body


def _project_or_404(project_id: int) -> Project:
    s = db_session()
    project = s.get(Project, project_id)
    if not project or not can_access_project(s, current_user(), project.id):
        raise NotFoundError(f"Project {project_id} not found")
    return project


def _patch(doc, body: dict, update_fn):
    """PATCH either toggles the lock ({"locked": bool}) or edits an unlocked document."""
    s = db_session()
    u = current_user()
    fields = {k: v for k, v in body.items() if k not in ("locked", "csrf_token")}
    lock = bool(body["locked"]) if "locked" in body else None
    if lock is False:
        set_lock(s, doc, False, u)
    if fields:
        update_fn(s, doc, fields, u)
    if lock is True:
        set_lock(s, doc, True, u)
    s.commit()
    return jsonify(doc.to_dict())


# Delivery receipts


@bp.get("/warehouse/delivery-receipts")
@require_permission("warehouse.view")
def dr_list():
    rows = list_delivery_receipts(db_session(), current_user(), parse_list_filters(request.args))
    return jsonify({"data": [r.to_dict() for r in rows], "total": len(rows)})


@bp.post("/warehouse/delivery-receipts")
@require_permission("warehouse.view")
def dr_create():
    s = db_session()
    dr = create_delivery_receipt(s, _json_body(), current_user())
    s.commit()
    return jsonify(dr.to_dict()), 201


@bp.get("/warehouse/delivery-receipts/next")
@require_permission("warehouse.view")
def dr_next():
    return jsonify({"dr_no": next_dr_no(db_session())})


@bp.get("/warehouse/delivery-receipts/<int:dr_id>")
@require_permission("warehouse.view")
def dr_get(dr_id: int):
    return jsonify(get_delivery_receipt(db_session(), current_user(), dr_id).to_dict())


@bp.patch("/warehouse/delivery-receipts/<int:dr_id>")
@require_permission("warehouse.view")
def dr_patch(dr_id: int):
    dr = get_delivery_receipt(db_session(), current_user(), dr_id)
    return _patch(dr, _json_body(), update_delivery_receipt)


@bp.post("/warehouse/delivery-receipts/<int:dr_id>/photos")
@require_permission("warehouse.view")
def dr_photo_upload(dr_id: int):
    s = db_session()
    u = current_user()
    dr = get_delivery_receipt(s, u, dr_id)
    f = request.files.get("file")
    if not f or not f.filename:
        raise ValidationError("No file uploaded")
    kind = (request.form.get("kind") or "dr_photo").strip()
    result = upload_dr_photo(
        s, storage_from_config(current_app.config), dr, kind, f.read(), f.filename, f.mimetype, u
    )
    s.commit()
    return jsonify({"success": result.success, "key": result.key, "error": result.error})


# Release forms


@bp.get("/warehouse/releases")
@require_permission("warehouse.view")
def release_list():
    rows = list_release_forms(db_session(), current_user(), parse_list_filters(request.args))
    return jsonify({"data": [r.to_dict() for r in rows], "total": len(rows)})


@bp.post("/warehouse/releases")
@require_permission("warehouse.view")
def release_create():
    s = db_session()
    rel = create_release_form(s, _json_body(), current_user())
    s.commit()
    return jsonify(rel.to_dict()), 201


@bp.get("/warehouse/releases/next")
@require_permission("warehouse.view")
def release_next():
    return jsonify({"release_no": next_release_no(db_session())})


@bp.get("/warehouse/releases/<int:release_id>")
@require_permission("warehouse.view")
def release_get(release_id: int):
    return jsonify(get_release_form(db_session(), current_user(), release_id).to_dict())


@bp.patch("/warehouse/releases/<int:release_id>")
@require_permission("warehouse.view")
def release_patch(release_id: int):
    rel = get_release_form(db_session(), current_user(), release_id)
    return _patch(rel, _json_body(), update_release_form)


@bp.post("/warehouse/releases/<int:release_id>/attachment")
@require_permission("warehouse.view")
def release_attachment_upload(release_id: int):
    s = db_session()
    u = current_user()
    rel = get_release_form(s, u, release_id)
    f = request.files.get("file")
    if not f or not f.filename:
        raise ValidationError("No file uploaded")
    result = upload_release_attachment(
        s, storage_from_config(current_app.config), rel, f.read(), f.filename, f.mimetype, u
    )
    s.commit()
    return jsonify({"success": result.success, "key": result.key, "error": result.error})


# IPOW and stocks


@bp.get("/warehouse/ipow")
@require_permission("warehouse.view")
def ipow_list():
    project_id = parse_int(request.args.get("projectId") or request.args.get("project_id"))
    if not project_id:
        raise ValidationError("projectId is required")
    project = _project_or_404(project_id)
    return jsonify([i.to_dict() for i in list_ipow_items(db_session(), project.id)])


@bp.post("/warehouse/ipow/parse-test")
@require_permission("warehouse.ipow_import")
def ipow_parse_test():
    """Import IPOW rows from a workbook without going through report approval."""
    s = db_session()
    f = request.files.get("file")
    if not f or not f.filename:
        raise ValidationError("Missing required field: file")
    project_id = parse_int(request.form.get("project_id"))
    if not project_id:
        raise ValidationError("Missing required field: project_id")
    project = _project_or_404(project_id)
    dry_run = (request.form.get("dry_run") or "").strip().lower() == "true"

    try:
        items = parse_ipow_workbook(f.read())
    except ParseError as e:
        return jsonify({"success": False, "error": str(e), "parsed_count": 0}), 400
    if not items:
        return jsonify(
            {
                "success": False,
                "error": "No IPOW items found. The workbook needs a sheet named like 'IPOW table' with data.",
                "parsed_count": 0,
            }
        )

    project_info = {"id": project.id, "name": project.project_name}
    if dry_run:
        return jsonify(
            {
                "success": True,
                "dry_run": True,
                "parsed_count": len(items),
                "project": project_info,
                "ipow_items": items,
                "message": f"Parsed {len(items)} IPOW items (dry run, nothing saved)",
            }
        )

    inserted = replace_ipow_items(s, project.id, items, current_user())
    s.commit()
    return jsonify(
        {
            "success": True,
            "parsed_count": len(items),
            "inserted_count": inserted,
            "project": project_info,
            "message": f"Inserted {inserted} IPOW items for project {project.project_name}",
        }
    )


@bp.get("/warehouse/stocks/<int:project_id>")
@require_permission("warehouse.view")
def stocks(project_id: int):
    project = _project_or_404(project_id)
    return jsonify([row.to_dict() for row in stock_items_for_project(db_session(), project.id)])


@bp.patch("/warehouse/stocks/<int:project_id>/po")
@require_permission("warehouse.po_edit")
def stocks_po(project_id: int):
    s = db_session()
    project = _project_or_404(project_id)
    body = _json_body()
    if not (body.get("item_description") or "").strip():
        raise ValidationError("Invalid payload")
    row = upsert_po_override(s, project.id, body.get("wbs"), body["item_description"], body.get("po"), current_user())
    s.commit()
    return jsonify(row.to_dict() if row else None)
