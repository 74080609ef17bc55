from __future__ import annotations

import logging
import re
from datetime import date, datetime
from pathlib import PurePath
from typing import TYPE_CHECKING

from sqlalchemy import func, or_

from app.arsd.audit import record_event
from app.arsd.constants import WAREHOUSE_PHOTO_EXTENSIONS
from app.arsd.errors import ForbiddenError, LockedError, NotFoundError, ValidationError
from app.arsd.modules.projects.models import Project
from app.arsd.modules.warehouse.models import (
    DeliveryReceipt,
    DrItem,
    IpowItem,
    ReleaseForm,
    ReleaseItem,
    StockPoOverride,
)
from app.arsd.modules.warehouse.rbac import (
    accessible_project_ids,
    can_access_project,
    can_create_dr_release,
    can_edit_po,
    can_lock_dr_release,
    can_unlock_dr_release,
)
from app.arsd.modules.warehouse.stock import StockItem, compute_stock_items, normalize_description
from app.arsd.storage import UploadResult, safe_put
from app.arsd.utils import clean_str, parse_float, parse_int, parse_iso_date

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.arsd.models import User
    from app.arsd.storage import Storage

logger = logging.getLogger(__name__)

DR_PREFIX = "DR"
RELEASE_PREFIX = "REL"


# ---------------------------------------------------------------------------
# Numbering
# ---------------------------------------------------------------------------


def _next_number(s: "Session", column, prefix: str, year: int | None) -> str:
    year = year or date.today().year
    head = f"{prefix}-{year}-"
    pattern = re.compile(rf"^{re.escape(head)}(\d+)$")
    highest = 0
    for (value,) in s.query(column).filter(column.like(f"{head}%")).all():
        m = pattern.match(value or "")
        if m:
            highest = max(highest, int(m.group(1)))
    return f"{head}{highest + 1:03d}"


def next_dr_no(s: "Session", year: int | None = None) -> str:
    return _next_number(s, DeliveryReceipt.dr_no, DR_PREFIX, year)


def next_release_no(s: "Session", year: int | None = None) -> str:
    return _next_number(s, ReleaseForm.release_no, RELEASE_PREFIX, year)


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


def _list(s: "Session", model, user: "User", filters: dict, search_cols: list):
    filters = filters or {}
    q = s.query(model)

    visible = accessible_project_ids(s, user)
    if visible is not None:
        q = q.filter(model.project_id.in_(visible or [-1]))

    if filters.get("project_id"):
        q = q.filter(model.project_id == filters["project_id"])
    if filters.get("date_from"):
        q = q.filter(model.date >= filters["date_from"])
    if filters.get("date_to"):
        q = q.filter(model.date <= filters["date_to"])
    search = (filters.get("search") or "").strip().lower()
    if search:
        like = f"%{search}%"
        q = q.filter(or_(*[func.lower(c).like(like) for c in search_cols]))
    return q.order_by(model.date.desc(), model.created_at.desc(), model.id.desc()).all()


def list_delivery_receipts(s: "Session", user: "User", filters: dict | None = None) -> list[DeliveryReceipt]:
    return _list(
        s,
        DeliveryReceipt,
        user,
        filters or {},
        [DeliveryReceipt.dr_no, DeliveryReceipt.supplier, DeliveryReceipt.warehouseman],
    )


def list_release_forms(s: "Session", user: "User", filters: dict | None = None) -> list[ReleaseForm]:
    return _list(
        s,
        ReleaseForm,
        user,
        filters or {},
        [ReleaseForm.release_no, ReleaseForm.received_by, ReleaseForm.warehouseman],
    )


def parse_list_filters(args) -> dict:
    return {
        "project_id": parse_int(args.get("project_id") or args.get("projectId")),
        "date_from": parse_iso_date(args.get("date_from")),
        "date_to": parse_iso_date(args.get("date_to")),
        "search": (args.get("search") or args.get("q") or "").strip(),
    }


def get_delivery_receipt(s: "Session", user: "User", dr_id: int) -> DeliveryReceipt:
    dr = s.get(DeliveryReceipt, dr_id)
    if not dr or not can_access_project(s, user, dr.project_id):
        raise NotFoundError(f"Delivery receipt {dr_id} not found")
    return dr


def get_release_form(s: "Session", user: "User", release_id: int) -> ReleaseForm:
    rel = s.get(ReleaseForm, release_id)
    if not rel or not can_access_project(s, user, rel.project_id):
        raise NotFoundError(f"Release form {release_id} not found")
    return rel


# ---------------------------------------------------------------------------
# Create / update
# ---------------------------------------------------------------------------


def _clean_items(raw_items, qty_fields: tuple[str, ...]) -> list[dict]:
    items = []
    for raw in raw_items or []:
        if not isinstance(raw, dict):
            continue
        description = (raw.get("item_description") or "").strip()
        if not description:
            continue
        item = {
            "item_description": description,
            "wbs": clean_str(raw.get("wbs")),
            "unit": clean_str(raw.get("unit")),
        }
        for f in qty_fields:
            item[f] = parse_float(raw.get(f), 0.0)
        items.append(item)
    return items


def _require_project(s: "Session", user: "User", project_id) -> Project:
    pid = parse_int(project_id) if not isinstance(project_id, int) else project_id
    project = s.get(Project, pid) if pid else None
    if not project:
        raise ValidationError("Project is required.")
    if not can_access_project(s, user, project.id):
        raise ForbiddenError("You are not assigned to this project.")
    return project


def _dr_fields(s: "Session", payload: dict, user: "User") -> tuple[dict, list[dict]]:
    errors = []
    project_id = payload.get("project_id")
    supplier = (payload.get("supplier") or "").strip()
    doc_date = payload.get("date")
    if isinstance(doc_date, str):
        doc_date = parse_iso_date(doc_date)
    warehouseman = (payload.get("warehouseman") or "").strip()
    items = _clean_items(payload.get("items"), ("qty_in_dr", "qty_in_po"))

    if not project_id:
        errors.append("Project is required.")
    if not supplier:
        errors.append("Supplier is required.")
    if not doc_date:
        errors.append("Date is required.")
    if not warehouseman:
        errors.append("Warehouseman is required.")
    if not items:
        errors.append("At least one item is required.")
    if errors:
        raise ValidationError(errors[0], errors=errors)

    project = _require_project(s, user, project_id)
    fields = {
        "project_id": project.id,
        "supplier": supplier,
        "date": doc_date,
        "time": clean_str(payload.get("time")),
        "warehouseman": warehouseman,
    }
    return fields, items


def _release_fields(s: "Session", payload: dict, user: "User") -> tuple[dict, list[dict]]:
    errors = []
    project_id = payload.get("project_id")
    received_by = (payload.get("received_by") or "").strip()
    doc_date = payload.get("date")
    if isinstance(doc_date, str):
        doc_date = parse_iso_date(doc_date)
    items = _clean_items(payload.get("items"), ("qty",))

    if not project_id:
        errors.append("Project is required.")
    if not received_by:
        errors.append("Received by is required.")
    if not doc_date:
        errors.append("Date is required.")
    if not items:
        errors.append("At least one item is required.")
    if errors:
        raise ValidationError(errors[0], errors=errors)

    project = _require_project(s, user, project_id)
    fields = {
        "project_id": project.id,
        "received_by": received_by,
        "date": doc_date,
        "warehouseman": clean_str(payload.get("warehouseman")) or user.label,
        "purpose": clean_str(payload.get("purpose")),
    }
    return fields, items


def create_delivery_receipt(s: "Session", payload: dict, user: "User") -> DeliveryReceipt:
    if not can_create_dr_release(user):
        raise ForbiddenError("Only warehousemen can create delivery receipts.")
    fields, items = _dr_fields(s, payload, user)

    now = datetime.utcnow()
    dr = DeliveryReceipt(
        dr_no=next_dr_no(s, fields["date"].year),
        locked=True,
        created_at=now,
        updated_at=now,
        created_by_user_id=user.id,
        **fields,
    )
    dr.items = [DrItem(sort_order=i, **item) for i, item in enumerate(items)]
    s.add(dr)
    s.flush()

    record_event(
        s,
        actor=user,
        action="delivery_receipt.create",
        entity_type="DeliveryReceipt",
        entity_id=str(dr.id),
        metadata={"dr_no": dr.dr_no, "project_id": dr.project_id, "items": len(items)},
    )
    return dr


def create_release_form(s: "Session", payload: dict, user: "User") -> ReleaseForm:
    if not can_create_dr_release(user):
        raise ForbiddenError("Only warehousemen can create release forms.")
    fields, items = _release_fields(s, payload, user)

    now = datetime.utcnow()
    rel = ReleaseForm(
        release_no=next_release_no(s, fields["date"].year),
        locked=True,
        created_at=now,
        updated_at=now,
        created_by_user_id=user.id,
        **fields,
    )
    rel.items = [ReleaseItem(sort_order=i, **item) for i, item in enumerate(items)]
    s.add(rel)
    s.flush()

    record_event(
        s,
        actor=user,
        action="release_form.create",
        entity_type="ReleaseForm",
        entity_id=str(rel.id),
        metadata={"release_no": rel.release_no, "project_id": rel.project_id, "items": len(items)},
    )
    return rel


def set_lock(s: "Session", doc: DeliveryReceipt | ReleaseForm, locked: bool, user: "User") -> None:
    if locked and not can_lock_dr_release(user):
        raise ForbiddenError("You cannot lock this document.")
    if not locked and not can_unlock_dr_release(user):
        raise ForbiddenError("Only superadmins, project managers and inspectors can unlock documents.")
    if doc.locked == locked:
        return
    doc.locked = locked
    doc.updated_at = datetime.utcnow()
    kind = "delivery_receipt" if isinstance(doc, DeliveryReceipt) else "release_form"
    record_event(
        s,
        actor=user,
        action=f"{kind}.{'lock' if locked else 'unlock'}",
        entity_type=type(doc).__name__,
        entity_id=str(doc.id),
    )


def _replace_header(doc, fields: dict) -> dict:
    changes = {}
    for attr, val in fields.items():
        if getattr(doc, attr) != val:
            changes[attr] = {"old": getattr(doc, attr), "new": val}
            setattr(doc, attr, val)
    return changes


def update_delivery_receipt(s: "Session", dr: DeliveryReceipt, payload: dict, user: "User") -> DeliveryReceipt:
    if not can_lock_dr_release(user):
        raise ForbiddenError("You cannot edit delivery receipts.")
    if dr.locked:
        raise LockedError(f"{dr.dr_no} is locked.")
    merged = {
        "project_id": dr.project_id,
        "supplier": dr.supplier,
        "date": dr.date,
        "time": dr.time,
        "warehouseman": dr.warehouseman,
        "items": [i.to_dict() for i in dr.items],
    }
    merged.update({k: v for k, v in payload.items() if v is not None})
    fields, items = _dr_fields(s, merged, user)

    changes = _replace_header(dr, fields)
    if "items" in payload:
        dr.items = [DrItem(sort_order=i, **item) for i, item in enumerate(items)]
        changes["items"] = len(items)
    dr.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="delivery_receipt.edit",
        entity_type="DeliveryReceipt",
        entity_id=str(dr.id),
        metadata={"changes": changes},
    )
    return dr


def update_release_form(s: "Session", rel: ReleaseForm, payload: dict, user: "User") -> ReleaseForm:
    if not can_lock_dr_release(user):
        raise ForbiddenError("You cannot edit release forms.")
    if rel.locked:
        raise LockedError(f"{rel.release_no} is locked.")
    merged = {
        "project_id": rel.project_id,
        "received_by": rel.received_by,
        "date": rel.date,
        "warehouseman": rel.warehouseman,
        "purpose": rel.purpose,
        "items": [i.to_dict() for i in rel.items],
    }
    merged.update({k: v for k, v in payload.items() if v is not None})
    fields, items = _release_fields(s, merged, user)

    changes = _replace_header(rel, fields)
    if "items" in payload:
        rel.items = [ReleaseItem(sort_order=i, **item) for i, item in enumerate(items)]
        changes["items"] = len(items)
    rel.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="release_form.edit",
        entity_type="ReleaseForm",
        entity_id=str(rel.id),
        metadata={"changes": changes},
    )
    return rel


# ---------------------------------------------------------------------------
# Attachments
# ---------------------------------------------------------------------------


def _attachment_ext(filename: str) -> str:
    ext = PurePath(filename or "").suffix.lower()
    if ext not in WAREHOUSE_PHOTO_EXTENSIONS:
        raise ValidationError(f"Unsupported file type: {ext or 'none'}")
    return ext


def dr_photo_key(dr_id: int, kind: str, ext: str) -> str:
    return f"warehouse/dr/{dr_id}/{kind}{ext}"


def release_attachment_key(release_id: int, ext: str) -> str:
    return f"warehouse/releases/{release_id}/attachment{ext}"


def upload_dr_photo(
    s: "Session",
    storage: "Storage",
    dr: DeliveryReceipt,
    kind: str,
    file_bytes: bytes,
    filename: str,
    content_type: str | None,
    user: "User",
) -> UploadResult:
    """kind is "dr_photo" or "po_photo". A failed upload leaves the receipt without the photo."""
    if kind not in ("dr_photo", "po_photo"):
        raise ValidationError(f"Unknown photo kind: {kind}")
    key = dr_photo_key(dr.id, kind, _attachment_ext(filename))
    result = safe_put(storage, key, file_bytes, content_type=content_type)
    if not result.success:
        return result
    setattr(dr, f"{kind}_key", key)
    dr.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action=f"delivery_receipt.{kind}_upload",
        entity_type="DeliveryReceipt",
        entity_id=str(dr.id),
        metadata={"key": key, "filename": filename},
    )
    return result


def upload_release_attachment(
    s: "Session",
    storage: "Storage",
    rel: ReleaseForm,
    file_bytes: bytes,
    filename: str,
    content_type: str | None,
    user: "User",
) -> UploadResult:
    key = release_attachment_key(rel.id, _attachment_ext(filename))
    result = safe_put(storage, key, file_bytes, content_type=content_type)
    if not result.success:
        return result
    rel.attachment_key = key
    rel.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="release_form.attachment_upload",
        entity_type="ReleaseForm",
        entity_id=str(rel.id),
        metadata={"key": key, "filename": filename},
    )
    return result


# ---------------------------------------------------------------------------
# IPOW and stocks
# ---------------------------------------------------------------------------


def list_ipow_items(s: "Session", project_id: int) -> list[IpowItem]:
    return (
        s.query(IpowItem)
        .filter(IpowItem.project_id == project_id)
        .order_by(IpowItem.wbs.asc(), IpowItem.id.asc())
        .all()
    )


def replace_ipow_items(s: "Session", project_id: int, items: list[dict], user: "User | None" = None) -> int:
    s.query(IpowItem).filter(IpowItem.project_id == project_id).delete(synchronize_session=False)
    for item in items:
        s.add(IpowItem(project_id=project_id, **item))
    s.flush()
    record_event(
        s,
        actor=user,
        action="ipow.replace",
        entity_type="Project",
        entity_id=str(project_id),
        metadata={"count": len(items)},
    )
    logger.info("Replaced IPOW items for project_id=%s count=%s", project_id, len(items))
    return len(items)


def po_overrides_for(s: "Session", project_id: int) -> dict[tuple[str, str], float]:
    rows = s.query(StockPoOverride).filter(StockPoOverride.project_id == project_id).all()
    return {(r.wbs or "", r.item_description): r.po for r in rows}


def stock_items_for_project(s: "Session", project_id: int) -> list[StockItem]:
    receipts = s.query(DeliveryReceipt).filter(DeliveryReceipt.project_id == project_id).all()
    releases = s.query(ReleaseForm).filter(ReleaseForm.project_id == project_id).all()
    return compute_stock_items(
        list_ipow_items(s, project_id),
        receipts,
        releases,
        po_overrides_for(s, project_id),
    )


def upsert_po_override(
    s: "Session",
    project_id: int,
    wbs: str | None,
    item_description: str,
    po,
    user: "User",
) -> StockItem | None:
    if not can_edit_po(user):
        raise ForbiddenError("Only material control can edit PO quantities.")
    key_desc = normalize_description(item_description)
    if not key_desc:
        raise ValidationError("item_description is required.")
    key_wbs = (wbs or "").strip()
    safe_po = parse_float(po, 0.0)

    row = (
        s.query(StockPoOverride)
        .filter(
            StockPoOverride.project_id == project_id,
            StockPoOverride.wbs == key_wbs,
            StockPoOverride.item_description == key_desc,
        )
        .one_or_none()
    )
    old = row.po if row else None
    if row is None:
        row = StockPoOverride(project_id=project_id, wbs=key_wbs, item_description=key_desc)
        s.add(row)
    row.po = safe_po
    row.updated_at = datetime.utcnow()
    row.updated_by_user_id = user.id
    s.flush()

    record_event(
        s,
        actor=user,
        action="stock.po_override",
        entity_type="Project",
        entity_id=str(project_id),
        metadata={"wbs": key_wbs, "item_description": key_desc, "old": old, "new": safe_po},
    )
    for item in stock_items_for_project(s, project_id):
        if item.key == (key_wbs, key_desc):
            return item
    return None
