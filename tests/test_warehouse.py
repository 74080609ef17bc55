"""Warehouse documents, lock rules, visibility and stock reconciliation."""
import pytest
from werkzeug.security import generate_password_hash

from app.arsd import create_app
from app.arsd import auth as auth_module
from app.arsd.db import session_scope
from app.arsd.models import AuditEvent, Base, User
from app.arsd.modules.projects.models import Project
from app.arsd.modules.warehouse.models import DeliveryReceipt, IpowItem, StockPoOverride
from app.arsd.modules.warehouse.service import next_dr_no, next_release_no
from scripts.init_db import seed_permissions


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"):
        monkeypatch.delenv(k, raising=False)
    auth_module._login_attempts.clear()

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])

    with session_scope(app) as s:
        roles = seed_permissions(s)
        users = {}
        for email, role in (
            ("wh@example.com", "warehouseman"),
            ("wh2@example.com", "warehouseman"),
            ("pm@example.com", "project_manager"),
            ("mc@example.com", "material_control"),
        ):
            u = User(email=email, password_hash=generate_password_hash("pw"), display_name=email.split("@")[0], is_active=True)
            u.roles.append(roles[role])
            s.add(u)
            users[email] = u
        s.flush()
        s.add(
            Project(
                project_code="PRJ-2025-0003",
                project_name="Bridge Retrofit",
                client="DPWH",
                location="Leyte",
                project_manager_id=users["pm@example.com"].id,
                warehouseman_id=users["wh@example.com"].id,
            )
        )

    return app.test_client()


def _login(client, email):
    client.get("/auth/logout")
    client.post("/auth/login", data={"email": email, "password": "pw"})
    with client.session_transaction() as sess:
        return sess["csrf_token"]


def _project_id(client):
    with session_scope(client.application) as s:
        return s.query(Project).one().id


def _create_dr(client, token, pid, description="Portland Cement", qty=50, po=100, date="2025-03-05"):
    return client.post(
        "/api/warehouse/delivery-receipts",
        json={
            "project_id": pid,
            "supplier": "ABC Hardware",
            "date": date,
            "warehouseman": "Juan",
            "items": [
                {"item_description": description, "wbs": "2.1", "qty_in_dr": qty, "qty_in_po": po, "unit": "bag"},
                {"item_description": "   "},
            ],
        },
        headers={"X-CSRF-Token": token},
    )


def test_document_numbers_are_sequential_per_year(client):
    token = _login(client, "wh@example.com")
    pid = _project_id(client)
    assert _create_dr(client, token, pid).json["dr_no"] == "DR-2025-001"
    assert _create_dr(client, token, pid).json["dr_no"] == "DR-2025-002"
    assert _create_dr(client, token, pid, date="2026-01-02").json["dr_no"] == "DR-2026-001"

    with session_scope(client.application) as s:
        assert next_dr_no(s, 2025) == "DR-2025-003"
        assert next_release_no(s, 2025) == "REL-2025-001"


def test_delivery_receipt_starts_locked_and_lock_rules(client):
    token = _login(client, "wh@example.com")
    pid = _project_id(client)
    r = _create_dr(client, token, pid)
    assert r.status_code == 201
    dr = r.json
    assert dr["locked"] is True
    assert len(dr["items"]) == 1  # blank line dropped
    url = f"/api/warehouse/delivery-receipts/{dr['id']}"

    r = client.patch(url, json={"supplier": "XYZ Supply"}, headers={"X-CSRF-Token": token})
    assert r.status_code == 409
    assert r.json["code"] == "LOCKED"

    # warehousemen can lock but not unlock
    r = client.patch(url, json={"locked": False}, headers={"X-CSRF-Token": token})
    assert r.status_code == 403
    assert r.json["code"] == "PERMISSION_ERROR"

    token = _login(client, "pm@example.com")
    r = client.patch(url, json={"locked": False}, headers={"X-CSRF-Token": token})
    assert r.status_code == 200
    assert r.json["locked"] is False

    token = _login(client, "wh@example.com")
    r = client.patch(url, json={"supplier": "XYZ Supply", "locked": True}, headers={"X-CSRF-Token": token})
    assert r.status_code == 200
    assert r.json["supplier"] == "XYZ Supply"
    assert r.json["locked"] is True
    assert len(r.json["items"]) == 1

    with session_scope(client.application) as s:
        actions = [a for (a,) in s.query(AuditEvent.action).filter(AuditEvent.entity_type == "DeliveryReceipt")]
        assert actions.count("delivery_receipt.unlock") == 1
        assert actions.count("delivery_receipt.lock") == 1
        assert "delivery_receipt.edit" in actions


def test_only_warehousemen_create_documents(client):
    token = _login(client, "pm@example.com")
    r = _create_dr(client, token, _project_id(client))
    assert r.status_code == 403

    token = _login(client, "wh@example.com")
    r = client.post(
        "/api/warehouse/delivery-receipts",
        json={"project_id": _project_id(client), "items": []},
        headers={"X-CSRF-Token": token},
    )
    assert r.status_code == 400
    assert r.json["code"] == "VALIDATION_ERROR"
    assert "Supplier is required." in r.json["errors"]


def test_unassigned_warehouseman_sees_nothing(client):
    token = _login(client, "wh@example.com")
    dr_id = _create_dr(client, token, _project_id(client)).json["id"]

    token = _login(client, "wh2@example.com")
    r = client.get("/api/warehouse/delivery-receipts")
    assert r.json == {"data": [], "total": 0}
    assert client.get(f"/api/warehouse/delivery-receipts/{dr_id}").status_code == 404
    assert client.get(f"/admin/warehouse/delivery-receipts/{dr_id}").status_code == 404
    assert _create_dr(client, token, _project_id(client)).status_code == 403

    # material control sees every project
    _login(client, "mc@example.com")
    assert client.get("/api/warehouse/delivery-receipts").json["total"] == 1


def _post_dr(client, token, pid, date, supplier, warehouseman):
    return client.post(
        "/api/warehouse/delivery-receipts",
        json={
            "project_id": pid,
            "supplier": supplier,
            "date": date,
            "warehouseman": warehouseman,
            "items": [{"item_description": "Gravel", "qty_in_dr": 1}],
        },
        headers={"X-CSRF-Token": token},
    ).json["dr_no"]


def _post_release(client, token, pid, date, received_by, warehouseman):
    return client.post(
        "/api/warehouse/releases",
        json={
            "project_id": pid,
            "received_by": received_by,
            "date": date,
            "warehouseman": warehouseman,
            "items": [{"item_description": "Gravel", "qty": 1}],
        },
        headers={"X-CSRF-Token": token},
    ).json["release_no"]


def test_delivery_receipt_list_filters(client):
    token = _login(client, "wh@example.com")
    pid = _project_id(client)
    first = _post_dr(client, token, pid, "2025-03-01", "ABC Hardware", "Juan")
    second = _post_dr(client, token, pid, "2025-03-10", "Island Aggregates", "Pedro")
    third = _post_dr(client, token, pid, "2025-03-20", "ABC Hardware", "Maria")

    def numbers(**params):
        r = client.get("/api/warehouse/delivery-receipts", query_string=params)
        assert r.status_code == 200
        return sorted(row["dr_no"] for row in r.json["data"])

    # both bounds are inclusive
    assert numbers(date_from="2025-03-10", date_to="2025-03-20") == [second, third]
    assert numbers(date_from="2025-03-01", date_to="2025-03-01") == [first]
    assert numbers(date_to="2025-03-10") == [first, second]
    assert numbers(date_from="2025-03-21") == []

    # case-insensitive substring on number, supplier and warehouseman
    assert numbers(search=second.lower()) == [second]
    assert numbers(search="abc hARD") == [first, third]
    assert numbers(search="PEDR") == [second]
    assert numbers(search="aggregates", date_to="2025-03-09") == []
    assert numbers(project_id=pid, search="mAr") == [third]


def test_release_form_list_filters(client):
    token = _login(client, "wh@example.com")
    pid = _project_id(client)
    early = _post_release(client, token, pid, "2025-04-01", "Foreman Cruz", "Juan")
    late = _post_release(client, token, pid, "2025-04-15", "Engr. Santos", "Lito")

    def numbers(**params):
        r = client.get("/api/warehouse/releases", query_string=params)
        return sorted(row["release_no"] for row in r.json["data"])

    assert numbers(date_from="2025-04-15") == [late]
    assert numbers(date_to="2025-04-01") == [early]
    assert numbers(search=early.upper()) == [early]
    assert numbers(search="CRUZ") == [early]
    assert numbers(search="santos") == [late]
    assert numbers(search="LiTo") == [late]


def test_release_form_and_stock_without_ipow(client):
    token = _login(client, "wh@example.com")
    pid = _project_id(client)
    _create_dr(client, token, pid)
    _create_dr(client, token, pid, description="Sand", qty=5, po=0)
    r = client.post(
        "/api/warehouse/releases",
        json={
            "project_id": pid,
            "received_by": "Foreman Cruz",
            "date": "2025-03-06",
            "items": [{"item_description": " portland cement ", "qty": 20}],
        },
        headers={"X-CSRF-Token": token},
    )
    assert r.status_code == 201
    assert r.json["release_no"] == "REL-2025-001"
    assert r.json["locked"] is True
    assert r.json["warehouseman"] == "wh"

    rows = client.get(f"/api/warehouse/stocks/{pid}").json
    assert [row["item_description"] for row in rows] == ["Portland Cement", "Sand"]
    cement = rows[0]
    assert cement["delivered"] == 50
    assert cement["utilized"] == 20
    assert cement["running_balance"] == 30
    assert cement["po"] == 100
    assert cement["alerts"] == []


def test_stock_with_ipow_and_po_override(client):
    token = _login(client, "wh@example.com")
    pid = _project_id(client)
    _create_dr(client, token, pid)
    _create_dr(client, token, pid, description="Sand", qty=5, po=0)
    with session_scope(client.application) as s:
        s.add(IpowItem(project_id=pid, wbs="2.1", item_description="Portland Cement", unit="bag", latest_ipow_qty=600))

    rows = client.get(f"/api/warehouse/stocks/{pid}").json
    assert len(rows) == 1  # IPOW is the master list
    assert rows[0]["ipow_qty"] == 600
    assert rows[0]["variance"] == 50 - 600
    assert rows[0]["alerts"] == ["low_stock"]

    r = client.patch(
        f"/api/warehouse/stocks/{pid}/po",
        json={"wbs": "2.1", "item_description": "Portland Cement", "po": 1},
        headers={"X-CSRF-Token": token},
    )
    assert r.status_code == 403

    token = _login(client, "mc@example.com")
    r = client.patch(
        f"/api/warehouse/stocks/{pid}/po",
        json={"wbs": "2.1", "item_description": "Portland Cement", "po": 250},
        headers={"X-CSRF-Token": token},
    )
    assert r.status_code == 200
    assert r.json["po"] == 250

    r = client.post(
        f"/admin/warehouse/stocks/{pid}/po",
        data={"csrf_token": token, "wbs": "2.1", "item_description": "PORTLAND CEMENT ", "po": "300"},
    )
    assert r.status_code == 302
    with session_scope(client.application) as s:
        override = s.query(StockPoOverride).one()
        assert override.item_description == "portland cement"
        assert override.po == 300

    r = client.get(f"/admin/warehouse/stocks/{pid}")
    assert r.status_code == 200
    assert b"Portland Cement" in r.data


def test_delivery_receipt_html_form(client):
    token = _login(client, "wh@example.com")
    pid = _project_id(client)
    assert client.get("/admin/warehouse/delivery-receipts/new").status_code == 200

    r = client.post(
        "/admin/warehouse/delivery-receipts/new",
        data={
            "csrf_token": token,
            "project_id": str(pid),
            "supplier": "Island Steel",
            "date": "2025-04-01",
            "time": "09:30",
            "warehouseman": "Juan",
            "item_description[]": ["Rebar 12mm", "Tie wire"],
            "wbs[]": ["3.1", ""],
            "unit[]": ["pc", "kg"],
            "qty_in_dr[]": ["120", "15"],
            "qty_in_po[]": ["200", ""],
        },
    )
    assert r.status_code == 302
    with session_scope(client.application) as s:
        dr = s.query(DeliveryReceipt).one()
        dr_id = dr.id
        assert dr.locked is True
        assert [(i.item_description, i.qty_in_dr, i.qty_in_po) for i in dr.items] == [
            ("Rebar 12mm", 120.0, 200.0),
            ("Tie wire", 15.0, 0.0),
        ]

    r = client.get(f"/admin/warehouse/delivery-receipts/{dr_id}")
    assert r.status_code == 200
    assert b"Island Steel" in r.data

    token = _login(client, "pm@example.com")
    r = client.post(f"/admin/warehouse/delivery-receipts/{dr_id}/lock", data={"csrf_token": token, "locked": "0"})
    assert r.status_code == 302
    with session_scope(client.application) as s:
        assert s.get(DeliveryReceipt, dr_id).locked is False

    # project managers do not hold warehouse.create
    assert client.get("/admin/warehouse/delivery-receipts/new").status_code == 403
