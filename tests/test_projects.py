"""Tests for the projects module."""
from datetime import date

import pytest
from werkzeug.security import generate_password_hash

from app.arsd import create_app
from app.arsd import auth as auth_module
from app.arsd.db import session_scope
from app.arsd.errors import ValidationError
from app.arsd.models import AuditEvent, Base, User
from app.arsd.modules.projects.models import Project
from app.arsd.modules.projects.service import (
    next_project_code,
    update_latest_accomplishment_date,
    validate_project_payload,
)
from scripts.init_db import seed_permissions


def _user(s, roles, email, *role_keys):
    u = User(email=email, password_hash=generate_password_hash("pw"), display_name=email.split("@")[0], is_active=True)
    for key in role_keys:
        u.roles.append(roles[key])
    s.add(u)
    return u


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
        _user(s, roles, "admin@example.com", "superadmin")
        pm = _user(s, roles, "pm@example.com", "project_manager")
        _user(s, roles, "pm2@example.com", "project_manager")
        _user(s, roles, "buyer@example.com", "purchasing")
        s.flush()
        s.add(
            Project(
                project_code="PRJ-2025-0007",
                project_name="Seawall",
                client="LGU",
                location="Iloilo",
                project_manager_id=pm.id,
            )
        )

    return app.test_client()


def _login(client, email):
    client.post("/auth/login", data={"email": email, "password": "pw"})
    with client.session_transaction() as sess:
        return sess["csrf_token"]


def _user_id(client, email):
    with session_scope(client.application) as s:
        return s.query(User).filter(User.email == email).one().id


def test_next_project_code_increments_per_year(client):
    with session_scope(client.application) as s:
        assert next_project_code(s, 2025) == "PRJ-2025-0008"
        assert next_project_code(s, 2026) == "PRJ-2026-0001"


def test_validate_project_payload():
    errors = validate_project_payload({"project_name": " ", "client": "A", "location": "B", "status": "bogus"})
    assert "Project name is required." in errors
    assert "Invalid status: bogus." in errors
    assert validate_project_payload({"project_name": "A", "client": "B", "location": "C"}) == []


def test_create_project_via_form(client):
    token = _login(client, "admin@example.com")
    pm_id = _user_id(client, "pm2@example.com")
    r = client.post(
        "/admin/projects/new",
        data={
            "csrf_token": token,
            "project_name": "Farm to Market Road",
            "client": "DA",
            "location": "Bukidnon",
            "status": "in_progress",
            "project_manager_id": str(pm_id),
        },
    )
    assert r.status_code == 302

    with session_scope(client.application) as s:
        p = s.query(Project).filter(Project.project_name == "Farm to Market Road").one()
        assert p.project_code.startswith(f"PRJ-{date.today().year}-")
        assert p.status == "in_progress"
        assert p.project_manager_id == pm_id
        assert s.query(AuditEvent).filter(AuditEvent.action == "project.create").count() == 1


def test_create_project_rejects_wrong_role_assignee(client):
    token = _login(client, "admin@example.com")
    buyer_id = _user_id(client, "buyer@example.com")
    r = client.post(
        "/admin/projects/new",
        data={
            "csrf_token": token,
            "project_name": "Bad Assign",
            "client": "X",
            "location": "Y",
            "project_manager_id": str(buyer_id),
        },
        follow_redirects=True,
    )
    assert b"is not a project manager" in r.data
    with session_scope(client.application) as s:
        assert s.query(Project).filter(Project.project_name == "Bad Assign").count() == 0


def test_edit_and_delete_project(client):
    token = _login(client, "admin@example.com")
    with session_scope(client.application) as s:
        p = s.query(Project).one()
        pid, pm_id = p.id, p.project_manager_id

    r = client.post(
        f"/admin/projects/{pid}/edit",
        data={
            "csrf_token": token,
            "project_name": "Seawall Phase 2",
            "client": "LGU",
            "location": "Iloilo",
            "status": "completed",
            "project_manager_id": str(pm_id),
            "reason": "scope change",
        },
    )
    assert r.status_code == 302
    with session_scope(client.application) as s:
        p = s.get(Project, pid)
        assert p.project_name == "Seawall Phase 2"
        assert p.status == "completed"
        ev = s.query(AuditEvent).filter(AuditEvent.action == "project.edit").one()
        assert ev.reason == "scope change"

    r = client.post(f"/admin/projects/{pid}/delete", data={"csrf_token": token})
    assert r.status_code == 302
    with session_scope(client.application) as s:
        assert s.get(Project, pid) is None


def test_project_visibility_by_assignment(client):
    _login(client, "pm2@example.com")
    r = client.get("/api/projects")
    assert r.status_code == 200
    assert r.json["total"] == 0

    with session_scope(client.application) as s:
        pid = s.query(Project).one().id
    assert client.get(f"/admin/projects/{pid}").status_code == 403

    client.get("/auth/logout")
    _login(client, "pm@example.com")
    r = client.get("/api/projects")
    assert r.json["total"] == 1
    assert r.json["projects"][0]["project_id"] == "PRJ-2025-0007"
    r = client.get(f"/admin/projects/{pid}")
    assert r.status_code == 200
    assert b"Seawall" in r.data


def test_purchasing_sees_all_projects(client):
    _login(client, "buyer@example.com")
    r = client.get("/api/projects?search=seawall")
    assert r.json["total"] == 1


def test_project_manager_cannot_create(client):
    token = _login(client, "pm@example.com")
    r = client.post(
        "/admin/projects/new",
        data={"csrf_token": token, "project_name": "X", "client": "Y", "location": "Z"},
    )
    assert r.status_code == 403


def test_latest_accomplishment_date_never_moves_back(client):
    with session_scope(client.application) as s:
        p = s.query(Project).one()
        update_latest_accomplishment_date(s, p, date(2025, 3, 8))
        update_latest_accomplishment_date(s, p, date(2025, 3, 1))
        assert p.latest_accomplishment_update == date(2025, 3, 8)


def test_create_project_service_validation(client):
    from app.arsd.modules.projects.service import create_project

    with session_scope(client.application) as s:
        admin = s.query(User).filter(User.email == "admin@example.com").one()
        with pytest.raises(ValidationError) as exc:
            create_project(s, {"project_name": "", "client": "", "location": "x"}, admin)
        assert len(exc.value.errors) == 2
