"""Account approval and role management."""
import pytest
from werkzeug.security import check_password_hash, generate_password_hash

from app.arsd import create_app
from app.arsd import auth as auth_module
from app.arsd.db import session_scope
from app.arsd.models import AuditEvent, Base, User
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
        admin = User(email="admin@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        admin.roles.append(roles["superadmin"])
        pm = User(email="pm@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        pm.roles.append(roles["project_manager"])
        newbie = User(
            email="newbie@example.com",
            password_hash=generate_password_hash("pw"),
            is_active=True,
            status="pending",
        )
        s.add_all([admin, pm, newbie])

    return app.test_client()


def _login(client, email="admin@example.com"):
    client.post("/auth/login", data={"email": email, "password": "pw"})
    with client.session_transaction() as sess:
        return sess["csrf_token"]


def _uid(client, email):
    with session_scope(client.application) as s:
        return s.query(User).filter(User.email == email).one().id


def _user(client, email):
    with session_scope(client.application) as s:
        u = s.query(User).filter(User.email == email).one()
        return u.status, u.is_active, sorted(u.role_keys)


def test_assigning_role_activates_pending_user(client):
    token = _login(client)
    uid = _uid(client, "newbie@example.com")
    r = client.post(f"/admin/users/{uid}/roles", data={"csrf_token": token, "role_keys": ["warehouseman"]})
    assert r.status_code == 302
    assert _user(client, "newbie@example.com") == ("active", True, ["warehouseman"])

    # the approved user now lands on their own dashboard
    client.get("/auth/logout")
    r = client.post("/auth/login", data={"email": "newbie@example.com", "password": "pw"})
    assert r.headers["Location"].endswith("/admin/warehouse/")


def test_clearing_roles_returns_user_to_pending(client):
    token = _login(client)
    uid = _uid(client, "pm@example.com")
    client.post(f"/admin/users/{uid}/roles", data={"csrf_token": token})
    assert _user(client, "pm@example.com") == ("pending", True, [])
    with session_scope(client.application) as s:
        assert s.query(AuditEvent).filter(AuditEvent.action == "user.set_roles").count() == 1


def test_multiple_roles(client):
    token = _login(client)
    uid = _uid(client, "pm@example.com")
    client.post(
        f"/admin/users/{uid}/roles",
        data={"csrf_token": token, "role_keys": ["project_manager", "project_inspector"]},
    )
    assert _user(client, "pm@example.com")[2] == ["project_inspector", "project_manager"]


def test_unknown_role_is_rejected(client):
    token = _login(client)
    uid = _uid(client, "pm@example.com")
    r = client.post(
        f"/admin/users/{uid}/roles",
        data={"csrf_token": token, "role_keys": ["overlord"]},
        follow_redirects=True,
    )
    assert b"Unknown role(s): overlord" in r.data
    assert _user(client, "pm@example.com")[2] == ["project_manager"]


def test_cannot_modify_own_account(client):
    token = _login(client)
    uid = _uid(client, "admin@example.com")
    r = client.post(
        f"/admin/users/{uid}/status",
        data={"csrf_token": token, "status": "inactive"},
        follow_redirects=True,
    )
    assert b"cannot modify your own account" in r.data
    assert _user(client, "admin@example.com")[:2] == ("active", True)


def test_deactivate_user(client):
    token = _login(client)
    uid = _uid(client, "pm@example.com")
    client.post(f"/admin/users/{uid}/status", data={"csrf_token": token, "status": "inactive"})
    assert _user(client, "pm@example.com")[:2] == ("inactive", False)


def test_create_user_and_reset_password(client):
    token = _login(client)
    r = client.post(
        "/admin/users/new",
        data={
            "csrf_token": token,
            "email": "Buyer@Example.com",
            "display_name": "Buyer",
            "password": "longenough",
            "role_keys": ["purchasing"],
        },
    )
    assert r.status_code == 302
    assert _user(client, "buyer@example.com") == ("active", True, ["purchasing"])

    uid = _uid(client, "buyer@example.com")
    r = client.post(
        f"/admin/users/{uid}/reset-password",
        data={"csrf_token": token, "password": "newpassword1", "password_confirm": "different"},
        follow_redirects=True,
    )
    assert b"Passwords do not match" in r.data

    client.post(
        f"/admin/users/{uid}/reset-password",
        data={"csrf_token": token, "password": "newpassword1", "password_confirm": "newpassword1"},
    )
    with session_scope(client.application) as s:
        assert check_password_hash(s.get(User, uid).password_hash, "newpassword1")


def test_create_user_validation(client):
    token = _login(client)
    r = client.post(
        "/admin/users/new",
        data={"csrf_token": token, "email": "not-an-email", "password": "short"},
        follow_redirects=True,
    )
    assert b"Invalid email format." in r.data
    assert b"at least 8 characters" in r.data


def test_user_management_requires_permission(client):
    _login(client, "pm@example.com")
    assert client.get("/admin/users").status_code == 403
    uid = _uid(client, "newbie@example.com")
    assert client.get(f"/admin/users/{uid}").status_code == 403
