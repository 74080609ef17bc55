import pytest
from werkzeug.security import generate_password_hash

from app.arsd import create_app
from app.arsd import auth as auth_module
from app.arsd.db import session_scope
from app.arsd.models import AuditEvent, Base, User
from scripts.init_db import ROLE_PERMISSIONS, seed_only, seed_permissions


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
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        roles = seed_permissions(s)
        admin = User(email="admin@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        admin.roles.append(roles["superadmin"])
        wh = User(email="wh@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        wh.roles.append(roles["warehouseman"])
        pending = User(
            email="pending@example.com",
            password_hash=generate_password_hash("pw"),
            is_active=True,
            status="pending",
        )
        off = User(
            email="off@example.com",
            password_hash=generate_password_hash("pw"),
            is_active=False,
            status="inactive",
        )
        s.add_all([admin, wh, pending, off])

    return app.test_client()


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True
    assert client.get("/healthz").data == b"ok"


def test_login_and_admin_access(client):
    # Anonymous is sent to the login page
    r = client.get("/admin/")
    assert r.status_code == 302
    assert "/auth/login" in r.headers["Location"]

    r = client.post("/auth/login", data={"email": "admin@example.com", "password": "pw"}, follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/admin/")

    r = client.get("/admin/")
    assert r.status_code == 200
    assert b"Projects" in r.data


def test_login_redirects_to_role_dashboard(client):
    r = client.post("/auth/login", data={"email": "wh@example.com", "password": "pw"})
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/admin/warehouse/")

    # warehousemen are bounced from the admin summary to their own landing page
    r = client.get("/admin/")
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/admin/warehouse/")


def test_login_next_only_allows_local_paths(client):
    r = client.post(
        "/auth/login",
        data={"email": "admin@example.com", "password": "pw", "next": "//evil.example.com/"},
    )
    assert r.headers["Location"].endswith("/admin/")

    client.get("/auth/logout")
    r = client.post("/auth/login", data={"email": "admin@example.com", "password": "pw", "next": "/admin/projects"})
    assert r.headers["Location"].endswith("/admin/projects")


def test_invalid_login_is_audited(client):
    r = client.post("/auth/login", data={"email": "admin@example.com", "password": "nope"}, follow_redirects=True)
    assert b"Invalid credentials" in r.data
    with session_scope(client.application) as s:
        events = s.query(AuditEvent).filter(AuditEvent.action == "auth.login_failed").all()
        assert len(events) == 1
        assert events[0].entity_id == "admin@example.com"


def test_login_rate_limited(client):
    for _ in range(5):
        client.post("/auth/login", data={"email": "admin@example.com", "password": "nope"})
    r = client.post("/auth/login", data={"email": "admin@example.com", "password": "pw"}, follow_redirects=True)
    assert b"Too many login attempts" in r.data
    assert client.get("/admin/").status_code == 302


def test_pending_user_goes_to_pending_page(client):
    r = client.post("/auth/login", data={"email": "pending@example.com", "password": "pw"})
    assert r.headers["Location"].endswith("/pending-approval")
    r = client.get("/admin/projects")
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/pending-approval")


def test_inactive_user_cannot_sign_in(client):
    r = client.post("/auth/login", data={"email": "off@example.com", "password": "pw"}, follow_redirects=True)
    assert b"Invalid credentials" in r.data


def test_signup_creates_pending_user(client):
    r = client.post(
        "/auth/signup",
        data={"email": "New@Example.com", "password": "longenough", "display_name": "New Person"},
    )
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/pending-approval")
    with session_scope(client.application) as s:
        u = s.query(User).filter(User.email == "new@example.com").one()
        assert u.status == "pending"
        assert u.roles == []

    r = client.post("/auth/signup", data={"email": "new@example.com", "password": "longenough"}, follow_redirects=True)
    assert b"already exists" in r.data


def test_signup_rejects_short_password(client):
    r = client.post("/auth/signup", data={"email": "x@example.com", "password": "short"}, follow_redirects=True)
    assert b"at least 8 characters" in r.data


def test_csrf_required_for_mutations(client):
    client.post("/auth/login", data={"email": "admin@example.com", "password": "pw"})
    r = client.post("/admin/projects/new", data={"project_name": "X", "client": "Y", "location": "Z"})
    assert r.status_code == 400

    r = client.post("/api/reset-failed-reports", json={})
    assert r.status_code == 400
    assert r.json["code"] == "CSRF_ERROR"

    with client.session_transaction() as sess:
        token = sess["csrf_token"]
    r = client.post("/api/reset-failed-reports", json={}, headers={"X-CSRF-Token": token})
    assert r.status_code == 200
    assert r.json == {"success": True, "reset": 0}


def test_api_requires_login(client):
    r = client.get("/api/projects")
    assert r.status_code == 401
    assert r.json["code"] == "AUTH_ERROR"


def test_unknown_api_route_returns_json_404(client):
    r = client.get("/api/does-not-exist")
    assert r.status_code == 404
    assert r.json["code"] == "NOT_FOUND"


def test_seed_only_is_idempotent(tmp_path, monkeypatch):
    db_url = f"sqlite:///{tmp_path/'seed.db'}"
    monkeypatch.setenv("ADMIN_EMAIL", "Boss@Example.com")
    monkeypatch.setenv("ADMIN_PASSWORD", "s3cret-pass")
    monkeypatch.setenv("DATABASE_URL", db_url)
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])

    seed_only(database_url=db_url)
    seed_only(database_url=db_url)

    with session_scope(app) as s:
        admins = s.query(User).filter(User.email == "boss@example.com").all()
        assert len(admins) == 1
        assert admins[0].role_keys == {"superadmin"}
        perms = {p.key for r in admins[0].roles for p in r.permissions}
        assert perms == set(ROLE_PERMISSIONS["superadmin"])
