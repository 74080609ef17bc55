"""Retention cleanup of parsed report files."""
from datetime import date, datetime
from pathlib import Path

import pytest
from werkzeug.security import generate_password_hash

from app.arsd import create_app
from app.arsd import auth as auth_module
from app.arsd.db import session_scope
from app.arsd.errors import ValidationError
from app.arsd.models import AuditEvent, Base, User
from app.arsd.modules.accomplishment_reports.models import AccomplishmentReport
from app.arsd.modules.projects.models import Project
from app.arsd.modules.storage_cleanup.service import (
    cleanup_old_files,
    cleanup_stats,
    cutoff_date,
    validate_cleanup_options,
    week_ending,
)
from app.arsd.storage import LocalStorage, StorageError
from scripts.init_db import seed_permissions

NOW = datetime(2025, 3, 12, 10, 0)  # Wednesday


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("CRON_SECRET_TOKEN", "cron-secret")
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"):
        monkeypatch.delenv(k, raising=False)
    auth_module._login_attempts.clear()

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])

    storage = LocalStorage(root=Path(tmp_path) / "storage")
    with session_scope(app) as s:
        roles = seed_permissions(s)
        admin = User(email="admin@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        admin.roles.append(roles["superadmin"])
        s.add(admin)
        project = Project(project_code="PRJ-2025-0001", project_name="Seaport", client="PPA", location="Davao")
        s.add(project)
        s.flush()
        for week, parsed in (
            (date(2025, 2, 15), "failed"),
            (date(2025, 2, 22), "success"),
            (date(2025, 3, 1), "success"),
            (date(2025, 3, 8), "success"),
        ):
            key = f"accomplishment-reports/PRJ-2025-0001-{week.isoformat()}.xlsx"
            storage.put_bytes(key, b"x" * 2048)
            s.add(
                AccomplishmentReport(
                    project_id=project.id,
                    file_name=f"{week.isoformat()}.xlsx",
                    file_size=2048,
                    storage_key=key,
                    week_ending_date=week,
                    status="approved",
                    parsed_status=parsed,
                )
            )
    return app


def _storage(tmp_path) -> LocalStorage:
    return LocalStorage(root=Path(tmp_path) / "storage")


def test_week_ending_is_saturday_night():
    end = week_ending(datetime(2025, 3, 9, 8, 0))  # Sunday starts a new week
    assert end.date() == date(2025, 3, 15)
    assert (end.hour, end.minute, end.second) == (23, 59, 59)
    assert week_ending(datetime(2025, 3, 15, 23, 0)).date() == date(2025, 3, 15)
    assert week_ending(NOW).date() == date(2025, 3, 15)


def test_cutoff_date():
    assert cutoff_date(2, NOW) == date(2025, 3, 1)
    assert cutoff_date(1, NOW) == date(2025, 3, 8)


def test_validate_cleanup_options():
    validate_cleanup_options(1, 1)
    validate_cleanup_options(52, 100)
    for weeks, batch in ((0, 50), (53, 50), (2, 0), (2, 101)):
        with pytest.raises(ValidationError):
            validate_cleanup_options(weeks, batch)


def test_stats_and_dry_run_leave_files(app, tmp_path):
    storage = _storage(tmp_path)
    with session_scope(app) as s:
        stats = cleanup_stats(s, 2, NOW)
        assert stats["total_files_to_delete"] == 2
        assert stats["total_size_to_free"] == 4096
        assert stats["oldest_file"] == "2025-02-22"
        assert stats["newest_file"] == "2025-03-01"

        result = cleanup_old_files(s, storage, dry_run=True, weeks_to_keep=2, now=NOW)
        assert result.success
        assert result.files_deleted == 2
        assert result.deleted_files == ["2025-02-22.xlsx", "2025-03-01.xlsx"]

    with session_scope(app) as s:
        for r in s.query(AccomplishmentReport).all():
            assert r.file_deleted_at is None
            assert storage.exists(r.storage_key)


def test_cleanup_deletes_old_parsed_files(app, tmp_path):
    storage = _storage(tmp_path)
    with session_scope(app) as s:
        result = cleanup_old_files(s, storage, weeks_to_keep=2, batch_size=1, now=NOW)
        assert result.success
        assert result.files_deleted == 2
        assert result.storage_freed == 4096

    with session_scope(app) as s:
        reports = {r.week_ending_date: r for r in s.query(AccomplishmentReport).all()}
        for week in (date(2025, 2, 22), date(2025, 3, 1)):
            assert reports[week].storage_key is None
            assert reports[week].file_deleted_at is not None
            assert reports[week].has_file is False
        # failed parses and recent weeks keep their files
        assert storage.exists(reports[date(2025, 2, 15)].storage_key)
        assert storage.exists(reports[date(2025, 3, 8)].storage_key)
        assert s.query(AuditEvent).filter(AuditEvent.action == "storage.cleanup").count() == 1

        # nothing left to do
        assert cleanup_old_files(s, storage, weeks_to_keep=2, now=NOW).files_deleted == 0


class _FlakyStorage(LocalStorage):
    def delete(self, key: str) -> None:
        if "2025-02-22" in key:
            raise StorageError("access denied")
        super().delete(key)


def test_failed_delete_is_reported_and_row_kept(app, tmp_path):
    storage = _FlakyStorage(root=Path(tmp_path) / "storage")
    with session_scope(app) as s:
        result = cleanup_old_files(s, storage, weeks_to_keep=2, now=NOW)
        assert result.success is False
        assert result.files_deleted == 1
        assert len(result.errors) == 1
        assert "2025-02-22.xlsx" in result.errors[0]

    with session_scope(app) as s:
        kept = s.query(AccomplishmentReport).filter(AccomplishmentReport.week_ending_date == date(2025, 2, 22)).one()
        assert kept.storage_key is not None
        assert kept.file_deleted_at is None


def test_cron_endpoint_requires_bearer_token(app):
    client = app.test_client()
    r = client.post("/api/cron/cleanup-storage")
    assert r.status_code == 401
    assert r.json["success"] is False

    r = client.post("/api/cron/cleanup-storage", headers={"Authorization": "Bearer wrong"})
    assert r.status_code == 401

    r = client.post("/api/cron/cleanup-storage", headers={"Authorization": "Bearer cron-secret"})
    assert r.status_code == 200
    assert r.json["success"] is True
    # every successfully parsed week is well outside a one-week window by now
    assert r.json["files_deleted"] == 3
    assert r.json["options"]["weeks_to_keep"] == 1

    r = client.get("/api/cron/cleanup-storage", headers={"Authorization": "Bearer cron-secret"})
    assert r.json["message"].startswith("No files to cleanup")


def _login(client):
    client.post("/auth/login", data={"email": "admin@example.com", "password": "pw"})
    with client.session_transaction() as sess:
        return sess["csrf_token"]


def test_admin_cleanup_page_and_api(app):
    client = app.test_client()
    assert client.get("/admin/storage-cleanup").status_code == 302

    token = _login(client)
    r = client.get("/admin/storage-cleanup?weeks_to_keep=2")
    assert r.status_code == 200

    r = client.get("/api/storage/cleanup?weeks_to_keep=2")
    assert r.json["success"] is True
    assert r.json["stats"]["total_files_to_delete"] == 3

    r = client.get("/api/storage/cleanup?weeks_to_keep=99")
    assert r.status_code == 400

    r = client.post("/admin/storage-cleanup", data={"csrf_token": token, "dry_run": "1", "weeks_to_keep": "2"})
    assert r.status_code == 302
    with session_scope(app) as s:
        assert s.query(AccomplishmentReport).filter(AccomplishmentReport.file_deleted_at.isnot(None)).count() == 0

    r = client.post(
        "/api/storage/cleanup",
        json={"weeks_to_keep": 2, "batch_size": 10},
        headers={"X-CSRF-Token": token},
    )
    assert r.status_code == 200
    assert r.json["files_deleted"] == 3
    assert r.json["dry_run"] is False
