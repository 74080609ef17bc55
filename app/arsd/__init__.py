import logging
import os
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, flash, g, jsonify, redirect, render_template, request, session, url_for

from app.arsd.config import load_config
from app.arsd.db import init_db, teardown_db_session
from app.arsd.errors import AppError
from app.arsd.routes import bp as routes_bp
from app.arsd.auth import bp as auth_bp, load_current_user
from app.arsd.admin import bp as admin_bp
from app.arsd.modules.projects.admin import bp as projects_bp
from app.arsd.modules.projects.api import bp as projects_api_bp
from app.arsd.modules.accomplishment_reports.admin import bp as reports_bp
from app.arsd.modules.accomplishment_reports.api import bp as reports_api_bp
from app.arsd.modules.warehouse.admin import bp as warehouse_bp
from app.arsd.modules.warehouse.api import bp as warehouse_api_bp
from app.arsd.modules.users.admin import bp as users_bp
from app.arsd.modules.storage_cleanup.admin import bp as cleanup_bp


def _is_api_request() -> bool:
    return request.path.startswith("/api/")


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__, template_folder="templates", static_folder="static")
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # CSRF protection (session token)
    from app.arsd.security import ensure_csrf_token, is_csrf_exempt, validate_csrf

    @app.context_processor
    def _inject_csrf() -> dict:
        return {"csrf_token": ensure_csrf_token()}

    @app.context_processor
    def _inject_permissions() -> dict:
        from app.arsd.rbac import ROLE_NAMES, primary_role, user_has_permission

        user = getattr(g, "current_user", None)

        def has_perm(key: str) -> bool:
            return user_has_permission(user, key)

        role = primary_role(user) if user else None
        return {"has_perm": has_perm, "current_role": role, "role_names": ROLE_NAMES}

    @app.template_filter("dateformat")
    def _dateformat_filter(value, format: str = "%Y-%m-%d") -> str:
        if value is None:
            return "-"
        if hasattr(value, "strftime"):
            return value.strftime(format)
        return str(value)

    @app.template_filter("currency")
    def _currency_filter(value) -> str:
        from app.arsd.modules.dashboard.calculations import format_currency

        return format_currency(value)

    @app.template_filter("qty")
    def _qty_filter(value) -> str:
        if value is None:
            return "-"
        v = float(value)
        return f"{int(v):,}" if v == int(v) else f"{v:,.2f}"

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(("/static/", "/health", "/healthz")):
            return None
        ensure_csrf_token()
        session.permanent = True
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            if is_csrf_exempt(request.endpoint):
                return None
            if not validate_csrf(request):
                if _is_api_request():
                    return jsonify({"error": "CSRF token missing or invalid.", "code": "CSRF_ERROR"}), 400
                return render_template("errors/400.html", message="CSRF token missing or invalid."), 400

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    # Storage health check (fail loudly on misconfiguration)
    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = [
            key
            for key in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY")
            if not app.config.get(key)
        ]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))
        else:
            from botocore.exceptions import BotoCoreError, ClientError

            from app.arsd.storage import S3Storage, storage_from_config

            storage = storage_from_config(app.config)
            if isinstance(storage, S3Storage):
                try:
                    storage._client().head_bucket(Bucket=storage.bucket)
                    app.logger.info("Storage health check PASSED: S3 bucket '%s' accessible", storage.bucket)
                except (BotoCoreError, ClientError) as e:
                    app.logger.error("STORAGE CONFIG ERROR: Cannot access S3 bucket: %s", e)

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(admin_bp, url_prefix="/admin")
    app.register_blueprint(projects_bp, url_prefix="/admin")
    app.register_blueprint(reports_bp, url_prefix="/admin")
    app.register_blueprint(warehouse_bp, url_prefix="/admin")
    app.register_blueprint(users_bp, url_prefix="/admin")
    app.register_blueprint(projects_api_bp, url_prefix="/api")
    app.register_blueprint(reports_api_bp, url_prefix="/api")
    app.register_blueprint(warehouse_api_bp, url_prefix="/api")
    # serves both /api/cron/... and /admin/storage-cleanup
    app.register_blueprint(cleanup_bp)

    app.before_request(load_current_user)
    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(AppError)
    def _app_error(e: AppError):
        if _is_api_request():
            return jsonify(e.to_dict()), e.status_code
        if e.status_code in (400, 409):
            flash(e.message, "danger")
            referrer = request.referrer
            if referrer and referrer.startswith(request.host_url):
                return redirect(referrer), 302
            return redirect(url_for("routes.dashboard")), 302
        template = {403: "errors/403.html", 404: "errors/404.html"}.get(e.status_code, "errors/500.html")
        return render_template(template, message=e.message), e.status_code

    @app.errorhandler(400)
    def _err_400(e):  # type: ignore[no-redef]
        if _is_api_request():
            return jsonify({"error": "Bad request", "code": "BAD_REQUEST"}), 400
        return render_template("errors/400.html", message=None), 400

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        if _is_api_request():
            return jsonify({"error": "Not found", "code": "NOT_FOUND"}), 404
        return render_template("errors/404.html"), 404

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        if _is_api_request():
            return jsonify({"error": "Internal server error", "code": "APP_ERROR"}), 500
        return render_template("errors/500.html"), 500

    @app.errorhandler(403)
    def _err_403(e):  # type: ignore[no-redef]
        missing = getattr(g, "missing_permission", None)
        if missing:
            app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
        if _is_api_request():
            return jsonify({"error": "Forbidden", "code": "PERMISSION_ERROR"}), 403
        return render_template("errors/403.html", missing_permission=missing), 403

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        max_mb = (app.config.get("MAX_CONTENT_LENGTH") or 0) // (1024 * 1024)
        if _is_api_request():
            return jsonify({"error": f"File too large. Maximum size is {max_mb}MB.", "code": "VALIDATION_ERROR"}), 413
        flash(f"File too large. Maximum size is {max_mb}MB.", "danger")
        referrer = request.referrer
        if referrer and referrer.startswith(request.host_url):
            return redirect(referrer), 302
        return redirect(url_for("routes.dashboard")), 302

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
