from flask import Blueprint, g, redirect, render_template

from app.arsd.rbac import can_access_dashboard, default_dashboard_route, primary_role

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    return render_template("public/index.html")


@bp.get("/dashboard")
def dashboard():
    """Send a signed-in user to the landing page for their role."""
    user = getattr(g, "current_user", None)
    if not user:
        return redirect("/auth/login")
    return redirect(default_dashboard_route(primary_role(user) if can_access_dashboard(user) else "pending"))


@bp.get("/pending-approval")
def pending_approval():
    return render_template("public/pending_approval.html")


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for load balancer probes. No DB access.
    """
    return "ok", 200
