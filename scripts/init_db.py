import os
import sys
from pathlib import Path

from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.arsd.models import Permission, Role, User  # noqa: E402
from app.arsd.rbac import ROLE_NAMES  # noqa: E402
from scripts._db_utils import script_session  # noqa: E402

PERMISSIONS: dict[str, str] = {
    "admin.view": "Admin: view shell",
    "users.manage": "Users: manage accounts and roles",
    "projects.view_all": "Projects: view all",
    "projects.create": "Projects: create",
    "projects.edit": "Projects: edit",
    "projects.delete": "Projects: delete",
    "reports.view_all": "Reports: view all",
    "reports.upload": "Reports: upload",
    "reports.review": "Reports: approve/reject",
    "reports.parse": "Reports: parse approved",
    "warehouse.view": "Warehouse: view",
    "warehouse.create": "Warehouse: create DR/release",
    "warehouse.unlock": "Warehouse: unlock DR/release",
    "warehouse.ipow_import": "Warehouse: import IPOW",
    "warehouse.po_edit": "Warehouse: edit stock PO",
    "storage.cleanup": "Storage: clean up report files",
    "dashboard.leaderboard": "Dashboard: leaderboard",
}

ROLE_PERMISSIONS: dict[str, list[str]] = {
    "superadmin": [
        "admin.view",
        "users.manage",
        "projects.view_all",
        "projects.create",
        "projects.edit",
        "projects.delete",
        "reports.view_all",
        "reports.upload",
        "reports.review",
        "reports.parse",
        "warehouse.view",
        "warehouse.unlock",
        "warehouse.ipow_import",
        "warehouse.po_edit",
        "storage.cleanup",
        "dashboard.leaderboard",
    ],
    "hr": ["admin.view"],
    "project_manager": ["admin.view", "reports.upload", "warehouse.view", "warehouse.unlock"],
    "project_inspector": ["admin.view", "reports.upload", "reports.review", "warehouse.view", "warehouse.unlock"],
    "warehouseman": ["admin.view", "warehouse.view", "warehouse.create"],
    "purchasing": ["admin.view", "warehouse.view", "projects.view_all"],
    "material_control": ["admin.view", "warehouse.view", "projects.view_all", "warehouse.po_edit"],
}


def seed_permissions(s) -> dict[str, Role]:
    """Create missing permissions and roles and attach role permissions. Never removes grants."""
    perms: dict[str, Permission] = {}
    for key, name in PERMISSIONS.items():
        p = s.query(Permission).filter(Permission.key == key).one_or_none()
        if not p:
            p = Permission(key=key, name=name)
            s.add(p)
        perms[key] = p

    roles: dict[str, Role] = {}
    for role_key, perm_keys in ROLE_PERMISSIONS.items():
        role = s.query(Role).filter(Role.key == role_key).one_or_none()
        if not role:
            role = Role(key=role_key, name=ROLE_NAMES[role_key])
            s.add(role)
        for pk in perm_keys:
            if perms[pk] not in role.permissions:
                role.permissions.append(perms[pk])
        roles[role_key] = role
    s.flush()
    return roles


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed permissions/roles/superadmin in an idempotent way.
    Does NOT overwrite an existing admin user's password.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@arsd.local").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    with script_session(database_url) as s:
        roles = seed_permissions(s)

        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if not user:
            user = User(
                email=admin_email,
                password_hash=generate_password_hash(admin_password),
                display_name="Administrator",
                status="active",
                is_active=True,
            )
            s.add(user)
        if roles["superadmin"] not in user.roles:
            user.roles.append(roles["superadmin"])

    print("Seeded database (seed_only).")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
