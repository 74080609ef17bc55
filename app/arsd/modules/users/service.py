from __future__ import annotations

import re
from typing import TYPE_CHECKING

from werkzeug.security import generate_password_hash

from app.arsd.audit import record_event
from app.arsd.errors import ForbiddenError, NotFoundError, ValidationError
from app.arsd.models import USER_STATUSES, Role, User

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

_MIN_PASSWORD_LENGTH = 8
_EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")


def list_users(s: "Session", *, status: str | None = None, search: str | None = None) -> list[User]:
    q = s.query(User)
    if status:
        q = q.filter(User.status == status)
    if search:
        like = f"%{search.strip().lower()}%"
        q = q.filter((User.email.ilike(like)) | (User.display_name.ilike(like)))
    return q.order_by(User.created_at.desc(), User.id.desc()).all()


def get_user(s: "Session", user_id: int) -> User:
    user = s.get(User, user_id)
    if not user:
        raise NotFoundError(f"User {user_id} not found")
    return user


def list_roles(s: "Session") -> list[Role]:
    return s.query(Role).order_by(Role.name.asc()).all()


def _check_not_self(target: User, actor: User) -> None:
    if target.id == actor.id:
        raise ForbiddenError("You cannot modify your own account from this page.")


def set_user_roles(s: "Session", target: User, role_keys: list[str], actor: User) -> User:
    """
    Replace a user's roles. Assigning a real role to a pending account activates
    it; clearing every role sends it back to pending.
    """
    _check_not_self(target, actor)
    keys = sorted({k for k in role_keys if k and k != "pending"})
    roles = s.query(Role).filter(Role.key.in_(keys)).all() if keys else []
    unknown = set(keys) - {r.key for r in roles}
    if unknown:
        raise ValidationError(f"Unknown role(s): {', '.join(sorted(unknown))}")

    before = {"roles": sorted(target.role_keys), "status": target.status}
    target.roles.clear()
    for role in roles:
        target.roles.append(role)
    if roles and target.status == "pending":
        target.status = "active"
    elif not roles and target.status == "active":
        target.status = "pending"

    record_event(
        s,
        actor=actor,
        action="user.set_roles",
        entity_type="User",
        entity_id=str(target.id),
        metadata={"before": before, "after": {"roles": keys, "status": target.status}},
    )
    s.flush()
    return target


def set_user_status(s: "Session", target: User, status: str, actor: User) -> User:
    _check_not_self(target, actor)
    if status not in USER_STATUSES:
        raise ValidationError(f"Invalid status: {status}")
    before = target.status
    target.status = status
    target.is_active = status != "inactive"
    record_event(
        s,
        actor=actor,
        action="user.set_status",
        entity_type="User",
        entity_id=str(target.id),
        metadata={"before": before, "after": status},
    )
    s.flush()
    return target


def create_user(
    s: "Session",
    *,
    email: str,
    password: str,
    display_name: str | None,
    role_keys: list[str],
    actor: User,
) -> User:
    email = (email or "").strip().lower()
    errors = []
    if not email:
        errors.append("Email is required.")
    elif not _EMAIL_RE.match(email):
        errors.append("Invalid email format.")
    elif s.query(User).filter(User.email == email).one_or_none():
        errors.append("An account with this email already exists.")
    if len(password or "") < _MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {_MIN_PASSWORD_LENGTH} characters.")
    if errors:
        raise ValidationError(errors[0], errors=errors)

    roles = s.query(Role).filter(Role.key.in_(role_keys)).all() if role_keys else []
    user = User(
        email=email,
        password_hash=generate_password_hash(password),
        display_name=(display_name or "").strip() or None,
        status="active" if roles else "pending",
        is_active=True,
    )
    user.roles.extend(roles)
    s.add(user)
    s.flush()
    record_event(
        s,
        actor=actor,
        action="user.create",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"email": email, "roles": sorted(r.key for r in roles)},
    )
    return user


def reset_password(s: "Session", target: User, password: str, actor: User) -> None:
    if len(password or "") < _MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {_MIN_PASSWORD_LENGTH} characters.")
    target.password_hash = generate_password_hash(password)
    record_event(
        s,
        actor=actor,
        action="user.password_reset",
        entity_type="User",
        entity_id=str(target.id),
        metadata={"target_email": target.email, "reset_by": actor.email},
    )
    s.flush()
