"""
User and role administration.

Handlers validate with the ``validate_*`` helpers (which return a list of
messages), then call the mutators; business-rule refusals raise ValueError.
"""
from __future__ import annotations

import re
from typing import TYPE_CHECKING

from sqlalchemy import func
from werkzeug.security import generate_password_hash

from app.casahub.audit import record_event
from app.casahub.constants import PASSWORD_MIN_LENGTH
from app.casahub.models import Permission, Role, User
from app.casahub.rbac import SYSTEM_ROLE_KEYS
from app.casahub.utils import is_valid_email, is_valid_url

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

_ROLE_KEY_RE = re.compile(r"^[a-z][a-z0-9_-]{1,63}$")


def _password_errors(password: str, confirm: str) -> list[str]:
    if not password:
        return ["Password is required."]
    if len(password) < PASSWORD_MIN_LENGTH:
        return [f"Password must be at least {PASSWORD_MIN_LENGTH} characters."]
    if password != confirm:
        return ["Passwords do not match."]
    return []


def validate_user_payload(s: "Session", payload: dict, *, existing: User | None = None) -> list[str]:
    errors = []
    if not (payload.get("name") or "").strip():
        errors.append("Name is required.")

    email = (payload.get("email") or "").strip().lower()
    if not email:
        errors.append("Email is required.")
    elif not is_valid_email(email):
        errors.append("Invalid email format.")
    else:
        other = s.query(User).filter(User.email == email).one_or_none()
        if other and (existing is None or other.id != existing.id):
            errors.append("An account with this email already exists.")

    password = payload.get("password") or ""
    if existing is None or password:
        errors.extend(_password_errors(password, payload.get("password_confirm") or ""))

    image_url = (payload.get("image_url") or "").strip()
    if image_url and not is_valid_url(image_url):
        errors.append("Image must be a valid http(s) URL.")

    if not payload.get("role_ids"):
        errors.append("Assign at least one role.")
    return errors


def _roles_for(s: "Session", role_ids: list[int]) -> list[Role]:
    if not role_ids:
        return []
    return s.query(Role).filter(Role.id.in_(role_ids)).order_by(Role.name.asc()).all()


def list_users(s: "Session") -> list[User]:
    return s.query(User).order_by(User.created_at.desc(), User.id.desc()).all()


def create_user(s: "Session", payload: dict, actor: User) -> User:
    user = User(
        name=(payload.get("name") or "").strip(),
        email=(payload.get("email") or "").strip().lower(),
        phone=(payload.get("phone") or "").strip() or None,
        image_url=(payload.get("image_url") or "").strip() or None,
        password_hash=generate_password_hash(payload["password"]),
        is_active=True,
    )
    user.roles = _roles_for(s, payload.get("role_ids") or [])
    s.add(user)
    s.flush()

    record_event(
        s,
        actor=actor,
        action="user.create",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"email": user.email, "roles": [r.key for r in user.roles]},
    )
    return user


def update_user(s: "Session", user: User, payload: dict, actor: User) -> User:
    is_active = bool(payload.get("is_active", True))
    if user.id == actor.id and not is_active:
        raise ValueError("You cannot deactivate your own account.")

    before = {"email": user.email, "is_active": user.is_active, "roles": [r.key for r in user.roles]}

    user.name = (payload.get("name") or "").strip()
    user.email = (payload.get("email") or "").strip().lower()
    user.phone = (payload.get("phone") or "").strip() or None
    user.image_url = (payload.get("image_url") or "").strip() or None
    user.is_active = is_active
    if payload.get("password"):
        user.password_hash = generate_password_hash(payload["password"])
    # Role set is replaced wholesale.
    user.roles = _roles_for(s, payload.get("role_ids") or [])

    after = {"email": user.email, "is_active": user.is_active, "roles": [r.key for r in user.roles]}
    record_event(
        s,
        actor=actor,
        action="user.update",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"before": before, "after": after, "password_changed": bool(payload.get("password"))},
    )
    return user


def delete_user(s: "Session", user: User, actor: User) -> None:
    if user.id == actor.id:
        raise ValueError("You cannot delete your own account.")
    record_event(
        s,
        actor=actor,
        action="user.delete",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"email": user.email},
    )
    s.delete(user)


def validate_role_payload(s: "Session", payload: dict, *, existing: Role | None = None) -> list[str]:
    errors = []
    if existing is None:
        key = (payload.get("key") or "").strip().lower()
        if not key:
            errors.append("Role key is required.")
        elif not _ROLE_KEY_RE.match(key):
            errors.append("Role key must be lower-case letters, digits, '-' or '_' (2-64 chars).")
        elif s.query(Role).filter(Role.key == key).one_or_none():
            errors.append("A role with this key already exists.")
    if not (payload.get("name") or "").strip():
        errors.append("Role name is required.")
    return errors


def list_roles_with_counts(s: "Session") -> list[tuple[Role, int]]:
    counts = dict(
        s.query(Role.id, func.count(User.id))
        .outerjoin(Role.users)
        .group_by(Role.id)
        .all()
    )
    roles = s.query(Role).order_by(Role.name.asc()).all()
    return [(r, counts.get(r.id, 0)) for r in roles]


def create_role(s: "Session", payload: dict, actor: User) -> Role:
    role = Role(
        key=(payload.get("key") or "").strip().lower(),
        name=(payload.get("name") or "").strip(),
        description=(payload.get("description") or "").strip() or None,
    )
    s.add(role)
    s.flush()
    record_event(s, actor=actor, action="role.create", entity_type="Role", entity_id=str(role.id), metadata={"key": role.key})
    return role


def update_role(s: "Session", role: Role, payload: dict, actor: User) -> Role:
    before = {"name": role.name, "permissions": sorted(p.key for p in role.permissions)}
    role.name = (payload.get("name") or "").strip()
    role.description = (payload.get("description") or "").strip() or None
    perm_keys = payload.get("permission_keys")
    if perm_keys is not None:
        role.permissions = s.query(Permission).filter(Permission.key.in_(perm_keys)).all() if perm_keys else []
    after = {"name": role.name, "permissions": sorted(p.key for p in role.permissions)}
    record_event(
        s,
        actor=actor,
        action="role.update",
        entity_type="Role",
        entity_id=str(role.id),
        metadata={"before": before, "after": after},
    )
    return role


def delete_role(s: "Session", role: Role, actor: User) -> None:
    if role.key in SYSTEM_ROLE_KEYS:
        raise ValueError(f"System roles ({', '.join(sorted(SYSTEM_ROLE_KEYS))}) cannot be deleted.")
    assigned = len(role.users)
    if assigned:
        raise ValueError(f"Cannot delete role '{role.name}': {assigned} user(s) are assigned to it.")
    record_event(s, actor=actor, action="role.delete", entity_type="Role", entity_id=str(role.id), metadata={"key": role.key})
    s.delete(role)
