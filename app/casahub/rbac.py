from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from functools import wraps
from typing import Any

from flask import abort, current_app, g, redirect, request, session, url_for
from sqlalchemy.exc import SQLAlchemyError

from app.casahub.db import db_session
from app.casahub.models import User

ADMIN_ROLE_KEY = "admin"
USER_ROLE_KEY = "user"
SYSTEM_ROLE_KEYS = frozenset({ADMIN_ROLE_KEY, USER_ROLE_KEY})

# Permission catalogue: key -> display name. Seeded by scripts/init_db.py.
PERMISSIONS: dict[str, str] = {
    "app.view": "App: view dashboard",
    "kitchen.view": "Kitchen: view inventory",
    "kitchen.edit": "Kitchen: edit inventory",
    "recipes.view": "Recipes: view",
    "recipes.edit": "Recipes: edit",
    "admin.users": "Admin: manage users",
    "admin.roles": "Admin: manage roles",
    "admin.audit": "Admin: view audit log",
}
MEMBER_PERMISSIONS = ("app.view", "kitchen.view", "kitchen.edit", "recipes.view", "recipes.edit")


@dataclass(frozen=True)
class AuthContext:
    """Who is acting on this request. Built once per request and handed to views."""

    user: User
    permissions: frozenset[str] = field(default_factory=frozenset)
    role_keys: frozenset[str] = field(default_factory=frozenset)
    request_id: str | None = None

    @property
    def is_admin(self) -> bool:
        return ADMIN_ROLE_KEY in self.role_keys

    def can(self, permission_key: str) -> bool:
        return permission_key in self.permissions


def build_context(user: User, request_id: str | None = None) -> AuthContext:
    perms: set[str] = set()
    for role in user.roles:
        for perm in role.permissions:
            perms.add(perm.key)
    return AuthContext(
        user=user,
        permissions=frozenset(perms),
        role_keys=frozenset(r.key for r in user.roles),
        request_id=request_id,
    )


def current_context() -> AuthContext | None:
    return getattr(g, "auth_ctx", None)


def load_request_context() -> None:
    """
    Before-request hook: assign g.request_id (audit/log correlation), resolve
    the signed-in user from the session cookie and build their AuthContext once.
    """
    g.request_id = uuid.uuid4().hex
    g.current_user = None
    g.auth_ctx = None
    if request.path.startswith(("/static/", "/health", "/healthz")):
        return

    user_id = session.get("user_id")
    if not user_id:
        return

    try:
        user = db_session().get(User, int(user_id))
    except (SQLAlchemyError, TypeError, ValueError) as e:
        current_app.logger.error("Loading session user failed (clearing session): %s", e)
        session.pop("user_id", None)
        return
    if not user or not user.is_active:
        session.pop("user_id", None)
        return

    g.current_user = user
    g.auth_ctx = build_context(user, g.request_id)


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Gate a view on a permission key and pass the caller's AuthContext as ``ctx``.
    """

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            ctx = current_context()
            if ctx is None:
                nxt = request.full_path or request.path
                # full_path ends in '?' when there is no query string.
                if nxt.endswith("?"):
                    nxt = nxt[:-1]
                return redirect(url_for("auth.login_get", next=nxt))
            if not ctx.can(permission_key):
                g.missing_permission = permission_key
                abort(403)
            return fn(*args, ctx=ctx, **kwargs)

        return wrapped

    return decorator
