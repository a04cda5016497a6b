from __future__ import annotations

from datetime import datetime, timedelta

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, session, url_for
from werkzeug.security import check_password_hash

from app.casahub.audit import record_event
from app.casahub.db import db_session
from app.casahub.models import User
from app.casahub.rbac import current_context

bp = Blueprint("auth", __name__)

LOGIN_RATE_LIMIT = 5
LOGIN_RATE_WINDOW = timedelta(minutes=5)

# ip -> recent failed/attempted sign-ins, oldest first. Only IPs with an
# attempt inside the window are kept.
_login_attempts: dict[str, list[datetime]] = {}


def _prune_attempts(now: datetime) -> None:
    cutoff = now - LOGIN_RATE_WINDOW
    for ip in list(_login_attempts):
        recent = [t for t in _login_attempts[ip] if t > cutoff]
        if recent:
            _login_attempts[ip] = recent
        else:
            del _login_attempts[ip]


def is_rate_limited(ip: str, now: datetime | None = None) -> bool:
    _prune_attempts(now or datetime.utcnow())
    return len(_login_attempts.get(ip, ())) >= LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts.setdefault(ip, []).append(datetime.utcnow())


def _safe_next(nxt: str) -> str | None:
    # Local paths only; "//host" would be an open redirect.
    if nxt.startswith("/") and not nxt.startswith("//"):
        return nxt
    return None


@bp.get("/login")
def login_get():
    return render_template("auth/login.html", next=(request.args.get("next") or "").strip())


@bp.post("/login")
def login_post():
    email = (request.form.get("email") or "").strip().lower()
    password = request.form.get("password") or ""
    nxt = (request.form.get("next") or "").strip()
    ip = request.remote_addr or "unknown"

    if is_rate_limited(ip):
        current_app.logger.warning("Login rate limit hit (ip=%s)", ip)
        flash("Too many login attempts. Please wait 5 minutes.", "danger")
        return redirect(url_for("auth.login_get"))
    _record_attempt(ip)

    s = db_session()
    user = s.query(User).filter(User.email == email).one_or_none()
    if not user or not user.is_active or not check_password_hash(user.password_hash, password):
        record_event(
            s,
            actor=None,
            action="auth.login_failed",
            entity_type="User",
            entity_id=email,
            reason="Invalid credentials",
            metadata={"email": email},
        )
        s.commit()
        current_app.logger.info("Login failed (email=%s ip=%s request_id=%s)", email, ip, g.request_id)
        flash("Invalid credentials.", "danger")
        return redirect(url_for("auth.login_get"))

    # Fresh session on sign-in; the CSRF guard issues a new token on the next request.
    session.clear()
    session["user_id"] = user.id
    _login_attempts.pop(ip, None)
    record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
    s.commit()
    return redirect(_safe_next(nxt) or url_for("admin.index"))


@bp.get("/logout")
def logout():
    ctx = current_context()
    if ctx is not None:
        s = db_session()
        record_event(s, actor=ctx.user, action="auth.logout", entity_type="User", entity_id=str(ctx.user.id))
        s.commit()
    session.clear()
    return redirect(url_for("routes.index"))
