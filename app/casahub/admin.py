from datetime import date, datetime, time, timedelta

from flask import Blueprint, abort, flash, redirect, render_template, request, url_for
from sqlalchemy import func

from app.casahub.accounts import (
    create_role,
    create_user,
    delete_role,
    delete_user,
    list_roles_with_counts,
    list_users,
    update_role,
    update_user,
    validate_role_payload,
    validate_user_payload,
)
from app.casahub.db import db_session
from app.casahub.models import AuditEvent, Permission, Role, User
from app.casahub.rbac import AuthContext, require_permission

bp = Blueprint("admin", __name__)


def _parse_date(s: str) -> date | None:
    s = (s or "").strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s)
    except ValueError:
        return None


def _role_ids_from_form() -> list[int]:
    ids = []
    for raw in request.form.getlist("role_ids"):
        try:
            ids.append(int(raw))
        except ValueError:
            continue
    return ids


def _user_payload_from_form() -> dict:
    return {
        "name": request.form.get("name"),
        "email": request.form.get("email"),
        "phone": request.form.get("phone"),
        "image_url": request.form.get("image_url"),
        "password": request.form.get("password") or "",
        "password_confirm": request.form.get("password_confirm") or "",
        "role_ids": _role_ids_from_form(),
        "is_active": request.form.get("is_active") == "1",
    }


@bp.get("/")
@require_permission("app.view")
def index(ctx: AuthContext):
    from app.casahub.modules.kitchen.models import Product
    from app.casahub.modules.kitchen.service import get_kitchen_alerts
    from app.casahub.modules.recipes.models import Recipe

    s = db_session()
    summary = {
        "products": s.query(func.count(Product.id)).scalar() or 0,
        "recipes": s.query(func.count(Recipe.id)).scalar() or 0,
        "alerts": get_kitchen_alerts(s).total if ctx.can("kitchen.view") else None,
    }
    return render_template("admin/index.html", summary=summary)


@bp.get("/me")
@require_permission("app.view")
def me(ctx: AuthContext):
    return render_template(
        "admin/me.html",
        user=ctx.user,
        role_keys=sorted(ctx.role_keys),
        perm_keys=sorted(ctx.permissions),
    )


@bp.get("/admin/audit")
@require_permission("admin.audit")
def audit_list(ctx: AuthContext):
    """
    Audit trail (last 200 events) with simple filters:
    - action (contains)
    - actor_email (contains)
    - date range (YYYY-MM-DD, inclusive)
    """
    s = db_session()
    action = (request.args.get("action") or "").strip()
    actor_email = (request.args.get("actor_email") or "").strip()
    date_from = _parse_date(request.args.get("date_from") or "")
    date_to = _parse_date(request.args.get("date_to") or "")

    if (request.args.get("date_from") or "").strip() and not date_from:
        flash("date_from must be YYYY-MM-DD", "danger")
    if (request.args.get("date_to") or "").strip() and not date_to:
        flash("date_to must be YYYY-MM-DD", "danger")

    q = s.query(AuditEvent)
    if action:
        q = q.filter(AuditEvent.action.like(f"%{action}%"))
    if actor_email:
        q = q.filter(AuditEvent.actor_user_email.like(f"%{actor_email.lower()}%"))
    if date_from:
        q = q.filter(AuditEvent.created_at >= datetime.combine(date_from, time.min))
    if date_to:
        q = q.filter(AuditEvent.created_at < datetime.combine(date_to + timedelta(days=1), time.min))

    events = q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(200).all()
    return render_template(
        "admin/audit/list.html",
        events=events,
        action=action,
        actor_email=actor_email,
        date_from=(request.args.get("date_from") or "").strip(),
        date_to=(request.args.get("date_to") or "").strip(),
    )


# ============================================================================
# USERS
# ============================================================================

@bp.get("/admin/users")
@require_permission("admin.users")
def users_list(ctx: AuthContext):
    s = db_session()
    return render_template("admin/users/list.html", users=list_users(s))


@bp.get("/admin/users/new")
@require_permission("admin.users")
def users_new_get(ctx: AuthContext):
    s = db_session()
    roles = s.query(Role).order_by(Role.name.asc()).all()
    return render_template("admin/users/form.html", account=None, roles=roles)


@bp.post("/admin/users/new")
@require_permission("admin.users")
def users_new_post(ctx: AuthContext):
    s = db_session()
    payload = _user_payload_from_form()
    errors = validate_user_payload(s, payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("admin.users_new_get"))

    user = create_user(s, payload, ctx.user)
    s.commit()
    flash(f"Account created for {user.email}.", "success")
    return redirect(url_for("admin.users_list"))


@bp.get("/admin/users/<int:user_id>")
@require_permission("admin.users")
def users_edit_get(user_id: int, ctx: AuthContext):
    s = db_session()
    user = s.get(User, user_id)
    if not user:
        abort(404)
    roles = s.query(Role).order_by(Role.name.asc()).all()
    return render_template("admin/users/form.html", account=user, roles=roles)


@bp.post("/admin/users/<int:user_id>")
@require_permission("admin.users")
def users_edit_post(user_id: int, ctx: AuthContext):
    s = db_session()
    user = s.get(User, user_id)
    if not user:
        abort(404)

    payload = _user_payload_from_form()
    errors = validate_user_payload(s, payload, existing=user)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("admin.users_edit_get", user_id=user_id))

    try:
        update_user(s, user, payload, ctx.user)
    except ValueError as e:
        flash(str(e), "danger")
        return redirect(url_for("admin.users_edit_get", user_id=user_id))
    s.commit()
    flash(f"Account updated for {user.email}.", "success")
    return redirect(url_for("admin.users_list"))


@bp.post("/admin/users/<int:user_id>/delete")
@require_permission("admin.users")
def users_delete(user_id: int, ctx: AuthContext):
    s = db_session()
    user = s.get(User, user_id)
    if not user:
        abort(404)
    email = user.email
    try:
        delete_user(s, user, ctx.user)
    except ValueError as e:
        flash(str(e), "danger")
        return redirect(url_for("admin.users_list"))
    s.commit()
    flash(f"Account {email} deleted.", "success")
    return redirect(url_for("admin.users_list"))


# ============================================================================
# ROLES
# ============================================================================

@bp.get("/admin/roles")
@require_permission("admin.roles")
def roles_list(ctx: AuthContext):
    s = db_session()
    return render_template("admin/roles/list.html", roles=list_roles_with_counts(s))


@bp.get("/admin/roles/new")
@require_permission("admin.roles")
def roles_new_get(ctx: AuthContext):
    return render_template("admin/roles/form.html", role=None, permissions=[])


@bp.post("/admin/roles/new")
@require_permission("admin.roles")
def roles_new_post(ctx: AuthContext):
    s = db_session()
    payload = {
        "key": request.form.get("key"),
        "name": request.form.get("name"),
        "description": request.form.get("description"),
    }
    errors = validate_role_payload(s, payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("admin.roles_new_get"))

    role = create_role(s, payload, ctx.user)
    s.commit()
    flash(f"Role '{role.name}' created.", "success")
    return redirect(url_for("admin.roles_edit_get", role_id=role.id))


@bp.get("/admin/roles/<int:role_id>")
@require_permission("admin.roles")
def roles_edit_get(role_id: int, ctx: AuthContext):
    s = db_session()
    role = s.get(Role, role_id)
    if not role:
        abort(404)
    permissions = s.query(Permission).order_by(Permission.key.asc()).all()
    return render_template("admin/roles/form.html", role=role, permissions=permissions)


@bp.post("/admin/roles/<int:role_id>")
@require_permission("admin.roles")
def roles_edit_post(role_id: int, ctx: AuthContext):
    s = db_session()
    role = s.get(Role, role_id)
    if not role:
        abort(404)
    payload = {
        "name": request.form.get("name"),
        "description": request.form.get("description"),
        "permission_keys": request.form.getlist("permission_keys"),
    }
    errors = validate_role_payload(s, payload, existing=role)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("admin.roles_edit_get", role_id=role_id))

    update_role(s, role, payload, ctx.user)
    s.commit()
    flash(f"Role '{role.name}' updated.", "success")
    return redirect(url_for("admin.roles_list"))


@bp.post("/admin/roles/<int:role_id>/delete")
@require_permission("admin.roles")
def roles_delete(role_id: int, ctx: AuthContext):
    s = db_session()
    role = s.get(Role, role_id)
    if not role:
        abort(404)
    try:
        delete_role(s, role, ctx.user)
    except ValueError as e:
        flash(str(e), "danger")
        return redirect(url_for("admin.roles_list"))
    s.commit()
    flash("Role deleted.", "success")
    return redirect(url_for("admin.roles_list"))
