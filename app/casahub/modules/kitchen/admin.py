from __future__ import annotations

from flask import Blueprint, abort, current_app, flash, redirect, render_template, request, url_for

from app.casahub.db import db_session
from app.casahub.modules.kitchen.alerts import days_open, kitchen_now
from app.casahub.modules.kitchen.models import Product, ProductCategory, ProductLocation
from app.casahub.modules.kitchen.service import (
    create_category,
    create_location,
    create_product,
    delete_category,
    delete_location,
    delete_product,
    get_kitchen_alerts,
    kitchen_metadata,
    list_products,
    mark_product_opened,
    update_product,
    validate_product_payload,
)
from app.casahub.rbac import AuthContext, require_permission
from app.casahub.utils import parse_datetime, parse_int_id, parse_number

bp = Blueprint("kitchen", __name__)


def _payload_from_form(errors: list[str]) -> dict:
    return {
        "name": request.form.get("name"),
        "quantity": parse_number(request.form.get("quantity"), "Quantity", errors),
        "unit": request.form.get("unit"),
        "location_id": parse_int_id(request.form.get("location_id")),
        "category_id": parse_int_id(request.form.get("category_id")),
        "expiry_date": parse_datetime(request.form.get("expiry_date"), "Expiry date", errors),
        "opened_at": parse_datetime(request.form.get("opened_at"), "Opened date", errors),
        "min_stock": parse_number(request.form.get("min_stock"), "Minimum stock", errors),
        "notes": request.form.get("notes"),
    }


@bp.get("/")
@require_permission("kitchen.view")
def dashboard(ctx: AuthContext):
    s = db_session()
    now = kitchen_now()
    alerts = get_kitchen_alerts(s, now)
    return render_template("kitchen/dashboard.html", alerts=alerts, now=now, days_open=days_open)


@bp.get("/inventory")
@require_permission("kitchen.view")
def products_list(ctx: AuthContext):
    s = db_session()
    search = (request.args.get("q") or "").strip()
    location_id = parse_int_id(request.args.get("location_id"))
    category_id = parse_int_id(request.args.get("category_id"))
    products = list_products(s, location_id=location_id, category_id=category_id, search=search or None)
    locations, categories = kitchen_metadata(s)
    return render_template(
        "kitchen/inventory/list.html",
        products=products,
        locations=locations,
        categories=categories,
        search=search,
        location_id=location_id,
        category_id=category_id,
    )


@bp.get("/inventory/new")
@require_permission("kitchen.edit")
def products_new_get(ctx: AuthContext):
    s = db_session()
    locations, categories = kitchen_metadata(s)
    return render_template("kitchen/inventory/form.html", product=None, locations=locations, categories=categories)


@bp.post("/inventory/new")
@require_permission("kitchen.edit")
def products_new_post(ctx: AuthContext):
    s = db_session()
    errors: list[str] = []
    payload = _payload_from_form(errors)
    errors.extend(validate_product_payload(s, payload))
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("kitchen.products_new_get"))

    product = create_product(s, payload, ctx.user)
    s.commit()
    current_app.logger.info("Product created id=%s request_id=%s", product.id, ctx.request_id)
    flash(f"Product '{product.name}' created.", "success")
    return redirect(url_for("kitchen.products_list"))


@bp.get("/inventory/<int:product_id>/edit")
@require_permission("kitchen.edit")
def products_edit_get(product_id: int, ctx: AuthContext):
    s = db_session()
    product = s.get(Product, product_id)
    if not product:
        abort(404)
    locations, categories = kitchen_metadata(s)
    return render_template("kitchen/inventory/form.html", product=product, locations=locations, categories=categories)


@bp.post("/inventory/<int:product_id>/edit")
@require_permission("kitchen.edit")
def products_edit_post(product_id: int, ctx: AuthContext):
    s = db_session()
    product = s.get(Product, product_id)
    if not product:
        abort(404)

    errors: list[str] = []
    payload = _payload_from_form(errors)
    errors.extend(validate_product_payload(s, payload))
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("kitchen.products_edit_get", product_id=product_id))

    update_product(s, product, payload, ctx.user)
    s.commit()
    flash(f"Product '{product.name}' updated.", "success")
    return redirect(url_for("kitchen.products_list"))


@bp.post("/inventory/<int:product_id>/delete")
@require_permission("kitchen.edit")
def products_delete(product_id: int, ctx: AuthContext):
    s = db_session()
    product = s.get(Product, product_id)
    if not product:
        abort(404)
    name = product.name
    delete_product(s, product, ctx.user)
    s.commit()
    flash(f"Product '{name}' deleted.", "success")
    return redirect(url_for("kitchen.products_list"))


@bp.post("/inventory/<int:product_id>/open")
@require_permission("kitchen.edit")
def products_mark_opened(product_id: int, ctx: AuthContext):
    s = db_session()
    product = s.get(Product, product_id)
    if not product:
        abort(404)
    if mark_product_opened(s, product, ctx.user):
        s.commit()
        flash(f"'{product.name}' marked as opened.", "success")
    else:
        flash(f"'{product.name}' was already opened.", "info")
    return redirect(url_for("kitchen.products_list"))


@bp.get("/locations")
@require_permission("kitchen.view")
def metadata_list(ctx: AuthContext):
    s = db_session()
    locations, categories = kitchen_metadata(s)
    return render_template("kitchen/metadata.html", locations=locations, categories=categories)


@bp.post("/locations/new")
@require_permission("kitchen.edit")
def locations_new(ctx: AuthContext):
    s = db_session()
    try:
        loc = create_location(s, request.form.get("name") or "", request.form.get("icon"), ctx.user)
    except ValueError as e:
        flash(str(e), "danger")
        return redirect(url_for("kitchen.metadata_list"))
    s.commit()
    flash(f"Location '{loc.name}' created.", "success")
    return redirect(url_for("kitchen.metadata_list"))


@bp.post("/locations/<int:location_id>/delete")
@require_permission("kitchen.edit")
def locations_delete(location_id: int, ctx: AuthContext):
    s = db_session()
    loc = s.get(ProductLocation, location_id)
    if not loc:
        abort(404)
    try:
        delete_location(s, loc, ctx.user)
    except ValueError as e:
        flash(str(e), "danger")
        return redirect(url_for("kitchen.metadata_list"))
    s.commit()
    flash("Location deleted.", "success")
    return redirect(url_for("kitchen.metadata_list"))


@bp.post("/categories/new")
@require_permission("kitchen.edit")
def categories_new(ctx: AuthContext):
    s = db_session()
    try:
        cat = create_category(s, request.form.get("name") or "", ctx.user)
    except ValueError as e:
        flash(str(e), "danger")
        return redirect(url_for("kitchen.metadata_list"))
    s.commit()
    flash(f"Category '{cat.name}' created.", "success")
    return redirect(url_for("kitchen.metadata_list"))


@bp.post("/categories/<int:category_id>/delete")
@require_permission("kitchen.edit")
def categories_delete(category_id: int, ctx: AuthContext):
    s = db_session()
    cat = s.get(ProductCategory, category_id)
    if not cat:
        abort(404)
    delete_category(s, cat, ctx.user)
    s.commit()
    flash("Category deleted.", "success")
    return redirect(url_for("kitchen.metadata_list"))
