from __future__ import annotations

from flask import Blueprint, abort, current_app, flash, jsonify, redirect, render_template, request, url_for
from sqlalchemy.exc import SQLAlchemyError

from app.casahub.db import db_session
from app.casahub.modules.kitchen.service import list_products
from app.casahub.modules.recipes.availability import evaluate_availability
from app.casahub.modules.recipes.models import Recipe
from app.casahub.modules.recipes.service import (
    check_recipe_availability,
    create_recipe,
    delete_recipe,
    list_recipes,
    update_recipe,
    validate_recipe_payload,
)
from app.casahub.rbac import AuthContext, require_permission
from app.casahub.utils import clean_str, is_valid_url, parse_int_id, parse_number

bp = Blueprint("recipes", __name__)


def _ingredients_from_form(errors: list[str]) -> list[dict]:
    names = request.form.getlist("ingredient_name")
    quantities = request.form.getlist("ingredient_quantity")
    units = request.form.getlist("ingredient_unit")
    product_ids = request.form.getlist("ingredient_product_id")

    lines = []
    for i, name in enumerate(names):
        qty_raw = quantities[i] if i < len(quantities) else ""
        unit = units[i] if i < len(units) else ""
        product_raw = product_ids[i] if i < len(product_ids) else ""
        # Blank rows come from the spare inputs at the bottom of the form.
        if not any((name or "").strip() or (v or "").strip() for v in (qty_raw, unit, product_raw)):
            continue
        lines.append(
            {
                "name": name,
                "quantity": parse_number(qty_raw, f"Ingredient {len(lines) + 1} quantity", errors),
                "unit": unit,
                "product_id": parse_int_id(product_raw),
            }
        )
    return lines


def _payload_from_form(errors: list[str]) -> dict:
    image_url = clean_str(request.form.get("image_url"))
    if image_url and not is_valid_url(image_url):
        errors.append("Image URL must start with http:// or https://.")
    return {
        "name": request.form.get("name"),
        "description": request.form.get("description"),
        "instructions": request.form.get("instructions"),
        "servings": parse_number(request.form.get("servings"), "Servings", errors, integer=True),
        "prep_time": parse_number(request.form.get("prep_time"), "Prep time", errors, integer=True),
        "cook_time": parse_number(request.form.get("cook_time"), "Cook time", errors, integer=True),
        "image_url": image_url,
        "ingredients": _ingredients_from_form(errors),
    }


@bp.get("/")
@require_permission("recipes.view")
def recipes_list(ctx: AuthContext):
    s = db_session()
    recipes = list_recipes(s)
    availability = {r.id: evaluate_availability(r) for r in recipes}
    return render_template("recipes/list.html", recipes=recipes, availability=availability)


@bp.get("/new")
@require_permission("recipes.edit")
def recipes_new_get(ctx: AuthContext):
    s = db_session()
    return render_template("recipes/form.html", recipe=None, products=list_products(s))


@bp.post("/new")
@require_permission("recipes.edit")
def recipes_new_post(ctx: AuthContext):
    s = db_session()
    errors: list[str] = []
    payload = _payload_from_form(errors)
    errors.extend(validate_recipe_payload(s, payload))
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("recipes.recipes_new_get"))

    recipe = create_recipe(s, payload, ctx.user)
    s.commit()
    flash(f"Recipe '{recipe.name}' created.", "success")
    return redirect(url_for("recipes.recipes_detail", recipe_id=recipe.id))


@bp.get("/<int:recipe_id>")
@require_permission("recipes.view")
def recipes_detail(recipe_id: int, ctx: AuthContext):
    s = db_session()
    recipe = s.get(Recipe, recipe_id)
    if not recipe:
        abort(404)
    report = evaluate_availability(recipe)
    return render_template("recipes/detail.html", recipe=recipe, report=report)


@bp.get("/<int:recipe_id>/availability")
@require_permission("recipes.view")
def recipes_availability(recipe_id: int, ctx: AuthContext):
    s = db_session()
    report = check_recipe_availability(s, recipe_id)
    if report is None:
        return jsonify({"error": "Recipe not found."}), 404
    return jsonify(report.to_dict())


@bp.get("/<int:recipe_id>/edit")
@require_permission("recipes.edit")
def recipes_edit_get(recipe_id: int, ctx: AuthContext):
    s = db_session()
    recipe = s.get(Recipe, recipe_id)
    if not recipe:
        abort(404)
    return render_template("recipes/form.html", recipe=recipe, products=list_products(s))


@bp.post("/<int:recipe_id>/edit")
@require_permission("recipes.edit")
def recipes_edit_post(recipe_id: int, ctx: AuthContext):
    s = db_session()
    recipe = s.get(Recipe, recipe_id)
    if not recipe:
        abort(404)

    errors: list[str] = []
    payload = _payload_from_form(errors)
    errors.extend(validate_recipe_payload(s, payload))
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("recipes.recipes_edit_get", recipe_id=recipe_id))

    try:
        update_recipe(s, recipe, payload, ctx.user)
        s.commit()
    except SQLAlchemyError:
        s.rollback()
        current_app.logger.exception("Recipe update failed (recipe_id=%s request_id=%s)", recipe_id, ctx.request_id)
        flash("Could not update the recipe; nothing was changed.", "danger")
        return redirect(url_for("recipes.recipes_edit_get", recipe_id=recipe_id))

    flash(f"Recipe '{recipe.name}' updated.", "success")
    return redirect(url_for("recipes.recipes_detail", recipe_id=recipe_id))


@bp.post("/<int:recipe_id>/delete")
@require_permission("recipes.edit")
def recipes_delete(recipe_id: int, ctx: AuthContext):
    s = db_session()
    recipe = s.get(Recipe, recipe_id)
    if not recipe:
        abort(404)
    name = recipe.name
    delete_recipe(s, recipe, ctx.user)
    s.commit()
    flash(f"Recipe '{name}' deleted.", "success")
    return redirect(url_for("recipes.recipes_list"))
