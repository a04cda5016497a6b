from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from app.casahub.audit import record_event
from app.casahub.modules.recipes.availability import AvailabilityReport, evaluate_availability
from app.casahub.modules.recipes.models import Recipe, RecipeIngredient

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.casahub.models import User

_RECIPE_FIELDS = ("name", "description", "instructions", "servings", "prep_time", "cook_time", "image_url")


def validate_recipe_payload(s: "Session", payload: dict) -> list[str]:
    from app.casahub.modules.kitchen.models import Product

    errors = []
    if not (payload.get("name") or "").strip():
        errors.append("Recipe name is required.")
    for attr, label in (("servings", "Servings"), ("prep_time", "Prep time"), ("cook_time", "Cook time")):
        val = payload.get(attr)
        if val is not None and val < 0:
            errors.append(f"{label} cannot be negative.")

    for n, ing in enumerate(payload.get("ingredients") or [], start=1):
        if not (ing.get("name") or "").strip():
            errors.append(f"Ingredient {n}: name is required.")
        qty = ing.get("quantity")
        if qty is None:
            errors.append(f"Ingredient {n}: quantity is required.")
        elif qty < 0:
            errors.append(f"Ingredient {n}: quantity cannot be negative.")
        if not (ing.get("unit") or "").strip():
            errors.append(f"Ingredient {n}: unit is required.")
        product_id = ing.get("product_id")
        if product_id and s.get(Product, product_id) is None:
            errors.append(f"Ingredient {n}: linked product not found.")
    return errors


def _recipe_values(payload: dict) -> dict:
    return {
        "name": (payload.get("name") or "").strip(),
        "description": (payload.get("description") or "").strip() or None,
        "instructions": (payload.get("instructions") or "").strip() or None,
        "servings": payload.get("servings"),
        "prep_time": payload.get("prep_time"),
        "cook_time": payload.get("cook_time"),
        "image_url": (payload.get("image_url") or "").strip() or None,
    }


def _build_ingredients(payload: dict) -> list[RecipeIngredient]:
    return [
        RecipeIngredient(
            position=pos,
            name=(ing.get("name") or "").strip(),
            quantity=float(ing.get("quantity") or 0),
            unit=(ing.get("unit") or "").strip(),
            product_id=ing.get("product_id") or None,
        )
        for pos, ing in enumerate(payload.get("ingredients") or [])
    ]


def list_recipes(s: "Session") -> list[Recipe]:
    return s.query(Recipe).order_by(Recipe.name.asc(), Recipe.id.asc()).all()


def create_recipe(s: "Session", payload: dict, user: "User") -> Recipe:
    now = datetime.utcnow()
    recipe = Recipe(**_recipe_values(payload), created_at=now, updated_at=now, created_by_user_id=user.id)
    recipe.ingredients = _build_ingredients(payload)
    s.add(recipe)
    s.flush()

    record_event(
        s,
        actor=user,
        action="recipe.create",
        entity_type="Recipe",
        entity_id=str(recipe.id),
        metadata={"name": recipe.name, "ingredients": len(recipe.ingredients)},
    )
    return recipe


def update_recipe(s: "Session", recipe: Recipe, payload: dict, user: "User") -> Recipe:
    """
    Update fields and replace every ingredient line.

    Old lines are orphaned (and deleted) and new ones written in the caller's
    transaction, so a single commit applies all of it or none of it.
    """
    changes = {}
    for attr, val in _recipe_values(payload).items():
        if val != getattr(recipe, attr):
            changes[attr] = {"old": getattr(recipe, attr), "new": val}
            setattr(recipe, attr, val)

    old_count = len(recipe.ingredients)
    recipe.ingredients.clear()
    recipe.ingredients.extend(_build_ingredients(payload))
    recipe.updated_at = datetime.utcnow()
    s.flush()

    record_event(
        s,
        actor=user,
        action="recipe.edit",
        entity_type="Recipe",
        entity_id=str(recipe.id),
        metadata={"changes": changes, "ingredients": {"old": old_count, "new": len(recipe.ingredients)}},
    )
    return recipe


def delete_recipe(s: "Session", recipe: Recipe, user: "User") -> None:
    record_event(
        s,
        actor=user,
        action="recipe.delete",
        entity_type="Recipe",
        entity_id=str(recipe.id),
        metadata={"name": recipe.name},
    )
    s.delete(recipe)


def check_recipe_availability(s: "Session", recipe_id: int) -> AvailabilityReport | None:
    recipe = s.get(Recipe, recipe_id)
    if recipe is None:
        return None
    return evaluate_availability(recipe)
