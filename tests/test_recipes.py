from datetime import datetime

import pytest
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.casahub.db import session_scope
from app.casahub.models import AuditEvent, User
from app.casahub.modules.kitchen.models import Product, ProductLocation
from app.casahub.modules.recipes.models import Recipe, RecipeIngredient
from app.casahub.modules.recipes.service import check_recipe_availability

from conftest import ADMIN_EMAIL, CSRF_TOKEN


def _product(app, name, quantity, unit="g", location="Pantry"):
    with session_scope(app) as s:
        loc = s.query(ProductLocation).filter(ProductLocation.name == location).one()
        now = datetime.utcnow()
        p = Product(name=name, quantity=quantity, unit=unit, location_id=loc.id, created_at=now, updated_at=now)
        s.add(p)
        s.flush()
        return p.id


def _recipe_form(name="Pancakes", lines=(), **extra):
    data = {
        "csrf_token": CSRF_TOKEN,
        "name": name,
        "description": "Sunday breakfast",
        "servings": "4",
        "prep_time": "10",
        "cook_time": "15",
        "instructions": "Mix. Fry.",
        "ingredient_name": [],
        "ingredient_quantity": [],
        "ingredient_unit": [],
        "ingredient_product_id": [],
    }
    for ing_name, qty, unit, product_id in lines:
        data["ingredient_name"].append(ing_name)
        data["ingredient_quantity"].append(qty)
        data["ingredient_unit"].append(unit)
        data["ingredient_product_id"].append(str(product_id or ""))
    # Spare blank row, as the form renders them.
    for key in ("ingredient_name", "ingredient_quantity", "ingredient_unit", "ingredient_product_id"):
        data[key].append("")
    data.update(extra)
    return data


def _create(app, admin_client, **kw):
    r = admin_client.post("/app/kitchen/recipes/new", data=_recipe_form(**kw))
    assert r.status_code == 302
    with session_scope(app) as s:
        return s.query(Recipe).order_by(Recipe.id.desc()).first().id


def test_recipes_list_empty(admin_client):
    r = admin_client.get("/app/kitchen/recipes/")
    assert r.status_code == 200
    assert b"No recipes yet." in r.data


def test_create_recipe_with_lines(app, admin_client):
    flour = _product(app, "Flour", 1000.0)
    rid = _create(app, admin_client, lines=[("Flour", "250", "g", flour), ("Eggs", "2", "units", None)])

    with session_scope(app) as s:
        recipe = s.get(Recipe, rid)
        assert recipe.name == "Pancakes"
        assert recipe.servings == 4
        assert [i.name for i in recipe.ingredients] == ["Flour", "Eggs"]
        assert [i.position for i in recipe.ingredients] == [0, 1]
        assert recipe.ingredients[0].product_id == flour
        assert recipe.ingredients[1].product_id is None
        admin = s.query(User).filter(User.email == ADMIN_EMAIL).one()
        assert recipe.created_by_user_id == admin.id
        assert s.query(AuditEvent).filter(AuditEvent.action == "recipe.create").count() == 1


def test_create_recipe_validation(app, admin_client):
    r = admin_client.post(
        "/app/kitchen/recipes/new",
        data=_recipe_form(name="", lines=[("", "2", "g", None), ("Salt", "abc", "", None)]),
        follow_redirects=True,
    )
    assert b"Recipe name is required." in r.data
    assert b"Ingredient 1: name is required." in r.data
    assert b"Ingredient 2: unit is required." in r.data
    with session_scope(app) as s:
        assert s.query(Recipe).count() == 0


def test_detail_shows_statuses(app, admin_client):
    sugar = _product(app, "Sugar", 50.0)
    rid = _create(app, admin_client, lines=[("Sugar", "100", "g", sugar)])

    r = admin_client.get(f"/app/kitchen/recipes/{rid}")
    assert r.status_code == 200
    assert b"badge status-insufficient" in r.data
    assert b"badge status-red" in r.data


def test_availability_endpoint(app, admin_client):
    flour = _product(app, "Flour", 1000.0)
    milk = _product(app, "Milk", 0.1, unit="l", location="Fridge")
    rid = _create(
        app,
        admin_client,
        lines=[("Flour", "250", "g", flour), ("Milk", "0.5", "l", milk), ("Salt", "1", "pinch", None), ("Eggs", "2", "units", None)],
    )

    r = admin_client.get(f"/app/kitchen/recipes/{rid}/availability")
    assert r.status_code == 200
    body = r.json
    assert body["status"] == "red"
    assert body["available"] == 1
    assert body["total"] == 4
    assert [i["status"] for i in body["ingredients"]] == ["available", "insufficient", "unknown", "unknown"]
    assert body["ingredients"][1]["missing"] == pytest.approx(0.4)

    # Stock is untouched by the check.
    with session_scope(app) as s:
        assert s.get(Product, flour).quantity == 1000.0


def test_availability_unknown_recipe(admin_client):
    r = admin_client.get("/app/kitchen/recipes/9999/availability")
    assert r.status_code == 404
    assert "error" in r.json


def test_check_recipe_availability_service(app, admin_client):
    rid = _create(app, admin_client, lines=[])
    with session_scope(app) as s:
        report = check_recipe_availability(s, rid)
        assert report.overall == "red"
        assert report.per_ingredient == []
        assert check_recipe_availability(s, rid + 100) is None


def test_update_replaces_all_lines(app, admin_client):
    rid = _create(app, admin_client, lines=[("Flour", "250", "g", None), ("Eggs", "2", "units", None)])

    r = admin_client.get(f"/app/kitchen/recipes/{rid}/edit")
    assert r.status_code == 200

    r = admin_client.post(
        f"/app/kitchen/recipes/{rid}/edit",
        data=_recipe_form(name="Crepes", lines=[("Milk", "0.3", "l", None)]),
    )
    assert r.status_code == 302

    with session_scope(app) as s:
        recipe = s.get(Recipe, rid)
        assert recipe.name == "Crepes"
        assert [(i.name, i.quantity, i.unit) for i in recipe.ingredients] == [("Milk", 0.3, "l")]
        assert s.query(RecipeIngredient).count() == 1


def test_invalid_update_changes_nothing(app, admin_client):
    rid = _create(app, admin_client, lines=[("Flour", "250", "g", None)])

    r = admin_client.post(
        f"/app/kitchen/recipes/{rid}/edit",
        data=_recipe_form(name="Renamed", lines=[("Bad", "-1", "g", None)]),
        follow_redirects=True,
    )
    assert b"Ingredient 1: quantity cannot be negative." in r.data

    with session_scope(app) as s:
        recipe = s.get(Recipe, rid)
        assert recipe.name == "Pancakes"
        assert [i.name for i in recipe.ingredients] == ["Flour"]


def test_delete_recipe_removes_lines(app, admin_client):
    rid = _create(app, admin_client, lines=[("Flour", "250", "g", None)])

    r = admin_client.post(f"/app/kitchen/recipes/{rid}/delete", data={"csrf_token": CSRF_TOKEN})
    assert r.status_code == 302

    with session_scope(app) as s:
        assert s.get(Recipe, rid) is None
        assert s.query(RecipeIngredient).count() == 0


def test_failed_update_rolls_back_fields_and_lines(app, admin_client, monkeypatch):
    rid = _create(app, admin_client, lines=[("Flour", "250", "g", None), ("Eggs", "2", "units", None)])
    real_flush = Session.flush

    def _flush_then_fail(self, *args, **kwargs):
        # Let the deletes/inserts reach the database, then fail the transaction.
        real_flush(self, *args, **kwargs)
        raise SQLAlchemyError("simulated write failure")

    monkeypatch.setattr(Session, "flush", _flush_then_fail)
    r = admin_client.post(
        f"/app/kitchen/recipes/{rid}/edit",
        data=_recipe_form(name="Crepes", lines=[("Milk", "0.3", "l", None)]),
    )
    monkeypatch.undo()

    assert r.status_code == 302
    assert r.headers["Location"].endswith(f"/app/kitchen/recipes/{rid}/edit")
    with session_scope(app) as s:
        recipe = s.get(Recipe, rid)
        assert recipe.name == "Pancakes"
        assert [(i.name, i.quantity) for i in recipe.ingredients] == [("Flour", 250.0), ("Eggs", 2.0)]
        assert s.query(RecipeIngredient).count() == 2
        assert s.query(AuditEvent).filter(AuditEvent.action == "recipe.edit").count() == 0


def test_non_finite_ingredient_quantity_is_rejected(app, admin_client):
    rid = _create(app, admin_client, lines=[("Flour", "250", "g", None)])

    r = admin_client.post(
        f"/app/kitchen/recipes/{rid}/edit",
        data=_recipe_form(lines=[("Flour", "nan", "g", None)]),
        follow_redirects=True,
    )
    assert b"Ingredient 1 quantity must be a finite number." in r.data
    with session_scope(app) as s:
        assert [i.quantity for i in s.get(Recipe, rid).ingredients] == [250.0]
