from datetime import datetime, timedelta

from app.casahub.db import session_scope
from app.casahub.models import AuditEvent, User
from app.casahub.modules.kitchen.models import Product, ProductCategory, ProductLocation
from app.casahub.modules.kitchen.service import create_product, mark_product_opened
from app.casahub.modules.recipes.models import Recipe, RecipeIngredient

from conftest import ADMIN_EMAIL, CSRF_TOKEN


def _location_id(app, name="Fridge"):
    with session_scope(app) as s:
        return s.query(ProductLocation).filter(ProductLocation.name == name).one().id


def _category_id(app, name="Dairy"):
    with session_scope(app) as s:
        return s.query(ProductCategory).filter(ProductCategory.name == name).one().id


def _add_product(app, name="Milk", location="Fridge", **kw):
    with session_scope(app) as s:
        admin = s.query(User).filter(User.email == ADMIN_EMAIL).one()
        loc = s.query(ProductLocation).filter(ProductLocation.name == location).one()
        payload = {"name": name, "quantity": 1.0, "unit": "l", "location_id": loc.id}
        payload.update(kw)
        return create_product(s, payload, admin).id


def test_kitchen_requires_auth(client):
    r = client.get("/app/kitchen/")
    assert r.status_code == 302


def test_dashboard_all_clear(admin_client):
    r = admin_client.get("/app/kitchen/")
    assert r.status_code == 200
    assert b"All clear" in r.data


def test_dashboard_shows_alert_buckets(app, admin_client):
    _add_product(app, "Yogurt", expiry_date=datetime.now() + timedelta(days=1))
    _add_product(app, "Eggs", quantity=2.0, min_stock=6.0)
    _add_product(app, "Pesto", opened_at=datetime.now() - timedelta(days=12))

    r = admin_client.get("/app/kitchen/")
    assert r.status_code == 200
    assert b"All clear" not in r.data
    assert b"Yogurt" in r.data
    assert b"Eggs" in r.data
    assert b"Pesto" in r.data


def test_create_product(app, admin_client):
    r = admin_client.post(
        "/app/kitchen/inventory/new",
        data={
            "csrf_token": CSRF_TOKEN,
            "name": "  Parmesan ",
            "quantity": "0,5",
            "unit": "kg",
            "location_id": str(_location_id(app)),
            "category_id": str(_category_id(app)),
            "expiry_date": "2026-12-01",
            "min_stock": "0.2",
        },
    )
    assert r.status_code == 302

    with session_scope(app) as s:
        p = s.query(Product).filter(Product.name == "Parmesan").one()
        assert p.quantity == 0.5
        assert p.unit == "kg"
        assert p.category.name == "Dairy"
        assert p.expiry_date == datetime(2026, 12, 1)
        assert p.min_stock == 0.2
        assert p.opened_at is None
        assert s.query(AuditEvent).filter(AuditEvent.action == "product.create").count() == 1


def test_create_product_validation(app, admin_client):
    r = admin_client.post(
        "/app/kitchen/inventory/new",
        data={"csrf_token": CSRF_TOKEN, "name": "", "quantity": "-1", "unit": "", "location_id": ""},
        follow_redirects=True,
    )
    assert r.status_code == 200
    assert b"Name is required." in r.data
    assert b"Quantity cannot be negative." in r.data
    assert b"Location is required." in r.data

    with session_scope(app) as s:
        assert s.query(Product).count() == 0


def test_create_product_rejects_unknown_location(app, admin_client):
    r = admin_client.post(
        "/app/kitchen/inventory/new",
        data={"csrf_token": CSRF_TOKEN, "name": "Tea", "quantity": "1", "unit": "box", "location_id": "9999"},
        follow_redirects=True,
    )
    assert b"Location not found." in r.data


def test_edit_product(app, admin_client):
    pid = _add_product(app, "Butter", location="Fridge", quantity=250.0, unit="g")
    r = admin_client.get(f"/app/kitchen/inventory/{pid}/edit")
    assert r.status_code == 200
    assert b"Butter" in r.data

    r = admin_client.post(
        f"/app/kitchen/inventory/{pid}/edit",
        data={
            "csrf_token": CSRF_TOKEN,
            "name": "Butter",
            "quantity": "100",
            "unit": "g",
            "location_id": str(_location_id(app, "Freezer")),
        },
    )
    assert r.status_code == 302

    with session_scope(app) as s:
        p = s.get(Product, pid)
        assert p.quantity == 100.0
        assert p.location.name == "Freezer"


def test_list_filters(app, admin_client):
    _add_product(app, "Whole milk", location="Fridge")
    _add_product(app, "Frozen peas", location="Freezer")
    _add_product(app, "Oat milk", location="Pantry")

    r = admin_client.get("/app/kitchen/inventory?q=MILK")
    assert b"Whole milk" in r.data
    assert b"Oat milk" in r.data
    assert b"Frozen peas" not in r.data

    r = admin_client.get(f"/app/kitchen/inventory?location_id={_location_id(app, 'Freezer')}")
    assert b"Frozen peas" in r.data
    assert b"Whole milk" not in r.data


def test_mark_opened_only_once(app, admin_client):
    pid = _add_product(app, "Jam", location="Pantry")

    r = admin_client.post(f"/app/kitchen/inventory/{pid}/open", data={"csrf_token": CSRF_TOKEN})
    assert r.status_code == 302
    with session_scope(app) as s:
        first = s.get(Product, pid).opened_at
    assert first is not None

    r = admin_client.post(f"/app/kitchen/inventory/{pid}/open", data={"csrf_token": CSRF_TOKEN}, follow_redirects=True)
    assert b"already opened" in r.data
    with session_scope(app) as s:
        assert s.get(Product, pid).opened_at == first
        assert s.query(AuditEvent).filter(AuditEvent.action == "product.opened").count() == 1


def test_mark_product_opened_uses_given_clock(app):
    pid = _add_product(app, "Mustard", location="Fridge")
    stamp = datetime(2026, 1, 2, 8, 30)
    with session_scope(app) as s:
        admin = s.query(User).filter(User.email == ADMIN_EMAIL).one()
        assert mark_product_opened(s, s.get(Product, pid), admin, now=stamp) is True
    with session_scope(app) as s:
        assert s.get(Product, pid).opened_at == stamp


def test_delete_product_unlinks_recipe_lines(app, admin_client):
    pid = _add_product(app, "Flour", location="Pantry", quantity=1000.0, unit="g")
    with session_scope(app) as s:
        recipe = Recipe(name="Bread", created_at=datetime.utcnow(), updated_at=datetime.utcnow())
        recipe.ingredients = [RecipeIngredient(position=0, name="Flour", quantity=500.0, unit="g", product_id=pid)]
        s.add(recipe)

    r = admin_client.post(f"/app/kitchen/inventory/{pid}/delete", data={"csrf_token": CSRF_TOKEN})
    assert r.status_code == 302

    with session_scope(app) as s:
        assert s.get(Product, pid) is None
        line = s.query(RecipeIngredient).one()
        assert line.name == "Flour"
        assert line.product_id is None


def test_locations_and_categories(app, admin_client):
    r = admin_client.get("/app/kitchen/locations")
    assert r.status_code == 200
    assert b"Fridge" in r.data
    assert b"Dairy" in r.data

    admin_client.post("/app/kitchen/locations/new", data={"csrf_token": CSRF_TOKEN, "name": "Cellar", "icon": "wine"})
    r = admin_client.post("/app/kitchen/locations/new", data={"csrf_token": CSRF_TOKEN, "name": "cellar"}, follow_redirects=True)
    assert b"already exists" in r.data

    admin_client.post("/app/kitchen/categories/new", data={"csrf_token": CSRF_TOKEN, "name": "Bakery"})
    with session_scope(app) as s:
        assert s.query(ProductLocation).filter(ProductLocation.name == "Cellar").one().icon == "wine"
        assert s.query(ProductCategory).filter(ProductCategory.name == "Bakery").count() == 1


def test_delete_location_in_use_is_refused(app, admin_client):
    _add_product(app, "Cheese", location="Fridge")
    loc_id = _location_id(app, "Fridge")

    r = admin_client.post(f"/app/kitchen/locations/{loc_id}/delete", data={"csrf_token": CSRF_TOKEN}, follow_redirects=True)
    assert b"Cannot delete location" in r.data
    with session_scope(app) as s:
        assert s.get(ProductLocation, loc_id) is not None

    empty_id = _location_id(app, "Spice rack")
    admin_client.post(f"/app/kitchen/locations/{empty_id}/delete", data={"csrf_token": CSRF_TOKEN})
    with session_scope(app) as s:
        assert s.get(ProductLocation, empty_id) is None


def test_delete_category_uncategorizes_products(app, admin_client):
    cat_id = _category_id(app, "Dairy")
    pid = _add_product(app, "Cream", location="Fridge", category_id=cat_id)

    admin_client.post(f"/app/kitchen/categories/{cat_id}/delete", data={"csrf_token": CSRF_TOKEN})

    with session_scope(app) as s:
        assert s.get(ProductCategory, cat_id) is None
        assert s.get(Product, pid).category_id is None


def test_non_finite_quantities_are_rejected(app, admin_client):
    for raw in ("nan", "inf", "-inf", "1e999"):
        r = admin_client.post(
            "/app/kitchen/inventory/new",
            data={"csrf_token": CSRF_TOKEN, "name": "Rice", "quantity": raw, "unit": "kg", "location_id": str(_location_id(app, "Pantry"))},
            follow_redirects=True,
        )
        assert r.status_code == 200
        assert b"Quantity must be a finite number." in r.data

    r = admin_client.post(
        "/app/kitchen/inventory/new",
        data={"csrf_token": CSRF_TOKEN, "name": "Rice", "quantity": "1", "unit": "kg", "location_id": str(_location_id(app, "Pantry")), "min_stock": "NaN"},
        follow_redirects=True,
    )
    assert b"Minimum stock must be a finite number." in r.data

    with session_scope(app) as s:
        assert s.query(Product).count() == 0


def test_dashboard_uses_local_clock(app, admin_client):
    # Form dates are local midnight; tomorrow must be "expiring soon" whatever the UTC offset.
    tomorrow = (datetime.now() + timedelta(days=1)).strftime("%Y-%m-%d")
    admin_client.post(
        "/app/kitchen/inventory/new",
        data={
            "csrf_token": CSRF_TOKEN,
            "name": "Fresh pasta",
            "quantity": "1",
            "unit": "pack",
            "location_id": str(_location_id(app)),
            "expiry_date": tomorrow,
        },
    )
    r = admin_client.get("/app/kitchen/")
    assert b"Fresh pasta" in r.data
    assert b"All clear" not in r.data

    pid = _add_product(app, "Ketchup")
    with session_scope(app) as s:
        admin = s.query(User).filter(User.email == ADMIN_EMAIL).one()
        mark_product_opened(s, s.get(Product, pid), admin)
    with session_scope(app) as s:
        assert abs(s.get(Product, pid).opened_at - datetime.now()) < timedelta(minutes=1)
