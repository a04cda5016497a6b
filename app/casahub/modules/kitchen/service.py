from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import func

from app.casahub.audit import record_event
from app.casahub.modules.kitchen.alerts import KitchenAlerts, evaluate_alerts, kitchen_now
from app.casahub.modules.kitchen.models import Product, ProductCategory, ProductLocation

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.casahub.models import User

_PRODUCT_FIELDS = ("name", "quantity", "unit", "location_id", "category_id", "expiry_date", "opened_at", "min_stock", "notes")


def validate_product_payload(s: "Session", payload: dict) -> list[str]:
    errors = []
    if not (payload.get("name") or "").strip():
        errors.append("Name is required.")
    quantity = payload.get("quantity")
    if quantity is None:
        errors.append("Quantity is required.")
    elif quantity < 0:
        errors.append("Quantity cannot be negative.")
    if not (payload.get("unit") or "").strip():
        errors.append("Unit is required.")
    location_id = payload.get("location_id")
    if not location_id:
        errors.append("Location is required.")
    elif s.get(ProductLocation, location_id) is None:
        errors.append("Location not found.")
    category_id = payload.get("category_id")
    if category_id and s.get(ProductCategory, category_id) is None:
        errors.append("Category not found.")
    min_stock = payload.get("min_stock")
    if min_stock is not None and min_stock < 0:
        errors.append("Minimum stock cannot be negative.")
    return errors


def _normalized(payload: dict) -> dict:
    return {
        "name": (payload.get("name") or "").strip(),
        "quantity": float(payload.get("quantity") or 0),
        "unit": (payload.get("unit") or "").strip(),
        "location_id": payload.get("location_id"),
        "category_id": payload.get("category_id") or None,
        "expiry_date": payload.get("expiry_date"),
        "opened_at": payload.get("opened_at"),
        "min_stock": payload.get("min_stock"),
        "notes": (payload.get("notes") or "").strip() or None,
    }


def list_products(
    s: "Session",
    *,
    location_id: int | None = None,
    category_id: int | None = None,
    search: str | None = None,
) -> list[Product]:
    q = s.query(Product)
    if location_id:
        q = q.filter(Product.location_id == location_id)
    if category_id:
        q = q.filter(Product.category_id == category_id)
    if search:
        q = q.filter(func.lower(Product.name).contains(search.strip().lower(), autoescape=True))
    return q.order_by(Product.name.asc(), Product.id.asc()).all()


def kitchen_metadata(s: "Session") -> tuple[list[ProductLocation], list[ProductCategory]]:
    locations = s.query(ProductLocation).order_by(ProductLocation.name.asc()).all()
    categories = s.query(ProductCategory).order_by(ProductCategory.name.asc()).all()
    return locations, categories


def create_product(s: "Session", payload: dict, user: "User") -> Product:
    now = datetime.utcnow()
    product = Product(**_normalized(payload), created_at=now, updated_at=now)
    s.add(product)
    s.flush()

    record_event(
        s,
        actor=user,
        action="product.create",
        entity_type="Product",
        entity_id=str(product.id),
        metadata={"name": product.name, "quantity": product.quantity, "unit": product.unit},
    )
    return product


def update_product(s: "Session", product: Product, payload: dict, user: "User") -> Product:
    changes = {}
    values = _normalized(payload)
    for attr in _PRODUCT_FIELDS:
        val = values[attr]
        if val != getattr(product, attr):
            changes[attr] = {"old": getattr(product, attr), "new": val}
            setattr(product, attr, val)

    product.updated_at = datetime.utcnow()

    record_event(
        s,
        actor=user,
        action="product.edit",
        entity_type="Product",
        entity_id=str(product.id),
        metadata={"changes": changes},
    )
    return product


def delete_product(s: "Session", product: Product, user: "User") -> None:
    from app.casahub.modules.recipes.models import RecipeIngredient

    # Recipes keep their ingredient lines; only the stock link goes away.
    unlinked = (
        s.query(RecipeIngredient)
        .filter(RecipeIngredient.product_id == product.id)
        .update({"product_id": None}, synchronize_session="fetch")
    )
    record_event(
        s,
        actor=user,
        action="product.delete",
        entity_type="Product",
        entity_id=str(product.id),
        metadata={"name": product.name, "unlinked_ingredients": unlinked},
    )
    s.delete(product)


def mark_product_opened(s: "Session", product: Product, user: "User", now: datetime | None = None) -> bool:
    """Stamp opened_at once. Returns False when the product was already open."""
    if product.opened_at is not None:
        return False
    product.opened_at = now or kitchen_now()
    product.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="product.opened",
        entity_type="Product",
        entity_id=str(product.id),
        metadata={"opened_at": product.opened_at.isoformat()},
    )
    return True


def get_kitchen_alerts(s: "Session", now: datetime | None = None) -> KitchenAlerts:
    return evaluate_alerts(list_products(s), now or kitchen_now())


def create_location(s: "Session", name: str, icon: str | None, user: "User") -> ProductLocation:
    name = (name or "").strip()
    if not name:
        raise ValueError("Location name is required.")
    if s.query(ProductLocation).filter(func.lower(ProductLocation.name) == name.lower()).first():
        raise ValueError("A location with that name already exists.")
    loc = ProductLocation(name=name, icon=(icon or "").strip() or None)
    s.add(loc)
    s.flush()
    record_event(s, actor=user, action="location.create", entity_type="ProductLocation", entity_id=str(loc.id), metadata={"name": name})
    return loc


def delete_location(s: "Session", loc: ProductLocation, user: "User") -> None:
    in_use = s.query(func.count(Product.id)).filter(Product.location_id == loc.id).scalar() or 0
    if in_use:
        raise ValueError(f"Cannot delete location '{loc.name}': {in_use} product(s) are stored there.")
    record_event(s, actor=user, action="location.delete", entity_type="ProductLocation", entity_id=str(loc.id), metadata={"name": loc.name})
    s.delete(loc)


def create_category(s: "Session", name: str, user: "User") -> ProductCategory:
    name = (name or "").strip()
    if not name:
        raise ValueError("Category name is required.")
    if s.query(ProductCategory).filter(func.lower(ProductCategory.name) == name.lower()).first():
        raise ValueError("A category with that name already exists.")
    cat = ProductCategory(name=name)
    s.add(cat)
    s.flush()
    record_event(s, actor=user, action="category.create", entity_type="ProductCategory", entity_id=str(cat.id), metadata={"name": name})
    return cat


def delete_category(s: "Session", cat: ProductCategory, user: "User") -> None:
    cleared = (
        s.query(Product)
        .filter(Product.category_id == cat.id)
        .update({"category_id": None}, synchronize_session="fetch")
    )
    record_event(
        s,
        actor=user,
        action="category.delete",
        entity_type="ProductCategory",
        entity_id=str(cat.id),
        metadata={"name": cat.name, "uncategorized_products": cleared},
    )
    s.delete(cat)
