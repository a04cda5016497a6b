from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING

from app.casahub.constants import (
    INGREDIENT_AVAILABLE,
    INGREDIENT_INSUFFICIENT,
    INGREDIENT_UNKNOWN,
    STATUS_GREEN,
    STATUS_RED,
    STATUS_YELLOW,
)

if TYPE_CHECKING:
    from app.casahub.modules.recipes.models import Recipe, RecipeIngredient


@dataclass(frozen=True)
class IngredientStatus:
    name: str
    status: str
    available: bool
    required_quantity: float
    current_quantity: float | None
    missing: float
    unit: str
    product_id: int | None = None


@dataclass(frozen=True)
class AvailabilityReport:
    per_ingredient: list[IngredientStatus]
    overall: str

    @property
    def available_count(self) -> int:
        return sum(1 for i in self.per_ingredient if i.available)

    def to_dict(self) -> dict:
        return {
            "status": self.overall,
            "available": self.available_count,
            "total": len(self.per_ingredient),
            "ingredients": [asdict(i) for i in self.per_ingredient],
        }


def ingredient_status(ing: "RecipeIngredient") -> IngredientStatus:
    product = ing.product
    if product is None:
        return IngredientStatus(
            name=ing.name,
            status=INGREDIENT_UNKNOWN,
            available=False,
            required_quantity=ing.quantity,
            current_quantity=None,
            missing=ing.quantity,
            unit=ing.unit,
        )
    ok = product.quantity >= ing.quantity
    return IngredientStatus(
        name=ing.name,
        status=INGREDIENT_AVAILABLE if ok else INGREDIENT_INSUFFICIENT,
        available=ok,
        required_quantity=ing.quantity,
        current_quantity=product.quantity,
        missing=max(0.0, ing.quantity - product.quantity),
        unit=ing.unit,
        product_id=product.id,
    )


def overall_status(available: int, total: int) -> str:
    # Nothing to confirm means nothing is ready.
    if total == 0:
        return STATUS_RED
    if available == total:
        return STATUS_GREEN
    if available >= total / 2:
        return STATUS_YELLOW
    return STATUS_RED


def evaluate_availability(recipe: "Recipe") -> AvailabilityReport:
    """Check each ingredient line against its linked product's stock. Never touches stock."""
    lines = [ingredient_status(ing) for ing in recipe.ingredients]
    available = sum(1 for line in lines if line.available)
    return AvailabilityReport(per_ingredient=lines, overall=overall_status(available, len(lines)))
