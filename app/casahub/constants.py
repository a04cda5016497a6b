"""
Central constants for the CasaHub application.
"""
from __future__ import annotations

# Kitchen alert thresholds (fixed, not configurable per product)
EXPIRY_WINDOW_DAYS = 3
OPENED_MAX_DAYS = 7

# Per-ingredient availability
INGREDIENT_AVAILABLE = "available"
INGREDIENT_INSUFFICIENT = "insufficient"
INGREDIENT_UNKNOWN = "unknown"

# Recipe-level traffic light
STATUS_GREEN = "green"
STATUS_YELLOW = "yellow"
STATUS_RED = "red"

PASSWORD_MIN_LENGTH = 6

# Seed data for a fresh kitchen: (name, icon)
DEFAULT_LOCATIONS = (
    ("Fridge", "ice-cream"),
    ("Freezer", "snowflake"),
    ("Pantry", "archive"),
    ("Fruit bowl", "apple"),
    ("Spice rack", "flame"),
)

DEFAULT_CATEGORIES = (
    "Dairy",
    "Meat",
    "Fish",
    "Fruit & vegetables",
    "Drinks",
    "Pasta/rice/legumes",
    "Tinned food",
    "Frozen",
    "Sweets & snacks",
    "Spices & oils",
)
