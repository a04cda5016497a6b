from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import TYPE_CHECKING

from app.casahub.constants import EXPIRY_WINDOW_DAYS, OPENED_MAX_DAYS

if TYPE_CHECKING:
    from app.casahub.modules.kitchen.models import Product


@dataclass
class KitchenAlerts:
    expiring_soon: list["Product"] = field(default_factory=list)
    low_stock: list["Product"] = field(default_factory=list)
    opened_long_ago: list["Product"] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.expiring_soon) + len(self.low_stock) + len(self.opened_long_ago)


def kitchen_now() -> datetime:
    """
    Clock for expiry/opened comparisons.

    Form dates are naive local wall-clock values (``YYYY-MM-DD`` is local
    midnight), so they are compared against local time, not UTC. Audit and
    created/updated stamps stay in UTC.
    """
    return datetime.now()


def _as_datetime(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, time.min)


def is_expiring_soon(product: "Product", now: datetime) -> bool:
    if product.expiry_date is None:
        return False
    expiry = _as_datetime(product.expiry_date)
    return now <= expiry <= now + timedelta(days=EXPIRY_WINDOW_DAYS)


def is_low_stock(product: "Product") -> bool:
    # Only products that declare a threshold are evaluated; an empty shelf
    # without min_stock is not an alert.
    if product.min_stock is None:
        return False
    return product.quantity <= product.min_stock


def is_opened_long_ago(product: "Product", now: datetime) -> bool:
    if product.opened_at is None:
        return False
    return _as_datetime(product.opened_at) < now - timedelta(days=OPENED_MAX_DAYS)


def evaluate_alerts(products: Iterable["Product"], now: datetime) -> KitchenAlerts:
    """
    Partition products into the three alert buckets.

    Pure: reads the given products and ``now`` only. A product may land in
    more than one bucket; buckets keep the input order.
    """
    alerts = KitchenAlerts()
    for p in products:
        if is_expiring_soon(p, now):
            alerts.expiring_soon.append(p)
        if is_low_stock(p):
            alerts.low_stock.append(p)
        if is_opened_long_ago(p, now):
            alerts.opened_long_ago.append(p)
    return alerts


def days_open(product: "Product", now: datetime) -> int | None:
    if product.opened_at is None:
        return None
    return (now - _as_datetime(product.opened_at)).days
