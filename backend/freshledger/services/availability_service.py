# Overview: Service-layer operations for availability; read-only check of ingredient bundles against stock.

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable

from ..extensions import db
from ..models import StockItem
from ..time_utils import utcnow
from .menu_service import Ingredient, get_menu_item, ingredients_for_menu_item, resolve_ingredients
"""
Availability Checker Invariants (authoritative)

- Read-only: never writes stock, batches or audit entries.
- Any missing ingredient makes the bundle out_of_stock (is_available False),
  which overrides a low-stock flag.
- An expired item counts as zero available, whatever current_stock says.
- Low stock is a soft flag: it never fails availability by itself.
"""

REASON_NOT_FOUND = "not found"
REASON_EXPIRED = "expired"
REASON_OUT_OF_STOCK = "out of stock"
REASON_INSUFFICIENT = "insufficient quantity"


@dataclass(frozen=True)
class MissingIngredient:
    stock_item_id: int
    name: str | None
    required: Decimal
    available: Decimal
    unit: str | None
    reason: str

    def to_dict(self) -> dict:
        return {
            "stock_item_id": self.stock_item_id,
            "name": self.name,
            "required": str(self.required),
            "available": str(self.available),
            "unit": self.unit,
            "reason": self.reason,
        }

    def describe(self) -> str:
        unit = f" {self.unit}" if self.unit else ""
        label = self.name or f"item {self.stock_item_id}"
        return f"{label}: Required {self.required}{unit}, Available {self.available}{unit} ({self.reason})"


@dataclass
class AvailabilityResult:
    is_available: bool
    stock_status: str
    missing_ingredients: list[MissingIngredient] = field(default_factory=list)
    low_stock_items: list[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "is_available": self.is_available,
            "stock_status": self.stock_status,
            "missing_ingredients": [m.to_dict() for m in self.missing_ingredients],
            "low_stock_items": list(self.low_stock_items),
        }


def merge_ingredients(ingredients: Iterable[Ingredient]) -> list[Ingredient]:
    """Sum quantities of repeated stock items, keeping first-seen order and unit."""
    merged: "OrderedDict[int, Ingredient]" = OrderedDict()
    for ing in ingredients:
        seen = merged.get(ing.stock_item_id)
        if seen is None:
            merged[ing.stock_item_id] = ing
        else:
            merged[ing.stock_item_id] = Ingredient(
                stock_item_id=ing.stock_item_id,
                quantity=seen.quantity + ing.quantity,
                unit=seen.unit or ing.unit,
            )
    return list(merged.values())


def check_availability(
    ingredients: Iterable[Ingredient],
    multiplier=1,
    now: datetime | None = None,
) -> AvailabilityResult:
    """
    Can `multiplier` units of this ingredient bundle be fulfilled right now?

    Compares against aggregate current_stock. Repeated stock items are summed
    before comparing, so a bundle cannot pass twice against the same stock.
    """
    now = now or utcnow()
    factor = Decimal(str(multiplier))
    bundle = merge_ingredients(ingredients)

    ids = [ing.stock_item_id for ing in bundle]
    items = {
        item.id: item
        for item in db.session.query(StockItem).filter(StockItem.id.in_(ids)).populate_existing().all()
    } if ids else {}

    missing: list[MissingIngredient] = []
    low_stock: list[int] = []

    for ing in bundle:
        required = ing.quantity * factor
        item = items.get(ing.stock_item_id)

        if item is None:
            missing.append(MissingIngredient(
                stock_item_id=ing.stock_item_id,
                name=None,
                required=required,
                available=Decimal("0"),
                unit=ing.unit,
                reason=REASON_NOT_FOUND,
            ))
            continue

        unit = ing.unit or item.unit
        if item.is_expired_at(now):
            missing.append(MissingIngredient(
                stock_item_id=item.id,
                name=item.name,
                required=required,
                available=Decimal("0"),
                unit=unit,
                reason=REASON_EXPIRED,
            ))
            continue

        current = item.current_stock or Decimal("0")
        if current < required:
            missing.append(MissingIngredient(
                stock_item_id=item.id,
                name=item.name,
                required=required,
                available=current,
                unit=unit,
                reason=REASON_OUT_OF_STOCK if current <= 0 else REASON_INSUFFICIENT,
            ))
            continue

        threshold = item.min_threshold or Decimal("0")
        if item.status == "low_stock" or (threshold > 0 and current <= threshold):
            low_stock.append(item.id)

    if missing:
        return AvailabilityResult(False, "out_of_stock", missing, low_stock)
    if low_stock:
        return AvailabilityResult(True, "low_stock", [], low_stock)
    return AvailabilityResult(True, "available", [], [])


def check_menu_item(menu_item_id: int, quantity=1, now: datetime | None = None) -> AvailabilityResult:
    return check_availability(resolve_ingredients(menu_item_id), multiplier=quantity, now=now)


def refresh_menu_item_stock_status(menu_item_id: int, now: datetime | None = None) -> AvailabilityResult:
    """Cache a single-unit availability check on the menu item. Flushes, never commits."""
    menu_item = get_menu_item(menu_item_id)
    result = check_availability(ingredients_for_menu_item(menu_item), multiplier=1, now=now)
    menu_item.is_available = result.is_available
    menu_item.stock_status = result.stock_status
    db.session.flush()
    return result
