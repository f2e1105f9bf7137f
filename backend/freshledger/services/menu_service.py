# Overview: Service-layer operations for menu items; recipes resolved into per-unit ingredient lists.

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import func

from ..extensions import db
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models import MenuItem, MenuItemIngredient, StockItem
from ..validation import optional_non_negative, positive_decimal, required_text
from .concurrency import run_with_retry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Ingredient:
    """Per-unit requirement of one stock item."""
    stock_item_id: int
    quantity: Decimal
    unit: str | None = None


def get_menu_item(menu_item_id: int) -> MenuItem:
    item = db.session.query(MenuItem).filter_by(id=menu_item_id).first()
    if item is None:
        raise NotFoundError(f"Menu item {menu_item_id} not found", {"menu_item_id": menu_item_id})
    return item


def ingredients_for_menu_item(menu_item: MenuItem) -> list[Ingredient]:
    return [
        Ingredient(stock_item_id=ing.stock_item_id, quantity=ing.quantity, unit=ing.unit)
        for ing in menu_item.ingredients
    ]


def resolve_ingredients(menu_item_id: int) -> list[Ingredient]:
    """
    The menu item's bill of materials for one unit.

    A menu item with no ingredients cannot be ordered (ValidationError).
    """
    menu_item = get_menu_item(menu_item_id)
    ingredients = ingredients_for_menu_item(menu_item)
    if not ingredients:
        raise ValidationError(
            f'Menu item "{menu_item.name}" has no ingredients',
            {"menu_item_id": menu_item.id},
        )
    return ingredients


def _parse_ingredients(raw_ingredients) -> list[dict]:
    if not isinstance(raw_ingredients, list) or not raw_ingredients:
        raise ValidationError("ingredients must be a non-empty array")

    parsed = []
    seen = set()
    for raw in raw_ingredients:
        if not isinstance(raw, dict):
            raise ValidationError("Each ingredient must be an object")
        stock_item_id = raw.get("stock_item_id")
        if not isinstance(stock_item_id, int) or isinstance(stock_item_id, bool):
            raise ValidationError("Each ingredient needs an integer stock_item_id")
        if stock_item_id in seen:
            raise ValidationError(f"Stock item {stock_item_id} is listed twice")
        seen.add(stock_item_id)
        parsed.append({
            "stock_item_id": stock_item_id,
            "quantity": positive_decimal(raw.get("quantity"), "ingredient quantity"),
            "unit": raw.get("unit"),
        })

    known = {
        row.id
        for row in db.session.query(StockItem.id).filter(StockItem.id.in_([p["stock_item_id"] for p in parsed]))
    }
    unknown = [p["stock_item_id"] for p in parsed if p["stock_item_id"] not in known]
    if unknown:
        raise NotFoundError(f"Stock items not found: {unknown}", {"stock_item_ids": unknown})
    return parsed


def create_menu_item(
    *,
    name: str,
    ingredients: list,
    price=None,
    description: str | None = None,
) -> MenuItem:
    name = required_text(name, "name")
    if not isinstance(description, (str, type(None))):
        raise ValidationError("description must be a string")
    parsed_price = optional_non_negative(price, "price")
    parsed = _parse_ingredients(ingredients)

    def _op():
        if db.session.query(MenuItem).filter(func.lower(MenuItem.name) == name.lower()).first():
            raise ConflictError("Menu item with this name already exists", {"name": name})

        menu_item = MenuItem(name=name, description=description, price=parsed_price)
        for p in parsed:
            menu_item.ingredients.append(MenuItemIngredient(**p))
        db.session.add(menu_item)
        db.session.commit()
        return menu_item

    menu_item = run_with_retry(_op)
    logger.info("Created menu item %s (%s) with %s ingredients", menu_item.id, menu_item.name, len(parsed))
    return menu_item


def set_ingredients(menu_item_id: int, ingredients: list) -> MenuItem:
    """Replace the recipe. Existing orders keep their recorded allocations."""
    parsed = _parse_ingredients(ingredients)

    def _op():
        menu_item = get_menu_item(menu_item_id)
        menu_item.ingredients.clear()
        db.session.flush()
        for p in parsed:
            menu_item.ingredients.append(MenuItemIngredient(**p))
        db.session.commit()
        return menu_item

    return run_with_retry(_op)


def list_menu_items() -> list[MenuItem]:
    return MenuItem.query.order_by(MenuItem.name.asc()).all()
