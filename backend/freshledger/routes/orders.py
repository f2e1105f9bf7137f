# backend/freshledger/routes/orders.py
"""
Availability, menu and order routes.

Order creation and edits answer 400 insufficient_stock with every missing
ingredient in details.missing_ingredients when stock cannot cover the lines.
"""
from flask import Blueprint, request

from ..decorators import require_actor, current_actor
from ..services import availability_service, menu_service, order_service, sales_service
from ..services.menu_service import Ingredient
from ..validation import ValidationError, positive_decimal


availability_bp = Blueprint("availability", __name__, url_prefix="/api/availability")
menu_bp = Blueprint("menu", __name__, url_prefix="/api/menu-items")
orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _parse_ingredient_list(raw) -> list[Ingredient]:
    if not isinstance(raw, list) or not raw:
        raise ValidationError("ingredients must be a non-empty array")
    parsed = []
    for item in raw:
        if not isinstance(item, dict):
            raise ValidationError("Each ingredient must be an object")
        stock_item_id = item.get("stock_item_id")
        if not isinstance(stock_item_id, int) or isinstance(stock_item_id, bool):
            raise ValidationError("Each ingredient needs an integer stock_item_id")
        parsed.append(Ingredient(
            stock_item_id=stock_item_id,
            quantity=positive_decimal(item.get("quantity"), "quantity"),
            unit=item.get("unit"),
        ))
    return parsed


@availability_bp.post("/check")
@require_actor()
def check_availability_route():
    """
    Body either {"ingredients": [...], "multiplier": n}
    or {"menu_item_id": id, "quantity": n}.
    """
    payload = request.get_json(silent=True) or {}
    if "menu_item_id" in payload:
        quantity = positive_decimal(payload.get("quantity", 1), "quantity")
        result = availability_service.check_menu_item(payload["menu_item_id"], quantity)
    else:
        multiplier = positive_decimal(payload.get("multiplier", 1), "multiplier")
        result = availability_service.check_availability(
            _parse_ingredient_list(payload.get("ingredients")),
            multiplier=multiplier,
        )
    return result.to_dict(), 200


@menu_bp.get("")
@require_actor()
def list_menu_items_route():
    return {"items": [item.to_dict() for item in menu_service.list_menu_items()]}, 200


@menu_bp.post("")
@require_actor()
def create_menu_item_route():
    payload = request.get_json(silent=True) or {}
    menu_item = menu_service.create_menu_item(
        name=payload.get("name"),
        ingredients=payload.get("ingredients"),
        price=payload.get("price"),
        description=payload.get("description"),
    )
    return {"item": menu_item.to_dict()}, 201


@menu_bp.get("/<int:menu_item_id>")
@require_actor()
def get_menu_item_route(menu_item_id: int):
    return {"item": menu_service.get_menu_item(menu_item_id).to_dict()}, 200


@menu_bp.put("/<int:menu_item_id>/ingredients")
@require_actor()
def set_ingredients_route(menu_item_id: int):
    payload = request.get_json(silent=True) or {}
    menu_item = menu_service.set_ingredients(menu_item_id, payload.get("ingredients"))
    return {"item": menu_item.to_dict()}, 200


@menu_bp.post("/<int:menu_item_id>/refresh-stock-status")
@require_actor()
def refresh_stock_status_route(menu_item_id: int):
    from ..extensions import db

    result = availability_service.refresh_menu_item_stock_status(menu_item_id)
    db.session.commit()
    return result.to_dict(), 200


@orders_bp.get("")
@require_actor()
def list_orders_route():
    result = order_service.list_orders(
        status=request.args.get("status"),
        order_type=request.args.get("order_type"),
        search=request.args.get("search"),
        page=request.args.get("page", default=1, type=int),
        per_page=request.args.get("per_page", default=10, type=int),
    )
    result["orders"] = [order.to_dict() for order in result["orders"]]
    return result, 200


@orders_bp.post("")
@require_actor()
def create_order_route():
    payload = request.get_json(silent=True)
    order = order_service.create_order(payload, actor=current_actor())
    return {"order": order.to_dict()}, 201


@orders_bp.get("/<int:order_id>")
@require_actor()
def get_order_route(order_id: int):
    order = order_service.get_order(order_id)
    data = order.to_dict()
    data["allocations"] = [a.to_dict() for line in order.lines for a in line.allocations]
    data["sales"] = [s.to_dict() for s in sales_service.list_sales_records(order_id=order.id)]
    return {"order": data}, 200


@orders_bp.post("/<int:order_id>/status")
@require_actor()
def transition_order_route(order_id: int):
    payload = request.get_json(silent=True) or {}
    if not payload.get("status"):
        raise ValidationError("status is required")
    order = order_service.transition_order_status(
        order_id,
        payload["status"],
        actor=current_actor(),
        estimated_time=payload.get("estimated_time"),
        notes=payload.get("notes"),
    )
    return {"order": order.to_dict()}, 200


@orders_bp.patch("/<int:order_id>")
@require_actor()
def edit_order_route(order_id: int):
    payload = request.get_json(silent=True) or {}
    order = order_service.edit_order(order_id, payload, actor=current_actor())
    return {"order": order.to_dict()}, 200


@orders_bp.delete("/<int:order_id>")
@require_actor("admin")
def delete_order_route(order_id: int):
    order_service.delete_order(order_id, actor=current_actor())
    return {"deleted": True}, 200
