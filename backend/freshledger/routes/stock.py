# backend/freshledger/routes/stock.py
"""
Stock item registry routes.

All routes require an actor (chef or admin).

current_stock is accepted on create as the opening quantity and is read-only
afterwards: stock moves through ledger batches, orders, waste and expiry.
"""
from flask import Blueprint, request

from ..decorators import require_actor, current_actor
from ..models import StockItem
from ..services import stock_service
from ..validation import PayloadPolicy, ValidationError, validate_payload


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock-items")

STOCK_ITEM_CREATE_POLICY = PayloadPolicy(
    fields=frozenset({
        "name", "category", "unit", "current_stock", "cost", "min_threshold",
        "max_threshold", "expiry_date", "storage_condition", "supplier", "notes",
    }),
    required=frozenset({"name", "category"}),
)

STOCK_ITEM_UPDATE_POLICY = PayloadPolicy(
    fields=frozenset(stock_service.UPDATABLE_FIELDS),
)


@stock_bp.get("")
@require_actor()
def list_stock_items_route():
    items = stock_service.list_stock_items(
        category=request.args.get("category"),
        status=request.args.get("status"),
        search=request.args.get("search"),
    )
    return {"items": [item.to_dict() for item in items]}, 200


@stock_bp.post("")
@require_actor()
def create_stock_item_route():
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(
        model=StockItem,
        payload=payload,
        policy=STOCK_ITEM_CREATE_POLICY,
        partial=False,
    )
    opening = patch.pop("current_stock", None)
    item = stock_service.create_stock_item(quantity=opening or 0, actor=current_actor(), **patch)
    return {"item": item.to_dict()}, 201


@stock_bp.get("/low-stock")
@require_actor()
def low_stock_route():
    return {"items": [item.to_dict() for item in stock_service.list_low_stock_items()]}, 200


@stock_bp.get("/expired")
@require_actor()
def expired_items_route():
    return {"items": [item.to_dict() for item in stock_service.list_expired_items()]}, 200


@stock_bp.post("/daily-intake")
@require_actor()
def daily_intake_route():
    """
    Bulk increment of aggregate stock (no dated batches).

    Body: {"entries": [{"stock_item_id": 1, "quantity": 5, "reason": "..."}]}
    """
    payload = request.get_json(silent=True) or {}
    result = stock_service.apply_daily_intake(payload.get("entries"), actor=current_actor())
    return result, 200


@stock_bp.get("/<int:stock_item_id>")
@require_actor()
def get_stock_item_route(stock_item_id: int):
    return {"item": stock_service.get_stock_item(stock_item_id).to_dict()}, 200


@stock_bp.patch("/<int:stock_item_id>")
@require_actor()
def update_stock_item_route(stock_item_id: int):
    payload = request.get_json(silent=True) or {}
    if "current_stock" in payload:
        raise ValidationError("current_stock is read-only; use ledger batches, waste or orders")
    patch = validate_payload(
        model=StockItem,
        payload=payload,
        policy=STOCK_ITEM_UPDATE_POLICY,
        partial=True,
    )
    item = stock_service.update_stock_item(stock_item_id, patch, actor=current_actor())
    return {"item": item.to_dict()}, 200


@stock_bp.get("/<int:stock_item_id>/log")
@require_actor()
def inventory_log_route(stock_item_id: int):
    limit = request.args.get("limit", default=200, type=int)
    entries = stock_service.get_inventory_log(stock_item_id, limit=limit)
    return {"entries": [entry.to_dict() for entry in entries]}, 200
