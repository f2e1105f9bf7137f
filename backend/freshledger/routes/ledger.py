# backend/freshledger/routes/ledger.py
"""
Daily ledger and day boundary routes.

Dates are calendar days (YYYY-MM-DD) in the business timezone; when omitted,
today is used.
"""
from flask import Blueprint, request

from ..decorators import require_actor, current_actor
from ..models import LedgerEntry
from ..services import day_service, ledger_service
from ..validation import PayloadPolicy, validate_payload


ledger_bp = Blueprint("ledger", __name__, url_prefix="/api/ledger")
days_bp = Blueprint("days", __name__, url_prefix="/api/days")

LEDGER_BATCH_POLICY = PayloadPolicy(
    fields=frozenset({"stock_item_id", "date", "quantity", "cost", "expiry_date"}),
    required=frozenset({"stock_item_id", "quantity"}),
)


def _consumed_to_dict(consumed: list[dict]) -> list[dict]:
    return [
        {
            "entry_id": c["entry_id"],
            "quantity": str(c["quantity"]),
            "expiry_date": c["expiry_date"].isoformat() if c["expiry_date"] else None,
        }
        for c in consumed
    ]


@ledger_bp.post("/batches")
@require_actor()
def add_batch_route():
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(
        model=LedgerEntry,
        payload=payload,
        policy=LEDGER_BATCH_POLICY,
        partial=False,
    )
    entry = ledger_service.add_batch(
        patch["stock_item_id"],
        patch.get("date") or ledger_service.current_business_date(),
        patch["quantity"],
        cost=patch.get("cost"),
        expiry_date=patch.get("expiry_date"),
        actor=current_actor(),
    )
    return {"entry": entry.to_dict()}, 201


@ledger_bp.get("/entries")
@require_actor()
def list_entries_route():
    day = request.args.get("date") or ledger_service.current_business_date()
    stock_item_id = request.args.get("stock_item_id", type=int)
    entries = ledger_service.get_entries(day, stock_item_id=stock_item_id)
    return {"entries": [entry.to_dict() for entry in entries]}, 200


@ledger_bp.post("/deduct")
@require_actor("admin")
def deduct_route():
    """Manual FIFO deduction (corrections); orders deduct on their own."""
    payload = request.get_json(silent=True) or {}
    consumed = ledger_service.deduct(
        payload.get("stock_item_id"),
        payload.get("date") or ledger_service.current_business_date(),
        payload.get("quantity"),
        reason=payload.get("reason") or "Manual deduction",
        actor=current_actor(),
    )
    return {"consumed": _consumed_to_dict(consumed)}, 200


@ledger_bp.get("/drift/<int:stock_item_id>")
@require_actor()
def drift_route(stock_item_id: int):
    day = request.args.get("date") or ledger_service.current_business_date()
    return ledger_service.stock_drift(stock_item_id, day), 200


@days_bp.get("/status")
@require_actor()
def day_status_route():
    return day_service.get_day_status(request.args.get("date")), 200


@days_bp.post("/end")
@require_actor()
def end_day_route():
    payload = request.get_json(silent=True) or {}
    status = day_service.end_day(payload.get("date"), actor=current_actor())
    return {"day": status.to_dict()}, 200


@days_bp.post("/start")
@require_actor()
def start_day_route():
    payload = request.get_json(silent=True) or {}
    result = day_service.start_new_day(payload.get("date"), actor=current_actor())
    return result, 200
