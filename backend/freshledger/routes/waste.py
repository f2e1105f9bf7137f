# backend/freshledger/routes/waste.py
"""
Waste log and expiry reconciliation routes.
"""
from flask import Blueprint, request

from ..decorators import require_actor, current_actor
from ..services import expiry_service, waste_service


waste_bp = Blueprint("waste", __name__, url_prefix="/api/waste")
expiry_bp = Blueprint("expiry", __name__, url_prefix="/api/expiry")


@waste_bp.get("")
@require_actor()
def list_waste_route():
    records = waste_service.list_waste_records(
        category=request.args.get("category"),
        start=request.args.get("start"),
        end=request.args.get("end"),
    )
    return {"records": [r.to_dict() for r in records]}, 200


@waste_bp.post("")
@require_actor()
def log_waste_route():
    payload = request.get_json(silent=True) or {}
    record = waste_service.log_waste(
        stock_item_id=payload.get("stock_item_id"),
        category=payload.get("category") or "manual",
        quantity=payload.get("quantity"),
        notes=payload.get("notes"),
        actor=current_actor(),
        deduct=bool(payload.get("deduct", False)),
    )
    return {"record": record.to_dict()}, 201


@waste_bp.get("/summary")
@require_actor()
def waste_summary_route():
    return waste_service.waste_summary(
        start=request.args.get("start"),
        end=request.args.get("end"),
    ), 200


@expiry_bp.post("/sweep")
@require_actor()
def expiry_sweep_route():
    return expiry_service.run_expiry_sweep(actor=current_actor()), 200


@expiry_bp.post("/mark-status")
@require_actor()
def mark_status_route():
    return {"updated": expiry_service.mark_expired_status()}, 200
