# Overview: Service-layer operations for waste; recorded stock losses, manual and automatic.

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func

from ..extensions import db
from ..errors import ValidationError
from ..models import StockItem, WasteRecord, WASTE_CATEGORIES
from ..time_utils import utcnow
from ..validation import coerce_datetime, positive_decimal
from .concurrency import run_with_retry, stock_item_locks
from .stock_service import apply_stock_change, get_stock_item

logger = logging.getLogger(__name__)


def waste_cost(item: StockItem, quantity: Decimal) -> Decimal:
    """quantity * unit cost, or 0 when the item has no cost."""
    if item.cost is None:
        return Decimal("0")
    return (quantity * item.cost).quantize(Decimal("0.01"))


def record_waste(
    item: StockItem,
    quantity: Decimal,
    *,
    category: str,
    notes: str | None = None,
    actor: str | None = None,
    logged_at: datetime | None = None,
) -> WasteRecord:
    """Insert a WasteRecord without touching stock. Flushes, never commits."""
    record = WasteRecord(
        stock_item_id=item.id,
        category=category,
        quantity=quantity,
        unit=item.unit,
        cost=waste_cost(item, quantity),
        notes=notes,
        logged_by=actor,
        logged_at=logged_at or utcnow(),
    )
    db.session.add(record)
    db.session.flush()
    return record


def log_waste(
    *,
    stock_item_id: int,
    category: str,
    quantity,
    notes: str | None = None,
    actor: str | None = None,
    deduct: bool = False,
) -> WasteRecord:
    """
    Manual waste entry.

    With deduct=False the record is informational (stock was already
    adjusted elsewhere, e.g. counted out). With deduct=True the quantity also
    leaves current_stock, audited with a negative entry.
    """
    if category not in WASTE_CATEGORIES:
        raise ValidationError(
            f"Invalid waste category '{category}'. Must be one of: {', '.join(WASTE_CATEGORIES)}"
        )
    qty = positive_decimal(quantity, "quantity")

    def _op():
        with stock_item_locks([stock_item_id]):
            item = get_stock_item(stock_item_id, lock=True)
            if deduct:
                if qty > (item.current_stock or 0):
                    raise ValidationError(
                        f"Waste quantity {qty} exceeds current stock {item.current_stock} for {item.name}",
                        {"stock_item_id": item.id, "quantity": str(qty), "current_stock": str(item.current_stock)},
                    )
                apply_stock_change(item, -qty, f"Waste logged ({category})", actor=actor)
            record = record_waste(item, qty, category=category, notes=notes, actor=actor)
            db.session.commit()
            return record

    record = run_with_retry(_op)
    logger.info("Logged %s waste of %s %s for stock item %s", category, qty, record.unit, stock_item_id)
    return record


def _filtered(category: str | None, start, end):
    q = WasteRecord.query
    if category:
        q = q.filter(WasteRecord.category == category)
    start_dt = coerce_datetime(start, "start")
    end_dt = coerce_datetime(end, "end")
    if start_dt is not None:
        q = q.filter(WasteRecord.logged_at >= start_dt)
    if end_dt is not None:
        q = q.filter(WasteRecord.logged_at <= end_dt)
    return q


def list_waste_records(*, category: str | None = None, start=None, end=None, limit: int = 200) -> list[WasteRecord]:
    return (
        _filtered(category, start, end)
        .order_by(WasteRecord.logged_at.desc(), WasteRecord.id.desc())
        .limit(limit)
        .all()
    )


def waste_summary(*, start=None, end=None) -> dict:
    q = _filtered(None, start, end)
    rows = (
        q.with_entities(
            WasteRecord.category,
            func.count(WasteRecord.id),
            func.coalesce(func.sum(WasteRecord.quantity), 0),
            func.coalesce(func.sum(WasteRecord.cost), 0),
        )
        .group_by(WasteRecord.category)
        .all()
    )

    by_category = []
    total_count = 0
    total_cost = Decimal("0")
    for category, count, quantity, cost in rows:
        total_count += count
        total_cost += Decimal(str(cost))
        by_category.append({
            "category": category,
            "count": count,
            "total_quantity": str(quantity),
            "total_cost": str(cost),
        })

    return {
        "total_records": total_count,
        "total_cost": str(total_cost),
        "by_category": by_category,
    }
