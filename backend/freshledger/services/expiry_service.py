# Overview: Service-layer operations for expiry reconciliation; converts expired stock into waste.

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from ..extensions import db
from ..models import StockItem
from ..time_utils import utcnow
from .concurrency import run_with_retry, stock_item_locks
from .stock_service import apply_stock_change, get_stock_item
from .waste_service import record_waste
"""
Expiry Reconciliation Invariants (authoritative)

- Candidates: expiry_date < now AND current_stock > 0 AND status != discontinued.
- Each candidate is written off in its own transaction under its item lock,
  re-checked after locking; a second (or concurrent) run finds nothing to do.
- A write-off is one WasteRecord (category "expired", cost = quantity * unit
  cost), one negative audit entry, current_stock = 0 and status = expired.
- A failure on one item is logged and does not stop the sweep.
- mark_expired_status() only flips status on items that hold no stock, so
  status == expired always implies current_stock == 0.
"""

logger = logging.getLogger(__name__)


def _is_candidate(item: StockItem, now: datetime) -> bool:
    return (
        item.expiry_date is not None
        and item.expiry_date < now
        and (item.current_stock or 0) > 0
        and item.status != "discontinued"
    )


def _candidate_ids(now: datetime) -> list[int]:
    rows = (
        db.session.query(StockItem.id)
        .filter(
            StockItem.expiry_date.isnot(None),
            StockItem.expiry_date < now,
            StockItem.current_stock > 0,
            StockItem.status != "discontinued",
        )
        .order_by(StockItem.id.asc())
        .all()
    )
    return [row.id for row in rows]


def _expire_item(stock_item_id: int, *, actor: str | None, now: datetime) -> dict | None:
    with stock_item_locks([stock_item_id]):
        item = get_stock_item(stock_item_id, lock=True)
        if not _is_candidate(item, now):
            db.session.rollback()
            return None

        quantity = item.current_stock
        waste = record_waste(
            item,
            quantity,
            category="expired",
            notes=f"Automatically logged expired item. Expired on {item.expiry_date:%Y-%m-%d}",
            actor=actor,
            logged_at=now,
        )
        apply_stock_change(item, -quantity, "Item expired - moved to waste", actor=actor)
        item.status = "expired"
        db.session.commit()

        return {
            "stock_item_id": item.id,
            "name": item.name,
            "quantity": str(quantity),
            "unit": item.unit,
            "waste_cost": str(waste.cost),
            "waste_record_id": waste.id,
        }


def run_expiry_sweep(*, actor: str | None = None, now: datetime | None = None) -> dict:
    """
    Write off every expired item that still holds stock.

    Returns {processed_count, total_waste_cost, processed_items}.
    """
    now = now or utcnow()
    processed: list[dict] = []
    total_cost = Decimal("0")

    for stock_item_id in _candidate_ids(now):
        try:
            result = run_with_retry(lambda: _expire_item(stock_item_id, actor=actor, now=now))
        except Exception:
            logger.exception("Error processing expired item %s; continuing sweep", stock_item_id)
            continue
        if result is None:
            continue
        processed.append(result)
        total_cost += Decimal(result["waste_cost"])

    if processed:
        logger.info("Expiry sweep wrote off %s items (waste cost %s)", len(processed), total_cost)
    else:
        logger.debug("Expiry sweep found nothing to write off")

    return {
        "processed_count": len(processed),
        "total_waste_cost": str(total_cost),
        "processed_items": processed,
    }


def mark_expired_status(now: datetime | None = None) -> int:
    """
    Status-only sweep: flip status to expired on past-expiry items that hold
    no stock.

    Past-expiry items that still hold stock keep their current status (for
    example active or low_stock) until run_expiry_sweep writes the stock off
    and marks them expired. Returns the number of items updated.
    """
    now = now or utcnow()

    def _op():
        items = (
            db.session.query(StockItem)
            .filter(
                StockItem.expiry_date.isnot(None),
                StockItem.expiry_date < now,
                StockItem.current_stock <= 0,
                StockItem.status.notin_(("expired", "discontinued")),
            )
            .all()
        )
        for item in items:
            item.status = "expired"
        db.session.commit()
        return len(items)

    updated = run_with_retry(_op)
    if updated:
        logger.info("Marked %s items as expired", updated)
    return updated
