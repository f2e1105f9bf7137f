# Overview: Service-layer operations for the stock item registry; aggregate stock and its audit trail.

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func

from ..extensions import db
from ..errors import ConflictError, InsufficientStockError, NotFoundError, ValidationError
from ..models import InventoryLogEntry, StockItem, STOCK_STATUSES
from ..time_utils import utcnow
from ..validation import (
    coerce_datetime,
    non_negative_decimal,
    optional_non_negative,
    positive_decimal,
    required_text,
)
from .concurrency import lock_for_update, run_with_retry, stock_item_locks
"""
Stock Item Registry Invariants (authoritative)

- current_stock >= 0 at all times; a change that would push it below zero is
  refused with InsufficientStockError, never clamped.
- Every change to current_stock goes through apply_stock_change(), which also
  recomputes status and appends exactly one InventoryLogEntry in the same
  transaction.
- status "expired" and "discontinued" are never overwritten by stock
  movements; only the expiry sweep sets "expired" (and zeroes stock with it).
- Names are unique per category, case-insensitively.
"""

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = {
    "name", "category", "unit", "cost", "min_threshold", "max_threshold",
    "expiry_date", "status", "storage_condition", "supplier", "notes",
}


def get_stock_item(stock_item_id: int, *, lock: bool = False) -> StockItem:
    query = db.session.query(StockItem).filter_by(id=stock_item_id)
    if lock:
        query = lock_for_update(query).populate_existing()
    item = query.first()
    if item is None:
        raise NotFoundError(f"Stock item {stock_item_id} not found", {"stock_item_id": stock_item_id})
    return item


def _ensure_unique_name(name: str, category: str, *, exclude_id: int | None = None) -> None:
    q = db.session.query(StockItem).filter(
        func.lower(StockItem.name) == name.lower(),
        StockItem.category == category,
    )
    if exclude_id is not None:
        q = q.filter(StockItem.id != exclude_id)
    if q.first() is not None:
        raise ConflictError(
            "Item with this name and category already exists",
            {"name": name, "category": category},
        )


def append_audit_entry(
    *,
    stock_item_id: int,
    change: Decimal,
    reason: str,
    actor: str | None = None,
    order_id: int | None = None,
    occurred_at: datetime | None = None,
) -> InventoryLogEntry:
    """Append-only; flushes so the entry has an id, never commits."""
    entry = InventoryLogEntry(
        stock_item_id=stock_item_id,
        change=change,
        reason=reason[:255],
        actor=actor,
        order_id=order_id,
        occurred_at=occurred_at or utcnow(),
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def apply_stock_change(
    item: StockItem,
    change: Decimal,
    reason: str,
    *,
    actor: str | None = None,
    order_id: int | None = None,
) -> InventoryLogEntry:
    """
    Add a signed change to current_stock, refresh status, and audit it.

    No commit: callers own the transaction boundary.
    """
    current = item.current_stock or Decimal("0")
    if current + change < 0:
        raise InsufficientStockError(
            f"Insufficient stock for {item.name}. Required: {-change}, Available: {current}",
            required=-change,
            available=current,
            details={"stock_item_id": item.id, "name": item.name, "unit": item.unit},
        )

    item.current_stock = current + change
    item.updated_by = actor or item.updated_by
    item.refresh_status()

    return append_audit_entry(
        stock_item_id=item.id,
        change=change,
        reason=reason,
        actor=actor,
        order_id=order_id,
    )


def create_stock_item(
    *,
    name: str,
    category: str,
    unit: str = "pcs",
    quantity=0,
    cost=None,
    min_threshold=None,
    max_threshold=None,
    expiry_date=None,
    storage_condition: str | None = None,
    supplier: str | None = None,
    notes: str | None = None,
    actor: str | None = None,
) -> StockItem:
    name = required_text(name, "name")
    category = required_text(category, "category")
    if not isinstance(unit, (str, type(None))):
        raise ValidationError("unit must be a string")

    initial = non_negative_decimal(quantity if quantity not in (None, "") else 0, "quantity")
    parsed_cost = optional_non_negative(cost, "cost")
    parsed_min = optional_non_negative(min_threshold, "min_threshold")
    parsed_max = optional_non_negative(max_threshold, "max_threshold")
    parsed_expiry = coerce_datetime(expiry_date, "expiry_date")

    def _op():
        _ensure_unique_name(name, category)

        item = StockItem(
            name=name,
            category=category,
            unit=(unit or "pcs").strip(),
            current_stock=Decimal("0"),
            cost=parsed_cost,
            min_threshold=parsed_min if parsed_min is not None else Decimal("0"),
            max_threshold=parsed_max,
            expiry_date=parsed_expiry,
            storage_condition=storage_condition,
            supplier=supplier,
            notes=notes,
            created_by=actor,
            updated_by=actor,
        )
        db.session.add(item)
        db.session.flush()

        if initial > 0:
            apply_stock_change(item, initial, "Initial stock", actor=actor)
        else:
            item.refresh_status()

        db.session.commit()
        logger.info("Created stock item %s (%s) with %s %s", item.id, item.name, initial, item.unit)
        return item

    return run_with_retry(_op)


def update_stock_item(stock_item_id: int, patch: dict, *, actor: str | None = None) -> StockItem:
    """
    Update descriptive fields. current_stock is deliberately not writable
    here: stock only moves through the ledger, waste log and expiry sweep.
    """
    unknown = set(patch) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(sorted(unknown))}")

    def _op():
        with stock_item_locks([stock_item_id]):
            item = get_stock_item(stock_item_id, lock=True)

            name = patch.get("name", item.name)
            category = patch.get("category", item.category)
            if "name" in patch or "category" in patch:
                if not name or not category:
                    raise ValidationError("Name and category cannot be blank")
                _ensure_unique_name(name, category, exclude_id=item.id)

            for field in ("cost", "max_threshold"):
                if field in patch:
                    setattr(item, field, optional_non_negative(patch[field], field))
            if "min_threshold" in patch:
                item.min_threshold = optional_non_negative(patch["min_threshold"], "min_threshold") or Decimal("0")
            if "expiry_date" in patch:
                item.expiry_date = coerce_datetime(patch["expiry_date"], "expiry_date")
            if "status" in patch:
                status = patch["status"]
                if status not in STOCK_STATUSES:
                    raise ValidationError(
                        f"Invalid status '{status}'. Must be one of: {', '.join(STOCK_STATUSES)}"
                    )
                if status == "expired" and (item.current_stock or 0) > 0:
                    raise ValidationError("Cannot mark an item with stock as expired; run the expiry sweep")
                item.status = status
            for field in ("name", "category", "unit", "storage_condition", "supplier", "notes"):
                if field in patch:
                    setattr(item, field, patch[field])

            # "active" means "derive it from stock again"
            if patch.get("status") in ("active", "low_stock", "out_of_stock") or "min_threshold" in patch:
                item.refresh_status()

            item.updated_by = actor
            db.session.commit()
            return item

    return run_with_retry(_op)


def list_stock_items(
    *,
    category: str | None = None,
    status: str | None = None,
    search: str | None = None,
) -> list[StockItem]:
    q = StockItem.query
    if category:
        q = q.filter(StockItem.category == category)
    if status:
        q = q.filter(StockItem.status == status)
    if search:
        q = q.filter(StockItem.name.ilike(f"%{search}%"))
    return q.order_by(StockItem.name.asc(), StockItem.id.asc()).all()


def list_low_stock_items() -> list[StockItem]:
    """Items at or below a positive min_threshold."""
    return (
        StockItem.query.filter(
            StockItem.min_threshold > 0,
            StockItem.current_stock <= StockItem.min_threshold,
        )
        .order_by(StockItem.current_stock.asc(), StockItem.id.asc())
        .all()
    )


def list_expired_items(now: datetime | None = None) -> list[StockItem]:
    now = now or utcnow()
    return (
        StockItem.query.filter(
            StockItem.expiry_date.isnot(None),
            StockItem.expiry_date < now,
        )
        .order_by(StockItem.expiry_date.asc(), StockItem.id.asc())
        .all()
    )


def apply_daily_intake(entries: list, *, actor: str | None = None) -> dict:
    """
    Bulk add stock to many items at once (aggregate only, no dated batches).

    Malformed entries and unknown items are skipped, not fatal; the result
    lists what was applied and what was skipped.
    """
    if not isinstance(entries, list) or not entries:
        raise ValidationError("'entries' must be a non-empty array")

    parsed: list[tuple[int, Decimal, str]] = []
    skipped: list[dict] = []
    for raw in entries:
        if not isinstance(raw, dict):
            skipped.append({"stock_item_id": None, "reason": "entry must be an object"})
            continue
        item_id = raw.get("stock_item_id")
        try:
            qty = positive_decimal(raw.get("quantity"), "quantity")
        except ValidationError as exc:
            skipped.append({"stock_item_id": item_id, "reason": str(exc)})
            continue
        if not isinstance(item_id, int) or isinstance(item_id, bool):
            skipped.append({"stock_item_id": item_id, "reason": "stock_item_id is required"})
            continue
        reason = raw.get("reason")
        if not isinstance(reason, (str, type(None))):
            skipped.append({"stock_item_id": item_id, "reason": "reason must be a string"})
            continue
        parsed.append((item_id, qty, reason or "Daily intake"))

    def _op():
        results = []
        with stock_item_locks(item_id for item_id, _, _ in parsed):
            for item_id, qty, reason in parsed:
                item = db.session.query(StockItem).filter_by(id=item_id).first()
                if item is None:
                    results.append({"id": item_id, "skipped": True})
                    continue
                apply_stock_change(item, qty, reason, actor=actor)
                results.append({"id": item.id, "name": item.name, "new_stock": str(item.current_stock)})
            db.session.commit()
        return results

    outcome = run_with_retry(_op)
    results = [r for r in outcome if not r.get("skipped")]
    skipped.extend({"stock_item_id": r["id"], "reason": "not found"} for r in outcome if r.get("skipped"))
    if skipped:
        logger.warning("Daily intake skipped %s entries: %s", len(skipped), skipped)
    return {"updated_count": len(results), "results": results, "skipped": skipped}


def get_inventory_log(stock_item_id: int, *, limit: int = 200) -> list[InventoryLogEntry]:
    get_stock_item(stock_item_id)
    return (
        InventoryLogEntry.query.filter_by(stock_item_id=stock_item_id)
        .order_by(InventoryLogEntry.occurred_at.desc(), InventoryLogEntry.id.desc())
        .limit(limit)
        .all()
    )
