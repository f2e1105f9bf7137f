# Overview: Service-layer operations for the daily ledger; dated batches with expiry and FIFO consumption.

from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..errors import DayClosedError, InsufficientStockError
from ..models import DayStatus, LedgerEntry
from ..time_utils import business_today, utcnow
from ..validation import coerce_datetime, coerce_day, optional_non_negative, positive_decimal
from .concurrency import run_with_retry, stock_item_locks
from .stock_service import apply_stock_change, get_stock_item
from .waste_service import record_waste
"""
Daily Ledger Invariants (authoritative)

- 0 <= remaining_quantity <= quantity for every entry (also a DB constraint).
- Sum of remaining_quantity for (item, date) == quantity added - quantity
  successfully deducted for that pair.
- deduct() consumes earliest non-null expiry first, then earliest created,
  then lowest id. Entries already past expiry are never consumed.
- deduct() does not undo entries it touched when it runs out; the caller's
  transaction owns rollback.
- restore() only moves the aggregate current_stock; it never re-fills batches.
- No intake is accepted for a date whose DayStatus is ended.
"""

logger = logging.getLogger(__name__)


def current_business_date(now: datetime | None = None) -> date:
    """Today's ledger key in the configured business timezone."""
    return business_today(current_app.config.get("BUSINESS_TIMEZONE", "UTC"), now)


def get_day_status_row(day: date) -> DayStatus | None:
    return db.session.query(DayStatus).filter_by(date=day).first()


def ensure_day_status(day: date) -> DayStatus:
    """
    Return the DayStatus row for `day`, creating an open one if absent.

    Safe to call repeatedly (idempotent). Flushes, never commits.
    """
    status = get_day_status_row(day)
    if status is not None:
        return status
    status = DayStatus(date=day, is_ended=False)
    db.session.add(status)
    db.session.flush()
    return status


def _usable_entries_query(stock_item_id: int, day: date, now: datetime):
    return (
        db.session.query(LedgerEntry)
        .filter(
            LedgerEntry.stock_item_id == stock_item_id,
            LedgerEntry.date == day,
            LedgerEntry.remaining_quantity > 0,
            db.or_(LedgerEntry.expiry_date.is_(None), LedgerEntry.expiry_date >= now),
        )
    )


def _add_batch_inner(
    *,
    stock_item_id: int,
    day: date,
    quantity: Decimal,
    cost: Decimal | None,
    expiry_date: datetime | None,
    actor: str | None,
) -> LedgerEntry:
    """Core intake logic without locking, retry, or commit."""
    status = ensure_day_status(day)
    if status.is_ended:
        raise DayClosedError(
            f"Cannot add items to ended day {day.isoformat()}",
            {"date": day.isoformat()},
        )

    item = get_stock_item(stock_item_id, lock=True)

    entry = LedgerEntry(
        stock_item_id=item.id,
        date=day,
        quantity=quantity,
        remaining_quantity=quantity,
        cost=cost,
        expiry_date=expiry_date,
        created_by=actor,
        created_at=utcnow(),
    )
    db.session.add(entry)

    # A fresh batch revives an item the sweep wrote off
    if item.status == "expired":
        item.status = "active"
        item.expiry_date = expiry_date
    elif expiry_date is not None and (item.expiry_date is None or item.expiry_date < expiry_date):
        item.expiry_date = expiry_date

    apply_stock_change(item, quantity, "Daily intake batch", actor=actor)
    db.session.flush()
    return entry


def add_batch(
    stock_item_id: int,
    day,
    quantity,
    cost=None,
    expiry_date=None,
    *,
    actor: str | None = None,
    commit: bool = True,
) -> LedgerEntry:
    """
    Record a dated batch of a stock item and add it to current_stock.

    Raises ValidationError for a non-positive quantity or negative cost,
    NotFoundError for an unknown item and DayClosedError when `day` is ended.
    """
    qty = positive_decimal(quantity, "quantity")
    parsed_cost = optional_non_negative(cost, "cost")
    parsed_day = coerce_day(day, "date")
    parsed_expiry = coerce_datetime(expiry_date, "expiry_date")

    def _op():
        with stock_item_locks([stock_item_id]):
            entry = _add_batch_inner(
                stock_item_id=stock_item_id,
                day=parsed_day,
                quantity=qty,
                cost=parsed_cost,
                expiry_date=parsed_expiry,
                actor=actor,
            )
            if commit:
                db.session.commit()
            return entry

    entry = run_with_retry(_op) if commit else _op()
    logger.info("Added batch %s: %s of item %s on %s", entry.id, qty, stock_item_id, parsed_day)
    return entry


def _deduct_inner(
    *,
    stock_item_id: int,
    day: date,
    quantity: Decimal,
    reason: str,
    actor: str | None,
    order_id: int | None,
    now: datetime,
) -> list[dict]:
    """Core FIFO logic without locking, retry, or commit."""
    item = get_stock_item(stock_item_id, lock=True)

    entries = (
        _usable_entries_query(stock_item_id, day, now)
        .order_by(
            LedgerEntry.expiry_date.is_(None),
            LedgerEntry.expiry_date.asc(),
            LedgerEntry.created_at.asc(),
            LedgerEntry.id.asc(),
        )
        .all()
    )

    still_needed = quantity
    consumed: list[dict] = []
    for entry in entries:
        if still_needed <= 0:
            break
        take = min(entry.remaining_quantity, still_needed)
        entry.remaining_quantity = entry.remaining_quantity - take
        still_needed -= take
        consumed.append({
            "entry_id": entry.id,
            "quantity": take,
            "expiry_date": entry.expiry_date,
        })

    if still_needed > 0:
        available = quantity - still_needed
        raise InsufficientStockError(
            f"Insufficient stock in daily inventory. Required: {quantity}, Available: {available}",
            required=quantity,
            available=available,
            details={"stock_item_id": item.id, "name": item.name, "unit": item.unit, "date": day.isoformat()},
        )

    apply_stock_change(item, -quantity, reason, actor=actor, order_id=order_id)
    db.session.flush()
    return consumed


def deduct(
    stock_item_id: int,
    day,
    quantity,
    *,
    reason: str | None = None,
    actor: str | None = None,
    order_id: int | None = None,
    now: datetime | None = None,
    commit: bool = True,
) -> list[dict]:
    """
    Consume `quantity` from the item's usable batches for `day`, FIFO by expiry.

    Returns the consumed batches as [{entry_id, quantity, expiry_date}].
    Raises InsufficientStockError when the usable batches run out.
    """
    qty = positive_decimal(quantity, "quantity")
    parsed_day = coerce_day(day, "date")
    now = now or utcnow()
    reason = reason or "Deducted from daily inventory"

    def _op():
        with stock_item_locks([stock_item_id]):
            consumed = _deduct_inner(
                stock_item_id=stock_item_id,
                day=parsed_day,
                quantity=qty,
                reason=reason,
                actor=actor,
                order_id=order_id,
                now=now,
            )
            if commit:
                db.session.commit()
            return consumed

    return run_with_retry(_op) if commit else _op()


def restore(
    stock_item_id: int,
    day,
    quantity,
    reason: str,
    *,
    actor: str | None = None,
    order_id: int | None = None,
    commit: bool = True,
) -> None:
    """
    Give `quantity` back to current_stock (never into specific batches).

    If the item has been written off as expired in the meantime, the returned
    quantity is written off straight away so an expired item never holds stock.
    """
    qty = positive_decimal(quantity, "quantity")
    coerce_day(day, "date")

    def _op():
        with stock_item_locks([stock_item_id]):
            item = get_stock_item(stock_item_id, lock=True)
            apply_stock_change(item, qty, reason, actor=actor, order_id=order_id)
            if item.status == "expired":
                record_waste(
                    item,
                    qty,
                    category="expired",
                    notes=f"Restored after expiry write-off ({reason})",
                    actor=actor,
                )
                apply_stock_change(item, -qty, "Item expired - moved to waste", actor=actor, order_id=order_id)
            if commit:
                db.session.commit()

    if commit:
        run_with_retry(_op)
    else:
        _op()


def get_entries(day, stock_item_id: int | None = None) -> list[LedgerEntry]:
    parsed_day = coerce_day(day, "date")
    q = LedgerEntry.query.filter(LedgerEntry.date == parsed_day)
    if stock_item_id is not None:
        q = q.filter(LedgerEntry.stock_item_id == stock_item_id)
    return q.order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc()).all()


def usable_quantity(stock_item_id: int, day, now: datetime | None = None) -> Decimal:
    """Sum of remaining quantity over the item's unexpired batches for `day`."""
    parsed_day = coerce_day(day, "date")
    now = now or utcnow()
    total = (
        _usable_entries_query(stock_item_id, parsed_day, now)
        .with_entities(func.coalesce(func.sum(LedgerEntry.remaining_quantity), 0))
        .scalar()
    )
    return Decimal(str(total))


def stock_drift(stock_item_id: int, day, now: datetime | None = None) -> dict:
    """
    Compare the aggregate current_stock with the derived lot sum.

    A non-zero drift means stock entered or left outside dated batches
    (bulk intake, restorations, manual waste) or batches expired unswept.
    """
    item = get_stock_item(stock_item_id)
    derived = usable_quantity(stock_item_id, day, now)
    current = item.current_stock or Decimal("0")
    drift = current - derived
    if drift != 0:
        logger.debug("Stock drift for item %s on %s: %s", stock_item_id, day, drift)
    return {
        "stock_item_id": item.id,
        "date": coerce_day(day, "date").isoformat(),
        "current_stock": str(current),
        "ledger_usable": str(derived),
        "drift": str(drift),
    }
