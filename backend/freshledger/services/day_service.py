# Overview: Service-layer operations for day boundaries; closing a trading day and rolling batches forward.

from __future__ import annotations

import logging
from datetime import datetime

from ..extensions import db
from ..errors import AlreadyEndedError, PriorDayNotEndedError
from ..models import LedgerEntry
from ..time_utils import previous_day, to_iso_date, utcnow
from ..validation import coerce_day
from .concurrency import run_with_retry, stock_item_locks
from .ledger_service import current_business_date, ensure_day_status, get_day_status_row
"""
Day Boundary Invariants (authoritative)

- A day moves OPEN -> ENDED exactly once; there is no reopening.
- Ending a day touches neither batches nor stock quantities.
- Starting a day requires yesterday to be ended and today to be open.
- Roll-forward creates new entries; yesterday's entries are left as they were.
- current_stock is continuous across days; roll-forward never changes it.
- Each of yesterday's entries is carried into a given day at most once.
"""

logger = logging.getLogger(__name__)


def end_day(day=None, *, actor: str | None = None):
    """Mark `day` (default today) as ended. Raises AlreadyEndedError on a second call."""
    parsed_day = coerce_day(day, "date") if day is not None else current_business_date()

    def _op():
        status = ensure_day_status(parsed_day)
        if status.is_ended:
            raise AlreadyEndedError(
                f"Day {parsed_day.isoformat()} has already been ended",
                {"date": parsed_day.isoformat(), "ended_at": status.ended_at.isoformat() if status.ended_at else None},
            )
        status.is_ended = True
        status.ended_at = utcnow()
        status.ended_by = actor
        db.session.commit()
        return status

    status = run_with_retry(_op)
    logger.info("Ended day %s (by %s)", parsed_day, actor or "system")
    return status


def start_new_day(today=None, *, actor: str | None = None, now: datetime | None = None) -> dict:
    """
    Open `today` by carrying forward yesterday's unexpired remaining batches.

    Each carried entry is a new batch for today with quantity equal to the
    old remaining quantity, the same cost and expiry, and a back-reference to
    its source. Expired and empty batches are dropped.
    """
    now = now or utcnow()
    today = coerce_day(today, "date") if today is not None else current_business_date(now)
    yesterday = previous_day(today)

    def _op():
        today_status = get_day_status_row(today)
        if today_status is not None and today_status.is_ended:
            raise AlreadyEndedError(
                f"Day {today.isoformat()} has already been ended",
                {"date": today.isoformat()},
            )

        yesterday_status = get_day_status_row(yesterday)
        if yesterday_status is None or not yesterday_status.is_ended:
            raise PriorDayNotEndedError(
                "Please end the previous day before starting a new one",
                {"date": today.isoformat(), "previous_date": yesterday.isoformat()},
            )

        ensure_day_status(today)

        already_carried = {
            source_id
            for (source_id,) in db.session.query(LedgerEntry.carried_from_entry_id).filter(
                LedgerEntry.date == today,
                LedgerEntry.carried_from_entry_id.isnot(None),
            )
        }

        candidates = (
            db.session.query(LedgerEntry)
            .filter(
                LedgerEntry.date == yesterday,
                LedgerEntry.remaining_quantity > 0,
                db.or_(LedgerEntry.expiry_date.is_(None), LedgerEntry.expiry_date >= now),
            )
            .order_by(LedgerEntry.id.asc())
            .all()
        )

        carried = []
        with stock_item_locks(source.stock_item_id for source in candidates):
            for source in candidates:
                if source.id in already_carried:
                    continue
                entry = LedgerEntry(
                    stock_item_id=source.stock_item_id,
                    date=today,
                    quantity=source.remaining_quantity,
                    remaining_quantity=source.remaining_quantity,
                    cost=source.cost,
                    expiry_date=source.expiry_date,
                    carried_from_entry_id=source.id,
                    created_by=actor,
                    created_at=utcnow(),
                )
                db.session.add(entry)
                carried.append(entry)
            db.session.flush()
        summary = [
            {
                "entry_id": entry.id,
                "carried_from_entry_id": entry.carried_from_entry_id,
                "stock_item_id": entry.stock_item_id,
                "stock_item_name": entry.stock_item.name if entry.stock_item else None,
                "quantity": str(entry.quantity),
                "expiry_date": entry.expiry_date.isoformat() if entry.expiry_date else None,
            }
            for entry in carried
        ]
        db.session.commit()
        return summary

    summary = run_with_retry(_op)
    logger.info("Started day %s; carried forward %s batches from %s", today, len(summary), yesterday)
    return {
        "date": to_iso_date(today),
        "carried_forward_count": len(summary),
        "carried_forward": summary,
    }


def get_day_status(day=None) -> dict:
    """Status for `day` (default today); a day with no row yet reads as open."""
    parsed_day = coerce_day(day, "date") if day is not None else current_business_date()
    status = get_day_status_row(parsed_day)
    if status is None:
        return {"date": to_iso_date(parsed_day), "is_ended": False, "ended_at": None, "ended_by": None}
    return status.to_dict()
