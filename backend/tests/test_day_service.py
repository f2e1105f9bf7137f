from datetime import timedelta
from decimal import Decimal

import pytest

from freshledger.errors import AlreadyEndedError, PriorDayNotEndedError
from freshledger.extensions import db
from freshledger.models import LedgerEntry, StockItem
from freshledger.services import day_service, ledger_service
from freshledger.time_utils import previous_day, utcnow


def test_end_day_records_actor_and_rejects_second_call(db_session, today):
    status = day_service.end_day(today, actor="admin-1")

    assert status.is_ended is True
    assert status.ended_by == "admin-1"
    assert status.ended_at is not None

    with pytest.raises(AlreadyEndedError):
        day_service.end_day(today, actor="admin-1")


def test_end_day_leaves_batches_and_stock_alone(db_session, make_stock_item, today):
    item = make_stock_item()
    entry = ledger_service.add_batch(item.id, today, 4)
    entry_id = entry.id

    day_service.end_day(today)

    assert db.session.get(LedgerEntry, entry_id).remaining_quantity == Decimal("4")
    assert db.session.get(StockItem, item.id).current_stock == Decimal("4")


def test_start_new_day_requires_previous_day_ended(db_session, today):
    with pytest.raises(PriorDayNotEndedError):
        day_service.start_new_day(today)

    # An open (but existing) previous day is not enough either
    ledger_service.ensure_day_status(previous_day(today))
    db_session.commit()
    with pytest.raises(PriorDayNotEndedError):
        day_service.start_new_day(today)


def test_start_new_day_refuses_an_ended_today(db_session, today):
    day_service.end_day(previous_day(today))
    day_service.end_day(today)

    with pytest.raises(AlreadyEndedError):
        day_service.start_new_day(today)


def test_start_new_day_carries_forward_unexpired_remaining_batches(db_session, make_stock_item, today):
    yesterday = previous_day(today)
    now = utcnow()
    item = make_stock_item("Basil")

    partly_used = ledger_service.add_batch(item.id, yesterday, 5, cost=2, expiry_date=now + timedelta(days=3))
    used_up = ledger_service.add_batch(item.id, yesterday, 1, expiry_date=now + timedelta(days=1))
    expired = ledger_service.add_batch(item.id, yesterday, 2, expiry_date=now - timedelta(hours=2))
    undated = ledger_service.add_batch(item.id, yesterday, 4)
    partly_used_id, used_up_id, expired_id, undated_id = partly_used.id, used_up.id, expired.id, undated.id

    # consumes all of used_up (earliest expiry) and 2 of partly_used
    ledger_service.deduct(item.id, yesterday, 3, now=now)
    stock_before = db.session.get(StockItem, item.id).current_stock

    day_service.end_day(yesterday, actor="admin")
    result = day_service.start_new_day(today, actor="admin", now=now)

    assert result["date"] == today.isoformat()
    assert result["carried_forward_count"] == 2
    carried_sources = {row["carried_from_entry_id"]: Decimal(row["quantity"]) for row in result["carried_forward"]}
    assert carried_sources == {partly_used_id: Decimal("3"), undated_id: Decimal("4")}
    assert used_up_id not in carried_sources
    assert expired_id not in carried_sources

    todays = {e.carried_from_entry_id: e for e in ledger_service.get_entries(today, item.id)}
    assert todays[partly_used_id].quantity == todays[partly_used_id].remaining_quantity == Decimal("3")
    assert todays[partly_used_id].cost == Decimal("2")
    assert todays[partly_used_id].expiry_date == db.session.get(LedgerEntry, partly_used_id).expiry_date

    # yesterday untouched, aggregate stock continuous
    assert db.session.get(LedgerEntry, partly_used_id).remaining_quantity == Decimal("3")
    assert db.session.get(StockItem, item.id).current_stock == stock_before


def test_start_new_day_twice_does_not_duplicate_carried_batches(db_session, make_stock_item, today):
    yesterday = previous_day(today)
    item = make_stock_item()
    ledger_service.add_batch(item.id, yesterday, 6)
    day_service.end_day(yesterday)

    first = day_service.start_new_day(today)
    second = day_service.start_new_day(today)

    assert first["carried_forward_count"] == 1
    assert second["carried_forward_count"] == 0
    assert len(ledger_service.get_entries(today, item.id)) == 1


def test_get_day_status_defaults_to_open(db_session, today):
    status = day_service.get_day_status(today)
    assert status == {"date": today.isoformat(), "is_ended": False, "ended_at": None, "ended_by": None}
