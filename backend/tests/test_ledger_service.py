from datetime import timedelta
from decimal import Decimal

import pytest

from freshledger.errors import DayClosedError, InsufficientStockError, NotFoundError, ValidationError
from freshledger.extensions import db
from freshledger.models import InventoryLogEntry, LedgerEntry, StockItem
from freshledger.services import day_service, ledger_service
from freshledger.time_utils import utcnow


def _entry(entry_id):
    return db.session.get(LedgerEntry, entry_id)


def _item(item_id):
    return db.session.get(StockItem, item_id)


def test_add_batch_increments_stock_and_opens_day(db_session, make_stock_item, today):
    item = make_stock_item("Milk", unit="l")

    entry = ledger_service.add_batch(item.id, today, 12, cost="0.80", actor="chef")

    assert entry.quantity == Decimal("12")
    assert entry.remaining_quantity == Decimal("12")
    assert _item(item.id).current_stock == Decimal("12")
    assert day_service.get_day_status(today)["is_ended"] is False

    log = InventoryLogEntry.query.filter_by(stock_item_id=item.id).all()
    assert [(e.change, e.reason) for e in log] == [(Decimal("12"), "Daily intake batch")]


@pytest.mark.parametrize("quantity,cost", [(0, None), (-3, None), (5, -1), ("abc", None)])
def test_add_batch_rejects_bad_input(db_session, make_stock_item, today, quantity, cost):
    item = make_stock_item()
    with pytest.raises(ValidationError):
        ledger_service.add_batch(item.id, today, quantity, cost=cost)
    assert LedgerEntry.query.count() == 0


def test_add_batch_unknown_item(db_session, today):
    with pytest.raises(NotFoundError):
        ledger_service.add_batch(424242, today, 1)


def test_add_batch_on_ended_day_is_refused(db_session, make_stock_item, today):
    item = make_stock_item()
    day_service.end_day(today, actor="admin")

    with pytest.raises(DayClosedError):
        ledger_service.add_batch(item.id, today, 3)

    assert _item(item.id).current_stock == Decimal("0")
    assert LedgerEntry.query.count() == 0


def test_deduct_consumes_earliest_expiry_first(db_session, make_stock_item, today):
    tomato = make_stock_item("Tomato")
    now = utcnow()
    batch_a = ledger_service.add_batch(tomato.id, today, 5, expiry_date=now + timedelta(days=1))
    batch_b = ledger_service.add_batch(tomato.id, today, 10, expiry_date=now + timedelta(days=5))
    a_id, b_id = batch_a.id, batch_b.id

    consumed = ledger_service.deduct(tomato.id, today, 7, reason="Prep", now=now)

    assert [(c["entry_id"], c["quantity"]) for c in consumed] == [(a_id, Decimal("5")), (b_id, Decimal("2"))]
    assert _entry(a_id).remaining_quantity == Decimal("0")
    assert _entry(b_id).remaining_quantity == Decimal("8")
    assert _item(tomato.id).current_stock == Decimal("8")


def test_deduct_prefers_dated_batches_over_undated(db_session, make_stock_item, today):
    item = make_stock_item()
    now = utcnow()
    undated = ledger_service.add_batch(item.id, today, 4)
    dated = ledger_service.add_batch(item.id, today, 4, expiry_date=now + timedelta(days=10))
    undated_id, dated_id = undated.id, dated.id

    ledger_service.deduct(item.id, today, 5, now=now)

    assert _entry(dated_id).remaining_quantity == Decimal("0")
    assert _entry(undated_id).remaining_quantity == Decimal("3")


def test_deduct_breaks_expiry_ties_by_creation_order(db_session, make_stock_item, today):
    item = make_stock_item()
    expiry = utcnow() + timedelta(days=2)
    first = ledger_service.add_batch(item.id, today, 2, expiry_date=expiry)
    second = ledger_service.add_batch(item.id, today, 2, expiry_date=expiry)
    first_id, second_id = first.id, second.id

    consumed = ledger_service.deduct(item.id, today, 3)

    assert [c["entry_id"] for c in consumed] == [first_id, second_id]
    assert _entry(first_id).remaining_quantity == Decimal("0")
    assert _entry(second_id).remaining_quantity == Decimal("1")


def test_deduct_never_selects_expired_batches(db_session, make_stock_item, today):
    item = make_stock_item()
    now = utcnow()
    stale = ledger_service.add_batch(item.id, today, 6, expiry_date=now - timedelta(hours=1))
    fresh = ledger_service.add_batch(item.id, today, 2, expiry_date=now + timedelta(days=1))
    stale_id, fresh_id = stale.id, fresh.id

    with pytest.raises(InsufficientStockError) as exc_info:
        ledger_service.deduct(item.id, today, 3, now=now)

    assert exc_info.value.required == Decimal("3")
    assert exc_info.value.available == Decimal("2")
    assert exc_info.value.details["required"] == "3"
    # The failed attempt leaves nothing behind once its transaction is rolled back
    assert _entry(stale_id).remaining_quantity == Decimal("6")
    assert _entry(fresh_id).remaining_quantity == Decimal("2")
    assert _item(item.id).current_stock == Decimal("8")


def test_remaining_sum_tracks_added_minus_deducted(db_session, make_stock_item, today):
    item = make_stock_item()
    added = Decimal("0")
    deducted = Decimal("0")

    for qty in (3, 7, 2):
        ledger_service.add_batch(item.id, today, qty)
        added += qty
    for qty in (4, 5):
        ledger_service.deduct(item.id, today, qty)
        deducted += qty
    with pytest.raises(InsufficientStockError):
        ledger_service.deduct(item.id, today, 10)

    remaining = sum(e.remaining_quantity for e in ledger_service.get_entries(today, item.id))
    assert remaining == added - deducted
    assert all(e.remaining_quantity >= 0 for e in LedgerEntry.query.all())
    assert ledger_service.usable_quantity(item.id, today) == Decimal("3")


def test_restore_only_moves_aggregate_stock(db_session, make_stock_item, today):
    item = make_stock_item()
    entry = ledger_service.add_batch(item.id, today, 5)
    entry_id = entry.id
    ledger_service.deduct(item.id, today, 5)

    ledger_service.restore(item.id, today, 2, "Restored due to order cancellation ORD-1", actor="chef")

    assert _item(item.id).current_stock == Decimal("2")
    assert _entry(entry_id).remaining_quantity == Decimal("0")
    last = InventoryLogEntry.query.order_by(InventoryLogEntry.id.desc()).first()
    assert last.change == Decimal("2")
    assert last.reason.startswith("Restored due to order cancellation")


def test_stock_drift_reports_aggregate_vs_lots(db_session, make_stock_item, today):
    item = make_stock_item(quantity=4)
    ledger_service.add_batch(item.id, today, 6)

    drift = ledger_service.stock_drift(item.id, today)

    assert Decimal(drift["current_stock"]) == Decimal("10")
    assert Decimal(drift["ledger_usable"]) == Decimal("6")
    assert Decimal(drift["drift"]) == Decimal("4")


def test_fresh_batch_revives_expired_item(db_session, make_stock_item, today):
    item = make_stock_item(quantity=0, expiry_date=utcnow() - timedelta(days=1))
    item_id = item.id
    stored = _item(item_id)
    stored.status = "expired"
    db.session.commit()

    new_expiry = utcnow() + timedelta(days=3)
    ledger_service.add_batch(item_id, today, 5, expiry_date=new_expiry)

    revived = _item(item_id)
    assert revived.status == "active"
    assert revived.expiry_date == new_expiry
    assert revived.current_stock == Decimal("5")
