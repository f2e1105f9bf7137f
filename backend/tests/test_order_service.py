from decimal import Decimal

import pytest

from freshledger.errors import InsufficientStockError, NotFoundError, ValidationError
from freshledger.extensions import db
from freshledger.models import InventoryLogEntry, Order, OrderAllocation, SalesRecord, StockItem
from freshledger.services import ledger_service, order_service, sales_service


def _stock(item_id):
    return db.session.get(StockItem, item_id).current_stock


def _request(*lines, customer="Ada", **extra):
    payload = {
        "customer_name": customer,
        "lines": [
            {"menu_item_id": dish.id, "quantity": qty, "unit_price": price}
            for dish, qty, price in lines
        ],
    }
    payload.update(extra)
    return payload


@pytest.fixture
def stocked(db_session, make_stock_item, today):
    """Factory: stock item whose whole quantity sits in one of today's batches."""
    def _make(name=None, quantity=10, **kwargs):
        item = make_stock_item(name, **kwargs)
        ledger_service.add_batch(item.id, today, quantity)
        return item
    return _make


def test_create_order_refused_when_multiplied_recipe_exceeds_stock(db_session, stocked, make_menu_item):
    flour = stocked("Flour", quantity=5)
    bread = make_menu_item([(flour, 2)], name="Bread")

    with pytest.raises(InsufficientStockError) as exc_info:
        order_service.create_order(_request((bread, 3, 4)))

    err = exc_info.value
    assert err.required == Decimal("6")
    assert err.available == Decimal("5")
    assert 'Dish "Bread" is out of stock' in str(err)
    assert err.details["menu_items"] == ["Bread"]
    assert Order.query.count() == 0
    assert _stock(flour.id) == Decimal("5")


def test_create_order_deducts_and_records_allocations(db_session, stocked, make_menu_item, today):
    flour = stocked("Flour", quantity=10)
    bread = make_menu_item([(flour, 2)], name="Bread")

    order = order_service.create_order(_request((bread, 3, "4.50"), tax="1.00"), actor="chef-1")

    assert order.status == "pending"
    assert order.order_number == f"ORD-{today:%Y%m%d}-0001"
    assert order.subtotal == Decimal("13.50")
    assert order.total_amount == Decimal("14.50")
    assert _stock(flour.id) == Decimal("4")

    [line] = order.lines
    [alloc] = line.allocations
    assert alloc.stock_item_id == flour.id
    assert alloc.quantity == Decimal("6")
    assert alloc.ledger_date == today
    assert alloc.restored_at is None

    audit = InventoryLogEntry.query.filter_by(order_id=order.id).all()
    assert [(a.change, a.reason) for a in audit] == [(Decimal("-6"), "Used in order for Bread")]

    [sale] = SalesRecord.query.filter_by(order_id=order.id).all()
    assert sale.quantity_sold == 3
    assert sale.special_event == "Regular"


def test_order_numbers_increment_per_day(db_session, stocked, make_menu_item, today):
    item = stocked(quantity=10)
    dish = make_menu_item([(item, 1)])

    first = order_service.create_order(_request((dish, 1, 5)))
    second = order_service.create_order(_request((dish, 1, 5)))

    assert first.order_number.endswith("-0001")
    assert second.order_number == f"ORD-{today:%Y%m%d}-0002"


def test_create_order_is_all_or_nothing_across_lines(db_session, stocked, make_menu_item):
    cheese = stocked("Cheese", quantity=10)
    truffle = stocked("Truffle", quantity=1)
    toast = make_menu_item([(cheese, 1)], name="Toast")
    risotto = make_menu_item([(truffle, 2)], name="Risotto")

    with pytest.raises(InsufficientStockError) as exc_info:
        order_service.create_order(_request((toast, 2, 5), (risotto, 1, 20)))

    assert 'Dish "Risotto"' in str(exc_info.value)
    assert Order.query.count() == 0
    assert _stock(cheese.id) == Decimal("10")
    assert _stock(truffle.id) == Decimal("1")


def test_shared_ingredient_is_checked_across_lines(db_session, stocked, make_menu_item):
    egg = stocked("Egg", quantity=5)
    omelette = make_menu_item([(egg, 3)], name="Omelette")
    quiche = make_menu_item([(egg, 3)], name="Quiche")

    with pytest.raises(InsufficientStockError) as exc_info:
        order_service.create_order(_request((omelette, 1, 8), (quiche, 1, 9)))

    assert str(exc_info.value).startswith("Order exceeds available stock")
    assert exc_info.value.required == Decimal("6")
    assert Order.query.count() == 0


def test_create_order_validates_input(db_session, stocked, make_menu_item):
    dish = make_menu_item([(stocked(), 1)])

    with pytest.raises(ValidationError):
        order_service.create_order({"customer_name": "", "lines": []})
    with pytest.raises(ValidationError, match="valid quantity"):
        order_service.create_order(_request((dish, 0, 5)))
    with pytest.raises(ValidationError):
        order_service.create_order(_request((dish, 1, 5), discount=100))
    with pytest.raises(NotFoundError):
        order_service.create_order({"customer_name": "Ada", "lines": [{"menu_item_id": 9999, "quantity": 1, "unit_price": 1}]})


@pytest.mark.parametrize("customer", [123, None, ["Ada"], {"name": "Ada"}])
def test_create_order_rejects_non_text_customer_name(db_session, stocked, make_menu_item, customer):
    dish = make_menu_item([(stocked(), 1)])

    with pytest.raises(ValidationError):
        order_service.create_order(_request((dish, 1, 5), customer=customer))
    assert Order.query.count() == 0


def test_non_text_fields_are_validation_errors(db_session, stocked, make_menu_item):
    dish = make_menu_item([(stocked(), 1)])
    with pytest.raises(ValidationError):
        order_service.create_order(_request((dish, 1, 5), notes=42))
    with pytest.raises(ValidationError):
        order_service.create_order({"customer_name": "Ada", "lines": [5]})

    order = order_service.create_order(_request((dish, 1, 5)))
    with pytest.raises(ValidationError):
        order_service.edit_order(order.id, {"customer_name": 123})
    with pytest.raises(ValidationError):
        order_service.edit_order(order.id, {"customer_name": "   "})
    with pytest.raises(ValidationError):
        order_service.edit_order(order.id, {"customer_phone": 5551234})
    assert db.session.get(Order, order.id).customer_name == "Ada"


def test_deduction_failure_keeps_the_order(db_session, make_stock_item, make_menu_item):
    # Aggregate stock without any of today's batches: availability passes, the ledger cannot serve it
    rice = make_stock_item("Rice", quantity=5)
    bowl = make_menu_item([(rice, 1)], name="Bowl")

    order = order_service.create_order(_request((bowl, 2, 7)))

    assert order.status == "pending"
    [line] = order.lines
    assert line.allocations == []
    assert _stock(rice.id) == Decimal("5")
    assert SalesRecord.query.filter_by(order_id=order.id).count() == 1


def test_cancel_restores_stock_once(db_session, stocked, make_menu_item):
    flour = stocked("Flour", quantity=10)
    bread = make_menu_item([(flour, 2)])
    order = order_service.create_order(_request((bread, 2, 4)))
    assert _stock(flour.id) == Decimal("6")

    cancelled = order_service.transition_order_status(order.id, "cancelled", actor="chef-1")

    assert cancelled.status == "cancelled"
    assert _stock(flour.id) == Decimal("10")
    [alloc] = OrderAllocation.query.all()
    assert alloc.restored_at is not None
    restore_log = InventoryLogEntry.query.filter(InventoryLogEntry.reason.like("Restored due to order cancellation%")).all()
    assert [entry.change for entry in restore_log] == [Decimal("4")]

    with pytest.raises(ValidationError):
        order_service.transition_order_status(order.id, "cancelled")
    assert _stock(flour.id) == Decimal("10")


def test_status_walk_to_delivered(db_session, stocked, make_menu_item):
    dish = make_menu_item([(stocked(), 1)])
    order = order_service.create_order(_request((dish, 1, 5)))

    for status in ("confirmed", "preparing", "ready"):
        order_service.transition_order_status(order.id, status)
    delivered = order_service.transition_order_status(order.id, "delivered", notes="left at door")

    assert delivered.status == "delivered"
    assert delivered.actual_delivery_time is not None
    assert delivered.notes == "left at door"
    with pytest.raises(ValidationError):
        order_service.transition_order_status(order.id, "cancelled")
    with pytest.raises(ValidationError):
        order_service.edit_order(order.id, {"notes": "late"})


@pytest.mark.parametrize("target", ["ready", "delivered", "pending", "bogus"])
def test_invalid_transitions_are_refused(db_session, stocked, make_menu_item, target):
    dish = make_menu_item([(stocked(), 1)])
    order = order_service.create_order(_request((dish, 1, 5)))

    with pytest.raises(ValidationError):
        order_service.transition_order_status(order.id, target)
    assert db.session.get(Order, order.id).status == "pending"


def test_can_transition_table():
    assert order_service.can_transition("pending", "confirmed")
    assert order_service.can_transition("confirmed", "cancelled")
    assert not order_service.can_transition("preparing", "cancelled")
    assert not order_service.can_transition("delivered", "ready")


def test_edit_lines_is_atomic_when_new_lines_are_short(db_session, stocked, make_menu_item):
    flour = stocked("Flour", quantity=10)
    bread = make_menu_item([(flour, 2)], name="Bread")
    order = order_service.create_order(_request((bread, 1, 4)))
    order_id = order.id

    with pytest.raises(InsufficientStockError):
        order_service.replace_lines(order_id, [{"menu_item_id": bread.id, "quantity": 10, "unit_price": 4}])

    assert _stock(flour.id) == Decimal("8")
    stored = db.session.get(Order, order_id)
    [line] = stored.lines
    assert line.quantity == 1
    assert [a.restored_at for a in line.allocations] == [None]
    assert [s.quantity_sold for s in sales_service.list_sales_records(order_id=order_id)] == [1]


def test_edit_lines_restores_old_and_deducts_new(db_session, stocked, make_menu_item):
    flour = stocked("Flour", quantity=10)
    bread = make_menu_item([(flour, 2)], name="Bread")
    order = order_service.create_order(_request((bread, 1, 4)))

    edited = order_service.edit_order(
        order.id,
        {"lines": [{"menu_item_id": bread.id, "quantity": 2, "unit_price": 4}], "customer_name": "Grace"},
        actor="chef-2",
    )

    assert edited.customer_name == "Grace"
    assert edited.subtotal == Decimal("8")
    assert edited.total_amount == Decimal("8")
    # 10 - 2 (original) + 2 (restored) - 4 (new)
    assert _stock(flour.id) == Decimal("6")
    [line] = edited.lines
    assert line.quantity == 2
    assert [a.quantity for a in line.allocations] == [Decimal("4")]
    assert OrderAllocation.query.filter(OrderAllocation.restored_at.isnot(None)).count() == 0


def test_edit_lines_replaces_sales_records(db_session, stocked, make_menu_item):
    flour = stocked("Flour", quantity=20)
    bread = make_menu_item([(flour, 1)], name="Bread")
    order = order_service.create_order(_request((bread, 2, 4)))

    order_service.edit_order(order.id, {"lines": [{"menu_item_id": bread.id, "quantity": 3, "unit_price": 4}]})

    sales = sales_service.list_sales_records(order_id=order.id)
    assert [s.quantity_sold for s in sales] == [3]
    assert SalesRecord.query.count() == 1


def test_field_only_edit_recomputes_total(db_session, stocked, make_menu_item):
    dish = make_menu_item([(stocked(), 1)])
    order = order_service.create_order(_request((dish, 2, 5)))

    edited = order_service.edit_order(order.id, {"tax": "1.50", "discount": 2, "notes": "no onions"})

    assert edited.subtotal == Decimal("10")
    assert edited.total_amount == Decimal("9.50")
    assert edited.notes == "no onions"

    with pytest.raises(ValidationError):
        order_service.edit_order(order.id, {"status": "ready"})
    with pytest.raises(ValidationError):
        order_service.edit_order(order.id, {"discount": 50})


def test_delete_order_keeps_sales_history(db_session, stocked, make_menu_item):
    item = stocked(quantity=10)
    dish = make_menu_item([(item, 1)])
    order = order_service.create_order(_request((dish, 1, 5)))
    order_id = order.id

    order_service.delete_order(order_id, actor="admin-1")

    assert db.session.get(Order, order_id) is None
    assert OrderAllocation.query.count() == 0
    [sale] = SalesRecord.query.all()
    assert sale.order_id is None
    # stock is not given back by a delete
    assert _stock(item.id) == Decimal("9")
    with pytest.raises(NotFoundError):
        order_service.get_order(order_id)


def test_list_orders_filters_and_paginates(db_session, stocked, make_menu_item):
    dish = make_menu_item([(stocked(quantity=20), 1)])
    for name in ("Ada", "Grace", "Alan"):
        order_service.create_order(_request((dish, 1, 5), customer=name))
    order_service.create_order(_request((dish, 1, 5), customer="Barbara", order_type="delivery"))

    page = order_service.list_orders(per_page=3)
    assert page["total"] == 4
    assert page["pages"] == 2
    assert len(page["orders"]) == 3

    second = order_service.list_orders(per_page=3, page=2)
    assert len(second["orders"]) == 1

    assert [o.customer_name for o in order_service.list_orders(search="gra")["orders"]] == ["Grace"]
    assert [o.customer_name for o in order_service.list_orders(order_type="delivery")["orders"]] == ["Barbara"]
