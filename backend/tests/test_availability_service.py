from datetime import timedelta
from decimal import Decimal

from freshledger.extensions import db
from freshledger.models import InventoryLogEntry, MenuItem, StockItem
from freshledger.services import availability_service
from freshledger.services.menu_service import Ingredient
from freshledger.time_utils import utcnow


def _reasons(result):
    return {m.stock_item_id: m.reason for m in result.missing_ingredients}


def test_available_bundle(db_session, make_stock_item):
    flour = make_stock_item("Flour", quantity=10)
    eggs = make_stock_item("Eggs", unit="pcs", quantity=12)

    result = availability_service.check_availability([
        Ingredient(flour.id, Decimal("0.5")),
        Ingredient(eggs.id, Decimal("2")),
    ])

    assert result.is_available is True
    assert result.stock_status == "available"
    assert result.missing_ingredients == []


def test_each_shortfall_reason_is_reported(db_session, make_stock_item):
    now = utcnow()
    expired = make_stock_item("Cream", quantity=5, expiry_date=now - timedelta(hours=1))
    empty = make_stock_item("Saffron", quantity=0)
    short = make_stock_item("Butter", quantity=1)

    result = availability_service.check_availability(
        [
            Ingredient(999999, Decimal("1")),
            Ingredient(expired.id, Decimal("1")),
            Ingredient(empty.id, Decimal("1")),
            Ingredient(short.id, Decimal("2")),
        ],
        now=now,
    )

    assert result.is_available is False
    assert result.stock_status == "out_of_stock"
    assert _reasons(result) == {
        999999: availability_service.REASON_NOT_FOUND,
        expired.id: availability_service.REASON_EXPIRED,
        empty.id: availability_service.REASON_OUT_OF_STOCK,
        short.id: availability_service.REASON_INSUFFICIENT,
    }
    by_id = {m.stock_item_id: m for m in result.missing_ingredients}
    assert by_id[expired.id].available == Decimal("0")
    assert by_id[short.id].required == Decimal("2")
    assert by_id[short.id].available == Decimal("1")


def test_low_stock_is_a_soft_flag(db_session, make_stock_item):
    item = make_stock_item("Olive oil", quantity=3, min_threshold=5)

    result = availability_service.check_availability([Ingredient(item.id, Decimal("1"))])

    assert result.is_available is True
    assert result.stock_status == "low_stock"
    assert result.low_stock_items == [item.id]


def test_missing_ingredient_overrides_low_stock(db_session, make_stock_item):
    low = make_stock_item("Salt", quantity=2, min_threshold=5)
    gone = make_stock_item("Pepper", quantity=0)

    result = availability_service.check_availability([
        Ingredient(low.id, Decimal("1")),
        Ingredient(gone.id, Decimal("1")),
    ])

    assert result.is_available is False
    assert result.stock_status == "out_of_stock"


def test_multiplier_scales_requirements(db_session, make_stock_item):
    item = make_stock_item(quantity=5)
    bundle = [Ingredient(item.id, Decimal("2"))]

    assert availability_service.check_availability(bundle, multiplier=2).is_available is True

    result = availability_service.check_availability(bundle, multiplier=3)
    assert result.is_available is False
    [missing] = result.missing_ingredients
    assert missing.required == Decimal("6")
    assert missing.available == Decimal("5")


def test_repeated_items_are_summed(db_session, make_stock_item):
    item = make_stock_item(quantity=3)

    result = availability_service.check_availability([
        Ingredient(item.id, Decimal("2")),
        Ingredient(item.id, Decimal("2")),
    ])

    assert result.is_available is False
    assert result.missing_ingredients[0].required == Decimal("4")


def test_check_is_read_only(db_session, make_stock_item, make_menu_item):
    item = make_stock_item(quantity=5)
    dish = make_menu_item([(item, 2)])
    log_count = InventoryLogEntry.query.count()

    result = availability_service.check_menu_item(dish.id, quantity=2)

    assert result.is_available is True
    assert db.session.get(StockItem, item.id).current_stock == Decimal("5")
    assert InventoryLogEntry.query.count() == log_count


def test_refresh_menu_item_stock_status_caches_result(db_session, make_stock_item, make_menu_item):
    item = make_stock_item(quantity=0)
    dish = make_menu_item([(item, 1)])

    availability_service.refresh_menu_item_stock_status(dish.id)
    db_session.commit()

    stored = db.session.get(MenuItem, dish.id)
    assert stored.is_available is False
    assert stored.stock_status == "out_of_stock"
