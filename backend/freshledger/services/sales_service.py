# Overview: Service-layer operations for sales records; one demand fact per ordered line.

from __future__ import annotations

from datetime import datetime

from ..extensions import db
from ..models import Order, OrderLine, SalesRecord
from ..time_utils import utcnow


def season_for(moment: datetime) -> str:
    month = moment.month
    if 3 <= month <= 5:
        return "Spring"
    if 6 <= month <= 8:
        return "Summer"
    if 9 <= month <= 11:
        return "Autumn"
    return "Winter"


def record_sale(line: OrderLine, order: Order, now: datetime | None = None) -> SalesRecord:
    """Insert the sales fact for one order line. Flushes, never commits."""
    now = now or utcnow()
    record = SalesRecord(
        menu_item_id=line.menu_item_id,
        order_id=order.id,
        quantity_sold=line.quantity,
        sale_date=now,
        day_of_week=now.strftime("%A"),
        season=season_for(now),
        special_event="Regular",
    )
    db.session.add(record)
    db.session.flush()
    return record


def list_sales_records(*, menu_item_id: int | None = None, order_id: int | None = None) -> list[SalesRecord]:
    q = SalesRecord.query
    if menu_item_id is not None:
        q = q.filter(SalesRecord.menu_item_id == menu_item_id)
    if order_id is not None:
        q = q.filter(SalesRecord.order_id == order_id)
    return q.order_by(SalesRecord.sale_date.desc(), SalesRecord.id.desc()).all()
