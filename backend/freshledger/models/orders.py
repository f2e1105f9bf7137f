from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date
from .stock import QUANTITY, MONEY, _num


class Order(db.Model):
    """
    Customer order document.

    Status moves along pending -> confirmed -> preparing -> ready -> delivered,
    with pending|confirmed -> cancelled as the only side exit (see
    order_service). Stock consumed by the order is recorded per line in
    OrderAllocation, which is what cancellation and edits reverse.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), nullable=False, unique=True, index=True)

    customer_name = db.Column(db.String(120), nullable=False)
    customer_phone = db.Column(db.String(32), nullable=True)
    customer_email = db.Column(db.String(120), nullable=True)
    order_type = db.Column(db.String(16), nullable=False, default="dine-in")

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    subtotal = db.Column(MONEY, nullable=False, default=0)
    tax = db.Column(MONEY, nullable=False, default=0)
    discount = db.Column(MONEY, nullable=False, default=0)
    total_amount = db.Column(MONEY, nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)
    estimated_time = db.Column(db.DateTime, nullable=True)
    actual_delivery_time = db.Column(db.DateTime, nullable=True)

    created_by = db.Column(db.String(64), nullable=True)
    updated_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    lines = db.relationship(
        "OrderLine",
        backref="order",
        cascade="all, delete-orphan",
        order_by="OrderLine.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "customer_email": self.customer_email,
            "order_type": self.order_type,
            "status": self.status,
            "lines": [line.to_dict() for line in self.lines],
            "subtotal": _num(self.subtotal),
            "tax": _num(self.tax),
            "discount": _num(self.discount),
            "total_amount": _num(self.total_amount),
            "notes": self.notes,
            "estimated_time": to_utc_z(self.estimated_time),
            "actual_delivery_time": to_utc_z(self.actual_delivery_time),
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class OrderLine(db.Model):
    __tablename__ = "order_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    menu_item_id = db.Column(db.Integer, db.ForeignKey("menu_items.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(MONEY, nullable=False)
    total_price = db.Column(MONEY, nullable=False)

    menu_item = db.relationship("MenuItem")
    allocations = db.relationship(
        "OrderAllocation",
        backref="order_line",
        cascade="all, delete-orphan",
        order_by="OrderAllocation.id",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "menu_item_id": self.menu_item_id,
            "menu_item_name": self.menu_item.name if self.menu_item else None,
            "quantity": self.quantity,
            "unit_price": _num(self.unit_price),
            "total_price": _num(self.total_price),
        }


class OrderAllocation(db.Model):
    """
    "Deducted N units of stock item I for order line L" as a recorded fact.

    Written only when the ledger deduction actually succeeded; restored_at is
    set exactly once by compensation, so a second cancel/edit cannot restore
    the same stock twice.
    """
    __tablename__ = "order_allocations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_line_id = db.Column(db.Integer, db.ForeignKey("order_lines.id"), nullable=False, index=True)
    stock_item_id = db.Column(db.Integer, db.ForeignKey("stock_items.id"), nullable=False, index=True)
    ledger_date = db.Column(db.Date, nullable=False)
    quantity = db.Column(QUANTITY, nullable=False)
    deducted_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())
    restored_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_line_id": self.order_line_id,
            "stock_item_id": self.stock_item_id,
            "ledger_date": to_iso_date(self.ledger_date),
            "quantity": _num(self.quantity),
            "deducted_at": to_utc_z(self.deducted_at),
            "restored_at": to_utc_z(self.restored_at),
        }


class OrderSequence(db.Model):
    """Per-day counter behind ORD-YYYYMMDD-NNNN order numbers."""
    __tablename__ = "order_sequences"

    id = db.Column(db.Integer, primary_key=True)
    sequence_date = db.Column(db.Date, nullable=False, unique=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)


class SalesRecord(db.Model):
    """Per-line sales fact consumed by demand reporting; written best-effort."""
    __tablename__ = "sales_records"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    menu_item_id = db.Column(db.Integer, db.ForeignKey("menu_items.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    quantity_sold = db.Column(db.Integer, nullable=False)
    sale_date = db.Column(db.DateTime, nullable=False)
    day_of_week = db.Column(db.String(12), nullable=False)
    season = db.Column(db.String(12), nullable=False)
    special_event = db.Column(db.String(64), nullable=False, default="Regular")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "menu_item_id": self.menu_item_id,
            "order_id": self.order_id,
            "quantity_sold": self.quantity_sold,
            "sale_date": to_utc_z(self.sale_date),
            "day_of_week": self.day_of_week,
            "season": self.season,
            "special_event": self.special_event,
        }
