from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .stock import QUANTITY, MONEY, _num


WASTE_CATEGORIES = ("expired", "spoiled", "damaged", "overproduction", "manual", "other")


class WasteRecord(db.Model):
    """Recorded loss of stock. Created by the expiry sweep or manual entry; never mutated."""
    __tablename__ = "waste_records"
    __table_args__ = (
        db.Index("ix_waste_records_category_logged", "category", "logged_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    stock_item_id = db.Column(db.Integer, db.ForeignKey("stock_items.id"), nullable=False, index=True)
    category = db.Column(db.String(16), nullable=False)
    quantity = db.Column(QUANTITY, nullable=False)
    unit = db.Column(db.String(16), nullable=False)
    # quantity * unit cost at the time of logging; 0 when the cost is unknown
    cost = db.Column(MONEY, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)
    logged_by = db.Column(db.String(64), nullable=True)
    logged_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())

    stock_item = db.relationship("StockItem")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stock_item_id": self.stock_item_id,
            "stock_item_name": self.stock_item.name if self.stock_item else None,
            "category": self.category,
            "quantity": _num(self.quantity),
            "unit": self.unit,
            "cost": _num(self.cost),
            "notes": self.notes,
            "logged_by": self.logged_by,
            "logged_at": to_utc_z(self.logged_at),
        }
