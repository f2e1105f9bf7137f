from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .stock import QUANTITY, MONEY, _num


class MenuItem(db.Model):
    """
    A composite sellable item: its ingredients are the bill of materials
    deducted from stock when it is ordered.

    is_available / stock_status cache the last availability check for
    listing screens; orders always re-check live stock.
    """
    __tablename__ = "menu_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)
    price = db.Column(MONEY, nullable=True)

    is_available = db.Column(db.Boolean, nullable=False, default=True)
    stock_status = db.Column(db.String(16), nullable=False, default="available")

    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())

    ingredients = db.relationship(
        "MenuItemIngredient",
        backref="menu_item",
        cascade="all, delete-orphan",
        order_by="MenuItemIngredient.id",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price": _num(self.price),
            "is_available": self.is_available,
            "stock_status": self.stock_status,
            "ingredients": [ing.to_dict() for ing in self.ingredients],
            "created_at": to_utc_z(self.created_at),
        }


class MenuItemIngredient(db.Model):
    __tablename__ = "menu_item_ingredients"
    __table_args__ = (
        db.UniqueConstraint("menu_item_id", "stock_item_id", name="uq_menu_item_ingredient"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    menu_item_id = db.Column(db.Integer, db.ForeignKey("menu_items.id"), nullable=False, index=True)
    stock_item_id = db.Column(db.Integer, db.ForeignKey("stock_items.id"), nullable=False, index=True)
    # Per single unit of the menu item
    quantity = db.Column(QUANTITY, nullable=False)
    unit = db.Column(db.String(16), nullable=True)

    stock_item = db.relationship("StockItem")

    def to_dict(self) -> dict:
        return {
            "stock_item_id": self.stock_item_id,
            "quantity": _num(self.quantity),
            "unit": self.unit,
        }
