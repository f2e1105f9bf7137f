from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date
from .stock import QUANTITY, MONEY, _num


class LedgerEntry(db.Model):
    """
    One dated batch of a stock item.

    remaining_quantity starts equal to quantity and only ever goes down (FIFO
    deduction). Day roll-forward never edits a batch; it creates a fresh entry
    for the new day pointing back through carried_from_entry_id.
    """
    __tablename__ = "ledger_entries"
    __table_args__ = (
        db.CheckConstraint("remaining_quantity >= 0", name="ck_ledger_entries_remaining_non_negative"),
        db.CheckConstraint("remaining_quantity <= quantity", name="ck_ledger_entries_remaining_le_quantity"),
        db.Index("ix_ledger_entries_date_item", "date", "stock_item_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    stock_item_id = db.Column(db.Integer, db.ForeignKey("stock_items.id"), nullable=False, index=True)

    # Calendar day (business timezone), never a timestamp
    date = db.Column(db.Date, nullable=False, index=True)

    quantity = db.Column(QUANTITY, nullable=False)
    remaining_quantity = db.Column(QUANTITY, nullable=False)
    cost = db.Column(MONEY, nullable=True)
    expiry_date = db.Column(db.DateTime, nullable=True)

    carried_from_entry_id = db.Column(db.Integer, db.ForeignKey("ledger_entries.id"), nullable=True, index=True)

    created_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)

    stock_item = db.relationship("StockItem", backref=db.backref("ledger_entries", lazy="dynamic"))
    carried_from = db.relationship("LedgerEntry", remote_side=[id])

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry id={self.id} item={self.stock_item_id} date={self.date} "
            f"remaining={self.remaining_quantity}/{self.quantity}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stock_item_id": self.stock_item_id,
            "date": to_iso_date(self.date),
            "quantity": _num(self.quantity),
            "remaining_quantity": _num(self.remaining_quantity),
            "cost": _num(self.cost),
            "expiry_date": to_utc_z(self.expiry_date),
            "carried_from_entry_id": self.carried_from_entry_id,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }


class DayStatus(db.Model):
    """
    Open/closed flag per calendar day.

    OPEN -> ENDED only; an ended day accepts no further intake.
    """
    __tablename__ = "day_statuses"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    date = db.Column(db.Date, nullable=False, unique=True, index=True)
    is_ended = db.Column(db.Boolean, nullable=False, default=False)
    ended_at = db.Column(db.DateTime, nullable=True)
    ended_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "date": to_iso_date(self.date),
            "is_ended": bool(self.is_ended),
            "ended_at": to_utc_z(self.ended_at),
            "ended_by": self.ended_by,
        }
