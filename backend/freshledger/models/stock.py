from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..time_utils import to_utc_z


QUANTITY = db.Numeric(12, 3)
MONEY = db.Numeric(12, 2)

STOCK_STATUSES = ("active", "low_stock", "out_of_stock", "expired", "discontinued")
# Statuses that stock movements never overwrite
STICKY_STATUSES = ("expired", "discontinued")


def _num(value) -> str | None:
    return str(value) if value is not None else None


class StockItem(db.Model):
    """
    Canonical per-item aggregate stock record.

    current_stock is the aggregate usable quantity across all batches; it is
    written by the ledger (intake, deduction, restoration), the waste log and
    the expiry sweep. Per-day batch bookkeeping lives in LedgerEntry.

    INVARIANTS:
    - current_stock >= 0 (also a DB check constraint)
    - status == "expired" implies current_stock == 0

    version_id is SQLAlchemy's optimistic lock: two sessions that both read
    the row and then write it cannot both succeed; the loser gets
    StaleDataError and is retried by run_with_retry.
    """
    __tablename__ = "stock_items"
    __table_args__ = (
        db.CheckConstraint("current_stock >= 0", name="ck_stock_items_current_stock_non_negative"),
        db.Index("ix_stock_items_category_name", "category", "name"),
        db.Index("ix_stock_items_status_expiry", "status", "expiry_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(120), nullable=False)
    category = db.Column(db.String(64), nullable=False)
    unit = db.Column(db.String(16), nullable=False, default="pcs")

    current_stock = db.Column(QUANTITY, nullable=False, default=Decimal("0"))
    # Unit cost; waste cost is quantity * cost
    cost = db.Column(MONEY, nullable=True)

    min_threshold = db.Column(QUANTITY, nullable=False, default=Decimal("0"))
    max_threshold = db.Column(QUANTITY, nullable=True)

    expiry_date = db.Column(db.DateTime, nullable=True)
    status = db.Column(db.String(16), nullable=False, default="active", index=True)

    storage_condition = db.Column(db.String(32), nullable=True)
    supplier = db.Column(db.String(120), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.String(64), nullable=True)
    updated_by = db.Column(db.String(64), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def is_expired_at(self, now) -> bool:
        return self.status == "expired" or (self.expiry_date is not None and self.expiry_date < now)

    def refresh_status(self) -> str:
        """Recompute status from current_stock; expired/discontinued are left alone."""
        if self.status in STICKY_STATUSES:
            return self.status

        stock = self.current_stock or Decimal("0")
        threshold = self.min_threshold or Decimal("0")
        if stock <= 0:
            self.status = "out_of_stock"
        elif threshold > 0 and stock <= threshold:
            self.status = "low_stock"
        else:
            self.status = "active"
        return self.status

    def __repr__(self) -> str:
        return f"<StockItem id={self.id} name={self.name!r} stock={self.current_stock} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "unit": self.unit,
            "current_stock": _num(self.current_stock),
            "cost": _num(self.cost),
            "min_threshold": _num(self.min_threshold),
            "max_threshold": _num(self.max_threshold),
            "expiry_date": to_utc_z(self.expiry_date),
            "status": self.status,
            "storage_condition": self.storage_condition,
            "supplier": self.supplier,
            "notes": self.notes,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryLogEntry(db.Model):
    """
    Append-only audit trail: one row per stock mutation.

    change is signed (negative for deductions and write-offs). Rows are never
    updated or deleted.
    """
    __tablename__ = "inventory_log_entries"
    __table_args__ = (
        db.Index("ix_invlog_item_occurred", "stock_item_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    stock_item_id = db.Column(db.Integer, db.ForeignKey("stock_items.id"), nullable=False, index=True)
    change = db.Column(QUANTITY, nullable=False)
    reason = db.Column(db.String(255), nullable=False)
    order_id = db.Column(db.Integer, nullable=True, index=True)
    actor = db.Column(db.String(64), nullable=True)
    occurred_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())

    stock_item = db.relationship("StockItem", backref=db.backref("log_entries", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stock_item_id": self.stock_item_id,
            "change": _num(self.change),
            "reason": self.reason,
            "order_id": self.order_id,
            "actor": self.actor,
            "occurred_at": to_utc_z(self.occurred_at),
        }
