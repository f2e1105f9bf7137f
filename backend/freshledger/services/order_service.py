# Overview: Service-layer operations for orders; creation, status lifecycle, edits and stock compensation.

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from flask import current_app
from sqlalchemy import delete, or_, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..models import MenuItem, Order, OrderAllocation, OrderLine, OrderSequence, SalesRecord
from ..time_utils import utcnow
from ..validation import coerce_datetime, non_negative_decimal, optional_non_negative, required_text
from . import ledger_service
from .availability_service import MissingIngredient, check_availability
from .concurrency import run_with_retry, stock_item_locks
from .menu_service import Ingredient, get_menu_item, resolve_ingredients
from .sales_service import record_sale
"""
Order Lifecycle Invariants (authoritative)

STATE MACHINE:
    pending -> confirmed -> preparing -> ready -> delivered
    pending | confirmed -> cancelled

- delivered and cancelled are terminal: no transitions, no edits.
- Creation is all-or-nothing with respect to availability: if any line is
  short, no order is written and no batch is touched.
- Stock actually consumed by an order is recorded as OrderAllocation rows.
  Compensation (cancel, edit) restores exactly the unrestored allocations and
  stamps restored_at, so the same stock is never restored twice.
- Deductions for a created order are best-effort per line: a line whose
  ledger deduction fails is rolled back to its savepoint and logged; the
  order itself stays created.
- An edit that replaces lines is one transaction: if the new lines are not
  available, the restoration of the old lines is rolled back with it.
"""

logger = logging.getLogger(__name__)

ORDER_STATUSES = ("pending", "confirmed", "preparing", "ready", "delivered", "cancelled")
TERMINAL_STATUSES = {"delivered", "cancelled"}

ALLOWED_TRANSITIONS = {
    "pending": {"confirmed", "cancelled"},
    "confirmed": {"preparing", "cancelled"},
    "preparing": {"ready"},
    "ready": {"delivered"},
}

EDITABLE_FIELDS = {
    "customer_name", "customer_phone", "customer_email", "order_type",
    "notes", "tax", "discount", "estimated_time", "lines",
}

TEXT_FIELDS = ("customer_phone", "customer_email", "order_type", "notes")


@dataclass(frozen=True)
class LineRequest:
    menu_item_id: int
    quantity: int
    unit_price: Decimal

    @property
    def total_price(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class ResolvedLine:
    request: LineRequest
    menu_item: MenuItem
    ingredients: list[Ingredient]

    def scaled_ingredients(self) -> list[Ingredient]:
        """Ingredients multiplied out by the line quantity."""
        return [
            Ingredient(ing.stock_item_id, ing.quantity * self.request.quantity, ing.unit)
            for ing in self.ingredients
        ]


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in ALLOWED_TRANSITIONS.get(from_status, set())


def _parse_lines(raw_lines) -> list[LineRequest]:
    if not isinstance(raw_lines, list) or not raw_lines:
        raise ValidationError("Customer name and at least one item are required")

    parsed = []
    for raw in raw_lines:
        if not isinstance(raw, dict):
            raise ValidationError("Each item must be an object")
        menu_item_id = raw.get("menu_item_id")
        if not isinstance(menu_item_id, int) or isinstance(menu_item_id, bool):
            raise ValidationError("Each item must have a menu_item_id")
        quantity = raw.get("quantity")
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
            raise ValidationError(
                "Each item must have a valid quantity (at least 1)",
                {"menu_item_id": menu_item_id},
            )
        if raw.get("unit_price") in (None, ""):
            raise ValidationError("Each item must have a valid unit price", {"menu_item_id": menu_item_id})
        unit_price = non_negative_decimal(raw.get("unit_price"), "unit_price")
        parsed.append(LineRequest(menu_item_id=menu_item_id, quantity=quantity, unit_price=unit_price))
    return parsed


def _resolve_lines(lines: list[LineRequest]) -> list[ResolvedLine]:
    return [
        ResolvedLine(
            request=line,
            menu_item=get_menu_item(line.menu_item_id),
            ingredients=resolve_ingredients(line.menu_item_id),
        )
        for line in lines
    ]


def _ingredient_item_ids(resolved: list[ResolvedLine]) -> set[int]:
    return {ing.stock_item_id for r in resolved for ing in r.ingredients}


def _shortfall_text(missing: list[MissingIngredient]) -> str:
    return ", ".join(m.describe() for m in missing)


def ensure_lines_available(resolved: list[ResolvedLine], now: datetime) -> None:
    """
    Raise InsufficientStockError unless every line can be served together.

    Lines are checked one by one first (so the error can name the dish), then
    as one bundle, since two lines sharing an ingredient can each pass alone.
    """
    missing: list[MissingIngredient] = []
    dishes: list[str] = []
    for r in resolved:
        result = check_availability(r.ingredients, multiplier=r.request.quantity, now=now)
        if not result.is_available:
            dishes.append(r.menu_item.name)
            missing.extend(result.missing_ingredients)

    if missing:
        if len(dishes) == 1:
            message = f'Dish "{dishes[0]}" is out of stock. Missing ingredients: {_shortfall_text(missing)}'
        else:
            message = f"Dishes {', '.join(dishes)} are out of stock. Missing ingredients: {_shortfall_text(missing)}"
    else:
        combined = [ing for r in resolved for ing in r.scaled_ingredients()]
        result = check_availability(combined, multiplier=1, now=now)
        missing = result.missing_ingredients
        message = f"Order exceeds available stock. Missing ingredients: {_shortfall_text(missing)}"

    if missing:
        first = missing[0]
        raise InsufficientStockError(
            message,
            required=first.required,
            available=first.available,
            details={
                "menu_items": dishes,
                "missing_ingredients": [m.to_dict() for m in missing],
            },
        )


def _next_order_number(day: date) -> str:
    """
    Allocate ORD-YYYYMMDD-NNNN inside the caller's transaction.

    Counter rows are per business date; a racing first insert for the same
    date falls back to the increment path.
    """
    stmt = (
        update(OrderSequence)
        .where(OrderSequence.sequence_date == day)
        .values(next_number=OrderSequence.next_number + 1)
    )

    def _current() -> int:
        return (
            db.session.query(OrderSequence.next_number)
            .filter_by(sequence_date=day)
            .scalar()
        )

    result = db.session.execute(stmt)
    if result.rowcount:
        next_num = _current() - 1
    else:
        try:
            with db.session.begin_nested():
                db.session.add(OrderSequence(sequence_date=day, next_number=2))
            next_num = 1
        except IntegrityError:
            db.session.execute(stmt)
            next_num = _current() - 1

    return f"ORD-{day:%Y%m%d}-{next_num:04d}"


def _totals(lines: list[LineRequest], tax: Decimal, discount: Decimal) -> tuple[Decimal, Decimal]:
    subtotal = sum((line.total_price for line in lines), Decimal("0"))
    total = subtotal - discount + tax
    if total < 0:
        raise ValidationError(
            "Discount cannot exceed subtotal plus tax",
            {"subtotal": str(subtotal), "tax": str(tax), "discount": str(discount)},
        )
    return subtotal, total


def _fulfil_lines(
    order: Order,
    resolved: list[ResolvedLine],
    *,
    actor: str | None,
    now: datetime,
) -> list[dict]:
    """
    Secondary step: create lines, deduct their ingredients from today's
    ledger and record the sale.

    Each line's deduction runs in its own savepoint; a failing line is rolled
    back alone, logged and reported. Returns the failures.
    """
    day = ledger_service.current_business_date(now)
    failures: list[dict] = []

    for r in resolved:
        line = OrderLine(
            menu_item_id=r.request.menu_item_id,
            quantity=r.request.quantity,
            unit_price=r.request.unit_price,
            total_price=r.request.total_price,
        )
        order.lines.append(line)
        db.session.flush()

        try:
            with db.session.begin_nested():
                for ing in r.scaled_ingredients():
                    ledger_service.deduct(
                        ing.stock_item_id,
                        day,
                        ing.quantity,
                        reason=f"Used in order for {r.menu_item.name}",
                        actor=actor,
                        order_id=order.id,
                        now=now,
                        commit=False,
                    )
                    line.allocations.append(OrderAllocation(
                        stock_item_id=ing.stock_item_id,
                        ledger_date=day,
                        quantity=ing.quantity,
                        deducted_at=now,
                    ))
                db.session.flush()
        except (InsufficientStockError, NotFoundError, ValidationError) as exc:
            logger.exception(
                "Stock deduction failed for order %s line %s (%s); order kept",
                order.order_number, line.id, r.menu_item.name,
            )
            failures.append({"menu_item_id": r.request.menu_item_id, "error": exc.kind, "message": str(exc)})

        try:
            with db.session.begin_nested():
                record_sale(line, order, now)
        except Exception:
            logger.exception("Error creating sales record for order %s line %s", order.order_number, line.id)

    return failures


def _restore_allocations(order: Order, reason: str, *, actor: str | None, now: datetime) -> int:
    """Give back every unrestored allocation of the order. Returns how many were restored."""
    restored = 0
    for line in order.lines:
        for alloc in line.allocations:
            if alloc.restored_at is not None:
                continue
            ledger_service.restore(
                alloc.stock_item_id,
                alloc.ledger_date,
                alloc.quantity,
                reason,
                actor=actor,
                order_id=order.id,
                commit=False,
            )
            alloc.restored_at = now
            restored += 1
    db.session.flush()
    return restored


def _allocated_item_ids(order: Order) -> set[int]:
    return {
        alloc.stock_item_id
        for line in order.lines
        for alloc in line.allocations
        if alloc.restored_at is None
    }


def get_order(order_id: int) -> Order:
    order = db.session.query(Order).filter_by(id=order_id).first()
    if order is None:
        raise NotFoundError(f"Order {order_id} not found", {"order_id": order_id})
    return order


def create_order(request: dict, *, actor: str | None = None, now: datetime | None = None) -> Order:
    """
    Validate, check availability for every line, then persist a pending order.

    Raises ValidationError / NotFoundError for bad input and
    InsufficientStockError (listing every shortfall) when any line cannot be
    served; in both cases nothing is written.
    """
    if not isinstance(request, dict):
        raise ValidationError("Invalid JSON payload")
    customer_name = request.get("customer_name")
    if not isinstance(customer_name, str) or not customer_name.strip():
        raise ValidationError("Customer name and at least one item are required")
    customer_name = customer_name.strip()
    for field in TEXT_FIELDS:
        if not isinstance(request.get(field), (str, type(None))):
            raise ValidationError(f"{field} must be a string", {"field": field})
    lines = _parse_lines(request.get("lines"))
    tax = optional_non_negative(request.get("tax"), "tax") or Decimal("0")
    discount = optional_non_negative(request.get("discount"), "discount") or Decimal("0")
    subtotal, total = _totals(lines, tax, discount)
    estimated_time = coerce_datetime(request.get("estimated_time"), "estimated_time")
    order_type = request.get("order_type") or current_app.config.get("DEFAULT_ORDER_TYPE", "dine-in")
    now = now or utcnow()

    def _op():
        resolved = _resolve_lines(lines)
        with stock_item_locks(_ingredient_item_ids(resolved)):
            ensure_lines_available(resolved, now)

            order = Order(
                order_number=_next_order_number(ledger_service.current_business_date(now)),
                customer_name=customer_name,
                customer_phone=request.get("customer_phone"),
                customer_email=request.get("customer_email"),
                order_type=order_type,
                status="pending",
                subtotal=subtotal,
                tax=tax,
                discount=discount,
                total_amount=total,
                notes=request.get("notes") or "",
                estimated_time=estimated_time,
                created_by=actor,
                updated_by=actor,
            )
            db.session.add(order)
            db.session.flush()

            failures = _fulfil_lines(order, resolved, actor=actor, now=now)
            db.session.commit()
            return order, failures

    order, failures = run_with_retry(_op)
    if failures:
        logger.warning("Order %s created with %s unfulfilled lines", order.order_number, len(failures))
    logger.info("Created order %s for %s (total %s)", order.order_number, order.customer_name, order.total_amount)
    return order


def transition_order_status(
    order_id: int,
    new_status: str,
    *,
    actor: str | None = None,
    estimated_time=None,
    notes: str | None = None,
    now: datetime | None = None,
) -> Order:
    """
    Move an order along its state machine.

    Cancelling restores the order's stock; delivering stamps the delivery time.
    """
    if new_status not in ORDER_STATUSES:
        raise ValidationError(
            f"Invalid status '{new_status}'. Must be one of: {', '.join(ORDER_STATUSES)}"
        )
    parsed_estimate = coerce_datetime(estimated_time, "estimated_time")
    now = now or utcnow()

    def _op():
        order = get_order(order_id)
        with stock_item_locks(_allocated_item_ids(order)):
            if order.status in TERMINAL_STATUSES:
                raise ValidationError(
                    f"Cannot update status of a {order.status} order",
                    {"order_id": order.id, "status": order.status},
                )
            if not can_transition(order.status, new_status):
                raise ValidationError(
                    f"Cannot move order from {order.status} to {new_status}",
                    {"order_id": order.id, "from": order.status, "to": new_status},
                )

            if new_status == "cancelled":
                _restore_allocations(
                    order,
                    f"Restored due to order cancellation {order.order_number}",
                    actor=actor,
                    now=now,
                )
            if new_status == "delivered":
                order.actual_delivery_time = now

            order.status = new_status
            if parsed_estimate is not None:
                order.estimated_time = parsed_estimate
            if notes is not None:
                order.notes = notes
            order.updated_by = actor
            db.session.commit()
            return order

    order = run_with_retry(_op)
    logger.info("Order %s moved to %s by %s", order.order_number, new_status, actor or "system")
    return order


def edit_order(order_id: int, changes: dict, *, actor: str | None = None, now: datetime | None = None) -> Order:
    """
    Edit an open order. With "lines", the lines are replaced (replace_lines
    semantics); otherwise only customer fields, notes, tax and discount move.
    """
    if not isinstance(changes, dict) or not changes:
        raise ValidationError("No changes supplied")
    unknown = set(changes) - EDITABLE_FIELDS
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(sorted(unknown))}")
    if "customer_name" in changes:
        changes = {**changes, "customer_name": required_text(changes["customer_name"], "customer_name")}
    for field in TEXT_FIELDS:
        if not isinstance(changes.get(field), (str, type(None))):
            raise ValidationError(f"{field} must be a string", {"field": field})

    new_lines = _parse_lines(changes["lines"]) if "lines" in changes else None
    parsed_tax = optional_non_negative(changes.get("tax"), "tax") if "tax" in changes else None
    parsed_discount = optional_non_negative(changes.get("discount"), "discount") if "discount" in changes else None
    parsed_estimate = coerce_datetime(changes.get("estimated_time"), "estimated_time")
    now = now or utcnow()

    def _op():
        order = get_order(order_id)
        resolved = _resolve_lines(new_lines) if new_lines is not None else []
        lock_ids = _allocated_item_ids(order) | _ingredient_item_ids(resolved)

        with stock_item_locks(lock_ids):
            if order.status in TERMINAL_STATUSES:
                raise ValidationError(
                    f"Cannot edit a {order.status} order",
                    {"order_id": order.id, "status": order.status},
                )

            for field in ("customer_name", "customer_phone", "customer_email", "order_type", "notes"):
                if field in changes:
                    value = changes[field]
                    setattr(order, field, value.strip() if isinstance(value, str) else value)
            if parsed_estimate is not None:
                order.estimated_time = parsed_estimate
            if "tax" in changes:
                order.tax = parsed_tax or Decimal("0")
            if "discount" in changes:
                order.discount = parsed_discount or Decimal("0")

            if new_lines is not None:
                _replace_lines(order, resolved, actor=actor, now=now)
            else:
                subtotal = order.subtotal or Decimal("0")
                total = subtotal - order.discount + order.tax
                if total < 0:
                    raise ValidationError("Discount cannot exceed subtotal plus tax")
                order.total_amount = total

            order.updated_by = actor
            db.session.commit()
            return order

    order = run_with_retry(_op)
    logger.info("Order %s edited by %s", order.order_number, actor or "system")
    return order


def _replace_lines(order: Order, resolved: list[ResolvedLine], *, actor: str | None, now: datetime) -> None:
    """Restore the current lines, then check and deduct the new ones. No commit."""
    _restore_allocations(
        order,
        f"Restored due to order update {order.order_number}",
        actor=actor,
        now=now,
    )
    for line in list(order.lines):
        order.lines.remove(line)
    # the new lines record their own sales
    db.session.execute(delete(SalesRecord).where(SalesRecord.order_id == order.id))
    db.session.flush()

    ensure_lines_available(resolved, now)

    subtotal, total = _totals([r.request for r in resolved], order.tax or Decimal("0"), order.discount or Decimal("0"))
    order.subtotal = subtotal
    order.total_amount = total

    failures = _fulfil_lines(order, resolved, actor=actor, now=now)
    if failures:
        logger.warning("Order %s edited with %s unfulfilled lines", order.order_number, len(failures))


def replace_lines(order_id: int, lines: list, *, actor: str | None = None, now: datetime | None = None) -> Order:
    return edit_order(order_id, {"lines": lines}, actor=actor, now=now)


def list_orders(
    *,
    status: str | None = None,
    order_type: str | None = None,
    search: str | None = None,
    page: int = 1,
    per_page: int = 10,
) -> dict:
    page = max(int(page or 1), 1)
    per_page = min(max(int(per_page or 10), 1), 100)

    q = Order.query
    if status:
        q = q.filter(Order.status == status)
    if order_type:
        q = q.filter(Order.order_type == order_type)
    if search:
        pattern = f"%{search}%"
        q = q.filter(or_(
            Order.customer_name.ilike(pattern),
            Order.customer_phone.ilike(pattern),
            Order.order_number.ilike(pattern),
        ))

    total = q.count()
    orders = (
        q.order_by(Order.created_at.desc(), Order.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return {
        "orders": orders,
        "page": page,
        "per_page": per_page,
        "total": total,
        "pages": math.ceil(total / per_page) if total else 0,
    }


def delete_order(order_id: int, *, actor: str | None = None) -> None:
    """
    Administrative delete. Stock is NOT restored; cancel first to give it back.
    """
    def _op():
        order = get_order(order_id)
        outstanding = _allocated_item_ids(order)
        number = order.order_number
        db.session.execute(
            update(SalesRecord).where(SalesRecord.order_id == order.id).values(order_id=None)
        )
        db.session.delete(order)
        db.session.commit()
        return number, outstanding

    number, outstanding = run_with_retry(_op)
    if outstanding:
        logger.warning(
            "Order %s deleted by %s without restoring stock for items %s",
            number, actor or "system", sorted(outstanding),
        )
    else:
        logger.warning("Order %s deleted by %s", number, actor or "system")
