"""
Order Module — Purchase order lifecycle and fulfillment status.

    DRAFT ──send──▶ SENT ──receipts──▶ PARTIALLY_RECEIVED ──▶ RECEIVED
      │               │
      └──cancel───────┴──▶ CANCELLED (terminal)

Lines are editable only while DRAFT, at most one line per item. Deletion is
a hard delete and only allowed for DRAFT orders.

Fulfillment status is derived from the Quantity Ledger after every receipt
confirmation and only ever moves forward: a RECEIVED or CANCELLED order is
never changed by later receipts.

Low-stock items can be turned into DRAFT orders in one step, grouped by
each item's default supplier.
"""

import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.context import RequestContext, require_role
from core.errors import InvalidStateError, NotFoundError, ValidationError
from db.models import Item, LocationInventory, Order, OrderLine, OrderStatus, Supplier
from supply_chain.ledger import LineProgress
from supply_chain.stock import StockLevel
from supply_chain.validation import validate_price, validate_quantity

logger = structlog.get_logger()

TERMINAL_STATUSES = (OrderStatus.RECEIVED.value, OrderStatus.CANCELLED.value)
CANCELLABLE_STATUSES = (OrderStatus.DRAFT.value, OrderStatus.SENT.value)


@dataclass(frozen=True)
class OrderLineInput:
    item_id: uuid.UUID
    quantity: int
    unit_price: float | None = None
    notes: str | None = None


# ──────────────────────────────────────────────────────────────────────────
# Status derivation
# ──────────────────────────────────────────────────────────────────────────


def derive_status(current: str, progress: Mapping[uuid.UUID, LineProgress]) -> str:
    """
    Next order status given per-line ledger progress.

    Every line remaining == 0 → RECEIVED; any line with something received →
    PARTIALLY_RECEIVED; otherwise unchanged. Terminal and DRAFT orders are
    never moved.
    """
    if current in TERMINAL_STATUSES or current == OrderStatus.DRAFT.value:
        return current
    if not progress:
        return current
    if all(p.remaining == 0 for p in progress.values()):
        return OrderStatus.RECEIVED.value
    if any(p.already_received > 0 for p in progress.values()):
        return OrderStatus.PARTIALLY_RECEIVED.value
    return current


# ──────────────────────────────────────────────────────────────────────────
# Lookups
# ──────────────────────────────────────────────────────────────────────────


async def get_order(db: AsyncSession, ctx: RequestContext, order_id: uuid.UUID, for_update: bool = False) -> Order:
    query = select(Order).where(Order.order_id == order_id, Order.practice_id == ctx.practice_id)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    order = (await db.execute(query)).scalar_one_or_none()
    if order is None:
        raise NotFoundError("Order", order_id)
    return order


async def get_order_lines(db: AsyncSession, order_id: uuid.UUID) -> list[OrderLine]:
    result = await db.execute(
        select(OrderLine).where(OrderLine.order_id == order_id).order_by(OrderLine.position)
    )
    return list(result.scalars().all())


async def list_orders(
    db: AsyncSession,
    ctx: RequestContext,
    status: str | None = None,
    supplier_id: uuid.UUID | None = None,
    skip: int = 0,
    limit: int = 50,
) -> list[Order]:
    query = select(Order).where(Order.practice_id == ctx.practice_id)
    if status:
        query = query.where(Order.status == status)
    if supplier_id:
        query = query.where(Order.supplier_id == supplier_id)
    query = query.order_by(Order.created_at.desc()).offset(skip).limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())


async def order_summary(db: AsyncSession, ctx: RequestContext) -> dict[str, int]:
    """Order counts by status."""
    result = await db.execute(
        select(Order.status, func.count(Order.order_id))
        .where(Order.practice_id == ctx.practice_id)
        .group_by(Order.status)
    )
    counts = {status.value: 0 for status in OrderStatus}
    for status, count in result.all():
        counts[status] = count
    counts["total"] = sum(counts.values())
    return counts


def order_total(lines: Sequence[OrderLine]) -> float:
    """Sum of unit price × quantity. Lines without a price count as zero."""
    return float(sum((line.unit_price or 0) * line.quantity for line in lines))


def _require_draft(order: Order) -> None:
    if order.status != OrderStatus.DRAFT.value:
        raise InvalidStateError(
            "Cannot edit orders that have been sent or received",
            {"order_id": str(order.order_id), "status": order.status},
        )


async def _require_items(db: AsyncSession, ctx: RequestContext, item_ids: Sequence[uuid.UUID]) -> None:
    if not item_ids:
        return
    result = await db.execute(
        select(Item.item_id).where(Item.item_id.in_(item_ids), Item.practice_id == ctx.practice_id)
    )
    found = set(result.scalars().all())
    missing = [str(i) for i in item_ids if i not in found]
    if missing:
        raise ValidationError("Some items do not belong to this practice", {"field": "item_id", "item_ids": missing})


async def _require_supplier(db: AsyncSession, ctx: RequestContext, supplier_id: uuid.UUID) -> Supplier:
    supplier = await db.get(Supplier, supplier_id)
    if supplier is None or supplier.practice_id != ctx.practice_id:
        raise NotFoundError("Supplier", supplier_id)
    if supplier.status == "blocked":
        raise ValidationError("Cannot create order with blocked supplier", {"field": "supplier_id"})
    return supplier


# ──────────────────────────────────────────────────────────────────────────
# Draft editing
# ──────────────────────────────────────────────────────────────────────────


async def create_order(
    db: AsyncSession,
    ctx: RequestContext,
    supplier_id: uuid.UUID,
    lines: Sequence[OrderLineInput],
    reference: str | None = None,
    notes: str | None = None,
    expected_at: date | None = None,
) -> Order:
    """Create a DRAFT order with at least one line."""
    require_role(ctx, "STAFF")
    if not lines:
        raise ValidationError("Order must have at least one item", {"field": "lines"})

    item_ids = [line.item_id for line in lines]
    if len(set(item_ids)) != len(item_ids):
        raise ValidationError("Each item may appear only once per order", {"field": "lines"})
    for line in lines:
        validate_quantity(line.quantity)
        validate_price(line.unit_price)

    await _require_supplier(db, ctx, supplier_id)
    await _require_items(db, ctx, item_ids)

    order = Order(
        practice_id=ctx.practice_id,
        supplier_id=supplier_id,
        status=OrderStatus.DRAFT.value,
        reference=reference,
        notes=notes,
        expected_at=expected_at,
        created_by=ctx.user_id,
    )
    db.add(order)
    await db.flush()

    for position, line in enumerate(lines):
        db.add(
            OrderLine(
                order_id=order.order_id,
                item_id=line.item_id,
                position=position,
                quantity=line.quantity,
                unit_price=line.unit_price,
                notes=line.notes,
            )
        )
    await db.flush()

    logger.info(
        "order.created",
        practice_id=str(ctx.practice_id),
        order_id=str(order.order_id),
        line_count=len(lines),
    )
    return order


async def update_order(
    db: AsyncSession,
    ctx: RequestContext,
    order_id: uuid.UUID,
    reference: str | None = None,
    notes: str | None = None,
    expected_at: date | None = None,
) -> Order:
    require_role(ctx, "STAFF")
    order = await get_order(db, ctx, order_id)
    _require_draft(order)

    if reference is not None:
        order.reference = reference
    if notes is not None:
        order.notes = notes
    if expected_at is not None:
        order.expected_at = expected_at
    await db.flush()
    return order


async def add_item(
    db: AsyncSession,
    ctx: RequestContext,
    order_id: uuid.UUID,
    item_id: uuid.UUID,
    quantity: int,
    unit_price: float | None = None,
    notes: str | None = None,
) -> OrderLine:
    """Add a new item to a draft order. Existing items must go through update_item."""
    require_role(ctx, "STAFF")
    validate_quantity(quantity)
    validate_price(unit_price)

    order = await get_order(db, ctx, order_id)
    _require_draft(order)
    await _require_items(db, ctx, [item_id])

    existing = (
        await db.execute(select(OrderLine.id).where(OrderLine.order_id == order_id, OrderLine.item_id == item_id))
    ).scalar_one_or_none()
    if existing is not None:
        raise ValidationError("Item already in order", {"field": "item_id", "item_id": str(item_id)})

    next_position = (
        await db.execute(
            select(func.coalesce(func.max(OrderLine.position), -1)).where(OrderLine.order_id == order_id)
        )
    ).scalar_one() + 1

    line = OrderLine(
        order_id=order_id,
        item_id=item_id,
        position=next_position,
        quantity=quantity,
        unit_price=unit_price,
        notes=notes,
    )
    db.add(line)
    await db.flush()
    return line


async def _get_line_for_item(db: AsyncSession, order_id: uuid.UUID, item_id: uuid.UUID) -> OrderLine:
    line = (
        await db.execute(select(OrderLine).where(OrderLine.order_id == order_id, OrderLine.item_id == item_id))
    ).scalar_one_or_none()
    if line is None:
        raise NotFoundError("Order item", item_id)
    return line


async def update_item(
    db: AsyncSession,
    ctx: RequestContext,
    order_id: uuid.UUID,
    item_id: uuid.UUID,
    quantity: int,
    unit_price: float | None = None,
    notes: str | None = None,
) -> OrderLine:
    require_role(ctx, "STAFF")
    validate_quantity(quantity)
    validate_price(unit_price)

    order = await get_order(db, ctx, order_id)
    _require_draft(order)
    line = await _get_line_for_item(db, order_id, item_id)

    line.quantity = quantity
    if unit_price is not None:
        line.unit_price = unit_price
    if notes is not None:
        line.notes = notes
    await db.flush()
    return line


async def remove_item(db: AsyncSession, ctx: RequestContext, order_id: uuid.UUID, item_id: uuid.UUID) -> None:
    require_role(ctx, "STAFF")
    order = await get_order(db, ctx, order_id)
    _require_draft(order)
    line = await _get_line_for_item(db, order_id, item_id)

    await db.delete(line)
    await db.flush()


# ──────────────────────────────────────────────────────────────────────────
# Lifecycle transitions
# ──────────────────────────────────────────────────────────────────────────


async def send_order(db: AsyncSession, ctx: RequestContext, order_id: uuid.UUID) -> Order:
    """DRAFT → SENT. Locks further line edits."""
    require_role(ctx, "STAFF")
    order = await get_order(db, ctx, order_id, for_update=True)
    if order.status != OrderStatus.DRAFT.value:
        raise InvalidStateError(
            "Only draft orders can be sent", {"order_id": str(order_id), "status": order.status}
        )
    if order.supplier_id is None:
        raise ValidationError("Order must have a supplier", {"field": "supplier_id"})

    lines = await get_order_lines(db, order_id)
    if not lines:
        raise InvalidStateError("Order must have at least one item", {"order_id": str(order_id)})
    if any(line.quantity <= 0 for line in lines):
        raise ValidationError("All order items must have positive quantities", {"field": "lines"})

    order.status = OrderStatus.SENT.value
    order.sent_at = datetime.utcnow()
    await db.flush()

    logger.info(
        "order.sent",
        practice_id=str(ctx.practice_id),
        order_id=str(order_id),
        line_count=len(lines),
        total_amount=order_total(lines),
    )
    return order


async def cancel_order(db: AsyncSession, ctx: RequestContext, order_id: uuid.UUID) -> Order:
    require_role(ctx, "STAFF")
    order = await get_order(db, ctx, order_id, for_update=True)
    if order.status not in CANCELLABLE_STATUSES:
        raise InvalidStateError(
            f"Cannot cancel an order in '{order.status}' status",
            {"order_id": str(order_id), "status": order.status},
        )
    order.status = OrderStatus.CANCELLED.value
    await db.flush()
    logger.info("order.cancelled", practice_id=str(ctx.practice_id), order_id=str(order_id))
    return order


async def delete_order(db: AsyncSession, ctx: RequestContext, order_id: uuid.UUID) -> None:
    """Hard-delete a DRAFT order and its lines."""
    require_role(ctx, "STAFF")
    order = await get_order(db, ctx, order_id)
    if order.status != OrderStatus.DRAFT.value:
        raise InvalidStateError("Can only delete draft orders", {"order_id": str(order_id), "status": order.status})

    await db.execute(delete(OrderLine).where(OrderLine.order_id == order_id))
    await db.delete(order)
    await db.flush()
    logger.info("order.deleted", practice_id=str(ctx.practice_id), order_id=str(order_id))


async def recompute_status_from_receipts(
    db: AsyncSession,
    ctx: RequestContext,
    order_id: uuid.UUID,
    progress: Mapping[uuid.UUID, LineProgress],
) -> Order:
    """Apply ledger progress to the order's status. Sets received_at on first reaching RECEIVED."""
    order = await get_order(db, ctx, order_id, for_update=True)
    previous = order.status
    new_status = derive_status(previous, progress)

    if new_status != previous:
        order.status = new_status
        if new_status == OrderStatus.RECEIVED.value and order.received_at is None:
            order.received_at = datetime.utcnow()
        await db.flush()
        logger.info(
            "order.status_recomputed",
            practice_id=str(ctx.practice_id),
            order_id=str(order_id),
            previous_status=previous,
            status=new_status,
        )
    return order


# ──────────────────────────────────────────────────────────────────────────
# Low-stock reordering
# ──────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class DraftedOrder:
    order_id: uuid.UUID
    supplier_id: uuid.UUID
    supplier_name: str
    line_count: int


@dataclass
class LowStockOrders:
    orders: list[DraftedOrder] = field(default_factory=list)
    skipped_items: list[str] = field(default_factory=list)  # names of items without a usable default supplier


def reorder_quantity_for(row: LocationInventory) -> int:
    """Quantity to reorder for one low-stock location: reorder quantity, else reorder point, else 1."""
    return row.reorder_quantity or row.reorder_point or 1


async def create_orders_from_low_stock(
    db: AsyncSession,
    ctx: RequestContext,
    item_ids: Sequence[uuid.UUID],
) -> LowStockOrders:
    """
    Draft one order per default supplier for the selected low-stock items.

    Each item is ordered once, summing ``reorder_quantity_for`` over every
    location where it is at or below its reorder point. Items without a
    default supplier (or whose default supplier is blocked) are reported in
    ``skipped_items``; items that are not low anywhere are left out.
    """
    require_role(ctx, "STAFF")
    if not item_ids:
        raise ValidationError("No items selected", {"field": "item_ids"})
    item_ids = list(dict.fromkeys(item_ids))
    await _require_items(db, ctx, item_ids)

    items = (
        await db.execute(select(Item).where(Item.item_id.in_(item_ids), Item.practice_id == ctx.practice_id))
    ).scalars().all()
    by_id = {item.item_id: item for item in items}

    supplier_ids = {item.default_supplier_id for item in items if item.default_supplier_id is not None}
    suppliers = {}
    if supplier_ids:
        suppliers = {
            supplier.supplier_id: supplier
            for supplier in (
                await db.execute(
                    select(Supplier).where(
                        Supplier.supplier_id.in_(supplier_ids), Supplier.practice_id == ctx.practice_id
                    )
                )
            ).scalars()
        }

    inventory = (
        await db.execute(
            select(LocationInventory).where(
                LocationInventory.practice_id == ctx.practice_id,
                LocationInventory.item_id.in_(item_ids),
            )
        )
    ).scalars().all()
    needed: dict[uuid.UUID, int] = {}
    for row in inventory:
        level = StockLevel(
            item_id=row.item_id, location_id=row.location_id, quantity=row.quantity, reorder_point=row.reorder_point
        )
        if level.is_low:
            needed[row.item_id] = needed.get(row.item_id, 0) + reorder_quantity_for(row)

    result = LowStockOrders()
    groups: dict[uuid.UUID, list[OrderLineInput]] = {}
    for item_id in item_ids:
        item = by_id[item_id]
        supplier = suppliers.get(item.default_supplier_id)
        if supplier is None or supplier.status == "blocked":
            result.skipped_items.append(item.name)
            continue
        quantity = needed.get(item_id, 0)
        if quantity <= 0:
            continue
        groups.setdefault(supplier.supplier_id, []).append(OrderLineInput(item_id=item_id, quantity=quantity))

    for supplier_id, lines in groups.items():
        order = await create_order(db, ctx, supplier_id, lines, notes="Created from low-stock items")
        result.orders.append(
            DraftedOrder(
                order_id=order.order_id,
                supplier_id=supplier_id,
                supplier_name=suppliers[supplier_id].name,
                line_count=len(lines),
            )
        )

    logger.info(
        "order.created_from_low_stock",
        practice_id=str(ctx.practice_id),
        orders=len(result.orders),
        skipped_items=len(result.skipped_items),
    )
    return result
