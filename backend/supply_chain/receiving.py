"""
Receiving Module — Goods receipt lifecycle.

A goods receipt records one physical delivery, optionally tied to an order.

    DRAFT ──confirm──▶ CONFIRMED   (terminal, the only point stock changes)
    DRAFT ──cancel───▶ CANCELLED   (terminal, no stock effect)

Lines are editable only while DRAFT. One line per (receipt, item): adding
an item that is already on the receipt merges into the existing line
(quantity is summed; batch, expiry and notes take the new value when
given). ``update_line`` sets absolute values and is the idempotent path for
repeated saves; it never accepts zero (removal is ``remove_line``).

Confirmation claims the receipt with a conditional ``DRAFT → CONFIRMED``
update. A concurrent second confirm matches zero rows and fails with
InvalidStateError, so stock is applied once. Callers run ``confirm_receipt``
inside a transaction (see supply_chain.reconciliation) so a failed stock
increment rolls back the claim and every earlier increment.
"""

import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from core.context import RequestContext, require_role
from core.errors import InvalidStateError, NotFoundError, ValidationError
from db.models import (
    GoodsReceipt,
    Item,
    Location,
    Order,
    OrderStatus,
    ReceiptLine,
    ReceiptStatus,
    Supplier,
)
from supply_chain.discrepancies import MANUAL_OVERRIDES, Classification, DiscrepancyType, classify, describe
from supply_chain.ledger import load_counted_receipts, load_order_lines, remaining_for_order
from supply_chain.stock import StockLedger
from supply_chain.validation import (
    normalize_gtin,
    validate_expiry_date,
    validate_length,
    validate_quantity,
)

logger = structlog.get_logger()

RECEIVABLE_ORDER_STATUSES = (
    OrderStatus.SENT.value,
    OrderStatus.PARTIALLY_RECEIVED.value,
    OrderStatus.RECEIVED.value,
)


@dataclass(frozen=True)
class LowStockItem:
    item_id: uuid.UUID
    item_name: str
    location_id: uuid.UUID
    quantity: int
    reorder_point: int


@dataclass
class ReceiptConfirmation:
    receipt_id: uuid.UUID
    order_id: uuid.UUID | None
    location_id: uuid.UUID
    supplier_id: uuid.UUID | None
    lines_processed: int
    total_quantity: int
    received_at: datetime
    low_stock_items: list[LowStockItem] = field(default_factory=list)


@dataclass(frozen=True)
class ExpectedItem:
    """Live view of one order line while a draft receipt is being filled in."""

    item_id: uuid.UUID
    item_name: str
    unit: str | None
    ordered: int
    already_received: int
    remaining: int  # still expected before this receipt
    quantity_on_receipt: int
    remaining_after_receipt: int
    is_backorder: bool
    classification: Classification
    label: str


# ──────────────────────────────────────────────────────────────────────────
# Lookups
# ──────────────────────────────────────────────────────────────────────────


async def get_receipt(db: AsyncSession, ctx: RequestContext, receipt_id: uuid.UUID) -> GoodsReceipt:
    result = await db.execute(
        select(GoodsReceipt).where(
            GoodsReceipt.receipt_id == receipt_id,
            GoodsReceipt.practice_id == ctx.practice_id,
        )
    )
    receipt = result.scalar_one_or_none()
    if receipt is None:
        raise NotFoundError("Goods receipt", receipt_id)
    return receipt


async def get_receipt_lines(db: AsyncSession, receipt_id: uuid.UUID) -> list[ReceiptLine]:
    result = await db.execute(
        select(ReceiptLine).where(ReceiptLine.receipt_id == receipt_id).order_by(ReceiptLine.position)
    )
    return list(result.scalars().all())


async def _get_line(db: AsyncSession, ctx: RequestContext, line_id: uuid.UUID) -> tuple[ReceiptLine, GoodsReceipt]:
    result = await db.execute(
        select(ReceiptLine, GoodsReceipt)
        .join(GoodsReceipt, GoodsReceipt.receipt_id == ReceiptLine.receipt_id)
        .where(
            ReceiptLine.line_id == line_id,
            GoodsReceipt.practice_id == ctx.practice_id,
        )
    )
    row = result.one_or_none()
    if row is None:
        raise NotFoundError("Receipt line", line_id)
    return row[0], row[1]


async def _require_item(db: AsyncSession, ctx: RequestContext, item_id: uuid.UUID) -> Item:
    item = await db.get(Item, item_id)
    if item is None or item.practice_id != ctx.practice_id:
        raise ValidationError("Item does not belong to this practice", {"field": "item_id", "item_id": str(item_id)})
    return item


def _require_draft(receipt: GoodsReceipt, action: str = "edit") -> None:
    if receipt.status != ReceiptStatus.DRAFT.value:
        raise InvalidStateError(
            f"Cannot {action} a {receipt.status.lower()} receipt",
            {"receipt_id": str(receipt.receipt_id), "status": receipt.status},
        )


async def list_receipts(
    db: AsyncSession,
    ctx: RequestContext,
    status: str | None = None,
    order_id: uuid.UUID | None = None,
    location_id: uuid.UUID | None = None,
    supplier_id: uuid.UUID | None = None,
    skip: int = 0,
    limit: int = 50,
) -> list[dict]:
    """Receipts for the practice with line count and total quantity, newest first."""
    line_stats = (
        select(
            ReceiptLine.receipt_id,
            func.count(ReceiptLine.line_id).label("line_count"),
            func.coalesce(func.sum(ReceiptLine.quantity), 0).label("total_quantity"),
        )
        .group_by(ReceiptLine.receipt_id)
        .subquery()
    )
    query = (
        select(GoodsReceipt, line_stats.c.line_count, line_stats.c.total_quantity)
        .outerjoin(line_stats, line_stats.c.receipt_id == GoodsReceipt.receipt_id)
        .where(GoodsReceipt.practice_id == ctx.practice_id)
    )
    if status:
        query = query.where(GoodsReceipt.status == status)
    if order_id:
        query = query.where(GoodsReceipt.order_id == order_id)
    if location_id:
        query = query.where(GoodsReceipt.location_id == location_id)
    if supplier_id:
        query = query.where(GoodsReceipt.supplier_id == supplier_id)
    query = query.order_by(GoodsReceipt.created_at.desc()).offset(skip).limit(limit)

    result = await db.execute(query)
    return [
        {
            "receipt": receipt,
            "line_count": int(line_count or 0),
            "total_quantity": int(total_quantity or 0),
        }
        for receipt, line_count, total_quantity in result.all()
    ]


# ──────────────────────────────────────────────────────────────────────────
# Draft lifecycle
# ──────────────────────────────────────────────────────────────────────────


async def create_receipt(
    db: AsyncSession,
    ctx: RequestContext,
    location_id: uuid.UUID,
    order_id: uuid.UUID | None = None,
    supplier_id: uuid.UUID | None = None,
    notes: str | None = None,
) -> GoodsReceipt:
    """
    Open a DRAFT receipt.

    Order-linked receipts inherit the order's supplier and may not name a
    different one. Ad-hoc receipts (no order) must name a supplier.
    """
    require_role(ctx, "STAFF")

    location = await db.get(Location, location_id)
    if location is None or location.practice_id != ctx.practice_id:
        raise NotFoundError("Location", location_id)

    if order_id is not None:
        order = await db.get(Order, order_id)
        if order is None or order.practice_id != ctx.practice_id:
            raise NotFoundError("Order", order_id)
        if order.status not in RECEIVABLE_ORDER_STATUSES:
            raise InvalidStateError(
                f"Cannot receive against an order in '{order.status}' status",
                {"order_id": str(order_id), "status": order.status},
            )
        if supplier_id is not None and order.supplier_id is not None and supplier_id != order.supplier_id:
            raise ValidationError(
                "Supplier does not match the order's supplier",
                {"field": "supplier_id", "order_supplier_id": str(order.supplier_id)},
            )
        supplier_id = supplier_id or order.supplier_id
    elif supplier_id is None:
        raise ValidationError("Supplier is required when receiving without an order", {"field": "supplier_id"})

    if supplier_id is not None:
        supplier = await db.get(Supplier, supplier_id)
        if supplier is None or supplier.practice_id != ctx.practice_id:
            raise NotFoundError("Supplier", supplier_id)

    receipt = GoodsReceipt(
        practice_id=ctx.practice_id,
        location_id=location_id,
        order_id=order_id,
        supplier_id=supplier_id,
        status=ReceiptStatus.DRAFT.value,
        notes=notes,
        created_by=ctx.user_id,
    )
    db.add(receipt)
    await db.flush()

    logger.info(
        "receiving.receipt_created",
        practice_id=str(ctx.practice_id),
        receipt_id=str(receipt.receipt_id),
        order_id=str(order_id) if order_id else None,
    )
    return receipt


def _validate_line_fields(batch_number, expiry_date, notes) -> None:
    settings = get_settings()
    validate_length(batch_number, "batch_number", settings.receipt_batch_number_max_length)
    validate_length(notes, "notes", settings.receipt_notes_max_length)
    validate_expiry_date(expiry_date)


def _validate_override(override: str | None) -> str | None:
    if override is None:
        return None
    try:
        override_type = DiscrepancyType(override)
    except ValueError:
        override_type = None
    if override_type not in MANUAL_OVERRIDES:
        raise ValidationError(
            "Discrepancy override must be DAMAGE or SUBSTITUTION", {"field": "discrepancy_override"}
        )
    return override_type.value


async def add_line(
    db: AsyncSession,
    ctx: RequestContext,
    receipt_id: uuid.UUID,
    item_id: uuid.UUID,
    quantity: int,
    batch_number: str | None = None,
    expiry_date: date | None = None,
    notes: str | None = None,
    scanned_gtin: str | None = None,
    discrepancy_override: str | None = None,
) -> ReceiptLine:
    """
    Add an item to a draft receipt, merging into the existing line for that item.

    Zero is accepted and keeps the item on the receipt as an expected-but-not-
    delivered placeholder.
    """
    require_role(ctx, "STAFF")
    validate_quantity(quantity, allow_zero=True)
    _validate_line_fields(batch_number, expiry_date, notes)
    override = _validate_override(discrepancy_override)
    if scanned_gtin:
        scanned_gtin = normalize_gtin(scanned_gtin)

    receipt = await get_receipt(db, ctx, receipt_id)
    _require_draft(receipt)
    await _require_item(db, ctx, item_id)

    existing = (
        await db.execute(
            select(ReceiptLine).where(ReceiptLine.receipt_id == receipt_id, ReceiptLine.item_id == item_id)
        )
    ).scalar_one_or_none()

    if existing is not None:
        merged = existing.quantity + quantity
        validate_quantity(merged, allow_zero=True)
        existing.quantity = merged
        existing.batch_number = batch_number if batch_number is not None else existing.batch_number
        existing.expiry_date = expiry_date if expiry_date is not None else existing.expiry_date
        existing.notes = notes if notes is not None else existing.notes
        existing.scanned_gtin = scanned_gtin or existing.scanned_gtin
        existing.discrepancy_override = override or existing.discrepancy_override
        await db.flush()
        logger.info(
            "receiving.line_merged",
            practice_id=str(ctx.practice_id),
            receipt_id=str(receipt_id),
            line_id=str(existing.line_id),
            quantity=merged,
        )
        return existing

    next_position = (
        await db.execute(
            select(func.coalesce(func.max(ReceiptLine.position), -1)).where(ReceiptLine.receipt_id == receipt_id)
        )
    ).scalar_one() + 1

    line = ReceiptLine(
        receipt_id=receipt_id,
        item_id=item_id,
        position=next_position,
        quantity=quantity,
        batch_number=batch_number,
        expiry_date=expiry_date,
        notes=notes,
        scanned_gtin=scanned_gtin,
        discrepancy_override=override,
    )
    db.add(line)
    await db.flush()
    logger.info(
        "receiving.line_added",
        practice_id=str(ctx.practice_id),
        receipt_id=str(receipt_id),
        line_id=str(line.line_id),
        quantity=quantity,
    )
    return line


async def update_line(
    db: AsyncSession,
    ctx: RequestContext,
    line_id: uuid.UUID,
    quantity: int,
    batch_number: str | None = None,
    expiry_date: date | None = None,
    notes: str | None = None,
    discrepancy_override: str | None = None,
) -> ReceiptLine:
    """Set a draft line's values. Quantity must be positive; use remove_line to drop a line."""
    require_role(ctx, "STAFF")
    validate_quantity(quantity)
    _validate_line_fields(batch_number, expiry_date, notes)
    override = _validate_override(discrepancy_override)

    line, receipt = await _get_line(db, ctx, line_id)
    _require_draft(receipt)

    line.quantity = quantity
    if batch_number is not None:
        line.batch_number = batch_number
    if expiry_date is not None:
        line.expiry_date = expiry_date
    if notes is not None:
        line.notes = notes
    if override is not None:
        line.discrepancy_override = override
    await db.flush()
    return line


async def remove_line(db: AsyncSession, ctx: RequestContext, line_id: uuid.UUID) -> uuid.UUID:
    """Delete a draft line. Returns the owning receipt id."""
    require_role(ctx, "STAFF")
    line, receipt = await _get_line(db, ctx, line_id)
    _require_draft(receipt)

    await db.delete(line)
    await db.flush()
    logger.info(
        "receiving.line_removed",
        practice_id=str(ctx.practice_id),
        receipt_id=str(receipt.receipt_id),
        line_id=str(line_id),
    )
    return receipt.receipt_id


async def cancel_receipt(db: AsyncSession, ctx: RequestContext, receipt_id: uuid.UUID) -> GoodsReceipt:
    require_role(ctx, "STAFF")
    receipt = await get_receipt(db, ctx, receipt_id)
    _require_draft(receipt, action="cancel")

    receipt.status = ReceiptStatus.CANCELLED.value
    await db.flush()
    logger.info("receiving.cancelled", practice_id=str(ctx.practice_id), receipt_id=str(receipt_id))
    return receipt


async def delete_receipt(db: AsyncSession, ctx: RequestContext, receipt_id: uuid.UUID) -> None:
    """Hard-delete a non-confirmed receipt (admin only)."""
    require_role(ctx, "ADMIN")
    receipt = await get_receipt(db, ctx, receipt_id)
    if receipt.status == ReceiptStatus.CONFIRMED.value:
        raise InvalidStateError("Cannot delete a confirmed receipt", {"receipt_id": str(receipt_id)})

    await db.execute(delete(ReceiptLine).where(ReceiptLine.receipt_id == receipt_id))
    await db.delete(receipt)
    await db.flush()
    logger.info("receiving.deleted", practice_id=str(ctx.practice_id), receipt_id=str(receipt_id))


# ──────────────────────────────────────────────────────────────────────────
# Confirmation
# ──────────────────────────────────────────────────────────────────────────


async def confirm_receipt(
    db: AsyncSession,
    ctx: RequestContext,
    receipt_id: uuid.UUID,
    backorder_item_ids: Iterable[uuid.UUID] = (),
) -> ReceiptConfirmation:
    """
    Confirm a draft receipt and apply its stock.

    Steps, in receipt line order:
      1. Verify DRAFT and at least one line with quantity > 0
      2. Claim the receipt (conditional DRAFT → CONFIRMED update)
      3. Increment stock for every positive line and flag backorder lines
      4. Collect items still at or below their reorder point (best effort)

    Does not commit. Must run inside a transaction owned by the caller.
    """
    require_role(ctx, "STAFF")
    backorders = set(backorder_item_ids)

    receipt = await get_receipt(db, ctx, receipt_id)
    _require_draft(receipt, action="confirm")

    lines = await get_receipt_lines(db, receipt_id)
    positive_lines = [line for line in lines if line.quantity > 0]
    if not positive_lines:
        raise InvalidStateError(
            "Receipt has no lines with quantity greater than zero",
            {"receipt_id": str(receipt_id), "line_count": len(lines)},
        )

    received_at = datetime.utcnow()
    claimed = await db.execute(
        update(GoodsReceipt)
        .where(
            GoodsReceipt.receipt_id == receipt_id,
            GoodsReceipt.practice_id == ctx.practice_id,
            GoodsReceipt.status == ReceiptStatus.DRAFT.value,
        )
        .values(status=ReceiptStatus.CONFIRMED.value, received_at=received_at)
    )
    if claimed.rowcount != 1:
        raise InvalidStateError(
            "Receipt is no longer a draft; it was confirmed or cancelled concurrently",
            {"receipt_id": str(receipt_id)},
        )

    stock = StockLedger(db, ctx.practice_id, actor=ctx.user_id)
    new_levels = []
    for line in positive_lines:
        note = f"Receipt #{str(receipt_id)[:8]}"
        if line.batch_number:
            note += f" - Batch: {line.batch_number}"
        level = await stock.increment(line.item_id, receipt.location_id, line.quantity, note=note)
        new_levels.append(level)

    for line in lines:
        if line.item_id in backorders and not line.is_backorder:
            line.is_backorder = True
    await db.flush()

    low_stock = await _collect_low_stock(db, ctx, receipt, new_levels)

    total_quantity = sum(line.quantity for line in positive_lines)
    logger.info(
        "receiving.confirmed",
        practice_id=str(ctx.practice_id),
        receipt_id=str(receipt_id),
        order_id=str(receipt.order_id) if receipt.order_id else None,
        lines_processed=len(positive_lines),
        total_quantity=total_quantity,
        backorder_items=len(backorders),
        low_stock_items=len(low_stock),
    )
    return ReceiptConfirmation(
        receipt_id=receipt_id,
        order_id=receipt.order_id,
        location_id=receipt.location_id,
        supplier_id=receipt.supplier_id,
        lines_processed=len(positive_lines),
        total_quantity=total_quantity,
        received_at=received_at,
        low_stock_items=low_stock,
    )


async def _collect_low_stock(db: AsyncSession, ctx: RequestContext, receipt: GoodsReceipt, levels) -> list[LowStockItem]:
    """Items whose post-increment stock is still at or below the reorder point. Never raises."""
    try:
        low = [level for level in levels if level.is_low]
        if not low:
            return []
        names = dict(
            (
                await db.execute(select(Item.item_id, Item.name).where(Item.item_id.in_([lv.item_id for lv in low])))
            ).all()
        )
        return [
            LowStockItem(
                item_id=level.item_id,
                item_name=names.get(level.item_id, "Unknown item"),
                location_id=receipt.location_id,
                quantity=level.quantity,
                reorder_point=level.reorder_point,
            )
            for level in low
        ]
    except Exception:
        logger.exception(
            "receiving.low_stock_check_failed",
            practice_id=str(ctx.practice_id),
            receipt_id=str(receipt.receipt_id),
        )
        return []


# ──────────────────────────────────────────────────────────────────────────
# Live feedback & scanning
# ──────────────────────────────────────────────────────────────────────────


async def expected_items(
    db: AsyncSession,
    ctx: RequestContext,
    receipt_id: uuid.UUID,
    backorder_item_ids: Iterable[uuid.UUID] = (),
) -> list[ExpectedItem]:
    """
    Per order line: what was ordered, what earlier confirmed receipts brought,
    what is still expected, and how this receipt's quantity compares.

    Returns an empty list for receipts without an order.
    """
    receipt = await get_receipt(db, ctx, receipt_id)
    if receipt.order_id is None:
        return []

    backorders = set(backorder_item_ids)
    order_lines = await load_order_lines(db, receipt.order_id)
    counted = await load_counted_receipts(
        db, ctx.practice_id, receipt.order_id, include_draft_receipt_id=receipt_id
    )
    progress = remaining_for_order(order_lines, counted, exclude_receipt_id=receipt_id)
    with_current = remaining_for_order(order_lines, counted)

    on_receipt = {line.item_id: line for line in await get_receipt_lines(db, receipt_id)}

    items = dict(
        (
            await db.execute(
                select(Item.item_id, Item).where(Item.item_id.in_([line.item_id for line in order_lines]))
            )
        ).all()
    )

    expected = []
    for order_line in order_lines:
        p = progress[order_line.item_id]
        line = on_receipt.get(order_line.item_id)
        received = line.quantity if line else 0
        is_backorder = order_line.item_id in backorders or bool(line and line.is_backorder)
        classification = classify(
            ordered=p.remaining,
            received=received,
            is_backorder=is_backorder,
            override=line.discrepancy_override if line else None,
        )
        item = items.get(order_line.item_id)
        expected.append(
            ExpectedItem(
                item_id=order_line.item_id,
                item_name=item.name if item else "Unknown item",
                unit=item.unit if item else None,
                ordered=p.ordered,
                already_received=p.already_received,
                remaining=p.remaining,
                quantity_on_receipt=received,
                remaining_after_receipt=with_current[order_line.item_id].remaining,
                is_backorder=is_backorder,
                classification=classification,
                label=describe(classification, p.remaining, received),
            )
        )
    return expected


async def find_item_by_gtin(db: AsyncSession, ctx: RequestContext, gtin: str) -> Item | None:
    """Resolve a scanned barcode to a practice item."""
    cleaned = normalize_gtin(gtin)
    candidates = {cleaned, cleaned.zfill(14), cleaned.lstrip("0")}
    result = await db.execute(
        select(Item).where(Item.practice_id == ctx.practice_id, Item.gtin.in_(candidates)).limit(1)
    )
    return result.scalar_one_or_none()
