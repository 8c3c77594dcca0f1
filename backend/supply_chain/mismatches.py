"""
Receiving Mismatches — discrepancy records for audit and supplier follow-up.

Records are written when a receipt is confirmed with operator-reviewed
mismatches, one row per submitted entry (appended, never merged with
earlier records for the same item or receipt).

    OPEN ──resolve──────────────────▶ RESOLVED (terminal)
    OPEN ──flag_for_supplier────────▶ NEEDS_SUPPLIER_CORRECTION ──resolve──▶ RESOLVED

Notes are append-only: each new note is added below the existing history
with a timestamp header.
"""

import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from core.context import RequestContext, require_role
from core.errors import InvalidStateError, NotFoundError, ValidationError
from db.models import (
    GoodsReceipt,
    Item,
    Order,
    OrderLine,
    OrderStatus,
    ReceiptLine,
    ReceiptStatus,
    ReceivingDiscrepancy,
    DiscrepancyStatus,
)
from supply_chain.discrepancies import LOGGABLE_TYPES, DiscrepancyType
from supply_chain.validation import validate_quantity

logger = structlog.get_logger()


@dataclass(frozen=True)
class MismatchEntry:
    """One operator-reviewed mismatch submitted alongside a confirmation."""

    item_id: uuid.UUID
    type: str
    ordered_quantity: int
    received_quantity: int
    note: str | None = None


async def validate_entries(db: AsyncSession, ctx: RequestContext, entries: Sequence[MismatchEntry]) -> list[MismatchEntry]:
    """Check entry types, quantities and item ownership. Raises ValidationError before anything is written."""
    for entry in entries:
        try:
            kind = DiscrepancyType(entry.type)
        except ValueError:
            kind = None
        if kind not in LOGGABLE_TYPES:
            raise ValidationError(
                "Mismatch type must be one of SHORT, OVER, DAMAGE, SUBSTITUTION",
                {"field": "type", "item_id": str(entry.item_id)},
            )
        validate_quantity(entry.ordered_quantity, allow_zero=True, field="ordered_quantity")
        validate_quantity(entry.received_quantity, allow_zero=True, field="received_quantity")

    item_ids = list({entry.item_id for entry in entries})
    if item_ids:
        found = set(
            (
                await db.execute(
                    select(Item.item_id).where(Item.item_id.in_(item_ids), Item.practice_id == ctx.practice_id)
                )
            )
            .scalars()
            .all()
        )
        missing = [str(i) for i in item_ids if i not in found]
        if missing:
            raise ValidationError(
                "Some mismatch items do not belong to this practice", {"field": "item_id", "item_ids": missing}
            )
    return list(entries)


async def log_discrepancies(
    db: AsyncSession,
    ctx: RequestContext,
    receipt: GoodsReceipt,
    entries: Sequence[MismatchEntry],
) -> list[ReceivingDiscrepancy]:
    """Append one OPEN record per entry."""
    created = []
    for entry in entries:
        record = ReceivingDiscrepancy(
            practice_id=ctx.practice_id,
            order_id=receipt.order_id,
            goods_receipt_id=receipt.receipt_id,
            item_id=entry.item_id,
            supplier_id=receipt.supplier_id,
            discrepancy_type=DiscrepancyType(entry.type).value,
            status=DiscrepancyStatus.OPEN.value,
            ordered_qty=entry.ordered_quantity,
            received_qty=entry.received_quantity,
            variance_qty=entry.received_quantity - entry.ordered_quantity,
            note=entry.note,
            created_by=ctx.user_id,
        )
        db.add(record)
        created.append(record)
    await db.flush()

    logger.info(
        "mismatches.logged",
        practice_id=str(ctx.practice_id),
        receipt_id=str(receipt.receipt_id),
        count=len(created),
    )
    return created


async def get_discrepancy(db: AsyncSession, ctx: RequestContext, discrepancy_id: uuid.UUID) -> ReceivingDiscrepancy:
    record = (
        await db.execute(
            select(ReceivingDiscrepancy).where(
                ReceivingDiscrepancy.discrepancy_id == discrepancy_id,
                ReceivingDiscrepancy.practice_id == ctx.practice_id,
            )
        )
    ).scalar_one_or_none()
    if record is None:
        raise NotFoundError("Receiving mismatch", discrepancy_id)
    return record


async def list_discrepancies(
    db: AsyncSession,
    ctx: RequestContext,
    status: str | None = None,
    discrepancy_type: str | None = None,
    supplier_id: uuid.UUID | None = None,
    receipt_id: uuid.UUID | None = None,
    order_id: uuid.UUID | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    skip: int = 0,
    limit: int = 100,
) -> list[ReceivingDiscrepancy]:
    query = select(ReceivingDiscrepancy).where(ReceivingDiscrepancy.practice_id == ctx.practice_id)
    if status:
        query = query.where(ReceivingDiscrepancy.status == status)
    if discrepancy_type:
        query = query.where(ReceivingDiscrepancy.discrepancy_type == discrepancy_type)
    if supplier_id:
        query = query.where(ReceivingDiscrepancy.supplier_id == supplier_id)
    if receipt_id:
        query = query.where(ReceivingDiscrepancy.goods_receipt_id == receipt_id)
    if order_id:
        query = query.where(ReceivingDiscrepancy.order_id == order_id)
    if date_from:
        query = query.where(ReceivingDiscrepancy.created_at >= date_from)
    if date_to:
        query = query.where(ReceivingDiscrepancy.created_at <= date_to)
    query = query.order_by(ReceivingDiscrepancy.created_at.desc()).offset(skip).limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())


async def count_discrepancies_by_status(db: AsyncSession, ctx: RequestContext) -> dict[str, int]:
    result = await db.execute(
        select(ReceivingDiscrepancy.status, func.count(ReceivingDiscrepancy.discrepancy_id))
        .where(ReceivingDiscrepancy.practice_id == ctx.practice_id)
        .group_by(ReceivingDiscrepancy.status)
    )
    counts = {status.value: 0 for status in DiscrepancyStatus}
    for status, count in result.all():
        counts[status] = count
    counts["total"] = sum(counts.values())
    return counts


def _timestamped(existing: str | None, note: str, now: datetime) -> str:
    block = f"[{now.isoformat()}]\n{note}"
    return f"{existing}\n\n{block}" if existing else block


async def _transition(
    db: AsyncSession,
    ctx: RequestContext,
    discrepancy_id: uuid.UUID,
    status: DiscrepancyStatus,
    note: str | None,
) -> ReceivingDiscrepancy:
    require_role(ctx, "STAFF")
    record = await get_discrepancy(db, ctx, discrepancy_id)
    if record.status == DiscrepancyStatus.RESOLVED.value:
        raise InvalidStateError("Mismatch is already resolved", {"discrepancy_id": str(discrepancy_id)})

    now = datetime.utcnow()
    previous = record.status
    record.status = status.value
    record.resolved_by = ctx.user_id
    record.resolved_at = now
    if note:
        record.resolution_note = _timestamped(record.resolution_note, note, now)
    await db.flush()

    logger.info(
        "mismatches.status_changed",
        practice_id=str(ctx.practice_id),
        discrepancy_id=str(discrepancy_id),
        previous_status=previous,
        status=status.value,
    )
    return record


async def resolve_discrepancy(
    db: AsyncSession, ctx: RequestContext, discrepancy_id: uuid.UUID, note: str | None = None
) -> ReceivingDiscrepancy:
    return await _transition(db, ctx, discrepancy_id, DiscrepancyStatus.RESOLVED, note)


async def flag_for_supplier_correction(
    db: AsyncSession, ctx: RequestContext, discrepancy_id: uuid.UUID, note: str | None = None
) -> ReceivingDiscrepancy:
    return await _transition(db, ctx, discrepancy_id, DiscrepancyStatus.NEEDS_SUPPLIER_CORRECTION, note)


async def append_discrepancy_note(
    db: AsyncSession, ctx: RequestContext, discrepancy_id: uuid.UUID, note: str
) -> ReceivingDiscrepancy:
    require_role(ctx, "STAFF")
    if not note or not note.strip():
        raise ValidationError("Note cannot be empty", {"field": "note"})
    record = await get_discrepancy(db, ctx, discrepancy_id)
    record.resolution_note = _timestamped(record.resolution_note, note.strip(), datetime.utcnow())
    await db.flush()
    return record


async def receiving_mismatch_overview(db: AsyncSession, ctx: RequestContext) -> list[dict]:
    """
    Recent orders whose confirmed receipts do not match what was ordered.

    PARTIALLY_RECEIVED orders are always listed; RECEIVED orders only when a
    line was over-received.
    """
    limit = get_settings().mismatch_overview_limit
    orders = list(
        (
            await db.execute(
                select(Order)
                .where(
                    Order.practice_id == ctx.practice_id,
                    Order.status.in_([OrderStatus.PARTIALLY_RECEIVED.value, OrderStatus.RECEIVED.value]),
                )
                .order_by(Order.updated_at.desc())
                .limit(limit)
            )
        )
        .scalars()
        .all()
    )
    if not orders:
        return []

    order_ids = [order.order_id for order in orders]
    ordered_rows = (
        await db.execute(
            select(OrderLine.order_id, OrderLine.item_id, OrderLine.quantity, Item.name, Item.unit)
            .join(Item, Item.item_id == OrderLine.item_id)
            .where(OrderLine.order_id.in_(order_ids))
            .order_by(OrderLine.position)
        )
    ).all()
    received_rows = (
        await db.execute(
            select(GoodsReceipt.order_id, ReceiptLine.item_id, func.sum(ReceiptLine.quantity))
            .join(GoodsReceipt, GoodsReceipt.receipt_id == ReceiptLine.receipt_id)
            .where(
                GoodsReceipt.practice_id == ctx.practice_id,
                GoodsReceipt.order_id.in_(order_ids),
                GoodsReceipt.status == ReceiptStatus.CONFIRMED.value,
            )
            .group_by(GoodsReceipt.order_id, ReceiptLine.item_id)
        )
    ).all()
    received = {(row[0], row[1]): int(row[2] or 0) for row in received_rows}

    stats: dict[uuid.UUID, list[dict]] = {}
    for order_id, item_id, quantity, name, unit in ordered_rows:
        got = received.get((order_id, item_id), 0)
        if got != quantity:
            stats.setdefault(order_id, []).append(
                {"item_id": item_id, "name": name, "unit": unit, "ordered": quantity, "received": got}
            )

    overview = []
    for order in orders:
        items = stats.get(order.order_id, [])
        if order.status == OrderStatus.PARTIALLY_RECEIVED.value or items:
            overview.append(
                {
                    "order_id": order.order_id,
                    "reference": order.reference,
                    "supplier_id": order.supplier_id,
                    "status": order.status,
                    "updated_at": order.updated_at,
                    "items": items,
                }
            )
    return overview
