"""
Quantity Ledger — Received-so-far and remaining-to-receive per order line.

Pure computation over an order's lines and the receipts counted against it.
By convention the counted receipts are every CONFIRMED receipt for the
order plus, for live feedback, the DRAFT receipt being edited.

    remaining = max(0, ordered - already_received)

Over-receipt therefore reports remaining 0, never a negative number.
Items that appear on receipts but not on the order are ignored.

``load_order_progress`` is the DB-facing wrapper. It always re-reads the
full confirmed-receipt set so two receipts confirmed against the same order
never work from a stale snapshot.
"""

import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import GoodsReceipt, OrderLine, ReceiptLine, ReceiptStatus


class QuantityLine(Protocol):
    item_id: uuid.UUID
    quantity: int


@dataclass(frozen=True)
class ReceivedLine:
    item_id: uuid.UUID
    quantity: int


@dataclass(frozen=True)
class CountedReceipt:
    """A receipt as seen by the ledger: an id and its (item, quantity) lines."""

    receipt_id: uuid.UUID
    lines: tuple[ReceivedLine, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class LineProgress:
    item_id: uuid.UUID
    ordered: int
    already_received: int
    remaining: int

    @property
    def fully_received(self) -> bool:
        return self.remaining == 0


def remaining_for_order(
    order_lines: Iterable[QuantityLine],
    receipts: Iterable[CountedReceipt],
    exclude_receipt_id: uuid.UUID | None = None,
) -> dict[uuid.UUID, LineProgress]:
    """
    Compute per-item progress for an order.

    Args:
        order_lines: the order's lines (anything with item_id / quantity).
        receipts: the receipts to count.
        exclude_receipt_id: receipt left out of the sum, typically the draft
            under edit so its own quantities are not double counted.

    Returns an empty dict for an order without lines.
    """
    ordered: dict[uuid.UUID, int] = {}
    for line in order_lines:
        ordered[line.item_id] = ordered.get(line.item_id, 0) + int(line.quantity)

    if not ordered:
        return {}

    received: dict[uuid.UUID, int] = {item_id: 0 for item_id in ordered}
    for receipt in receipts:
        if exclude_receipt_id is not None and receipt.receipt_id == exclude_receipt_id:
            continue
        for line in receipt.lines:
            if line.item_id in received:
                received[line.item_id] += int(line.quantity)

    return {
        item_id: LineProgress(
            item_id=item_id,
            ordered=qty,
            already_received=received[item_id],
            remaining=max(0, qty - received[item_id]),
        )
        for item_id, qty in ordered.items()
    }


async def load_counted_receipts(
    db: AsyncSession,
    practice_id: uuid.UUID,
    order_id: uuid.UUID,
    include_draft_receipt_id: uuid.UUID | None = None,
) -> list[CountedReceipt]:
    """Fetch the CONFIRMED receipts for an order (plus an optional draft) with their lines."""
    criteria = GoodsReceipt.status == ReceiptStatus.CONFIRMED.value
    if include_draft_receipt_id is not None:
        criteria = criteria | (
            (GoodsReceipt.receipt_id == include_draft_receipt_id)
            & (GoodsReceipt.status == ReceiptStatus.DRAFT.value)
        )

    result = await db.execute(
        select(ReceiptLine.receipt_id, ReceiptLine.item_id, ReceiptLine.quantity)
        .join(GoodsReceipt, GoodsReceipt.receipt_id == ReceiptLine.receipt_id)
        .where(
            GoodsReceipt.practice_id == practice_id,
            GoodsReceipt.order_id == order_id,
            criteria,
        )
        .order_by(ReceiptLine.receipt_id, ReceiptLine.position)
    )

    grouped: dict[uuid.UUID, list[ReceivedLine]] = {}
    for row in result.all():
        grouped.setdefault(row.receipt_id, []).append(ReceivedLine(item_id=row.item_id, quantity=row.quantity))
    return [CountedReceipt(receipt_id=rid, lines=tuple(lines)) for rid, lines in grouped.items()]


async def load_order_lines(db: AsyncSession, order_id: uuid.UUID) -> list[OrderLine]:
    result = await db.execute(
        select(OrderLine).where(OrderLine.order_id == order_id).order_by(OrderLine.position)
    )
    return list(result.scalars().all())


async def load_order_progress(
    db: AsyncSession,
    practice_id: uuid.UUID,
    order_id: uuid.UUID,
    exclude_receipt_id: uuid.UUID | None = None,
) -> dict[uuid.UUID, LineProgress]:
    """Ledger over all confirmed receipts for ``order_id``, read fresh from the database."""
    order_lines = await load_order_lines(db, order_id)
    receipts = await load_counted_receipts(db, practice_id, order_id)
    return remaining_for_order(order_lines, receipts, exclude_receipt_id=exclude_receipt_id)
