"""
Reconciliation — the single entry point for confirming a goods receipt.

    1. Validate inputs (role, receipt, mismatch entries) → nothing written on failure
    2. Confirm the receipt and apply stock               → atomic, committed
    3. Log operator-reviewed mismatches                  → best effort
    4. Recompute the linked order's status from ledger   → best effort
    5. Raise low-stock alerts + publish notifications    → best effort

Step 2 runs inside a SAVEPOINT: a failed stock increment rolls back the
receipt claim and every earlier increment, and nothing after it runs.
Once step 2 commits, later failures are logged and swallowed; they never
undo a committed confirmation.
"""

import uuid
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from alerts.engine import notify, raise_low_stock_alerts
from core.context import RequestContext, require_role
from supply_chain import mismatches as mismatch_records
from supply_chain import orders, receiving
from supply_chain.ledger import load_order_progress
from supply_chain.mismatches import MismatchEntry
from supply_chain.receiving import LowStockItem

logger = structlog.get_logger()


@dataclass
class ConfirmationResult:
    success: bool
    receipt_id: uuid.UUID
    order_id: uuid.UUID | None = None
    order_status: str | None = None
    lines_processed: int = 0
    total_quantity: int = 0
    low_stock_items: list[LowStockItem] = field(default_factory=list)
    discrepancies_logged: int = 0


async def confirm_receipt_and_reconcile(
    db: AsyncSession,
    ctx: RequestContext,
    receipt_id: uuid.UUID,
    backorder_item_ids: Iterable[uuid.UUID] = (),
    mismatches: Sequence[MismatchEntry] | None = None,
) -> ConfirmationResult:
    """Confirm a draft receipt, then bring the order and discrepancy log in line with it."""
    require_role(ctx, "STAFF")
    await receiving.get_receipt(db, ctx, receipt_id)
    entries = await mismatch_records.validate_entries(db, ctx, mismatches or [])

    try:
        async with db.begin_nested():
            confirmation = await receiving.confirm_receipt(db, ctx, receipt_id, backorder_item_ids)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    result = ConfirmationResult(
        success=True,
        receipt_id=receipt_id,
        order_id=confirmation.order_id,
        lines_processed=confirmation.lines_processed,
        total_quantity=confirmation.total_quantity,
        low_stock_items=confirmation.low_stock_items,
    )
    log_context = {
        "practice_id": str(ctx.practice_id),
        "receipt_id": str(receipt_id),
        "order_id": str(confirmation.order_id) if confirmation.order_id else None,
    }

    if entries:
        try:
            receipt = await receiving.get_receipt(db, ctx, receipt_id)
            records = await mismatch_records.log_discrepancies(db, ctx, receipt, entries)
            await db.commit()
            result.discrepancies_logged = len(records)
        except Exception:
            logger.exception("reconciliation.discrepancy_logging_failed", entries=len(entries), **log_context)
            await db.rollback()

    if confirmation.order_id is not None:
        try:
            progress = await load_order_progress(db, ctx.practice_id, confirmation.order_id)
            order = await orders.recompute_status_from_receipts(db, ctx, confirmation.order_id, progress)
            await db.commit()
            result.order_status = order.status
        except Exception:
            logger.exception("reconciliation.order_status_failed", **log_context)
            await db.rollback()

    if confirmation.low_stock_items:
        try:
            await raise_low_stock_alerts(db, ctx.practice_id, confirmation.low_stock_items)
            await db.commit()
        except Exception:
            logger.exception(
                "reconciliation.low_stock_alerts_failed",
                low_stock_items=len(confirmation.low_stock_items),
                **log_context,
            )
            await db.rollback()

    await notify(
        ctx.practice_id,
        "order_received" if confirmation.order_id else "receipt_confirmed",
        {
            "receipt_id": str(receipt_id),
            "order_id": str(confirmation.order_id) if confirmation.order_id else None,
            "order_status": result.order_status,
            "lines_processed": result.lines_processed,
            "total_quantity": result.total_quantity,
        },
    )

    logger.info(
        "reconciliation.completed",
        order_status=result.order_status,
        lines_processed=result.lines_processed,
        discrepancies_logged=result.discrepancies_logged,
        low_stock_items=len(result.low_stock_items),
        **log_context,
    )
    return result
