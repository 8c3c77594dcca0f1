"""
Receiving Router — Goods receipt endpoints.

  1. Staff opens a DRAFT receipt (against an order, or ad hoc with a supplier)
  2. Lines are scanned / typed in; expected-items gives live feedback
  3. Confirm → stock applied, order status recomputed, mismatches logged
"""

from datetime import date, datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_request_context, get_tenant_db
from core.context import RequestContext
from core.errors import NotFoundError
from supply_chain import receiving as receiving_service
from supply_chain.mismatches import MismatchEntry
from supply_chain.reconciliation import confirm_receipt_and_reconcile

router = APIRouter(prefix="/api/v1/receiving", tags=["receiving"])


# ─── Schemas ────────────────────────────────────────────────────────────────

class ReceiptLineResponse(BaseModel):
    line_id: UUID
    item_id: UUID
    position: int
    quantity: int
    batch_number: str | None
    expiry_date: date | None
    notes: str | None
    scanned_gtin: str | None
    is_backorder: bool
    discrepancy_override: str | None

    model_config = {"from_attributes": True}


class ReceiptResponse(BaseModel):
    receipt_id: UUID
    practice_id: UUID
    location_id: UUID
    order_id: UUID | None
    supplier_id: UUID | None
    status: str
    notes: str | None
    created_by: str | None
    created_at: datetime
    received_at: datetime | None

    model_config = {"from_attributes": True}


class ReceiptSummaryResponse(ReceiptResponse):
    line_count: int = 0
    total_quantity: int = 0


class ReceiptDetailResponse(ReceiptResponse):
    lines: list[ReceiptLineResponse] = []


class ReceiptCreateRequest(BaseModel):
    location_id: UUID
    order_id: UUID | None = None
    supplier_id: UUID | None = None
    notes: str | None = None


class ReceiptLineRequest(BaseModel):
    item_id: UUID
    quantity: int = Field(..., ge=0)
    batch_number: str | None = None
    expiry_date: date | None = None
    notes: str | None = None
    scanned_gtin: str | None = None
    discrepancy_override: str | None = None


class ReceiptLineUpdateRequest(BaseModel):
    quantity: int = Field(..., gt=0)
    batch_number: str | None = None
    expiry_date: date | None = None
    notes: str | None = None
    discrepancy_override: str | None = None


class MismatchRequest(BaseModel):
    item_id: UUID
    type: str
    ordered_quantity: int = Field(..., ge=0)
    received_quantity: int = Field(..., ge=0)
    note: str | None = None


class ConfirmRequest(BaseModel):
    backorder_item_ids: list[UUID] = []
    mismatches: list[MismatchRequest] = []


class LowStockItemResponse(BaseModel):
    item_id: UUID
    item_name: str
    location_id: UUID
    quantity: int
    reorder_point: int

    model_config = {"from_attributes": True}


class ConfirmationResponse(BaseModel):
    success: bool
    receipt_id: UUID
    order_id: UUID | None
    order_status: str | None
    lines_processed: int
    total_quantity: int
    low_stock_items: list[LowStockItemResponse]
    discrepancies_logged: int

    model_config = {"from_attributes": True}


class ExpectedItemResponse(BaseModel):
    item_id: UUID
    item_name: str
    unit: str | None
    ordered: int
    already_received: int
    remaining: int
    quantity_on_receipt: int
    remaining_after_receipt: int
    is_backorder: bool
    classification: str
    label: str


class ItemLookupResponse(BaseModel):
    item_id: UUID
    name: str
    sku: str | None
    unit: str | None
    gtin: str | None

    model_config = {"from_attributes": True}


async def _detail(db: AsyncSession, receipt) -> ReceiptDetailResponse:
    response = ReceiptDetailResponse.model_validate(receipt)
    lines = await receiving_service.get_receipt_lines(db, receipt.receipt_id)
    response.lines = [ReceiptLineResponse.model_validate(line) for line in lines]
    return response


# ─── Endpoints ──────────────────────────────────────────────────────────────

@router.get("/", response_model=list[ReceiptSummaryResponse])
async def list_receipts(
    status: str | None = None,
    order_id: UUID | None = None,
    location_id: UUID | None = None,
    supplier_id: UUID | None = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_tenant_db),
    ctx: RequestContext = Depends(get_request_context),
):
    """List goods receipts with line counts, newest first."""
    rows = await receiving_service.list_receipts(
        db,
        ctx,
        status=status,
        order_id=order_id,
        location_id=location_id,
        supplier_id=supplier_id,
        skip=skip,
        limit=limit,
    )
    results = []
    for row in rows:
        summary = ReceiptSummaryResponse.model_validate(row["receipt"])
        summary.line_count = row["line_count"]
        summary.total_quantity = row["total_quantity"]
        results.append(summary)
    return results


@router.post("/", response_model=ReceiptDetailResponse, status_code=201)
async def create_receipt(
    body: ReceiptCreateRequest,
    db: AsyncSession = Depends(get_tenant_db),
    ctx: RequestContext = Depends(get_request_context),
):
    receipt = await receiving_service.create_receipt(
        db,
        ctx,
        location_id=body.location_id,
        order_id=body.order_id,
        supplier_id=body.supplier_id,
        notes=body.notes,
    )
    await db.commit()
    return await _detail(db, receipt)


@router.get("/gtin/{gtin}", response_model=ItemLookupResponse)
async def lookup_gtin(
    gtin: str,
    db: AsyncSession = Depends(get_tenant_db),
    ctx: RequestContext = Depends(get_request_context),
):
    """Resolve a scanned barcode to a practice item."""
    item = await receiving_service.find_item_by_gtin(db, ctx, gtin)
    if item is None:
        raise NotFoundError("Item with GTIN", gtin)
    return item


@router.put("/lines/{line_id}", response_model=ReceiptDetailResponse)
async def update_receipt_line(
    line_id: UUID,
    body: ReceiptLineUpdateRequest,
    db: AsyncSession = Depends(get_tenant_db),
    ctx: RequestContext = Depends(get_request_context),
):
    line = await receiving_service.update_line(db, ctx, line_id, **body.model_dump())
    await db.commit()
    return await _detail(db, await receiving_service.get_receipt(db, ctx, line.receipt_id))


@router.delete("/lines/{line_id}", response_model=ReceiptDetailResponse)
async def remove_receipt_line(
    line_id: UUID,
    db: AsyncSession = Depends(get_tenant_db),
    ctx: RequestContext = Depends(get_request_context),
):
    receipt_id = await receiving_service.remove_line(db, ctx, line_id)
    await db.commit()
    return await _detail(db, await receiving_service.get_receipt(db, ctx, receipt_id))


@router.get("/{receipt_id}", response_model=ReceiptDetailResponse)
async def get_receipt(
    receipt_id: UUID,
    db: AsyncSession = Depends(get_tenant_db),
    ctx: RequestContext = Depends(get_request_context),
):
    return await _detail(db, await receiving_service.get_receipt(db, ctx, receipt_id))


@router.delete("/{receipt_id}", status_code=204)
async def delete_receipt(
    receipt_id: UUID,
    db: AsyncSession = Depends(get_tenant_db),
    ctx: RequestContext = Depends(get_request_context),
):
    """Hard-delete a draft or cancelled receipt (admin only)."""
    await receiving_service.delete_receipt(db, ctx, receipt_id)
    await db.commit()
    return Response(status_code=204)


@router.post("/{receipt_id}/lines", response_model=ReceiptDetailResponse, status_code=201)
async def add_receipt_line(
    receipt_id: UUID,
    body: ReceiptLineRequest,
    db: AsyncSession = Depends(get_tenant_db),
    ctx: RequestContext = Depends(get_request_context),
):
    await receiving_service.add_line(db, ctx, receipt_id, **body.model_dump())
    await db.commit()
    return await _detail(db, await receiving_service.get_receipt(db, ctx, receipt_id))


@router.get("/{receipt_id}/expected-items", response_model=list[ExpectedItemResponse])
async def get_expected_items(
    receipt_id: UUID,
    backorder_item_ids: list[UUID] = Query(default=[]),
    db: AsyncSession = Depends(get_tenant_db),
    ctx: RequestContext = Depends(get_request_context),
):
    """Per order line: ordered, already received, remaining, and this receipt's verdict."""
    expected = await receiving_service.expected_items(db, ctx, receipt_id, backorder_item_ids)
    return [
        ExpectedItemResponse(
            item_id=e.item_id,
            item_name=e.item_name,
            unit=e.unit,
            ordered=e.ordered,
            already_received=e.already_received,
            remaining=e.remaining,
            quantity_on_receipt=e.quantity_on_receipt,
            remaining_after_receipt=e.remaining_after_receipt,
            is_backorder=e.is_backorder,
            classification=e.classification.type.value,
            label=e.label,
        )
        for e in expected
    ]


@router.post("/{receipt_id}/confirm", response_model=ConfirmationResponse)
async def confirm_receipt(
    receipt_id: UUID,
    body: ConfirmRequest,
    db: AsyncSession = Depends(get_tenant_db),
    ctx: RequestContext = Depends(get_request_context),
):
    """Confirm a draft receipt: apply stock, update the order, log reviewed mismatches."""
    result = await confirm_receipt_and_reconcile(
        db,
        ctx,
        receipt_id,
        backorder_item_ids=body.backorder_item_ids,
        mismatches=[MismatchEntry(**m.model_dump()) for m in body.mismatches],
    )
    return result


@router.post("/{receipt_id}/cancel", response_model=ReceiptResponse)
async def cancel_receipt(
    receipt_id: UUID,
    db: AsyncSession = Depends(get_tenant_db),
    ctx: RequestContext = Depends(get_request_context),
):
    receipt = await receiving_service.cancel_receipt(db, ctx, receipt_id)
    await db.commit()
    return receipt
