"""
Receiving Mismatch Router — discrepancy review and supplier follow-up.

Registered ahead of the receiving router so ``/mismatches`` is never
parsed as a receipt id.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_request_context, get_tenant_db
from core.context import RequestContext
from supply_chain import mismatches as mismatch_service

router = APIRouter(prefix="/api/v1/receiving/mismatches", tags=["receiving-mismatches"])


# ─── Schemas ────────────────────────────────────────────────────────────────

class MismatchResponse(BaseModel):
    discrepancy_id: UUID
    order_id: UUID | None
    goods_receipt_id: UUID
    item_id: UUID
    supplier_id: UUID | None
    discrepancy_type: str
    status: str
    ordered_qty: int
    received_qty: int
    variance_qty: int
    note: str | None
    resolution_note: str | None
    resolved_by: str | None
    resolved_at: datetime | None
    created_by: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class MismatchCounts(BaseModel):
    total: int
    OPEN: int
    RESOLVED: int
    NEEDS_SUPPLIER_CORRECTION: int


class OverviewItem(BaseModel):
    item_id: UUID
    name: str
    unit: str | None
    ordered: int
    received: int


class OverviewOrder(BaseModel):
    order_id: UUID
    reference: str | None
    supplier_id: UUID | None
    status: str
    updated_at: datetime
    items: list[OverviewItem]


class StatusChangeRequest(BaseModel):
    note: str | None = None


class NoteRequest(BaseModel):
    note: str = Field(..., min_length=1)


# ─── Endpoints ──────────────────────────────────────────────────────────────

@router.get("", response_model=list[MismatchResponse])
async def list_mismatches(
    status: str | None = None,
    type: str | None = None,
    supplier_id: UUID | None = None,
    receipt_id: UUID | None = None,
    order_id: UUID | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_tenant_db),
    ctx: RequestContext = Depends(get_request_context),
):
    """List discrepancy records with filters, newest first."""
    return await mismatch_service.list_discrepancies(
        db,
        ctx,
        status=status,
        discrepancy_type=type,
        supplier_id=supplier_id,
        receipt_id=receipt_id,
        order_id=order_id,
        date_from=date_from,
        date_to=date_to,
        skip=skip,
        limit=limit,
    )


@router.get("/counts", response_model=MismatchCounts)
async def get_mismatch_counts(
    db: AsyncSession = Depends(get_tenant_db),
    ctx: RequestContext = Depends(get_request_context),
):
    return MismatchCounts(**await mismatch_service.count_discrepancies_by_status(db, ctx))


@router.get("/overview", response_model=list[OverviewOrder])
async def get_mismatch_overview(
    db: AsyncSession = Depends(get_tenant_db),
    ctx: RequestContext = Depends(get_request_context),
):
    """Recent orders whose confirmed receipts differ from what was ordered."""
    return await mismatch_service.receiving_mismatch_overview(db, ctx)


@router.post("/{discrepancy_id}/resolve", response_model=MismatchResponse)
async def resolve_mismatch(
    discrepancy_id: UUID,
    body: StatusChangeRequest,
    db: AsyncSession = Depends(get_tenant_db),
    ctx: RequestContext = Depends(get_request_context),
):
    record = await mismatch_service.resolve_discrepancy(db, ctx, discrepancy_id, note=body.note)
    await db.commit()
    return record


@router.post("/{discrepancy_id}/flag", response_model=MismatchResponse)
async def flag_mismatch(
    discrepancy_id: UUID,
    body: StatusChangeRequest,
    db: AsyncSession = Depends(get_tenant_db),
    ctx: RequestContext = Depends(get_request_context),
):
    """Mark a mismatch as needing a correction from the supplier."""
    record = await mismatch_service.flag_for_supplier_correction(db, ctx, discrepancy_id, note=body.note)
    await db.commit()
    return record


@router.post("/{discrepancy_id}/notes", response_model=MismatchResponse)
async def add_mismatch_note(
    discrepancy_id: UUID,
    body: NoteRequest,
    db: AsyncSession = Depends(get_tenant_db),
    ctx: RequestContext = Depends(get_request_context),
):
    record = await mismatch_service.append_discrepancy_note(db, ctx, discrepancy_id, body.note)
    await db.commit()
    return record
