"""
Order Router — Supplier order workflow endpoints.

  1. Staff drafts an order (lines editable while DRAFT)
  2. Order sent to supplier → status='SENT', supplier emailed
  3. Goods receipts confirmed against it → PARTIALLY_RECEIVED / RECEIVED
     (driven by the receiving router, never set here)
"""

from datetime import date, datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from alerts.email import send_order_email
from alerts.engine import notify
from api.deps import get_request_context, get_tenant_db
from core.context import RequestContext
from db.models import Item, Supplier
from supply_chain import orders as order_service
from supply_chain.orders import OrderLineInput

router = APIRouter(prefix="/api/v1/orders", tags=["orders"])


# ─── Schemas ────────────────────────────────────────────────────────────────

class OrderLineResponse(BaseModel):
    id: UUID
    item_id: UUID
    position: int
    quantity: int
    unit_price: float | None
    notes: str | None

    model_config = {"from_attributes": True}


class OrderResponse(BaseModel):
    order_id: UUID
    practice_id: UUID
    supplier_id: UUID | None
    status: str
    reference: str | None
    notes: str | None
    created_by: str | None
    created_at: datetime
    sent_at: datetime | None
    expected_at: date | None
    received_at: datetime | None

    model_config = {"from_attributes": True}


class OrderDetailResponse(OrderResponse):
    lines: list[OrderLineResponse] = []
    total_amount: float = 0.0


class OrderSummary(BaseModel):
    total: int
    DRAFT: int
    SENT: int
    PARTIALLY_RECEIVED: int
    RECEIVED: int
    CANCELLED: int


class OrderLineRequest(BaseModel):
    item_id: UUID
    quantity: int = Field(..., gt=0)
    unit_price: float | None = Field(None, ge=0)
    notes: str | None = None


class OrderCreateRequest(BaseModel):
    supplier_id: UUID
    lines: list[OrderLineRequest] = Field(..., min_length=1)
    reference: str | None = None
    notes: str | None = None
    expected_at: date | None = None


class OrderUpdateRequest(BaseModel):
    reference: str | None = None
    notes: str | None = None
    expected_at: date | None = None


class OrderItemUpdateRequest(BaseModel):
    quantity: int = Field(..., gt=0)
    unit_price: float | None = Field(None, ge=0)
    notes: str | None = None


class LowStockOrderRequest(BaseModel):
    item_ids: list[UUID] = Field(..., min_length=1)


class DraftedOrderResponse(BaseModel):
    order_id: UUID
    supplier_id: UUID
    supplier_name: str
    line_count: int

    model_config = {"from_attributes": True}


class LowStockOrdersResponse(BaseModel):
    orders: list[DraftedOrderResponse]
    skipped_items: list[str]

    model_config = {"from_attributes": True}


async def _detail(db: AsyncSession, order) -> OrderDetailResponse:
    lines = await order_service.get_order_lines(db, order.order_id)
    response = OrderDetailResponse.model_validate(order)
    response.lines = [OrderLineResponse.model_validate(line) for line in lines]
    response.total_amount = order_service.order_total(lines)
    return response


# ─── Endpoints ──────────────────────────────────────────────────────────────

@router.get("/", response_model=list[OrderResponse])
async def list_orders(
    status: str | None = None,
    supplier_id: UUID | None = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_tenant_db),
    ctx: RequestContext = Depends(get_request_context),
):
    """List orders with filters, newest first."""
    return await order_service.list_orders(db, ctx, status=status, supplier_id=supplier_id, skip=skip, limit=limit)


@router.get("/summary", response_model=OrderSummary)
async def get_order_summary(
    db: AsyncSession = Depends(get_tenant_db),
    ctx: RequestContext = Depends(get_request_context),
):
    """Order counts by status."""
    return OrderSummary(**await order_service.order_summary(db, ctx))


@router.post("/", response_model=OrderDetailResponse, status_code=201)
async def create_order(
    body: OrderCreateRequest,
    db: AsyncSession = Depends(get_tenant_db),
    ctx: RequestContext = Depends(get_request_context),
):
    order = await order_service.create_order(
        db,
        ctx,
        supplier_id=body.supplier_id,
        lines=[OrderLineInput(**line.model_dump()) for line in body.lines],
        reference=body.reference,
        notes=body.notes,
        expected_at=body.expected_at,
    )
    await db.commit()
    return await _detail(db, order)


@router.post("/from-low-stock", response_model=LowStockOrdersResponse, status_code=201)
async def create_orders_from_low_stock(
    body: LowStockOrderRequest,
    db: AsyncSession = Depends(get_tenant_db),
    ctx: RequestContext = Depends(get_request_context),
):
    """Draft one order per default supplier for the selected low-stock items."""
    result = await order_service.create_orders_from_low_stock(db, ctx, body.item_ids)
    await db.commit()
    return LowStockOrdersResponse.model_validate(result)


@router.get("/{order_id}", response_model=OrderDetailResponse)
async def get_order(
    order_id: UUID,
    db: AsyncSession = Depends(get_tenant_db),
    ctx: RequestContext = Depends(get_request_context),
):
    order = await order_service.get_order(db, ctx, order_id)
    return await _detail(db, order)


@router.patch("/{order_id}", response_model=OrderDetailResponse)
async def update_order(
    order_id: UUID,
    body: OrderUpdateRequest,
    db: AsyncSession = Depends(get_tenant_db),
    ctx: RequestContext = Depends(get_request_context),
):
    order = await order_service.update_order(
        db, ctx, order_id, reference=body.reference, notes=body.notes, expected_at=body.expected_at
    )
    await db.commit()
    return await _detail(db, order)


@router.post("/{order_id}/items", response_model=OrderDetailResponse, status_code=201)
async def add_order_item(
    order_id: UUID,
    body: OrderLineRequest,
    db: AsyncSession = Depends(get_tenant_db),
    ctx: RequestContext = Depends(get_request_context),
):
    await order_service.add_item(
        db, ctx, order_id, body.item_id, body.quantity, unit_price=body.unit_price, notes=body.notes
    )
    await db.commit()
    return await _detail(db, await order_service.get_order(db, ctx, order_id))


@router.put("/{order_id}/items/{item_id}", response_model=OrderDetailResponse)
async def update_order_item(
    order_id: UUID,
    item_id: UUID,
    body: OrderItemUpdateRequest,
    db: AsyncSession = Depends(get_tenant_db),
    ctx: RequestContext = Depends(get_request_context),
):
    await order_service.update_item(
        db, ctx, order_id, item_id, body.quantity, unit_price=body.unit_price, notes=body.notes
    )
    await db.commit()
    return await _detail(db, await order_service.get_order(db, ctx, order_id))


@router.delete("/{order_id}/items/{item_id}", response_model=OrderDetailResponse)
async def remove_order_item(
    order_id: UUID,
    item_id: UUID,
    db: AsyncSession = Depends(get_tenant_db),
    ctx: RequestContext = Depends(get_request_context),
):
    await order_service.remove_item(db, ctx, order_id, item_id)
    await db.commit()
    return await _detail(db, await order_service.get_order(db, ctx, order_id))


@router.post("/{order_id}/send", response_model=OrderDetailResponse)
async def send_order(
    order_id: UUID,
    db: AsyncSession = Depends(get_tenant_db),
    ctx: RequestContext = Depends(get_request_context),
):
    """
    Send a draft order to its supplier.

    The status change is committed first; the supplier email and the
    dashboard notification are fire-and-forget.
    """
    order = await order_service.send_order(db, ctx, order_id)
    await db.commit()

    detail = await _detail(db, order)
    supplier = await db.get(Supplier, order.supplier_id)
    item_names = {}
    for line in detail.lines:
        item = await db.get(Item, line.item_id)
        item_names[line.item_id] = item.name if item else str(line.item_id)

    reference = order.reference or str(order.order_id)[:8]
    await send_order_email(
        to_email=supplier.contact_email if supplier else "",
        reference=reference,
        supplier_name=supplier.name if supplier else "",
        lines=[
            {"name": item_names[line.item_id], "quantity": line.quantity, "unit_price": line.unit_price}
            for line in detail.lines
        ],
        total=detail.total_amount,
    )
    await notify(
        ctx.practice_id,
        "order_sent",
        {
            "order_id": str(order.order_id),
            "reference": reference,
            "supplier_id": str(order.supplier_id),
            "total_amount": detail.total_amount,
        },
    )
    return detail


@router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: UUID,
    db: AsyncSession = Depends(get_tenant_db),
    ctx: RequestContext = Depends(get_request_context),
):
    order = await order_service.cancel_order(db, ctx, order_id)
    await db.commit()
    return order


@router.delete("/{order_id}", status_code=204)
async def delete_order(
    order_id: UUID,
    db: AsyncSession = Depends(get_tenant_db),
    ctx: RequestContext = Depends(get_request_context),
):
    """Hard-delete a draft order."""
    await order_service.delete_order(db, ctx, order_id)
    await db.commit()
    return Response(status_code=204)
