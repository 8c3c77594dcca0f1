"""
PracticeOps Database Models

Procurement, receiving and stock tables for the practice dashboard.
Multi-tenant via practice_id on all tenant-owned tables.

Tables:
  Tenancy & catalog (1-4):
  1. practices               - Tenant organizations
  2. locations               - Storage locations within a practice
  3. suppliers               - Practice suppliers
  4. items                   - Opaque inventory items (name, sku, unit, gtin, default supplier)

  Stock (5-6):
  5. location_inventory      - On-hand quantity + reorder thresholds per (location, item)
  6. stock_adjustments       - Append-only stock movement audit trail

  Procurement (7-8):
  7. orders                  - Purchase orders to one supplier
  8. order_lines             - One line per (order, item)

  Receiving (9-11):
  9. goods_receipts          - One physical delivery event
  10. receipt_lines          - One line per (receipt, item), ordered by position
  11. receiving_discrepancies - Logged ordered-vs-received mismatches

  Notifications (12):
  12. alerts                 - Low-stock alerts raised by receipt confirmation
"""

import uuid
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    types,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL UUID when available, stores as CHAR(36) on SQLite.
    """

    impl = types.String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(types.String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value) if isinstance(value, uuid.UUID) else str(uuid.UUID(str(value)))

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


# Alias so Column(UUID(as_uuid=True)) reads like the PostgreSQL dialect type
def UUID(as_uuid=True):
    return GUID()


from db.session import Base

# ─── Status vocabularies ────────────────────────────────────────────────────


class OrderStatus(str, PyEnum):
    DRAFT = "DRAFT"
    SENT = "SENT"
    PARTIALLY_RECEIVED = "PARTIALLY_RECEIVED"
    RECEIVED = "RECEIVED"
    CANCELLED = "CANCELLED"


class ReceiptStatus(str, PyEnum):
    DRAFT = "DRAFT"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


class DiscrepancyStatus(str, PyEnum):
    OPEN = "OPEN"
    RESOLVED = "RESOLVED"
    NEEDS_SUPPLIER_CORRECTION = "NEEDS_SUPPLIER_CORRECTION"


def _in_clause(column: str, enum_cls) -> str:
    values = ", ".join(f"'{member.value}'" for member in enum_cls)
    return f"{column} IN ({values})"


# ─── 1. Practices ──────────────────────────────────────────────────────────


class Practice(Base):
    __tablename__ = "practices"

    practice_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default="active")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (CheckConstraint("status IN ('active', 'inactive', 'trial')", name="ck_practice_status"),)


# ─── 2. Locations ──────────────────────────────────────────────────────────


class Location(Base):
    __tablename__ = "locations"

    location_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    practice_id = Column(UUID(as_uuid=True), ForeignKey("practices.practice_id"), nullable=False)
    name = Column(String(255), nullable=False)
    code = Column(String(50))
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (Index("ix_locations_practice", "practice_id"),)


# ─── 3. Suppliers ──────────────────────────────────────────────────────────


class Supplier(Base):
    __tablename__ = "suppliers"

    supplier_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    practice_id = Column(UUID(as_uuid=True), ForeignKey("practices.practice_id"), nullable=False)
    name = Column(String(255), nullable=False)
    contact_email = Column(String(255))
    status = Column(String(20), nullable=False, default="active")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_suppliers_practice", "practice_id"),
        CheckConstraint("status IN ('active', 'inactive', 'blocked')", name="ck_supplier_status"),
    )


# ─── 4. Items ──────────────────────────────────────────────────────────────


class Item(Base):
    __tablename__ = "items"

    item_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    practice_id = Column(UUID(as_uuid=True), ForeignKey("practices.practice_id"), nullable=False)
    name = Column(String(255), nullable=False)
    sku = Column(String(100))
    unit = Column(String(50))  # unit-of-measure hint, e.g. "box", "vial"
    gtin = Column(String(14))  # GS1 Global Trade Item Number
    default_supplier_id = Column(UUID(as_uuid=True), ForeignKey("suppliers.supplier_id"))
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("practice_id", "sku", name="uq_item_sku_per_practice"),
        Index("ix_items_practice", "practice_id"),
        Index("ix_items_gtin", "practice_id", "gtin"),
    )


# ─── 5. Location Inventory ─────────────────────────────────────────────────


class LocationInventory(Base):
    """On-hand stock for one item at one location. Written only by receipt confirmation."""

    __tablename__ = "location_inventory"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    practice_id = Column(UUID(as_uuid=True), ForeignKey("practices.practice_id"), nullable=False)
    location_id = Column(UUID(as_uuid=True), ForeignKey("locations.location_id"), nullable=False)
    item_id = Column(UUID(as_uuid=True), ForeignKey("items.item_id"), nullable=False)
    quantity = Column(Integer, nullable=False, default=0)
    reorder_point = Column(Integer)
    reorder_quantity = Column(Integer)
    max_stock = Column(Integer)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("location_id", "item_id", name="uq_inventory_location_item"),
        Index("ix_inventory_practice", "practice_id"),
        CheckConstraint("quantity >= 0", name="ck_inventory_qty_nonnegative"),
        CheckConstraint("reorder_point IS NULL OR reorder_point >= 0", name="ck_inventory_reorder_point"),
    )


# ─── 6. Stock Adjustments ──────────────────────────────────────────────────


class StockAdjustment(Base):
    __tablename__ = "stock_adjustments"

    adjustment_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    practice_id = Column(UUID(as_uuid=True), ForeignKey("practices.practice_id"), nullable=False)
    location_id = Column(UUID(as_uuid=True), ForeignKey("locations.location_id"), nullable=False)
    item_id = Column(UUID(as_uuid=True), ForeignKey("items.item_id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    reason = Column(String(50), nullable=False)
    note = Column(Text)
    created_by = Column(String(255))
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (Index("ix_stock_adjustments_location_item", "location_id", "item_id", "created_at"),)


# ─── 7. Orders ─────────────────────────────────────────────────────────────


class Order(Base):
    __tablename__ = "orders"

    order_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    practice_id = Column(UUID(as_uuid=True), ForeignKey("practices.practice_id"), nullable=False)
    supplier_id = Column(UUID(as_uuid=True), ForeignKey("suppliers.supplier_id"), nullable=True)
    status = Column(String(30), nullable=False, default=OrderStatus.DRAFT.value)
    reference = Column(String(100))
    notes = Column(Text)
    created_by = Column(String(255))
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
    sent_at = Column(DateTime)
    expected_at = Column(Date)
    received_at = Column(DateTime)

    __table_args__ = (
        Index("ix_orders_practice_status", "practice_id", "status"),
        CheckConstraint(_in_clause("status", OrderStatus), name="ck_order_status"),
    )


# ─── 8. Order Lines ────────────────────────────────────────────────────────


class OrderLine(Base):
    __tablename__ = "order_lines"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order_id = Column(UUID(as_uuid=True), ForeignKey("orders.order_id", ondelete="CASCADE"), nullable=False)
    item_id = Column(UUID(as_uuid=True), ForeignKey("items.item_id"), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Float)
    notes = Column(Text)

    __table_args__ = (
        UniqueConstraint("order_id", "item_id", name="uq_order_line_item"),
        CheckConstraint("quantity > 0", name="ck_order_line_quantity_positive"),
        CheckConstraint("unit_price IS NULL OR unit_price >= 0", name="ck_order_line_price_nonnegative"),
    )


# ─── 9. Goods Receipts ─────────────────────────────────────────────────────


class GoodsReceipt(Base):
    __tablename__ = "goods_receipts"

    receipt_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    practice_id = Column(UUID(as_uuid=True), ForeignKey("practices.practice_id"), nullable=False)
    location_id = Column(UUID(as_uuid=True), ForeignKey("locations.location_id"), nullable=False)
    order_id = Column(UUID(as_uuid=True), ForeignKey("orders.order_id"), nullable=True)
    supplier_id = Column(UUID(as_uuid=True), ForeignKey("suppliers.supplier_id"), nullable=True)
    status = Column(String(20), nullable=False, default=ReceiptStatus.DRAFT.value)
    notes = Column(Text)
    created_by = Column(String(255))
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    received_at = Column(DateTime)

    __table_args__ = (
        Index("ix_receipts_practice_status", "practice_id", "status"),
        Index("ix_receipts_order", "order_id", "status"),
        CheckConstraint(_in_clause("status", ReceiptStatus), name="ck_receipt_status"),
    )


# ─── 10. Receipt Lines ─────────────────────────────────────────────────────


class ReceiptLine(Base):
    __tablename__ = "receipt_lines"

    line_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    receipt_id = Column(
        UUID(as_uuid=True), ForeignKey("goods_receipts.receipt_id", ondelete="CASCADE"), nullable=False
    )
    item_id = Column(UUID(as_uuid=True), ForeignKey("items.item_id"), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    quantity = Column(Integer, nullable=False)
    batch_number = Column(String(128))
    expiry_date = Column(Date)
    notes = Column(String(256))
    scanned_gtin = Column(String(14))
    is_backorder = Column(Boolean, nullable=False, default=False)
    discrepancy_override = Column(String(20))  # DAMAGE / SUBSTITUTION, set by an operator
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("receipt_id", "item_id", name="uq_receipt_line_item"),
        Index("ix_receipt_lines_receipt", "receipt_id", "position"),
        CheckConstraint("quantity >= 0", name="ck_receipt_line_quantity_nonnegative"),
        CheckConstraint(
            "discrepancy_override IS NULL OR discrepancy_override IN ('DAMAGE', 'SUBSTITUTION')",
            name="ck_receipt_line_override",
        ),
    )


# ─── 11. Receiving Discrepancies ───────────────────────────────────────────


class ReceivingDiscrepancy(Base):
    """Tracks ordered-vs-received mismatches for supplier accountability."""

    __tablename__ = "receiving_discrepancies"

    discrepancy_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    practice_id = Column(UUID(as_uuid=True), ForeignKey("practices.practice_id"), nullable=False)
    order_id = Column(UUID(as_uuid=True), ForeignKey("orders.order_id"), nullable=True)
    goods_receipt_id = Column(UUID(as_uuid=True), ForeignKey("goods_receipts.receipt_id"), nullable=False)
    item_id = Column(UUID(as_uuid=True), ForeignKey("items.item_id"), nullable=False)
    supplier_id = Column(UUID(as_uuid=True), ForeignKey("suppliers.supplier_id"), nullable=True)
    discrepancy_type = Column(String(20), nullable=False)
    status = Column(String(30), nullable=False, default=DiscrepancyStatus.OPEN.value)
    ordered_qty = Column(Integer, nullable=False)
    received_qty = Column(Integer, nullable=False)
    variance_qty = Column(Integer, nullable=False)  # received - ordered
    note = Column(Text)
    resolution_note = Column(Text)
    resolved_by = Column(String(255))
    resolved_at = Column(DateTime)
    created_by = Column(String(255))
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_discrepancies_receipt", "goods_receipt_id"),
        Index("ix_discrepancies_practice_status", "practice_id", "status"),
        CheckConstraint(
            "discrepancy_type IN ('SHORT', 'OVER', 'DAMAGE', 'SUBSTITUTION')", name="ck_discrepancy_type"
        ),
        CheckConstraint(_in_clause("status", DiscrepancyStatus), name="ck_discrepancy_status"),
    )


# ─── 12. Alerts ────────────────────────────────────────────────────────────


class Alert(Base):
    __tablename__ = "alerts"

    alert_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    practice_id = Column(UUID(as_uuid=True), ForeignKey("practices.practice_id"), nullable=False)
    location_id = Column(UUID(as_uuid=True), ForeignKey("locations.location_id"), nullable=False)
    item_id = Column(UUID(as_uuid=True), ForeignKey("items.item_id"), nullable=False)
    alert_type = Column(String(50), nullable=False)
    severity = Column(String(20), nullable=False)
    message = Column(Text, nullable=False)
    alert_metadata = Column("metadata", JSON, default=dict)
    status = Column(String(20), nullable=False, default="open")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    resolved_at = Column(DateTime)

    __table_args__ = (
        Index("ix_alerts_practice_status", "practice_id", "status"),
        CheckConstraint("alert_type IN ('low_stock', 'out_of_stock')", name="ck_alert_type"),
        CheckConstraint("severity IN ('low', 'medium', 'high', 'critical')", name="ck_alert_severity"),
        CheckConstraint("status IN ('open', 'acknowledged', 'resolved', 'dismissed')", name="ck_alert_status"),
    )
