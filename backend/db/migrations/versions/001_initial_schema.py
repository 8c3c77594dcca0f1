"""
Initial schema - ordering and receiving tables

Revision ID: 001
Revises: None
Create Date: 2026-10-05
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _id(name: str) -> sa.Column:
    return sa.Column(name, UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()"))


def _practice_fk() -> sa.Column:
    return sa.Column("practice_id", UUID(as_uuid=True), sa.ForeignKey("practices.practice_id"), nullable=False)


def upgrade() -> None:
    # 1. Practices
    op.create_table(
        "practices",
        _id("practice_id"),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("status IN ('active', 'inactive', 'trial')", name="ck_practice_status"),
    )

    # 2. Locations
    op.create_table(
        "locations",
        _id("location_id"),
        _practice_fk(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("code", sa.String(50)),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_locations_practice", "locations", ["practice_id"])

    # 3. Suppliers
    op.create_table(
        "suppliers",
        _id("supplier_id"),
        _practice_fk(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("contact_email", sa.String(255)),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("status IN ('active', 'inactive', 'blocked')", name="ck_supplier_status"),
    )
    op.create_index("ix_suppliers_practice", "suppliers", ["practice_id"])

    # 4. Items
    op.create_table(
        "items",
        _id("item_id"),
        _practice_fk(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("sku", sa.String(100)),
        sa.Column("unit", sa.String(50)),
        sa.Column("gtin", sa.String(14)),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("practice_id", "sku", name="uq_item_sku_per_practice"),
    )
    op.create_index("ix_items_practice", "items", ["practice_id"])
    op.create_index("ix_items_gtin", "items", ["practice_id", "gtin"])

    # 5. Location inventory
    op.create_table(
        "location_inventory",
        _id("id"),
        _practice_fk(),
        sa.Column("location_id", UUID(as_uuid=True), sa.ForeignKey("locations.location_id"), nullable=False),
        sa.Column("item_id", UUID(as_uuid=True), sa.ForeignKey("items.item_id"), nullable=False),
        sa.Column("quantity", sa.Integer, nullable=False, server_default="0"),
        sa.Column("reorder_point", sa.Integer),
        sa.Column("reorder_quantity", sa.Integer),
        sa.Column("max_stock", sa.Integer),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("location_id", "item_id", name="uq_inventory_location_item"),
        sa.CheckConstraint("quantity >= 0", name="ck_inventory_qty_nonnegative"),
        sa.CheckConstraint("reorder_point IS NULL OR reorder_point >= 0", name="ck_inventory_reorder_point"),
    )
    op.create_index("ix_inventory_practice", "location_inventory", ["practice_id"])

    # 6. Stock adjustments
    op.create_table(
        "stock_adjustments",
        _id("adjustment_id"),
        _practice_fk(),
        sa.Column("location_id", UUID(as_uuid=True), sa.ForeignKey("locations.location_id"), nullable=False),
        sa.Column("item_id", UUID(as_uuid=True), sa.ForeignKey("items.item_id"), nullable=False),
        sa.Column("quantity", sa.Integer, nullable=False),
        sa.Column("reason", sa.String(50), nullable=False),
        sa.Column("note", sa.Text),
        sa.Column("created_by", sa.String(255)),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index(
        "ix_stock_adjustments_location_item", "stock_adjustments", ["location_id", "item_id", "created_at"]
    )

    # 7. Orders
    op.create_table(
        "orders",
        _id("order_id"),
        _practice_fk(),
        sa.Column("supplier_id", UUID(as_uuid=True), sa.ForeignKey("suppliers.supplier_id")),
        sa.Column("status", sa.String(30), nullable=False, server_default="DRAFT"),
        sa.Column("reference", sa.String(100)),
        sa.Column("notes", sa.Text),
        sa.Column("created_by", sa.String(255)),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("sent_at", sa.DateTime),
        sa.Column("expected_at", sa.Date),
        sa.Column("received_at", sa.DateTime),
        sa.CheckConstraint(
            "status IN ('DRAFT', 'SENT', 'PARTIALLY_RECEIVED', 'RECEIVED', 'CANCELLED')", name="ck_order_status"
        ),
    )
    op.create_index("ix_orders_practice_status", "orders", ["practice_id", "status"])

    # 8. Order lines
    op.create_table(
        "order_lines",
        _id("id"),
        sa.Column(
            "order_id", UUID(as_uuid=True), sa.ForeignKey("orders.order_id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("item_id", UUID(as_uuid=True), sa.ForeignKey("items.item_id"), nullable=False),
        sa.Column("position", sa.Integer, nullable=False, server_default="0"),
        sa.Column("quantity", sa.Integer, nullable=False),
        sa.Column("unit_price", sa.Float),
        sa.Column("notes", sa.Text),
        sa.UniqueConstraint("order_id", "item_id", name="uq_order_line_item"),
        sa.CheckConstraint("quantity > 0", name="ck_order_line_quantity_positive"),
        sa.CheckConstraint("unit_price IS NULL OR unit_price >= 0", name="ck_order_line_price_nonnegative"),
    )

    # 9. Goods receipts
    op.create_table(
        "goods_receipts",
        _id("receipt_id"),
        _practice_fk(),
        sa.Column("location_id", UUID(as_uuid=True), sa.ForeignKey("locations.location_id"), nullable=False),
        sa.Column("order_id", UUID(as_uuid=True), sa.ForeignKey("orders.order_id")),
        sa.Column("supplier_id", UUID(as_uuid=True), sa.ForeignKey("suppliers.supplier_id")),
        sa.Column("status", sa.String(20), nullable=False, server_default="DRAFT"),
        sa.Column("notes", sa.Text),
        sa.Column("created_by", sa.String(255)),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("received_at", sa.DateTime),
        sa.CheckConstraint("status IN ('DRAFT', 'CONFIRMED', 'CANCELLED')", name="ck_receipt_status"),
    )
    op.create_index("ix_receipts_practice_status", "goods_receipts", ["practice_id", "status"])
    op.create_index("ix_receipts_order", "goods_receipts", ["order_id", "status"])

    # 10. Receipt lines
    op.create_table(
        "receipt_lines",
        _id("line_id"),
        sa.Column(
            "receipt_id",
            UUID(as_uuid=True),
            sa.ForeignKey("goods_receipts.receipt_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("item_id", UUID(as_uuid=True), sa.ForeignKey("items.item_id"), nullable=False),
        sa.Column("position", sa.Integer, nullable=False, server_default="0"),
        sa.Column("quantity", sa.Integer, nullable=False),
        sa.Column("batch_number", sa.String(128)),
        sa.Column("expiry_date", sa.Date),
        sa.Column("notes", sa.String(256)),
        sa.Column("scanned_gtin", sa.String(14)),
        sa.Column("is_backorder", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("discrepancy_override", sa.String(20)),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("receipt_id", "item_id", name="uq_receipt_line_item"),
        sa.CheckConstraint("quantity >= 0", name="ck_receipt_line_quantity_nonnegative"),
        sa.CheckConstraint(
            "discrepancy_override IS NULL OR discrepancy_override IN ('DAMAGE', 'SUBSTITUTION')",
            name="ck_receipt_line_override",
        ),
    )
    op.create_index("ix_receipt_lines_receipt", "receipt_lines", ["receipt_id", "position"])

    # 11. Receiving discrepancies
    op.create_table(
        "receiving_discrepancies",
        _id("discrepancy_id"),
        _practice_fk(),
        sa.Column("order_id", UUID(as_uuid=True), sa.ForeignKey("orders.order_id")),
        sa.Column(
            "goods_receipt_id", UUID(as_uuid=True), sa.ForeignKey("goods_receipts.receipt_id"), nullable=False
        ),
        sa.Column("item_id", UUID(as_uuid=True), sa.ForeignKey("items.item_id"), nullable=False),
        sa.Column("supplier_id", UUID(as_uuid=True), sa.ForeignKey("suppliers.supplier_id")),
        sa.Column("discrepancy_type", sa.String(20), nullable=False),
        sa.Column("status", sa.String(30), nullable=False, server_default="OPEN"),
        sa.Column("ordered_qty", sa.Integer, nullable=False),
        sa.Column("received_qty", sa.Integer, nullable=False),
        sa.Column("variance_qty", sa.Integer, nullable=False),
        sa.Column("note", sa.Text),
        sa.Column("resolution_note", sa.Text),
        sa.Column("resolved_by", sa.String(255)),
        sa.Column("resolved_at", sa.DateTime),
        sa.Column("created_by", sa.String(255)),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "discrepancy_type IN ('SHORT', 'OVER', 'DAMAGE', 'SUBSTITUTION')", name="ck_discrepancy_type"
        ),
        sa.CheckConstraint(
            "status IN ('OPEN', 'RESOLVED', 'NEEDS_SUPPLIER_CORRECTION')", name="ck_discrepancy_status"
        ),
    )
    op.create_index("ix_discrepancies_receipt", "receiving_discrepancies", ["goods_receipt_id"])
    op.create_index("ix_discrepancies_practice_status", "receiving_discrepancies", ["practice_id", "status"])

    # 12. Alerts
    op.create_table(
        "alerts",
        _id("alert_id"),
        _practice_fk(),
        sa.Column("location_id", UUID(as_uuid=True), sa.ForeignKey("locations.location_id"), nullable=False),
        sa.Column("item_id", UUID(as_uuid=True), sa.ForeignKey("items.item_id"), nullable=False),
        sa.Column("alert_type", sa.String(50), nullable=False),
        sa.Column("severity", sa.String(20), nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("metadata", JSONB, server_default="{}"),
        sa.Column("status", sa.String(20), nullable=False, server_default="open"),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("resolved_at", sa.DateTime),
        sa.CheckConstraint("alert_type IN ('low_stock', 'out_of_stock')", name="ck_alert_type"),
        sa.CheckConstraint("severity IN ('low', 'medium', 'high', 'critical')", name="ck_alert_severity"),
        sa.CheckConstraint(
            "status IN ('open', 'acknowledged', 'resolved', 'dismissed')", name="ck_alert_status"
        ),
    )
    op.create_index("ix_alerts_practice_status", "alerts", ["practice_id", "status"])


def downgrade() -> None:
    for table in (
        "alerts",
        "receiving_discrepancies",
        "receipt_lines",
        "goods_receipts",
        "order_lines",
        "orders",
        "stock_adjustments",
        "location_inventory",
        "items",
        "suppliers",
        "locations",
        "practices",
    ):
        op.drop_table(table)
