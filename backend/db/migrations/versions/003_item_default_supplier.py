"""Default supplier per item

Low-stock reordering groups items into one draft order per default supplier.

Revision ID: 003
Revises: 002
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import UUID

revision: str = "003"
down_revision: str | None = "002"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.add_column(
        "items",
        sa.Column("default_supplier_id", UUID(as_uuid=True), sa.ForeignKey("suppliers.supplier_id"), nullable=True),
    )


def downgrade() -> None:
    op.drop_column("items", "default_supplier_id")
