"""Row-level security on practice-scoped tables

Every table carrying practice_id is filtered by the
``app.current_practice_id`` setting that api.deps.get_tenant_db sets per
request. FORCE keeps the table owner from bypassing the policy.

Revision ID: 002
Revises: 001
Create Date: 2026-10-05
"""

from collections.abc import Sequence

from alembic import op

revision: str = "002"
down_revision: str | None = "001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

TENANT_TABLES = [
    "locations",
    "suppliers",
    "items",
    "location_inventory",
    "stock_adjustments",
    "orders",
    "goods_receipts",
    "receiving_discrepancies",
    "alerts",
]


def upgrade() -> None:
    for table in TENANT_TABLES:
        op.execute(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY")
        op.execute(f"ALTER TABLE {table} FORCE ROW LEVEL SECURITY")
        op.execute(
            f"CREATE POLICY tenant_isolation ON {table} "
            f"USING (practice_id::text = current_setting('app.current_practice_id', true))"
        )


def downgrade() -> None:
    for table in TENANT_TABLES:
        op.execute(f"DROP POLICY IF EXISTS tenant_isolation ON {table}")
        op.execute(f"ALTER TABLE {table} NO FORCE ROW LEVEL SECURITY")
        op.execute(f"ALTER TABLE {table} DISABLE ROW LEVEL SECURITY")
