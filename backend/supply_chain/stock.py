"""
Stock Ledger — the single writer of on-hand stock.

Per-(location, item) quantity is the one shared mutable resource in the
receiving workflow. Only goods-receipt confirmation holds a StockLedger;
increments are applied with an in-database ``quantity = quantity + n`` so
two receipts confirming concurrently for the same item never lose an
update.

Any database failure while incrementing is raised as a critical
DependencyFailure, which aborts the enclosing confirmation.
"""

import uuid
from collections.abc import Iterable
from dataclasses import dataclass

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import DependencyFailure
from db.models import LocationInventory, StockAdjustment

logger = structlog.get_logger()


@dataclass(frozen=True)
class StockLevel:
    item_id: uuid.UUID
    location_id: uuid.UUID
    quantity: int
    reorder_point: int | None

    @property
    def is_low(self) -> bool:
        return self.reorder_point is not None and self.quantity <= self.reorder_point


class StockLedger:
    """Stock reads and increments scoped to one practice."""

    def __init__(self, db: AsyncSession, practice_id: uuid.UUID, actor: str | None = None):
        self.db = db
        self.practice_id = practice_id
        self.actor = actor

    async def get_stock_levels(self, location_id: uuid.UUID, item_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, StockLevel]:
        """Batch fetch current stock for items at one location (items without a row are omitted)."""
        ids = list(set(item_ids))
        if not ids:
            return {}
        result = await self.db.execute(
            select(LocationInventory.item_id, LocationInventory.quantity, LocationInventory.reorder_point).where(
                LocationInventory.practice_id == self.practice_id,
                LocationInventory.location_id == location_id,
                LocationInventory.item_id.in_(ids),
            )
        )
        return {
            row.item_id: StockLevel(
                item_id=row.item_id,
                location_id=location_id,
                quantity=row.quantity,
                reorder_point=row.reorder_point,
            )
            for row in result.all()
        }

    async def get_stock_level(self, item_id: uuid.UUID, location_id: uuid.UUID) -> int:
        levels = await self.get_stock_levels(location_id, [item_id])
        level = levels.get(item_id)
        return level.quantity if level else 0

    async def get_reorder_threshold(self, item_id: uuid.UUID, location_id: uuid.UUID) -> int | None:
        levels = await self.get_stock_levels(location_id, [item_id])
        level = levels.get(item_id)
        return level.reorder_point if level else None

    async def increment(
        self,
        item_id: uuid.UUID,
        location_id: uuid.UUID,
        quantity: int,
        note: str | None = None,
    ) -> StockLevel:
        """Add ``quantity`` to on-hand stock, record an adjustment, and return the new level."""
        if quantity <= 0:
            raise ValueError("Stock increments must be positive")

        try:
            result = await self.db.execute(
                update(LocationInventory)
                .where(
                    LocationInventory.practice_id == self.practice_id,
                    LocationInventory.location_id == location_id,
                    LocationInventory.item_id == item_id,
                )
                .values(quantity=LocationInventory.quantity + quantity)
            )
            if result.rowcount == 0:
                self.db.add(
                    LocationInventory(
                        practice_id=self.practice_id,
                        location_id=location_id,
                        item_id=item_id,
                        quantity=quantity,
                    )
                )

            self.db.add(
                StockAdjustment(
                    practice_id=self.practice_id,
                    location_id=location_id,
                    item_id=item_id,
                    quantity=quantity,
                    reason="Goods Receipt",
                    note=note,
                    created_by=self.actor,
                )
            )
            await self.db.flush()

            row = (
                await self.db.execute(
                    select(LocationInventory.quantity, LocationInventory.reorder_point).where(
                        LocationInventory.location_id == location_id,
                        LocationInventory.item_id == item_id,
                    )
                )
            ).one()
        except SQLAlchemyError as exc:
            logger.error(
                "stock.increment_failed",
                practice_id=str(self.practice_id),
                location_id=str(location_id),
                item_id=str(item_id),
                quantity=quantity,
                error=str(exc),
            )
            raise DependencyFailure(
                "Failed to update stock level",
                dependency="stock",
                critical=True,
                details={"item_id": str(item_id), "location_id": str(location_id)},
            ) from exc

        return StockLevel(
            item_id=item_id,
            location_id=location_id,
            quantity=row.quantity,
            reorder_point=row.reorder_point,
        )
