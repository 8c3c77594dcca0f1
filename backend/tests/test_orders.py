"""
Tests for the Order Module — draft editing, lifecycle, status derivation.
"""

import uuid

import pytest
from sqlalchemy import select, update

from core.errors import ForbiddenError, InvalidStateError, NotFoundError, ValidationError
from db.models import Item, Location, LocationInventory, Order, OrderLine, OrderStatus, Supplier
from supply_chain import orders
from supply_chain.ledger import LineProgress
from supply_chain.orders import OrderLineInput, derive_status

ITEM_A = uuid.uuid4()
ITEM_B = uuid.uuid4()


def _progress(*entries):
    return {
        item_id: LineProgress(item_id=item_id, ordered=ordered, already_received=received, remaining=max(0, ordered - received))
        for item_id, ordered, received in entries
    }


# ── Status derivation (pure) ───────────────────────────────────────────


class TestDeriveStatus:
    def test_all_remaining_zero_is_received(self):
        assert derive_status("SENT", _progress((ITEM_A, 10, 10))) == "RECEIVED"

    def test_over_received_counts_as_received(self):
        assert derive_status("SENT", _progress((ITEM_A, 5, 7))) == "RECEIVED"

    def test_some_received_is_partial(self):
        assert derive_status("SENT", _progress((ITEM_A, 10, 6), (ITEM_B, 4, 0))) == "PARTIALLY_RECEIVED"

    def test_nothing_received_is_unchanged(self):
        assert derive_status("SENT", _progress((ITEM_A, 10, 0))) == "SENT"

    def test_partial_moves_forward_to_received(self):
        assert derive_status("PARTIALLY_RECEIVED", _progress((ITEM_A, 10, 10))) == "RECEIVED"

    def test_terminal_states_never_regress(self):
        partial = _progress((ITEM_A, 10, 6))
        assert derive_status("RECEIVED", partial) == "RECEIVED"
        assert derive_status("CANCELLED", partial) == "CANCELLED"

    def test_draft_is_not_moved(self):
        assert derive_status("DRAFT", _progress((ITEM_A, 10, 10))) == "DRAFT"

    def test_empty_progress_is_unchanged(self):
        assert derive_status("SENT", {}) == "SENT"


class TestOrderTotal:
    def test_missing_prices_count_as_zero(self):
        lines = [OrderLine(quantity=2, unit_price=3.5), OrderLine(quantity=4, unit_price=None)]
        assert orders.order_total(lines) == 7.0


# ── Draft editing (DB) ─────────────────────────────────────────────────


@pytest.mark.asyncio
class TestOrderDrafts:
    async def test_create_order(self, test_db, ctx, seeded_db):
        order = await orders.create_order(
            test_db,
            ctx,
            supplier_id=seeded_db["supplier_id"],
            lines=[
                OrderLineInput(item_id=seeded_db["gloves_id"], quantity=10, unit_price=4.0),
                OrderLineInput(item_id=seeded_db["masks_id"], quantity=5),
            ],
            reference="PO-1",
        )
        assert order.status == OrderStatus.DRAFT.value
        assert order.created_by == "staff-user"

        lines = await orders.get_order_lines(test_db, order.order_id)
        assert [line.position for line in lines] == [0, 1]
        assert [line.quantity for line in lines] == [10, 5]

    async def test_create_requires_lines(self, test_db, ctx, seeded_db):
        with pytest.raises(ValidationError, match="at least one item"):
            await orders.create_order(test_db, ctx, supplier_id=seeded_db["supplier_id"], lines=[])

    async def test_create_rejects_duplicate_items(self, test_db, ctx, seeded_db):
        line = OrderLineInput(item_id=seeded_db["gloves_id"], quantity=1)
        with pytest.raises(ValidationError, match="only once"):
            await orders.create_order(test_db, ctx, supplier_id=seeded_db["supplier_id"], lines=[line, line])

    async def test_create_rejects_foreign_items(self, test_db, ctx, seeded_db):
        with pytest.raises(ValidationError, match="do not belong"):
            await orders.create_order(
                test_db,
                ctx,
                supplier_id=seeded_db["supplier_id"],
                lines=[OrderLineInput(item_id=seeded_db["other_item_id"], quantity=1)],
            )

    async def test_create_rejects_blocked_supplier(self, test_db, ctx, seeded_db):
        with pytest.raises(ValidationError, match="blocked"):
            await orders.create_order(
                test_db,
                ctx,
                supplier_id=seeded_db["blocked_supplier_id"],
                lines=[OrderLineInput(item_id=seeded_db["gloves_id"], quantity=1)],
            )

    async def test_create_rejects_foreign_supplier(self, test_db, ctx, seeded_db):
        with pytest.raises(NotFoundError):
            await orders.create_order(
                test_db,
                ctx,
                supplier_id=seeded_db["other_supplier_id"],
                lines=[OrderLineInput(item_id=seeded_db["gloves_id"], quantity=1)],
            )

    async def test_viewer_cannot_create(self, test_db, viewer_ctx, seeded_db):
        with pytest.raises(ForbiddenError):
            await orders.create_order(
                test_db,
                viewer_ctx,
                supplier_id=seeded_db["supplier_id"],
                lines=[OrderLineInput(item_id=seeded_db["gloves_id"], quantity=1)],
            )

    async def test_add_update_remove_item(self, test_db, ctx, seeded_db):
        order = await orders.create_order(
            test_db,
            ctx,
            supplier_id=seeded_db["supplier_id"],
            lines=[OrderLineInput(item_id=seeded_db["gloves_id"], quantity=1)],
        )
        line = await orders.add_item(test_db, ctx, order.order_id, seeded_db["masks_id"], 3, unit_price=2.5)
        assert line.position == 1

        updated = await orders.update_item(test_db, ctx, order.order_id, seeded_db["masks_id"], 6)
        assert updated.quantity == 6
        assert updated.unit_price == 2.5

        await orders.remove_item(test_db, ctx, order.order_id, seeded_db["gloves_id"])
        lines = await orders.get_order_lines(test_db, order.order_id)
        assert [line.item_id for line in lines] == [seeded_db["masks_id"]]

    async def test_add_item_rejects_duplicates(self, test_db, ctx, seeded_db):
        order = await orders.create_order(
            test_db,
            ctx,
            supplier_id=seeded_db["supplier_id"],
            lines=[OrderLineInput(item_id=seeded_db["gloves_id"], quantity=1)],
        )
        with pytest.raises(ValidationError, match="already in order"):
            await orders.add_item(test_db, ctx, order.order_id, seeded_db["gloves_id"], 2)

    async def test_add_item_rejects_zero_quantity(self, test_db, ctx, seeded_db):
        order = await orders.create_order(
            test_db,
            ctx,
            supplier_id=seeded_db["supplier_id"],
            lines=[OrderLineInput(item_id=seeded_db["gloves_id"], quantity=1)],
        )
        with pytest.raises(ValidationError):
            await orders.add_item(test_db, ctx, order.order_id, seeded_db["masks_id"], 0)

    async def test_update_missing_item_is_not_found(self, test_db, ctx, seeded_db):
        order = await orders.create_order(
            test_db,
            ctx,
            supplier_id=seeded_db["supplier_id"],
            lines=[OrderLineInput(item_id=seeded_db["gloves_id"], quantity=1)],
        )
        with pytest.raises(NotFoundError):
            await orders.update_item(test_db, ctx, order.order_id, seeded_db["masks_id"], 2)

    async def test_other_practice_cannot_see_order(self, test_db, ctx, other_ctx, seeded_db):
        order = await orders.create_order(
            test_db,
            ctx,
            supplier_id=seeded_db["supplier_id"],
            lines=[OrderLineInput(item_id=seeded_db["gloves_id"], quantity=1)],
        )
        with pytest.raises(NotFoundError):
            await orders.get_order(test_db, other_ctx, order.order_id)


# ── Lifecycle (DB) ─────────────────────────────────────────────────────


@pytest.mark.asyncio
class TestOrderLifecycle:
    async def test_send_locks_edits(self, test_db, ctx, seeded_db, sent_order):
        order_id = await sent_order({"gloves_id": 10})
        order = await orders.get_order(test_db, ctx, order_id)
        assert order.status == OrderStatus.SENT.value
        assert order.sent_at is not None

        with pytest.raises(InvalidStateError, match="sent or received"):
            await orders.add_item(test_db, ctx, order_id, seeded_db["masks_id"], 1)
        with pytest.raises(InvalidStateError):
            await orders.update_item(test_db, ctx, order_id, seeded_db["gloves_id"], 3)
        with pytest.raises(InvalidStateError):
            await orders.remove_item(test_db, ctx, order_id, seeded_db["gloves_id"])

    async def test_send_twice_fails(self, test_db, ctx, sent_order):
        order_id = await sent_order({"gloves_id": 10})
        with pytest.raises(InvalidStateError, match="Only draft orders"):
            await orders.send_order(test_db, ctx, order_id)

    async def test_send_without_lines_fails(self, test_db, ctx, seeded_db):
        order = await orders.create_order(
            test_db,
            ctx,
            supplier_id=seeded_db["supplier_id"],
            lines=[OrderLineInput(item_id=seeded_db["gloves_id"], quantity=1)],
        )
        await orders.remove_item(test_db, ctx, order.order_id, seeded_db["gloves_id"])
        with pytest.raises(InvalidStateError, match="at least one item"):
            await orders.send_order(test_db, ctx, order.order_id)

    async def test_cancel_from_draft_and_sent(self, test_db, ctx, seeded_db, sent_order):
        draft = await orders.create_order(
            test_db,
            ctx,
            supplier_id=seeded_db["supplier_id"],
            lines=[OrderLineInput(item_id=seeded_db["gloves_id"], quantity=1)],
        )
        assert (await orders.cancel_order(test_db, ctx, draft.order_id)).status == "CANCELLED"

        sent_id = await sent_order({"masks_id": 2})
        assert (await orders.cancel_order(test_db, ctx, sent_id)).status == "CANCELLED"

    async def test_cancel_twice_fails(self, test_db, ctx, sent_order):
        order_id = await sent_order({"gloves_id": 1})
        await orders.cancel_order(test_db, ctx, order_id)
        with pytest.raises(InvalidStateError):
            await orders.cancel_order(test_db, ctx, order_id)

    async def test_delete_draft_removes_lines(self, test_db, ctx, seeded_db):
        order = await orders.create_order(
            test_db,
            ctx,
            supplier_id=seeded_db["supplier_id"],
            lines=[OrderLineInput(item_id=seeded_db["gloves_id"], quantity=1)],
        )
        order_id = order.order_id
        await orders.delete_order(test_db, ctx, order_id)

        assert (await test_db.execute(select(Order).where(Order.order_id == order_id))).first() is None
        assert (await test_db.execute(select(OrderLine).where(OrderLine.order_id == order_id))).first() is None

    async def test_delete_sent_order_fails(self, test_db, ctx, sent_order):
        order_id = await sent_order({"gloves_id": 1})
        with pytest.raises(InvalidStateError, match="Can only delete draft orders"):
            await orders.delete_order(test_db, ctx, order_id)

    async def test_recompute_sets_received_at_once(self, test_db, ctx, sent_order, seeded_db):
        order_id = await sent_order({"gloves_id": 4})
        progress = _progress((seeded_db["gloves_id"], 4, 4))

        order = await orders.recompute_status_from_receipts(test_db, ctx, order_id, progress)
        assert order.status == "RECEIVED"
        first_received_at = order.received_at
        assert first_received_at is not None

        order = await orders.recompute_status_from_receipts(test_db, ctx, order_id, progress)
        assert order.received_at == first_received_at

    async def test_summary_counts(self, test_db, ctx, seeded_db, sent_order):
        await sent_order({"gloves_id": 1})
        await orders.create_order(
            test_db,
            ctx,
            supplier_id=seeded_db["supplier_id"],
            lines=[OrderLineInput(item_id=seeded_db["masks_id"], quantity=1)],
        )
        summary = await orders.order_summary(test_db, ctx)
        assert summary["SENT"] == 1
        assert summary["DRAFT"] == 1
        assert summary["total"] == 2


@pytest.mark.asyncio
class TestLowStockReordering:
    async def test_drafts_order_for_default_supplier(self, test_db, ctx, seeded_db):
        result = await orders.create_orders_from_low_stock(test_db, ctx, [seeded_db["gloves_id"]])

        [drafted] = result.orders
        assert drafted.supplier_id == seeded_db["supplier_id"]
        assert drafted.supplier_name == "Dental Supply Co"
        assert result.skipped_items == []

        order = await orders.get_order(test_db, ctx, drafted.order_id)
        assert order.status == "DRAFT"
        assert order.notes == "Created from low-stock items"
        [line] = await orders.get_order_lines(test_db, drafted.order_id)
        assert (line.item_id, line.quantity) == (seeded_db["gloves_id"], 20)

    async def test_reorder_quantity_summed_over_low_locations(self, test_db, ctx, seeded_db):
        await test_db.execute(
            update(LocationInventory)
            .where(LocationInventory.item_id == seeded_db["gloves_id"])
            .values(reorder_quantity=40)
        )
        annex = Location(practice_id=seeded_db["practice_id"], name="Annex")
        test_db.add(annex)
        await test_db.flush()
        test_db.add(
            LocationInventory(
                practice_id=seeded_db["practice_id"],
                location_id=annex.location_id,
                item_id=seeded_db["gloves_id"],
                quantity=0,
                reorder_point=5,
            )
        )
        await test_db.flush()

        result = await orders.create_orders_from_low_stock(test_db, ctx, [seeded_db["gloves_id"]])
        [line] = await orders.get_order_lines(test_db, result.orders[0].order_id)
        assert line.quantity == 45

    async def test_items_without_default_supplier_are_skipped(self, test_db, ctx, seeded_db):
        result = await orders.create_orders_from_low_stock(
            test_db, ctx, [seeded_db["gloves_id"], seeded_db["syringes_id"]]
        )
        assert result.skipped_items == ["Syringes 5ml"]
        assert [o.line_count for o in result.orders] == [1]

    async def test_items_not_low_are_left_out(self, test_db, ctx, seeded_db):
        result = await orders.create_orders_from_low_stock(test_db, ctx, [seeded_db["masks_id"]])
        assert result.orders == []
        assert result.skipped_items == []

    async def test_one_order_per_supplier(self, test_db, ctx, seeded_db):
        depot = Supplier(practice_id=seeded_db["practice_id"], name="Mask Depot")
        test_db.add(depot)
        await test_db.flush()
        await test_db.execute(
            update(Item).where(Item.item_id == seeded_db["masks_id"]).values(default_supplier_id=depot.supplier_id)
        )
        await test_db.execute(
            update(LocationInventory).where(LocationInventory.item_id == seeded_db["masks_id"]).values(quantity=4)
        )

        result = await orders.create_orders_from_low_stock(
            test_db, ctx, [seeded_db["gloves_id"], seeded_db["masks_id"]]
        )

        by_supplier = {o.supplier_id: o for o in result.orders}
        assert set(by_supplier) == {seeded_db["supplier_id"], depot.supplier_id}
        [masks_line] = await orders.get_order_lines(test_db, by_supplier[depot.supplier_id].order_id)
        assert (masks_line.item_id, masks_line.quantity) == (seeded_db["masks_id"], 10)

    async def test_blocked_default_supplier_is_skipped(self, test_db, ctx, seeded_db):
        await test_db.execute(
            update(Item)
            .where(Item.item_id == seeded_db["gloves_id"])
            .values(default_supplier_id=seeded_db["blocked_supplier_id"])
        )
        result = await orders.create_orders_from_low_stock(test_db, ctx, [seeded_db["gloves_id"]])
        assert result.orders == []
        assert result.skipped_items == ["Nitrile Gloves"]

    async def test_requires_a_selection(self, test_db, ctx, seeded_db):
        with pytest.raises(ValidationError, match="No items selected"):
            await orders.create_orders_from_low_stock(test_db, ctx, [])

    async def test_foreign_item_rejected(self, test_db, ctx, seeded_db):
        with pytest.raises(ValidationError):
            await orders.create_orders_from_low_stock(test_db, ctx, [seeded_db["other_item_id"]])

    async def test_viewer_cannot_reorder(self, test_db, viewer_ctx, seeded_db):
        with pytest.raises(ForbiddenError):
            await orders.create_orders_from_low_stock(test_db, viewer_ctx, [seeded_db["gloves_id"]])
