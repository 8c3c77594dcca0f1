"""
API Integration Tests — Order Workflow.

Tests the draft/send/cancel endpoints with a seeded database.
"""

import pytest
from httpx import AsyncClient


def _order_body(seeded_db, **overrides):
    body = {
        "supplier_id": str(seeded_db["supplier_id"]),
        "reference": "PO-API-1",
        "lines": [
            {"item_id": str(seeded_db["gloves_id"]), "quantity": 10, "unit_price": 4.5},
            {"item_id": str(seeded_db["masks_id"]), "quantity": 2},
        ],
    }
    body.update(overrides)
    return body


@pytest.mark.asyncio
class TestOrdersAPI:

    async def test_health_check(self, client: AsyncClient):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    async def test_list_orders_empty(self, client: AsyncClient, seeded_db):
        response = await client.get("/api/v1/orders/")
        assert response.status_code == 200
        assert response.json() == []

    async def test_create_order(self, client: AsyncClient, seeded_db):
        response = await client.post("/api/v1/orders/", json=_order_body(seeded_db))
        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "DRAFT"
        assert data["reference"] == "PO-API-1"
        assert [line["quantity"] for line in data["lines"]] == [10, 2]
        assert data["total_amount"] == 45.0

    async def test_create_order_requires_lines(self, client: AsyncClient, seeded_db):
        response = await client.post("/api/v1/orders/", json=_order_body(seeded_db, lines=[]))
        assert response.status_code == 422

    async def test_create_order_with_foreign_item(self, client: AsyncClient, seeded_db):
        body = _order_body(seeded_db, lines=[{"item_id": str(seeded_db["other_item_id"]), "quantity": 1}])
        response = await client.post("/api/v1/orders/", json=body)
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_get_order_not_found(self, client: AsyncClient, seeded_db):
        fake_id = "00000000-0000-0000-0000-000000000099"
        response = await client.get(f"/api/v1/orders/{fake_id}")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    async def test_edit_draft_items(self, client: AsyncClient, seeded_db):
        order_id = (await client.post("/api/v1/orders/", json=_order_body(seeded_db))).json()["order_id"]

        response = await client.post(
            f"/api/v1/orders/{order_id}/items",
            json={"item_id": str(seeded_db["syringes_id"]), "quantity": 3},
        )
        assert response.status_code == 201
        assert len(response.json()["lines"]) == 3

        response = await client.put(
            f"/api/v1/orders/{order_id}/items/{seeded_db['masks_id']}",
            json={"quantity": 8},
        )
        assert response.status_code == 200
        quantities = {line["item_id"]: line["quantity"] for line in response.json()["lines"]}
        assert quantities[str(seeded_db["masks_id"])] == 8

        response = await client.delete(f"/api/v1/orders/{order_id}/items/{seeded_db['gloves_id']}")
        assert response.status_code == 200
        assert len(response.json()["lines"]) == 2

    async def test_update_header(self, client: AsyncClient, seeded_db):
        order_id = (await client.post("/api/v1/orders/", json=_order_body(seeded_db))).json()["order_id"]
        response = await client.patch(f"/api/v1/orders/{order_id}", json={"notes": "Deliver to back door"})
        assert response.status_code == 200
        assert response.json()["notes"] == "Deliver to back door"

    async def test_send_order(self, client: AsyncClient, seeded_db, published_events):
        order_id = (await client.post("/api/v1/orders/", json=_order_body(seeded_db))).json()["order_id"]

        response = await client.post(f"/api/v1/orders/{order_id}/send")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "SENT"
        assert data["sent_at"] is not None

        assert [event["type"] for event in published_events] == ["order_sent"]
        assert published_events[0]["payload"]["reference"] == "PO-API-1"

    async def test_sent_order_is_locked(self, client: AsyncClient, seeded_db):
        order_id = (await client.post("/api/v1/orders/", json=_order_body(seeded_db))).json()["order_id"]
        await client.post(f"/api/v1/orders/{order_id}/send")

        response = await client.put(
            f"/api/v1/orders/{order_id}/items/{seeded_db['gloves_id']}",
            json={"quantity": 1},
        )
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "INVALID_STATE"

        response = await client.post(f"/api/v1/orders/{order_id}/send")
        assert response.status_code == 409

    async def test_cancel_and_delete(self, client: AsyncClient, seeded_db):
        order_id = (await client.post("/api/v1/orders/", json=_order_body(seeded_db))).json()["order_id"]

        response = await client.post(f"/api/v1/orders/{order_id}/cancel")
        assert response.status_code == 200
        assert response.json()["status"] == "CANCELLED"

        response = await client.delete(f"/api/v1/orders/{order_id}")
        assert response.status_code == 409

        draft_id = (await client.post("/api/v1/orders/", json=_order_body(seeded_db))).json()["order_id"]
        response = await client.delete(f"/api/v1/orders/{draft_id}")
        assert response.status_code == 204
        assert (await client.get(f"/api/v1/orders/{draft_id}")).status_code == 404

    async def test_list_filters_and_summary(self, client: AsyncClient, seeded_db):
        first = (await client.post("/api/v1/orders/", json=_order_body(seeded_db))).json()["order_id"]
        await client.post("/api/v1/orders/", json=_order_body(seeded_db, reference="PO-API-2"))
        await client.post(f"/api/v1/orders/{first}/send")

        response = await client.get("/api/v1/orders/", params={"status": "SENT"})
        assert [order["order_id"] for order in response.json()] == [first]

        summary = (await client.get("/api/v1/orders/summary")).json()
        assert summary["total"] == 2
        assert summary["SENT"] == 1
        assert summary["DRAFT"] == 1


@pytest.mark.asyncio
class TestLowStockOrdersAPI:

    async def test_drafts_orders_and_reports_skipped(self, client: AsyncClient, seeded_db):
        response = await client.post(
            "/api/v1/orders/from-low-stock",
            json={"item_ids": [str(seeded_db["gloves_id"]), str(seeded_db["syringes_id"])]},
        )
        assert response.status_code == 201
        data = response.json()
        assert data["skipped_items"] == ["Syringes 5ml"]
        [drafted] = data["orders"]
        assert drafted["supplier_name"] == "Dental Supply Co"
        assert drafted["line_count"] == 1

        order = (await client.get(f"/api/v1/orders/{drafted['order_id']}")).json()
        assert order["status"] == "DRAFT"
        assert order["lines"][0]["quantity"] == 20

    async def test_empty_selection_rejected(self, client: AsyncClient, seeded_db):
        response = await client.post("/api/v1/orders/from-low-stock", json={"item_ids": []})
        assert response.status_code == 422


@pytest.mark.asyncio
class TestOrdersAPIPermissions:

    async def test_viewer_cannot_create(self, client: AsyncClient, seeded_db, mock_user):
        mock_user["role"] = "VIEWER"
        response = await client.post("/api/v1/orders/", json=_order_body(seeded_db))
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "FORBIDDEN"

    async def test_viewer_can_read(self, client: AsyncClient, seeded_db, mock_user):
        mock_user["role"] = "VIEWER"
        response = await client.get("/api/v1/orders/")
        assert response.status_code == 200
