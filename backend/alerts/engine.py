"""
Alert Engine — Low-stock alerts and real-time practice notifications.

Alert Types:
  - low_stock: On-hand quantity at or below the reorder point after a receipt
  - out_of_stock: On-hand quantity is zero

Events are published on the practice's Redis channel
``notifications:{practice_id}`` for the dashboard's live feed:
  - low_stock, order_sent, order_received

Everything here is fire-and-forget from the caller's point of view; a
Redis outage must never fail a receipt or an order transition.
"""

import json
import uuid
from collections.abc import Sequence
from typing import Any

import redis.asyncio as aioredis
import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from db.models import Alert

logger = structlog.get_logger()

OPEN_ALERT_STATUSES = ("open", "acknowledged")


def classify_severity(quantity: int, reorder_point: int) -> str:
    """Severity of a low-stock condition."""
    if quantity <= 0:
        return "critical"
    if quantity <= reorder_point // 2:
        return "high"
    return "medium"


def build_low_stock_alerts(practice_id: uuid.UUID, low_stock_items: Sequence[Any]) -> list[dict[str, Any]]:
    """Alert dicts for items reported low by a receipt confirmation."""
    alerts = []
    for item in low_stock_items:
        alert_type = "out_of_stock" if item.quantity <= 0 else "low_stock"
        alerts.append(
            {
                "practice_id": practice_id,
                "location_id": item.location_id,
                "item_id": item.item_id,
                "alert_type": alert_type,
                "severity": classify_severity(item.quantity, item.reorder_point),
                "message": (
                    f"{item.item_name} is low after receiving. "
                    f"Stock: {item.quantity}, reorder point: {item.reorder_point}"
                ),
                "metadata": {
                    "current_stock": item.quantity,
                    "reorder_point": item.reorder_point,
                },
            }
        )
    return alerts


# ──────────────────────────────────────────────────────────────────────────
# Alert Deduplication
# ──────────────────────────────────────────────────────────────────────────


async def deduplicate_alerts(
    db: AsyncSession,
    new_alerts: list[dict[str, Any]],
) -> list[dict[str, Any]]:
    """
    Filter out alerts that already exist as open for the same
    location + item + alert_type combination.
    """
    if not new_alerts:
        return []

    practice_ids = {a["practice_id"] for a in new_alerts}
    existing = await db.execute(
        select(Alert.location_id, Alert.item_id, Alert.alert_type).where(
            Alert.practice_id.in_(practice_ids),
            Alert.status.in_(OPEN_ALERT_STATUSES),
        )
    )
    existing_keys = {(row.location_id, row.item_id, row.alert_type) for row in existing.all()}

    unique = []
    for alert in new_alerts:
        key = (alert["location_id"], alert["item_id"], alert["alert_type"])
        if key not in existing_keys:
            existing_keys.add(key)
            unique.append(alert)
    return unique


# ──────────────────────────────────────────────────────────────────────────
# Alert Creation + Publishing
# ──────────────────────────────────────────────────────────────────────────


async def create_alerts(
    db: AsyncSession,
    alerts: list[dict[str, Any]],
) -> list[Alert]:
    """Persist alerts and return created records. The caller commits."""
    created = []
    for alert_data in alerts:
        alert = Alert(
            practice_id=alert_data["practice_id"],
            location_id=alert_data["location_id"],
            item_id=alert_data["item_id"],
            alert_type=alert_data["alert_type"],
            severity=alert_data["severity"],
            message=alert_data["message"],
            alert_metadata=alert_data.get("metadata", {}),
        )
        db.add(alert)
        created.append(alert)

    await db.flush()
    return created


async def publish_events(practice_id: uuid.UUID, events: list[dict[str, Any]]) -> int:
    """
    Publish events to the practice's notification channel.
    Returns number of subscribers notified.
    """
    if not events:
        return 0

    settings = get_settings()
    redis = aioredis.from_url(settings.redis_url)
    try:
        channel = f"notifications:{practice_id}"
        total_subs = 0
        for event in events:
            total_subs += await redis.publish(channel, json.dumps(event, default=str))
        return total_subs
    finally:
        await redis.aclose()


async def notify(practice_id: uuid.UUID, event_type: str, payload: dict[str, Any]) -> int:
    """Publish a single event, logging instead of raising on failure."""
    if not get_settings().notifications_enabled:
        return 0
    try:
        return await publish_events(practice_id, [{"type": event_type, "payload": payload}])
    except Exception:
        logger.exception("notifications.publish_failed", practice_id=str(practice_id), event_type=event_type)
        return 0


# ──────────────────────────────────────────────────────────────────────────
# Low-stock pipeline (run after receipt confirmation)
# ──────────────────────────────────────────────────────────────────────────


async def raise_low_stock_alerts(
    db: AsyncSession,
    practice_id: uuid.UUID,
    low_stock_items: Sequence[Any],
) -> list[Alert]:
    """
    1. Build alerts for low items
    2. Deduplicate against open alerts
    3. Persist (flush only)
    4. Publish one low_stock event per new alert
    """
    candidates = build_low_stock_alerts(practice_id, low_stock_items)
    unique = await deduplicate_alerts(db, candidates)
    created = await create_alerts(db, unique)

    if created:
        await notify(
            practice_id,
            "low_stock",
            {
                "items": [
                    {
                        "alert_id": str(alert.alert_id),
                        "alert_type": alert.alert_type,
                        "severity": alert.severity,
                        "message": alert.message,
                        "location_id": str(alert.location_id),
                        "item_id": str(alert.item_id),
                    }
                    for alert in created
                ]
            },
        )
    logger.info(
        "alerts.low_stock_raised",
        practice_id=str(practice_id),
        candidates=len(candidates),
        created=len(created),
    )
    return created
