"""Fulfillment collaborator.

Notified after a redemption commits. Delivery is handed to Celery so the
HTTP request never waits on the fulfillment service, and retries belong to
the task, not to the ledger.
"""

import asyncio
from typing import Protocol

from rally_credits.models.redemption import RedemptionRecord


class FulfillmentNotifier(Protocol):
    async def notify(self, record: RedemptionRecord) -> None: ...


def redemption_payload(record: RedemptionRecord) -> dict:
    return {
        "redemption_id": record.id,
        "request_id": record.request_id,
        "user_id": record.user_id,
        "club_id": record.club_id,
        "catalog_item_id": record.catalog_item_id,
        "credits_spent": record.credits_spent,
        "created_at": record.created_at.isoformat(),
    }


class CeleryFulfillmentNotifier:
    async def notify(self, record: RedemptionRecord) -> None:
        from rally_credits.worker import notify_fulfillment

        # .delay() talks to the broker synchronously
        await asyncio.to_thread(notify_fulfillment.delay, redemption_payload(record))
