"""Redemption engine.

Spends available credits on a catalog item exactly once per request id.
The whole read-check-write runs in one unit: the balance is re-derived from
the log after the account row is locked, so two redemptions racing for the
same credits cannot both pass the check. The loser's versioned account
update fails, its unit is re-run, and it then sees the post-commit balance.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rally_credits.models.credit import TransactionType
from rally_credits.models.redemption import RedemptionRecord, RedemptionStatus
from rally_credits.services.catalog import get_catalog_item
from rally_credits.services.errors import IdempotencyConflict, ItemInactive
from rally_credits.services.fulfillment import FulfillmentNotifier
from rally_credits.services.ledger import CreditLedger, debit_available, lock_account

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RedemptionResult:
    record: RedemptionRecord
    replayed: bool = False


class RedemptionEngine:
    def __init__(self, ledger: CreditLedger, fulfillment: FulfillmentNotifier | None = None):
        self.ledger = ledger
        self.fulfillment = fulfillment

    async def redeem(self, user_id: str, club_id: str, catalog_item_id: int, request_id: str) -> RedemptionResult:
        """Redeem ``catalog_item_id`` for ``user_id``.

        A request id seen before returns the original record with
        ``replayed=True``, even if the item was deactivated since. Otherwise
        raises NotFound, ItemInactive or InsufficientBalance, committing
        nothing.
        """

        async def work(db: AsyncSession) -> RedemptionResult:
            result = await db.execute(select(RedemptionRecord).where(RedemptionRecord.request_id == request_id))
            existing = result.scalar_one_or_none()
            if existing is not None:
                if (existing.user_id, existing.club_id, existing.catalog_item_id) != (
                    user_id,
                    club_id,
                    catalog_item_id,
                ):
                    raise IdempotencyConflict(request_id)
                # Already paid for, so the item's current state no longer matters
                return RedemptionResult(record=existing, replayed=True)

            item = await get_catalog_item(db, club_id, catalog_item_id)
            if not item.active:
                raise ItemInactive(catalog_item_id)

            account = await lock_account(db, user_id, club_id)
            txn = await debit_available(
                db,
                account,
                TransactionType.REDEEMED,
                item.credits_required,
                f"Redeemed {item.name}",
                redemption_request_id=request_id,
            )
            record = RedemptionRecord(
                user_id=user_id,
                club_id=club_id,
                catalog_item_id=item.id,
                request_id=request_id,
                credits_spent=item.credits_required,
                status=RedemptionStatus.COMMITTED,
                transaction_id=txn.id,
            )
            db.add(record)
            await db.flush()
            return RedemptionResult(record=record)

        outcome = await self.ledger.run(work, f"redeem {request_id}")
        if outcome.replayed:
            logger.info("Replayed redemption %s for user=%s", request_id, user_id)
            return outcome

        logger.info(
            "User %s redeemed item %s for %d credits at club %s",
            user_id,
            catalog_item_id,
            outcome.record.credits_spent,
            club_id,
        )
        await self._notify(outcome.record)
        return outcome

    async def _notify(self, record: RedemptionRecord) -> None:
        if self.fulfillment is None:
            return
        try:
            await self.fulfillment.notify(record)
        except Exception:
            # The ledger entry stands, fulfillment retries on its own side
            logger.exception("Fulfillment notification failed for redemption %s", record.request_id)

    async def list_redemptions(self, club_id: str, user_id: str | None = None) -> list[RedemptionRecord]:
        """Newest first. Without ``user_id`` every record for the club is returned."""

        async def work(db: AsyncSession) -> list[RedemptionRecord]:
            stmt = select(RedemptionRecord).where(RedemptionRecord.club_id == club_id)
            if user_id is not None:
                stmt = stmt.where(RedemptionRecord.user_id == user_id)
            result = await db.execute(stmt.order_by(RedemptionRecord.created_at.desc(), RedemptionRecord.id.desc()))
            return list(result.scalars().all())

        return await self.ledger.run(work, "list redemptions")
