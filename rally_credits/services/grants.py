"""Pending grant tracker.

A grant is created when the checkout collaborator issues a ticket and is
resolved exactly once: confirmed when attendance is verified, or
forfeited_pending when the user did not attend, left the event, or the
grant expired. The ``resolved`` flag is flipped by a conditional UPDATE in
the same transaction as the log entry, so a second resolver finds no row to
update and backs off.
"""

import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rally_credits.models.base import utcnow
from rally_credits.models.credit import CreditTransaction, GrantResolution, PendingGrant, TransactionType
from rally_credits.services.ledger import CreditLedger, append_transaction, lock_account, project_balance

logger = logging.getLogger(__name__)


async def _claim_grant(db: AsyncSession, grant_id: int, resolution: GrantResolution) -> PendingGrant | None:
    """Flip an unresolved grant to resolved. None when someone else got there first."""
    result = await db.execute(
        update(PendingGrant)
        .where(PendingGrant.id == grant_id, PendingGrant.resolved.is_(False))
        .values(resolved=True, resolution=resolution, resolved_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        return None
    grant = await db.get(PendingGrant, grant_id, populate_existing=True)
    return grant


async def resolve_grant_in_unit(
    db: AsyncSession,
    grant_id: int,
    resolution: GrantResolution,
    description: str,
) -> CreditTransaction | None:
    grant = await _claim_grant(db, grant_id, resolution)
    if grant is None:
        return None

    account = await lock_account(db, grant.user_id, grant.club_id)
    if resolution == GrantResolution.CONFIRMED:
        txn_type, amount = TransactionType.CONFIRMED, grant.amount
    else:
        txn_type, amount = TransactionType.FORFEITED_PENDING, -grant.amount
    txn = await append_transaction(
        db, account, txn_type, amount, description, event_id=grant.event_id, grant_id=grant.id
    )
    grant.resolution_transaction_id = txn.id
    await db.flush()
    return txn


class PendingGrantTracker:
    """Creates, lists and resolves pending grants on top of the credit ledger."""

    def __init__(self, ledger: CreditLedger):
        self.ledger = ledger

    async def grant_pending_credits(
        self,
        user_id: str,
        club_id: str,
        event_id: str,
        amount: int,
        description: str | None = None,
    ) -> int:
        """Record credits promised for an event and return the pending transaction id.

        Granting twice for the same (user, event) returns the first grant's
        transaction id, so redelivered checkout callbacks are harmless.
        """
        if amount <= 0:
            raise ValueError("Grant amount must be positive")
        description = description or f"Earned {amount} credits for event {event_id} (check-in required)"

        async def work(db: AsyncSession) -> int:
            result = await db.execute(
                select(PendingGrant).where(PendingGrant.user_id == user_id, PendingGrant.event_id == event_id)
            )
            existing = result.scalar_one_or_none()
            if existing is not None:
                if existing.club_id != club_id:
                    raise ValueError(f"Event {event_id} already has a grant under club {existing.club_id}")
                logger.info("Grant for user=%s event=%s already exists, returning it", user_id, event_id)
                return existing.grant_transaction_id

            account = await lock_account(db, user_id, club_id)
            grant = PendingGrant(user_id=user_id, club_id=club_id, event_id=event_id, amount=amount)
            db.add(grant)
            await db.flush()

            txn = await append_transaction(
                db, account, TransactionType.PENDING, amount, description, event_id=event_id, grant_id=grant.id
            )
            grant.grant_transaction_id = txn.id
            await db.flush()
            return txn.id

        return await self.ledger.run(work, "grant pending credits")

    async def list_unresolved(self, user_id: str) -> list[PendingGrant]:
        """Unresolved grants for a user across every club, oldest first."""

        async def work(db: AsyncSession) -> list[PendingGrant]:
            result = await db.execute(
                select(PendingGrant)
                .where(PendingGrant.user_id == user_id, PendingGrant.resolved.is_(False))
                .order_by(PendingGrant.granted_at, PendingGrant.id)
            )
            return list(result.scalars().all())

        return await self.ledger.run(work, "list unresolved grants")

    async def get_grant(self, user_id: str, event_id: str) -> PendingGrant | None:
        async def work(db: AsyncSession) -> PendingGrant | None:
            result = await db.execute(
                select(PendingGrant).where(PendingGrant.user_id == user_id, PendingGrant.event_id == event_id)
            )
            return result.scalar_one_or_none()

        return await self.ledger.run(work, "get grant")

    async def resolve(self, grant_id: int, resolution: GrantResolution, description: str) -> CreditTransaction | None:
        """Resolve one grant. Returns the new log entry, or None if it was already resolved."""

        async def work(db: AsyncSession) -> CreditTransaction | None:
            return await resolve_grant_in_unit(db, grant_id, resolution, description)

        return await self.ledger.run(work, f"resolve grant {grant_id}")

    async def forfeit_event_credits(self, user_id: str, club_id: str, event_id: str) -> CreditTransaction | None:
        """Take back the credits for an event the user has left.

        An unresolved grant is resolved as forfeited_pending. Credits already
        confirmed are forfeited up to what is still available. Returns None
        when there is nothing left to take.
        """

        async def work(db: AsyncSession) -> CreditTransaction | None:
            result = await db.execute(
                select(PendingGrant).where(PendingGrant.user_id == user_id, PendingGrant.event_id == event_id)
            )
            grant = result.scalar_one_or_none()
            if grant is None or grant.club_id != club_id:
                return None

            if not grant.resolved:
                return await resolve_grant_in_unit(
                    db,
                    grant.id,
                    GrantResolution.FORFEITED_PENDING,
                    f"Forfeited pending credits for leaving event {event_id}",
                )

            if grant.resolution != GrantResolution.CONFIRMED or grant.forfeited_at is not None:
                return None

            claimed = await db.execute(
                update(PendingGrant)
                .where(PendingGrant.id == grant.id, PendingGrant.forfeited_at.is_(None))
                .values(forfeited_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount == 0:
                return None

            account = await lock_account(db, user_id, club_id)
            balance = await project_balance(db, user_id, club_id)
            amount = min(grant.amount, balance.available)
            if amount <= 0:
                logger.info("Nothing left to forfeit for user=%s event=%s", user_id, event_id)
                return None
            return await append_transaction(
                db,
                account,
                TransactionType.FORFEITED,
                -amount,
                f"Forfeited {amount} credits for leaving event {event_id}",
                event_id=event_id,
                grant_id=grant.id,
            )

        return await self.ledger.run(work, "forfeit event credits")

