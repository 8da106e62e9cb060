"""Credit expiry.

Credits are spent oldest first. Whatever was earned before the cutoff and
has not been covered by later debits is expired in a single entry, never
more than the account has available.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rally_credits.core.config import settings
from rally_credits.models.base import utcnow
from rally_credits.models.credit import CreditTransaction, TransactionType
from rally_credits.services.errors import LedgerError
from rally_credits.services.ledger import CreditLedger, append_transaction, lock_account, project_balance

logger = logging.getLogger(__name__)

EARNING_TYPES = (TransactionType.CONFIRMED, TransactionType.ADJUSTED)
SPENDING_TYPES = (
    TransactionType.REDEEMED,
    TransactionType.FORFEITED,
    TransactionType.EXPIRED,
    TransactionType.ADJUSTED,
)


@dataclass(frozen=True)
class ExpirySweep:
    accounts_checked: int = 0
    accounts_expired: int = 0
    credits_expired: int = 0
    failures: int = 0


async def credits_due_for_expiry(db: AsyncSession, user_id: str, club_id: str, cutoff: datetime) -> int:
    earned_before_cutoff = func.coalesce(
        func.sum(
            case(
                (
                    (CreditTransaction.transaction_type.in_(EARNING_TYPES))
                    & (CreditTransaction.amount > 0)
                    & (CreditTransaction.created_at < cutoff),
                    CreditTransaction.amount,
                ),
                else_=0,
            )
        ),
        0,
    )
    spent = func.coalesce(
        func.sum(
            case(
                (
                    (CreditTransaction.transaction_type.in_(SPENDING_TYPES)) & (CreditTransaction.amount < 0),
                    -CreditTransaction.amount,
                ),
                else_=0,
            )
        ),
        0,
    )
    result = await db.execute(
        select(earned_before_cutoff, spent).where(
            CreditTransaction.user_id == user_id, CreditTransaction.club_id == club_id
        )
    )
    earned, spent_total = result.one()
    return max(0, int(earned) - int(spent_total))


class CreditExpiry:
    def __init__(self, ledger: CreditLedger, lifetime: timedelta | None = None):
        self.ledger = ledger
        if lifetime is None and settings.credit_lifetime_days is not None:
            lifetime = timedelta(days=settings.credit_lifetime_days)
        self.lifetime = lifetime

    async def expire_credits(
        self, user_id: str, club_id: str, now: datetime | None = None
    ) -> CreditTransaction | None:
        """Expire stale credits for one account. None when nothing is due or expiry is off."""
        if self.lifetime is None:
            return None
        cutoff = (now or utcnow()) - self.lifetime

        async def work(db: AsyncSession) -> CreditTransaction | None:
            account = await lock_account(db, user_id, club_id)
            due = await credits_due_for_expiry(db, user_id, club_id, cutoff)
            if due <= 0:
                return None

            balance = await project_balance(db, user_id, club_id)
            if due > balance.available:
                logger.warning(
                    "User %s club %s: %d credits due to expire but only %d available",
                    user_id,
                    club_id,
                    due,
                    balance.available,
                )
                due = balance.available
            if due <= 0:
                return None

            return await append_transaction(
                db, account, TransactionType.EXPIRED, -due, f"{due} credits expired (earned before {cutoff:%Y-%m-%d})"
            )

        return await self.ledger.run(work, "expire credits")

    async def expire_all(self, now: datetime | None = None) -> ExpirySweep:
        """Sweep every account with spendable credits. One failing account does not stop the sweep."""
        if self.lifetime is None:
            logger.info("Credit expiry is disabled, nothing to sweep")
            return ExpirySweep()

        now = now or utcnow()
        checked = expired_accounts = expired_credits = failures = 0
        for user_id, club_id in await self.ledger.account_keys(only_positive=True):
            checked += 1
            try:
                txn = await self.expire_credits(user_id, club_id, now)
            except LedgerError:
                logger.error("Expiry failed for user=%s club=%s", user_id, club_id, exc_info=True)
                failures += 1
                continue
            if txn is None:
                continue
            expired_accounts += 1
            expired_credits -= txn.amount

        logger.info(
            "Expiry sweep checked %d accounts, expired %d credits across %d accounts (%d failures)",
            checked,
            expired_credits,
            expired_accounts,
            failures,
        )
        return ExpirySweep(
            accounts_checked=checked,
            accounts_expired=expired_accounts,
            credits_expired=expired_credits,
            failures=failures,
        )
