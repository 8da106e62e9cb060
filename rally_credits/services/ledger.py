"""Transaction log and balance projector.

The credit_transactions table is the source of truth. Balances are folded
from it; the copy cached on CreditAccount is only ever used for fast reads
and is rewritten in the same database transaction as every append.

The module-level coroutines take the session of an already open unit and
are shared by the grant tracker, the confirmation engine and the
redemption engine. CreditLedger wraps them in retried units for callers.
"""

import logging
from collections.abc import AsyncIterator, Iterable
from dataclasses import dataclass

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rally_credits.core.config import settings
from rally_credits.core.database import async_session_factory
from rally_credits.models.base import utcnow
from rally_credits.models.credit import (
    AVAILABLE_TYPES,
    CREDIT_TYPES,
    DEBIT_TYPES,
    CreditAccount,
    CreditTransaction,
    TransactionType,
)
from rally_credits.services.errors import InsufficientBalance, NotFound
from rally_credits.services.storage import RetryPolicy, run_unit

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccountBalance:
    user_id: str
    club_id: str
    available: int
    pending: int


@dataclass(frozen=True)
class TransactionPage:
    items: list[CreditTransaction]
    next_cursor: int | None


@dataclass(frozen=True)
class ReconcileResult:
    cached: AccountBalance
    projected: AccountBalance

    @property
    def drifted(self) -> bool:
        return self.cached != self.projected


# ---------------------------------------------------------------------------
# Projection
# ---------------------------------------------------------------------------


def fold_totals(totals: Iterable[tuple[TransactionType, int]]) -> tuple[int, int]:
    """Fold (type, amount) pairs into (available, pending).

    Debit amounts are stored negative, so available is a plain sum over the
    spendable types. A confirmation never appends an offsetting entry, so
    pending subtracts confirmed amounts from the grants.
    """
    available = 0
    pending = 0
    for txn_type, amount in totals:
        txn_type = TransactionType(txn_type)
        if txn_type in AVAILABLE_TYPES:
            available += amount
        if txn_type in (TransactionType.PENDING, TransactionType.FORFEITED_PENDING):
            pending += amount
        elif txn_type == TransactionType.CONFIRMED:
            pending -= amount
    return available, pending


def fold_transactions(transactions: Iterable[CreditTransaction]) -> tuple[int, int]:
    return fold_totals((t.transaction_type, t.amount) for t in transactions)


def _cache_delta(txn_type: TransactionType, amount: int) -> tuple[int, int]:
    return fold_totals([(txn_type, amount)])


async def project_balance(db: AsyncSession, user_id: str, club_id: str) -> AccountBalance:
    """Derive the balance for one account from the log."""
    result = await db.execute(
        select(CreditTransaction.transaction_type, func.sum(CreditTransaction.amount))
        .where(CreditTransaction.user_id == user_id, CreditTransaction.club_id == club_id)
        .group_by(CreditTransaction.transaction_type)
    )
    available, pending = fold_totals((row[0], int(row[1] or 0)) for row in result.all())
    return AccountBalance(user_id=user_id, club_id=club_id, available=available, pending=pending)


# ---------------------------------------------------------------------------
# In-unit primitives
# ---------------------------------------------------------------------------


async def lock_account(db: AsyncSession, user_id: str, club_id: str) -> CreditAccount:
    """Load (or create) the account row that serialises writers for one (user, club).

    FOR UPDATE blocks competing writers on PostgreSQL. The version column
    catches them everywhere else.
    """
    result = await db.execute(
        select(CreditAccount)
        .where(CreditAccount.user_id == user_id, CreditAccount.club_id == club_id)
        .with_for_update()
    )
    account = result.scalar_one_or_none()
    if account is None:
        account = CreditAccount(user_id=user_id, club_id=club_id, available=0, pending=0)
        db.add(account)
        await db.flush()
    return account


async def append_transaction(
    db: AsyncSession,
    account: CreditAccount,
    txn_type: TransactionType,
    amount: int,
    description: str,
    *,
    event_id: str | None = None,
    grant_id: int | None = None,
    redemption_request_id: str | None = None,
) -> CreditTransaction:
    """Append one entry to the log and roll the cached projection forward.

    The account row update is versioned, so a concurrent writer on the same
    account makes this flush raise StaleDataError.
    """
    if txn_type in CREDIT_TYPES and amount <= 0:
        raise ValueError(f"{txn_type.value} amount must be positive, got {amount}")
    if txn_type in DEBIT_TYPES and amount >= 0:
        raise ValueError(f"{txn_type.value} amount must be negative, got {amount}")
    if amount == 0:
        raise ValueError("Amount must not be zero")

    # created_at never goes backwards within an account
    created_at = utcnow()
    if account.last_transaction_at is not None and account.last_transaction_at > created_at:
        created_at = account.last_transaction_at

    txn = CreditTransaction(
        user_id=account.user_id,
        club_id=account.club_id,
        transaction_type=txn_type,
        amount=amount,
        event_id=event_id,
        grant_id=grant_id,
        redemption_request_id=redemption_request_id,
        description=description,
        created_at=created_at,
    )
    db.add(txn)

    d_available, d_pending = _cache_delta(txn_type, amount)
    account.available += d_available
    account.pending += d_pending
    account.last_transaction_at = created_at

    await db.flush()
    logger.info(
        "Appended %s %+d for user=%s club=%s (txn %s)",
        txn_type.value,
        amount,
        account.user_id,
        account.club_id,
        txn.id,
    )
    return txn


async def debit_available(
    db: AsyncSession,
    account: CreditAccount,
    txn_type: TransactionType,
    amount: int,
    description: str,
    **refs,
) -> CreditTransaction:
    """Spend ``amount`` (positive) from available, re-derived from the log inside this unit."""
    balance = await project_balance(db, account.user_id, account.club_id)
    if balance.available < amount:
        raise InsufficientBalance(available=balance.available, required=amount)
    return await append_transaction(db, account, txn_type, -amount, description, **refs)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class CreditLedger:
    """Append, project and page through Rally Credits accounts."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = async_session_factory,
        retry: RetryPolicy | None = None,
    ):
        self.session_factory = session_factory
        self.retry = retry or RetryPolicy.from_settings()

    async def run(self, work, name: str):
        return await run_unit(self.session_factory, work, policy=self.retry, name=name)

    async def append(
        self,
        user_id: str,
        club_id: str,
        txn_type: TransactionType,
        amount: int,
        description: str,
        *,
        event_id: str | None = None,
    ) -> int:
        """Append a standalone entry and return its transaction id.

        Grant lifecycle entries (pending, confirmed, forfeited_pending) belong
        to the grant tracker, which keeps the grant row in step with the log.
        Debits are checked against the balance derived inside the same unit.
        """
        if txn_type in (TransactionType.PENDING, TransactionType.CONFIRMED, TransactionType.FORFEITED_PENDING):
            raise ValueError(f"{txn_type.value} entries are written by the pending grant tracker")

        async def work(db: AsyncSession) -> int:
            account = await lock_account(db, user_id, club_id)
            if amount < 0:
                txn = await debit_available(db, account, txn_type, -amount, description, event_id=event_id)
            else:
                txn = await append_transaction(db, account, txn_type, amount, description, event_id=event_id)
            return txn.id

        return await self.run(work, f"append {txn_type.value}")

    async def project_balance(self, user_id: str, club_id: str) -> AccountBalance:
        async def work(db: AsyncSession) -> AccountBalance:
            return await project_balance(db, user_id, club_id)

        return await self.run(work, "project balance")

    async def get_balance(self, user_id: str, club_id: str) -> AccountBalance:
        """Read the cached projection. Zero for an account that has never transacted."""

        async def work(db: AsyncSession) -> AccountBalance:
            result = await db.execute(
                select(CreditAccount.available, CreditAccount.pending).where(
                    CreditAccount.user_id == user_id, CreditAccount.club_id == club_id
                )
            )
            row = result.one_or_none()
            if row is None:
                return AccountBalance(user_id=user_id, club_id=club_id, available=0, pending=0)
            return AccountBalance(user_id=user_id, club_id=club_id, available=row[0], pending=row[1])

        return await self.run(work, "get balance")

    async def list_transactions(
        self,
        user_id: str,
        club_id: str,
        cursor: int | None = None,
        limit: int | None = None,
    ) -> TransactionPage:
        """One page of the account's log, newest first.

        ``cursor`` is the id of the last transaction of the previous page.
        """
        limit = limit or settings.transactions_page_size

        async def work(db: AsyncSession) -> TransactionPage:
            stmt = select(CreditTransaction).where(
                CreditTransaction.user_id == user_id, CreditTransaction.club_id == club_id
            )
            if cursor is not None:
                anchor = await db.get(CreditTransaction, cursor)
                if anchor is None or anchor.user_id != user_id or anchor.club_id != club_id:
                    raise NotFound("Unknown transaction cursor")
                stmt = stmt.where(
                    or_(
                        CreditTransaction.created_at < anchor.created_at,
                        and_(CreditTransaction.created_at == anchor.created_at, CreditTransaction.id < anchor.id),
                    )
                )
            result = await db.execute(
                stmt.order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc()).limit(limit + 1)
            )
            rows = list(result.scalars().all())
            items = rows[:limit]
            next_cursor = items[-1].id if len(rows) > limit else None
            return TransactionPage(items=items, next_cursor=next_cursor)

        return await self.run(work, "list transactions")

    async def iter_transactions(
        self, user_id: str, club_id: str, page_size: int | None = None
    ) -> AsyncIterator[CreditTransaction]:
        """Walk the whole log for an account, newest first, one page at a time."""
        cursor = None
        while True:
            page = await self.list_transactions(user_id, club_id, cursor=cursor, limit=page_size)
            for txn in page.items:
                yield txn
            if page.next_cursor is None:
                return
            cursor = page.next_cursor

    async def reconcile(self, user_id: str, club_id: str) -> ReconcileResult:
        """Recompute the projection from the log and overwrite the cached copy."""

        async def work(db: AsyncSession) -> ReconcileResult:
            account = await lock_account(db, user_id, club_id)
            cached = AccountBalance(
                user_id=user_id, club_id=club_id, available=account.available, pending=account.pending
            )
            projected = await project_balance(db, user_id, club_id)
            if cached != projected:
                logger.warning("Balance cache drift for user=%s club=%s: %s -> %s", user_id, club_id, cached, projected)
            account.available = projected.available
            account.pending = projected.pending
            await db.flush()
            return ReconcileResult(cached=cached, projected=projected)

        return await self.run(work, "reconcile")

    async def adjust_credits(self, user_id: str, club_id: str, amount: int, description: str) -> int:
        """Club admin add (positive) or remove (negative). Removal cannot overdraw."""
        return await self.append(user_id, club_id, TransactionType.ADJUSTED, amount, description)

    async def set_credits(self, user_id: str, club_id: str, target: int, description: str) -> int | None:
        """Bring available to ``target`` with one adjustment. None when already there."""
        if target < 0:
            raise ValueError("Target balance must not be negative")

        async def work(db: AsyncSession) -> int | None:
            account = await lock_account(db, user_id, club_id)
            balance = await project_balance(db, user_id, club_id)
            delta = target - balance.available
            if delta == 0:
                return None
            txn = await append_transaction(db, account, TransactionType.ADJUSTED, delta, description)
            return txn.id

        return await self.run(work, "set credits")

    async def account_keys(self, only_positive: bool = False) -> list[tuple[str, str]]:
        """Every (user_id, club_id) pair with an account row."""

        async def work(db: AsyncSession) -> list[tuple[str, str]]:
            stmt = select(CreditAccount.user_id, CreditAccount.club_id).order_by(CreditAccount.id)
            if only_positive:
                stmt = stmt.where(CreditAccount.available > 0)
            result = await db.execute(stmt)
            return [(row[0], row[1]) for row in result.all()]

        return await self.run(work, "list accounts")
