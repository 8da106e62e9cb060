"""Atomic units of work against the backing store.

Every ledger mutation runs as one database transaction in a fresh session.
A unit that loses a race (version check, conditional update or unique index)
or hits a transient connection failure is rolled back and re-run from
scratch with exponential backoff. Nothing from a failed attempt is visible.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from rally_credits.core.config import settings
from rally_credits.services.errors import ConcurrentModification, StorageUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")

Work = Callable[[AsyncSession], Awaitable[T]]


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 5
    base_delay: float = 0.05
    max_delay: float = 1.0

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            attempts=settings.storage_retry_attempts,
            base_delay=settings.storage_retry_base_delay_seconds,
            max_delay=settings.storage_retry_max_delay_seconds,
        )

    def delay(self, attempt: int) -> float:
        """Backoff before the next attempt, with jitter so racing callers spread out."""
        ceiling = min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))
        return random.uniform(ceiling / 2, ceiling)


UNIQUE_VIOLATION_SQLSTATE = "23505"
SQLITE_UNIQUE_ERRORS = ("SQLITE_CONSTRAINT_UNIQUE", "SQLITE_CONSTRAINT_PRIMARYKEY")


def is_unique_violation(exc: IntegrityError) -> bool:
    """True when a unique index rejected the insert, i.e. another writer got there first.

    Other integrity errors (NOT NULL, foreign keys, checks) are bugs, not races.
    """
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate is not None:
        return sqlstate == UNIQUE_VIOLATION_SQLSTATE
    if getattr(orig, "sqlite_errorname", None) in SQLITE_UNIQUE_ERRORS:
        return True
    return "UNIQUE constraint failed" in str(orig)


async def run_unit(
    session_factory: async_sessionmaker[AsyncSession],
    work: Work[T],
    *,
    policy: RetryPolicy,
    name: str,
) -> T:
    """Run ``work`` inside a single transaction, retrying conflicts and transient failures.

    Ledger errors raised by ``work`` (InsufficientBalance, NotFound, ...) and
    integrity errors other than unique-index conflicts roll the transaction
    back and propagate immediately. Raises StorageUnavailable
    once every attempt is spent.
    """
    last_error: Exception | None = None
    for attempt in range(1, policy.attempts + 1):
        try:
            async with session_factory() as db:
                async with db.begin():
                    return await work(db)
        except (StaleDataError, ConcurrentModification) as exc:
            logger.info("%s lost a write race (attempt %d/%d): %s", name, attempt, policy.attempts, exc)
            last_error = exc
        except IntegrityError as exc:
            if not is_unique_violation(exc):
                raise
            logger.info("%s lost an insert race (attempt %d/%d): %s", name, attempt, policy.attempts, exc)
            last_error = exc
        except (OperationalError, InterfaceError, OSError) as exc:
            logger.warning("%s hit a storage error (attempt %d/%d): %s", name, attempt, policy.attempts, exc)
            last_error = exc

        if attempt < policy.attempts:
            await asyncio.sleep(policy.delay(attempt))

    logger.error("%s gave up after %d attempts", name, policy.attempts)
    raise StorageUnavailable() from last_error
