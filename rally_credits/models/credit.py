"""Rally Credits ledger models.

CreditTransaction = one immutable, append-only balance movement.
CreditAccount = the per (user, club) row every append touches. It caches the
projected balance and carries the version counter that serialises writers.
PendingGrant = credits promised for an event, waiting on attendance.
"""

import enum
from datetime import datetime

from sqlalchemy import Boolean, Enum, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from rally_credits.models.base import Base, TimestampMixin, UTCDateTime, utcnow


class TransactionType(enum.StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FORFEITED_PENDING = "forfeited_pending"
    REDEEMED = "redeemed"
    FORFEITED = "forfeited"
    EXPIRED = "expired"
    ADJUSTED = "adjusted"  # Manual correction by a club admin, either sign


# Types whose amounts move the spendable balance.
AVAILABLE_TYPES = frozenset(
    {
        TransactionType.CONFIRMED,
        TransactionType.REDEEMED,
        TransactionType.FORFEITED,
        TransactionType.EXPIRED,
        TransactionType.ADJUSTED,
    }
)

# Amount sign each type must carry. ADJUSTED is signed by the caller.
CREDIT_TYPES = frozenset({TransactionType.PENDING, TransactionType.CONFIRMED})
DEBIT_TYPES = frozenset(
    {
        TransactionType.FORFEITED_PENDING,
        TransactionType.REDEEMED,
        TransactionType.FORFEITED,
        TransactionType.EXPIRED,
    }
)


class GrantResolution(enum.StrEnum):
    CONFIRMED = "confirmed"
    FORFEITED_PENDING = "forfeited_pending"


class CreditAccount(TimestampMixin, Base):
    """Cached balance for one (user, club) pair.

    Never authoritative: the log in credit_transactions is. ``version`` is
    bumped by every append so concurrent writers on the same account fail
    with StaleDataError instead of interleaving.
    """

    __tablename__ = "credit_accounts"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    club_id: Mapped[str] = mapped_column(String(128), nullable=False)
    available: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    pending: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_transaction_at: Mapped[datetime | None] = mapped_column(UTCDateTime())
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (Index("ix_credit_accounts_user_club", "user_id", "club_id", unique=True),)
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<CreditAccount user={self.user_id} club={self.club_id} v{self.version}>"


class CreditTransaction(Base):
    """A single credit movement. Positive means credit in, negative means debit."""

    __tablename__ = "credit_transactions"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    club_id: Mapped[str] = mapped_column(String(128), nullable=False)
    transaction_type: Mapped[TransactionType] = mapped_column(
        Enum(TransactionType, name="credit_transaction_type", values_callable=lambda e: [x.value for x in e]),
        nullable=False,
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    event_id: Mapped[str | None] = mapped_column(String(128))
    grant_id: Mapped[int | None] = mapped_column(Integer)
    redemption_request_id: Mapped[str | None] = mapped_column(String(128))
    description: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_credit_txn_user_club_created", "user_id", "club_id", "created_at", "id"),
        Index("ix_credit_txn_request", "redemption_request_id"),
    )

    def __repr__(self) -> str:
        return f"<CreditTransaction {self.transaction_type.value} {self.amount} user={self.user_id}>"


class PendingGrant(TimestampMixin, Base):
    """Credits promised for an event, resolved exactly once."""

    __tablename__ = "pending_grants"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    club_id: Mapped[str] = mapped_column(String(128), nullable=False)
    event_id: Mapped[str] = mapped_column(String(128), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    granted_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)

    resolved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    resolution: Mapped[GrantResolution | None] = mapped_column(
        Enum(GrantResolution, name="grant_resolution", values_callable=lambda e: [x.value for x in e]),
    )
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime())
    # Set once the credits of a confirmed grant are taken back (user left the event)
    forfeited_at: Mapped[datetime | None] = mapped_column(UTCDateTime())

    grant_transaction_id: Mapped[int | None] = mapped_column(Integer)
    resolution_transaction_id: Mapped[int | None] = mapped_column(Integer)

    __table_args__ = (
        Index("ix_pending_grants_user_event", "user_id", "event_id", unique=True),
        Index("ix_pending_grants_user_resolved", "user_id", "resolved"),
    )

    def __repr__(self) -> str:
        state = self.resolution.value if self.resolution else "unresolved"
        return f"<PendingGrant user={self.user_id} event={self.event_id} {self.amount} {state}>"
