"""Redemption record model.

One row per committed redemption. ``request_id`` is the client's idempotency
key: a retried request finds the existing row and gets the same answer.
"""

import enum
from datetime import datetime

from sqlalchemy import Enum, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from rally_credits.models.base import Base, UTCDateTime, utcnow


class RedemptionStatus(enum.StrEnum):
    COMMITTED = "committed"
    REJECTED = "rejected"


class RedemptionRecord(Base):
    __tablename__ = "redemption_records"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    club_id: Mapped[str] = mapped_column(String(128), nullable=False)
    catalog_item_id: Mapped[int] = mapped_column(Integer, nullable=False)
    request_id: Mapped[str] = mapped_column(String(128), nullable=False)
    credits_spent: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[RedemptionStatus] = mapped_column(
        Enum(RedemptionStatus, name="redemption_status", values_callable=lambda e: [x.value for x in e]),
        default=RedemptionStatus.COMMITTED,
        nullable=False,
    )
    transaction_id: Mapped[int | None] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_redemptions_request", "request_id", unique=True),
        Index("ix_redemptions_user_club", "user_id", "club_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<RedemptionRecord {self.request_id} {self.credits_spent} {self.status.value}>"
