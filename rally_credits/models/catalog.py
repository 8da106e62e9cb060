"""Reward catalog model.

A CatalogItem is something a member can spend Rally Credits on at one club
(a store discount, a free item, money off an event). The ledger only cares
about ``credits_required`` and ``active``; everything else is passed through
to fulfillment untouched.
"""

import enum

from sqlalchemy import Boolean, Enum, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from rally_credits.models.base import Base, TimestampMixin


class CatalogItemType(enum.StrEnum):
    STORE_DISCOUNT = "store_discount"
    FREE_ITEM = "free_item"
    EVENT_DISCOUNT = "event_discount"
    CUSTOM = "custom"


class CatalogItem(TimestampMixin, Base):
    __tablename__ = "catalog_items"

    id: Mapped[int] = mapped_column(primary_key=True)
    club_id: Mapped[str] = mapped_column(String(128), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    credits_required: Mapped[int] = mapped_column(Integer, nullable=False)
    item_type: Mapped[CatalogItemType] = mapped_column(
        Enum(CatalogItemType, name="catalog_item_type", values_callable=lambda e: [x.value for x in e]),
        default=CatalogItemType.CUSTOM,
        nullable=False,
    )
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Opaque to the ledger, forwarded to fulfillment
    discount_amount_cents: Mapped[int | None] = mapped_column(Integer)
    discount_percent: Mapped[int | None] = mapped_column(Integer)

    __table_args__ = (Index("ix_catalog_items_club_active", "club_id", "active"),)

    def __repr__(self) -> str:
        return f"<CatalogItem {self.name} ({self.credits_required}) club={self.club_id}>"
