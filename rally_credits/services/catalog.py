"""Reward catalog access.

The redemption engine reads items inside its own unit through
``get_catalog_item``. Club admins maintain items through the admin routes,
which call the ``create``/``update`` helpers on a request-scoped session.
"""

import logging
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rally_credits.core.database import async_session_factory
from rally_credits.models.catalog import CatalogItem, CatalogItemType
from rally_credits.services.errors import NotFound

logger = logging.getLogger(__name__)


class Catalog(Protocol):
    async def get_catalog_item(self, club_id: str, item_id: int) -> CatalogItem: ...

    async def list_catalog(self, club_id: str, include_inactive: bool = False) -> list[CatalogItem]: ...


async def get_catalog_item(db: AsyncSession, club_id: str, item_id: int) -> CatalogItem:
    """Load an item owned by ``club_id``. Items of other clubs are NotFound."""
    item = await db.get(CatalogItem, item_id)
    if item is None or item.club_id != club_id:
        raise NotFound(f"Catalog item {item_id} not found")
    return item


async def list_catalog(db: AsyncSession, club_id: str, include_inactive: bool = False) -> list[CatalogItem]:
    stmt = select(CatalogItem).where(CatalogItem.club_id == club_id)
    if not include_inactive:
        stmt = stmt.where(CatalogItem.active.is_(True))
    result = await db.execute(stmt.order_by(CatalogItem.credits_required, CatalogItem.id))
    return list(result.scalars().all())


class SqlCatalog:
    """Read-only catalog view over the catalog_items table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] = async_session_factory):
        self.session_factory = session_factory

    async def get_catalog_item(self, club_id: str, item_id: int) -> CatalogItem:
        async with self.session_factory() as db:
            return await get_catalog_item(db, club_id, item_id)

    async def list_catalog(self, club_id: str, include_inactive: bool = False) -> list[CatalogItem]:
        async with self.session_factory() as db:
            return await list_catalog(db, club_id, include_inactive)


# ---------------------------------------------------------------------------
# Admin maintenance
# ---------------------------------------------------------------------------


async def create_catalog_item(
    db: AsyncSession,
    club_id: str,
    name: str,
    credits_required: int,
    *,
    description: str = "",
    item_type: CatalogItemType = CatalogItemType.CUSTOM,
    discount_amount_cents: int | None = None,
    discount_percent: int | None = None,
    active: bool = True,
) -> CatalogItem:
    if credits_required <= 0:
        raise ValueError("credits_required must be positive")

    item = CatalogItem(
        club_id=club_id,
        name=name,
        description=description,
        credits_required=credits_required,
        item_type=item_type,
        discount_amount_cents=discount_amount_cents,
        discount_percent=discount_percent,
        active=active,
    )
    db.add(item)
    await db.flush()
    logger.info("Created catalog item %s (%d credits) for club=%s", item.id, credits_required, club_id)
    return item


async def update_catalog_item(db: AsyncSession, club_id: str, item_id: int, **changes) -> CatalogItem:
    """Apply a partial update. Deactivating an item is ``active=False``."""
    item = await get_catalog_item(db, club_id, item_id)
    if "credits_required" in changes and changes["credits_required"] <= 0:
        raise ValueError("credits_required must be positive")

    for field, value in changes.items():
        setattr(item, field, value)
    await db.flush()
    logger.info("Updated catalog item %s for club=%s: %s", item_id, club_id, sorted(changes))
    return item
