"""Seed the database with a demo club catalog and a member with credits.

Run with: python -m scripts.seed
Creates the tables, a reward catalog for the demo club, and gives the demo
member a confirmed grant plus one still pending.
"""

import asyncio

from sqlalchemy import select

from rally_credits.core.auth import create_access_token
from rally_credits.core.database import async_session_factory, engine
from rally_credits.models import Base, CatalogItem, CatalogItemType, GrantResolution
from rally_credits.services.grants import PendingGrantTracker
from rally_credits.services.ledger import CreditLedger

CLUB_ID = "demo-run-club"
ADMIN_ID = "demo-admin"
MEMBER_ID = "demo-member"

CATALOG = [
    {
        "name": "10% off club merch",
        "credits_required": 100,
        "item_type": CatalogItemType.STORE_DISCOUNT,
        "discount_percent": 10,
    },
    {
        "name": "Free post-run coffee",
        "credits_required": 50,
        "item_type": CatalogItemType.FREE_ITEM,
    },
    {
        "name": "$5 off your next event",
        "credits_required": 250,
        "item_type": CatalogItemType.EVENT_DISCOUNT,
        "discount_amount_cents": 500,
    },
]


async def seed():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session_factory() as db:
        result = await db.execute(select(CatalogItem).where(CatalogItem.club_id == CLUB_ID))
        if result.scalars().first():
            print(f"Already seeded: {CLUB_ID}")
            return

        for item in CATALOG:
            db.add(CatalogItem(club_id=CLUB_ID, **item))
        await db.commit()

    grants = PendingGrantTracker(CreditLedger())
    await grants.grant_pending_credits(MEMBER_ID, CLUB_ID, "demo-event-1", 150)
    await grants.grant_pending_credits(MEMBER_ID, CLUB_ID, "demo-event-2", 50)

    attended = await grants.get_grant(MEMBER_ID, "demo-event-1")
    await grants.resolve(attended.id, GrantResolution.CONFIRMED, "Checked in at event demo-event-1")

    print(f"Seeded: {CLUB_ID}")
    print(f"  {len(CATALOG)} catalog items")
    print(f"  {MEMBER_ID}: 150 available, 50 pending")
    print("  Tokens:")
    print(f"    admin  {create_access_token(ADMIN_ID, {'admin_clubs': [CLUB_ID]})}")
    print(f"    member {create_access_token(MEMBER_ID)}")


if __name__ == "__main__":
    asyncio.run(seed())
