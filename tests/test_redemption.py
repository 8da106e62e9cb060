"""Redemption engine: exactly-once spending against the catalog."""

import asyncio

import pytest
from sqlalchemy import update

from rally_credits.core.database import async_session_factory
from rally_credits.models import CatalogItem
from rally_credits.models.credit import TransactionType
from rally_credits.models.redemption import RedemptionStatus
from rally_credits.services.errors import IdempotencyConflict, InsufficientBalance, ItemInactive, NotFound
from rally_credits.services.redemption import RedemptionEngine

USER = "user-1"
CLUB = "club-1"


async def test_redeem_then_redeem_again_runs_out(ledger, fulfillment, make_item):
    """Scenario C: 50 available, a 50-credit item can be redeemed once."""
    await ledger.adjust_credits(USER, CLUB, 50, "Opening balance")
    item = await make_item(credits_required=50)
    engine = RedemptionEngine(ledger, fulfillment)

    result = await engine.redeem(USER, CLUB, item.id, "req-1")

    assert not result.replayed
    assert result.record.status == RedemptionStatus.COMMITTED
    assert result.record.credits_spent == 50
    assert (await ledger.get_balance(USER, CLUB)).available == 0

    with pytest.raises(InsufficientBalance) as exc_info:
        await engine.redeem(USER, CLUB, item.id, "req-2")
    assert exc_info.value.available == 0
    assert exc_info.value.required == 50


async def test_redemption_appends_tagged_transaction(ledger, fulfillment, make_item):
    await ledger.adjust_credits(USER, CLUB, 80, "Opening balance")
    item = await make_item(credits_required=30)

    result = await RedemptionEngine(ledger, fulfillment).redeem(USER, CLUB, item.id, "req-1")

    txn = (await ledger.list_transactions(USER, CLUB)).items[0]
    assert txn.id == result.record.transaction_id
    assert txn.transaction_type == TransactionType.REDEEMED
    assert txn.amount == -30
    assert txn.redemption_request_id == "req-1"
    assert fulfillment.notified == [result.record]


async def test_replayed_request_returns_original_record(ledger, fulfillment, make_item):
    await ledger.adjust_credits(USER, CLUB, 100, "Opening balance")
    item = await make_item(credits_required=40)
    engine = RedemptionEngine(ledger, fulfillment)

    first = await engine.redeem(USER, CLUB, item.id, "req-1")
    second = await engine.redeem(USER, CLUB, item.id, "req-1")

    assert second.replayed
    assert second.record.id == first.record.id
    assert (await ledger.get_balance(USER, CLUB)).available == 60
    redeemed = [t async for t in ledger.iter_transactions(USER, CLUB) if t.transaction_type == TransactionType.REDEEMED]
    assert len(redeemed) == 1
    assert len(fulfillment.notified) == 1


async def test_request_id_reused_for_other_item_conflicts(ledger, fulfillment, make_item):
    await ledger.adjust_credits(USER, CLUB, 100, "Opening balance")
    coffee = await make_item(credits_required=10)
    shirt = await make_item(credits_required=20, name="T-shirt")
    engine = RedemptionEngine(ledger, fulfillment)

    await engine.redeem(USER, CLUB, coffee.id, "req-1")
    with pytest.raises(IdempotencyConflict):
        await engine.redeem(USER, CLUB, shirt.id, "req-1")


async def test_concurrent_redemptions_only_one_fits(ledger, fulfillment, make_item):
    await ledger.adjust_credits(USER, CLUB, 50, "Opening balance")
    item = await make_item(credits_required=50)
    engine = RedemptionEngine(ledger, fulfillment)

    outcomes = await asyncio.gather(
        engine.redeem(USER, CLUB, item.id, "req-a"),
        engine.redeem(USER, CLUB, item.id, "req-b"),
        return_exceptions=True,
    )

    committed = [o for o in outcomes if not isinstance(o, Exception)]
    rejected = [o for o in outcomes if isinstance(o, Exception)]
    assert len(committed) == 1
    assert len(rejected) == 1
    assert isinstance(rejected[0], InsufficientBalance)

    balance = await ledger.project_balance(USER, CLUB)
    assert balance.available == 0
    assert await ledger.get_balance(USER, CLUB) == balance


async def test_concurrent_duplicates_spend_once(ledger, fulfillment, make_item):
    await ledger.adjust_credits(USER, CLUB, 100, "Opening balance")
    item = await make_item(credits_required=30)
    engine = RedemptionEngine(ledger, fulfillment)

    outcomes = await asyncio.gather(*(engine.redeem(USER, CLUB, item.id, "req-1") for _ in range(3)))

    assert len({o.record.id for o in outcomes}) == 1
    assert sum(not o.replayed for o in outcomes) == 1
    assert (await ledger.get_balance(USER, CLUB)).available == 70


async def test_inactive_item_is_rejected(ledger, fulfillment, make_item):
    await ledger.adjust_credits(USER, CLUB, 100, "Opening balance")
    item = await make_item(active=False)

    with pytest.raises(ItemInactive):
        await RedemptionEngine(ledger, fulfillment).redeem(USER, CLUB, item.id, "req-1")
    assert (await ledger.get_balance(USER, CLUB)).available == 100


async def test_replay_after_item_deactivated_returns_original_record(ledger, fulfillment, make_item):
    await ledger.adjust_credits(USER, CLUB, 100, "Opening balance")
    item = await make_item(credits_required=50)
    engine = RedemptionEngine(ledger, fulfillment)
    first = await engine.redeem(USER, CLUB, item.id, "req-1")

    async with async_session_factory() as db:
        await db.execute(update(CatalogItem).where(CatalogItem.id == item.id).values(active=False))
        await db.commit()

    retry = await engine.redeem(USER, CLUB, item.id, "req-1")

    assert retry.replayed
    assert retry.record.id == first.record.id
    assert (await ledger.get_balance(USER, CLUB)).available == 50
    with pytest.raises(ItemInactive):
        await engine.redeem(USER, CLUB, item.id, "req-2")


async def test_item_of_another_club_is_not_found(ledger, fulfillment, make_item):
    await ledger.adjust_credits(USER, CLUB, 100, "Opening balance")
    item = await make_item(club_id="club-2")
    engine = RedemptionEngine(ledger, fulfillment)

    with pytest.raises(NotFound):
        await engine.redeem(USER, CLUB, item.id, "req-1")
    with pytest.raises(NotFound):
        await engine.redeem(USER, CLUB, 999_999, "req-2")


async def test_fulfillment_failure_keeps_the_redemption(ledger, failing_fulfillment, make_item):
    await ledger.adjust_credits(USER, CLUB, 50, "Opening balance")
    item = await make_item(credits_required=50)

    result = await RedemptionEngine(ledger, failing_fulfillment).redeem(USER, CLUB, item.id, "req-1")

    assert result.record.status == RedemptionStatus.COMMITTED
    assert (await ledger.get_balance(USER, CLUB)).available == 0


async def test_list_redemptions_for_member_and_club(ledger, fulfillment, make_item):
    await ledger.adjust_credits("u1", CLUB, 100, "Opening balance")
    await ledger.adjust_credits("u2", CLUB, 100, "Opening balance")
    item = await make_item(credits_required=10)
    engine = RedemptionEngine(ledger, fulfillment)
    await engine.redeem("u1", CLUB, item.id, "req-1")
    await engine.redeem("u1", CLUB, item.id, "req-2")
    await engine.redeem("u2", CLUB, item.id, "req-3")

    mine = await engine.list_redemptions(CLUB, user_id="u1")
    everyone = await engine.list_redemptions(CLUB)

    assert [r.request_id for r in mine] == ["req-2", "req-1"]
    assert {r.request_id for r in everyone} == {"req-1", "req-2", "req-3"}
