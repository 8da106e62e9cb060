"""Pending grants: creation, idempotency and forfeiture when a user leaves an event."""

import pytest

from rally_credits.models.credit import GrantResolution, TransactionType

USER = "user-1"
CLUB = "club-1"


async def test_grant_appends_pending_and_records_grant(ledger, grants):
    txn_id = await grants.grant_pending_credits(USER, CLUB, "evt-1", 50)

    grant = await grants.get_grant(USER, "evt-1")
    assert grant.grant_transaction_id == txn_id
    assert grant.amount == 50
    assert not grant.resolved

    balance = await ledger.get_balance(USER, CLUB)
    assert (balance.available, balance.pending) == (0, 50)

    page = await ledger.list_transactions(USER, CLUB)
    assert page.items[0].transaction_type == TransactionType.PENDING
    assert page.items[0].grant_id == grant.id
    assert page.items[0].event_id == "evt-1"


async def test_grant_is_idempotent_per_user_and_event(ledger, grants):
    first = await grants.grant_pending_credits(USER, CLUB, "evt-1", 50)
    second = await grants.grant_pending_credits(USER, CLUB, "evt-1", 50)

    assert first == second
    assert (await ledger.get_balance(USER, CLUB)).pending == 50
    assert len((await ledger.list_transactions(USER, CLUB)).items) == 1


async def test_grant_rejects_non_positive_amount(grants):
    with pytest.raises(ValueError):
        await grants.grant_pending_credits(USER, CLUB, "evt-1", 0)


async def test_grant_for_same_event_under_other_club_is_rejected(grants):
    await grants.grant_pending_credits(USER, CLUB, "evt-1", 50)
    with pytest.raises(ValueError, match="already has a grant"):
        await grants.grant_pending_credits(USER, "club-2", "evt-1", 50)


async def test_list_unresolved_spans_clubs(grants):
    await grants.grant_pending_credits(USER, "club-a", "evt-1", 10)
    await grants.grant_pending_credits(USER, "club-b", "evt-2", 20)
    await grants.grant_pending_credits("user-2", "club-a", "evt-1", 30)

    unresolved = await grants.list_unresolved(USER)
    assert [(g.club_id, g.event_id) for g in unresolved] == [("club-a", "evt-1"), ("club-b", "evt-2")]


async def test_resolve_twice_only_appends_once(ledger, grants):
    await grants.grant_pending_credits(USER, CLUB, "evt-1", 50)
    grant = await grants.get_grant(USER, "evt-1")

    first = await grants.resolve(grant.id, GrantResolution.CONFIRMED, "Checked in")
    second = await grants.resolve(grant.id, GrantResolution.FORFEITED_PENDING, "Late duplicate")

    assert first is not None
    assert second is None
    resolved = await grants.get_grant(USER, "evt-1")
    assert resolved.resolution == GrantResolution.CONFIRMED
    assert resolved.resolution_transaction_id == first.id
    assert (await ledger.get_balance(USER, CLUB)).available == 50


async def test_leaving_before_confirmation_forfeits_pending(ledger, grants):
    await grants.grant_pending_credits(USER, CLUB, "evt-1", 40)

    txn = await grants.forfeit_event_credits(USER, CLUB, "evt-1")

    assert txn.transaction_type == TransactionType.FORFEITED_PENDING
    assert txn.amount == -40
    balance = await ledger.get_balance(USER, CLUB)
    assert (balance.available, balance.pending) == (0, 0)
    assert (await grants.get_grant(USER, "evt-1")).resolution == GrantResolution.FORFEITED_PENDING


async def test_leaving_after_confirmation_forfeits_what_is_left(ledger, grants):
    await grants.grant_pending_credits(USER, CLUB, "evt-1", 40)
    grant = await grants.get_grant(USER, "evt-1")
    await grants.resolve(grant.id, GrantResolution.CONFIRMED, "Checked in")
    await ledger.adjust_credits(USER, CLUB, -25, "Spent elsewhere")

    txn = await grants.forfeit_event_credits(USER, CLUB, "evt-1")

    assert txn.transaction_type == TransactionType.FORFEITED
    assert txn.amount == -15
    assert (await ledger.get_balance(USER, CLUB)).available == 0


async def test_forfeit_is_a_no_op_the_second_time(ledger, grants):
    await grants.grant_pending_credits(USER, CLUB, "evt-1", 40)
    grant = await grants.get_grant(USER, "evt-1")
    await grants.resolve(grant.id, GrantResolution.CONFIRMED, "Checked in")
    await ledger.adjust_credits(USER, CLUB, 100, "Bonus")

    assert await grants.forfeit_event_credits(USER, CLUB, "evt-1") is not None
    assert await grants.forfeit_event_credits(USER, CLUB, "evt-1") is None
    assert (await ledger.get_balance(USER, CLUB)).available == 100


async def test_forfeit_without_grant_is_a_no_op(grants):
    assert await grants.forfeit_event_credits(USER, CLUB, "never-registered") is None
