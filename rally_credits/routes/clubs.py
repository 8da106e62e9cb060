"""Club admin routes: member balances, manual adjustments, catalog and redemptions."""

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from rally_credits.core.database import get_db
from rally_credits.core.dependencies import CurrentUser, get_ledger, get_redemption_engine, require_club_admin
from rally_credits.schemas import (
    AdjustmentRequest,
    BalanceOut,
    CatalogItemCreate,
    CatalogItemOut,
    CatalogItemUpdate,
    ReconcileOut,
    RedemptionOut,
    SetBalanceRequest,
    TransactionIdOut,
    TransactionPageOut,
)
from rally_credits.services.catalog import create_catalog_item, list_catalog, update_catalog_item
from rally_credits.services.ledger import CreditLedger
from rally_credits.services.redemption import RedemptionEngine

router = APIRouter(prefix="/clubs/{club_id}", tags=["club admin"])

NON_NULLABLE_ITEM_FIELDS = ("name", "description", "credits_required", "item_type", "active")


# ---------------------------------------------------------------------------
# Member credits
# ---------------------------------------------------------------------------


@router.get("/members/{user_id}/credits", response_model=BalanceOut)
async def get_member_balance(
    club_id: str = Path(...),
    user_id: str = Path(...),
    admin: CurrentUser = Depends(require_club_admin),
    ledger: CreditLedger = Depends(get_ledger),
):
    return await ledger.get_balance(user_id, club_id)


@router.get("/members/{user_id}/credits/transactions", response_model=TransactionPageOut)
async def list_member_transactions(
    club_id: str = Path(...),
    user_id: str = Path(...),
    cursor: int | None = Query(None),
    limit: int | None = Query(None, ge=1, le=200),
    admin: CurrentUser = Depends(require_club_admin),
    ledger: CreditLedger = Depends(get_ledger),
):
    page = await ledger.list_transactions(user_id, club_id, cursor=cursor, limit=limit)
    return TransactionPageOut.model_validate(page, from_attributes=True)


@router.post(
    "/members/{user_id}/credits/adjustments",
    response_model=TransactionIdOut,
    status_code=status.HTTP_201_CREATED,
)
async def adjust_member_credits(
    body: AdjustmentRequest,
    club_id: str = Path(...),
    user_id: str = Path(...),
    admin: CurrentUser = Depends(require_club_admin),
    ledger: CreditLedger = Depends(get_ledger),
):
    """Add (positive) or remove (negative) credits. Removal cannot take a member below zero."""
    if body.amount == 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Amount must not be zero")

    txn_id = await ledger.adjust_credits(user_id, club_id, body.amount, body.description)
    return TransactionIdOut(transaction_id=txn_id)


@router.put("/members/{user_id}/credits", response_model=TransactionIdOut)
async def set_member_credits(
    body: SetBalanceRequest,
    club_id: str = Path(...),
    user_id: str = Path(...),
    admin: CurrentUser = Depends(require_club_admin),
    ledger: CreditLedger = Depends(get_ledger),
):
    """Set available credits to an exact value. ``transaction_id`` is null when nothing changed."""
    txn_id = await ledger.set_credits(user_id, club_id, body.available, body.description)
    return TransactionIdOut(transaction_id=txn_id)


@router.post("/members/{user_id}/credits/reconcile", response_model=ReconcileOut)
async def reconcile_member_credits(
    club_id: str = Path(...),
    user_id: str = Path(...),
    admin: CurrentUser = Depends(require_club_admin),
    ledger: CreditLedger = Depends(get_ledger),
):
    result = await ledger.reconcile(user_id, club_id)
    return ReconcileOut(
        cached=BalanceOut.model_validate(result.cached, from_attributes=True),
        projected=BalanceOut.model_validate(result.projected, from_attributes=True),
        drifted=result.drifted,
    )


# ---------------------------------------------------------------------------
# Catalog maintenance
# ---------------------------------------------------------------------------


@router.get("/catalog/all", response_model=list[CatalogItemOut])
async def list_all_catalog_items(
    club_id: str = Path(...),
    admin: CurrentUser = Depends(require_club_admin),
    db: AsyncSession = Depends(get_db),
):
    """Every catalog item for the club, including deactivated ones."""
    return await list_catalog(db, club_id, include_inactive=True)


@router.post("/catalog", response_model=CatalogItemOut, status_code=status.HTTP_201_CREATED)
async def create_item(
    body: CatalogItemCreate,
    club_id: str = Path(...),
    admin: CurrentUser = Depends(require_club_admin),
    db: AsyncSession = Depends(get_db),
):
    return await create_catalog_item(db, club_id, **body.model_dump())


@router.patch("/catalog/{item_id}", response_model=CatalogItemOut)
async def update_item(
    body: CatalogItemUpdate,
    club_id: str = Path(...),
    item_id: int = Path(...),
    admin: CurrentUser = Depends(require_club_admin),
    db: AsyncSession = Depends(get_db),
):
    """Partial update. Send ``{"active": false}`` to withdraw an item."""
    changes = body.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Nothing to update")
    if any(changes[f] is None for f in NON_NULLABLE_ITEM_FIELDS if f in changes):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Required fields cannot be null")

    return await update_catalog_item(db, club_id, item_id, **changes)


# ---------------------------------------------------------------------------
# Redemptions
# ---------------------------------------------------------------------------


@router.get("/redemptions/all", response_model=list[RedemptionOut])
async def list_club_redemptions(
    club_id: str = Path(...),
    admin: CurrentUser = Depends(require_club_admin),
    engine: RedemptionEngine = Depends(get_redemption_engine),
):
    return await engine.list_redemptions(club_id)
