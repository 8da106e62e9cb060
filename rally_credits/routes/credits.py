"""Member routes: own balance, history, confirmation, catalog and redemptions."""

from fastapi import APIRouter, Depends, Query, Response, status

from rally_credits.core.dependencies import (
    CurrentUser,
    get_catalog,
    get_confirmation_engine,
    get_current_user,
    get_ledger,
    get_redemption_engine,
)
from rally_credits.schemas import (
    BalanceOut,
    CatalogItemOut,
    ConfirmationOut,
    RedemptionOut,
    RedemptionRequest,
    TransactionPageOut,
)
from rally_credits.services.catalog import SqlCatalog
from rally_credits.services.confirmation import ConfirmationEngine
from rally_credits.services.ledger import CreditLedger
from rally_credits.services.redemption import RedemptionEngine

router = APIRouter(tags=["credits"])


@router.get("/clubs/{club_id}/credits", response_model=BalanceOut)
async def get_my_balance(
    club_id: str,
    user: CurrentUser = Depends(get_current_user),
    ledger: CreditLedger = Depends(get_ledger),
):
    return await ledger.get_balance(user.user_id, club_id)


@router.get("/clubs/{club_id}/credits/transactions", response_model=TransactionPageOut)
async def list_my_transactions(
    club_id: str,
    cursor: int | None = Query(None, description="Id of the last transaction on the previous page"),
    limit: int | None = Query(None, ge=1, le=200),
    user: CurrentUser = Depends(get_current_user),
    ledger: CreditLedger = Depends(get_ledger),
):
    page = await ledger.list_transactions(user.user_id, club_id, cursor=cursor, limit=limit)
    return TransactionPageOut.model_validate(page, from_attributes=True)


@router.post("/credits/confirm", response_model=ConfirmationOut)
async def confirm_my_credits(
    user: CurrentUser = Depends(get_current_user),
    engine: ConfirmationEngine = Depends(get_confirmation_engine),
):
    """Check attendance for every pending grant and release what is due.

    Clients call this when the user opens their wallet. Safe to call as
    often as they like.
    """
    result = await engine.confirm_pending(user.user_id)
    return ConfirmationOut.model_validate(result, from_attributes=True)


@router.get("/clubs/{club_id}/catalog", response_model=list[CatalogItemOut])
async def list_catalog(
    club_id: str,
    user: CurrentUser = Depends(get_current_user),
    catalog: SqlCatalog = Depends(get_catalog),
):
    return await catalog.list_catalog(club_id)


@router.post(
    "/clubs/{club_id}/redemptions",
    response_model=RedemptionOut,
    status_code=status.HTTP_201_CREATED,
)
async def redeem(
    club_id: str,
    body: RedemptionRequest,
    response: Response,
    user: CurrentUser = Depends(get_current_user),
    engine: RedemptionEngine = Depends(get_redemption_engine),
):
    """Spend credits on a catalog item.

    201 for a new redemption, 200 when ``request_id`` was already used for
    this same redemption (the original record is returned).
    """
    result = await engine.redeem(user.user_id, club_id, body.catalog_item_id, body.request_id)
    if result.replayed:
        response.status_code = status.HTTP_200_OK
    return result.record


@router.get("/clubs/{club_id}/redemptions", response_model=list[RedemptionOut])
async def list_my_redemptions(
    club_id: str,
    user: CurrentUser = Depends(get_current_user),
    engine: RedemptionEngine = Depends(get_redemption_engine),
):
    return await engine.list_redemptions(club_id, user_id=user.user_id)
