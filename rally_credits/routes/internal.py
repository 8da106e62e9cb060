"""Service-to-service routes.

Checkout grants pending credits when a ticket is issued, the events service
forfeits them when a registration is cancelled, and schedulers may trigger
confirmation on a user's behalf. All calls carry X-Service-Token.
"""

from fastapi import APIRouter, Depends, HTTPException, Path, status

from rally_credits.core.dependencies import get_confirmation_engine, get_grant_tracker, require_service_token
from rally_credits.schemas import ConfirmationOut, ForfeitRequest, GrantRequest, TransactionIdOut
from rally_credits.services.confirmation import ConfirmationEngine
from rally_credits.services.grants import PendingGrantTracker

router = APIRouter(prefix="/internal", tags=["internal"], dependencies=[Depends(require_service_token)])


@router.post("/grants", response_model=TransactionIdOut, status_code=status.HTTP_201_CREATED)
async def grant_pending_credits(
    body: GrantRequest,
    grants: PendingGrantTracker = Depends(get_grant_tracker),
):
    """Promise credits for an event. Redelivery of the same (user, event) returns the original grant."""
    try:
        txn_id = await grants.grant_pending_credits(
            body.user_id, body.club_id, body.event_id, body.amount, body.description
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from None
    return TransactionIdOut(transaction_id=txn_id)


@router.post("/grants/forfeit", response_model=TransactionIdOut)
async def forfeit_event_credits(
    body: ForfeitRequest,
    grants: PendingGrantTracker = Depends(get_grant_tracker),
):
    """Take back credits for an event the user left. ``transaction_id`` is null when there was nothing to take."""
    txn = await grants.forfeit_event_credits(body.user_id, body.club_id, body.event_id)
    return TransactionIdOut(transaction_id=txn.id if txn else None)


@router.post("/users/{user_id}/confirm", response_model=ConfirmationOut)
async def confirm_user_credits(
    user_id: str = Path(...),
    engine: ConfirmationEngine = Depends(get_confirmation_engine),
):
    result = await engine.confirm_pending(user_id)
    return ConfirmationOut.model_validate(result, from_attributes=True)
