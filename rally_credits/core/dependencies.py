"""FastAPI dependencies for injection into route handlers."""

import hmac
from dataclasses import dataclass, field

from fastapi import Depends, Header, HTTPException, Path, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from rally_credits.core.auth import decode_token
from rally_credits.core.config import settings
from rally_credits.services.attendance import AttendanceProvider, HttpAttendanceClient
from rally_credits.services.catalog import SqlCatalog
from rally_credits.services.confirmation import ConfirmationEngine
from rally_credits.services.fulfillment import CeleryFulfillmentNotifier, FulfillmentNotifier
from rally_credits.services.grants import PendingGrantTracker
from rally_credits.services.ledger import CreditLedger
from rally_credits.services.redemption import RedemptionEngine

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class CurrentUser:
    """The caller as described by their access token. Users live in the identity service."""

    user_id: str
    admin_club_ids: frozenset[str] = field(default_factory=frozenset)

    def is_club_admin(self, club_id: str) -> bool:
        return club_id in self.admin_club_ids


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> CurrentUser:
    """Extract and validate the current user from the JWT bearer token."""
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    try:
        payload = decode_token(credentials.credentials)
        if payload.get("type") != "access":
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token type")
        user_id = str(payload["sub"])
    except (JWTError, KeyError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    admin_clubs = payload.get("admin_clubs") or []
    return CurrentUser(user_id=user_id, admin_club_ids=frozenset(str(c) for c in admin_clubs))


async def require_club_admin(
    club_id: str = Path(...),
    user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    """Require the caller to administer the club in the URL."""
    if not user.is_club_admin(club_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Club admin access required")
    return user


async def require_service_token(x_service_token: str | None = Header(default=None)) -> None:
    """Guard for calls from checkout, attendance and schedulers."""
    if x_service_token is None or not hmac.compare_digest(x_service_token, settings.service_token):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid service token")


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


def get_ledger() -> CreditLedger:
    return CreditLedger()


def get_attendance() -> AttendanceProvider:
    return HttpAttendanceClient()


def get_fulfillment() -> FulfillmentNotifier:
    return CeleryFulfillmentNotifier()


def get_catalog() -> SqlCatalog:
    return SqlCatalog()


def get_grant_tracker(ledger: CreditLedger = Depends(get_ledger)) -> PendingGrantTracker:
    return PendingGrantTracker(ledger)


def get_confirmation_engine(
    grants: PendingGrantTracker = Depends(get_grant_tracker),
    attendance: AttendanceProvider = Depends(get_attendance),
) -> ConfirmationEngine:
    return ConfirmationEngine(grants, attendance)


def get_redemption_engine(
    ledger: CreditLedger = Depends(get_ledger),
    fulfillment: FulfillmentNotifier = Depends(get_fulfillment),
) -> RedemptionEngine:
    return RedemptionEngine(ledger, fulfillment)
