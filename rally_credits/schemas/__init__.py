"""Pydantic schemas for API serialisation."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from rally_credits.models.catalog import CatalogItemType
from rally_credits.models.credit import TransactionType
from rally_credits.models.redemption import RedemptionStatus

# --- Balance & log ---


class BalanceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    club_id: str
    available: int
    pending: int


class CreditTransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    transaction_type: TransactionType
    amount: int
    event_id: str | None
    grant_id: int | None
    redemption_request_id: str | None
    description: str
    created_at: datetime


class TransactionPageOut(BaseModel):
    items: list[CreditTransactionOut]
    next_cursor: int | None


class ReconcileOut(BaseModel):
    cached: BalanceOut
    projected: BalanceOut
    drifted: bool


# --- Admin adjustments ---


class AdjustmentRequest(BaseModel):
    amount: int = Field(..., description="Positive adds credits, negative removes them")
    description: str = Field(..., min_length=1, max_length=500)


class SetBalanceRequest(BaseModel):
    available: int = Field(..., ge=0)
    description: str = Field("Balance set by club admin", min_length=1, max_length=500)


class TransactionIdOut(BaseModel):
    transaction_id: int | None


# --- Grants & confirmation ---


class GrantRequest(BaseModel):
    user_id: str
    club_id: str
    event_id: str
    amount: int = Field(..., gt=0)
    description: str | None = None


class ForfeitRequest(BaseModel):
    user_id: str
    club_id: str
    event_id: str


class ConfirmationOut(BaseModel):
    confirmed_count: int
    forfeited_count: int
    unresolved_count: int


# --- Catalog ---


class CatalogItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    club_id: str
    name: str
    description: str
    credits_required: int
    item_type: CatalogItemType
    active: bool
    discount_amount_cents: int | None
    discount_percent: int | None


class CatalogItemCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    credits_required: int = Field(..., gt=0)
    item_type: CatalogItemType = CatalogItemType.CUSTOM
    discount_amount_cents: int | None = Field(None, ge=0)
    discount_percent: int | None = Field(None, ge=0, le=100)
    active: bool = True


class CatalogItemUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=200)
    description: str | None = None
    credits_required: int | None = Field(None, gt=0)
    item_type: CatalogItemType | None = None
    discount_amount_cents: int | None = Field(None, ge=0)
    discount_percent: int | None = Field(None, ge=0, le=100)
    active: bool | None = None


# --- Redemption ---


class RedemptionRequest(BaseModel):
    catalog_item_id: int
    request_id: str = Field(..., min_length=1, max_length=128)


class RedemptionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    club_id: str
    catalog_item_id: int
    request_id: str
    credits_spent: int
    status: RedemptionStatus
    transaction_id: int | None
    created_at: datetime
