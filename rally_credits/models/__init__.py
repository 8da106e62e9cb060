"""All models imported here for Alembic autogenerate discovery."""

from rally_credits.models.base import Base
from rally_credits.models.catalog import CatalogItem, CatalogItemType
from rally_credits.models.credit import (
    CreditAccount,
    CreditTransaction,
    GrantResolution,
    PendingGrant,
    TransactionType,
)
from rally_credits.models.redemption import RedemptionRecord, RedemptionStatus

__all__ = [
    "Base",
    "CreditAccount",
    "CreditTransaction",
    "TransactionType",
    "PendingGrant",
    "GrantResolution",
    "CatalogItem",
    "CatalogItemType",
    "RedemptionRecord",
    "RedemptionStatus",
]
