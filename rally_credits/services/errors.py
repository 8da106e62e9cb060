"""Ledger error taxonomy.

Every failure a ledger caller can act on is a LedgerError. The HTTP layer
maps each subclass to a status code in rally_credits.main.
"""


class LedgerError(Exception):
    code = "ledger_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class StorageUnavailable(LedgerError):
    """The backing store failed or stayed contended after every retry. Safe to retry later."""

    code = "storage_unavailable"

    def __init__(self, message: str = "Credits are temporarily unavailable, please try again"):
        super().__init__(message)


class InsufficientBalance(LedgerError):
    code = "insufficient_balance"

    def __init__(self, available: int, required: int):
        self.available = available
        self.required = required
        super().__init__(f"You need {required} credits but only have {available} available")


class ItemInactive(LedgerError):
    code = "item_inactive"

    def __init__(self, item_id: int):
        self.item_id = item_id
        super().__init__("This reward is no longer available")


class NotFound(LedgerError):
    code = "not_found"


class IdempotencyConflict(LedgerError):
    """A request id was reused for a different redemption."""

    code = "idempotency_conflict"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Request id {request_id} was already used for a different redemption")


class ConcurrentModification(Exception):
    """Internal: a conditional write lost a race. The unit is rolled back and retried."""
