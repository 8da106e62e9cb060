"""Confirmation engine.

Turns promised credits into spendable ones once attendance is known.
Attendance is looked up before any write, and every grant is resolved in
its own unit, so one slow or failing grant never holds back the rest and
no database lock is held across the attendance call.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from rally_credits.core.config import settings
from rally_credits.models.base import utcnow
from rally_credits.models.credit import GrantResolution, PendingGrant
from rally_credits.services.attendance import AttendanceProvider, AttendanceStatus
from rally_credits.services.errors import LedgerError
from rally_credits.services.grants import PendingGrantTracker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConfirmationResult:
    confirmed_count: int = 0
    forfeited_count: int = 0
    unresolved_count: int = 0


class ConfirmationEngine:
    def __init__(
        self,
        grants: PendingGrantTracker,
        attendance: AttendanceProvider,
        pending_grant_ttl: timedelta | None = None,
    ):
        self.grants = grants
        self.attendance = attendance
        if pending_grant_ttl is None and settings.pending_grant_ttl_days is not None:
            pending_grant_ttl = timedelta(days=settings.pending_grant_ttl_days)
        self.pending_grant_ttl = pending_grant_ttl

    async def confirm_pending(self, user_id: str, now: datetime | None = None) -> ConfirmationResult:
        """Resolve every outstanding grant for ``user_id`` whose outcome is known.

        Safe to call any number of times, from any number of devices at once:
        a grant somebody else already resolved is skipped without error.
        """
        now = now or utcnow()
        confirmed = forfeited = unresolved = 0

        for grant in await self.grants.list_unresolved(user_id):
            try:
                decision = await self._decide(grant, now)
            except Exception:
                logger.warning(
                    "Attendance lookup failed for user=%s event=%s on grant %s",
                    user_id,
                    grant.event_id,
                    grant.id,
                    exc_info=True,
                )
                decision = self._expire_if_stale(grant, now)

            if decision is None:
                unresolved += 1
                continue

            resolution, description = decision
            try:
                txn = await self.grants.resolve(grant.id, resolution, description)
            except LedgerError:
                logger.warning("Could not resolve grant %s for user=%s, will retry later", grant.id, user_id, exc_info=True)
                unresolved += 1
                continue

            if txn is None:
                logger.info("Grant %s was already resolved by another caller", grant.id)
            elif resolution == GrantResolution.CONFIRMED:
                confirmed += 1
            else:
                forfeited += 1

        if confirmed or forfeited:
            logger.info(
                "Confirmed %d and forfeited %d grants for user=%s (%d still pending)",
                confirmed,
                forfeited,
                user_id,
                unresolved,
            )
        return ConfirmationResult(confirmed_count=confirmed, forfeited_count=forfeited, unresolved_count=unresolved)

    async def _decide(self, grant: PendingGrant, now: datetime) -> tuple[GrantResolution, str] | None:
        status = await self.attendance.is_checked_in(grant.user_id, grant.event_id)
        if status == AttendanceStatus.CHECKED_IN:
            return GrantResolution.CONFIRMED, f"Checked in at event {grant.event_id}"

        if status == AttendanceStatus.NOT_CHECKED_IN and await self.attendance.has_event_concluded(grant.event_id):
            return GrantResolution.FORFEITED_PENDING, f"Did not check in at event {grant.event_id}"

        return self._expire_if_stale(grant, now)

    def _expire_if_stale(self, grant: PendingGrant, now: datetime) -> tuple[GrantResolution, str] | None:
        """Forfeit a grant older than the pending TTL, whatever attendance says or fails to say."""
        if self.pending_grant_ttl is not None and grant.granted_at + self.pending_grant_ttl <= now:
            return GrantResolution.FORFEITED_PENDING, f"Pending credits for event {grant.event_id} expired"
        return None
