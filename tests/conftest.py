"""Shared test fixtures.

The suite runs against a throwaway SQLite file so it needs no PostgreSQL.
Settings are read at import time, so the environment is set before any
rally_credits import.
"""

import os
import tempfile
from pathlib import Path

_DB_DIR = tempfile.mkdtemp(prefix="rally-credits-tests-")
os.environ["RC_DATABASE_URL"] = f"sqlite+aiosqlite:///{Path(_DB_DIR) / 'ledger.db'}"
os.environ.setdefault("RC_STORAGE_RETRY_ATTEMPTS", "10")
os.environ.setdefault("RC_STORAGE_RETRY_BASE_DELAY_SECONDS", "0.01")
os.environ.setdefault("RC_STORAGE_RETRY_MAX_DELAY_SECONDS", "0.1")

import httpx  # noqa: E402
import pytest  # noqa: E402

from rally_credits.core.database import async_session_factory, engine  # noqa: E402
from rally_credits.models import Base, CatalogItem, CatalogItemType  # noqa: E402
from rally_credits.services.attendance import AttendanceStatus  # noqa: E402
from rally_credits.services.grants import PendingGrantTracker  # noqa: E402
from rally_credits.services.ledger import CreditLedger  # noqa: E402


@pytest.fixture(autouse=True)
async def _fresh_database():
    """Dispose stale pool connections and rebuild the schema for every test.

    The global engine is created at import time. When pytest-asyncio creates a new
    event loop for tests, any existing pooled connections are bound to the old loop
    and will fail with 'Future attached to a different loop'. Disposing before each
    test forces fresh connections in the current loop.
    """
    await engine.dispose()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


class FakeAttendance:
    """Attendance collaborator driven by the test.

    Anything not set is UNKNOWN and not concluded. Events in ``failing``
    raise like an unreachable attendance service.
    """

    def __init__(self):
        self.statuses: dict[tuple[str, str], AttendanceStatus] = {}
        self.concluded: set[str] = set()
        self.failing: set[str] = set()
        self.lookups: list[tuple[str, str]] = []

    def check_in(self, user_id: str, event_id: str) -> None:
        self.statuses[(user_id, event_id)] = AttendanceStatus.CHECKED_IN

    def no_show(self, user_id: str, event_id: str) -> None:
        self.statuses[(user_id, event_id)] = AttendanceStatus.NOT_CHECKED_IN
        self.concluded.add(event_id)

    async def is_checked_in(self, user_id: str, event_id: str) -> AttendanceStatus:
        self.lookups.append((user_id, event_id))
        if event_id in self.failing:
            raise httpx.ConnectError("attendance service unreachable")
        return self.statuses.get((user_id, event_id), AttendanceStatus.UNKNOWN)

    async def has_event_concluded(self, event_id: str) -> bool:
        return event_id in self.concluded


class RecordingFulfillment:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.notified = []

    async def notify(self, record) -> None:
        if self.fail:
            raise httpx.ConnectError("broker down")
        self.notified.append(record)


@pytest.fixture
def ledger():
    return CreditLedger()


@pytest.fixture
def grants(ledger):
    return PendingGrantTracker(ledger)


@pytest.fixture
def attendance():
    return FakeAttendance()


@pytest.fixture
def fulfillment():
    return RecordingFulfillment()


@pytest.fixture
def failing_fulfillment():
    return RecordingFulfillment(fail=True)


@pytest.fixture
def make_item():
    async def _make(club_id: str = "club-1", credits_required: int = 50, active: bool = True, name: str = "Free coffee"):
        async with async_session_factory() as db:
            item = CatalogItem(
                club_id=club_id,
                name=name,
                credits_required=credits_required,
                item_type=CatalogItemType.FREE_ITEM,
                active=active,
            )
            db.add(item)
            await db.commit()
            return item

    return _make
