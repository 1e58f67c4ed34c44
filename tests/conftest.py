"""
Pytest configuration and fixtures for Gavel tests.
"""

import sys
from pathlib import Path
from typing import Dict, List, Tuple

import pytest
import pytest_asyncio

# Add src directory to path so imports work
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from gavel.database.database import Database  # noqa: E402
from gavel.datatypes.enforcement_datatypes import (  # noqa: E402
    AccountStatusSnapshot,
    NotificationLevel,
)
from gavel.datatypes.role_datatypes import Role, UserRoles  # noqa: E402
from gavel.datatypes.signal_datatypes import (  # noqa: E402
    AnomalyDetection,
    ContentReport,
    TrustFlags,
)
from gavel.engine import GovernanceEngine  # noqa: E402
from gavel.repositories.roles_repo import RolesRepository  # noqa: E402

# 2023-11-14 22:13:20 UTC
START_TS = 1_700_000_000


class FakeClock:
    """Controllable unix-second clock."""

    def __init__(self, start: int = START_TS) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> int:
        self.now += int(seconds)
        return self.now


class FakeTrustProfiles:
    def __init__(self) -> None:
        self.flags: Dict[str, TrustFlags] = {}

    def set(self, user_id: str, ai_flags: int = 0, community_flags: int = 0) -> None:
        self.flags[user_id] = TrustFlags(ai_flags=ai_flags, community_flags=community_flags)

    async def get_flags(self, user_id: str) -> TrustFlags:
        return self.flags.get(user_id, TrustFlags())


class FakeReports:
    def __init__(self) -> None:
        self.reports: Dict[str, List[ContentReport]] = {}

    def add(self, user_id: str, reporter_id: str, created_at: int) -> None:
        self.reports.setdefault(user_id, []).append(ContentReport(reporter_id=reporter_id, created_at=created_at))

    async def get_reports(self, user_id: str, since: int) -> List[ContentReport]:
        return [report for report in self.reports.get(user_id, []) if report.created_at >= since]


class FakeAnomalies:
    def __init__(self) -> None:
        self.anomalies: Dict[str, List[AnomalyDetection]] = {}

    def add(self, user_id: str, score: float, detected_at: int, kind: str = "velocity") -> None:
        self.anomalies.setdefault(user_id, []).append(
            AnomalyDetection(kind=kind, score=score, detected_at=detected_at)
        )

    async def get_anomalies(self, user_id: str, since: int) -> List[AnomalyDetection]:
        return [item for item in self.anomalies.get(user_id, []) if item.detected_at >= since]


class FakeAccountStatusEngine:
    def __init__(self) -> None:
        self.snapshots: Dict[str, AccountStatusSnapshot] = {}
        self.applied: List[Tuple[AccountStatusSnapshot, str]] = []
        self.fail = False

    def set(self, snapshot: AccountStatusSnapshot) -> None:
        self.snapshots[snapshot.user_id] = snapshot

    async def get_status(self, user_id: str) -> AccountStatusSnapshot:
        if self.fail:
            raise ConnectionError("account status engine unavailable")
        return self.snapshots.get(user_id, AccountStatusSnapshot(user_id=user_id))

    async def apply_status(self, snapshot: AccountStatusSnapshot, reason: str) -> None:
        if self.fail:
            raise ConnectionError("account status engine unavailable")
        self.snapshots[snapshot.user_id] = snapshot
        self.applied.append((snapshot, reason))


class FakeNotifier:
    def __init__(self) -> None:
        self.sent: List[Tuple[str, NotificationLevel]] = []
        self.fail = False

    async def send_enforcement_notice(self, user_id: str, level: NotificationLevel) -> None:
        if self.fail:
            raise RuntimeError("push gateway down")
        self.sent.append((user_id, level))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def trust_profiles() -> FakeTrustProfiles:
    return FakeTrustProfiles()


@pytest.fixture
def reports() -> FakeReports:
    return FakeReports()


@pytest.fixture
def anomalies() -> FakeAnomalies:
    return FakeAnomalies()


@pytest.fixture
def account_status() -> FakeAccountStatusEngine:
    return FakeAccountStatusEngine()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest_asyncio.fixture
async def db(tmp_path):
    """Initialized governance database in a temporary directory."""
    database = Database(tmp_path / "gavel.db")
    assert await database.initialize()
    yield database
    await database.shutdown()


@pytest_asyncio.fixture
async def engine(db, trust_profiles, reports, anomalies, account_status, notifier, clock):
    return GovernanceEngine(
        db,
        trust_profiles=trust_profiles,
        reports=reports,
        anomalies=anomalies,
        account_status=account_status,
        notifier=notifier,
        clock=clock,
    )


async def grant_roles(db: Database, user_id: str, *roles: Role) -> None:
    """Write a role record directly, bypassing the admin check."""
    async with db.transaction() as conn:
        await RolesRepository.upsert(conn, UserRoles(user_id=user_id, roles=frozenset(roles)))


@pytest_asyncio.fixture
async def staff(db):
    """Seed one moderator per level: community mod, trusted mod and three admins."""
    await grant_roles(db, "cm1", Role.COMMUNITY_MOD)
    await grant_roles(db, "tm1", Role.TRUSTED_MOD)
    await grant_roles(db, "admin1", Role.ADMIN)
    await grant_roles(db, "admin2", Role.ADMIN)
    await grant_roles(db, "admin3", Role.ADMIN, Role.TRUSTED_MOD)
    return {"community": "cm1", "trusted": "tm1", "admins": ["admin1", "admin2", "admin3"]}
