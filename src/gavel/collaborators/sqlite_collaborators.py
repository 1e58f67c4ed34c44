"""
SQLite adapters for the platform collaborators.

Signal producers and the account-status engine write to shared tables in the
same database (``trust_profiles``, ``content_reports``, ``anomaly_detections``,
``account_status``). These adapters are the governance engine's only view of
them.
"""

from __future__ import annotations

import json
from typing import List

from gavel.database.database import Database
from gavel.datatypes.enforcement_datatypes import (
    AccountStatus,
    AccountStatusSnapshot,
    VisibilityTier,
)
from gavel.datatypes.signal_datatypes import AnomalyDetection, ContentReport, TrustFlags
from gavel.util.logger import get_logger
from gavel.util.time_utils import Clock, now_ts

logger = get_logger("sqlite_collaborators")


class SQLiteTrustProfileReader:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def get_flags(self, user_id: str) -> TrustFlags:
        async with self.db.read() as conn:
            async with conn.execute(
                "SELECT ai_flags, community_flags FROM trust_profiles WHERE user_id = ?", (user_id,)
            ) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return TrustFlags()
        return TrustFlags(ai_flags=row["ai_flags"], community_flags=row["community_flags"])


class SQLiteContentReportStore:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def get_reports(self, user_id: str, since: int) -> List[ContentReport]:
        async with self.db.read() as conn:
            async with conn.execute(
                """
                SELECT reporter_id, created_at, reason FROM content_reports
                WHERE target_user_id = ? AND created_at >= ?
                ORDER BY created_at
                """,
                (user_id, since),
            ) as cursor:
                rows = await cursor.fetchall()
        return [
            ContentReport(reporter_id=row["reporter_id"], created_at=row["created_at"], reason=row["reason"])
            for row in rows
        ]


class SQLiteAnomalyFeed:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def get_anomalies(self, user_id: str, since: int) -> List[AnomalyDetection]:
        async with self.db.read() as conn:
            async with conn.execute(
                """
                SELECT kind, score, detected_at FROM anomaly_detections
                WHERE user_id = ? AND detected_at >= ?
                ORDER BY detected_at
                """,
                (user_id, since),
            ) as cursor:
                rows = await cursor.fetchall()
        return [
            AnomalyDetection(kind=row["kind"], score=row["score"], detected_at=row["detected_at"])
            for row in rows
        ]


class SQLiteAccountStatusEngine:
    """Reads and writes the shared ``account_status`` table.

    Users without a row are reported as Active with no locks.
    """

    def __init__(self, db: Database, clock: Clock = now_ts) -> None:
        self.db = db
        self.clock = clock

    async def get_status(self, user_id: str) -> AccountStatusSnapshot:
        async with self.db.read() as conn:
            async with conn.execute(
                "SELECT * FROM account_status WHERE user_id = ?", (user_id,)
            ) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return AccountStatusSnapshot(user_id=user_id)
        return AccountStatusSnapshot(
            user_id=user_id,
            status=AccountStatus(row["status"]),
            feature_locks=list(json.loads(row["feature_locks"])),
            visibility_tier=VisibilityTier(row["visibility_tier"]),
        )

    async def apply_status(self, snapshot: AccountStatusSnapshot, reason: str) -> None:
        async with self.db.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO account_status (user_id, status, feature_locks, visibility_tier, reason, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    status = excluded.status,
                    feature_locks = excluded.feature_locks,
                    visibility_tier = excluded.visibility_tier,
                    reason = excluded.reason,
                    updated_at = excluded.updated_at
                """,
                (
                    snapshot.user_id,
                    snapshot.status.value,
                    json.dumps(sorted(set(snapshot.feature_locks))),
                    snapshot.visibility_tier.value,
                    reason,
                    self.clock(),
                ),
            )
        logger.debug("[ACCOUNT STATUS] %s -> %s (%s)", snapshot.user_id, snapshot.status, reason)
