"""Tests for the database layer and the SQLite platform adapters."""

import aiosqlite
import pytest

from gavel.collaborators.sqlite_collaborators import (
    SQLiteAccountStatusEngine,
    SQLiteAnomalyFeed,
    SQLiteContentReportStore,
    SQLiteTrustProfileReader,
)
from gavel.database.database import Database
from gavel.database.db_schema import SCHEMA_VERSION
from gavel.datatypes.enforcement_datatypes import AccountStatus, AccountStatusSnapshot, VisibilityTier

from conftest import START_TS

GOVERNANCE_TABLES = [
    "user_roles",
    "enforcement_confidence",
    "moderation_cases",
    "case_history",
    "review_queue",
    "moderation_audit_log",
    "enforcement_appeals",
    "suspension_approvals",
    "suspension_approvers",
    "visibility_restrictions",
    "posting_restrictions",
    "moderator_rate_limits",
    "rogue_detections",
    "schema_version",
]


async def _names(db, kind):
    async with db.read() as conn:
        async with conn.execute("SELECT name FROM sqlite_master WHERE type = ?", (kind,)) as cursor:
            return {row["name"] for row in await cursor.fetchall()}


async def _insert_case(conn, case_id, subject, status):
    await conn.execute(
        """
        INSERT INTO moderation_cases (case_id, subject_user_id, status, priority, opened_at, opened_by, updated_at)
        VALUES (?, ?, ?, 'low', ?, 'AUTO', ?)
        """,
        (case_id, subject, status, START_TS, START_TS),
    )


class TestDatabaseLifecycle:
    """Tests for Database.initialize / shutdown."""

    @pytest.mark.asyncio
    async def test_initialize_creates_tables_and_indexes(self, db):
        tables = await _names(db, "table")
        indexes = await _names(db, "index")

        for table in GOVERNANCE_TABLES:
            assert table in tables
        assert {"trust_profiles", "content_reports", "anomaly_detections", "account_status"} <= tables
        assert "uq_cases_one_open_per_subject" in indexes
        assert "uq_appeals_one_pending_per_case" in indexes

        async with db.read() as conn:
            async with conn.execute("SELECT version FROM schema_version") as cursor:
                versions = [row["version"] for row in await cursor.fetchall()]
        assert versions == [SCHEMA_VERSION]

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, db):
        assert db.is_initialized is True
        assert await db.initialize() is True

    @pytest.mark.asyncio
    async def test_reopen_keeps_data(self, tmp_path):
        path = tmp_path / "reopen.db"
        first = Database(path)
        await first.initialize()
        async with first.transaction() as conn:
            await _insert_case(conn, "case_1", "u1", "open")
        await first.shutdown()
        assert first.is_initialized is False

        second = Database(path)
        assert await second.initialize() is True
        async with second.read() as conn:
            async with conn.execute("SELECT COUNT(*) AS n FROM moderation_cases") as cursor:
                assert (await cursor.fetchone())["n"] == 1
        await second.shutdown()

    @pytest.mark.asyncio
    async def test_initialize_failure_returns_false(self, tmp_path):
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("x", encoding="utf-8")

        database = Database(blocker / "gavel.db")

        assert await database.initialize() is False
        assert database.is_initialized is False

    @pytest.mark.asyncio
    async def test_shutdown_twice(self, tmp_path):
        database = Database(tmp_path / "twice.db")
        await database.initialize()

        await database.shutdown()
        await database.shutdown()

        assert database.is_initialized is False

    @pytest.mark.asyncio
    async def test_read_before_initialize_raises(self, tmp_path):
        database = Database(tmp_path / "closed.db")

        with pytest.raises(RuntimeError):
            async with database.read():
                pass


class TestTransactions:
    """Tests for the serialised write context."""

    @pytest.mark.asyncio
    async def test_rollback_on_error(self, db):
        with pytest.raises(ValueError):
            async with db.transaction() as conn:
                await _insert_case(conn, "case_1", "u1", "open")
                raise ValueError("abort")

        async with db.read() as conn:
            async with conn.execute("SELECT COUNT(*) AS n FROM moderation_cases") as cursor:
                assert (await cursor.fetchone())["n"] == 0

    @pytest.mark.asyncio
    async def test_one_open_case_per_subject(self, db):
        async with db.transaction() as conn:
            await _insert_case(conn, "case_1", "u1", "open")

        with pytest.raises(aiosqlite.IntegrityError):
            async with db.transaction() as conn:
                await _insert_case(conn, "case_2", "u1", "under_review")

        # closed cases do not count
        async with db.transaction() as conn:
            await _insert_case(conn, "case_3", "u1", "resolved")
            await _insert_case(conn, "case_4", "u2", "open")

    @pytest.mark.asyncio
    async def test_one_pending_appeal_per_case(self, db):
        async def insert_appeal(conn, appeal_id, status):
            await conn.execute(
                """
                INSERT INTO enforcement_appeals (appeal_id, case_id, user_id, explanation, status, submitted_at)
                VALUES (?, 'case_1', 'u1', '', ?, ?)
                """,
                (appeal_id, status, START_TS),
            )

        async with db.transaction() as conn:
            await _insert_case(conn, "case_1", "u1", "appealed")
            await insert_appeal(conn, "appeal_1", "pending")

        with pytest.raises(aiosqlite.IntegrityError):
            async with db.transaction() as conn:
                await insert_appeal(conn, "appeal_2", "pending")

        async with db.transaction() as conn:
            await insert_appeal(conn, "appeal_3", "rejected")


class TestSQLiteCollaborators:
    """Tests for the adapters over the shared platform tables."""

    @pytest.mark.asyncio
    async def test_trust_profile_defaults_and_values(self, db):
        reader = SQLiteTrustProfileReader(db)
        assert (await reader.get_flags("u1")).ai_flags == 0

        async with db.transaction() as conn:
            await conn.execute(
                "INSERT INTO trust_profiles (user_id, ai_flags, community_flags) VALUES ('u1', 3, 7)"
            )

        flags = await reader.get_flags("u1")
        assert flags.ai_flags == 3
        assert flags.community_flags == 7

    @pytest.mark.asyncio
    async def test_reports_and_anomalies_since(self, db):
        async with db.transaction() as conn:
            await conn.executemany(
                "INSERT INTO content_reports (target_user_id, reporter_id, created_at) VALUES (?, ?, ?)",
                [("u1", "r1", START_TS - 100), ("u1", "r2", START_TS + 10), ("u2", "r3", START_TS + 10)],
            )
            await conn.executemany(
                "INSERT INTO anomaly_detections (user_id, kind, score, detected_at) VALUES (?, ?, ?, ?)",
                [("u1", "velocity", 0.4, START_TS - 100), ("u1", "login", 0.9, START_TS + 5)],
            )

        reports = await SQLiteContentReportStore(db).get_reports("u1", START_TS)
        anomalies = await SQLiteAnomalyFeed(db).get_anomalies("u1", START_TS)

        assert [report.reporter_id for report in reports] == ["r2"]
        assert [(anomaly.kind, anomaly.score) for anomaly in anomalies] == [("login", 0.9)]

    @pytest.mark.asyncio
    async def test_account_status_round_trip(self, db, clock):
        engine = SQLiteAccountStatusEngine(db, clock)

        missing = await engine.get_status("u1")
        assert missing.status == AccountStatus.ACTIVE
        assert missing.feature_locks == []
        assert missing.visibility_tier == VisibilityTier.NORMAL

        await engine.apply_status(
            AccountStatusSnapshot(
                user_id="u1",
                status=AccountStatus.HARD_RESTRICTED,
                feature_locks=["posting", "posting", "dm"],
                visibility_tier=VisibilityTier.LOW,
            ),
            "federated_enforcement",
        )

        stored = await engine.get_status("u1")
        assert stored.status == AccountStatus.HARD_RESTRICTED
        assert stored.feature_locks == ["dm", "posting"]
        assert stored.visibility_tier == VisibilityTier.LOW
