"""
Database schema initialization.

Creates tables, indexes and schema version tracking. Timestamps are INTEGER
unix seconds. List-valued "document" fields that are appended to concurrently
(case history, quorum approvers) live in child tables so every append is an
independent INSERT.
"""

import aiosqlite
from gavel.util.logger import get_logger

logger = get_logger("database_schema")

SCHEMA_VERSION = 1


class SchemaManager:
    """Creates the governance schema and the shared platform tables the
    SQLite collaborator adapters read from."""

    @staticmethod
    async def initialize_schema(db: aiosqlite.Connection) -> None:
        """
        Create all database tables and indexes if they do not exist.

        Args:
            db: Open database connection
        """
        await SchemaManager._create_governance_tables(db)
        await SchemaManager._create_platform_tables(db)
        await SchemaManager._create_indexes(db)
        await SchemaManager._update_schema_version(db)
        await db.commit()
        logger.info("[SCHEMA] Database schema initialized (version %d)", SCHEMA_VERSION)

    @staticmethod
    async def _create_governance_tables(db: aiosqlite.Connection) -> None:
        await db.execute("""
            CREATE TABLE IF NOT EXISTS user_roles (
                user_id TEXT PRIMARY KEY,
                roles TEXT NOT NULL DEFAULT '["user"]',
                granted_by TEXT,
                granted_at INTEGER NOT NULL,
                suspended_at INTEGER,
                suspension_reason TEXT,
                suspension_case_id TEXT
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS enforcement_confidence (
                user_id TEXT PRIMARY KEY,
                score REAL NOT NULL,
                sources TEXT NOT NULL DEFAULT '[]',
                calculated_at INTEGER NOT NULL
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS moderation_cases (
                case_id TEXT PRIMARY KEY,
                subject_user_id TEXT NOT NULL,
                status TEXT NOT NULL,
                priority TEXT NOT NULL,
                opened_at INTEGER NOT NULL,
                opened_by TEXT NOT NULL,
                assignee_id TEXT,
                reason_codes TEXT NOT NULL DEFAULT '[]',
                resolution_outcome TEXT,
                resolution_note TEXT,
                resolved_by TEXT,
                resolved_at INTEGER,
                updated_at INTEGER NOT NULL
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS case_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                case_id TEXT NOT NULL,
                actor_id TEXT NOT NULL,
                actor_type TEXT NOT NULL,
                action TEXT NOT NULL,
                details TEXT NOT NULL DEFAULT '{}',
                created_at INTEGER NOT NULL,
                FOREIGN KEY (case_id) REFERENCES moderation_cases(case_id)
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS review_queue (
                case_id TEXT PRIMARY KEY,
                subject_user_id TEXT NOT NULL,
                priority TEXT NOT NULL,
                priority_rank INTEGER NOT NULL,
                reason TEXT NOT NULL,
                enforcement_confidence REAL NOT NULL,
                queued_at INTEGER NOT NULL,
                FOREIGN KEY (case_id) REFERENCES moderation_cases(case_id)
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS moderation_audit_log (
                entry_id TEXT PRIMARY KEY,
                actor_id TEXT NOT NULL,
                actor_level INTEGER NOT NULL,
                target_user_id TEXT NOT NULL,
                action_type TEXT NOT NULL,
                reversible INTEGER NOT NULL DEFAULT 1,
                restrictive INTEGER NOT NULL DEFAULT 0,
                created_at INTEGER NOT NULL,
                reversed_at INTEGER,
                reversed_by TEXT
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS enforcement_appeals (
                appeal_id TEXT PRIMARY KEY,
                case_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                status TEXT NOT NULL,
                explanation TEXT NOT NULL,
                submitted_at INTEGER NOT NULL,
                reviewed_by TEXT,
                reviewed_at INTEGER,
                decision TEXT,
                outcome_explanation TEXT,
                FOREIGN KEY (case_id) REFERENCES moderation_cases(case_id)
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS suspension_approvals (
                approval_id TEXT PRIMARY KEY,
                target_user_id TEXT NOT NULL,
                requester_id TEXT NOT NULL,
                reason TEXT NOT NULL,
                case_id TEXT,
                approvals_needed INTEGER NOT NULL,
                status TEXT NOT NULL,
                created_at INTEGER NOT NULL,
                expires_at INTEGER NOT NULL,
                approved_at INTEGER,
                executed_at INTEGER,
                executed_by TEXT
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS suspension_approvers (
                approval_id TEXT NOT NULL,
                approver_id TEXT NOT NULL,
                approved_at INTEGER NOT NULL,
                PRIMARY KEY (approval_id, approver_id),
                FOREIGN KEY (approval_id) REFERENCES suspension_approvals(approval_id)
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS visibility_restrictions (
                user_id TEXT PRIMARY KEY,
                tier TEXT NOT NULL,
                applied_by TEXT NOT NULL,
                applied_at INTEGER NOT NULL,
                expires_at INTEGER,
                reason TEXT NOT NULL DEFAULT ''
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS posting_restrictions (
                user_id TEXT PRIMARY KEY,
                restricted INTEGER NOT NULL DEFAULT 1,
                applied_by TEXT NOT NULL,
                applied_at INTEGER NOT NULL,
                expires_at INTEGER,
                reason TEXT NOT NULL DEFAULT ''
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS moderator_rate_limits (
                moderator_id TEXT NOT NULL,
                action_type TEXT NOT NULL,
                count INTEGER NOT NULL DEFAULT 0,
                window_start INTEGER NOT NULL,
                window_end INTEGER NOT NULL,
                PRIMARY KEY (moderator_id, action_type)
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS rogue_detections (
                detection_id TEXT PRIMARY KEY,
                moderator_id TEXT NOT NULL,
                patterns TEXT NOT NULL DEFAULT '[]',
                false_positive_rate REAL NOT NULL,
                total_actions INTEGER NOT NULL,
                auto_suspended INTEGER NOT NULL DEFAULT 0,
                case_id TEXT,
                detected_at INTEGER NOT NULL
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

    @staticmethod
    async def _create_platform_tables(db: aiosqlite.Connection) -> None:
        """Tables owned by the surrounding platform (signal producers and the
        account-status engine). Created here so a standalone deployment and
        the test suite have somewhere for the SQLite adapters to read from."""
        await db.execute("""
            CREATE TABLE IF NOT EXISTS trust_profiles (
                user_id TEXT PRIMARY KEY,
                ai_flags INTEGER NOT NULL DEFAULT 0,
                community_flags INTEGER NOT NULL DEFAULT 0,
                updated_at INTEGER NOT NULL DEFAULT 0
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS content_reports (
                report_id INTEGER PRIMARY KEY AUTOINCREMENT,
                target_user_id TEXT NOT NULL,
                reporter_id TEXT NOT NULL,
                reason TEXT NOT NULL DEFAULT '',
                created_at INTEGER NOT NULL
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS anomaly_detections (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                kind TEXT NOT NULL,
                score REAL NOT NULL,
                detected_at INTEGER NOT NULL
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS account_status (
                user_id TEXT PRIMARY KEY,
                status TEXT NOT NULL DEFAULT 'active',
                feature_locks TEXT NOT NULL DEFAULT '[]',
                visibility_tier TEXT NOT NULL DEFAULT 'normal',
                reason TEXT NOT NULL DEFAULT '',
                updated_at INTEGER NOT NULL
            )
        """)

    @staticmethod
    async def _create_indexes(db: aiosqlite.Connection) -> None:
        # Uniqueness guards for the two "at most one" invariants
        await db.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS uq_cases_one_open_per_subject
            ON moderation_cases(subject_user_id)
            WHERE status IN ('open', 'under_review')
        """)
        await db.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS uq_appeals_one_pending_per_case
            ON enforcement_appeals(case_id)
            WHERE status = 'pending'
        """)

        await db.execute("CREATE INDEX IF NOT EXISTS idx_cases_subject ON moderation_cases(subject_user_id, status)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_cases_status ON moderation_cases(status, opened_at)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_case_history_case ON case_history(case_id, id)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_review_queue_order ON review_queue(priority_rank DESC, queued_at)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_audit_actor ON moderation_audit_log(actor_id, created_at)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_audit_target ON moderation_audit_log(target_user_id, created_at)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_appeals_case ON enforcement_appeals(case_id, status)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_rogue_moderator ON rogue_detections(moderator_id, detected_at)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_reports_target ON content_reports(target_user_id, created_at)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_anomalies_user ON anomaly_detections(user_id, detected_at)")

    @staticmethod
    async def _update_schema_version(db: aiosqlite.Connection) -> None:
        await db.execute("INSERT OR IGNORE INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
