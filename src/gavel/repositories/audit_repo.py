"""
Repositories for the moderator audit log and rogue-moderator detections.

Audit entries are never deleted or rewritten; the only mutation is stamping
``reversed_at``/``reversed_by`` once.
"""

from __future__ import annotations

import json
from typing import List, Optional

import aiosqlite

from gavel.datatypes.audit_datatypes import (
    ModerationAuditEntry,
    ModeratorActionType,
    RogueModeratorDetection,
    RoguePattern,
)


def _row_to_entry(row: aiosqlite.Row) -> ModerationAuditEntry:
    return ModerationAuditEntry(
        entry_id=row["entry_id"],
        actor_id=row["actor_id"],
        actor_level=row["actor_level"],
        target_user_id=row["target_user_id"],
        action_type=ModeratorActionType(row["action_type"]),
        reversible=bool(row["reversible"]),
        restrictive=bool(row["restrictive"]),
        created_at=row["created_at"],
        reversed_at=row["reversed_at"],
        reversed_by=row["reversed_by"],
    )


class AuditLogRepository:

    @staticmethod
    async def insert(conn: aiosqlite.Connection, entry: ModerationAuditEntry) -> None:
        await conn.execute(
            """
            INSERT INTO moderation_audit_log (entry_id, actor_id, actor_level, target_user_id,
                                              action_type, reversible, restrictive, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.entry_id,
                entry.actor_id,
                int(entry.actor_level),
                entry.target_user_id,
                entry.action_type.value,
                int(entry.reversible),
                int(entry.restrictive),
                entry.created_at,
            ),
        )

    @staticmethod
    async def get(conn: aiosqlite.Connection, entry_id: str) -> Optional[ModerationAuditEntry]:
        async with conn.execute(
            "SELECT * FROM moderation_audit_log WHERE entry_id = ?", (entry_id,)
        ) as cursor:
            row = await cursor.fetchone()
        return _row_to_entry(row) if row else None

    @staticmethod
    async def mark_reversed(conn: aiosqlite.Connection, entry_id: str, reversed_by: str, reversed_at: int) -> bool:
        """Stamp the reversal once. Returns False if already reversed."""
        cursor = await conn.execute(
            """
            UPDATE moderation_audit_log SET reversed_at = ?, reversed_by = ?
            WHERE entry_id = ? AND reversed_at IS NULL
            """,
            (reversed_at, reversed_by, entry_id),
        )
        return cursor.rowcount > 0

    @staticmethod
    async def list_by_actor_since(conn: aiosqlite.Connection, actor_id: str, since: int) -> List[ModerationAuditEntry]:
        async with conn.execute(
            "SELECT * FROM moderation_audit_log WHERE actor_id = ? AND created_at >= ? ORDER BY created_at",
            (actor_id, since),
        ) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_entry(row) for row in rows]

    @staticmethod
    async def list_by_target_since(
        conn: aiosqlite.Connection,
        target_user_id: str,
        since: int,
        min_actor_level: int = 0,
    ) -> List[ModerationAuditEntry]:
        async with conn.execute(
            """
            SELECT * FROM moderation_audit_log
            WHERE target_user_id = ? AND created_at >= ? AND actor_level >= ?
            ORDER BY created_at
            """,
            (target_user_id, since, int(min_actor_level)),
        ) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_entry(row) for row in rows]


class RogueDetectionRepository:

    @staticmethod
    async def insert(conn: aiosqlite.Connection, detection: RogueModeratorDetection) -> None:
        await conn.execute(
            """
            INSERT INTO rogue_detections (detection_id, moderator_id, patterns, false_positive_rate,
                                          total_actions, auto_suspended, case_id, detected_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                detection.detection_id,
                detection.moderator_id,
                json.dumps([pattern.value for pattern in detection.patterns]),
                detection.false_positive_rate,
                detection.total_actions,
                int(detection.auto_suspended),
                detection.case_id,
                detection.detected_at,
            ),
        )

    @staticmethod
    async def set_case_id(conn: aiosqlite.Connection, detection_id: str, case_id: str) -> None:
        await conn.execute(
            "UPDATE rogue_detections SET case_id = ? WHERE detection_id = ?",
            (case_id, detection_id),
        )

    @staticmethod
    async def delete(conn: aiosqlite.Connection, detection_id: str) -> None:
        await conn.execute("DELETE FROM rogue_detections WHERE detection_id = ?", (detection_id,))

    @staticmethod
    async def latest_for_moderator(conn: aiosqlite.Connection, moderator_id: str) -> Optional[RogueModeratorDetection]:
        async with conn.execute(
            "SELECT * FROM rogue_detections WHERE moderator_id = ? ORDER BY detected_at DESC LIMIT 1",
            (moderator_id,),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return RogueModeratorDetection(
            detection_id=row["detection_id"],
            moderator_id=row["moderator_id"],
            patterns=[RoguePattern(value) for value in json.loads(row["patterns"])],
            false_positive_rate=row["false_positive_rate"],
            total_actions=row["total_actions"],
            auto_suspended=bool(row["auto_suspended"]),
            detected_at=row["detected_at"],
            case_id=row["case_id"],
        )

