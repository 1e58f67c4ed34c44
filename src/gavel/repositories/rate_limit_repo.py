"""
Persistent storage for per-(moderator, action type) rate-limit windows.

Counting inside a live window uses ``count = count + 1`` in SQL so concurrent
moderator actions never lose an increment.
"""

from __future__ import annotations

from typing import Optional

import aiosqlite

from gavel.datatypes.audit_datatypes import ModeratorActionType, RateLimitRecord


class RateLimitRepository:

    @staticmethod
    async def get(
        conn: aiosqlite.Connection,
        moderator_id: str,
        action_type: ModeratorActionType,
    ) -> Optional[RateLimitRecord]:
        async with conn.execute(
            "SELECT * FROM moderator_rate_limits WHERE moderator_id = ? AND action_type = ?",
            (moderator_id, action_type.value),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return RateLimitRecord(
            moderator_id=row["moderator_id"],
            action_type=ModeratorActionType(row["action_type"]),
            count=row["count"],
            window_start=row["window_start"],
            window_end=row["window_end"],
        )

    @staticmethod
    async def increment_in_window(
        conn: aiosqlite.Connection,
        moderator_id: str,
        action_type: ModeratorActionType,
        now: int,
    ) -> bool:
        """Atomically bump the counter if its window is still open.

        Returns:
            True if a live window was incremented, False if none exists or it has lapsed.
        """
        cursor = await conn.execute(
            """
            UPDATE moderator_rate_limits SET count = count + 1
            WHERE moderator_id = ? AND action_type = ? AND window_end > ?
            """,
            (moderator_id, action_type.value, now),
        )
        return cursor.rowcount > 0

    @staticmethod
    async def open_window(
        conn: aiosqlite.Connection,
        moderator_id: str,
        action_type: ModeratorActionType,
        window_start: int,
        window_end: int,
    ) -> None:
        """Start a fresh window with a count of one, replacing any lapsed one."""
        await conn.execute(
            """
            INSERT INTO moderator_rate_limits (moderator_id, action_type, count, window_start, window_end)
            VALUES (?, ?, 1, ?, ?)
            ON CONFLICT(moderator_id, action_type) DO UPDATE SET
                count = 1,
                window_start = excluded.window_start,
                window_end = excluded.window_end
            """,
            (moderator_id, action_type.value, window_start, window_end),
        )
