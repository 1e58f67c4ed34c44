"""
Persistent storage for current visibility and posting restrictions.

One row per user per table. A new application overwrites the previous row;
there is no history here (the case history and audit log hold that).
Expiry is not swept: readers compare ``expires_at`` against the clock and
delete stale rows themselves.
"""

from __future__ import annotations

from typing import List, Optional

import aiosqlite

from gavel.datatypes.enforcement_datatypes import (
    PostingRestriction,
    VisibilityRestriction,
    VisibilityTier,
)


class RestrictionRepository:

    # ------------------------------------------------------------------
    # Visibility
    # ------------------------------------------------------------------

    @staticmethod
    async def upsert_visibility(conn: aiosqlite.Connection, restriction: VisibilityRestriction) -> None:
        await conn.execute(
            """
            INSERT INTO visibility_restrictions (user_id, tier, applied_by, applied_at, expires_at, reason)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                tier = excluded.tier,
                applied_by = excluded.applied_by,
                applied_at = excluded.applied_at,
                expires_at = excluded.expires_at,
                reason = excluded.reason
            """,
            (
                restriction.user_id,
                restriction.tier.value,
                restriction.applied_by,
                restriction.applied_at,
                restriction.expires_at,
                restriction.reason,
            ),
        )

    @staticmethod
    async def get_visibility(conn: aiosqlite.Connection, user_id: str) -> Optional[VisibilityRestriction]:
        async with conn.execute(
            "SELECT * FROM visibility_restrictions WHERE user_id = ?", (user_id,)
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return VisibilityRestriction(
            user_id=row["user_id"],
            tier=VisibilityTier(row["tier"]),
            applied_by=row["applied_by"],
            applied_at=row["applied_at"],
            expires_at=row["expires_at"],
            reason=row["reason"],
        )

    @staticmethod
    async def delete_visibility(conn: aiosqlite.Connection, user_id: str) -> None:
        await conn.execute("DELETE FROM visibility_restrictions WHERE user_id = ?", (user_id,))

    @staticmethod
    async def delete_visibility_if_expired(conn: aiosqlite.Connection, user_id: str, now: int) -> int:
        """Delete the row only if it is still expired; returns rows deleted."""
        cursor = await conn.execute(
            "DELETE FROM visibility_restrictions WHERE user_id = ? AND expires_at IS NOT NULL AND expires_at <= ?",
            (user_id, now),
        )
        return cursor.rowcount

    # ------------------------------------------------------------------
    # Posting
    # ------------------------------------------------------------------

    @staticmethod
    async def upsert_posting(conn: aiosqlite.Connection, restriction: PostingRestriction) -> None:
        await conn.execute(
            """
            INSERT INTO posting_restrictions (user_id, restricted, applied_by, applied_at, expires_at, reason)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                restricted = excluded.restricted,
                applied_by = excluded.applied_by,
                applied_at = excluded.applied_at,
                expires_at = excluded.expires_at,
                reason = excluded.reason
            """,
            (
                restriction.user_id,
                int(restriction.restricted),
                restriction.applied_by,
                restriction.applied_at,
                restriction.expires_at,
                restriction.reason,
            ),
        )

    @staticmethod
    async def get_posting(conn: aiosqlite.Connection, user_id: str) -> Optional[PostingRestriction]:
        async with conn.execute(
            "SELECT * FROM posting_restrictions WHERE user_id = ?", (user_id,)
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return PostingRestriction(
            user_id=row["user_id"],
            restricted=bool(row["restricted"]),
            applied_by=row["applied_by"],
            applied_at=row["applied_at"],
            expires_at=row["expires_at"],
            reason=row["reason"],
        )

    @staticmethod
    async def delete_posting(conn: aiosqlite.Connection, user_id: str) -> None:
        await conn.execute("DELETE FROM posting_restrictions WHERE user_id = ?", (user_id,))

    @staticmethod
    async def delete_posting_if_expired(conn: aiosqlite.Connection, user_id: str, now: int) -> int:
        cursor = await conn.execute(
            "DELETE FROM posting_restrictions WHERE user_id = ? AND expires_at IS NOT NULL AND expires_at <= ?",
            (user_id, now),
        )
        return cursor.rowcount

    @staticmethod
    async def list_restricted_user_ids(conn: aiosqlite.Connection) -> List[str]:
        async with conn.execute(
            """
            SELECT user_id FROM visibility_restrictions
            UNION
            SELECT user_id FROM posting_restrictions
            ORDER BY user_id
            """
        ) as cursor:
            rows = await cursor.fetchall()
        return [row[0] for row in rows]
